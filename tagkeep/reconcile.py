"""
Reconcile stored file paths with the filesystem.

Files whose path no longer exists get the Missing system tag; files that
reappear lose it. Each toggle is its own transaction, and no lock is held
across the scan, so a file deleted from the store mid-scan is simply
skipped and picked up (or not) by the next pass.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .errors import TagStoreError, UnknownFileError
from .protocol import TagStoreProtocol
from .types import SystemTag

logger = logging.getLogger(__name__)

MISSING = SystemTag.MISSING.value

# Below this much free space next to the database, health_check warns
LOW_DISK_SPACE_BYTES = 100 * 1024 * 1024


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""
    checked: int = 0
    marked_missing: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.marked_missing or self.restored)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "marked_missing": self.marked_missing,
            "restored": self.restored,
            "failed": self.failed,
        }


class MissingFileReconciler:
    """
    Toggle the Missing tag to match what is on disk.

    Example:
        report = MissingFileReconciler(store).run()
        print(report.marked_missing)
    """

    def __init__(
        self,
        store: TagStoreProtocol,
        exists: Callable[[str], bool] = os.path.exists,
    ):
        """
        Args:
            store: The tag store to reconcile
            exists: Filesystem check, injectable for tests
        """
        self._store = store
        self._exists = exists

    def run(self) -> ReconcileReport:
        """Check every stored file once and persist the needed toggles."""
        report = ReconcileReport()
        for file in self._store.get_all_files():
            report.checked += 1
            on_disk = self._exists(file.path)

            if not on_disk and not file.is_missing:
                new_tags = file.tags | {MISSING}
                bucket = report.marked_missing
            elif on_disk and file.is_missing:
                new_tags = file.tags - {MISSING}
                bucket = report.restored
            else:
                continue

            try:
                self._store.update_file_tags(file.with_tags(new_tags))
            except UnknownFileError:
                logger.debug("File removed during reconciliation: %s", file.path)
                continue
            except TagStoreError as e:
                logger.warning("Failed to reconcile %s: %s", file.path, e)
                report.failed.append(file.path)
                continue
            bucket.append(file.path)

        if report.changed or report.failed:
            logger.info(
                "Reconciled %d files: %d missing, %d restored, %d failed",
                report.checked, len(report.marked_missing),
                len(report.restored), len(report.failed),
            )
        return report


@dataclass
class HealthReport:
    """Result of a store health check."""
    ok: bool = True
    database_exists: bool = True
    messages: list[str] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    missing_files: list[str] = field(default_factory=list)
    free_disk_bytes: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "database_exists": self.database_exists,
            "messages": self.messages,
            "counts": self.counts,
            "missing_files": self.missing_files,
            "free_disk_bytes": self.free_disk_bytes,
        }


def check_health(
    store: TagStoreProtocol,
    db_path: Path,
    *,
    database_existed: bool = True,
    exists: Callable[[str], bool] = os.path.exists,
) -> HealthReport:
    """
    Inspect the store without changing it.

    Reports store counts, stored files whose path is gone, and low disk
    space next to the database.

    Args:
        store: An open tag store
        db_path: Path of the database file
        database_existed: Whether the database file existed before the
            store was opened (a new one was created otherwise)
        exists: Filesystem check, injectable for tests
    """
    report = HealthReport(database_exists=database_existed)
    if not database_existed:
        report.messages.append("New database initialized.")

    report.counts = store.counts()
    report.missing_files = [
        f.path for f in store.get_all_files() if not exists(f.path)
    ]
    if report.missing_files:
        report.messages.append(f"{len(report.missing_files)} stored files are missing.")

    try:
        report.free_disk_bytes = shutil.disk_usage(Path(db_path).resolve().parent).free
    except OSError as e:
        logger.debug("Disk usage check failed: %s", e)
    if report.free_disk_bytes is not None and report.free_disk_bytes < LOW_DISK_SPACE_BYTES:
        report.ok = False
        report.messages.append(
            f"Low disk space: {report.free_disk_bytes // (1024 * 1024)}MB free."
        )

    if report.ok and not report.messages:
        report.messages.append("Health check completed successfully.")
    return report
