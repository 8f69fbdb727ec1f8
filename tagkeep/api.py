"""
Core API for tagging files.

TagKeeper is the gate in front of the store: it normalizes paths,
re-validates tag names, delegates to the store and logs every write.
It never retries a failed write; failures are domain errors and are
raised to the caller unchanged (see errors.describe_error for the
user-facing wording).
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from .config import StoreConfig, load_or_create_config
from .errors import TagStoreError, UnknownFileError
from .file_store import TaggedFileStore
from .protocol import TagStoreProtocol
from .reconcile import HealthReport, MissingFileReconciler, ReconcileReport, check_health
from .types import Tag, TaggedFile, tag_name_set, validate_tag_name, validate_tag_names

logger = logging.getLogger(__name__)


def normalize_path(path: str | Path) -> str:
    """Absolute, user-expanded, symlink-resolved form of a path."""
    return str(Path(path).expanduser().resolve())


class TagKeeper:
    """
    Tag files and find them again by tag.

    Example:
        kp = TagKeeper("~/.tagkeep")
        kp.add_file("~/notes/plan.md", ["Reference", "In Progress"])
        kp.get_files_by_tags(["Reference"])
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        store: Optional[TagStoreProtocol] = None,
        reconcile_on_open: Optional[bool] = None,
    ) -> None:
        """
        Open (or create) a tag store.

        Args:
            store_path: Store directory. Uses TAGKEEP_STORE_PATH or ~/.tagkeep
                if not specified.
            config: Pre-loaded StoreConfig (skips config file discovery).
            store: Injected store backend (skips opening the SQLite store).
            reconcile_on_open: Override the config's [reconcile] on_open.

        Raises:
            BootstrapFailure: the database could not be initialized
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            resolved = Path(store_path).expanduser().resolve() if store_path is not None else None
            self._config = load_or_create_config(resolved)
        self._store_path = self._config.path

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Storage backend (injected or opened from config) ---
        db_path = self._config.db_path
        self._database_existed = db_path.exists()
        if store is not None:
            self._store = store
        else:
            try:
                self._store = TaggedFileStore(
                    db_path, busy_timeout_ms=self._config.busy_timeout_ms,
                )
            except TagStoreError:
                logger.error("Could not open tag store at %s", db_path)
                self._release_ops_log()
                raise

        if reconcile_on_open is None:
            reconcile_on_open = self._config.reconcile_on_open
        if reconcile_on_open:
            try:
                self.run_missing_file_reconciliation()
            except Exception:
                logger.error("Reconciliation on open failed for %s", db_path)
                self.close()
                raise

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store(self) -> TagStoreProtocol:
        return self._store

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def add_file(
        self,
        path: str | Path,
        tags: Iterable[str] = (),
        *,
        name: Optional[str] = None,
        related_paths: Iterable[str | Path] = (),
        existing_tags: Optional[Iterable[str]] = None,
    ) -> TaggedFile:
        """
        Start tracking a file.

        Args:
            path: File path (made absolute)
            tags: Tags to apply
            name: Display name, defaults to the basename
            related_paths: Other stored files this one references
            existing_tags: Tag names known to exist; others are validated.
                Looked up from the store when omitted.

        Raises:
            TagValidationError, DuplicateFileError, TransactionFailure
        """
        abs_path = normalize_path(path)
        tags = tag_name_set(tags)
        if existing_tags is None:
            existing_tags = self._store.get_all_tags()
        existing_tags = set(existing_tags)
        validate_tag_names(tags, existing_tags)

        file = TaggedFile(
            path=abs_path,
            name=name or Path(abs_path).name,
            tags=tags,
            related_paths={normalize_path(p) for p in related_paths},
        )
        try:
            return self._store.add_file(file, existing_tags)
        except TagStoreError as e:
            logger.warning("add_file %s failed: %s", abs_path, e)
            raise

    def update_file_tags(self, path: str | Path, tags: Iterable[str]) -> TaggedFile:
        """
        Replace a file's tags with ``tags``.

        Raises:
            TagValidationError, UnknownFileError, TransactionFailure
        """
        abs_path = normalize_path(path)
        tags = tag_name_set(tags)
        validate_tag_names(tags)
        current = self._store.get_file(abs_path)
        file = current.with_tags(tags) if current else TaggedFile(abs_path, Path(abs_path).name, tags)
        try:
            return self._store.update_file_tags(file)
        except TagStoreError as e:
            logger.warning("update_file_tags %s failed: %s", abs_path, e)
            raise

    def add_tags_to_file(self, path: str | Path, tags: Iterable[str]) -> TaggedFile:
        """
        Add tags to a file, keeping the ones it has.

        Raises:
            TagValidationError, UnknownFileError, TransactionFailure
        """
        abs_path = normalize_path(path)
        current = self._store.get_file(abs_path)
        if current is None:
            raise UnknownFileError(abs_path)
        return self.update_file_tags(abs_path, current.tags | tag_name_set(tags))

    def delete_file(self, path: str | Path) -> bool:
        """Stop tracking a file. Returns False if it was not tracked."""
        abs_path = normalize_path(path)
        try:
            return self._store.delete_file(abs_path)
        except TagStoreError as e:
            logger.warning("delete_file %s failed: %s", abs_path, e)
            raise

    def delete_tag_from_file(self, path: str | Path, tag: str) -> bool:
        """Remove one tag from one file. Returns False if it was not applied."""
        validate_tag_name(tag)
        return self._store.delete_tag_from_file(normalize_path(path), tag)

    def get_file(self, path: str | Path) -> Optional[TaggedFile]:
        return self._store.get_file(normalize_path(path))

    def get_all_files(self) -> list[TaggedFile]:
        return self._store.get_all_files()

    def get_files_by_tags(self, tags: Iterable[str]) -> list[TaggedFile]:
        """
        Files carrying every one of ``tags``.

        No tags means no filter: every file is returned.
        """
        tags = tag_name_set(tags)
        if not tags:
            return self._store.get_all_files()
        return self._store.get_files_by_tags(tags)

    def get_related_files(self, path: str | Path) -> set[str]:
        return self._store.get_related_files(normalize_path(path))

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def get_all_tags(self) -> set[str]:
        return self._store.get_all_tags()

    def get_all_tags_with_colors(self) -> dict[str, Tag]:
        return self._store.get_all_tags_with_colors()

    def add_tag(self, name: str, color: Optional[str] = None) -> Tag:
        """
        Create a tag (no-op for an existing user tag).

        Raises:
            TagValidationError, TransactionFailure
        """
        validate_tag_name(name)
        try:
            return self._store.add_tag(name, color)
        except TagStoreError as e:
            logger.warning("add_tag %r failed: %s", name, e)
            raise

    def update_tag_color(self, name: str, color: str) -> bool:
        """
        Recolor a user tag. Returns False if the tag does not exist.

        Raises:
            TagValidationError, SystemTagProtectedError, TransactionFailure
        """
        try:
            return self._store.update_tag_color(name, color)
        except TagStoreError as e:
            logger.warning("update_tag_color %r failed: %s", name, e)
            raise

    def delete_tag(self, name: str) -> bool:
        """
        Delete a user tag everywhere. Returns False if it did not exist.

        Raises:
            TagValidationError, SystemTagProtectedError, TransactionFailure
        """
        validate_tag_name(name)
        try:
            return self._store.delete_tag(name)
        except TagStoreError as e:
            logger.warning("delete_tag %r failed: %s", name, e)
            raise

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def run_missing_file_reconciliation(self) -> ReconcileReport:
        """
        Tag files that vanished from disk as Missing, untag ones that are back.

        The caller is responsible for re-querying afterwards.
        """
        return MissingFileReconciler(self._store).run()

    def health_check(self) -> HealthReport:
        """Report store counts, missing files and disk space without writing."""
        return check_health(
            self._store,
            self._config.db_path,
            database_existed=self._database_existed,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _release_ops_log(self) -> None:
        from .logging_config import remove_ops_log
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    def close(self) -> None:
        """Close the store and detach the operations log."""
        store = getattr(self, "_store", None)
        if store is not None:
            store.close()
            self._store = None
        if getattr(self, "_ops_log_handler", None) is not None:
            self._release_ops_log()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
