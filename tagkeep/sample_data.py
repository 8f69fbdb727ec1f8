"""
Sample data for load testing.

Fills a store with fictitious files (paths under a base directory that
need not exist) carrying random tags and random dates within the last
year.
"""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .errors import DuplicateFileError, TagStoreError
from .protocol import TagStoreProtocol
from .types import SystemTag, TaggedFile

logger = logging.getLogger(__name__)

SAMPLE_EXTENSIONS = (".txt", ".pdf", ".doc", ".jpg", ".png", ".mp3", ".mp4", ".java", ".html", ".css")
SAMPLE_TAG_PREFIXES = ("project", "work", "personal", "important", "urgent",
                       "review", "archive", "temp", "shared", "backup")
SAMPLE_TAG_SUFFIXES = ("2023", "2024", "2025", "high", "medium", "low", "draft", "final", "v1", "v2")

MAX_TAGS_PER_FILE = 5
MAX_TAG_POOL = 30

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S"


@dataclass
class SampleDataResult:
    added: int = 0
    skipped: int = 0
    seconds: float = 0.0


def sample_tag_pool() -> list[str]:
    """System tags (except Missing), then prefixes and prefix-suffix pairs, capped at 30."""
    tags = [SystemTag.DONE.value, SystemTag.IN_PROGRESS.value, SystemTag.NEW.value]
    for prefix in SAMPLE_TAG_PREFIXES:
        if len(tags) < MAX_TAG_POOL:
            tags.append(prefix)
        for suffix in SAMPLE_TAG_SUFFIXES:
            if len(tags) < MAX_TAG_POOL:
                tags.append(f"{prefix}-{suffix}")
    for suffix in SAMPLE_TAG_SUFFIXES:
        if len(tags) < MAX_TAG_POOL:
            tags.append(suffix)
    return tags


def _sample_file(rng: random.Random, base_path: Path, pool: list[str], now: datetime) -> TaggedFile:
    file_name = "test_file_{}_{:04d}{}".format(
        now.strftime("%Y%m%d"), rng.randrange(10000), rng.choice(SAMPLE_EXTENSIONS),
    )
    directory = base_path
    for _ in range(rng.randrange(3)):
        directory = directory / f"dir{rng.randrange(5)}"

    tags = set(rng.sample(pool, rng.randint(1, min(MAX_TAGS_PER_FILE, len(pool)))))

    created = now - timedelta(days=rng.randrange(1, 366))
    accessed = created + timedelta(days=rng.randint(0, (now - created).days))
    return TaggedFile(
        path=str(directory / file_name),
        name=file_name,
        tags=tags,
        created_at=created.strftime(_TS_FORMAT),
        last_accessed_at=accessed.strftime(_TS_FORMAT),
    )


def generate_sample_files(
    store: TagStoreProtocol,
    count: int,
    *,
    rng: Optional[random.Random] = None,
    base_path: Optional[Path] = None,
) -> SampleDataResult:
    """
    Add ``count`` sample files to the store.

    Paths that collide with stored files are skipped, so fewer than
    ``count`` files may be added.

    Args:
        store: Target store
        count: Number of files to generate
        rng: Random source (seed it for reproducible data)
        base_path: Directory the fictitious paths live under
            (default ~/TagKeep_TestFiles)
    """
    rng = rng or random.Random()
    base_path = Path(base_path) if base_path is not None else Path.home() / "TagKeep_TestFiles"
    pool = sample_tag_pool()
    result = SampleDataResult()
    started = time.monotonic()

    existing = store.get_all_tags()
    for name in pool:
        if name not in existing:
            store.add_tag(name)
    existing = store.get_all_tags()

    now = datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None)
    for i in range(count):
        file = _sample_file(rng, base_path, pool, now)
        try:
            store.add_file(file, existing)
            result.added += 1
        except DuplicateFileError:
            result.skipped += 1
        except TagStoreError as e:
            logger.warning("Error adding sample file %s: %s", file.path, e)
            result.skipped += 1
        if (i + 1) % 100 == 0:
            logger.info("Generated %d of %d sample files", i + 1, count)

    result.seconds = time.monotonic() - started
    logger.info(
        "Generated %d sample files (%d skipped) in %.2fs",
        result.added, result.skipped, result.seconds,
    )
    return result
