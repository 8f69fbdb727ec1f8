"""
Data types for the tag store.
"""

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from .errors import TagValidationError, ValidationReason


class SystemTag(str, enum.Enum):
    """The reserved tags. They always exist and cannot be deleted."""
    DONE = "Done"
    IN_PROGRESS = "In Progress"
    NEW = "New"
    MISSING = "Missing"

    @classmethod
    def contains(cls, name: str) -> bool:
        """True if name is one of the system tags (case-sensitive)."""
        if isinstance(name, SystemTag):
            return True
        return name in _SYSTEM_TAG_NAMES

    def __str__(self) -> str:
        return self.value


_SYSTEM_TAG_NAMES = frozenset(t.value for t in SystemTag)


MAX_TAG_LENGTH = 50

# Letters, digits, space, underscore, hyphen
_TAG_NAME_RE = re.compile(r"[A-Za-z0-9 _-]+")


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    All timestamps are UTC, stored without timezone suffix.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def normalize_timestamp(value) -> str:
    """Normalize a stored timestamp to YYYY-MM-DDTHH:MM:SS.

    Accepts the canonical format, SQLite CURRENT_TIMESTAMP text
    ('YYYY-MM-DD HH:MM:SS'), ISO strings with fractional seconds or
    a UTC suffix, and integer epoch milliseconds written by older
    versions of the database. Returns empty string for NULL.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S")
    text = str(value).strip()
    if text.isdigit():
        return normalize_timestamp(int(text))
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return text
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S")


def validate_tag_name(name: Optional[str]) -> None:
    """Validate a tag name: non-blank, at most 50 chars, [A-Za-z0-9 _-] only.

    Raises:
        TagValidationError: with reason EMPTY, TOO_LONG or INVALID_CHARS
    """
    if name is None or not name.strip():
        raise TagValidationError(ValidationReason.EMPTY, name, "Tag cannot be empty")
    if len(name) > MAX_TAG_LENGTH:
        raise TagValidationError(
            ValidationReason.TOO_LONG, name,
            f"Tag cannot be longer than {MAX_TAG_LENGTH} characters: {name!r}",
        )
    if not _TAG_NAME_RE.fullmatch(name):
        raise TagValidationError(
            ValidationReason.INVALID_CHARS, name,
            "Tag can only contain letters, numbers, spaces, underscores "
            f"and hyphens: {name!r}",
        )


def tag_name_set(names: Iterable[str]) -> set[str]:
    """Collect tag names into a set.

    Raises:
        TypeError: names is a single string rather than a collection
    """
    if isinstance(names, str):
        raise TypeError(f"Expected a collection of tag names, got a string: {names!r}")
    return set(names)


def validate_tag_names(names: Iterable[str], existing: Iterable[str] = ()) -> None:
    """Validate every name not already known to exist.

    Names in ``existing`` were validated when they were created, so they
    are skipped.

    Raises:
        TagValidationError: a name is invalid
        TypeError: names is a single string
    """
    known = existing if isinstance(existing, (set, frozenset)) else set(existing)
    for name in tag_name_set(names):
        if name not in known:
            validate_tag_name(name)


@dataclass(frozen=True)
class Tag:
    """A tag and its display color.

    Identity is the name: two tags with the same name are equal whatever
    their colors.
    """
    name: str
    color: str = field(default="", compare=False)

    @property
    def is_system(self) -> bool:
        return SystemTag.contains(self.name)

    def __str__(self) -> str:
        return self.name


@dataclass
class TaggedFile:
    """
    A file and its tags.

    Values returned by the store are copies: changing one has no effect
    until it is passed back through an update call.

    Attributes:
        path: Absolute path, the file's identity
        name: Display name (usually the basename)
        tags: Tag names applied to the file
        created_at: When the file was added (UTC, YYYY-MM-DDTHH:MM:SS)
        last_accessed_at: When the file's tags last changed
        related_paths: Paths of other stored files this one references
    """
    path: str
    name: str
    tags: set[str] = field(default_factory=set)
    created_at: str = ""
    last_accessed_at: str = ""
    related_paths: set[str] = field(default_factory=set)

    @property
    def is_missing(self) -> bool:
        """True if the file carries the Missing tag."""
        return SystemTag.MISSING.value in self.tags

    def with_tags(self, tags: Iterable[str]) -> "TaggedFile":
        """Copy of this file with a replaced tag set."""
        return TaggedFile(
            path=self.path,
            name=self.name,
            tags=set(tags),
            created_at=self.created_at,
            last_accessed_at=self.last_accessed_at,
            related_paths=set(self.related_paths),
        )

    def to_dict(self) -> dict:
        """Serialize to a JSON-ready dict (tags sorted)."""
        return {
            "path": self.path,
            "name": self.name,
            "tags": sorted(self.tags),
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "related_paths": sorted(self.related_paths),
        }

    def __str__(self) -> str:
        return f"{self.name} ({len(self.tags)} tags)"
