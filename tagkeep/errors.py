"""
Error types and error logging for tagkeep.

Every failure the store surfaces derives from TagStoreError. All of them
are recoverable by the caller except BootstrapFailure, which means the
store could not be opened at all.

describe_error() maps a failure to a short user-facing report; the CLI
prints it. log_exception() keeps full stack traces in a file for
debugging while users see the clean message.
"""

import enum
import os
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path


class TagStoreError(Exception):
    """Base class for tag store failures."""


class ValidationReason(str, enum.Enum):
    """Why a tag name (or color) was rejected."""
    EMPTY = "empty"
    TOO_LONG = "too_long"
    INVALID_CHARS = "invalid_chars"
    INVALID_COLOR = "invalid_color"


class TagValidationError(TagStoreError, ValueError):
    """A tag name or color failed validation. Carries the offending value."""

    def __init__(self, reason: ValidationReason, value, message: str):
        super().__init__(message)
        self.reason = reason
        self.value = value


class DuplicateFileError(TagStoreError):
    """A file with this path is already stored."""

    def __init__(self, path: str):
        super().__init__(f"File already exists in the database: {path}")
        self.path = path


class UnknownFileError(TagStoreError):
    """The path is not stored."""

    def __init__(self, path: str):
        super().__init__(f"File is not in the database: {path}")
        self.path = path


class SystemTagProtectedError(TagStoreError):
    """Attempted to delete or recolor a system tag."""

    def __init__(self, name: str, action: str = "delete"):
        super().__init__(f"Cannot {action} system tag: {name}")
        self.name = name
        self.action = action


class TransactionFailure(TagStoreError):
    """The storage engine failed during a write; the transaction was rolled back."""

    def __init__(self, action: str, cause: BaseException):
        super().__init__(f"{action} failed: {cause}")
        self.action = action
        self.cause = cause


class BootstrapFailure(TagStoreError):
    """Schema creation or system-tag seeding failed. The store cannot be used."""

    def __init__(self, db_path, cause: BaseException):
        super().__init__(f"Failed to initialize database at {db_path}: {cause}")
        self.db_path = db_path
        self.cause = cause


@dataclass(frozen=True)
class ErrorReport:
    """User-facing description of a failure."""
    title: str
    message: str
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.title}: {self.message}"
        if self.detail:
            text += f"\n{self.detail}"
        return text


_VALIDATION_MESSAGES = {
    ValidationReason.EMPTY: "Tag cannot be empty.",
    ValidationReason.TOO_LONG: "Tag is too long.",
    ValidationReason.INVALID_CHARS: (
        "Tag can only contain letters, numbers, spaces, underscores and hyphens."
    ),
    ValidationReason.INVALID_COLOR: "Color must be a hex value like #4CAF50.",
}


def describe_error(exc: BaseException) -> ErrorReport:
    """Translate a failure into the category and message shown to users."""
    if isinstance(exc, TagValidationError):
        return ErrorReport(
            "Invalid Tag",
            _VALIDATION_MESSAGES[exc.reason],
            f"Offending value: {exc.value!r}",
        )
    if isinstance(exc, DuplicateFileError):
        return ErrorReport(
            "Duplicate File",
            "This file has already been added.",
            exc.path,
        )
    if isinstance(exc, UnknownFileError):
        return ErrorReport("Unknown File", "This file has not been added.", exc.path)
    if isinstance(exc, SystemTagProtectedError):
        return ErrorReport(
            "Protected Tag",
            f"System tags cannot be changed this way ({exc.action}).",
            exc.name,
        )
    if isinstance(exc, BootstrapFailure):
        return ErrorReport(
            "Database Error",
            "Failed to initialize the tag database.",
            str(exc.cause),
        )
    if isinstance(exc, TransactionFailure):
        return ErrorReport(
            "Database Error",
            f"Could not complete: {exc.action}. No changes were saved.",
            str(exc.cause),
        )
    return ErrorReport("Error", str(exc) or type(exc).__name__)


def _error_log_path(store_path=None) -> Path:
    """Resolve error log path: explicit store, then TAGKEEP_STORE_PATH, then ~/.tagkeep."""
    if store_path is not None:
        return Path(store_path).expanduser() / "tagkeep-errors.log"
    store = os.environ.get("TAGKEEP_STORE_PATH")
    if store:
        return Path(store) / "tagkeep-errors.log"
    return Path.home() / ".tagkeep" / "tagkeep-errors.log"


def log_exception(exc: Exception, context: str = "", store_path=None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory to log into (default: the default store)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
