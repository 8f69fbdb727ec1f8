"""
Tagkeep

A local store that tags files and finds them again by tag.

Quick Start:
    from tagkeep import TagKeeper

    kp = TagKeeper()  # uses ~/.tagkeep/
    kp.add_file("~/notes/plan.md", ["Reference", "In Progress"])
    kp.get_files_by_tags(["Reference", "In Progress"])

CLI Usage:
    tagkeep add ~/notes/plan.md -t Reference
    tagkeep list -t Reference
    tagkeep reconcile

Default Store:
    ~/.tagkeep/ (created automatically).
    Override with TAGKEEP_STORE_PATH or explicit path argument.

Environment Variables:
    TAGKEEP_STORE_PATH  - Override default store location
    TAGKEEP_VERBOSE     - Set to 1 for debug logging on stderr

Four system tags (Done, In Progress, New, Missing) always exist with
fixed colors. Missing is set and cleared by reconciliation against the
filesystem.
"""

from .api import TagKeeper, normalize_path
from .errors import (
    BootstrapFailure,
    DuplicateFileError,
    SystemTagProtectedError,
    TagStoreError,
    TagValidationError,
    TransactionFailure,
    UnknownFileError,
    ValidationReason,
    describe_error,
)
from .file_store import TaggedFileStore
from .reconcile import MissingFileReconciler, ReconcileReport, HealthReport
from .types import SystemTag, Tag, TaggedFile, validate_tag_name

__version__ = "0.1.0"
__all__ = [
    "TagKeeper",
    "TaggedFileStore",
    "TaggedFile",
    "Tag",
    "SystemTag",
    "MissingFileReconciler",
    "ReconcileReport",
    "HealthReport",
    "validate_tag_name",
    "normalize_path",
    "describe_error",
    "TagStoreError",
    "TagValidationError",
    "ValidationReason",
    "DuplicateFileError",
    "UnknownFileError",
    "SystemTagProtectedError",
    "TransactionFailure",
    "BootstrapFailure",
]
