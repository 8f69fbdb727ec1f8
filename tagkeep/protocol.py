"""
Protocol definition for the tag store backend.

TagKeeper depends on this interface, not on TaggedFileStore directly, so
tests and alternative backends can be injected.
"""

from typing import Iterable, Optional, Protocol, runtime_checkable

from .types import Tag, TaggedFile


@runtime_checkable
class TagStoreProtocol(Protocol):
    """
    Storage for files, tags and their associations.

    Implemented by:
    - TaggedFileStore (local SQLite)
    """

    # -- Write operations --

    def add_file(
        self,
        file: TaggedFile,
        existing_tags: Iterable[str] = ...,
    ) -> TaggedFile: ...

    def update_file_tags(self, file: TaggedFile) -> TaggedFile: ...

    def delete_file(self, path: str) -> bool: ...

    def add_tag(self, name: str, color: Optional[str] = None) -> Tag: ...

    def update_tag_color(self, name: str, color: str) -> bool: ...

    def delete_tag(self, name: str) -> bool: ...

    def delete_tag_from_file(self, path: str, name: str) -> bool: ...

    # -- Query operations --

    def get_file(self, path: str) -> Optional[TaggedFile]: ...

    def get_all_files(self) -> list[TaggedFile]: ...

    def get_files_by_tags(self, names: Iterable[str]) -> list[TaggedFile]: ...

    def get_related_files(self, path: str) -> set[str]: ...

    def get_all_tags(self) -> set[str]: ...

    def get_all_tags_with_colors(self) -> dict[str, Tag]: ...

    def counts(self) -> dict[str, int]: ...

    # -- Lifecycle --

    def close(self) -> None: ...
