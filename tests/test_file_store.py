"""
Tests for TaggedFileStore.

Covers the write paths (all-or-nothing), the AND tag filter, system-tag
protection and color persistence.
"""

import random
import sqlite3

import pytest

from tagkeep.colors import SYSTEM_TAG_COLORS, is_hex_color
from tagkeep.errors import (
    DuplicateFileError,
    SystemTagProtectedError,
    TagValidationError,
    TransactionFailure,
    UnknownFileError,
    ValidationReason,
)
from tagkeep.file_store import TaggedFileStore
from tagkeep.types import TaggedFile


def _file(path: str, *tags: str, **kwargs) -> TaggedFile:
    return TaggedFile(path, path.rsplit("/", 1)[-1], set(tags), **kwargs)


def _paths(files) -> list[str]:
    return [f.path for f in files]


# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------

class TestFreshStore:

    def test_system_tags_seeded(self, store):
        tags = store.get_all_tags_with_colors()
        assert {name: t.color for name, t in tags.items()} == SYSTEM_TAG_COLORS

    def test_empty(self, store):
        assert store.get_all_files() == []
        assert store.counts() == {"files": 0, "tags": 4, "file_tags": 0}

    def test_closed_store_rejects_use(self, store):
        store.close()
        with pytest.raises(RuntimeError):
            store.get_all_files()
        store.close()  # second close is a no-op

    def test_persists_across_reopen(self, db_path):
        with TaggedFileStore(db_path) as s:
            s.add_file(_file("/docs/a.txt", "Reference"))
            color = s.get_all_tags_with_colors()["Reference"].color
        with TaggedFileStore(db_path) as s:
            assert s.get_file("/docs/a.txt").tags == {"Reference"}
            assert s.get_all_tags_with_colors()["Reference"].color == color
            assert len(s.get_all_tags()) == 5


# -----------------------------------------------------------------------------
# Files
# -----------------------------------------------------------------------------

class TestAddFile:

    def test_round_trip(self, store):
        returned = store.add_file(_file("/docs/a.txt", "Reference", "Done"))
        stored = store.get_file("/docs/a.txt")
        assert stored.name == "a.txt"
        assert stored.tags == {"Reference", "Done"}
        assert stored.created_at == returned.created_at
        assert stored.created_at
        assert stored.last_accessed_at

    def test_explicit_timestamps_kept(self, store):
        store.add_file(_file(
            "/docs/a.txt", created_at="2024-01-02T03:04:05",
            last_accessed_at="2024-02-03T04:05:06",
        ))
        stored = store.get_file("/docs/a.txt")
        assert stored.created_at == "2024-01-02T03:04:05"
        assert stored.last_accessed_at == "2024-02-03T04:05:06"

    def test_new_tags_get_colors(self, store):
        store.add_file(_file("/docs/a.txt", "Reference", "Done"))
        tags = store.get_all_tags_with_colors()
        assert is_hex_color(tags["Reference"].color)
        assert tags["Done"].color == "#4CAF50"

    def test_untagged_file_listed(self, store):
        store.add_file(_file("/docs/a.txt"))
        [f] = store.get_all_files()
        assert f.tags == set()

    def test_duplicate_rejected_and_tags_unchanged(self, store):
        store.add_file(_file("/docs/a.txt", "Reference"))
        with pytest.raises(DuplicateFileError) as exc_info:
            store.add_file(_file("/docs/a.txt", "Other"))
        assert exc_info.value.path == "/docs/a.txt"
        assert store.get_file("/docs/a.txt").tags == {"Reference"}
        assert "Other" not in store.get_all_tags()

    def test_invalid_tag_stores_nothing(self, store):
        with pytest.raises(TagValidationError) as exc_info:
            store.add_file(_file("/docs/a.txt", "Good", "bad/tag"))
        assert exc_info.value.reason == ValidationReason.INVALID_CHARS
        assert store.get_file("/docs/a.txt") is None
        assert "Good" not in store.get_all_tags()

    def test_existing_tags_skip_validation(self, store):
        """A legacy tag that predates validation can still be applied."""
        store._conn.execute("INSERT INTO tags (tag_name, color) VALUES ('old.tag', '#123456')")
        store.add_file(_file("/docs/a.txt", "old.tag"), existing_tags={"old.tag"})
        assert store.get_file("/docs/a.txt").tags == {"old.tag"}

    def test_related_files(self, store):
        store.add_file(_file("/docs/b.txt"))
        returned = store.add_file(_file(
            "/docs/a.txt", related_paths={"/docs/b.txt", "/docs/a.txt"},
        ))
        # self-references are dropped
        assert returned.related_paths == {"/docs/b.txt"}
        assert store.get_related_files("/docs/a.txt") == {"/docs/b.txt"}
        assert store.get_file("/docs/a.txt").related_paths == {"/docs/b.txt"}
        assert store.get_related_files("/docs/b.txt") == set()

    def test_unknown_related_path_rolls_back(self, store):
        with pytest.raises(TransactionFailure) as exc_info:
            store.add_file(_file("/docs/a.txt", "Fresh", related_paths={"/nowhere.txt"}))
        assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)
        assert store.get_file("/docs/a.txt") is None
        assert "Fresh" not in store.get_all_tags()
        assert store.counts()["file_tags"] == 0


class TestUpdateFileTags:

    def test_replaces_tag_set(self, store):
        store.add_file(_file("/docs/a.txt", "Reference", "New"))
        updated = store.update_file_tags(_file("/docs/a.txt", "Done", "Archive"))
        assert updated.tags == {"Done", "Archive"}
        assert store.get_file("/docs/a.txt").tags == {"Done", "Archive"}
        # tags are detached, not deleted
        assert "Reference" in store.get_all_tags()

    def test_bumps_last_accessed(self, store):
        store.add_file(_file("/docs/a.txt", last_accessed_at="2000-01-01T00:00:00"))
        updated = store.update_file_tags(_file("/docs/a.txt", "Done"))
        assert updated.last_accessed_at > "2000-01-01T00:00:00"
        assert store.get_file("/docs/a.txt").last_accessed_at == updated.last_accessed_at

    def test_keeps_stored_colors(self, store):
        store.add_tag("Reference", "#123456")
        store.add_file(_file("/docs/a.txt"))
        store.update_file_tags(_file("/docs/a.txt", "Reference"))
        assert store.get_all_tags_with_colors()["Reference"].color == "#123456"

    def test_unknown_file(self, store):
        with pytest.raises(UnknownFileError):
            store.update_file_tags(_file("/docs/nope.txt", "Done"))
        assert store.get_file("/docs/nope.txt") is None

    def test_invalid_tag_keeps_old_tags(self, store):
        store.add_file(_file("/docs/a.txt", "Reference"))
        with pytest.raises(TagValidationError):
            store.update_file_tags(_file("/docs/a.txt", ""))
        assert store.get_file("/docs/a.txt").tags == {"Reference"}

    def test_failure_mid_transaction_rolls_back(self, store):
        """The old associations are already deleted when the write fails."""
        store.add_file(_file("/docs/a.txt", "keep1", "keep2"))
        store._conn.execute(
            "CREATE TRIGGER reject_file_update BEFORE UPDATE ON files "
            "BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        )

        with pytest.raises(TransactionFailure) as exc_info:
            store.update_file_tags(_file("/docs/a.txt", "other"))

        assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)
        assert store.get_file("/docs/a.txt").tags == {"keep1", "keep2"}
        assert "other" not in store.get_all_tags()

    def test_returns_stored_file(self, store):
        """Only path and tags are taken from the argument."""
        store.add_file(_file("/docs/b.txt"))
        store.add_file(_file(
            "/docs/a.txt", "Reference", created_at="2024-01-02T03:04:05",
            related_paths={"/docs/b.txt"},
        ))

        updated = store.update_file_tags(TaggedFile("/docs/a.txt", "wrong name", {"Done"}))

        assert updated == store.get_file("/docs/a.txt")
        assert updated.name == "a.txt"
        assert updated.created_at == "2024-01-02T03:04:05"
        assert updated.related_paths == {"/docs/b.txt"}
        assert updated.tags == {"Done"}

    def test_string_tags_rejected(self, store):
        store.add_file(_file("/docs/a.txt", "Reference"))
        with pytest.raises(TypeError):
            store.update_file_tags(TaggedFile("/docs/a.txt", "a.txt", "Done"))
        assert store.get_file("/docs/a.txt").tags == {"Reference"}


class TestDeleteFile:

    def test_removes_file_and_associations(self, store):
        store.add_file(_file("/docs/b.txt", "Reference"))
        store.add_file(_file("/docs/a.txt", "Reference", related_paths={"/docs/b.txt"}))
        assert store.delete_file("/docs/b.txt")
        assert store.get_file("/docs/b.txt") is None
        assert store.get_related_files("/docs/a.txt") == set()
        assert store.counts()["file_tags"] == 1
        # tags survive their files
        assert "Reference" in store.get_all_tags()

    def test_removes_relationships_of_source(self, store):
        store.add_file(_file("/b.txt", "Reference"))
        store.add_file(_file("/c.txt", "Reference"))
        store.add_file(_file("/a.txt", "Reference", related_paths={"/b.txt"}))
        store._conn.execute(
            "INSERT INTO file_relationships (source_file_path, related_file_path) "
            "VALUES ('/c.txt', '/a.txt')"
        )

        assert store.delete_file("/a.txt")

        [[remaining]] = store._conn.execute(
            "SELECT COUNT(*) FROM file_relationships "
            "WHERE source_file_path = '/a.txt' OR related_file_path = '/a.txt'"
        ).fetchall()
        assert remaining == 0
        assert store.get_related_files("/c.txt") == set()
        assert _paths(store.get_files_by_tags({"Reference"})) == ["/b.txt", "/c.txt"]

    def test_missing_file(self, store):
        assert not store.delete_file("/docs/nope.txt")


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------

class TestFilesByTags:

    @pytest.fixture
    def tagged(self, store):
        store.add_file(_file("/a.txt", "x", "y"))
        store.add_file(_file("/b.txt", "x"))
        store.add_file(_file("/c.txt", "y", "z"))
        return store

    def test_single_tag(self, tagged):
        assert _paths(tagged.get_files_by_tags({"x"})) == ["/a.txt", "/b.txt"]

    def test_all_tags_required(self, tagged):
        assert _paths(tagged.get_files_by_tags({"x", "y"})) == ["/a.txt"]
        assert tagged.get_files_by_tags({"x", "z"}) == []

    def test_results_carry_full_tag_sets(self, tagged):
        [a, b] = tagged.get_files_by_tags(["x"])
        assert a.tags == {"x", "y"}
        assert b.tags == {"x"}

    def test_duplicate_names_count_once(self, tagged):
        assert _paths(tagged.get_files_by_tags(["x", "x"])) == ["/a.txt", "/b.txt"]

    def test_unknown_tag(self, tagged):
        assert tagged.get_files_by_tags({"nope"}) == []

    def test_empty_filter_rejected(self, tagged):
        with pytest.raises(ValueError):
            tagged.get_files_by_tags(set())

    def test_single_string_rejected(self, tagged):
        """A bare string would otherwise be read as one tag per character."""
        with pytest.raises(TypeError):
            tagged.get_files_by_tags("x")

    def test_scenario(self, store):
        """Two files share a tag; deleting the tag empties its filter."""
        store.add_file(_file("/a.txt", "Reference"))
        store.add_file(_file("/b.txt", "Reference", "Done"), {"Reference"})
        assert _paths(store.get_files_by_tags({"Reference"})) == ["/a.txt", "/b.txt"]
        assert _paths(store.get_files_by_tags({"Done"})) == ["/b.txt"]
        assert store.delete_tag("Reference")
        assert store.get_files_by_tags({"Reference"}) == []
        assert store.get_file("/b.txt").tags == {"Done"}


# -----------------------------------------------------------------------------
# Tags
# -----------------------------------------------------------------------------

class TestAddTag:

    def test_new_tag_with_color(self, store):
        tag = store.add_tag("Reference", "#123456")
        assert tag.color == "#123456"
        assert store.get_all_tags_with_colors()["Reference"].color == "#123456"

    def test_new_tag_gets_pastel(self, store):
        tag = store.add_tag("Reference")
        assert is_hex_color(tag.color)

    def test_existing_user_tag_untouched(self, store):
        store.add_tag("Reference", "#123456")
        tag = store.add_tag("Reference", "#654321")
        assert tag.color == "#123456"
        assert store.get_all_tags_with_colors()["Reference"].color == "#123456"

    def test_system_tag_color_reset(self, store):
        store._conn.execute("UPDATE tags SET color = '#000000' WHERE tag_name = 'Done'")
        tag = store.add_tag("Done", "#111111")
        assert tag.color == "#4CAF50"
        assert store.get_all_tags_with_colors()["Done"].color == "#4CAF50"

    def test_invalid_color(self, store):
        with pytest.raises(TagValidationError) as exc_info:
            store.add_tag("Reference", "red")
        assert exc_info.value.reason == ValidationReason.INVALID_COLOR
        assert "Reference" not in store.get_all_tags()

    def test_invalid_name(self, store):
        with pytest.raises(TagValidationError):
            store.add_tag("x" * 51)

    def test_sorted_list(self, store):
        store.add_tag("alpha")
        assert store.get_all_tags_list() == sorted(store.get_all_tags())
        assert "alpha" in store.get_all_tags_list()


class TestUpdateTagColor:

    def test_user_tag(self, store):
        store.add_tag("Reference", "#123456")
        assert store.update_tag_color("Reference", "#ABCDEF")
        assert store.get_all_tags_with_colors()["Reference"].color == "#ABCDEF"

    def test_unknown_tag(self, store):
        assert not store.update_tag_color("nope", "#ABCDEF")

    def test_system_tag_protected(self, store):
        with pytest.raises(SystemTagProtectedError) as exc_info:
            store.update_tag_color("New", "#ABCDEF")
        assert exc_info.value.action == "recolor"
        assert store.get_all_tags_with_colors()["New"].color == "#2196F3"

    def test_bad_color(self, store):
        store.add_tag("Reference")
        with pytest.raises(TagValidationError):
            store.update_tag_color("Reference", "#12345")


class TestDeleteTag:

    def test_detaches_from_files(self, store):
        store.add_file(_file("/a.txt", "Reference", "New"))
        assert store.delete_tag("Reference")
        assert store.get_file("/a.txt").tags == {"New"}
        assert "Reference" not in store.get_all_tags()

    def test_unknown_tag(self, store):
        assert not store.delete_tag("nope")

    @pytest.mark.parametrize("name", ["Done", "In Progress", "New", "Missing"])
    def test_system_tags_protected(self, store, name):
        store.add_file(_file("/a.txt", name))
        with pytest.raises(SystemTagProtectedError):
            store.delete_tag(name)
        assert name in store.get_all_tags()
        assert store.get_file("/a.txt").tags == {name}


class TestDeleteTagFromFile:

    def test_removes_one_association(self, store):
        store.add_file(_file("/a.txt", "Reference", "New"))
        assert store.delete_tag_from_file("/a.txt", "Reference")
        assert store.get_file("/a.txt").tags == {"New"}
        assert "Reference" in store.get_all_tags()

    def test_no_such_pair(self, store):
        store.add_file(_file("/a.txt", "New"))
        assert not store.delete_tag_from_file("/a.txt", "Reference")
        assert not store.delete_tag_from_file("/nope.txt", "New")


class TestColorlessTags:
    """Tags stored without a color (older databases)."""

    def test_reported_color_not_persisted(self, store):
        store._conn.execute("INSERT INTO tags (tag_name, color) VALUES ('Plain', NULL)")
        assert is_hex_color(store.get_all_tags_with_colors()["Plain"].color)
        row = store._conn.execute("SELECT color FROM tags WHERE tag_name = 'Plain'").fetchone()
        assert row[0] is None

    def test_color_assigned_on_use(self, store):
        store._conn.execute("INSERT INTO tags (tag_name, color) VALUES ('Plain', NULL)")
        store.add_file(_file("/a.txt", "Plain"))
        row = store._conn.execute("SELECT color FROM tags WHERE tag_name = 'Plain'").fetchone()
        assert is_hex_color(row[0])

    def test_seeded_colors_are_reproducible(self, tmp_path):
        colors = []
        for i in range(2):
            with TaggedFileStore(tmp_path / f"{i}.db", rng=random.Random(5)) as s:
                colors.append(s.add_tag("Reference").color)
        assert colors[0] == colors[1]
