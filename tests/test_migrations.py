"""
Bootstrap and migration tests for TaggedFileStore.

Each test builds a database the way an earlier version wrote it, using
raw SQL, then opens it via TaggedFileStore and checks the result.
"""

import sqlite3
from pathlib import Path

import pytest

from tagkeep.colors import SYSTEM_TAG_COLORS, is_hex_color
from tagkeep.errors import BootstrapFailure
from tagkeep.file_store import SCHEMA_VERSION, TaggedFileStore


def _create_legacy_db(path: Path, files: list[tuple] = (), tags: list[str] = (),
                      file_tags: list[tuple] = ()):
    """Create a database without tags.color and without user_version."""
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE files (
            file_path TEXT PRIMARY KEY,
            file_name TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            last_accessed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE TABLE tags (
            tag_id INTEGER PRIMARY KEY AUTOINCREMENT,
            tag_name TEXT UNIQUE NOT NULL
        );
        CREATE TABLE file_tags (
            file_path TEXT,
            tag_id INTEGER,
            PRIMARY KEY (file_path, tag_id),
            FOREIGN KEY (file_path) REFERENCES files(file_path) ON DELETE CASCADE,
            FOREIGN KEY (tag_id) REFERENCES tags(tag_id) ON DELETE CASCADE
        );
        CREATE TABLE file_relationships (
            source_file_path TEXT,
            related_file_path TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (source_file_path, related_file_path),
            FOREIGN KEY (source_file_path) REFERENCES files(file_path) ON DELETE CASCADE,
            FOREIGN KEY (related_file_path) REFERENCES files(file_path) ON DELETE CASCADE
        );
    """)
    for row in files:
        conn.execute(
            "INSERT INTO files (file_path, file_name, created_at, last_accessed_at) "
            "VALUES (?, ?, ?, ?)",
            row,
        )
    for name in tags:
        conn.execute("INSERT INTO tags (tag_name) VALUES (?)", (name,))
    for path, name in file_tags:
        conn.execute(
            "INSERT INTO file_tags (file_path, tag_id) "
            "SELECT ?, tag_id FROM tags WHERE tag_name = ?",
            (path, name),
        )
    conn.commit()
    conn.close()


def _columns(db_path: Path, table: str) -> set[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    finally:
        conn.close()


class TestFreshSchema:

    def test_tables_and_indexes(self, db_path):
        TaggedFileStore(db_path).close()
        conn = sqlite3.connect(str(db_path))
        names = {
            row[0] for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type IN ('table', 'index')"
            )
        }
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        conn.close()
        assert {"files", "tags", "file_tags", "file_relationships"} <= names
        assert {"idx_files_last_accessed", "idx_files_created_at", "idx_tags_name"} <= names
        assert version == SCHEMA_VERSION

    def test_reopen_is_idempotent(self, db_path):
        for _ in range(3):
            TaggedFileStore(db_path).close()
        with TaggedFileStore(db_path) as store:
            assert store.counts()["tags"] == len(SYSTEM_TAG_COLORS)


class TestLegacyDatabase:

    def test_adds_color_column(self, db_path):
        _create_legacy_db(db_path)
        assert "color" not in _columns(db_path, "tags")
        TaggedFileStore(db_path).close()
        assert "color" in _columns(db_path, "tags")

    def test_keeps_data_and_colors_system_tags(self, db_path):
        _create_legacy_db(
            db_path,
            files=[("/docs/a.txt", "a.txt", "2023-05-01 10:00:00", "2023-06-01 10:00:00")],
            tags=["Reference", "Done"],
            file_tags=[("/docs/a.txt", "Reference"), ("/docs/a.txt", "Done")],
        )
        with TaggedFileStore(db_path) as store:
            f = store.get_file("/docs/a.txt")
            assert f.tags == {"Reference", "Done"}
            assert f.created_at == "2023-05-01T10:00:00"
            assert f.last_accessed_at == "2023-06-01T10:00:00"

            colors = {name: t.color for name, t in store.get_all_tags_with_colors().items()}
            for name, color in SYSTEM_TAG_COLORS.items():
                assert colors[name] == color
            assert is_hex_color(colors["Reference"])

    def test_epoch_millisecond_timestamps(self, db_path):
        _create_legacy_db(
            db_path,
            files=[("/docs/a.txt", "a.txt", 1700000000000, 1700000000000)],
        )
        with TaggedFileStore(db_path) as store:
            assert store.get_file("/docs/a.txt").created_at == "2023-11-14T22:13:20"

    def test_legacy_tag_names_still_readable(self, db_path):
        """Tags that predate validation are still read and filtered on."""
        _create_legacy_db(
            db_path,
            files=[("/docs/a.txt", "a.txt", None, None)],
            tags=["old.tag"],
            file_tags=[("/docs/a.txt", "old.tag")],
        )
        with TaggedFileStore(db_path) as store:
            [f] = store.get_files_by_tags({"old.tag"})
            assert f.path == "/docs/a.txt"
            assert f.created_at == ""


class TestSystemTagRepair:

    def test_stale_color_reset_on_open(self, db_path):
        TaggedFileStore(db_path).close()
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE tags SET color = '#000000' WHERE tag_name = 'Missing'")
        conn.execute("UPDATE tags SET color = NULL WHERE tag_name = 'New'")
        conn.execute("DELETE FROM tags WHERE tag_name = 'Done'")
        conn.commit()
        conn.close()

        with TaggedFileStore(db_path) as store:
            colors = {name: t.color for name, t in store.get_all_tags_with_colors().items()}
        assert colors == SYSTEM_TAG_COLORS

    def test_user_tag_colors_untouched(self, db_path):
        with TaggedFileStore(db_path) as store:
            store.add_tag("Reference", "#123456")
        with TaggedFileStore(db_path) as store:
            assert store.get_all_tags_with_colors()["Reference"].color == "#123456"


class TestBootstrapFailure:

    def test_path_is_a_directory(self, tmp_path):
        with pytest.raises(BootstrapFailure) as exc_info:
            TaggedFileStore(tmp_path)
        assert exc_info.value.cause is not None

    def test_not_a_database(self, db_path):
        db_path.write_bytes(b"this is not a database file " * 200)
        with pytest.raises(BootstrapFailure):
            TaggedFileStore(db_path)
