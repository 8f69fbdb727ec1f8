"""
Tagged-file store using SQLite.

The store is the source of truth for:
- Files (identity = absolute path, display name, timestamps)
- Tags (unique name, display color)
- The file <-> tag association
- Directed relationships between stored files

Every write runs in its own BEGIN IMMEDIATE transaction and either
commits fully or rolls back fully. Operations on the shared connection
are serialized with a lock, so reads never see a half-written change.

The schema (table and column names, cascade rules) is the on-disk
contract and stays compatible with databases written by earlier versions.
"""

import logging
import random
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .colors import SYSTEM_TAG_COLORS, default_color, is_hex_color, resolve_color
from .errors import (
    BootstrapFailure,
    DuplicateFileError,
    SystemTagProtectedError,
    TagValidationError,
    TransactionFailure,
    UnknownFileError,
    ValidationReason,
)
from .types import (
    SystemTag,
    Tag,
    TaggedFile,
    normalize_timestamp,
    tag_name_set,
    utc_now,
    validate_tag_name,
    validate_tag_names,
)

logger = logging.getLogger(__name__)

# Bump when the schema changes; migrations run in _migrate()
SCHEMA_VERSION = 1

DEFAULT_BUSY_TIMEOUT_MS = 5000

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS files (
        file_path TEXT PRIMARY KEY,
        file_name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        last_accessed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        tag_id INTEGER PRIMARY KEY AUTOINCREMENT,
        tag_name TEXT UNIQUE NOT NULL,
        color TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_tags (
        file_path TEXT,
        tag_id INTEGER,
        PRIMARY KEY (file_path, tag_id),
        FOREIGN KEY (file_path) REFERENCES files(file_path) ON DELETE CASCADE,
        FOREIGN KEY (tag_id) REFERENCES tags(tag_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_relationships (
        source_file_path TEXT,
        related_file_path TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (source_file_path, related_file_path),
        FOREIGN KEY (source_file_path) REFERENCES files(file_path) ON DELETE CASCADE,
        FOREIGN KEY (related_file_path) REFERENCES files(file_path) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_files_last_accessed ON files(last_accessed_at)",
    "CREATE INDEX IF NOT EXISTS idx_files_created_at ON files(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_tags_name ON tags(tag_name)",
)

# Tag names are joined with a separator that cannot occur in a valid name
_TAG_SEPARATOR = "\x1f"


class TaggedFileStore:
    """
    SQLite-backed store for files, tags and their associations.

    Construct one per database and pass it to every consumer; it owns its
    connection. Safe to share between threads.

    Example:
        with TaggedFileStore(Path("tagease.db")) as store:
            store.add_file(TaggedFile("/docs/a.txt", "a.txt", {"Reference"}))
            store.get_files_by_tags({"Reference"})
    """

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long to wait for another process's write lock
            rng: Random source for new tag colors (seed it for reproducible colors)

        Raises:
            BootstrapFailure: if the schema or system tags cannot be set up
        """
        self._db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._rng = rng
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    def _init_db(self) -> None:
        """Open the connection, create the schema and seed system tags.

        DDL, migration and seeding run in one transaction. Any failure
        rolls all of it back and closes the connection.
        """
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            # so every write can use BEGIN IMMEDIATE
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        except (sqlite3.Error, OSError) as e:
            self.close()
            raise BootstrapFailure(self._db_path, e) from e

        try:
            with self._transaction("initialize database"):
                for statement in _SCHEMA:
                    self._conn.execute(statement)
                self._migrate()
                self._seed_system_tags()
        except TransactionFailure as e:
            self.close()
            raise BootstrapFailure(self._db_path, e.cause) from e.cause
        logger.debug("Opened tag store %s", self._db_path)

    def _migrate(self) -> None:
        """Migrate existing databases to the current schema.

        Databases written before tag colors existed have no tags.color
        column.
        """
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return

        columns = {
            row[1] for row in self._conn.execute("PRAGMA table_info(tags)").fetchall()
        }
        if "color" not in columns:
            self._conn.execute("ALTER TABLE tags ADD COLUMN color TEXT")
            logger.info("Migrated tags table: added color column")

        self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _seed_system_tags(self) -> None:
        """Ensure each system tag exists with its canonical color.

        A system tag stored without a color, or with a stale one, is
        repaired. User tags are not touched.
        """
        for name, color in SYSTEM_TAG_COLORS.items():
            self._conn.execute(
                "INSERT OR IGNORE INTO tags (tag_name, color) VALUES (?, ?)",
                (name, color),
            )
            cursor = self._conn.execute(
                """
                UPDATE tags SET color = ?
                WHERE tag_name = ? AND (color IS NULL OR color != ?)
                """,
                (color, name, color),
            )
            if cursor.rowcount:
                logger.info("Reset color of system tag %r to %s", name, color)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run a block in one write transaction.

        Commits on success. On any failure rolls back; domain errors are
        re-raised unchanged and sqlite3 errors are wrapped in
        TransactionFailure.
        """
        with self._lock:
            conn = self._connection()
            try:
                # BEGIN IMMEDIATE acquires the write lock up front,
                # preventing another writer from interleaving
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise TransactionFailure(action, e) from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(action)
                raise TransactionFailure(action, e) from e
            except BaseException:
                self._rollback(action)
                raise

    def _rollback(self, action: str) -> None:
        if self._conn is not None and self._conn.in_transaction:
            self._conn.execute("ROLLBACK")
            logger.debug("Rolled back: %s", action)

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        """Serialize a read with writes on the shared connection."""
        with self._lock:
            yield self._connection()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Tag store is closed: {self._db_path}")
        return self._conn

    # -------------------------------------------------------------------------
    # Helpers (called inside an open transaction)
    # -------------------------------------------------------------------------

    def _stored_colors(self, conn: sqlite3.Connection) -> dict[str, Optional[str]]:
        return {
            row["tag_name"]: row["color"]
            for row in conn.execute("SELECT tag_name, color FROM tags")
        }

    def _file_exists(self, conn: sqlite3.Connection, path: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM files WHERE file_path = ?", (path,)
        ).fetchone()
        return row is not None

    def _attach_tags(
        self,
        conn: sqlite3.Connection,
        path: str,
        tags: Iterable[str],
        stored_colors: dict[str, Optional[str]],
    ) -> None:
        """Insert each tag if absent, then its association with path."""
        for name in tags:
            if name not in stored_colors or not stored_colors[name]:
                color = resolve_color(name, stored_colors, self._rng)
                conn.execute(
                    "INSERT OR IGNORE INTO tags (tag_name, color) VALUES (?, ?)",
                    (name, color),
                )
                # A tag row stored without a color gets one now
                conn.execute(
                    """
                    UPDATE tags SET color = ?
                    WHERE tag_name = ? AND (color IS NULL OR color = '')
                    """,
                    (color, name),
                )
                stored_colors[name] = color
            conn.execute(
                """
                INSERT OR IGNORE INTO file_tags (file_path, tag_id)
                SELECT ?, tag_id FROM tags WHERE tag_name = ?
                """,
                (path, name),
            )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_file(
        self,
        file: TaggedFile,
        existing_tags: Iterable[str] = frozenset(),
    ) -> TaggedFile:
        """
        Store a new file with its tags and relationships.

        Tags are created on first use. Atomic: on failure nothing of
        the file, its tags or its relationships is kept.

        Args:
            file: The file to add
            existing_tags: Tag names known to exist (skip re-validation)

        Returns:
            The stored file

        Raises:
            TagValidationError: a new tag name is invalid
            DuplicateFileError: the path is already stored
            TransactionFailure: the database rejected the write
        """
        validate_tag_names(file.tags, existing_tags)
        now = utc_now()
        created_at = file.created_at or now
        accessed_at = file.last_accessed_at or now
        related = {p for p in file.related_paths if p != file.path}

        with self._transaction(f"add file {file.path}") as conn:
            if self._file_exists(conn, file.path):
                raise DuplicateFileError(file.path)
            conn.execute(
                """
                INSERT INTO files (file_path, file_name, created_at, last_accessed_at)
                VALUES (?, ?, ?, ?)
                """,
                (file.path, file.name, created_at, accessed_at),
            )
            self._attach_tags(conn, file.path, sorted(file.tags), self._stored_colors(conn))
            for related_path in sorted(related):
                conn.execute(
                    """
                    INSERT INTO file_relationships (source_file_path, related_file_path, created_at)
                    VALUES (?, ?, ?)
                    """,
                    (file.path, related_path, now),
                )

        logger.info("Added file %s with %d tags", file.path, len(file.tags))
        return TaggedFile(
            path=file.path,
            name=file.name,
            tags=set(file.tags),
            created_at=created_at,
            last_accessed_at=accessed_at,
            related_paths=related,
        )

    def update_file_tags(self, file: TaggedFile) -> TaggedFile:
        """
        Replace a file's tag set and bump its last-accessed time.

        Tags not in ``file.tags`` are detached; new tags are created.
        Existing tags keep their stored colors. Only ``file.path`` and
        ``file.tags`` are read from the argument.

        Returns:
            The file as stored after the update

        Raises:
            TagValidationError: a tag name is invalid
            UnknownFileError: the path is not stored
            TransactionFailure: the database rejected the write
        """
        validate_tag_names(file.tags)
        now = utc_now()

        with self._transaction(f"update tags of {file.path}") as conn:
            if not self._file_exists(conn, file.path):
                raise UnknownFileError(file.path)
            conn.execute("DELETE FROM file_tags WHERE file_path = ?", (file.path,))
            self._attach_tags(conn, file.path, sorted(file.tags), self._stored_colors(conn))
            conn.execute(
                "UPDATE files SET last_accessed_at = ? WHERE file_path = ?",
                (now, file.path),
            )
            updated = self._fetch_file(conn, file.path)

        logger.info("Updated tags of %s: %s", file.path, sorted(file.tags))
        return updated

    def delete_file(self, path: str) -> bool:
        """
        Delete a file, its tag associations and its relationships.

        Children are deleted before the parent row, so this does not
        depend on ON DELETE CASCADE.

        Returns:
            True if the file was stored and is now deleted
        """
        with self._transaction(f"delete file {path}") as conn:
            conn.execute("DELETE FROM file_tags WHERE file_path = ?", (path,))
            conn.execute(
                """
                DELETE FROM file_relationships
                WHERE source_file_path = ? OR related_file_path = ?
                """,
                (path, path),
            )
            cursor = conn.execute("DELETE FROM files WHERE file_path = ?", (path,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted file %s", path)
        return deleted

    def add_tag(self, name: str, color: Optional[str] = None) -> Tag:
        """
        Create a tag, or reconcile an existing one.

        - absent: inserted with ``color`` (or a generated one); system
          tags always get their canonical color
        - present system tag: color reset to the canonical one
        - present user tag: left untouched

        Raises:
            TagValidationError: invalid name or malformed color
            TransactionFailure: the database rejected the write
        """
        validate_tag_name(name)
        if color is not None and not is_hex_color(color):
            raise TagValidationError(
                ValidationReason.INVALID_COLOR, color,
                f"Color must be #RRGGBB: {color!r}",
            )

        with self._transaction(f"add tag {name}") as conn:
            row = conn.execute(
                "SELECT color FROM tags WHERE tag_name = ?", (name,)
            ).fetchone()
            if row is None:
                if SystemTag.contains(name) or color is None:
                    color = default_color(name, self._rng)
                conn.execute(
                    "INSERT INTO tags (tag_name, color) VALUES (?, ?)", (name, color)
                )
                logger.info("Inserted new tag %r (%s)", name, color)
            elif SystemTag.contains(name):
                color = SYSTEM_TAG_COLORS[str(name)]
                conn.execute(
                    "UPDATE tags SET color = ? WHERE tag_name = ?", (color, name)
                )
            else:
                color = row["color"] or resolve_color(name, {}, self._rng)
                if not row["color"]:
                    conn.execute(
                        "UPDATE tags SET color = ? WHERE tag_name = ?", (color, name)
                    )
                logger.debug("Tag already exists: %r", name)

        return Tag(name, color)

    def update_tag_color(self, name: str, color: str) -> bool:
        """
        Set the color of a user tag.

        Returns:
            True if the tag exists and was updated

        Raises:
            TagValidationError: malformed color
            SystemTagProtectedError: system tags keep their canonical colors
        """
        if not is_hex_color(color):
            raise TagValidationError(
                ValidationReason.INVALID_COLOR, color,
                f"Color must be #RRGGBB: {color!r}",
            )
        if SystemTag.contains(name):
            raise SystemTagProtectedError(name, action="recolor")

        with self._transaction(f"update color of tag {name}") as conn:
            cursor = conn.execute(
                "UPDATE tags SET color = ? WHERE tag_name = ?", (color, name)
            )
            return cursor.rowcount > 0

    def delete_tag(self, name: str) -> bool:
        """
        Delete a user tag and detach it from every file.

        Returns:
            True if the tag existed

        Raises:
            SystemTagProtectedError: name is a system tag
        """
        if SystemTag.contains(name):
            raise SystemTagProtectedError(name)

        with self._transaction(f"delete tag {name}") as conn:
            cursor = conn.execute(
                """
                DELETE FROM file_tags
                WHERE tag_id = (SELECT tag_id FROM tags WHERE tag_name = ?)
                """,
                (name,),
            )
            detached = cursor.rowcount
            cursor = conn.execute("DELETE FROM tags WHERE tag_name = ?", (name,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted tag %r (detached from %d files)", name, detached)
        return deleted

    def delete_tag_from_file(self, path: str, name: str) -> bool:
        """
        Detach one tag from one file. No-op if the pair is not stored.

        Returns:
            True if an association was removed
        """
        with self._transaction(f"remove tag {name} from {path}") as conn:
            cursor = conn.execute(
                """
                DELETE FROM file_tags
                WHERE file_path = ? AND tag_id = (
                    SELECT tag_id FROM tags WHERE tag_name = ?
                )
                """,
                (path, name),
            )
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def _files_from_rows(self, conn: sqlite3.Connection, rows) -> list[TaggedFile]:
        files = []
        related = self._related_by_source(conn)
        for row in rows:
            tags_text = row["tags"]
            files.append(TaggedFile(
                path=row["file_path"],
                name=row["file_name"],
                tags=set(tags_text.split(_TAG_SEPARATOR)) if tags_text else set(),
                created_at=normalize_timestamp(row["created_at"]),
                last_accessed_at=normalize_timestamp(row["last_accessed_at"]),
                related_paths=related.get(row["file_path"], set()),
            ))
        return files

    def _related_by_source(self, conn: sqlite3.Connection) -> dict[str, set[str]]:
        related: dict[str, set[str]] = {}
        for row in conn.execute(
            "SELECT source_file_path, related_file_path FROM file_relationships"
        ):
            related.setdefault(row["source_file_path"], set()).add(row["related_file_path"])
        return related

    def get_all_files(self) -> list[TaggedFile]:
        """
        Every stored file with its tags, ordered by path.

        Files without tags are included with an empty tag set.
        """
        with self._reading() as conn:
            rows = conn.execute(f"""
                SELECT f.file_path, f.file_name, f.created_at, f.last_accessed_at,
                       GROUP_CONCAT(t.tag_name, '{_TAG_SEPARATOR}') AS tags
                FROM files f
                LEFT JOIN file_tags ft ON f.file_path = ft.file_path
                LEFT JOIN tags t ON ft.tag_id = t.tag_id
                GROUP BY f.file_path
                ORDER BY f.file_path
            """).fetchall()
            return self._files_from_rows(conn, rows)

    def _fetch_file(self, conn: sqlite3.Connection, path: str) -> Optional[TaggedFile]:
        rows = conn.execute(f"""
            SELECT f.file_path, f.file_name, f.created_at, f.last_accessed_at,
                   GROUP_CONCAT(t.tag_name, '{_TAG_SEPARATOR}') AS tags
            FROM files f
            LEFT JOIN file_tags ft ON f.file_path = ft.file_path
            LEFT JOIN tags t ON ft.tag_id = t.tag_id
            WHERE f.file_path = ?
            GROUP BY f.file_path
        """, (path,)).fetchall()
        files = self._files_from_rows(conn, rows)
        return files[0] if files else None

    def get_file(self, path: str) -> Optional[TaggedFile]:
        """Get one file by path, or None."""
        with self._reading() as conn:
            return self._fetch_file(conn, path)

    def get_files_by_tags(self, names: Iterable[str]) -> list[TaggedFile]:
        """
        Files carrying every one of ``names`` (AND, not OR), ordered by path.

        Raises:
            ValueError: names is empty. An empty filter has no single
                meaning here; callers decide what "no tags" selects.
            TypeError: names is a single string
        """
        wanted = sorted(tag_name_set(names))
        if not wanted:
            raise ValueError("get_files_by_tags requires at least one tag name")

        placeholders = ",".join("?" * len(wanted))
        with self._reading() as conn:
            rows = conn.execute(f"""
                SELECT f.file_path, f.file_name, f.created_at, f.last_accessed_at,
                       (SELECT GROUP_CONCAT(t2.tag_name, '{_TAG_SEPARATOR}')
                        FROM file_tags ft2 JOIN tags t2 ON ft2.tag_id = t2.tag_id
                        WHERE ft2.file_path = f.file_path) AS tags
                FROM files f
                JOIN file_tags ft ON f.file_path = ft.file_path
                JOIN tags t ON ft.tag_id = t.tag_id
                WHERE t.tag_name IN ({placeholders})
                GROUP BY f.file_path
                HAVING COUNT(DISTINCT t.tag_name) = ?
                ORDER BY f.file_path
            """, (*wanted, len(wanted))).fetchall()
            return self._files_from_rows(conn, rows)

    def get_related_files(self, path: str) -> set[str]:
        """Paths that ``path`` declares as related."""
        with self._reading() as conn:
            return {
                row["related_file_path"]
                for row in conn.execute(
                    "SELECT related_file_path FROM file_relationships WHERE source_file_path = ?",
                    (path,),
                )
            }

    def get_all_tags(self) -> set[str]:
        """All tag names."""
        with self._reading() as conn:
            return {row["tag_name"] for row in conn.execute("SELECT tag_name FROM tags")}

    def get_all_tags_list(self) -> list[str]:
        """All tag names, sorted."""
        return sorted(self.get_all_tags())

    def get_all_tags_with_colors(self) -> dict[str, Tag]:
        """
        All tags keyed by name.

        A tag stored without a color is reported with a freshly resolved
        one; nothing is written.
        """
        with self._reading() as conn:
            rows = conn.execute("SELECT tag_name, color FROM tags").fetchall()
        return {
            row["tag_name"]: Tag(
                row["tag_name"],
                row["color"] or resolve_color(row["tag_name"], {}, self._rng),
            )
            for row in rows
        }

    def counts(self) -> dict[str, int]:
        """Number of files, tags and file-tag associations."""
        with self._reading() as conn:
            return {
                "files": conn.execute("SELECT COUNT(*) FROM files").fetchone()[0],
                "tags": conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0],
                "file_tags": conn.execute("SELECT COUNT(*) FROM file_tags").fetchone()[0],
            }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        # __init__ may have failed before the lock existed
        if getattr(self, "_lock", None) is not None:
            self.close()
