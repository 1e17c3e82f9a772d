"""SQLite-based storage for mdnotes pages and blocks.

This module owns the database file: connection handling, transactions and
the schema. Record-level CRUD lives in ``mdnotes.blocks.blocks_db``; every
function there takes a ``NotesDB`` as its first argument, so several
databases can be open in one process and tests can use a throwaway file.

Transactions:
    ``NotesDB.transaction()`` starts ``BEGIN IMMEDIATE`` on the outermost
    call and is reentrant, so a structural operation that calls other
    store operations still commits (or rolls back) as one unit. A per-store
    lock serializes operations issued from different threads.

Errors:
    Every ``sqlite3.Error`` is translated at this boundary into
    ``StorageUnavailableError`` (retryable) or ``IntegrityError``.

Schema versions:
- v1: pages, blocks, block_properties
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import DatabaseError, IntegrityError, StorageUnavailableError
from .settings import settings

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

MEMORY = ":memory:"


def default_db_path() -> Path:
    """Get the path to the notes database."""
    base = Path(os.environ.get("MDNOTES_DATA_DIR", settings.data_dir))
    return base / "notes" / "notes.db"


class NotesDB:
    """Handle on one notes database file.

    Args:
        db_path: Database file, ``":memory:"`` for a private in-memory
            database, or None for the configured default location.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        if db_path is None:
            db_path = default_db_path()
        self.path = db_path if db_path == MEMORY else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    def __repr__(self) -> str:
        return f"NotesDB({str(self.path)!r})"

    def __enter__(self) -> NotesDB:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        if self.path != MEMORY:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are issued explicitly.
        conn = sqlite3.connect(str(self.path), check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def connection(self) -> sqlite3.Connection:
        """Get the open connection, creating the schema on first use."""
        with self._lock:
            if self._conn is None:
                try:
                    conn = self._connect()
                    _init_schema(conn)
                except (sqlite3.Error, OSError) as e:
                    logger.error("Cannot open notes database %s: %s", self.path, e)
                    raise StorageUnavailableError(
                        f"Cannot open notes database: {e}",
                        operation="open",
                        path=str(self.path),
                    ) from e
                self._conn = conn
                logger.debug("Opened notes database %s", self.path)
            return self._conn

    def close(self) -> None:
        """Close the connection. The next operation reopens it."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error as e:
                    logger.warning("Error closing notes database %s: %s", self.path, e)
                self._conn = None
                self._depth = 0

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only access with error translation."""
        with self._lock:
            conn = self.connection()
            try:
                yield conn
            except sqlite3.Error as e:
                raise self._translate(e, "read") from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a write transaction.

        Nested calls join the outermost transaction.
        """
        with self._lock:
            conn = self.connection()

            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise self._translate(e, "begin") from e

            self._depth = 1
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException as e:
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error as rollback_error:
                        logger.error("Rollback failed: %s", rollback_error)
                if isinstance(e, sqlite3.Error):
                    raise self._translate(e, "write") from e
                raise
            finally:
                self._depth = 0

    def _translate(self, exc: sqlite3.Error, operation: str) -> DatabaseError:
        if isinstance(exc, sqlite3.IntegrityError):
            return IntegrityError(f"Constraint violated: {exc}", constraint=str(exc))
        logger.error("Notes database %s failed during %s: %s", self.path, operation, exc)
        return StorageUnavailableError(
            f"Notes database unavailable: {exc}",
            operation=operation,
            path=str(self.path),
        )

    def schema_version(self) -> int:
        """Return the schema version recorded in the database."""
        with self.reader() as conn:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return int(row[0]) if row else 0


# =============================================================================
# Schema
# =============================================================================


def _init_schema(conn: sqlite3.Connection) -> None:
    """Create the schema on a fresh database; an initialized one is left as is."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    )
    if cursor.fetchone() is not None:
        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        if row is not None:
            if row[0] != SCHEMA_VERSION:
                logger.warning(
                    "Notes database is at schema v%s, this build expects v%s", row[0], SCHEMA_VERSION
                )
            return

    conn.executescript("""
        BEGIN;

        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        -- Pages: one document each, optionally nested under another page
        CREATE TABLE IF NOT EXISTS pages (
            page_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            icon TEXT,
            cover_image TEXT,
            is_favorite INTEGER NOT NULL DEFAULT 0,
            parent_page_id TEXT REFERENCES pages(page_id) ON DELETE SET NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_pages_parent ON pages(parent_page_id);

        -- Blocks: child_ids is a JSON array, the authoritative child order.
        -- placed_seq grows every time a block is created or moved and breaks
        -- ties between siblings that share a position.
        CREATE TABLE IF NOT EXISTS blocks (
            id TEXT PRIMARY KEY,
            page_id TEXT NOT NULL REFERENCES pages(page_id) ON DELETE CASCADE,
            type TEXT NOT NULL DEFAULT 'text',
            content TEXT NOT NULL DEFAULT '',
            parent_id TEXT,
            child_ids TEXT NOT NULL DEFAULT '[]',
            position INTEGER NOT NULL DEFAULT 0,
            placed_seq INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_blocks_page_parent ON blocks(page_id, parent_id, position);
        CREATE INDEX IF NOT EXISTS idx_blocks_parent ON blocks(parent_id);

        CREATE TABLE IF NOT EXISTS block_properties (
            block_id TEXT NOT NULL REFERENCES blocks(id) ON DELETE CASCADE,
            key TEXT NOT NULL,
            value TEXT,
            PRIMARY KEY (block_id, key)
        );

        COMMIT;
    """)

    conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
