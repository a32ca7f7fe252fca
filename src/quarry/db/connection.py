"""SQLite connection layer with optional sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec
from loguru import logger


def load_vec_extension(conn: sqlite3.Connection) -> bool:
    """Load sqlite-vec into *conn*. Returns False if the extension is unavailable.

    Some interpreter builds ship sqlite3 without extension loading; the
    database then runs without vector search.
    """
    try:
        conn.enable_load_extension(True)
        try:
            sqlite_vec.load(conn)
        finally:
            conn.enable_load_extension(False)
        conn.execute("SELECT vec_version()").fetchone()
    except (AttributeError, sqlite3.Error) as exc:
        logger.warning("sqlite-vec not available, vector search disabled: {}", exc)
        return False
    return True


class Database:
    """Single-file SQLite database with sqlite-vec vector search when available."""

    def __init__(self, db_path: Path | str) -> None:
        """*db_path* is created on first connect(). ``vec_available`` is set by connect()."""
        self.db_path = Path(db_path)
        self.vec_available = False
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection: Row factory, sqlite-vec if loadable, FKs on, WAL."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self.vec_available = load_vec_extension(conn)
        for pragma in ("foreign_keys = ON", "journal_mode = WAL", "busy_timeout = 5000"):
            conn.execute(f"PRAGMA {pragma}")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
