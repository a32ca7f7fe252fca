"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from quarry.db.connection import Database, load_vec_extension


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".quarry.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_vec_available_reflects_extension(tmp_path):
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    if db.vec_available:
        version = conn.execute("SELECT vec_version()").fetchone()[0]
        assert version.startswith("v")
    conn.close()


def test_missing_extension_degrades_instead_of_raising(tmp_path):
    conn = sqlite3.connect(tmp_path / "x.db")
    with patch("sqlite_vec.load", side_effect=sqlite3.OperationalError("no such module")):
        assert load_vec_extension(conn) is False
    conn.close()


def test_foreign_keys_enabled(tmp_path):
    with Database(tmp_path / ".quarry.db") as conn:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


def test_wal_journal_mode(tmp_path):
    with Database(tmp_path / ".quarry.db") as conn:
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"


def test_row_factory_set(tmp_path):
    with Database(tmp_path / ".quarry.db") as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
        conn.execute("INSERT INTO t VALUES (42)")
        assert conn.execute("SELECT x FROM t").fetchone()["x"] == 42


def test_context_manager_closes_connection(tmp_path):
    with Database(tmp_path / ".quarry.db") as conn:
        conn.execute("SELECT 1")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".quarry.db"))
    assert isinstance(db.db_path, Path)
