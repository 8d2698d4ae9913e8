"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3

from quarry.db.connection import Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".quarry.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_connect_creates_parent_dirs(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "kb.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / ".quarry.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    conn.close()


def test_wal_mode(tmp_path):
    conn = Database(tmp_path / ".quarry.db").connect()
    assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
    conn.close()


def test_row_factory_is_row(tmp_path):
    conn = Database(tmp_path / ".quarry.db").connect()
    assert conn.row_factory is sqlite3.Row
    conn.close()


def test_in_memory_database():
    db = Database(":memory:")
    conn = db.connect()
    assert conn.execute("SELECT 1").fetchone()[0] == 1
    conn.close()


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / ".quarry.db")
    with db as conn:
        conn.execute("SELECT 1")
    assert db._conn is None
