"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.db.connection import Database
from quarry.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _no_quarry_env(monkeypatch):
    """Keep QUARRY_* overrides from the developer's shell out of every test."""
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("QUARRY_DB", raising=False)
