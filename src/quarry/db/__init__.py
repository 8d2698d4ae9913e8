"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.schema import initialize
from quarry.db.vectors import DimensionMismatchError, deserialize_embedding, serialize_embedding

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "DimensionMismatchError",
    "serialize_embedding",
    "deserialize_embedding",
]
