"""Domain models for the knowledge store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass
class Collection:
    id: str
    name: str
    description: str = ""
    source_dir: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Chunk:
    """A stored chunk.

    ``embedding`` is either a float32 vector or None. A chunk without an
    embedding is still reachable through the lexical index; only the vector
    half of hybrid search skips it.
    """

    id: str
    collection_id: str
    content: str
    chunk_index: int = 0
    source_file: str | None = None
    source_title: str | None = None
    embedding: np.ndarray | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None


@dataclass
class NewChunk:
    """Insert payload for Repository.add_chunks()."""

    collection_id: str
    content: str
    chunk_index: int
    source_file: str | None = None
    source_title: str | None = None
    embedding: np.ndarray | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CollectionStats:
    name: str
    chunk_count: int
