"""Chunk → embed → persist pipeline shared by add_text and the file importer.

Each document moves through::

    UNINDEXED → CHUNKED → (EMBEDDED | EMBEDDING_FAILED) → PERSISTED

Embedding is skipped entirely when no embedder is configured. Embedding
failures never abort ingestion: the chunks are stored without vectors and
stay reachable through the lexical index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from quarry.db.models import NewChunk
from quarry.db.repository import Repository
from quarry.ingest.base import ChunkerOptions
from quarry.ingest.chunker import chunk_document
from quarry.ingest.embedder import Embedder, EmbeddingError

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    UNINDEXED = "unindexed"
    CHUNKED = "chunked"
    EMBEDDED = "embedded"
    EMBEDDING_FAILED = "embedding-failed"
    PERSISTED = "persisted"


@dataclass
class IngestOutcome:
    """Result of one ingest call.

    Attributes:
        chunk_ids: IDs of the stored chunks, in chunk_index order.
        trail: States the document passed through, in order.
    """

    chunk_ids: list[str] = field(default_factory=list)
    trail: list[IngestState] = field(default_factory=lambda: [IngestState.UNINDEXED])

    @property
    def chunk_count(self) -> int:
        return len(self.chunk_ids)

    @property
    def state(self) -> IngestState:
        return self.trail[-1]

    @property
    def embedded(self) -> bool:
        return IngestState.EMBEDDED in self.trail


def ingest_text(
    repo: Repository,
    content: str,
    collection_id: str,
    *,
    options: ChunkerOptions | None = None,
    embedder: Embedder | None = None,
    source_file: str | None = None,
    title: str | None = None,
    metadata: dict[str, Any] | None = None,
    replace: bool = False,
) -> IngestOutcome:
    """Chunk *content*, embed it if possible, and store it in one transaction.

    Args:
        repo: Open repository.
        content: Document text.
        collection_id: Owning collection.
        options: Chunk size / overlap.
        embedder: Optional embedding provider.
        source_file: Path the text came from, if any.
        title: Logical title attached to every chunk.
        metadata: Extra JSON metadata stored on every chunk.
        replace: If True (requires *source_file*), existing chunks of that file
            are swapped for the new ones atomically.

    Returns:
        IngestOutcome with the stored chunk IDs. Zero chunks is a valid outcome.

    Raises:
        ValueError: Invalid chunker options.
        DimensionMismatchError: Vectors incompatible with those already stored.
        sqlite3.Error: Storage failure (the transaction is rolled back).
    """
    if replace and source_file is None:
        raise ValueError("replace=True requires source_file")

    outcome = IngestOutcome()
    segments = chunk_document(content, options, title)
    outcome.trail.append(IngestState.CHUNKED)

    embeddings: list[np.ndarray] | None = None
    if embedder is not None and segments:
        embeddings = _embed_segments(embedder, [s.content for s in segments], source_file)
        outcome.trail.append(
            IngestState.EMBEDDED if embeddings is not None else IngestState.EMBEDDING_FAILED
        )

    inputs = [
        NewChunk(
            collection_id=collection_id,
            content=segment.content,
            chunk_index=segment.chunk_index,
            source_file=source_file,
            source_title=segment.source_title,
            embedding=embeddings[i] if embeddings is not None else None,
            metadata=dict(metadata or {}),
        )
        for i, segment in enumerate(segments)
    ]

    if replace:
        outcome.chunk_ids = repo.replace_source_file_chunks(source_file, inputs)  # type: ignore[arg-type]
    elif inputs:
        outcome.chunk_ids = repo.add_chunks(inputs)
    outcome.trail.append(IngestState.PERSISTED)

    if inputs:
        repo.touch_collection(collection_id)
    logger.debug(
        "Ingested %d chunks into %s (%s)",
        outcome.chunk_count,
        collection_id,
        " → ".join(s.value for s in outcome.trail),
    )
    return outcome


def _embed_segments(
    embedder: Embedder, texts: list[str], source_file: str | None
) -> list[np.ndarray] | None:
    """Embed *texts* in one batch; None on any failure or length mismatch."""
    label = source_file or "text"
    try:
        vectors = embedder.embed_many(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(f"got {len(vectors)} vectors for {len(texts)} chunks")
    except Exception as exc:
        # Non-fatal: store the chunks without vectors, lexical search still works.
        logger.warning("Embedding failed for %s, storing lexical-only: %s", label, exc)
        return None
    return [np.asarray(v, dtype=np.float32) for v in vectors]
