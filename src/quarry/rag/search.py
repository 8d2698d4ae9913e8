"""Hybrid search: BM25 (FTS5) + cosine over stored embeddings, fused via RRF.

The lexical channel always runs. The vector channel runs only when the
caller supplies a query embedding and a pool of embedded chunks (see
Repository.chunks_with_embedding). With a single channel the lexical
ranking is returned as-is; with both they are merged by rrf_fusion().

Each channel fetches ``limit * overfetch`` candidates so fusion has material
to re-rank beyond the final cut.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from quarry.db.models import Chunk
from quarry.db.repository import Repository
from quarry.rag.similarity import RRF_K, RankedItem, rank_by_similarity, rrf_fusion

logger = logging.getLogger(__name__)

OVERFETCH = 3


@dataclass
class SearchResult:
    """A retrieved chunk with its final score (RRF when fused, BM25 otherwise)."""

    chunk_id: str
    score: float
    content: str
    source_title: str | None
    collection_id: str
    source_file: str | None = None
    collection_name: str | None = None


def search(
    repo: Repository,
    query: str,
    collection_id: str | None = None,
    limit: int = 5,
    query_embedding: np.ndarray | None = None,
    candidate_pool: Sequence[Chunk] | None = None,
    *,
    rrf_k: int = RRF_K,
    overfetch: int = OVERFETCH,
) -> list[SearchResult]:
    """Run hybrid retrieval and return the top *limit* results, best-first.

    Args:
        repo: Open repository.
        query: Free-text query (used verbatim for the lexical channel).
        collection_id: Restrict both channels to one collection.
        limit: Maximum number of results.
        query_embedding: Query vector; omit for lexical-only search.
        candidate_pool: Embedded chunks to score against *query_embedding*.
        rrf_k: RRF constant.
        overfetch: Per-channel breadth multiplier applied to *limit*.

    Raises:
        ValueError: If *limit* or *overfetch* is < 1.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if overfetch < 1:
        raise ValueError("overfetch must be >= 1")
    breadth = limit * overfetch

    lexical = [
        RankedItem(id=cid, score=score)
        for cid, score in repo.search_fts(query, collection_id=collection_id, limit=breadth)
    ]

    vector: list[RankedItem] = []
    pool: dict[str, Chunk] = {}
    if query_embedding is not None and candidate_pool:
        pool = {
            c.id: c
            for c in candidate_pool
            if c.embedding is not None
            and (collection_id is None or c.collection_id == collection_id)
        }
        vector = rank_by_similarity(
            query_embedding, [(c.id, c.embedding) for c in pool.values()], breadth
        )

    if vector:
        ranked = rrf_fusion([lexical, vector], k=rrf_k)[:limit]
        mode = "hybrid"
    else:
        ranked = lexical[:limit]
        mode = "lexical"

    results = _hydrate(repo, ranked, pool)
    logger.debug(
        "Search %r -> %d results (%s; lexical=%d, vector=%d)",
        query[:50],
        len(results),
        mode,
        len(lexical),
        len(vector),
    )
    return results


def _hydrate(
    repo: Repository, ranked: list[RankedItem], known: dict[str, Chunk]
) -> list[SearchResult]:
    """Turn ranked ids into SearchResults, dropping ids deleted in the meantime."""
    missing = [item.id for item in ranked if item.id not in known]
    chunks = {**known, **repo.get_chunks(missing)}
    names: dict[str, str | None] = {}

    results: list[SearchResult] = []
    for item in ranked:
        chunk = chunks.get(item.id)
        if chunk is None:
            continue
        if chunk.collection_id not in names:
            collection = repo.get_collection_by_id(chunk.collection_id)
            names[chunk.collection_id] = collection.name if collection else None
        results.append(
            SearchResult(
                chunk_id=chunk.id,
                score=item.score,
                content=chunk.content,
                source_title=chunk.source_title,
                collection_id=chunk.collection_id,
                source_file=chunk.source_file,
                collection_name=names[chunk.collection_id],
            )
        )
    return results
