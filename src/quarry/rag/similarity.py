"""Cosine similarity and Reciprocal Rank Fusion.

Reciprocal Rank Fusion:
  score(d) = Σ_lists 1 / (k + rank + 1)   rank is 0-based, k = 60

Only rank positions matter; the magnitude of each list's own scores is
ignored, so BM25 and cosine lists can be merged without normalisation.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

RRF_K = 60


@dataclass
class RankedItem:
    """An item id with a list-specific relevance score (higher = better)."""

    id: str
    score: float


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Return cos(a, b) in [-1, 1]; exactly 0.0 if either vector has zero magnitude.

    Raises:
        ValueError: If the vectors have different dimensionality (e.g. they
            come from different embedding models).
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimensions differ: {va.shape[0]} vs {vb.shape[0]}")

    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denominator, -1.0, 1.0))


def rank_by_similarity(
    query: Sequence[float] | np.ndarray,
    candidates: Sequence[tuple[str, np.ndarray]],
    limit: int,
) -> list[RankedItem]:
    """Score (id, vector) candidates against *query*, best first, top *limit*."""
    scored = [RankedItem(id=cid, score=cosine_similarity(query, vec)) for cid, vec in candidates]
    # sorted() is stable: equal scores keep candidate order.
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored[:limit]


def rrf_fusion(lists: Sequence[Sequence[RankedItem]], k: int = RRF_K) -> list[RankedItem]:
    """Merge ranked lists via Reciprocal Rank Fusion.

    Each input list must already be sorted best-first. Items absent from a
    list get nothing from it. Ties in fused score are broken by where the
    item first appeared: earlier list first, then lower rank.

    Raises:
        ValueError: If *k* is negative.
    """
    if k < 0:
        raise ValueError(f"k must be >= 0, got {k}")

    scores: dict[str, float] = {}
    first_seen: dict[str, tuple[int, int]] = {}

    for list_idx, ranked in enumerate(lists):
        seen_here: set[str] = set()
        for rank, item in enumerate(ranked):
            # A repeated id in one list only counts at its best rank.
            if item.id in seen_here:
                continue
            seen_here.add(item.id)
            scores[item.id] = scores.get(item.id, 0.0) + 1.0 / (k + rank + 1)
            first_seen.setdefault(item.id, (list_idx, rank))

    ordered = sorted(scores, key=lambda i: (-scores[i], first_seen[i]))
    return [RankedItem(id=i, score=scores[i]) for i in ordered]
