"""Embedding BLOB codec.

Vectors are stored as packed little-endian float32 so a database written on
one host reads back identically on any other.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

# Fixed byte order, independent of the host.
EMBEDDING_DTYPE = np.dtype("<f4")


class DimensionMismatchError(ValueError):
    """Raised when an embedding does not match the store's dimensionality."""


def serialize_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    """Pack *vector* into a float32 BLOB."""
    return np.asarray(vector, dtype=EMBEDDING_DTYPE).tobytes()


def deserialize_embedding(blob: bytes) -> np.ndarray:
    """Unpack a BLOB written by serialize_embedding() into a float32 array."""
    # frombuffer returns a read-only view; copy so callers own the array.
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(np.float32)


def embedding_dimensions(blob: bytes) -> int:
    """Return the number of float32 components packed in *blob*."""
    return len(blob) // EMBEDDING_DTYPE.itemsize
