"""Repository for all knowledge store operations.

Single interface for: collections, chunks, embedding BLOBs and FTS5 search.
The FTS5 index is trigger-maintained (see quarry.db.migrations); every write
method here runs inside ``with self._conn:`` so a chunk mutation and its index
entry commit together or roll back together.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from collections.abc import Iterable

import numpy as np

from quarry.db.models import Chunk, Collection, CollectionStats, NewChunk
from quarry.db.vectors import (
    DimensionMismatchError,
    deserialize_embedding,
    embedding_dimensions,
    serialize_embedding,
)

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = (
    "id, collection_id, content, source_file, source_title, chunk_index, "
    "embedding, metadata, created_at"
)
_COLLECTION_COLUMNS = "id, name, description, source_dir, created_at, updated_at"

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class Repository:
    """Data access layer for collections, chunks, embeddings and the lexical index.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see quarry.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(
        self,
        name: str,
        description: str = "",
        source_dir: str | None = None,
    ) -> Collection:
        """Insert a new collection and return it.

        Raises:
            sqlite3.IntegrityError: If a collection called *name* already exists.
        """
        collection_id = uuid.uuid4().hex
        with self._conn:
            self._conn.execute(
                "INSERT INTO collections (id, name, description, source_dir) VALUES (?, ?, ?, ?)",
                (collection_id, name, description, source_dir),
            )
        created = self.get_collection_by_id(collection_id)
        assert created is not None
        return created

    def get_collection(self, name: str) -> Collection | None:
        """Return the collection called *name*, or None."""
        row = self._conn.execute(
            f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE name = ?", (name,)
        ).fetchone()
        return _row_to_collection(row) if row else None

    def get_collection_by_id(self, collection_id: str) -> Collection | None:
        """Return a collection by ID, or None."""
        row = self._conn.execute(
            f"SELECT {_COLLECTION_COLUMNS} FROM collections WHERE id = ?", (collection_id,)
        ).fetchone()
        return _row_to_collection(row) if row else None

    def get_or_create_collection(self, name: str, description: str = "") -> Collection:
        """Return the collection called *name*, creating it if missing."""
        existing = self.get_collection(name)
        if existing is not None:
            return existing
        return self.create_collection(name, description=description)

    def list_collections(self) -> list[Collection]:
        """Return all collections, newest first."""
        rows = self._conn.execute(
            f"SELECT {_COLLECTION_COLUMNS} FROM collections ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [_row_to_collection(r) for r in rows]

    def collection_stats(self) -> list[CollectionStats]:
        """Return (name, chunk_count) for every collection, newest first."""
        rows = self._conn.execute(
            """
            SELECT c.name AS name, COUNT(ch.id) AS chunk_count
            FROM collections c
            LEFT JOIN chunks ch ON ch.collection_id = c.id
            GROUP BY c.id
            ORDER BY c.created_at DESC, c.rowid DESC
            """
        ).fetchall()
        return [CollectionStats(name=r["name"], chunk_count=r["chunk_count"]) for r in rows]

    def touch_collection(self, collection_id: str) -> None:
        """Bump updated_at on a collection."""
        with self._conn:
            self._conn.execute(
                "UPDATE collections SET updated_at = datetime('now') WHERE id = ?",
                (collection_id,),
            )

    def delete_collection(self, name: str) -> bool:
        """Delete a collection and all of its chunks in one transaction.

        Returns:
            True if the collection existed, False otherwise.
        """
        collection = self.get_collection(name)
        if collection is None:
            return False
        with self._conn:
            # Explicit delete so the FTS triggers fire even without FK cascade.
            self._conn.execute(
                "DELETE FROM chunks WHERE collection_id = ?", (collection.id,)
            )
            cur = self._conn.execute("DELETE FROM collections WHERE id = ?", (collection.id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: NewChunk) -> Chunk:
        """Insert a single chunk (+ FTS entry) and return the stored row."""
        (chunk_id,) = self.add_chunks([chunk])
        stored = self.get_chunk(chunk_id)
        assert stored is not None
        return stored

    def add_chunks(self, chunks: list[NewChunk]) -> list[str]:
        """Insert *chunks* in one transaction. Returns the new chunk IDs in order.

        Raises:
            DimensionMismatchError: If the embeddings disagree with each other
                or with those already stored. Nothing is written in that case.
        """
        self._check_dimensions(c.embedding for c in chunks)
        with self._conn:
            return self._insert_chunks(chunks)

    def replace_source_file_chunks(self, source_file: str, chunks: list[NewChunk]) -> list[str]:
        """Atomically swap every chunk of *source_file* for *chunks*."""
        self._check_dimensions(c.embedding for c in chunks)
        with self._conn:
            self._conn.execute("DELETE FROM chunks WHERE source_file = ?", (source_file,))
            return self._insert_chunks(chunks)

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        """Return a chunk by ID, or None."""
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        """Return {id: chunk} for the IDs that exist."""
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" * len(chunk_ids))
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({placeholders})",  # noqa: S608
            chunk_ids,
        ).fetchall()
        return {r["id"]: _row_to_chunk(r) for r in rows}

    def chunks_by_collection(self, collection_id: str) -> list[Chunk]:
        """Return the chunks of a collection ordered by chunk_index."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE collection_id = ? ORDER BY chunk_index, rowid",
            (collection_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunks_by_source_file(self, source_file: str) -> list[Chunk]:
        """Return the chunks ingested from *source_file*, ordered by chunk_index."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE source_file = ? ORDER BY chunk_index, rowid",
            (source_file,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, collection_id: str | None = None) -> int:
        """Return the number of chunks, optionally scoped to one collection."""
        if collection_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE collection_id = ?", (collection_id,)
        ).fetchone()[0]

    def delete_chunk(self, chunk_id: str) -> bool:
        """Delete one chunk. Returns whether it existed."""
        with self._conn:
            cur = self._conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
        return cur.rowcount > 0

    def delete_chunks_by_source_file(self, source_file: str) -> int:
        """Delete every chunk of *source_file*. Returns the number deleted."""
        with self._conn:
            cur = self._conn.execute("DELETE FROM chunks WHERE source_file = ?", (source_file,))
        return cur.rowcount

    def delete_chunks_by_collection(self, collection_id: str) -> int:
        """Delete every chunk of a collection, keeping the collection itself."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM chunks WHERE collection_id = ?", (collection_id,)
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def chunks_with_embedding(self, collection_id: str | None = None) -> list[Chunk]:
        """Return every chunk carrying an embedding, optionally scoped.

        This is a full scan: cost is O(number of embedded chunks), and every
        vector is loaded into memory. Fine for the small collections this
        store targets; there is no approximate index behind it.
        """
        if collection_id is None:
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE embedding IS NOT NULL"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE embedding IS NOT NULL AND collection_id = ?",
                (collection_id,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunks_without_embedding(self, limit: int = 100) -> list[Chunk]:
        """Return up to *limit* chunks that were stored without an embedding."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE embedding IS NULL ORDER BY rowid LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def update_embedding(self, chunk_id: str, embedding: np.ndarray) -> None:
        """Attach or replace the embedding of one chunk."""
        self._check_dimensions([embedding])
        with self._conn:
            self._conn.execute(
                "UPDATE chunks SET embedding = ? WHERE id = ?",
                (serialize_embedding(embedding), chunk_id),
            )

    def update_embeddings(self, pairs: list[tuple[str, np.ndarray]]) -> None:
        """Attach embeddings to several chunks in one transaction."""
        self._check_dimensions(e for _, e in pairs)
        with self._conn:
            self._conn.executemany(
                "UPDATE chunks SET embedding = ? WHERE id = ?",
                [(serialize_embedding(e), cid) for cid, e in pairs],
            )

    def embedding_dimensions(self) -> int | None:
        """Return the dimensionality of stored embeddings, or None if there are none."""
        row = self._conn.execute(
            "SELECT embedding FROM chunks WHERE embedding IS NOT NULL LIMIT 1"
        ).fetchone()
        return embedding_dimensions(row["embedding"]) if row else None

    def clear_embeddings(self, collection_id: str | None = None) -> int:
        """Drop stored embeddings (e.g. after switching embedding model)."""
        with self._conn:
            if collection_id is None:
                cur = self._conn.execute(
                    "UPDATE chunks SET embedding = NULL WHERE embedding IS NOT NULL"
                )
            else:
                cur = self._conn.execute(
                    "UPDATE chunks SET embedding = NULL WHERE embedding IS NOT NULL AND collection_id = ?",
                    (collection_id,),
                )
        return cur.rowcount

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(
        self, query: str, collection_id: str | None = None, limit: int = 10
    ) -> list[tuple[str, float]]:
        """BM25 full-text search. Returns (chunk_id, score) sorted best-first.

        bm25() is negative with lower meaning better; the sign is flipped so
        higher scores are better, matching the vector channel. Query terms are
        quoted and OR-ed, so punctuation and FTS5 keywords in user input are
        treated as plain text.
        """
        fts_query = build_fts_query(query)
        if not fts_query:
            return []

        sql = """
            SELECT c.id AS id, chunks_fts.rank AS fts_rank
            FROM chunks_fts
            JOIN chunks c ON c.rowid = chunks_fts.rowid
            WHERE chunks_fts MATCH ?
        """
        params: list[object] = [fts_query]
        if collection_id is not None:
            sql += " AND c.collection_id = ?"
            params.append(collection_id)
        sql += " ORDER BY chunks_fts.rank LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(sql, params).fetchall()
        return [(r["id"], -r["fts_rank"]) for r in rows]

    def rebuild_fts_index(self) -> None:
        """Rebuild the FTS5 index from the chunks table (e.g. after a bulk restore)."""
        with self._conn:
            self._conn.execute("INSERT INTO chunks_fts(chunks_fts) VALUES ('rebuild')")
        logger.info("Lexical index rebuilt")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert_chunks(self, chunks: list[NewChunk]) -> list[str]:
        ids: list[str] = []
        for chunk in chunks:
            chunk_id = uuid.uuid4().hex
            self._conn.execute(
                """
                INSERT INTO chunks
                    (id, collection_id, content, source_file, source_title,
                     chunk_index, embedding, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk_id,
                    chunk.collection_id,
                    chunk.content,
                    chunk.source_file,
                    chunk.source_title,
                    chunk.chunk_index,
                    serialize_embedding(chunk.embedding) if chunk.embedding is not None else None,
                    json.dumps(chunk.metadata) if chunk.metadata else None,
                ),
            )
            ids.append(chunk_id)
        return ids

    def _check_dimensions(self, embeddings: Iterable[np.ndarray | None]) -> None:
        """Raise DimensionMismatchError unless all vectors share the store's width."""
        dims = {len(e) for e in embeddings if e is not None}
        if not dims:
            return
        if len(dims) > 1:
            raise DimensionMismatchError(
                f"Embeddings in one batch have different dimensions: {sorted(dims)}"
            )
        (incoming,) = dims
        stored = self.embedding_dimensions()
        if stored is not None and stored != incoming:
            raise DimensionMismatchError(
                f"Embedding has {incoming} dimensions but the store holds {stored}-dimensional "
                "vectors. Clear the stored embeddings (KnowledgeManager.clear_embeddings) "
                "before switching embedding model."
            )


def build_fts_query(query: str) -> str:
    """Turn free text into a safe FTS5 MATCH expression ("a" OR "b" ...)."""
    tokens = _TOKEN_RE.findall(query)
    return " OR ".join(f'"{t}"' for t in tokens)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_collection(row: sqlite3.Row) -> Collection:
    return Collection(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        source_dir=row["source_dir"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    blob = row["embedding"]
    return Chunk(
        id=row["id"],
        collection_id=row["collection_id"],
        content=row["content"],
        source_file=row["source_file"],
        source_title=row["source_title"],
        chunk_index=row["chunk_index"],
        embedding=deserialize_embedding(blob) if blob is not None else None,
        metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        created_at=row["created_at"],
    )
