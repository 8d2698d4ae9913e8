"""Knowledge manager — the public facade over store, chunker, embedder and search.

The manager is an explicit context object: it owns one Repository (and
through it one SQLite connection) plus an optional embedder. Nothing here is
a module-level singleton; build one with ``open_manager()`` or construct it
directly with injected collaborators (the tests do the latter).

Usage:
    config = load_config()
    with open_manager(config.database, config) as km:
        km.initialize()
        km.add_text("Notes on BM25 ranking", collection_name="notes")
        for hit in km.search("bm25"):
            print(hit.score, hit.content)
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import numpy as np

from quarry.config import EmbeddingCfg, KnowledgeConfig
from quarry.db.connection import Database
from quarry.db.models import Collection, CollectionStats
from quarry.db.repository import Repository
from quarry.db.schema import initialize as initialize_schema
from quarry.ingest.embedder import Embedder, LiteLLMEmbedder, embed_one
from quarry.ingest.importer import FileImporter, ImportOptions, ImportResult, source_key
from quarry.ingest.pipeline import ingest_text
from quarry.rag.search import SearchResult, search

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "default"


def build_embedder(cfg: EmbeddingCfg) -> Embedder | None:
    """Return a LiteLLMEmbedder for *cfg*, or None when no model is configured."""
    if not cfg.enabled:
        return None
    return LiteLLMEmbedder(cfg.model, num_retries=cfg.num_retries, batch_size=cfg.batch_size)  # type: ignore[arg-type]


class KnowledgeManager:
    """Add, remove, reindex and search documents grouped in named collections."""

    def __init__(
        self,
        repo: Repository,
        config: KnowledgeConfig | None = None,
        embedder: Embedder | None = None,
        importer: FileImporter | None = None,
    ) -> None:
        """Wire the manager to its collaborators.

        Args:
            repo: Repository over an open connection. The schema is created by
                initialize(), not here.
            config: Loaded configuration; defaults when omitted.
            embedder: Embedding provider. None means lexical-only storage and
                search.
            importer: File importer; defaults to a FileImporter on *repo*.
        """
        self._repo = repo
        self._config = config or KnowledgeConfig()
        self._embedder = embedder
        self._importer = importer or FileImporter(repo)
        self._initialized = False

    @property
    def repo(self) -> Repository:
        return self._repo

    @property
    def config(self) -> KnowledgeConfig:
        return self._config

    @property
    def embedder(self) -> Embedder | None:
        return self._embedder

    def is_enabled(self) -> bool:
        """True when the config asks for configured collections to be indexed."""
        return self._config.enabled

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, *, index: bool = True) -> ImportResult:
        """Apply schema migrations, then index configured collections if enabled.

        Only the first call does any work; later calls return an empty
        ImportResult. Use reindex() or reload() to crawl the configured
        directories again.

        Args:
            index: Set False to apply migrations without crawling the
                configured directories. The CLI passes False; only
                ``quarry reindex`` imports files.
        """
        if self._initialized:
            return ImportResult()
        initialize_schema(self._repo.conn)
        result = ImportResult()
        if index and self._config.enabled:
            result = self._index_configured_collections()
        self._initialized = True
        logger.info("Knowledge store initialised (enabled=%s)", self._config.enabled)
        return result

    def reload(self, config: KnowledgeConfig, embedder: Embedder | None = None) -> ImportResult:
        """Swap in a new configuration and re-index configured collections if enabled.

        Args:
            config: The new configuration.
            embedder: Embedder to use from now on. When omitted one is built
                from ``config.embedding``.
        """
        self._config = config
        self._embedder = embedder if embedder is not None else build_embedder(config.embedding)
        result = ImportResult()
        if config.enabled:
            result = self._index_configured_collections()
        logger.info("Knowledge configuration reloaded")
        return result

    def close(self) -> None:
        self._repo.conn.close()

    def __enter__(self) -> KnowledgeManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_text(
        self,
        content: str,
        collection_name: str = DEFAULT_COLLECTION,
        title: str | None = None,
    ) -> int:
        """Chunk, embed and store *content*. Returns the number of chunks stored.

        The collection is created on first use. Empty or whitespace-only text
        stores nothing and returns 0.

        Raises:
            DimensionMismatchError: If the embedder's vectors do not match
                those already in the store.
        """
        collection = self._repo.get_or_create_collection(collection_name)
        outcome = ingest_text(
            self._repo,
            content,
            collection.id,
            options=self._config.chunking.to_options(),
            embedder=self._embedder,
            title=title,
        )
        return outcome.chunk_count

    def add_document(self, file_path: str | Path, collection_name: str = DEFAULT_COLLECTION) -> int:
        """Index one file into *collection_name*, replacing any earlier version of it.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        collection = self._repo.get_or_create_collection(collection_name)
        return self._importer.reindex_file(file_path, self._import_options(collection.id))

    def remove_document(self, chunk_id: str) -> bool:
        """Delete a single chunk. Returns False if it did not exist."""
        return self._repo.delete_chunk(chunk_id)

    def reindex_file(self, file_path: str | Path) -> int:
        """Re-chunk a previously indexed file into the collection it already lives in.

        Returns:
            The new chunk count; 0 if the file was never indexed.
        """
        existing = self._repo.chunks_by_source_file(source_key(file_path))
        if not existing:
            logger.info("%s was never indexed, nothing to reindex", file_path)
            return 0
        options = self._import_options(existing[0].collection_id)
        return self._importer.reindex_file(file_path, options)

    def reindex(self, cancel: threading.Event | None = None) -> ImportResult:
        """Rebuild the lexical index, then re-import every configured directory."""
        self._repo.rebuild_fts_index()
        result = self._index_configured_collections(cancel)
        logger.info(
            "Reindex complete: %d files, %d chunks",
            result.files_processed,
            result.chunks_created,
        )
        return result

    def embed_pending(self, batch_size: int = 100) -> int:
        """Attach embeddings to chunks that were stored without one.

        Stops at the first embedding failure; the remaining chunks stay
        lexical-only and can be retried later.

        Returns:
            Number of chunks that received an embedding.
        """
        if self._embedder is None:
            return 0
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        total = 0
        while True:
            pending = self._repo.chunks_without_embedding(limit=batch_size)
            if not pending:
                break
            try:
                vectors = self._embedder.embed_many([c.content for c in pending])
                if len(vectors) != len(pending):
                    raise ValueError(f"got {len(vectors)} vectors for {len(pending)} chunks")
            except Exception as exc:
                logger.warning("Embedding backfill stopped after %d chunks: %s", total, exc)
                break
            self._repo.update_embeddings(
                [(c.id, np.asarray(v, dtype=np.float32)) for c, v in zip(pending, vectors)]
            )
            total += len(pending)
        return total

    def clear_embeddings(self, collection_name: str | None = None) -> int:
        """Drop stored vectors so a different embedding model can be used.

        Chunks stay searchable through the lexical index; follow up with
        embed_pending() to re-embed them with the current embedder.

        Returns:
            Number of chunks whose embedding was removed; 0 for an unknown
            collection.
        """
        collection_id: str | None = None
        if collection_name is not None:
            collection = self._repo.get_collection(collection_name)
            if collection is None:
                return 0
            collection_id = collection.id
        cleared = self._repo.clear_embeddings(collection_id)
        logger.info("Cleared %d stored embeddings", cleared)
        return cleared

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        collection_name: str | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Hybrid search across the store or one collection.

        An unknown *collection_name* yields no results. If the query cannot be
        embedded, or its vector does not match the stored dimensionality, the
        search silently degrades to the lexical channel (a warning is logged).
        """
        collection_id: str | None = None
        if collection_name is not None:
            collection = self._repo.get_collection(collection_name)
            if collection is None:
                return []
            collection_id = collection.id

        query_embedding = self._embed_query(query)
        pool = (
            self._repo.chunks_with_embedding(collection_id)
            if query_embedding is not None
            else None
        )

        settings = self._config.search
        return search(
            self._repo,
            query,
            collection_id=collection_id,
            limit=limit or settings.limit,
            query_embedding=query_embedding,
            candidate_pool=pool,
            rrf_k=settings.rrf_k,
            overfetch=settings.overfetch,
        )

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(self, name: str, description: str = "") -> Collection:
        """Create an empty collection.

        Raises:
            sqlite3.IntegrityError: If the name is taken.
        """
        return self._repo.create_collection(name, description=description)

    def delete_collection(self, name: str) -> bool:
        """Delete a collection and every chunk in it. False if it did not exist."""
        return self._repo.delete_collection(name)

    def list_collections(self) -> list[CollectionStats]:
        return self._repo.collection_stats()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _import_options(self, collection_id: str) -> ImportOptions:
        return ImportOptions(
            collection_id=collection_id,
            chunker=self._config.chunking.to_options(),
            embedder=self._embedder,
        )

    def _index_configured_collections(self, cancel: threading.Event | None = None) -> ImportResult:
        result = ImportResult()
        for coll_cfg in self._config.collections:
            collection = self._repo.get_or_create_collection(
                coll_cfg.name, description=coll_cfg.description
            )
            options = self._import_options(collection.id)
            for directory in coll_cfg.dirs:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    return result
                try:
                    result = result.merge(
                        self._importer.import_directory(directory, options, cancel)
                    )
                except Exception as exc:
                    logger.error("Import of %s into '%s' failed: %s", directory, coll_cfg.name, exc)
                    result.files_failed += 1
        return result

    def _embed_query(self, query: str) -> np.ndarray | None:
        if self._embedder is None:
            return None
        try:
            vector = embed_one(self._embedder, query)
        except Exception as exc:
            logger.warning("Query embedding failed, falling back to lexical search: %s", exc)
            return None

        stored = self._repo.embedding_dimensions()
        if stored is not None and stored != len(vector):
            logger.warning(
                "Query embedding has %d dimensions but the store holds %d; "
                "falling back to lexical search",
                len(vector),
                stored,
            )
            return None
        return vector


def open_manager(
    db_path: str | Path,
    config: KnowledgeConfig | None = None,
    embedder: Embedder | None = None,
) -> KnowledgeManager:
    """Open *db_path* and return a manager that owns the connection.

    The embedder is built from ``config.embedding`` unless one is passed in.
    Call initialize() before first use and close() when done (or use the
    manager as a context manager).
    """
    config = config or KnowledgeConfig()
    conn = Database(db_path).connect()
    if embedder is None:
        embedder = build_embedder(config.embedding)
    return KnowledgeManager(Repository(conn), config, embedder)
