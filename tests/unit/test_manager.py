"""Tests for KnowledgeManager — the public facade."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import numpy as np
import pytest

from quarry.config import ChunkingCfg, CollectionCfg, EmbeddingCfg, KnowledgeConfig, SearchCfg
from quarry.db.repository import Repository
from quarry.db.vectors import DimensionMismatchError
from quarry.ingest.embedder import EmbeddingError, LiteLLMEmbedder
from quarry.ingest.importer import FileImporter, ImportResult, source_key
from quarry.manager import KnowledgeManager, build_embedder, open_manager

# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------

_VOCAB = ["cat", "feline", "kitten", "dog", "puppy", "tax", "invoice", "sqlite"]


class _KeywordEmbedder:
    """Maps texts onto a tiny fixed vocabulary; cat words share one axis."""

    model = "fake/keywords"

    def __init__(self):
        self.calls = 0

    def embed_many(self, texts):
        self.calls += 1
        vectors = []
        for text in texts:
            lowered = text.lower()
            vec = np.zeros(4, dtype=np.float32)
            vec[0] = sum(lowered.count(w) for w in ("cat", "feline", "kitten"))
            vec[1] = sum(lowered.count(w) for w in ("dog", "puppy"))
            vec[2] = sum(lowered.count(w) for w in ("tax", "invoice"))
            vec[3] = 0.01
            vectors.append(vec)
        return vectors


class _FailingEmbedder:
    model = "fake/down"

    def embed_many(self, texts):
        raise EmbeddingError("provider unavailable")


class _WideEmbedder:
    model = "fake/wide"

    def embed_many(self, texts):
        return [np.ones(16, dtype=np.float32) for _ in texts]


def _config(**kwargs) -> KnowledgeConfig:
    kwargs.setdefault("chunking", ChunkingCfg(chunk_size=200, chunk_overlap=20))
    return KnowledgeConfig(**kwargs)


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def manager(repo):
    km = KnowledgeManager(repo, _config(), embedder=_KeywordEmbedder())
    km.initialize()
    return km


@pytest.fixture
def lexical_manager(repo):
    km = KnowledgeManager(repo, _config())
    km.initialize()
    return km


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------


def test_initialize_is_idempotent(repo):
    km = KnowledgeManager(repo, _config())
    km.initialize()
    km.initialize()
    assert repo.list_collections() == []


class _CountingImporter(FileImporter):
    def __init__(self, repo):
        super().__init__(repo)
        self.crawls = 0

    def import_directory(self, directory, options, cancel=None):
        self.crawls += 1
        return super().import_directory(directory, options, cancel)


class _BrokenImporter(FileImporter):
    """Fails on directories named ``broken``; imports everything else."""

    def import_directory(self, directory, options, cancel=None):
        if Path(directory).name == "broken":
            raise sqlite3.OperationalError("disk I/O error")
        return super().import_directory(directory, options, cancel)


def test_initialize_indexes_configured_collections(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.md").write_text("# A\n\nalpha", encoding="utf-8")
    (docs / "b.txt").write_text("bravo", encoding="utf-8")
    cfg = _config(enabled=True, collections=[CollectionCfg("docs", [str(docs)], "Docs")])

    km = KnowledgeManager(repo, cfg)
    result = km.initialize()

    assert result.files_processed == 2
    assert repo.get_collection("docs").description == "Docs"
    assert repo.count_chunks() == 2


def test_second_initialize_does_not_crawl(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("alpha", encoding="utf-8")
    importer = _CountingImporter(repo)
    cfg = _config(enabled=True, collections=[CollectionCfg("docs", [str(docs)])])
    km = KnowledgeManager(repo, cfg, importer=importer)

    km.initialize()
    (docs / "a.txt").write_text("alpha changed", encoding="utf-8")
    second = km.initialize()

    assert importer.crawls == 1
    assert second == ImportResult()
    assert [c.content for c in repo.chunks_by_source_file(source_key(docs / "a.txt"))] == ["alpha"]


def test_initialize_without_index_only_migrates(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("alpha", encoding="utf-8")
    importer = _CountingImporter(repo)
    cfg = _config(enabled=True, collections=[CollectionCfg("docs", [str(docs)])])
    km = KnowledgeManager(repo, cfg, importer=importer)

    km.initialize(index=False)
    result = km.reindex()

    assert importer.crawls == 1
    assert result.files_processed == 1


def test_failing_directory_does_not_stop_other_collections(repo, tmp_path, caplog):
    broken = tmp_path / "broken"
    good = tmp_path / "good"
    broken.mkdir()
    good.mkdir()
    (good / "g.txt").write_text("good note", encoding="utf-8")
    cfg = _config(
        enabled=True,
        collections=[CollectionCfg("first", [str(broken)]), CollectionCfg("second", [str(good)])],
    )
    km = KnowledgeManager(repo, cfg, importer=_BrokenImporter(repo))

    result = km.initialize()

    assert result.files_failed == 1
    assert result.files_processed == 1
    assert repo.count_chunks(repo.get_collection("second").id) == 1
    assert "disk I/O error" in caplog.text


def test_disabled_config_does_not_index(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.md").write_text("alpha", encoding="utf-8")
    cfg = _config(enabled=False, collections=[CollectionCfg("docs", [str(docs)])])

    km = KnowledgeManager(repo, cfg)
    km.initialize()

    assert km.is_enabled() is False
    assert repo.count_chunks() == 0


def test_reload_swaps_config_and_indexes(lexical_manager, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "n.txt").write_text("note", encoding="utf-8")
    cfg = _config(enabled=True, collections=[CollectionCfg("notes", [str(docs)])])

    result = lexical_manager.reload(cfg, embedder=_KeywordEmbedder())

    assert lexical_manager.is_enabled() is True
    assert lexical_manager.config is cfg
    assert result.files_processed == 1
    assert lexical_manager.repo.chunks_with_embedding() != []


def test_reload_builds_embedder_from_config(lexical_manager):
    lexical_manager.reload(_config(embedding=EmbeddingCfg(model="openai/text-embedding-3-small")))
    assert isinstance(lexical_manager.embedder, LiteLLMEmbedder)


def test_build_embedder():
    assert build_embedder(EmbeddingCfg()) is None
    embedder = build_embedder(EmbeddingCfg(model="ollama/nomic", num_retries=1, batch_size=8))
    assert embedder.model == "ollama/nomic"
    assert embedder.batch_size == 8


def test_open_manager(tmp_path):
    with open_manager(tmp_path / "kb.db", _config()) as km:
        km.initialize()
        assert km.embedder is None
        assert km.add_text("persisted text") == 1

    with open_manager(tmp_path / "kb.db", _config()) as km:
        km.initialize()
        assert len(km.search("persisted")) == 1


# ------------------------------------------------------------------
# add_text / add_document / remove_document
# ------------------------------------------------------------------


def test_add_text_creates_default_collection(manager):
    assert manager.add_text("a cat on a mat") == 1
    assert [s.name for s in manager.list_collections()] == ["default"]


def test_add_text_into_named_collection_with_title(manager):
    manager.add_text("puppy training", collection_name="pets", title="Dogs")
    (chunk,) = manager.repo.chunks_by_collection(manager.repo.get_collection("pets").id)
    assert chunk.source_title == "Dogs"
    assert chunk.is_embedded


def test_add_empty_text_returns_zero(manager):
    assert manager.add_text("   ") == 0
    assert manager.repo.count_chunks() == 0


def test_add_text_uses_configured_chunking(repo):
    km = KnowledgeManager(repo, _config(chunking=ChunkingCfg(chunk_size=50, chunk_overlap=10)))
    km.initialize()
    assert km.add_text("\n\n".join(["w" * 40] * 3)) == 3


def test_add_text_with_failing_embedder_stores_lexical_only(repo):
    km = KnowledgeManager(repo, _config(), embedder=_FailingEmbedder())
    km.initialize()
    assert km.add_text("still stored") == 1
    assert repo.chunks_with_embedding() == []


def test_add_text_dimension_mismatch_propagates(manager, repo):
    manager.add_text("cat")
    wide = KnowledgeManager(repo, _config(), embedder=_WideEmbedder())
    with pytest.raises(DimensionMismatchError):
        wide.add_text("dog")
    assert repo.count_chunks() == 1


def test_add_document(manager, tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# Guide\n\nsqlite tips", encoding="utf-8")

    assert manager.add_document(path, collection_name="guides") == 1
    (chunk,) = manager.repo.chunks_by_source_file(source_key(path))
    assert chunk.source_title == "guide"


def test_add_document_twice_replaces(manager, tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("v1", encoding="utf-8")
    manager.add_document(path)
    path.write_text("v2", encoding="utf-8")
    manager.add_document(path)
    assert [c.content for c in manager.repo.chunks_by_source_file(source_key(path))] == ["v2"]


def test_remove_document(manager):
    manager.add_text("remove me")
    (chunk,) = manager.repo.chunks_by_collection(manager.repo.get_collection("default").id)
    assert manager.remove_document(chunk.id) is True
    assert manager.remove_document(chunk.id) is False


# ------------------------------------------------------------------
# Reindexing
# ------------------------------------------------------------------


def test_reindex_file_keeps_original_collection(manager, tmp_path):
    path = tmp_path / "pets.txt"
    path.write_text("kitten", encoding="utf-8")
    manager.add_document(path, collection_name="pets")
    path.write_text("kitten\n\n" + "older cat " * 20, encoding="utf-8")

    assert manager.reindex_file(path) == 2
    pets = manager.repo.get_collection("pets")
    assert manager.repo.count_chunks(pets.id) == 2


def test_reindex_file_never_indexed(manager, tmp_path):
    path = tmp_path / "new.txt"
    path.write_text("fresh", encoding="utf-8")
    assert manager.reindex_file(path) == 0
    assert manager.repo.count_chunks() == 0


def test_reindex_rebuilds_and_imports(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("alpha", encoding="utf-8")
    km = KnowledgeManager(repo, _config(enabled=True, collections=[CollectionCfg("docs", [str(docs)])]))
    km.initialize()
    (docs / "b.txt").write_text("bravo", encoding="utf-8")

    result = km.reindex()

    assert result.files_processed == 1
    assert result.files_skipped == 1
    assert len(km.search("alpha")) == 1
    assert len(km.search("bravo")) == 1


def test_reindex_cancelled(repo, tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("alpha", encoding="utf-8")
    km = KnowledgeManager(repo, _config(collections=[CollectionCfg("docs", [str(docs)])]))
    km.initialize()
    cancel = threading.Event()
    cancel.set()

    result = km.reindex(cancel=cancel)

    assert result.cancelled is True
    assert repo.count_chunks() == 0


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


def test_hybrid_search_finds_semantic_match(manager):
    manager.add_text("feline behaviour explained", collection_name="pets")
    manager.add_text("filing your tax invoice", collection_name="admin")

    results = manager.search("kitten")

    assert results[0].content == "feline behaviour explained"
    assert results[0].collection_name == "pets"


def test_search_scoped_to_collection(manager):
    manager.add_text("cat facts", collection_name="pets")
    manager.add_text("cat tax", collection_name="admin")
    results = manager.search("cat", collection_name="admin")
    assert [r.content for r in results] == ["cat tax"]


def test_search_unknown_collection_returns_empty(manager):
    manager.add_text("cat")
    assert manager.search("cat", collection_name="missing") == []


def test_search_limit_defaults_to_config(repo):
    km = KnowledgeManager(repo, _config(search=SearchCfg(limit=2)))
    km.initialize()
    for i in range(5):
        km.add_text(f"sqlite note {i}")
    assert len(km.search("sqlite")) == 2
    assert len(km.search("sqlite", limit=4)) == 4


def test_search_degrades_when_query_embedding_fails(repo, caplog):
    writer = KnowledgeManager(repo, _config(), embedder=_KeywordEmbedder())
    writer.initialize()
    writer.add_text("cat and dog")
    assert repo.chunks_with_embedding() != []

    reader = KnowledgeManager(repo, _config(), embedder=_FailingEmbedder())
    results = reader.search("dog")

    assert [r.content for r in results] == ["cat and dog"]
    assert "lexical" in caplog.text


def test_search_degrades_on_dimension_mismatch(manager, repo, caplog):
    manager.add_text("cat and dog")
    wide = KnowledgeManager(repo, _config(), embedder=_WideEmbedder())

    results = wide.search("dog")

    assert [r.content for r in results] == ["cat and dog"]
    assert "dimensions" in caplog.text


def test_search_without_embedder_is_lexical(lexical_manager):
    lexical_manager.add_text("sqlite full text search")
    lexical_manager.add_text("unrelated")
    results = lexical_manager.search("search")
    assert [r.content for r in results] == ["sqlite full text search"]


# ------------------------------------------------------------------
# Collections
# ------------------------------------------------------------------


def test_create_list_delete_collection(manager):
    manager.create_collection("empty", description="nothing yet")
    manager.add_text("cat", collection_name="pets")

    stats = {s.name: s.chunk_count for s in manager.list_collections()}
    assert stats == {"empty": 0, "pets": 1}

    assert manager.delete_collection("pets") is True
    assert manager.delete_collection("pets") is False
    assert manager.repo.count_chunks() == 0


def test_create_duplicate_collection(manager):
    manager.create_collection("docs")
    with pytest.raises(sqlite3.IntegrityError):
        manager.create_collection("docs")


# ------------------------------------------------------------------
# Embedding backfill
# ------------------------------------------------------------------


def test_embed_pending_backfills(repo):
    lexical = KnowledgeManager(repo, _config())
    lexical.initialize()
    for i in range(5):
        lexical.add_text(f"cat note {i}")

    km = KnowledgeManager(repo, _config(), embedder=_KeywordEmbedder())
    assert km.embed_pending(batch_size=2) == 5
    assert repo.chunks_without_embedding() == []
    assert km.embedder.calls == 3


def test_clear_embeddings_then_backfill(manager):
    manager.add_text("cat note", collection_name="pets")
    manager.add_text("tax note", collection_name="admin")

    assert manager.clear_embeddings("pets") == 1
    assert manager.clear_embeddings("missing") == 0
    assert len(manager.repo.chunks_without_embedding()) == 1

    wide = KnowledgeManager(manager.repo, _config(), embedder=_WideEmbedder())
    assert wide.clear_embeddings() == 1
    assert wide.embed_pending() == 2
    assert manager.repo.embedding_dimensions() == 16


def test_embed_pending_without_embedder(lexical_manager):
    lexical_manager.add_text("cat")
    assert lexical_manager.embed_pending() == 0


def test_embed_pending_stops_on_failure(repo):
    lexical = KnowledgeManager(repo, _config())
    lexical.initialize()
    lexical.add_text("cat")
    km = KnowledgeManager(repo, _config(), embedder=_FailingEmbedder())
    assert km.embed_pending() == 0
    assert len(repo.chunks_without_embedding()) == 1
