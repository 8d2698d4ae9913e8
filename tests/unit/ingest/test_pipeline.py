"""Tests for the chunk → embed → persist pipeline."""

from __future__ import annotations

import numpy as np
import pytest

from quarry.db.repository import Repository
from quarry.ingest.base import ChunkerOptions
from quarry.ingest.embedder import EmbeddingError
from quarry.ingest.pipeline import IngestState, ingest_text


class _FakeEmbedder:
    model = "fake/letters"

    def __init__(self, dims=4):
        self.dims = dims
        self.calls = []

    def embed_many(self, texts):
        self.calls.append(list(texts))
        return [np.full(self.dims, float(len(t)), dtype=np.float32) for t in texts]


class _FailingEmbedder:
    model = "fake/down"

    def embed_many(self, texts):
        raise EmbeddingError("provider unavailable")


class _ShortEmbedder:
    model = "fake/short"

    def embed_many(self, texts):
        return [np.ones(4, dtype=np.float32)]


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def coll(repo):
    return repo.create_collection("docs")


_OPTS = ChunkerOptions(chunk_size=40, chunk_overlap=5)
_TEXT = "first paragraph here\n\nsecond paragraph text\n\nthird paragraph is long"


def test_ingest_without_embedder(repo, coll):
    outcome = ingest_text(repo, _TEXT, coll.id, options=_OPTS, title="T")
    assert outcome.chunk_count == 3
    assert outcome.trail == [IngestState.UNINDEXED, IngestState.CHUNKED, IngestState.PERSISTED]
    assert outcome.embedded is False
    stored = repo.chunks_by_collection(coll.id)
    assert [c.chunk_index for c in stored] == [0, 1, 2]
    assert all(c.source_title == "T" and c.embedding is None for c in stored)


def test_ingest_embeds_all_chunks_in_one_batch(repo, coll):
    embedder = _FakeEmbedder()
    outcome = ingest_text(repo, _TEXT, coll.id, options=_OPTS, embedder=embedder)
    assert len(embedder.calls) == 1
    assert len(embedder.calls[0]) == 3
    assert outcome.state is IngestState.PERSISTED
    assert IngestState.EMBEDDED in outcome.trail
    assert all(c.is_embedded for c in repo.chunks_by_collection(coll.id))


def test_embedder_failure_degrades_to_lexical(repo, coll, caplog):
    outcome = ingest_text(repo, _TEXT, coll.id, options=_OPTS, embedder=_FailingEmbedder())
    assert outcome.chunk_count == 3
    assert IngestState.EMBEDDING_FAILED in outcome.trail
    assert outcome.state is IngestState.PERSISTED
    assert all(c.embedding is None for c in repo.chunks_by_collection(coll.id))
    assert len(repo.search_fts("paragraph")) == 3
    assert "provider unavailable" in caplog.text


def test_length_mismatch_treated_as_failure(repo, coll):
    outcome = ingest_text(repo, _TEXT, coll.id, options=_OPTS, embedder=_ShortEmbedder())
    assert IngestState.EMBEDDING_FAILED in outcome.trail
    assert repo.chunks_with_embedding() == []


def test_empty_content_is_not_an_error(repo, coll):
    embedder = _FakeEmbedder()
    outcome = ingest_text(repo, "   \n ", coll.id, embedder=embedder)
    assert outcome.chunk_count == 0
    assert outcome.state is IngestState.PERSISTED
    assert embedder.calls == []
    assert repo.count_chunks() == 0


def test_metadata_and_source_file_stored(repo, coll):
    ingest_text(repo, "body", coll.id, source_file="/x.md", metadata={"content_hash": "h1"})
    (chunk,) = repo.chunks_by_source_file("/x.md")
    assert chunk.metadata == {"content_hash": "h1"}


def test_replace_swaps_previous_chunks(repo, coll):
    ingest_text(repo, "old text", coll.id, source_file="/x.md")
    outcome = ingest_text(repo, "new text", coll.id, source_file="/x.md", replace=True)
    assert [c.id for c in repo.chunks_by_source_file("/x.md")] == outcome.chunk_ids
    assert repo.chunks_by_source_file("/x.md")[0].content == "new text"


def test_replace_with_empty_content_clears_file(repo, coll):
    ingest_text(repo, "old text", coll.id, source_file="/x.md")
    ingest_text(repo, "", coll.id, source_file="/x.md", replace=True)
    assert repo.chunks_by_source_file("/x.md") == []


def test_replace_requires_source_file(repo, coll):
    with pytest.raises(ValueError, match="source_file"):
        ingest_text(repo, "text", coll.id, replace=True)


def test_ingest_touches_collection(repo, coll):
    with repo.conn:
        repo.conn.execute(
            "UPDATE collections SET updated_at = '2000-01-01 00:00:00' WHERE id = ?", (coll.id,)
        )
    ingest_text(repo, "text", coll.id)
    assert repo.get_collection_by_id(coll.id).updated_at != "2000-01-01 00:00:00"
