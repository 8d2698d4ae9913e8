"""Quarry ingest pipeline — chunkers, embedder, file importer."""

from quarry.ingest.base import BaseChunker, ChunkerOptions, Segment
from quarry.ingest.chunker import chunk_document
from quarry.ingest.markdown import MarkdownChunker
from quarry.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "ChunkerOptions",
    "MarkdownChunker",
    "PlainTextChunker",
    "Segment",
    "chunk_document",
]
