"""Document chunking entry point: picks the markdown or plain-text strategy."""

from __future__ import annotations

from quarry.ingest.base import BaseChunker, ChunkerOptions, Segment
from quarry.ingest.markdown import MarkdownChunker, has_markdown_headings
from quarry.ingest.plaintext import PlainTextChunker


def chunker_for(text: str, options: ChunkerOptions | None = None) -> BaseChunker:
    """Return a MarkdownChunker if *text* has headings, else a PlainTextChunker.

    Raises:
        ValueError: If *options* has an invalid size/overlap combination.
    """
    options = options or ChunkerOptions()
    cls = MarkdownChunker if has_markdown_headings(text) else PlainTextChunker
    return cls.from_options(options)


def chunk_document(
    text: str,
    options: ChunkerOptions | None = None,
    title: str | None = None,
) -> list[Segment]:
    """Split *text* into bounded, overlapping segments indexed 0..N-1."""
    chunker = chunker_for(text, options)
    return chunker.chunk(text, title=title)
