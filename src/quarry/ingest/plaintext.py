"""Plain text chunker — blank-line paragraphs, packed up to chunk_size."""

from __future__ import annotations

import re

from quarry.ingest.base import BaseChunker

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


class PlainTextChunker(BaseChunker):
    """Split plain text on blank lines; oversized paragraphs use a sliding window."""

    def _split_units(self, content: str) -> list[str]:
        paragraphs = (p.strip() for p in _PARAGRAPH_BREAK_RE.split(content))
        return [p for p in paragraphs if p]
