"""Base chunker interface shared by the markdown and plain-text chunkers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


@dataclass(frozen=True)
class ChunkerOptions:
    """Chunk size and overlap, both in characters."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP


@dataclass
class Segment:
    """One chunker output: text, its position and the optional document title."""

    content: str
    chunk_index: int
    source_title: str | None = None


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``_split_units()`` to cut a document into structural
    units (sections or paragraphs). ``chunk()`` then packs adjacent units up to
    ``chunk_size`` characters and falls back to ``_split_fixed_window()`` for
    anything still too long.

    ``chunk_overlap >= chunk_size`` is rejected rather than clamped: the
    window would never advance.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must be >= 0")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @classmethod
    def from_options(cls, options: ChunkerOptions) -> BaseChunker:
        return cls(chunk_size=options.chunk_size, chunk_overlap=options.chunk_overlap)

    def chunk(self, content: str, title: str | None = None) -> list[Segment]:
        """Split *content* into Segments with sequential ``chunk_index``.

        Args:
            content: Full decoded text of the document.
            title: Logical document title attached to every segment.

        Returns:
            Ordered list of Segments; empty for empty or whitespace-only input.
        """
        if not content.strip():
            return []

        texts: list[str] = []
        for packed in self._pack(self._split_units(content)):
            if len(packed) <= self.chunk_size:
                texts.append(packed)
            else:
                texts.extend(self._split_fixed_window(packed))

        texts = [t for t in texts if t.strip()]
        return self._make_segments(texts, title)

    @abstractmethod
    def _split_units(self, content: str) -> list[str]:
        """Return the structural units of *content*, trimmed and non-empty."""

    def _pack(self, units: list[str]) -> list[str]:
        """Greedily merge adjacent units while the result fits in ``chunk_size``."""
        packed: list[str] = []
        buffer = ""
        for unit in units:
            if buffer and len(buffer) + 2 + len(unit) <= self.chunk_size:
                buffer = f"{buffer}\n\n{unit}"
                continue
            if buffer:
                packed.append(buffer)
            buffer = unit
        if buffer:
            packed.append(buffer)
        return packed

    def _split_fixed_window(self, text: str) -> list[str]:
        """Split *text* into ``chunk_size`` windows advancing by ``chunk_size - chunk_overlap``.

        Windows are not stripped: the last ``chunk_overlap`` characters of
        window *n* are identical to the first ``chunk_overlap`` of window *n+1*.
        """
        if len(text) <= self.chunk_size:
            return [text]

        step = self.chunk_size - self.chunk_overlap
        windows: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + self.chunk_size, length)
            windows.append(text[pos:end])
            if end >= length:
                break
            pos += step

        return windows

    @staticmethod
    def _make_segments(texts: list[str], title: str | None) -> list[Segment]:
        """Convert a list of text strings into sequentially indexed Segments."""
        return [
            Segment(content=t, chunk_index=i, source_title=title)
            for i, t in enumerate(texts)
        ]
