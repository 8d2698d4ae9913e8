"""Markdown chunker — heading-aware sections with fixed-window fallback."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from quarry.ingest.base import BaseChunker

# H1..H6: one to six '#' followed by whitespace at the start of a line.
HEADING_RE = re.compile(r"^(#{1,6})\s")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


@dataclass
class _Block:
    """A heading line plus its body up to the next heading of any level.

    ``level`` is 0 for the preamble before the first heading.
    """

    level: int
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class MarkdownChunker(BaseChunker):
    """Split Markdown on heading boundaries.

    Strategy:
    - A *section* is a heading plus everything up to the next heading of the
      same or a higher level, so sub-headings stay with their parent.
    - Content before the first heading (preamble) is its own section.
    - A section longer than ``chunk_size`` that has sub-headings is split at
      those sub-headings, recursively, before any fixed-window splitting.
    - Lines inside fenced code blocks are never treated as headings.
    """

    def _split_units(self, content: str) -> list[str]:
        return [u for u in self._sections(_parse_blocks(content)) if u]

    def _sections(self, blocks: list[_Block]) -> list[str]:
        units: list[str] = []
        i = 0
        while i < len(blocks):
            head = blocks[i]
            if head.level == 0:
                units.append(head.text.strip())
                i += 1
                continue

            j = i + 1
            while j < len(blocks) and blocks[j].level > head.level:
                j += 1
            group = blocks[i:j]
            text = "\n".join(b.text for b in group).strip()

            if len(text) <= self.chunk_size or len(group) == 1:
                units.append(text)
            else:
                units.append(head.text.strip())
                units.extend(self._sections(group[1:]))
            i = j
        return units


def has_markdown_headings(content: str) -> bool:
    """True if *content* has at least one heading outside fenced code."""
    return any(b.level > 0 for b in _parse_blocks(content))


def _parse_blocks(content: str) -> list[_Block]:
    blocks: list[_Block] = [_Block(level=0)]
    in_fence = False
    for line in content.split("\n"):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        match = None if in_fence else HEADING_RE.match(line)
        if match:
            blocks.append(_Block(level=len(match.group(1)), lines=[line]))
        else:
            blocks[-1].lines.append(line)

    if not blocks[0].text.strip():
        blocks.pop(0)
    return blocks
