"""Markdown chunker — heading-aware splits with sentence-window fallback."""

from __future__ import annotations

import re

from docdesk.db.models import Chunk
from docdesk.ingest.base import BaseChunker
from docdesk.ingest.plaintext import SentenceChunker

# Matches ATX headings H1-H6 at the start of a line.
HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)


class MarkdownChunker(BaseChunker):
    """Split Markdown on heading boundaries.

    Strategy:
    - Each heading + its following content is a *section*.
    - Content before the first heading (preamble) becomes its own section.
    - Sections within ``max_chunk_size`` are kept verbatim (newlines intact).
    - Larger sections are split with ``SentenceChunker``; sub-chunk offsets
      are shifted by the section start.
    - A document without headings falls back to ``SentenceChunker``.

    Section offsets index into the raw document.
    """

    def chunk(self, content: str, *, file_id: str = "", project_id: str = "") -> list[Chunk]:
        if not content.strip():
            return []

        sections = self._split_on_headings(content)
        fallback = SentenceChunker(max_chunk_size=self.max_chunk_size, overlap=self.overlap)
        if not sections:
            return fallback.chunk(content, file_id=file_id, project_id=project_id)

        spans: list[tuple[str, int, int]] = []
        for text, start, end in sections:
            if len(text) <= self.max_chunk_size:
                spans.append((text, start, end))
            else:
                for sub_text, sub_start, sub_end in fallback.split(text):
                    spans.append((sub_text, start + sub_start, start + sub_end))

        return self._make_chunks(spans, file_id, project_id)

    @staticmethod
    def _split_on_headings(content: str) -> list[tuple[str, int, int]]:
        """Return ``(section_text, start, end)`` per section, or [] if no headings."""
        matches = list(HEADING_RE.finditer(content))
        if not matches:
            return []

        bounds: list[tuple[int, int]] = []
        if matches[0].start() > 0:
            bounds.append((0, matches[0].start()))
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
            bounds.append((match.start(), end))

        sections: list[tuple[str, int, int]] = []
        for start, end in bounds:
            raw = content[start:end]
            text = raw.strip()
            if not text:
                continue
            lead = len(raw) - len(raw.lstrip())
            sections.append((text, start + lead, start + lead + len(text)))
        return sections
