"""Plain text chunker — sentence-aware sliding window with overlap."""

from __future__ import annotations

from docdesk.db.models import Chunk
from docdesk.ingest.base import BaseChunker, normalize_whitespace

# How far back from the naive boundary to look for a sentence end.
_SENTENCE_WINDOW = 100
_SENTENCE_ENDS = (". ", "? ", "! ", "\n")


class SentenceChunker(BaseChunker):
    """Split text into overlapping windows that prefer sentence boundaries.

    Strategy:
    - Collapse whitespace; empty text yields no chunks.
    - Text no longer than ``max_chunk_size`` becomes a single chunk.
    - Otherwise each window ends at ``start + max_chunk_size``, pulled back
      to the last sentence end found in the final 100 characters.
    - The next window starts ``overlap`` characters before the previous end.
      If that would not move forward (overlap >= chunk length), it starts at
      the previous end instead.

    Offsets index into the whitespace-normalized text.
    """

    def chunk(self, content: str, *, file_id: str = "", project_id: str = "") -> list[Chunk]:
        return self._make_chunks(self.split(content), file_id, project_id)

    def split(self, content: str) -> list[tuple[str, int, int]]:
        """Return ``(text, start, end)`` spans over the normalized *content*."""
        cleaned = normalize_whitespace(content)
        n = len(cleaned)
        if n == 0:
            return []
        if n <= self.max_chunk_size:
            return [(cleaned, 0, n)]

        spans: list[tuple[str, int, int]] = []
        start = 0
        while start < n:
            end = min(start + self.max_chunk_size, n)
            if end < n:
                end = self._snap_to_sentence(cleaned, start, end)

            text = cleaned[start:end].strip()
            if text:
                spans.append((text, start, end))

            if end >= n:
                break

            next_start = end - self.overlap
            if next_start <= start:
                next_start = end
            start = next_start

        return spans

    @staticmethod
    def _snap_to_sentence(cleaned: str, start: int, end: int) -> int:
        window_start = max(start, end - _SENTENCE_WINDOW)
        window = cleaned[window_start:end]
        idx = max(window.rfind(marker) for marker in _SENTENCE_ENDS)
        if idx > 0:
            return window_start + idx + 1
        return end


def chunk_text(text: str, max_chunk_size: int = 1000, overlap: int = 200) -> list[Chunk]:
    """Chunk *text* with a throwaway SentenceChunker (no file/project ids)."""
    return SentenceChunker(max_chunk_size=max_chunk_size, overlap=overlap).chunk(text)
