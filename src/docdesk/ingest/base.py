"""Base chunker interface for all docdesk document types."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from docdesk.db.models import Chunk

_WS_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every run of whitespace to a single space and trim."""
    return _WS_RE.sub(" ", text).strip()


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Sizes are in characters. ``overlap`` may be configured larger than
    ``max_chunk_size``; subclasses must still always advance.
    """

    def __init__(self, max_chunk_size: int = 1000, overlap: int = 200) -> None:
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")
        if overlap < 0:
            raise ValueError("overlap must be >= 0")
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap

    @abstractmethod
    def chunk(self, content: str, *, file_id: str = "", project_id: str = "") -> list[Chunk]:
        """Split *content* into Chunk objects.

        Args:
            content: Full extracted text of the document.
            file_id: Owning file, copied onto every chunk.
            project_id: Owning project, copied onto every chunk.

        Returns:
            Ordered list of Chunk objects with sequential ``chunk_index``.
        """

    @staticmethod
    def _make_chunks(
        spans: list[tuple[str, int, int]], file_id: str, project_id: str
    ) -> list[Chunk]:
        """Convert ``(text, start, end)`` spans into sequentially indexed Chunks."""
        return [
            Chunk(
                file_id=file_id,
                project_id=project_id,
                chunk_index=i,
                text=text,
                start_offset=start,
                end_offset=end,
            )
            for i, (text, start, end) in enumerate(spans)
        ]
