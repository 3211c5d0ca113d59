"""Docdesk ingest pipeline — text extraction, chunkers, indexer."""

from docdesk.ingest.base import BaseChunker, normalize_whitespace
from docdesk.ingest.extract import detect_type, extract_text, extract_text_from_bytes
from docdesk.ingest.indexer import Indexer, ensure_embedding_model
from docdesk.ingest.markdown import MarkdownChunker
from docdesk.ingest.plaintext import SentenceChunker, chunk_text

__all__ = [
    "BaseChunker",
    "Indexer",
    "MarkdownChunker",
    "SentenceChunker",
    "chunk_text",
    "detect_type",
    "ensure_embedding_model",
    "extract_text",
    "extract_text_from_bytes",
    "normalize_whitespace",
]
