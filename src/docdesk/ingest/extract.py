"""Text extraction — "given a file, produce extracted text".

Type dispatch by extension:
  .md .markdown                 → md    (read as UTF-8)
  .txt .text .rst .csv .log     → txt   (read as UTF-8)
  .html .htm                    → html  (BeautifulSoup + html2text)
  .pdf                          → pdf   (pypdf, page by page)
  .docx                         → docx  (python-docx paragraphs + tables)
  .png .jpg .jpeg .webp         → image (rejected: needs an external OCR backend)
"""

from __future__ import annotations

import io
from pathlib import Path

import html2text
import pypdf
from pypdf.errors import PdfReadError
from bs4 import BeautifulSoup
from docx import Document

from docdesk.errors import ValidationError

_TYPE_BY_EXT: dict[str, str] = {
    ".md": "md",
    ".markdown": "md",
    ".txt": "txt",
    ".text": "txt",
    ".rst": "txt",
    ".csv": "txt",
    ".log": "txt",
    ".html": "html",
    ".htm": "html",
    ".pdf": "pdf",
    ".docx": "docx",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".webp": "image",
}

SUPPORTED_TYPES: frozenset[str] = frozenset(["md", "txt", "html", "pdf", "docx"])
TEXT_TYPES: frozenset[str] = frozenset(["md", "txt"])

# Elements that never carry document content.
_NON_CONTENT_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "form"]

_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


def detect_type(path: str | Path) -> str:
    """Return the docdesk file type for *path* (``unknown`` if unrecognised)."""
    return _TYPE_BY_EXT.get(Path(path).suffix.lower(), "unknown")


def extract_text(path: Path) -> str:
    """Read *path* and return its extracted text.

    Raises:
        ValidationError: For images (OCR unavailable) and unsupported types.
    """
    file_type = detect_type(path)
    _check_supported(file_type, path.name)
    if file_type in TEXT_TYPES:
        return path.read_text(encoding="utf-8", errors="replace")
    return extract_text_from_bytes(path.read_bytes(), file_type, name=path.name)


def extract_text_from_bytes(data: bytes, file_type: str, name: str = "") -> str:
    """Extract text from raw *data* of the given *file_type*.

    Raises:
        ValidationError: For images, unsupported types, and unreadable documents.
    """
    _check_supported(file_type, name)
    if file_type in TEXT_TYPES:
        return data.decode("utf-8", errors="replace")
    if file_type == "html":
        return html_to_text(data.decode("utf-8", errors="replace"))
    if file_type == "pdf":
        return _pdf_text(data, name)
    return _docx_text(data, name)


def html_to_text(html: str) -> str:
    """Strip non-content elements and convert the remainder to plain text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_NON_CONTENT_TAGS):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


# ------------------------------------------------------------------
# Format-specific readers
# ------------------------------------------------------------------


def _check_supported(file_type: str, name: str) -> None:
    if file_type == "image":
        raise ValidationError(
            f"'{name}' is an image. OCR extraction needs an external OCR backend "
            "and is not available."
        )
    if file_type not in SUPPORTED_TYPES:
        raise ValidationError(
            f"Unsupported file type for '{name}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_TYPES))}"
        )


def _pdf_text(data: bytes, name: str) -> str:
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
    except (PdfReadError, ValueError, OSError) as exc:
        raise ValidationError(f"Could not read PDF '{name}': {exc}") from exc
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def _docx_text(data: bytes, name: str) -> str:
    try:
        doc = Document(io.BytesIO(data))
    except Exception as exc:
        raise ValidationError(f"Could not read DOCX '{name}': {exc}") from exc

    parts: list[str] = []
    for para in doc.paragraphs:
        text = para.text.strip()
        if not text:
            continue
        style = (para.style.name if para.style is not None else "") or ""
        if style.startswith("Heading"):
            level = style.removeprefix("Heading").strip()
            hashes = "#" * int(level) if level.isdigit() else "#"
            parts.append(f"{hashes} {text}")
        else:
            parts.append(text)

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))

    return "\n\n".join(parts)
