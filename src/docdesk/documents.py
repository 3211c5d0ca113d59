"""Render Markdown into the binary formats the write tool produces.

- DOCX via python-docx: headings, bullets, numbered items and paragraphs.
- PDF via Pandoc when it is installed. Fail-open: without Pandoc (or when
  conversion fails) ``render_pdf`` returns None and the caller keeps the
  Markdown.
- ``export_document`` turns a stored file into export bytes; there a missing
  Pandoc is an error.
"""

from __future__ import annotations

import io
import re
import shutil
import subprocess
import tempfile
import unicodedata
from pathlib import Path

from docx import Document
from loguru import logger

from docdesk.errors import ExternalServiceError, ValidationError

_MAX_SLUG_LEN = 80
_NUMBERED_RE = re.compile(r"^\d+[.)]\s+")
_INLINE_RE = [
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"_(.+?)_"), r"\1"),
    (re.compile(r"`(.+?)`"), r"\1"),
    (re.compile(r"\[(.+?)\]\(.+?\)"), r"\1"),
]


def title_to_slug(title: str) -> str:
    """Lowercase ASCII slug of ``[a-z0-9-]``, at most 80 characters.

    ``"Meeting Notes: Q3!"`` → ``"meeting-notes-q3"``. Returns ``"untitled"``
    when nothing usable remains.
    """
    ascii_title = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")
    slug = slug[:_MAX_SLUG_LEN].rstrip("-")
    return slug or "untitled"


def strip_inline_markdown(text: str) -> str:
    for pattern, repl in _INLINE_RE:
        text = pattern.sub(repl, text)
    return text


def render_docx(title: str, markdown: str) -> bytes:
    """Return a .docx rendering of *markdown* with *title* as the document title."""
    doc = Document()
    doc.core_properties.title = title
    lines = markdown.splitlines()
    first = lines[0].strip() if lines else ""
    if not (first.startswith("# ") and first[2:].strip() == title.strip()):
        doc.add_heading(title, level=0)

    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        heading = re.match(r"^(#{1,6})\s+(.*)$", stripped)
        if heading:
            level = min(len(heading.group(1)), 4)
            doc.add_heading(strip_inline_markdown(heading.group(2)), level=level)
        elif stripped.startswith(("- ", "* ", "+ ")):
            doc.add_paragraph(strip_inline_markdown(stripped[2:]), style="List Bullet")
        elif _NUMBERED_RE.match(stripped):
            doc.add_paragraph(
                strip_inline_markdown(_NUMBERED_RE.sub("", stripped)), style="List Number"
            )
        else:
            doc.add_paragraph(strip_inline_markdown(stripped))

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def render_pdf(markdown: str) -> bytes | None:
    """Convert *markdown* to PDF with Pandoc. Returns None if unavailable or failed."""
    pandoc = shutil.which("pandoc")
    if not pandoc:
        logger.warning("[documents] Pandoc not found; PDF rendering skipped")
        return None

    with tempfile.TemporaryDirectory(prefix="docdesk-") as tmp:
        md_path = Path(tmp) / "document.md"
        pdf_path = Path(tmp) / "document.pdf"
        md_path.write_text(markdown, encoding="utf-8")
        try:
            subprocess.run(
                [pandoc, str(md_path), "-o", str(pdf_path)],
                check=True,
                capture_output=True,
                shell=False,
                timeout=120,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("[documents] Pandoc conversion failed: {}", exc)
            return None
        return pdf_path.read_bytes()


EXPORT_FORMATS = ("md", "docx", "pdf")


def export_document(title: str, markdown: str, fmt: str) -> bytes:
    """Render a stored document for export as ``md``, ``docx`` or ``pdf``.

    Markdown exports start with a ``# title`` heading unless the content
    already opens with one.

    Raises:
        ValidationError: For empty content or an unknown format.
        ExternalServiceError: If a PDF was requested and Pandoc could not render it.
    """
    fmt = fmt.lower().lstrip(".")
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(
            f"Unsupported export format '{fmt}' (use one of: {', '.join(EXPORT_FORMATS)})"
        )
    if not markdown.strip():
        raise ValidationError("No content to export")
    if fmt == "docx":
        return render_docx(title, markdown)
    if fmt == "pdf":
        data = render_pdf(markdown)
        if data is None:
            raise ExternalServiceError("PDF export needs Pandoc; install it or export as docx")
        return data
    first = markdown.lstrip().splitlines()[0].strip()
    if first.startswith("# "):
        return markdown.encode("utf-8")
    return f"# {title}\n\n{markdown}".encode("utf-8")
