"""Tests for type detection and text extraction."""

from __future__ import annotations

import io

import pytest
from docx import Document

from docdesk.errors import ValidationError
from docdesk.ingest.extract import detect_type, extract_text, extract_text_from_bytes, html_to_text


@pytest.mark.parametrize(
    "name,expected",
    [
        ("a.md", "md"),
        ("A.MARKDOWN", "md"),
        ("notes.txt", "txt"),
        ("page.htm", "html"),
        ("paper.pdf", "pdf"),
        ("report.docx", "docx"),
        ("scan.jpeg", "image"),
        ("archive.zip", "unknown"),
    ],
)
def test_detect_type(name, expected):
    assert detect_type(name) == expected


def test_extract_markdown_file(tmp_path):
    path = tmp_path / "a.md"
    path.write_text("# Title\nbody", encoding="utf-8")
    assert extract_text(path) == "# Title\nbody"


def test_extract_image_rejected(tmp_path):
    path = tmp_path / "scan.png"
    path.write_bytes(b"\x89PNG")
    with pytest.raises(ValidationError, match="OCR"):
        extract_text(path)


def test_extract_unknown_type_rejected(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"\x00")
    with pytest.raises(ValidationError, match="Unsupported"):
        extract_text(path)


def test_html_strips_non_content():
    html = (
        "<html><head><script>var x = 1;</script></head>"
        "<body><nav>Menu</nav><h1>Heading</h1><p>Paragraph text.</p>"
        "<footer>Copyright</footer></body></html>"
    )
    text = html_to_text(html)
    assert "Heading" in text
    assert "Paragraph text." in text
    assert "Menu" not in text
    assert "var x" not in text
    assert "Copyright" not in text


def test_docx_paragraphs_headings_and_tables():
    doc = Document()
    doc.add_heading("Overview", level=2)
    doc.add_paragraph("First paragraph.")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "key"
    table.rows[0].cells[1].text = "value"
    buf = io.BytesIO()
    doc.save(buf)

    text = extract_text_from_bytes(buf.getvalue(), "docx", name="r.docx")
    assert "## Overview" in text
    assert "First paragraph." in text
    assert "key | value" in text


def test_corrupt_pdf_raises_validation_error():
    with pytest.raises(ValidationError, match="PDF"):
        extract_text_from_bytes(b"not a pdf", "pdf", name="bad.pdf")
