"""Tests for docdesk ingest / reindex."""

from __future__ import annotations

from contextlib import closing

from docdesk.cli.main import app
from docdesk.db.connection import Database
from docdesk.db.repository import Repository


def _files(ws, project_name="Research"):
    with closing(Database(ws / ".docdesk.db").connect()) as conn:
        repo = Repository(conn)
        project = repo.get_project_by_name(project_name)
        return {f.name: f for f in repo.list_files(project.id)}, repo.count_chunks(project.id)


def _ingest(runner, ws, *args):
    return runner.invoke(app, ["ingest", *map(str, args), "-p", "Research", "-w", str(ws)])


def test_ingest_file_creates_project(runner, workspace, tmp_path):
    doc = tmp_path / "notes.md"
    doc.write_text("# Notes\nThe budget grew this year.\n", encoding="utf-8")
    result = _ingest(runner, workspace, doc)
    assert result.exit_code == 0, result.output
    assert "Created project" in result.output
    assert "1/1 files ingested" in result.output
    files, chunks = _files(workspace)
    assert files["notes.md"].status == "indexed"
    assert chunks > 0


def test_ingest_directory(runner, workspace, tmp_path):
    docs = tmp_path / "docs"
    (docs / "sub").mkdir(parents=True)
    (docs / "a.md").write_text("alpha", encoding="utf-8")
    (docs / "sub" / "b.txt").write_text("beta", encoding="utf-8")
    (docs / "skip.md").write_text("skipped", encoding="utf-8")
    (docs / ".hidden.md").write_text("hidden", encoding="utf-8")
    (docs / "image.xyz").write_text("?", encoding="utf-8")
    result = _ingest(runner, workspace, docs, "--recursive", "--exclude", "skip*")
    assert result.exit_code == 0, result.output
    files, _ = _files(workspace)
    assert sorted(files) == ["a.md", "sub/b.txt"]


def test_reingest_unchanged_and_changed(runner, workspace, tmp_path):
    doc = tmp_path / "a.md"
    doc.write_text("first", encoding="utf-8")
    _ingest(runner, workspace, doc)
    again = _ingest(runner, workspace, doc)
    assert "Unchanged" in again.output

    doc.write_text("second", encoding="utf-8")
    changed = _ingest(runner, workspace, doc)
    assert "Re-indexed" in changed.output
    files, _ = _files(workspace)
    assert files["a.md"].content == "second"


def test_unsupported_and_missing_paths(runner, workspace, tmp_path):
    odd = tmp_path / "data.xyz"
    odd.write_text("?", encoding="utf-8")
    result = _ingest(runner, workspace, odd, tmp_path / "missing.md")
    assert result.exit_code == 0
    assert "Unsupported" in result.output
    assert "Not found" in result.output
    assert "No supported files" in result.output


def test_corrupt_pdf_counts_as_failure(runner, workspace, tmp_path):
    bad = tmp_path / "broken.pdf"
    bad.write_bytes(b"not a pdf")
    result = _ingest(runner, workspace, bad)
    assert result.exit_code == 1
    assert "0/1 files ingested" in result.output


def test_ingest_without_workspace(runner, tmp_path):
    doc = tmp_path / "a.md"
    doc.write_text("x", encoding="utf-8")
    result = _ingest(runner, tmp_path / "nowhere", doc)
    assert result.exit_code == 1
    assert "docdesk init" in result.output


def test_reindex(runner, workspace, tmp_path):
    doc = tmp_path / "a.md"
    doc.write_text("# A\ntext", encoding="utf-8")
    _ingest(runner, workspace, doc)
    result = runner.invoke(app, ["reindex", "-w", str(workspace)])
    assert result.exit_code == 0, result.output
    assert "Reindexed 1 files" in result.output


def test_reindex_empty_workspace(runner, workspace):
    result = runner.invoke(app, ["reindex", "-w", str(workspace)])
    assert result.exit_code == 0
    assert "No files to reindex" in result.output
