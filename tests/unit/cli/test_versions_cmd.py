"""Tests for docdesk versions."""

from __future__ import annotations

import pytest

from docdesk.cli.main import app


@pytest.fixture
def edited(runner, workspace, tmp_path):
    """A file ingested twice, so it has versions 1 and 2."""
    doc = tmp_path / "plan.md"
    doc.write_text("# Plan\nfirst draft\n", encoding="utf-8")
    runner.invoke(app, ["ingest", str(doc), "-p", "Research", "-w", str(workspace)])
    doc.write_text("# Plan\nsecond draft\n", encoding="utf-8")
    runner.invoke(app, ["ingest", str(doc), "-p", "Research", "-w", str(workspace)])
    return workspace


def _run(runner, ws, *args, **kwargs):
    return runner.invoke(app, ["versions", *args, "-w", str(ws)], **kwargs)


def test_list(runner, edited):
    result = _run(runner, edited, "list", "plan")
    assert result.exit_code == 0, result.output
    assert "create" in result.output
    assert "update" in result.output


def test_show(runner, edited):
    result = _run(runner, edited, "show", "plan.md", "1")
    assert result.exit_code == 0
    assert "first draft" in result.output


def test_show_missing_version(runner, edited):
    result = _run(runner, edited, "show", "plan.md", "9")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_restore(runner, edited):
    result = _run(runner, edited, "restore", "plan.md", "1", "--yes")
    assert result.exit_code == 0, result.output
    assert "now version 3" in result.output
    assert "first draft" in _run(runner, edited, "show", "plan.md", "3").output


def test_restore_declined(runner, edited):
    result = _run(runner, edited, "restore", "plan.md", "1", input="n\n")
    assert "Cancelled" in result.output
    assert "restore" not in _run(runner, edited, "list", "plan.md").output


def test_prune(runner, edited):
    result = _run(runner, edited, "prune", "plan.md", "--keep", "1")
    assert result.exit_code == 0
    assert "Pruned 1 versions" in result.output
    assert "second draft" in _run(runner, edited, "show", "plan.md", "2").output


def test_unknown_file(runner, edited):
    result = _run(runner, edited, "list", "zzzz")
    assert result.exit_code == 1
    assert "No file matching" in result.output
