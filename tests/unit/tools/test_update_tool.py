"""Tests for updateFile previews and apply_update."""

from __future__ import annotations

import pytest

from docdesk.errors import ValidationError
from docdesk.tools.update import (
    TargetRange,
    apply_update,
    build_diff,
    find_section,
    parse_line_range,
    splice_lines,
    splice_selection,
)

DOC = """# Guide

## Install
Run pip install.

## Usage
Call the tool.
More usage.

## License
MIT
"""


def test_find_section_exact_excludes_trailing_blank():
    target = find_section(DOC, "Usage")
    lines = DOC.splitlines()
    assert target.label == "Usage"
    assert lines[target.start] == "## Usage"
    assert lines[target.end - 1] == "More usage."


def test_find_section_fuzzy():
    assert find_section(DOC, "instal").label == "Install"


def test_find_section_missing():
    assert find_section("no headings", "x") is None


def test_top_heading_spans_subsections():
    target = find_section(DOC, "Guide")
    assert target.end == len(DOC.splitlines())


def test_parse_line_range():
    assert parse_line_range("2-3", 10) == TargetRange("lines 2-3", 1, 3)
    assert parse_line_range("lines 4", 10).start == 3
    with pytest.raises(ValidationError):
        parse_line_range("5-20", 10)
    with pytest.raises(ValidationError):
        parse_line_range("abc", 10)


def test_replace_keeps_heading():
    out = splice_lines(DOC, find_section(DOC, "Usage"), "replace", "New usage.")
    assert "## Usage\nNew usage.\n\n## License" in out


def test_replace_with_new_heading():
    out = splice_lines(DOC, find_section(DOC, "Usage"), "replace", "## How to use\nSteps.")
    assert "## Usage" not in out
    assert "## How to use\nSteps.\n\n## License" in out


def test_insert_before_and_after_section():
    target = find_section(DOC, "License")
    before = splice_lines(DOC, target, "insert_before", "## Credits\nMe.")
    assert "## Credits\nMe.\n\n## License" in before
    after = splice_lines(DOC, target, "insert_after", "Extra.")
    assert after.endswith("## License\nMIT\n\nExtra.\n")


def test_splice_selection():
    assert splice_selection("a b c", "b", "replace", "B") == "a B c"
    with pytest.raises(ValidationError):
        splice_selection("a b c", "z", "replace", "Z")


def test_build_diff_classifies_lines():
    unified, lines = build_diff("a\nb\nc", "a\nB\nc", "f.md")
    assert unified.startswith("--- a/f.md\n+++ b/f.md")
    assert [(d.kind, d.text) for d in lines] == [
        ("unchanged", "a"), ("removed", "b"), ("added", "B"), ("unchanged", "c"),
    ]


async def _run(services, params, project_id):
    return await services.registry.execute("updateFile", params, services.tool_context(project_id))


async def test_tool_returns_preview_without_writing(services, project):
    file = await services.projects.add_document(project.id, "guide.md", DOC)
    result = await _run(
        services, {"file": "guide", "section": "Usage", "newContent": "Use it."}, project.id
    )
    assert result.success
    assert result.metadata["requires_confirmation"] is True
    assert result.preview.has_changes
    assert result.preview.removed == ["Call the tool.", "More usage."]
    assert result.preview.added == ["Use it."]
    assert "```diff" in result.data
    assert services.repo.get_file(file.id).content == DOC


async def test_generated_edit_uses_reasoning(services, project, fake_llm):
    await services.projects.add_document(project.id, "guide.md", DOC)
    fake_llm.queue({"reasoning": "Shortened.", "newContent": "Short."})
    result = await _run(
        services, {"file": "guide.md", "section": "Install", "instruction": "shorten"}, project.id
    )
    assert result.preview.reasoning == "Shortened."
    assert "## Install\nShort.\n" in result.preview.new_content
    assert "Run pip install." in fake_llm.last_prompt


async def test_needs_target_and_change(services, project):
    await services.projects.add_document(project.id, "guide.md", DOC)
    no_target = await _run(services, {"file": "guide.md", "newContent": "x"}, project.id)
    assert "section" in no_target.error
    no_change = await _run(services, {"file": "guide.md", "section": "Usage"}, project.id)
    assert "instruction" in no_change.error
    bad_op = await _run(
        services, {"file": "guide.md", "section": "Usage", "newContent": "x", "operation": "append"},
        project.id,
    )
    assert "Unknown operation" in bad_op.error


async def test_apply_update_writes_version_and_reindexes(services, project):
    file = await services.projects.add_document(project.id, "guide.md", DOC)
    result = await _run(
        services, {"file": "guide.md", "lines": "4", "newContent": "Run uv add."}, project.id
    )
    updated = await apply_update(services.projects, result.preview)
    assert "Run uv add." in updated.content
    history = services.versions.get_version_history(file.id)
    assert history[0].source == "update"
    assert history[0].version_number == 2
    assert updated.status == "indexed"


async def test_apply_update_rejects_stale_preview(services, project):
    file = await services.projects.add_document(project.id, "guide.md", DOC)
    result = await _run(
        services, {"file": "guide.md", "section": "Usage", "newContent": "x"}, project.id
    )
    await services.projects.update_document(file.id, DOC + "\nchanged elsewhere\n")
    with pytest.raises(ValidationError, match="changed after the preview"):
        await apply_update(services.projects, result.preview)
