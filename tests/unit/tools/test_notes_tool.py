"""Tests for the addNote pipeline and tool."""

from __future__ import annotations

import pytest

from docdesk.errors import ValidationError
from docdesk.notes import format_prompt, title_from_content
from docdesk.tools.notes import route_note_project


async def test_pipeline_formats_titles_and_files(services, project, fake_llm):
    fake_llm.queue(
        "```markdown\n## Agenda\n- budget\n```",
        "Meeting Notes: Q3!",
        {"targetDirectory": "meetings", "shouldCreateDirectory": True},
    )
    result = await services.notes.add_note(project.id, "agenda budget")
    assert result.title == "Meeting Notes: Q3!"
    assert result.path == "meetings/meeting-notes-q3.md"
    assert result.new_directory is True
    assert result.file.content == "## Agenda\n- budget"
    assert result.file.status == "indexed"
    assert services.versions.get_version_history(result.file.id)[0].source == "create"


async def test_slug_collision_gets_suffix(services, project, fake_llm):
    await services.projects.add_document(project.id, "notes/standup.md", "old")
    fake_llm.queue("Body", {"targetDirectory": "notes"})
    result = await services.notes.add_note(project.id, "body", title="Standup")
    assert result.path == "notes/standup-1.md"
    assert result.new_directory is False


async def test_unsafe_directory_falls_back_to_default(services, project, fake_llm):
    fake_llm.queue("Body", {"targetDirectory": "../outside"})
    result = await services.notes.add_note(project.id, "body", title="T")
    assert result.directory == "notes"
    assert result.path == "notes/t.md"


async def test_explicit_empty_directory_is_project_root(services, project, fake_llm):
    result = await services.notes.add_note(project.id, "body", title="Root note", directory="")
    assert result.path == "root-note.md"
    assert len(fake_llm.calls) == 1


async def test_empty_note_rejected(services, project):
    with pytest.raises(ValidationError):
        await services.notes.add_note(project.id, "   ")


def test_title_from_content():
    assert title_from_content("\n# Weekly Sync\nbody") == "Weekly Sync"
    assert title_from_content("") == "Note"


def test_format_prompt_appends_instructions():
    assert "Use British spelling" in format_prompt("Use British spelling")
    assert "custom formatting" not in format_prompt("")


async def test_route_single_project_without_llm(services, project, fake_llm):
    assert await route_note_project(services.tool_context(), "x") == project.id
    assert fake_llm.calls == []


async def test_route_uses_model_choice(services, project, fake_llm):
    other, _ = services.projects.get_or_create_project("Cooking")
    fake_llm.queue({"projectName": "cooking"})
    assert await route_note_project(services.tool_context(), "pasta recipe") == other.id


async def test_route_without_projects_fails(services):
    with pytest.raises(ValidationError):
        await route_note_project(services.tool_context(), "x")


async def test_add_note_tool(services, project, fake_llm):
    fake_llm.queue("Formatted", {"targetDirectory": ""})
    result = await services.registry.execute(
        "addNote", {"content": "raw", "title": "Ideas"}, services.tool_context(project.id)
    )
    assert result.success
    assert result.metadata["path"] == "notes/ideas.md"
    assert result.metadata["persisted_changes"] is True
    assert result.data == "Saved note 'Ideas' as 'notes/ideas.md'."
