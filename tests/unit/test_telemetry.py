"""Tests for usage telemetry and its wiring into notes and projects."""

from __future__ import annotations

import pytest
from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel
from docdesk.errors import ValidationError
from docdesk.telemetry import SOURCE_ASSISTANT, Telemetry


@pytest.fixture
def log_lines():
    lines: list[str] = []
    handler_id = logger.add(
        lambda msg: lines.append(f"{msg.record['level'].name} {msg.record['message']}"),
        level="DEBUG",
    )
    yield lines
    logger.remove(handler_id)


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


def test_metrics_aggregate_events():
    telemetry = Telemetry()
    telemetry.track_note_created("p1", "notes/a.md", "A")
    telemetry.track_note_created("p1", "notes/b.md", "B", source=SOURCE_ASSISTANT)
    telemetry.track_note_creation_failed("cli", "boom", "p1")
    telemetry.track_project_created("p2", "Auto", automatic=True)
    telemetry.track_project_created("p3", "Mine", automatic=False)
    telemetry.track_directory_created("p1", "meetings", "B")

    metrics = telemetry.get_metrics()
    assert metrics.notes_created == 2
    assert metrics.notes_from_cli == 1
    assert metrics.notes_from_assistant == 1
    assert metrics.note_failures == 1
    assert metrics.projects_created == 2
    assert metrics.projects_auto_created == 1
    assert metrics.directories_created == 1
    assert "Directories created: 1" in metrics.summary()


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        Telemetry().track_event(ev.SYNC_START)


def test_log_is_bounded():
    telemetry = Telemetry(max_events=2)
    for i in range(3):
        telemetry.track_note_created("p", f"n{i}.md", f"N{i}")
    assert [e.payload["path"] for e in telemetry.events()] == ["n1.md", "n2.md"]
    assert [e.payload["path"] for e in telemetry.recent(1)] == ["n2.md"]
    assert telemetry.recent(0) == []
    telemetry.clear()
    assert telemetry.get_metrics().notes_created == 0


def test_events_reach_channel_subscribers():
    channel = EventChannel()
    seen = []
    channel.subscribe(seen.append)
    telemetry = Telemetry(channel)

    event = telemetry.track_project_created("p", "Auto", automatic=True)

    assert seen == [event]
    assert telemetry.events(ev.PROJECT_CREATED) == [event]
    assert telemetry.events(ev.NOTE_CREATED) == []


def test_audit_and_failure_logging(log_lines):
    telemetry = Telemetry()
    telemetry.track_project_created("p", "Auto", automatic=True)
    telemetry.track_directory_created("p", "meetings", "Standup")
    telemetry.track_note_creation_failed("assistant", "model down")

    assert "INFO [audit] Project 'Auto' created by the assistant" in log_lines
    assert "INFO [audit] Directory 'meetings' created in project p for note 'Standup'" in log_lines
    assert "WARNING [telemetry] Note creation failed (assistant): model down" in log_lines


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def test_services_share_one_recorder(services):
    assert services.projects.telemetry is services.telemetry
    assert services.notes.telemetry is services.telemetry


def test_project_creation_tracked_once(services):
    services.projects.get_or_create_project("Research")
    services.projects.get_or_create_project("research")
    services.projects.get_or_create_project("Imported", automatic=True)

    created = services.telemetry.events(ev.PROJECT_CREATED)
    assert [(e.payload["name"], e.payload["automatic"]) for e in created] == [
        ("Research", False),
        ("Imported", True),
    ]


async def test_create_project_tool_counts_as_automatic(services):
    result = await services.registry.execute(
        "createProject", {"name": "Travel"}, services.tool_context()
    )
    assert result.success
    assert services.telemetry.get_metrics().projects_auto_created == 1


async def test_note_tracked_with_new_directory(services, project, fake_llm):
    fake_llm.queue("Body", "Standup", {"targetDirectory": "meetings"})
    result = await services.notes.add_note(project.id, "raw")

    [note] = services.telemetry.events(ev.NOTE_CREATED)
    assert note.payload == {
        "project_id": project.id,
        "path": result.path,
        "title": "Standup",
        "source": "cli",
    }
    [directory] = services.telemetry.events(ev.DIRECTORY_CREATED)
    assert directory.payload["directory"] == "meetings"
    assert directory.payload["note_title"] == "Standup"


async def test_note_in_existing_directory_not_audited(services, project, fake_llm):
    await services.projects.add_document(project.id, "notes/old.md", "old")
    fake_llm.queue("Body", {"targetDirectory": "notes"})
    await services.notes.add_note(project.id, "raw", title="T")
    assert services.telemetry.events(ev.DIRECTORY_CREATED) == []
    assert services.telemetry.get_metrics().notes_from_cli == 1


async def test_failed_note_tracked_and_raised(services, project):
    with pytest.raises(ValidationError):
        await services.notes.add_note(project.id, "   ", source=SOURCE_ASSISTANT)

    [failure] = services.telemetry.events(ev.NOTE_CREATION_FAILED)
    assert failure.payload["source"] == "assistant"
    assert failure.payload["project_id"] == project.id
    assert services.telemetry.get_metrics().notes_created == 0


async def test_add_note_tool_records_assistant_source(services, project, fake_llm):
    fake_llm.queue("Formatted", {"targetDirectory": ""})
    await services.registry.execute(
        "addNote", {"content": "raw", "title": "Ideas"}, services.tool_context(project.id)
    )
    assert services.telemetry.get_metrics().notes_from_assistant == 1
