"""Usage telemetry: notes, projects and directories created in this workspace.

Events stay in process. Each one is kept in a bounded in-memory log, written
to the loguru sink and, when a channel is attached, emitted on the
``EventChannel`` so UIs can follow along. Nothing leaves the machine.

Projects and directories created on the assistant's initiative are audit
events and are logged at INFO; failed notes are logged at WARNING.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any

from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.events import Event, EventChannel

MAX_EVENTS = 1000

# Where a note came from.
SOURCE_CLI = "cli"
SOURCE_ASSISTANT = "assistant"

TELEMETRY_TYPES = frozenset(
    {ev.NOTE_CREATED, ev.NOTE_CREATION_FAILED, ev.PROJECT_CREATED, ev.DIRECTORY_CREATED}
)


@dataclass
class UsageMetrics:
    notes_created: int = 0
    notes_from_cli: int = 0
    notes_from_assistant: int = 0
    note_failures: int = 0
    projects_auto_created: int = 0
    projects_user_created: int = 0
    directories_created: int = 0

    @property
    def projects_created(self) -> int:
        return self.projects_auto_created + self.projects_user_created

    def summary(self) -> str:
        return "\n".join(
            [
                f"Notes created: {self.notes_created}",
                f"  from the CLI: {self.notes_from_cli}",
                f"  from the assistant: {self.notes_from_assistant}",
                f"  failed: {self.note_failures}",
                f"Projects created: {self.projects_created}",
                f"  by the assistant: {self.projects_auto_created}",
                f"  by the user: {self.projects_user_created}",
                f"Directories created: {self.directories_created}",
            ]
        )


class Telemetry:
    """Records usage events and aggregates them into ``UsageMetrics``.

    Args:
        events: Channel the events are also emitted on.
        max_events: Size of the in-memory log; the oldest events drop first.
    """

    def __init__(self, events: EventChannel | None = None, max_events: int = MAX_EVENTS) -> None:
        self._channel = events
        self._log: deque[Event] = deque(maxlen=max_events)

    def track_event(self, type: str, **data: Any) -> Event:
        """Record one event.

        Raises:
            ValueError: If *type* is not a telemetry event type.
        """
        if type not in TELEMETRY_TYPES:
            raise ValueError(f"Unknown telemetry event '{type}'")
        if self._channel is not None:
            event = self._channel.emit(type, **data)
        else:
            event = Event(type=type, payload=data)
        self._log.append(event)
        _log_event(event)
        return event

    def track_note_created(
        self, project_id: str, path: str, title: str, source: str = SOURCE_CLI
    ) -> Event:
        return self.track_event(
            ev.NOTE_CREATED, project_id=project_id, path=path, title=title, source=source
        )

    def track_project_created(self, project_id: str, name: str, *, automatic: bool) -> Event:
        return self.track_event(
            ev.PROJECT_CREATED, project_id=project_id, name=name, automatic=automatic
        )

    def track_directory_created(
        self, project_id: str, directory: str, note_title: str, reasoning: str | None = None
    ) -> Event:
        return self.track_event(
            ev.DIRECTORY_CREATED,
            project_id=project_id,
            directory=directory,
            note_title=note_title,
            reasoning=reasoning,
        )

    def track_note_creation_failed(
        self, source: str, error: str, project_id: str | None = None
    ) -> Event:
        return self.track_event(
            ev.NOTE_CREATION_FAILED, source=source, error=error, project_id=project_id
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def events(self, type: str | None = None) -> list[Event]:
        """Logged events, oldest first, optionally of one type."""
        return [e for e in self._log if type is None or e.type == type]

    def recent(self, count: int = 50) -> list[Event]:
        return list(self._log)[-count:] if count > 0 else []

    def clear(self) -> None:
        self._log.clear()

    def get_metrics(self) -> UsageMetrics:
        metrics = UsageMetrics()
        for event in self._log:
            data = event.payload
            if event.type == ev.NOTE_CREATED:
                metrics.notes_created += 1
                if data.get("source") == SOURCE_ASSISTANT:
                    metrics.notes_from_assistant += 1
                else:
                    metrics.notes_from_cli += 1
            elif event.type == ev.NOTE_CREATION_FAILED:
                metrics.note_failures += 1
            elif event.type == ev.PROJECT_CREATED:
                if data.get("automatic"):
                    metrics.projects_auto_created += 1
                else:
                    metrics.projects_user_created += 1
            elif event.type == ev.DIRECTORY_CREATED:
                metrics.directories_created += 1
        return metrics


def _log_event(event: Event) -> None:
    data = event.payload
    if event.type == ev.DIRECTORY_CREATED:
        logger.info(
            "[audit] Directory '{}' created in project {} for note '{}'",
            data.get("directory"),
            data.get("project_id"),
            data.get("note_title"),
        )
    elif event.type == ev.PROJECT_CREATED and data.get("automatic"):
        logger.info("[audit] Project '{}' created by the assistant", data.get("name"))
    elif event.type == ev.NOTE_CREATION_FAILED:
        logger.warning(
            "[telemetry] Note creation failed ({}): {}", data.get("source"), data.get("error")
        )
    else:
        logger.debug("[telemetry] {} {}", event.type, data)
