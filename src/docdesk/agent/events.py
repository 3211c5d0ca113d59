"""Typed event channel for agent progress, sync progress and usage telemetry.

Producers call ``emit``; consumers either ``subscribe`` a callback or iterate
the channel with ``async for`` until it is closed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger

# Agent flow
STATE_CHANGED = "state_changed"
PLAN_CREATED = "plan_created"
STEP_STARTED = "step_started"
STEP_FINISHED = "step_finished"
CHECK_FINISHED = "check_finished"
RESPONSE_CHUNK = "response_chunk"
FLOW_DONE = "flow_done"
# Filesystem sync
SYNC_START = "sync_start"
SYNC_COMPLETE = "sync_complete"
SYNC_ERROR = "sync_error"
# Usage telemetry
NOTE_CREATED = "note_created"
NOTE_CREATION_FAILED = "note_creation_failed"
PROJECT_CREATED = "project_created"
DIRECTORY_CREATED = "directory_created"

EVENT_TYPES = frozenset(
    {
        STATE_CHANGED,
        PLAN_CREATED,
        STEP_STARTED,
        STEP_FINISHED,
        CHECK_FINISHED,
        RESPONSE_CHUNK,
        FLOW_DONE,
        SYNC_START,
        SYNC_COMPLETE,
        SYNC_ERROR,
        NOTE_CREATED,
        NOTE_CREATION_FAILED,
        PROJECT_CREATED,
        DIRECTORY_CREATED,
    }
)


@dataclass(frozen=True)
class Event:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    )


class EventChannel:
    """Unbounded in-process event stream.

    Subscriber callbacks run synchronously inside ``emit``; a failing
    subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._subscribers: list[Callable[[Event], None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, type: str, **payload: Any) -> Event:
        if type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{type}'")
        event = Event(type=type, payload=payload)
        if self._closed:
            return event
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001
                logger.exception("[events] Subscriber failed on '{}'", type)
        self._queue.put_nowait(event)
        return event

    def subscribe(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def drain(self) -> list[Event]:
        """Return every queued event without waiting."""
        events: list[Event] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
