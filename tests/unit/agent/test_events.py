"""Tests for the event channel."""

from __future__ import annotations

import pytest

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel


def test_emit_rejects_unknown_type():
    with pytest.raises(ValueError):
        EventChannel().emit("bogus")


def test_subscribers_receive_events_and_can_unsubscribe():
    channel = EventChannel()
    seen = []
    unsubscribe = channel.subscribe(seen.append)
    channel.emit(ev.SYNC_START, project="P")
    unsubscribe()
    channel.emit(ev.SYNC_COMPLETE)
    assert [e.type for e in seen] == [ev.SYNC_START]
    assert seen[0].payload == {"project": "P"}


def test_failing_subscriber_does_not_block_others():
    channel = EventChannel()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.emit(ev.FLOW_DONE)
    assert len(seen) == 1


async def test_async_iteration_until_closed():
    channel = EventChannel()
    channel.emit(ev.STATE_CHANGED, state="planning")
    channel.emit(ev.STATE_CHANGED, state="executing")
    channel.close()
    channel.emit(ev.STATE_CHANGED, state="ignored")
    states = [e.payload["state"] async for e in channel]
    assert states == ["planning", "executing"]
    assert channel.closed


def test_drain_returns_queued_events():
    channel = EventChannel()
    channel.emit(ev.SYNC_ERROR, error="x")
    assert [e.type for e in channel.drain()] == [ev.SYNC_ERROR]
    assert channel.drain() == []
