"""Tests for the plan executor."""

from __future__ import annotations

import asyncio

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel
from docdesk.agent.executor import PlanExecutor, resolve_params, substitute_context
from docdesk.agent.plan import plan_from_dict
from docdesk.tools.base import ToolResult
from docdesk.tools.registry import ToolRegistry


class RecordingTools:
    """Registry whose handlers record their params and return canned results."""

    def __init__(self, fail: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.calls: list[tuple[str, dict]] = []
        self.registry = ToolRegistry()
        for name in ("read", "search", "write", "summarize"):
            self.registry.register(name, self._handler(name))

    def _handler(self, name):
        async def handler(params, ctx):
            await asyncio.sleep(0)
            self.calls.append((name, params))
            if name in self.fail:
                return ToolResult.fail(name, f"{name} broke")
            return ToolResult.ok(name, f"{name} output", persisted_changes=name == "write")

        return handler


def _plan(*steps):
    return plan_from_dict({"summary": "s", "steps": list(steps)}, "q")


def test_substitute_context_recurses():
    value, used = substitute_context(
        {"a": "see {{hits}}", "b": ["{{ hits }}", "{{other}}"], "c": 3}, {"hits": "H"}
    )
    assert value == {"a": "see H", "b": ["H", "{{other}}"], "c": 3}
    assert used == {"hits"}


def test_resolve_params_appends_unreferenced_context():
    plan = _plan(
        {"id": "w", "tool": "write", "params": {"title": "T", "instruction": "Summarize"},
         "contextNeeded": ["hits"]}
    )
    params = resolve_params(plan.steps[0], {"hits": "chunk text"})
    assert params["instruction"] == "Summarize\n\nContext from earlier steps:\n[hits]\nchunk text"


async def test_context_flows_between_steps(services):
    tools = RecordingTools()
    plan = _plan(
        {"id": "s", "tool": "search", "params": {"query": "x"}, "providesContext": ["hits"]},
        {"id": "w", "tool": "write", "params": {"title": "Report: {{hits}}"},
         "dependsOn": ["s"], "contextNeeded": ["hits"]},
    )
    outcome = await PlanExecutor(tools.registry, services.tool_context()).execute(plan)
    assert [s.status for s in plan.steps] == ["completed", "completed"]
    assert tools.calls[1] == ("write", {"title": "Report: search output"})
    assert outcome.accumulated_context == {"hits": "search output"}
    assert outcome.persisted_changes
    assert plan.steps[0].detail == "search output"


async def test_missing_context_fails_step(services):
    tools = RecordingTools()
    plan = _plan({"id": "w", "tool": "write", "params": {"title": "T"}, "contextNeeded": ["hits"]})
    outcome = await PlanExecutor(tools.registry, services.tool_context()).execute(plan)
    assert plan.steps[0].status == "failed"
    assert "Required context not available: hits" in plan.steps[0].error
    assert tools.calls == []
    assert outcome.failed_steps == plan.steps


async def test_failed_dependency_skips_dependents(services):
    tools = RecordingTools(fail={"search"})
    plan = _plan(
        {"id": "s", "tool": "search", "params": {"query": "x"}},
        {"id": "r", "tool": "read", "params": {"file": "a"}, "dependsOn": ["s"]},
        {"id": "m", "tool": "summarize", "params": {"file": "b"}},
    )
    await PlanExecutor(tools.registry, services.tool_context()).execute(plan)
    assert [s.status for s in plan.steps] == ["failed", "skipped", "completed"]
    assert plan.steps[1].detail == "Dependency not completed: s"


async def test_stop_on_failure_skips_rest(services):
    tools = RecordingTools(fail={"search"})
    plan = _plan(
        {"id": "s", "tool": "search", "params": {"query": "x"}},
        {"id": "r", "tool": "read", "params": {"file": "a"}},
    )
    executor = PlanExecutor(tools.registry, services.tool_context(), stop_on_failure=True)
    await executor.execute(plan)
    assert [s.status for s in plan.steps] == ["failed", "skipped"]
    assert [name for name, _ in tools.calls] == ["search"]


async def test_cancel_before_start_skips_everything(services):
    tools = RecordingTools()
    plan = _plan({"tool": "read", "params": {"file": "a"}})
    cancel = asyncio.Event()
    cancel.set()
    outcome = await PlanExecutor(tools.registry, services.tool_context()).execute(plan, cancel=cancel)
    assert outcome.cancelled
    assert plan.steps[0].status == "skipped"
    assert plan.steps[0].detail == "Cancelled"


async def test_parallel_wave_runs_independent_steps(services):
    tools = RecordingTools()
    plan = _plan(
        {"id": "a", "tool": "read", "params": {"file": "a"}},
        {"id": "b", "tool": "read", "params": {"file": "b"}},
        {"id": "c", "tool": "summarize", "params": {"file": "c"}, "dependsOn": ["a", "b"]},
    )
    await PlanExecutor(tools.registry, services.tool_context(), parallel=True).execute(plan)
    assert [s.status for s in plan.steps] == ["completed"] * 3
    assert tools.calls[-1][0] == "summarize"


async def test_parallel_waits_for_context_provider(services):
    tools = RecordingTools()
    plan = _plan(
        {"id": "a", "tool": "search", "params": {"query": "x"}, "providesContext": ["hits"]},
        {"id": "b", "tool": "write", "params": {"title": "T"}, "contextNeeded": ["hits"]},
        {"id": "c", "tool": "read", "params": {"file": "c"}},
    )
    await PlanExecutor(tools.registry, services.tool_context(), parallel=True).execute(plan)
    assert [s.status for s in plan.steps] == ["completed"] * 3
    assert [name for name, _ in tools.calls] == ["search", "read", "write"]


async def test_step_events_emitted(services):
    tools = RecordingTools()
    channel = EventChannel()
    plan = _plan({"id": "a", "tool": "read", "params": {"file": "a"}})
    await PlanExecutor(tools.registry, services.tool_context(), events=channel).execute(plan)
    events = channel.drain()
    assert [(e.type, e.payload["status"]) for e in events] == [
        (ev.STEP_STARTED, "running"),
        (ev.STEP_FINISHED, "completed"),
    ]


async def test_update_previews_collected(services, project):
    await services.projects.add_document(project.id, "a.md", "# A\nold\n")
    plan = _plan(
        {"tool": "updateFile", "params": {"file": "a.md", "section": "A", "newContent": "new"}}
    )
    outcome = await PlanExecutor(services.registry, services.tool_context(project.id)).execute(plan)
    assert len(outcome.previews) == 1
    assert outcome.previews[0].new_content == "# A\nnew\n"
    assert not outcome.persisted_changes
