"""Tests for the completion checker."""

from __future__ import annotations

from docdesk.agent.checker import CompletionChecker, render_outcome
from docdesk.agent.executor import ExecutionOutcome
from docdesk.agent.plan import plan_from_dict
from docdesk.tools.base import ToolResult


def _outcome():
    plan = plan_from_dict(
        {
            "summary": "s",
            "steps": [
                {"id": "a", "tool": "search", "description": "find budget"},
                {"id": "b", "tool": "write", "description": "write report"},
                {"id": "c", "tool": "read", "description": "read notes"},
            ],
        },
        "q",
    )
    plan.steps[0].status = "completed"
    plan.steps[1].status = "failed"
    plan.steps[2].status = "skipped"
    plan.steps[2].detail = "Dependency not completed: b"
    return ExecutionOutcome(
        plan=plan,
        results={
            "a": ToolResult.ok("search", "x" * 2000),
            "b": ToolResult.fail("write", "disk full"),
        },
    )


def test_render_outcome():
    text = render_outcome(_outcome())
    assert "- [completed] a search: find budget" in text
    assert "  Error: disk full" in text
    assert "  Dependency not completed: b" in text
    assert "x" * 1500 + " [...]" in text
    assert "x" * 1501 not in text


async def test_check_parses_verdict(fake_llm):
    fake_llm.queue(
        {
            "isComplete": False,
            "completedTasks": ["find budget"],
            "missingTasks": ["write report"],
            "shouldReplan": True,
            "reasoning": "Write failed.",
        }
    )
    check = await CompletionChecker(fake_llm).check("report on the budget", _outcome())
    assert not check.is_complete
    assert check.should_replan
    assert check.missing_tasks == ["write report"]
    assert check.reasoning == "Write failed."
    assert "Request: report on the budget" in fake_llm.last_prompt


async def test_complete_verdict_never_replans(fake_llm):
    fake_llm.queue({"isComplete": True, "shouldReplan": True})
    check = await CompletionChecker(fake_llm).check("q", _outcome())
    assert check.is_complete
    assert not check.should_replan


async def test_missing_tasks_imply_incomplete(fake_llm):
    fake_llm.queue({"missingTasks": ["x"]})
    assert not (await CompletionChecker(fake_llm).check("q", _outcome())).is_complete


async def test_unparseable_verdict_counts_as_complete(fake_llm):
    fake_llm.queue("Looks good to me")
    check = await CompletionChecker(fake_llm).check("q", _outcome())
    assert check.is_complete
    assert check.completed_tasks == ["find budget"]
