"""Tests for plan parsing and validation."""

from __future__ import annotations

import json

import pytest

from docdesk.agent.plan import (
    context_providers,
    parse_plan,
    plan_from_dict,
    unsatisfied_context,
)
from docdesk.errors import ValidationError


def _plan(steps, **extra):
    return {"summary": "Do it", "steps": steps, **extra}


def test_parse_plan_from_fenced_reply():
    reply = "Here you go:\n```json\n" + json.dumps(
        _plan(
            [
                {"tool": "search", "params": {"query": "budget"}, "providesContext": ["hits"]},
                {
                    "id": "write-it",
                    "tool": "write",
                    "params": {"title": "Budget"},
                    "dependsOn": ["step-1"],
                    "contextNeeded": "hits",
                },
            ],
            complexity="HIGH",
        )
    ) + "\n```"
    plan = parse_plan(reply, "summarize the budget")
    assert plan.summary == "Do it"
    assert plan.original_query == "summarize the budget"
    assert plan.complexity == "high"
    assert [s.id for s in plan.steps] == ["step-1", "write-it"]
    assert plan.steps[1].context_needed == ["hits"]
    assert all(s.status == "pending" for s in plan.steps)


def test_parse_plan_without_json():
    with pytest.raises(ValidationError, match="JSON plan"):
        parse_plan("I will search for it.", "q")


@pytest.mark.parametrize(
    "steps, message",
    [
        ([{"tool": "explode"}], "unknown tool"),
        ([{"id": "a", "tool": "read"}, {"id": "a", "tool": "read"}], "unique"),
        ([{"id": "a", "tool": "read", "dependsOn": ["b"]}], "unknown step"),
        ([{"id": "a", "tool": "read", "dependsOn": ["a"]}], "itself"),
        ([{"tool": "read", "params": ["x"]}], "params must be an object"),
        ([], "no steps"),
    ],
)
def test_invalid_plans(steps, message):
    with pytest.raises(ValidationError, match=message):
        plan_from_dict(_plan(steps), "q")


def test_clarification_plan_may_have_no_steps():
    plan = plan_from_dict(
        {"needsClarification": True, "clarificationQuestion": "Which project?", "steps": []}, "q"
    )
    assert plan.needs_clarification
    assert plan.clarification_question == "Which project?"
    assert plan.summary == "q"


def test_unknown_complexity_treated_as_high():
    plan = plan_from_dict(_plan([{"tool": "read"}], complexity="medium"), "q")
    assert plan.complexity == "high"


@pytest.mark.parametrize(
    "tool, expected",
    [("read", "low"), ("search", "low"), ("write", "high"), ("deleteFile", "high")],
)
def test_missing_complexity_follows_step_effects(tool, expected):
    plan = plan_from_dict(_plan([{"tool": tool}]), "q")
    assert plan.complexity == expected


def test_unsatisfied_context():
    plan = plan_from_dict(
        _plan(
            [
                {"id": "a", "tool": "search", "providesContext": ["hits"]},
                {"id": "b", "tool": "write", "contextNeeded": ["hits", "outline"]},
            ]
        ),
        "q",
    )
    assert unsatisfied_context(plan) == {"b": ["outline"]}


def test_counts_and_to_dict():
    plan = plan_from_dict(_plan([{"tool": "read"}, {"tool": "search"}]), "q")
    plan.steps[0].status = "completed"
    assert plan.counts()["completed"] == 1
    assert plan.counts()["pending"] == 1
    data = plan.to_dict()
    assert data["steps"][0]["dependsOn"] == []
    assert data["originalQuery"] == "q"


def test_unsatisfied_context_counts_carried_keys():
    plan = plan_from_dict(_plan([{"id": "b", "tool": "write", "contextNeeded": ["hits"]}]), "q")
    assert unsatisfied_context(plan) == {"b": ["hits"]}
    assert unsatisfied_context(plan, {"hits"}) == {}


def test_context_providers():
    plan = plan_from_dict(
        _plan(
            [
                {"id": "a", "tool": "search", "providesContext": ["hits"]},
                {"id": "b", "tool": "read", "providesContext": ["doc"]},
                {"id": "c", "tool": "write", "contextNeeded": ["hits"]},
                {"id": "d", "tool": "search", "providesContext": ["hits"]},
            ]
        ),
        "q",
    )
    assert context_providers(plan, plan.step("c")) == ["a"]
    assert context_providers(plan, plan.step("a")) == []
