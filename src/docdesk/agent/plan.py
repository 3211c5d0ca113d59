"""Execution plan model and parsing.

A plan is an ordered list of tool-call steps. Steps declare ordering with
``depends_on`` and data flow with ``provides_context`` / ``context_needed``:
a ``search`` step may provide ``relevantChunks`` that a later ``write`` step
needs. Once created, only per-step ``status``, ``detail``, ``error`` and
``persisted_changes`` change.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docdesk.errors import ValidationError
from docdesk.rag.llm_client import extract_json
from docdesk.tools.base import TOOL_NAMES, TOOLS_BY_NAME

STEP_STATUSES = ("pending", "running", "completed", "failed", "skipped")
TERMINAL_STATUSES = frozenset({"completed", "failed", "skipped"})
COMPLEXITIES = ("low", "high")


@dataclass
class PlanStep:
    id: str
    tool: str
    params: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    depends_on: list[str] = field(default_factory=list)
    context_needed: list[str] = field(default_factory=list)
    provides_context: list[str] = field(default_factory=list)
    status: str = "pending"
    detail: str | None = None
    error: str | None = None
    persisted_changes: bool = False

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool,
            "params": self.params,
            "description": self.description,
            "dependsOn": self.depends_on,
            "contextNeeded": self.context_needed,
            "providesContext": self.provides_context,
            "status": self.status,
            "detail": self.detail,
            "error": self.error,
            "persistedChanges": self.persisted_changes,
        }


@dataclass
class ExecutionPlan:
    summary: str
    steps: list[PlanStep]
    original_query: str
    complexity: str = "low"
    needs_clarification: bool = False
    clarification_question: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="microseconds")
    )

    def step(self, step_id: str) -> PlanStep:
        for s in self.steps:
            if s.id == step_id:
                return s
        raise KeyError(step_id)

    def counts(self) -> dict[str, int]:
        out = {status: 0 for status in STEP_STATUSES}
        for s in self.steps:
            out[s.status] += 1
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "complexity": self.complexity,
            "needsClarification": self.needs_clarification,
            "clarificationQuestion": self.clarification_question,
            "originalQuery": self.original_query,
            "createdAt": self.created_at,
            "steps": [s.to_dict() for s in self.steps],
        }


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list):
        return [str(v) for v in value if v not in (None, "")]
    raise ValidationError(f"Expected a list of strings, got {type(value).__name__}")


def _parse_step(raw: Any, index: int) -> PlanStep:
    if not isinstance(raw, dict):
        raise ValidationError(f"Plan step {index} is not an object")
    tool = raw.get("tool")
    if tool not in TOOL_NAMES:
        raise ValidationError(f"Plan step {index} uses unknown tool '{tool}'")
    params = raw.get("params") or {}
    if not isinstance(params, dict):
        raise ValidationError(f"Plan step {index} params must be an object")
    return PlanStep(
        id=str(raw.get("id") or f"step-{index}"),
        tool=tool,
        params=params,
        description=str(raw.get("description") or ""),
        depends_on=_str_list(raw.get("dependsOn")),
        context_needed=_str_list(raw.get("contextNeeded")),
        provides_context=_str_list(raw.get("providesContext")),
    )


def plan_from_dict(data: dict[str, Any], original_query: str) -> ExecutionPlan:
    """Build and validate a plan from the planner's JSON object.

    Raises:
        ValidationError: For unknown tools, duplicate step ids or
            dependencies on steps that do not exist.
    """
    needs_clarification = bool(data.get("needsClarification"))
    raw_steps = data.get("steps") or []
    if not isinstance(raw_steps, list):
        raise ValidationError("Plan 'steps' must be a list")
    steps = [_parse_step(raw, i) for i, raw in enumerate(raw_steps, 1)]

    ids = [s.id for s in steps]
    if len(set(ids)) != len(ids):
        raise ValidationError("Plan step ids must be unique")
    known = set(ids)
    for s in steps:
        unknown = [d for d in s.depends_on if d not in known]
        if unknown:
            raise ValidationError(f"Step '{s.id}' depends on unknown step(s): {', '.join(unknown)}")
        if s.id in s.depends_on:
            raise ValidationError(f"Step '{s.id}' depends on itself")

    if not steps and not needs_clarification:
        raise ValidationError("Plan has no steps")

    raw_complexity = data.get("complexity")
    if raw_complexity:
        complexity = str(raw_complexity).lower()
        if complexity not in COMPLEXITIES:
            complexity = "high"
    else:
        # Unrated plans that change anything wait for confirmation.
        mutating = any(TOOLS_BY_NAME[s.tool].mutating for s in steps)
        complexity = "high" if mutating else "low"
    question = data.get("clarificationQuestion")
    return ExecutionPlan(
        summary=str(data.get("summary") or original_query),
        steps=steps,
        original_query=original_query,
        complexity=complexity,
        needs_clarification=needs_clarification,
        clarification_question=str(question) if question else None,
    )


def parse_plan(raw_output: str, original_query: str) -> ExecutionPlan:
    """Parse the planner's reply into an ``ExecutionPlan``.

    Raises:
        ValidationError: If the reply has no JSON object or the plan is invalid.
    """
    data = extract_json(raw_output)
    if data is None:
        raise ValidationError("Planner reply did not contain a JSON plan")
    return plan_from_dict(data, original_query)


def unsatisfied_context(
    plan: ExecutionPlan, available: Iterable[str] = ()
) -> dict[str, list[str]]:
    """Map step id → context keys no earlier step provides.

    Keys in *available* (context carried over from an earlier plan) count as
    provided before the first step.
    """
    provided: set[str] = set(available)
    missing: dict[str, list[str]] = {}
    for s in plan.steps:
        gaps = [k for k in s.context_needed if k not in provided]
        if gaps:
            missing[s.id] = gaps
        provided.update(s.provides_context)
    return missing


def context_providers(plan: ExecutionPlan, step: PlanStep) -> list[str]:
    """Ids of the steps before *step* that provide a context key it needs."""
    needed = set(step.context_needed)
    providers: list[str] = []
    for other in plan.steps:
        if other.id == step.id:
            break
        if needed.intersection(other.provides_context):
            providers.append(other.id)
    return providers
