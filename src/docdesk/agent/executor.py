"""Plan executor.

Steps run in dependency order, one wave at a time: a wave is every pending
step whose dependencies have all finished. Waves run sequentially in plan
order unless ``parallel`` is set, in which case a wave's steps run
concurrently.

Per step:
- a dependency that failed or was skipped skips the step;
- a ``context_needed`` key nobody has provided fails the step;
- ``{{key}}`` in string parameters is replaced with accumulated context, and
  needed context not referenced by any parameter is appended to the tool's
  free-text parameter;
- the tool result's text is stored under each ``provides_context`` key.

With ``stop_on_failure`` the first failed step skips everything still
pending. Cancellation is checked before each wave; unfinished steps are
skipped and the outcome is flagged ``cancelled``.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel
from docdesk.agent.plan import ExecutionPlan, PlanStep, context_providers
from docdesk.tools.base import ToolContext, ToolResult
from docdesk.tools.registry import ToolRegistry
from docdesk.tools.update import UpdateFilePreview

_TEMPLATE_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")

# Free-text parameter that receives unreferenced context, per tool.
_CONTEXT_PARAM = {
    "write": "instruction",
    "updateFile": "instruction",
    "addNote": "content",
}


@dataclass
class ExecutionOutcome:
    plan: ExecutionPlan
    accumulated_context: dict[str, str] = field(default_factory=dict)
    results: dict[str, ToolResult] = field(default_factory=dict)
    previews: list[UpdateFilePreview] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed_steps(self) -> list[PlanStep]:
        return [s for s in self.plan.steps if s.status == "failed"]

    @property
    def completed_steps(self) -> list[PlanStep]:
        return [s for s in self.plan.steps if s.status == "completed"]

    @property
    def persisted_changes(self) -> bool:
        return any(s.persisted_changes for s in self.plan.steps)


def substitute_context(value: Any, context: dict[str, str]) -> tuple[Any, set[str]]:
    """Replace ``{{key}}`` references in *value* (recursing into lists/dicts).

    Unknown keys are left untouched. Returns the new value and the keys used.
    """
    used: set[str] = set()
    if isinstance(value, str):

        def _sub(m: re.Match[str]) -> str:
            key = m.group(1)
            if key in context:
                used.add(key)
                return context[key]
            return m.group(0)

        return _TEMPLATE_RE.sub(_sub, value), used
    if isinstance(value, list):
        items = []
        for item in value:
            new, keys = substitute_context(item, context)
            items.append(new)
            used |= keys
        return items, used
    if isinstance(value, dict):
        out = {}
        for k, item in value.items():
            new, keys = substitute_context(item, context)
            out[k] = new
            used |= keys
        return out, used
    return value, used


def resolve_params(step: PlanStep, context: dict[str, str]) -> dict[str, Any]:
    params, used = substitute_context(dict(step.params), context)
    leftover = [k for k in step.context_needed if k not in used and k in context]
    target = _CONTEXT_PARAM.get(step.tool)
    if leftover and target:
        extra = "\n\n".join(f"[{k}]\n{context[k]}" for k in leftover)
        base = str(params.get(target) or "").strip()
        params[target] = f"{base}\n\nContext from earlier steps:\n{extra}" if base else extra
    return params


class PlanExecutor:
    """Run a plan's steps through the tool registry.

    Args:
        registry: Tool registry used for dispatch.
        ctx: Tool context (scope, services).
        stop_on_failure: Skip all pending steps after the first failure.
        parallel: Run independent steps of a wave concurrently.
        events: Optional channel for step progress events.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        ctx: ToolContext,
        *,
        stop_on_failure: bool = False,
        parallel: bool = False,
        events: EventChannel | None = None,
    ) -> None:
        self._registry = registry
        self._ctx = ctx
        self.stop_on_failure = stop_on_failure
        self.parallel = parallel
        self._events = events

    async def execute(
        self,
        plan: ExecutionPlan,
        *,
        accumulated_context: dict[str, str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionOutcome:
        outcome = ExecutionOutcome(plan=plan, accumulated_context=dict(accumulated_context or {}))
        halted = False
        # A step waits for its explicit dependencies and for whichever earlier
        # steps provide the context it needs.
        waits_on = {s.id: [*s.depends_on, *context_providers(plan, s)] for s in plan.steps}

        while True:
            pending = [s for s in plan.steps if s.status == "pending"]
            if not pending:
                break
            if cancel is not None and cancel.is_set():
                outcome.cancelled = True
                for s in pending:
                    self._skip(s, "Cancelled")
                break
            if halted:
                for s in pending:
                    self._skip(s, "Skipped after an earlier step failed")
                break

            wave = [s for s in pending if all(plan.step(d).done for d in waits_on[s.id])]
            if not wave:
                for s in pending:
                    self._finish(s, ToolResult.fail(s.tool, "Dependency cycle between steps"))
                break
            if not self.parallel:
                wave = wave[:1]

            runnable = []
            for s in wave:
                blocked = [d for d in s.depends_on if plan.step(d).status != "completed"]
                if blocked:
                    self._skip(s, f"Dependency not completed: {', '.join(blocked)}")
                else:
                    runnable.append(s)

            if len(runnable) > 1:
                await asyncio.gather(*(self._run_step(s, outcome) for s in runnable))
            elif runnable:
                await self._run_step(runnable[0], outcome)

            if self.stop_on_failure and any(s.status == "failed" for s in runnable):
                halted = True

        counts = plan.counts()
        logger.info(
            "[executor] Plan finished: {} completed, {} failed, {} skipped",
            counts["completed"],
            counts["failed"],
            counts["skipped"],
        )
        return outcome

    async def _run_step(self, step: PlanStep, outcome: ExecutionOutcome) -> None:
        step.status = "running"
        self._emit(ev.STEP_STARTED, step)
        missing = [k for k in step.context_needed if k not in outcome.accumulated_context]
        if missing:
            result = ToolResult.fail(
                step.tool, f"Required context not available: {', '.join(missing)}"
            )
        else:
            params = resolve_params(step, outcome.accumulated_context)
            result = await self._registry.execute(step.tool, params, self._ctx)

        outcome.results[step.id] = result
        if result.success:
            for key in step.provides_context:
                outcome.accumulated_context[key] = result.data or ""
            if result.preview is not None:
                outcome.previews.append(result.preview)
        self._finish(step, result)

    def _finish(self, step: PlanStep, result: ToolResult) -> None:
        step.status = "completed" if result.success else "failed"
        step.persisted_changes = result.persisted_changes
        if result.success:
            step.detail = _first_line(result.data)
        else:
            step.error = result.error
            logger.warning("[executor] Step '{}' ({}) failed: {}", step.id, step.tool, result.error)
        self._emit(ev.STEP_FINISHED, step)

    def _skip(self, step: PlanStep, reason: str) -> None:
        step.status = "skipped"
        step.detail = reason
        self._emit(ev.STEP_FINISHED, step)

    def _emit(self, kind: str, step: PlanStep) -> None:
        if self._events is not None:
            self._events.emit(
                kind,
                step_id=step.id,
                tool=step.tool,
                status=step.status,
                detail=step.detail,
                error=step.error,
            )


def _first_line(text: str | None, limit: int = 120) -> str | None:
    if not text:
        return None
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line[:limit]
