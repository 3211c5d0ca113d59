"""Planner → Executor → Checker state machine.

States::

    idle → planning → [awaiting_confirmation] → executing → checking
         → replanning → planning ...                       (bounded)
         → complete | cancelled

- Low-complexity plans execute immediately (``agent.auto_execute_low_complexity``);
  others wait for confirmation, either through the ``confirm`` callback or
  via ``confirm()`` / ``reject()`` on a paused flow.
- A plan that needs clarification completes the turn with the question as
  its response.
- Re-planning happens at most ``agent.max_replan_attempts`` times, so a flow
  runs at most ``max_replan_attempts + 1`` planning cycles.
- Cancellation is a successful outcome: finished steps are kept and the
  rest are skipped.
- One running flow per chat session (``SessionRegistry``).
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.checker import CompletionCheck, CompletionChecker, render_outcome
from docdesk.agent.events import EventChannel
from docdesk.agent.executor import ExecutionOutcome, PlanExecutor
from docdesk.agent.plan import ExecutionPlan, PlanStep
from docdesk.agent.planner import Clarification, Planner, ReplanContext
from docdesk.config import AgentCfg
from docdesk.errors import ConcurrencyError, DocdeskError, LLMError, ValidationError
from docdesk.rag.llm_client import CompletionClient
from docdesk.tools.update import UpdateFilePreview

FLOW_STATES = (
    "idle",
    "planning",
    "awaiting_confirmation",
    "executing",
    "checking",
    "replanning",
    "complete",
    "cancelled",
)

ConfirmCallback = Callable[[ExecutionPlan], "Awaitable[bool] | bool"]

_RESPONSE_PROMPT = """You are docdesk, a document assistant. Tools were run to handle the
user's request. Using only the step results below, answer the user directly.
Mention anything that could not be done. Respond in the user's language."""


class SessionRegistry:
    """Tracks which chat sessions have a flow in progress."""

    def __init__(self) -> None:
        self._running: dict[str, AgentFlow] = {}

    def acquire(self, session_key: str, flow: AgentFlow) -> None:
        """Raises ConcurrencyError if *session_key* already has a running flow."""
        current = self._running.get(session_key)
        if current is not None and current is not flow:
            raise ConcurrencyError(
                f"Session '{session_key}' already has a plan in progress; "
                "wait for it to finish or cancel it."
            )
        self._running[session_key] = flow

    def release(self, session_key: str, flow: AgentFlow) -> None:
        if self._running.get(session_key) is flow:
            del self._running[session_key]

    def is_running(self, session_key: str) -> bool:
        return session_key in self._running

    def get(self, session_key: str) -> AgentFlow | None:
        return self._running.get(session_key)


@dataclass
class FlowResult:
    success: bool
    state: str
    response: str
    plans: list[ExecutionPlan] = field(default_factory=list)
    check: CompletionCheck | None = None
    previews: list[UpdateFilePreview] = field(default_factory=list)
    accumulated_context: dict[str, str] = field(default_factory=dict)
    replan_count: int = 0
    clarification_question: str | None = None
    error: str | None = None

    @property
    def plan(self) -> ExecutionPlan | None:
        return self.plans[-1] if self.plans else None

    @property
    def steps(self) -> list[PlanStep]:
        return [s for p in self.plans for s in p.steps]

    @property
    def planning_cycles(self) -> int:
        return len(self.plans)


class AgentFlow:
    """One request's run through the plan/execute/check loop.

    Args:
        planner: Produces plans.
        executor: Runs plans against the tool registry.
        checker: Judges completion after each execution.
        llm: Completion client for the final answer.
        config: Agent settings (replan bound, confirmation policy).
        project_id: Scope; None for global.
        session_key: Key for the one-flow-per-session lock.
        sessions: Shared registry enforcing that lock.
        events: Optional progress channel.
        confirm: Optional callback approving a plan; without it, plans that
            need confirmation pause the flow in ``awaiting_confirmation``.
    """

    def __init__(
        self,
        *,
        planner: Planner,
        executor: PlanExecutor,
        checker: CompletionChecker,
        llm: CompletionClient,
        config: AgentCfg | None = None,
        project_id: str | None = None,
        session_key: str = "global",
        sessions: SessionRegistry | None = None,
        events: EventChannel | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        self._planner = planner
        self._executor = executor
        self._checker = checker
        self._llm = llm
        self._config = config or AgentCfg()
        self.project_id = project_id
        self.session_key = session_key
        self._sessions = sessions
        self._events = events
        self._confirm = confirm
        self._cancel = asyncio.Event()

        self.state = "idle"
        self.transitions: list[str] = ["idle"]
        self._query = ""
        self._clarification: Clarification | None = None
        self._plans: list[ExecutionPlan] = []
        self._replan: ReplanContext | None = None
        self._replan_count = 0
        self._accumulated: dict[str, str] = {}
        self._previews: list[UpdateFilePreview] = []
        self._outcomes: list[ExecutionOutcome] = []
        self._check: CompletionCheck | None = None
        self.result: FlowResult | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def current_plan(self) -> ExecutionPlan | None:
        return self._plans[-1] if self._plans else None

    async def run(self, query: str, *, clarification: Clarification | None = None) -> FlowResult:
        """Plan and execute *query*.

        Raises:
            ValidationError: If this flow was already started.
            ConcurrencyError: If the session already has a running flow.
        """
        if self.state != "idle":
            raise ValidationError("This flow has already been started")
        if self._sessions is not None:
            self._sessions.acquire(self.session_key, self)
        self._query = clarification.original_query if clarification is not None else query
        self._clarification = clarification
        self._set_state("planning")
        return await self._drive(query)

    async def confirm(self) -> FlowResult:
        """Approve the paused plan and continue."""
        if self.state != "awaiting_confirmation":
            raise ValidationError(f"Nothing to confirm (state: {self.state})")
        self._set_state("executing")
        return await self._drive(self._query)

    def reject(self) -> FlowResult:
        """Reject the paused plan; the flow ends ``cancelled``."""
        if self.state != "awaiting_confirmation":
            raise ValidationError(f"Nothing to reject (state: {self.state})")
        return self._cancelled("Plan rejected. Nothing was changed.")

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next step wave."""
        self._cancel.set()
        if self.state == "awaiting_confirmation":
            self._cancelled("Cancelled before execution.")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _drive(self, query: str) -> FlowResult:
        try:
            while True:
                if self._cancel.is_set():
                    return self._cancelled(self._cancel_message())
                if self.state == "replanning":
                    self._set_state("planning")
                    continue
                if self.state == "planning":
                    done = await self._plan(query)
                elif self.state == "executing":
                    done = await self._execute()
                elif self.state == "checking":
                    done = await self._check_and_route()
                else:
                    raise ValidationError(f"Flow cannot continue from state '{self.state}'")
                if done is not None:
                    return done
        except DocdeskError as exc:
            logger.warning("[agent] Flow failed in state '{}': {}", self.state, exc)
            return self._fail(exc)
        finally:
            if self.state != "awaiting_confirmation":
                self._release()

    def _fail(self, exc: DocdeskError) -> FlowResult:
        if not self._outcomes:
            return self._complete(
                f"I could not complete the request: {exc}", success=False, error=str(exc)
            )
        # Steps may already have changed files; report what ran.
        steps = "\n\n".join(render_outcome(o) for o in self._outcomes)
        return self._complete(
            f"The request stopped early: {exc}\n\nSteps run:\n{steps}",
            success=False,
            error=str(exc),
        )

    async def _plan(self, query: str) -> FlowResult | None:
        plan = await self._planner.create_plan(
            query if not self._plans else self._query,
            self.project_id,
            replan=self._replan,
            clarification=self._clarification if not self._plans else None,
        )
        self._plans.append(plan)
        self._emit(ev.PLAN_CREATED, plan=plan.to_dict())

        if plan.needs_clarification:
            question = plan.clarification_question or "Could you clarify your request?"
            return self._complete(question, clarification_question=question)

        if self._replan_count == 0 and self._needs_confirmation(plan):
            self._set_state("awaiting_confirmation")
            if self._confirm is None:
                self.result = self._build_result(True, plan.summary)
                return self.result
            approved = self._confirm(plan)
            if inspect.isawaitable(approved):
                approved = await approved
            if not approved:
                return self._cancelled("Plan rejected. Nothing was changed.")
        self._set_state("executing")
        return None

    def _needs_confirmation(self, plan: ExecutionPlan) -> bool:
        return plan.complexity == "high" or not self._config.auto_execute_low_complexity

    async def _execute(self) -> FlowResult | None:
        outcome = await self._executor.execute(
            self._plans[-1], accumulated_context=self._accumulated, cancel=self._cancel
        )
        self._outcomes.append(outcome)
        self._accumulated = outcome.accumulated_context
        self._previews.extend(outcome.previews)
        if outcome.cancelled:
            return self._cancelled(self._cancel_message())
        self._set_state("checking")
        return None

    async def _check_and_route(self) -> FlowResult | None:
        outcome = self._outcomes[-1]
        check = await self._checker.check(self._query, outcome)
        self._check = check
        self._emit(
            ev.CHECK_FINISHED,
            is_complete=check.is_complete,
            missing_tasks=check.missing_tasks,
            should_replan=check.should_replan,
        )
        if (
            not check.is_complete
            and check.should_replan
            and self._replan_count < self._config.max_replan_attempts
        ):
            self._replan_count += 1
            self._replan = ReplanContext(
                attempt=self._replan_count,
                previous_summary=outcome.plan.summary,
                completed_tasks=check.completed_tasks,
                missing_tasks=check.missing_tasks,
                failed_steps=[f"{s.tool}: {s.error}" for s in outcome.failed_steps],
                accumulated_context=dict(self._accumulated),
            )
            logger.info("[agent] Re-planning (attempt {})", self._replan_count)
            self._set_state("replanning")
            return None
        return self._complete(await self._respond(check))

    async def _respond(self, check: CompletionCheck) -> str:
        gaps = ""
        if not check.is_complete and check.missing_tasks:
            gaps = "\n\nNot accomplished:\n" + "\n".join(f"- {t}" for t in check.missing_tasks)
        steps = "\n\n".join(render_outcome(o) for o in self._outcomes)
        try:
            return await self._llm.complete(
                [
                    {"role": "system", "content": _RESPONSE_PROMPT},
                    {"role": "user", "content": f"Request: {self._query}\n\nSteps:\n{steps}{gaps}"},
                ]
            )
        except LLMError as exc:
            logger.warning("[agent] Final answer generation failed: {}", exc)
            return f"Steps run:\n{steps}{gaps}"

    # ------------------------------------------------------------------
    # ------------------------------------------------------------------

    def _cancel_message(self) -> str:
        steps = [s for p in self._plans for s in p.steps]
        done = sum(1 for s in steps if s.status == "completed")
        return f"Cancelled after {done} of {len(steps)} step(s)."

    def _set_state(self, state: str) -> None:
        self.state = state
        self.transitions.append(state)
        self._emit(ev.STATE_CHANGED, state=state)

    def _emit(self, kind: str, **payload: object) -> None:
        if self._events is not None:
            self._events.emit(kind, **payload)

    def _build_result(self, success: bool, response: str, **extra: object) -> FlowResult:
        return FlowResult(
            success=success,
            state=self.state,
            response=response,
            plans=list(self._plans),
            check=self._check,
            previews=list(self._previews),
            accumulated_context=dict(self._accumulated),
            replan_count=self._replan_count,
            **extra,  # type: ignore[arg-type]
        )

    def _complete(self, response: str, *, success: bool = True, **extra: object) -> FlowResult:
        self._set_state("complete")
        self.result = self._build_result(success, response, **extra)
        self._emit(ev.FLOW_DONE, state=self.state, success=success)
        self._release()
        return self.result

    def _cancelled(self, response: str) -> FlowResult:
        self._set_state("cancelled")
        self.result = self._build_result(True, response)
        self._emit(ev.FLOW_DONE, state=self.state, success=True)
        self._release()
        return self.result

    def _release(self) -> None:
        if self._sessions is not None:
            self._sessions.release(self.session_key, self)
