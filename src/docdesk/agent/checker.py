"""Completion checker — did the executed plan satisfy the request?"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from docdesk.agent.executor import ExecutionOutcome
from docdesk.rag.llm_client import CompletionClient, extract_json

_RESULT_PREVIEW_CHARS = 1500

_CHECK_PROMPT = """You verify whether a user's request has been fully handled.

Compare the request with the executed steps and their results. Respond with
ONE JSON object and nothing else:
{
  "isComplete": true,
  "completedTasks": ["..."],
  "missingTasks": ["..."],
  "shouldReplan": false,
  "reasoning": "one or two sentences"
}
Set "shouldReplan" to true only when a different set of tool calls could
still accomplish the missing tasks."""


@dataclass
class CompletionCheck:
    is_complete: bool
    completed_tasks: list[str] = field(default_factory=list)
    missing_tasks: list[str] = field(default_factory=list)
    should_replan: bool = False
    reasoning: str = ""


def _list(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if v]
    return []


def render_outcome(outcome: ExecutionOutcome) -> str:
    """Step-by-step summary of an execution, with truncated results."""
    lines = []
    for step in outcome.plan.steps:
        lines.append(f"- [{step.status}] {step.id} {step.tool}: {step.description}")
        result = outcome.results.get(step.id)
        if result is None:
            if step.detail:
                lines.append(f"  {step.detail}")
            continue
        if result.success:
            data = (result.data or "").strip()
            if len(data) > _RESULT_PREVIEW_CHARS:
                data = data[:_RESULT_PREVIEW_CHARS] + " [...]"
            lines.append(f"  Result: {data}")
        else:
            lines.append(f"  Error: {result.error}")
    return "\n".join(lines)


class CompletionChecker:
    def __init__(self, llm: CompletionClient) -> None:
        self._llm = llm

    async def check(self, query: str, outcome: ExecutionOutcome) -> CompletionCheck:
        """Ask the model whether *outcome* satisfies *query*.

        An unparseable verdict counts as complete so the flow always
        terminates.

        Raises:
            LLMError: If the completion call fails.
        """
        reply = await self._llm.complete(
            [
                {"role": "system", "content": _CHECK_PROMPT},
                {
                    "role": "user",
                    "content": f"Request: {query}\n\nExecuted steps:\n{render_outcome(outcome)}",
                },
            ],
            temperature=0.0,
        )
        data = extract_json(reply)
        if data is None:
            logger.warning("[checker] Unparseable verdict; treating the request as complete")
            return CompletionCheck(
                is_complete=True,
                completed_tasks=[s.description or s.tool for s in outcome.completed_steps],
                reasoning="Verdict could not be parsed",
            )
        missing = _list(data.get("missingTasks"))
        is_complete = bool(data.get("isComplete", not missing))
        return CompletionCheck(
            is_complete=is_complete,
            completed_tasks=_list(data.get("completedTasks")),
            missing_tasks=missing,
            should_replan=bool(data.get("shouldReplan")) and not is_complete,
            reasoning=str(data.get("reasoning") or ""),
        )
