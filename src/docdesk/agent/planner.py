"""Planner — turns a natural-language request into an ``ExecutionPlan``.

The model sees the tool catalog, the scope (one project's files, or every
project in global mode) and, when re-planning, what earlier cycles already
achieved. It answers with one JSON object; ``parse_plan`` validates it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from loguru import logger

from docdesk.agent.plan import ExecutionPlan, parse_plan, unsatisfied_context
from docdesk.db.repository import Repository
from docdesk.errors import NotFoundError, ValidationError
from docdesk.rag.llm_client import CompletionClient
from docdesk.tools.base import TOOL_CATALOG

_CONTEXT_PREVIEW_CHARS = 500

_PLANNER_PROMPT = """You are the planning component of docdesk, a document assistant.
Break the user's request into an ordered list of tool calls.

## Tools
{tools}

## Scope
{scope}

## Plan Format
Respond with ONE JSON object and nothing else:
{{
  "summary": "one sentence describing the plan",
  "complexity": "low" | "high",
  "needsClarification": false,
  "clarificationQuestion": null,
  "steps": [
    {{
      "id": "step-1",
      "tool": "search",
      "params": {{"query": "..."}},
      "description": "what this step achieves",
      "dependsOn": [],
      "providesContext": ["relevantChunks"],
      "contextNeeded": []
    }}
  ]
}}

## Rules
- Use only the tools listed above, with their parameter names.
- A step that uses another step's output lists that step in "dependsOn" and
  the key in "contextNeeded"; the producing step lists it in "providesContext".
  Reference a key inside a parameter value as {{{{key}}}}.
- "complexity" is "high" when the plan creates, edits, moves or deletes
  anything, or has more than three steps; otherwise "low".
- If the request is ambiguous (for example the target project or file is
  unclear), set "needsClarification": true, ask one question in
  "clarificationQuestion" and return no steps. Do not guess.
- Keep plans short. Do not add steps the request does not need."""


def _tool_lines() -> str:
    lines = []
    for spec in TOOL_CATALOG:
        params = ", ".join(f"{p.name}{'*' if p.required else ''}" for p in spec.params)
        lines.append(f"- {spec.name}({params}): {spec.purpose}")
    return "\n".join(lines) + "\n(* = required)"


def describe_scope(repo: Repository, project_id: str | None) -> str:
    """Short scope listing for the planner prompt.

    Raises:
        NotFoundError: If *project_id* does not exist.
    """
    if project_id is not None:
        project = repo.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        files = "\n".join(f"  - {f.name}" for f in repo.list_files(project_id)) or "  (no files)"
        return f"Current project: {project.name}\nFiles:\n{files}"
    projects = repo.list_projects()
    if not projects:
        return "Global mode. There are no projects yet."
    blocks = []
    for p in projects:
        files = ", ".join(f.name for f in repo.list_files(p.id)) or "no files"
        blocks.append(f"- {p.name}: {files}")
    return "Global mode (pass `project` to project tools). Projects:\n" + "\n".join(blocks)


@dataclass
class ReplanContext:
    """What earlier planning cycles achieved, carried into the next one."""

    attempt: int
    previous_summary: str
    completed_tasks: list[str] = field(default_factory=list)
    missing_tasks: list[str] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)
    accumulated_context: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        lines = [
            f"## Re-planning (attempt {self.attempt})",
            f"The previous plan was: {self.previous_summary}",
        ]
        if self.completed_tasks:
            lines.append("Already done (do NOT repeat):")
            lines.extend(f"- {t}" for t in self.completed_tasks)
        if self.missing_tasks:
            lines.append("Still missing (plan ONLY for these):")
            lines.extend(f"- {t}" for t in self.missing_tasks)
        if self.failed_steps:
            lines.append("Failed steps:")
            lines.extend(f"- {t}" for t in self.failed_steps)
        if self.accumulated_context:
            lines.append(
                "Context already available (reference as {{key}} without a producing step):"
            )
            for key, value in self.accumulated_context.items():
                lines.append(f"- {key}: {value[:_CONTEXT_PREVIEW_CHARS]}")
        return "\n".join(lines)


@dataclass
class Clarification:
    """A question the planner asked, and the user's answer to it."""

    original_query: str
    question: str
    answer: str


class Planner:
    """Ask the model for a plan.

    Args:
        llm: Completion client.
        repo: Repository used to describe the scope.
    """

    def __init__(self, llm: CompletionClient, repo: Repository) -> None:
        self._llm = llm
        self._repo = repo

    def build_messages(
        self,
        query: str,
        project_id: str | None,
        *,
        replan: ReplanContext | None = None,
        clarification: Clarification | None = None,
    ) -> list[dict[str, str]]:
        system = _PLANNER_PROMPT.format(
            tools=_tool_lines(), scope=describe_scope(self._repo, project_id)
        )
        if replan is not None:
            system += "\n\n" + replan.render()
        if clarification is not None:
            user = (
                f"Original request: {clarification.original_query}\n"
                f"You asked: {clarification.question}\n"
                f"User answered: {clarification.answer}"
            )
        else:
            user = query
        return [{"role": "system", "content": system}, {"role": "user", "content": user}]

    async def create_plan(
        self,
        query: str,
        project_id: str | None,
        *,
        replan: ReplanContext | None = None,
        clarification: Clarification | None = None,
    ) -> ExecutionPlan:
        """Return a validated plan for *query*.

        With a *clarification*, the plan is for the original request as
        refined by the user's answer.

        Raises:
            NotFoundError: If *project_id* does not exist.
            ValidationError: If the reply is not a valid plan, or a step needs
                context that neither an earlier step nor a previous plan provides.
            LLMError: If the completion call fails.
        """
        messages = self.build_messages(
            query, project_id, replan=replan, clarification=clarification
        )
        reply = await self._llm.complete(messages, temperature=0.0)
        original = clarification.original_query if clarification is not None else query
        plan = parse_plan(reply, original)
        available = replan.accumulated_context if replan is not None else {}
        gaps = unsatisfied_context(plan, available)
        if gaps:
            detail = "; ".join(f"{step}: {', '.join(keys)}" for step, keys in gaps.items())
            raise ValidationError(f"Plan needs context no earlier step provides ({detail})")
        logger.debug(
            "[planner] {} step(s), complexity={}: {}",
            len(plan.steps),
            plan.complexity,
            json.dumps([s.tool for s in plan.steps]),
        )
        return plan
