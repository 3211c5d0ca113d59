"""docdesk ask / chat — talk to your documents.

``ask`` runs one request through the planner/executor/checker agent:
the plan is shown (and confirmed when it changes data), steps report
progress as they run, and ``updateFile`` previews are shown as diffs and
applied only after confirmation.

``chat`` is an interactive loop. By default each message goes through the
direct tool-call path; ``--agent`` routes messages through the agent and
carries a clarification question into the next message.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown
from rich.syntax import Syntax
from rich.table import Table

from docdesk.agent import events as ev
from docdesk.agent.events import Event, EventChannel
from docdesk.agent.flow import FlowResult
from docdesk.agent.plan import ExecutionPlan
from docdesk.agent.planner import Clarification
from docdesk.cli.errors import err_from_exception
from docdesk.cli.workspace import (
    ProjectOption,
    WorkspaceOption,
    console,
    open_workspace,
    require_llm,
    resolve_project,
    run,
)
from docdesk.errors import DocdeskError
from docdesk.rag.chat import ChatTurn
from docdesk.services import AppServices
from docdesk.tools.update import UpdateFilePreview, apply_update

_EXIT_COMMANDS = {"/exit", "/quit", ":q"}

_STEP_ICONS = {
    "completed": "[green]✓[/]",
    "failed": "[red]✗[/]",
    "skipped": "[dim]↷[/]",
}


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


def ask_cmd(
    query: Annotated[str, typer.Argument(help="Your question or instruction.")],
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Approve plans and apply file updates without asking."),
    ] = False,
) -> None:
    """Answer a question or carry out an instruction with the tool agent."""
    with open_workspace(workspace) as services:
        require_llm(services)
        target = resolve_project(services, project)
        result = run(_ask(services, query, target.id if target else None, yes=yes))
    if not result.success:
        raise typer.Exit(1)


async def _ask(
    services: AppServices,
    query: str,
    project_id: str | None,
    *,
    yes: bool,
    clarification: Clarification | None = None,
) -> FlowResult:
    events = EventChannel()
    events.subscribe(_print_progress)

    def _confirm(plan: ExecutionPlan) -> bool:
        print_plan(plan)
        if yes:
            return True
        return typer.confirm("Run this plan?", default=True)

    flow = services.agent_flow(project_id, confirm=_confirm, events=events)
    console.print("[dim]Planning…[/]")
    try:
        result = await flow.run(query, clarification=clarification)
    finally:
        events.close()

    console.print()
    console.print(Markdown(result.response or "(no response)"))
    if result.previews:
        await review_previews(services, result.previews, yes=yes)
    return result


def print_plan(plan: ExecutionPlan) -> None:
    table = Table(title=plan.summary or "Plan", show_header=True, header_style="bold")
    table.add_column("Step")
    table.add_column("Tool", style="bold")
    table.add_column("Description")
    table.add_column("Needs")
    for step in plan.steps:
        table.add_row(step.id, step.tool, step.description, ", ".join(step.context_needed))
    console.print(table)
    console.print(f"  Complexity: [bold]{plan.complexity}[/]")


def _print_progress(event: Event) -> None:
    if event.type == ev.STEP_STARTED:
        console.print(f"  [dim]→ {event.payload['step_id']} {event.payload['tool']}…[/]")
    elif event.type == ev.STEP_FINISHED:
        icon = _STEP_ICONS.get(str(event.payload["status"]), "•")
        detail = event.payload.get("error") or event.payload.get("detail") or ""
        console.print(f"  {icon} {event.payload['step_id']} {event.payload['tool']}  [dim]{detail}[/]")
    elif event.type == ev.STATE_CHANGED and event.payload["state"] == "replanning":
        console.print("  [yellow]↻ Some tasks are still open; re-planning…[/]")


async def review_previews(
    services: AppServices, previews: list[UpdateFilePreview], *, yes: bool
) -> int:
    """Show each proposed file update as a diff and apply the approved ones."""
    applied = 0
    for preview in previews:
        if not preview.has_changes:
            console.print(f"[dim]No changes proposed for {preview.file_name}.[/]")
            continue
        console.print(f"\n[bold]Proposed update:[/] {preview.file_name} ({preview.operation} {preview.target})")
        if preview.reasoning:
            console.print(f"  [dim]{preview.reasoning}[/]")
        console.print(Syntax(preview.unified_diff, "diff", theme="ansi_dark"))
        if not yes and not typer.confirm("Apply this change?", default=False):
            console.print("[dim]Discarded.[/]")
            continue
        try:
            await apply_update(services.projects, preview)
        except DocdeskError as exc:
            console.print(err_from_exception(exc))
            continue
        console.print(f"[green]✓[/] Updated {preview.file_name}")
        applied += 1
    return applied


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


def chat_cmd(
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
    agent: Annotated[
        bool,
        typer.Option("--agent", help="Route every message through the planning agent."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Approve plans and apply file updates without asking."),
    ] = False,
) -> None:
    """Interactive chat with your documents (/clear to reset, /exit to quit)."""
    with open_workspace(workspace) as services:
        require_llm(services)
        target = resolve_project(services, project)
        project_id = target.id if target else None
        session = services.chat.get_or_create_session(project_id)

        scope = target.name if target else "all projects"
        console.print(f"[bold]docdesk chat[/] — {scope}  [dim](/clear, /exit)[/]")
        if session.messages:
            console.print(f"[dim]Resuming session with {len(session.messages)} messages.[/]")

        pending: tuple[str, str] | None = None
        while True:
            try:
                message = console.input("\n[bold cyan]you ›[/] ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            if not message:
                continue
            if message in _EXIT_COMMANDS:
                break
            if message == "/clear":
                removed = services.chat.clear_session(session.id)
                pending = None
                console.print(f"[dim]Cleared {removed} messages.[/]")
                continue

            try:
                if agent:
                    pending = run_agent_turn(services, session.id, project_id, message, pending, yes=yes)
                else:
                    run_chat_turn(services, session.id, message, yes=yes)
            except typer.Exit:
                continue


def run_chat_turn(services: AppServices, session_id: str, message: str, *, yes: bool) -> ChatTurn:
    events = EventChannel()
    console.print("[bold magenta]docdesk ›[/] ", end="")

    def _stream(event: Event) -> None:
        if event.type == ev.RESPONSE_CHUNK:
            console.print(str(event.payload.get("text", "")), end="", markup=False, highlight=False)

    events.subscribe(_stream)

    async def _turn() -> ChatTurn:
        turn = await services.chat.send_message(session_id, message, events=events)
        console.print()
        for result in turn.tool_results:
            icon = "[green]✓[/]" if result.success else "[red]✗[/]"
            console.print(f"  [dim]{icon} tool {result.tool}[/]")
        if turn.previews:
            await review_previews(services, turn.previews, yes=yes)
        return turn

    try:
        return run(_turn())
    finally:
        events.close()


def run_agent_turn(
    services: AppServices,
    session_id: str,
    project_id: str | None,
    message: str,
    pending: tuple[str, str] | None,
    *,
    yes: bool,
) -> tuple[str, str] | None:
    """One agent turn; returns ``(original query, question)`` when the agent asked for clarification."""
    clarification = None
    if pending is not None:
        clarification = Clarification(pending[0], pending[1], message)
    services.chat.add_message(session_id, "user", message)
    result = run(_ask(services, message, project_id, yes=yes, clarification=clarification))
    services.chat.add_message(session_id, "assistant", result.response)
    if result.clarification_question:
        original = clarification.original_query if clarification else message
        return original, result.clarification_question
    return None
