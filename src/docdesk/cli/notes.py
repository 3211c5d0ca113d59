"""docdesk note — format, title, file and index a quick note."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer

from docdesk.cli.workspace import (
    WorkspaceOption,
    console,
    open_workspace,
    require_llm,
    require_project,
    run,
)


def note_cmd(
    text: Annotated[
        str,
        typer.Argument(help="Note text; '-' reads from stdin."),
    ],
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project the note belongs to."),
    ],
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Note title (generated if omitted)."),
    ] = None,
    directory: Annotated[
        str | None,
        typer.Option("--directory", "-d", help="Directory inside the project (chosen if omitted)."),
    ] = None,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Add a note: the model formats it, titles it and picks a directory."""
    raw = sys.stdin.read() if text == "-" else text
    if not raw.strip():
        console.print("[red]Error:[/] The note is empty.\n  Run:  docdesk note \"<text>\" --project <name>")
        raise typer.Exit(1)

    with open_workspace(workspace) as services:
        require_llm(services)
        target = require_project(services, project)
        with console.status("Formatting and filing note…"):
            result = run(services.notes.add_note(target.id, raw, title=title, directory=directory))

    console.print(f"[green]✓[/] Saved [bold]{result.title}[/] as {target.name}/{result.path}")
    if result.new_directory:
        console.print(f"  [dim]Created directory {result.directory}/[/]")
