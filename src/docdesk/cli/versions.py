"""docdesk versions — file version history.

Commands:
  docdesk versions list <file>            — versions, newest first
  docdesk versions show <file> <n>        — content of version n
  docdesk versions restore <file> <n>     — write version n back (new ``restore`` version)
  docdesk versions prune <file> --keep N  — drop all but the newest N versions
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.syntax import Syntax
from rich.table import Table

from docdesk.cli.workspace import (
    ProjectOption,
    WorkspaceOption,
    console,
    fail,
    open_workspace,
    resolve_project,
    run,
)
from docdesk.db.models import ProjectFile
from docdesk.errors import DocdeskError
from docdesk.services import AppServices

versions_app = typer.Typer(
    name="versions",
    help="Inspect, restore and prune file versions.",
    add_completion=False,
)

FileArgument = Annotated[str, typer.Argument(help="File name, path or id.")]
NumberArgument = Annotated[int, typer.Argument(min=1, help="Version number.")]


def _find(services: AppServices, ref: str, project: str | None) -> ProjectFile:
    target = resolve_project(services, project)
    try:
        return services.projects.find_file(ref, target.id if target else None)
    except DocdeskError as exc:
        raise fail(exc)


@versions_app.command("list")
def versions_list_cmd(
    file: FileArgument,
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """List a file's versions, newest first."""
    with open_workspace(workspace) as services:
        found = _find(services, file, project)
        history = services.versions.get_version_history(found.id)

    table = Table(title=f"Versions of {found.name}", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Source")
    table.add_column("Stored as")
    table.add_column("Created")
    for v in history:
        table.add_row(
            str(v.version_number),
            v.source,
            "full" if v.is_full_content else "patch",
            (v.created_at or "")[:19].replace("T", " "),
        )
    console.print(table)


@versions_app.command("show")
def versions_show_cmd(
    file: FileArgument,
    number: NumberArgument,
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Print the content of one version."""
    with open_workspace(workspace) as services:
        found = _find(services, file, project)
        try:
            content = services.versions.get_version_content(found.id, number)
        except DocdeskError as exc:
            raise fail(exc)
    lexer = "markdown" if found.type == "md" else "text"
    console.print(Syntax(content, lexer, theme="ansi_dark", word_wrap=True))


@versions_app.command("restore")
def versions_restore_cmd(
    file: FileArgument,
    number: NumberArgument,
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Restore a file to an earlier version."""
    with open_workspace(workspace) as services:
        found = _find(services, file, project)
        if not yes and not typer.confirm(f"Restore {found.name} to version {number}?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        run(services.projects.restore_version(found.id, number))
        latest = services.repo.latest_version_number(found.id)
    console.print(f"[green]✓[/] Restored {found.name} to version {number} (now version {latest})")


@versions_app.command("prune")
def versions_prune_cmd(
    file: FileArgument,
    keep: Annotated[
        int | None,
        typer.Option("--keep", min=1, help="Versions to keep (default: versions.max_versions)."),
    ] = None,
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Delete old versions, keeping the newest ones reconstructable."""
    with open_workspace(workspace) as services:
        found = _find(services, file, project)
        try:
            removed = services.versions.prune_versions(found.id, keep)
        except DocdeskError as exc:
            raise fail(exc)
    console.print(f"[green]✓[/] Pruned {removed} versions of {found.name}")
