"""docdesk projects — list, create, show and delete projects.

Commands:
  docdesk projects list               — all projects with file/chunk counts
  docdesk projects create <name>      — create (or report an existing) project
  docdesk projects show <name>        — files of one project
  docdesk projects delete <name>      — delete a project and everything it owns
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from docdesk.cli.workspace import WorkspaceOption, console, fail, open_workspace, require_project
from docdesk.errors import DocdeskError

projects_app = typer.Typer(
    name="projects",
    help="Manage projects (list, create, show, delete).",
    add_completion=False,
)

_STATUS_STYLE = {
    "created": "[dim]created[/]",
    "indexing": "[yellow]indexing[/]",
    "indexed": "[green]indexed[/]",
    "error": "[red]error[/]",
    "pending": "[yellow]pending[/]",
    "processing": "[yellow]processing[/]",
}


@projects_app.command("list")
def projects_list_cmd(workspace: WorkspaceOption = Path(".")) -> None:
    """List all projects."""
    with open_workspace(workspace) as services:
        projects = services.repo.list_projects()
        if not projects:
            console.print(
                "[yellow]No projects yet.[/]\n"
                "  Run:  docdesk projects create <name>"
            )
            raise typer.Exit(0)

        table = Table(title="Projects", show_header=True, header_style="bold")
        table.add_column("Name", style="bold")
        table.add_column("Status")
        table.add_column("Files", justify="right")
        table.add_column("Chunks", justify="right")
        table.add_column("Description")
        for project in projects:
            stats = services.repo.project_stats(project.id)
            table.add_row(
                project.name,
                _STATUS_STYLE.get(project.status, project.status),
                str(stats.file_count),
                f"{stats.chunk_count:,}",
                project.description or "",
            )
    console.print(table)


@projects_app.command("create")
def projects_create_cmd(
    name: Annotated[str, typer.Argument(help="Project name.")],
    description: Annotated[
        str | None,
        typer.Option("--description", "-d", help="Short description."),
    ] = None,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Create a project."""
    with open_workspace(workspace) as services:
        try:
            project, created = services.projects.get_or_create_project(name, description)
        except DocdeskError as exc:
            raise fail(exc)
    if created:
        console.print(f"[green]✓[/] Created project [bold]{project.name}[/]")
    else:
        console.print(f"[yellow]Already exists:[/] {project.name}")


@projects_app.command("show")
def projects_show_cmd(
    name: Annotated[str, typer.Argument(help="Project name or id.")],
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Show a project's files."""
    with open_workspace(workspace) as services:
        project = require_project(services, name)
        files = services.repo.list_files(project.id)
        stats = services.repo.project_stats(project.id)

        console.print(f"\n[bold]{project.name}[/]  {_STATUS_STYLE.get(project.status, project.status)}")
        if project.description:
            console.print(f"  {project.description}")
        console.print(f"  Files: {stats.file_count}  |  Chunks: {stats.chunk_count:,}\n")

        if not files:
            console.print(f'[dim]No files. Run:  docdesk ingest <path> --project "{project.name}"[/]')
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("File", style="bold")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Size", justify="right")
        table.add_column("Versions", justify="right")
        table.add_column("Updated")
        for f in files:
            table.add_row(
                f.name,
                f.type,
                _STATUS_STYLE.get(f.status, f.status),
                f"{f.size:,}",
                str(services.repo.count_versions(f.id)),
                (f.updated_at or "")[:19].replace("T", " "),
            )
    console.print(table)


@projects_app.command("delete")
def projects_delete_cmd(
    name: Annotated[str, typer.Argument(help="Project name or id.")],
    workspace: WorkspaceOption = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete a project with all its files, chunks, embeddings and versions."""
    with open_workspace(workspace) as services:
        project = require_project(services, name)
        stats = services.repo.project_stats(project.id)

        console.print(f"\nDelete project: [bold]{project.name}[/]")
        console.print(f"  Files: {stats.file_count}  |  Chunks: {stats.chunk_count}")

        if not yes:
            if not typer.confirm("Confirm deletion?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        try:
            services.projects.delete_project(project.id)
        except DocdeskError as exc:
            raise fail(exc)
    console.print(f"\n[green]✓[/] Deleted: {project.name}")
