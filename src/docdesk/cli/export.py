"""docdesk export — write a stored file out as Markdown, DOCX or PDF."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Annotated

import typer

from docdesk.cli.workspace import (
    ProjectOption,
    WorkspaceOption,
    console,
    fail,
    open_workspace,
    resolve_project,
)
from docdesk.documents import EXPORT_FORMATS, export_document
from docdesk.errors import DocdeskError


def export_cmd(
    file: Annotated[str, typer.Argument(help="File name, path or id.")],
    project: ProjectOption = None,
    fmt: Annotated[
        str,
        typer.Option("--format", "-f", help="Export format: md, docx or pdf."),
    ] = "md",
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Destination (default: <file name>.<format>)."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing destination."),
    ] = False,
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Export a project file; PDF needs Pandoc on PATH."""
    fmt = fmt.lower().lstrip(".")
    if fmt not in EXPORT_FORMATS:
        console.print(
            f"[red]Error:[/] Unsupported format '{fmt}'.\n"
            f"  Use one of: {', '.join(EXPORT_FORMATS)}"
        )
        raise typer.Exit(1)

    with open_workspace(workspace) as services:
        target = resolve_project(services, project)
        try:
            found = services.projects.find_file(file, target.id if target else None)
            title = PurePosixPath(found.name).stem
            data = export_document(title, found.content or "", fmt)
        except DocdeskError as exc:
            raise fail(exc)

    dest = output or Path(f"{title}.{fmt}")
    if dest.exists() and not force:
        console.print(f"[red]Error:[/] {dest} already exists.\n  Pass --force to overwrite it.")
        raise typer.Exit(1)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    console.print(f"[green]✓[/] Exported {found.name} to {dest} ({len(data)} bytes)")
