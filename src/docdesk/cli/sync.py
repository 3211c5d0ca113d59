"""docdesk sync — reconcile projects with Markdown files under ``sync.root``.

  docdesk sync                 — one full two-way sync
  docdesk sync --project X     — sync one project
  docdesk sync --status        — show sync state
  docdesk sync --watch         — full sync, then poll for external edits (Ctrl+C stops)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from docdesk.cli.errors import err_sync_not_configured
from docdesk.cli.workspace import ProjectOption, WorkspaceOption, console, open_workspace, resolve_project, run
from docdesk.sync.service import SyncResult, SyncService


def sync_cmd(
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
    status: Annotated[
        bool,
        typer.Option("--status", help="Show sync status and exit."),
    ] = False,
    watch: Annotated[
        bool,
        typer.Option("--watch", help="Keep running and import files edited outside docdesk."),
    ] = False,
) -> None:
    """Two-way sync between the database and the sync directory."""
    with open_workspace(workspace) as services:
        sync = services.sync
        if sync is None:
            console.print(err_sync_not_configured())
            raise typer.Exit(1)

        if status:
            _show_status(sync)
            return

        if not sync.fs.available():
            sync.fs.root.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/] Created sync directory {sync.fs.root}")

        target = resolve_project(services, project)
        with console.status("Syncing…"):
            if target is not None:
                result = run(sync.sync_project(target.id, last_sync=sync.last_sync_time()))
            else:
                result = run(sync.sync_all())
        _show_result(result)

        if watch:
            if not services.config.sync.enabled:
                console.print(
                    "[yellow]⚠[/] Watching needs sync.enabled: true in docdesk.yaml."
                )
                raise typer.Exit(1)
            console.print(
                f"[dim]Watching {sync.fs.root} every {services.config.sync.watch_interval:g}s "
                "(Ctrl+C to stop)…[/]"
            )
            try:
                run(_watch(sync))
            except KeyboardInterrupt:
                console.print("\n[dim]Stopped watching.[/]")

    if not result.success:
        raise typer.Exit(1)


async def _watch(sync: SyncService) -> None:
    sync.start_watcher()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await sync.stop_watcher()


def _show_result(result: SyncResult) -> None:
    if not result.success:
        console.print(f"[red]✗ Sync failed:[/] {result.error}")
        return
    console.print(
        f"[green]✓[/] Sync complete  |  written: {result.files_written}  "
        f"|  read: {result.files_read}  |  conflicts: {result.conflicts_detected}"
    )
    if result.conflicts:
        table = Table(title="Conflicts (newest side kept)", show_header=True, header_style="bold")
        table.add_column("File", style="bold")
        table.add_column("Database")
        table.add_column("Filesystem")
        table.add_column("Kept")
        for c in result.conflicts:
            table.add_row(
                c.file_path,
                c.db_updated_at.strftime("%Y-%m-%d %H:%M:%S"),
                c.fs_modified_at.strftime("%Y-%m-%d %H:%M:%S"),
                c.winner,
            )
        console.print(table)


def _show_status(sync: SyncService) -> None:
    st = sync.get_sync_status()
    last = st.last_sync_time.strftime("%Y-%m-%d %H:%M:%S UTC") if st.last_sync_time else "never"
    lines = [
        f"Root:       {st.root} {'[green]✓[/]' if sync.fs.available() else '[yellow]✗ missing[/]'}",
        f"Mirroring:  {'[green]on[/]' if st.enabled else '[dim]off[/]'}",
        f"Last sync:  {last}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Sync[/]", expand=False))
