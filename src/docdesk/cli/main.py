"""Docdesk CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from docdesk.cli.ask import ask_cmd, chat_cmd
from docdesk.cli.export import export_cmd
from docdesk.cli.ingest import ingest_cmd, reindex_cmd
from docdesk.cli.init import init_cmd
from docdesk.cli.notes import note_cmd
from docdesk.cli.projects import projects_app
from docdesk.cli.search import search_cmd, web_cmd
from docdesk.cli.sync import sync_cmd
from docdesk.cli.versions import versions_app


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("docdesk")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"docdesk {ver}")
        raise typer.Exit()


app = typer.Typer(
    name="docdesk",
    help=(
        "Docdesk — chat with your documents, locally.\n\n"
        "  docdesk ask     One request through the planning agent.\n"
        "  docdesk chat    Interactive chat over one project or all of them."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Docdesk — chat with your documents, locally."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("reindex")(reindex_cmd)
app.command("search")(search_cmd)
app.command("ask")(ask_cmd)
app.command("chat")(chat_cmd)
app.command("note")(note_cmd)
app.command("export")(export_cmd)
app.command("web")(web_cmd)
app.command("sync")(sync_cmd)
app.add_typer(projects_app, name="projects")
app.add_typer(versions_app, name="versions")


@app.command("version")
def version_cmd() -> None:
    """Show the installed docdesk version."""
    try:
        ver = importlib.metadata.version("docdesk")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"docdesk {ver}")


if __name__ == "__main__":
    app()
