"""docdesk search / web — semantic search over documents and cached web research."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown
from rich.table import Table

from docdesk.cli.workspace import (
    ProjectOption,
    WorkspaceOption,
    console,
    open_workspace,
    resolve_project,
    run,
)
from docdesk.db.models import SearchResult
from docdesk.services import AppServices
from docdesk.web.research import format_web_research_results

_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    project: ProjectOption = None,
    workspace: WorkspaceOption = Path("."),
    limit: Annotated[
        int,
        typer.Option("--limit", "-k", min=1, help="Number of results."),
    ] = 5,
) -> None:
    """Semantic search over one project, or every project."""
    with open_workspace(workspace) as services:
        target = resolve_project(services, project)
        results = run(_search(services, query, target.id if target else None, limit))

    if not results:
        console.print("[yellow]No relevant results found.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Results for “{query}”", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source", style="bold")
    table.add_column("Excerpt")
    for i, r in enumerate(results, 1):
        source = r.file_name if target else f"{r.project_name}/{r.file_name}"
        excerpt = " ".join(r.text.split())
        if len(excerpt) > _SNIPPET_CHARS:
            excerpt = excerpt[:_SNIPPET_CHARS] + "…"
        table.add_row(str(i), f"{r.score * 100:.1f}%", source, excerpt)
    console.print(table)


async def _search(
    services: AppServices, query: str, project_id: str | None, limit: int
) -> list[SearchResult]:
    vector = await services.embedder.embed(query)
    return services.repo.vector_search(
        services.indexer.vec_table,
        vector,
        limit,
        [project_id] if project_id is not None else None,
        min_score=services.config.context.min_score,
    )


def web_cmd(
    query: Annotated[
        str | None,
        typer.Argument(help="Search query (omit with --clear-cache)."),
    ] = None,
    workspace: WorkspaceOption = Path("."),
    max_results: Annotated[
        int | None,
        typer.Option("--max-results", min=1, help="Pages to fetch (default: web_search.max_results)."),
    ] = None,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Ignore cached results and search again."),
    ] = False,
    clear_cache: Annotated[
        bool,
        typer.Option("--clear-cache", help="Delete every cached web page and exit."),
    ] = False,
) -> None:
    """Search the web, cache the pages and show the most relevant passages."""
    with open_workspace(workspace) as services:
        if clear_cache:
            removed = services.web.clear_web_search_cache()
            console.print(f"[green]✓[/] Cleared {removed} cached pages")
            return
        if not query:
            console.print("[red]Error:[/] No query given.\n  Run:  docdesk web \"<query>\"")
            raise typer.Exit(1)

        with console.status(f"Searching the web for “{query}”…"):
            result = run(
                services.web.research(query, max_results=max_results, use_cache=not no_cache)
            )

    if result.error:
        console.print(f"[red]Error:[/] {result.error}")
        raise typer.Exit(1)
    console.print(Markdown(format_web_research_results(result)))
