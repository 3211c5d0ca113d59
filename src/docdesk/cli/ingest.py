"""docdesk ingest / reindex — add documents to a project and (re)build embeddings.

Supported extensions: .md .markdown .txt .text .rst .csv .log .html .htm .pdf .docx.
Directories expand to their supported files; the path below the directory
becomes the file's project-relative name (``--recursive`` for subdirs).
"""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from docdesk.cli.workspace import WorkspaceOption, console, fail, open_workspace, run
from docdesk.db.models import ProjectFile
from docdesk.errors import DocdeskError, EmbeddingError, ValidationError
from docdesk.ingest.extract import SUPPORTED_TYPES, detect_type, extract_text
from docdesk.services import AppServices


def ingest_cmd(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files or directories to ingest."),
    ],
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Target project (created if missing)."),
    ],
    workspace: WorkspaceOption = Path("."),
    recursive: Annotated[
        bool,
        typer.Option("--recursive", "-r", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
) -> None:
    """Ingest documents into a project."""
    targets = _expand_paths(paths, recursive=recursive, exclude=exclude or [])
    if not targets:
        console.print("[yellow]No supported files found to ingest.[/]")
        raise typer.Exit(0)

    with open_workspace(workspace) as services:
        try:
            target, created = services.projects.get_or_create_project(project)
        except DocdeskError as exc:
            raise fail(exc)
        if created:
            console.print(f"[green]✓[/] Created project [bold]{target.name}[/]")

        failures = run(_ingest_all(services, target.id, targets))

    console.print(f"\n  {len(targets) - failures}/{len(targets)} files ingested into {target.name}")
    if failures:
        raise typer.Exit(1)


async def _ingest_all(services: AppServices, project_id: str, targets: list[tuple[Path, str]]) -> int:
    failures = 0
    for path, name in targets:
        console.print(f"\n[bold]→ {name}[/]")
        existing = services.repo.get_file_by_name(project_id, name)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Extracting and embedding…", total=None)
            try:
                if existing is not None:
                    file = await _reimport(services, existing, path)
                else:
                    file = await services.projects.import_path(project_id, path, name)
            except (ValidationError, EmbeddingError, OSError) as exc:
                console.print(f"  [red]✗ Error:[/] {exc}")
                failures += 1
                continue
        chunks = len(services.repo.list_chunks_by_file(file.id))
        verb = "Re-indexed" if existing is not None else "Stored"
        console.print(f"  [green]✓[/] {verb} ({chunks} chunks)")
    return failures


async def _reimport(services: AppServices, existing: ProjectFile, path: Path) -> ProjectFile:
    """Replace an already ingested file's content if it changed on disk."""
    text = extract_text(path)
    if text == existing.content:
        console.print("  [dim]↷ Unchanged[/]")
        return existing
    return await services.projects.update_document(existing.id, text)


def reindex_cmd(
    workspace: WorkspaceOption = Path("."),
) -> None:
    """Regenerate every chunk and embedding with the active embedding model."""
    with open_workspace(workspace) as services:
        files = services.repo.list_files()
        if not files:
            console.print("[yellow]No files to reindex.[/]")
            raise typer.Exit(0)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Reindexing…", total=len(files))

            def _on_file(file: ProjectFile) -> None:
                prog.update(task, advance=1, description=f"Reindexing {file.name}")

            done, chunks = run(services.indexer.reindex_all(on_file=_on_file))

    console.print(
        f"[green]✓[/] Reindexed {done} files ({chunks} chunks) "
        f"with {services.embedder.model}"
    )


# ------------------------------------------------------------------
# Path expansion
# ------------------------------------------------------------------


def _expand_paths(
    paths: list[Path], recursive: bool, exclude: list[str]
) -> list[tuple[Path, str]]:
    """Expand directories; return ``(path, project-relative name)`` pairs."""
    result: list[tuple[Path, str]] = []
    for path in paths:
        if path.is_dir():
            files = _scan_dir(path, recursive=recursive, exclude=exclude, depth=0)
            if not files:
                console.print(f"[yellow]No supported files found in directory:[/] {path}")
            result.extend((f, f.relative_to(path).as_posix()) for f in files)
        elif not path.is_file():
            console.print(f"[red]✗ Not found:[/] {path}")
        elif detect_type(path) not in SUPPORTED_TYPES:
            console.print(f"[red]✗ Unsupported file type:[/] {path.suffix!r} ({path.name}), skipping")
        else:
            result.append((path, path.name))
    return result


def _scan_dir(
    directory: Path,
    recursive: bool,
    exclude: list[str],
    depth: int,
    max_depth: int = 10,
) -> list[Path]:
    """Return supported files in *directory* (optionally recursive)."""
    if depth > max_depth:
        return []
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if entry.name.startswith(".") or any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_dir():
            if recursive:
                files.extend(_scan_dir(entry, recursive, exclude, depth + 1, max_depth))
        elif detect_type(entry) in SUPPORTED_TYPES:
            files.append(entry)
    return files
