"""Shared plumbing for CLI commands: open the workspace, run coroutines, map errors."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console

from docdesk.cli.errors import (
    err_config,
    err_from_exception,
    err_no_api_key,
    err_no_workspace,
    err_project_not_found,
    warn_embeddings_invalidated,
)
from docdesk.config import ConfigError, load_config
from docdesk.db.connection import DEFAULT_DB_NAME
from docdesk.db.models import Project
from docdesk.errors import DocdeskError, NotFoundError
from docdesk.logging_config import setup_logging
from docdesk.rag.llm_client import provider_of, validate_api_key
from docdesk.services import AppServices

console = Console()

T = TypeVar("T")

WorkspaceOption = Annotated[
    Path,
    typer.Option("--workspace", "-w", help="Workspace directory holding .docdesk.db."),
]
ProjectOption = Annotated[
    str | None,
    typer.Option("--project", "-p", help="Project name or id (omit for all projects)."),
]


def open_workspace(workspace: Path) -> AppServices:
    """Load config, set up logging and open the workspace, or exit 1."""
    workspace = workspace.resolve()
    db_path = workspace / DEFAULT_DB_NAME
    if not db_path.exists():
        console.print(err_no_workspace(str(db_path)))
        raise typer.Exit(1)

    try:
        cfg = load_config(workspace)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logging(level=cfg.logging.level, json=cfg.logging.json)

    try:
        services = AppServices.open(workspace, config=cfg)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if services.embeddings_invalidated:
        console.print(warn_embeddings_invalidated())
    return services


def require_llm(services: AppServices) -> None:
    """Exit 1 unless the generation model's API key is set."""
    model = services.config.generation.model
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1)


def resolve_project(services: AppServices, ref: str | None) -> Project | None:
    """Project for *ref*, None for the global scope; exits 1 if unknown."""
    if ref is None:
        return None
    return require_project(services, ref)


def require_project(services: AppServices, ref: str) -> Project:
    """Project named or identified by *ref*; exits 1 if unknown."""
    try:
        return services.projects.resolve_project(ref)
    except NotFoundError:
        names = [p.name for p in services.repo.list_projects()]
        console.print(err_project_not_found(ref, names))
        raise typer.Exit(1)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """``asyncio.run`` with service errors mapped to rich messages + exit 1."""
    try:
        return asyncio.run(coro)
    except DocdeskError as exc:
        console.print(err_from_exception(exc))
        raise typer.Exit(1)


def fail(exc: DocdeskError) -> typer.Exit:
    """Print *exc* as an actionable message; ``raise fail(exc)`` to exit 1."""
    console.print(err_from_exception(exc))
    return typer.Exit(1)
