"""docdesk init — create a workspace.

Creates:
  .docdesk.db              — empty database with schema
  docdesk.yaml             — workspace config (commented defaults)
  ~/.docdesk/config.yaml   — global model config (created once, mode 0o600)

Also appends ``.docdesk.db`` to an existing ``.gitignore``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from docdesk.config import ensure_global_config
from docdesk.db.connection import DEFAULT_DB_NAME, Database
from docdesk.db.schema import initialize

console = Console()

_WORKSPACE_YAML = """\
# Docdesk workspace configuration.
# API keys are read from environment variables only.

embedding:
  provider: local            # local | litellm
  model: sentence-transformers/all-MiniLM-L6-v2
  dimensions: 384

generation:
  model: openai/gpt-4o-mini

web_search:
  provider: duckduckgo       # searxng | brave | duckduckgo
  # searxng_url: http://localhost:8080

agent:
  max_replan_attempts: 2
  stop_on_failure: false

# sync:
#   root: ~/Documents/docdesk
#   enabled: true
"""


def init_cmd(
    workspace: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Initialize a docdesk workspace (database + config)."""
    workspace = workspace.resolve()
    workspace.mkdir(parents=True, exist_ok=True)
    db_path = workspace / DEFAULT_DB_NAME

    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists. Existing data is preserved.")

    console.print(f"\n[bold]Creating workspace in {workspace} …[/]\n")

    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    console.print(f"  [green]✓[/] {DEFAULT_DB_NAME}")

    yaml_path = workspace / "docdesk.yaml"
    if yaml_path.exists():
        console.print("  [dim]↷ docdesk.yaml already present[/]")
    else:
        yaml_path.write_text(_WORKSPACE_YAML, encoding="utf-8")
        console.print("  [green]✓[/] docdesk.yaml")

    _update_gitignore(workspace)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Workspace initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. docdesk projects create <name>                 (create a project)")
    console.print("  2. docdesk ingest <file> --project <name>         (add documents)")
    console.print("  3. docdesk ask \"What do my notes say about …?\"   (ask questions)")


def _update_gitignore(workspace: Path) -> None:
    """Add the database to .gitignore if it already exists."""
    gitignore = workspace / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8")
    entries = [DEFAULT_DB_NAME, f"{DEFAULT_DB_NAME}-wal", f"{DEFAULT_DB_NAME}-shm"]
    to_add = [e for e in entries if e not in existing]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# docdesk\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with docdesk entries)")
