"""Docdesk rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from docdesk.cli.errors import err_no_workspace
    console.print(err_no_workspace(".docdesk.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from docdesk.errors import (
    ConcurrencyError,
    DocdeskError,
    EmbeddingError,
    IntegrityError,
    LLMError,
    NotFoundError,
    WebSearchError,
)


def err_no_workspace(db_path: str = ".docdesk.db") -> str:
    """No .docdesk.db found in the workspace."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  docdesk init"
    )


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "groq": "GROQ_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or pick a local model:  generation.model: ollama/llama3 in docdesk.yaml"
    )


def err_config(message: str) -> str:
    """docdesk.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix docdesk.yaml (workspace) or ~/.docdesk/config.yaml (global)."
    )


def err_project_not_found(ref: str, names: list[str]) -> str:
    available = ", ".join(names) if names else "(none)"
    return (
        f"[red]Error:[/] Project '{ref}' not found.\n"
        f"  Projects: {available}\n"
        f"  Run:  docdesk projects create \"{ref}\""
    )


def err_sync_not_configured() -> str:
    return (
        "[red]Error:[/] Filesystem sync is not configured.\n"
        "  Add to docdesk.yaml:\n"
        "    sync:\n"
        "      root: ~/Documents/docdesk\n"
        "      enabled: true"
    )


def warn_embeddings_invalidated() -> str:
    """Shown once after the embedding model changed."""
    return (
        "[yellow]⚠[/] The embedding model changed; stored embeddings were discarded.\n"
        "  Search is empty until you run:  docdesk reindex"
    )


def err_from_exception(exc: DocdeskError) -> str:
    """Translate a service-layer error into an actionable message."""
    if isinstance(exc, NotFoundError):
        return f"[red]Error:[/] {exc}\n  Run:  docdesk projects list  to see what exists."
    if isinstance(exc, ConcurrencyError):
        return (
            f"[red]Error:[/] {exc}\n"
            "  Wait for the running request to finish, or cancel it with Ctrl+C."
        )
    if isinstance(exc, EmbeddingError):
        return (
            f"[red]Error:[/] Embedding failed: {exc}\n"
            "  Check embedding.provider / embedding.model, then run:  docdesk reindex"
        )
    if isinstance(exc, LLMError):
        return (
            f"[red]Error:[/] Language model call failed: {exc}\n"
            "  Check generation.model and the matching API key environment variable."
        )
    if isinstance(exc, WebSearchError):
        return (
            f"[red]Error:[/] Web search failed: {exc}\n"
            "  Check web_search.provider (searxng, brave, duckduckgo) in docdesk.yaml."
        )
    if isinstance(exc, IntegrityError):
        return (
            f"[red]Error:[/] Stored data failed an integrity check: {exc}\n"
            "  Run:  docdesk versions list <file>  and restore a known-good version."
        )
    return f"[red]Error:[/] {exc}"
