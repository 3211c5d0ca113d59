"""Docdesk configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (DOCDESK_GENERATION_MODEL, DOCDESK_EMBEDDING_PROVIDER,
                             DOCDESK_EMBEDDING_MODEL, DOCDESK_SEARCH_PROVIDER,
                             DOCDESK_LOG_LEVEL)
  3. Workspace docdesk.yaml  (next to .docdesk.db)
  4. Global ~/.docdesk/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead
(OPENAI_API_KEY, BRAVE_API_KEY, ...).
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".docdesk"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_WORKSPACE_CONFIG_NAME: str = "docdesk.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or reserved_for_response.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "chunking",
        "embedding",
        "generation",
        "context",
        "tools",
        "web_search",
        "versions",
        "sync",
        "notes",
        "agent",
        "logging",
    ]
)

EMBEDDING_PROVIDERS: frozenset[str] = frozenset(["local", "litellm"])
SEARCH_PROVIDERS: frozenset[str] = frozenset(["searxng", "brave", "duckduckgo"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Character-based chunk window (docdesk.yaml: chunking:)."""

    max_chunk_size: int = 1000
    overlap: int = 200


@dataclass
class EmbeddingCfg:
    """Embedding backend configuration (docdesk.yaml: embedding:).

    Attributes:
        provider: ``local`` (on-device sentence-transformers) or ``litellm`` (remote API).
        model: Model identifier; also names the vec table the vectors live in.
        dimensions: Vector size. Fixed per active provider.
    """

    provider: str = "local"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int = 384


@dataclass
class GenerationCfg:
    """LLM generation configuration (docdesk.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 2048
    temperature: float = 0.3
    num_retries: int = 3


@dataclass
class ContextCfg:
    """Context-window budgeting (docdesk.yaml: context:).

    Attributes:
        max_tokens: Total model context window.
        reserved_for_response: Tokens kept free for the model's reply.
        context_ratio: Share of the available budget given to retrieved chunks.
        context_cap: Hard ceiling on retrieved-chunk tokens.
        chars_per_token: Character-count heuristic for token estimates.
        search_k: Number of chunks requested from vector search.
        min_score: Search results must score strictly above this similarity.
    """

    max_tokens: int = 128_000
    reserved_for_response: int = 4_096
    context_ratio: float = 0.4
    context_cap: int = 20_000
    chars_per_token: int = 4
    search_k: int = 10
    min_score: float = 0.0


@dataclass
class ToolsCfg:
    """Tool behaviour limits (docdesk.yaml: tools:)."""

    read_max_chars: int = 50_000
    summarize_direct_tokens: int = 6_000
    search_results: int = 5


@dataclass
class WebSearchCfg:
    """Web research collaborator (docdesk.yaml: web_search:).

    The Brave API key is read from the BRAVE_API_KEY environment variable.
    """

    provider: str = "duckduckgo"
    searxng_url: str = "http://localhost:8080"
    max_results: int = 5
    max_chunks: int = 10
    cache_max_age: int = 60  # minutes
    fetch_timeout: int = 30  # seconds
    fetch_max_bytes: int = 5 * 1024 * 1024


@dataclass
class VersionsCfg:
    """File version history (docdesk.yaml: versions:)."""

    max_versions: int = 50


@dataclass
class SyncCfg:
    """Database ↔ filesystem sync (docdesk.yaml: sync:)."""

    root: str | None = None
    enabled: bool = False
    watch_interval: float = 5.0  # seconds


@dataclass
class NotesCfg:
    """addNote pipeline settings (docdesk.yaml: notes:)."""

    default_directory: str = "notes"
    format_instructions: str = ""
    auto_title: bool = True


@dataclass
class AgentCfg:
    """Planner-executor-checker loop (docdesk.yaml: agent:)."""

    max_replan_attempts: int = 2
    stop_on_failure: bool = False
    auto_execute_low_complexity: bool = True
    parallel_steps: bool = False


@dataclass
class LoggingCfg:
    """Loguru sink configuration (docdesk.yaml: logging:)."""

    level: str = "WARNING"
    json: bool = False


@dataclass
class DocdeskConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    tools: ToolsCfg = field(default_factory=ToolsCfg)
    web_search: WebSearchCfg = field(default_factory=WebSearchCfg)
    versions: VersionsCfg = field(default_factory=VersionsCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)
    notes: NotesCfg = field(default_factory=NotesCfg)
    agent: AgentCfg = field(default_factory=AgentCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: DocdeskConfig) -> None:
    if cfg.chunking.max_chunk_size < 1:
        raise ConfigError("chunking.max_chunk_size must be >= 1")
    if cfg.chunking.overlap < 0:
        raise ConfigError("chunking.overlap must be >= 0")
    if not 0.0 <= cfg.context.context_ratio <= 1.0:
        raise ConfigError("context.context_ratio must be in [0.0, 1.0]")
    if not -1.0 <= cfg.context.min_score < 1.0:
        raise ConfigError("context.min_score must be in [-1.0, 1.0)")
    if cfg.context.chars_per_token < 1:
        raise ConfigError("context.chars_per_token must be >= 1")
    if cfg.versions.max_versions < 1:
        raise ConfigError("versions.max_versions must be >= 1")
    if cfg.embedding.provider not in EMBEDDING_PROVIDERS:
        raise ConfigError(
            f"Unknown embedding.provider '{cfg.embedding.provider}'. "
            f"Choose one of: {', '.join(sorted(EMBEDDING_PROVIDERS))}"
        )
    if cfg.web_search.provider not in SEARCH_PROVIDERS:
        raise ConfigError(
            f"Unknown web_search.provider '{cfg.web_search.provider}'. "
            f"Choose one of: {', '.join(sorted(SEARCH_PROVIDERS))}"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> DocdeskConfig:
    """Build a *DocdeskConfig* from a merged raw YAML dict."""
    cfg = DocdeskConfig()

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_chunk_size=int(c.get("max_chunk_size", cfg.chunking.max_chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            provider=str(e.get("provider", cfg.embedding.provider)),
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
        )

    if "context" in data:
        x = data["context"]
        cfg.context = ContextCfg(
            max_tokens=int(x.get("max_tokens", cfg.context.max_tokens)),
            reserved_for_response=int(
                x.get("reserved_for_response", cfg.context.reserved_for_response)
            ),
            context_ratio=float(x.get("context_ratio", cfg.context.context_ratio)),
            context_cap=int(x.get("context_cap", cfg.context.context_cap)),
            chars_per_token=int(x.get("chars_per_token", cfg.context.chars_per_token)),
            search_k=int(x.get("search_k", cfg.context.search_k)),
            min_score=float(x.get("min_score", cfg.context.min_score)),
        )

    if "tools" in data:
        t = data["tools"]
        cfg.tools = ToolsCfg(
            read_max_chars=int(t.get("read_max_chars", cfg.tools.read_max_chars)),
            summarize_direct_tokens=int(
                t.get("summarize_direct_tokens", cfg.tools.summarize_direct_tokens)
            ),
            search_results=int(t.get("search_results", cfg.tools.search_results)),
        )

    if "web_search" in data:
        w = data["web_search"]
        cfg.web_search = WebSearchCfg(
            provider=str(w.get("provider", cfg.web_search.provider)),
            searxng_url=str(w.get("searxng_url", cfg.web_search.searxng_url)),
            max_results=int(w.get("max_results", cfg.web_search.max_results)),
            max_chunks=int(w.get("max_chunks", cfg.web_search.max_chunks)),
            cache_max_age=int(w.get("cache_max_age", cfg.web_search.cache_max_age)),
            fetch_timeout=int(w.get("fetch_timeout", cfg.web_search.fetch_timeout)),
            fetch_max_bytes=int(w.get("fetch_max_bytes", cfg.web_search.fetch_max_bytes)),
        )

    if "versions" in data:
        v = data["versions"]
        cfg.versions = VersionsCfg(
            max_versions=int(v.get("max_versions", cfg.versions.max_versions)),
        )

    if "sync" in data:
        s = data["sync"]
        cfg.sync = SyncCfg(
            root=s.get("root") or cfg.sync.root,
            enabled=bool(s.get("enabled", cfg.sync.enabled)),
            watch_interval=float(s.get("watch_interval", cfg.sync.watch_interval)),
        )

    if "notes" in data:
        n = data["notes"]
        cfg.notes = NotesCfg(
            default_directory=str(n.get("default_directory", cfg.notes.default_directory)),
            format_instructions=str(
                n.get("format_instructions", cfg.notes.format_instructions)
            ),
            auto_title=bool(n.get("auto_title", cfg.notes.auto_title)),
        )

    if "agent" in data:
        a = data["agent"]
        cfg.agent = AgentCfg(
            max_replan_attempts=int(
                a.get("max_replan_attempts", cfg.agent.max_replan_attempts)
            ),
            stop_on_failure=bool(a.get("stop_on_failure", cfg.agent.stop_on_failure)),
            auto_execute_low_complexity=bool(
                a.get("auto_execute_low_complexity", cfg.agent.auto_execute_low_complexity)
            ),
            parallel_steps=bool(a.get("parallel_steps", cfg.agent.parallel_steps)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            json=bool(lg.get("json", cfg.logging.json)),
        )

    return cfg


def _apply_env_overrides(cfg: DocdeskConfig) -> DocdeskConfig:
    """Apply DOCDESK_* environment variable overrides (layer 2)."""
    if model := os.environ.get("DOCDESK_GENERATION_MODEL"):
        cfg.generation.model = model
    if provider := os.environ.get("DOCDESK_EMBEDDING_PROVIDER"):
        cfg.embedding.provider = provider
    if model := os.environ.get("DOCDESK_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if provider := os.environ.get("DOCDESK_SEARCH_PROVIDER"):
        cfg.web_search.provider = provider
    if level := os.environ.get("DOCDESK_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    workspace_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DocdeskConfig:
    """Load and return a merged *DocdeskConfig*.

    Applies layers in order: global → workspace → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        workspace_dir: Directory to search for *docdesk.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *DocdeskConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = workspace_dir if workspace_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: workspace config
    workspace_cfg_path = search_dir / _WORKSPACE_CONFIG_NAME
    if workspace_cfg_path.exists():
        raw_ws = yaml.safe_load(workspace_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_ws, workspace_cfg_path)
        merged = _deep_merge(merged, raw_ws)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.docdesk/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Docdesk global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export BRAVE_API_KEY=...\n"
            "\n"
            "embedding:\n"
            "  provider: local\n"
            "  model: sentence-transformers/all-MiniLM-L6-v2\n"
            "  dimensions: 384\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
            "\n"
            "web_search:\n"
            "  provider: duckduckgo\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
