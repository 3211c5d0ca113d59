"""Service container — one open workspace, fully wired.

``AppServices.open(workspace)`` loads config, opens ``.docdesk.db``, checks
the active embedding model and builds every service on top of one
Repository. The CLI opens one container per command; tests inject fake
LLM, embedder, search provider and fetcher through the same call.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from loguru import logger

from docdesk.agent.checker import CompletionChecker
from docdesk.agent.events import EventChannel
from docdesk.agent.executor import PlanExecutor
from docdesk.agent.flow import AgentFlow, ConfirmCallback, SessionRegistry
from docdesk.agent.planner import Planner
from docdesk.config import DocdeskConfig, load_config
from docdesk.db.connection import DEFAULT_DB_NAME, Database
from docdesk.db.repository import Repository
from docdesk.db.schema import initialize
from docdesk.ingest.indexer import Indexer, ensure_embedding_model
from docdesk.notes import NoteService
from docdesk.projects import ProjectService
from docdesk.rag.chat import ChatService
from docdesk.rag.embeddings import EmbeddingProvider, make_embedding_provider
from docdesk.rag.llm_client import CompletionClient, LiteLLMClient
from docdesk.sync.filesystem import LocalFileSystem
from docdesk.sync.service import SyncService
from docdesk.telemetry import Telemetry
from docdesk.tools.base import ToolContext
from docdesk.tools.registry import ToolRegistry, default_registry
from docdesk.versions import VersionService
from docdesk.web.fetch import PageFetcher
from docdesk.web.research import WebResearchService
from docdesk.web.search import SearchProvider, make_search_provider


class AppServices:
    """Every long-lived service for one workspace.

    Build with :meth:`open`; close with :meth:`close` or a ``with`` block.

    Attributes:
        embeddings_invalidated: True when the embedding model changed since
            the database was last opened (files are now ``pending``).
    """

    def __init__(
        self,
        config: DocdeskConfig,
        conn: sqlite3.Connection,
        *,
        workspace_dir: Path,
        llm: CompletionClient,
        embedder: EmbeddingProvider,
        search_provider: SearchProvider,
        fetcher: PageFetcher | None = None,
    ) -> None:
        self.config = config
        self.workspace_dir = workspace_dir
        self.conn = conn
        self.repo = Repository(conn)
        self.llm = llm
        self.embedder = embedder
        self.embeddings_invalidated = ensure_embedding_model(self.repo, embedder)

        self.indexer = Indexer(self.repo, embedder, config.chunking)
        self.versions = VersionService(self.repo, config.versions.max_versions)
        self.events = EventChannel()
        self.telemetry = Telemetry(self.events)
        self.projects = ProjectService(
            self.repo, self.indexer, self.versions, telemetry=self.telemetry
        )
        self.notes = NoteService(self.projects, llm, config.notes, telemetry=self.telemetry)
        self.web = WebResearchService(
            self.repo,
            embedder,
            config.web_search,
            provider=search_provider,
            fetcher=fetcher,
            chunking=config.chunking,
            min_score=config.context.min_score,
        )
        self.sessions = SessionRegistry()
        self.registry: ToolRegistry = default_registry()

        self.sync: SyncService | None = None
        if config.sync.root:
            root = Path(config.sync.root).expanduser()
            if not root.is_absolute():
                root = workspace_dir / root
            self.sync = SyncService(
                self.repo, self.projects, LocalFileSystem(root), config.sync, self.events
            )
            if config.sync.enabled:
                self.projects.mirror = self.sync

        self.chat = ChatService(self.repo, llm, self.registry, self.tool_context, config.context)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        workspace_dir: Path | None = None,
        *,
        config: DocdeskConfig | None = None,
        db_path: Path | None = None,
        llm: CompletionClient | None = None,
        embedder: EmbeddingProvider | None = None,
        search_provider: SearchProvider | None = None,
        fetcher: PageFetcher | None = None,
    ) -> AppServices:
        """Open the workspace database and wire every service.

        Args:
            workspace_dir: Directory holding ``docdesk.yaml`` and ``.docdesk.db``.
                Defaults to CWD.
            config: Pre-built config; skips ``load_config``.
            db_path: Override the database location.
            llm: Completion client; defaults to LiteLLM with ``generation.*``.
            embedder: Embedding provider; defaults to ``embedding.provider``.
            search_provider: Web search backend; defaults to ``web_search.provider``.
            fetcher: Page fetcher for web research.

        Raises:
            ConfigError: If the config or a provider selection is invalid.
        """
        workspace = (workspace_dir or Path.cwd()).resolve()
        cfg = config or load_config(workspace)
        gen = cfg.generation

        if llm is None:
            llm = LiteLLMClient(
                gen.model,
                max_tokens=gen.max_tokens,
                temperature=gen.temperature,
                num_retries=gen.num_retries,
            )
        if embedder is None:
            embedder = make_embedding_provider(cfg.embedding, num_retries=gen.num_retries)
        if search_provider is None:
            search_provider = make_search_provider(cfg.web_search)

        conn = Database(db_path or workspace / DEFAULT_DB_NAME).connect()
        try:
            initialize(conn)
            services = cls(
                cfg,
                conn,
                workspace_dir=workspace,
                llm=llm,
                embedder=embedder,
                search_provider=search_provider,
                fetcher=fetcher,
            )
        except Exception:
            conn.close()
            raise
        logger.debug("[services] Opened workspace {}", workspace)
        return services

    def close(self) -> None:
        self.events.close()
        self.conn.close()

    def __enter__(self) -> AppServices:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Per-request objects
    # ------------------------------------------------------------------

    def tool_context(self, project_id: str | None = None) -> ToolContext:
        """ToolContext for a scope; ``None`` is the global scope."""
        return ToolContext(
            repo=self.repo,
            projects=self.projects,
            versions=self.versions,
            indexer=self.indexer,
            embedder=self.embedder,
            llm=self.llm,
            config=self.config,
            notes=self.notes,
            web=self.web,
            project_id=project_id,
        )

    def agent_flow(
        self,
        project_id: str | None = None,
        *,
        session_key: str | None = None,
        confirm: ConfirmCallback | None = None,
        events: EventChannel | None = None,
    ) -> AgentFlow:
        """A fresh planner/executor/checker flow bound to *project_id*.

        ``session_key`` defaults to the project id (or ``global``); only one
        flow per key may run at a time.
        """
        agent_cfg = self.config.agent
        channel = events if events is not None else self.events
        executor = PlanExecutor(
            self.registry,
            self.tool_context(project_id),
            stop_on_failure=agent_cfg.stop_on_failure,
            parallel=agent_cfg.parallel_steps,
            events=channel,
        )
        return AgentFlow(
            planner=Planner(self.llm, self.repo),
            executor=executor,
            checker=CompletionChecker(self.llm),
            llm=self.llm,
            config=agent_cfg,
            project_id=project_id,
            session_key=session_key or project_id or "global",
            sessions=self.sessions,
            events=channel,
            confirm=confirm,
        )
