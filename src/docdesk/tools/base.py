"""Tool result contract, execution context and the tool catalog.

Every tool is an async function ``(params, ctx) -> ToolResult``. Tools never
raise past their boundary: failures come back as ``ToolResult(success=False)``
so the executor can decide whether to continue, stop or replan.

``persisted_changes`` is True whenever a tool mutated projects, files or
directories. ``TOOL_CATALOG`` is the single source of tool names and
parameters for prompts, the tool-call parser and the planner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from docdesk.errors import ValidationError

if TYPE_CHECKING:
    from docdesk.config import DocdeskConfig
    from docdesk.db.models import Project
    from docdesk.db.repository import Repository
    from docdesk.ingest.indexer import Indexer
    from docdesk.notes import NoteService
    from docdesk.projects import ProjectService
    from docdesk.rag.embeddings import EmbeddingProvider
    from docdesk.rag.llm_client import CompletionClient
    from docdesk.tools.update import UpdateFilePreview
    from docdesk.versions import VersionService
    from docdesk.web.research import WebResearchService


@dataclass
class ToolResult:
    """Outcome of one tool invocation.

    ``data`` is the text shown to the model in the next turn; structured
    extras go in ``metadata``.
    """

    success: bool
    tool: str
    data: str | None = None
    error: str | None = None
    persisted_changes: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    preview: UpdateFilePreview | None = None

    @classmethod
    def ok(
        cls,
        tool: str,
        data: str,
        *,
        persisted_changes: bool = False,
        **metadata: Any,
    ) -> ToolResult:
        return cls(
            success=True,
            tool=tool,
            data=data,
            persisted_changes=persisted_changes,
            metadata=metadata,
        )

    @classmethod
    def fail(cls, tool: str, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, tool=tool, error=error, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form stored in ``chat_messages.tool_executions``."""
        out: dict[str, Any] = {
            "tool": self.tool,
            "success": self.success,
            "persisted_changes": self.persisted_changes,
        }
        if self.error:
            out["error"] = self.error
        meta = {k: v for k, v in self.metadata.items() if isinstance(v, (str, int, float, bool))}
        if meta:
            out["metadata"] = meta
        return out


@dataclass
class ToolContext:
    """Everything a tool may touch, plus the active scope.

    ``project_id`` None means a global session with cross-project access.
    """

    repo: Repository
    projects: ProjectService
    versions: VersionService
    indexer: Indexer
    embedder: EmbeddingProvider
    llm: CompletionClient
    config: DocdeskConfig
    notes: NoteService | None = None
    web: WebResearchService | None = None
    project_id: str | None = None

    @property
    def is_global(self) -> bool:
        return self.project_id is None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolParam:
    name: str
    description: str
    required: bool = False


@dataclass(frozen=True)
class ToolSpec:
    """Name, purpose, parameters and a worked example for one tool."""

    name: str
    purpose: str
    params: tuple[ToolParam, ...]
    example: dict[str, Any]
    mutating: bool = False

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.params if p.required]


_PROJECT = ToolParam("project", "Project name; defaults to the current project")

TOOL_CATALOG: tuple[ToolSpec, ...] = (
    ToolSpec(
        "read",
        "Read a document's full content. Use to see, open or examine a file.",
        (
            ToolParam("file", "File name, path or id (fuzzy names are accepted)", True),
            ToolParam("maxChunks", "Read at most this many chunks of a large file"),
            _PROJECT,
        ),
        {"tool": "read", "params": {"file": "contract.pdf"}},
    ),
    ToolSpec(
        "search",
        "Semantic search over the documents. Use for questions about content.",
        (
            ToolParam("query", "What to look for", True),
            ToolParam("limit", "Maximum number of results"),
            _PROJECT,
        ),
        {"tool": "search", "params": {"query": "payment terms"}},
    ),
    ToolSpec(
        "summarize",
        "Summarize one document. Use for overviews and TL;DRs.",
        (
            ToolParam("file", "File name, path or id", True),
            ToolParam("length", "brief or detailed"),
            _PROJECT,
        ),
        {"tool": "summarize", "params": {"file": "annual report"}},
    ),
    ToolSpec(
        "write",
        "Create a new document (md, docx or pdf) from given content or from the documents.",
        (
            ToolParam("title", "Document title; also names the file", True),
            ToolParam("format", "md (default), docx or pdf"),
            ToolParam("content", "Markdown body; generated from the documents when omitted"),
            ToolParam("instruction", "What the generated document should cover"),
            ToolParam("path", "Directory inside the project"),
            _PROJECT,
        ),
        {"tool": "write", "params": {"title": "Meeting summary", "format": "md"}},
        mutating=True,
    ),
    ToolSpec(
        "updateFile",
        "Edit one section of an existing document. Produces a preview to confirm.",
        (
            ToolParam("file", "File name, path or id", True),
            ToolParam("section", "Heading of the section to change"),
            ToolParam("lines", "Explicit line range such as 10-20"),
            ToolParam("selection", "Exact text selected in the editor"),
            ToolParam("operation", "replace (default), insert_before or insert_after"),
            ToolParam("instruction", "What to change"),
            ToolParam("newContent", "Replacement text; generated from the instruction when omitted"),
            _PROJECT,
        ),
        {
            "tool": "updateFile",
            "params": {"file": "README.md", "section": "Introduction", "instruction": "Shorten it"},
        },
        mutating=True,
    ),
    ToolSpec(
        "createProject",
        "Create a project, or reuse one with the same name.",
        (
            ToolParam("name", "Project name", True),
            ToolParam("description", "Short description"),
        ),
        {"tool": "createProject", "params": {"name": "Research"}},
        mutating=True,
    ),
    ToolSpec(
        "moveFile",
        "Move a file to another project and/or directory.",
        (
            ToolParam("file", "File name, path or id", True),
            ToolParam("targetProject", "Destination project; defaults to the file's project"),
            ToolParam("targetDirectory", "Destination directory inside the project"),
            _PROJECT,
        ),
        {"tool": "moveFile", "params": {"file": "draft.md", "targetDirectory": "archive"}},
        mutating=True,
    ),
    ToolSpec(
        "deleteFile",
        "Delete a file with its history and index entries.",
        (ToolParam("file", "File name, path or id", True), _PROJECT),
        {"tool": "deleteFile", "params": {"file": "old-notes.md"}},
        mutating=True,
    ),
    ToolSpec(
        "deleteProject",
        "Delete a project and everything in it. Requires confirm: yes.",
        (
            ToolParam("project", "Exact project name or id", True),
            ToolParam("confirm", "Must be 'yes'", True),
        ),
        {"tool": "deleteProject", "params": {"project": "Scratch", "confirm": "yes"}},
        mutating=True,
    ),
    ToolSpec(
        "webResearch",
        "Search the web and return source-attributed passages.",
        (
            ToolParam("query", "What to research", True),
            ToolParam("maxResults", "Number of pages to fetch"),
        ),
        {"tool": "webResearch", "params": {"query": "latest sqlite-vec release"}},
    ),
    ToolSpec(
        "addNote",
        "Turn raw text into a formatted, titled Markdown note filed in the project.",
        (
            ToolParam("content", "Raw note text", True),
            ToolParam("title", "Note title; generated when omitted"),
            ToolParam("directory", "Directory for the note; chosen automatically when omitted"),
            _PROJECT,
        ),
        {"tool": "addNote", "params": {"content": "call w/ Ana: ship v2 friday"}},
        mutating=True,
    ),
)

TOOLS_BY_NAME: dict[str, ToolSpec] = {t.name: t for t in TOOL_CATALOG}
TOOL_NAMES: frozenset[str] = frozenset(TOOLS_BY_NAME)


# ---------------------------------------------------------------------------
# Parameter helpers
# ---------------------------------------------------------------------------


def require_param(params: dict[str, Any], name: str) -> str:
    """Return a non-empty string parameter.

    Raises:
        ValidationError: If the parameter is missing or blank.
    """
    value = params.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(f"Missing required parameter '{name}'")
    return str(value).strip()


def optional_param(params: dict[str, Any], name: str, default: str | None = None) -> str | None:
    value = params.get(name)
    if value is None or not str(value).strip():
        return default
    return str(value).strip()


def int_param(params: dict[str, Any], name: str, default: int | None = None) -> int | None:
    """Parse an integer parameter; models often send numbers as strings."""
    value = params.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Parameter '{name}' must be an integer, got {value!r}") from exc
    if number < 1:
        raise ValidationError(f"Parameter '{name}' must be >= 1")
    return number


def scope_project_id(params: dict[str, Any], ctx: ToolContext) -> str | None:
    """Project the call targets: the ``project`` param, else the session scope."""
    ref = optional_param(params, "project")
    if ref is None:
        return ctx.project_id
    return ctx.projects.resolve_project(ref).id


def target_project(params: dict[str, Any], ctx: ToolContext) -> Project:
    """Like ``scope_project_id`` but a project is mandatory.

    Raises:
        ValidationError: In a global session without a ``project`` param.
    """
    project_id = scope_project_id(params, ctx)
    if project_id is None:
        raise ValidationError(
            "No project selected. Pass the 'project' parameter in a global chat."
        )
    return ctx.projects.get_project(project_id)
