"""Domain models for the docdesk database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

PROJECT_STATUSES = ("created", "indexing", "indexed", "error")
FILE_STATUSES = ("pending", "processing", "indexed", "error")
VERSION_SOURCES = ("create", "update", "format", "restore")


@dataclass
class Project:
    id: str
    name: str
    description: str | None = None
    status: str = "created"
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class ProjectStats:
    file_count: int = 0
    chunk_count: int = 0


@dataclass
class ProjectFile:
    """A document owned by exactly one project.

    ``name`` is the project-relative POSIX path (``notes/meeting.md``);
    directories exist only as prefixes of file names.
    """

    id: str
    project_id: str
    name: str
    type: str
    size: int = 0
    status: str = "pending"
    content: str | None = None
    binary_data: bytes | None = None
    html_content: str | None = None
    system_file_path: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def directory(self) -> str:
        return self.name.rsplit("/", 1)[0] if "/" in self.name else ""

    @property
    def basename(self) -> str:
        return self.name.rsplit("/", 1)[-1]


@dataclass
class Chunk:
    file_id: str
    project_id: str
    chunk_index: int
    text: str
    start_offset: int = 0
    end_offset: int = 0
    created_at: str | None = None
    id: int | None = None  # set after insert; also the vec table rowid


@dataclass
class SearchResult:
    """One ranked chunk returned by vector search."""

    chunk_id: int
    file_id: str
    file_name: str
    project_id: str
    project_name: str
    chunk_index: int
    text: str
    score: float
    start_offset: int = 0
    end_offset: int = 0


@dataclass
class FileVersion:
    file_id: str
    version_number: int
    is_full_content: bool
    content_or_patch: str
    content_hash: str
    source: str = "update"
    created_at: str | None = None
    id: int | None = None


@dataclass
class ChatMessage:
    id: str
    session_id: str
    role: str
    content: str
    timestamp: str | None = None
    context_chunks: list[dict[str, Any]] = field(default_factory=list)
    tool_executions: list[dict[str, Any]] = field(default_factory=list)

    def to_llm(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatSession:
    id: str
    project_id: str | None
    title: str = "New chat"
    created_at: str | None = None
    updated_at: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)


@dataclass
class WebCacheEntry:
    query_hash: str
    query: str
    url: str
    title: str
    snippet: str = ""
    content: str = ""
    fetched_at: str | None = None
    id: int | None = None


@dataclass
class WebChunk:
    cache_id: int
    query_hash: str
    url: str
    title: str
    chunk_index: int
    text: str
    id: int | None = None
    score: float = 0.0


def dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)
