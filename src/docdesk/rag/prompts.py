"""System prompts for project and global chat sessions.

The project prompt lists the project's files and statistics; the global
prompt lists every project. Both carry the tool catalog and the
``tool_call`` wire format so the model can invoke tools directly.
"""

from __future__ import annotations

import json

from docdesk.db.models import Project, ProjectFile, ProjectStats, SearchResult
from docdesk.db.repository import Repository
from docdesk.errors import NotFoundError
from docdesk.tools.base import TOOL_CATALOG, ToolSpec

ASSISTANT_INTRO = (
    "You are docdesk, an assistant specialized in reading, searching and editing "
    "the user's documents."
)

CONTEXT_HEADING = "\n\n## Relevant Context from Documents\n\n"
CONTEXT_SEPARATOR = "\n\n---\n\n"


def format_size(size: int) -> str:
    """Human-readable byte count (``512 B``, ``1.5 KB``, ``2.0 MB``)."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _file_line(f: ProjectFile, *, with_id: bool = True, indent: str = "  ") -> str:
    suffix = f", id: {f.id}" if with_id else ""
    return f"{indent}- {f.name} ({f.type}, {format_size(f.size)}{suffix})"


def _tool_section(index: int, spec: ToolSpec) -> str:
    params = "\n".join(
        f"- `{p.name}` ({'required' if p.required else 'optional'}): {p.description}"
        for p in spec.params
    )
    example = json.dumps(spec.example, ensure_ascii=False)
    return (
        f"### {index}. {spec.name}\n"
        f"**Purpose:** {spec.purpose}\n"
        f"**Parameters:**\n{params}\n"
        f"**Example:**\n```tool_call\n{example}\n```"
    )


def tool_catalog_prompt(*, global_mode: bool = False) -> str:
    """Render the tool section shared by project and global prompts."""
    sections = "\n\n".join(_tool_section(i, spec) for i, spec in enumerate(TOOL_CATALOG, 1))
    scope_note = (
        "In global mode pass `project` to tools that work inside one project."
        if global_mode
        else "Tools act on the current project unless you pass `project`."
    )
    return f"""## Available Tools
When you need a tool, include a tool call block in your response.

### Tool Call Format
```tool_call
{{"tool": "toolName", "params": {{"param1": "value1"}}}}
```
You may include several tool calls in one response; they run in order.
{scope_note}

{sections}

## When to Use Tools
- Asked to create or write a file: use write. Do not just print the content.
- Asked to read or view a file: use read.
- Asked a question about the documents: use search.
- Asked for a summary: use summarize.
- Asked to save a note: use addNote.
- Asked to edit an existing file: use updateFile.
- Asked about current events or outside information: use webResearch.
Actually invoke the tool instead of describing what you would do."""


_GUIDELINES = """## Response Guidelines
- When running a tool, say briefly what you are doing, then include the tool call.
- After tool results arrive, summarize the outcome for the user.
- Respond in the language the user writes in.
- If the documents do not contain the answer, say so.

## Constraints
- Only state facts found in the documents or in tool results.
- Never invent file names; use the file list above."""


def build_project_prompt(project: Project, files: list[ProjectFile], stats: ProjectStats) -> str:
    file_list = "\n".join(_file_line(f) for f in files) or "No files yet."
    description = f"**Description:** {project.description}\n" if project.description else ""
    return f"""{ASSISTANT_INTRO}

## Project Context
**Project Name:** {project.name}
{description}**Status:** {project.status}
**Statistics:** {stats.file_count} files, {stats.chunk_count} chunks indexed

### Project Files
{file_list}

{tool_catalog_prompt()}

{_GUIDELINES}"""


def build_global_prompt(
    projects: list[tuple[Project, list[ProjectFile], ProjectStats]],
) -> str:
    total_files = sum(stats.file_count for _, _, stats in projects)
    total_chunks = sum(stats.chunk_count for _, _, stats in projects)
    sections = []
    for project, files, stats in projects:
        lines = [f"### {project.name} (id: {project.id})"]
        if project.description:
            lines.append(f"  Description: {project.description}")
        lines.append(f"  Files: {stats.file_count}")
        lines.append(
            "\n".join(_file_line(f, with_id=False, indent="    ") for f in files) or "  No files yet."
        )
        sections.append("\n".join(lines))
    overview = "\n\n".join(sections) or "No projects yet."
    return f"""{ASSISTANT_INTRO}

## Global Mode
You have access to ALL projects and can work across them.

## All Projects Overview
**Total Projects:** {len(projects)}
**Total Files:** {total_files}
**Total Chunks Indexed:** {total_chunks}

{overview}

{tool_catalog_prompt(global_mode=True)}

{_GUIDELINES}"""


def build_system_prompt(repo: Repository, project_id: str | None) -> str:
    """Build the prompt for a project scope, or the global scope when None.

    Raises:
        NotFoundError: If *project_id* does not exist.
    """
    if project_id is None:
        return build_global_prompt(
            [(p, repo.list_files(p.id), repo.project_stats(p.id)) for p in repo.list_projects()]
        )
    project = repo.get_project(project_id)
    if project is None:
        raise NotFoundError(f"Project '{project_id}' not found")
    return build_project_prompt(project, repo.list_files(project_id), repo.project_stats(project_id))


def format_context_for_prompt(chunks: list[SearchResult]) -> str:
    """Render retrieved chunks as numbered, source-attributed blocks."""
    if not chunks:
        return ""
    blocks = [f"[Source {i}: {c.file_name}]\n{c.text}" for i, c in enumerate(chunks, 1)]
    return CONTEXT_HEADING + CONTEXT_SEPARATOR.join(blocks)
