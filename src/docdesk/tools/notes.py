"""addNote tool — wraps ``NoteService`` and routes global notes to a project."""

from __future__ import annotations

from typing import Any

from docdesk.errors import ValidationError
from docdesk.matching import best_match
from docdesk.rag.llm_client import extract_json
from docdesk.telemetry import SOURCE_ASSISTANT
from docdesk.tools.base import ToolContext, ToolResult, optional_param, require_param, scope_project_id

_ROUTER_PROMPT = """Choose the project this note belongs in.

Projects:
{projects}

Respond with a JSON object ONLY: {{"projectName": "<one of the names above>"}}"""


async def route_note_project(ctx: ToolContext, content: str) -> str:
    """Pick a project for a note taken in a global chat.

    A single project is used directly; otherwise the model chooses and its
    answer is matched against existing names.

    Raises:
        ValidationError: If there are no projects or the choice matches none.
    """
    projects = ctx.repo.list_projects()
    if not projects:
        raise ValidationError("No projects exist yet. Create one before adding notes.")
    if len(projects) == 1:
        return projects[0].id
    listing = "\n".join(
        f"- {p.name}" + (f": {p.description}" if p.description else "") for p in projects
    )
    reply = await ctx.llm.complete(
        [
            {"role": "system", "content": _ROUTER_PROMPT.format(projects=listing)},
            {"role": "user", "content": content[:2000]},
        ],
        max_tokens=100,
        temperature=0.0,
    )
    choice = str((extract_json(reply) or {}).get("projectName") or reply).strip()
    project = best_match(choice, projects, key=lambda p: p.name)
    if project is None:
        raise ValidationError(
            "Could not decide which project the note belongs to; pass the 'project' parameter."
        )
    return project.id


async def add_note_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    if ctx.notes is None:
        return ToolResult.fail("addNote", "Notes are not available in this session")
    content = require_param(params, "content")
    project_id = scope_project_id(params, ctx) or await route_note_project(ctx, content)
    result = await ctx.notes.add_note(
        project_id,
        content,
        title=optional_param(params, "title"),
        directory=str(params["directory"]) if params.get("directory") is not None else None,
        source=SOURCE_ASSISTANT,
    )
    return ToolResult.ok(
        "addNote",
        f"Saved note '{result.title}' as '{result.path}'.",
        persisted_changes=True,
        file_id=result.file.id,
        path=result.path,
        project_id=project_id,
        title=result.title,
        new_directory=result.new_directory,
    )
