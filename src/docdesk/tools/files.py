"""File and project tools: read, write, createProject, moveFile, deleteFile, deleteProject."""

from __future__ import annotations

import math
import re
from typing import Any

from docdesk.db.models import Chunk
from docdesk.documents import render_docx, render_pdf, title_to_slug
from docdesk.errors import ValidationError
from docdesk.projects import safe_relative_name
from docdesk.rag.prompts import format_context_for_prompt
from docdesk.tools.base import (
    ToolContext,
    ToolResult,
    int_param,
    optional_param,
    require_param,
    scope_project_id,
    target_project,
)

WRITE_FORMATS = ("md", "docx", "pdf")

_FENCE_RE = re.compile(r"^```(?:markdown|md)?\s*\n(.*)\n```\s*$", re.DOTALL)

_WRITE_SYSTEM_PROMPT = """You write well-structured Markdown documents.
Use headings, short paragraphs and lists where they help.
Base the document on the context below when it is relevant; do not invent facts.
Return only the document body in Markdown, without commentary."""


def stitch_chunks(chunks: list[Chunk]) -> str:
    """Rejoin chunks in index order, dropping the overlap between neighbours."""
    if not chunks:
        return ""
    ordered = sorted(chunks, key=lambda c: c.chunk_index)
    parts = [ordered[0].text]
    for prev, curr in zip(ordered, ordered[1:]):
        overlap = prev.end_offset - curr.start_offset
        if overlap > 0:
            if overlap < len(curr.text):
                parts.append(curr.text[overlap:])
        else:
            parts.append("\n" + curr.text)
    return "".join(parts)


def strip_code_fence(text: str) -> str:
    """Remove a single wrapping ```markdown fence some models add."""
    text = text.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


# ---------------------------------------------------------------------------
# read
# ---------------------------------------------------------------------------


async def read_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    """Return a file's content, truncated past ``tools.read_max_chars``.

    Files without stored text are rebuilt from their chunks; ``maxChunks``
    reads a large file progressively.
    """
    file = ctx.projects.find_file(require_param(params, "file"), scope_project_id(params, ctx))
    max_chars = ctx.config.tools.read_max_chars
    max_chunks = int_param(params, "maxChunks")
    meta = {
        "file_name": file.name,
        "file_id": file.id,
        "file_size": file.size,
        "project_id": file.project_id,
    }

    if file.content and max_chunks is None:
        truncated = len(file.content) > max_chars
        body = (
            file.content[:max_chars] + "\n\n[Content truncated due to size...]"
            if truncated
            else file.content
        )
        return ToolResult.ok("read", body, truncated=truncated, total_chars=len(file.content), **meta)

    chunks = ctx.repo.list_chunks_by_file(file.id)
    if not chunks:
        return ToolResult.fail("read", f"File '{file.name}' has no content indexed yet.", **meta)

    limit = max_chunks or math.ceil(max_chars / ctx.config.chunking.max_chunk_size)
    used = chunks[:limit]
    body = stitch_chunks(used)
    truncated = len(chunks) > len(used)
    if truncated:
        body += (
            f"\n\n[Showing {len(used)} of {len(chunks)} chunks. "
            "Ask to continue reading for more.]"
        )
    return ToolResult.ok("read", body, truncated=truncated, chunk_count=len(chunks), **meta)


# ---------------------------------------------------------------------------
# write
# ---------------------------------------------------------------------------


async def _generate_document(
    ctx: ToolContext, project_id: str, title: str, instruction: str | None
) -> str:
    query = instruction or title
    vector = await ctx.embedder.embed(query)
    chunks = ctx.repo.vector_search(
        ctx.indexer.vec_table,
        vector,
        ctx.config.context.search_k,
        [project_id],
        min_score=ctx.config.context.min_score,
    )
    request = f"Write a document titled '{title}'."
    if instruction:
        request += f"\n\nInstructions: {instruction}"
    reply = await ctx.llm.complete(
        [
            {"role": "system", "content": _WRITE_SYSTEM_PROMPT + format_context_for_prompt(chunks)},
            {"role": "user", "content": request},
        ]
    )
    return strip_code_fence(reply)


async def write_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    """Create a new md/docx/pdf file, generating the body when none is given."""
    title = require_param(params, "title")
    fmt = (optional_param(params, "format", "md") or "md").lower().lstrip(".")
    if fmt not in WRITE_FORMATS:
        raise ValidationError(f"Unsupported format '{fmt}'. Use one of: {', '.join(WRITE_FORMATS)}")
    project = target_project(params, ctx)
    directory = optional_param(params, "path", "") or ""
    if directory.strip("/"):
        directory = safe_relative_name(directory)

    raw = params.get("content")
    content = str(raw) if raw is not None else ""
    generated = not content.strip()
    if generated:
        content = await _generate_document(ctx, project.id, title, optional_param(params, "instruction"))

    file_type = fmt
    binary: bytes | None = None
    rendered = True
    if fmt == "docx":
        binary = render_docx(title, content)
    elif fmt == "pdf":
        binary = render_pdf(content)
        if binary is None:
            file_type, rendered = "md", False

    name = ctx.projects.unique_name(project.id, directory, title_to_slug(title), file_type)
    file = await ctx.projects.add_document(
        project.id, name, content, file_type=file_type, binary_data=binary
    )
    message = f"Created '{file.name}' in project '{project.name}' ({len(content)} characters)."
    if not rendered:
        message += " PDF rendering is unavailable, so the document was saved as Markdown."
    return ToolResult.ok(
        "write",
        message,
        persisted_changes=True,
        file_id=file.id,
        path=file.name,
        project_id=project.id,
        format=file_type,
        rendered=rendered,
        generated=generated,
    )


# ---------------------------------------------------------------------------
# Structural operations
# ---------------------------------------------------------------------------


async def create_project_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    project, created = ctx.projects.get_or_create_project(
        require_param(params, "name"), optional_param(params, "description"), automatic=True
    )
    message = (
        f"Created project '{project.name}'."
        if created
        else f"Project '{project.name}' already exists; using it."
    )
    return ToolResult.ok(
        "createProject", message, persisted_changes=created, project_id=project.id, created=created
    )


async def move_file_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    file = ctx.projects.find_file(require_param(params, "file"), scope_project_id(params, ctx))
    target_ref = optional_param(params, "targetProject")
    target_dir = params.get("targetDirectory")
    if target_ref is None and target_dir is None:
        raise ValidationError("moveFile needs 'targetProject' and/or 'targetDirectory'")

    target = ctx.projects.resolve_project(target_ref) if target_ref else ctx.projects.get_project(
        file.project_id
    )
    directory = str(target_dir).strip() if target_dir is not None else file.directory
    old_name = file.name
    moved = ctx.projects.move_file(file.id, target.id, directory)
    return ToolResult.ok(
        "moveFile",
        f"Moved '{old_name}' to '{moved.name}' in project '{target.name}'.",
        persisted_changes=moved.name != old_name or moved.project_id != file.project_id,
        file_id=moved.id,
        path=moved.name,
        project_id=target.id,
    )


async def delete_file_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    file = ctx.projects.find_file(require_param(params, "file"), scope_project_id(params, ctx))
    ctx.projects.delete_file(file.id)
    return ToolResult.ok(
        "deleteFile", f"Deleted '{file.name}'.", persisted_changes=True, file_id=file.id
    )


async def delete_project_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    """Delete a project by exact name or id; requires ``confirm: "yes"``."""
    if str(params.get("confirm", "")).strip().lower() != "yes":
        return ToolResult.fail(
            "deleteProject", "Deleting a project requires the parameter confirm: \"yes\"."
        )
    project = ctx.projects.resolve_project(require_param(params, "project"), fuzzy=False)
    stats = ctx.repo.project_stats(project.id)
    ctx.projects.delete_project(project.id)
    return ToolResult.ok(
        "deleteProject",
        f"Deleted project '{project.name}' with {stats.file_count} files.",
        persisted_changes=True,
        project_id=project.id,
        files_deleted=stats.file_count,
    )
