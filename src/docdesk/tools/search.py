"""Retrieval tools: semantic search and document summarization."""

from __future__ import annotations

from typing import Any

from loguru import logger

from docdesk.ingest.plaintext import SentenceChunker
from docdesk.rag.context import estimate_tokens
from docdesk.rag.llm_client import CompletionClient
from docdesk.tools.base import (
    ToolContext,
    ToolResult,
    int_param,
    optional_param,
    require_param,
    scope_project_id,
)

_MAX_REDUCE_DEPTH = 3

_SUMMARY_PROMPT = """\
You are a document assistant. Write a {length} summary of the following \
{what}. Focus on the key topics, findings, decisions and figures. \
Respond in the document's language.

{label}:
{text}

Summary:"""

_REDUCE_PROMPT = """\
The following are summaries of consecutive parts of the document "{name}". \
Combine them into one {length} summary of the whole document, without \
repeating yourself.

{text}

Summary:"""


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


async def search_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    """Embed the query and rank chunks in the project, or in every project."""
    query = require_param(params, "query")
    limit = int_param(params, "limit") or int_param(params, "maxResults") or ctx.config.tools.search_results
    project_id = scope_project_id(params, ctx)

    vector = await ctx.embedder.embed(query)
    results = ctx.repo.vector_search(
        ctx.indexer.vec_table,
        vector,
        limit,
        [project_id] if project_id is not None else None,
        min_score=ctx.config.context.min_score,
    )
    if not results:
        return ToolResult.ok("search", "No relevant results found for your query.", result_count=0)

    global_scope = project_id is None
    blocks = []
    for i, r in enumerate(results, 1):
        source = f"{r.project_name}/{r.file_name}" if global_scope else r.file_name
        blocks.append(f"[Result {i}] (Source: {source}, Score: {r.score * 100:.1f}%)\n{r.text}")
    return ToolResult.ok(
        "search",
        "\n\n---\n\n".join(blocks),
        result_count=len(results),
        top_file=results[0].file_name,
    )


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


async def _summarize_once(
    llm: CompletionClient, text: str, *, length: str, what: str, label: str
) -> str:
    prompt = _SUMMARY_PROMPT.format(length=length, what=what, label=label, text=text)
    reply = await llm.complete([{"role": "user", "content": prompt}], temperature=0.0)
    return reply.strip()


async def summarize_text(
    llm: CompletionClient,
    text: str,
    name: str,
    *,
    direct_tokens: int = 6000,
    chars_per_token: int = 4,
    length: str = "concise",
    _depth: int = 0,
) -> tuple[str, str, int]:
    """Summarize *text*, directly or by summarize-then-reduce.

    Documents within *direct_tokens* are summarized in one call. Larger ones
    are split into sections of that size, each section is summarized, and
    the partial summaries are reduced (recursively while they still exceed
    the threshold).

    Returns:
        ``(summary, method, llm_calls)`` with method ``direct`` or ``hierarchical``.

    Raises:
        LLMError: If a completion call fails.
    """
    if estimate_tokens(text, chars_per_token) <= direct_tokens:
        summary = await _summarize_once(
            llm, text, length=length, what="document", label=f"Document ({name})"
        )
        return summary, "direct", 1

    section_chars = max(direct_tokens * chars_per_token, 1)
    sections = [s for s, _, _ in SentenceChunker(section_chars, 0).split(text)]
    logger.debug("[summarize] '{}' split into {} sections", name, len(sections))
    partials = []
    for i, section in enumerate(sections, 1):
        partials.append(
            await _summarize_once(
                llm,
                section,
                length="concise",
                what=f"part {i} of {len(sections)} of a document",
                label=f"Part {i} of {name}",
            )
        )
    calls = len(sections)

    combined = "\n\n".join(f"Part {i}: {p}" for i, p in enumerate(partials, 1))
    if estimate_tokens(combined, chars_per_token) > direct_tokens and _depth < _MAX_REDUCE_DEPTH:
        summary, _, more = await summarize_text(
            llm,
            combined,
            name,
            direct_tokens=direct_tokens,
            chars_per_token=chars_per_token,
            length=length,
            _depth=_depth + 1,
        )
        return summary, "hierarchical", calls + more

    prompt = _REDUCE_PROMPT.format(name=name, length=length, text=combined)
    summary = await llm.complete([{"role": "user", "content": prompt}], temperature=0.0)
    return summary.strip(), "hierarchical", calls + 1


async def summarize_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    file = ctx.projects.find_file(require_param(params, "file"), scope_project_id(params, ctx))
    if not file.content:
        return ToolResult.fail("summarize", f"File '{file.name}' has no extracted text to summarize.")
    length = "detailed" if optional_param(params, "length", "") == "detailed" else "concise"
    summary, method, calls = await summarize_text(
        ctx.llm,
        file.content,
        file.name,
        direct_tokens=ctx.config.tools.summarize_direct_tokens,
        chars_per_token=ctx.config.context.chars_per_token,
        length=length,
    )
    return ToolResult.ok(
        "summarize",
        f"Summary of {file.name}:\n\n{summary}",
        file_id=file.id,
        summary_file=file.name,
        method=method,
        llm_calls=calls,
    )
