"""webResearch tool — search the web and return ranked page excerpts."""

from __future__ import annotations

from typing import Any

from docdesk.tools.base import ToolContext, ToolResult, int_param, require_param
from docdesk.web.research import format_web_research_results


async def web_research_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    if ctx.web is None:
        return ToolResult.fail("webResearch", "Web research is not configured")
    query = require_param(params, "query")
    result = await ctx.web.research(query, max_results=int_param(params, "maxResults"))
    if result.error:
        return ToolResult.fail("webResearch", result.error, query=query)
    return ToolResult.ok(
        "webResearch",
        format_web_research_results(result),
        query=query,
        from_cache=result.from_cache,
        source_count=len(result.sources),
        chunk_count=len(result.relevant_content),
        search_time_ms=result.search_time_ms,
    )
