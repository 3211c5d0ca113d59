"""Tool registry — name → async handler, with a never-raising dispatcher."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from docdesk.errors import DocdeskError
from docdesk.tools.base import TOOLS_BY_NAME, ToolContext, ToolResult

ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult]]


class ToolRegistry:
    """Maps tool names to handlers and executes calls at the tool boundary.

    ``execute`` always returns a ToolResult: unknown tools, missing required
    parameters and any exception raised by a handler become
    ``success=False`` results.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, name: str, handler: ToolHandler) -> None:
        if name not in TOOLS_BY_NAME:
            raise ValueError(f"'{name}' is not in the tool catalog")
        self._handlers[name] = handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    async def execute(
        self, name: str, params: dict[str, Any] | None, ctx: ToolContext
    ) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult.fail(name, f"Unknown tool: {name}")
        params = dict(params or {})
        missing = [
            p for p in TOOLS_BY_NAME[name].required if params.get(p) in (None, "")
        ]
        if missing:
            return ToolResult.fail(name, f"Missing required parameter(s): {', '.join(missing)}")

        started = time.perf_counter()
        try:
            result = await handler(params, ctx)
        except DocdeskError as exc:
            logger.info("[tools] {} failed: {}", name, exc)
            result = ToolResult.fail(name, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("[tools] {} handler error", name)
            result = ToolResult.fail(name, f"{type(exc).__name__}: {exc}")
        result.metadata.setdefault("elapsed_ms", int((time.perf_counter() - started) * 1000))
        return result


def default_registry() -> ToolRegistry:
    """Registry with every catalog tool wired to its handler."""
    from docdesk.tools import files, notes, search, update, web

    registry = ToolRegistry()
    registry.register("read", files.read_tool)
    registry.register("write", files.write_tool)
    registry.register("createProject", files.create_project_tool)
    registry.register("moveFile", files.move_file_tool)
    registry.register("deleteFile", files.delete_file_tool)
    registry.register("deleteProject", files.delete_project_tool)
    registry.register("search", search.search_tool)
    registry.register("summarize", search.summarize_tool)
    registry.register("updateFile", update.update_file_tool)
    registry.register("webResearch", web.web_research_tool)
    registry.register("addNote", notes.add_note_tool)
    return registry
