"""Tool-call wire format.

Models invoke tools by embedding fenced blocks in their reply::

    ```tool_call
    {"tool": "search", "params": {"query": "payment terms"}}
    ```

``parse_tool_calls`` extracts every block in document order, keeps the
well-formed ones and reports the rest as parse errors. ``format_tool_results``
serializes outcomes back into text the model reads on its next turn.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from docdesk.tools.base import TOOL_NAMES, ToolResult

TOOL_CALL_RE = re.compile(r"```tool_call[ \t]*\r?\n(.*?)```", re.DOTALL)

RESULT_SEPARATOR = "\n\n---\n\n"


@dataclass
class ToolCall:
    tool: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallParseError:
    """A fenced block that could not be turned into a ToolCall."""

    raw: str
    error: str
    position: int = 0


@dataclass
class ParsedResponse:
    """Display text with tool-call blocks removed, plus the calls found."""

    text: str
    calls: list[ToolCall] = field(default_factory=list)
    errors: list[ToolCallParseError] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.calls)


def _parse_block(raw: str) -> ToolCall:
    """Parse one block body as strict JSON.

    Raises:
        ValueError: With a human-readable reason.
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})") from exc
    if not isinstance(payload, dict):
        raise ValueError("tool call must be a JSON object")
    tool = payload.get("tool")
    if not isinstance(tool, str) or not tool:
        raise ValueError("missing 'tool' name")
    if tool not in TOOL_NAMES:
        raise ValueError(f"unknown tool '{tool}'")
    params = payload.get("params", {})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ValueError("'params' must be a JSON object")
    return ToolCall(tool=tool, params=params)


def parse_tool_calls(response: str) -> ParsedResponse:
    """Extract tool calls from a model reply.

    Never raises: malformed blocks are collected in ``errors`` and stripped
    from the display text like valid ones.
    """
    calls: list[ToolCall] = []
    errors: list[ToolCallParseError] = []
    for match in TOOL_CALL_RE.finditer(response):
        raw = match.group(1).strip()
        try:
            calls.append(_parse_block(raw))
        except ValueError as exc:
            errors.append(ToolCallParseError(raw=raw, error=str(exc), position=match.start()))

    text = TOOL_CALL_RE.sub("", response)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return ParsedResponse(text=text, calls=calls, errors=errors)


def format_tool_call(call: ToolCall) -> str:
    """Render a call in wire format (used in prompts and transcripts)."""
    body = json.dumps({"tool": call.tool, "params": call.params}, ensure_ascii=False)
    return f"```tool_call\n{body}\n```"


def format_tool_results(results: list[ToolResult]) -> str:
    """Serialize results for the model's next turn.

    Successful reads are headed ``[File: name]``, other successes
    ``[Tool: name]``, and failures ``[Tool Error: name] reason``.
    """
    blocks: list[str] = []
    for result in results:
        if result.success:
            file_name = result.metadata.get("file_name")
            header = f"[File: {file_name}]" if result.tool == "read" and file_name else f"[Tool: {result.tool}]"
            blocks.append(f"{header}\n{result.data or ''}")
        else:
            blocks.append(f"[Tool Error: {result.tool}] {result.error}")
    return RESULT_SEPARATOR.join(blocks)


def format_parse_errors(errors: list[ToolCallParseError]) -> str:
    return RESULT_SEPARATOR.join(f"[Tool Error: parse] {e.error}" for e in errors)
