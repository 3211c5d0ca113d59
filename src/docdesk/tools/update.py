"""updateFile — section-targeted edits with a confirm-before-apply preview.

1. Locate the target: a Markdown heading (exact, then fuzzy title match),
   an explicit ``lines`` range, or an editor ``selection``.
2. Take ``newContent`` as given, or ask the model for a reasoned edit
   (``{"reasoning": ..., "newContent": ...}``) from the ``instruction``.
3. Splice the new text in (replace / insert_before / insert_after).
4. Return an ``UpdateFilePreview`` with a unified diff and line-level
   added/removed/unchanged classification. Nothing is written yet.
5. ``apply_update`` writes the previewed content (after a staleness check),
   records a version with source ``update`` and re-indexes the file.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from loguru import logger

from docdesk.db.models import ProjectFile
from docdesk.documents import render_docx
from docdesk.errors import ValidationError
from docdesk.ingest.markdown import HEADING_RE
from docdesk.matching import best_match, normalize_name
from docdesk.projects import ProjectService
from docdesk.rag.llm_client import CompletionClient, extract_json
from docdesk.tools.base import (
    ToolContext,
    ToolResult,
    optional_param,
    require_param,
    scope_project_id,
)
from docdesk.tools.files import strip_code_fence
from docdesk.versions import content_hash

OPERATIONS = ("replace", "insert_before", "insert_after")

_LINE_RANGE_RE = re.compile(r"^\s*(?:lines?\s*)?(\d+)\s*(?:-\s*(\d+))?\s*$", re.IGNORECASE)

_EDIT_PROMPT = """You edit one part of a document.

Document: {name}
Target: {target}
Operation: {operation}

Current text of the target:
<<<
{section}
>>>

Instruction: {instruction}

For "replace", write the new text that replaces the target. For
"insert_before" / "insert_after", write only the text to insert.
Keep the document's language, tone and Markdown conventions.

Respond ONLY with a JSON object:
{{"reasoning": "<one or two sentences on what you changed and why>", "newContent": "<the text>"}}"""


@dataclass
class DiffLine:
    """One line of a structural diff; line numbers are 1-based."""

    kind: str  # added | removed | unchanged
    text: str
    old_line: int | None = None
    new_line: int | None = None


@dataclass
class UpdateFilePreview:
    file_id: str
    file_name: str
    project_id: str
    target: str
    operation: str
    original_content: str
    new_content: str
    unified_diff: str
    diff_lines: list[DiffLine] = field(default_factory=list)
    reasoning: str = ""
    base_hash: str = ""

    @property
    def added(self) -> list[str]:
        return [d.text for d in self.diff_lines if d.kind == "added"]

    @property
    def removed(self) -> list[str]:
        return [d.text for d in self.diff_lines if d.kind == "removed"]

    @property
    def has_changes(self) -> bool:
        return self.original_content != self.new_content


@dataclass
class TargetRange:
    """Line span ``[start, end)`` of the content being edited.

    For a heading section ``start`` is the heading line and trailing blank
    lines are excluded from ``end``.
    """

    label: str
    start: int
    end: int
    has_heading: bool = False


# ---------------------------------------------------------------------------
# Locating the target
# ---------------------------------------------------------------------------


def _headings(lines: list[str]) -> list[tuple[int, int, str]]:
    out = []
    for i, line in enumerate(lines):
        match = HEADING_RE.match(line)
        if match:
            out.append((i, len(match.group(1)), match.group(2).strip()))
    return out


def find_section(content: str, section: str) -> TargetRange | None:
    """Locate the heading section named *section* (exact, then fuzzy)."""
    lines = content.splitlines()
    headings = _headings(lines)
    if not headings:
        return None

    wanted = normalize_name(section.lstrip("#").strip())
    hit = next((h for h in headings if normalize_name(h[2]) == wanted), None)
    if hit is None:
        hit = best_match(section.lstrip("#").strip(), headings, key=lambda h: h[2])
    if hit is None:
        return None

    index, level, title = hit
    end = len(lines)
    for other_index, other_level, _ in headings:
        if other_index > index and other_level <= level:
            end = other_index
            break
    while end > index + 1 and not lines[end - 1].strip():
        end -= 1
    return TargetRange(label=title, start=index, end=end, has_heading=True)


def parse_line_range(spec: str, total_lines: int) -> TargetRange:
    """Parse ``"10-20"`` / ``"lines 3"`` (1-based, inclusive).

    Raises:
        ValidationError: For malformed or out-of-range specs.
    """
    match = _LINE_RANGE_RE.match(spec)
    if not match:
        raise ValidationError(f"Invalid line range '{spec}'. Use e.g. '10-20'.")
    first = int(match.group(1))
    last = int(match.group(2) or first)
    if first < 1 or last < first or last > total_lines:
        raise ValidationError(
            f"Line range {first}-{last} is outside the document (1-{total_lines})"
        )
    return TargetRange(label=f"lines {first}-{last}", start=first - 1, end=last)


# ---------------------------------------------------------------------------
# Splicing + diffing
# ---------------------------------------------------------------------------


def _join(lines: list[str], trailing_newline: bool) -> str:
    return "\n".join(lines) + ("\n" if trailing_newline and lines else "")


def splice_lines(content: str, target: TargetRange, operation: str, new_text: str) -> str:
    """Apply *operation* with *new_text* to the *target* line span."""
    lines = content.splitlines()
    new_lines = new_text.strip("\n").splitlines()
    trailing = content.endswith("\n")

    if operation == "insert_before":
        block = new_lines + ([""] if target.has_heading else [])
        out = lines[: target.start] + block + lines[target.start :]
    elif operation == "insert_after":
        block = ([""] if target.has_heading else []) + new_lines
        out = lines[: target.end] + block + lines[target.end :]
    else:
        start = target.start
        replaces_heading = bool(new_lines) and HEADING_RE.match(new_lines[0]) is not None
        if target.has_heading and not replaces_heading:
            start = target.start + 1
            while start < target.end and not lines[start].strip():
                start += 1
            if start == target.end:
                new_lines = [""] + new_lines
        out = lines[:start] + new_lines + lines[target.end :]
    return _join(out, trailing)


def splice_selection(content: str, selection: str, operation: str, new_text: str) -> str:
    """Apply *operation* at the first exact occurrence of *selection*.

    Raises:
        ValidationError: If the selection is not found.
    """
    index = content.find(selection)
    if index < 0:
        raise ValidationError("The selected text was not found in the file")
    end = index + len(selection)
    if operation == "insert_before":
        return content[:index] + new_text.rstrip("\n") + "\n" + content[index:]
    if operation == "insert_after":
        return content[:end] + "\n" + new_text.strip("\n") + content[end:]
    return content[:index] + new_text + content[end:]


def build_diff(old: str, new: str, name: str) -> tuple[str, list[DiffLine]]:
    """Return ``(unified_diff, diff_lines)`` between two versions of *name*."""
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    unified = "\n".join(
        difflib.unified_diff(old_lines, new_lines, fromfile=f"a/{name}", tofile=f"b/{name}", lineterm="")
    )

    diff_lines: list[DiffLine] = []
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for k in range(i2 - i1):
                diff_lines.append(DiffLine("unchanged", old_lines[i1 + k], i1 + k + 1, j1 + k + 1))
            continue
        if tag in ("delete", "replace"):
            for k in range(i1, i2):
                diff_lines.append(DiffLine("removed", old_lines[k], old_line=k + 1))
        if tag in ("insert", "replace"):
            for k in range(j1, j2):
                diff_lines.append(DiffLine("added", new_lines[k], new_line=k + 1))
    return unified, diff_lines


# ---------------------------------------------------------------------------
# Preview + apply
# ---------------------------------------------------------------------------


async def _generate_edit(
    llm: CompletionClient,
    name: str,
    target: str,
    operation: str,
    section_text: str,
    instruction: str,
) -> tuple[str, str]:
    prompt = _EDIT_PROMPT.format(
        name=name,
        target=target,
        operation=operation,
        section=section_text,
        instruction=instruction,
    )
    reply = await llm.complete([{"role": "user", "content": prompt}], temperature=0.2)
    parsed = extract_json(reply)
    if parsed and isinstance(parsed.get("newContent"), str):
        return parsed["newContent"], str(parsed.get("reasoning", ""))
    logger.warning("[update] Edit reply for '{}' was not JSON; using it verbatim", name)
    return strip_code_fence(reply), ""


async def build_update_preview(
    llm: CompletionClient,
    file: ProjectFile,
    *,
    section: str | None = None,
    lines: str | None = None,
    selection: str | None = None,
    operation: str = "replace",
    instruction: str | None = None,
    new_content: str | None = None,
) -> UpdateFilePreview:
    """Compute the edited content and its diff without writing anything.

    Raises:
        ValidationError: Unknown operation, missing target, or target not found.
        LLMError: If the edit must be generated and the completion fails.
    """
    if operation not in OPERATIONS:
        raise ValidationError(f"Unknown operation '{operation}'. Use one of: {', '.join(OPERATIONS)}")
    if new_content is None and not instruction:
        raise ValidationError("updateFile needs 'newContent' or an 'instruction'")
    original = file.content or ""
    all_lines = original.splitlines()

    target: TargetRange | None = None
    if lines:
        target = parse_line_range(lines, len(all_lines))
        label = target.label
    elif section:
        target = find_section(original, section)
        if target is None:
            raise ValidationError(f"Section '{section}' not found in '{file.name}'")
        label = target.label
    elif selection:
        label = "selection"
    else:
        raise ValidationError("updateFile needs a 'section', 'lines' or 'selection' to target")

    if new_content is None:
        current = (
            "\n".join(all_lines[target.start : target.end]) if target is not None else selection or ""
        )
        new_content, reasoning = await _generate_edit(
            llm, file.name, label, operation, current, instruction or ""
        )
    else:
        reasoning = ""

    if target is not None:
        updated = splice_lines(original, target, operation, new_content)
    else:
        updated = splice_selection(original, selection or "", operation, new_content)

    unified, diff_lines = build_diff(original, updated, file.name)
    return UpdateFilePreview(
        file_id=file.id,
        file_name=file.name,
        project_id=file.project_id,
        target=label,
        operation=operation,
        original_content=original,
        new_content=updated,
        unified_diff=unified,
        diff_lines=diff_lines,
        reasoning=reasoning,
        base_hash=content_hash(original),
    )


async def apply_update(projects: ProjectService, preview: UpdateFilePreview) -> ProjectFile:
    """Write a confirmed preview: new content, ``update`` version, re-index.

    Raises:
        NotFoundError: If the file was deleted since the preview.
        ValidationError: If the file changed since the preview was built.
    """
    file = projects.get_file(preview.file_id)
    if content_hash(file.content or "") != preview.base_hash:
        raise ValidationError(
            f"'{file.name}' changed after the preview was created; request the update again"
        )
    binary = None
    if file.type == "docx":
        binary = render_docx(PurePosixPath(file.name).stem, preview.new_content)
    logger.info("[update] Applying {} on '{}' ({})", preview.operation, file.name, preview.target)
    return await projects.update_document(
        file.id, preview.new_content, source="update", binary_data=binary
    )


async def update_file_tool(params: dict[str, Any], ctx: ToolContext) -> ToolResult:
    file = ctx.projects.find_file(require_param(params, "file"), scope_project_id(params, ctx))
    if file.content is None:
        return ToolResult.fail("updateFile", f"File '{file.name}' has no editable text")
    new_content = params.get("newContent")
    preview = await build_update_preview(
        ctx.llm,
        file,
        section=optional_param(params, "section"),
        lines=optional_param(params, "lines"),
        selection=params.get("selection") or None,
        operation=optional_param(params, "operation", "replace") or "replace",
        instruction=optional_param(params, "instruction"),
        new_content=str(new_content) if new_content is not None else None,
    )
    added, removed = len(preview.added), len(preview.removed)
    body = (
        f"Prepared an update to '{file.name}' ({preview.operation} at {preview.target}): "
        f"+{added} -{removed} lines. Awaiting user confirmation before it is applied."
    )
    if preview.reasoning:
        body += f"\nReasoning: {preview.reasoning}"
    if preview.unified_diff:
        body += f"\n\n```diff\n{preview.unified_diff}\n```"
    result = ToolResult.ok(
        "updateFile",
        body,
        file_id=file.id,
        path=file.name,
        requires_confirmation=True,
        lines_added=added,
        lines_removed=removed,
    )
    result.preview = preview
    return result
