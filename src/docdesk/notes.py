"""AddNote pipeline — raw text in, formatted and filed Markdown note out.

Steps:
1. Format the raw text as Markdown (user ``format_instructions`` appended).
2. Title: given, generated by the model, or taken from the first heading.
3. Slug the title (``title_to_slug``).
4. Pick a directory: existing project directories plus the default notes
   directory are offered to the model; anything unusable falls back to the
   default.
5. Pick a unique file name (``slug.md``, ``slug-1.md``, ...).
6. Persist the note, record version 1 (``create``) and index it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

from docdesk.config import NotesCfg
from docdesk.db.models import ProjectFile
from docdesk.documents import title_to_slug
from docdesk.errors import DocdeskError, ValidationError
from docdesk.projects import ProjectService, safe_relative_name
from docdesk.rag.llm_client import CompletionClient, extract_json
from docdesk.telemetry import SOURCE_CLI, Telemetry
from docdesk.tools.files import strip_code_fence

_MAX_TITLE_LEN = 60

_FORMAT_PROMPT = """You are a note formatting assistant. Turn raw note text into well-structured Markdown.

Guidelines:
- Use headings (##, ###) to organize content
- Use bullet points or numbered lists where appropriate
- Preserve all important information from the original text
- Fix grammar and spelling errors
- Keep the tone professional but accessible"""

_TITLE_PROMPT = """Generate a short, descriptive title (under 60 characters, title case) for the note.
Respond with ONLY the title text. No quotes, no explanations."""

_DIRECTORY_PROMPT = """You organize notes into directories. Given a note's title, choose where to save it.

Existing directories in the project:
{directories}

Guidelines:
- STRONGLY prefer an existing directory whenever the note reasonably fits
- Only propose a new directory for a clearly distinct category
- Use lowercase, hyphen-separated names for new directories
- Keep directory structures shallow

Respond with a JSON object ONLY:
{{"targetDirectory": "path/to/directory", "shouldCreateDirectory": false}}"""


def format_prompt(instructions: str = "") -> str:
    prompt = _FORMAT_PROMPT
    if instructions.strip():
        prompt += f"\n\nUser's custom formatting instructions:\n{instructions.strip()}"
    return prompt + (
        "\n\nIMPORTANT: Respond with ONLY the formatted Markdown. "
        "No explanations or preamble."
    )


def title_from_content(content: str) -> str:
    """First heading, else first non-empty line, trimmed to a title length."""
    for line in content.splitlines():
        stripped = line.strip()
        if stripped:
            return re.sub(r"^#+\s*", "", stripped)[:_MAX_TITLE_LEN].strip() or "Note"
    return "Note"


@dataclass
class NoteResult:
    file: ProjectFile
    title: str
    directory: str
    new_directory: bool = False

    @property
    def path(self) -> str:
        return self.file.name


class NoteService:
    """Runs the AddNote pipeline against one ProjectService.

    Args:
        projects: Project/file service used to persist and index notes.
        llm: Completion client for formatting, titling and filing.
        config: Notes configuration.
        telemetry: Optional usage recorder for created and failed notes.
    """

    def __init__(
        self,
        projects: ProjectService,
        llm: CompletionClient,
        config: NotesCfg | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._projects = projects
        self._llm = llm
        self._config = config or NotesCfg()
        self.telemetry = telemetry

    async def format_note(self, raw_text: str) -> str:
        reply = await self._llm.complete(
            [
                {"role": "system", "content": format_prompt(self._config.format_instructions)},
                {"role": "user", "content": raw_text},
            ],
            temperature=0.3,
        )
        return strip_code_fence(reply) or raw_text.strip()

    async def generate_title(self, content: str) -> str:
        reply = await self._llm.complete(
            [
                {"role": "system", "content": _TITLE_PROMPT},
                {"role": "user", "content": content[:2000]},
            ],
            max_tokens=100,
            temperature=0.5,
        )
        title = reply.strip().strip("\"'").splitlines()[0].strip() if reply.strip() else ""
        return title[:_MAX_TITLE_LEN] or title_from_content(content)

    def list_directories(self, project_id: str) -> list[str]:
        """Existing project directories plus the default notes directory."""
        dirs = set(self._projects.list_directories(project_id))
        default = self._config.default_directory.strip("/")
        if default:
            dirs.add(default)
        return sorted(dirs)

    async def decide_directory(self, project_id: str, title: str) -> tuple[str, bool]:
        """Return ``(directory, is_new)``; falls back to the default directory."""
        default = self._config.default_directory.strip("/")
        existing = self.list_directories(project_id)
        listing = "\n".join(f"  - {d}" for d in existing) or "  (No existing directories)"
        reply = await self._llm.complete(
            [
                {"role": "system", "content": _DIRECTORY_PROMPT.format(directories=listing)},
                {"role": "user", "content": f'Note title: "{title}"'},
            ],
            max_tokens=200,
            temperature=0.2,
        )
        decision = extract_json(reply) or {}
        target = str(decision.get("targetDirectory") or "").strip().strip("/")
        if not target:
            return default, default not in self._projects.list_directories(project_id)
        try:
            target = safe_relative_name(target)
        except ValidationError:
            logger.warning("[notes] Rejected directory '{}' from the model; using '{}'", target, default)
            return default, default not in self._projects.list_directories(project_id)
        return target, target not in self._projects.list_directories(project_id)

    async def add_note(
        self,
        project_id: str,
        raw_text: str,
        *,
        title: str | None = None,
        directory: str | None = None,
        source: str = SOURCE_CLI,
    ) -> NoteResult:
        """Run the full pipeline and return the stored note.

        *source* says who asked for the note (``"cli"`` or ``"assistant"``)
        and is only recorded in telemetry.

        Raises:
            NotFoundError: If the project does not exist.
            ValidationError: For empty notes or unsafe directories.
            LLMError: If a completion call fails.
        """
        try:
            result = await self._add_note(project_id, raw_text, title, directory)
        except DocdeskError as exc:
            if self.telemetry is not None:
                self.telemetry.track_note_creation_failed(source, str(exc), project_id)
            raise
        if self.telemetry is not None:
            self.telemetry.track_note_created(project_id, result.path, result.title, source)
            if result.new_directory and result.directory:
                self.telemetry.track_directory_created(
                    project_id, result.directory, result.title
                )
        return result

    async def _add_note(
        self, project_id: str, raw_text: str, title: str | None, directory: str | None
    ) -> NoteResult:
        if not raw_text.strip():
            raise ValidationError("Note content must not be empty")
        project = self._projects.get_project(project_id)

        content = await self.format_note(raw_text)
        if not title:
            title = (
                await self.generate_title(content)
                if self._config.auto_title
                else title_from_content(content)
            )

        if directory is not None and directory.strip("/ "):
            directory = safe_relative_name(directory)
            is_new = directory not in self._projects.list_directories(project_id)
        elif directory is not None:
            directory, is_new = "", False
        else:
            directory, is_new = await self.decide_directory(project_id, title)

        name = self._projects.unique_name(project_id, directory, title_to_slug(title), "md")
        file = await self._projects.add_document(project_id, name, content, file_type="md")
        logger.info("[notes] Saved note '{}' in project '{}'", file.name, project.name)
        return NoteResult(file=file, title=title, directory=directory, new_directory=is_new)
