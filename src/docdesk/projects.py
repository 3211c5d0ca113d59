"""Project + file lifecycle.

Every content change goes through this service so the side effects stay in
one place: the file row, a new version, re-indexing, and the filesystem
mirror (when sync is enabled).
"""

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Protocol

from loguru import logger

from docdesk.db.models import Project, ProjectFile
from docdesk.db.repository import Repository, new_id
from docdesk.errors import NotFoundError, ValidationError
from docdesk.ingest.extract import detect_type, extract_text_from_bytes
from docdesk.ingest.indexer import Indexer
from docdesk.matching import best_match
from docdesk.telemetry import Telemetry
from docdesk.versions import VersionService

_BINARY_TYPES = frozenset(["pdf", "docx"])


class FileMirror(Protocol):
    """Receives file/project changes to mirror them outside the database."""

    def file_written(self, project: Project, file: ProjectFile) -> None: ...

    def file_deleted(self, project_name: str, file_name: str) -> None: ...

    def project_created(self, project: Project) -> None: ...

    def project_deleted(self, project_name: str) -> None: ...


def safe_relative_name(name: str) -> str:
    """Normalize a project-relative POSIX path, rejecting traversal.

    Raises:
        ValidationError: For empty, absolute, or escaping paths.
    """
    raw = name.strip().replace("\\", "/")
    if not raw:
        raise ValidationError("File name must not be empty")
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        raise ValidationError(f"File name must be relative to the project: '{name}'")
    norm = posixpath.normpath(raw)
    if norm == "." or norm.startswith("../") or norm == ".." or "/../" in f"/{norm}/":
        raise ValidationError(
            f"File name '{name}' resolves outside the project. Path traversal is not permitted."
        )
    return norm


class ProjectService:
    """Projects, files and their derived state.

    Args:
        repo: Open Repository instance.
        indexer: Chunk + embed writer.
        versions: Version history service.
        mirror: Optional filesystem mirror (the sync service).
    """

    def __init__(
        self,
        repo: Repository,
        indexer: Indexer,
        versions: VersionService,
        mirror: FileMirror | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._repo = repo
        self._indexer = indexer
        self._versions = versions
        self.mirror = mirror
        self.telemetry = telemetry

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        project = self._repo.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        return project

    def resolve_project(self, ref: str, *, fuzzy: bool = True) -> Project:
        """Find a project by id, exact name (case-insensitive), or fuzzy name.

        Raises:
            NotFoundError: If nothing matches.
        """
        ref = ref.strip()
        project = self._repo.get_project(ref) or self._repo.get_project_by_name(ref)
        if project is None and fuzzy:
            project = best_match(ref, self._repo.list_projects(), key=lambda p: p.name)
        if project is None:
            raise NotFoundError(f"Project '{ref}' not found")
        return project

    def get_or_create_project(
        self,
        name: str,
        description: str | None = None,
        *,
        mirror: bool = True,
        automatic: bool = False,
    ) -> tuple[Project, bool]:
        """Upsert by case-insensitive name. Returns ``(project, created)``.

        *automatic* marks projects the assistant or sync created rather than
        the user; it only affects telemetry.
        """
        name = name.strip()
        if not name:
            raise ValidationError("Project name must not be empty")
        if "/" in name or "\\" in name or name in (".", ".."):
            raise ValidationError(f"Invalid project name '{name}'")
        existing = self._repo.get_project_by_name(name)
        if existing is not None:
            return existing, False
        project = self._repo.create_project(name, description)
        logger.info("[projects] Created project '{}'", name)
        if mirror and self.mirror is not None:
            self.mirror.project_created(project)
        if self.telemetry is not None:
            self.telemetry.track_project_created(project.id, project.name, automatic=automatic)
        return project, True

    def delete_project(self, project_id: str, *, mirror: bool = True) -> Project:
        """Delete a project with all files, chunks, embeddings and versions."""
        project = self.get_project(project_id)
        self._repo.delete_project(project_id)
        logger.info("[projects] Deleted project '{}'", project.name)
        if mirror and self.mirror is not None:
            self.mirror.project_deleted(project.name)
        return project

    def list_directories(self, project_id: str) -> list[str]:
        dirs: set[str] = set()
        for f in self._repo.list_files(project_id):
            parts = f.name.split("/")[:-1]
            for i in range(1, len(parts) + 1):
                dirs.add("/".join(parts[:i]))
        return sorted(dirs)

    # ------------------------------------------------------------------
    # File lookup
    # ------------------------------------------------------------------

    def get_file(self, file_id: str) -> ProjectFile:
        file = self._repo.get_file(file_id)
        if file is None:
            raise NotFoundError(f"File '{file_id}' not found")
        return file

    def find_file(self, ref: str, project_id: str | None = None) -> ProjectFile:
        """Locate a file by id, path, base name, or fuzzy name within a scope.

        Args:
            ref: File id, project-relative path, or (approximate) name.
            project_id: Restrict to one project; None searches all projects.

        Raises:
            NotFoundError: If no file matches.
        """
        ref = ref.strip()
        by_id = self._repo.get_file(ref)
        if by_id is not None and (project_id is None or by_id.project_id == project_id):
            return by_id

        files = self._repo.list_files(project_id)
        lowered = ref.lower()
        for f in files:
            if f.name.lower() == lowered:
                return f
        for f in files:
            if f.basename.lower() == lowered:
                return f
        for f in files:
            if lowered and lowered in f.name.lower():
                return f
        match = best_match(ref, files, key=lambda f: f.basename)
        if match is None:
            scope = "this project" if project_id else "any project"
            raise NotFoundError(f"No file matching '{ref}' in {scope}")
        return match

    def unique_name(self, project_id: str, directory: str, stem: str, ext: str) -> str:
        """Return ``directory/stem.ext``, suffixing ``-1``, ``-2``... until unused."""
        prefix = f"{directory.strip('/')}/" if directory.strip("/") else ""
        candidate = f"{prefix}{stem}.{ext}"
        counter = 1
        while self._repo.get_file_by_name(project_id, candidate) is not None:
            candidate = f"{prefix}{stem}-{counter}.{ext}"
            counter += 1
        return candidate

    # ------------------------------------------------------------------
    # File changes
    # ------------------------------------------------------------------

    async def add_document(
        self,
        project_id: str,
        name: str,
        content: str,
        *,
        file_type: str | None = None,
        binary_data: bytes | None = None,
        html_content: str | None = None,
        system_file_path: str | None = None,
        mirror: bool = True,
        updated_at: str | None = None,
    ) -> ProjectFile:
        """Create a file, record version 1, and index it.

        Raises:
            NotFoundError: If the project does not exist.
            ValidationError: For unsafe or duplicate names.
            EmbeddingError: If indexing fails (the file is kept in ``error``).
        """
        project = self.get_project(project_id)
        name = safe_relative_name(name)
        if self._repo.get_file_by_name(project_id, name) is not None:
            raise ValidationError(f"A file named '{name}' already exists in '{project.name}'")

        file = ProjectFile(
            id=new_id(),
            project_id=project_id,
            name=name,
            type=file_type or detect_type(name),
            size=len(content.encode("utf-8")),
            status="pending",
            content=content,
            binary_data=binary_data,
            html_content=html_content,
            system_file_path=system_file_path,
            updated_at=updated_at,
        )
        self._repo.add_file(file)
        self._versions.create_version(file.id, content, source="create")
        await self._indexer.index_file(file)
        if mirror and self.mirror is not None:
            self.mirror.file_written(project, file)
        return self.get_file(file.id)

    async def update_document(
        self,
        file_id: str,
        content: str,
        *,
        source: str = "update",
        binary_data: bytes | None = None,
        html_content: str | None = None,
        mirror: bool = True,
        updated_at: str | None = None,
    ) -> ProjectFile:
        """Replace a file's content, record a version, and re-index it."""
        file = self.get_file(file_id)
        self._repo.update_file_content(
            file_id,
            content,
            binary_data=binary_data,
            html_content=html_content,
            updated_at=updated_at,
        )
        self._versions.create_version(file_id, content, source=source)
        file = self.get_file(file_id)
        await self._indexer.index_file(file)
        if mirror and self.mirror is not None:
            self.mirror.file_written(self.get_project(file.project_id), file)
        return self.get_file(file_id)

    async def restore_version(self, file_id: str, version_number: int) -> ProjectFile:
        """Write version *version_number* back as the current content."""
        content = self._versions.reconstruct_version(file_id, version_number)
        return await self.update_document(file_id, content, source="restore")

    def move_file(
        self, file_id: str, target_project_id: str, target_directory: str = ""
    ) -> ProjectFile:
        """Move a file into another project and/or directory, keeping its base name."""
        file = self.get_file(file_id)
        source_project = self.get_project(file.project_id)
        target_project = self.get_project(target_project_id)
        directory = safe_relative_name(target_directory) if target_directory.strip("/ ") else ""
        new_name = f"{directory}/{file.basename}" if directory else file.basename

        if target_project_id == file.project_id and new_name == file.name:
            return file
        if self._repo.get_file_by_name(target_project_id, new_name) is not None:
            raise ValidationError(
                f"A file named '{new_name}' already exists in '{target_project.name}'"
            )
        self._repo.move_file(file_id, target_project_id, new_name)
        moved = self.get_file(file_id)
        self._indexer.refresh_project_status(source_project.id)
        self._indexer.refresh_project_status(target_project_id)
        if self.mirror is not None:
            self.mirror.file_deleted(source_project.name, file.name)
            self.mirror.file_written(target_project, moved)
        return moved

    def delete_file(self, file_id: str, *, mirror: bool = True) -> ProjectFile:
        """Delete a file with its chunks, embeddings and versions."""
        file = self.get_file(file_id)
        project = self.get_project(file.project_id)
        self._repo.delete_file(file_id)
        self._indexer.refresh_project_status(project.id)
        if mirror and self.mirror is not None:
            self.mirror.file_deleted(project.name, file.name)
        return file

    async def import_path(
        self, project_id: str, path: Path, name: str | None = None
    ) -> ProjectFile:
        """Extract text from a file on disk and add it to *project_id*."""
        file_type = detect_type(path)
        data = path.read_bytes()
        text = extract_text_from_bytes(data, file_type, name=path.name)
        return await self.add_document(
            project_id,
            name or path.name,
            text,
            file_type=file_type,
            binary_data=data if file_type in _BINARY_TYPES else None,
            system_file_path=str(path.resolve()),
        )
