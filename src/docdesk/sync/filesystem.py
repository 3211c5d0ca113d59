"""Filesystem side of the database ↔ directory sync.

Layout under the sync root::

    <root>/<project name>/<project-relative file path>

Security:
- Project names are single path components; file paths go through
  ``safe_relative_name`` and must resolve inside the project directory.
  Traversal (``../../etc/passwd``) is a hard failure.
- Writes are atomic (temp file in the same directory, then rename).
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from docdesk.errors import ValidationError
from docdesk.projects import safe_relative_name


@dataclass
class FsEntry:
    relative_path: str
    modified_at: datetime
    size: int = 0

    @property
    def name(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]


class LocalFileSystem:
    """Read/write project files under a sync root directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser().resolve()

    def available(self) -> bool:
        return self.root.is_dir()

    # ------------------------------------------------------------------
    # Path validation
    # ------------------------------------------------------------------

    def project_dir(self, project_name: str) -> Path:
        name = project_name.strip()
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValidationError(f"Invalid project directory name '{project_name}'")
        return self.root / name

    def resolve(self, project_name: str, relative_path: str) -> Path:
        """Absolute path of a project file, confined to the project directory.

        Raises:
            ValidationError: If the path escapes the project directory.
        """
        base = self.project_dir(project_name).resolve()
        resolved = (base / safe_relative_name(relative_path)).resolve()
        try:
            resolved.relative_to(base)
        except ValueError:
            raise ValidationError(
                f"Path '{relative_path}' resolves outside the project directory "
                f"('{base}'). Path traversal is not permitted."
            )
        return resolved

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def read_file(self, project_name: str, relative_path: str) -> str:
        return self.resolve(project_name, relative_path).read_text(encoding="utf-8")

    def write_file(
        self,
        project_name: str,
        relative_path: str,
        content: str,
        modified_at: datetime | None = None,
    ) -> Path:
        """Write *content* atomically (temp → rename), creating parent directories.

        With *modified_at*, the file's mtime is set to it so the next sync
        sees both sides as unchanged.
        """
        path = self.resolve(project_name, relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        if modified_at is not None:
            ts = modified_at.timestamp()
            os.utime(path, (ts, ts))
        return path

    def delete_file(self, project_name: str, relative_path: str) -> bool:
        """Remove a file; returns False if it did not exist."""
        path = self.resolve(project_name, relative_path)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def modified_at(self, project_name: str, relative_path: str) -> datetime:
        path = self.resolve(project_name, relative_path)
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    def list_files(self, project_name: str) -> list[FsEntry]:
        """Every non-hidden file under the project directory, sorted by path."""
        base = self.project_dir(project_name)
        if not base.is_dir():
            return []
        entries = []
        for path in sorted(base.rglob("*")):
            rel = path.relative_to(base)
            if any(part.startswith(".") for part in rel.parts) or not path.is_file():
                continue
            stat = path.stat()
            entries.append(
                FsEntry(
                    relative_path=rel.as_posix(),
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size,
                )
            )
        return entries

    # ------------------------------------------------------------------
    # Project directories
    # ------------------------------------------------------------------

    def list_root_directories(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def create_project_directory(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def delete_project_directory(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        return True
