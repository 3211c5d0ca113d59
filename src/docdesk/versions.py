"""File version history with diff-based storage.

Hybrid storage:
- Version 1 is always the full content.
- Later versions store a line patch against the previous version, or the
  full content when the patch would be longer than the content itself.
- Reconstructing version N starts from the nearest full-content version
  at or before N and applies each later patch in order.

Patches are JSON lists of line opcodes produced by ``difflib``:

    ["e", n]        keep the next n lines
    ["d", n]        drop the next n lines
    ["i", [lines]]  insert lines (line endings preserved)

Every version stores the SHA-256 of its content so a reconstruction that
does not reproduce the original bytes is detected instead of returned.
"""

from __future__ import annotations

import hashlib
import json
from difflib import SequenceMatcher

from loguru import logger

from docdesk.db.models import VERSION_SOURCES, FileVersion
from docdesk.db.repository import Repository
from docdesk.errors import IntegrityError, NotFoundError, ValidationError

DEFAULT_MAX_VERSIONS = 50


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Line patches
# ---------------------------------------------------------------------------


def make_patch(old: str, new: str) -> str:
    """Return a JSON line patch that turns *old* into *new*."""
    a = old.splitlines(keepends=True)
    b = new.splitlines(keepends=True)
    ops: list[list[object]] = []
    for tag, i1, i2, j1, j2 in SequenceMatcher(None, a, b, autojunk=False).get_opcodes():
        if tag == "equal":
            ops.append(["e", i2 - i1])
            continue
        if tag in ("delete", "replace"):
            ops.append(["d", i2 - i1])
        if tag in ("insert", "replace"):
            ops.append(["i", b[j1:j2]])
    return json.dumps(ops, ensure_ascii=False, separators=(",", ":"))


def apply_patch(base: str, patch: str) -> str:
    """Apply a patch from ``make_patch`` to *base*.

    Raises:
        IntegrityError: If the patch is malformed or does not fit *base*.
    """
    try:
        ops = json.loads(patch)
    except json.JSONDecodeError as exc:
        raise IntegrityError(f"Corrupt version patch: {exc}") from exc

    lines = base.splitlines(keepends=True)
    out: list[str] = []
    pos = 0
    for op in ops:
        if not isinstance(op, list) or len(op) != 2:
            raise IntegrityError(f"Corrupt version patch operation: {op!r}")
        kind, arg = op
        if kind == "e":
            if pos + arg > len(lines):
                raise IntegrityError("Version patch does not match its base content")
            out.extend(lines[pos : pos + arg])
            pos += arg
        elif kind == "d":
            if pos + arg > len(lines):
                raise IntegrityError("Version patch does not match its base content")
            pos += arg
        elif kind == "i":
            out.extend(arg)
        else:
            raise IntegrityError(f"Unknown version patch operation '{kind}'")
    if pos != len(lines):
        raise IntegrityError("Version patch did not consume its base content")
    return "".join(out)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class VersionService:
    """Create, reconstruct and prune file versions.

    Args:
        repo: Open Repository instance.
        max_versions: Versions kept per file; older ones are pruned on create.
    """

    def __init__(self, repo: Repository, max_versions: int = DEFAULT_MAX_VERSIONS) -> None:
        self._repo = repo
        self.max_versions = max_versions

    def create_version(self, file_id: str, content: str, source: str = "update") -> FileVersion:
        """Record *content* as the next version of *file_id*.

        Args:
            file_id: File the version belongs to.
            content: Full content at this point in time.
            source: One of create, update, format, restore.

        Returns:
            The stored FileVersion.
        """
        if source not in VERSION_SOURCES:
            raise ValidationError(f"Unknown version source '{source}'")

        current = self._repo.latest_version_number(file_id)
        number = current + 1

        is_full = True
        payload = content
        if current > 0:
            try:
                previous = self.reconstruct_version(file_id, current)
            except IntegrityError as exc:
                logger.warning(
                    "[versions] Cannot rebuild v{} of {} ({}); storing full content",
                    current,
                    file_id,
                    exc,
                )
            else:
                patch = make_patch(previous, content)
                if len(patch) <= len(content):
                    is_full, payload = False, patch

        version = FileVersion(
            file_id=file_id,
            version_number=number,
            is_full_content=is_full,
            content_or_patch=payload,
            content_hash=content_hash(content),
            source=source,
        )
        self._repo.add_version(version)
        self.prune_versions(file_id)
        return version

    def create_format_version(self, file_id: str, content: str) -> FileVersion:
        return self.create_version(file_id, content, source="format")

    def reconstruct_version(self, file_id: str, version_number: int) -> str:
        """Return the exact content of *version_number*.

        Raises:
            NotFoundError: If the version does not exist.
            IntegrityError: If a patch fails or the result's hash differs.
        """
        versions = [
            v for v in self._repo.list_versions(file_id) if v.version_number <= version_number
        ]
        if not versions or versions[-1].version_number != version_number:
            raise NotFoundError(f"Version {version_number} of file {file_id} not found")

        base_idx = max(i for i, v in enumerate(versions) if v.is_full_content or i == 0)
        base = versions[base_idx]
        if not base.is_full_content:
            raise IntegrityError(
                f"No full-content version at or before v{version_number} of {file_id}"
            )

        content = base.content_or_patch
        for version in versions[base_idx + 1 :]:
            content = apply_patch(content, version.content_or_patch)

        if content_hash(content) != versions[-1].content_hash:
            raise IntegrityError(
                f"Reconstructed v{version_number} of {file_id} does not match its checksum"
            )
        return content

    def get_version_content(self, file_id: str, version_number: int) -> str:
        return self.reconstruct_version(file_id, version_number)

    def get_version_history(self, file_id: str) -> list[FileVersion]:
        """Return version metadata, newest first."""
        return list(reversed(self._repo.list_versions(file_id)))

    def prune_versions(self, file_id: str, keep: int | None = None) -> int:
        """Keep only the newest *keep* versions, all still reconstructable.

        The oldest kept version is converted to full content before anything
        older is deleted.

        Returns:
            Number of versions deleted.
        """
        keep = keep if keep is not None else self.max_versions
        if keep < 1:
            raise ValidationError("keep must be >= 1")
        versions = self._repo.list_versions(file_id)
        if len(versions) <= keep:
            return 0

        oldest_kept = versions[-keep]
        if not oldest_kept.is_full_content:
            content = self.reconstruct_version(file_id, oldest_kept.version_number)
            self._repo.set_version_full_content(oldest_kept.id, content)
        deleted = self._repo.delete_versions_before(file_id, oldest_kept.version_number)
        logger.debug("[versions] Pruned {} versions of {}", deleted, file_id)
        return deleted

    def delete_all_versions(self, file_id: str) -> int:
        return self._repo.delete_versions(file_id)
