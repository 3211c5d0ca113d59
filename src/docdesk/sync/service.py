"""Bidirectional database ↔ filesystem sync for Markdown files.

Reconciliation compares the file row's ``updated_at`` with the file's mtime
and copies the newer side over the older one (last-modified-wins). When both
sides changed since the last successful sync, a ``SyncConflict`` is recorded
in the result; the newer side still wins.

- Only ``.md`` files take part; other files live in the database only.
- A file present on one side only is copied to the other.
- ``sync_all`` also imports new, non-hidden root directories as projects.
- After each copy, the target's timestamp is set to the source's so the
  next pass sees the pair as unchanged.
- One sync at a time; a second ``sync_all`` while one runs returns an error
  result.

The service doubles as the ProjectService mirror: with ``sync.enabled``,
every database write, delete or project change is reflected on disk
immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger

from docdesk.agent import events as ev
from docdesk.agent.events import EventChannel
from docdesk.config import SyncCfg
from docdesk.db.models import Project, ProjectFile
from docdesk.db.repository import Repository
from docdesk.errors import DocdeskError, NotFoundError
from docdesk.projects import ProjectService
from docdesk.sync.filesystem import FsEntry, LocalFileSystem

SETTING_LAST_SYNC = "sync_last_time"
SYNC_EXTENSION = ".md"
# Seconds; absorbs coarse filesystem mtime resolution.
_MTIME_TOLERANCE = 1.0


@dataclass
class SyncChange:
    type: str  # created | modified
    direction: str  # db_to_fs | fs_to_db
    file_path: str
    project_id: str
    file_id: str | None = None


@dataclass
class SyncConflict:
    project_id: str
    file_path: str
    db_updated_at: datetime
    fs_modified_at: datetime
    winner: str  # db | fs


@dataclass
class SyncResult:
    success: bool = True
    files_written: int = 0
    files_read: int = 0
    files_deleted: int = 0
    conflicts: list[SyncConflict] = field(default_factory=list)
    error: str | None = None
    sync_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def conflicts_detected(self) -> int:
        return len(self.conflicts)

    def merge(self, other: SyncResult) -> None:
        self.files_written += other.files_written
        self.files_read += other.files_read
        self.files_deleted += other.files_deleted
        self.conflicts.extend(other.conflicts)
        if not other.success and self.error is None:
            self.success = False
            self.error = other.error


@dataclass
class SyncStatus:
    enabled: bool
    root: str
    watching: bool
    syncing: bool
    last_sync_time: datetime | None = None


def parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _is_synced(name: str) -> bool:
    return name.lower().endswith(SYNC_EXTENSION)


def detect_changes(
    db_files: list[ProjectFile],
    fs_files: list[FsEntry],
    project_id: str,
    last_sync: datetime | None = None,
) -> tuple[list[SyncChange], list[SyncConflict]]:
    """Compare one project's Markdown files on both sides.

    Paths match case-insensitively. Returns the changes to apply and the
    conflicts among them (both sides modified after *last_sync*).
    """
    db_md = [f for f in db_files if _is_synced(f.name)]
    fs_md = {e.relative_path.lower(): e for e in fs_files if _is_synced(e.relative_path)}
    db_names = {f.name.lower() for f in db_md}

    changes: list[SyncChange] = []
    conflicts: list[SyncConflict] = []
    for file in db_md:
        entry = fs_md.get(file.name.lower())
        if entry is None:
            changes.append(SyncChange("created", "db_to_fs", file.name, project_id, file.id))
            continue
        db_time = parse_timestamp(file.updated_at)
        delta = (entry.modified_at - db_time).total_seconds()
        if abs(delta) <= _MTIME_TOLERANCE:
            continue
        direction = "fs_to_db" if delta > 0 else "db_to_fs"
        changes.append(SyncChange("modified", direction, file.name, project_id, file.id))
        if last_sync is not None and db_time > last_sync and entry.modified_at > last_sync:
            conflicts.append(
                SyncConflict(
                    project_id=project_id,
                    file_path=file.name,
                    db_updated_at=db_time,
                    fs_modified_at=entry.modified_at,
                    winner="fs" if delta > 0 else "db",
                )
            )

    for key, entry in fs_md.items():
        if key not in db_names:
            changes.append(SyncChange("created", "fs_to_db", entry.relative_path, project_id))
    return changes, conflicts


class SyncService:
    """Reconcile projects with directories under the sync root.

    Args:
        repo: Open Repository instance.
        projects: Project service used for every database-side change.
        fs: Filesystem rooted at the sync directory.
        config: Sync configuration.
        events: Optional channel for ``sync_start``/``sync_complete``/``sync_error``.
    """

    def __init__(
        self,
        repo: Repository,
        projects: ProjectService,
        fs: LocalFileSystem,
        config: SyncCfg | None = None,
        events: EventChannel | None = None,
    ) -> None:
        self._repo = repo
        self._projects = projects
        self.fs = fs
        self._config = config or SyncCfg()
        self._events = events
        self._syncing = False
        self.watcher: SyncWatcher | None = None

    @property
    def syncing(self) -> bool:
        return self._syncing

    def last_sync_time(self) -> datetime | None:
        value = self._repo.get_setting(SETTING_LAST_SYNC)
        return parse_timestamp(value) if value else None

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            enabled=self._config.enabled,
            root=str(self.fs.root),
            watching=self.watcher is not None and self.watcher.running,
            syncing=self._syncing,
            last_sync_time=self.last_sync_time(),
        )

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def sync_all(self) -> SyncResult:
        """Sync every project, then import new root directories as projects."""
        if self._syncing:
            return SyncResult(success=False, error="Sync already in progress")
        if not self.fs.available():
            return SyncResult(
                success=False,
                error=f"Sync directory '{self.fs.root}' does not exist. Run: docdesk init",
            )

        self._syncing = True
        self._emit(ev.SYNC_START)
        result = SyncResult()
        try:
            last_sync = self.last_sync_time()
            projects = self._repo.list_projects()
            for project in projects:
                result.merge(await self.sync_project(project.id, last_sync=last_sync))

            known = {p.name.lower() for p in projects}
            for directory in self.fs.list_root_directories():
                if directory.startswith(".") or directory.lower() in known:
                    continue
                logger.info("[sync] Importing new project from '{}'", directory)
                result.files_read += await self._import_directory(directory)

            self._repo.set_setting(SETTING_LAST_SYNC, result.sync_time.isoformat())
            self._emit(
                ev.SYNC_COMPLETE,
                files_written=result.files_written,
                files_read=result.files_read,
                conflicts=result.conflicts_detected,
            )
            return result
        except (DocdeskError, OSError) as exc:
            logger.error("[sync] Sync failed: {}", exc)
            result.success = False
            result.error = str(exc)
            self._emit(ev.SYNC_ERROR, error=result.error)
            return result
        finally:
            self._syncing = False

    async def sync_project(self, project_id: str, *, last_sync: datetime | None = None) -> SyncResult:
        """Apply every detected change for one project.

        A change that fails is logged and skipped; the rest still apply.
        """
        result = SyncResult()
        try:
            project = self._projects.get_project(project_id)
        except NotFoundError as exc:
            return SyncResult(success=False, error=str(exc))

        db_files = self._repo.list_files(project_id)
        changes, conflicts = detect_changes(
            db_files, self.fs.list_files(project.name), project_id, last_sync
        )
        for conflict in conflicts:
            logger.warning(
                "[sync] Conflict on '{}/{}': both sides changed; keeping the {} version",
                project.name,
                conflict.file_path,
                conflict.winner,
            )
        result.conflicts.extend(conflicts)

        by_id = {f.id: f for f in db_files}
        for change in changes:
            try:
                if change.direction == "db_to_fs":
                    file = by_id[change.file_id] if change.file_id else None
                    if file is not None and file.content is not None:
                        self._write_to_fs(project, file)
                        result.files_written += 1
                else:
                    await self._read_from_fs(project, change.file_path, change.file_id)
                    result.files_read += 1
            except (DocdeskError, OSError) as exc:
                logger.warning("[sync] Failed to apply change to '{}': {}", change.file_path, exc)
        return result

    async def _import_directory(self, directory: str) -> int:
        project, _ = self._projects.get_or_create_project(
            directory, "Imported from file system", mirror=False, automatic=True
        )
        existing = {f.name.lower() for f in self._repo.list_files(project.id)}
        imported = 0
        for entry in self.fs.list_files(directory):
            if not _is_synced(entry.relative_path) or entry.relative_path.lower() in existing:
                continue
            try:
                await self._read_from_fs(project, entry.relative_path, None)
                imported += 1
            except (DocdeskError, OSError) as exc:
                logger.warning("[sync] Failed to import '{}': {}", entry.relative_path, exc)
        return imported

    # ------------------------------------------------------------------
    # Single-file operations
    # ------------------------------------------------------------------

    def _write_to_fs(self, project: Project, file: ProjectFile) -> None:
        self.fs.write_file(
            project.name, file.name, file.content or "", parse_timestamp(file.updated_at)
        )

    async def _read_from_fs(
        self, project: Project, relative_path: str, file_id: str | None
    ) -> ProjectFile:
        content = self.fs.read_file(project.name, relative_path)
        modified = self.fs.modified_at(project.name, relative_path).isoformat(
            timespec="microseconds"
        )
        if file_id is not None:
            return await self._projects.update_document(
                file_id, content, source="update", mirror=False, updated_at=modified
            )
        return await self._projects.add_document(
            project.id, relative_path, content, file_type="md", mirror=False, updated_at=modified
        )

    def sync_file_to_fs(self, project: Project, file: ProjectFile) -> bool:
        if not self._config.enabled or not _is_synced(file.name) or file.content is None:
            return False
        try:
            self._write_to_fs(project, file)
        except (DocdeskError, OSError) as exc:
            logger.warning("[sync] Could not mirror '{}/{}': {}", project.name, file.name, exc)
            return False
        return True

    async def sync_file_from_fs(self, project_id: str, relative_path: str) -> ProjectFile:
        """Import or refresh one Markdown file from disk.

        Raises:
            NotFoundError: If the project does not exist.
            OSError: If the file cannot be read.
        """
        project = self._projects.get_project(project_id)
        existing = next(
            (f for f in self._repo.list_files(project_id) if f.name.lower() == relative_path.lower()),
            None,
        )
        return await self._read_from_fs(
            project, existing.name if existing else relative_path, existing.id if existing else None
        )

    def sync_file_delete(self, project_name: str, file_name: str) -> bool:
        if not self._config.enabled or not _is_synced(file_name):
            return False
        try:
            return self.fs.delete_file(project_name, file_name)
        except (DocdeskError, OSError) as exc:
            logger.warning("[sync] Could not delete '{}/{}': {}", project_name, file_name, exc)
            return False

    def sync_project_create(self, project: Project) -> bool:
        if not self._config.enabled:
            return False
        try:
            self.fs.create_project_directory(project.name)
        except (DocdeskError, OSError) as exc:
            logger.warning("[sync] Could not create directory for '{}': {}", project.name, exc)
            return False
        return True

    def sync_project_delete(self, project_name: str) -> bool:
        if not self._config.enabled:
            return False
        try:
            return self.fs.delete_project_directory(project_name)
        except (DocdeskError, OSError) as exc:
            logger.warning("[sync] Could not delete directory '{}': {}", project_name, exc)
            return False

    # FileMirror protocol
    def file_written(self, project: Project, file: ProjectFile) -> None:
        self.sync_file_to_fs(project, file)

    def file_deleted(self, project_name: str, file_name: str) -> None:
        self.sync_file_delete(project_name, file_name)

    def project_created(self, project: Project) -> None:
        self.sync_project_create(project)

    def project_deleted(self, project_name: str) -> None:
        self.sync_project_delete(project_name)

    # ------------------------------------------------------------------
    # Watcher
    # ------------------------------------------------------------------

    async def check_for_external_changes(self) -> int:
        """Import new or externally modified Markdown files. Returns files read."""
        if self._syncing or not self.fs.available():
            return 0
        read = 0
        for project in self._repo.list_projects():
            db_files = {f.name.lower(): f for f in self._repo.list_files(project.id)}
            for entry in self.fs.list_files(project.name):
                if not _is_synced(entry.relative_path):
                    continue
                file = db_files.get(entry.relative_path.lower())
                if file is not None and (
                    entry.modified_at - parse_timestamp(file.updated_at)
                ).total_seconds() <= _MTIME_TOLERANCE:
                    continue
                try:
                    await self.sync_file_from_fs(project.id, entry.relative_path)
                    read += 1
                except (DocdeskError, OSError) as exc:
                    logger.warning("[sync] Watcher failed on '{}': {}", entry.relative_path, exc)
        return read

    def start_watcher(self) -> SyncWatcher | None:
        if not self._config.enabled:
            return None
        if self.watcher is None:
            self.watcher = SyncWatcher(self, self._config.watch_interval)
        self.watcher.start()
        return self.watcher

    async def stop_watcher(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()

    def _emit(self, kind: str, **payload: object) -> None:
        if self._events is not None:
            self._events.emit(kind, **payload)


class SyncWatcher:
    """Polls the sync root on an asyncio task."""

    def __init__(self, service: SyncService, interval: float) -> None:
        self._service = service
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            read = await self._service.check_for_external_changes()
            if read:
                logger.info("[sync] Watcher imported {} changed file(s)", read)
