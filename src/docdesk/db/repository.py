"""Repository pattern for all docdesk database operations.

Single interface for: projects, files, chunks, vec embeddings, file versions,
chat sessions, the web search cache and settings. Vec tables are
model-managed (ensure_vec_table); the repository handles read + write.

Vec rows are not covered by foreign keys, so every delete that removes
chunks deletes their vec rows first.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone

from docdesk.db.models import (
    ChatMessage,
    ChatSession,
    Chunk,
    FileVersion,
    Project,
    ProjectFile,
    ProjectStats,
    SearchResult,
    WebCacheEntry,
    WebChunk,
    dumps,
)
from docdesk.db.vectors import list_vec_tables


def utcnow() -> str:
    """Return the current UTC time as a sortable ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


_FILE_COLUMNS = (
    "id, project_id, name, type, size, status, content, binary_data, html_content, "
    "system_file_path, created_at, updated_at"
)


class Repository:
    """Data access layer for all docdesk database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see docdesk.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str, description: str | None = None) -> Project:
        """Insert a new project.

        Args:
            name: Display name. Unique, compared case-insensitively.
            description: Optional free-text description.

        Returns:
            The persisted Project.

        Raises:
            sqlite3.IntegrityError: If a project with the same name exists.
        """
        now = utcnow()
        project = Project(
            id=new_id(),
            name=name,
            description=description,
            status="created",
            created_at=now,
            updated_at=now,
        )
        self._conn.execute(
            """
            INSERT INTO projects (id, name, description, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (project.id, name, description, project.status, now, now),
        )
        self._conn.commit()
        return project

    def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return _row_to_project(row) if row else None

    def get_project_by_name(self, name: str) -> Project | None:
        """Return the project whose name matches *name* case-insensitively."""
        row = self._conn.execute(
            "SELECT * FROM projects WHERE name = ? COLLATE NOCASE", (name.strip(),)
        ).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self) -> list[Project]:
        """Return all projects ordered by creation time (oldest first)."""
        rows = self._conn.execute("SELECT * FROM projects ORDER BY created_at, rowid").fetchall()
        return [_row_to_project(r) for r in rows]

    def update_project(
        self,
        project_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        status: str | None = None,
    ) -> None:
        sets: list[str] = ["updated_at = ?"]
        params: list[object] = [utcnow()]
        if name is not None:
            sets.append("name = ?")
            params.append(name)
        if description is not None:
            sets.append("description = ?")
            params.append(description)
        if status is not None:
            sets.append("status = ?")
            params.append(status)
        params.append(project_id)
        self._conn.execute(f"UPDATE projects SET {', '.join(sets)} WHERE id = ?", params)
        self._conn.commit()

    def delete_project(self, project_id: str) -> None:
        """Delete a project and everything it owns.

        Files, chunks, versions and sessions cascade through foreign keys;
        vec rows are removed explicitly first.
        """
        chunk_ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE project_id = ?", (project_id,)
            ).fetchall()
        ]
        self._delete_vec_rows(chunk_ids, kind="chunks")
        self._conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self._conn.commit()

    def project_stats(self, project_id: str) -> ProjectStats:
        files = self._conn.execute(
            "SELECT COUNT(*) FROM files WHERE project_id = ?", (project_id,)
        ).fetchone()[0]
        chunks = self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE project_id = ?", (project_id,)
        ).fetchone()[0]
        return ProjectStats(file_count=files, chunk_count=chunks)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def add_file(self, file: ProjectFile) -> ProjectFile:
        """Insert a new file record. Timestamps default to now."""
        now = utcnow()
        file.created_at = file.created_at or now
        file.updated_at = file.updated_at or now
        self._conn.execute(
            f"""
            INSERT INTO files ({_FILE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                file.id,
                file.project_id,
                file.name,
                file.type,
                file.size,
                file.status,
                file.content,
                file.binary_data,
                file.html_content,
                file.system_file_path,
                file.created_at,
                file.updated_at,
            ),
        )
        self._conn.commit()
        return file

    def get_file(self, file_id: str) -> ProjectFile | None:
        row = self._conn.execute(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE id = ?", (file_id,)
        ).fetchone()
        return _row_to_file(row) if row else None

    def get_file_by_name(self, project_id: str, name: str) -> ProjectFile | None:
        """Return the file at project-relative path *name* (case-insensitive)."""
        row = self._conn.execute(
            f"SELECT {_FILE_COLUMNS} FROM files WHERE project_id = ? AND name = ? COLLATE NOCASE",
            (project_id, name),
        ).fetchone()
        return _row_to_file(row) if row else None

    def list_files(self, project_id: str | None = None) -> list[ProjectFile]:
        """Return files of one project, or of all projects when *project_id* is None."""
        if project_id is None:
            rows = self._conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM files ORDER BY created_at, rowid"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM files WHERE project_id = ? ORDER BY name",
                (project_id,),
            ).fetchall()
        return [_row_to_file(r) for r in rows]

    def update_file_content(
        self,
        file_id: str,
        content: str,
        *,
        binary_data: bytes | None = None,
        html_content: str | None = None,
        updated_at: str | None = None,
    ) -> None:
        """Replace a file's canonical text (and presentation caches)."""
        self._conn.execute(
            """
            UPDATE files
            SET content = ?, size = ?, binary_data = ?, html_content = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                content,
                len(content.encode("utf-8")),
                binary_data,
                html_content,
                updated_at or utcnow(),
                file_id,
            ),
        )
        self._conn.commit()

    def update_file_status(self, file_id: str, status: str) -> None:
        # Status changes do not count as content modification for sync.
        self._conn.execute("UPDATE files SET status = ? WHERE id = ?", (status, file_id))
        self._conn.commit()

    def set_file_system_path(self, file_id: str, path: str | None) -> None:
        self._conn.execute(
            "UPDATE files SET system_file_path = ? WHERE id = ?", (path, file_id)
        )
        self._conn.commit()

    def move_file(self, file_id: str, project_id: str, name: str) -> None:
        """Re-home a file under *project_id* with new relative path *name*."""
        self._conn.execute(
            "UPDATE files SET project_id = ?, name = ?, updated_at = ? WHERE id = ?",
            (project_id, name, utcnow(), file_id),
        )
        self._conn.execute(
            "UPDATE chunks SET project_id = ? WHERE file_id = ?", (project_id, file_id)
        )
        self._conn.commit()

    def mark_all_files_pending(self) -> int:
        cur = self._conn.execute("UPDATE files SET status = 'pending'")
        self._conn.commit()
        return cur.rowcount

    def delete_file(self, file_id: str) -> None:
        """Delete a file, its chunks, vec rows and versions."""
        self.delete_chunks_by_file(file_id)
        self._conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk. Returns its id, which doubles as the vec rowid."""
        cur = self._conn.execute(
            """
            INSERT INTO chunks (file_id, project_id, chunk_index, text,
                                start_offset, end_offset, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.file_id,
                chunk.project_id,
                chunk.chunk_index,
                chunk.text,
                chunk.start_offset,
                chunk.end_offset,
                chunk.created_at or utcnow(),
            ),
        )
        self._conn.commit()
        chunk.id = cur.lastrowid
        return chunk.id

    def list_chunks_by_file(self, file_id: str) -> list[Chunk]:
        rows = self._conn.execute(
            "SELECT * FROM chunks WHERE file_id = ? ORDER BY chunk_index", (file_id,)
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, project_id: str | None = None) -> int:
        if project_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def delete_chunks_by_file(self, file_id: str) -> int:
        """Delete chunks + their vec rows for a file. Returns chunks deleted."""
        chunk_ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE file_id = ?", (file_id,)
            ).fetchall()
        ]
        self._delete_vec_rows(chunk_ids, kind="chunks")
        self._conn.execute("DELETE FROM chunks WHERE file_id = ?", (file_id,))
        self._conn.commit()
        return len(chunk_ids)

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def add_embedding(self, table: str, rowid: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = chunk id."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(embedding)),
        )
        self._conn.commit()

    def count_embeddings(self, table: str) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def vector_search(
        self,
        table: str,
        query_vector: list[float],
        k: int = 10,
        project_ids: list[str] | None = None,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """Nearest-neighbour search over chunk embeddings, ranked in the store.

        Score is ``1 - vec_distance_cosine``. Equal scores keep chunk
        insertion order.

        Args:
            table: Vec table holding the active model's chunk embeddings.
            query_vector: Embedded query.
            k: Maximum number of results.
            project_ids: Scope. None searches every project.
            min_score: Results must score strictly above this.

        Returns:
            Up to *k* results, highest score first.
        """
        if k <= 0 or not any(query_vector):
            return []
        if project_ids is not None and not project_ids:
            return []

        where = ""
        params: list[object] = [json.dumps(query_vector)]
        if project_ids is not None:
            where = f"WHERE c.project_id IN ({','.join('?' * len(project_ids))})"
            params.extend(project_ids)
        params.extend([1.0 - min_score, k])
        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT c.id, c.file_id, c.project_id, c.chunk_index, c.text,
                       c.start_offset, c.end_offset,
                       f.name AS file_name, p.name AS project_name,
                       vec_distance_cosine(v.embedding, ?) AS distance
                FROM chunks c
                JOIN {table} v ON v.rowid = c.id
                JOIN files f ON f.id = c.file_id
                JOIN projects p ON p.id = c.project_id
                {where}
            )
            WHERE distance < ?
            ORDER BY distance, id
            LIMIT ?
            """,  # noqa: S608
            params,
        ).fetchall()
        return [
            SearchResult(
                chunk_id=row["id"],
                file_id=row["file_id"],
                file_name=row["file_name"],
                project_id=row["project_id"],
                project_name=row["project_name"],
                chunk_index=row["chunk_index"],
                text=row["text"],
                score=1.0 - row["distance"],
                start_offset=row["start_offset"],
                end_offset=row["end_offset"],
            )
            for row in rows
        ]

    def _delete_vec_rows(self, rowids: list[int], kind: str) -> int:
        if not rowids:
            return 0
        total = 0
        placeholders = ",".join("?" * len(rowids))
        for table in list_vec_tables(self._conn, kind):
            cur = self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
            total += max(cur.rowcount, 0)
        return total

    # ------------------------------------------------------------------
    # File versions
    # ------------------------------------------------------------------

    def add_version(self, version: FileVersion) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO file_versions (file_id, version_number, is_full_content,
                                       content_or_patch, content_hash, source, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                version.file_id,
                version.version_number,
                1 if version.is_full_content else 0,
                version.content_or_patch,
                version.content_hash,
                version.source,
                version.created_at or utcnow(),
            ),
        )
        self._conn.commit()
        version.id = cur.lastrowid
        return version.id

    def list_versions(self, file_id: str) -> list[FileVersion]:
        """Return all versions of a file, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM file_versions WHERE file_id = ? ORDER BY version_number",
            (file_id,),
        ).fetchall()
        return [_row_to_version(r) for r in rows]

    def get_version(self, file_id: str, version_number: int) -> FileVersion | None:
        row = self._conn.execute(
            "SELECT * FROM file_versions WHERE file_id = ? AND version_number = ?",
            (file_id, version_number),
        ).fetchone()
        return _row_to_version(row) if row else None

    def latest_version_number(self, file_id: str) -> int:
        row = self._conn.execute(
            "SELECT MAX(version_number) FROM file_versions WHERE file_id = ?", (file_id,)
        ).fetchone()
        return row[0] or 0

    def set_version_full_content(self, version_id: int, content: str) -> None:
        self._conn.execute(
            "UPDATE file_versions SET is_full_content = 1, content_or_patch = ? WHERE id = ?",
            (content, version_id),
        )
        self._conn.commit()

    def delete_versions_before(self, file_id: str, version_number: int) -> int:
        cur = self._conn.execute(
            "DELETE FROM file_versions WHERE file_id = ? AND version_number < ?",
            (file_id, version_number),
        )
        self._conn.commit()
        return cur.rowcount

    def delete_versions(self, file_id: str) -> int:
        cur = self._conn.execute("DELETE FROM file_versions WHERE file_id = ?", (file_id,))
        self._conn.commit()
        return cur.rowcount

    def count_versions(self, file_id: str | None = None) -> int:
        if file_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM file_versions").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM file_versions WHERE file_id = ?", (file_id,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Chat sessions
    # ------------------------------------------------------------------

    def create_session(self, project_id: str | None, title: str = "New chat") -> ChatSession:
        now = utcnow()
        session = ChatSession(
            id=new_id(), project_id=project_id, title=title, created_at=now, updated_at=now
        )
        self._conn.execute(
            """
            INSERT INTO chat_sessions (id, project_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (session.id, project_id, title, now, now),
        )
        self._conn.commit()
        return session

    def get_session(self, session_id: str) -> ChatSession | None:
        row = self._conn.execute(
            "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return _row_to_session(row) if row else None

    def get_latest_session(self, project_id: str | None) -> ChatSession | None:
        """Return the most recently updated session for a project or the global scope."""
        if project_id is None:
            row = self._conn.execute(
                "SELECT * FROM chat_sessions WHERE project_id IS NULL "
                "ORDER BY updated_at DESC, rowid DESC LIMIT 1"
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT * FROM chat_sessions WHERE project_id = ? "
                "ORDER BY updated_at DESC, rowid DESC LIMIT 1",
                (project_id,),
            ).fetchone()
        return _row_to_session(row) if row else None

    def list_sessions(self) -> list[ChatSession]:
        rows = self._conn.execute(
            "SELECT * FROM chat_sessions ORDER BY updated_at DESC"
        ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, session_id: str) -> None:
        self._conn.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
        self._conn.commit()

    def add_message(self, message: ChatMessage) -> ChatMessage:
        message.timestamp = message.timestamp or utcnow()
        self._conn.execute(
            """
            INSERT INTO chat_messages (id, session_id, role, content, timestamp,
                                       context_chunks, tool_executions)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.session_id,
                message.role,
                message.content,
                message.timestamp,
                dumps(message.context_chunks),
                dumps(message.tool_executions),
            ),
        )
        self._conn.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
            (message.timestamp, message.session_id),
        )
        self._conn.commit()
        return message

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        rows = self._conn.execute(
            "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY rowid", (session_id,)
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    def clear_messages(self, session_id: str) -> int:
        cur = self._conn.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Web search cache
    # ------------------------------------------------------------------

    def add_cache_entry(self, entry: WebCacheEntry) -> int:
        """Insert (or refresh) a cached page for ``(query_hash, url)``."""
        entry.fetched_at = entry.fetched_at or utcnow()
        existing = self._conn.execute(
            "SELECT id FROM web_search_cache WHERE query_hash = ? AND url = ?",
            (entry.query_hash, entry.url),
        ).fetchone()
        if existing is not None:
            self._delete_cache_ids([existing["id"]])
        cur = self._conn.execute(
            """
            INSERT INTO web_search_cache (query_hash, query, url, title, snippet, content, fetched_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.query_hash,
                entry.query,
                entry.url,
                entry.title,
                entry.snippet,
                entry.content,
                entry.fetched_at,
            ),
        )
        self._conn.commit()
        entry.id = cur.lastrowid
        return entry.id

    def get_cache_entries(self, query_hash: str, max_age_minutes: int) -> list[WebCacheEntry]:
        """Return cached pages for *query_hash* fetched within the last *max_age_minutes*."""
        cutoff = _cutoff(max_age_minutes)
        rows = self._conn.execute(
            "SELECT * FROM web_search_cache WHERE query_hash = ? AND fetched_at >= ? ORDER BY id",
            (query_hash, cutoff),
        ).fetchall()
        return [_row_to_cache_entry(r) for r in rows]

    def add_web_chunk(self, chunk: WebChunk) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO web_chunks (cache_id, query_hash, url, title, chunk_index, text)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (chunk.cache_id, chunk.query_hash, chunk.url, chunk.title, chunk.chunk_index, chunk.text),
        )
        self._conn.commit()
        chunk.id = cur.lastrowid
        return chunk.id

    def vector_search_web(
        self,
        table: str,
        query_hash: str,
        query_vector: list[float],
        k: int,
        min_score: float = 0.0,
    ) -> list[WebChunk]:
        """Rank the web chunks cached for *query_hash* by cosine distance in the store."""
        if k <= 0 or not any(query_vector):
            return []
        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT w.*, vec_distance_cosine(v.embedding, ?) AS distance
                FROM web_chunks w
                JOIN {table} v ON v.rowid = w.id
                WHERE w.query_hash = ?
            )
            WHERE distance < ?
            ORDER BY distance, id
            LIMIT ?
            """,  # noqa: S608
            (json.dumps(query_vector), query_hash, 1.0 - min_score, k),
        ).fetchall()
        chunks: list[WebChunk] = []
        for row in rows:
            chunk = _row_to_web_chunk(row)
            chunk.score = 1.0 - row["distance"]
            chunks.append(chunk)
        return chunks

    def delete_expired_cache(self, max_age_minutes: int) -> int:
        """Evict cache entries older than *max_age_minutes*. Returns entries removed."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM web_search_cache WHERE fetched_at < ?",
                (_cutoff(max_age_minutes),),
            ).fetchall()
        ]
        self._delete_cache_ids(ids)
        self._conn.commit()
        return len(ids)

    def clear_cache(self) -> int:
        ids = [r[0] for r in self._conn.execute("SELECT id FROM web_search_cache").fetchall()]
        self._delete_cache_ids(ids)
        self._conn.commit()
        return len(ids)

    def count_cache_entries(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM web_search_cache").fetchone()[0]

    def _delete_cache_ids(self, cache_ids: list[int]) -> None:
        if not cache_ids:
            return
        placeholders = ",".join("?" * len(cache_ids))
        chunk_ids = [
            r[0]
            for r in self._conn.execute(
                f"SELECT id FROM web_chunks WHERE cache_id IN ({placeholders})", cache_ids
            ).fetchall()
        ]
        self._delete_vec_rows(chunk_ids, kind="web")
        self._conn.execute(
            f"DELETE FROM web_search_cache WHERE id IN ({placeholders})", cache_ids
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _cutoff(max_age_minutes: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)).isoformat(
        timespec="microseconds"
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_file(row: sqlite3.Row) -> ProjectFile:
    return ProjectFile(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        type=row["type"],
        size=row["size"],
        status=row["status"],
        content=row["content"],
        binary_data=row["binary_data"],
        html_content=row["html_content"],
        system_file_path=row["system_file_path"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        file_id=row["file_id"],
        project_id=row["project_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        created_at=row["created_at"],
    )


def _row_to_version(row: sqlite3.Row) -> FileVersion:
    return FileVersion(
        id=row["id"],
        file_id=row["file_id"],
        version_number=row["version_number"],
        is_full_content=bool(row["is_full_content"]),
        content_or_patch=row["content_or_patch"],
        content_hash=row["content_hash"],
        source=row["source"],
        created_at=row["created_at"],
    )


def _row_to_session(row: sqlite3.Row) -> ChatSession:
    return ChatSession(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
        context_chunks=json.loads(row["context_chunks"]),
        tool_executions=json.loads(row["tool_executions"]),
    )


def _row_to_cache_entry(row: sqlite3.Row) -> WebCacheEntry:
    return WebCacheEntry(
        id=row["id"],
        query_hash=row["query_hash"],
        query=row["query"],
        url=row["url"],
        title=row["title"],
        snippet=row["snippet"],
        content=row["content"],
        fetched_at=row["fetched_at"],
    )


def _row_to_web_chunk(row: sqlite3.Row) -> WebChunk:
    return WebChunk(
        id=row["id"],
        cache_id=row["cache_id"],
        query_hash=row["query_hash"],
        url=row["url"],
        title=row["title"],
        chunk_index=row["chunk_index"],
        text=row["text"],
    )
