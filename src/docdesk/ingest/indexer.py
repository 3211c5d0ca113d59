"""Indexer — chunk, embed, and store a file's text.

For each file:
1. Mark the file ``processing`` and drop its previous chunk set.
2. Chunk the canonical ``content`` (Markdown chunker for ``md``).
3. Embed chunk texts sequentially via the active EmbeddingProvider.
4. Store each chunk and its vector (vec rowid = chunk id).
5. Mark the file ``indexed`` (or ``error``) and roll the project status up.

The active embedding model is recorded in ``settings``; a different model
on startup invalidates every stored vector (see ``ensure_embedding_model``).
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from docdesk.config import ChunkingCfg
from docdesk.db.models import ProjectFile
from docdesk.db.repository import Repository
from docdesk.db.vectors import drop_vec_tables, ensure_vec_table, model_to_slug
from docdesk.errors import EmbeddingError
from docdesk.ingest.base import BaseChunker
from docdesk.ingest.markdown import MarkdownChunker
from docdesk.ingest.plaintext import SentenceChunker
from docdesk.rag.embeddings import EmbeddingProvider

SETTING_EMBEDDING_MODEL = "embedding_model"
SETTING_EMBEDDING_DIMENSIONS = "embedding_dimensions"


def ensure_embedding_model(repo: Repository, embedder: EmbeddingProvider) -> bool:
    """Record the active embedding model, invalidating vectors on a change.

    Vectors from different models are never mixed: on mismatch every vec
    table is dropped, the web cache is cleared and all files are marked
    ``pending`` so ``docdesk reindex`` regenerates them.

    Returns:
        True if stored embeddings were invalidated.
    """
    stored_model = repo.get_setting(SETTING_EMBEDDING_MODEL)
    stored_dims = repo.get_setting(SETTING_EMBEDDING_DIMENSIONS)
    current_dims = str(embedder.dimensions)

    invalidated = False
    if stored_model is not None and (
        stored_model != embedder.model or stored_dims != current_dims
    ):
        logger.warning(
            "[indexer] Embedding model changed ({}/{} → {}/{}); invalidating stored vectors",
            stored_model,
            stored_dims,
            embedder.model,
            current_dims,
        )
        drop_vec_tables(repo.conn)
        repo.clear_cache()
        pending = repo.mark_all_files_pending()
        logger.warning("[indexer] {} files marked pending — run: docdesk reindex", pending)
        invalidated = True

    if stored_model != embedder.model or stored_dims != current_dims:
        repo.set_setting(SETTING_EMBEDDING_MODEL, embedder.model)
        repo.set_setting(SETTING_EMBEDDING_DIMENSIONS, current_dims)
    return invalidated


class Indexer:
    """Write file chunks + embeddings to the repository.

    Args:
        repo: Open Repository instance.
        embedder: Active embedding provider.
        chunking: Chunk window configuration.
    """

    def __init__(
        self, repo: Repository, embedder: EmbeddingProvider, chunking: ChunkingCfg | None = None
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._chunking = chunking or ChunkingCfg()

    @property
    def vec_table(self) -> str:
        return ensure_vec_table(
            self._repo.conn, model_to_slug(self._embedder.model), self._embedder.dimensions
        )

    def chunker_for(self, file_type: str) -> BaseChunker:
        cls = MarkdownChunker if file_type == "md" else SentenceChunker
        return cls(max_chunk_size=self._chunking.max_chunk_size, overlap=self._chunking.overlap)

    async def index_file(
        self,
        file: ProjectFile,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> int:
        """(Re)index *file*, replacing its full chunk set.

        Args:
            file: File with ``content`` populated.
            on_progress: Optional ``(done, total)`` callback per embedded chunk.

        Returns:
            Number of chunks stored.

        Raises:
            EmbeddingError: If the embedding backend fails; the file is left
                in ``error`` status with no chunks.
        """
        self._repo.update_file_status(file.id, "processing")
        self.refresh_project_status(file.project_id)
        self._repo.delete_chunks_by_file(file.id)

        chunks = self.chunker_for(file.type).chunk(
            file.content or "", file_id=file.id, project_id=file.project_id
        )
        try:
            vectors = await self._embedder.embed_batch([c.text for c in chunks], on_progress)
        except EmbeddingError:
            logger.error("[indexer] Embedding failed for '{}'", file.name)
            self._repo.update_file_status(file.id, "error")
            self.refresh_project_status(file.project_id)
            raise

        table = self.vec_table
        for chunk, vector in zip(chunks, vectors):
            chunk_id = self._repo.add_chunk(chunk)
            self._repo.add_embedding(table, chunk_id, vector)

        self._repo.update_file_status(file.id, "indexed")
        self.refresh_project_status(file.project_id)
        logger.debug("[indexer] '{}' indexed: {} chunks", file.name, len(chunks))
        return len(chunks)

    async def reindex_all(
        self, on_file: Callable[[ProjectFile], None] | None = None
    ) -> tuple[int, int]:
        """Regenerate chunks + embeddings for every file with content.

        Returns:
            ``(files_indexed, chunks_stored)``.
        """
        files_done = 0
        chunks_done = 0
        for file in self._repo.list_files():
            if on_file is not None:
                on_file(file)
            if file.content is None:
                continue
            chunks_done += await self.index_file(file)
            files_done += 1
        return files_done, chunks_done

    def refresh_project_status(self, project_id: str) -> None:
        statuses = {f.status for f in self._repo.list_files(project_id)}
        if "error" in statuses:
            status = "error"
        elif statuses & {"pending", "processing"}:
            status = "indexing"
        elif statuses:
            status = "indexed"
        else:
            status = "created"
        self._repo.update_project(project_id, status=status)
