"""Tests for the Indexer and embedding-model bookkeeping."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from docdesk.config import ChunkingCfg
from docdesk.db.models import ProjectFile
from docdesk.db.repository import new_id
from docdesk.db.vectors import list_vec_tables
from docdesk.errors import EmbeddingError
from docdesk.ingest.indexer import Indexer, ensure_embedding_model
from docdesk.ingest.markdown import MarkdownChunker
from docdesk.ingest.plaintext import SentenceChunker


def _add_file(repo, project_id, name="a.md", content="# A\nalpha\n\n# B\nbeta"):
    return repo.add_file(
        ProjectFile(id=new_id(), project_id=project_id, name=name, type=name.rsplit(".", 1)[-1],
                    content=content)
    )


@pytest.fixture
def indexer(repo, embedder):
    return Indexer(repo, embedder, ChunkingCfg(max_chunk_size=200, overlap=20))


def test_chunker_for_type(indexer):
    assert isinstance(indexer.chunker_for("md"), MarkdownChunker)
    assert isinstance(indexer.chunker_for("pdf"), SentenceChunker)


async def test_index_file_stores_chunks_and_vectors(repo, indexer):
    p = repo.create_project("P")
    f = _add_file(repo, p.id)
    count = await indexer.index_file(f)
    assert count == 2
    assert len(repo.list_chunks_by_file(f.id)) == 2
    assert repo.count_embeddings(indexer.vec_table) == 2
    assert repo.get_file(f.id).status == "indexed"
    assert repo.get_project(p.id).status == "indexed"


async def test_reindex_replaces_chunk_set(repo, indexer):
    p = repo.create_project("P")
    f = _add_file(repo, p.id)
    await indexer.index_file(f)
    f.content = "only one section"
    assert await indexer.index_file(f) == 1
    assert len(repo.list_chunks_by_file(f.id)) == 1
    assert repo.count_embeddings(indexer.vec_table) == 1


async def test_progress_callback(repo, indexer):
    p = repo.create_project("P")
    f = _add_file(repo, p.id)
    calls = []
    await indexer.index_file(f, on_progress=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 2), (2, 2)]


async def test_embedding_failure_marks_error(repo, embedder):
    indexer = Indexer(repo, embedder)
    p = repo.create_project("P")
    f = _add_file(repo, p.id)
    failing = AsyncMock(side_effect=EmbeddingError("backend down"))
    with patch.object(embedder, "embed", failing), pytest.raises(EmbeddingError):
        await indexer.index_file(f)
    assert repo.get_file(f.id).status == "error"
    assert repo.get_project(p.id).status == "error"
    assert repo.list_chunks_by_file(f.id) == []


async def test_reindex_all_skips_files_without_content(repo, indexer):
    p = repo.create_project("P")
    _add_file(repo, p.id, "a.md")
    _add_file(repo, p.id, "b.txt", content=None)
    seen = []
    files, chunks = await indexer.reindex_all(on_file=lambda f: seen.append(f.name))
    assert files == 1
    assert chunks == 2
    assert sorted(seen) == ["a.md", "b.txt"]


def test_refresh_project_status_empty_project(repo, indexer):
    p = repo.create_project("P")
    indexer.refresh_project_status(p.id)
    assert repo.get_project(p.id).status == "created"


# ------------------------------------------------------------------
# ensure_embedding_model
# ------------------------------------------------------------------


def test_first_run_records_model(repo, embedder):
    assert ensure_embedding_model(repo, embedder) is False
    assert repo.get_setting("embedding_model") == "local/hashing-384"
    assert repo.get_setting("embedding_dimensions") == "384"


def test_same_model_keeps_vectors(repo, embedder, indexer):
    ensure_embedding_model(repo, embedder)
    _ = indexer.vec_table
    assert ensure_embedding_model(repo, embedder) is False
    assert list_vec_tables(repo.conn) != []


async def test_model_change_invalidates(repo, embedder, indexer, make_embedder):
    ensure_embedding_model(repo, embedder)
    p = repo.create_project("P")
    f = _add_file(repo, p.id)
    await indexer.index_file(f)

    other = make_embedder("local/hashing-128", 128)
    assert ensure_embedding_model(repo, other) is True
    assert list_vec_tables(repo.conn) == []
    assert repo.get_file(f.id).status == "pending"
    assert repo.get_setting("embedding_model") == "local/hashing-128"


# ------------------------------------------------------------------
# Ingest then search
# ------------------------------------------------------------------


def _sentence(word: str) -> str:
    # 98 characters plus the full stop.
    return (f"{word} " + "calm " * 30)[:98] + "."


async def test_plain_text_ingest_ranks_the_matching_chunk_first(services, project):
    words = ["filler"] * 35
    words[20] = "quokka"
    text = " ".join(_sentence(w) for w in words)
    assert len(text) == 3499

    file = await services.projects.add_document(project.id, "notes.txt", text)
    chunks = services.repo.list_chunks_by_file(file.id)
    assert len(chunks) == 5
    assert [c.chunk_index for c in chunks] == [0, 1, 2, 3, 4]
    assert ["quokka" in c.text for c in chunks] == [False, False, True, False, False]

    vector = await services.embedder.embed("quokka")
    results = services.repo.vector_search(services.indexer.vec_table, vector, k=5)
    assert results[0].chunk_index == 2
    assert results[0].file_name == "notes.txt"
