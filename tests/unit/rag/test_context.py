"""Tests for token estimation and context budgeting."""

from __future__ import annotations

import pytest

from docdesk.config import ContextCfg
from docdesk.db.models import ChatMessage, SearchResult
from docdesk.errors import NotFoundError
from docdesk.rag.context import estimate_tokens, fit_chunks, fit_history, manage_context


def _msg(content: str) -> ChatMessage:
    return ChatMessage(id=content, session_id="s", role="user", content=content)


def _result(text: str, score: float = 0.5) -> SearchResult:
    return SearchResult(
        chunk_id=1, file_id="f", file_name="a.md", project_id="p", project_name="P",
        chunk_index=0, text=text, score=score,
    )


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("abcdef", chars_per_token=3) == 2


def test_fit_history_keeps_newest():
    history = [_msg("a" * 40), _msg("b" * 40), _msg("c" * 40)]  # 10 tokens each
    kept, used = fit_history(history, budget=25)
    assert [m.content[0] for m in kept] == ["b", "c"]
    assert used == 20


def test_fit_history_stops_at_first_overflow():
    history = [_msg("a" * 4), _msg("b" * 400), _msg("c" * 4)]
    kept, _ = fit_history(history, budget=50)
    assert [m.content[0] for m in kept] == ["c"]


def test_fit_chunks_in_order():
    chunks = [_result("x" * 40), _result("y" * 40), _result("z" * 4)]
    kept, used = fit_chunks(chunks, budget=15)
    assert [c.text[0] for c in kept] == ["x"]
    assert used == 10


@pytest.fixture
async def indexed_project(services, project):
    doc = (
        "# Fruit\napples oranges pears\n\n"
        "# Travel\ntrains planes ferries\n\n"
        "# Databases\nsqlite vector search embeddings\n"
    )
    await services.projects.add_document(project.id, "topics.md", doc)
    return project


async def test_manage_context_retrieves_best_chunk_first(services, indexed_project):
    history = [_msg("How does sqlite vector search work?")]
    managed = await manage_context(
        services.repo, services.embedder, services.indexer.vec_table,
        indexed_project.id, history, "sqlite vector search",
    )
    assert managed.relevant_chunks[0].text.startswith("# Databases")
    assert managed.messages == history
    assert indexed_project.name in managed.system_prompt
    assert not managed.truncated


async def test_manage_context_llm_messages_carry_sources(services, indexed_project):
    managed = await manage_context(
        services.repo, services.embedder, services.indexer.vec_table,
        indexed_project.id, [_msg("trains")], "trains",
    )
    messages = managed.to_llm_messages()
    assert messages[0]["role"] == "system"
    assert "[Source 1: topics.md]" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "trains"}


async def test_manage_context_truncates_history(services, indexed_project):
    cfg = ContextCfg(max_tokens=6000, reserved_for_response=0, context_ratio=0.5)
    history = [_msg("old " * 5000), _msg("recent question")]
    managed = await manage_context(
        services.repo, services.embedder, services.indexer.vec_table,
        indexed_project.id, history, "recent question", cfg,
    )
    assert [m.content for m in managed.messages] == ["recent question"]
    assert managed.truncated


async def test_manage_context_unknown_project(services):
    with pytest.raises(NotFoundError):
        await manage_context(
            services.repo, services.embedder, services.indexer.vec_table,
            "missing", [], "q",
        )


@pytest.mark.parametrize("max_tokens, reserved", [(6000, 0), (2000, 500), (600, 100)])
async def test_manage_context_within_budget(services, indexed_project, max_tokens, reserved):
    cfg = ContextCfg(max_tokens=max_tokens, reserved_for_response=reserved, context_ratio=0.5)
    history = [_msg("sqlite " * 300), _msg("vector " * 300), _msg("sqlite vector search")]
    managed = await manage_context(
        services.repo, services.embedder, services.indexer.vec_table,
        indexed_project.id, history, "sqlite vector search", cfg,
    )
    assert managed.total_tokens <= max_tokens - reserved


async def test_manage_context_empty_project_and_history(services, project):
    managed = await manage_context(
        services.repo, services.embedder, services.indexer.vec_table,
        project.id, [], "anything at all",
    )
    assert managed.messages == []
    assert managed.relevant_chunks == []
    assert not managed.truncated
