"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import json
import math
import re
from collections.abc import AsyncIterator
from typing import Any

import pytest

from docdesk.config import DocdeskConfig
from docdesk.db.connection import Database
from docdesk.db.repository import Repository, utcnow
from docdesk.db.schema import initialize
from docdesk.errors import LLMError, WebSearchError
from docdesk.rag.embeddings import EmbeddingProvider
from docdesk.services import AppServices
from docdesk.web.fetch import PageFetcher, WebPage
from docdesk.web.search import SearchHit, SearchProvider


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".docdesk.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class HashingEmbedder(EmbeddingProvider):
    """Signed feature hashing of lowercase word tokens, L2-normalised.

    Deterministic and offline: texts sharing words score above zero, texts
    sharing none score zero unless two words land in the same bucket.
    """

    provider = "local"

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimensions
            vec[index] += 1.0 if digest[4] & 1 else -1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0.0:
            return vec
        return [v / norm for v in vec]


@pytest.fixture
def make_embedder():
    """Factory for hashing embedders with a given model name and width."""
    return HashingEmbedder


@pytest.fixture
def embedder(make_embedder):
    return make_embedder("local/hashing-384", 384)


# ---------------------------------------------------------------------------
# Scripted fakes
# ---------------------------------------------------------------------------


class FakeLLM:
    """Completion client that replays queued replies, then a default.

    Queue dicts to have them JSON-encoded; queue an exception instance to
    have it raised by that call.
    """

    def __init__(self, *replies: Any, default: str = "OK") -> None:
        self.replies: list[Any] = list(replies)
        self.default = default
        self.calls: list[list[dict]] = []

    def queue(self, *replies: Any) -> None:
        self.replies.extend(replies)

    async def complete(
        self,
        messages: list[dict],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        self.calls.append(messages)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        text = await self.complete(messages)
        for word in text.split(" "):
            yield word + " "

    @property
    def last_prompt(self) -> str:
        return "\n".join(m["content"] for m in self.calls[-1]) if self.calls else ""


class FailingLLM(FakeLLM):
    async def complete(self, messages, *, max_tokens=None, temperature=None) -> str:
        self.calls.append(messages)
        raise LLMError("model unavailable")


class FakeSearchProvider(SearchProvider):
    name = "fake"

    def __init__(self, hits: list[SearchHit] | None = None, error: str | None = None) -> None:
        super().__init__()
        self.hits = hits or []
        self.error = error
        self.queries: list[str] = []

    def search_sync(self, query: str, max_results: int) -> list[SearchHit]:
        self.queries.append(query)
        if self.error:
            raise WebSearchError(self.error)
        return self.hits[:max_results]


class FakeFetcher(PageFetcher):
    """Serves canned pages; unknown URLs fail like a network error."""

    def __init__(self, pages: dict[str, tuple[str, str]] | None = None) -> None:
        super().__init__()
        self.pages = pages or {}
        self.fetched: list[str] = []

    def fetch_sync(self, url: str) -> WebPage:
        self.fetched.append(url)
        if url not in self.pages:
            raise WebSearchError(f"Could not fetch {url}")
        title, content = self.pages[url]
        return WebPage(url=url, title=title, content=content, fetched_at=utcnow())


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_search():
    return FakeSearchProvider()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def config():
    return DocdeskConfig()


@pytest.fixture
def services(tmp_path, config, fake_llm, embedder, fake_search, fake_fetcher):
    """Fully wired workspace in tmp_path with every external service faked."""
    svc = AppServices.open(
        tmp_path,
        config=config,
        llm=fake_llm,
        embedder=embedder,
        search_provider=fake_search,
        fetcher=fake_fetcher,
    )
    yield svc
    svc.close()


@pytest.fixture
def project(services):
    """A project named 'Research' with no files."""
    created, _ = services.projects.get_or_create_project("Research", "Test project")
    return created
