"""Tests for the web research pipeline and its cache."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from docdesk.errors import ValidationError
from docdesk.web.research import format_web_research_results, hash_query
from docdesk.web.search import SearchHit

PAGE_A = (
    "SQLite Vector Search",
    "sqlite-vec adds vector search to SQLite through virtual tables. " * 5,
)
PAGE_B = ("Bread", "Sourdough bread needs flour, water, salt and patience. " * 5)


@pytest.fixture
def web_setup(fake_search, fake_fetcher):
    fake_search.hits = [
        SearchHit("SQLite Vector Search", "https://a.example", "vectors"),
        SearchHit("Bread", "https://b.example", "baking"),
    ]
    fake_fetcher.pages = {"https://a.example": PAGE_A, "https://b.example": PAGE_B}
    return fake_search, fake_fetcher


def test_hash_query_normalises():
    assert hash_query("  SQLite Vec ") == hash_query("sqlite vec")


async def test_blank_query_rejected(services):
    with pytest.raises(ValidationError):
        await services.web.research("  ")


async def test_fresh_search_caches_and_ranks(services, web_setup):
    result = await services.web.research("sqlite vector search")
    assert result.error is None
    assert not result.from_cache
    assert [s.url for s in result.sources] == ["https://a.example", "https://b.example"]
    assert result.relevant_content[0].url == "https://a.example"
    assert services.repo.count_cache_entries() == 2


async def test_second_call_served_from_cache(services, web_setup):
    fake_search, fake_fetcher = web_setup
    await services.web.research("sqlite vector search")
    result = await services.web.research("SQLite vector search")
    assert result.from_cache
    assert len(fake_search.queries) == 1
    assert len(fake_fetcher.fetched) == 2
    assert result.relevant_content


async def test_use_cache_false_searches_again(services, web_setup):
    fake_search, _ = web_setup
    await services.web.research("sqlite")
    await services.web.research("sqlite", use_cache=False)
    assert len(fake_search.queries) == 2


async def test_expired_cache_is_refetched(services, web_setup):
    fake_search, _ = web_setup
    await services.web.research("sqlite")
    old = (datetime.now(timezone.utc) - timedelta(hours=5)).isoformat()
    services.repo.conn.execute("UPDATE web_search_cache SET fetched_at = ?", (old,))
    services.repo.conn.commit()

    result = await services.web.research("sqlite")
    assert not result.from_cache
    assert len(fake_search.queries) == 2
    assert services.repo.count_cache_entries() == 2


async def test_search_error_reported_not_raised(services, fake_search):
    fake_search.error = "provider down"
    result = await services.web.research("anything")
    assert result.error == "provider down"
    assert "failed" in format_web_research_results(result)


async def test_no_hits(services):
    result = await services.web.research("nothing")
    assert result.error == "No search results found"


async def test_short_and_failed_pages_dropped(services, fake_search, fake_fetcher):
    fake_search.hits = [SearchHit("Tiny", "https://tiny.example"), SearchHit("Gone", "https://gone.example")]
    fake_fetcher.pages = {"https://tiny.example": ("Tiny", "too short")}
    result = await services.web.research("q")
    assert result.error == "Failed to fetch any search results"


async def test_clear_cache(services, web_setup):
    await services.web.research("sqlite")
    assert services.web.clear_web_search_cache() == 2
    assert services.repo.count_cache_entries() == 0


async def test_format_groups_by_source(services, web_setup):
    result = await services.web.research("sqlite vector search")
    text = format_web_research_results(result)
    assert text.startswith("## Web Research: sqlite vector search")
    assert "### Source 1: SQLite Vector Search" in text
    assert "**URL:** https://a.example" in text
    assert "Fresh search" in text
