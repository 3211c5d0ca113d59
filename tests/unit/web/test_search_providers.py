"""Tests for the web search providers (network calls patched)."""

from __future__ import annotations

import urllib.error
from unittest.mock import patch

import pytest

from docdesk.config import ConfigError, WebSearchCfg
from docdesk.errors import WebSearchError
from docdesk.web.search import (
    BraveProvider,
    DuckDuckGoProvider,
    SearxngProvider,
    make_search_provider,
)


def test_searxng_maps_results():
    data = {
        "results": [
            {"title": "A", "url": "https://a.example", "content": "about a"},
            {"title": "no url"},
            {"title": "B", "url": "https://b.example"},
        ]
    }
    with patch("docdesk.web.search._get_json", return_value=data) as mock:
        hits = SearxngProvider("http://localhost:8080/").search_sync("query", 5)
    assert [h.url for h in hits] == ["https://a.example", "https://b.example"]
    assert hits[0].snippet == "about a"
    assert mock.call_args.args[0].startswith("http://localhost:8080/search?q=query")


def test_searxng_unreachable():
    with patch("docdesk.web.search._get_json", side_effect=urllib.error.URLError("refused")):
        with pytest.raises(WebSearchError, match="SearXNG"):
            SearxngProvider("http://localhost:8080").search_sync("q", 5)


def test_brave_sends_key_and_limits():
    data = {"web": {"results": [{"title": f"R{i}", "url": f"https://r{i}.example"} for i in range(5)]}}
    with patch("docdesk.web.search._get_json", return_value=data) as mock:
        hits = BraveProvider("secret").search_sync("q", 2)
    assert len(hits) == 2
    assert mock.call_args.args[2] == {"X-Subscription-Token": "secret"}


@pytest.mark.parametrize("code,match", [(401, "API key"), (429, "rate limit"), (500, "HTTP 500")])
def test_brave_http_errors(code, match):
    err = urllib.error.HTTPError("https://api", code, "err", {}, None)
    with patch("docdesk.web.search._get_json", side_effect=err):
        with pytest.raises(WebSearchError, match=match):
            BraveProvider("secret").search_sync("q", 5)


def test_duckduckgo_abstract_and_nested_topics():
    data = {
        "Heading": "SQLite",
        "AbstractURL": "https://en.wikipedia.org/wiki/SQLite",
        "Abstract": "SQLite is a database engine.",
        "RelatedTopics": [
            {"FirstURL": "https://duckduckgo.com/a", "Text": "Topic A - details"},
            {"Name": "Group", "Topics": [{"FirstURL": "https://duckduckgo.com/b", "Text": "Topic B"}]},
        ],
    }
    with patch("docdesk.web.search._get_json", return_value=data):
        hits = DuckDuckGoProvider().search_sync("sqlite", 10)
    assert [h.title for h in hits] == ["SQLite", "Topic A", "Topic B"]


async def test_search_runs_sync_implementation():
    with patch("docdesk.web.search._get_json", return_value={"results": []}):
        assert await SearxngProvider("http://x").search("q", 3) == []


def test_make_search_provider(monkeypatch):
    assert isinstance(make_search_provider(WebSearchCfg()), DuckDuckGoProvider)
    assert isinstance(make_search_provider(WebSearchCfg(provider="searxng")), SearxngProvider)
    monkeypatch.setenv("BRAVE_API_KEY", "k")
    assert isinstance(make_search_provider(WebSearchCfg(provider="brave")), BraveProvider)


def test_make_search_provider_brave_without_key(monkeypatch):
    monkeypatch.delenv("BRAVE_API_KEY", raising=False)
    with pytest.raises(ConfigError, match="BRAVE_API_KEY"):
        make_search_provider(WebSearchCfg(provider="brave"))


def test_make_search_provider_unknown():
    with pytest.raises(ConfigError, match="Unknown"):
        make_search_provider(WebSearchCfg(provider="bing"))
