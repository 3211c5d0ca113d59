"""Web search providers.

One interface, one implementation per provider tag:

    searxng     self-hosted SearXNG instance (``web_search.searxng_url``)
    brave       Brave Search API, key from the BRAVE_API_KEY environment variable
    duckduckgo  DuckDuckGo Instant Answer API, no key required

Requests are plain urllib calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import os
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from loguru import logger

from docdesk.config import ConfigError, WebSearchCfg
from docdesk.errors import WebSearchError
from docdesk.web.fetch import USER_AGENT

_BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
_DDG_URL = "https://api.duckduckgo.com/"


@dataclass
class SearchHit:
    title: str
    url: str
    snippet: str = ""


def _get_json(url: str, timeout: int, headers: dict[str, str] | None = None) -> Any:
    request = urllib.request.Request(
        url, headers={"User-Agent": USER_AGENT, "Accept": "application/json", **(headers or {})}
    )
    with urllib.request.urlopen(request, timeout=timeout) as response:
        return json.loads(response.read().decode("utf-8"))


class SearchProvider(ABC):
    """Turns a query into a ranked list of result URLs."""

    name: str = ""

    def __init__(self, timeout: int = 30) -> None:
        self.timeout = timeout

    async def search(self, query: str, max_results: int) -> list[SearchHit]:
        """Run *query* and return at most *max_results* hits.

        Raises:
            WebSearchError: If the provider is unreachable or rejects the request.
        """
        return await asyncio.to_thread(self.search_sync, query, max_results)

    @abstractmethod
    def search_sync(self, query: str, max_results: int) -> list[SearchHit]: ...


class SearxngProvider(SearchProvider):
    name = "searxng"

    def __init__(self, base_url: str, timeout: int = 30) -> None:
        super().__init__(timeout)
        self.base_url = base_url.rstrip("/")

    def search_sync(self, query: str, max_results: int) -> list[SearchHit]:
        qs = urllib.parse.urlencode({"q": query, "format": "json", "categories": "general"})
        try:
            data = _get_json(f"{self.base_url}/search?{qs}", self.timeout)
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise WebSearchError(f"SearXNG search failed at {self.base_url}: {exc}") from exc
        hits = [
            SearchHit(title=r.get("title") or "", url=r["url"], snippet=r.get("content") or "")
            for r in data.get("results", [])
            if r.get("url")
        ]
        return hits[:max_results]


class BraveProvider(SearchProvider):
    name = "brave"

    def __init__(self, api_key: str, timeout: int = 30) -> None:
        super().__init__(timeout)
        self.api_key = api_key

    def search_sync(self, query: str, max_results: int) -> list[SearchHit]:
        qs = urllib.parse.urlencode({"q": query, "count": max_results})
        try:
            data = _get_json(
                f"{_BRAVE_URL}?{qs}", self.timeout, {"X-Subscription-Token": self.api_key}
            )
        except urllib.error.HTTPError as exc:
            if exc.code in (401, 403):
                raise WebSearchError(
                    "Brave Search rejected the API key. Check BRAVE_API_KEY."
                ) from exc
            if exc.code == 429:
                raise WebSearchError("Brave Search rate limit exceeded. Try again later.") from exc
            raise WebSearchError(f"Brave Search returned HTTP {exc.code}") from exc
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise WebSearchError(f"Brave Search request failed: {exc}") from exc
        results = (data.get("web") or {}).get("results", [])
        hits = [
            SearchHit(title=r.get("title") or "", url=r["url"], snippet=r.get("description") or "")
            for r in results
            if r.get("url")
        ]
        return hits[:max_results]


class DuckDuckGoProvider(SearchProvider):
    """Instant Answer API: the abstract source plus related topics."""

    name = "duckduckgo"

    def search_sync(self, query: str, max_results: int) -> list[SearchHit]:
        qs = urllib.parse.urlencode(
            {"q": query, "format": "json", "no_html": 1, "skip_disambig": 1}
        )
        try:
            data = _get_json(f"{_DDG_URL}?{qs}", self.timeout)
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise WebSearchError(f"DuckDuckGo search failed: {exc}") from exc

        hits: list[SearchHit] = []
        if data.get("AbstractURL"):
            hits.append(
                SearchHit(
                    title=data.get("Heading") or query,
                    url=data["AbstractURL"],
                    snippet=data.get("Abstract") or "",
                )
            )
        for topic in data.get("RelatedTopics", []):
            # Grouped topics nest their entries one level down.
            for entry in topic.get("Topics", [topic]):
                if entry.get("FirstURL") and entry.get("Text"):
                    text = entry["Text"]
                    hits.append(
                        SearchHit(title=text.split(" - ")[0][:100], url=entry["FirstURL"], snippet=text)
                    )
        return hits[:max_results]


def _searxng(cfg: WebSearchCfg) -> SearchProvider:
    return SearxngProvider(cfg.searxng_url, timeout=cfg.fetch_timeout)


def _brave(cfg: WebSearchCfg) -> SearchProvider:
    api_key = os.environ.get("BRAVE_API_KEY", "")
    if not api_key:
        raise ConfigError(
            "web_search.provider is 'brave' but BRAVE_API_KEY is not set.\n"
            "Export it in your shell or .env file."
        )
    return BraveProvider(api_key, timeout=cfg.fetch_timeout)


def _duckduckgo(cfg: WebSearchCfg) -> SearchProvider:
    return DuckDuckGoProvider(timeout=cfg.fetch_timeout)


_PROVIDERS = {"searxng": _searxng, "brave": _brave, "duckduckgo": _duckduckgo}


def make_search_provider(cfg: WebSearchCfg) -> SearchProvider:
    """Build the provider selected by ``cfg.provider``.

    Raises:
        ConfigError: For an unknown provider or a missing Brave API key.
    """
    factory = _PROVIDERS.get(cfg.provider)
    if factory is None:
        raise ConfigError(
            f"Unknown web_search.provider '{cfg.provider}'. "
            f"Choose one of: {', '.join(sorted(_PROVIDERS))}"
        )
    logger.debug("[web] Using search provider '{}'", cfg.provider)
    return factory(cfg)
