"""Web research pipeline with a TTL cache.

Flow for one query:
1. Hash the normalised query and look for fresh cache entries.
2. On a miss: evict expired entries, search, fetch result pages
   concurrently (pages with too little text are dropped).
3. Cache each page, chunk it and embed the chunks into the ``vec_web_*``
   table of the active embedding model.
4. Rank the query's cached chunks against the query embedding.

Search and fetch failures are reported in ``WebResearchResult.error`` rather
than raised, so a research step degrades to "no web content".
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass, field

from loguru import logger

from docdesk.config import ChunkingCfg, WebSearchCfg
from docdesk.db.models import WebCacheEntry, WebChunk
from docdesk.db.repository import Repository
from docdesk.db.vectors import ensure_vec_table, model_to_slug
from docdesk.errors import ValidationError, WebSearchError
from docdesk.ingest.plaintext import SentenceChunker
from docdesk.rag.embeddings import EmbeddingProvider
from docdesk.web.fetch import PageFetcher, WebPage
from docdesk.web.search import SearchHit, SearchProvider

MIN_PAGE_CHARS = 100


def hash_query(query: str) -> str:
    """Stable cache key: sha256 of the lowercased, stripped query."""
    return hashlib.sha256(query.strip().lower().encode("utf-8")).hexdigest()


@dataclass
class WebSource:
    title: str
    url: str
    snippet: str = ""


@dataclass
class WebResearchResult:
    query: str
    sources: list[WebSource] = field(default_factory=list)
    relevant_content: list[WebChunk] = field(default_factory=list)
    from_cache: bool = False
    search_time_ms: int = 0
    error: str | None = None


class WebResearchService:
    """Search, fetch, cache and rank web content for a query.

    Args:
        repo: Open Repository instance.
        embedder: Active embedding provider (its model names the vec table).
        config: Web search configuration.
        provider: Search provider; pass a fake in tests.
        fetcher: Page fetcher; defaults to one built from *config*.
        chunking: Chunk window for fetched pages.
        min_score: Ranked chunks must score strictly above this similarity.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingProvider,
        config: WebSearchCfg | None = None,
        *,
        provider: SearchProvider,
        fetcher: PageFetcher | None = None,
        chunking: ChunkingCfg | None = None,
        min_score: float = 0.0,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or WebSearchCfg()
        self._provider = provider
        self._fetcher = fetcher or PageFetcher(
            timeout=self._config.fetch_timeout, max_bytes=self._config.fetch_max_bytes
        )
        chunking = chunking or ChunkingCfg()
        self._chunker = SentenceChunker(chunking.max_chunk_size, chunking.overlap)
        self._min_score = min_score

    @property
    def vec_table(self) -> str:
        return ensure_vec_table(
            self._repo.conn,
            model_to_slug(self._embedder.model),
            self._embedder.dimensions,
            kind="web",
        )

    async def research(
        self,
        query: str,
        *,
        max_results: int | None = None,
        max_chunks: int | None = None,
        use_cache: bool = True,
        cache_max_age: int | None = None,
    ) -> WebResearchResult:
        """Research *query* and return the most relevant web chunks.

        Raises:
            ValidationError: If *query* is blank.
            EmbeddingError: If the embedding backend fails.
        """
        if not query.strip():
            raise ValidationError("Web research query must not be empty")
        started = time.monotonic()
        max_results = max_results or self._config.max_results
        max_chunks = max_chunks or self._config.max_chunks
        max_age = cache_max_age or self._config.cache_max_age
        query_hash = hash_query(query)

        if use_cache:
            cached = self._repo.get_cache_entries(query_hash, max_age)
            if cached:
                logger.debug("[web] Cache hit for '{}' ({} pages)", query, len(cached))
                return WebResearchResult(
                    query=query,
                    sources=[WebSource(e.title, e.url, e.snippet) for e in cached],
                    relevant_content=await self._rank(query, query_hash, max_chunks),
                    from_cache=True,
                    search_time_ms=_elapsed_ms(started),
                )

        self.clean_expired_web_cache(max_age)
        try:
            hits = await self._provider.search(query, max_results)
        except WebSearchError as exc:
            logger.warning("[web] Search failed for '{}': {}", query, exc)
            return WebResearchResult(query=query, error=str(exc), search_time_ms=_elapsed_ms(started))
        if not hits:
            return WebResearchResult(
                query=query, error="No search results found", search_time_ms=_elapsed_ms(started)
            )

        fetched = await asyncio.gather(*(self._fetch_hit(h) for h in hits))
        pages = [(hit, page) for hit, page in zip(hits, fetched) if page is not None]
        if not pages:
            return WebResearchResult(
                query=query,
                error="Failed to fetch any search results",
                search_time_ms=_elapsed_ms(started),
            )

        table = self.vec_table
        for hit, page in pages:
            await self._cache_page(query, query_hash, hit, page, table)

        return WebResearchResult(
            query=query,
            sources=[WebSource(page.title or hit.title, page.url, hit.snippet) for hit, page in pages],
            relevant_content=await self._rank(query, query_hash, max_chunks),
            search_time_ms=_elapsed_ms(started),
        )

    def clean_expired_web_cache(self, max_age_minutes: int | None = None) -> int:
        removed = self._repo.delete_expired_cache(max_age_minutes or self._config.cache_max_age)
        if removed:
            logger.debug("[web] Evicted {} expired cache entries", removed)
        return removed

    def clear_web_search_cache(self) -> int:
        removed = self._repo.clear_cache()
        logger.info("[web] Cleared {} cached pages", removed)
        return removed

    # ------------------------------------------------------------------

    async def _fetch_hit(self, hit: SearchHit) -> WebPage | None:
        try:
            page = await self._fetcher.fetch(hit.url)
        except WebSearchError as exc:
            logger.warning("[web] Skipping {}: {}", hit.url, exc)
            return None
        if len(page.content.strip()) <= MIN_PAGE_CHARS:
            logger.debug("[web] Skipping {}: too little text", hit.url)
            return None
        return page

    async def _cache_page(
        self, query: str, query_hash: str, hit: SearchHit, page: WebPage, table: str
    ) -> None:
        title = page.title or hit.title or page.url
        cache_id = self._repo.add_cache_entry(
            WebCacheEntry(
                query_hash=query_hash,
                query=query,
                url=page.url,
                title=title,
                snippet=hit.snippet,
                content=page.content,
                fetched_at=page.fetched_at,
            )
        )
        spans = self._chunker.split(page.content)
        vectors = await self._embedder.embed_batch([text for text, _, _ in spans])
        for index, ((text, _, _), vector) in enumerate(zip(spans, vectors)):
            chunk_id = self._repo.add_web_chunk(
                WebChunk(
                    cache_id=cache_id,
                    query_hash=query_hash,
                    url=page.url,
                    title=title,
                    chunk_index=index,
                    text=text,
                )
            )
            self._repo.add_embedding(table, chunk_id, vector)

    async def _rank(self, query: str, query_hash: str, k: int) -> list[WebChunk]:
        vector = await self._embedder.embed(query)
        return self._repo.vector_search_web(
            self.vec_table, query_hash, vector, k, min_score=self._min_score
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def format_web_research_results(result: WebResearchResult) -> str:
    """Render a research result as Markdown grouped by source URL."""
    if result.error:
        return f"Web research for '{result.query}' failed: {result.error}"
    if not result.relevant_content:
        return f"No relevant web content found for '{result.query}'."

    grouped: dict[str, list[WebChunk]] = {}
    for chunk in result.relevant_content:
        grouped.setdefault(chunk.url, []).append(chunk)

    parts = [f"## Web Research: {result.query}", ""]
    for n, (url, chunks) in enumerate(grouped.items(), 1):
        best = max(c.score for c in chunks)
        parts.append(f"### Source {n}: {chunks[0].title}")
        parts.append(f"**URL:** {url} | **Relevance:** {best * 100:.0f}%")
        parts.append("")
        parts.extend(c.text for c in sorted(chunks, key=lambda c: c.chunk_index))
        parts.append("")
    origin = "From cache" if result.from_cache else "Fresh search"
    parts.append("---")
    parts.append(f"*{origin} | {len(grouped)} sources | {result.search_time_ms}ms*")
    return "\n".join(parts)
