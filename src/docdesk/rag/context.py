"""Context window manager — build a token-budgeted prompt for one chat turn.

Budget (all estimates use ``chars_per_token``, default 4):

    available       = max_tokens - reserved_for_response - system_tokens
    reserved_ctx    = min(available * context_ratio, context_cap)
    history budget  = available - reserved_ctx
    chunk budget    = available - tokens of the history actually kept

History is walked newest to oldest and whole messages are kept while they
fit, so the latest turns survive and the oldest are dropped first. Retrieved
chunks are then kept in similarity order until the chunk budget runs out.
The two passes are independent greedy fills, not a joint optimisation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from loguru import logger

from docdesk.config import ContextCfg
from docdesk.db.models import ChatMessage, SearchResult
from docdesk.db.repository import Repository
from docdesk.rag.embeddings import EmbeddingProvider
from docdesk.rag.prompts import build_system_prompt, format_context_for_prompt


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Character heuristic: ``ceil(len(text) / chars_per_token)``."""
    if not text:
        return 0
    return math.ceil(len(text) / max(chars_per_token, 1))


@dataclass
class ManagedContext:
    system_prompt: str
    messages: list[ChatMessage] = field(default_factory=list)
    relevant_chunks: list[SearchResult] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False

    def to_llm_messages(self) -> list[dict[str, str]]:
        """System prompt (with retrieved context appended) followed by history."""
        system = self.system_prompt + format_context_for_prompt(self.relevant_chunks)
        return [{"role": "system", "content": system}] + [m.to_llm() for m in self.messages]


def fit_history(
    messages: list[ChatMessage], budget: int, chars_per_token: int = 4
) -> tuple[list[ChatMessage], int]:
    """Keep the newest whole messages whose estimates fit *budget*.

    Returns:
        ``(kept_messages_in_chronological_order, tokens_used)``.
    """
    kept: list[ChatMessage] = []
    used = 0
    for message in reversed(messages):
        cost = estimate_tokens(message.content, chars_per_token)
        if used + cost > budget:
            break
        used += cost
        kept.append(message)
    kept.reverse()
    return kept, used


def fit_chunks(
    chunks: list[SearchResult], budget: int, chars_per_token: int = 4
) -> tuple[list[SearchResult], int]:
    """Keep chunks in their given order while they fit *budget*."""
    kept: list[SearchResult] = []
    used = 0
    for chunk in chunks:
        cost = estimate_tokens(chunk.text, chars_per_token)
        if used + cost > budget:
            break
        used += cost
        kept.append(chunk)
    return kept, used


async def manage_context(
    repo: Repository,
    embedder: EmbeddingProvider,
    vec_table: str,
    project_id: str | None,
    history: list[ChatMessage],
    query: str,
    config: ContextCfg | None = None,
) -> ManagedContext:
    """Assemble system prompt, trimmed history and retrieved chunks.

    Args:
        repo: Open Repository instance.
        embedder: Embeds *query* for retrieval.
        vec_table: Vec table of the active embedding model.
        project_id: Scope; None searches every project.
        history: Conversation so far, oldest first (including the current turn).
        query: Text to retrieve context for.
        config: Budget parameters.

    Raises:
        NotFoundError: If *project_id* does not exist; raised before any
            retrieval work.
        EmbeddingError: If the query cannot be embedded.
    """
    cfg = config or ContextCfg()
    cpt = cfg.chars_per_token
    system_prompt = build_system_prompt(repo, project_id)

    limit = cfg.max_tokens - cfg.reserved_for_response
    system_tokens = estimate_tokens(system_prompt, cpt)
    truncated = False
    if system_tokens > limit:
        logger.warning(
            "[context] System prompt ({} tokens) exceeds the {} token budget; trimming",
            system_tokens,
            limit,
        )
        system_prompt = system_prompt[: max(limit, 0) * cpt]
        system_tokens = estimate_tokens(system_prompt, cpt)
        truncated = True

    available = max(limit - system_tokens, 0)
    reserved_for_context = min(int(available * cfg.context_ratio), cfg.context_cap)
    history_budget = available - reserved_for_context

    messages, message_tokens = fit_history(history, history_budget, cpt)

    candidates: list[SearchResult] = []
    if query.strip() and available - message_tokens > 0:
        query_vector = await embedder.embed(query)
        project_ids = [project_id] if project_id is not None else None
        candidates = repo.vector_search(
            vec_table, query_vector, cfg.search_k, project_ids, min_score=cfg.min_score
        )
    chunks, chunk_tokens = fit_chunks(candidates, available - message_tokens, cpt)

    truncated = truncated or len(messages) < len(history) or len(chunks) < len(candidates)
    if truncated:
        logger.debug(
            "[context] Truncated: kept {}/{} messages, {}/{} chunks",
            len(messages),
            len(history),
            len(chunks),
            len(candidates),
        )
    return ManagedContext(
        system_prompt=system_prompt,
        messages=messages,
        relevant_chunks=chunks,
        total_tokens=system_tokens + message_tokens + chunk_tokens,
        truncated=truncated,
    )
