"""Embedding providers + cosine similarity.

One interface, one implementation per provider tag:

    local    SentenceTransformerEmbeddingProvider — on-device
             sentence-transformers model, downloaded once, no API key.
    litellm  LiteLLMEmbeddingProvider — any embedding model LiteLLM routes
             to (openai/..., ollama/..., cohere/...).

Batches are embedded sequentially so results come back in input order and
progress can be reported per text.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from collections.abc import Callable

import litellm
from loguru import logger
from sentence_transformers import SentenceTransformer

from docdesk.config import ConfigError, EmbeddingCfg
from docdesk.errors import EmbeddingError


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Return the cosine similarity of *a* and *b* in [-1, 1].

    Zero vectors score 0.0 rather than dividing by zero.

    Raises:
        ValueError: If the vectors have different lengths.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (math.sqrt(norm_a) * math.sqrt(norm_b))))


class EmbeddingProvider(ABC):
    """Turns text into fixed-dimension vectors."""

    provider: str = ""

    def __init__(self, model: str, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: If the backend is unreachable or misconfigured.
        """

    async def embed_batch(
        self,
        texts: list[str],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[list[float]]:
        """Embed *texts* one at a time, preserving input order.

        Args:
            texts: Texts to embed.
            on_progress: Optional ``(done, total)`` callback after each text.
        """
        vectors: list[list[float]] = []
        for i, text in enumerate(texts, start=1):
            vectors.append(await self.embed(text))
            if on_progress is not None:
                on_progress(i, len(texts))
        return vectors


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model, loaded on first use.

    Vectors are L2-normalised so cosine distance in the vec table matches
    the model's intended similarity.
    """

    provider = "local"

    def __init__(self, model: str, dimensions: int) -> None:
        super().__init__(model, dimensions)
        self._model: SentenceTransformer | None = None

    @property
    def encoder(self) -> SentenceTransformer:
        if self._model is None:
            logger.info("[embeddings] Loading local model '{}'", self.model)
            try:
                self._model = SentenceTransformer(self.model)
            except Exception as exc:
                raise EmbeddingError(
                    f"Could not load embedding model '{self.model}': {exc}"
                ) from exc
        return self._model

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed_sync, text)

    def embed_sync(self, text: str) -> list[float]:
        encoder = self.encoder
        try:
            vector = encoder.encode(
                [text], normalize_embeddings=True, show_progress_bar=False
            )[0].tolist()
        except Exception as exc:
            raise EmbeddingError(f"Local embedding with '{self.model}' failed: {exc}") from exc
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding model '{self.model}' returned {len(vector)} dimensions, "
                f"expected {self.dimensions}. Update embedding.dimensions and run: docdesk reindex"
            )
        return vector


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Remote embeddings through ``litellm.aembedding``."""

    provider = "litellm"

    def __init__(self, model: str, dimensions: int, num_retries: int = 3) -> None:
        super().__init__(model, dimensions)
        self.num_retries = num_retries

    async def embed(self, text: str) -> list[float]:
        try:
            response = await litellm.aembedding(
                model=self.model,
                input=[text],
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise EmbeddingError(f"Embedding call to '{self.model}' failed: {exc}") from exc
        vector = list(response.data[0]["embedding"])
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding model '{self.model}' returned {len(vector)} dimensions, "
                f"expected {self.dimensions}. Update embedding.dimensions and run: docdesk reindex"
            )
        return vector


def make_embedding_provider(cfg: EmbeddingCfg, num_retries: int = 3) -> EmbeddingProvider:
    """Build the provider selected by ``cfg.provider``.

    Raises:
        ConfigError: If the provider tag is unknown.
    """
    factory = _PROVIDERS.get(cfg.provider)
    if factory is None:
        raise ConfigError(f"Unknown embedding provider '{cfg.provider}'")
    return factory(cfg, num_retries)


_PROVIDERS: dict[str, Callable[[EmbeddingCfg, int], EmbeddingProvider]] = {
    "local": lambda cfg, _retries: SentenceTransformerEmbeddingProvider(
        cfg.model, cfg.dimensions
    ),
    "litellm": lambda cfg, retries: LiteLLMEmbeddingProvider(
        cfg.model, cfg.dimensions, num_retries=retries
    ),
}
