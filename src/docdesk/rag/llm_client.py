"""LiteLLM client wrapper with retry, streaming, and API key validation.

All chat/completion calls route through this module. LiteLLM's built-in
retry is used (``num_retries``, exponential backoff). API key presence is
validated before any generation begins.

``CompletionClient`` is the seam the agent, tools and chat service depend on;
``LiteLLMClient`` is the production implementation, and tests pass a
scripted fake with the same two methods.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import AsyncIterator
from typing import Any, Protocol

import litellm

from docdesk.errors import LLMError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "local": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Async client
# ------------------------------------------------------------------


class CompletionClient(Protocol):
    """LLM completion collaborator."""

    async def complete(
        self,
        messages: list[dict],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str: ...

    def stream(self, messages: list[dict]) -> AsyncIterator[str]: ...


class LiteLLMClient:
    """Async completions through ``litellm.acompletion``."""

    def __init__(
        self,
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        num_retries: int = 3,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.num_retries = num_retries

    async def complete(
        self,
        messages: list[dict],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Return the content of the first choice.

        Raises:
            LLMError: On persistent API failure after retries.
        """
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise LLMError(f"Completion call to '{self.model}' failed: {exc}") from exc
        return response.choices[0].message.content or ""

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Yield content deltas as they arrive.

        Raises:
            LLMError: If the stream cannot be opened or breaks mid-way.
        """
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                num_retries=self.num_retries,
                stream=True,
            )
            async for part in response:
                delta = part.choices[0].delta.content
                if delta:
                    yield delta
        except Exception as exc:
            raise LLMError(f"Streaming call to '{self.model}' failed: {exc}") from exc


# ------------------------------------------------------------------
# JSON replies
# ------------------------------------------------------------------

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)


def extract_json(raw_output: str) -> dict[str, Any] | None:
    """Pull a JSON object out of a model reply.

    Tries, in order: the whole reply, the first fenced code block, then the
    first balanced ``{...}`` span. Returns None if nothing parses to a dict.
    """
    if not raw_output:
        return None
    text = raw_output.strip()

    candidates = [text]
    fence = _JSON_FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())
    span = _balanced_object(text)
    if span:
        candidates.append(span)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for i, char in enumerate(text[start:], start):
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None
