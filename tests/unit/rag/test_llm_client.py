"""Tests for the LiteLLM client wrapper and JSON reply extraction."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docdesk.errors import LLMError
from docdesk.rag.llm_client import LiteLLMClient, extract_json, provider_of, validate_api_key


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o-mini")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    validate_api_key("openai/gpt-4o-mini")  # should not raise


def test_validate_api_key_anthropic(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="ANTHROPIC_API_KEY"):
        validate_api_key("anthropic/claude-3-5-sonnet-20241022")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


def test_provider_of_bare_model_is_openai():
    assert provider_of("gpt-4o") == "openai"
    assert provider_of("Ollama/llama3") == "ollama"


# ------------------------------------------------------------------
# LiteLLMClient
# ------------------------------------------------------------------


def _response(content):
    response = MagicMock()
    response.choices[0].message.content = content
    return response


async def test_complete_returns_content():
    with patch("docdesk.rag.llm_client.litellm.acompletion", new=AsyncMock(return_value=_response("Hi"))):
        assert await LiteLLMClient("openai/gpt-4o-mini").complete([{"role": "user", "content": "x"}]) == "Hi"


async def test_complete_none_content_is_empty_string():
    with patch("docdesk.rag.llm_client.litellm.acompletion", new=AsyncMock(return_value=_response(None))):
        assert await LiteLLMClient("openai/gpt-4o-mini").complete([]) == ""


async def test_complete_passes_params():
    mock = AsyncMock(return_value=_response("ok"))
    client = LiteLLMClient("openai/gpt-4o-mini", max_tokens=512, temperature=0.7, num_retries=5)
    with patch("docdesk.rag.llm_client.litellm.acompletion", new=mock):
        await client.complete([{"role": "user", "content": "x"}], temperature=0.0)
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "openai/gpt-4o-mini"
    assert kwargs["max_tokens"] == 512
    assert kwargs["temperature"] == 0.0
    assert kwargs["num_retries"] == 5


async def test_complete_wraps_failures():
    mock = AsyncMock(side_effect=RuntimeError("rate limited"))
    with patch("docdesk.rag.llm_client.litellm.acompletion", new=mock):
        with pytest.raises(LLMError, match="rate limited"):
            await LiteLLMClient("openai/gpt-4o-mini").complete([])


async def test_stream_yields_deltas():
    async def parts():
        for text in ("Hel", None, "lo"):
            part = MagicMock()
            part.choices[0].delta.content = text
            yield part

    with patch("docdesk.rag.llm_client.litellm.acompletion", new=AsyncMock(return_value=parts())):
        out = [d async for d in LiteLLMClient("openai/gpt-4o-mini").stream([])]
    assert out == ["Hel", "lo"]


# ------------------------------------------------------------------
# extract_json
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw",
    [
        '{"a": 1}',
        'Sure!\n```json\n{"a": 1}\n```',
        'Here you go: {"a": 1} hope that helps',
    ],
)
def test_extract_json_variants(raw):
    assert extract_json(raw) == {"a": 1}


def test_extract_json_braces_inside_strings():
    assert extract_json('x {"s": "a } b", "n": {"m": 2}} y') == {"s": "a } b", "n": {"m": 2}}


def test_extract_json_rejects_non_objects():
    assert extract_json("[1, 2]") is None
    assert extract_json("no json here") is None
    assert extract_json("") is None
