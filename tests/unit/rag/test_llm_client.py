"""Tests for the LiteLLM client wrapper."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from quarry.errors import EmbeddingError
from quarry.rag.llm_client import acomplete, aembed

# ------------------------------------------------------------------
# aembed()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_aembed_returns_vector_and_tokens():
    response = SimpleNamespace(data=[{"embedding": [1, 2]}], usage=SimpleNamespace(total_tokens=5))
    with patch("quarry.rag.llm_client.litellm.aembedding", AsyncMock(return_value=response)):
        vector, tokens = await aembed("openai/text-embedding-3-small", "hi", api_key="k")
    assert vector == [1.0, 2.0]
    assert tokens == 5


@pytest.mark.asyncio
async def test_aembed_passes_retry_and_credentials():
    response = SimpleNamespace(data=[{"embedding": [0.5]}], usage=None)
    mock = AsyncMock(return_value=response)
    with patch("quarry.rag.llm_client.litellm.aembedding", mock):
        _, tokens = await aembed("m", "hi", api_key="k", api_base="http://x", num_retries=5)
    assert tokens == 0
    kwargs = mock.call_args.kwargs
    assert kwargs["num_retries"] == 5
    assert kwargs["api_base"] == "http://x"
    assert kwargs["input"] == ["hi"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(data=[]),
        SimpleNamespace(data=[{"no_embedding": 1}]),
        SimpleNamespace(data=[{"embedding": []}]),
        None,
    ],
)
async def test_aembed_malformed_response(response):
    with patch("quarry.rag.llm_client.litellm.aembedding", AsyncMock(return_value=response)):
        with pytest.raises(EmbeddingError):
            await aembed("m", "hi")


# ------------------------------------------------------------------
# acomplete()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_acomplete_returns_content():
    response = MagicMock()
    response.choices[0].message.content = "Hello, world!"
    with patch("quarry.rag.llm_client.litellm.acompletion", AsyncMock(return_value=response)):
        result = await acomplete("openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}])
    assert result == "Hello, world!"


@pytest.mark.asyncio
async def test_acomplete_returns_empty_string_on_none_content():
    response = MagicMock()
    response.choices[0].message.content = None
    with patch("quarry.rag.llm_client.litellm.acompletion", AsyncMock(return_value=response)):
        assert await acomplete("m", []) == ""


@pytest.mark.asyncio
async def test_acomplete_json_mode_sets_response_format():
    response = MagicMock()
    response.choices[0].message.content = "{}"
    mock = AsyncMock(return_value=response)
    with patch("quarry.rag.llm_client.litellm.acompletion", mock):
        await acomplete("m", [], json_mode=True)
        assert mock.call_args.kwargs["response_format"] == {"type": "json_object"}
        await acomplete("m", [])
        assert "response_format" not in mock.call_args.kwargs


@pytest.mark.asyncio
async def test_acomplete_propagates_api_errors():
    with patch(
        "quarry.rag.llm_client.litellm.acompletion", AsyncMock(side_effect=RuntimeError("429"))
    ):
        with pytest.raises(RuntimeError, match="429"):
            await acomplete("m", [])
