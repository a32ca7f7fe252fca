"""LiteLLM client wrapper for the embedding and extraction calls.

All model traffic goes through this module. LiteLLM's built-in retry is used
(``num_retries``, exponential backoff). Credentials are passed explicitly;
nothing here reads provider-specific environment variables.
"""

from __future__ import annotations

from typing import Any

import litellm

from quarry.errors import EmbeddingError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


async def aembed(
    model: str,
    text: str,
    *,
    api_key: str | None = None,
    api_base: str | None = None,
    num_retries: int = 3,
) -> tuple[list[float], int]:
    """Embed a single text. Returns ``(vector, total_tokens)``.

    One request carries exactly one input: some multimodal embedding
    endpoints collapse an input array into a single vector.

    Raises:
        EmbeddingError: If the response carries no embedding.
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = await litellm.aembedding(
        model=model,
        input=[text],
        api_key=api_key,
        api_base=api_base,
        num_retries=num_retries,
    )
    try:
        vector = response.data[0]["embedding"]
    except (AttributeError, IndexError, KeyError, TypeError) as exc:
        raise EmbeddingError(f"Unexpected embedding response: {str(response)[:300]}") from exc
    if not isinstance(vector, list) or not vector:
        raise EmbeddingError(f"Unexpected embedding response: {str(response)[:300]}")

    usage = getattr(response, "usage", None)
    tokens = getattr(usage, "total_tokens", None) or 0
    return [float(x) for x in vector], int(tokens)


async def acomplete(
    model: str,
    messages: list[dict[str, Any]],
    *,
    api_key: str | None = None,
    api_base: str | None = None,
    max_tokens: int = 4096,
    temperature: float = 0.0,
    json_mode: bool = False,
    num_retries: int = 3,
) -> str:
    """Call litellm.acompletion() with retry/backoff. Returns the content string.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        json_mode: Request a JSON object response.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        api_key=api_key,
        api_base=api_base,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    return response.choices[0].message.content or ""
