"""Embedder — turns chunk text into vectors with bounded request concurrency."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from quarry.config import EmbeddingCredentials
from quarry.errors import EmbeddingError
from quarry.rag import llm_client

MAX_INPUT_TOKENS = 8191


@dataclass
class EmbeddingResult:
    vector: list[float]
    token_count: int


@dataclass
class BatchEmbeddingResult:
    vectors: list[list[float]] = field(default_factory=list)
    total_tokens: int = 0


class Embedder:
    """Embed texts through LiteLLM, one request per text.

    Batches are processed in windows of ``max_parallel_calls`` requests;
    each window is awaited before the next one starts.

    Args:
        credentials: Model id, key, endpoint and expected dimension D.
        max_parallel_calls: Maximum number of in-flight requests.
        num_retries: Retries per request on transient errors.
    """

    def __init__(
        self,
        credentials: EmbeddingCredentials,
        max_parallel_calls: int = 2,
        num_retries: int = 3,
    ) -> None:
        if not credentials.api_key:
            raise EmbeddingError("Embedding API key is not configured")
        if max_parallel_calls < 1:
            raise ValueError("max_parallel_calls must be >= 1")
        self._credentials = credentials
        self.max_parallel_calls = max_parallel_calls
        self.num_retries = num_retries

    @property
    def model_info(self) -> dict[str, object]:
        return {
            "model": self._credentials.model_id,
            "dimensions": self._credentials.dimensions,
            "max_tokens": MAX_INPUT_TOKENS,
        }

    @property
    def model(self) -> str:
        return self._credentials.model_id

    async def embed(self, text: str) -> EmbeddingResult:
        vector, tokens = await self._call(text)
        return EmbeddingResult(vector=vector, token_count=tokens)

    async def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        """Embed *texts*; vectors come back in input order.

        The first failing request aborts the batch and its error propagates.
        """
        result = BatchEmbeddingResult()
        for start in range(0, len(texts), self.max_parallel_calls):
            window = texts[start : start + self.max_parallel_calls]
            outcomes = await asyncio.gather(*(self._call(t) for t in window))
            for vector, tokens in outcomes:
                result.vectors.append(vector)
                result.total_tokens += tokens
        logger.debug(
            "Embedded {} texts with {} ({} tokens)",
            len(texts),
            self._credentials.model_id,
            result.total_tokens,
        )
        return result

    async def _call(self, text: str) -> tuple[list[float], int]:
        vector, tokens = await llm_client.aembed(
            self._credentials.model_id,
            text,
            api_key=self._credentials.api_key,
            api_base=self._credentials.base_url,
            num_retries=self.num_retries,
        )
        if len(vector) != self._credentials.dimensions:
            raise EmbeddingError(
                f"Embedding model {self._credentials.model_id} returned {len(vector)} "
                f"dimensions, expected {self._credentials.dimensions}"
            )
        return vector, tokens
