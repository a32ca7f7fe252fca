"""Hybrid retriever: dense (sqlite-vec) + keyword (FTS5), fused via RRF.

Reciprocal Rank Fusion:
  score(d) = Σ 1 / (k + rank_i(d))   over the lists d appears in, k = 60

The keyword channel matches whole source documents and contributes the
first chunk of each matched document. Either channel degrades to an empty
list on failure; search() itself never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from quarry.db.index_store import IndexStore
from quarry.db.models import SearchFilters
from quarry.ingest.embedder import Embedder

if TYPE_CHECKING:
    from quarry.rag.reranker import LocalReranker

RRF_K = 60
SEARCH_MODES = ("hybrid", "vector", "keyword")

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass
class SearchResult:
    chunk_id: str
    content: str
    score: float
    source_type: str
    source_id: str
    chunk_index: int
    metadata: dict[str, Any] = field(default_factory=dict)


def build_fts_query(text: str) -> str:
    """Turn free text into an FTS5 OR-query of quoted terms ('' if no terms)."""
    terms = _NON_WORD.sub(" ", text).split()
    return " OR ".join(f'"{t}"' for t in terms)


def rrf_fuse(
    vector_ranked: list[str],
    keyword_ranked: list[str],
    top_k: int,
    k: int = RRF_K,
) -> list[tuple[str, float]]:
    """Fuse two ranked id lists (best first) with Reciprocal Rank Fusion.

    Ties keep first-encountered order: vector list first, then keyword list.
    """
    scores: dict[str, float] = {}
    for ranked in (vector_ranked, keyword_ranked):
        for rank, chunk_id in enumerate(ranked, start=1):
            scores[chunk_id] = scores.get(chunk_id, 0.0) + 1.0 / (k + rank)
    fused = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return fused[:top_k]


class HybridRetriever:
    """Search the chunk index by meaning, by keywords, or both.

    Args:
        store: Index store to search.
        embedder: Query embedder; None disables the vector channel.
        reranker: Optional reranker applied to the fused candidates.
        rrf_k: RRF smoothing constant.
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder | None,
        reranker: LocalReranker | None = None,
        rrf_k: int = RRF_K,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._reranker = reranker
        self._rrf_k = rrf_k

    async def search(
        self,
        text: str,
        top_k: int = 10,
        filters: SearchFilters | None = None,
        mode: str = "hybrid",
    ) -> list[SearchResult]:
        """Return up to *top_k* chunks for *text*, best first."""
        if not text or not text.strip() or top_k < 1:
            return []
        if mode not in SEARCH_MODES:
            logger.warning("Unknown search mode {!r}, using hybrid", mode)
            mode = "hybrid"

        vector_ranked: list[str] = []
        keyword_ranked: list[str] = []
        if mode in ("hybrid", "vector"):
            vector_ranked = await self._vector_search(text, top_k, filters)
        if mode in ("hybrid", "keyword"):
            keyword_ranked = self._keyword_search(text, top_k, filters)

        pool = top_k * 2 if self._reranker is not None else top_k
        fused = rrf_fuse(vector_ranked, keyword_ranked, pool, self._rrf_k)
        results = self._hydrate(fused)

        if self._reranker is not None:
            results = self._reranker.rerank(text, results, top_k)
        return results[:top_k]

    async def _vector_search(
        self, text: str, top_k: int, filters: SearchFilters | None
    ) -> list[str]:
        if self._embedder is None or not self._store.vec_available:
            return []
        try:
            query = await self._embedder.embed(text)
            matches = self._store.search_vectors(query.vector, top_k * 2)
            ids = [m.chunk_id for m in matches]
            allowed = self._store.filter_chunk_ids(ids, filters)
            return [cid for cid in ids if cid in allowed][:top_k]
        except Exception:
            logger.exception("Vector search failed")
            return []

    def _keyword_search(self, text: str, top_k: int, filters: SearchFilters | None) -> list[str]:
        fts_query = build_fts_query(text)
        if not fts_query:
            return []
        try:
            ranked: list[str] = []
            for source_type, source_id in self._store.search_documents(fts_query, top_k * 2):
                chunk_ids = self._store.get_chunk_ids_by_source(source_type, source_id)
                allowed = self._store.filter_chunk_ids(chunk_ids, filters)
                first = next((cid for cid in chunk_ids if cid in allowed), None)
                if first is not None:
                    ranked.append(first)
                if len(ranked) >= top_k:
                    break
            return ranked
        except Exception:
            logger.exception("Keyword search failed")
            return []

    def _hydrate(self, fused: list[tuple[str, float]]) -> list[SearchResult]:
        if not fused:
            return []
        try:
            chunks = {c.id: c for c in self._store.get_chunks([cid for cid, _ in fused])}
        except Exception:
            logger.exception("Could not load search results")
            return []
        results: list[SearchResult] = []
        for chunk_id, score in fused:
            chunk = chunks.get(chunk_id)
            if chunk is None:
                continue
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    content=chunk.content,
                    score=score,
                    source_type=chunk.source_type,
                    source_id=chunk.source_id,
                    chunk_index=chunk.chunk_index,
                    metadata=chunk.metadata,
                )
            )
        return results
