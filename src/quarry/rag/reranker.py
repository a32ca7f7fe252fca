"""Local reranker — reorders fused results by query term overlap.

No model call: the fused retrieval score is blended with the fraction of
query terms found in each candidate. Terms are lower-cased Latin words
plus CJK character bigrams.
"""

from __future__ import annotations

import dataclasses
import re

from quarry.rag.retriever import SearchResult

_LATIN_WORD = re.compile(r"[a-zA-Z]+")
_CJK_CHAR = re.compile(r"[一-龥]")


def tokenize(text: str) -> list[str]:
    terms = [w.lower() for w in _LATIN_WORD.findall(text)]
    cjk = _CJK_CHAR.findall(text)
    terms.extend(a + b for a, b in zip(cjk, cjk[1:]))
    return terms


def term_overlap(query_terms: list[str], doc_terms: list[str]) -> float:
    """Fraction of *query_terms* that occur in *doc_terms*."""
    if not query_terms:
        return 0.0
    doc = set(doc_terms)
    return sum(1 for t in query_terms if t in doc) / len(query_terms)


class LocalReranker:
    """Blend retrieval score with keyword overlap.

    ``score = (1 - weight) * score / max_score + weight * overlap / max_overlap``
    """

    def __init__(self, weight: float = 0.4) -> None:
        if not 0.0 <= weight <= 1.0:
            raise ValueError("weight must be in [0.0, 1.0]")
        self.weight = weight

    def rerank(self, query: str, candidates: list[SearchResult], top_k: int) -> list[SearchResult]:
        if not candidates:
            return []
        query_terms = tokenize(query)
        if not query_terms:
            return candidates[:top_k]

        overlaps = [term_overlap(query_terms, tokenize(c.content)) for c in candidates]
        max_score = max(max(c.score for c in candidates), 1e-10)
        max_overlap = max(max(overlaps), 1e-10)

        blended = [
            dataclasses.replace(
                c,
                score=(1 - self.weight) * (c.score / max_score)
                + self.weight * (overlap / max_overlap),
            )
            for c, overlap in zip(candidates, overlaps)
        ]
        blended.sort(key=lambda r: r.score, reverse=True)
        return blended[:top_k]
