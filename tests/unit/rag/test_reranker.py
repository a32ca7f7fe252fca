"""Tests for the local term-overlap reranker."""

from __future__ import annotations

import pytest

from quarry.rag.reranker import LocalReranker, term_overlap, tokenize
from quarry.rag.retriever import SearchResult


def _result(chunk_id: str, content: str, score: float) -> SearchResult:
    return SearchResult(chunk_id, content, score, "article", chunk_id, 0)


def test_tokenize_latin_lowercases_words():
    assert tokenize("Hello, World 42!") == ["hello", "world"]


def test_tokenize_cjk_bigrams():
    assert tokenize("知识图谱") == ["知识", "识图", "图谱"]


def test_term_overlap():
    assert term_overlap(["a", "b"], ["b", "c"]) == 0.5
    assert term_overlap([], ["a"]) == 0.0


def test_weight_must_be_in_unit_interval():
    with pytest.raises(ValueError):
        LocalReranker(weight=1.5)


def test_rerank_promotes_overlap_and_keeps_inputs_untouched():
    candidates = [
        _result("a", "nothing relevant", 0.03),
        _result("b", "graph databases store graphs", 0.02),
    ]

    reranked = LocalReranker(weight=0.8).rerank("graph databases", candidates, top_k=2)

    assert [r.chunk_id for r in reranked] == ["b", "a"]
    assert candidates[0].score == 0.03


def test_rerank_weight_zero_preserves_order():
    candidates = [_result("a", "x", 0.03), _result("b", "graph", 0.02)]
    reranked = LocalReranker(weight=0.0).rerank("graph", candidates, top_k=2)
    assert [r.chunk_id for r in reranked] == ["a", "b"]
    assert reranked[0].score == pytest.approx(1.0)


def test_rerank_truncates_and_handles_empty():
    reranker = LocalReranker()
    assert reranker.rerank("q", [], top_k=3) == []
    candidates = [_result(str(i), "text", 0.01 * (5 - i)) for i in range(5)]
    assert len(reranker.rerank("text", candidates, top_k=2)) == 2


def test_rerank_query_without_terms_returns_input_order():
    candidates = [_result("a", "x", 0.01), _result("b", "y", 0.02)]
    assert LocalReranker().rerank("?!", candidates, top_k=5) == candidates
