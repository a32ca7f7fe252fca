"""Tests for IngestionPipeline (ingest, reingest, degraded mode, pending drain)."""

from __future__ import annotations

import pytest

from quarry.ingest.chunker import Chunker
from quarry.ingest.pipeline import IngestionPipeline, PendingResult

_LONG = "\n\n".join(f"Paragraph {i:02d} has some words." for i in range(10))


def _small_chunker() -> Chunker:
    return Chunker(target_size=20, min_size=5, overlap=0)


# ------------------------------------------------------------------
# ingest
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingest_merges_short_paragraphs_and_embeds(vec_store, make_embedder):
    seen_status: list[str] = []

    def capture():
        seen_status.extend(c.embedding_status for c in vec_store.get_chunks_by_source("article", "A"))

    embedder = make_embedder(on_call=capture)
    pipeline = IngestionPipeline(vec_store, Chunker(target_size=1000), embedder)

    result = await pipeline.ingest("article", "A", "Para one.\n\nPara two.")

    assert result.success
    assert result.chunks_created == 1
    assert result.embeddings_generated == 1
    assert seen_status == ["pending"]
    chunks = vec_store.get_chunks_by_source("article", "A")
    assert len(chunks) == 1
    assert chunks[0].content == "Para one.\n\nPara two."
    assert chunks[0].embedding_status == "done"
    assert chunks[0].embedding_model == "fake/embedding"


@pytest.mark.asyncio
async def test_ingest_blank_text_is_success_with_zero_chunks(index_store, make_embedder):
    embedder = make_embedder()
    result = await IngestionPipeline(index_store, Chunker(), embedder).ingest("article", "A", "  ")
    assert result.success
    assert (result.chunks_created, result.embeddings_generated, result.total_tokens) == (0, 0, 0)
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_reingest_replaces_chunk_set(index_store):
    pipeline = IngestionPipeline(index_store, _small_chunker(), None)
    await pipeline.ingest("article", "A", _LONG)
    assert len(index_store.get_chunks_by_source("article", "A")) == 5

    await pipeline.ingest("article", "A", "Completely new text.")

    chunks = index_store.get_chunks_by_source("article", "A")
    assert [c.content for c in chunks] == ["Completely new text."]
    assert [c.chunk_index for c in chunks] == [0]


@pytest.mark.asyncio
async def test_reingest_drops_old_vectors(vec_store, make_embedder):
    pipeline = IngestionPipeline(vec_store, _small_chunker(), make_embedder())
    await pipeline.ingest("article", "A", _LONG)
    old_ids = {c.id for c in vec_store.get_chunks_by_source("article", "A")}

    await pipeline.ingest("article", "A", "Completely new text.")

    hits = {m.chunk_id for m in vec_store.search_vectors([1.0, 1.0, 0.5, 0.25], k=20)}
    assert hits.isdisjoint(old_ids)
    assert len(hits) == 1


@pytest.mark.asyncio
async def test_ingest_writes_document_for_keyword_search(index_store):
    pipeline = IngestionPipeline(index_store, Chunker(), None)
    await pipeline.ingest("article", "A", "Retrieval augmented generation", title="RAG")
    assert index_store.search_documents('"augmented"') == [("article", "A")]
    assert index_store.search_documents('"RAG"') == [("article", "A")]


@pytest.mark.asyncio
async def test_ingest_without_vector_index_succeeds_unembedded(degraded_store, make_embedder):
    embedder = make_embedder()
    pipeline = IngestionPipeline(degraded_store, _small_chunker(), embedder)

    result = await pipeline.ingest("article", "A", _LONG)

    assert result.success is True
    assert result.chunks_created > 0
    assert result.embeddings_generated == 0
    assert embedder.calls == []
    status = degraded_store.get_source_index_status("article", "A")
    assert status.pending == status.total == result.chunks_created


@pytest.mark.asyncio
async def test_ingest_without_embedder_leaves_chunks_pending(index_store):
    result = await IngestionPipeline(index_store, _small_chunker(), None).ingest(
        "article", "A", _LONG
    )
    assert result.success
    assert result.embeddings_generated == 0
    assert index_store.get_source_index_status("article", "A").pending == 5


@pytest.mark.asyncio
async def test_ingest_failure_marks_chunks_failed(vec_store, make_embedder):
    pipeline = IngestionPipeline(vec_store, _small_chunker(), make_embedder(fail=True))

    result = await pipeline.ingest("article", "A", _LONG)

    assert result.success is False
    assert "provider down" in (result.error or "")
    assert result.chunks_created == 0
    status = vec_store.get_source_index_status("article", "A")
    assert status.failed == status.total == 5


# ------------------------------------------------------------------
# pending backlog
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_process_pending_embeds_backlog(vec_store, make_embedder):
    await IngestionPipeline(vec_store, _small_chunker(), None).ingest("article", "A", _LONG)
    pipeline = IngestionPipeline(vec_store, _small_chunker(), make_embedder())

    result = await pipeline.process_pending_chunks(batch_size=50)

    assert result == PendingResult(processed=5, failed=0, total_tokens=5)
    assert vec_store.get_source_index_status("article", "A").done == 5


@pytest.mark.asyncio
async def test_process_pending_fails_whole_batch(vec_store, make_embedder):
    await IngestionPipeline(vec_store, _small_chunker(), None).ingest("article", "A", _LONG)
    pipeline = IngestionPipeline(vec_store, _small_chunker(), make_embedder(fail=True))

    result = await pipeline.process_pending_chunks(batch_size=3)

    assert result.processed == 0
    assert result.failed == 3
    status = vec_store.get_source_index_status("article", "A")
    assert (status.failed, status.pending) == (3, 2)


@pytest.mark.asyncio
async def test_process_pending_is_noop_in_degraded_mode(degraded_store, make_embedder):
    await IngestionPipeline(degraded_store, _small_chunker(), None).ingest("article", "A", _LONG)
    result = await IngestionPipeline(
        degraded_store, _small_chunker(), make_embedder()
    ).process_pending_chunks()
    assert result == PendingResult()


@pytest.mark.asyncio
async def test_drain_pending_loops_until_empty(vec_store, make_embedder):
    await IngestionPipeline(vec_store, _small_chunker(), None).ingest("article", "A", _LONG)
    embedder = make_embedder()
    pipeline = IngestionPipeline(vec_store, _small_chunker(), embedder)

    result = await pipeline.drain_pending(batch_size=2)

    assert result.processed == 5
    assert [len(c) for c in embedder.calls] == [2, 2, 1]


@pytest.mark.asyncio
async def test_drain_pending_honours_should_stop(vec_store, make_embedder):
    await IngestionPipeline(vec_store, _small_chunker(), None).ingest("article", "A", _LONG)
    embedder = make_embedder()
    pipeline = IngestionPipeline(vec_store, _small_chunker(), embedder)

    result = await pipeline.drain_pending(batch_size=2, should_stop=lambda: len(embedder.calls) >= 1)

    assert result.processed == 2
    assert vec_store.get_source_index_status("article", "A").pending == 3


# ------------------------------------------------------------------
# remove / status
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_remove_is_idempotent(index_store):
    pipeline = IngestionPipeline(index_store, _small_chunker(), None)
    await pipeline.ingest("article", "A", _LONG)

    assert pipeline.remove("article", "A") == 5
    assert pipeline.remove("article", "A") == 0
    assert pipeline.get_source_index_status("article", "A").total == 0
    assert index_store.search_documents('"Paragraph"') == []


def test_status_of_unknown_source_is_all_zero(index_store):
    pipeline = IngestionPipeline(index_store, Chunker(), None)
    status = pipeline.get_source_index_status("book", "nope")
    assert (status.total, status.pending, status.done, status.failed) == (0, 0, 0, 0)
