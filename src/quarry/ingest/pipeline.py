"""Ingestion pipeline — source text → chunks → embeddings → index.

Reingesting a source replaces its chunk set; the pipeline never merges
old and new chunks. Failures are reported through IngestResult instead of
raised, and already-written chunks are left in place (marked ``failed``)
so that the pending drain can pick them up later.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from quarry.db.index_store import IndexStore
from quarry.db.models import Chunk, ChunkInput, SourceIndexStatus
from quarry.ingest.chunker import Chunker
from quarry.ingest.embedder import Embedder


@dataclass
class IngestResult:
    source_type: str
    source_id: str
    chunks_created: int = 0
    embeddings_generated: int = 0
    total_tokens: int = 0
    success: bool = True
    error: str | None = None


@dataclass
class PendingResult:
    processed: int = 0
    failed: int = 0
    total_tokens: int = 0

    def __iadd__(self, other: PendingResult) -> PendingResult:
        self.processed += other.processed
        self.failed += other.failed
        self.total_tokens += other.total_tokens
        return self


class IngestionPipeline:
    """Orchestrates chunking, embedding and storage for one source at a time.

    Args:
        store: Index store the chunks and vectors are written to.
        chunker: Splits source text into chunks.
        embedder: Embeds chunk text; None when no embedding credentials are
            configured, in which case chunks stay ``pending``.
    """

    def __init__(self, store: IndexStore, chunker: Chunker, embedder: Embedder | None) -> None:
        self._store = store
        self._chunker = chunker
        self._embedder = embedder

    @property
    def store(self) -> IndexStore:
        return self._store

    def _can_embed(self) -> bool:
        return self._embedder is not None and self._store.vec_available

    async def ingest(
        self,
        source_type: str,
        source_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
        title: str | None = None,
    ) -> IngestResult:
        """Index one source, replacing whatever was indexed for it before."""
        result = IngestResult(source_type=source_type, source_id=source_id)
        try:
            self._store.delete_chunks_by_source(source_type, source_id)
            if text and text.strip():
                self._store.upsert_document(source_type, source_id, text, title)

            pieces = self._chunker.chunk(text, source_type, metadata)
            if not pieces:
                return result

            chunks = self._store.create_chunks(
                ChunkInput(
                    source_type=source_type,
                    source_id=source_id,
                    chunk_index=i,
                    content=piece.content,
                    token_count=piece.token_count,
                    metadata=piece.metadata or None,
                )
                for i, piece in enumerate(pieces)
            )
            result.chunks_created = len(chunks)

            if not self._can_embed():
                logger.debug(
                    "Embedding unavailable; {} chunks of {}:{} left pending",
                    len(chunks),
                    source_type,
                    source_id,
                )
                return result

            tokens = await self._embed_and_store(chunks)
            result.embeddings_generated = len(chunks)
            result.total_tokens = tokens
        except Exception as exc:
            logger.exception("Ingest failed for {}:{}", source_type, source_id)
            self._mark_pending_failed(source_type, source_id)
            return IngestResult(
                source_type=source_type,
                source_id=source_id,
                success=False,
                error=str(exc),
            )

        logger.info(
            "Ingested {}:{} ({} chunks, {} embeddings)",
            source_type,
            source_id,
            result.chunks_created,
            result.embeddings_generated,
        )
        return result

    async def _embed_and_store(self, chunks: list[Chunk]) -> int:
        assert self._embedder is not None
        batch = await self._embedder.embed_batch([c.content for c in chunks])
        self._store.insert_embeddings(
            [(chunk.id, vector) for chunk, vector in zip(chunks, batch.vectors)]
        )
        self._store.update_embedding_statuses(
            [c.id for c in chunks], "done", self._embedder.model
        )
        return batch.total_tokens

    def _mark_pending_failed(self, source_type: str, source_id: str) -> None:
        try:
            pending = [
                c.id
                for c in self._store.get_chunks_by_source(source_type, source_id)
                if c.embedding_status == "pending"
            ]
            self._store.update_embedding_statuses(pending, "failed")
        except Exception:
            logger.exception("Could not mark chunks of {}:{} as failed", source_type, source_id)

    async def process_pending_chunks(self, batch_size: int = 50) -> PendingResult:
        """Embed up to *batch_size* pending chunks across all sources.

        The batch succeeds or fails as a whole: if embedding or storing any
        chunk fails, every chunk in the batch is marked ``failed``.
        """
        if not self._can_embed():
            return PendingResult()
        chunks = self._store.get_pending_chunks(batch_size)
        if not chunks:
            return PendingResult()

        try:
            tokens = await self._embed_and_store(chunks)
        except Exception:
            logger.exception("Pending batch of {} chunks failed", len(chunks))
            self._store.update_embedding_statuses([c.id for c in chunks], "failed")
            return PendingResult(failed=len(chunks))
        return PendingResult(processed=len(chunks), total_tokens=tokens)

    async def drain_pending(
        self,
        batch_size: int = 50,
        should_stop: Callable[[], bool] | None = None,
    ) -> PendingResult:
        """Run process_pending_chunks() until the backlog is empty or *should_stop* says so."""
        total = PendingResult()
        while not (should_stop and should_stop()):
            step = await self.process_pending_chunks(batch_size)
            if step.processed == 0 and step.failed == 0:
                break
            total += step
            logger.debug("Drained {} pending chunks ({} failed)", step.processed, step.failed)
        return total

    def remove(self, source_type: str, source_id: str) -> int:
        """Delete a source from the index. Unknown sources are a no-op."""
        return self._store.delete_chunks_by_source(source_type, source_id)

    def get_source_index_status(self, source_type: str, source_id: str) -> SourceIndexStatus:
        return self._store.get_source_index_status(source_type, source_id)
