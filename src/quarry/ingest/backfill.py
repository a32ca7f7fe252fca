"""Backfill coordinator — bulk (re)indexing with progress and cancellation.

A single coordinator owns the backfill state. ``Idle → Running`` happens in
one guarded step inside run(); a second start while a backfill is active
raises BackfillAlreadyRunningError. cancel() moves ``Running → Cancelling``
and the run loop checks for it between documents. The state always returns
to Idle when run() exits.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from quarry.errors import BackfillAlreadyRunningError
from quarry.graph.extractor import ExtractInput
from quarry.graph.pipeline import KGIngestionPipeline
from quarry.ingest.pipeline import IngestionPipeline, PendingResult


class BackfillState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


class BackfillPhase(str, Enum):
    INDEXING = "indexing"
    PENDING = "pending"
    DONE = "done"


@dataclass
class SourceDocument:
    """Raw text of one source, as supplied by a content provider."""

    source_type: str
    source_id: str
    text: str
    title: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class BackfillProgress:
    phase: BackfillPhase
    current: int
    total: int
    current_title: str | None = None


@dataclass
class BackfillStatus:
    state: BackfillState
    phase: BackfillPhase | None = None
    current: int = 0
    total: int = 0
    current_title: str | None = None


@dataclass
class BackfillReport:
    indexed: int = 0
    failed: int = 0
    graph_ingested: int = 0
    pending: PendingResult = field(default_factory=PendingResult)
    cancelled: bool = False


ProgressCallback = Callable[[BackfillProgress], None]


class BackfillCoordinator:
    """Runs backfills one at a time.

    Args:
        pipeline: Ingestion pipeline used for each document.
        kg_pipeline: Optional KG pipeline; when given, each successfully
            indexed document is also run through entity extraction.
        on_progress: Called with a BackfillProgress at each step.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        kg_pipeline: KGIngestionPipeline | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._kg_pipeline = kg_pipeline
        self._on_progress = on_progress
        self._state = BackfillState.IDLE
        self._progress: BackfillProgress | None = None

    @property
    def state(self) -> BackfillState:
        return self._state

    def status(self) -> BackfillStatus:
        progress = self._progress
        if progress is None:
            return BackfillStatus(state=self._state)
        return BackfillStatus(
            state=self._state,
            phase=progress.phase,
            current=progress.current,
            total=progress.total,
            current_title=progress.current_title,
        )

    def _try_start(self) -> bool:
        if self._state is not BackfillState.IDLE:
            return False
        self._state = BackfillState.RUNNING
        return True

    def cancel(self) -> bool:
        """Request cancellation. Returns False if no backfill is running."""
        if self._state is not BackfillState.RUNNING:
            return False
        self._state = BackfillState.CANCELLING
        logger.info("Backfill cancellation requested")
        return True

    def _cancelled(self) -> bool:
        return self._state is BackfillState.CANCELLING

    def _report(self, phase: BackfillPhase, current: int, total: int, title: str | None = None) -> None:
        self._progress = BackfillProgress(phase, current, total, title)
        if self._on_progress is not None:
            self._on_progress(self._progress)

    async def run(
        self, documents: Iterable[SourceDocument], batch_size: int = 50
    ) -> BackfillReport:
        """Index *documents*, then drain the pending-embedding backlog.

        A failure on one document is logged and the run continues with the
        next one.

        Raises:
            BackfillAlreadyRunningError: If a backfill is already active.
        """
        if not self._try_start():
            raise BackfillAlreadyRunningError(f"Backfill already {self._state.value}")

        report = BackfillReport()
        try:
            docs = list(documents)
            total = len(docs)
            self._report(BackfillPhase.INDEXING, 0, total)

            for idx, doc in enumerate(docs, start=1):
                if self._cancelled():
                    break
                title = doc.title or doc.source_id
                self._report(BackfillPhase.INDEXING, idx, total, title)
                try:
                    await self._index_one(doc, report)
                except Exception:
                    report.failed += 1
                    logger.exception("Backfill failed for {}:{}", doc.source_type, doc.source_id)

            if not self._cancelled():
                self._report(BackfillPhase.PENDING, 0, 0)
                report.pending = await self._pipeline.drain_pending(
                    batch_size, should_stop=self._cancelled
                )
                if report.pending.processed:
                    logger.info(
                        "Processed {} pending chunks ({} tokens)",
                        report.pending.processed,
                        report.pending.total_tokens,
                    )

            report.cancelled = self._cancelled()
            self._report(BackfillPhase.DONE, 0, 0)
            logger.info(
                "Backfill finished: {} indexed, {} failed{}",
                report.indexed,
                report.failed,
                " (cancelled)" if report.cancelled else "",
            )
            return report
        finally:
            self._state = BackfillState.IDLE
            self._progress = None

    async def _index_one(self, doc: SourceDocument, report: BackfillReport) -> None:
        result = await self._pipeline.ingest(
            doc.source_type, doc.source_id, doc.text, metadata=doc.metadata, title=doc.title
        )
        if not result.success:
            report.failed += 1
            logger.warning(
                "Backfill ingest of {}:{} failed: {}", doc.source_type, doc.source_id, result.error
            )
            return
        report.indexed += 1

        if self._kg_pipeline is None:
            return
        chunks = self._pipeline.store.get_chunks_by_source(doc.source_type, doc.source_id)
        if not chunks:
            return
        title = doc.title or doc.source_id
        kg_result = await self._kg_pipeline.ingest(
            doc.source_type,
            doc.source_id,
            title,
            [ExtractInput(chunk_id=c.id, content=c.content, source_title=title) for c in chunks],
        )
        if kg_result.success:
            report.graph_ingested += 1
