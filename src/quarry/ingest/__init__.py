"""Quarry ingest pipeline — chunker, embedder, ingestion and backfill."""

from quarry.ingest.chunker import Chunker, ChunkPiece, estimate_token_count
from quarry.ingest.embedder import Embedder
from quarry.ingest.pipeline import IngestionPipeline, IngestResult, PendingResult

__all__ = [
    "Chunker",
    "ChunkPiece",
    "Embedder",
    "IngestionPipeline",
    "IngestResult",
    "PendingResult",
    "estimate_token_count",
]
