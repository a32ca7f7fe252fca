"""Quarry knowledge graph — extraction, ingestion and read service."""

from quarry.graph.extractor import EntityExtractor, ExtractInput, ExtractionResult
from quarry.graph.pipeline import KGIngestionPipeline, KGIngestResult
from quarry.graph.service import GraphData, GraphEdge, GraphNode, KGService

__all__ = [
    "EntityExtractor",
    "ExtractInput",
    "ExtractionResult",
    "GraphData",
    "GraphEdge",
    "GraphNode",
    "KGIngestionPipeline",
    "KGIngestResult",
    "KGService",
]
