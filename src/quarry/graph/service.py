"""Read-only knowledge-graph queries shaped for display.

None of these methods raise: database errors are logged and an empty
result is returned.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from loguru import logger

from quarry.db.graph_store import GraphStore
from quarry.db.models import Entity, GraphStats, Relation


@dataclass
class GraphNode:
    id: str
    name: str
    type: str
    mention_count: int
    source_count: int
    description: str | None = None


@dataclass
class GraphEdge:
    source: str
    target: str
    relation_type: str
    strength: int
    evidence_count: int


@dataclass
class GraphData:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)


def _to_edge(relation: Relation) -> GraphEdge:
    return GraphEdge(
        source=relation.source_entity_id,
        target=relation.target_entity_id,
        relation_type=relation.relation_type,
        strength=relation.strength,
        evidence_count=relation.evidence_count,
    )


class KGService:
    def __init__(self, store: GraphStore) -> None:
        self._store = store

    def _to_nodes(self, entities: list[Entity]) -> list[GraphNode]:
        return [
            GraphNode(
                id=e.id,
                name=e.name,
                type=e.type,
                mention_count=e.mention_count,
                source_count=self._store.get_entity_source_count(e.id),
                description=e.description,
            )
            for e in entities
        ]

    def _graph_of(self, entities: list[Entity]) -> GraphData:
        if not entities:
            return GraphData()
        relations = self._store.get_relations_between([e.id for e in entities])
        return GraphData(nodes=self._to_nodes(entities), edges=[_to_edge(r) for r in relations])

    def get_article_graph(self, source_type: str, source_id: str) -> GraphData:
        """Entities linked to one source, plus the relations among them."""
        try:
            return self._graph_of(self._store.get_entities_by_source(source_type, source_id))
        except sqlite3.Error:
            logger.exception("Could not load graph for {}:{}", source_type, source_id)
            return GraphData()

    def get_overview(self, top_n: int = 50) -> GraphData:
        """The *top_n* most-mentioned entities and the relations among them."""
        try:
            return self._graph_of(self._store.get_top_entities(top_n))
        except sqlite3.Error:
            logger.exception("Could not load graph overview")
            return GraphData()

    def get_subgraph(self, entity_id: str, depth: int = 2) -> GraphData:
        try:
            entities, relations = self._store.get_subgraph(entity_id, depth)
            return GraphData(
                nodes=self._to_nodes(entities), edges=[_to_edge(r) for r in relations]
            )
        except sqlite3.Error:
            logger.exception("Could not load subgraph of {}", entity_id)
            return GraphData()

    def search_entities(self, query: str, type: str | None = None) -> list[Entity]:
        if not query.strip():
            return []
        try:
            return self._store.search_entities(query, type)
        except sqlite3.Error:
            logger.exception("Entity search failed for {!r}", query)
            return []

    def get_stats(self) -> GraphStats:
        try:
            return self._store.get_stats()
        except sqlite3.Error:
            logger.exception("Could not read graph stats")
            return GraphStats()
