"""Domain models for the Quarry database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

SourceType = Literal["article", "book", "highlight", "transcript"]
EmbeddingStatus = Literal["pending", "done", "failed"]

SOURCE_TYPES: tuple[str, ...] = ("article", "book", "highlight", "transcript")


@dataclass
class ChunkInput:
    source_type: str
    source_id: str
    chunk_index: int
    content: str
    token_count: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class Chunk:
    id: str
    source_type: str
    source_id: str
    chunk_index: int
    content: str
    token_count: int | None = None
    metadata_json: str | None = None
    embedding_model: str | None = None
    embedding_status: str = "pending"
    created_at: str = ""
    updated_at: str = ""

    @property
    def metadata(self) -> dict[str, Any]:
        return json.loads(self.metadata_json) if self.metadata_json else {}


@dataclass
class VectorMatch:
    chunk_id: str
    distance: float


@dataclass
class SourceIndexStatus:
    total: int = 0
    pending: int = 0
    done: int = 0
    failed: int = 0


@dataclass
class SearchFilters:
    """Restrict retrieval to a subset of the index.

    Attributes:
        source_types: Keep only chunks of these source types.
        source_ids: Keep only chunks of these source ids.
        partition: Keep only chunks whose metadata ``partition`` equals this
            value (e.g. ``library`` or ``feed``).
    """

    source_types: list[str] = field(default_factory=list)
    source_ids: list[str] = field(default_factory=list)
    partition: str | None = None

    def is_empty(self) -> bool:
        return not self.source_types and not self.source_ids and self.partition is None


@dataclass
class Entity:
    id: str
    name: str
    normalized_name: str
    type: str
    description: str | None = None
    aliases: list[str] = field(default_factory=list)
    mention_count: int = 1
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Relation:
    id: str
    source_entity_id: str
    target_entity_id: str
    relation_type: str
    strength: int = 1
    evidence_count: int = 1
    created_at: str = ""
    updated_at: str = ""


@dataclass
class EntitySourceLink:
    id: str
    entity_id: str
    source_type: str
    source_id: str
    chunk_id: str | None = None
    created_at: str = ""


@dataclass
class GraphStats:
    entity_count: int = 0
    relation_count: int = 0
    source_count: int = 0
