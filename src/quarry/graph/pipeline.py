"""KG ingestion pipeline — extract entities/relations from chunks and merge them into the graph.

Extraction finishes before the first write, and all writes for one source
share a single transaction: a failed ingest leaves the graph unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from quarry.db.graph_store import GraphStore, normalize_name
from quarry.graph.extractor import EntityExtractor, ExtractInput, ExtractionResult


@dataclass
class KGIngestResult:
    entities_created: int = 0
    entities_updated: int = 0
    relations_created: int = 0
    relations_updated: int = 0
    success: bool = True
    error: str | None = None


class KGIngestionPipeline:
    def __init__(self, store: GraphStore, extractor: EntityExtractor) -> None:
        self._store = store
        self._extractor = extractor

    async def ingest(
        self,
        source_type: str,
        source_id: str,
        source_title: str,
        chunks: list[ExtractInput],
    ) -> KGIngestResult:
        """Extract from *chunks* and merge the result into the graph.

        Entities are never replaced: a known entity gains a mention, a
        source link, aliases and possibly a longer description.
        """
        try:
            inputs = [
                ExtractInput(chunk_id=c.chunk_id, content=c.content, source_title=source_title)
                for c in chunks
            ]
            extraction = await self._extractor.extract(inputs)
            if not extraction.entities and not extraction.relations:
                return KGIngestResult()

            chunk_id = chunks[0].chunk_id if chunks else None
            with self._store.transaction():
                result = self._write(extraction, source_type, source_id, chunk_id)
        except Exception as exc:
            logger.exception("KG ingestion failed for {}:{}", source_type, source_id)
            return KGIngestResult(success=False, error=str(exc))

        logger.info(
            "KG ingest {}:{}: {} entities created, {} updated, {} relations created, {} updated",
            source_type,
            source_id,
            result.entities_created,
            result.entities_updated,
            result.relations_created,
            result.relations_updated,
        )
        return result

    def _write(
        self,
        extraction: ExtractionResult,
        source_type: str,
        source_id: str,
        chunk_id: str | None,
    ) -> KGIngestResult:
        result = KGIngestResult()
        name_to_id: dict[str, str] = {}

        for entity in extraction.entities:
            resolved = self._store.resolve_entity(
                entity.name,
                entity.type,
                entity.description,
                entity.aliases,
                source_type,
                source_id,
                chunk_id,
            )
            if resolved.created:
                result.entities_created += 1
            else:
                result.entities_updated += 1
            name_to_id[normalize_name(entity.name)] = resolved.entity.id
            for alias in entity.aliases:
                name_to_id.setdefault(normalize_name(alias), resolved.entity.id)

        for relation in extraction.relations:
            src = name_to_id.get(normalize_name(relation.source))
            dst = name_to_id.get(normalize_name(relation.target))
            if src is None or dst is None:
                logger.debug(
                    "Skipping relation {} -[{}]-> {}: endpoint not extracted",
                    relation.source,
                    relation.type,
                    relation.target,
                )
                continue
            outcome = self._store.resolve_relation(src, dst, relation.type)
            if outcome is True:
                result.relations_created += 1
            elif outcome is False:
                result.relations_updated += 1

        return result

    def remove(self, source_type: str, source_id: str) -> int:
        """Detach a source from the graph. Returns the number of entities deleted."""
        return self._store.delete_entities_by_source(source_type, source_id)
