"""Knowledge-Graph Store — entities, aliases, relations and entity↔source links.

Owns entity resolution: an extracted mention is matched by normalized name,
then by alias, and either merged into the existing entity or created.
Relations are unique per (source, target, type) and accumulate strength.

Mutating methods commit immediately unless called inside
``GraphStore.transaction()``, in which case the outermost block commits
(or rolls back on error).
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from quarry.db.models import Entity, EntitySourceLink, GraphStats, Relation

_ENTITY_COLUMNS = (
    "id, name, normalized_name, type, description, aliases_json, mention_count, "
    "created_at, updated_at"
)
_RELATION_COLUMNS = (
    "id, source_entity_id, target_entity_id, relation_type, strength, evidence_count, "
    "created_at, updated_at"
)

_SEARCH_LIMIT = 50


def normalize_name(name: str) -> str:
    """Case- and whitespace-fold *name* into the entity lookup key."""
    return " ".join(name.split()).lower()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class ResolvedEntity:
    """Outcome of resolving one extracted mention."""

    entity: Entity
    created: bool


class GraphStore:
    """Data access layer for the knowledge graph.

    Wraps an open sqlite3.Connection owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several mutations into one commit."""
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self._conn.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self._conn.commit()

    def _commit(self) -> None:
        if self._depth == 0:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def find_entity_by_name(self, name: str) -> Entity | None:
        """Exact lookup on the normalized name."""
        row = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE normalized_name = ?",
            (normalize_name(name),),
        ).fetchone()
        return _row_to_entity(row) if row else None

    def find_entity_by_alias(self, alias: str) -> Entity | None:
        """Return the first entity (by creation) listing *alias* among its aliases."""
        key = normalize_name(alias)
        if not key:
            return None
        rows = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities "
            "WHERE aliases_json != '[]' ORDER BY created_at ASC, rowid ASC"
        ).fetchall()
        for row in rows:
            aliases = _load_aliases(row["aliases_json"])
            if any(normalize_name(a) == key for a in aliases):
                return _row_to_entity(row)
        return None

    def create_entity(
        self,
        name: str,
        type: str,
        description: str | None = None,
        aliases: list[str] | None = None,
    ) -> Entity:
        """Insert a new entity with mention_count = 1."""
        now = _now()
        clean_name = " ".join(name.split())
        normalized = normalize_name(name)
        entity = Entity(
            id=str(uuid.uuid4()),
            name=clean_name,
            normalized_name=normalized,
            type=type,
            description=description or None,
            aliases=merge_aliases([], aliases or [], exclude=normalized),
            mention_count=1,
            created_at=now,
            updated_at=now,
        )
        self._conn.execute(
            f"INSERT INTO entities ({_ENTITY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entity.id,
                entity.name,
                entity.normalized_name,
                entity.type,
                entity.description,
                json.dumps(entity.aliases, ensure_ascii=False),
                entity.mention_count,
                now,
                now,
            ),
        )
        self._commit()
        return entity

    def update_entity(
        self,
        entity_id: str,
        *,
        description: str | None = None,
        aliases: list[str] | None = None,
        type: str | None = None,
    ) -> None:
        """Update the given fields; fields left as None are unchanged."""
        sets = ["updated_at = ?"]
        values: list[object] = [_now()]
        if description is not None:
            sets.append("description = ?")
            values.append(description)
        if aliases is not None:
            sets.append("aliases_json = ?")
            values.append(json.dumps(aliases, ensure_ascii=False))
        if type is not None:
            sets.append("type = ?")
            values.append(type)
        values.append(entity_id)
        self._conn.execute(f"UPDATE entities SET {', '.join(sets)} WHERE id = ?", values)
        self._commit()

    def increment_mention_count(self, entity_id: str) -> None:
        self._conn.execute(
            "UPDATE entities SET mention_count = mention_count + 1, updated_at = ? WHERE id = ?",
            (_now(), entity_id),
        )
        self._commit()

    def get_entity(self, entity_id: str) -> Entity | None:
        row = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return _row_to_entity(row) if row else None

    def get_entities(self, entity_ids: list[str]) -> list[Entity]:
        if not entity_ids:
            return []
        rows = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id IN ({_placeholders(len(entity_ids))})",
            entity_ids,
        ).fetchall()
        return [_row_to_entity(r) for r in rows]

    def resolve_entity(
        self,
        name: str,
        type: str,
        description: str | None,
        aliases: list[str],
        source_type: str,
        source_id: str,
        chunk_id: str | None = None,
    ) -> ResolvedEntity:
        """Merge an extracted mention into the graph and link it to its source.

        Lookup order is normalized name, then alias. A hit bumps
        mention_count, keeps the longer description and unions aliases;
        a miss creates the entity. Either way the source link is added.
        """
        existing = self.find_entity_by_name(name) or self.find_entity_by_alias(name)

        if existing is None:
            entity = self.create_entity(name, type, description, aliases)
            self.add_entity_source(entity.id, source_type, source_id, chunk_id)
            return ResolvedEntity(entity=entity, created=True)

        self.increment_mention_count(existing.id)
        self.add_entity_source(existing.id, source_type, source_id, chunk_id)

        new_description = None
        if description and len(description) > len(existing.description or ""):
            new_description = description

        merged = merge_aliases(existing.aliases, aliases, exclude=existing.normalized_name)
        new_aliases = merged if len(merged) != len(existing.aliases) else None

        if new_description is not None or new_aliases is not None:
            self.update_entity(existing.id, description=new_description, aliases=new_aliases)

        return ResolvedEntity(entity=self.get_entity(existing.id) or existing, created=False)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def find_relation(
        self, source_entity_id: str, target_entity_id: str, relation_type: str
    ) -> Relation | None:
        row = self._conn.execute(
            f"""
            SELECT {_RELATION_COLUMNS} FROM entity_relations
            WHERE source_entity_id = ? AND target_entity_id = ? AND relation_type = ?
            """,
            (source_entity_id, target_entity_id, relation_type),
        ).fetchone()
        return _row_to_relation(row) if row else None

    def create_relation(
        self, source_entity_id: str, target_entity_id: str, relation_type: str
    ) -> Relation:
        if source_entity_id == target_entity_id:
            raise ValueError("self-referencing relations are not stored")
        now = _now()
        relation = Relation(
            id=str(uuid.uuid4()),
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relation_type=relation_type,
            strength=1,
            evidence_count=1,
            created_at=now,
            updated_at=now,
        )
        self._conn.execute(
            f"INSERT INTO entity_relations ({_RELATION_COLUMNS}) VALUES (?, ?, ?, ?, 1, 1, ?, ?)",
            (relation.id, source_entity_id, target_entity_id, relation_type, now, now),
        )
        self._commit()
        return relation

    def increment_relation_strength(self, relation_id: str) -> None:
        self._conn.execute(
            """
            UPDATE entity_relations
            SET strength = strength + 1, evidence_count = evidence_count + 1, updated_at = ?
            WHERE id = ?
            """,
            (_now(), relation_id),
        )
        self._commit()

    def resolve_relation(
        self, source_entity_id: str, target_entity_id: str, relation_type: str
    ) -> bool | None:
        """Create or strengthen a relation.

        Returns True if created, False if an existing one was strengthened,
        None if skipped as a self-loop.
        """
        if source_entity_id == target_entity_id:
            return None
        existing = self.find_relation(source_entity_id, target_entity_id, relation_type)
        if existing is not None:
            self.increment_relation_strength(existing.id)
            return False
        self.create_relation(source_entity_id, target_entity_id, relation_type)
        return True

    def get_entity_relations(self, entity_id: str) -> list[Relation]:
        """All relations where *entity_id* is source or target."""
        rows = self._conn.execute(
            f"""
            SELECT {_RELATION_COLUMNS} FROM entity_relations
            WHERE source_entity_id = ? OR target_entity_id = ?
            ORDER BY strength DESC, created_at ASC
            """,
            (entity_id, entity_id),
        ).fetchall()
        return [_row_to_relation(r) for r in rows]

    def get_relations_between(self, entity_ids: list[str]) -> list[Relation]:
        """Relations whose endpoints both lie in *entity_ids*."""
        if not entity_ids:
            return []
        ph = _placeholders(len(entity_ids))
        rows = self._conn.execute(
            f"""
            SELECT {_RELATION_COLUMNS} FROM entity_relations
            WHERE source_entity_id IN ({ph}) AND target_entity_id IN ({ph})
            ORDER BY strength DESC
            """,
            [*entity_ids, *entity_ids],
        ).fetchall()
        return [_row_to_relation(r) for r in rows]

    # ------------------------------------------------------------------
    # Entity ↔ source links
    # ------------------------------------------------------------------

    def add_entity_source(
        self, entity_id: str, source_type: str, source_id: str, chunk_id: str | None = None
    ) -> bool:
        """Link an entity to a source. Returns False if the link already existed."""
        cur = self._conn.execute(
            """
            INSERT OR IGNORE INTO entity_sources
                (id, entity_id, source_type, source_id, chunk_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (str(uuid.uuid4()), entity_id, source_type, source_id, chunk_id, _now()),
        )
        self._commit()
        return cur.rowcount > 0

    def get_entity_sources(self, entity_id: str) -> list[EntitySourceLink]:
        rows = self._conn.execute(
            """
            SELECT id, entity_id, source_type, source_id, chunk_id, created_at
            FROM entity_sources WHERE entity_id = ?
            ORDER BY created_at ASC
            """,
            (entity_id,),
        ).fetchall()
        return [
            EntitySourceLink(
                id=r["id"],
                entity_id=r["entity_id"],
                source_type=r["source_type"],
                source_id=r["source_id"],
                chunk_id=r["chunk_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def get_entity_source_count(self, entity_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM entity_sources WHERE entity_id = ?", (entity_id,)
        ).fetchone()[0]

    def get_entities_by_source(self, source_type: str, source_id: str) -> list[Entity]:
        rows = self._conn.execute(
            f"""
            SELECT DISTINCT {', '.join('e.' + c.strip() for c in _ENTITY_COLUMNS.split(','))}
            FROM entities e
            INNER JOIN entity_sources es ON e.id = es.entity_id
            WHERE es.source_type = ? AND es.source_id = ?
            ORDER BY e.mention_count DESC
            """,
            (source_type, source_id),
        ).fetchall()
        return [_row_to_entity(r) for r in rows]

    # ------------------------------------------------------------------
    # Graph queries
    # ------------------------------------------------------------------

    def get_top_entities(self, limit: int = 50) -> list[Entity]:
        rows = self._conn.execute(
            f"SELECT {_ENTITY_COLUMNS} FROM entities "
            "ORDER BY mention_count DESC, created_at ASC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_entity(r) for r in rows]

    def get_subgraph(self, entity_id: str, depth: int = 2) -> tuple[list[Entity], list[Relation]]:
        """Breadth-first expansion from *entity_id* up to *depth* hops.

        Nodes reached on the last hop are included but not expanded.
        """
        visited: list[str] = []
        seen: set[str] = set()
        edges: dict[str, Relation] = {}
        frontier = [entity_id]

        for _ in range(max(depth, 0)):
            if not frontier:
                break
            next_frontier: list[str] = []
            for node_id in frontier:
                if node_id in seen:
                    continue
                seen.add(node_id)
                visited.append(node_id)
                for rel in self.get_entity_relations(node_id):
                    edges.setdefault(rel.id, rel)
                    peer = (
                        rel.target_entity_id
                        if rel.source_entity_id == node_id
                        else rel.source_entity_id
                    )
                    if peer not in seen:
                        next_frontier.append(peer)
            frontier = next_frontier

        for node_id in frontier:
            if node_id not in seen:
                seen.add(node_id)
                visited.append(node_id)

        by_id = {e.id: e for e in self.get_entities(visited)}
        nodes = [by_id[i] for i in visited if i in by_id]
        return nodes, list(edges.values())

    def search_entities(self, query: str, type: str | None = None) -> list[Entity]:
        """Substring match on normalized name or any alias, most-mentioned first.

        ``%`` and ``_`` in *query* match literally.
        """
        pattern = f"%{_escape_like(normalize_name(query))}%"
        sql = (
            f"SELECT {_ENTITY_COLUMNS} FROM entities "
            "WHERE (normalized_name LIKE ? ESCAPE '\\' OR EXISTS ("
            "SELECT 1 FROM json_each(entities.aliases_json) AS alias "
            "WHERE lower(alias.value) LIKE ? ESCAPE '\\'))"
        )
        params: list[object] = [pattern, pattern]
        if type:
            sql += " AND type = ?"
            params.append(type)
        sql += " ORDER BY mention_count DESC LIMIT ?"
        params.append(_SEARCH_LIMIT)
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_entity(r) for r in rows]

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_entities_by_source(self, source_type: str, source_id: str) -> int:
        """Remove a source from the graph.

        Links to the source are deleted. Entities left without any source are
        deleted together with their relations; entities still referenced
        elsewhere have their mention_count decremented (never below 1).

        Returns the number of entities deleted.
        """
        deleted = 0
        with self.transaction():
            entity_ids = [
                r[0]
                for r in self._conn.execute(
                    "SELECT DISTINCT entity_id FROM entity_sources "
                    "WHERE source_type = ? AND source_id = ?",
                    (source_type, source_id),
                ).fetchall()
            ]
            self._conn.execute(
                "DELETE FROM entity_sources WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            now = _now()
            for entity_id in entity_ids:
                if self.get_entity_source_count(entity_id) == 0:
                    self._conn.execute(
                        "DELETE FROM entity_relations "
                        "WHERE source_entity_id = ? OR target_entity_id = ?",
                        (entity_id, entity_id),
                    )
                    self._conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
                    deleted += 1
                else:
                    self._conn.execute(
                        "UPDATE entities SET mention_count = MAX(mention_count - 1, 1), "
                        "updated_at = ? WHERE id = ?",
                        (now, entity_id),
                    )
        return deleted

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        entities = self._conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0]
        relations = self._conn.execute("SELECT COUNT(*) FROM entity_relations").fetchone()[0]
        sources = self._conn.execute(
            "SELECT COUNT(*) FROM (SELECT DISTINCT source_type, source_id FROM entity_sources)"
        ).fetchone()[0]
        return GraphStats(entity_count=entities, relation_count=relations, source_count=sources)


# ------------------------------------------------------------------
# Alias helpers
# ------------------------------------------------------------------


def merge_aliases(existing: list[str], incoming: list[str], *, exclude: str) -> list[str]:
    """Union *incoming* into *existing*, case-insensitively, keeping first spellings.

    Blank aliases and aliases equal to the entity's own normalized name are dropped.
    """
    merged: list[str] = []
    keys: set[str] = {exclude}
    for alias in [*existing, *incoming]:
        clean = " ".join(alias.split())
        key = clean.lower()
        if not clean or key in keys:
            continue
        keys.add(key)
        merged.append(clean)
    return merged


def _load_aliases(raw: str | None) -> list[str]:
    try:
        data = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    return [str(a) for a in data] if isinstance(data, list) else []


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        normalized_name=row["normalized_name"],
        type=row["type"],
        description=row["description"],
        aliases=_load_aliases(row["aliases_json"]),
        mention_count=row["mention_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_relation(row: sqlite3.Row) -> Relation:
    return Relation(
        id=row["id"],
        source_entity_id=row["source_entity_id"],
        target_entity_id=row["target_entity_id"],
        relation_type=row["relation_type"],
        strength=row["strength"],
        evidence_count=row["evidence_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
