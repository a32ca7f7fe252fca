"""Forward-only migration runner for Quarry's relational schema.

The vector table (vec_chunks) is NOT migration-managed — its dimension and
metric are checked on every start by quarry.db.vectors.ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
    id                TEXT PRIMARY KEY,
    source_type       TEXT NOT NULL,
    source_id         TEXT NOT NULL,
    chunk_index       INTEGER NOT NULL,
    content           TEXT NOT NULL,
    token_count       INTEGER,
    metadata_json     TEXT,
    embedding_model   TEXT,
    embedding_status  TEXT NOT NULL DEFAULT 'pending',
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_type, source_id);
CREATE INDEX IF NOT EXISTS idx_chunks_status ON chunks(embedding_status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_chunks_source_index
    ON chunks(source_type, source_id, chunk_index);

CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    source_type UNINDEXED,
    source_id UNINDEXED,
    title,
    content,
    tokenize='porter unicode61'
);

CREATE TABLE IF NOT EXISTS entities (
    id               TEXT PRIMARY KEY,
    name             TEXT NOT NULL,
    normalized_name  TEXT NOT NULL,
    type             TEXT NOT NULL,
    description      TEXT,
    aliases_json     TEXT NOT NULL DEFAULT '[]',
    mention_count    INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_normalized_name ON entities(normalized_name);
CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
CREATE INDEX IF NOT EXISTS idx_entities_mention_count ON entities(mention_count DESC);

CREATE TABLE IF NOT EXISTS entity_relations (
    id                TEXT PRIMARY KEY,
    source_entity_id  TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_entity_id  TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    relation_type     TEXT NOT NULL,
    strength          INTEGER NOT NULL DEFAULT 1,
    evidence_count    INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    CHECK (source_entity_id != target_entity_id)
);

CREATE INDEX IF NOT EXISTS idx_entity_relations_source ON entity_relations(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_entity_relations_target ON entity_relations(target_entity_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_entity_relations_triple
    ON entity_relations(source_entity_id, target_entity_id, relation_type);

CREATE TABLE IF NOT EXISTS entity_sources (
    id           TEXT PRIMARY KEY,
    entity_id    TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    source_type  TEXT NOT NULL,
    source_id    TEXT NOT NULL,
    chunk_id     TEXT,
    created_at   TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_entity_sources_link
    ON entity_sources(entity_id, source_type, source_id);
CREATE INDEX IF NOT EXISTS idx_entity_sources_source ON entity_sources(source_type, source_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the relational schema via the migration runner (idempotent)."""
    run_migrations(conn)
