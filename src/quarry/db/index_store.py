"""Index Store — chunk rows, their vectors and the source-document full-text index.

Single interface for: chunks, embedding status, vec0 KNN search, the
documents_fts keyword index and per-source status rollups. The vector table
is dimension/metric checked on init_tables() and rebuilt when stale.

When sqlite-vec is not available the store runs in degraded mode: chunk
rows are still written and served, vector reads return nothing and
embedding status never leaves ``pending``.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from loguru import logger

from quarry.db.migrations import initialize
from quarry.db.models import Chunk, ChunkInput, SearchFilters, SourceIndexStatus, VectorMatch
from quarry.db.vectors import VEC_TABLE, ensure_vec_table, serialize
from quarry.errors import VectorIndexUnavailableError

_CHUNK_COLUMNS = (
    "id, source_type, source_id, chunk_index, content, token_count, metadata_json, "
    "embedding_model, embedding_status, created_at, updated_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


class IndexStore:
    """Data access layer for chunks and their embeddings.

    Wraps an open sqlite3.Connection owned by the caller.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        dimensions: int,
        *,
        vec_available: bool = True,
        on_vector_reset: Callable[[], None] | None = None,
    ) -> None:
        """Initialise with an open database connection.

        Args:
            conn: Open connection (see quarry.db.connection.Database).
            dimensions: Embedding dimension D of the current index generation.
            vec_available: Whether sqlite-vec was loaded into *conn*.
            on_vector_reset: Called after the vector table was rebuilt, so that
                collaborators can drop relevance scores computed against the
                old vectors.
        """
        self._conn = conn
        self.dimensions = dimensions
        self._vec_available = vec_available
        self._on_vector_reset = on_vector_reset
        self.vector_index_rebuilt = False

    @property
    def vec_available(self) -> bool:
        return self._vec_available

    def init_tables(self) -> None:
        """Create the relational schema and the vector table (rebuilding if stale)."""
        initialize(self._conn)
        if not self._vec_available:
            return
        try:
            self.vector_index_rebuilt = ensure_vec_table(self._conn, self.dimensions)
        except sqlite3.Error:
            logger.exception("Could not create {}; vector search disabled", VEC_TABLE)
            self._vec_available = False
            return
        if self.vector_index_rebuilt and self._on_vector_reset is not None:
            self._on_vector_reset()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def create_chunk(self, chunk: ChunkInput) -> Chunk:
        """Insert a single chunk in ``pending`` state and return it."""
        return self.create_chunks([chunk])[0]

    def create_chunks(self, inputs: Iterable[ChunkInput]) -> list[Chunk]:
        """Insert chunks in one transaction. Returns the new rows in input order."""
        rows: list[Chunk] = []
        with self._conn:
            for item in inputs:
                now = _now()
                row = Chunk(
                    id=str(uuid.uuid4()),
                    source_type=item.source_type,
                    source_id=item.source_id,
                    chunk_index=item.chunk_index,
                    content=item.content,
                    token_count=item.token_count,
                    metadata_json=json.dumps(item.metadata) if item.metadata else None,
                    embedding_status="pending",
                    created_at=now,
                    updated_at=now,
                )
                self._conn.execute(
                    f"INSERT INTO chunks ({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        row.id,
                        row.source_type,
                        row.source_id,
                        row.chunk_index,
                        row.content,
                        row.token_count,
                        row.metadata_json,
                        None,
                        "pending",
                        now,
                        now,
                    ),
                )
                rows.append(row)
        return rows

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, chunk_ids: list[str]) -> list[Chunk]:
        """Return the chunks for *chunk_ids* (unordered; missing ids are skipped)."""
        if not chunk_ids:
            return []
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({_placeholders(len(chunk_ids))})",
            chunk_ids,
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunks_by_source(self, source_type: str, source_id: str) -> list[Chunk]:
        """Return all chunks of a source ordered by chunk_index."""
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks
            WHERE source_type = ? AND source_id = ?
            ORDER BY chunk_index ASC
            """,
            (source_type, source_id),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunk_ids_by_source(self, source_type: str, source_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM chunks WHERE source_type = ? AND source_id = ? ORDER BY chunk_index ASC",
            (source_type, source_id),
        ).fetchall()
        return [r[0] for r in rows]

    def get_pending_chunks(self, limit: int = 100) -> list[Chunk]:
        """Return up to *limit* chunks awaiting embedding, oldest first."""
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks
            WHERE embedding_status = 'pending'
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def update_embedding_status(
        self, chunk_id: str, status: str, embedding_model: str | None = None
    ) -> None:
        self.update_embedding_statuses([chunk_id], status, embedding_model)

    def update_embedding_statuses(
        self, chunk_ids: list[str], status: str, embedding_model: str | None = None
    ) -> None:
        """Set *status* (and the model name) on every chunk in *chunk_ids*."""
        if not chunk_ids:
            return
        now = _now()
        with self._conn:
            self._conn.executemany(
                """
                UPDATE chunks
                SET embedding_status = ?, embedding_model = ?, updated_at = ?
                WHERE id = ?
                """,
                [(status, embedding_model, now, cid) for cid in chunk_ids],
            )

    def reset_failed_chunks(self) -> int:
        """Move every ``failed`` chunk back to ``pending``. Returns the count."""
        with self._conn:
            cur = self._conn.execute(
                "UPDATE chunks SET embedding_status = 'pending', updated_at = ? "
                "WHERE embedding_status = 'failed'",
                (_now(),),
            )
        return cur.rowcount

    def delete_chunks_by_source(self, source_type: str, source_id: str) -> int:
        """Delete a source's chunks, their vectors and its full-text document.

        Returns the number of chunk rows deleted (0 for an unknown source).
        """
        chunk_ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            ).fetchall()
        ]
        with self._conn:
            if chunk_ids and self._vec_available:
                self._conn.execute(
                    f"DELETE FROM {VEC_TABLE} WHERE chunk_id IN ({_placeholders(len(chunk_ids))})",
                    chunk_ids,
                )
            self._conn.execute(
                "DELETE FROM chunks WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            self._conn.execute(
                "DELETE FROM documents_fts WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
        return len(chunk_ids)

    def get_source_index_status(self, source_type: str, source_id: str) -> SourceIndexStatus:
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN embedding_status = 'pending' THEN 1 ELSE 0 END) AS pending,
                SUM(CASE WHEN embedding_status = 'done' THEN 1 ELSE 0 END) AS done,
                SUM(CASE WHEN embedding_status = 'failed' THEN 1 ELSE 0 END) AS failed
            FROM chunks
            WHERE source_type = ? AND source_id = ?
            """,
            (source_type, source_id),
        ).fetchone()
        return SourceIndexStatus(
            total=row["total"] or 0,
            pending=row["pending"] or 0,
            done=row["done"] or 0,
            failed=row["failed"] or 0,
        )

    def get_index_status(self) -> SourceIndexStatus:
        """Embedding status rollup over the whole index."""
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN embedding_status = 'pending' THEN 1 ELSE 0 END) AS pending,
                SUM(CASE WHEN embedding_status = 'done' THEN 1 ELSE 0 END) AS done,
                SUM(CASE WHEN embedding_status = 'failed' THEN 1 ELSE 0 END) AS failed
            FROM chunks
            """
        ).fetchone()
        return SourceIndexStatus(
            total=row["total"] or 0,
            pending=row["pending"] or 0,
            done=row["done"] or 0,
            failed=row["failed"] or 0,
        )

    def count_sources(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM (SELECT DISTINCT source_type, source_id FROM chunks)"
        ).fetchone()[0]

    def filter_chunk_ids(self, chunk_ids: list[str], filters: SearchFilters | None) -> set[str]:
        """Return the subset of *chunk_ids* that satisfies *filters*."""
        if not chunk_ids:
            return set()
        if filters is None or filters.is_empty():
            return set(chunk_ids)

        conditions: list[str] = []
        params: list[object] = []
        if filters.source_types:
            conditions.append(f"source_type IN ({_placeholders(len(filters.source_types))})")
            params.extend(filters.source_types)
        if filters.source_ids:
            conditions.append(f"source_id IN ({_placeholders(len(filters.source_ids))})")
            params.extend(filters.source_ids)
        if filters.partition is not None:
            conditions.append("json_extract(metadata_json, '$.partition') = ?")
            params.append(filters.partition)

        rows = self._conn.execute(
            f"SELECT id FROM chunks WHERE id IN ({_placeholders(len(chunk_ids))}) "
            f"AND {' AND '.join(conditions)}",
            [*chunk_ids, *params],
        ).fetchall()
        return {r[0] for r in rows}

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def insert_embedding(self, chunk_id: str, embedding: list[float]) -> None:
        self.insert_embeddings([(chunk_id, embedding)])

    def insert_embeddings(self, items: list[tuple[str, list[float]]]) -> None:
        """Insert (chunk_id, vector) pairs in one transaction."""
        if not self._vec_available:
            raise VectorIndexUnavailableError("sqlite-vec not available")
        with self._conn:
            self._conn.executemany(
                f"INSERT INTO {VEC_TABLE}(chunk_id, embedding) VALUES (?, ?)",
                [(chunk_id, serialize(vec)) for chunk_id, vec in items],
            )

    def search_vectors(self, embedding: list[float], k: int = 10) -> list[VectorMatch]:
        """Cosine KNN search. Returns matches sorted by ascending distance."""
        if not self._vec_available or k < 1:
            return []
        rows = self._conn.execute(
            f"""
            SELECT chunk_id, distance FROM {VEC_TABLE}
            WHERE embedding MATCH ? AND k = ?
            ORDER BY distance
            """,
            (serialize(embedding), k),
        ).fetchall()
        return [VectorMatch(chunk_id=r["chunk_id"], distance=r["distance"]) for r in rows]

    # ------------------------------------------------------------------
    # Source documents (FTS5)
    # ------------------------------------------------------------------

    def upsert_document(
        self, source_type: str, source_id: str, content: str, title: str | None = None
    ) -> None:
        """Replace the full-text row of a source."""
        with self._conn:
            self._conn.execute(
                "DELETE FROM documents_fts WHERE source_type = ? AND source_id = ?",
                (source_type, source_id),
            )
            self._conn.execute(
                "INSERT INTO documents_fts (source_type, source_id, title, content) "
                "VALUES (?, ?, ?, ?)",
                (source_type, source_id, title or "", content),
            )

    def get_document_title(self, source_type: str, source_id: str) -> str | None:
        """Title stored with the source document, or None if it has none."""
        row = self._conn.execute(
            "SELECT title FROM documents_fts WHERE source_type = ? AND source_id = ?",
            (source_type, source_id),
        ).fetchone()
        if row is None:
            return None
        return row["title"] or None

    def search_documents(self, fts_query: str, limit: int = 20) -> list[tuple[str, str]]:
        """BM25 match over source documents. Returns (source_type, source_id), best first."""
        rows = self._conn.execute(
            """
            SELECT source_type, source_id FROM documents_fts
            WHERE documents_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (fts_query, limit),
        ).fetchall()
        return [(r["source_type"], r["source_id"]) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_type=row["source_type"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        token_count=row["token_count"],
        metadata_json=row["metadata_json"],
        embedding_model=row["embedding_model"],
        embedding_status=row["embedding_status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
