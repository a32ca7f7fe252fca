"""sqlite-vec virtual table management for chunk embeddings.

One vec0 table, ``vec_chunks``, keyed 1:1 by chunk id. Its dimension and
distance metric are fixed at creation; ensure_vec_table() rebuilds it when
either no longer matches.
"""

from __future__ import annotations

import json
import sqlite3

from loguru import logger

VEC_TABLE = "vec_chunks"
DISTANCE_METRIC = "cosine"

_DIM_PROBE_ID = "__dim_check__"


def vec_table_ddl(dimensions: int) -> str:
    """Return the CREATE statement for a *dimensions*-wide cosine vec table."""
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")
    return (
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {VEC_TABLE} USING vec0("
        f"chunk_id TEXT PRIMARY KEY, "
        f"embedding float[{dimensions}] distance_metric={DISTANCE_METRIC})"
    )


def serialize(embedding: list[float]) -> str:
    """Encode a vector in the JSON form accepted by vec0."""
    return json.dumps([float(x) for x in embedding])


def vec_table_exists(conn: sqlite3.Connection) -> bool:
    return (
        conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
        ).fetchone()
        is not None
    )


def needs_rebuild(conn: sqlite3.Connection, dimensions: int) -> bool:
    """Return True if an existing vec table has the wrong metric or dimension.

    The metric is read from the stored DDL; the dimension is checked with a
    probe insert of a zero vector that is removed again immediately.
    """
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()
    if row is None:
        return False

    if f"distance_metric={DISTANCE_METRIC}" not in (row[0] or ""):
        logger.warning("{} is missing distance_metric={}, rebuilding", VEC_TABLE, DISTANCE_METRIC)
        return True

    try:
        conn.execute(f"DELETE FROM {VEC_TABLE} WHERE chunk_id = ?", (_DIM_PROBE_ID,))
        conn.execute(
            f"INSERT INTO {VEC_TABLE}(chunk_id, embedding) VALUES (?, ?)",
            (_DIM_PROBE_ID, serialize([0.0] * dimensions)),
        )
        conn.execute(f"DELETE FROM {VEC_TABLE} WHERE chunk_id = ?", (_DIM_PROBE_ID,))
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        logger.warning(
            "{} dimension probe failed ({}), rebuilding for {} dimensions",
            VEC_TABLE,
            exc,
            dimensions,
        )
        return True
    return False


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int) -> bool:
    """Create ``vec_chunks`` for *dimensions*, rebuilding it if it is stale.

    On rebuild the old table is dropped and every ``done`` chunk goes back
    to ``pending`` so it is embedded again.

    Args:
        conn: Active connection with sqlite-vec loaded and the chunk table present.
        dimensions: Embedding vector dimension D.

    Returns:
        True if an existing table was dropped and chunk statuses reset.
    """
    ddl = vec_table_ddl(dimensions)
    rebuilt = False

    if vec_table_exists(conn) and needs_rebuild(conn, dimensions):
        with conn:
            conn.execute(f"DROP TABLE {VEC_TABLE}")
            cur = conn.execute(
                "UPDATE chunks SET embedding_status = 'pending', embedding_model = NULL "
                "WHERE embedding_status = 'done'"
            )
        logger.warning(
            "Dropped {}; reset {} embedded chunks to pending", VEC_TABLE, cur.rowcount
        )
        rebuilt = True

    conn.execute(ddl)
    conn.commit()
    return rebuilt
