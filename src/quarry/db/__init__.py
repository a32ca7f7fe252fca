"""Quarry database layer."""

from quarry.db.connection import Database
from quarry.db.graph_store import GraphStore
from quarry.db.index_store import IndexStore
from quarry.db.migrations import MIGRATIONS, initialize, run_migrations
from quarry.db.vectors import ensure_vec_table, vec_table_ddl

__all__ = [
    "Database",
    "GraphStore",
    "IndexStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "vec_table_ddl",
]
