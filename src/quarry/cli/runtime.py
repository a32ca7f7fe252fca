"""Wiring shared by the CLI commands: open the database and build services from config."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_config, err_no_db
from quarry.config import (
    QuarryConfig,
    get_embedding_config,
    get_llm_api_key,
    get_llm_model,
    load_config,
)
from quarry.db.connection import Database
from quarry.db.graph_store import GraphStore
from quarry.db.index_store import IndexStore
from quarry.errors import ConfigError
from quarry.graph.extractor import EntityExtractor
from quarry.graph.pipeline import KGIngestionPipeline
from quarry.graph.service import KGService
from quarry.ingest.chunker import Chunker
from quarry.ingest.embedder import Embedder
from quarry.ingest.pipeline import IngestionPipeline
from quarry.rag.reranker import LocalReranker
from quarry.rag.retriever import HybridRetriever

DEFAULT_DB = Path(".quarry.db")


@dataclass
class Runtime:
    conn: sqlite3.Connection
    cfg: QuarryConfig
    index: IndexStore
    graph: GraphStore
    embedder: Embedder | None

    def pipeline(self) -> IngestionPipeline:
        c = self.cfg.chunking
        chunker = Chunker(c.target_size, c.min_size, c.overlap)
        return IngestionPipeline(self.index, chunker, self.embedder)

    def retriever(self, rerank: bool | None = None) -> HybridRetriever:
        use_rerank = self.cfg.retrieval.rerank if rerank is None else rerank
        return HybridRetriever(
            self.index,
            self.embedder,
            LocalReranker() if use_rerank else None,
            rrf_k=self.cfg.retrieval.rrf_k,
        )

    def kg_pipeline(self) -> KGIngestionPipeline | None:
        """None when no LLM API key is configured."""
        api_key = get_llm_api_key()
        if api_key is None:
            return None
        extractor = EntityExtractor(
            get_llm_model(self.cfg, self.cfg.extraction.task),  # type: ignore[arg-type]
            self.cfg.extraction.max_batch_chars,
            api_key=api_key,
            api_base=self.cfg.llm.api_base,
        )
        return KGIngestionPipeline(self.graph, extractor)

    def kg_service(self) -> KGService:
        return KGService(self.graph)

    def close(self) -> None:
        self.conn.close()


def open_runtime(db_path: Path, cfg: QuarryConfig) -> Runtime:
    """Connect, run migrations, check the vector table and build the embedder."""
    database = Database(db_path)
    conn = database.connect()
    credentials = get_embedding_config(cfg)
    index = IndexStore(conn, cfg.embedding.dimensions, vec_available=database.vec_available)
    index.init_tables()
    embedder = (
        Embedder(credentials, max_parallel_calls=cfg.embedding.max_parallel_calls)
        if credentials is not None
        else None
    )
    return Runtime(conn=conn, cfg=cfg, index=index, graph=GraphStore(conn), embedder=embedder)


def load_cfg_or_exit(console: Console) -> QuarryConfig:
    """load_config(), rendering a ConfigError as an actionable message and exit code 1."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_existing_or_exit(db_path: Path, console: Console) -> Runtime:
    """Like open_runtime(), but exits with code 1 if *db_path* does not exist."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return open_runtime(db_path, load_cfg_or_exit(console))
