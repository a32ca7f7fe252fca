"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quarry.config import EmbeddingCredentials
from quarry.db.connection import Database
from quarry.db.graph_store import GraphStore
from quarry.db.index_store import IndexStore
from quarry.db.migrations import initialize
from quarry.errors import EmbeddingError
from quarry.ingest.embedder import BatchEmbeddingResult, EmbeddingResult

TEST_DIMS = 4


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def index_store(tmp_path):
    """IndexStore on a fresh file DB; vector ops only if sqlite-vec loaded."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    store = IndexStore(conn, TEST_DIMS, vec_available=db.vec_available)
    store.init_tables()
    yield store
    conn.close()


@pytest.fixture
def vec_store(index_store):
    """IndexStore that is guaranteed to have sqlite-vec loaded."""
    if not index_store.vec_available:
        pytest.skip("sqlite-vec extension not loadable in this interpreter")
    return index_store


@pytest.fixture
def degraded_store(tmp_path):
    """IndexStore running without the vector extension."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    store = IndexStore(conn, TEST_DIMS, vec_available=False)
    store.init_tables()
    yield store
    conn.close()


@pytest.fixture
def graph_store(tmp_db):
    return GraphStore(tmp_db)


@pytest.fixture
def credentials():
    return EmbeddingCredentials(
        api_key="test-key",
        base_url=None,
        model_id="openai/text-embedding-3-small",
        dimensions=TEST_DIMS,
    )


class FakeEmbedder:
    """Stands in for Embedder: deterministic vectors, optional failure, call log."""

    model = "fake/embedding"

    def __init__(self, vectors=None, fail=False, on_call=None):
        self.vectors = vectors or {}
        self.fail = fail
        self.on_call = on_call
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        return [1.0, float(len(text) % 7) + 1.0, 0.5, 0.25]

    async def embed(self, text):
        if self.fail:
            raise EmbeddingError("provider down")
        return EmbeddingResult(vector=self.vector_for(text), token_count=1)

    async def embed_batch(self, texts):
        if self.on_call is not None:
            self.on_call()
        if self.fail:
            raise EmbeddingError("provider down")
        self.calls.append(list(texts))
        return BatchEmbeddingResult(
            vectors=[self.vector_for(t) for t in texts], total_tokens=len(texts)
        )


@pytest.fixture
def make_embedder():
    return FakeEmbedder
