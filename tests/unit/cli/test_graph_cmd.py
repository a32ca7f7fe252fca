"""Tests for the quarry graph subcommands."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from quarry.cli.main import app
from quarry.db.connection import Database
from quarry.db.graph_store import GraphStore
from quarry.db.migrations import initialize

runner = CliRunner()


def _seed_graph(db_path: Path) -> None:
    conn = Database(db_path).connect()
    initialize(conn)
    store = GraphStore(conn)
    rag = store.resolve_entity(
        "RAG", "concept", None, ["retrieval augmented generation"], "article", "a"
    ).entity
    llm = store.resolve_entity("LLM", "technology", None, [], "article", "a").entity
    store.resolve_entity("LLM", "technology", None, [], "article", "b")
    store.resolve_relation(rag.id, llm.id, "applied_in")
    conn.close()


def _completion(payload: dict) -> MagicMock:
    response = MagicMock()
    response.choices[0].message.content = json.dumps(payload)
    return response


def test_graph_without_db_exits_1(cli_env: Path) -> None:
    assert runner.invoke(app, ["graph", "stats"]).exit_code == 1


def test_graph_stats(cli_env: Path) -> None:
    _seed_graph(cli_env / ".quarry.db")
    result = runner.invoke(app, ["graph", "stats"])
    assert result.exit_code == 0, result.output
    assert "Entities: 2" in result.output
    assert "Relations: 1" in result.output
    assert "Sources: 2" in result.output


def test_graph_overview_lists_top_entities(cli_env: Path) -> None:
    _seed_graph(cli_env / ".quarry.db")
    result = runner.invoke(app, ["graph", "overview", "--top", "5"])
    assert result.exit_code == 0, result.output
    assert "LLM" in result.output
    assert "applied_in" in result.output


def test_graph_article(cli_env: Path) -> None:
    _seed_graph(cli_env / ".quarry.db")
    result = runner.invoke(app, ["graph", "article", "--id", "b"])
    assert result.exit_code == 0
    assert "LLM" in result.output
    assert "RAG" not in result.output


def test_graph_article_empty(cli_env: Path) -> None:
    _seed_graph(cli_env / ".quarry.db")
    result = runner.invoke(app, ["graph", "article", "--id", "zzz"])
    assert "No entities." in result.output


def test_graph_search_by_alias(cli_env: Path) -> None:
    _seed_graph(cli_env / ".quarry.db")
    result = runner.invoke(app, ["graph", "search", "augmented"])
    assert result.exit_code == 0
    assert "RAG" in result.output
    none = runner.invoke(app, ["graph", "search", "augmented", "--entity-type", "person"])
    assert "No matching entities." in none.output


def test_ingest_with_llm_key_populates_graph(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("QUARRY_LLM_API_KEY", "sk-llm")
    (cli_env / "note.txt").write_text("React renders JSX.", encoding="utf-8")
    payload = {
        "entities": [
            {"name": "React", "type": "technology", "description": "UI library", "aliases": []},
            {"name": "JSX", "type": "technology", "description": "", "aliases": []},
        ],
        "relations": [{"source": "React", "target": "JSX", "type": "related_to"}],
    }

    with patch("litellm.acompletion", AsyncMock(return_value=_completion(payload))):
        result = runner.invoke(app, ["ingest", "note.txt"])

    assert result.exit_code == 0, result.output
    assert "graph: 2 new" in result.output
    stats = runner.invoke(app, ["graph", "stats"])
    assert "Entities: 2" in stats.output
    assert "Relations: 1" in stats.output
