"""Tests for quarry status, quarry version and the root callback."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from quarry.cli.main import app

runner = CliRunner()


def _ingest(tmp: Path, name: str, text: str) -> None:
    (tmp / f"{name}.txt").write_text(text, encoding="utf-8")
    result = runner.invoke(app, ["ingest", f"{name}.txt", "--no-graph"])
    assert result.exit_code == 0, result.output


# ---------------------------------------------------------------------------
# quarry --version / version
# ---------------------------------------------------------------------------


def test_version_flag_exits_zero() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "quarry" in result.output.lower()


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("quarry ")


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for cmd in ("ingest", "search", "status", "remove", "pending", "backfill", "graph"):
        assert cmd in result.output


# ---------------------------------------------------------------------------
# quarry status
# ---------------------------------------------------------------------------


def test_status_without_db_exits_1(cli_env: Path) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1
    assert "no database" in result.output.lower()


def test_status_totals(cli_env: Path) -> None:
    _ingest(cli_env, "a", "Alpha text.")
    _ingest(cli_env, "b", "Beta text.\n\nMore beta.")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Sources:   2" in result.output
    assert "pending 2" in result.output
    assert "not configured" in result.output


def test_status_single_source(cli_env: Path) -> None:
    _ingest(cli_env, "a", "Alpha text.")
    result = runner.invoke(app, ["status", "--id", "a"])
    assert result.exit_code == 0
    assert "article:a" in result.output
    assert "Chunks:    1" in result.output


def test_status_unknown_source_is_not_an_error(cli_env: Path) -> None:
    _ingest(cli_env, "a", "Alpha text.")
    result = runner.invoke(app, ["status", "--type", "book", "--id", "zzz"])
    assert result.exit_code == 0
    assert "not in the index" in result.output


def test_invalid_project_config_exits_1(cli_env: Path) -> None:
    _ingest(cli_env, "a", "Alpha text.")
    (cli_env / "quarry.yaml").write_text("retrieval:\n  mode: fuzzy\n", encoding="utf-8")
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 1
    assert "invalid configuration" in result.output.lower()
