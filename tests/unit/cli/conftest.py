"""CLI test fixtures: isolated working directory, config and credentials."""

from __future__ import annotations

import sys

import pytest
from loguru import logger

import quarry.config as config_mod


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Run every CLI test in tmp_path with no global config and no API keys."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_mod, "_GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    for name in ("QUARRY_EMBEDDING_API_KEY", "QUARRY_LLM_API_KEY", "QUARRY_EMBEDDING_DIMENSIONS"):
        monkeypatch.delenv(name, raising=False)
    yield tmp_path
    # The CLI points loguru at the runner's captured stderr; restore the default sink.
    logger.remove()
    logger.add(sys.stderr)
