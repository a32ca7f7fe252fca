"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags              (applied by the commands)
  2. Environment variables  (QUARRY_EMBEDDING_MODEL, QUARRY_LLM_FAST_MODEL, ...)
  3. Per-project quarry.yaml
  4. Global ~/.quarry/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

API keys are read from the environment only (QUARRY_EMBEDDING_API_KEY,
QUARRY_LLM_API_KEY). The global config is rejected if it contains any
key that looks like a credential.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from quarry.errors import ConfigError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

EMBEDDING_API_KEY_ENV = "QUARRY_EMBEDDING_API_KEY"
LLM_API_KEY_ENV = "QUARRY_LLM_API_KEY"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Leaves max_tokens, target_size etc. alone.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "llm", "chunking", "retrieval", "extraction", "backfill"]
)

LLMTask = Literal["fast", "smart", "cheap"]

__all__ = [
    "BackfillCfg",
    "ChunkingCfg",
    "ConfigError",
    "EmbeddingCfg",
    "EmbeddingCredentials",
    "ExtractionCfg",
    "LLMCfg",
    "QuarryConfig",
    "RetrievalCfg",
    "ensure_global_config",
    "get_embedding_config",
    "get_llm_api_key",
    "get_llm_model",
    "load_config",
]


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (quarry.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        api_base: Optional base URL of an OpenAI-compatible embedding endpoint.
        dimensions: Vector dimension D of the index generation.
        max_parallel_calls: Upper bound on in-flight embedding requests.
    """

    model: str = "openai/text-embedding-3-small"
    api_base: str | None = None
    dimensions: int = 1536
    max_parallel_calls: int = 2


@dataclass
class LLMCfg:
    """Chat model per task tier (quarry.yaml: llm:)."""

    fast: str = "openrouter/google/gemini-2.0-flash-001"
    smart: str = "openrouter/anthropic/claude-sonnet-4"
    cheap: str = "openrouter/google/gemini-2.0-flash-001"
    api_base: str | None = None


@dataclass
class ChunkingCfg:
    """Chunk sizing in estimated tokens (quarry.yaml: chunking:)."""

    target_size: int = 400
    min_size: int = 100
    overlap: int = 50


@dataclass
class RetrievalCfg:
    """Hybrid retrieval configuration (quarry.yaml: retrieval:)."""

    top_k: int = 10
    rrf_k: int = 60
    mode: str = "hybrid"  # hybrid | vector | keyword
    rerank: bool = False


@dataclass
class ExtractionCfg:
    """Entity extraction configuration (quarry.yaml: extraction:)."""

    max_batch_chars: int = 9_000
    task: str = "fast"


@dataclass
class BackfillCfg:
    """Corpus backfill configuration (quarry.yaml: backfill:)."""

    batch_size: int = 50


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    llm: LLMCfg = field(default_factory=LLMCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    extraction: ExtractionCfg = field(default_factory=ExtractionCfg)
    backfill: BackfillCfg = field(default_factory=BackfillCfg)


@dataclass
class EmbeddingCredentials:
    """Everything the Embedder needs to reach the embedding API."""

    api_key: str
    base_url: str | None
    model_id: str
    dimensions: int


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _credential_keys(data: Any, prefix: str = "") -> list[str]:
    """Dotted paths of every key in *data* that looks like a credential."""
    if not isinstance(data, dict):
        return []
    found: list[str] = []
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _API_KEY_RE.search(str(key)):
            found.append(dotted)
        found.extend(_credential_keys(value, dotted))
    return found


def _read_layer(path: Path, *, allow_credentials: bool) -> dict[str, Any]:
    """Parse one YAML layer; an absent file is an empty layer."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    if not allow_credentials and (bad := _credential_keys(data)):
        raise ConfigError(
            f"{path} has a forbidden key '{bad[0]}'. Credentials live in the environment "
            f"({EMBEDDING_API_KEY_ENV}, {LLM_API_KEY_ENV}), never in config files."
        )
    for key in sorted(set(data) - _KNOWN_SECTIONS):
        warnings.warn(f"{path}: unknown section '{key}' is ignored", UserWarning, stacklevel=3)
    return data


def _validate(cfg: QuarryConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.max_parallel_calls < 1:
        raise ConfigError(
            f"embedding.max_parallel_calls must be >= 1, got {cfg.embedding.max_parallel_calls}"
        )
    if cfg.chunking.target_size < 1 or cfg.chunking.min_size < 0 or cfg.chunking.overlap < 0:
        raise ConfigError("chunking sizes must be positive (target_size >= 1, min_size/overlap >= 0)")
    if cfg.chunking.min_size > cfg.chunking.target_size:
        raise ConfigError(
            f"chunking.min_size ({cfg.chunking.min_size}) must not exceed "
            f"chunking.target_size ({cfg.chunking.target_size})"
        )
    for name, value in (
        ("retrieval.top_k", cfg.retrieval.top_k),
        ("retrieval.rrf_k", cfg.retrieval.rrf_k),
        ("extraction.max_batch_chars", cfg.extraction.max_batch_chars),
        ("backfill.batch_size", cfg.backfill.batch_size),
    ):
        if value < 1:
            raise ConfigError(f"{name} must be >= 1, got {value}")
    if cfg.retrieval.mode not in ("hybrid", "vector", "keyword"):
        raise ConfigError(
            f"retrieval.mode must be one of hybrid, vector, keyword, got '{cfg.retrieval.mode}'"
        )
    if cfg.extraction.task not in ("fast", "smart", "cheap"):
        raise ConfigError(f"extraction.task must be fast, smart or cheap, got '{cfg.extraction.task}'")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            api_base=e.get("api_base") or cfg.embedding.api_base,
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_parallel_calls=int(
                e.get("max_parallel_calls", cfg.embedding.max_parallel_calls)
            ),
        )

    if "llm" in data:
        m = data["llm"] or {}
        cfg.llm = LLMCfg(
            fast=str(m.get("fast", cfg.llm.fast)),
            smart=str(m.get("smart", cfg.llm.smart)),
            cheap=str(m.get("cheap", cfg.llm.cheap)),
            api_base=m.get("api_base") or cfg.llm.api_base,
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            target_size=int(c.get("target_size", cfg.chunking.target_size)),
            min_size=int(c.get("min_size", cfg.chunking.min_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            rrf_k=int(r.get("rrf_k", cfg.retrieval.rrf_k)),
            mode=str(r.get("mode", cfg.retrieval.mode)),
            rerank=bool(r.get("rerank", cfg.retrieval.rerank)),
        )

    if "extraction" in data:
        x = data["extraction"] or {}
        cfg.extraction = ExtractionCfg(
            max_batch_chars=int(x.get("max_batch_chars", cfg.extraction.max_batch_chars)),
            task=str(x.get("task", cfg.extraction.task)),
        )

    if "backfill" in data:
        b = data["backfill"] or {}
        cfg.backfill = BackfillCfg(
            batch_size=int(b.get("batch_size", cfg.backfill.batch_size)),
        )

    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides."""
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if base := os.environ.get("QUARRY_EMBEDDING_API_BASE"):
        cfg.embedding.api_base = base
    if dims := os.environ.get("QUARRY_EMBEDDING_DIMENSIONS"):
        try:
            cfg.embedding.dimensions = int(dims)
        except ValueError as exc:
            raise ConfigError(
                f"QUARRY_EMBEDDING_DIMENSIONS must be an integer, got '{dims}'"
            ) from exc
    if model := os.environ.get("QUARRY_LLM_FAST_MODEL"):
        cfg.llm.fast = model
    if model := os.environ.get("QUARRY_LLM_SMART_MODEL"):
        cfg.llm.smart = model
    if model := os.environ.get("QUARRY_LLM_CHEAP_MODEL"):
        cfg.llm.cheap = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load and return a merged *QuarryConfig*.

    The global file is merged under quarry.yaml, then QUARRY_* environment
    variables are applied. CLI flags are the caller's business.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If the global config contains API-key-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged = _deep_merge(
        _read_layer(global_path, allow_credentials=False),
        _read_layer(search_dir / _PROJECT_CONFIG_NAME, allow_credentials=True),
    )

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def get_embedding_config(cfg: QuarryConfig) -> EmbeddingCredentials | None:
    """Return embedding credentials, or None when no API key is configured.

    None switches every embedding-dependent operation into degraded mode.
    """
    api_key = os.environ.get(EMBEDDING_API_KEY_ENV, "").strip()
    if not api_key:
        return None
    return EmbeddingCredentials(
        api_key=api_key,
        base_url=cfg.embedding.api_base,
        model_id=cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
    )


def get_llm_api_key() -> str | None:
    """Return the chat-model API key from the environment, or None."""
    return os.environ.get(LLM_API_KEY_ENV, "").strip() or None


def get_llm_model(cfg: QuarryConfig, task: LLMTask) -> str:
    """Return the LiteLLM model string configured for *task*."""
    if task not in ("fast", "smart", "cheap"):
        raise ConfigError(f"Unknown model task '{task}' (use fast, smart or cheap)")
    return getattr(cfg.llm, task)


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.quarry/config.yaml`` with defaults if it does not exist.

    The parent directory is created with mode 0o700 and the file with 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Quarry global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            f"#   export {EMBEDDING_API_KEY_ENV}=...\n"
            f"#   export {LLM_API_KEY_ENV}=...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "llm:\n"
            "  fast: openrouter/google/gemini-2.0-flash-001\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
