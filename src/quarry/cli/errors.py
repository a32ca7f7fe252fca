"""Quarry rich error messages — each names the problem and the fix.

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from quarry.config import EMBEDDING_API_KEY_ENV, LLM_API_KEY_ENV
from quarry.db.models import SOURCE_TYPES


def err_no_db(db_path: str = ".quarry.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  quarry ingest <file> --id <source-id>"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix quarry.yaml or ~/.quarry/config.yaml and try again."
    )


def err_file_not_found(path: str) -> str:
    return f"[red]Error:[/] File not found: '{path}'"


def err_unknown_source_type(source_type: str) -> str:
    return (
        f"[red]Error:[/] Unknown source type '{source_type}'.\n"
        f"  Use one of: {', '.join(SOURCE_TYPES)}"
    )


def err_unknown_mode(mode: str) -> str:
    return (
        f"[red]Error:[/] Unknown search mode '{mode}'.\n"
        "  Use one of: hybrid, vector, keyword"
    )


def err_source_not_found(source_type: str, source_id: str) -> str:
    return (
        f"[yellow]Source not found:[/] {source_type}:{source_id} is not in the index.\n"
        "  Run:  quarry status  to see index totals."
    )


def err_ingest_failed(source: str, error: str | None) -> str:
    return (
        f"[red]Error:[/] Ingest of {source} failed: {error or 'unknown error'}\n"
        "  Chunks were marked failed. Retry with:  quarry pending"
    )


def warn_no_embedding_key() -> str:
    return (
        "[yellow]⚠[/] No embedding API key set; chunks are stored as pending "
        "and vector search is off.\n"
        f"  Set:  export {EMBEDDING_API_KEY_ENV}=...  then run  quarry pending"
    )


def warn_no_vec_extension() -> str:
    return (
        "[yellow]⚠[/] sqlite-vec could not be loaded; vector search is off.\n"
        "  Use a Python build whose sqlite3 supports loadable extensions."
    )


def warn_no_llm_key() -> str:
    return (
        "[yellow]⚠[/] No LLM API key set; knowledge-graph extraction skipped.\n"
        f"  Set:  export {LLM_API_KEY_ENV}=..."
    )


def warn_vector_index_rebuilt() -> str:
    return (
        "[yellow]⚠[/] Embedding dimension or metric changed: the vector index was rebuilt "
        "and all chunks are pending.\n"
        "  Run:  quarry pending"
    )
