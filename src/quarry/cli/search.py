"""quarry search — hybrid retrieval over the index."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from quarry.cli.errors import err_unknown_mode
from quarry.cli.runtime import DEFAULT_DB, open_existing_or_exit
from quarry.db.models import SearchFilters
from quarry.rag.context import BuiltContext, ContextBuilder
from quarry.rag.retriever import SEARCH_MODES

console = Console()

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search text.")],
    top_k: Annotated[int | None, typer.Option("--top-k", "-k", help="Number of results.")] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="hybrid, vector or keyword."),
    ] = None,
    source_type: Annotated[
        list[str] | None,
        typer.Option("--type", "-t", help="Restrict to a source type (repeatable)."),
    ] = None,
    source_id: Annotated[
        list[str] | None,
        typer.Option("--source-id", help="Restrict to a source id (repeatable)."),
    ] = None,
    partition: Annotated[
        str | None,
        typer.Option("--partition", help="Restrict to chunks with this metadata partition."),
    ] = None,
    rerank: Annotated[
        bool | None,
        typer.Option("--rerank/--no-rerank", help="Rerank by keyword overlap."),
    ] = None,
    context: Annotated[
        bool,
        typer.Option("--context", help="Print results as a numbered prompt context with sources."),
    ] = False,
    max_tokens: Annotated[
        int, typer.Option("--max-tokens", help="Token budget of the --context output.")
    ] = 4000,
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
) -> None:
    """Search indexed chunks by meaning and keywords."""
    if mode is not None and mode not in SEARCH_MODES:
        console.print(err_unknown_mode(mode))
        raise typer.Exit(1)

    rt = open_existing_or_exit(db, console)
    try:
        filters = SearchFilters(
            source_types=source_type or [],
            source_ids=source_id or [],
            partition=partition,
        )
        results = asyncio.run(
            rt.retriever(rerank).search(
                query,
                top_k=top_k or rt.cfg.retrieval.top_k,
                filters=filters,
                mode=mode or rt.cfg.retrieval.mode,
            )
        )
        builder = ContextBuilder(max_tokens, get_source_title=rt.index.get_document_title)
        built = builder.build(results) if context else None
    finally:
        rt.close()

    if not results:
        console.print("[dim]No results.[/]")
        return

    if built is not None:
        _print_context(builder, built)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Chunk", justify="right")
    table.add_column("Text")
    for n, r in enumerate(results, start=1):
        preview = " ".join(r.content.split())
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        table.add_row(
            str(n), f"{r.score:.4f}", f"{r.source_type}:{r.source_id}", str(r.chunk_index), preview
        )
    console.print(table)


def _print_context(builder: ContextBuilder, built: BuiltContext) -> None:
    if not built.references:
        console.print("[dim]No result fits within the token budget.[/]")
        return
    console.print(built.text, markup=False, highlight=False)
    console.print(builder.system_prompt_suffix(built.references), markup=False, highlight=False)
    console.print(f"[dim]~{built.token_count} tokens[/]")
