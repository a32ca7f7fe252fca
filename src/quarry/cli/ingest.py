"""quarry ingest — index a text file as one source.

Usage:
  quarry ingest notes.txt --type article --id note-42 --title "My note"
  quarry ingest talk.txt --type transcript --no-graph
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from quarry.cli.errors import (
    err_file_not_found,
    err_ingest_failed,
    err_unknown_source_type,
    warn_no_embedding_key,
    warn_no_llm_key,
    warn_no_vec_extension,
    warn_vector_index_rebuilt,
)
from quarry.cli.runtime import DEFAULT_DB, Runtime, load_cfg_or_exit, open_runtime
from quarry.db.models import SOURCE_TYPES
from quarry.graph.extractor import ExtractInput

console = Console()


def ingest_cmd(
    path: Annotated[Path, typer.Argument(help="UTF-8 text file to ingest.")],
    source_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Source type: article, book, highlight, transcript."),
    ] = "article",
    source_id: Annotated[
        str | None,
        typer.Option("--id", help="Stable source id (defaults to the file name stem)."),
    ] = None,
    title: Annotated[str | None, typer.Option("--title", help="Source title.")] = None,
    graph: Annotated[
        bool,
        typer.Option("--graph/--no-graph", help="Also extract entities into the knowledge graph."),
    ] = True,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .quarry.db (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Chunk, embed and index one source, replacing any previous version."""
    if source_type not in SOURCE_TYPES:
        console.print(err_unknown_source_type(source_type))
        raise typer.Exit(1)
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)

    text = path.read_text(encoding="utf-8")
    sid = source_id or path.stem
    cfg = load_cfg_or_exit(console)
    rt = open_runtime(db, cfg)
    try:
        _warn_degraded(rt)
        ok = asyncio.run(_ingest(rt, source_type, sid, text, title or path.stem, graph))
    finally:
        rt.close()
    if not ok:
        raise typer.Exit(1)


def _warn_degraded(rt: Runtime) -> None:
    if rt.index.vector_index_rebuilt:
        console.print(warn_vector_index_rebuilt())
    if not rt.index.vec_available:
        console.print(warn_no_vec_extension())
    elif rt.embedder is None:
        console.print(warn_no_embedding_key())


async def _ingest(
    rt: Runtime, source_type: str, source_id: str, text: str, title: str, graph: bool
) -> bool:
    label = f"{source_type}:{source_id}"
    console.print(f"\n[bold]→ {label}[/]")

    result = await rt.pipeline().ingest(
        source_type, source_id, text, metadata={"title": title}, title=title
    )
    if not result.success:
        console.print(err_ingest_failed(label, result.error))
        return False
    console.print(
        f"  [green]✓[/] {result.chunks_created} chunks, "
        f"{result.embeddings_generated} embeddings ({result.total_tokens} tokens)"
    )

    if not graph or result.chunks_created == 0:
        return True
    kg = rt.kg_pipeline()
    if kg is None:
        console.print(warn_no_llm_key())
        return True

    chunks = rt.index.get_chunks_by_source(source_type, source_id)
    kg_result = await kg.ingest(
        source_type,
        source_id,
        title,
        [ExtractInput(chunk_id=c.id, content=c.content, source_title=title) for c in chunks],
    )
    if kg_result.success:
        console.print(
            f"  [green]✓[/] graph: {kg_result.entities_created} new / "
            f"{kg_result.entities_updated} merged entities, "
            f"{kg_result.relations_created} new / {kg_result.relations_updated} reinforced relations"
        )
    else:
        console.print(f"  [yellow]⚠ Graph extraction failed:[/] {kg_result.error}")
    return True
