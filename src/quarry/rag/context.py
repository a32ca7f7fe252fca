"""Context builder: pack search results into a numbered, token-bounded prompt context."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from quarry.ingest.chunker import estimate_token_count
from quarry.rag.retriever import SearchResult

_SEPARATOR = "\n\n---\n\n"

TitleLookup = Callable[[str, str], "str | None"]


@dataclass
class Reference:
    source_type: str
    source_id: str
    title: str | None
    chunk_index: int


@dataclass
class BuiltContext:
    text: str = ""
    references: list[Reference] = field(default_factory=list)
    token_count: int = 0


class ContextBuilder:
    """Concatenate results best-first until *max_tokens* would be exceeded.

    Args:
        max_tokens: Token budget of the assembled text (estimated).
        include_references: Prefix each snippet with its ``[n]`` number.
        get_source_title: Optional ``(source_type, source_id) -> title`` lookup.
    """

    def __init__(
        self,
        max_tokens: int = 4000,
        include_references: bool = True,
        get_source_title: TitleLookup | None = None,
    ) -> None:
        self.max_tokens = max_tokens
        self.include_references = include_references
        self._get_source_title = get_source_title

    def build(self, results: list[SearchResult]) -> BuiltContext:
        ctx = BuiltContext()
        parts: list[str] = []
        for n, result in enumerate(results, start=1):
            tokens = estimate_token_count(result.content)
            if ctx.token_count + tokens > self.max_tokens:
                break
            parts.append(f"[{n}] {result.content}" if self.include_references else result.content)
            ctx.token_count += tokens
            title = (
                self._get_source_title(result.source_type, result.source_id)
                if self._get_source_title
                else None
            )
            ctx.references.append(
                Reference(result.source_type, result.source_id, title, result.chunk_index)
            )
        ctx.text = _SEPARATOR.join(parts)
        return ctx

    def system_prompt_suffix(self, references: list[Reference]) -> str:
        """Instructions plus the numbered source list, or '' when nothing was retrieved."""
        if not references:
            return ""
        lines = [
            f"[{n}] {ref.title or f'{ref.source_type}/{ref.source_id}'}"
            for n, ref in enumerate(references, start=1)
        ]
        return (
            "\n\nThe following passages were retrieved from the user's library. "
            "Base your answer on them and cite the passage number (e.g. [1]) "
            "when an answer comes from a specific source.\n\nSources:\n"
            + "\n".join(lines)
        )
