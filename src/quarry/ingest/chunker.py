"""Paragraph/sentence chunker with sentence-aligned overlap.

Sizes are measured with a character-based token estimate (3 chars ≈ 1
token), which averages out between CJK and Latin text without needing a
tokenizer.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
_LINE_SPLIT = re.compile(r"\n+")
# CJK terminators always end a sentence; Latin ones only before whitespace.
_SENTENCE_SPLIT = re.compile(r"(?<=[。！？])\s*|(?<=[.!?])\s+")


def estimate_token_count(text: str) -> int:
    """Approximate token count: ceil(len / 3)."""
    return math.ceil(len(text) / 3)


def split_sentences(text: str) -> list[str]:
    """Split *text* into non-empty, stripped sentences."""
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


@dataclass
class ChunkPiece:
    """One chunk produced by Chunker.chunk(), before it is stored."""

    content: str
    index: int
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


class _Buffer:
    """Accumulates units until flushed into a ChunkPiece.

    After a flush the buffer is seeded with the tail of the emitted chunk.
    A buffer holding only that seed is not emitted.
    """

    def __init__(self, overlap: int, metadata: dict[str, Any]) -> None:
        self.overlap = overlap
        self.metadata = metadata
        self.text = ""
        self.tokens = 0
        self.fresh = False
        self.pieces: list[ChunkPiece] = []

    def add(self, unit: str, sep: str) -> None:
        self.text = f"{self.text}{sep}{unit}" if self.text else unit
        self.tokens += estimate_token_count(unit)
        self.fresh = True

    def flush(self) -> None:
        content = self.text.strip()
        if not self.fresh or not content:
            return
        self.pieces.append(
            ChunkPiece(
                content=content,
                index=len(self.pieces),
                token_count=estimate_token_count(content),
                metadata=dict(self.metadata),
            )
        )
        self.text = _overlap_tail(content, self.overlap)
        self.tokens = estimate_token_count(self.text)
        self.fresh = False


def _overlap_tail(text: str, max_tokens: int) -> str:
    """Trailing sentences of *text* totalling at most *max_tokens* (at least one)."""
    if max_tokens <= 0:
        return ""
    selected: list[str] = []
    tokens = 0
    for sentence in reversed(split_sentences(text)):
        cost = estimate_token_count(sentence)
        if selected and tokens + cost > max_tokens:
            break
        selected.insert(0, sentence)
        tokens += cost
    return " ".join(selected)


class Chunker:
    """Split source text into retrieval-sized chunks.

    Articles, books and unknown source types split on blank lines,
    transcripts on single newlines; a highlight is always one chunk.
    Short units are merged until ``target_size``; a unit larger than
    ``target_size`` is broken up at sentence boundaries.

    Args:
        target_size: Preferred chunk size in estimated tokens.
        min_size: A chunk is not flushed before reaching this size.
        overlap: Tokens of trailing sentences repeated at the start of the
            next chunk (0 disables overlap).
    """

    def __init__(self, target_size: int = 400, min_size: int = 100, overlap: int = 50) -> None:
        if target_size < 1:
            raise ValueError("target_size must be >= 1")
        if not 0 <= min_size <= target_size:
            raise ValueError("min_size must be in [0, target_size]")
        if overlap < 0:
            raise ValueError("overlap must be >= 0")
        self.target_size = target_size
        self.min_size = min_size
        self.overlap = overlap

    def chunk(
        self, text: str, source_type: str, metadata: dict[str, Any] | None = None
    ) -> list[ChunkPiece]:
        """Return the chunks of *text*, indexed 0..n-1. Blank input yields []."""
        if not text or not text.strip():
            return []
        metadata = metadata or {}

        if source_type == "highlight":
            content = text.strip()
            return [ChunkPiece(content, 0, estimate_token_count(content), dict(metadata))]

        splitter = _LINE_SPLIT if source_type == "transcript" else _PARAGRAPH_SPLIT
        units = [u for u in splitter.split(text) if u.strip()]
        return self._merge_and_split(units, metadata)

    def _merge_and_split(self, units: list[str], metadata: dict[str, Any]) -> list[ChunkPiece]:
        buf = _Buffer(self.overlap, metadata)

        for unit in units:
            unit_tokens = estimate_token_count(unit)

            if unit_tokens > self.target_size:
                buf.flush()
                for sentence in split_sentences(unit):
                    if self._should_flush(buf, estimate_token_count(sentence)):
                        buf.flush()
                    buf.add(sentence, " ")
                continue

            if self._should_flush(buf, unit_tokens):
                buf.flush()
            buf.add(unit, "\n\n")

        buf.flush()
        return buf.pieces

    def _should_flush(self, buf: _Buffer, incoming: int) -> bool:
        return buf.tokens + incoming > self.target_size and buf.tokens >= self.min_size
