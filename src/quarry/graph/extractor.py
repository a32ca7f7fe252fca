"""LLM entity and relation extraction over a source's chunks.

The model is asked for a JSON object; the payload is validated against
pydantic models before anything downstream sees it. A response that is not
JSON, or does not match the schema, raises ExtractionError.
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quarry.errors import ExtractionError
from quarry.rag import llm_client

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

_PROMPT = """\
You build a knowledge graph from reading material. Identify the key entities \
in the text below and the relations between them.

## Title
{title}

## Content
{content}

## Instructions
1. Identify 5-15 of the most important entities. Use one of these types: \
concept, person, technology, topic, organization.
2. Give each entity a one or two sentence description and any aliases or \
abbreviations used for it.
3. Identify relations between entities. Relation source and target must be \
names from your entity list. Use one of these relation types: related_to, \
part_of, prerequisite, contrasts_with, applied_in, created_by.
4. Skip generic or uninformative words.
5. Keep entity names in the language of the text.

Respond with a JSON object of the form:
{{"entities": [{{"name": "...", "type": "...", "description": "...", "aliases": ["..."]}}],
 "relations": [{{"source": "...", "target": "...", "type": "..."}}]}}"""


class ExtractedEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    description: str
    aliases: list[str]


class ExtractedRelation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    type: str = Field(min_length=1)


class ExtractionResult(BaseModel):
    """Every field of the payload is required; a partial answer fails the batch."""

    entities: list[ExtractedEntity]
    relations: list[ExtractedRelation]

    @classmethod
    def empty(cls) -> ExtractionResult:
        return cls(entities=[], relations=[])


@dataclass
class ExtractInput:
    chunk_id: str
    content: str
    source_title: str = ""


def build_batches(chunks: list[ExtractInput], max_chars: int) -> list[str]:
    """Join chunk contents with blank lines into batches of at most *max_chars*.

    A single chunk longer than *max_chars* forms a batch of its own.
    """
    batches: list[str] = []
    current = ""
    for chunk in chunks:
        if current and len(current) + len(chunk.content) + 2 > max_chars:
            batches.append(current)
            current = chunk.content
        else:
            current = f"{current}\n\n{chunk.content}" if current else chunk.content
    if current:
        batches.append(current)
    return batches


def parse_extraction(raw: str) -> ExtractionResult:
    """Validate a raw model response.

    Raises:
        ExtractionError: If *raw* is not JSON or does not match the schema.
    """
    text = _FENCE.sub("", raw.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Extraction response is not valid JSON: {exc}") from exc
    try:
        return ExtractionResult.model_validate(data)
    except ValidationError as exc:
        raise ExtractionError(f"Extraction response does not match schema: {exc}") from exc


def merge_results(results: list[ExtractionResult]) -> ExtractionResult:
    """Merge per-batch results.

    Entities with the same name (case-insensitive) are combined, keeping the
    longer description and the union of aliases. Relations are deduplicated
    on their exact (source, target, type) triple.
    """
    entities: dict[str, ExtractedEntity] = {}
    relations: list[ExtractedRelation] = []
    seen: set[tuple[str, str, str]] = set()

    for result in results:
        for entity in result.entities:
            key = entity.name.strip().lower()
            existing = entities.get(key)
            if existing is None:
                entities[key] = entity.model_copy(deep=True)
                continue
            for alias in entity.aliases:
                if alias not in existing.aliases:
                    existing.aliases.append(alias)
            if len(entity.description) > len(existing.description):
                existing.description = entity.description
        for relation in result.relations:
            triple = (relation.source, relation.target, relation.type)
            if triple not in seen:
                seen.add(triple)
                relations.append(relation)

    return ExtractionResult(entities=list(entities.values()), relations=relations)


class EntityExtractor:
    """Extract entities and relations from chunks with one LLM call per batch.

    Args:
        model: LiteLLM model string (see quarry.config.get_llm_model).
        max_batch_chars: Upper bound on the text sent in one request.
        api_key: LLM API key; None lets LiteLLM use provider defaults.
        api_base: Optional OpenAI-compatible endpoint.
    """

    def __init__(
        self,
        model: str,
        max_batch_chars: int = 9_000,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
    ) -> None:
        self.model = model
        self.max_batch_chars = max_batch_chars
        self._api_key = api_key
        self._api_base = api_base

    async def extract(self, chunks: list[ExtractInput]) -> ExtractionResult:
        if not chunks:
            return ExtractionResult.empty()

        title = chunks[0].source_title
        batches = build_batches(chunks, self.max_batch_chars)
        logger.debug("Extracting entities from {} batch(es) of '{}'", len(batches), title)

        # A single response can repeat an entity or triple, so it is merged too.
        results = await asyncio.gather(*(self._extract_single(title, b) for b in batches))
        return merge_results(list(results))

    async def _extract_single(self, title: str, content: str) -> ExtractionResult:
        raw = await llm_client.acomplete(
            self.model,
            [{"role": "user", "content": _PROMPT.format(title=title, content=content)}],
            api_key=self._api_key,
            api_base=self._api_base,
            json_mode=True,
        )
        return parse_extraction(raw)
