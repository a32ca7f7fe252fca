"""Tests for entity extraction: batching, parsing, merging and the LLM call."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from quarry.errors import ExtractionError
from quarry.graph.extractor import (
    EntityExtractor,
    ExtractedEntity,
    ExtractedRelation,
    ExtractInput,
    ExtractionResult,
    build_batches,
    merge_results,
    parse_extraction,
)


def _chunks(*contents: str) -> list[ExtractInput]:
    return [ExtractInput(f"c{i}", text, "Title") for i, text in enumerate(contents)]


def _entity(name: str, type: str = "concept", description: str = "", aliases=()) -> dict:
    return {"name": name, "type": type, "description": description, "aliases": list(aliases)}


def _payload(entities=(), relations=()) -> dict:
    return {"entities": list(entities), "relations": list(relations)}


def _completion(payload) -> MagicMock:
    response = MagicMock()
    response.choices[0].message.content = payload if isinstance(payload, str) else json.dumps(payload)
    return response


# ------------------------------------------------------------------
# build_batches
# ------------------------------------------------------------------


def test_batches_join_chunks_until_limit():
    batches = build_batches(_chunks("a" * 4, "b" * 4, "c" * 4), max_chars=10)
    assert batches == ["aaaa\n\nbbbb", "cccc"]


def test_oversized_chunk_gets_own_batch():
    batches = build_batches(_chunks("short", "x" * 50, "tail"), max_chars=20)
    assert batches == ["short", "x" * 50, "tail"]


def test_batches_of_nothing():
    assert build_batches([], max_chars=10) == []


# ------------------------------------------------------------------
# parse_extraction
# ------------------------------------------------------------------


def test_parse_valid_payload_ignores_extra_keys():
    raw = json.dumps(
        _payload(
            [{**_entity("RAG", aliases=["retrieval augmented generation"]), "extra": "ignored"}],
            [{"source": "RAG", "target": "LLM", "type": "applied_in"}],
        )
    )
    result = parse_extraction(raw)
    assert result.entities[0].aliases == ["retrieval augmented generation"]
    assert result.relations[0].type == "applied_in"


def test_parse_entity_without_type_or_aliases_fails():
    raw = json.dumps(_payload([{"name": "RAG"}], [{"source": "A", "target": "B"}]))
    with pytest.raises(ExtractionError):
        parse_extraction(raw)


def test_parse_strips_code_fence():
    raw = f"```json\n{json.dumps(_payload([_entity('X', 'topic')]))}\n```"
    assert parse_extraction(raw).entities[0].name == "X"


def test_parse_empty_lists():
    result = parse_extraction('{"entities": [], "relations": []}')
    assert result.entities == [] and result.relations == []


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "{}",
        '{"entities": []}',
        '{"entities": "nope", "relations": []}',
        '{"entities": [{"name": "A", "type": "topic", "description": ""}], "relations": []}',
        '{"entities": [], "relations": [{"source": "A", "target": "B", "type": ""}]}',
        '{"entities": [{"type": "concept"}]}',
        '{"entities": [{"name": ""}]}',
        '{"relations": [{"source": "A"}]}',
    ],
)
def test_parse_rejects_bad_payload(raw):
    with pytest.raises(ExtractionError):
        parse_extraction(raw)


# ------------------------------------------------------------------
# merge_results
# ------------------------------------------------------------------


def test_merge_combines_entities_case_insensitively():
    first = ExtractionResult(
        entities=[ExtractedEntity(name="React", type="technology", description="UI", aliases=["ReactJS"])],
        relations=[ExtractedRelation(source="React", target="JSX", type="uses")],
    )
    second = ExtractionResult(
        entities=[
            ExtractedEntity(
                name="react", type="technology", description="A UI library", aliases=["React.js"]
            )
        ],
        relations=[
            ExtractedRelation(source="React", target="JSX", type="uses"),
            ExtractedRelation(source="React", target="JSX", type="part_of"),
        ],
    )

    merged = merge_results([first, second])

    assert len(merged.entities) == 1
    entity = merged.entities[0]
    assert entity.name == "React"
    assert entity.description == "A UI library"
    assert entity.aliases == ["ReactJS", "React.js"]
    assert [(r.source, r.target, r.type) for r in merged.relations] == [
        ("React", "JSX", "uses"),
        ("React", "JSX", "part_of"),
    ]
    assert first.entities[0].aliases == ["ReactJS"]


# ------------------------------------------------------------------
# EntityExtractor
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_extract_without_chunks_makes_no_call():
    mock = AsyncMock()
    with patch("litellm.acompletion", mock):
        result = await EntityExtractor("openai/gpt-4o-mini").extract([])
    assert result == ExtractionResult.empty()
    mock.assert_not_called()


@pytest.mark.asyncio
async def test_extract_single_batch_uses_json_mode():
    payload = _payload([_entity("Vector search", "technology")])
    mock = AsyncMock(return_value=_completion(payload))
    with patch("litellm.acompletion", mock):
        result = await EntityExtractor("openai/gpt-4o-mini", api_key="k").extract(
            _chunks("All about vector search.")
        )

    assert [e.name for e in result.entities] == ["Vector search"]
    kwargs = mock.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["api_key"] == "k"
    prompt = kwargs["messages"][0]["content"]
    assert "Title" in prompt
    assert "All about vector search." in prompt


@pytest.mark.asyncio
async def test_extract_multiple_batches_are_merged():
    mock = AsyncMock(
        side_effect=[
            _completion(_payload([_entity("A", description="short")])),
            _completion(_payload([_entity("a", description="much longer"), _entity("B")])),
        ]
    )
    with patch("litellm.acompletion", mock):
        result = await EntityExtractor("m", max_batch_chars=10).extract(_chunks("x" * 8, "y" * 8))

    assert mock.await_count == 2
    assert sorted(e.name for e in result.entities) == ["A", "B"]
    assert next(e for e in result.entities if e.name == "A").description == "much longer"


@pytest.mark.asyncio
async def test_extract_invalid_response_raises():
    with patch("litellm.acompletion", AsyncMock(return_value=_completion("sorry, no"))):
        with pytest.raises(ExtractionError):
            await EntityExtractor("m").extract(_chunks("text"))


@pytest.mark.asyncio
async def test_extract_single_batch_dedupes_repeats():
    relation = {"source": "React", "target": "JSX", "type": "part_of"}
    payload = _payload(
        [_entity("React", "technology"), _entity("react", "technology", aliases=["ReactJS"])],
        [relation, relation],
    )
    with patch("litellm.acompletion", AsyncMock(return_value=_completion(payload))):
        result = await EntityExtractor("m").extract(_chunks("React and JSX."))

    assert [(e.name, e.aliases) for e in result.entities] == [("React", ["ReactJS"])]
    assert len(result.relations) == 1


@pytest.mark.asyncio
async def test_extract_partial_payload_raises():
    payload = {"entities": [{"name": "RAG"}], "relations": []}
    with patch("litellm.acompletion", AsyncMock(return_value=_completion(payload))):
        with pytest.raises(ExtractionError):
            await EntityExtractor("m").extract(_chunks("text"))
