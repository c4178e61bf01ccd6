from __future__ import annotations

import numpy as np
import pytest

from lumara_embeddings.contradiction import (
    MemoryPair,
    analyze_contradiction,
    batch_analyze_contradictions,
    detect_contradictions,
    detect_duplicates,
    get_contradiction_candidates,
    parse_analysis,
)
from lumara_embeddings.similarity import MemoryRecord


class ScriptedProvider:
    def __init__(self, *replies: str) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def chat(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.replies.pop(0)


class BrokenProvider:
    async def chat(self, prompt: str) -> str:
        raise ConnectionError("provider offline")


def unit_at(angle_degrees: float) -> list[float]:
    radians = np.deg2rad(angle_degrees)
    return [float(np.cos(radians)), float(np.sin(radians))]


def test_parse_json_reply_embedded_in_prose():
    analysis = parse_analysis(
        'Sure! {"contradicts": true, "confidence": 140, "explanation": "blue vs red"} Hope that helps.'
    )

    assert analysis.contradicts is True
    assert analysis.confidence == 100.0
    assert analysis.explanation == "blue vs red"


def test_parse_json_reply_with_missing_fields():
    analysis = parse_analysis('{"contradicts": "yes"}')

    assert analysis.contradicts is False
    assert analysis.confidence == 0.0
    assert analysis.explanation == "No explanation provided"


def test_parse_plain_text_mentioning_contradiction():
    analysis = parse_analysis("These statements Contradict each other.")

    assert analysis.contradicts is True
    assert analysis.confidence == 50.0


def test_parse_unusable_reply():
    analysis = parse_analysis("I am not sure.")

    assert analysis.contradicts is False
    assert analysis.explanation == "Could not analyze for contradiction"


@pytest.mark.asyncio
async def test_analyze_contradiction_sends_both_statements():
    provider = ScriptedProvider('{"contradicts": false, "confidence": 90, "explanation": "compatible"}')

    analysis = await analyze_contradiction("I work at Google", "I work in tech", provider)

    assert analysis.contradicts is False
    assert 'Statement 1: "I work at Google"' in provider.prompts[0]
    assert 'Statement 2: "I work in tech"' in provider.prompts[0]


@pytest.mark.asyncio
async def test_provider_failure_is_logged_not_raised(caplog):
    analysis = await analyze_contradiction("a", "b", BrokenProvider())

    assert analysis.contradicts is False
    assert analysis.confidence == 0.0
    assert "Contradiction analysis failed" in caplog.text


@pytest.mark.asyncio
async def test_detect_contradictions_only_checks_similar_memories():
    new_memory = MemoryRecord(id="new", content="I hate coffee", embedding=unit_at(0))
    existing = [
        new_memory,
        MemoryRecord(id="love", content="I love coffee", embedding=unit_at(10)),
        MemoryRecord(id="like", content="I like coffee", embedding=unit_at(20)),
        MemoryRecord(id="city", content="I live in Porto", embedding=unit_at(85)),
    ]
    provider = ScriptedProvider(
        '{"contradicts": true, "confidence": 95, "explanation": "love vs hate"}',
        '{"contradicts": false, "confidence": 60, "explanation": "preference may change"}',
    )

    results = await detect_contradictions(new_memory, existing, provider)

    assert len(provider.prompts) == 2
    assert [(r.memory1_id, r.memory2_id, r.confidence) for r in results] == [("new", "love", 95.0)]


@pytest.mark.asyncio
async def test_detect_contradictions_requires_embedding():
    with pytest.raises(ValueError):
        await detect_contradictions(MemoryRecord(id="x", content="y"), [], ScriptedProvider())


def test_candidates_and_duplicates_use_their_thresholds():
    memories = [
        MemoryRecord(id="same", content="a", embedding=unit_at(5)),
        MemoryRecord(id="related", content="b", embedding=unit_at(40)),
        MemoryRecord(id="other", content="c", embedding=unit_at(80)),
    ]

    candidates = get_contradiction_candidates(unit_at(0), memories)
    duplicates = detect_duplicates(unit_at(0), memories)

    assert [c.memory.id for c in candidates] == ["same", "related"]
    assert all(c.semantically_similar for c in candidates)
    assert [d.id for d in duplicates] == ["same"]


@pytest.mark.asyncio
async def test_batch_analysis_returns_one_result_per_pair():
    provider = ScriptedProvider(
        '{"contradicts": true, "confidence": 100, "explanation": "different colors"}',
        "no idea",
    )
    pairs = [
        MemoryPair(id1="1", content1="My favorite color is blue", id2="2", content2="My favorite color is red"),
        MemoryPair(id1="3", content1="I run", id2="4", content2="I swim"),
    ]

    results = await batch_analyze_contradictions(pairs, provider)

    assert [(r.memory1_id, r.memory2_id, r.contradicts) for r in results] == [
        ("1", "2", True),
        ("3", "4", False),
    ]
