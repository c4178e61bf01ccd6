"""Contradiction and duplicate detection between stored memories.

Similarity narrows the field; whether two statements really contradict is
delegated to a chat provider supplied by the caller.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from lumara_embeddings.similarity import (
    CONTRADICTION_THRESHOLD,
    DUPLICATE_THRESHOLD,
    MemoryRecord,
    SimilarityMatch,
    find_similar_memories,
)
from lumara_embeddings.vector_math import VectorLike

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_PROMPT_TEMPLATE = """Analyze if these two statements contradict each other:

Statement 1: "{text1}"
Statement 2: "{text2}"

Respond in JSON format:
{{
  "contradicts": true/false,
  "confidence": 0-100,
  "explanation": "brief explanation of why they do or don't contradict"
}}

Consider:
- Direct contradictions (X is true vs X is false)
- Contextual contradictions (may be true in different contexts)
- Complementary statements (both can be true)

Examples:
- "I love coffee" vs "I hate coffee" = CONTRADICTS (confidence: 95)
- "I drink coffee in the morning" vs "I avoid caffeine at night" = NO CONTRADICTION (confidence: 90)
- "My favorite color is blue" vs "My favorite color is red" = CONTRADICTS (confidence: 100)
- "I work at Google" vs "I work in tech" = NO CONTRADICTION (confidence: 95)

Only mark as contradiction if the statements cannot both be true at the same time."""


class ChatProvider(Protocol):
    """Anything that can answer a single prompt with text."""

    async def chat(self, prompt: str) -> str:
        """Return the provider's reply to ``prompt``."""


@dataclass(frozen=True, slots=True)
class ContradictionAnalysis:
    contradicts: bool
    confidence: float
    explanation: str


@dataclass(frozen=True, slots=True)
class ContradictionResult:
    contradicts: bool
    confidence: float
    explanation: str
    memory1_id: str
    memory2_id: str


@dataclass(frozen=True, slots=True)
class ContradictionCandidate:
    memory: SimilarityMatch
    semantically_similar: bool = True


@dataclass(frozen=True, slots=True)
class MemoryPair:
    id1: str
    content1: str
    id2: str
    content2: str


_UNANALYZED = ContradictionAnalysis(
    contradicts=False,
    confidence=0.0,
    explanation="Could not analyze for contradiction",
)


def build_prompt(text1: str, text2: str) -> str:
    return _PROMPT_TEMPLATE.format(text1=text1, text2=text2)


def _clamp_confidence(value: object) -> float:
    try:
        confidence = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return min(100.0, max(0.0, confidence))


def parse_analysis(response: str) -> ContradictionAnalysis:
    """Interpret a provider reply.

    A JSON object anywhere in the reply wins. Otherwise a reply mentioning
    "contradict" counts as a low-confidence contradiction.
    """
    match = _JSON_OBJECT.search(response)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return ContradictionAnalysis(
                contradicts=payload.get("contradicts") is True,
                confidence=_clamp_confidence(payload.get("confidence")),
                explanation=str(payload.get("explanation") or "No explanation provided"),
            )

    if "contradict" in response.lower():
        return ContradictionAnalysis(
            contradicts=True,
            confidence=50.0,
            explanation="Likely contradiction detected in response",
        )
    return _UNANALYZED


async def analyze_contradiction(text1: str, text2: str, provider: ChatProvider) -> ContradictionAnalysis:
    """Ask ``provider`` whether two statements contradict.

    Provider failures are logged and reported as "could not analyze" rather
    than raised.
    """
    try:
        response = await provider.chat(build_prompt(text1, text2))
    except Exception:
        logger.exception("Contradiction analysis failed")
        return _UNANALYZED
    return parse_analysis(response)


def get_contradiction_candidates(
    embedding: VectorLike,
    memories: Iterable[MemoryRecord],
    *,
    threshold: float = CONTRADICTION_THRESHOLD,
    limit: int = 10,
) -> list[ContradictionCandidate]:
    """Memories similar enough to review for a contradiction, without analyzing them."""
    matches = find_similar_memories(embedding, memories, threshold=threshold, limit=limit)
    return [ContradictionCandidate(memory=match) for match in matches]


def detect_duplicates(
    embedding: VectorLike,
    memories: Iterable[MemoryRecord],
    *,
    threshold: float = DUPLICATE_THRESHOLD,
    limit: int = 10,
) -> list[SimilarityMatch]:
    return find_similar_memories(embedding, memories, threshold=threshold, limit=limit)


async def detect_contradictions(
    memory: MemoryRecord,
    existing: Iterable[MemoryRecord],
    provider: ChatProvider,
    *,
    threshold: float = CONTRADICTION_THRESHOLD,
    limit: int = 10,
) -> list[ContradictionResult]:
    """Contradictions between ``memory`` and similar ``existing`` memories.

    Only memories scoring at or above ``threshold`` are sent to the provider,
    one at a time. ``memory`` must carry an embedding.
    """
    if memory.embedding is None:
        raise ValueError(f"Memory {memory.id} has no embedding")

    similar = find_similar_memories(
        memory.embedding,
        existing,
        threshold=threshold,
        limit=limit,
        exclude_ids=[memory.id],
    )

    results: list[ContradictionResult] = []
    for match in similar:
        analysis = await analyze_contradiction(memory.content, match.content, provider)
        if analysis.contradicts:
            results.append(
                ContradictionResult(
                    contradicts=True,
                    confidence=analysis.confidence,
                    explanation=analysis.explanation,
                    memory1_id=memory.id,
                    memory2_id=match.id,
                )
            )
    return results


async def batch_analyze_contradictions(
    pairs: Sequence[MemoryPair],
    provider: ChatProvider,
) -> list[ContradictionResult]:
    """Analyze every pair, returning one result per pair in input order."""
    results: list[ContradictionResult] = []
    for pair in pairs:
        analysis = await analyze_contradiction(pair.content1, pair.content2, provider)
        results.append(
            ContradictionResult(
                contradicts=analysis.contradicts,
                confidence=analysis.confidence,
                explanation=analysis.explanation,
                memory1_id=pair.id1,
                memory2_id=pair.id2,
            )
        )
    return results
