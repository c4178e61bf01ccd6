from __future__ import annotations

import pytest

from lumara_embeddings.backends.deterministic import DeterministicEmbeddingBackend
from lumara_embeddings.vector_math import cosine_similarity, magnitude


def make_backend(dimension: int = 384) -> DeterministicEmbeddingBackend:
    return DeterministicEmbeddingBackend(
        model_name="sentence-transformers/all-MiniLM-L6-v2",
        dimension=dimension,
        normalize=True,
    )


@pytest.mark.asyncio
async def test_deterministic_embeddings_are_stable():
    backend = make_backend(dimension=16)

    first = await backend.embed(["hello world"])
    second = await backend.embed(["hello world"])

    assert first == second
    assert len(first[0]) == 16
    assert magnitude(first[0]) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_load_reports_progress():
    backend = make_backend()
    reports: list[float] = []

    await backend.load(lambda percent, message: reports.append(percent))

    assert reports == [0.0, 100.0]


@pytest.mark.asyncio
async def test_shared_words_produce_similar_vectors():
    backend = make_backend()
    near, other, unrelated = await backend.embed(
        [
            "I love drinking coffee every morning",
            "I love drinking coffee every single morning",
            "Quarterly tax filings are due in April",
        ]
    )

    assert cosine_similarity(near, other) > 0.85
    assert cosine_similarity(near, unrelated) < 0.5


@pytest.mark.asyncio
async def test_embeddings_are_case_sensitive():
    backend = make_backend()
    lower, upper = await backend.embed(["coffee", "Coffee"])
    assert lower != upper
