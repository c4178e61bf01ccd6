"""Similarity search, duplicate grouping and contradiction-candidate filtering.

Everything here is pure and synchronous. Scores are cosine similarities in
``[-1, 1]``; a threshold admits scores greater than or equal to it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import numpy as np

from lumara_embeddings.errors import DimensionMismatchError, InvalidInputError
from lumara_embeddings.vector_math import VectorLike, as_array, cosine_similarity

T = TypeVar("T")

DEFAULT_TOP_K = 10
DEFAULT_MIN_THRESHOLD = 0.7
DUPLICATE_THRESHOLD = 0.85
CONTRADICTION_THRESHOLD = 0.70


@dataclass(frozen=True, slots=True)
class SimilarityResult(Generic[T]):
    """A candidate that passed the threshold, with its position in the input."""

    index: int
    score: float
    item: T


@dataclass(frozen=True, slots=True)
class MemoryRecord:
    id: str
    content: str
    embedding: Sequence[float] | None = None


@dataclass(frozen=True, slots=True)
class SimilarityMatch:
    id: str
    similarity: float
    content: str


def _stack(vectors: Iterable[VectorLike], dimension: int) -> np.ndarray:
    rows = []
    for vector in vectors:
        row = as_array(vector)
        if row.shape[0] != dimension:
            raise DimensionMismatchError(dimension, row.shape[0])
        rows.append(row)
    if not rows:
        return np.empty((0, dimension), dtype=np.float64)
    return np.vstack(rows)


def _cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return np.clip(scores, -1.0, 1.0)


def _query_array(query: VectorLike) -> np.ndarray:
    values = as_array(query)
    if values.shape[0] == 0:
        raise DimensionMismatchError(0, 0)
    return values


def _check_top_k(top_k: int) -> None:
    if top_k < 1:
        raise InvalidInputError(f"top_k must be >= 1, got {top_k}")


def batch_cosine_similarity(query: VectorLike, vectors: Sequence[VectorLike]) -> list[float]:
    """Cosine similarity of ``query`` against each of ``vectors``, in input order."""
    q = _query_array(query)
    return [float(score) for score in _cosine_scores(q, _stack(vectors, q.shape[0]))]


def find_similar(
    query: VectorLike,
    candidates: Sequence[T],
    top_k: int = DEFAULT_TOP_K,
    min_threshold: float = DEFAULT_MIN_THRESHOLD,
    *,
    key: Callable[[T], VectorLike] | None = None,
) -> list[SimilarityResult[T]]:
    """Rank ``candidates`` by similarity to ``query``.

    Candidates are vectors, or arbitrary items when ``key`` extracts the
    vector from each one. Results scoring below ``min_threshold`` are dropped,
    the rest are sorted by score descending (ties by ascending index) and
    truncated to ``top_k``.

    Raises:
        InvalidInputError: If ``top_k`` is less than 1.
        DimensionMismatchError: If any candidate differs in length from ``query``.
    """
    _check_top_k(top_k)
    q = _query_array(query)
    vectors = candidates if key is None else [key(item) for item in candidates]
    scores = _cosine_scores(q, _stack(vectors, q.shape[0]))

    passing = [idx for idx in range(len(candidates)) if scores[idx] >= min_threshold]
    passing.sort(key=lambda idx: (-scores[idx], idx))
    return [
        SimilarityResult(index=idx, score=float(scores[idx]), item=candidates[idx])
        for idx in passing[:top_k]
    ]


def find_similar_groups(
    embeddings: Sequence[VectorLike],
    threshold: float = DUPLICATE_THRESHOLD,
    *,
    include_singletons: bool = False,
) -> list[list[int]]:
    """Single-link clusters of indices whose pairwise similarity reaches ``threshold``.

    Two items end up in one group when a chain of pairs, each scoring at or
    above ``threshold``, connects them. Chaining means members at the two ends
    of a group may themselves be dissimilar.

    Returns:
        Groups as ascending index lists, ordered by their smallest index. Lone
        indices are only included when ``include_singletons`` is set.
    """
    if not embeddings:
        return []

    dimension = as_array(embeddings[0]).shape[0]
    if dimension == 0:
        raise DimensionMismatchError(0, 0)
    matrix = _stack(embeddings, dimension)

    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    unit = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)
    scores = np.clip(unit @ unit.T, -1.0, 1.0)

    parent = list(range(len(embeddings)))

    def find(idx: int) -> int:
        while parent[idx] != idx:
            parent[idx] = parent[parent[idx]]
            idx = parent[idx]
        return idx

    rows, cols = np.nonzero(np.triu(scores >= threshold, k=1))
    for i, j in zip(rows.tolist(), cols.tolist()):
        root_i, root_j = find(i), find(j)
        if root_i != root_j:
            parent[max(root_i, root_j)] = min(root_i, root_j)

    groups: dict[int, list[int]] = {}
    for idx in range(len(embeddings)):
        groups.setdefault(find(idx), []).append(idx)

    minimum = 1 if include_singletons else 2
    return sorted(
        (members for members in groups.values() if len(members) >= minimum),
        key=lambda members: members[0],
    )


def is_duplicate(a: VectorLike, b: VectorLike, threshold: float = DUPLICATE_THRESHOLD) -> bool:
    return cosine_similarity(a, b) >= threshold


def find_duplicates(
    query: VectorLike,
    candidates: Sequence[T],
    threshold: float = DUPLICATE_THRESHOLD,
    top_k: int = DEFAULT_TOP_K,
    *,
    key: Callable[[T], VectorLike] | None = None,
) -> list[SimilarityResult[T]]:
    return find_similar(query, candidates, top_k=top_k, min_threshold=threshold, key=key)


def find_contradiction_candidates(
    query: VectorLike,
    candidates: Sequence[T],
    threshold: float = CONTRADICTION_THRESHOLD,
    top_k: int = DEFAULT_TOP_K,
    *,
    key: Callable[[T], VectorLike] | None = None,
) -> list[SimilarityResult[T]]:
    """Candidates similar enough to be worth checking for a contradiction.

    This only filters by similarity; deciding whether two texts actually
    contradict is left to the caller.
    """
    return find_similar(query, candidates, top_k=top_k, min_threshold=threshold, key=key)


def find_similar_memories(
    query: VectorLike,
    memories: Iterable[MemoryRecord],
    *,
    threshold: float = DEFAULT_MIN_THRESHOLD,
    limit: int = DEFAULT_TOP_K,
    exclude_ids: Iterable[str] = (),
) -> list[SimilarityMatch]:
    """``find_similar`` over id-addressed records.

    Records without an embedding and records listed in ``exclude_ids`` are
    skipped. A record whose embedding has the wrong length raises
    ``DimensionMismatchError``.
    """
    excluded = set(exclude_ids)
    searchable = [
        memory
        for memory in memories
        if memory.embedding is not None and memory.id not in excluded
    ]
    results = find_similar(
        query,
        searchable,
        top_k=limit,
        min_threshold=threshold,
        key=lambda memory: memory.embedding,
    )
    return [
        SimilarityMatch(id=result.item.id, similarity=result.score, content=result.item.content)
        for result in results
    ]
