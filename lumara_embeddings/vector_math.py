"""Vector primitives used by the similarity engine."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from lumara_embeddings.errors import DimensionMismatchError, InvalidInputError

Embedding = tuple[float, ...]
VectorLike = Sequence[float] | np.ndarray


def as_array(vector: VectorLike) -> np.ndarray:
    """Return a 1-D float64 view of ``vector``."""
    return np.asarray(vector, dtype=np.float64).reshape(-1)


def to_embedding(vector: VectorLike) -> Embedding:
    """Freeze a vector into the immutable embedding representation."""
    return tuple(float(value) for value in as_array(vector))


def _pair(a: VectorLike, b: VectorLike) -> tuple[np.ndarray, np.ndarray]:
    left = as_array(a)
    right = as_array(b)
    if left.shape[0] != right.shape[0]:
        raise DimensionMismatchError(left.shape[0], right.shape[0])
    return left, right


def dot_product(a: VectorLike, b: VectorLike) -> float:
    left, right = _pair(a, b)
    return float(np.dot(left, right))


def magnitude(vector: VectorLike) -> float:
    """Euclidean length of ``vector``."""
    return float(np.linalg.norm(as_array(vector)))


def normalize(vector: VectorLike) -> Embedding:
    """Scale ``vector`` to unit length.

    Raises:
        InvalidInputError: If the vector has zero magnitude.
    """
    values = as_array(vector)
    norm = float(np.linalg.norm(values))
    if norm == 0.0:
        raise InvalidInputError("Cannot normalize zero vector")
    return to_embedding(values / norm)


def add(a: VectorLike, b: VectorLike) -> Embedding:
    left, right = _pair(a, b)
    return to_embedding(left + right)


def subtract(a: VectorLike, b: VectorLike) -> Embedding:
    left, right = _pair(a, b)
    return to_embedding(left - right)


def scale(vector: VectorLike, scalar: float) -> Embedding:
    return to_embedding(as_array(vector) * scalar)


def euclidean_distance(a: VectorLike, b: VectorLike) -> float:
    left, right = _pair(a, b)
    return float(np.linalg.norm(left - right))


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Both vectors must have the same, non-zero length. A zero-magnitude vector
    on either side yields ``0.0`` instead of NaN, and the result is clamped to
    ``[-1, 1]`` to absorb floating-point drift.

    Raises:
        DimensionMismatchError: If the lengths differ or either vector is empty.
    """
    left, right = _pair(a, b)
    if left.shape[0] == 0:
        raise DimensionMismatchError(0, 0)

    norm_left = float(np.linalg.norm(left))
    norm_right = float(np.linalg.norm(right))
    if norm_left == 0.0 or norm_right == 0.0:
        return 0.0

    score = float(np.dot(left, right)) / (norm_left * norm_right)
    return max(-1.0, min(1.0, score))
