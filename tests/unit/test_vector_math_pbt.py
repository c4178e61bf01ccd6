"""Property-based tests for cosine similarity."""

import pytest
from hypothesis import assume, given, strategies as st

from lumara_embeddings.errors import DimensionMismatchError
from lumara_embeddings.vector_math import cosine_similarity, magnitude

finite = st.floats(min_value=-1e3, max_value=1e3, allow_nan=False, allow_infinity=False)


def vectors(size):
    return st.lists(finite, min_size=size, max_size=size)


@given(st.integers(min_value=1, max_value=32).flatmap(vectors))
def test_self_similarity_is_one(vector):
    """Any vector with non-negligible magnitude is perfectly similar to itself."""
    assume(magnitude(vector) > 1e-3)
    assert cosine_similarity(vector, vector) == pytest.approx(1.0, abs=1e-9)


@given(st.integers(min_value=1, max_value=32).flatmap(lambda n: st.tuples(vectors(n), vectors(n))))
def test_similarity_is_symmetric(pair):
    a, b = pair
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a), abs=1e-12)


@given(st.integers(min_value=1, max_value=32).flatmap(lambda n: st.tuples(vectors(n), vectors(n))))
def test_similarity_stays_in_range(pair):
    a, b = pair
    assert -1.0 <= cosine_similarity(a, b) <= 1.0


@given(
    st.integers(min_value=1, max_value=16).flatmap(vectors),
    st.integers(min_value=1, max_value=16).flatmap(vectors),
)
def test_mismatched_lengths_always_raise(a, b):
    assume(len(a) != len(b))
    with pytest.raises(DimensionMismatchError):
        cosine_similarity(a, b)
