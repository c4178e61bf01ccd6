"""Deterministic lightweight embedding backend for local testing."""

from __future__ import annotations

import hashlib
import re

import numpy as np

from lumara_embeddings.backends.base import ProgressReporter

_TOKEN_RE = re.compile(r"\w+")


class DeterministicEmbeddingBackend:
    """Stable hash-based embeddings with fixed dimension.

    Each token contributes a pseudo-random direction derived from its hash, so
    texts sharing most of their tokens land close together while unrelated
    texts are near-orthogonal. Tokens are case-sensitive, matching how the
    cache keys text.
    """

    name = "deterministic"

    def __init__(self, *, model_name: str, dimension: int, normalize: bool) -> None:
        self.model_name = model_name
        self.dimension = dimension
        self._normalize = normalize
        self._loaded = False

    async def load(self, report: ProgressReporter) -> None:
        report(0.0, "Preparing deterministic embeddings")
        self._loaded = True
        report(100.0, "Deterministic embeddings ready")

    def _token_vector(self, token: str) -> np.ndarray:
        values = np.zeros(self.dimension, dtype=np.float64)
        for idx in range(self.dimension):
            digest = hashlib.sha256(f"{token}:{idx}".encode("utf-8")).digest()
            raw = int.from_bytes(digest[:4], byteorder="big", signed=False)
            values[idx] = (raw / 2**31) - 1.0
        return values

    def _vectorize(self, text: str) -> list[float]:
        values = np.zeros(self.dimension, dtype=np.float64)
        tokens = _TOKEN_RE.findall(text) or [text]
        for token in tokens:
            values += self._token_vector(token)

        if self._normalize:
            norm = float(np.linalg.norm(values))
            if norm > 0:
                values = values / norm
        return values.tolist()

    async def embed(self, inputs: list[str]) -> list[list[float]]:
        return [self._vectorize(item) for item in inputs]
