"""Sentence-transformers backend for real local embedding generation."""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np

from lumara_embeddings.backends.base import ProgressReporter


class SentenceTransformersEmbeddingBackend:
    """Embeddings backend powered by sentence-transformers.

    The model is not instantiated until ``load`` runs, so constructing the
    backend never touches the network or disk.
    """

    name = "sentence_transformers"

    def __init__(
        self,
        *,
        model_name: str,
        dimension: int,
        normalize: bool,
        trust_remote_code: bool,
    ) -> None:
        self.model_name = model_name
        self.dimension = dimension
        self._normalize = normalize
        self._trust_remote_code = trust_remote_code
        self._model: Any = None

    def _load_sync(self) -> Any:
        try:
            from sentence_transformers import SentenceTransformer
        except ModuleNotFoundError as exc:  # pragma: no cover - depends on optional extra
            raise RuntimeError(
                "sentence-transformers backend selected but dependency is missing. "
                "Install with: pip install -e '.[local]'"
            ) from exc

        return SentenceTransformer(
            self.model_name,
            trust_remote_code=self._trust_remote_code,
        )

    async def load(self, report: ProgressReporter) -> None:
        report(0.0, f"Loading {self.model_name}")
        model = await asyncio.to_thread(self._load_sync)
        report(90.0, "Model weights loaded")

        dim = model.get_sentence_embedding_dimension()
        if dim:
            self.dimension = int(dim)
        self._model = model
        report(100.0, f"{self.model_name} ready ({self.dimension} dimensions)")

    def _encode_sync(self, inputs: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            inputs,
            normalize_embeddings=self._normalize,
            convert_to_numpy=True,
        )
        if isinstance(vectors, np.ndarray):
            return vectors.astype(np.float64).tolist()
        return [np.asarray(item, dtype=np.float64).tolist() for item in vectors]

    async def embed(self, inputs: list[str]) -> list[list[float]]:
        if self._model is None:
            raise RuntimeError("sentence-transformers model has not been loaded")
        return await asyncio.to_thread(self._encode_sync, inputs)
