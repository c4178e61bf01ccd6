"""Embedding model adapter: one-time load, validation and timeouts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

import numpy as np

from lumara_embeddings.backends.base import EmbeddingBackend
from lumara_embeddings.errors import (
    EmbeddingError,
    EmbeddingTimeoutError,
    GenerationError,
    InvalidInputError,
    ModelLoadError,
    NotInitializedError,
)
from lumara_embeddings.progress import ProgressCallback, ProgressTracker
from lumara_embeddings.vector_math import Embedding, to_embedding

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Side-effect free view of the model lifecycle."""

    model_name: str
    dimension: int
    is_ready: bool
    is_loading: bool


async def wait_with_timeout(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await ``awaitable``, converting a missed deadline into ``EmbeddingTimeoutError``."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except EmbeddingTimeoutError:
        raise
    except TimeoutError:
        raise EmbeddingTimeoutError(operation, timeout) from None


def _consume_result(task: asyncio.Task) -> None:
    # Callers may all have timed out; retrieve the outcome so it is not reported as lost.
    if not task.cancelled():
        task.exception()


def validate_text(text: object, max_chars: int | None = None) -> str:
    """Return ``text`` if it is a usable embedding input."""
    if not isinstance(text, str) or not text.strip():
        raise InvalidInputError("Text must be a non-empty string")
    if max_chars is not None and len(text) > max_chars:
        raise InvalidInputError(f"Text length {len(text)} exceeds configured limit {max_chars}")
    return text


class EmbeddingModel:
    """Long-lived wrapper around an ``EmbeddingBackend``.

    Construct once and pass by reference to every consumer. ``initialize`` is
    idempotent: concurrent callers await the same load task, and a failed load
    can be retried by calling ``initialize`` again.
    """

    def __init__(self, backend: EmbeddingBackend, *, max_input_chars: int | None = None) -> None:
        self._backend = backend
        self._max_input_chars = max_input_chars
        self._ready = False
        self._load_task: asyncio.Task[None] | None = None
        self.progress = ProgressTracker()

    @property
    def model_name(self) -> str:
        return self._backend.model_name

    @property
    def dimension(self) -> int:
        return self._backend.dimension

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_loading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    def info(self) -> ModelInfo:
        return ModelInfo(
            model_name=self.model_name,
            dimension=self.dimension,
            is_ready=self.is_ready,
            is_loading=self.is_loading,
        )

    def subscribe_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        return self.progress.subscribe(callback)

    async def initialize(
        self,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> None:
        """Load the model once.

        Raises:
            ModelLoadError: The backend could not load the model.
            EmbeddingTimeoutError: ``timeout`` elapsed first. The shared load
                keeps running for other callers.
        """
        if self._ready:
            return

        if self._load_task is None:
            # Clear a previous failure before anyone subscribes to the new attempt.
            self.progress.reset()
            self._load_task = asyncio.create_task(self._load())
            self._load_task.add_done_callback(_consume_result)

        load_task = self._load_task
        unsubscribe = self.progress.subscribe(on_progress) if on_progress is not None else None
        try:
            await wait_with_timeout(asyncio.shield(load_task), timeout, "Model initialization")
        finally:
            if unsubscribe is not None:
                unsubscribe()

    async def _load(self) -> None:
        self.progress.update(0.0, "Starting model load")
        try:
            await self._backend.load(self.progress.update)
        except Exception as exc:
            self._load_task = None
            self.progress.error(str(exc) or type(exc).__name__)
            logger.error("Embedding model %s failed to load: %s", self.model_name, exc)
            raise ModelLoadError(self.model_name, str(exc) or type(exc).__name__) from exc

        self._ready = True
        self.progress.complete("Model loaded successfully")
        logger.info("Embedding model %s ready (%d dimensions)", self.model_name, self.dimension)

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotInitializedError(self.model_name)

    async def embed(self, text: str, timeout: float | None = None) -> Embedding:
        """Generate the embedding of a single text."""
        self._require_ready()
        validate_text(text, self._max_input_chars)
        vectors = await wait_with_timeout(self._run_backend([text]), timeout, "Embedding generation")
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str], timeout: float | None = None) -> list[Embedding]:
        """Generate embeddings for ``texts`` in one backend call, preserving order."""
        self._require_ready()
        inputs = [validate_text(text, self._max_input_chars) for text in texts]
        if not inputs:
            return []
        return await wait_with_timeout(self._run_backend(inputs), timeout, "Batch embedding generation")

    async def _run_backend(self, inputs: list[str]) -> list[Embedding]:
        try:
            raw = await self._backend.embed(inputs)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise GenerationError(f"Embedding generation failed: {exc}") from exc

        if len(raw) != len(inputs):
            raise GenerationError(
                f"Embedding backend returned {len(raw)} vectors for {len(inputs)} inputs"
            )

        expected_dimension = self.dimension
        vectors: list[Embedding] = []
        for idx, vector in enumerate(raw):
            values = np.asarray(vector, dtype=np.float64)
            if values.ndim != 1 or values.shape[0] != expected_dimension:
                raise GenerationError(
                    f"Embedding backend returned invalid vector dimension at index {idx}: "
                    f"expected {expected_dimension}, got {values.size}"
                )
            if not np.all(np.isfinite(values)):
                raise GenerationError(f"Embedding backend returned non-finite values at index {idx}")
            vectors.append(to_embedding(values))
        return vectors

    def dispose(self) -> None:
        """Drop the loaded model; the next ``initialize`` loads it again."""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self._ready = False
        self.progress.reset()
