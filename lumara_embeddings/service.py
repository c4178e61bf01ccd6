"""Cache-or-generate orchestration with request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from functools import partial

from lumara_embeddings.cache import CacheStats, EmbeddingCache, normalize_text
from lumara_embeddings.errors import EmbeddingError, InvalidInputError
from lumara_embeddings.model import EmbeddingModel, ModelInfo, validate_text, wait_with_timeout
from lumara_embeddings.progress import ProgressCallback
from lumara_embeddings.telemetry import EmbeddingsMetrics, NoopEmbeddingsMetrics
from lumara_embeddings.vector_math import Embedding

logger = logging.getLogger(__name__)

_FlightKey = tuple[str, bool]


class EmbeddingService:
    """Generate embeddings through the two-tier cache.

    Concurrent requests for the same normalized text share one in-flight
    task, so a burst of identical inputs costs a single model invocation.
    Model load failures propagate as ``ModelLoadError`` and are never retried
    here; the cache is only written after a vector has been produced.
    """

    def __init__(
        self,
        model: EmbeddingModel,
        cache: EmbeddingCache,
        *,
        metrics: EmbeddingsMetrics | None = None,
        slow_generation_ms: float = 100.0,
        load_timeout: float | None = None,
    ) -> None:
        self._model = model
        self._cache = cache
        self._metrics: EmbeddingsMetrics = metrics or NoopEmbeddingsMetrics()
        self._slow_generation_ms = slow_generation_ms
        self._load_timeout = load_timeout
        self._in_flight: dict[_FlightKey, asyncio.Task[tuple[Embedding, bool]]] = {}

    @property
    def model(self) -> EmbeddingModel:
        return self._model

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    @property
    def metrics(self) -> EmbeddingsMetrics:
        return self._metrics

    @metrics.setter
    def metrics(self, value: EmbeddingsMetrics) -> None:
        self._metrics = value

    async def initialize(
        self,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> None:
        """Sweep the cache and load the model ahead of the first request."""
        await self._cache.initialize()
        await self._model.initialize(on_progress, timeout=timeout or self._load_timeout)

    def subscribe_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        return self._model.subscribe_progress(callback)

    def is_ready(self) -> bool:
        return self._model.is_ready

    def get_info(self) -> ModelInfo:
        return self._model.info()

    def _record(self, operation: str, status: str, input_count: int, cache_hits: int, started: float) -> None:
        self._metrics.record(
            operation=operation,
            status=status,
            input_count=input_count,
            cache_hits=cache_hits,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def generate_embedding(
        self,
        text: str,
        *,
        use_cache: bool = True,
        timeout: float | None = None,
    ) -> Embedding:
        """Return the embedding of ``text``, from cache when possible.

        Raises:
            InvalidInputError: ``text`` is empty or not a string.
            ModelLoadError: The model could not be loaded.
            EmbeddingTimeoutError: ``timeout`` elapsed. The shared generation
                keeps running and may still populate the cache.
        """
        started = time.perf_counter()
        try:
            normalized = normalize_text(validate_text(text))
            if use_cache:
                cached = self._cache.lookup_memory(normalized)
                if cached is not None:
                    await self._cache.flush_if_due()
                    self._record("generate", "ok", 1, 1, started)
                    return cached

            key = (normalized, use_cache)
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.create_task(self._resolve(normalized, use_cache))
                self._in_flight[key] = task
                task.add_done_callback(partial(self._finish_flight, key))

            vector, from_cache = await wait_with_timeout(
                asyncio.shield(task), timeout, "Embedding generation"
            )
        except EmbeddingError as exc:
            self._record("generate", exc.code, 1, 0, started)
            raise

        self._record("generate", "ok", 1, int(from_cache), started)
        return vector

    def _finish_flight(self, key: _FlightKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            task.exception()

    async def _ensure_model(self) -> None:
        if not self._model.is_ready:
            await self._model.initialize(timeout=self._load_timeout)

    async def _resolve(self, normalized: str, use_cache: bool) -> tuple[Embedding, bool]:
        if use_cache:
            cached = await self._cache.get(normalized)
            if cached is not None:
                return cached, True

        await self._ensure_model()
        generation_started = time.perf_counter()
        vector = await self._model.embed(normalized)
        self._warn_if_slow(generation_started, 1)

        if use_cache:
            await self._cache.set(normalized, vector)
        return vector, False

    async def generate_batch_embeddings(
        self,
        texts: Sequence[str],
        *,
        use_cache: bool = True,
        timeout: float | None = None,
    ) -> list[Embedding]:
        """Embed ``texts``; cache misses go to the model in one batch call.

        The result is positionally aligned with ``texts``.
        """
        started = time.perf_counter()
        input_count = 0 if isinstance(texts, str) else len(texts)
        try:
            if isinstance(texts, str) or not texts:
                raise InvalidInputError("Texts must be a non-empty list of strings")
            normalized = [normalize_text(validate_text(text)) for text in texts]
            vectors, hits = await wait_with_timeout(
                self._resolve_batch(normalized, use_cache),
                timeout,
                "Batch embedding generation",
            )
        except EmbeddingError as exc:
            self._record("generate_batch", exc.code, input_count, 0, started)
            raise

        self._record("generate_batch", "ok", input_count, hits, started)
        return vectors

    async def _resolve_batch(self, normalized: list[str], use_cache: bool) -> tuple[list[Embedding], int]:
        resolved: dict[str, Embedding] = {}
        from_cache: set[str] = set()
        misses: list[str] = []

        for text in dict.fromkeys(normalized):
            cached = await self._cache.get(text) if use_cache else None
            if cached is not None:
                resolved[text] = cached
                from_cache.add(text)
            else:
                misses.append(text)

        if misses:
            await self._ensure_model()
            generation_started = time.perf_counter()
            generated = await self._model.embed_batch(misses)
            self._warn_if_slow(generation_started, len(misses))
            for text, vector in zip(misses, generated):
                resolved[text] = vector
                if use_cache:
                    await self._cache.set(text, vector)

        logger.debug(
            "Resolved %d texts (%d unique, %d generated)",
            len(normalized),
            len(resolved),
            len(misses),
        )
        hits = sum(1 for text in normalized if text in from_cache)
        return [resolved[text] for text in normalized], hits

    def _warn_if_slow(self, started: float, count: int) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        per_text = elapsed_ms / max(1, count)
        if per_text > self._slow_generation_ms:
            logger.warning(
                "Embedding generation took %.1fms per text (target: <%.0fms)",
                per_text,
                self._slow_generation_ms,
            )

    async def get_cache_stats(self) -> CacheStats:
        return await self._cache.get_stats()

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def preload_cache(self, limit: int = 100) -> int:
        return await self._cache.preload_cache(limit)

    async def close(self) -> None:
        """Cancel pending generations, flush the cache and drop the model."""
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()
        await self._cache.close()
        self._model.dispose()
