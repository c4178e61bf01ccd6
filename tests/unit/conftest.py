from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from lumara_embeddings.backends.deterministic import DeterministicEmbeddingBackend
from lumara_embeddings.errors import CacheStorageError
from lumara_embeddings.storage.memory import InMemoryDurableStore


class CountingBackend:
    """Deterministic backend that records load/embed calls and can be slowed or broken."""

    name = "counting"

    def __init__(
        self,
        *,
        dimension: int = 16,
        load_delay: float = 0.0,
        embed_delay: float = 0.0,
        fail_load: bool = False,
    ) -> None:
        self.model_name = "test-model"
        self.dimension = dimension
        self.load_delay = load_delay
        self.embed_delay = embed_delay
        self.fail_load = fail_load
        self.load_calls = 0
        self.embed_calls: list[list[str]] = []
        self._inner = DeterministicEmbeddingBackend(
            model_name=self.model_name,
            dimension=dimension,
            normalize=True,
        )

    async def load(self, report) -> None:
        self.load_calls += 1
        report(10.0, "Downloading test model")
        if self.load_delay:
            await asyncio.sleep(self.load_delay)
        if self.fail_load:
            raise OSError("network unreachable")
        await self._inner.load(report)

    async def embed(self, inputs: list[str]) -> list[list[float]]:
        self.embed_calls.append(list(inputs))
        if self.embed_delay:
            await asyncio.sleep(self.embed_delay)
        return await self._inner.embed(inputs)


class FlakyDurableStore(InMemoryDurableStore):
    """In-memory store whose reads or writes can be switched to fail."""

    def __init__(self, *, fail_reads: bool = False, fail_writes: bool = False) -> None:
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    async def get(self, key):
        if self.fail_reads:
            raise CacheStorageError("disk unavailable")
        return await super().get(key)

    async def put(self, entry):
        if self.fail_writes:
            raise CacheStorageError("disk full")
        await super().put(entry)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def counting_backend() -> type[CountingBackend]:
    return CountingBackend


@pytest.fixture
def flaky_store() -> type[FlakyDurableStore]:
    return FlakyDurableStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
