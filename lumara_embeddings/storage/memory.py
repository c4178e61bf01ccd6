"""Process-local durable store used for tests and memory-only deployments."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

from lumara_embeddings.storage.base import CacheEntry


class InMemoryDurableStore:
    """Dict-backed ``DurableStore``. Survives cache restarts within one process."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def contains(self, key: str) -> bool:
        return key in self._entries

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def iterate(self) -> AsyncIterator[CacheEntry]:
        for entry in list(self._entries.values()):
            yield entry

    async def clear(self) -> None:
        self._entries.clear()

    async def count(self) -> int:
        return len(self._entries)

    async def created_range(self) -> tuple[datetime | None, datetime | None]:
        if not self._entries:
            return None, None
        stamps = [entry.created_at for entry in self._entries.values()]
        return min(stamps), max(stamps)

    async def close(self) -> None:
        return None
