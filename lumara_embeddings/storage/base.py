"""Durable key-value store contract for the embedding cache."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from lumara_embeddings.vector_math import Embedding


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One cached embedding, keyed by the hash of its normalized text."""

    key: str
    vector: Embedding
    created_at: datetime
    last_accessed_at: datetime

    def touched(self, when: datetime) -> CacheEntry:
        return replace(self, last_accessed_at=when)


class DurableStore(Protocol):
    """Host persistence layer for cache entries.

    Implementations raise ``CacheStorageError`` on failure and guarantee
    single-record read/write atomicity. Nothing more is assumed.
    """

    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry stored under ``key``."""

    async def contains(self, key: str) -> bool:
        """Check for ``key`` without loading the vector."""

    async def put(self, entry: CacheEntry) -> None:
        """Insert or replace ``entry``."""

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    def iterate(self) -> AsyncIterator[CacheEntry]:
        """Yield every stored entry."""

    async def clear(self) -> None:
        """Remove all entries."""

    async def count(self) -> int:
        """Number of stored entries."""

    async def created_range(self) -> tuple[datetime | None, datetime | None]:
        """Oldest and newest ``created_at`` without loading vectors."""

    async def close(self) -> None:
        """Release underlying resources."""
