"""Two-tier embedding cache: a bounded in-memory LRU in front of a durable store.

Lookup order is memory, then durable, then miss. A durable hit is promoted into
the memory tier before ``get`` returns. The durable tier is an optimization
only: every storage failure is logged, counted and treated as a miss or no-op,
so a broken persistence layer degrades to memory-only caching.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import heapq
import itertools
import logging
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from lumara_embeddings.storage.base import CacheEntry, DurableStore
from lumara_embeddings.vector_math import Embedding, to_embedding

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_CAPACITY = 1000
DEFAULT_RETENTION = timedelta(days=30)

# Rough per-entry bookkeeping cost on top of the 8 bytes per component.
_ENTRY_OVERHEAD_BYTES = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_text(text: str) -> str:
    """Trim surrounding whitespace. Case is preserved: embeddings are case-sensitive."""
    return text.strip()


def cache_key(text: str) -> str:
    """Stable cache key for ``text`` (sha256 of the normalized text)."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time cache statistics."""

    size: int
    memory_usage_estimate: int
    oldest_entry: datetime | None
    newest_entry: datetime | None
    durable_size: int | None
    memory_hits: int
    durable_hits: int
    misses: int
    hit_rate: float
    durable_errors: int


class EmbeddingCache:
    """Memory + durable cache from normalized text to embedding.

    Mutations (``set``, ``clear``, sweeps and flushes) are serialized through
    one lock; memory-tier reads need none on a single event loop.
    """

    def __init__(
        self,
        durable: DurableStore | None = None,
        *,
        memory_capacity: int = DEFAULT_MEMORY_CAPACITY,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if memory_capacity < 1:
            raise ValueError("memory_capacity must be >= 1")
        self._durable = durable
        self._capacity = memory_capacity
        self._retention = retention
        self._clock = clock
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        # Memory-resident entries whose last_accessed_at moved on a hit but is
        # not yet persisted. Always a subset of the memory tier's keys.
        self._dirty: dict[str, CacheEntry] = {}
        self._dirty_limit = max(1, memory_capacity // 2)
        self._lock = asyncio.Lock()
        self._initialized = False
        self._sweeper: asyncio.Task[None] | None = None

        self._memory_hits = 0
        self._durable_hits = 0
        self._misses = 0
        self._durable_errors = 0

    @property
    def size(self) -> int:
        return len(self._memory)

    @property
    def memory_capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._memory)

    async def initialize(self) -> None:
        """Run the startup sweep of expired durable entries (once)."""
        if self._initialized:
            return
        self._initialized = True
        await self.sweep_expired()

    def _durable_failed(self, action: str, exc: BaseException) -> None:
        self._durable_errors += 1
        logger.warning("Embedding cache %s failed; continuing memory-only: %s", action, exc)

    def _remember(self, entry: CacheEntry) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self._capacity:
            evicted, _ = self._memory.popitem(last=False)
            self._dirty.pop(evicted, None)

    def _mark_dirty(self, entry: CacheEntry) -> None:
        if self._durable is not None:
            self._dirty[entry.key] = entry

    def lookup_memory(self, text: str) -> Embedding | None:
        """Memory-tier only lookup. Counts a hit but never a miss."""
        key = cache_key(text)
        entry = self._memory.get(key)
        if entry is None:
            return None

        entry = entry.touched(self._clock())
        self._memory[key] = entry
        self._memory.move_to_end(key)
        self._mark_dirty(entry)
        self._memory_hits += 1
        return entry.vector

    async def flush_if_due(self) -> None:
        """Persist pending access times once enough hits have piled up."""
        if len(self._dirty) >= self._dirty_limit and not self._lock.locked():
            await self.flush()

    async def get(self, text: str) -> Embedding | None:
        """Return the cached embedding for ``text`` or ``None``. Never raises."""
        vector = self.lookup_memory(text)
        if vector is not None:
            await self.flush_if_due()
            return vector

        if self._durable is None:
            self._misses += 1
            return None

        key = cache_key(text)
        try:
            entry = await self._durable.get(key)
        except Exception as exc:
            self._durable_failed("read", exc)
            self._misses += 1
            return None

        if entry is None:
            self._misses += 1
            return None

        entry = entry.touched(self._clock())
        self._remember(entry)
        self._mark_dirty(entry)
        self._durable_hits += 1
        await self.flush_if_due()
        return entry.vector

    async def has(self, text: str) -> bool:
        key = cache_key(text)
        if key in self._memory:
            return True
        if self._durable is None:
            return False
        try:
            return await self._durable.contains(key)
        except Exception as exc:
            self._durable_failed("existence check", exc)
            return False

    async def set(self, text: str, vector: Sequence[float]) -> None:
        """Store ``vector`` in both tiers. Durable failures are absorbed."""
        key = cache_key(text)
        now = self._clock()
        existing = self._memory.get(key)
        entry = CacheEntry(
            key=key,
            vector=to_embedding(vector),
            created_at=existing.created_at if existing is not None else now,
            last_accessed_at=now,
        )
        self._remember(entry)
        self._dirty.pop(key, None)

        if self._durable is None:
            return
        async with self._lock:
            try:
                await self._durable.put(entry)
            except Exception as exc:
                self._durable_failed("write", exc)

    async def clear(self) -> None:
        """Drop every entry from both tiers."""
        async with self._lock:
            self._memory.clear()
            self._dirty.clear()
            if self._durable is None:
                return
            try:
                await self._durable.clear()
            except Exception as exc:
                self._durable_failed("clear", exc)

    async def flush(self) -> None:
        """Persist access times refreshed by hits since the last flush."""
        async with self._lock:
            await self._flush_locked()

    async def _flush_locked(self) -> bool:
        """Write pending access times. Returns ``False`` if any write failed."""
        if self._durable is None or not self._dirty:
            return True
        pending = list(self._dirty.values())
        self._dirty.clear()
        for idx, entry in enumerate(pending):
            try:
                await self._durable.put(entry)
            except Exception as exc:
                self._durable_failed("access-time flush", exc)
                # Hits recorded while awaiting are newer; keep those.
                for unflushed in pending[idx:]:
                    if unflushed.key in self._memory:
                        self._dirty.setdefault(unflushed.key, unflushed)
                return False
        return True

    async def sweep_expired(self) -> int:
        """Delete entries unused for longer than the retention window.

        Returns:
            Number of durable entries removed.
        """
        if self._durable is None:
            return 0

        cutoff = self._clock() - self._retention
        removed = 0
        async with self._lock:
            if not await self._flush_locked():
                logger.warning("Skipping embedding cache expiry sweep: access times not persisted")
                return 0
            try:
                expired = [
                    entry.key
                    async for entry in self._durable.iterate()
                    if entry.last_accessed_at < cutoff
                ]
                for key in expired:
                    await self._durable.delete(key)
                    self._memory.pop(key, None)
                    self._dirty.pop(key, None)
                    removed += 1
            except Exception as exc:
                self._durable_failed("expiry sweep", exc)

        if removed:
            logger.info("Removed %d embeddings unused since %s", removed, cutoff.isoformat())
        return removed

    async def get_stats(self) -> CacheStats:
        timestamps = [entry.created_at for entry in self._memory.values()]
        memory_usage = sum(
            len(entry.vector) * 8 + _ENTRY_OVERHEAD_BYTES for entry in self._memory.values()
        )

        durable_size: int | None = None
        if self._durable is not None:
            try:
                durable_size = await self._durable.count()
                oldest, newest = await self._durable.created_range()
            except Exception as exc:
                self._durable_failed("stats query", exc)
                durable_size = None
            else:
                timestamps.extend(stamp for stamp in (oldest, newest) if stamp is not None)

        lookups = self._memory_hits + self._durable_hits + self._misses
        hits = self._memory_hits + self._durable_hits
        return CacheStats(
            size=len(self._memory),
            memory_usage_estimate=memory_usage,
            oldest_entry=min(timestamps) if timestamps else None,
            newest_entry=max(timestamps) if timestamps else None,
            durable_size=durable_size,
            memory_hits=self._memory_hits,
            durable_hits=self._durable_hits,
            misses=self._misses,
            hit_rate=(hits / lookups) if lookups else 0.0,
            durable_errors=self._durable_errors,
        )

    async def preload_cache(self, limit: int = 100) -> int:
        """Load the ``limit`` most recently used durable entries into memory.

        Returns:
            Number of entries added to the memory tier.
        """
        if self._durable is None or limit <= 0:
            return 0
        limit = min(limit, self._capacity)

        heap: list[tuple[datetime, int, CacheEntry]] = []
        counter = itertools.count()
        try:
            async for entry in self._durable.iterate():
                item = (entry.last_accessed_at, next(counter), entry)
                if len(heap) < limit:
                    heapq.heappush(heap, item)
                elif item[0] > heap[0][0]:
                    heapq.heapreplace(heap, item)
        except Exception as exc:
            self._durable_failed("preload", exc)
            return 0

        loaded = 0
        # Oldest first so the most recently used entry ends up last in LRU order.
        for _, _, entry in sorted(heap, key=lambda item: (item[0], item[1])):
            if entry.key in self._memory:
                continue
            self._remember(entry)
            loaded += 1

        logger.info("Preloaded %d cached embeddings into memory", loaded)
        return loaded

    def start_sweeper(self, interval_seconds: float) -> None:
        """Sweep expired entries every ``interval_seconds`` in the background."""
        if interval_seconds <= 0 or self._sweeper is not None:
            return
        self._sweeper = asyncio.create_task(self._sweep_periodically(interval_seconds))

    async def _sweep_periodically(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("Periodic embedding cache sweep failed")

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def close(self) -> None:
        """Stop background work, persist access times and close the durable store."""
        await self.stop_sweeper()
        await self.flush()
        if self._durable is None:
            return
        try:
            await self._durable.close()
        except Exception as exc:
            self._durable_failed("close", exc)
