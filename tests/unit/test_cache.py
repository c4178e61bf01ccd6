from __future__ import annotations

from datetime import timedelta

import pytest

from lumara_embeddings.cache import EmbeddingCache, cache_key, normalize_text
from lumara_embeddings.storage.memory import InMemoryDurableStore
from lumara_embeddings.storage.sqlite import SQLiteDurableStore

VECTOR = (0.1, 0.2, 0.3)


def test_cache_key_ignores_surrounding_whitespace_but_not_case():
    assert cache_key("  hello world\n") == cache_key("hello world")
    assert cache_key("Hello world") != cache_key("hello world")
    assert normalize_text("\thello ") == "hello"


@pytest.mark.asyncio
async def test_set_then_get_round_trip():
    cache = EmbeddingCache(InMemoryDurableStore())

    await cache.set("hello", VECTOR)

    assert await cache.get("hello") == VECTOR
    assert await cache.has("hello") is True
    assert await cache.get("unknown") is None


@pytest.mark.asyncio
async def test_durable_hit_is_promoted_to_memory(tmp_path):
    db_path = str(tmp_path / "embeddings.db")
    first = EmbeddingCache(SQLiteDurableStore(db_path))
    await first.set("persisted text", VECTOR)
    await first.close()

    second = EmbeddingCache(SQLiteDurableStore(db_path))
    assert second.size == 0

    assert await second.get("persisted text") == VECTOR
    assert second.size == 1
    assert second.lookup_memory("persisted text") == VECTOR

    stats = await second.get_stats()
    assert stats.durable_hits == 1
    assert stats.memory_hits == 1
    await second.close()


@pytest.mark.asyncio
async def test_memory_tier_evicts_least_recently_used():
    durable = InMemoryDurableStore()
    cache = EmbeddingCache(durable, memory_capacity=2)

    await cache.set("a", (1.0,))
    await cache.set("b", (2.0,))
    assert cache.lookup_memory("a") == (1.0,)
    await cache.set("c", (3.0,))

    assert cache.lookup_memory("b") is None
    assert cache.lookup_memory("a") == (1.0,)
    assert cache.lookup_memory("c") == (3.0,)
    # Eviction only affects the memory tier.
    assert await durable.count() == 3
    assert await cache.get("b") == (2.0,)


@pytest.mark.asyncio
async def test_failing_durable_writes_are_absorbed(flaky_store, caplog):
    store = flaky_store(fail_writes=True)
    cache = EmbeddingCache(store)

    await cache.set("hello", VECTOR)

    assert await cache.get("hello") == VECTOR
    stats = await cache.get_stats()
    assert stats.durable_errors == 1
    assert stats.durable_size == 0
    assert "continuing memory-only" in caplog.text


@pytest.mark.asyncio
async def test_failing_durable_reads_count_as_miss(flaky_store):
    cache = EmbeddingCache(flaky_store(fail_reads=True))

    assert await cache.get("anything") is None

    stats = await cache.get_stats()
    assert stats.misses == 1
    assert stats.durable_errors == 1


@pytest.mark.asyncio
async def test_cache_without_durable_tier():
    cache = EmbeddingCache()

    await cache.set("hello", VECTOR)

    assert await cache.get("hello") == VECTOR
    assert await cache.sweep_expired() == 0
    stats = await cache.get_stats()
    assert stats.durable_size is None


@pytest.mark.asyncio
async def test_clear_empties_both_tiers():
    durable = InMemoryDurableStore()
    cache = EmbeddingCache(durable)
    await cache.set("hello", VECTOR)

    await cache.clear()

    assert cache.size == 0
    assert await durable.count() == 0
    assert await cache.get("hello") is None


@pytest.mark.asyncio
async def test_sweep_removes_entries_unused_past_retention(clock):
    durable = InMemoryDurableStore()
    cache = EmbeddingCache(durable, retention=timedelta(days=30), clock=clock)

    await cache.set("old", (1.0,))
    await cache.set("kept alive", (2.0,))
    clock.advance(days=20)
    assert await cache.get("kept alive") == (2.0,)
    clock.advance(days=15)

    removed = await cache.sweep_expired()

    assert removed == 1
    assert await durable.contains(cache_key("old")) is False
    assert await durable.contains(cache_key("kept alive")) is True
    assert cache.lookup_memory("old") is None


@pytest.mark.asyncio
async def test_initialize_sweeps_once(clock):
    durable = InMemoryDurableStore()
    writer = EmbeddingCache(durable, clock=clock)
    await writer.set("stale", (1.0,))
    clock.advance(days=31)

    cache = EmbeddingCache(durable, clock=clock)
    await cache.initialize()

    assert await durable.count() == 0


@pytest.mark.asyncio
async def test_preload_loads_most_recently_used(clock):
    durable = InMemoryDurableStore()
    writer = EmbeddingCache(durable, clock=clock)
    for idx in range(5):
        await writer.set(f"text {idx}", (float(idx),))
        clock.advance(minutes=1)

    cache = EmbeddingCache(durable, clock=clock)
    loaded = await cache.preload_cache(limit=2)

    assert loaded == 2
    assert cache.lookup_memory("text 4") == (4.0,)
    assert cache.lookup_memory("text 3") == (3.0,)
    assert cache.lookup_memory("text 0") is None


@pytest.mark.asyncio
async def test_stats_report_size_usage_and_hit_rate(clock):
    cache = EmbeddingCache(InMemoryDurableStore(), clock=clock)
    await cache.set("first", VECTOR)
    clock.advance(hours=1)
    await cache.set("second", VECTOR)

    await cache.get("first")
    await cache.get("missing")
    stats = await cache.get_stats()

    assert stats.size == 2
    assert stats.memory_usage_estimate > 2 * len(VECTOR) * 8
    assert stats.newest_entry - stats.oldest_entry == timedelta(hours=1)
    assert stats.memory_hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_close_persists_access_times(clock):
    durable = InMemoryDurableStore()
    cache = EmbeddingCache(durable, clock=clock)
    await cache.set("hello", VECTOR)
    clock.advance(days=10)
    cache.lookup_memory("hello")

    await cache.close()

    entry = await durable.get(cache_key("hello"))
    assert entry.last_accessed_at == clock.now


@pytest.mark.asyncio
async def test_pending_access_times_stay_within_memory_capacity():
    durable = InMemoryDurableStore()
    writer = EmbeddingCache(durable)
    for idx in range(50):
        await writer.set(f"text {idx}", (float(idx),))

    cache = EmbeddingCache(durable, memory_capacity=2)
    for idx in range(50):
        assert await cache.get(f"text {idx}") == (float(idx),)
        assert len(cache._dirty) <= cache.memory_capacity

    assert cache.size == 2


@pytest.mark.asyncio
async def test_memory_only_cache_tracks_no_pending_access_times():
    cache = EmbeddingCache(memory_capacity=2)
    for idx in range(50):
        await cache.set(f"text {idx}", (float(idx),))
        assert await cache.get(f"text {idx}") == (float(idx),)

    assert cache._dirty == {}


@pytest.mark.asyncio
async def test_access_times_are_persisted_without_close(clock):
    durable = InMemoryDurableStore()
    cache = EmbeddingCache(durable, memory_capacity=4, clock=clock)
    await cache.set("a", (1.0,))
    await cache.set("b", (2.0,))
    clock.advance(days=10)

    await cache.get("a")
    await cache.get("b")

    entry = await durable.get(cache_key("a"))
    assert entry.last_accessed_at == clock.now
    assert cache._dirty == {}


@pytest.mark.asyncio
async def test_failed_access_time_flush_keeps_pending_and_skips_sweep(flaky_store, clock):
    store = flaky_store()
    cache = EmbeddingCache(store, retention=timedelta(days=30), clock=clock)
    await cache.set("used daily", (1.0,))
    clock.advance(days=29)
    assert await cache.get("used daily") == (1.0,)

    store.fail_writes = True
    clock.advance(days=2)
    assert await cache.sweep_expired() == 0
    assert await store.contains(cache_key("used daily")) is True
    assert cache_key("used daily") in cache._dirty

    store.fail_writes = False
    assert await cache.sweep_expired() == 0
    entry = await store.get(cache_key("used daily"))
    assert entry.last_accessed_at == clock.now - timedelta(days=2)


class NoScanDurableStore(InMemoryDurableStore):
    def iterate(self):
        raise AssertionError("stats should not load stored vectors")


@pytest.mark.asyncio
async def test_stats_use_count_and_created_range(clock):
    durable = NoScanDurableStore()
    writer = EmbeddingCache(durable, clock=clock)
    await writer.set("first", VECTOR)
    first_created = clock.now
    clock.advance(days=3)
    await writer.set("second", VECTOR)

    stats = await EmbeddingCache(durable, clock=clock).get_stats()

    assert stats.size == 0
    assert stats.durable_size == 2
    assert stats.oldest_entry == first_created
    assert stats.newest_entry == clock.now
