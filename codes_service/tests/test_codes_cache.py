from __future__ import annotations

import pytest

from common.kv.store import InMemoryKeyValueStore, NullKeyValueStore

from codes_service.app.cache import CacheKeys, CodesCache


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore(NullKeyValueStore):
    """모든 연산에서 예외를 던지는 저장소 (redis 장애 상황)."""

    async def get(self, key: str) -> str | None:
        raise ConnectionError("redis down")

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        raise ConnectionError("redis down")


def _cache(clock: FakeClock, store=None) -> CodesCache:
    return CodesCache(
        store or InMemoryKeyValueStore(clock=clock),
        ttl_seconds=60,
        stale_ttl_seconds=600,
        clock=clock,
    )


def test_cache_keys_layout() -> None:
    assert CacheKeys.aggregated("recent") == "aggregated_codes:recent"
    assert CacheKeys.source("snelp") == "source:snelp"


@pytest.mark.asyncio
async def test_entry_is_fresh_then_stale_then_gone() -> None:
    clock = FakeClock()
    cache = _cache(clock)

    assert await cache.set("k", {"value": 1}) is True

    entry = await cache.get_entry("k")
    assert entry is not None and entry.data == {"value": 1} and entry.is_stale is False
    assert await cache.get("k") == {"value": 1}

    clock.now += 61
    entry = await cache.get_entry("k")
    assert entry is not None and entry.is_stale is True
    assert await cache.get("k") is None

    clock.now += 600
    assert await cache.get_entry("k") is None


@pytest.mark.asyncio
async def test_prefix_is_applied_and_malformed_entries_are_misses() -> None:
    clock = FakeClock()
    store = InMemoryKeyValueStore(clock=clock)
    cache = _cache(clock, store)

    await cache.set("a", 1)
    await store.set("codes:b", "not json")

    assert await store.get("codes:a") is not None
    assert await cache.get("b") is None


@pytest.mark.asyncio
async def test_backend_errors_degrade_to_miss() -> None:
    cache = _cache(FakeClock(), BrokenStore())

    assert await cache.set("k", 1) is False
    assert await cache.get("k") is None
    assert await cache.get_entry("k") is None


@pytest.mark.asyncio
async def test_disabled_cache_never_stores() -> None:
    clock = FakeClock()
    cache = CodesCache(InMemoryKeyValueStore(clock=clock), enabled=False, clock=clock)

    assert await cache.set("k", 1) is False
    assert await cache.get("k") is None
