from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from common.kv.store import InMemoryKeyValueStore

from codes_service.app.cache import CacheKeys, CodesCache
from codes_service.app.config import AggregateConfig, SourceConfig
from codes_service.app.models.code import Code, SourceHealth, SourceStatus
from codes_service.app.services.aggregate_service import CodesAggregateService
from codes_service.app.sources.base import SourceFetchResult


NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSource:
    """CodeSource 와 같은 인터페이스를 가진 가짜 소스."""

    def __init__(self, name: str, trust_weight: float = 0.0) -> None:
        self.name = name
        self.trust_weight = trust_weight
        self.codes: list[str] = []
        self.status = SourceStatus.OK
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def fetch(self, scope_hint: str) -> SourceFetchResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.status is SourceStatus.FAILED:
            return SourceFetchResult(
                codes=[],
                health=SourceHealth(status=SourceStatus.FAILED, last_fetch=NOW, error="boom"),
            )
        codes = [
            Code(code=token, source=self.name, timestamp=NOW - timedelta(minutes=i))
            for i, token in enumerate(self.codes)
        ]
        return SourceFetchResult(
            codes=codes,
            health=SourceHealth(status=self.status, last_fetch=NOW, item_count=len(codes)),
        )


def _config() -> AggregateConfig:
    return AggregateConfig(
        sources=[SourceConfig(name="snelp"), SourceConfig(name="reddit")],
        priority=["snelp", "reddit"],
    )


def _service(*sources: FakeSource, clock: FakeClock | None = None) -> CodesAggregateService:
    clock = clock or FakeClock()
    cache = CodesCache(
        InMemoryKeyValueStore(clock=clock), ttl_seconds=60, stale_ttl_seconds=600, clock=clock
    )
    return CodesAggregateService(list(sources), _config(), cache, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_aggregate_merges_and_reports_every_source() -> None:
    snelp = FakeSource("snelp", 1.0)
    snelp.codes = ["ABCD-1234"]
    reddit = FakeSource("reddit", 0.5)
    reddit.codes = ["abcd1234", "WXYZ-5678"]

    result = await _service(reddit, snelp).aggregate("recent")

    assert set(result.sources) == {"snelp", "reddit"}
    assert [c.code for c in result.codes] == ["ABCD-1234", "WXYZ-5678"]
    assert result.codes[0].source == "snelp"
    assert result.codes[0].verified is True
    assert result.generated_at == NOW


@pytest.mark.asyncio
async def test_all_sources_failed_returns_well_formed_empty_result() -> None:
    snelp = FakeSource("snelp")
    snelp.status = SourceStatus.FAILED
    reddit = FakeSource("reddit")
    reddit.status = SourceStatus.FAILED

    result = await _service(snelp, reddit).aggregate("all")

    assert result.codes == []
    assert {h.status for h in result.sources.values()} == {SourceStatus.FAILED}


@pytest.mark.asyncio
async def test_failed_source_falls_back_to_cached_raw_result() -> None:
    snelp = FakeSource("snelp")
    snelp.codes = ["CACHED-1234"]
    service = _service(snelp)

    await service.aggregate("recent")
    snelp.status = SourceStatus.FAILED
    result = await service.aggregate("recent")

    assert [c.code for c in result.codes] == ["CACHED-1234"]
    assert result.sources["snelp"].status is SourceStatus.DEGRADED
    assert result.sources["snelp"].item_count == 1


@pytest.mark.asyncio
async def test_get_result_serves_fresh_cache_without_refetch() -> None:
    snelp = FakeSource("snelp")
    snelp.codes = ["FRESH-1234"]
    service = _service(snelp)

    first = await service.get_result("recent")
    second = await service.get_result("recent")

    assert snelp.calls == 1
    assert first.stale is False and second.stale is False
    assert [c.code for c in second.result.codes] == ["FRESH-1234"]


@pytest.mark.asyncio
async def test_force_bypasses_cache() -> None:
    snelp = FakeSource("snelp")
    service = _service(snelp)

    await service.get_result("recent")
    await service.get_result("recent", force=True)

    assert snelp.calls == 2


@pytest.mark.asyncio
async def test_stale_entry_is_served_while_one_background_refresh_runs() -> None:
    clock = FakeClock()
    snelp = FakeSource("snelp")
    snelp.codes = ["OLD-1234"]
    service = _service(snelp, clock=clock)

    await service.get_result("recent")
    clock.now += 120
    snelp.codes = ["NEW-5678"]
    snelp.gate = asyncio.Event()

    stale_1 = await service.get_result("recent")
    stale_2 = await service.get_result("recent")

    assert stale_1.stale is True and stale_2.stale is True
    assert [c.code for c in stale_1.result.codes] == ["OLD-1234"]
    assert "recent" in service._refreshing

    snelp.gate.set()
    await service.wait_for_refreshes()
    # stale 조회가 두 번이어도 백그라운드 갱신은 한 번만 돈다.
    assert snelp.calls == 2

    fresh = await service.get_result("recent")
    assert fresh.stale is False
    assert [c.code for c in fresh.result.codes] == ["NEW-5678"]
    await service.aclose()


@pytest.mark.asyncio
async def test_aggregated_result_is_written_under_scope_key() -> None:
    snelp = FakeSource("snelp")
    snelp.codes = ["ABCD-1234"]
    service = _service(snelp)

    await service.refresh("all")

    cached = await service._cache.get(CacheKeys.aggregated("all"))
    assert cached["codes"][0]["code"] == "ABCD-1234"


@pytest.mark.asyncio
async def test_degraded_result_does_not_replace_cached_full_result() -> None:
    snelp = FakeSource("snelp")
    snelp.codes = ["FULL-1111", "FULL-2222"]
    service = _service(snelp)

    await service.aggregate("recent")

    # given: 부분 결과(degraded) 뒤에 완전한 실패가 이어지는 상황
    snelp.status = SourceStatus.DEGRADED
    snelp.codes = ["FULL-1111"]
    partial = await service.aggregate("recent")
    snelp.status = SourceStatus.FAILED
    fallback = await service.aggregate("recent")

    assert [c.code for c in partial.codes] == ["FULL-1111"]
    assert sorted(c.code for c in fallback.codes) == ["FULL-1111", "FULL-2222"]
    assert fallback.sources["snelp"].status is SourceStatus.DEGRADED


@pytest.mark.asyncio
async def test_aclose_waits_for_quick_refresh_and_cancels_stuck_one() -> None:
    clock = FakeClock()
    snelp = FakeSource("snelp")
    snelp.codes = ["OLD-1234"]
    service = _service(snelp, clock=clock)

    await service.get_result("recent")
    clock.now += 120
    snelp.gate = asyncio.Event()
    await service.get_result("recent")
    task = service._refreshing["recent"]

    await service.aclose(drain_timeout=0.01)

    assert task.cancelled()
    assert service._refreshing == {}

    # 바로 끝나는 갱신은 취소하지 않고 끝까지 기다린다.
    snelp.gate = None
    snelp.codes = ["NEW-5678"]
    clock.now += 120
    await service.get_result("all")
    clock.now += 120
    await service.get_result("all")
    quick = service._refreshing["all"]

    await service.aclose()

    assert quick.done() and not quick.cancelled()
    cached = await service._cache.get(CacheKeys.aggregated("all"))
    assert cached["codes"][0]["code"] == "NEW-5678"
