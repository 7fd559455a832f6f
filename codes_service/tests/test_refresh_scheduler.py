from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from codes_service.app.models.code import AggregationResult
from codes_service.app.scheduler.refresh_scheduler import RefreshScheduler


NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeAggregateService:
    """refresh(hint) 호출만 기록하는 가짜 집계 서비스."""

    def __init__(self, fail_first: int = 0) -> None:
        self.calls: list[str] = []
        self._fail_first = fail_first
        self._waiters: list[tuple[int, asyncio.Event]] = []

    async def refresh(self, scope_hint: str) -> AggregationResult:
        self.calls.append(scope_hint)
        for count, event in self._waiters:
            if len(self.calls) >= count:
                event.set()
        if len(self.calls) <= self._fail_first:
            raise RuntimeError("upstream exploded")
        return AggregationResult(codes=[], sources={}, generated_at=NOW)

    async def wait_for_calls(self, count: int) -> None:
        event = asyncio.Event()
        if len(self.calls) >= count:
            return
        self._waiters.append((count, event))
        await asyncio.wait_for(event.wait(), timeout=2.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("interval", [0, -5])
async def test_non_positive_interval_never_starts(interval: float) -> None:
    service = FakeAggregateService()
    scheduler = RefreshScheduler(service, interval)

    scheduler.start()
    await asyncio.sleep(0)

    assert scheduler.running is False
    assert service.calls == []
    # 시작하지 않은 스케줄러의 stop 은 아무 일도 하지 않는다.
    await scheduler.stop()


@pytest.mark.asyncio
async def test_start_runs_initial_refresh_for_recent_and_all() -> None:
    service = FakeAggregateService()
    scheduler = RefreshScheduler(service, 60)

    scheduler.start()
    await service.wait_for_calls(2)

    assert scheduler.running is True
    assert service.calls == ["recent", "all"]

    await scheduler.stop()


@pytest.mark.asyncio
async def test_failed_refresh_is_logged_and_loop_keeps_going(caplog: pytest.LogCaptureFixture) -> None:
    service = FakeAggregateService(fail_first=1)
    scheduler = RefreshScheduler(service, 0.01)

    with caplog.at_level(logging.ERROR):
        scheduler.start()
        # 최초 실행 2회 + 주기 실행 2회
        await service.wait_for_calls(4)
        await scheduler.stop()

    assert service.calls[:4] == ["recent", "all", "recent", "all"]
    failures = [r for r in caplog.records if "codes refresh failed" in r.getMessage()]
    assert len(failures) == 1
    assert "hint=recent" in failures[0].getMessage()


@pytest.mark.asyncio
async def test_stop_ends_the_background_task() -> None:
    service = FakeAggregateService()
    scheduler = RefreshScheduler(service, 3600)

    scheduler.start()
    await service.wait_for_calls(2)
    task = scheduler._task

    await scheduler.stop()

    assert task is not None and task.done() and not task.cancelled()
    assert scheduler.running is False
    # 긴 interval 을 기다리지 않고 바로 멈췄으므로 주기 실행은 없다.
    assert service.calls == ["recent", "all"]
