from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from fastapi import Request
from pydantic import ValidationError

from common.types.datetime import utc_now

from ..cache import CacheKeys, CodesCache
from ..config import AggregateConfig
from ..exceptions import AggregationError
from ..models.code import AggregationResult, Code, SourceHealth, SourceStatus
from ..sources.base import CodeSource, SourceFetchResult
from .merge import merge_codes


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AggregateSnapshot:
    """API 가 돌려줄 집계 결과와, 그것이 stale 캐시에서 왔는지 여부."""

    result: AggregationResult
    stale: bool = False


class CodesAggregateService:
    """모든 코드 소스를 동시에 조회해 하나의 AggregationResult 로 합치는 서비스.

    - 소스 fan-out 은 asyncio.gather(return_exceptions=True) 로 수행한다.
    - 실패한 소스는 마지막으로 캐시된 원본 결과가 있으면 그것을 쓰고 degraded 로 보고한다.
    - get_result 는 stale-while-revalidate 로 캐시를 사용한다.
    """

    def __init__(
        self,
        sources: Sequence[CodeSource],
        config: AggregateConfig,
        cache: CodesCache,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sources = list(sources)
        self._config = config
        self._cache = cache
        self._clock = clock
        self._refreshing: dict[str, asyncio.Task[AggregationResult | None]] = {}

    @property
    def source_names(self) -> list[str]:
        return [src.name for src in self._sources]

    async def get_result(self, scope_hint: str, *, force: bool = False) -> AggregateSnapshot:
        """캐시를 우선 사용해 집계 결과를 반환한다.

        fresh 면 그대로, stale 이면 그대로 반환하면서 백그라운드 갱신을 한 번만 걸고,
        없으면 바로 집계한다. force=True 면 캐시를 건너뛴다.
        """

        key = CacheKeys.aggregated(scope_hint)

        if not force:
            entry = await self._cache.get_entry(key)
            if entry is not None:
                cached = self._restore_result(entry.data)
                if cached is not None:
                    if entry.is_stale:
                        self._schedule_refresh(scope_hint)
                    return AggregateSnapshot(result=cached, stale=entry.is_stale)

        result = await self.refresh(scope_hint)
        return AggregateSnapshot(result=result, stale=False)

    async def refresh(self, scope_hint: str) -> AggregationResult:
        """소스를 다시 조회해 집계하고 캐시에 저장한다."""

        result = await self.aggregate(scope_hint)
        await self._cache.set(CacheKeys.aggregated(scope_hint), result.model_dump(mode="json"))
        return result

    async def aggregate(self, scope_hint: str) -> AggregationResult:
        """캐시 없이 모든 소스를 조회해 병합한다. 부분 실패로는 예외를 올리지 않는다."""

        started_at = self._clock()
        logger.info("aggregating codes from %d sources (hint=%s)", len(self._sources), scope_hint)

        fetched = await asyncio.gather(
            *(src.fetch(scope_hint) for src in self._sources),
            return_exceptions=True,
        )

        results: list[tuple[str, SourceFetchResult]] = []
        for src, outcome in zip(self._sources, fetched):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(
                    "source fetch raised unexpectedly: %s", outcome, extra={"source": src.name}
                )
                outcome = SourceFetchResult(
                    codes=[],
                    health=SourceHealth(
                        status=SourceStatus.FAILED,
                        last_fetch=started_at,
                        error=str(outcome),
                    ),
                )
            results.append((src.name, await self._apply_fallback(src.name, outcome)))

        try:
            codes = merge_codes(
                results,
                self._config.priority,
                trust_weights={src.name: src.trust_weight for src in self._sources},
                verification_threshold=self._config.verification_threshold,
                trust_window=timedelta(hours=self._config.trust_window_hours),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("failed to merge source results")
            raise AggregationError("failed to merge source results") from exc

        sources = {name: res.health for name, res in results}
        failed = [name for name, health in sources.items() if health.status is SourceStatus.FAILED]
        logger.info(
            "aggregated %d unique codes (failed sources: %s)",
            len(codes),
            ",".join(failed) or "none",
        )
        return AggregationResult(codes=codes, sources=sources, generated_at=self._clock())

    async def _apply_fallback(self, name: str, result: SourceFetchResult) -> SourceFetchResult:
        """완전한(ok) 결과는 캐시에 저장하고, 실패한 결과는 캐시된 원본으로 대체한다.

        degraded 결과는 부분 결과라서 캐시된 원본을 덮어쓰지 않는다.
        """

        status = result.health.status
        if status is SourceStatus.OK:
            await self._cache.set(
                CacheKeys.source(name),
                {"codes": [c.model_dump(mode="json") for c in result.codes]},
                ttl_seconds=self._cache_stale_window(),
            )
            return result

        if status is not SourceStatus.FAILED:
            return result

        entry = await self._cache.get_entry(CacheKeys.source(name))
        if entry is None:
            return result

        try:
            codes = [Code.model_validate(item) for item in entry.data.get("codes", [])]
        except (ValidationError, AttributeError, TypeError):
            logger.warning("cached source result is unusable", extra={"source": name})
            return result

        logger.warning(
            "source failed; serving %d cached codes", len(codes), extra={"source": name}
        )
        return SourceFetchResult(
            codes=codes,
            health=SourceHealth(
                status=SourceStatus.DEGRADED,
                last_fetch=result.health.last_fetch,
                item_count=len(codes),
                error=f"using cached result: {result.health.error}",
            ),
        )

    def _cache_stale_window(self) -> float:
        # 원본 결과는 fallback 용이라 집계 결과보다 오래 보관한다.
        return max(self._config.refresh_interval_seconds, 60.0) * 2

    def _restore_result(self, data: Any) -> AggregationResult | None:
        try:
            return AggregationResult.model_validate(data)
        except ValidationError:
            logger.warning("cached aggregation result is unusable; recomputing")
            return None

    def _schedule_refresh(self, scope_hint: str) -> None:
        if scope_hint in self._refreshing:
            return

        task = asyncio.create_task(self._background_refresh(scope_hint))
        self._refreshing[scope_hint] = task
        task.add_done_callback(lambda _t, hint=scope_hint: self._refreshing.pop(hint, None))

    async def _background_refresh(self, scope_hint: str) -> AggregationResult | None:
        try:
            return await self.refresh(scope_hint)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("background refresh failed (hint=%s)", scope_hint)
            return None

    async def wait_for_refreshes(self) -> None:
        """진행 중인 백그라운드 갱신이 끝날 때까지 기다린다."""

        tasks = list(self._refreshing.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self, drain_timeout: float = 5.0) -> None:
        """진행 중인 갱신을 drain_timeout 초까지 기다리고, 남은 갱신은 취소한다."""

        if self._refreshing:
            try:
                await asyncio.wait_for(self.wait_for_refreshes(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("background refresh did not finish in %.1fs; cancelling", drain_timeout)

        tasks = [task for task in self._refreshing.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshing.clear()


def get_codes_aggregate_service(request: Request) -> CodesAggregateService:
    """lifespan 에서 app.state 에 올려둔 서비스를 FastAPI 의존성으로 제공한다."""

    return request.app.state.codes_service
