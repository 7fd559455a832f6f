from __future__ import annotations

import asyncio
import logging

from ..models.code import FETCH_HINT_ALL, FETCH_HINT_RECENT
from ..services.aggregate_service import CodesAggregateService


logger = logging.getLogger(__name__)

REFRESH_SCOPE_HINTS: tuple[str, ...] = (FETCH_HINT_RECENT, FETCH_HINT_ALL)


class RefreshScheduler:
    """집계 캐시를 주기적으로 미리 채워두는 백그라운드 태스크.

    앱 lifespan 에서 start()/stop() 을 호출한다. interval 이 0 이하면 시작하지 않는다.
    """

    def __init__(
        self,
        service: CodesAggregateService,
        interval_seconds: float,
        *,
        scope_hints: tuple[str, ...] = REFRESH_SCOPE_HINTS,
    ) -> None:
        self._service = service
        self._interval = interval_seconds
        self._scope_hints = scope_hints
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0:
            logger.info("codes refresh scheduler disabled (interval=%s)", self._interval)
            return
        if self.running:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="codes-refresh")
        logger.info("codes refresh scheduler launched (interval=%.0f seconds)", self._interval)

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=10.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

        self._task = None
        self._stop_event = None
        logger.info("codes refresh scheduler stopped by shutdown")

    async def run_once(self, label: str) -> None:
        for hint in self._scope_hints:
            logger.info("codes refresh starting (%s, hint=%s)", label, hint)
            try:
                result = await self._service.refresh(hint)
                logger.info(
                    "codes refresh completed (%s, hint=%s, codes=%d)",
                    label,
                    hint,
                    len(result.codes),
                )
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("codes refresh failed (%s, hint=%s)", label, hint)

    async def _run(self, stop_event: asyncio.Event) -> None:
        # 최초 실행
        await self.run_once("initial run")

        # 주기적 실행
        while not await _wait(stop_event, self._interval):
            await self.run_once("scheduled run")


async def _wait(event: asyncio.Event, timeout: float) -> bool:
    """event 가 set 되면 True, timeout 이 지나면 False."""

    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True
