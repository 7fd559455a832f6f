from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..kv.store import KeyValueStore


logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "ratelimit:"


@dataclass(slots=True)
class RateLimitDecision:
    """한 번의 레이트리밋 판정 결과."""

    limited: bool
    limit: int
    remaining: int
    reset_at: float  # unix timestamp (seconds)

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def retry_after_seconds(self, now: float) -> int:
        return max(1, int(round(self.reset_at - now)))


class FixedWindowRateLimiter:
    """key-value 저장소 위의 고정 윈도우 레이트리밋.

    - 키마다 {count, reset_at} 를 JSON 으로 저장하고 read-modify-write 로 갱신한다.
    - 동시 요청 사이에서는 last-write-wins 이므로 극단적인 동시성에서 덜 셀 수 있다.
    - 저장소 오류 시에는 요청을 막지 않는다(fail open).
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
        key_prefix: str = RATE_LIMIT_KEY_PREFIX,
    ) -> None:
        self._store = store
        self._clock = clock
        self._key_prefix = key_prefix

    async def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        """요청 1회를 기록하고 제한 여부를 반환한다."""

        now = self._clock()
        storage_key = f"{self._key_prefix}{key}"

        count = 0
        reset_at = now + window_seconds

        try:
            raw = await self._store.get(storage_key)
        except Exception:  # noqa: BLE001
            logger.warning("rate limit store read failed; allowing request", exc_info=True)
            return RateLimitDecision(limited=False, limit=limit, remaining=limit - 1, reset_at=reset_at)

        if raw:
            try:
                entry = json.loads(raw)
                count = int(entry["count"])
                reset_at = float(entry["reset_at"])
            except (ValueError, KeyError, TypeError):
                logger.warning("malformed rate limit entry for %s; resetting", key)
                count = 0
                reset_at = now + window_seconds

        # 윈도우가 끝났으면 새 윈도우를 연다.
        if reset_at <= now:
            count = 0
            reset_at = now + window_seconds

        if count >= limit:
            return RateLimitDecision(limited=True, limit=limit, remaining=0, reset_at=reset_at)

        count += 1
        try:
            await self._store.set(
                storage_key,
                json.dumps({"count": count, "reset_at": reset_at}),
                ttl_seconds=max(reset_at - now, 1.0),
            )
        except Exception:  # noqa: BLE001
            logger.warning("rate limit store write failed for %s", key, exc_info=True)

        return RateLimitDecision(
            limited=False,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
        )
