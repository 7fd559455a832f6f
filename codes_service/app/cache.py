from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from common.kv.store import KeyValueStore


logger = logging.getLogger(__name__)


class CacheKeys:
    """codes-service 가 쓰는 캐시 키 모음. prefix 는 CodesCache 가 붙인다."""

    @staticmethod
    def aggregated(scope_hint: str) -> str:
        return f"aggregated_codes:{scope_hint}"

    @staticmethod
    def source(name: str) -> str:
        return f"source:{name}"


@dataclass(slots=True)
class CacheEntry:
    data: Any
    stored_at: float
    is_stale: bool


class CodesCache:
    """KeyValueStore 위의 TTL + stale 윈도우 캐시.

    값은 {"stored_at", "ttl", "data"} JSON 봉투로 저장하고, 백엔드 만료는
    ttl + stale_ttl 로 건다. 백엔드 오류는 모두 miss 로 취급한다.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: float = 60.0,
        stale_ttl_seconds: float = 600.0,
        key_prefix: str = "codes:",
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._stale_ttl = stale_ttl_seconds
        self._prefix = key_prefix
        self._enabled = enabled
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        """TTL 안의 값만 반환한다."""

        entry = await self.get_entry(key)
        if entry is None or entry.is_stale:
            return None
        return entry.data

    async def get_entry(self, key: str) -> CacheEntry | None:
        """TTL + stale 윈도우 안의 값을 반환한다. is_stale 로 신선도를 알려준다."""

        if not self._enabled:
            return None

        try:
            raw = await self._store.get(self._key(key))
        except Exception:  # noqa: BLE001
            logger.warning("cache get failed", extra={"cache_key": key}, exc_info=True)
            return None

        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            stored_at = float(envelope["stored_at"])
            ttl = float(envelope.get("ttl", self._ttl))
            data = envelope["data"]
        except (ValueError, KeyError, TypeError):
            logger.warning("malformed cache entry; treating as miss", extra={"cache_key": key})
            return None

        age = self._clock() - stored_at
        if age > ttl + self._stale_ttl:
            return None
        return CacheEntry(data=data, stored_at=stored_at, is_stale=age > ttl)

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> bool:
        if not self._enabled:
            return False

        ttl = ttl_seconds if ttl_seconds is not None else self._ttl
        try:
            payload = json.dumps({"stored_at": self._clock(), "ttl": ttl, "data": value})
        except (TypeError, ValueError):
            logger.warning("cache value is not JSON serializable", extra={"cache_key": key})
            return False

        try:
            await self._store.set(self._key(key), payload, ttl_seconds=ttl + self._stale_ttl)
        except Exception:  # noqa: BLE001
            logger.warning("cache set failed", extra={"cache_key": key}, exc_info=True)
            return False
        return True
