from __future__ import annotations

import time
from typing import Callable, Protocol


class KeyValueStore(Protocol):
    """캐시/레이트리밋이 공유하는 최소한의 비동기 key-value 계약.

    값은 항상 문자열(JSON 직렬화 결과)이며, ttl_seconds 가 지나면 사라진다.
    """

    async def get(self, key: str) -> str | None:  # pragma: no cover - Protocol
        ...

    async def set(
        self, key: str, value: str, ttl_seconds: float | None = None
    ) -> None:  # pragma: no cover - Protocol
        ...

    async def close(self) -> None:  # pragma: no cover - Protocol
        ...


class InMemoryKeyValueStore:
    """프로세스 로컬 dict 기반 저장소.

    만료된 항목은 조회 시점에 지운다. 단일 이벤트 루프에서만 사용한다.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float | None]] = {}

    def _alive(self, key: str) -> str | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        return self._alive(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        expires_at = None
        if ttl_seconds is not None and ttl_seconds > 0:
            expires_at = self._clock() + ttl_seconds
        self._items[key] = (value, expires_at)

    async def close(self) -> None:
        self._items.clear()


class NullKeyValueStore:
    """캐시가 꺼져 있을 때 사용하는 저장소. 모든 조회는 miss 다."""

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        return None

    async def close(self) -> None:
        return None
