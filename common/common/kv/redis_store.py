from __future__ import annotations

import logging
import math

from redis.asyncio import Redis


logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    """redis.asyncio 기반 저장소.

    여러 서비스가 같은 redis 를 공유하므로 모든 키 앞에 key_prefix 를 붙인다.
    연결 오류 등 예외는 그대로 올려 보낸다. miss 로 강등할지는 호출자(캐시, 레이트리밋)가 정한다.
    """

    def __init__(self, client: Redis, *, key_prefix: str = "") -> None:
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "") -> "RedisKeyValueStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )
        logger.info("redis key-value store configured (prefix=%r)", key_prefix)
        return cls(client, key_prefix=key_prefix)

    def _k(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._k(key))

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds > 0:
            # redis EX 는 정수 초만 받는다.
            await self._client.set(self._k(key), value, ex=max(1, math.ceil(ttl_seconds)))
        else:
            await self._client.set(self._k(key), value)

    async def close(self) -> None:
        await self._client.aclose()
