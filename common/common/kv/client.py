from __future__ import annotations

import logging

from .config import KV_BACKEND_NONE, KV_BACKEND_REDIS, KeyValueConfig
from .store import InMemoryKeyValueStore, KeyValueStore, NullKeyValueStore


logger = logging.getLogger(__name__)


def create_kv_store(config: KeyValueConfig) -> KeyValueStore:
    """설정된 backend 에 맞는 key-value 저장소를 만든다.

    전역 싱글톤을 두지 않고, 각 서비스의 lifespan 에서 만든 인스턴스를 주입해서 쓴다.
    """

    if config.backend == KV_BACKEND_NONE:
        logger.info("key-value store disabled; every lookup is a miss")
        return NullKeyValueStore()

    if config.backend == KV_BACKEND_REDIS and config.redis_url:
        # redis 패키지는 redis backend 를 쓸 때만 필요하다.
        from .redis_store import RedisKeyValueStore

        return RedisKeyValueStore.from_url(config.redis_url, key_prefix=config.key_prefix)

    logger.info("using in-memory key-value store")
    return InMemoryKeyValueStore()
