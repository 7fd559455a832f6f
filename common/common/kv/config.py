from __future__ import annotations

import os
from dataclasses import dataclass


REDIS_URL_ENV = "REDIS_URL"
KV_BACKEND_ENV = "KV_BACKEND"
KV_KEY_PREFIX_ENV = "KV_KEY_PREFIX"

KV_BACKEND_MEMORY = "memory"
KV_BACKEND_REDIS = "redis"
KV_BACKEND_NONE = "none"

_SUPPORTED_BACKENDS = (KV_BACKEND_MEMORY, KV_BACKEND_REDIS, KV_BACKEND_NONE)


@dataclass(slots=True)
class KeyValueConfig:
    """key-value 저장소 설정."""

    backend: str
    redis_url: str | None = None
    key_prefix: str = "slimy:"


def load_kv_config() -> KeyValueConfig:
    """환경변수에서 key-value 저장소 설정을 읽는다.

    - KV_BACKEND 가 비어있으면 REDIS_URL 유무로 redis / memory 를 결정한다.
    - KV_BACKEND=redis 인데 REDIS_URL 이 없으면 설정 오류로 본다.
    """

    redis_url = os.getenv(REDIS_URL_ENV, "").strip() or None
    backend_raw = os.getenv(KV_BACKEND_ENV, "").strip().lower()

    if not backend_raw:
        backend = KV_BACKEND_REDIS if redis_url else KV_BACKEND_MEMORY
    else:
        backend = backend_raw

    if backend not in _SUPPORTED_BACKENDS:
        raise RuntimeError(
            f"{KV_BACKEND_ENV} must be one of {', '.join(_SUPPORTED_BACKENDS)}, got: {backend_raw!r}",
        )

    if backend == KV_BACKEND_REDIS and not redis_url:
        raise RuntimeError(
            f"{REDIS_URL_ENV} environment variable is required when {KV_BACKEND_ENV}=redis",
        )

    key_prefix = os.getenv(KV_KEY_PREFIX_ENV, "slimy:")

    return KeyValueConfig(backend=backend, redis_url=redis_url, key_prefix=key_prefix)
