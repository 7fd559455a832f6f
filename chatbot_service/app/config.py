from __future__ import annotations

import os
from dataclasses import dataclass

from common.kv.config import KeyValueConfig, load_kv_config
from common.llm.factory import ChatModelConfig, LlmProvider


CHATBOT_LLM_PROVIDER = "CHATBOT_LLM_PROVIDER"
CHATBOT_LLM_MODEL_NAME = "CHATBOT_LLM_MODEL_NAME"
CHATBOT_LLM_API_KEY = "CHATBOT_LLM_API_KEY"
CHATBOT_LLM_BASE_URL = "CHATBOT_LLM_BASE_URL"
CHATBOT_LLM_MAX_TOKENS = "CHATBOT_LLM_MAX_TOKENS"
CHATBOT_LLM_TIMEOUT_SECONDS = "CHATBOT_LLM_TIMEOUT_SECONDS"
OPENAI_API_KEY = "OPENAI_API_KEY"
CHAT_RATE_LIMIT = "CHAT_RATE_LIMIT"
CHAT_RATE_WINDOW_SECONDS = "CHAT_RATE_WINDOW_SECONDS"
CHAT_TRUSTED_USER_HEADER = "CHAT_TRUSTED_USER_HEADER"
CHAT_RETRY_MAX_ATTEMPTS = "CHAT_RETRY_MAX_ATTEMPTS"
CHAT_RETRY_BASE_DELAY_SECONDS = "CHAT_RETRY_BASE_DELAY_SECONDS"
CHAT_MESSAGE_LIMIT = "CHAT_MESSAGE_LIMIT"
CHAT_MAX_MESSAGE_LENGTH = "CHAT_MAX_MESSAGE_LENGTH"
CHAT_DEMO_GUILD_ID = "CHAT_DEMO_GUILD_ID"

DEFAULT_MODEL = "gpt-4"


@dataclass(slots=True)
class RateLimitConfig:
    """채팅 요청 레이트리밋 (고정 윈도우).

    trusted_user_header 는 앞단 인증 프록시가 채워 주는 헤더 이름이다.
    설정하지 않으면 사용자 구분 없이 클라이언트 주소로만 센다.
    """

    limit: int = 10
    window_seconds: float = 60.0
    trusted_user_header: str | None = None


@dataclass(slots=True)
class RetryConfig:
    """업스트림 LLM 호출 재시도 정책. 지연은 base * 2**(attempt-1) 이다."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (2 ** (attempt - 1))


@dataclass(slots=True)
class GuildChatConfig:
    """길드 채팅 저장소/라우트 설정."""

    default_limit: int = 50
    max_message_length: int = 2000
    demo_guild_id: str | None = "default"


@dataclass(slots=True)
class AppConfig:
    """chatbot-service 전체 설정."""

    llm: ChatModelConfig
    rate_limit: RateLimitConfig
    retry: RetryConfig
    guild_chat: GuildChatConfig
    kv: KeyValueConfig


def _get_int(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _get_float(name: str, default: float, *, minimum: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a float if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def load_chat_model_config() -> ChatModelConfig:
    """LLM provider 기반 채팅 모델 설정을 로드한다.

    API 키가 없어도 여기서는 실패하지 않는다. 요청 시점에 CONFIG_ERROR 로 알린다.
    temperature 는 personality 별로 덮어쓴다.
    """

    provider_raw = os.getenv(CHATBOT_LLM_PROVIDER) or LlmProvider.OPENAI.value
    try:
        provider = LlmProvider.from_str(provider_raw)
    except ValueError as exc:
        raise RuntimeError(str(exc)) from exc

    model = (os.getenv(CHATBOT_LLM_MODEL_NAME) or "").strip() or DEFAULT_MODEL
    api_key = os.getenv(CHATBOT_LLM_API_KEY) or None
    if api_key is None and provider in (LlmProvider.OPENAI, LlmProvider.OPENROUTER):
        api_key = os.getenv(OPENAI_API_KEY) or None

    return ChatModelConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        base_url=os.getenv(CHATBOT_LLM_BASE_URL) or None,
        max_tokens=_get_int(CHATBOT_LLM_MAX_TOKENS, 1000, minimum=1),
        max_retries=0,
        timeout_seconds=_get_float(CHATBOT_LLM_TIMEOUT_SECONDS, 60.0, minimum=1.0),
    )


def load_rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig(
        limit=_get_int(CHAT_RATE_LIMIT, 10, minimum=1),
        window_seconds=_get_float(CHAT_RATE_WINDOW_SECONDS, 60.0, minimum=1.0),
        trusted_user_header=(os.getenv(CHAT_TRUSTED_USER_HEADER) or "").strip() or None,
    )


def load_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=_get_int(CHAT_RETRY_MAX_ATTEMPTS, 3, minimum=1),
        base_delay_seconds=_get_float(CHAT_RETRY_BASE_DELAY_SECONDS, 1.0, minimum=0.0),
    )


def load_guild_chat_config() -> GuildChatConfig:
    demo_raw = os.getenv(CHAT_DEMO_GUILD_ID)
    demo_guild_id = "default" if demo_raw is None else (demo_raw.strip() or None)
    return GuildChatConfig(
        default_limit=_get_int(CHAT_MESSAGE_LIMIT, 50, minimum=1),
        max_message_length=_get_int(CHAT_MAX_MESSAGE_LENGTH, 2000, minimum=1),
        demo_guild_id=demo_guild_id,
    )


def load_config() -> AppConfig:
    """chatbot-service 설정을 로드하여 AppConfig로 반환한다."""

    return AppConfig(
        llm=load_chat_model_config(),
        rate_limit=load_rate_limit_config(),
        retry=load_retry_config(),
        guild_chat=load_guild_chat_config(),
        kv=load_kv_config(),
    )
