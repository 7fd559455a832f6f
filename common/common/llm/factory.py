from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Self

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI


class LlmProvider(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"

    @classmethod
    def from_str(cls, value: str) -> Self:
        normalized = value.lower()
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"unsupported LLM provider: {value}") from exc

    @property
    def requires_api_key(self) -> bool:
        return self is not LlmProvider.OLLAMA


@dataclass(slots=True)
class ChatModelConfig:
    provider: LlmProvider
    model: str
    temperature: float = 0.7
    api_key: str | None = None
    base_url: str | None = None
    max_tokens: int = 1000
    # 재시도는 호출 측에서 직접 제어하므로 클라이언트 내부 재시도는 기본적으로 끈다.
    max_retries: int = 0
    timeout_seconds: float = 60.0


def _apply_api_key_env(provider: LlmProvider, api_key: str | None) -> None:
    if not api_key:
        return
    if provider is LlmProvider.GOOGLE:
        os.environ.setdefault("GOOGLE_API_KEY", api_key)
    elif provider is LlmProvider.OPENAI:
        os.environ.setdefault("OPENAI_API_KEY", api_key)
    elif provider is LlmProvider.OPENROUTER:
        os.environ.setdefault("OPENAI_API_KEY", api_key)
        os.environ.setdefault("OPENROUTER_API_KEY", api_key)


_CHAT_FACTORIES: dict[LlmProvider, Callable[[ChatModelConfig], BaseChatModel]] = {
    LlmProvider.GOOGLE: lambda cfg: ChatGoogleGenerativeAI(
        model=cfg.model,
        temperature=cfg.temperature,
        max_output_tokens=cfg.max_tokens,
        max_retries=cfg.max_retries,
        timeout=cfg.timeout_seconds,
    ),
    LlmProvider.OPENAI: lambda cfg: ChatOpenAI(
        model=cfg.model,
        temperature=cfg.temperature,
        base_url=cfg.base_url,
        max_tokens=cfg.max_tokens,
        max_retries=cfg.max_retries,
        timeout=cfg.timeout_seconds,
    ),
    LlmProvider.OLLAMA: lambda cfg: ChatOllama(
        model=cfg.model,
        temperature=cfg.temperature,
        base_url=cfg.base_url or "http://localhost:11434",
        num_predict=cfg.max_tokens,
    ),
    LlmProvider.OPENROUTER: lambda cfg: ChatOpenAI(
        model=cfg.model,
        temperature=cfg.temperature,
        base_url=cfg.base_url or "https://openrouter.ai/api/v1",
        max_tokens=cfg.max_tokens,
        max_retries=cfg.max_retries,
        timeout=cfg.timeout_seconds,
    ),
}


def create_chat_model(config: ChatModelConfig) -> BaseChatModel:
    _apply_api_key_env(config.provider, config.api_key)
    try:
        factory = _CHAT_FACTORIES[config.provider]
    except KeyError as exc:
        raise ValueError(f"unsupported chat provider: {config.provider}") from exc
    return factory(config)
