from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from fastapi import Request
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from common.llm.factory import ChatModelConfig, create_chat_model
from common.llm.utils import is_auth_error, is_rate_limit_error, normalize_model_name

from ..config import RetryConfig
from ..exceptions import ChatConfigurationError
from ..personality import PersonalityMode, get_personality_config


logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
MAX_MESSAGE_LENGTH = 10_000
FALLBACK_REPLY = "Sorry, I could not generate a response."

ERROR_AUTH = "OPENAI_AUTH_ERROR"
ERROR_RATE_LIMIT = "OPENAI_RATE_LIMIT"
ERROR_CONFIG = "CONFIG_ERROR"
ERROR_CHAT = "CHAT_ERROR"

_ERROR_MESSAGES = {
    ERROR_AUTH: "OpenAI API authentication failed.",
    ERROR_RATE_LIMIT: "OpenAI API rate limit exceeded. Please try again later.",
    ERROR_CONFIG: "Chat model is not configured.",
    ERROR_CHAT: "An error occurred while processing your request.",
}

Frame = dict[str, Any]
ModelFactory = Callable[[ChatModelConfig], BaseChatModel]


@dataclass(slots=True)
class ChatTurn:
    """대화 기록의 한 턴. role 은 user / assistant / system 중 하나."""

    role: str
    content: str


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def chunk_frame(content: str, message_id: str) -> Frame:
    return {"type": "chunk", "content": content, "id": message_id}


def error_frame(code: str) -> Frame:
    return {"type": "error", "code": code, "error": _ERROR_MESSAGES[code]}


def build_prompt(
    message: str,
    history: Sequence[ChatTurn],
    personality: PersonalityMode,
) -> list[BaseMessage]:
    """personality 시스템 프롬프트 + 최근 대화 10개 + 사용자 메시지."""

    messages: list[BaseMessage] = [SystemMessage(content=get_personality_config(personality).system_prompt)]
    for turn in list(history)[-HISTORY_WINDOW:]:
        if turn.role == "assistant":
            messages.append(AIMessage(content=turn.content))
        elif turn.role == "system":
            messages.append(SystemMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    messages.append(HumanMessage(content=message))
    return messages


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # google 계열은 content 를 part 리스트로 준다.
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


class ChatService:
    """LangChain 채팅 모델 스트림을 NDJSON 프레임으로 바꿔주는 프록시 서비스.

    - 재시도는 첫 chunk 를 내보내기 전까지만 한다.
    - 인증 실패, 업스트림 429, 설정 오류는 바로 에러 프레임으로 끝낸다.
    - 소비자가 중간에 닫으면(aclose) 업스트림 스트림도 닫는다.
    """

    def __init__(
        self,
        llm_config: ChatModelConfig,
        retry: RetryConfig,
        *,
        model_factory: ModelFactory = create_chat_model,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._llm_config = llm_config
        self._retry = retry
        self._model_factory = model_factory
        self._sleep = sleep
        self._models: dict[PersonalityMode, BaseChatModel] = {}

    @property
    def model_name(self) -> str:
        return normalize_model_name(self._llm_config.model)

    def _get_model(self, personality: PersonalityMode) -> BaseChatModel:
        model = self._models.get(personality)
        if model is not None:
            return model

        cfg = self._llm_config
        if not cfg.model:
            raise ChatConfigurationError("chat model name is not configured")
        if cfg.provider.requires_api_key and not cfg.api_key:
            raise ChatConfigurationError(f"API key for provider {cfg.provider.value} is not configured")

        config = dataclasses.replace(cfg, temperature=get_personality_config(personality).temperature)
        try:
            model = self._model_factory(config)
        except Exception as exc:  # noqa: BLE001
            raise ChatConfigurationError(f"failed to create chat model: {exc}") from exc

        self._models[personality] = model
        return model

    async def stream_reply(
        self,
        message: str,
        history: Sequence[ChatTurn],
        personality: PersonalityMode,
    ) -> AsyncIterator[Frame]:
        """응답을 chunk 프레임으로 흘려보내고, complete 또는 error 프레임 하나로 끝낸다."""

        message_id = new_message_id()
        prompt = build_prompt(message, history, personality)
        attempt = 0

        while True:
            attempt += 1
            started = False
            parts: list[str] = []
            stream: Any = None

            try:
                model = self._get_model(personality)
                stream = model.astream(prompt)
                async for chunk in stream:
                    text = _chunk_text(chunk)
                    if not text:
                        continue
                    started = True
                    parts.append(text)
                    yield chunk_frame(text, message_id)

                yield {
                    "type": "complete",
                    "message": {
                        "id": message_id,
                        "role": "assistant",
                        "content": "".join(parts) or FALLBACK_REPLY,
                        "timestamp": int(time.time() * 1000),
                        "personalityMode": personality.value,
                    },
                }
                logger.info(
                    "chat reply completed (attempt=%d, chars=%d)",
                    attempt,
                    sum(len(p) for p in parts),
                    extra={"attempt": attempt},
                )
                return
            except ChatConfigurationError as exc:
                logger.error("chat model configuration error: %s", exc)
                yield error_frame(ERROR_CONFIG)
                return
            except Exception as exc:  # noqa: BLE001
                if is_auth_error(exc):
                    logger.error("upstream authentication failed: %s", exc, extra={"attempt": attempt})
                    yield error_frame(ERROR_AUTH)
                    return
                if is_rate_limit_error(exc):
                    logger.warning("upstream rate limit hit: %s", exc, extra={"attempt": attempt})
                    yield error_frame(ERROR_RATE_LIMIT)
                    return
                if started or attempt >= self._retry.max_attempts:
                    logger.exception(
                        "chat stream failed (attempt=%d, started=%s)",
                        attempt,
                        started,
                        extra={"attempt": attempt},
                    )
                    yield error_frame(ERROR_CHAT)
                    return

                delay = self._retry.delay_for(attempt)
                logger.warning(
                    "chat stream attempt %d failed, retrying in %.2fs: %s",
                    attempt,
                    delay,
                    exc,
                    extra={"attempt": attempt},
                )
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    try:
                        await aclose()
                    except Exception:  # noqa: BLE001
                        logger.warning("failed to close upstream stream", exc_info=True)

            await self._sleep(delay)


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
