from __future__ import annotations

import json
import logging
import time
from typing import Annotated, Any, AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import Field

from common.middleware.request_trace import resolve_client_ip
from common.ratelimit.limiter import FixedWindowRateLimiter
from common.types.camel import CamelModel

from ..config import RateLimitConfig
from ..exceptions import InvalidChatRequestError
from ..personality import resolve_personality
from ..services.chat_service import MAX_MESSAGE_LENGTH, ChatService, ChatTurn, get_chat_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class HistoryMessage(CamelModel):
    role: str = "user"
    content: str = ""


class ChatRequest(CamelModel):
    """채팅 요청. 빈 메시지/길이 초과는 라우트에서 400 으로 처리한다."""

    message: str = ""
    personality_mode: str | None = None
    conversation_history: list[HistoryMessage] = Field(default_factory=list)
    user_id: str | None = None


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter


def get_rate_limit_config(request: Request) -> RateLimitConfig:
    return request.app.state.rate_limit_config


def _error(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "code": code, "error": message},
        headers=headers,
    )


def _validate_message(message: str) -> None:
    if not message or not message.strip():
        raise InvalidChatRequestError("INVALID_MESSAGE", "Message cannot be empty.")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise InvalidChatRequestError(
            "MESSAGE_TOO_LONG",
            "Message is too long. Please keep it under 10,000 characters.",
        )


def rate_limit_key(request: Request, limits: RateLimitConfig) -> str:
    """레이트리밋 키: 신뢰 헤더의 사용자 ID, 없으면 클라이언트 주소. 본문의 userId 는 키가 아니다."""

    if limits.trusted_user_header:
        user_id = request.headers.get(limits.trusted_user_header, "").strip()
        if user_id:
            return f"chat:user:{user_id}"
    return f"chat:{resolve_client_ip(request)}"


async def _ndjson(frames: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    """프레임을 한 줄씩 JSON 으로 내보낸다.

    클라이언트 연결이 끊기면 Starlette 의 disconnect 리스너가 이 제너레이터를 취소하고,
    finally 에서 업스트림 스트림을 닫는다. 업스트림이 멈춰 있는 동안에도 마찬가지다.
    """

    try:
        async for frame in frames:
            yield json.dumps(frame, ensure_ascii=False) + "\n"
    finally:
        await frames.aclose()  # type: ignore[attr-defined]


@router.post(
    "/message",
    summary="채팅 메시지 전송 (스트리밍)",
    description=(
        "personality 모드에 맞춰 LLM 응답을 NDJSON 으로 스트리밍한다. "
        "chunk 프레임 뒤에 complete 또는 error 프레임 하나로 끝난다."
    ),
)
async def post_chat_message(
    body: ChatRequest,
    request: Request,
    chat_service: Annotated[ChatService, Depends(get_chat_service)],
    limiter: Annotated[FixedWindowRateLimiter, Depends(get_rate_limiter)],
    limits: Annotated[RateLimitConfig, Depends(get_rate_limit_config)],
) -> Any:
    rate_key = rate_limit_key(request, limits)

    decision = await limiter.hit(rate_key, limits.limit, limits.window_seconds)
    if decision.limited:
        logger.info("chat rate limit exceeded for %s (userId=%s)", rate_key, body.user_id)
        return _error(
            429,
            "RATE_LIMIT_EXCEEDED",
            "You have exceeded the chat limit. Please try again later.",
            headers={
                "Retry-After": str(decision.retry_after_seconds(time.time())),
                "X-RateLimit-Reset": decision.reset_at_iso,
            },
        )

    try:
        _validate_message(body.message)
        personality = resolve_personality(body.personality_mode)
    except InvalidChatRequestError as exc:
        return _error(400, exc.code, exc.message)

    history = [ChatTurn(role=m.role, content=m.content) for m in body.conversation_history]
    frames = chat_service.stream_reply(body.message, history, personality)
    return StreamingResponse(
        _ndjson(frames),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-store", "X-Accel-Buffering": "no"},
    )
