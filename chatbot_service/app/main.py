from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from common.kv.client import create_kv_store
from common.logger import setup_logger
from common.middleware.errors import install_error_handlers
from common.middleware.request_trace import RequestTraceMiddleware
from common.ratelimit.limiter import FixedWindowRateLimiter

from .api.chat import router as chat_router
from .api.messages import router as messages_router
from .config import load_config
from .services.chat_service import ChatService
from .services.chat_store import ChatStore


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """앱 생명주기 관리.

    - 시작 시: key-value 저장소, 레이트리밋, ChatService, 길드 채팅 저장소 초기화
    - 종료 시: key-value 저장소 정리
    """
    logger.info("chatbot-service starting up")

    config = load_config()

    store = create_kv_store(config.kv)
    app.state.rate_limiter = FixedWindowRateLimiter(store)
    app.state.rate_limit_config = config.rate_limit

    app.state.chat_service = ChatService(config.llm, config.retry)
    logger.info(
        "chat service initialized (provider=%s, model=%s)",
        config.llm.provider.value,
        app.state.chat_service.model_name,
    )

    chat_store = ChatStore()
    if config.guild_chat.demo_guild_id:
        chat_store.seed_demo_data(config.guild_chat.demo_guild_id)
    app.state.chat_store = chat_store
    app.state.guild_chat_config = config.guild_chat

    try:
        yield
    finally:
        logger.info("chatbot-service shutting down")
        await store.close()


def create_app() -> FastAPI:
    """FastAPI 앱 팩토리."""
    setup_logger(name="chatbot-service")
    app = FastAPI(
        title="Slimy Chatbot Service",
        description="personality 모드를 지원하는 스트리밍 채팅 프록시",
        version="0.1.0",
        lifespan=lifespan,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    install_error_handlers(app)

    # 라우터 등록
    app.include_router(chat_router, prefix="/api")
    app.include_router(messages_router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "service": "chatbot-service"}

    return app


app = create_app()


def main() -> None:
    """Chatbot Service 메인 엔트리 포인트."""
    import uvicorn

    port = int(os.getenv("CHATBOT_SERVICE_PORT", "8003"))
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":
    main()
