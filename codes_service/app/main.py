from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from common.kv.client import create_kv_store
from common.logger import setup_logger
from common.middleware.errors import install_error_handlers
from common.middleware.request_trace import RequestTraceMiddleware

from .api.health import router as health_router
from .api.v1 import api_router
from .cache import CodesCache
from .config import load_config
from .scheduler.refresh_scheduler import RefreshScheduler
from .services.aggregate_service import CodesAggregateService
from .services.report_service import ReportService
from .sources.factory import build_sources


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """애플리케이션 생명주기 동안 공유 리소스를 관리한다.

    - httpx.AsyncClient (모든 소스 fetcher 가 공유)
    - key-value 저장소와 코드 캐시
    - 주기적으로 캐시를 채우는 refresh 스케줄러
    """

    config = load_config()
    store = create_kv_store(config.kv)
    client = httpx.AsyncClient(follow_redirects=True)

    cache = CodesCache(
        store,
        ttl_seconds=config.cache.ttl_seconds,
        stale_ttl_seconds=config.cache.stale_ttl_seconds,
        key_prefix=config.cache.key_prefix,
        enabled=config.cache.enabled,
    )
    service = CodesAggregateService(build_sources(config.aggregate, client), config.aggregate, cache)
    scheduler = RefreshScheduler(service, config.aggregate.refresh_interval_seconds)

    app.state.codes_service = service
    app.state.report_service = ReportService(config.report.reports_dir)

    logger.info("codes service starting with sources: %s", ",".join(service.source_names))
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await service.aclose()
        await client.aclose()
        await store.close()


def create_app() -> FastAPI:
    setup_logger(name="codes-service")
    app = FastAPI(
        title="Slimy Codes Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    install_error_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


def main() -> None:
    """명령행에서 실행할 수 있도록 uvicorn 런처를 제공한다."""

    import uvicorn

    port = int(os.getenv("CODES_SERVICE_PORT", "8001"))
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
