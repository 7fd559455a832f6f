from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from common.middleware.request_trace import resolve_client_ip
from common.types.datetime import utc_now

from ...exceptions import ReportWriteError
from ...models.code import FETCH_HINT_ALL, Scope
from ...services.aggregate_service import CodesAggregateService, get_codes_aggregate_service
from ...services.health_service import build_health_report
from ...services.merge import filter_by_scope, search_codes
from ...services.report_service import ReportService, get_report_service
from ..schemas.codes import (
    CodeResponse,
    CodesResponse,
    HealthResponse,
    ReportRequest,
    ReportResponse,
    SourceHealthResponse,
)


logger = logging.getLogger(__name__)

CODES_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"
HEALTH_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=600"
NO_STORE = "no-store"

router = APIRouter()


@router.get(
    "",
    response_model=CodesResponse,
    summary="코드 목록 조회",
    description=(
        "모든 소스에서 집계한 코드를 scope(active/past7/verified/all) 로 걸러서 반환한다. "
        "q 가 있으면 code/description/tags 부분 문자열 검색을 추가로 적용한다."
    ),
)
async def list_codes(
    response: Response,
    scope: str = Query("active", description="active | past7 | verified | all"),
    q: str | None = Query(default=None, description="검색어 (대소문자 무시)"),
    service: CodesAggregateService = Depends(get_codes_aggregate_service),
) -> CodesResponse | JSONResponse:
    resolved = Scope.parse(scope)
    try:
        snapshot = await service.get_result(resolved.fetch_hint)
        codes = filter_by_scope(snapshot.result.codes, resolved, utc_now())
        codes = search_codes(codes, q)
    except Exception:  # noqa: BLE001
        logger.exception("codes aggregation failed")
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "code": "AGGREGATION_ERROR",
                "message": "Failed to aggregate codes",
                "codes": [],
            },
        )

    response.headers["Cache-Control"] = CODES_CACHE_CONTROL
    return CodesResponse(
        codes=[CodeResponse.from_domain(c) for c in codes],
        sources={
            name: SourceHealthResponse.from_domain(health)
            for name, health in snapshot.result.sources.items()
        },
        scope=scope,
        count=len(codes),
        generated_at=snapshot.result.generated_at,
        stale=snapshot.stale,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="코드 소스 상태 조회",
)
async def codes_health(
    response: Response,
    service: CodesAggregateService = Depends(get_codes_aggregate_service),
) -> HealthResponse | JSONResponse:
    try:
        snapshot = await service.get_result(FETCH_HINT_ALL)
        report = build_health_report(snapshot.result)
    except Exception:  # noqa: BLE001
        logger.exception("codes health check failed")
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Health check failed"},
            headers={"Cache-Control": NO_STORE},
        )

    response.headers["Cache-Control"] = HEALTH_CACHE_CONTROL
    return HealthResponse.from_report(report)


@router.post(
    "/report",
    response_model=ReportResponse,
    summary="코드 신고",
    description="동작하지 않는 코드를 신고한다. 신고는 날짜별 JSONL 파일에 쌓인다.",
)
async def report_code(
    body: ReportRequest,
    request: Request,
    service: ReportService = Depends(get_report_service),
) -> ReportResponse | JSONResponse:
    if not body.code or not body.code.strip():
        return JSONResponse(status_code=400, content={"ok": False, "message": "Code is required"})

    try:
        await service.submit(
            body.code,
            reason=body.reason,
            guild_id=body.guild_id,
            user_id=body.user_id,
            ip=resolve_client_ip(request),
        )
    except ReportWriteError:
        return JSONResponse(
            status_code=500,
            content={"ok": False, "code": "REPORT_ERROR", "message": "Failed to report code"},
        )

    return ReportResponse()
