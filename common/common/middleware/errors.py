from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)

INVALID_REQUEST = "INVALID_REQUEST"


def install_error_handlers(app: FastAPI) -> None:
    """요청 검증 실패를 서비스 공통 에러 봉투({ok:false, code, error}) 400 으로 바꾼다."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(  # noqa: D401 - FastAPI hook
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error.get("loc", ())[1:])
            details.append({"field": field, "message": error.get("msg", "")})

        logger.info("request validation failed on %s: %s", request.url.path, details)
        return JSONResponse(
            status_code=400,
            content={
                "ok": False,
                "code": INVALID_REQUEST,
                "error": "Invalid request",
                "details": details,
            },
        )
