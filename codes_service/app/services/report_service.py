from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from fastapi import Request
from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime, utc_now

from ..exceptions import ReportWriteError


logger = logging.getLogger(__name__)

DEFAULT_REASON = "dead"
UNKNOWN = "unknown"


class CodeReport(BaseModel):
    """사용자가 신고한 코드 한 건. JSONL 한 줄로 저장된다."""

    code: str
    reason: str = DEFAULT_REASON
    guild_id: str = Field(default=UNKNOWN, serialization_alias="guildId")
    user_id: str = Field(default=UNKNOWN, serialization_alias="userId")
    timestamp: UtcDateTime
    ip: str = UNKNOWN


class ReportService:
    """코드 신고를 날짜별 JSONL 파일(<reports_dir>/<YYYY-MM-DD>.jsonl)에 덧붙인다."""

    def __init__(
        self,
        reports_dir: Path,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._reports_dir = reports_dir
        self._clock = clock

    @property
    def reports_dir(self) -> Path:
        return self._reports_dir

    def path_for(self, when: datetime) -> Path:
        return self._reports_dir / f"{when.strftime('%Y-%m-%d')}.jsonl"

    async def submit(
        self,
        code: str,
        *,
        reason: str | None = None,
        guild_id: str | None = None,
        user_id: str | None = None,
        ip: str | None = None,
    ) -> CodeReport:
        report = CodeReport(
            code=code.strip(),
            reason=(reason or "").strip() or DEFAULT_REASON,
            guild_id=(guild_id or "").strip() or UNKNOWN,
            user_id=(user_id or "").strip() or UNKNOWN,
            timestamp=self._clock(),
            ip=ip or UNKNOWN,
        )

        line = json.dumps(report.model_dump(mode="json", by_alias=True), ensure_ascii=False)
        path = self.path_for(report.timestamp)
        try:
            await asyncio.to_thread(_append_line, path, line)
        except OSError as exc:
            logger.exception("failed to append code report to %s", path)
            raise ReportWriteError(f"failed to write report to {path}") from exc

        logger.info("code report recorded: code=%s reason=%s", report.code, report.reason)
        return report


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def get_report_service(request: Request) -> ReportService:
    return request.app.state.report_service
