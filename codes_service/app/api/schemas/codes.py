from __future__ import annotations

from common.types.camel import CamelModel
from common.types.datetime import UtcDateTime

from ...models.code import Code, SourceHealth, SourceStatus
from ...services.health_service import HealthReport


class CodeResponse(CamelModel):
    code: str
    source: str
    timestamp: UtcDateTime
    tags: list[str]
    expires: UtcDateTime | None = None
    region: str | None = None
    description: str | None = None
    url: str | None = None
    verified: bool = False
    provenance: list[str] = []

    @classmethod
    def from_domain(cls, code: Code) -> "CodeResponse":
        return cls.model_validate(code.model_dump())


class SourceHealthResponse(CamelModel):
    """소스 상태의 공개용 형태. 내부 error 메시지는 내보내지 않는다."""

    status: SourceStatus
    last_fetch: UtcDateTime
    item_count: int

    @classmethod
    def from_domain(cls, health: SourceHealth) -> "SourceHealthResponse":
        return cls(
            status=health.status,
            last_fetch=health.last_fetch,
            item_count=health.item_count,
        )


class CodesResponse(CamelModel):
    codes: list[CodeResponse]
    sources: dict[str, SourceHealthResponse]
    scope: str
    count: int
    generated_at: UtcDateTime
    stale: bool = False


class HealthResponse(CamelModel):
    ok: bool
    sources: dict[str, SourceHealthResponse]
    total_codes: int
    verified_codes: int
    generated_at: UtcDateTime

    @classmethod
    def from_report(cls, report: HealthReport) -> "HealthResponse":
        return cls(
            ok=report.ok,
            sources={
                name: SourceHealthResponse.from_domain(health)
                for name, health in report.sources.items()
            },
            total_codes=report.total_codes,
            verified_codes=report.verified_codes,
            generated_at=report.generated_at,
        )


class ReportRequest(CamelModel):
    """코드 신고 요청. code 누락은 라우트에서 400 으로 처리한다."""

    code: str | None = None
    reason: str | None = None
    guild_id: str | None = None
    user_id: str | None = None


class ReportResponse(CamelModel):
    ok: bool = True
    message: str = "Code reported successfully"
