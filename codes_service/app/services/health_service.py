from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..models.code import AggregationResult, SourceHealth, SourceStatus


_UNAVAILABLE = (SourceStatus.FAILED, SourceStatus.NOT_CONFIGURED)


@dataclass(slots=True)
class HealthReport:
    ok: bool
    sources: dict[str, SourceHealth]
    total_codes: int
    verified_codes: int
    generated_at: datetime


def is_healthy(sources: dict[str, SourceHealth]) -> bool:
    """ok 소스가 하나 이상 있고, 모든 소스가 failed/not_configured 는 아니어야 한다."""

    if not sources:
        return False
    any_ok = any(h.status is SourceStatus.OK for h in sources.values())
    all_down = all(h.status in _UNAVAILABLE for h in sources.values())
    return any_ok and not all_down


def build_health_report(result: AggregationResult) -> HealthReport:
    return HealthReport(
        ok=is_healthy(result.sources),
        sources=dict(result.sources),
        total_codes=len(result.codes),
        verified_codes=sum(1 for c in result.codes if c.verified),
        generated_at=result.generated_at,
    )
