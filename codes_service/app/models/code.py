from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime


class SourceName(str, Enum):
    """기본으로 제공하는 코드 소스 이름."""

    SNELP = "snelp"  # aggregator-primary: 구조화된 JSON 피드
    DISCORD = "discord"  # 공식 디스코드 코드 채널
    REDDIT = "reddit"  # community-secondary: 커뮤니티 글에서 추출
    SAMPLE = "sample"  # 로컬 샘플 파일


class SourceStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


class Scope(str, Enum):
    ACTIVE = "active"
    PAST7 = "past7"
    VERIFIED = "verified"
    ALL = "all"

    @classmethod
    def parse(cls, value: str | None) -> "Scope":
        """알 수 없는 값은 필터링하지 않는 ALL 로 취급한다."""
        if not value:
            return cls.ACTIVE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.ALL

    @property
    def fetch_hint(self) -> str:
        """업스트림 fetcher 에 넘길 범위 힌트."""
        if self in (Scope.ACTIVE, Scope.PAST7):
            return FETCH_HINT_RECENT
        return FETCH_HINT_ALL


FETCH_HINT_RECENT = "recent"
FETCH_HINT_ALL = "all"


class Code(BaseModel):
    """어떤 소스에서 관측된 리딤 코드 하나."""

    code: str
    source: str
    timestamp: UtcDateTime
    tags: list[str] = Field(default_factory=list)
    expires: UtcDateTime | None = None
    region: str | None = None
    description: str | None = None
    url: str | None = None
    verified: bool = False
    provenance: list[str] = Field(default_factory=list)


class SourceHealth(BaseModel):
    """소스별 마지막 fetch 상태 스냅샷. error 는 내부 전용이다."""

    status: SourceStatus
    last_fetch: UtcDateTime
    item_count: int = 0
    error: str | None = None


class AggregationResult(BaseModel):
    codes: list[Code] = Field(default_factory=list)
    sources: dict[str, SourceHealth] = Field(default_factory=dict)
    generated_at: UtcDateTime
