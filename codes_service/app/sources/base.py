from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import httpx

from common.types.datetime import utc_now

from ..config import SourceConfig
from ..exceptions import SourceFetchError, SourceRateLimitedError
from ..models.code import Code, SourceHealth, SourceStatus


logger = logging.getLogger(__name__)

MAX_ERROR_BODY_SAMPLE = 200


@dataclass(slots=True)
class SourceFetchResult:
    """fetch 한 번의 결과. 실패해도 항상 이 형태로 돌려준다."""

    codes: list[Code]
    health: SourceHealth


@dataclass(slots=True)
class FetchOutcome:
    codes: list[Code] = field(default_factory=list)
    raw_count: int = 0
    status: SourceStatus = SourceStatus.OK
    note: str | None = None


class CodeSource(ABC):
    """업스트림 코드 소스의 공통 골격.

    하위 클래스는 `_fetch_codes` 만 구현한다. `fetch` 는 절대 예외를 올려 보내지 않고,
    실패를 SourceHealth(status=failed) 로 바꿔서 반환한다.
    """

    def __init__(
        self,
        config: SourceConfig,
        client: httpx.AsyncClient,
        *,
        user_agent: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._client = client
        self._user_agent = user_agent
        self._clock = clock

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def trust_weight(self) -> float:
        return self._config.trust_weight

    def is_configured(self) -> bool:
        return self._config.enabled

    async def fetch(self, scope_hint: str) -> SourceFetchResult:
        started_at = self._clock()

        if not self.is_configured():
            return SourceFetchResult(
                codes=[],
                health=SourceHealth(
                    status=SourceStatus.NOT_CONFIGURED,
                    last_fetch=started_at,
                    item_count=0,
                    error=f"{self.name} source not configured",
                ),
            )

        try:
            outcome = await self._fetch_codes(scope_hint)
        except SourceFetchError as exc:
            logger.warning("source fetch failed: %s", exc, extra={"source": self.name})
            return self._failed(started_at, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("unexpected error while fetching source", extra={"source": self.name})
            return self._failed(started_at, f"unexpected error: {exc}")

        logger.info(
            "fetched %d codes from %d raw items (status=%s)",
            len(outcome.codes),
            outcome.raw_count,
            outcome.status.value,
            extra={"source": self.name},
        )
        return SourceFetchResult(
            codes=outcome.codes,
            health=SourceHealth(
                status=outcome.status,
                last_fetch=started_at,
                item_count=outcome.raw_count,
                error=outcome.note,
            ),
        )

    @abstractmethod
    async def _fetch_codes(self, scope_hint: str) -> FetchOutcome:
        """업스트림에서 코드를 가져온다. 실패는 SourceFetchError 로 알린다."""

    def _failed(self, started_at: datetime, error: str) -> SourceFetchResult:
        return SourceFetchResult(
            codes=[],
            health=SourceHealth(
                status=SourceStatus.FAILED,
                last_fetch=started_at,
                item_count=0,
                error=error,
            ),
        )

    async def _get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET 요청 후 JSON 본문을 반환한다. 실패 종류별로 SourceFetchError 를 올린다."""

        request_headers = {"User-Agent": self._user_agent, "Accept": "application/json"}
        if headers:
            request_headers.update(headers)

        try:
            resp = await self._client.get(
                url,
                params=params,
                headers=request_headers,
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise SourceFetchError(
                f"request timeout after {self._config.timeout_seconds}s: {url}"
            ) from exc
        except httpx.RequestError as exc:
            raise SourceFetchError(f"request error for {url}: {exc}") from exc

        if resp.status_code == 429:
            raise SourceRateLimitedError(
                f"rate limited by {url}", retry_after=_parse_retry_after(resp.headers.get("Retry-After"))
            )

        if not resp.is_success:
            raise SourceFetchError(
                f"status code {resp.status_code} from {url}, "
                f"body: {resp.text[:MAX_ERROR_BODY_SAMPLE]}",
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise SourceFetchError(f"malformed JSON from {url}") from exc


def normalize_token(text: str) -> str:
    """표시용 코드 토큰: 대문자, 앞뒤 공백 제거. 하이픈은 유지한다."""

    return text.strip().upper()


def _parse_retry_after(raw: str | None) -> float | None:
    """Retry-After 헤더(초 단위)를 읽는다. 없거나 숫자가 아니면 None."""

    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if value >= 0 else None
