from __future__ import annotations

import logging
import re
from typing import Any

from common.types.datetime import parse_iso8601

from ..exceptions import SourceConfigurationError, SourceFetchError
from ..models.code import Code, SourceName
from .base import CodeSource, FetchOutcome, normalize_token


logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = 20

_HAS_LETTER = re.compile(r"[A-Z]")
_HAS_DIGIT = re.compile(r"[0-9]")


class SnelpSource(CodeSource):
    """Snelp 코드 API (구조화된 JSON 피드, 최우선 소스).

    응답 형태: {"codes": [{"code"|"text", "timestamp", "active", "expiresAt", "region", ...}]}
    """

    def is_configured(self) -> bool:
        return self._config.enabled and bool(self._config.url)

    async def _fetch_codes(self, scope_hint: str) -> FetchOutcome:
        url = self._config.url
        if not url:
            raise SourceConfigurationError("snelp codes URL not configured")

        data = await self._get_json(url)
        if not isinstance(data, dict) or not isinstance(data.get("codes"), list):
            raise SourceFetchError("invalid response format from Snelp API")

        raw_codes: list[Any] = data["codes"]
        codes = [code for code in (self._parse_item(item) for item in raw_codes) if code]
        return FetchOutcome(codes=codes, raw_count=len(raw_codes))

    def _parse_item(self, raw: Any) -> Code | None:
        if not isinstance(raw, dict):
            return None

        candidate = raw.get("code") or raw.get("text")
        if not candidate:
            return None

        token = normalize_token(str(candidate))
        if not self._is_plausible(token):
            logger.warning("filtering out implausible code %r", token, extra={"source": self.name})
            return None

        timestamp = (
            parse_iso8601(raw.get("timestamp"))
            or parse_iso8601(raw.get("createdAt"))
            or parse_iso8601(raw.get("updatedAt"))
            or self._clock()
        )
        tags = ["active", SourceName.SNELP.value] if raw.get("active") else [SourceName.SNELP.value]
        description = raw.get("description") or raw.get("notes") or None

        return Code(
            code=token,
            source=self.name,
            timestamp=timestamp,
            tags=tags,
            expires=parse_iso8601(raw.get("expiresAt")) or parse_iso8601(raw.get("expiry")),
            region=(str(raw["region"]).strip() or None) if raw.get("region") else None,
            description=str(description) if description else None,
        )

    @staticmethod
    def _is_plausible(token: str) -> bool:
        if not MIN_CODE_LENGTH <= len(token) <= MAX_CODE_LENGTH:
            return False
        return bool(_HAS_LETTER.search(token)) and bool(_HAS_DIGIT.search(token))
