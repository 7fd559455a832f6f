from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from common.types.datetime import parse_iso8601

from ..exceptions import SourceFetchError
from ..models.code import Code, SourceName
from .base import CodeSource, FetchOutcome, normalize_token


logger = logging.getLogger(__name__)


def _read_json_file(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


class SampleSource(CodeSource):
    """로컬 샘플 파일(data/codes/sample.json 형식)을 읽는 소스. 개발/데모용."""

    def is_configured(self) -> bool:
        return self._config.enabled and bool(self._config.path)

    async def _fetch_codes(self, scope_hint: str) -> FetchOutcome:
        path = Path(self._config.path or "")
        try:
            data = await asyncio.to_thread(_read_json_file, path)
        except FileNotFoundError as exc:
            raise SourceFetchError(f"sample file not found: {path}") from exc
        except (OSError, ValueError) as exc:
            raise SourceFetchError(f"failed to read sample file {path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("codes"), list):
            raise SourceFetchError(f"invalid sample file format: {path}")

        raw_codes: list[Any] = data["codes"]
        codes: list[Code] = []
        for raw in raw_codes:
            code = self._parse_item(raw)
            if code is not None:
                codes.append(code)
        return FetchOutcome(codes=codes, raw_count=len(raw_codes))

    def _parse_item(self, raw: Any) -> Code | None:
        if not isinstance(raw, dict) or not raw.get("code"):
            return None

        raw_tags = raw.get("tags")
        tags = [str(tag) for tag in raw_tags] if isinstance(raw_tags, list) else []
        if SourceName.SAMPLE.value not in tags:
            tags.append(SourceName.SAMPLE.value)
        region = raw.get("region")
        description = raw.get("description")

        try:
            return Code(
                code=normalize_token(str(raw["code"])),
                source=self.name,
                timestamp=parse_iso8601(raw.get("ts") or raw.get("timestamp")) or self._clock(),
                tags=tags,
                expires=parse_iso8601(raw.get("expires")),
                region=(str(region).strip() or None) if region else None,
                description=str(description) if description else None,
            )
        except ValidationError as exc:
            logger.warning(
                "skipping malformed sample item %r: %s", raw.get("code"), exc,
                extra={"source": self.name},
            )
            return None
