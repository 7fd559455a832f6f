from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from common.types.datetime import parse_iso8601

from ..exceptions import SourceFetchError, SourceRateLimitedError
from ..models.code import Code, SourceName, SourceStatus
from .base import CodeSource, FetchOutcome
from .reddit import extract_codes


logger = logging.getLogger(__name__)

DISCORD_API_BASE_URL = "https://discord.com/api/v10"
DISCORD_WEB_BASE_URL = "https://discord.com/channels"
MESSAGE_LIMIT = 100
DEFAULT_RETRY_AFTER_SECONDS = 5.0
MAX_DESCRIPTION_LENGTH = 100
CHANNEL_NAME_KEYWORDS: tuple[str, ...] = ("code", "gift")


class DiscordSource(CodeSource):
    """공식 디스코드 길드의 코드 채널 메시지에서 코드를 추출하는 소스.

    - 토큰과 길드 ID 가 모두 있어야 조회한다. 하나라도 없으면 not_configured.
    - channel_ids 가 비어 있으면 길드 채널 중 이름에 code/gift 가 들어간 채널을 쓴다.
    - 429 는 Retry-After 만큼 쉬고 한 번만 다시 시도한다.
    """

    def __init__(
        self,
        *args: Any,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._sleep = sleep

    def is_configured(self) -> bool:
        return self._config.enabled and bool(self._config.token) and bool(self._config.guild_id)

    @property
    def api_base_url(self) -> str:
        return (self._config.url or DISCORD_API_BASE_URL).rstrip("/")

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self._config.token}"}

    async def _fetch_codes(self, scope_hint: str) -> FetchOutcome:
        channel_ids = await self._codes_channel_ids()
        if not channel_ids:
            return FetchOutcome(
                status=SourceStatus.DEGRADED, note="no discord codes channels found"
            )

        codes: list[Code] = []
        raw_count = 0
        succeeded = 0
        rate_limited = False

        for channel_id in channel_ids:
            try:
                messages = await self._fetch_channel_messages(channel_id)
            except SourceRateLimitedError:
                if succeeded == 0:
                    raise
                logger.warning(
                    "discord still rate limited; skipping remaining channels",
                    extra={"source": self.name},
                )
                rate_limited = True
                break

            succeeded += 1
            raw_count += len(messages)
            for message in messages:
                codes.extend(self._parse_message(channel_id, message))

        status = SourceStatus.DEGRADED if rate_limited else SourceStatus.OK
        note = "rate limited by discord; results are partial" if rate_limited else None
        return FetchOutcome(codes=codes, raw_count=raw_count, status=status, note=note)

    async def _codes_channel_ids(self) -> list[str]:
        if self._config.channel_ids:
            return list(self._config.channel_ids)

        url = f"{self.api_base_url}/guilds/{self._config.guild_id}/channels"
        try:
            channels = await self._get_json(url, headers=self._auth_headers)
        except SourceFetchError as exc:
            logger.warning("could not list discord channels: %s", exc, extra={"source": self.name})
            return []

        if not isinstance(channels, list):
            logger.warning("unexpected discord channel listing format", extra={"source": self.name})
            return []

        found: list[str] = []
        for channel in channels:
            if not isinstance(channel, dict):
                continue
            name = str(channel.get("name") or "").lower()
            channel_id = str(channel.get("id") or "")
            if channel_id and any(word in name for word in CHANNEL_NAME_KEYWORDS):
                found.append(channel_id)
        return found

    async def _fetch_channel_messages(self, channel_id: str) -> list[dict[str, Any]]:
        url = f"{self.api_base_url}/channels/{channel_id}/messages"
        params = {"limit": str(MESSAGE_LIMIT)}

        try:
            data = await self._get_json(url, params=params, headers=self._auth_headers)
        except SourceRateLimitedError as exc:
            wait = exc.retry_after if exc.retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
            logger.info(
                "discord rate limited; retrying channel %s in %.1fs",
                channel_id,
                wait,
                extra={"source": self.name},
            )
            await self._sleep(wait)
            data = await self._get_json(url, params=params, headers=self._auth_headers)

        if not isinstance(data, list):
            raise SourceFetchError("invalid response format from Discord API")
        return [m for m in data if isinstance(m, dict)]

    def _parse_message(self, channel_id: str, message: dict[str, Any]) -> list[Code]:
        content = str(message.get("content") or "")
        tokens = extract_codes(content)
        if not tokens:
            return []

        author = message.get("author") if isinstance(message.get("author"), dict) else {}
        timestamp = parse_iso8601(message.get("timestamp")) or self._clock()
        message_id = str(message.get("id") or "")
        url = (
            f"{DISCORD_WEB_BASE_URL}/{self._config.guild_id}/{channel_id}/{message_id}"
            if message_id
            else None
        )

        return [
            Code(
                code=token,
                source=self.name,
                timestamp=timestamp,
                tags=[SourceName.DISCORD.value, "bot" if author.get("bot") else "user"],
                region="global",
                description=content[:MAX_DESCRIPTION_LENGTH] or None,
                verified=True,
                url=url,
            )
            for token in tokens
        ]
