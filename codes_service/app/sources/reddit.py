from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any

from ..exceptions import SourceFetchError, SourceRateLimitedError
from ..models.code import FETCH_HINT_RECENT, Code, SourceName, SourceStatus
from .base import CodeSource, FetchOutcome, normalize_token


logger = logging.getLogger(__name__)

REDDIT_BASE_URL = "https://www.reddit.com"
SEARCH_QUERIES: tuple[str, ...] = ("code", "gift code", "redeem")
SEARCH_LIMIT = 25
MAX_DESCRIPTION_LENGTH = 100

# 문맥 키워드(code/codes/gift code/redeem/redeem code) 바로 뒤에 오는
# 4자 이상 영숫자 세그먼트 2~3개짜리 하이픈 토큰만 코드로 본다.
# 키워드는 단어 하나로 끝나야 하고(codebase, codename 제외) 토큰과는 공백이나 : = - 로 떨어져 있어야 한다.
# 토큰 뒤에 영숫자나 하이픈이 더 이어지면(4번째 세그먼트 등) 잘라서 만들지 않는다.
CODE_PATTERN = re.compile(
    r"\b(?:gift\s+codes?|redeem(?:\s+codes?)?|codes?)\b"
    r"(?:\s*[:=]\s*|\s*-\s*|\s+)"
    r"(?P<token>[A-Za-z0-9]{4,}(?:-[A-Za-z0-9]{4,}){1,2})"
    r"(?![A-Za-z0-9-])",
    re.IGNORECASE,
)
_HAS_DIGIT = re.compile(r"[0-9]")


def extract_codes(text: str) -> list[str]:
    """자유 텍스트에서 코드 후보를 뽑는다. 정밀도 우선이라 놓치는 코드는 허용한다."""

    found: list[str] = []
    seen: set[str] = set()
    for match in CODE_PATTERN.finditer(text):
        token = normalize_token(match.group("token"))
        if not _HAS_DIGIT.search(token):
            continue
        if token in seen:
            continue
        seen.add(token)
        found.append(token)
    return found


class RedditSource(CodeSource):
    """서브레딧 검색 결과에서 코드를 추출하는 커뮤니티 소스."""

    def __init__(self, *args: Any, query_delay_seconds: float = 1.0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._query_delay_seconds = query_delay_seconds

    def is_configured(self) -> bool:
        return self._config.enabled and bool(self._config.subreddit)

    @property
    def search_url(self) -> str:
        base = (self._config.url or REDDIT_BASE_URL).rstrip("/")
        return f"{base}/r/{self._config.subreddit}/search.json"

    async def _fetch_codes(self, scope_hint: str) -> FetchOutcome:
        posts, rate_limited = await self._fetch_posts(scope_hint)

        codes: list[Code] = []
        for post in posts:
            codes.extend(self._parse_post(post))

        status = SourceStatus.DEGRADED if rate_limited else SourceStatus.OK
        note = "rate limited by reddit; results are partial" if rate_limited else None
        return FetchOutcome(codes=codes, raw_count=len(posts), status=status, note=note)

    async def _fetch_posts(self, scope_hint: str) -> tuple[list[dict[str, Any]], bool]:
        time_filter = "week" if scope_hint == FETCH_HINT_RECENT else "all"

        posts: list[dict[str, Any]] = []
        seen_ids: set[str] = set()
        succeeded = 0
        rate_limited = False

        for idx, query in enumerate(SEARCH_QUERIES):
            if idx > 0 and self._query_delay_seconds > 0:
                await asyncio.sleep(self._query_delay_seconds)

            params = {
                "q": query,
                "restrict_sr": "1",
                "sort": "new",
                "limit": str(SEARCH_LIMIT),
                "t": time_filter,
            }
            try:
                data = await self._get_json(self.search_url, params=params)
            except SourceRateLimitedError:
                if succeeded == 0:
                    raise
                logger.warning("reddit rate limited; skipping further queries", extra={"source": self.name})
                rate_limited = True
                break

            children = (data.get("data") or {}).get("children") if isinstance(data, dict) else None
            if not isinstance(children, list):
                raise SourceFetchError("invalid response format from Reddit API")
            succeeded += 1

            for child in children:
                post = child.get("data") if isinstance(child, dict) else None
                if not isinstance(post, dict):
                    continue
                post_id = str(post.get("id") or "")
                if post_id and post_id in seen_ids:
                    continue
                if post_id:
                    seen_ids.add(post_id)
                posts.append(post)

        return posts, rate_limited

    def _parse_post(self, post: dict[str, Any]) -> list[Code]:
        title = str(post.get("title") or "")
        selftext = str(post.get("selftext") or "")
        tokens = extract_codes(f"{title} {selftext}")
        if not tokens:
            return []

        created_utc = post.get("created_utc")
        try:
            timestamp = datetime.fromtimestamp(float(created_utc), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            timestamp = self._clock()

        permalink = post.get("permalink")
        url = f"{REDDIT_BASE_URL}{permalink}" if permalink else None

        return [
            Code(
                code=token,
                source=self.name,
                timestamp=timestamp,
                tags=[SourceName.REDDIT.value],
                description=title[:MAX_DESCRIPTION_LENGTH] or None,
                url=url,
            )
            for token in tokens
        ]
