from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from common.kv.config import KeyValueConfig, load_kv_config

from .models.code import SourceName


DEFAULT_CONFIG_FILE_NAME = "config.yaml"

CODES_SNELP_URL = "CODES_SNELP_URL"
LEGACY_SNELP_URL = "NEXT_PUBLIC_SNELP_CODES_URL"
CODES_REDDIT_ENABLED = "CODES_REDDIT_ENABLED"
CODES_REDDIT_SUBREDDIT = "CODES_REDDIT_SUBREDDIT"
CODES_SAMPLE_FILE = "CODES_SAMPLE_FILE"
DISCORD_TOKEN = "DISCORD_TOKEN"
DISCORD_GUILD_ID = "DISCORD_GUILD_ID"
DISCORD_CODES_CHANNEL_IDS = "DISCORD_CODES_CHANNEL_IDS"
CODES_SOURCE_PRIORITY = "CODES_SOURCE_PRIORITY"
CODES_FETCH_TIMEOUT_SECONDS = "CODES_FETCH_TIMEOUT_SECONDS"
CODES_USER_AGENT = "CODES_USER_AGENT"
CODES_CACHE_ENABLED = "CODES_CACHE_ENABLED"
CODES_CACHE_TTL_SECONDS = "CODES_CACHE_TTL_SECONDS"
CODES_CACHE_STALE_TTL_SECONDS = "CODES_CACHE_STALE_TTL_SECONDS"
CODES_REFRESH_INTERVAL_SECONDS = "CODES_REFRESH_INTERVAL_SECONDS"
CODES_REPORTS_DIR = "CODES_REPORTS_DIR"

DEFAULT_USER_AGENT = "Slimy.ai/1.0 (+https://slimy.ai)"
DEFAULT_SUBREDDIT = "SuperSnailGame"
DEFAULT_PRIORITY = (
    SourceName.SNELP.value,
    SourceName.DISCORD.value,
    SourceName.REDDIT.value,
    SourceName.SAMPLE.value,
)

# 교차 검증(verified) 판정에 쓰는 소스별 신뢰 가중치 기본값
DEFAULT_TRUST_WEIGHTS: dict[str, float] = {
    SourceName.SNELP.value: 1.0,
    SourceName.DISCORD.value: 1.0,
    SourceName.REDDIT.value: 0.5,
    SourceName.SAMPLE.value: 0.0,
}
VERIFICATION_THRESHOLD = 1.5
TRUST_WINDOW_HOURS = 24.0


@dataclass(slots=True)
class SourceConfig:
    """코드 소스 하나의 설정."""

    name: str
    enabled: bool = True
    url: str | None = None
    trust_weight: float = 0.0
    timeout_seconds: float = 10.0
    subreddit: str | None = None
    path: str | None = None
    token: str | None = None
    guild_id: str | None = None
    # 비어 있으면 길드 채널 이름으로 코드 채널을 찾는다.
    channel_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AggregateConfig:
    sources: list[SourceConfig]
    # 충돌 시 앞에 있는 소스가 이긴다.
    priority: list[str]
    user_agent: str = DEFAULT_USER_AGENT
    refresh_interval_seconds: float = 300.0
    verification_threshold: float = VERIFICATION_THRESHOLD
    trust_window_hours: float = TRUST_WINDOW_HOURS

    def ordered_sources(self) -> list[SourceConfig]:
        """priority 순서로 정렬한 소스 목록. priority 에 없는 소스는 설정 순서대로 뒤에 붙는다."""

        rank = {name: idx for idx, name in enumerate(self.priority)}
        indexed = list(enumerate(self.sources))
        indexed.sort(key=lambda item: (rank.get(item[1].name, len(rank)), item[0]))
        return [src for _, src in indexed]


@dataclass(slots=True)
class CacheConfig:
    enabled: bool = True
    ttl_seconds: float = 60.0
    stale_ttl_seconds: float = 600.0
    key_prefix: str = "codes:"


@dataclass(slots=True)
class ReportConfig:
    reports_dir: Path = field(default_factory=lambda: Path("data/reports"))


@dataclass(slots=True)
class AppConfig:
    """codes-service 전체 설정 루트."""

    aggregate: AggregateConfig
    cache: CacheConfig
    report: ReportConfig
    kv: KeyValueConfig


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"{name} must be a boolean if set, got: {raw!r}")


def _get_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _find_config_path() -> Path | None:
    """현재 작업 디렉토리에서 위로 올라가며 config.yaml 을 찾는다. 없으면 None."""

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _load_codes_section(path: Path | None) -> dict:
    if path is None:
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"{path} must contain a mapping at the top level")
    section = data.get("codes") or {}
    if not isinstance(section, dict):
        raise RuntimeError(f"invalid codes section in {path}: {section!r}")
    return section


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _default_sources(timeout: float) -> list[SourceConfig]:
    snelp_url = (os.getenv(CODES_SNELP_URL) or os.getenv(LEGACY_SNELP_URL) or "").strip() or None
    sample_path = (os.getenv(CODES_SAMPLE_FILE) or "").strip() or None
    discord_token = (os.getenv(DISCORD_TOKEN) or "").strip() or None
    discord_guild = (os.getenv(DISCORD_GUILD_ID) or "").strip() or None

    return [
        SourceConfig(
            name=SourceName.SNELP.value,
            enabled=snelp_url is not None,
            url=snelp_url,
            trust_weight=DEFAULT_TRUST_WEIGHTS[SourceName.SNELP.value],
            timeout_seconds=timeout,
        ),
        SourceConfig(
            name=SourceName.DISCORD.value,
            enabled=discord_token is not None and discord_guild is not None,
            token=discord_token,
            guild_id=discord_guild,
            channel_ids=_split_csv(os.getenv(DISCORD_CODES_CHANNEL_IDS)),
            trust_weight=DEFAULT_TRUST_WEIGHTS[SourceName.DISCORD.value],
            timeout_seconds=timeout,
        ),
        SourceConfig(
            name=SourceName.REDDIT.value,
            enabled=_get_bool(CODES_REDDIT_ENABLED, True),
            subreddit=os.getenv(CODES_REDDIT_SUBREDDIT) or DEFAULT_SUBREDDIT,
            trust_weight=DEFAULT_TRUST_WEIGHTS[SourceName.REDDIT.value],
            timeout_seconds=timeout,
        ),
        SourceConfig(
            name=SourceName.SAMPLE.value,
            enabled=sample_path is not None,
            path=sample_path,
            trust_weight=DEFAULT_TRUST_WEIGHTS[SourceName.SAMPLE.value],
            timeout_seconds=timeout,
        ),
    ]


def _apply_source_overrides(
    sources: list[SourceConfig], overrides: list, path: Path | None
) -> list[SourceConfig]:
    """config.yaml 의 codes.sources 항목으로 이름이 같은 소스 설정을 덮어쓴다."""

    by_name = {src.name: src for src in sources}
    for item in overrides:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip()
        if not name:
            continue

        src = by_name.get(name)
        if src is None:
            src = SourceConfig(name=name, trust_weight=DEFAULT_TRUST_WEIGHTS.get(name, 0.0))
            sources.append(src)
            by_name[name] = src

        if "url" in item:
            src.url = str(item["url"] or "").strip() or None
        if "subreddit" in item:
            src.subreddit = str(item["subreddit"] or "").strip() or None
        if "path" in item:
            src.path = str(item["path"] or "").strip() or None
        if "guild_id" in item:
            src.guild_id = str(item["guild_id"] or "").strip() or None
        if "channel_ids" in item:
            raw_ids = item["channel_ids"]
            if isinstance(raw_ids, str):
                src.channel_ids = _split_csv(raw_ids)
            else:
                src.channel_ids = [str(i).strip() for i in raw_ids or [] if str(i).strip()]
        if "enabled" in item:
            src.enabled = bool(item["enabled"])
        for key in ("trust_weight", "timeout_seconds"):
            if key in item:
                try:
                    setattr(src, key, float(item[key]))
                except (TypeError, ValueError) as exc:
                    raise RuntimeError(
                        f"invalid codes.sources[{name}].{key} in {path}: {item[key]!r}",
                    ) from exc
    return sources


def _parse_priority(raw: object) -> list[str]:
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw]
    else:
        return list(DEFAULT_PRIORITY)
    names = [item.strip() for item in items if item and item.strip()]
    return names or list(DEFAULT_PRIORITY)


def load_aggregate_config() -> AggregateConfig:
    timeout = _get_float(CODES_FETCH_TIMEOUT_SECONDS, 10.0, minimum=0.1)
    sources = _default_sources(timeout)

    path = _find_config_path()
    section = _load_codes_section(path)
    sources = _apply_source_overrides(sources, section.get("sources") or [], path)

    env_priority = os.getenv(CODES_SOURCE_PRIORITY)
    priority = _parse_priority(env_priority if env_priority else section.get("priority"))

    user_agent = (
        os.getenv(CODES_USER_AGENT) or os.getenv("USER_AGENT") or ""
    ).strip() or DEFAULT_USER_AGENT

    return AggregateConfig(
        sources=sources,
        priority=priority,
        user_agent=user_agent,
        refresh_interval_seconds=_get_float(CODES_REFRESH_INTERVAL_SECONDS, 300.0),
    )


def load_cache_config() -> CacheConfig:
    return CacheConfig(
        enabled=_get_bool(CODES_CACHE_ENABLED, True),
        ttl_seconds=_get_float(CODES_CACHE_TTL_SECONDS, 60.0, minimum=1.0),
        stale_ttl_seconds=_get_float(CODES_CACHE_STALE_TTL_SECONDS, 600.0),
    )


def load_report_config() -> ReportConfig:
    raw = (os.getenv(CODES_REPORTS_DIR) or "").strip()
    return ReportConfig(reports_dir=Path(raw) if raw else Path("data/reports"))


def load_config() -> AppConfig:
    """codes-service 설정을 로드하여 AppConfig 로 반환한다."""

    return AppConfig(
        aggregate=load_aggregate_config(),
        cache=load_cache_config(),
        report=load_report_config(),
        kv=load_kv_config(),
    )
