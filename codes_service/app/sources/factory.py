from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import httpx

from common.types.datetime import utc_now

from ..config import AggregateConfig, SourceConfig
from ..models.code import SourceName
from .base import CodeSource
from .discord import DiscordSource
from .reddit import RedditSource
from .sample import SampleSource
from .snelp import SnelpSource


logger = logging.getLogger(__name__)


_SOURCE_TYPES: dict[str, type[CodeSource]] = {
    SourceName.SNELP.value: SnelpSource,
    SourceName.DISCORD.value: DiscordSource,
    SourceName.REDDIT.value: RedditSource,
    SourceName.SAMPLE.value: SampleSource,
}


def build_sources(
    config: AggregateConfig,
    client: httpx.AsyncClient,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> list[CodeSource]:
    """설정에 있는 소스를 priority 순서대로 생성한다. 모르는 이름은 건너뛴다."""

    sources: list[CodeSource] = []
    for src_config in config.ordered_sources():
        source_type = _SOURCE_TYPES.get(src_config.name)
        if source_type is None:
            logger.warning("unknown code source %r in configuration; skipped", src_config.name)
            continue
        sources.append(_create(source_type, src_config, client, config.user_agent, clock))
    return sources


def _create(
    source_type: type[CodeSource],
    src_config: SourceConfig,
    client: httpx.AsyncClient,
    user_agent: str,
    clock: Callable[[], datetime],
) -> CodeSource:
    return source_type(src_config, client, user_agent=user_agent, clock=clock)
