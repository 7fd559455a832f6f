from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Sequence

from ..models.code import Code, Scope
from ..sources.base import SourceFetchResult


PAST7_WINDOW = timedelta(days=7)
_STRIP_PATTERN = re.compile(r"[-\s]+")


def normalize_code(text: str) -> str:
    """비교용 정규화: 대문자로 바꾸고 하이픈과 공백을 모두 제거한다."""

    return _STRIP_PATTERN.sub("", text).upper()


def rank_results(
    results: Iterable[tuple[str, SourceFetchResult]],
    priority: Sequence[str],
) -> list[tuple[str, SourceFetchResult]]:
    """priority 순서대로 결과를 정렬한다. priority 에 없는 소스는 들어온 순서대로 뒤에 둔다."""

    rank = {name: idx for idx, name in enumerate(priority)}
    indexed = list(enumerate(results))
    indexed.sort(key=lambda item: (rank.get(item[1][0], len(rank)), item[0]))
    return [pair for _, pair in indexed]


def merge_codes(
    results: Iterable[tuple[str, SourceFetchResult]],
    priority: Sequence[str],
    *,
    trust_weights: Mapping[str, float] | None = None,
    verification_threshold: float = 1.5,
    trust_window: timedelta = timedelta(hours=24),
) -> list[Code]:
    """소스별 결과를 하나의 코드 목록으로 합친다.

    - 정규화 형태가 같은 코드는 priority 가 가장 높은 소스의 항목 하나만 남는다.
    - 남은 항목의 provenance 에는 같은 코드를 보고한 모든 소스 이름이 쌓인다.
    - tags 는 모든 관측의 태그를 처음 본 순서대로 중복 없이 합친다.
    - 서로 다른 소스 2개 이상이 첫 관측 후 trust_window 안에 보고했고
      그 가중치 합이 verification_threshold 이상이면 verified 로 표시한다.
    - 결과는 timestamp 내림차순(같으면 삽입 순서 유지)이다.
    """

    weights = trust_weights or {}
    winners: dict[str, Code] = {}
    sightings: dict[str, list[tuple[str, datetime]]] = {}
    tags: dict[str, list[str]] = {}

    for source_name, result in rank_results(results, priority):
        for code in result.codes:
            key = normalize_code(code.code)
            if not key:
                continue

            sightings.setdefault(key, []).append((code.source or source_name, code.timestamp))
            merged_tags = tags.setdefault(key, [])
            for tag in code.tags:
                if tag not in merged_tags:
                    merged_tags.append(tag)

            if key not in winners:
                winners[key] = code.model_copy(deep=True)

    merged: list[Code] = []
    for key, code in winners.items():
        seen = sightings[key]
        provenance: list[str] = []
        for name, _ in seen:
            if name not in provenance:
                provenance.append(name)
        code.provenance = provenance
        code.tags = tags[key]
        code.verified = code.verified or _is_verified(
            seen, weights, verification_threshold, trust_window
        )
        merged.append(code)

    # sort 는 stable 하므로 같은 timestamp 는 삽입(priority) 순서를 유지한다.
    merged.sort(key=lambda c: c.timestamp, reverse=True)
    return merged


def _is_verified(
    sightings: list[tuple[str, datetime]],
    weights: Mapping[str, float],
    threshold: float,
    window: timedelta,
) -> bool:
    first_seen = min(ts for _, ts in sightings)
    in_window = {name for name, ts in sightings if ts - first_seen <= window}
    if len(in_window) < 2:
        return False
    return sum(weights.get(name, 0.0) for name in in_window) >= threshold


def filter_by_scope(codes: list[Code], scope: Scope, now: datetime) -> list[Code]:
    """scope 에 따라 코드를 거른다. 순서는 그대로 유지한다."""

    if scope is Scope.ACTIVE:
        return [c for c in codes if c.expires is None or c.expires > now]
    if scope is Scope.PAST7:
        cutoff = now - PAST7_WINDOW
        return [c for c in codes if c.timestamp >= cutoff]
    if scope is Scope.VERIFIED:
        return [c for c in codes if c.verified]
    return list(codes)


def search_codes(codes: list[Code], query: str | None) -> list[Code]:
    """code, description, tags 에 대한 대소문자 무시 부분 문자열 검색."""

    if query is None or not query.strip():
        return codes

    needle = query.strip().lower()
    matched: list[Code] = []
    for code in codes:
        haystacks = [code.code, code.description or "", *code.tags]
        if any(needle in text.lower() for text in haystacks):
            matched.append(code)
    return matched
