from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from codes_service.app.main import create_app
from codes_service.app.models.code import AggregationResult, Code, SourceHealth, SourceStatus
from codes_service.app.services.aggregate_service import AggregateSnapshot
from codes_service.app.services.report_service import ReportService


NOW = datetime.now(timezone.utc)


class FakeAggregateService:
    def __init__(self, result: AggregationResult, *, stale: bool = False) -> None:
        self.result = result
        self.stale = stale
        self.error: Exception | None = None
        self.hints: list[str] = []

    async def get_result(self, scope_hint: str, *, force: bool = False) -> AggregateSnapshot:
        self.hints.append(scope_hint)
        if self.error is not None:
            raise self.error
        return AggregateSnapshot(result=self.result, stale=self.stale)


def _result() -> AggregationResult:
    return AggregationResult(
        codes=[
            Code(code="FRESH-1234", source="snelp", timestamp=NOW, tags=["active", "snelp"], verified=True),
            Code(
                code="EXPIRED-5678",
                source="snelp",
                timestamp=NOW - timedelta(hours=1),
                expires=NOW - timedelta(minutes=1),
            ),
            Code(code="OLD-9999", source="reddit", timestamp=NOW - timedelta(days=30), tags=["reddit"]),
        ],
        sources={
            "snelp": SourceHealth(status=SourceStatus.OK, last_fetch=NOW, item_count=2),
            "reddit": SourceHealth(
                status=SourceStatus.FAILED, last_fetch=NOW, item_count=0, error="secret detail"
            ),
        },
        generated_at=NOW,
    )


@pytest.fixture
def service() -> FakeAggregateService:
    return FakeAggregateService(_result())


@pytest.fixture
def client(service: FakeAggregateService, tmp_path: Path) -> TestClient:
    app = create_app()
    app.state.codes_service = service
    app.state.report_service = ReportService(tmp_path / "reports")
    return TestClient(app)


def test_list_codes_defaults_to_active_scope(client: TestClient, service: FakeAggregateService) -> None:
    resp = client.get("/api/codes")

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "public, s-maxage=60, stale-while-revalidate=120"
    body = resp.json()
    assert body["scope"] == "active"
    assert [c["code"] for c in body["codes"]] == ["FRESH-1234", "OLD-9999"]
    assert body["count"] == 2
    assert body["stale"] is False
    assert "generatedAt" in body
    assert service.hints == ["recent"]


def test_list_codes_past7_and_all(client: TestClient, service: FakeAggregateService) -> None:
    past7 = client.get("/api/codes", params={"scope": "past7"}).json()
    everything = client.get("/api/codes", params={"scope": "all"}).json()

    assert [c["code"] for c in past7["codes"]] == ["FRESH-1234", "EXPIRED-5678"]
    assert everything["count"] == 3
    assert service.hints == ["recent", "all"]


def test_list_codes_unknown_scope_returns_everything(client: TestClient) -> None:
    body = client.get("/api/codes", params={"scope": "bogus"}).json()

    assert body["scope"] == "bogus"
    assert body["count"] == 3


def test_list_codes_verified_and_search(client: TestClient) -> None:
    verified = client.get("/api/codes", params={"scope": "verified"}).json()
    searched = client.get("/api/codes", params={"scope": "all", "q": "old"}).json()

    assert [c["code"] for c in verified["codes"]] == ["FRESH-1234"]
    assert [c["code"] for c in searched["codes"]] == ["OLD-9999"]


def test_list_codes_never_exposes_source_errors(client: TestClient) -> None:
    body = client.get("/api/codes").json()

    assert body["sources"]["reddit"] == {
        "status": "failed",
        "lastFetch": body["sources"]["reddit"]["lastFetch"],
        "itemCount": 0,
    }
    assert "secret detail" not in json.dumps(body)


def test_list_codes_failure_returns_error_envelope(client: TestClient, service: FakeAggregateService) -> None:
    service.error = RuntimeError("boom")

    resp = client.get("/api/codes")

    assert resp.status_code == 500
    assert resp.json() == {
        "ok": False,
        "code": "AGGREGATION_ERROR",
        "message": "Failed to aggregate codes",
        "codes": [],
    }


def test_health_reports_summary_without_errors(client: TestClient) -> None:
    resp = client.get("/api/codes/health")

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "public, s-maxage=60, stale-while-revalidate=600"
    body = resp.json()
    assert body["ok"] is True
    assert body["totalCodes"] == 3
    assert body["verifiedCodes"] == 1
    assert set(body["sources"]["snelp"]) == {"status", "lastFetch", "itemCount"}
    assert "secret detail" not in resp.text


def test_health_not_ok_when_every_source_is_down(client: TestClient, service: FakeAggregateService) -> None:
    for health in service.result.sources.values():
        health.status = SourceStatus.NOT_CONFIGURED

    body = client.get("/api/codes/health").json()

    assert body["ok"] is False


def test_health_failure_is_not_cached(client: TestClient, service: FakeAggregateService) -> None:
    service.error = RuntimeError("boom")

    resp = client.get("/api/codes/health")

    assert resp.status_code == 500
    assert resp.headers["cache-control"] == "no-store"
    assert resp.json() == {"ok": False, "error": "Health check failed"}


def test_report_requires_code(client: TestClient) -> None:
    resp = client.post("/api/codes/report", json={"reason": "dead"})

    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "message": "Code is required"}


def test_report_appends_jsonl_line(client: TestClient, tmp_path: Path) -> None:
    resp = client.post(
        "/api/codes/report",
        json={"code": "ABCD-1234", "guildId": "guild-1"},
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "message": "Code reported successfully"}

    files = list((tmp_path / "reports").glob("*.jsonl"))
    assert len(files) == 1
    entry = json.loads(files[0].read_text(encoding="utf-8").strip())
    assert entry["code"] == "ABCD-1234"
    assert entry["reason"] == "dead"
    assert entry["guildId"] == "guild-1"
    assert entry["userId"] == "unknown"
    assert entry["ip"] == "203.0.113.9"


def test_report_invalid_body_is_400(client: TestClient) -> None:
    resp = client.post(
        "/api/codes/report",
        content="not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_service_health_endpoint(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok", "service": "codes-service"}
