from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from codes_service.app.exceptions import ReportWriteError
from codes_service.app.services.report_service import ReportService


NOW = datetime(2025, 3, 9, 23, 59, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_submit_appends_one_line_per_report(tmp_path: Path) -> None:
    reports_dir = tmp_path / "nested" / "reports"
    service = ReportService(reports_dir, clock=lambda: NOW)

    await service.submit("abcd-1234", ip="198.51.100.7")
    await service.submit("WXYZ-5678", reason="expired", guild_id="g1", user_id="u1")

    path = reports_dir / "2025-03-09.jsonl"
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert len(lines) == 2
    assert lines[0] == {
        "code": "abcd-1234",
        "reason": "dead",
        "guildId": "unknown",
        "userId": "unknown",
        "timestamp": "2025-03-09T23:59:00+00:00",
        "ip": "198.51.100.7",
    }
    assert lines[1]["reason"] == "expired"
    assert lines[1]["guildId"] == "g1"
    assert lines[1]["userId"] == "u1"


@pytest.mark.asyncio
async def test_submit_raises_report_write_error_when_directory_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "reports"
    blocker.write_text("not a directory", encoding="utf-8")
    service = ReportService(blocker, clock=lambda: NOW)

    with pytest.raises(ReportWriteError):
        await service.submit("ABCD-1234")
