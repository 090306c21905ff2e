from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from teia_status import scheduler
from teia_status.app import app
from teia_status.scheduler import StatusChecker


@pytest.fixture
def checker(config, router, monkeypatch: pytest.MonkeyPatch) -> StatusChecker:
    checker = StatusChecker(config, http_client=router.client())
    monkeypatch.setattr(scheduler, "_default_checker", checker)
    return checker


def test_status_endpoint_returns_report_text(checker: StatusChecker) -> None:
    # No context manager: startup hooks (and real network checks) stay off.
    client = TestClient(app)

    resp = client.get("/status")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == checker.get_status()
    assert "Teia.art status has not been checked yet." in resp.text


def test_root_reports_cycle(checker: StatusChecker) -> None:
    client = TestClient(app)

    body = client.get("/").json()

    assert body["status"] == "healthy"
    assert body["cycle"] == 0
    assert body["completed_at"] is None
