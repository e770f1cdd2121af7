"""Tests for the /health liveness endpoint."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from options_pipeline.api.deps import get_market_calendar, get_session_factory
from options_pipeline.api.main import app
from options_pipeline.core.utils.calendars import MarketCalendar


class ClosedCalendar(MarketCalendar):
    def is_market_open(self, now_utc=None) -> bool:
        return False


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


def _client(factory, calendar) -> TestClient:
    app.dependency_overrides[get_session_factory] = lambda: factory
    app.dependency_overrides[get_market_calendar] = lambda: calendar
    return TestClient(app)


def test_health_connected(session_factory):
    resp = _client(session_factory, ClosedCalendar(holidays=())).get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["marketStatus"] == "closed"
    assert body["nextMarketOpen"] is not None
    assert body["polygonAPI"] in ("configured", "not-configured")
    assert resp.headers["access-control-allow-origin"] == "*"


def test_health_is_not_gated(session_factory):
    # Closed market still answers with a normal health payload
    resp = _client(session_factory, ClosedCalendar(holidays=())).get("/health")
    assert "timestamp" in resp.json()
