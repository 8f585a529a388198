"""End-to-end tests for the HTTP surface."""

from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from callboard.core.dependencies import get_alert_feed, get_resolver
from callboard.domain.bus import EventBus
from callboard.domain.handlers import AlertFeed
from callboard.main import app
from callboard.services.resolver import ConflictResolver


@pytest.fixture()
def client(store):
    bus = EventBus()
    feed = AlertFeed(bus)
    resolver = ConflictResolver(store, bus=bus)
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_alert_feed] = lambda: feed
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client: TestClient):
    """The health check reports the service as up."""
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_target_conflicts(client: TestClient):
    """Ana's dentist visit shows up against the Act 2 blocking item."""
    resp = client.get("/targets/act2/conflicts")
    assert resp.status_code == 200
    body = resp.json()
    assert body["has_conflicts"] is True
    assert body["is_degraded"] is False
    [entry] = body["entries"]
    assert entry["member"]["member_id"] == "ana"
    assert entry["conflicts"][0]["title"] == "Dentist"
    assert entry["conflicts"][0]["type"] == "personal_event"


def test_target_conflicts_404(client: TestClient):
    """An unknown target id is a 404 naming the id."""
    resp = client.get("/targets/nope/conflicts")
    assert resp.status_code == 404
    assert "nope" in resp.json()["detail"]


def test_target_conflicts_503_when_roster_unreadable(client: TestClient, store):
    """A roster read failure is a 503, not an empty report."""
    store.fail("get_production_roster")
    resp = client.get("/targets/act2/conflicts")
    assert resp.status_code == 503


def test_target_conflicts_400_when_target_row_is_invalid(client: TestClient, store):
    """A stored target whose times do not parse is a bad request, not a crash."""
    store.add_production_event("broken", "woods", date(2024, 3, 6), "25:00", "26:00")
    resp = client.get("/targets/broken/conflicts")
    assert resp.status_code == 400


def test_production_conflicts(client: TestClient):
    """The production check returns one report per target in the window."""
    resp = client.get(
        "/productions/woods/conflicts",
        params={"start": "2024-03-04T00:00:00-06:00", "end": "2024-03-11T00:00:00-05:00"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert list(body["reports"]) == ["reh-0305"]
    assert body["reports"]["reh-0305"]["entries"][0]["member"]["member_id"] == "ana"


def test_production_conflicts_bad_window(client: TestClient):
    """A window that ends before it starts is rejected with 400."""
    resp = client.get(
        "/productions/woods/conflicts",
        params={"start": "2024-03-11T00:00:00", "end": "2024-03-04T00:00:00"},
    )
    assert resp.status_code == 400


def test_production_conflicts_unknown_production(client: TestClient):
    """An unknown production is a 404."""
    resp = client.get(
        "/productions/nope/conflicts",
        params={"start": "2024-03-04T00:00:00", "end": "2024-03-11T00:00:00"},
    )
    assert resp.status_code == 404


def test_daily_conflicts(client: TestClient):
    """Daily summaries list each date with that day's outside commitments."""
    resp = client.get(
        "/productions/woods/daily-conflicts",
        params={"start_date": "2024-03-05", "end_date": "2024-03-06"},
    )
    assert resp.status_code == 200
    days = resp.json()["days"]
    assert [d["date"] for d in days] == ["2024-03-05", "2024-03-06"]
    assert days[1]["conflicts"][0]["commitment"]["title"] == "Band Practice"
    assert days[1]["total_conflicts"] == 1


def test_daily_conflicts_bad_range(client: TestClient):
    """An inverted date range is rejected with 400."""
    resp = client.get(
        "/productions/woods/daily-conflicts",
        params={"start_date": "2024-03-06", "end_date": "2024-03-05"},
    )
    assert resp.status_code == 400


def test_member_commitments(client: TestClient, store):
    """A member's commitments come back for the window."""
    store.fail("get_member_accepted_callbacks", "ana")
    resp = client.get(
        "/members/ana/commitments",
        params={"start": "2024-03-05T00:00:00", "end": "2024-03-06T00:00:00"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "partial"
    assert body["failed_sources"] == ["callback"]
    assert sorted(c["title"] for c in body["commitments"]) == [
        "Dentist",
        "Into the Woods - Act 2 Blocking",
    ]


def test_member_commitments_404(client: TestClient):
    """An unknown member is a 404."""
    resp = client.get(
        "/members/ghost/commitments",
        params={"start": "2024-03-05T00:00:00", "end": "2024-03-06T00:00:00"},
    )
    assert resp.status_code == 404


def test_alerts_follow_checks(client: TestClient):
    """Checking a conflicted target adds an alert to the production feed."""
    assert client.get("/productions/woods/alerts").json() == []
    client.get("/targets/act2/conflicts")
    alerts = client.get("/productions/woods/alerts").json()
    assert [a["kind"] for a in alerts] == ["conflicts"]
    assert alerts[0]["member_ids"] == ["ana"]
