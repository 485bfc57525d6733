from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from sla_tracker.main import app
from sla_tracker.sla.interfaces.controllers import (
    get_unit_of_work, get_config_provider, parse_trend_days,
)

from conftest import add_team, make_ticket, make_uow, StaticConfigProvider

HEADERS = {"X-Team-ID": "team-1"}

TICKET = {
    "title": "Checkout is broken",
    "description": "Payment page returns an error for every card",
    "priority": "P1",
}


@pytest.fixture
def client(store):
    app.dependency_overrides[get_unit_of_work] = lambda: make_uow(store)
    app.dependency_overrides[get_config_provider] = lambda: StaticConfigProvider()
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestTeams:
    def test_register_and_fetch(self, client):
        response = client.post("/teams", json={"name": "Payments", "email": "pay@example.com"})
        assert response.status_code == 201
        team = response.json()
        assert team["ticket_limit"] == 100
        assert team["sla_policy_id"]

        me = client.get("/teams/me", headers={"X-Team-ID": team["id"]})
        assert me.status_code == 200
        assert me.json()["email"] == "pay@example.com"

    def test_duplicate_email(self, client, store):
        add_team(store)
        response = client.post("/teams", json={"name": "Again", "email": "team-1@example.com"})
        assert response.status_code == 409

    def test_missing_team_header(self, client):
        response = client.get("/teams/me")
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "X-Team-ID header is required"
        assert body["correlation_id"]
        assert "timestamp" in body


class TestTickets:
    def test_create(self, client, store):
        add_team(store)

        response = client.post("/tickets", json=TICKET, headers=HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "open"
        assert body["sla_response_target"] == 1
        assert body["sla_resolution_target"] == 2
        assert body["response_breached"] is False

    def test_body_validation(self, client, store):
        add_team(store)

        response = client.post("/tickets", json={**TICKET, "title": "Hi", "priority": "P9"}, headers=HEADERS)

        assert response.status_code == 400
        fields = {e["field"] for e in response.json()["details"]["errors"]}
        assert fields == {"title", "priority"}

    def test_quota(self, client, store):
        add_team(store, tickets_used=100, ticket_limit=100)

        response = client.post("/tickets", json=TICKET, headers=HEADERS)

        assert response.status_code == 429
        assert "100" in response.json()["error"]

    def test_policy_missing(self, client, store):
        add_team(store, with_policy=False)

        response = client.post("/tickets", json=TICKET, headers=HEADERS)

        assert response.status_code == 500
        assert response.json()["error"] == "SLA policy not found"

    def test_list_pagination(self, client, store):
        add_team(store)
        now = datetime.now(timezone.utc)
        for i in range(3):
            store.tickets[f"t{i}"] = make_ticket(ticket_id=f"t{i}", created_at=now - timedelta(minutes=i))

        response = client.get("/tickets", params={"limit": 2}, headers=HEADERS)
        body = response.json()
        assert [t["id"] for t in body["tickets"]] == ["t0", "t1"]
        assert body["pagination"] == {"limit": 2, "skip": 0, "total": 3, "pages": 2}

        capped = client.get("/tickets", params={"limit": 500, "skip": 1}, headers=HEADERS).json()
        assert capped["pagination"]["limit"] == 100
        assert len(capped["tickets"]) == 2

    def test_update_records_milestones(self, client, store):
        add_team(store)
        created = datetime.now(timezone.utc) - timedelta(hours=3)
        store.tickets["t1"] = make_ticket(ticket_id="t1", created_at=created)

        response = client.patch(
            "/tickets/t1",
            json={
                "status": "resolved",
                "first_response_at": (created + timedelta(minutes=90)).isoformat(),
                "resolved_at": (created + timedelta(minutes=100)).isoformat(),
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["response_time"] == 90
        assert body["response_breached"] is True
        assert body["resolution_time"] == 100
        assert body["resolution_breached"] is False

    def test_other_teams_ticket(self, client, store):
        add_team(store)
        add_team(store, "team-2")
        store.tickets["t1"] = make_ticket(ticket_id="t1")

        assert client.get("/tickets/t1", headers={"X-Team-ID": "team-2"}).status_code == 403
        assert client.get("/tickets/nope", headers=HEADERS).status_code == 404

    def test_at_risk(self, client, store):
        add_team(store)
        now = datetime.now(timezone.utc)
        store.tickets["hot"] = make_ticket(
            ticket_id="hot",
            created_at=now - timedelta(minutes=108),
            first_response_at=now - timedelta(minutes=100),
        )
        store.tickets["calm"] = make_ticket(ticket_id="calm", created_at=now)

        body = client.get("/tickets/at-risk", headers=HEADERS).json()

        assert body["count"] == 1
        assert body["tickets"][0]["id"] == "hot"
        assert body["tickets"][0]["percentage_elapsed"] >= 90


class TestMetrics:
    def test_summary_shape(self, client, store):
        add_team(store)

        body = client.get("/metrics", headers=HEADERS).json()

        assert body["compliance_percentage"] == 100.0
        assert body["mttr_by_priority"] == {"P1": 0.0, "P2": 0.0, "P3": 0.0}

    @pytest.mark.parametrize("days, expected", [(None, 7), ("abc", 7), ("0", 7), ("3", 3), ("50", 30)])
    def test_daily_trend_days(self, client, store, days, expected):
        add_team(store)
        params = {"days": days} if days is not None else {}

        body = client.get("/metrics/daily-trend", params=params, headers=HEADERS).json()

        assert body["days"] == expected
        assert len(body["trends"]) == expected


class TestPolicies:
    def test_update(self, client, store):
        add_team(store)

        response = client.patch(
            "/policies/policy-team-1",
            json={"p1_response_time": 0.5, "business_hours": {"start": 8, "end": 18}},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["p1_response_time"] == 0.5
        assert (body["business_hours_start"], body["business_hours_end"]) == (8, 18)

    def test_invalid_fields_reported_together(self, client, store):
        add_team(store)

        response = client.patch(
            "/policies/policy-team-1",
            json={"p1_response_time": 0.1, "business_hours": {"start": 30}},
            headers=HEADERS,
        )

        assert response.status_code == 400
        errors = response.json()["details"]["errors"]
        assert {e["field"] for e in errors} == {"p1_response_time", "business_hours_start"}
        assert store.policies["policy-team-1"].p1_response_time == 1

    def test_other_teams_policy(self, client, store):
        add_team(store)
        add_team(store, "team-2")

        response = client.patch(
            "/policies/policy-team-1", json={"p1_response_time": 2}, headers={"X-Team-ID": "team-2"}
        )
        assert response.status_code == 403

    def test_list(self, client, store):
        add_team(store)
        body = client.get("/policies", headers=HEADERS).json()
        assert [p["id"] for p in body] == ["policy-team-1"]


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["checks"]["alert_scheduler"] == "idle"


def test_parse_trend_days():
    assert parse_trend_days(None) == 7
    assert parse_trend_days("-3") == 7
    assert parse_trend_days("30") == 30
    assert parse_trend_days("31") == 30
