from datetime import date, timedelta

import pytest

from sla_tracker.core import ValidationException, ForbiddenException, ResourceNotFoundException
from sla_tracker.sla.application import PolicyService, MetricsService

from conftest import NOW, add_team, make_ticket


class TestPolicyService:
    async def test_partial_update(self, store, uow):
        add_team(store)
        service = PolicyService(uow.policies)

        policy = await service.update_policy(
            "team-1", "policy-team-1",
            {"p1_response_time": 0.25, "business_hours_start": 8, "holidays": [date(2024, 12, 25)]}
        )

        assert policy.p1_response_time == 0.25
        assert policy.business_hours_start == 8
        assert policy.p2_response_time == 4
        assert store.policies["policy-team-1"].holidays == [date(2024, 12, 25)]
        assert policy.updated_at is not None

    async def test_all_errors_reported_and_nothing_applied(self, store, uow):
        add_team(store)
        service = PolicyService(uow.policies)

        with pytest.raises(ValidationException) as exc:
            await service.update_policy(
                "team-1", "policy-team-1",
                {
                    "p1_response_time": 0.1,
                    "p2_resolution_time": -1,
                    "business_hours_end": 24,
                    "p3_response_time": 12,
                }
            )

        errors = {e["field"]: e["message"] for e in exc.value.details["errors"]}
        assert errors == {
            "p1_response_time": "Response time must be at least 15 minutes",
            "p2_resolution_time": "Resolution time must be at least 15 minutes",
            "business_hours_end": "Business hours end must be between 0 and 23",
        }
        assert store.policies["policy-team-1"].p3_response_time == 24

    def test_validate_changes(self):
        assert PolicyService.validate_changes({"p1_response_time": 1, "name": "Gold"}) == []
        errors = PolicyService.validate_changes({
            "p1_response_time": True,
            "business_hours_start": -1,
            "business_hours_only": "yes",
            "color": "red",
        })
        assert {e["field"] for e in errors} == {
            "p1_response_time", "business_hours_start", "business_hours_only", "color"
        }

    async def test_other_team_forbidden(self, store, uow):
        add_team(store)
        add_team(store, "team-2")

        with pytest.raises(ForbiddenException):
            await PolicyService(uow.policies).update_policy(
                "team-2", "policy-team-1", {"p1_response_time": 2}
            )

    async def test_missing_policy(self, store, uow):
        with pytest.raises(ResourceNotFoundException):
            await PolicyService(uow.policies).update_policy("team-1", "nope", {})

    async def test_list_is_scoped_to_team(self, store, uow):
        add_team(store)
        add_team(store, "team-2")

        policies = await PolicyService(uow.policies).list_policies("team-1")

        assert [p.id for p in policies] == ["policy-team-1"]


@pytest.fixture
def metrics(uow):
    return MetricsService(uow.tickets, uow.teams, uow.policies)


class TestMetricsService:
    async def test_summary(self, store, metrics):
        add_team(store)
        store.tickets["a"] = make_ticket(
            ticket_id="a", status="resolved", created_at=NOW - timedelta(hours=3),
            resolved_at=NOW - timedelta(hours=2), resolution_time=60,
        )
        store.tickets["b"] = make_ticket(
            ticket_id="b", status="closed", created_at=NOW - timedelta(hours=4),
            resolved_at=NOW - timedelta(hours=1), resolution_time=180, resolution_breached=True,
        )
        # 1h42m of a 2h target, first response done: at risk
        store.tickets["c"] = make_ticket(
            ticket_id="c", created_at=NOW - timedelta(minutes=102),
            first_response_at=NOW - timedelta(minutes=100), response_time=2,
        )
        store.tickets["other"] = make_ticket(team_id="team-2", ticket_id="other")

        summary = await metrics.get_summary("team-1", NOW)

        assert summary.total_tickets == 3
        assert summary.resolved_tickets == 2
        assert summary.open_tickets == 1
        assert summary.breached_tickets == 1
        assert summary.compliance_percentage == 50.0
        assert summary.mttr == 120.0
        assert summary.at_risk_count == 1

    async def test_empty_month(self, store, metrics):
        add_team(store)
        store.tickets["old"] = make_ticket(ticket_id="old", created_at=NOW - timedelta(days=60))

        summary = await metrics.get_summary("team-1", NOW)

        assert summary.total_tickets == 0
        assert summary.compliance_percentage == 100.0
        assert summary.mttr == 0.0

    async def test_daily_trend(self, store, metrics):
        add_team(store)
        store.tickets["today"] = make_ticket(
            ticket_id="today", status="resolved", created_at=NOW - timedelta(minutes=5),
            resolved_at=NOW, resolution_time=5,
        )
        store.tickets["open"] = make_ticket(ticket_id="open", created_at=NOW - timedelta(minutes=1))

        trend = await metrics.get_daily_trend("team-1", 7, NOW)

        assert len(trend) == 7
        assert trend[-1].date == NOW.astimezone().date().isoformat()
        assert trend[-1].open_tickets == 1
        assert trend[-1].mttr == 5.0
        assert all(t.compliance == 100.0 and t.open_tickets == 0 for t in trend[:-1])

    async def test_at_risk_sorted_by_progress(self, store, metrics):
        add_team(store)
        answered = NOW - timedelta(minutes=90)
        store.tickets["a"] = make_ticket(
            ticket_id="a", created_at=NOW - timedelta(minutes=100), first_response_at=answered
        )
        store.tickets["b"] = make_ticket(
            ticket_id="b", created_at=NOW - timedelta(minutes=115), first_response_at=answered
        )
        store.tickets["calm"] = make_ticket(
            ticket_id="calm", created_at=NOW - timedelta(minutes=10)
        )
        store.tickets["done"] = make_ticket(
            ticket_id="done", status="resolved", created_at=NOW - timedelta(hours=5)
        )

        at_risk = await metrics.get_at_risk_tickets("team-1", NOW)

        assert [(item.ticket.id, item.percentage_elapsed) for item in at_risk] == [("b", 96), ("a", 83)]

    async def test_at_risk_without_policy(self, store, metrics):
        add_team(store, with_policy=False)
        store.tickets["a"] = make_ticket(ticket_id="a", created_at=NOW - timedelta(hours=5))

        assert await metrics.get_at_risk_tickets("team-1", NOW) == []
