"""
Shared fixtures: in-memory repositories implementing the application
interfaces, a unit-of-work factory over them and a recording notifier.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from sla_tracker.config import CLOSED_STATUSES, MemberRole
from sla_tracker.core import NotificationDeliveryFailed
from sla_tracker.sla.application.services import (
    ITeamRepository, ISLAPolicyRepository, ITicketRepository,
    ISLAAlertRepository, ISLAConfigProvider, INotifier, UnitOfWork,
)
from sla_tracker.sla.domain import (
    Team, TeamMember, SLAPolicy, Ticket, SLAAlert, SLAConfig,
)

# Mid-month, mid-morning UTC so local-time day and month windows hold
# for every real-world UTC offset
NOW = datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self):
        self.teams: Dict[str, Team] = {}
        self.policies: Dict[str, SLAPolicy] = {}
        self.tickets: Dict[str, Ticket] = {}
        self.alerts: Dict[str, SLAAlert] = {}


class FakeTeamRepository(ITeamRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, team_id):
        team = self.store.teams.get(team_id)
        return copy.deepcopy(team)

    async def get_by_email(self, email):
        for team in self.store.teams.values():
            if team.email == email:
                return copy.deepcopy(team)
        return None

    async def list_all(self):
        return [copy.deepcopy(t) for t in self.store.teams.values()]

    async def create_with_policy(self, team, policy):
        self.store.teams[team.id] = copy.deepcopy(team)
        self.store.policies[policy.id] = copy.deepcopy(policy)
        return team

    async def increment_tickets_used(self, team_id):
        team = self.store.teams[team_id]
        if team.tickets_used >= team.ticket_limit:
            return False
        team.tickets_used += 1
        return True


class FakePolicyRepository(ISLAPolicyRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, policy_id):
        return copy.deepcopy(self.store.policies.get(policy_id))

    async def list_for_team(self, team_id):
        return [copy.deepcopy(p) for p in self.store.policies.values() if p.team_id == team_id]

    async def update(self, policy):
        self.store.policies[policy.id] = copy.deepcopy(policy)
        return policy


class FakeTicketRepository(ITicketRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, ticket_id):
        return copy.deepcopy(self.store.tickets.get(ticket_id))

    async def create(self, ticket):
        self.store.tickets[ticket.id] = copy.deepcopy(ticket)
        return ticket

    async def update_fields(self, ticket_id, status=None, assigned_to=None):
        ticket = self.store.tickets[ticket_id]
        if status is not None:
            ticket.status = status
        if assigned_to is not None:
            ticket.assigned_to = assigned_to

    async def record_first_response(self, ticket_id, responded_at, response_time, breached):
        ticket = self.store.tickets[ticket_id]
        if ticket.first_response_at is not None:
            return False
        ticket.first_response_at = responded_at
        ticket.response_time = response_time
        ticket.response_breached = breached
        return True

    async def record_resolution(self, ticket_id, resolved_at, resolution_time, breached):
        ticket = self.store.tickets[ticket_id]
        if ticket.resolved_at is not None:
            return False
        ticket.resolved_at = resolved_at
        ticket.resolution_time = resolution_time
        ticket.resolution_breached = breached
        return True

    def _matching(self, filters):
        result = []
        for t in self.store.tickets.values():
            if "team_id" in filters and t.team_id != filters["team_id"]:
                continue
            if "status" in filters and t.status != filters["status"]:
                continue
            if "priority" in filters and t.priority != filters["priority"]:
                continue
            result.append(t)
        return sorted(result, key=lambda t: t.created_at, reverse=True)

    async def list(self, filters, limit=50, offset=0):
        return [copy.deepcopy(t) for t in self._matching(filters)[offset:offset + limit]]

    async def count(self, filters):
        return len(self._matching(filters))

    async def list_created_between(self, team_id, start, end):
        return [
            copy.deepcopy(t) for t in self.store.tickets.values()
            if t.team_id == team_id and start <= t.created_at < end
        ]

    async def list_open(self, team_id, unbreached_only=False):
        return [
            copy.deepcopy(t) for t in self.store.tickets.values()
            if t.team_id == team_id
            and t.status not in CLOSED_STATUSES
            and not (unbreached_only and (t.response_breached or t.resolution_breached))
        ]


class FakeAlertRepository(ISLAAlertRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_for_ticket(self, ticket_id, sla_type):
        for alert in self.store.alerts.values():
            if alert.ticket_id == ticket_id and alert.sla_type == sla_type:
                return copy.deepcopy(alert)
        return None

    async def create(self, alert):
        alert.id = f"alert-{len(self.store.alerts) + 1}"
        self.store.alerts[alert.id] = copy.deepcopy(alert)
        return alert

    async def mark_sent(self, alert_id, sent_at):
        self.store.alerts[alert_id].mark_notification_sent(sent_at)


class StaticConfigProvider(ISLAConfigProvider):
    def __init__(self, config: Optional[SLAConfig] = None):
        self.config = config or SLAConfig()

    def get_config(self):
        return self.config


class RecordingNotifier(INotifier):
    """Collects notifications; can be told to fail or to skip delivery."""

    def __init__(self):
        self.alerts: List = []
        self.reports: List = []
        self.fail = False
        self.configured = True

    async def send_at_risk_alert(self, notification):
        if self.fail:
            raise NotificationDeliveryFailed("webhook down")
        if not self.configured:
            return False
        self.alerts.append(notification)
        return True

    async def send_daily_report(self, report):
        if self.fail:
            raise NotificationDeliveryFailed("webhook down")
        if not self.configured:
            return False
        self.reports.append(report)
        return True


def make_uow(store: InMemoryStore) -> UnitOfWork:
    return UnitOfWork(
        teams=FakeTeamRepository(store),
        policies=FakePolicyRepository(store),
        tickets=FakeTicketRepository(store),
        alerts=FakeAlertRepository(store),
    )


def add_team(
    store: InMemoryStore,
    team_id: str = "team-1",
    with_policy: bool = True,
    tickets_used: int = 0,
    ticket_limit: int = 100,
    **policy_fields
) -> Team:
    policy_id = f"policy-{team_id}"
    team = Team(
        id=team_id,
        name=f"Team {team_id}",
        email=f"{team_id}@example.com",
        members=[TeamMember(name="Ada", email=f"ada@{team_id}.example.com", role=MemberRole.ADMIN)],
        sla_policy_id=policy_id if with_policy else None,
        tickets_used=tickets_used,
        ticket_limit=ticket_limit,
        created_at=NOW - timedelta(days=30),
    )
    store.teams[team.id] = team
    if with_policy:
        store.policies[policy_id] = SLAPolicy(id=policy_id, team_id=team_id, **policy_fields)
    return team


def make_ticket(
    team_id: str = "team-1",
    ticket_id: str = "ticket-1",
    priority: str = "P1",
    status: str = "open",
    created_at: datetime = NOW,
    response_target: float = 1,
    resolution_target: float = 2,
    **fields
) -> Ticket:
    return Ticket(
        id=ticket_id,
        team_id=team_id,
        ticket_number=f"TKT-{ticket_id}",
        title="Checkout is broken",
        description="Payment page returns an error",
        priority=priority,
        status=status,
        sla_policy_id=f"policy-{team_id}",
        sla_response_target=response_target,
        sla_resolution_target=resolution_target,
        created_at=created_at,
        **fields
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow(store):
    return make_uow(store)


@pytest.fixture
def uow_factory(store):
    @asynccontextmanager
    async def factory():
        yield make_uow(store)
    return factory


@pytest.fixture
def notifier():
    return RecordingNotifier()
