"""
SQLAlchemy repositories against a real async SQLite database.

Covers the statements the in-memory fakes only imitate: the conditional
UPDATEs behind the quota and the write-once milestones, and the
team/policy/link insert order.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from sla_tracker.infrastructure.database import init_database, close_database, create_tables
from sla_tracker.sla.domain import Team, TeamMember, SLAPolicy, Ticket, SLAAlert
from sla_tracker.sla.infrastructure import sqlalchemy_unit_of_work

from conftest import NOW


@pytest.fixture
async def database(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    yield
    await close_database()


async def _register(ticket_limit=100):
    team_id, policy_id = str(uuid4()), str(uuid4())
    async with sqlalchemy_unit_of_work() as uow:
        team = await uow.teams.create_with_policy(
            Team(
                id=team_id,
                name="Payments",
                email=f"{team_id}@example.com",
                members=[TeamMember(name="Ada", email="ada@example.com", role="admin")],
                ticket_limit=ticket_limit,
                created_at=NOW,
            ),
            SLAPolicy(id=policy_id, team_id=team_id, p1_response_time=0.5),
        )
    return team


async def _open_ticket(team):
    ticket = Ticket(
        id=str(uuid4()),
        team_id=team.id,
        ticket_number=f"TKT-{uuid4().hex[:8]}",
        title="Checkout is broken",
        description="Payment page returns an error",
        priority="P1",
        status="open",
        sla_policy_id=team.sla_policy_id,
        sla_response_target=1,
        sla_resolution_target=2,
        created_at=NOW,
    )
    async with sqlalchemy_unit_of_work() as uow:
        return await uow.tickets.create(ticket)


class TestTeamRepository:
    async def test_create_with_policy_links_policy(self, database):
        team = await _register()

        async with sqlalchemy_unit_of_work() as uow:
            stored = await uow.teams.get_by_id(team.id)
            policy = await uow.policies.get_by_id(team.sla_policy_id)

        assert stored.sla_policy_id == team.sla_policy_id
        assert stored.members[0].email == "ada@example.com"
        assert policy.team_id == team.id
        assert policy.p1_response_time == 0.5

    async def test_increment_stops_at_limit(self, database):
        team = await _register(ticket_limit=2)

        outcomes = []
        for _ in range(3):
            async with sqlalchemy_unit_of_work() as uow:
                outcomes.append(await uow.teams.increment_tickets_used(team.id))

        assert outcomes == [True, True, False]
        async with sqlalchemy_unit_of_work() as uow:
            assert (await uow.teams.get_by_id(team.id)).tickets_used == 2

    async def test_rollback_discards_team_and_policy(self, database):
        team_id, policy_id = str(uuid4()), str(uuid4())

        with pytest.raises(RuntimeError):
            async with sqlalchemy_unit_of_work() as uow:
                await uow.teams.create_with_policy(
                    Team(id=team_id, name="Gone", email="gone@example.com", created_at=NOW),
                    SLAPolicy(id=policy_id, team_id=team_id),
                )
                raise RuntimeError("abort")

        async with sqlalchemy_unit_of_work() as uow:
            assert await uow.teams.get_by_id(team_id) is None
            assert await uow.policies.get_by_id(policy_id) is None


class TestTicketRepository:
    async def test_first_response_is_write_once(self, database):
        team = await _register()
        ticket = await _open_ticket(team)

        async with sqlalchemy_unit_of_work() as uow:
            first = await uow.tickets.record_first_response(
                ticket.id, NOW + timedelta(minutes=30), 30, False
            )
        async with sqlalchemy_unit_of_work() as uow:
            second = await uow.tickets.record_first_response(
                ticket.id, NOW + timedelta(minutes=90), 90, True
            )
            stored = await uow.tickets.get_by_id(ticket.id)

        assert (first, second) == (True, False)
        assert stored.response_time == 30
        assert stored.response_breached is False
        assert stored.first_response_at.replace(tzinfo=None) == (
            NOW + timedelta(minutes=30)
        ).replace(tzinfo=None)

    async def test_resolution_is_write_once(self, database):
        team = await _register()
        ticket = await _open_ticket(team)

        async with sqlalchemy_unit_of_work() as uow:
            first = await uow.tickets.record_resolution(
                ticket.id, NOW + timedelta(minutes=150), 150, True
            )
            second = await uow.tickets.record_resolution(
                ticket.id, NOW + timedelta(minutes=60), 60, False
            )
            stored = await uow.tickets.get_by_id(ticket.id)

        assert (first, second) == (True, False)
        assert stored.resolution_time == 150
        assert stored.resolution_breached is True

    async def test_list_open_skips_breached(self, database):
        team = await _register()
        calm = await _open_ticket(team)
        breached = await _open_ticket(team)
        async with sqlalchemy_unit_of_work() as uow:
            await uow.tickets.record_first_response(
                breached.id, NOW + timedelta(hours=2), 120, True
            )

        async with sqlalchemy_unit_of_work() as uow:
            unbreached = await uow.tickets.list_open(team.id, unbreached_only=True)
            everything = await uow.tickets.list_open(team.id)

        assert [t.id for t in unbreached] == [calm.id]
        assert len(everything) == 2


class TestAlertRepository:
    async def test_mark_sent(self, database):
        team = await _register()
        ticket = await _open_ticket(team)

        async with sqlalchemy_unit_of_work() as uow:
            alert = await uow.alerts.create(SLAAlert(
                id=None,
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
                team_id=team.id,
                sla_type="resolution",
                triggered_at=NOW,
                deadline=NOW + timedelta(minutes=20),
                remaining_seconds=1200,
                percentage_elapsed=83,
            ))
        async with sqlalchemy_unit_of_work() as uow:
            pending = await uow.alerts.get_for_ticket(ticket.id, "resolution")
            await uow.alerts.mark_sent(alert.id, NOW)
        async with sqlalchemy_unit_of_work() as uow:
            sent = await uow.alerts.get_for_ticket(ticket.id, "resolution")
            other_clock = await uow.alerts.get_for_ticket(ticket.id, "response")

        assert pending.is_notification_pending
        assert not sent.is_notification_pending
        assert other_clock is None
