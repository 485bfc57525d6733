"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

Write-once milestones and the ticket allowance are guarded with
conditional UPDATE statements, so concurrent writers are settled by the
database rather than by read-modify-write in Python.
"""

from contextlib import asynccontextmanager
from datetime import datetime, date, timezone
from typing import AsyncGenerator, List, Optional
from uuid import uuid4

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from sla_tracker.sla.application.services import (
    ITeamRepository,
    ISLAPolicyRepository,
    ITicketRepository,
    ISLAAlertRepository,
    UnitOfWork,
)
from sla_tracker.sla.domain import Team, TeamMember, SLAPolicy, Ticket, SLAAlert
from sla_tracker.sla.infrastructure.models import (
    TeamModel, SLAPolicyModel, TicketModel, AlertModel
)
from sla_tracker.infrastructure.database import get_session_context
from sla_tracker.config import CLOSED_STATUSES
from sla_tracker.core import RepositoryException


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Model <-> Entity mapping ==========

def _team_to_entity(model: TeamModel) -> Team:
    return Team(
        id=str(model.id),
        name=model.name,
        email=model.email,
        members=[TeamMember(**m) for m in (model.members or [])],
        sla_policy_id=str(model.sla_policy_id) if model.sla_policy_id else None,
        subscription_plan=model.subscription_plan,
        tickets_used=model.tickets_used,
        ticket_limit=model.ticket_limit,
        created_at=model.created_at,
    )


def _policy_to_entity(model: SLAPolicyModel) -> SLAPolicy:
    return SLAPolicy(
        id=str(model.id),
        team_id=str(model.team_id),
        name=model.name,
        p1_response_time=model.p1_response_time,
        p2_response_time=model.p2_response_time,
        p3_response_time=model.p3_response_time,
        p1_resolution_time=model.p1_resolution_time,
        p2_resolution_time=model.p2_resolution_time,
        p3_resolution_time=model.p3_resolution_time,
        business_hours_only=model.business_hours_only,
        business_hours_start=model.business_hours_start,
        business_hours_end=model.business_hours_end,
        holidays=[date.fromisoformat(d) for d in (model.holidays or [])],
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        team_id=str(model.team_id),
        ticket_number=model.ticket_number,
        title=model.title,
        description=model.description,
        priority=model.priority,
        status=model.status,
        sla_policy_id=str(model.sla_policy_id),
        sla_response_target=model.sla_response_target,
        sla_resolution_target=model.sla_resolution_target,
        created_at=model.created_at,
        updated_at=model.updated_at,
        first_response_at=model.first_response_at,
        resolved_at=model.resolved_at,
        assigned_to=model.assigned_to,
        response_breached=model.response_breached,
        resolution_breached=model.resolution_breached,
        response_time=model.response_time,
        resolution_time=model.resolution_time,
    )


def _alert_to_entity(model: AlertModel) -> SLAAlert:
    return SLAAlert(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        ticket_number=model.ticket_number,
        team_id=str(model.team_id),
        sla_type=model.sla_type,
        triggered_at=model.triggered_at,
        deadline=model.deadline,
        remaining_seconds=model.remaining_seconds,
        percentage_elapsed=model.percentage_elapsed,
        alert_type=model.alert_type,
        notification_sent=model.notification_sent,
        notification_sent_at=model.notification_sent_at,
    )


# ========== Repositories ==========

class SQLAlchemyTeamRepository(ITeamRepository):
    """SQLAlchemy implementation of team repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, team_id: str) -> Optional[Team]:
        model = await self._session.get(TeamModel, team_id)
        return _team_to_entity(model) if model else None

    async def get_by_email(self, email: str) -> Optional[Team]:
        stmt = select(TeamModel).where(TeamModel.email == email.lower())
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _team_to_entity(model) if model else None

    async def list_all(self) -> List[Team]:
        result = await self._session.execute(select(TeamModel).order_by(TeamModel.created_at))
        return [_team_to_entity(m) for m in result.scalars().all()]

    async def create_with_policy(self, team: Team, policy: SLAPolicy) -> Team:
        """
        Insert the team, then its policy, then link them.

        Runs on the caller's session, so all three statements commit or
        roll back together.
        """
        team_model = TeamModel(
            id=team.id,
            name=team.name,
            email=team.email,
            members=[
                {"name": m.name, "email": m.email, "role": m.role}
                for m in team.members
            ],
            sla_policy_id=None,
            subscription_plan=team.subscription_plan,
            tickets_used=team.tickets_used,
            ticket_limit=team.ticket_limit,
            created_at=team.created_at or _utcnow(),
        )
        self._session.add(team_model)
        await self._session.flush()

        self._session.add(_policy_to_model(policy))
        await self._session.flush()

        team_model.sla_policy_id = policy.id
        await self._session.flush()

        return _team_to_entity(team_model)

    async def increment_tickets_used(self, team_id: str) -> bool:
        stmt = (
            update(TeamModel)
            .where(
                TeamModel.id == team_id,
                TeamModel.tickets_used < TeamModel.ticket_limit
            )
            .values(tickets_used=TeamModel.tickets_used + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


def _policy_to_model(policy: SLAPolicy) -> SLAPolicyModel:
    now = _utcnow()
    return SLAPolicyModel(
        id=policy.id,
        team_id=policy.team_id,
        name=policy.name,
        p1_response_time=policy.p1_response_time,
        p2_response_time=policy.p2_response_time,
        p3_response_time=policy.p3_response_time,
        p1_resolution_time=policy.p1_resolution_time,
        p2_resolution_time=policy.p2_resolution_time,
        p3_resolution_time=policy.p3_resolution_time,
        business_hours_only=policy.business_hours_only,
        business_hours_start=policy.business_hours_start,
        business_hours_end=policy.business_hours_end,
        holidays=[d.isoformat() for d in policy.holidays],
        created_at=policy.created_at or now,
        updated_at=policy.updated_at or now,
    )


class SQLAlchemyPolicyRepository(ISLAPolicyRepository):
    """SQLAlchemy implementation of SLA policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        model = await self._session.get(SLAPolicyModel, policy_id)
        return _policy_to_entity(model) if model else None

    async def list_for_team(self, team_id: str) -> List[SLAPolicy]:
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.team_id == team_id)
            .order_by(SLAPolicyModel.created_at)
        )
        result = await self._session.execute(stmt)
        return [_policy_to_entity(m) for m in result.scalars().all()]

    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        model = await self._session.get(SLAPolicyModel, policy.id)
        if model is None:
            raise RepositoryException(f"Policy {policy.id} not found")

        model.name = policy.name
        model.p1_response_time = policy.p1_response_time
        model.p2_response_time = policy.p2_response_time
        model.p3_response_time = policy.p3_response_time
        model.p1_resolution_time = policy.p1_resolution_time
        model.p2_resolution_time = policy.p2_resolution_time
        model.p3_resolution_time = policy.p3_resolution_time
        model.business_hours_only = policy.business_hours_only
        model.business_hours_start = policy.business_hours_start
        model.business_hours_end = policy.business_hours_end
        model.holidays = [d.isoformat() for d in policy.holidays]
        model.updated_at = policy.updated_at or _utcnow()

        await self._session.flush()
        return _policy_to_entity(model)


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        stmt = select(TicketModel).where(TicketModel.id == ticket_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _ticket_to_entity(model) if model else None

    async def create(self, ticket: Ticket) -> Ticket:
        model = TicketModel(
            id=ticket.id or str(uuid4()),
            team_id=ticket.team_id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            description=ticket.description,
            priority=ticket.priority,
            status=ticket.status,
            assigned_to=ticket.assigned_to,
            sla_policy_id=ticket.sla_policy_id,
            sla_response_target=ticket.sla_response_target,
            sla_resolution_target=ticket.sla_resolution_target,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at or ticket.created_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            response_time=ticket.response_time,
            resolution_time=ticket.resolution_time,
            response_breached=ticket.response_breached,
            resolution_breached=ticket.resolution_breached,
        )

        self._session.add(model)
        await self._session.flush()

        return _ticket_to_entity(model)

    async def update_fields(
        self,
        ticket_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None
    ) -> None:
        values = {"updated_at": _utcnow()}
        if status is not None:
            values["status"] = status
        if assigned_to is not None:
            values["assigned_to"] = assigned_to

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise RepositoryException(f"Ticket {ticket_id} not found")

    async def record_first_response(
        self,
        ticket_id: str,
        responded_at: datetime,
        response_time: int,
        breached: bool
    ) -> bool:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.first_response_at.is_(None)
            )
            .values(
                first_response_at=responded_at,
                response_time=response_time,
                response_breached=breached,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def record_resolution(
        self,
        ticket_id: str,
        resolved_at: datetime,
        resolution_time: int,
        breached: bool
    ) -> bool:
        stmt = (
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.resolved_at.is_(None)
            )
            .values(
                resolved_at=resolved_at,
                resolution_time=resolution_time,
                resolution_breached=breached,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _conditions(filters: dict) -> list:
        conditions = []
        if "team_id" in filters:
            conditions.append(TicketModel.team_id == filters["team_id"])

        if "status" in filters:
            status_list = filters["status"]
            if isinstance(status_list, list):
                conditions.append(TicketModel.status.in_(status_list))
            else:
                conditions.append(TicketModel.status == status_list)

        if "priority" in filters:
            conditions.append(TicketModel.priority == filters["priority"])
        return conditions

    async def list(
        self,
        filters: dict,
        limit: int = 50,
        offset: int = 0
    ) -> List[Ticket]:
        stmt = select(TicketModel)

        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(TicketModel.created_at.desc()).limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return [_ticket_to_entity(m) for m in result.scalars().all()]

    async def count(self, filters: dict) -> int:
        stmt = select(func.count()).select_from(TicketModel)

        conditions = self._conditions(filters)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def list_created_between(
        self,
        team_id: str,
        start: datetime,
        end: datetime
    ) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(
                TicketModel.team_id == team_id,
                TicketModel.created_at >= start,
                TicketModel.created_at < end,
            )
            .order_by(TicketModel.created_at)
        )
        result = await self._session.execute(stmt)
        return [_ticket_to_entity(m) for m in result.scalars().all()]

    async def list_open(self, team_id: str, unbreached_only: bool = False) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.team_id == team_id,
            TicketModel.status.not_in(CLOSED_STATUSES),
        )
        if unbreached_only:
            stmt = stmt.where(
                TicketModel.response_breached.is_(False),
                TicketModel.resolution_breached.is_(False),
            )

        result = await self._session.execute(stmt.order_by(TicketModel.created_at))
        return [_ticket_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyAlertRepository(ISLAAlertRepository):
    """
    SQLAlchemy implementation of SLA alert repository.

    Handles persistence of SLAAlert entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_for_ticket(self, ticket_id: str, sla_type: str) -> Optional[SLAAlert]:
        stmt = select(AlertModel).where(
            AlertModel.ticket_id == ticket_id,
            AlertModel.sla_type == sla_type,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _alert_to_entity(model) if model else None

    async def create(self, alert: SLAAlert) -> SLAAlert:
        model = AlertModel(
            id=alert.id or str(uuid4()),
            ticket_id=alert.ticket_id,
            ticket_number=alert.ticket_number,
            team_id=alert.team_id,
            sla_type=alert.sla_type,
            alert_type=alert.alert_type,
            triggered_at=alert.triggered_at,
            deadline=alert.deadline,
            remaining_seconds=alert.remaining_seconds,
            percentage_elapsed=alert.percentage_elapsed,
            notification_sent=alert.notification_sent,
            notification_sent_at=alert.notification_sent_at,
        )

        self._session.add(model)
        await self._session.flush()

        # Update alert with generated ID
        alert.id = str(model.id)
        return alert

    async def mark_sent(self, alert_id: str, sent_at: datetime) -> None:
        stmt = (
            update(AlertModel)
            .where(AlertModel.id == alert_id)
            .values(notification_sent=True, notification_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise RepositoryException(f"Alert {alert_id} not found")


def build_unit_of_work(session: AsyncSession) -> UnitOfWork:
    """Repositories bound to one session."""
    return UnitOfWork(
        teams=SQLAlchemyTeamRepository(session),
        policies=SQLAlchemyPolicyRepository(session),
        tickets=SQLAlchemyTicketRepository(session),
        alerts=SQLAlchemyAlertRepository(session),
    )


@asynccontextmanager
async def sqlalchemy_unit_of_work() -> AsyncGenerator[UnitOfWork, None]:
    """One transaction; commits on clean exit. Used by background jobs."""
    async with get_session_context() as session:
        yield build_unit_of_work(session)
