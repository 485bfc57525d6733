"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone, date
from typing import List, Optional, Any, AsyncContextManager, Callable
from uuid import uuid4

from sla_tracker.sla.domain import (
    Team, TeamMember, SLAPolicy, Ticket, SLAAlert,
    SLACalculator, MetricsCalculator, MetricsSummary, DailyTrend,
    TimeWindow, SLAConfig, AtRiskTicket, AtRiskNotification,
    DailyReportNotification,
)
from sla_tracker.config import (
    TicketStatus, MemberRole, SubscriptionPlan,
    VALID_PRIORITIES, VALID_STATUSES, MIN_TARGET_HOURS,
)
from sla_tracker.core import (
    ValidationException,
    QuotaExceededException,
    ResourceNotFoundException,
    ForbiddenException,
    ConflictException,
    PolicyNotFoundException,
)
from sla_tracker.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITeamRepository(ABC):
    """Interface for team data access."""

    @abstractmethod
    async def get_by_id(self, team_id: str) -> Optional[Team]:
        """Get team by ID."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Team]:
        """Get team by contact email."""

    @abstractmethod
    async def list_all(self) -> List[Team]:
        """List every team."""

    @abstractmethod
    async def create_with_policy(self, team: Team, policy: SLAPolicy) -> Team:
        """Create a team and its default policy in one transaction."""

    @abstractmethod
    async def increment_tickets_used(self, team_id: str) -> bool:
        """
        Atomically consume one ticket from the team allowance.

        Returns False when the allowance is already used up.
        """


class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get policy by ID."""

    @abstractmethod
    async def list_for_team(self, team_id: str) -> List[SLAPolicy]:
        """List all policies of a team."""

    @abstractmethod
    async def update(self, policy: SLAPolicy) -> SLAPolicy:
        """Persist policy changes."""


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""

    @abstractmethod
    async def update_fields(
        self,
        ticket_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None
    ) -> None:
        """Update status and/or assignee."""

    @abstractmethod
    async def record_first_response(
        self,
        ticket_id: str,
        responded_at: datetime,
        response_time: int,
        breached: bool
    ) -> bool:
        """
        Set first response only if none is stored yet.

        Returns False if another writer recorded it first.
        """

    @abstractmethod
    async def record_resolution(
        self,
        ticket_id: str,
        resolved_at: datetime,
        resolution_time: int,
        breached: bool
    ) -> bool:
        """Set resolution only if none is stored yet."""

    @abstractmethod
    async def list(
        self,
        filters: dict,
        limit: int = 50,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters, newest first."""

    @abstractmethod
    async def count(self, filters: dict) -> int:
        """Count tickets matching filters."""

    @abstractmethod
    async def list_created_between(
        self,
        team_id: str,
        start: datetime,
        end: datetime
    ) -> List[Ticket]:
        """Tickets of a team created in [start, end)."""

    @abstractmethod
    async def list_open(self, team_id: str, unbreached_only: bool = False) -> List[Ticket]:
        """Open tickets of a team, optionally only those with no breach flag."""


class ISLAAlertRepository(ABC):
    """Interface for SLA alert data access."""

    @abstractmethod
    async def get_for_ticket(self, ticket_id: str, sla_type: str) -> Optional[SLAAlert]:
        """Get the alert for a ticket clock, if one was raised."""

    @abstractmethod
    async def create(self, alert: SLAAlert) -> SLAAlert:
        """Create new alert."""

    @abstractmethod
    async def mark_sent(self, alert_id: str, sent_at: datetime) -> None:
        """Mark alert as sent."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


class INotifier(ABC):
    """Outbound notification channel."""

    @abstractmethod
    async def send_at_risk_alert(self, notification: AtRiskNotification) -> bool:
        """
        Deliver an at-risk alert.

        Returns False when delivery is skipped (channel not configured).

        Raises:
            NotificationDeliveryFailed: If delivery was attempted and failed
        """

    @abstractmethod
    async def send_daily_report(self, report: DailyReportNotification) -> bool:
        """Deliver a daily compliance summary."""


@dataclass
class UnitOfWork:
    """Repositories sharing one transaction."""
    teams: ITeamRepository
    policies: ISLAPolicyRepository
    tickets: ITicketRepository
    alerts: ISLAAlertRepository


UnitOfWorkFactory = Callable[[], AsyncContextManager[UnitOfWork]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ========== Application Services ==========

class TeamService:
    """Team registration and lookup."""

    def __init__(self, team_repository: ITeamRepository, config_provider: ISLAConfigProvider):
        self._team_repo = team_repository
        self._config_provider = config_provider

    async def register_team(
        self,
        name: str,
        email: str,
        members: Optional[List[TeamMember]] = None,
        subscription_plan: str = SubscriptionPlan.FREE
    ) -> Team:
        """
        Register a team together with its default SLA policy.

        The contact person becomes the team admin when no members are given.

        Raises:
            ConflictException: If the email is already registered
        """
        email = email.lower()
        if await self._team_repo.get_by_email(email):
            raise ConflictException("Email already registered", {"email": email})

        config = self._config_provider.get_config()
        now = _utcnow()
        team_id = str(uuid4())
        policy_id = str(uuid4())

        if not members:
            members = [TeamMember(name=name, email=email, role=MemberRole.ADMIN)]

        team = Team(
            id=team_id,
            name=name,
            email=email,
            members=members,
            sla_policy_id=policy_id,
            subscription_plan=subscription_plan,
            tickets_used=0,
            ticket_limit=config.ticket_limit_for(subscription_plan),
            created_at=now,
        )
        policy = SLAPolicy(
            id=policy_id,
            team_id=team_id,
            created_at=now,
            updated_at=now,
            **config.default_policy.model_dump(),
        )

        team = await self._team_repo.create_with_policy(team, policy)
        logger.info("Team registered", extra={"team_id": team.id, "policy_id": policy_id})
        return team

    async def get_team(self, team_id: str) -> Team:
        team = await self._team_repo.get_by_id(team_id)
        if team is None:
            raise ResourceNotFoundException("Team", team_id)
        return team


class TicketService:
    """
    Ticket lifecycle: creation with SLA snapshot, updates and
    write-once milestone recording.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        team_repository: ITeamRepository,
        policy_repository: ISLAPolicyRepository,
        enforce_status_transitions: bool = False
    ):
        self._ticket_repo = ticket_repository
        self._team_repo = team_repository
        self._policy_repo = policy_repository
        self._enforce_transitions = enforce_status_transitions

    async def create_ticket(
        self,
        team_id: str,
        title: str,
        description: str,
        priority: str,
        assigned_to: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Ticket:
        """
        Create a ticket with SLA targets resolved from the team policy.

        Raises:
            ValidationException: Missing fields or unknown priority
            ResourceNotFoundException: Unknown team
            QuotaExceededException: Ticket allowance used up
            PolicyNotFoundException: Team has no active policy
        """
        missing = [
            name for name, value in
            (("title", title), ("description", description), ("priority", priority))
            if not value
        ]
        if missing:
            raise ValidationException.from_errors([
                {"field": name, "message": "This field is required"} for name in missing
            ])
        if priority not in VALID_PRIORITIES:
            raise ValidationException(
                f"Priority must be one of {', '.join(VALID_PRIORITIES)}",
                field="priority"
            )

        team = await self._team_repo.get_by_id(team_id)
        if team is None:
            raise ResourceNotFoundException("Team", team_id)

        if team.quota_exhausted:
            logger.info("Ticket quota exhausted", extra={"team_id": team_id, "limit": team.ticket_limit})
            raise QuotaExceededException(team.ticket_limit)

        policy = None
        if team.sla_policy_id:
            policy = await self._policy_repo.get_by_id(team.sla_policy_id)
        if policy is None:
            logger.error("Team has no SLA policy", extra={"team_id": team_id})
            raise PolicyNotFoundException(team_id)

        response_target, resolution_target = SLACalculator.resolve_targets(policy, priority)

        # Re-checked in the store; a concurrent creation may have taken the last slot
        if not await self._team_repo.increment_tickets_used(team_id):
            raise QuotaExceededException(team.ticket_limit)

        created_at = now or _utcnow()
        ticket = Ticket(
            id=str(uuid4()),
            team_id=team_id,
            ticket_number=self._generate_ticket_number(),
            title=title,
            description=description,
            priority=priority,
            status=TicketStatus.OPEN,
            sla_policy_id=policy.id,
            sla_response_target=response_target,
            sla_resolution_target=resolution_target,
            created_at=created_at,
            updated_at=created_at,
            assigned_to=assigned_to,
        )
        ticket = await self._ticket_repo.create(ticket)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "ticket_number": ticket.ticket_number,
                "team_id": team_id,
                "priority": priority,
                "sla_response_target": response_target,
                "sla_resolution_target": resolution_target,
            }
        )
        return ticket

    async def get_ticket(self, team_id: str, ticket_id: str) -> Ticket:
        """Get a ticket owned by the team."""
        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if ticket.team_id != team_id:
            raise ForbiddenException("Ticket", ticket_id)
        return ticket

    async def update_ticket(
        self,
        team_id: str,
        ticket_id: str,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        first_response_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None
    ) -> Ticket:
        """
        Apply a partial update.

        Milestone timestamps go through the breach evaluator and are
        stored with a conditional write, so only the first value sticks.
        """
        ticket = await self.get_ticket(team_id, ticket_id)

        if status is not None:
            if status not in VALID_STATUSES:
                raise ValidationException("Invalid status", field="status")
            ticket.change_status(status, self._enforce_transitions)

        if status is not None or assigned_to:
            await self._ticket_repo.update_fields(
                ticket_id,
                status=status,
                assigned_to=assigned_to or None
            )

        if first_response_at is not None:
            await self.record_first_response(ticket, _as_utc(first_response_at))

        if resolved_at is not None:
            await self.record_resolution(ticket, _as_utc(resolved_at))

        return await self._ticket_repo.get_by_id(ticket_id)

    async def record_first_response(self, ticket: Ticket, responded_at: datetime) -> bool:
        """Record the first response once; later calls are no-ops."""
        candidate = replace(ticket)
        if not candidate.record_first_response(responded_at):
            logger.debug("First response already recorded", extra={"ticket_id": ticket.id})
            return False

        stored = await self._ticket_repo.record_first_response(
            ticket.id,
            candidate.first_response_at,
            candidate.response_time,
            candidate.response_breached,
        )
        if stored:
            logger.info(
                "First response recorded",
                extra={
                    "ticket_id": ticket.id,
                    "response_time": candidate.response_time,
                    "response_breached": candidate.response_breached,
                }
            )
        else:
            logger.info("Concurrent first response ignored", extra={"ticket_id": ticket.id})
        return stored

    async def record_resolution(self, ticket: Ticket, resolved_at: datetime) -> bool:
        """Record the resolution once; later calls are no-ops."""
        candidate = replace(ticket)
        if not candidate.record_resolution(resolved_at):
            logger.debug("Resolution already recorded", extra={"ticket_id": ticket.id})
            return False

        stored = await self._ticket_repo.record_resolution(
            ticket.id,
            candidate.resolved_at,
            candidate.resolution_time,
            candidate.resolution_breached,
        )
        if stored:
            logger.info(
                "Resolution recorded",
                extra={
                    "ticket_id": ticket.id,
                    "resolution_time": candidate.resolution_time,
                    "resolution_breached": candidate.resolution_breached,
                }
            )
        else:
            logger.info("Concurrent resolution ignored", extra={"ticket_id": ticket.id})
        return stored

    async def list_tickets(
        self,
        team_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> tuple[List[Ticket], int]:
        """List team tickets, newest first, with the total match count."""
        filters: dict = {"team_id": team_id}
        if status:
            filters["status"] = status
        if priority:
            filters["priority"] = priority

        tickets = await self._ticket_repo.list(filters, limit=limit, offset=skip)
        total = await self._ticket_repo.count(filters)
        return tickets, total

    @staticmethod
    def _generate_ticket_number() -> str:
        return f"TKT-{int(time.time() * 1000)}-{uuid4().hex[:6].upper()}"


class PolicyService:
    """SLA policy reads and validated partial updates."""

    TARGET_FIELDS = (
        "p1_response_time", "p2_response_time", "p3_response_time",
        "p1_resolution_time", "p2_resolution_time", "p3_resolution_time",
    )

    def __init__(self, policy_repository: ISLAPolicyRepository):
        self._policy_repo = policy_repository

    async def list_policies(self, team_id: str) -> List[SLAPolicy]:
        return await self._policy_repo.list_for_team(team_id)

    async def update_policy(self, team_id: str, policy_id: str, changes: dict) -> SLAPolicy:
        """
        Apply a partial policy update.

        Every supplied field is validated on its own; if any is invalid,
        all errors are reported and nothing is changed.

        Args:
            team_id: Caller's team
            policy_id: Policy to update
            changes: Subset of target fields, business_hours_only,
                business_hours_start, business_hours_end, holidays, name
        """
        policy = await self._policy_repo.get_by_id(policy_id)
        if policy is None:
            raise ResourceNotFoundException("Policy", policy_id)
        if policy.team_id != team_id:
            raise ForbiddenException("Policy", policy_id)

        errors = self.validate_changes(changes)
        if errors:
            raise ValidationException.from_errors(errors)

        updated = replace(policy, **changes, updated_at=_utcnow())
        updated = await self._policy_repo.update(updated)

        logger.info(
            "SLA policy updated",
            extra={"policy_id": policy_id, "team_id": team_id, "fields": sorted(changes)}
        )
        return updated

    @classmethod
    def validate_changes(cls, changes: dict) -> List[dict]:
        """Check each field independently, returning one error per bad field."""
        errors = []
        allowed = set(cls.TARGET_FIELDS) | {
            "name", "business_hours_only", "business_hours_start",
            "business_hours_end", "holidays",
        }

        for name, value in changes.items():
            if name not in allowed:
                errors.append({"field": name, "message": "Unknown field"})
            elif name in cls.TARGET_FIELDS:
                if not _is_number(value) or value < MIN_TARGET_HOURS:
                    kind = "Response" if "response" in name else "Resolution"
                    errors.append({
                        "field": name,
                        "message": f"{kind} time must be at least 15 minutes",
                    })
            elif name in ("business_hours_start", "business_hours_end"):
                if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 23:
                    label = "start" if name.endswith("start") else "end"
                    errors.append({
                        "field": name,
                        "message": f"Business hours {label} must be between 0 and 23",
                    })
            elif name == "business_hours_only":
                if not isinstance(value, bool):
                    errors.append({"field": name, "message": "Must be a boolean"})
            elif name == "holidays":
                if not isinstance(value, list) or not all(isinstance(d, date) for d in value):
                    errors.append({"field": name, "message": "Must be a list of dates"})
            elif name == "name":
                if not isinstance(value, str) or not value.strip():
                    errors.append({"field": name, "message": "Policy name is required"})

        return errors


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class MetricsService:
    """
    Aggregation engine: compliance, MTTR, trends and at-risk listings
    for a team.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        team_repository: ITeamRepository,
        policy_repository: ISLAPolicyRepository,
        at_risk_threshold_percent: float = 80.0
    ):
        self._ticket_repo = ticket_repository
        self._team_repo = team_repository
        self._policy_repo = policy_repository
        self._threshold = at_risk_threshold_percent

    async def get_active_policy(self, team_id: str) -> Optional[SLAPolicy]:
        """Policy referenced by the team, or None."""
        team = await self._team_repo.get_by_id(team_id)
        if team is None or not team.sla_policy_id:
            return None
        return await self._policy_repo.get_by_id(team.sla_policy_id)

    async def get_summary(self, team_id: str, now: Optional[datetime] = None) -> MetricsSummary:
        """Metrics over tickets created in the current calendar month."""
        now = now or _utcnow()
        window = TimeWindow.month_of(now)

        tickets = await self._ticket_repo.list_created_between(team_id, window.start, window.end)
        policy = await self.get_active_policy(team_id)

        at_risk_count = sum(
            1 for t in tickets
            if t.is_open and SLACalculator.is_at_risk(t, policy, now, self._threshold)
        )
        return MetricsCalculator.summarize(tickets, at_risk_count)

    async def get_daily_trend(
        self,
        team_id: str,
        days: int = 7,
        now: Optional[datetime] = None
    ) -> List[DailyTrend]:
        """One entry per calendar day for the last `days` days, oldest first."""
        now = now or _utcnow()
        windows = TimeWindow.last_days(now, days)

        tickets = await self._ticket_repo.list_created_between(
            team_id, windows[0][1].start, windows[-1][1].end
        )

        return [
            MetricsCalculator.daily_trend_entry(
                day, [t for t in tickets if window.contains(t.created_at)]
            )
            for day, window in windows
        ]

    async def get_at_risk_tickets(
        self,
        team_id: str,
        now: Optional[datetime] = None
    ) -> List[AtRiskTicket]:
        """
        Open tickets close to breach, closest to the resolution deadline first.

        Teams without a policy get an empty list.
        """
        now = now or _utcnow()
        policy = await self.get_active_policy(team_id)
        if policy is None:
            return []

        tickets = await self._ticket_repo.list_open(team_id)
        at_risk = [
            AtRiskTicket(
                ticket=t,
                percentage_elapsed=SLACalculator.percentage_elapsed(
                    t.created_at, now, t.sla_resolution_target
                ),
            )
            for t in tickets
            if SLACalculator.is_at_risk(t, policy, now, self._threshold)
        ]
        at_risk.sort(key=lambda item: item.percentage_elapsed, reverse=True)
        return at_risk
