"""
SLA Value Objects
==================

Immutable value objects and stateless calculators for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple, Iterable, TYPE_CHECKING

from pydantic import BaseModel, Field

from sla_tracker.config import (
    Priority, TicketStatus, SLAType, MIN_TARGET_HOURS, VALID_PRIORITIES
)
from sla_tracker.core import PolicyNotFoundException, ValidationException

if TYPE_CHECKING:
    from sla_tracker.sla.domain.entities import Ticket, SLAPolicy


_MICROSECONDS_PER_MINUTE = Decimal(60_000_000)


def round_half_up(value, places: int = 2) -> float:
    """Round half away from zero (not banker's rounding)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    exponent = Decimal(1).scaleb(-places)
    return float(value.quantize(exponent, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class MilestoneOutcome:
    """Duration and breach result of a recorded milestone."""
    minutes: int
    breached: bool


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all per-ticket SLA arithmetic in one place.
    Elapsed time is wall-clock time from ticket creation.
    """

    @staticmethod
    def resolve_targets(
        policy: Optional["SLAPolicy"],
        priority: Priority
    ) -> Tuple[float, float]:
        """
        Get (response, resolution) target hours for a priority.

        Raises:
            PolicyNotFoundException: If no policy is given
            ValidationException: If the priority is unknown
        """
        if policy is None:
            raise PolicyNotFoundException(team_id=None)

        if priority == Priority.P1:
            return policy.p1_response_time, policy.p1_resolution_time
        if priority == Priority.P2:
            return policy.p2_response_time, policy.p2_resolution_time
        if priority == Priority.P3:
            return policy.p3_response_time, policy.p3_resolution_time

        raise ValidationException(
            f"Priority must be one of {', '.join(VALID_PRIORITIES)}",
            field="priority"
        )

    @staticmethod
    def calculate_deadline(created_at: datetime, target_hours: float) -> datetime:
        """Calculate SLA deadline for a target."""
        return created_at + timedelta(hours=target_hours)

    @staticmethod
    def is_breached(elapsed: timedelta, target_hours: float) -> bool:
        """A milestone breaches only when strictly later than its target."""
        return elapsed > timedelta(hours=target_hours)

    @staticmethod
    def evaluate_milestone(
        created_at: datetime,
        occurred_at: datetime,
        target_hours: float
    ) -> MilestoneOutcome:
        """
        Compute minutes taken and breach flag for a milestone.

        Minutes are rounded to the nearest whole minute, halves up.
        """
        elapsed = occurred_at - created_at
        microseconds = Decimal(elapsed // timedelta(microseconds=1))
        minutes = (microseconds / _MICROSECONDS_PER_MINUTE).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        return MilestoneOutcome(
            minutes=int(minutes),
            breached=SLACalculator.is_breached(elapsed, target_hours)
        )

    @staticmethod
    def elapsed_ratio(created_at: datetime, now: datetime, target_hours: float) -> float:
        """Fraction of the target consumed so far (1.0 == deadline)."""
        target_seconds = target_hours * 3600
        if target_seconds <= 0:
            return float("inf")
        return (now - created_at).total_seconds() / target_seconds

    @staticmethod
    def percentage_elapsed(created_at: datetime, now: datetime, target_hours: float) -> int:
        """Percentage of the target consumed, rounded to a whole number."""
        ratio = SLACalculator.elapsed_ratio(created_at, now, target_hours)
        return int(round_half_up(ratio * 100, 0))

    @staticmethod
    def minutes_remaining(created_at: datetime, now: datetime, target_hours: float) -> int:
        """Minutes left until the deadline (negative once past it)."""
        deadline = SLACalculator.calculate_deadline(created_at, target_hours)
        return int(round_half_up((deadline - now).total_seconds() / 60, 0))

    @staticmethod
    def at_risk_clocks(
        ticket: "Ticket",
        now: datetime,
        threshold_percent: float = 80.0
    ) -> List[SLAType]:
        """
        Determine which SLA clocks of an open ticket are at risk.

        Response clock: only while no first response exists and it is not
        already breached. Resolution clock: whenever not already breached.
        """
        if not ticket.is_open:
            return []

        threshold = threshold_percent / 100
        clocks = []

        if ticket.first_response_at is None and not ticket.response_breached:
            ratio = SLACalculator.elapsed_ratio(
                ticket.created_at, now, ticket.sla_response_target
            )
            if ratio >= threshold:
                clocks.append(SLAType.RESPONSE)

        if not ticket.resolution_breached:
            ratio = SLACalculator.elapsed_ratio(
                ticket.created_at, now, ticket.sla_resolution_target
            )
            if ratio >= threshold:
                clocks.append(SLAType.RESOLUTION)

        return clocks

    @staticmethod
    def is_at_risk(
        ticket: "Ticket",
        policy: Optional["SLAPolicy"],
        now: datetime,
        threshold_percent: float = 80.0
    ) -> bool:
        """Check if a ticket is approaching breach on either clock."""
        if policy is None:
            return False
        return bool(SLACalculator.at_risk_clocks(ticket, now, threshold_percent))

    @staticmethod
    def target_for(ticket: "Ticket", sla_type: SLAType) -> float:
        """Get the snapshot target hours for a clock."""
        if sla_type == SLAType.RESPONSE:
            return ticket.sla_response_target
        return ticket.sla_resolution_target


class StatusTransitions:
    """
    Optional ticket lifecycle graph.

    Statuses may move forward (skipping steps is allowed) but never
    backwards; closed is terminal.
    """

    ORDER = {
        TicketStatus.OPEN: 0,
        TicketStatus.ASSIGNED: 1,
        TicketStatus.IN_PROGRESS: 2,
        TicketStatus.RESOLVED: 3,
        TicketStatus.CLOSED: 4,
    }

    @classmethod
    def is_allowed(cls, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        if current == TicketStatus.CLOSED:
            return False
        return cls.ORDER[new] > cls.ORDER[current]


# ========== Aggregation ==========

@dataclass(frozen=True)
class MTTRByPriority:
    """MTTR in minutes per priority."""
    P1: float = 0.0
    P2: float = 0.0
    P3: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class MetricsSummary:
    """Compliance snapshot for a team over a time window."""
    total_tickets: int
    resolved_tickets: int
    open_tickets: int
    breached_tickets: int
    compliance_percentage: float
    at_risk_count: int
    mttr: float
    mttr_by_priority: MTTRByPriority

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DailyTrend:
    """One day of the compliance trend."""
    date: str
    compliance: float
    open_tickets: int
    mttr: float


class MetricsCalculator:
    """
    Aggregations over ticket sets.

    Only resolved or closed tickets count towards compliance and MTTR.
    """

    @staticmethod
    def resolved(tickets: Iterable["Ticket"]) -> List["Ticket"]:
        return [t for t in tickets if t.is_resolved]

    @staticmethod
    def compliance(tickets: Iterable["Ticket"]) -> float:
        """
        Share of resolved/closed tickets that breached neither target.

        No resolved tickets means nothing failed: 100.
        """
        resolved = MetricsCalculator.resolved(tickets)
        if not resolved:
            return 100.0

        breached = sum(1 for t in resolved if t.is_breached)
        value = Decimal(len(resolved) - breached) * 100 / Decimal(len(resolved))
        return round_half_up(value, 2)

    @staticmethod
    def mttr(tickets: Iterable["Ticket"]) -> float:
        """Mean resolution time in minutes over resolved/closed tickets."""
        resolved = MetricsCalculator.resolved(tickets)
        if not resolved:
            return 0.0

        total = sum(t.resolution_time or 0 for t in resolved)
        return round_half_up(Decimal(total) / Decimal(len(resolved)), 2)

    @staticmethod
    def mttr_by_priority(tickets: Iterable["Ticket"]) -> MTTRByPriority:
        """MTTR computed independently for each priority."""
        tickets = list(tickets)
        values = {
            priority: MetricsCalculator.mttr(t for t in tickets if t.priority == priority)
            for priority in VALID_PRIORITIES
        }
        return MTTRByPriority(**values)

    @staticmethod
    def summarize(tickets: Iterable["Ticket"], at_risk_count: int) -> MetricsSummary:
        """Compose the summary from one ticket set."""
        tickets = list(tickets)
        resolved = MetricsCalculator.resolved(tickets)

        return MetricsSummary(
            total_tickets=len(tickets),
            resolved_tickets=len(resolved),
            open_tickets=len(tickets) - len(resolved),
            breached_tickets=sum(1 for t in tickets if t.is_breached),
            compliance_percentage=MetricsCalculator.compliance(resolved),
            at_risk_count=at_risk_count,
            mttr=MetricsCalculator.mttr(resolved),
            mttr_by_priority=MetricsCalculator.mttr_by_priority(resolved),
        )

    @staticmethod
    def daily_trend_entry(day: date, tickets: Iterable["Ticket"]) -> DailyTrend:
        """Trend point for tickets created on one day."""
        tickets = list(tickets)
        return DailyTrend(
            date=day.isoformat(),
            compliance=MetricsCalculator.compliance(tickets),
            open_tickets=sum(1 for t in tickets if t.is_open),
            mttr=MetricsCalculator.mttr(tickets),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in local server time."""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @staticmethod
    def _local_midnight(day: date) -> datetime:
        # naive -> aware picks the local offset in effect on that day
        return datetime(day.year, day.month, day.day).astimezone()

    @classmethod
    def month_of(cls, now: datetime) -> "TimeWindow":
        """Calendar month containing `now`."""
        local = now.astimezone()
        first = date(local.year, local.month, 1)
        if local.month == 12:
            following = date(local.year + 1, 1, 1)
        else:
            following = date(local.year, local.month + 1, 1)
        return cls(cls._local_midnight(first), cls._local_midnight(following))

    @classmethod
    def day_of(cls, day: date) -> "TimeWindow":
        return cls(cls._local_midnight(day), cls._local_midnight(day + timedelta(days=1)))

    @classmethod
    def last_days(cls, now: datetime, days: int) -> List[Tuple[date, "TimeWindow"]]:
        """Windows for the last `days` calendar days including today, oldest first."""
        if days < 1:
            raise ValueError("days must be a positive integer")
        today = now.astimezone().date()
        result = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            result.append((day, cls.day_of(day)))
        return result


# ========== Configuration value objects ==========

class PolicyTemplate(BaseModel):
    """Default SLA targets applied to newly registered teams."""
    name: str = "Default Policy"
    p1_response_time: float = Field(default=1, ge=MIN_TARGET_HOURS)
    p2_response_time: float = Field(default=4, ge=MIN_TARGET_HOURS)
    p3_response_time: float = Field(default=24, ge=MIN_TARGET_HOURS)
    p1_resolution_time: float = Field(default=2, ge=MIN_TARGET_HOURS)
    p2_resolution_time: float = Field(default=8, ge=MIN_TARGET_HOURS)
    p3_resolution_time: float = Field(default=48, ge=MIN_TARGET_HOURS)
    business_hours_only: bool = False
    business_hours_start: int = Field(default=9, ge=0, le=23)
    business_hours_end: int = Field(default=17, ge=0, le=23)


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    default_policy: PolicyTemplate = Field(default_factory=PolicyTemplate)
    default_ticket_limit: int = Field(default=100, ge=0)
    plan_ticket_limits: Dict[str, int] = Field(
        default_factory=lambda: {"free": 100, "pro": 1000, "enterprise": 10000},
        description="Ticket allowance per subscription plan"
    )

    def ticket_limit_for(self, plan: str) -> int:
        return self.plan_ticket_limits.get(plan, self.default_ticket_limit)


# ========== Alerting value objects ==========

@dataclass(frozen=True)
class AtRiskTicket:
    """An open ticket close to breach, with progress towards resolution."""
    ticket: "Ticket"
    percentage_elapsed: int


@dataclass(frozen=True)
class AtRiskNotification:
    """Payload handed to the notifier when a ticket becomes at risk."""
    ticket_id: str
    ticket_number: str
    title: str
    team_id: str
    team_name: str
    recipient: str
    priority: str
    sla_type: str
    percentage_elapsed: int
    minutes_remaining: int
    deadline: datetime


@dataclass(frozen=True)
class DailyReportNotification:
    """Payload for the periodic per-team compliance summary."""
    team_id: str
    team_name: str
    recipient: str
    generated_at: datetime
    summary: MetricsSummary
