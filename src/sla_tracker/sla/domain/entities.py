"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, date
from typing import Optional, List

from sla_tracker.config import (
    Priority, TicketStatus, MemberRole, SubscriptionPlan, SLAType, AlertType,
    CLOSED_STATUSES
)
from sla_tracker.core import ValidationException
from sla_tracker.sla.domain.value_objects import SLACalculator, StatusTransitions


@dataclass
class TeamMember:
    """A person belonging to a team."""

    name: str
    email: str
    role: MemberRole = MemberRole.MEMBER


@dataclass
class Team:
    """
    Team entity, the tenant boundary.

    Owns a ticket allowance and points at the SLA policy that governs
    newly created tickets.
    """

    id: str
    name: str
    email: str
    members: List[TeamMember] = field(default_factory=list)
    sla_policy_id: Optional[str] = None
    subscription_plan: SubscriptionPlan = SubscriptionPlan.FREE
    tickets_used: int = 0
    ticket_limit: int = 100
    created_at: Optional[datetime] = None

    @property
    def quota_exhausted(self) -> bool:
        """Check if no more tickets can be created."""
        return self.tickets_used >= self.ticket_limit

    @property
    def alert_recipient(self) -> str:
        """First admin's email, falling back to the team contact email."""
        for member in self.members:
            if member.role == MemberRole.ADMIN:
                return member.email
        return self.email


@dataclass
class SLAPolicy:
    """
    Per-team SLA configuration.

    Targets are hours from ticket creation. Business-hours settings are
    stored but elapsed time is always measured on the wall clock.
    """

    id: str
    team_id: str
    name: str = "Default Policy"
    p1_response_time: float = 1
    p2_response_time: float = 4
    p3_response_time: float = 24
    p1_resolution_time: float = 2
    p2_resolution_time: float = 8
    p3_resolution_time: float = 48
    business_hours_only: bool = False
    business_hours_start: int = 9
    business_hours_end: int = 17
    holidays: List[date] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Ticket:
    """
    Ticket entity representing a support ticket.

    SLA targets are copied from the team policy when the ticket is created
    and never re-resolved afterwards.
    """

    # Core attributes
    id: str
    team_id: str
    ticket_number: str
    title: str
    description: str
    priority: Priority
    status: TicketStatus

    # SLA snapshot (hours)
    sla_policy_id: str
    sla_response_target: float
    sla_resolution_target: float

    # Timestamps
    created_at: datetime
    updated_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    assigned_to: Optional[str] = None

    # Breach tracking
    response_breached: bool = False
    resolution_breached: bool = False
    response_time: Optional[int] = None  # minutes
    resolution_time: Optional[int] = None  # minutes

    @property
    def is_open(self) -> bool:
        """Check if ticket is still open."""
        return self.status not in CLOSED_STATUSES

    @property
    def is_resolved(self) -> bool:
        """Check if ticket has been resolved or closed."""
        return self.status in CLOSED_STATUSES

    @property
    def is_breached(self) -> bool:
        return self.response_breached or self.resolution_breached

    def record_first_response(self, timestamp: datetime) -> bool:
        """
        Record the first response, computing response time and breach.

        Returns False without touching the ticket if a first response
        was already recorded.
        """
        if self.first_response_at is not None:
            return False
        self._check_not_before_creation(timestamp, "first_response_at")

        outcome = SLACalculator.evaluate_milestone(
            self.created_at, timestamp, self.sla_response_target
        )
        self.first_response_at = timestamp
        self.response_time = outcome.minutes
        if outcome.breached:
            self.response_breached = True
        return True

    def record_resolution(self, timestamp: datetime) -> bool:
        """Record resolution; same write-once rules as the first response."""
        if self.resolved_at is not None:
            return False
        self._check_not_before_creation(timestamp, "resolved_at")

        outcome = SLACalculator.evaluate_milestone(
            self.created_at, timestamp, self.sla_resolution_target
        )
        self.resolved_at = timestamp
        self.resolution_time = outcome.minutes
        if outcome.breached:
            self.resolution_breached = True
        return True

    def change_status(self, new_status: TicketStatus, enforce_transitions: bool = False) -> None:
        """Set a new status, optionally checking the lifecycle graph."""
        if enforce_transitions and not StatusTransitions.is_allowed(self.status, new_status):
            raise ValidationException(
                f"Cannot move ticket from '{self.status}' to '{new_status}'",
                field="status"
            )
        self.status = new_status

    def _check_not_before_creation(self, timestamp: datetime, field_name: str) -> None:
        if timestamp < self.created_at:
            raise ValidationException(
                f"{field_name} cannot be before created_at",
                field=field_name
            )


@dataclass
class SLAAlert:
    """
    SLA alert entity.

    One alert exists per ticket and SLA clock; it remembers whether the
    at-risk notification went out so the sweep does not repeat it.
    """

    id: Optional[str]
    ticket_id: str
    ticket_number: str
    team_id: str
    sla_type: SLAType
    triggered_at: datetime
    deadline: datetime
    remaining_seconds: float
    percentage_elapsed: int
    alert_type: AlertType = AlertType.WARNING

    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None

    @property
    def is_notification_pending(self) -> bool:
        """Check if notification still needs to be sent."""
        return not self.notification_sent

    def mark_notification_sent(self, timestamp: Optional[datetime] = None) -> None:
        """Mark notification as sent."""
        self.notification_sent = True
        self.notification_sent_at = timestamp or datetime.now(timezone.utc)
