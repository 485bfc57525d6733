"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, DateTime, Boolean, Integer, Float, Text, Uuid, JSON,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from sla_tracker.infrastructure.database import Base
from sla_tracker.config import (
    Priority, TicketStatus, SubscriptionPlan, SLAType, AlertType
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TeamModel(Base):
    """
    Database model for Team entity.

    Maps to the 'teams' table. Members are embedded as a JSON list.
    """
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    members: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Circular with sla_policies.team_id; the constraint is added after both tables exist
    sla_policy_id: Mapped[Optional[str]] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("sla_policies.id", use_alter=True, name="fk_teams_sla_policy_id"),
        nullable=True
    )

    subscription_plan: Mapped[SubscriptionPlan] = mapped_column(
        String(50), nullable=False, default=SubscriptionPlan.FREE
    )
    tickets_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ticket_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAPolicyModel(Base):
    """
    Database model for SLAPolicy entity.

    Maps to the 'sla_policies' table. Targets are stored in hours.
    """
    __tablename__ = "sla_policies"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    team_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Default Policy")

    p1_response_time: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    p2_response_time: Mapped[float] = mapped_column(Float, nullable=False, default=4)
    p3_response_time: Mapped[float] = mapped_column(Float, nullable=False, default=24)
    p1_resolution_time: Mapped[float] = mapped_column(Float, nullable=False, default=2)
    p2_resolution_time: Mapped[float] = mapped_column(Float, nullable=False, default=8)
    p3_resolution_time: Mapped[float] = mapped_column(Float, nullable=False, default=48)

    # Stored for later use; deadlines are wall-clock
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_hours_start: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    business_hours_end: Mapped[int] = mapped_column(Integer, nullable=False, default=17)
    holidays: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ISO dates

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)

    # Ownership
    team_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )

    # Business identifier
    ticket_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Ticket content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[Priority] = mapped_column(String(10), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # SLA snapshot taken at creation (hours)
    sla_policy_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("sla_policies.id"), nullable=False
    )
    sla_response_target: Mapped[float] = mapped_column(Float, nullable=False)
    sla_resolution_target: Mapped[float] = mapped_column(Float, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # SLA tracking (write-once)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    resolution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_tickets_team_created", "team_id", "created_at"),
        Index("ix_tickets_team_status", "team_id", "status"),
    )


class AlertModel(Base):
    """
    Database model for SLA Alert entity.

    Maps to the 'sla_alerts' table. At most one row per ticket clock.
    """
    __tablename__ = "sla_alerts"

    # Primary key
    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)

    # Ticket reference
    ticket_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_number: Mapped[str] = mapped_column(String(50), nullable=False)
    team_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)

    # Alert details
    sla_type: Mapped[SLAType] = mapped_column(String(50), nullable=False)  # response or resolution
    alert_type: Mapped[AlertType] = mapped_column(String(50), nullable=False, default=AlertType.WARNING)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    remaining_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    percentage_elapsed: Mapped[int] = mapped_column(Integer, nullable=False)

    # Notification tracking
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("ticket_id", "sla_type", name="uq_sla_alerts_ticket_clock"),
    )
