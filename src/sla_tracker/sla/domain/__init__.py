"""
SLA Domain Layer
================

Domain layer for SLA tracking module.

Contains:
- Entities: Core business objects with identity (Team, SLAPolicy, Ticket, SLAAlert)
- Value Objects: Immutable objects defined by attributes (MetricsSummary, DailyTrend, SLAConfig)
- Domain Services: Stateless business logic (SLACalculator, MetricsCalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from sla_tracker.sla.domain.entities import (
    Team,
    TeamMember,
    SLAPolicy,
    Ticket,
    SLAAlert,
)
from sla_tracker.sla.domain.value_objects import (
    SLACalculator,
    MetricsCalculator,
    StatusTransitions,
    MilestoneOutcome,
    MetricsSummary,
    MTTRByPriority,
    DailyTrend,
    TimeWindow,
    PolicyTemplate,
    SLAConfig,
    AtRiskTicket,
    AtRiskNotification,
    DailyReportNotification,
    round_half_up,
)

__all__ = [
    # Entities
    "Team",
    "TeamMember",
    "SLAPolicy",
    "Ticket",
    "SLAAlert",
    # Value Objects & Services
    "SLACalculator",
    "MetricsCalculator",
    "StatusTransitions",
    "MilestoneOutcome",
    "MetricsSummary",
    "MTTRByPriority",
    "DailyTrend",
    "TimeWindow",
    "PolicyTemplate",
    "SLAConfig",
    "AtRiskTicket",
    "AtRiskNotification",
    "DailyReportNotification",
    "round_half_up",
]
