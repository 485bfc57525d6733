"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and unit of work
- External: External service integrations (Slack, config watcher, scheduler)
"""

from sla_tracker.sla.infrastructure.models import (
    TeamModel, SLAPolicyModel, TicketModel, AlertModel
)
from sla_tracker.sla.infrastructure.repositories import (
    SQLAlchemyTeamRepository,
    SQLAlchemyPolicyRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyAlertRepository,
    build_unit_of_work,
    sqlalchemy_unit_of_work,
)
from sla_tracker.sla.infrastructure.external import (
    SLAConfigManager,
    CircuitBreaker,
    SlackClient,
    AlertScheduler,
)

__all__ = [
    "TeamModel",
    "SLAPolicyModel",
    "TicketModel",
    "AlertModel",
    "SQLAlchemyTeamRepository",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyAlertRepository",
    "build_unit_of_work",
    "sqlalchemy_unit_of_work",
    "SLAConfigManager",
    "CircuitBreaker",
    "SlackClient",
    "AlertScheduler",
]
