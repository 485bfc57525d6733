"""
SLA Application Layer
======================

Application layer for SLA tracking module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from sla_tracker.sla.application.dto import (
    TeamMemberDTO,
    TeamRegisterRequest,
    TicketCreateRequest,
    TicketUpdateRequest,
    PolicyUpdateRequest,
    BusinessHoursUpdate,
    TeamResponse,
    TicketResponse,
    TicketListResponse,
    PaginationResponse,
    AtRiskTicketResponse,
    AtRiskListResponse,
    MetricsSummaryResponse,
    DailyTrendResponse,
    DailyTrendListResponse,
    PolicyResponse,
)
from sla_tracker.sla.application.services import (
    TeamService,
    TicketService,
    PolicyService,
    MetricsService,
    ITeamRepository,
    ISLAPolicyRepository,
    ITicketRepository,
    ISLAAlertRepository,
    ISLAConfigProvider,
    INotifier,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    # DTOs
    "TeamMemberDTO",
    "TeamRegisterRequest",
    "TicketCreateRequest",
    "TicketUpdateRequest",
    "PolicyUpdateRequest",
    "BusinessHoursUpdate",
    "TeamResponse",
    "TicketResponse",
    "TicketListResponse",
    "PaginationResponse",
    "AtRiskTicketResponse",
    "AtRiskListResponse",
    "MetricsSummaryResponse",
    "DailyTrendResponse",
    "DailyTrendListResponse",
    "PolicyResponse",
    # Services
    "TeamService",
    "TicketService",
    "PolicyService",
    "MetricsService",
    # Repository Interfaces
    "ITeamRepository",
    "ISLAPolicyRepository",
    "ITicketRepository",
    "ISLAAlertRepository",
    "ISLAConfigProvider",
    "INotifier",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
