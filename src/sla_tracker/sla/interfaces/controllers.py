"""
SLA Controllers (API Routes)
=============================

FastAPI routes for teams, tickets, SLA policies and metrics.

Controllers are thin - they delegate to application services. The
calling team is identified by the X-Team-ID header.
"""

import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sla_tracker.config import Settings, get_settings
from sla_tracker.core import ValidationException
from sla_tracker.infrastructure.database import get_session
from sla_tracker.sla.application import (
    TeamService, TicketService, PolicyService, MetricsService,
    ISLAConfigProvider, UnitOfWork,
    TeamRegisterRequest, TeamResponse,
    TicketCreateRequest, TicketUpdateRequest, TicketResponse,
    TicketListResponse, PaginationResponse,
    AtRiskTicketResponse, AtRiskListResponse,
    MetricsSummaryResponse, DailyTrendResponse, DailyTrendListResponse,
    PolicyUpdateRequest, PolicyResponse,
)
from sla_tracker.sla.domain import TeamMember
from sla_tracker.sla.infrastructure import build_unit_of_work
from sla_tracker.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

teams_router = APIRouter(prefix="/teams", tags=["Teams"])
tickets_router = APIRouter(prefix="/tickets", tags=["Tickets"])
metrics_router = APIRouter(prefix="/metrics", tags=["Metrics"])
policies_router = APIRouter(prefix="/policies", tags=["SLA Policies"])

DEFAULT_TREND_DAYS = 7
MAX_TREND_DAYS = 30
MAX_PAGE_SIZE = 100


# ========== Example payloads for Swagger ==========

TICKET_CREATE_EXAMPLE = {
    "title": "Checkout page returns 500",
    "description": "Customers cannot complete payment since the last deploy.",
    "priority": "P1",
    "assigned_to": "oncall@example.com"
}

METRICS_RESPONSE_EXAMPLE = {
    "total_tickets": 42,
    "resolved_tickets": 30,
    "open_tickets": 12,
    "breached_tickets": 3,
    "compliance_percentage": 93.33,
    "at_risk_count": 2,
    "mttr": 185.5,
    "mttr_by_priority": {"P1": 75.0, "P2": 240.25, "P3": 0.0}
}


# ========== Dependencies ==========

async def get_current_team_id(x_team_id: Optional[str] = Header(None, alias="X-Team-ID")) -> str:
    """Calling team, taken from the X-Team-ID header."""
    if not x_team_id or not x_team_id.strip():
        raise ValidationException("X-Team-ID header is required", field="X-Team-ID")
    return x_team_id.strip()


async def get_unit_of_work(session: AsyncSession = Depends(get_session)) -> UnitOfWork:
    """Repositories sharing the request's transaction."""
    return build_unit_of_work(session)


def get_config_provider(request: Request) -> ISLAConfigProvider:
    """SLA config manager created during application startup."""
    return request.app.state.config_manager


def get_team_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> TeamService:
    return TeamService(uow.teams, config_provider)


def get_ticket_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    settings: Settings = Depends(get_settings)
) -> TicketService:
    return TicketService(
        uow.tickets, uow.teams, uow.policies,
        enforce_status_transitions=settings.enforce_status_transitions
    )


def get_policy_service(uow: UnitOfWork = Depends(get_unit_of_work)) -> PolicyService:
    return PolicyService(uow.policies)


def get_metrics_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    settings: Settings = Depends(get_settings)
) -> MetricsService:
    return MetricsService(
        uow.tickets, uow.teams, uow.policies,
        at_risk_threshold_percent=settings.at_risk_threshold_percent
    )


def parse_trend_days(raw: Optional[str]) -> int:
    """Non-numeric or < 1 falls back to 7; larger than 30 is capped."""
    try:
        days = int(raw) if raw is not None else DEFAULT_TREND_DAYS
    except ValueError:
        return DEFAULT_TREND_DAYS
    if days < 1:
        return DEFAULT_TREND_DAYS
    return min(days, MAX_TREND_DAYS)


# ========== Teams ==========

@teams_router.post(
    "",
    response_model=TeamResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a team",
    description="Creates the team and its default SLA policy in one transaction."
)
async def register_team(
    request: TeamRegisterRequest,
    service: TeamService = Depends(get_team_service)
):
    members = [TeamMember(name=m.name, email=m.email, role=m.role) for m in request.members]
    team = await service.register_team(
        name=request.name,
        email=request.email,
        members=members,
        subscription_plan=request.subscription_plan,
    )
    return TeamResponse.from_domain(team)


@teams_router.get("/me", response_model=TeamResponse, summary="Get the calling team")
async def get_my_team(
    team_id: str = Depends(get_current_team_id),
    service: TeamService = Depends(get_team_service)
):
    return TeamResponse.from_domain(await service.get_team(team_id))


# ========== Tickets ==========

@tickets_router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    description="""
    Create a ticket. SLA targets are copied from the team's active policy
    for the ticket's priority and never change afterwards.

    **Priorities**: `P1`, `P2`, `P3`

    Returns 429 when the team's ticket allowance is used up.
    """,
    responses={
        201: {"description": "Ticket created"},
        429: {"description": "Ticket limit reached"}
    },
    openapi_extra={
        "requestBody": {"content": {"application/json": {"example": TICKET_CREATE_EXAMPLE}}}
    }
)
async def create_ticket(
    request: TicketCreateRequest,
    team_id: str = Depends(get_current_team_id),
    service: TicketService = Depends(get_ticket_service)
):
    ticket = await service.create_ticket(
        team_id=team_id,
        title=request.title,
        description=request.description,
        priority=request.priority,
        assigned_to=request.assigned_to,
    )
    return TicketResponse.from_domain(ticket)


@tickets_router.get("", response_model=TicketListResponse, summary="List tickets")
async def list_tickets(
    ticket_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[str] = Query(None, description="Filter by priority (P1, P2, P3)"),
    limit: int = Query(50, ge=1, description="Results per page (max 100)"),
    skip: int = Query(0, ge=0, description="Results to skip"),
    team_id: str = Depends(get_current_team_id),
    service: TicketService = Depends(get_ticket_service)
):
    limit = min(limit, MAX_PAGE_SIZE)
    tickets, total = await service.list_tickets(
        team_id, status=ticket_status, priority=priority, limit=limit, skip=skip
    )
    return TicketListResponse(
        tickets=[TicketResponse.from_domain(t) for t in tickets],
        pagination=PaginationResponse(
            limit=limit,
            skip=skip,
            total=total,
            pages=math.ceil(total / limit),
        ),
    )


@tickets_router.get(
    "/at-risk",
    response_model=AtRiskListResponse,
    summary="List tickets close to breach",
    description="Open tickets past the at-risk threshold, most urgent first."
)
async def list_at_risk_tickets(
    team_id: str = Depends(get_current_team_id),
    service: MetricsService = Depends(get_metrics_service)
):
    at_risk = await service.get_at_risk_tickets(team_id)
    return AtRiskListResponse(
        count=len(at_risk),
        tickets=[
            AtRiskTicketResponse(
                **TicketResponse.from_domain(item.ticket).model_dump(),
                percentage_elapsed=item.percentage_elapsed,
            )
            for item in at_risk
        ],
    )


@tickets_router.get("/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: str,
    team_id: str = Depends(get_current_team_id),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_domain(await service.get_ticket(team_id, ticket_id))


@tickets_router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update a ticket",
    description="""
    Partial update. `first_response_at` and `resolved_at` are recorded only
    once; later values are ignored. Breach flags and elapsed minutes are
    computed when a milestone is recorded.
    """
)
async def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    team_id: str = Depends(get_current_team_id),
    service: TicketService = Depends(get_ticket_service)
):
    ticket = await service.update_ticket(
        team_id,
        ticket_id,
        status=request.status,
        assigned_to=request.assigned_to,
        first_response_at=request.first_response_at,
        resolved_at=request.resolved_at,
    )
    return TicketResponse.from_domain(ticket)


# ========== Metrics ==========

@metrics_router.get(
    "",
    response_model=MetricsSummaryResponse,
    summary="Current month SLA metrics",
    responses={
        200: {"content": {"application/json": {"example": METRICS_RESPONSE_EXAMPLE}}}
    }
)
async def get_metrics(
    team_id: str = Depends(get_current_team_id),
    service: MetricsService = Depends(get_metrics_service)
):
    summary = await service.get_summary(team_id)
    return MetricsSummaryResponse(**summary.to_dict())


@metrics_router.get(
    "/daily-trend",
    response_model=DailyTrendListResponse,
    summary="Per-day compliance trend",
    description="One entry per calendar day, oldest first. `days` defaults to 7, max 30."
)
async def get_daily_trend(
    days: Optional[str] = Query(None, description="Number of days (1-30)"),
    team_id: str = Depends(get_current_team_id),
    service: MetricsService = Depends(get_metrics_service)
):
    n_days = parse_trend_days(days)
    trends = await service.get_daily_trend(team_id, n_days)
    return DailyTrendListResponse(
        days=n_days,
        trends=[
            DailyTrendResponse(
                date=t.date, compliance=t.compliance,
                open_tickets=t.open_tickets, mttr=t.mttr
            )
            for t in trends
        ],
    )


# ========== Policies ==========

@policies_router.get("", response_model=List[PolicyResponse], summary="List SLA policies")
async def list_policies(
    team_id: str = Depends(get_current_team_id),
    service: PolicyService = Depends(get_policy_service)
):
    return [PolicyResponse.from_domain(p) for p in await service.list_policies(team_id)]


@policies_router.patch(
    "/{policy_id}",
    response_model=PolicyResponse,
    summary="Update an SLA policy",
    description="""
    Partial update. Targets are in hours and must be at least 0.25 (15 minutes);
    business hours must be within 0-23. All invalid fields are reported at once
    and nothing is changed. Existing tickets keep their original targets.
    """
)
async def update_policy(
    policy_id: str,
    request: PolicyUpdateRequest,
    team_id: str = Depends(get_current_team_id),
    service: PolicyService = Depends(get_policy_service)
):
    policy = await service.update_policy(team_id, policy_id, request.to_changes())
    return PolicyResponse.from_domain(policy)
