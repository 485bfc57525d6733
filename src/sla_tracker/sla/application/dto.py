"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime, date, timezone


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["P1", "P2", "P3"]
TicketStatusStr = Literal["open", "assigned", "in_progress", "resolved", "closed"]
MemberRoleStr = Literal["admin", "member", "viewer"]
PlanStr = Literal["free", "pro", "enterprise"]


def _ensure_utc(v: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ========== Request DTOs ==========

class TeamMemberDTO(BaseModel):
    """Team member payload."""
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: MemberRoleStr = "member"

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class TeamRegisterRequest(BaseModel):
    """Request model for team registration."""
    name: str = Field(..., min_length=2, description="Team name")
    email: str = Field(
        ...,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Team contact email"
    )
    members: List[TeamMemberDTO] = Field(default_factory=list)
    subscription_plan: PlanStr = "free"


class TicketCreateRequest(BaseModel):
    """Request model for creating a ticket."""
    title: str = Field(..., min_length=5, description="Ticket title")
    description: str = Field(..., min_length=10, description="Ticket description")
    priority: PriorityStr = Field(..., description="Ticket priority")
    assigned_to: Optional[str] = Field(None, description="Assignee")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("Title must be at least 5 characters")
        return v


class TicketUpdateRequest(BaseModel):
    """Request model for a partial ticket update."""
    status: Optional[TicketStatusStr] = None
    assigned_to: Optional[str] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @field_validator("first_response_at", "resolved_at")
    @classmethod
    def validate_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(v)


class BusinessHoursUpdate(BaseModel):
    """Business-hours window change (hours 0-23, checked by the service)."""
    start: Optional[int] = None
    end: Optional[int] = None


class PolicyUpdateRequest(BaseModel):
    """
    Request model for a partial SLA policy update.

    Ranges are checked by PolicyService, which reports every invalid field.
    """
    name: Optional[str] = None
    p1_response_time: Optional[float] = None
    p2_response_time: Optional[float] = None
    p3_response_time: Optional[float] = None
    p1_resolution_time: Optional[float] = None
    p2_resolution_time: Optional[float] = None
    p3_resolution_time: Optional[float] = None
    business_hours_only: Optional[bool] = None
    business_hours: Optional[BusinessHoursUpdate] = None
    holidays: Optional[List[date]] = None

    def to_changes(self) -> dict:
        """Flatten into the field names used by the policy entity."""
        changes = self.model_dump(exclude_none=True, exclude={"business_hours"})
        if self.business_hours is not None:
            if self.business_hours.start is not None:
                changes["business_hours_start"] = self.business_hours.start
            if self.business_hours.end is not None:
                changes["business_hours_end"] = self.business_hours.end
        return changes


# ========== Response DTOs ==========

class TeamMemberResponse(BaseModel):
    name: str
    email: str
    role: MemberRoleStr


class TeamResponse(BaseModel):
    """Response model for a team."""
    id: str
    name: str
    email: str
    members: List[TeamMemberResponse]
    sla_policy_id: Optional[str]
    subscription_plan: PlanStr
    tickets_used: int
    ticket_limit: int

    @classmethod
    def from_domain(cls, team) -> "TeamResponse":
        return cls(
            id=team.id,
            name=team.name,
            email=team.email,
            members=[
                TeamMemberResponse(name=m.name, email=m.email, role=m.role)
                for m in team.members
            ],
            sla_policy_id=team.sla_policy_id,
            subscription_plan=team.subscription_plan,
            tickets_used=team.tickets_used,
            ticket_limit=team.ticket_limit,
        )


class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    team_id: str
    ticket_number: str
    title: str
    description: str
    priority: PriorityStr
    status: TicketStatusStr
    created_at: datetime
    updated_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    sla_policy_id: str
    sla_response_target: float = Field(..., description="Response target (hours)")
    sla_resolution_target: float = Field(..., description="Resolution target (hours)")
    response_breached: bool
    resolution_breached: bool
    response_time: Optional[int] = Field(None, description="Minutes to first response")
    resolution_time: Optional[int] = Field(None, description="Minutes to resolution")

    @classmethod
    def from_domain(cls, ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            team_id=ticket.team_id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            description=ticket.description,
            priority=ticket.priority,
            status=ticket.status,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            assigned_to=ticket.assigned_to,
            sla_policy_id=ticket.sla_policy_id,
            sla_response_target=ticket.sla_response_target,
            sla_resolution_target=ticket.sla_resolution_target,
            response_breached=ticket.response_breached,
            resolution_breached=ticket.resolution_breached,
            response_time=ticket.response_time,
            resolution_time=ticket.resolution_time,
        )


class PaginationResponse(BaseModel):
    limit: int
    skip: int
    total: int
    pages: int


class TicketListResponse(BaseModel):
    """Response model for ticket listing."""
    tickets: List[TicketResponse]
    pagination: PaginationResponse


class AtRiskTicketResponse(TicketResponse):
    """Ticket with progress towards its resolution deadline."""
    percentage_elapsed: int = Field(..., description="Percent of resolution target elapsed")


class AtRiskListResponse(BaseModel):
    count: int
    tickets: List[AtRiskTicketResponse]


class MTTRByPriorityResponse(BaseModel):
    P1: float
    P2: float
    P3: float


class MetricsSummaryResponse(BaseModel):
    """Response model for the monthly metrics summary."""
    total_tickets: int
    resolved_tickets: int
    open_tickets: int
    breached_tickets: int
    compliance_percentage: float
    at_risk_count: int
    mttr: float = Field(..., description="Mean time to resolution (minutes)")
    mttr_by_priority: MTTRByPriorityResponse


class DailyTrendResponse(BaseModel):
    date: str
    compliance: float
    open_tickets: int
    mttr: float


class DailyTrendListResponse(BaseModel):
    days: int
    trends: List[DailyTrendResponse]


class PolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    team_id: str
    name: str
    p1_response_time: float
    p2_response_time: float
    p3_response_time: float
    p1_resolution_time: float
    p2_resolution_time: float
    p3_resolution_time: float
    business_hours_only: bool
    business_hours_start: int
    business_hours_end: int
    holidays: List[date]

    @classmethod
    def from_domain(cls, policy) -> "PolicyResponse":
        return cls(
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
            holidays=list(policy.holidays),
        )
