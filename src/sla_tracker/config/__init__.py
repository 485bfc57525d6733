"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="sla-tracker", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/sla_tracker",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to YAML file with default policy template"
    )
    at_risk_threshold_percent: float = Field(
        default=80.0,
        description="Percentage of an SLA target after which an open ticket is at risk",
        gt=0,
        le=100
    )
    enforce_status_transitions: bool = Field(
        default=False,
        description="Reject ticket status changes outside the lifecycle graph"
    )

    # ========== Alert Scheduler ==========
    alert_scheduler_enabled: bool = Field(
        default=True,
        description="Run the periodic at-risk sweep"
    )
    alert_check_interval_minutes: int = Field(
        default=5,
        description="Minutes between at-risk sweeps",
        ge=1
    )
    daily_report_enabled: bool = Field(
        default=False,
        description="Send a daily compliance summary per team"
    )
    daily_report_hour: int = Field(
        default=8,
        description="Local hour at which the daily report is sent",
        ge=0,
        le=23
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for notifications"
    )
    slack_channel: str = Field(
        default="#sla-alerts",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:5173", "http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class MemberRole(str):
    """Team member roles."""
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class SubscriptionPlan(str):
    """Team subscription plans."""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SLAType(str):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class AlertType(str):
    """SLA alert types."""
    WARNING = "warning"


# ========== Lists for validation ==========

VALID_PRIORITIES = [Priority.P1, Priority.P2, Priority.P3]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS,
    TicketStatus.RESOLVED, TicketStatus.CLOSED
]
CLOSED_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]

# Minimum SLA target: 15 minutes
MIN_TARGET_HOURS = 0.25
