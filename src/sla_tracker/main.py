"""
SLA Tracker - Main Application
===============================

Support-ticket SLA compliance tracking service.

- Tickets get per-priority response/resolution targets from their team's policy
- First response and resolution are recorded once, with breach detection
- Compliance, MTTR and daily trends per team
- Background sweep alerting on tickets close to breach

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, Slack, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from sla_tracker.config import settings
from sla_tracker.core import ApplicationException

# Infrastructure
from sla_tracker.infrastructure.database import init_database, close_database, create_tables

# SLA Module
from sla_tracker.sla.infrastructure import (
    SLAConfigManager, SlackClient, AlertScheduler, sqlalchemy_unit_of_work
)
from sla_tracker.sla.services import AlertService
from sla_tracker.sla.interfaces import (
    teams_router, tickets_router, metrics_router, policies_router
)

# Shared
from sla_tracker.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    validation_exception_handler,
    global_exception_handler,
)
from sla_tracker.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch the file
    4. Start the alert scheduler

    SHUTDOWN:
    1. Stop the alert scheduler
    2. Stop config watcher, close Slack client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA Tracker", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Development convenience; the server still starts without a database
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    slack_client = SlackClient()
    alert_service = AlertService(
        sqlalchemy_unit_of_work,
        slack_client,
        at_risk_threshold_percent=settings.at_risk_threshold_percent
    )

    scheduler = AlertScheduler(
        alert_service,
        interval_minutes=settings.alert_check_interval_minutes,
        daily_report_enabled=settings.daily_report_enabled,
        daily_report_hour=settings.daily_report_hour
    )
    if settings.alert_scheduler_enabled:
        await scheduler.start()

    app.state.settings = settings
    app.state.config_manager = config_manager
    app.state.alert_service = alert_service
    app.state.scheduler = scheduler

    logger.info("SLA Tracker started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA Tracker")

    await scheduler.stop()
    config_manager.stop_watching()
    await slack_client.close()
    await close_database()

    logger.info("SLA Tracker shutdown complete")


app = FastAPI(
    title="SLA Tracker API",
    description="""
    ## Support Ticket SLA Compliance Tracking

    Identify your team with the `X-Team-ID` header.

    **Teams**: `POST /teams`, `GET /teams/me`

    **Tickets**: `POST /tickets`, `GET /tickets`, `GET /tickets/at-risk`,
    `GET /tickets/{id}`, `PATCH /tickets/{id}`

    **Metrics**: `GET /metrics`, `GET /metrics/daily-trend?days=7`

    **Policies**: `GET /policies`, `PATCH /policies/{id}`

    Default targets (hours, response / resolution): P1 1 / 2, P2 4 / 8, P3 24 / 48.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last so it wraps the logging middleware
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)

app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(teams_router)
app.include_router(tickets_router)
app.include_router(metrics_router)
app.include_router(policies_router)


def _scheduler_state(request: Request) -> str:
    scheduler = getattr(request.app.state, "scheduler", None)
    return scheduler.state if scheduler is not None else "idle"


@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {"sla_config": "loaded", "alert_scheduler": "running"}
                }
            }
        }
    }
})
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_config": "loaded" if getattr(request.app.state, "config_manager", None) else "not_loaded",
            "alert_scheduler": _scheduler_state(request),
        }
    }


@app.get("/", tags=["Root"])
async def root(request: Request):
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
        "alert_scheduler": _scheduler_state(request),
        "endpoints": [
            "POST /teams", "GET /teams/me",
            "POST /tickets", "GET /tickets", "GET /tickets/at-risk",
            "GET /tickets/{id}", "PATCH /tickets/{id}",
            "GET /metrics", "GET /metrics/daily-trend",
            "GET /policies", "PATCH /policies/{id}",
        ]
    }


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "sla_tracker.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
