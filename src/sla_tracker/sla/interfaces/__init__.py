"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for SLA tracking module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from sla_tracker.sla.interfaces.controllers import (
    teams_router,
    tickets_router,
    metrics_router,
    policies_router,
)

__all__ = ["teams_router", "tickets_router", "metrics_router", "policies_router"]
