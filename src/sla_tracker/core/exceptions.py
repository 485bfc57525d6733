"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each exception carries the HTTP
status it maps to, so the API layer needs no per-route translation.
"""

from typing import Optional, Any, List


class ApplicationException(Exception):
    """Base exception for all application errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    status_code = 400


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(DomainException):
    """Exception for validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.field = field
        details = details or {}
        if field and "field" not in details:
            details["field"] = field
        super().__init__(message, details)

    @classmethod
    def from_errors(cls, errors: List[dict]) -> "ValidationException":
        """Build one exception out of several field-level errors."""
        fields = ", ".join(e["field"] for e in errors)
        return cls(f"Invalid value for: {fields}", details={"errors": errors})


class QuotaExceededException(DomainException):
    """Raised when a team has used up its ticket allowance."""

    status_code = 429

    def __init__(self, limit: int, details: Optional[dict] = None):
        self.limit = limit
        super().__init__(
            f"Ticket limit reached ({limit}). Please upgrade your plan.",
            details or {"limit": limit}
        )


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    status_code = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ForbiddenException(ApplicationException):
    """Raised when a resource belongs to another team."""

    status_code = 403

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            "Forbidden",
            {"resource_type": resource_type, "resource_id": resource_id}
        )


class ConflictException(ApplicationException):
    """Raised when a unique resource already exists."""

    status_code = 409


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class PolicyNotFoundException(ConfigurationException):
    """A team has no SLA policy; registration should always create one."""

    def __init__(self, team_id: Any, details: Optional[dict] = None):
        self.team_id = team_id
        super().__init__(
            "SLA policy not found",
            details or {"team_id": str(team_id)}
        )


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    status_code = 502

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationDeliveryFailed(ExternalServiceException):
    """Exception for notification delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notifier", message, details)
