"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from sla_tracker.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    QuotaExceededException,
    ResourceNotFoundException,
    ForbiddenException,
    ConflictException,
    ConfigurationException,
    PolicyNotFoundException,
    ExternalServiceException,
    NotificationDeliveryFailed,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "QuotaExceededException",
    "ResourceNotFoundException",
    "ForbiddenException",
    "ConflictException",
    "ConfigurationException",
    "PolicyNotFoundException",
    "ExternalServiceException",
    "NotificationDeliveryFailed",
]
