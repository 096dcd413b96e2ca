"""
Core Exceptions
================

Custom exceptions for the SLA engine.

These exceptions define domain-specific errors that can be caught and handled
at the application boundaries (HTTP handlers, scheduler ticks).
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class NotFoundError(ApplicationException):
    """Exception when a requested resource does not exist."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[object] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id is not None:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationError(ApplicationException):
    """No SLA layer resolved for a ticket, or tenant configuration is broken."""


class ProfileError(DomainException):
    """A business hours profile cannot be used for deadline arithmetic."""

    def __init__(
        self,
        message: str,
        profile_id: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.profile_id = profile_id
        super().__init__(
            message,
            details or ({"profile_id": profile_id} if profile_id is not None else None)
        )
