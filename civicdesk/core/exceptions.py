"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Every exception carries a
stable ``code`` so callers can branch on the reason without parsing messages.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "application_error"
    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None, code: Optional[str] = None):
        self.message = message
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serializable error body."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    code = "domain_error"


class ValidationException(ApplicationException):
    """Exception for validation errors (bad input, unknown enum values)."""

    code = "validation_error"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    code = "not_found"

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


class InvalidTransition(DomainException):
    """Raised when a status change is not an edge of the lifecycle table."""

    code = "invalid_transition"

    def __init__(self, current: Any, requested: Any, details: Optional[dict] = None):
        self.current = current
        self.requested = requested
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot transition complaint from {current_value} to {requested_value}",
            details or {"current": current_value, "requested": requested_value}
        )


class IneligibleStaff(DomainException):
    """Raised when a manual assignment names staff who cannot take the complaint."""

    code = "ineligible_staff"

    def __init__(self, staff_id: str, reason: str, details: Optional[dict] = None):
        self.staff_id = staff_id
        self.reason = reason
        super().__init__(
            f"Staff {staff_id} cannot be assigned: {reason}",
            details or {"staff_id": staff_id, "reason": reason}
        )


class InvariantViolation(DomainException):
    """
    A lifecycle invariant was about to be broken.

    Signals a programming defect, not a normal error path.
    """

    code = "invariant_violation"


class ConcurrentModificationException(ApplicationException):
    """The record changed since it was read; re-read and retry."""

    code = "conflict"
    retryable = True

    def __init__(self, resource_id: str, expected_version: int, details: Optional[dict] = None):
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"Complaint {resource_id} was modified concurrently (expected version {expected_version})",
            details or {"complaint_id": resource_id, "expected_version": expected_version}
        )


class DependencyException(ApplicationException):
    """Base exception for failures of an external collaborator (store, dispatcher)."""

    code = "dependency_unavailable"
    retryable = True

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class RepositoryException(DependencyException):
    """Record store failure or timeout."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Record Store", message, details)


class NotificationException(DependencyException):
    """Notification dispatcher failure or timeout."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Dispatcher", message, details)
