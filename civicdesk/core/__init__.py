"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from civicdesk.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    ResourceNotFoundException,
    InvalidTransition,
    IneligibleStaff,
    InvariantViolation,
    ConcurrentModificationException,
    DependencyException,
    RepositoryException,
    NotificationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "ResourceNotFoundException",
    "InvalidTransition",
    "IneligibleStaff",
    "InvariantViolation",
    "ConcurrentModificationException",
    "DependencyException",
    "RepositoryException",
    "NotificationException",
]
