"""
Complaint Domain Layer
======================

Domain layer for the complaint lifecycle module.

Contains:
- Entities: Complaint, StaffProfile, audit entries, mutations, cycle reports
- Value Objects: LifecycleConfig, SLAStatus
- Domain Services: SLACalculator, ComplaintStateMachine, AssignmentMatcher

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from civicdesk.complaints.domain.entities import (
    AssignmentHistoryEntry,
    Complaint,
    ComplaintMutation,
    CycleItemError,
    CycleReport,
    Location,
    NotificationEvent,
    StaffProfile,
    StatusHistoryEntry,
    TransitionOutcome,
)
from civicdesk.complaints.domain.value_objects import (
    DEFAULT_PROFESSION_KEYWORDS,
    LifecycleConfig,
    SLACalculator,
    SLAStatus,
)
from civicdesk.complaints.domain.state_machine import ComplaintStateMachine
from civicdesk.complaints.domain.matcher import AssignmentMatcher

__all__ = [
    # Entities
    "AssignmentHistoryEntry",
    "Complaint",
    "ComplaintMutation",
    "CycleItemError",
    "CycleReport",
    "Location",
    "NotificationEvent",
    "StaffProfile",
    "StatusHistoryEntry",
    "TransitionOutcome",
    # Value Objects & Services
    "DEFAULT_PROFESSION_KEYWORDS",
    "LifecycleConfig",
    "SLACalculator",
    "SLAStatus",
    "ComplaintStateMachine",
    "AssignmentMatcher",
]
