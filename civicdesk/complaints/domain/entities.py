"""
Complaint Domain Entities
=========================

Pure Python domain entities for the complaint lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from civicdesk.config import (
    ACTIVE_STATUSES,
    ComplaintStatus,
    ComplaintType,
    NotificationKind,
    Priority,
    Profession,
)
from civicdesk.core import InvariantViolation


@dataclass(frozen=True)
class Location:
    """Where the issue was reported. Only the city drives assignment."""
    city: str
    address: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def normalized_city(self) -> str:
        return self.city.strip().casefold()


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One row of the append-only status audit log."""
    status: ComplaintStatus
    actor: Optional[str]
    timestamp: datetime
    notes: Optional[str] = None


@dataclass(frozen=True)
class AssignmentHistoryEntry:
    """One row of the append-only assignment audit log."""
    assignee_id: str
    actor: Optional[str]
    timestamp: datetime
    notes: Optional[str] = None


@dataclass(frozen=True)
class StaffProfile:
    """A staff member as seen by the matcher (read-only)."""
    id: str
    full_name: str
    profession: Profession
    city: str
    email: Optional[str] = None
    is_active: bool = True

    def works_in(self, city: str) -> bool:
        """Case-insensitive home city comparison."""
        return self.city.strip().casefold() == city.strip().casefold()


@dataclass
class Complaint:
    """
    Complaint entity tracked from submission to resolution.

    Title, description, type, reporter, location, created_at, sla_hours and
    due_at are fixed at creation. Everything else changes only through a
    ``ComplaintMutation`` produced by the state machine or the assignment flow.
    """

    # Core attributes
    id: str
    title: str
    description: str
    type: ComplaintType
    reporter_id: Optional[str]
    location: Location

    # SLA
    created_at: datetime
    sla_hours: float
    due_at: datetime

    # Mutable state
    priority: Priority = Priority.MEDIUM
    status: ComplaintStatus = ComplaintStatus.OPEN
    assigned_to: Optional[str] = None
    escalation_level: int = 0
    resolved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    # Audit logs
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    assignment_history: List[AssignmentHistoryEntry] = field(default_factory=list)

    def __post_init__(self):
        """Validate creation-time invariants."""
        if self.sla_hours <= 0:
            raise InvariantViolation(
                f"sla_hours must be positive, got {self.sla_hours}",
                {"complaint_id": self.id}
            )
        if self.due_at != self.created_at + timedelta(hours=self.sla_hours):
            raise InvariantViolation(
                "due_at must equal created_at + sla_hours",
                {"complaint_id": self.id, "due_at": self.due_at.isoformat()}
            )
        if self.escalation_level < 0:
            raise InvariantViolation(
                "escalation_level cannot be negative",
                {"complaint_id": self.id}
            )
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_active(self) -> bool:
        """Still subject to SLA monitoring."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status == ComplaintStatus.RESOLVED

    @property
    def city(self) -> str:
        return self.location.city

    @property
    def recipients(self) -> List[str]:
        """Reporter and assignee, whichever are known."""
        return [r for r in (self.reporter_id, self.assigned_to) if r]


@dataclass
class ComplaintMutation:
    """
    A set of field changes plus audit entries applied as one atomic update.

    ``None`` means "leave unchanged"; none of the mutable references is ever
    cleared by the lifecycle.
    """
    status: Optional[ComplaintStatus] = None
    assigned_to: Optional[str] = None
    escalation_level: Optional[int] = None
    resolved_at: Optional[datetime] = None
    priority: Optional[Priority] = None
    updated_at: Optional[datetime] = None
    status_entries: List[StatusHistoryEntry] = field(default_factory=list)
    assignment_entries: List[AssignmentHistoryEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return (
            self.status is None
            and self.assigned_to is None
            and self.escalation_level is None
            and self.resolved_at is None
            and self.priority is None
            and not self.status_entries
            and not self.assignment_entries
        )

    def check_against(self, complaint: Complaint) -> None:
        """Raise ``InvariantViolation`` if applying would break a lifecycle invariant."""
        if self.resolved_at is not None and complaint.resolved_at is not None:
            if self.resolved_at != complaint.resolved_at:
                raise InvariantViolation(
                    "resolved_at is already set and cannot be modified",
                    {"complaint_id": complaint.id}
                )
        if self.escalation_level is not None and self.escalation_level < complaint.escalation_level:
            raise InvariantViolation(
                "escalation_level cannot decrease",
                {
                    "complaint_id": complaint.id,
                    "current": complaint.escalation_level,
                    "requested": self.escalation_level,
                }
            )

    def apply_to(self, complaint: Complaint) -> Complaint:
        """Return a new record with this mutation applied and the version bumped."""
        self.check_against(complaint)
        return replace(
            complaint,
            status=self.status or complaint.status,
            assigned_to=self.assigned_to or complaint.assigned_to,
            escalation_level=(
                self.escalation_level if self.escalation_level is not None
                else complaint.escalation_level
            ),
            resolved_at=complaint.resolved_at or self.resolved_at,
            priority=self.priority or complaint.priority,
            updated_at=self.updated_at or complaint.updated_at,
            version=complaint.version + 1,
            status_history=[*complaint.status_history, *self.status_entries],
            assignment_history=[*complaint.assignment_history, *self.assignment_entries],
        )


@dataclass(frozen=True)
class NotificationEvent:
    """Payload handed to the notification dispatcher."""
    kind: NotificationKind
    complaint_id: str
    message: str
    subject: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "complaint_id": self.complaint_id,
            "subject": self.subject,
            "message": self.message,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of asking the state machine for a status change."""
    complaint: Complaint
    mutation: ComplaintMutation
    previous_status: ComplaintStatus
    event: Optional[NotificationEvent] = None

    @property
    def changed(self) -> bool:
        return not self.mutation.is_empty


@dataclass
class CycleItemError:
    """Per-complaint failure recorded by an escalation cycle."""
    complaint_id: str
    error_code: str
    message: str


@dataclass
class CycleReport:
    """Summary of one escalation cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    escalated: int = 0
    warned: int = 0
    skipped: int = 0
    failed: int = 0
    stopped_early: bool = False
    errors: List[CycleItemError] = field(default_factory=list)

    def record_failure(self, complaint_id: str, error_code: str, message: str) -> None:
        self.failed += 1
        self.errors.append(CycleItemError(complaint_id, error_code, message))

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": self.scanned,
            "escalated": self.escalated,
            "warned": self.warned,
            "skipped": self.skipped,
            "failed": self.failed,
            "stopped_early": self.stopped_early,
            "errors": [
                {"complaint_id": e.complaint_id, "error_code": e.error_code, "message": e.message}
                for e in self.errors
            ],
        }
