"""
Complaint Application DTOs
==========================

Data Transfer Objects for the complaint API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Unknown enum values are rejected here, at
the boundary, before anything reaches the matcher or the state machine.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from civicdesk.config import ComplaintStatus, ComplaintType, NotificationKind, Priority, Profession, SLABand


# ========== Request DTOs ==========

class LocationDTO(BaseModel):
    """Location of the reported issue."""
    city: str = Field(..., min_length=1, description="City (drives staff assignment)")
    address: Optional[str] = Field(None, description="Street address")
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @field_validator("city")
    @classmethod
    def strip_city(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("city cannot be blank")
        return v


class ComplaintDraft(BaseModel):
    """DTO for submitting a new complaint."""
    title: str = Field(..., min_length=1, max_length=200, description="Short summary")
    description: str = Field(..., min_length=1, description="Full description")
    type: ComplaintType = Field(default=ComplaintType.OTHER, description="Issue category")
    priority: Priority = Field(default=Priority.MEDIUM, description="Complaint priority")
    reporter_id: Optional[str] = Field(None, description="Reporting citizen")
    location: LocationDTO
    sla_hours: Optional[float] = Field(
        None,
        gt=0,
        description="SLA override in hours (policy default when omitted)"
    )

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TransitionRequest(BaseModel):
    """Request to move a complaint to another status."""
    status: str = Field(..., description="Target status (OPEN, IN_PROGRESS, ESCALATED, RESOLVED)")
    actor: str = Field(..., min_length=1, description="Acting staff or admin identity")
    notes: Optional[str] = Field(None, max_length=2000)


class AssignRequest(BaseModel):
    """Request to assign a complaint to a staff member."""
    staff_id: str = Field(..., min_length=1)
    actor: str = Field(..., min_length=1, description="Acting admin identity")
    notes: Optional[str] = Field(None, max_length=2000)


class StaffProfileCreate(BaseModel):
    """DTO for registering a staff member in the directory."""
    full_name: str = Field(..., min_length=1)
    profession: Profession
    city: str = Field(..., min_length=1)
    email: Optional[str] = None
    is_active: bool = True


# ========== Response DTOs ==========

class StatusHistoryResponse(BaseModel):
    status: ComplaintStatus
    actor: Optional[str]
    notes: Optional[str] = None
    timestamp: datetime


class AssignmentHistoryResponse(BaseModel):
    assignee_id: str
    actor: Optional[str]
    notes: Optional[str] = None
    timestamp: datetime


class ComplaintResponse(BaseModel):
    """Response model for a complaint with its audit logs."""
    id: str
    title: str
    description: str
    type: ComplaintType
    priority: Priority
    status: ComplaintStatus
    reporter_id: Optional[str]
    assigned_to: Optional[str]
    location: LocationDTO
    sla_hours: float
    created_at: datetime
    updated_at: Optional[datetime]
    due_at: datetime
    resolved_at: Optional[datetime]
    escalation_level: int
    version: int
    status_history: List[StatusHistoryResponse] = Field(default_factory=list)
    assignment_history: List[AssignmentHistoryResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, complaint) -> "ComplaintResponse":
        """Create from domain entity."""
        loc = complaint.location
        return cls(
            id=complaint.id,
            title=complaint.title,
            description=complaint.description,
            type=complaint.type,
            priority=complaint.priority,
            status=complaint.status,
            reporter_id=complaint.reporter_id,
            assigned_to=complaint.assigned_to,
            location=LocationDTO(
                city=loc.city,
                address=loc.address,
                state=loc.state,
                postal_code=loc.postal_code,
                country=loc.country,
                latitude=loc.latitude,
                longitude=loc.longitude,
            ),
            sla_hours=complaint.sla_hours,
            created_at=complaint.created_at,
            updated_at=complaint.updated_at,
            due_at=complaint.due_at,
            resolved_at=complaint.resolved_at,
            escalation_level=complaint.escalation_level,
            version=complaint.version,
            status_history=[
                StatusHistoryResponse(status=e.status, actor=e.actor, notes=e.notes, timestamp=e.timestamp)
                for e in complaint.status_history
            ],
            assignment_history=[
                AssignmentHistoryResponse(
                    assignee_id=e.assignee_id, actor=e.actor, notes=e.notes, timestamp=e.timestamp
                )
                for e in complaint.assignment_history
            ],
        )


class ComplaintListResponse(BaseModel):
    complaints: List[ComplaintResponse]
    count: int = Field(..., description="Number of complaints in this page")
    limit: int
    offset: int


class StaffProfileResponse(BaseModel):
    id: str
    full_name: str
    profession: Profession
    city: str
    email: Optional[str] = None
    is_active: bool = True


class SLAStatusResponse(BaseModel):
    """Response model for the SLA position of one complaint."""
    complaint_id: str
    created_at: datetime
    due_at: datetime
    evaluated_at: datetime
    ratio: Optional[float] = Field(None, description="Share of the SLA window consumed")
    band: SLABand
    remaining_seconds: float
    is_breached: bool

    @classmethod
    def from_domain(cls, sla_status) -> "SLAStatusResponse":
        return cls(
            complaint_id=sla_status.complaint_id,
            created_at=sla_status.created_at,
            due_at=sla_status.due_at,
            evaluated_at=sla_status.evaluated_at,
            ratio=sla_status.ratio,
            band=sla_status.band,
            remaining_seconds=sla_status.remaining_seconds,
            is_breached=sla_status.is_breached,
        )


class CycleItemErrorResponse(BaseModel):
    complaint_id: str
    error_code: str
    message: str


class CycleReportResponse(BaseModel):
    """Response model for one escalation cycle."""
    started_at: datetime
    finished_at: Optional[datetime]
    scanned: int
    escalated: int
    warned: int
    skipped: int
    failed: int
    stopped_early: bool = False
    errors: List[CycleItemErrorResponse] = Field(default_factory=list)


class RecentComplaint(BaseModel):
    id: str
    title: str
    type: ComplaintType
    priority: Priority
    status: ComplaintStatus
    city: str
    created_at: datetime


class PublicSummaryResponse(BaseModel):
    """Transparency portal summary."""
    totals: int
    status_counts: Dict[str, int]
    overdue_count: int = Field(..., description="Active complaints past their deadline")
    resolved_rate: float = Field(..., description="Percentage of complaints resolved")
    average_resolution_hours: float
    recent_complaints: List[RecentComplaint] = Field(default_factory=list)


class NotificationPayload(BaseModel):
    """Body posted by the webhook notification dispatcher."""
    recipients: List[str]
    kind: NotificationKind
    complaint_id: str
    subject: Optional[str] = None
    message: str
    metadata: Dict = Field(default_factory=dict)
    sent_at: datetime
