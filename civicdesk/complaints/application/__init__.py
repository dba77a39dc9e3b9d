"""
Complaint Application Layer
===========================

Application layer for the complaint lifecycle module.

Contains:
- Services: Orchestrate business logic and coordinate with the store
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and the store/dispatcher interfaces,
but not on concrete infrastructure implementations.
"""

from civicdesk.complaints.application.dto import (
    AssignRequest,
    AssignmentHistoryResponse,
    ComplaintDraft,
    ComplaintListResponse,
    ComplaintResponse,
    CycleItemErrorResponse,
    CycleReportResponse,
    LocationDTO,
    NotificationPayload,
    PublicSummaryResponse,
    RecentComplaint,
    SLAStatusResponse,
    StaffProfileCreate,
    StaffProfileResponse,
    StatusHistoryResponse,
    TransitionRequest,
)
from civicdesk.complaints.application.services import (
    ComplaintLifecycleService,
    EscalationService,
    IComplaintStore,
    ILifecycleConfigProvider,
    INotificationDispatcher,
    StaticConfigProvider,
    UpdateResult,
    UpdateStatus,
    parse_status,
    utc_now,
)

__all__ = [
    # DTOs
    "AssignRequest",
    "AssignmentHistoryResponse",
    "ComplaintDraft",
    "ComplaintListResponse",
    "ComplaintResponse",
    "CycleItemErrorResponse",
    "CycleReportResponse",
    "LocationDTO",
    "NotificationPayload",
    "PublicSummaryResponse",
    "RecentComplaint",
    "SLAStatusResponse",
    "StaffProfileCreate",
    "StaffProfileResponse",
    "StatusHistoryResponse",
    "TransitionRequest",
    # Services
    "ComplaintLifecycleService",
    "EscalationService",
    # Interfaces
    "IComplaintStore",
    "ILifecycleConfigProvider",
    "INotificationDispatcher",
    "StaticConfigProvider",
    "UpdateResult",
    "UpdateStatus",
    "parse_status",
    "utc_now",
]
