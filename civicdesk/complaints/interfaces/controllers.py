"""
Complaint Controllers (API Routes)
==================================

FastAPI routes for the complaint lifecycle.

Controllers are thin - they delegate to application services, which are
built once at startup and stored on ``app.state``. Domain exceptions
propagate to the handlers registered in ``civicdesk.shared.api.middleware``.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from civicdesk.config import ComplaintType, Priority
from civicdesk.complaints.application import (
    AssignRequest,
    ComplaintDraft,
    ComplaintLifecycleService,
    ComplaintListResponse,
    ComplaintResponse,
    CycleReportResponse,
    EscalationService,
    PublicSummaryResponse,
    SLAStatusResponse,
    StaffProfileCreate,
    StaffProfileResponse,
    TransitionRequest,
)
from civicdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Complaints"])


# ========== Example payloads for Swagger ==========

COMPLAINT_CREATE_EXAMPLE = {
    "title": "Burst pipe on Elm Street",
    "description": "Water has been leaking onto the sidewalk since this morning.",
    "type": "Water Leakage",
    "priority": "HIGH",
    "reporter_id": "citizen-42",
    "location": {"city": "Wondervale", "address": "12 Elm Street"},
}

CYCLE_REPORT_EXAMPLE = {
    "started_at": "2024-01-15T10:00:00Z",
    "finished_at": "2024-01-15T10:00:01Z",
    "scanned": 12,
    "escalated": 1,
    "warned": 3,
    "skipped": 8,
    "failed": 0,
    "stopped_early": False,
    "errors": [],
}


# ========== Dependencies ==========

def get_lifecycle_service(request: Request) -> ComplaintLifecycleService:
    """Lifecycle service built in the application lifespan."""
    return request.app.state.lifecycle_service


def get_escalation_service(request: Request) -> EscalationService:
    """Escalation service built in the application lifespan."""
    return request.app.state.escalation_service


# ========== Complaints ==========

@router.post(
    "/complaints",
    response_model=ComplaintResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a complaint",
    description="""
    Create a complaint and try to auto-assign it.

    The due date is fixed at creation (`created_at + sla_hours`). When a
    staff member in the same city has a matching profession the complaint
    is assigned and moves to `IN_PROGRESS`; otherwise it stays `OPEN`.
    """,
    responses={201: {"content": {"application/json": {"example": COMPLAINT_CREATE_EXAMPLE}}}},
)
async def create_complaint(
    draft: ComplaintDraft,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    complaint = await service.create_and_maybe_assign(draft)
    return ComplaintResponse.from_domain(complaint)


@router.get(
    "/complaints",
    response_model=ComplaintListResponse,
    summary="List complaints",
)
async def list_complaints(
    complaint_status: Optional[List[str]] = Query(None, alias="status", description="Filter by status (repeatable)"),
    city: Optional[str] = Query(None, description="Filter by city (case-insensitive)"),
    complaint_type: Optional[ComplaintType] = Query(None, alias="type", description="Filter by complaint type"),
    priority: Optional[Priority] = Query(None, description="Filter by priority"),
    assigned_to: Optional[str] = Query(None, description="Filter by assignee"),
    reporter_id: Optional[str] = Query(None, description="Filter by reporter"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    filters = {}
    if complaint_status:
        filters["status"] = complaint_status
    if city:
        filters["city"] = city
    if complaint_type:
        filters["type"] = complaint_type
    if priority:
        filters["priority"] = priority
    if assigned_to:
        filters["assigned_to"] = assigned_to
    if reporter_id:
        filters["reporter_id"] = reporter_id

    complaints = await service.list_complaints(filters, limit=limit, offset=offset)
    return ComplaintListResponse(
        complaints=[ComplaintResponse.from_domain(c) for c in complaints],
        count=len(complaints),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/complaints/summary",
    response_model=PublicSummaryResponse,
    summary="Public transparency summary",
    description="Totals, counts per status, overdue count, resolution rate and the latest complaints.",
)
async def get_public_summary(
    recent: int = Query(5, ge=0, le=50, description="Number of recent complaints"),
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    return PublicSummaryResponse(**await service.public_summary(recent=recent))


@router.get(
    "/complaints/{complaint_id}",
    response_model=ComplaintResponse,
    summary="Get a complaint with its audit logs",
    responses={404: {"description": "Complaint not found"}},
)
async def get_complaint(
    complaint_id: str,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    return ComplaintResponse.from_domain(await service.get_complaint(complaint_id))


@router.get(
    "/complaints/{complaint_id}/sla",
    response_model=SLAStatusResponse,
    summary="Get the SLA position of a complaint",
    description="""
    **SLA Bands:**
    - `ON_TRACK`: less than the warning share of the window consumed
    - `WARNING`: past the warning share, deadline not yet reached
    - `BREACHED`: deadline reached or passed
    """,
    responses={404: {"description": "Complaint not found"}},
)
async def get_complaint_sla(
    complaint_id: str,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    return SLAStatusResponse.from_domain(await service.sla_status(complaint_id))


@router.post(
    "/complaints/{complaint_id}/transition",
    response_model=ComplaintResponse,
    summary="Change complaint status",
    description="""
    Allowed transitions: `OPEN -> IN_PROGRESS | ESCALATED`,
    `IN_PROGRESS -> ESCALATED | RESOLVED`, `ESCALATED -> RESOLVED`.
    `RESOLVED` is terminal. Requesting the current status is a no-op.
    """,
    responses={
        404: {"description": "Complaint not found"},
        409: {"description": "Complaint changed concurrently, re-read and retry"},
        422: {"description": "Unknown status or transition not allowed"},
    },
)
async def transition_complaint(
    complaint_id: str,
    body: TransitionRequest,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    complaint = await service.transition(complaint_id, body.status, body.actor, body.notes)
    return ComplaintResponse.from_domain(complaint)


@router.post(
    "/complaints/{complaint_id}/assign",
    response_model=ComplaintResponse,
    summary="Assign a complaint to a staff member",
    responses={
        404: {"description": "Complaint not found"},
        409: {"description": "Complaint changed concurrently, re-read and retry"},
        422: {"description": "Staff member not eligible or complaint already resolved"},
    },
)
async def assign_complaint(
    complaint_id: str,
    body: AssignRequest,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    complaint = await service.assign(complaint_id, body.staff_id, body.actor, body.notes)
    return ComplaintResponse.from_domain(complaint)


# ========== Staff directory ==========

@router.post(
    "/staff",
    response_model=StaffProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a staff member",
    tags=["Staff"],
)
async def register_staff(
    body: StaffProfileCreate,
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    staff = await service.register_staff(body)
    return StaffProfileResponse(
        id=staff.id,
        full_name=staff.full_name,
        profession=staff.profession,
        city=staff.city,
        email=staff.email,
        is_active=staff.is_active,
    )


@router.get(
    "/staff",
    response_model=List[StaffProfileResponse],
    summary="List staff in a city",
    tags=["Staff"],
)
async def list_staff(
    city: str = Query(..., min_length=1, description="City (case-insensitive)"),
    service: ComplaintLifecycleService = Depends(get_lifecycle_service),
):
    return [
        StaffProfileResponse(
            id=s.id,
            full_name=s.full_name,
            profession=s.profession,
            city=s.city,
            email=s.email,
            is_active=s.is_active,
        )
        for s in await service.staff_in_city(city)
    ]


# ========== Escalation ==========

@router.post(
    "/escalations/run",
    response_model=CycleReportResponse,
    summary="Run one escalation cycle now",
    tags=["Escalation"],
    responses={200: {"content": {"application/json": {"example": CYCLE_REPORT_EXAMPLE}}}},
)
async def run_escalation_cycle(
    service: EscalationService = Depends(get_escalation_service),
):
    report = await service.run_escalation_cycle()
    return CycleReportResponse(**report.to_dict())


# Export router for inclusion in main app
complaints_router = router
