"""Tests for ComplaintLifecycleService: intake, transitions, assignment."""

from datetime import timedelta

import pytest

from civicdesk.config import AUTO_ASSIGN_ACTOR, ComplaintStatus, ComplaintType, NotificationKind, Profession
from civicdesk.core import (
    ConcurrentModificationException,
    IneligibleStaff,
    InvalidTransition,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from civicdesk.complaints.application import (
    ComplaintDraft,
    ComplaintLifecycleService,
    StaffProfileCreate,
    UpdateResult,
    UpdateStatus,
)
from civicdesk.complaints.domain import ComplaintMutation, StaffProfile, StatusHistoryEntry
from civicdesk.complaints.infrastructure import InMemoryComplaintStore

from tests.conftest import T0

pytestmark = pytest.mark.unit


def draft(complaint_type=ComplaintType.WATER_LEAKAGE, city="Wondervale", sla_hours=10, reporter_id="citizen-1"):
    return ComplaintDraft(
        title="Leaking hydrant",
        description="Water everywhere on Main Street",
        type=complaint_type,
        reporter_id=reporter_id,
        location={"city": city, "address": "1 Main Street"},
        sla_hours=sla_hours,
    )


class DirectoryDownStore(InMemoryComplaintStore):
    async def find_staff_by_city(self, city):
        raise RepositoryException("directory offline")


class ContendedStore(InMemoryComplaintStore):
    """Every conditional update loses, and re-reads fail."""

    async def update_complaint(self, complaint_id, expected_version, mutation):
        return UpdateResult(UpdateStatus.CONFLICT, await super().get_complaint(complaint_id))

    async def get_complaint(self, complaint_id):
        raise RepositoryException("store down")


class InterferingStore(InMemoryComplaintStore):
    """Applies a competing update right before the first conditional update."""

    def __init__(self, competing: ComplaintMutation, **kwargs):
        super().__init__(**kwargs)
        self._competing = competing

    async def update_complaint(self, complaint_id, expected_version, mutation):
        if self._competing is not None:
            competing, self._competing = self._competing, None
            await super().update_complaint(complaint_id, expected_version, competing)
        return await super().update_complaint(complaint_id, expected_version, mutation)


# ========== Intake ==========

@pytest.mark.asyncio
async def test_create_auto_assigns_matching_staff(lifecycle_service, dispatcher, plumber):
    complaint = await lifecycle_service.create_and_maybe_assign(draft())

    assert complaint.status == ComplaintStatus.IN_PROGRESS
    assert complaint.assigned_to == plumber.id
    assert complaint.created_at == T0
    assert complaint.due_at == T0 + timedelta(hours=10)
    assert [e.status for e in complaint.status_history] == [ComplaintStatus.OPEN, ComplaintStatus.IN_PROGRESS]
    assert len(complaint.assignment_history) == 1
    assert complaint.assignment_history[0].actor == AUTO_ASSIGN_ACTOR
    assert complaint.version == 2

    assigned = dispatcher.of_kind(NotificationKind.ASSIGNED)
    assert assigned[0][0] == [plumber.id]
    changed = dispatcher.of_kind(NotificationKind.STATUS_CHANGED)
    assert changed[0][0] == ["citizen-1"]


@pytest.mark.asyncio
async def test_create_without_qualified_staff_stays_open(lifecycle_service, dispatcher):
    complaint = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))

    assert complaint.status == ComplaintStatus.OPEN
    assert complaint.assigned_to is None
    assert len(complaint.status_history) == 1
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_create_in_city_without_staff_stays_open(lifecycle_service):
    complaint = await lifecycle_service.create_and_maybe_assign(draft(city="Nowhere"))

    assert complaint.status == ComplaintStatus.OPEN
    assert complaint.assigned_to is None


@pytest.mark.asyncio
async def test_create_uses_policy_default_sla(lifecycle_service):
    complaint = await lifecycle_service.create_and_maybe_assign(draft(sla_hours=None))

    assert complaint.sla_hours == 48
    assert complaint.due_at == T0 + timedelta(hours=48)


@pytest.mark.asyncio
async def test_directory_failure_leaves_complaint_open(dispatcher, config_provider, clock, plumber):
    service = ComplaintLifecycleService(
        DirectoryDownStore(staff=[plumber]), dispatcher, config_provider, clock=clock, store_timeout=1
    )

    complaint = await service.create_and_maybe_assign(draft())

    assert complaint.status == ComplaintStatus.OPEN
    assert (await service.get_complaint(complaint.id)).status == ComplaintStatus.OPEN


@pytest.mark.asyncio
async def test_failed_reread_after_lost_assignment_returns_created_complaint(
    dispatcher, config_provider, clock, plumber
):
    store = ContendedStore(staff=[plumber])
    service = ComplaintLifecycleService(
        store, dispatcher, config_provider, clock=clock, store_timeout=1, conflict_retries=1
    )

    complaint = await service.create_and_maybe_assign(draft())

    assert complaint.status == ComplaintStatus.OPEN
    assert complaint.assigned_to is None
    assert [c.id for c in await store.list_complaints({})] == [complaint.id]


def test_draft_rejects_bad_input():
    with pytest.raises(ValueError):
        draft(sla_hours=0)
    with pytest.raises(ValueError):
        draft(city="   ")
    with pytest.raises(ValueError):
        ComplaintDraft(title="t", description="d", type="Alien Invasion", location={"city": "Wondervale"})


# ========== Transitions ==========

@pytest.mark.asyncio
async def test_manual_transitions_follow_the_table(lifecycle_service, clock):
    created = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))

    in_progress = await lifecycle_service.transition(created.id, "IN_PROGRESS", "admin-1")
    assert in_progress.status == ComplaintStatus.IN_PROGRESS

    clock.advance(hours=2)
    resolved = await lifecycle_service.transition(created.id, "resolved", "admin-1", notes="fixed")
    assert resolved.status == ComplaintStatus.RESOLVED
    assert resolved.resolved_at == T0 + timedelta(hours=2)
    assert resolved.status_history[-1].notes == "fixed"

    with pytest.raises(InvalidTransition):
        await lifecycle_service.transition(created.id, ComplaintStatus.OPEN, "admin-1")

    stored = await lifecycle_service.get_complaint(created.id)
    assert len(stored.status_history) == 3


@pytest.mark.asyncio
async def test_open_to_resolved_is_rejected(lifecycle_service):
    created = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))

    with pytest.raises(InvalidTransition):
        await lifecycle_service.transition(created.id, "RESOLVED", "admin-1")


@pytest.mark.asyncio
async def test_self_transition_returns_unchanged_record(lifecycle_service, dispatcher):
    created = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))

    same = await lifecycle_service.transition(created.id, "OPEN", "admin-1")

    assert same.version == created.version
    assert len(same.status_history) == 1
    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_unknown_status_is_a_validation_fault(lifecycle_service):
    created = await lifecycle_service.create_and_maybe_assign(draft())

    with pytest.raises(ValidationException) as exc_info:
        await lifecycle_service.transition(created.id, "DONE", "admin-1")

    assert exc_info.value.code == "unknown_status"


@pytest.mark.asyncio
async def test_transition_of_missing_complaint(lifecycle_service):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle_service.transition("missing", "RESOLVED", "admin-1")


@pytest.mark.asyncio
async def test_manual_escalation_bumps_level(lifecycle_service, dispatcher):
    created = await lifecycle_service.create_and_maybe_assign(draft())

    escalated = await lifecycle_service.transition(created.id, "ESCALATED", "admin-1")

    assert escalated.status == ComplaintStatus.ESCALATED
    assert escalated.escalation_level == 1
    sent = dispatcher.of_kind(NotificationKind.SLA_ESCALATION)
    assert sent[0][0] == ["citizen-1", "staff-plumber"]


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition(lifecycle_service, dispatcher):
    created = await lifecycle_service.create_and_maybe_assign(draft())
    dispatcher.fail = True

    resolved = await lifecycle_service.transition(created.id, "RESOLVED", "staff-plumber")

    assert resolved.status == ComplaintStatus.RESOLVED
    assert (await lifecycle_service.get_complaint(created.id)).status == ComplaintStatus.RESOLVED


@pytest.mark.asyncio
async def test_lost_race_surfaces_as_conflict(make_complaint, dispatcher, config_provider, clock):
    competing = ComplaintMutation(
        status=ComplaintStatus.ESCALATED,
        escalation_level=1,
        status_entries=[StatusHistoryEntry(ComplaintStatus.ESCALATED, "system-sla-monitor", T0)],
    )
    store = InterferingStore(competing)
    await store.create_complaint(make_complaint(status=ComplaintStatus.IN_PROGRESS, assigned_to="staff-plumber"))
    service = ComplaintLifecycleService(store, dispatcher, config_provider, clock=clock)

    with pytest.raises(ConcurrentModificationException) as exc_info:
        await service.transition("c-1", "RESOLVED", "staff-plumber")

    assert exc_info.value.retryable
    stored = await store.get_complaint("c-1")
    assert stored.status == ComplaintStatus.ESCALATED
    assert stored.resolved_at is None


# ========== Assignment ==========

@pytest.mark.asyncio
async def test_assign_open_complaint_moves_it_in_progress(lifecycle_service, dispatcher, plumber):
    created = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))

    assigned = await lifecycle_service.assign(created.id, plumber.id, "admin-1", notes="nearest crew")

    assert assigned.status == ComplaintStatus.IN_PROGRESS
    assert assigned.assigned_to == plumber.id
    assert assigned.assignment_history[-1].actor == "admin-1"
    assert dispatcher.of_kind(NotificationKind.ASSIGNED)[0][0] == [plumber.id]


@pytest.mark.asyncio
async def test_reassign_keeps_status(lifecycle_service, electrician):
    created = await lifecycle_service.create_and_maybe_assign(draft())
    assert created.status == ComplaintStatus.IN_PROGRESS

    reassigned = await lifecycle_service.assign(created.id, electrician.id, "admin-1")

    assert reassigned.status == ComplaintStatus.IN_PROGRESS
    assert reassigned.assigned_to == electrician.id
    assert len(reassigned.assignment_history) == 2
    assert len(reassigned.status_history) == len(created.status_history)


@pytest.mark.asyncio
async def test_assign_same_staff_is_a_noop(lifecycle_service, plumber):
    created = await lifecycle_service.create_and_maybe_assign(draft())

    same = await lifecycle_service.assign(created.id, plumber.id, "admin-1")

    assert same.version == created.version


@pytest.mark.asyncio
async def test_assign_rejects_ineligible_staff(lifecycle_service, store, remote_plumber):
    created = await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))
    await store.add_staff(StaffProfile(
        id="staff-retired", full_name="Retired", profession=Profession.PLUMBER, city="Wondervale", is_active=False
    ))

    for staff_id in ("no-such-staff", "staff-retired", remote_plumber.id):
        with pytest.raises(IneligibleStaff):
            await lifecycle_service.assign(created.id, staff_id, "admin-1")

    stored = await lifecycle_service.get_complaint(created.id)
    assert stored.assigned_to is None
    assert stored.status == ComplaintStatus.OPEN


@pytest.mark.asyncio
async def test_assign_resolved_complaint_is_rejected(lifecycle_service, electrician):
    created = await lifecycle_service.create_and_maybe_assign(draft())
    await lifecycle_service.transition(created.id, "RESOLVED", "staff-plumber")

    with pytest.raises(InvalidTransition):
        await lifecycle_service.assign(created.id, electrician.id, "admin-1")


# ========== Queries ==========

@pytest.mark.asyncio
async def test_sla_status_bands(lifecycle_service, clock):
    created = await lifecycle_service.create_and_maybe_assign(draft(sla_hours=10))

    clock.advance(hours=8)
    sla = await lifecycle_service.sla_status(created.id)
    assert sla.ratio == pytest.approx(0.8)
    assert sla.band.value == "WARNING"
    assert sla.remaining_seconds == 2 * 3600

    clock.advance(hours=3)
    assert (await lifecycle_service.sla_status(created.id)).is_breached


@pytest.mark.asyncio
async def test_sla_status_freezes_at_resolution(lifecycle_service, clock):
    created = await lifecycle_service.create_and_maybe_assign(draft(sla_hours=10))
    clock.advance(hours=5)
    await lifecycle_service.transition(created.id, "RESOLVED", "staff-plumber")

    clock.advance(hours=100)
    sla = await lifecycle_service.sla_status(created.id)

    assert sla.ratio == pytest.approx(0.5)
    assert not sla.is_breached


@pytest.mark.asyncio
async def test_list_filters_by_status_and_city(lifecycle_service):
    assigned = await lifecycle_service.create_and_maybe_assign(draft())
    await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI))
    await lifecycle_service.create_and_maybe_assign(draft(city="Springfield", complaint_type=ComplaintType.GRAFFITI))

    in_progress = await lifecycle_service.list_complaints({"status": ["in_progress"]})
    assert [c.id for c in in_progress] == [assigned.id]

    wondervale = await lifecycle_service.list_complaints({"city": "WONDERVALE"})
    assert len(wondervale) == 2

    with pytest.raises(ValidationException):
        await lifecycle_service.list_complaints({"status": "bogus"})


@pytest.mark.asyncio
async def test_public_summary(lifecycle_service, clock):
    first = await lifecycle_service.create_and_maybe_assign(draft(sla_hours=10))
    await lifecycle_service.create_and_maybe_assign(draft(complaint_type=ComplaintType.GRAFFITI, sla_hours=10))
    clock.advance(hours=4)
    await lifecycle_service.transition(first.id, "RESOLVED", "staff-plumber")
    clock.advance(hours=8)

    summary = await lifecycle_service.public_summary()

    assert summary["totals"] == 2
    assert summary["status_counts"]["RESOLVED"] == 1
    assert summary["status_counts"]["OPEN"] == 1
    assert summary["overdue_count"] == 1
    assert summary["resolved_rate"] == pytest.approx(50.0)
    assert summary["average_resolution_hours"] == pytest.approx(4.0)
    assert len(summary["recent_complaints"]) == 2


@pytest.mark.asyncio
async def test_registered_staff_is_used_for_auto_assignment(lifecycle_service):
    staff = await lifecycle_service.register_staff(StaffProfileCreate(
        full_name="Ada Mechanic", profession=Profession.MECHANIC, city="Springfield"
    ))

    complaint = await lifecycle_service.create_and_maybe_assign(
        draft(complaint_type=ComplaintType.ABANDONED_VEHICLE, city="springfield")
    )

    assert complaint.assigned_to == staff.id
    assert [s.id for s in await lifecycle_service.staff_in_city("Springfield")][-1] == staff.id
