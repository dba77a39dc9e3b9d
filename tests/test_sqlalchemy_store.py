"""Tests for SQLAlchemyComplaintStore against a SQLite database."""

from datetime import timedelta, timezone

import pytest

from civicdesk.config import ComplaintStatus, ComplaintType, Priority
from civicdesk.core import InvariantViolation
from civicdesk.complaints.application import (
    ComplaintDraft,
    ComplaintLifecycleService,
    EscalationService,
    UpdateStatus,
)
from civicdesk.complaints.domain import ComplaintMutation, StatusHistoryEntry
from civicdesk.complaints.infrastructure import SQLAlchemyComplaintStore
from civicdesk.infrastructure.database import close_database, create_tables, get_session_maker, init_database

from tests.conftest import T0

pytestmark = pytest.mark.integration


@pytest.fixture
async def sql_store(tmp_path, electrician, plumber, remote_plumber):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'civic_desk.db'}")
    await create_tables()
    store = SQLAlchemyComplaintStore(get_session_maker())
    for staff in (electrician, plumber, remote_plumber):
        await store.add_staff(staff)
    yield store
    await close_database()


def resolve_mutation(at):
    return ComplaintMutation(
        status=ComplaintStatus.RESOLVED,
        resolved_at=at,
        updated_at=at,
        status_entries=[StatusHistoryEntry(ComplaintStatus.RESOLVED, "staff-plumber", at, "fixed")],
    )


@pytest.mark.asyncio
async def test_create_and_read_back(sql_store, make_complaint):
    original = make_complaint(status=ComplaintStatus.IN_PROGRESS)

    await sql_store.create_complaint(original)
    stored = await sql_store.get_complaint("c-1")

    assert stored.id == original.id
    assert stored.type == ComplaintType.WATER_LEAKAGE
    assert stored.created_at == T0
    assert stored.created_at.tzinfo is not None
    assert stored.due_at == T0 + timedelta(hours=10)
    assert stored.version == 1
    assert [e.status for e in stored.status_history] == [ComplaintStatus.OPEN]
    assert await sql_store.get_complaint("missing") is None


@pytest.mark.asyncio
async def test_conditional_update(sql_store, make_complaint):
    await sql_store.create_complaint(make_complaint(status=ComplaintStatus.IN_PROGRESS))
    at = T0 + timedelta(hours=2)

    result = await sql_store.update_complaint("c-1", 1, resolve_mutation(at))

    assert result.status == UpdateStatus.SUCCESS
    assert result.complaint.version == 2
    assert result.complaint.status == ComplaintStatus.RESOLVED
    assert result.complaint.resolved_at == at
    assert result.complaint.resolved_at.tzinfo == timezone.utc
    assert [e.status for e in result.complaint.status_history] == [ComplaintStatus.OPEN, ComplaintStatus.RESOLVED]
    assert result.complaint.status_history[-1].notes == "fixed"


@pytest.mark.asyncio
async def test_stale_version_conflicts_and_changes_nothing(sql_store, make_complaint):
    await sql_store.create_complaint(make_complaint(status=ComplaintStatus.IN_PROGRESS))
    await sql_store.update_complaint("c-1", 1, ComplaintMutation(priority=Priority.HIGH))

    result = await sql_store.update_complaint("c-1", 1, resolve_mutation(T0 + timedelta(hours=1)))

    assert result.status == UpdateStatus.CONFLICT
    stored = await sql_store.get_complaint("c-1")
    assert stored.status == ComplaintStatus.IN_PROGRESS
    assert stored.priority == Priority.HIGH
    assert stored.version == 2
    assert len(stored.status_history) == 1


@pytest.mark.asyncio
async def test_update_of_missing_complaint(sql_store):
    result = await sql_store.update_complaint("missing", 1, ComplaintMutation(priority=Priority.LOW))

    assert result.status == UpdateStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_resolved_at_cannot_move(sql_store, make_complaint):
    await sql_store.create_complaint(make_complaint(status=ComplaintStatus.IN_PROGRESS))
    first = T0 + timedelta(hours=1)
    await sql_store.update_complaint("c-1", 1, resolve_mutation(first))

    with pytest.raises(InvariantViolation):
        await sql_store.update_complaint("c-1", 2, ComplaintMutation(resolved_at=first + timedelta(hours=1)))

    stored = await sql_store.get_complaint("c-1")
    assert stored.resolved_at == first
    assert stored.version == 2


@pytest.mark.asyncio
async def test_queries(sql_store, make_complaint):
    await sql_store.create_complaint(make_complaint("late", sla_hours=5))
    await sql_store.create_complaint(make_complaint("early", sla_hours=2, created_at=T0 + timedelta(hours=1)))
    await sql_store.create_complaint(make_complaint("elsewhere", city="Springfield", sla_hours=8))
    await sql_store.create_complaint(make_complaint(
        "done", status=ComplaintStatus.RESOLVED, resolved_at=T0 + timedelta(hours=1)
    ))

    active = await sql_store.find_active_complaints()
    assert [c.id for c in active] == ["early", "late", "elsewhere"]

    wondervale = await sql_store.list_complaints({"city": "wondervale"})
    assert {c.id for c in wondervale} == {"late", "early", "done"}
    assert wondervale[0].id == "early"

    resolved = await sql_store.list_complaints({"status": [ComplaintStatus.RESOLVED]})
    assert [c.id for c in resolved] == ["done"]

    page = await sql_store.list_complaints({}, limit=2, offset=1)
    assert len(page) == 2

    counts = await sql_store.count_by_status()
    assert counts == {ComplaintStatus.OPEN: 3, ComplaintStatus.RESOLVED: 1}


@pytest.mark.asyncio
async def test_staff_directory_lookup_is_case_insensitive(sql_store, plumber, electrician):
    staff = await sql_store.find_staff_by_city("WONDERVALE")

    assert {s.id for s in staff} == {plumber.id, electrician.id}
    assert (await sql_store.get_staff(plumber.id)).profession == plumber.profession
    assert await sql_store.get_staff("nobody") is None


@pytest.mark.asyncio
async def test_lifecycle_end_to_end(sql_store, dispatcher, config_provider, clock, plumber):
    lifecycle = ComplaintLifecycleService(sql_store, dispatcher, config_provider, clock=clock)
    escalation = EscalationService(sql_store, dispatcher, config_provider, clock=clock, conflict_retries=1)

    created = await lifecycle.create_and_maybe_assign(ComplaintDraft(
        title="Broken pipe",
        description="Pipe burst under the bridge",
        type=ComplaintType.BROKEN_PIPE,
        reporter_id="citizen-9",
        location={"city": "Wondervale"},
        sla_hours=10,
    ))
    assert created.status == ComplaintStatus.IN_PROGRESS
    assert created.assigned_to == plumber.id

    clock.advance(hours=10.5)
    report = await escalation.run_escalation_cycle()
    assert report.escalated == 1

    clock.advance(hours=1)
    resolved = await lifecycle.transition(created.id, "RESOLVED", plumber.id)
    assert resolved.escalation_level == 1
    assert [e.status for e in resolved.status_history] == [
        ComplaintStatus.OPEN,
        ComplaintStatus.IN_PROGRESS,
        ComplaintStatus.ESCALATED,
        ComplaintStatus.RESOLVED,
    ]
    assert resolved.version == 4
