"""Shared test fixtures for all test groups."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from civicdesk.config import ComplaintStatus, ComplaintType, NotificationKind, Profession
from civicdesk.complaints.application import (
    ComplaintLifecycleService,
    EscalationService,
    INotificationDispatcher,
    StaticConfigProvider,
)
from civicdesk.complaints.domain import (
    Complaint,
    LifecycleConfig,
    Location,
    NotificationEvent,
    StaffProfile,
    StatusHistoryEntry,
)
from civicdesk.complaints.infrastructure import InMemoryComplaintStore

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher(INotificationDispatcher):
    """Dispatcher fake that records every call; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.calls: List[tuple] = []
        self.fail = fail

    async def notify(self, recipients: List[str], event: NotificationEvent) -> None:
        if self.fail:
            raise RuntimeError("mail relay unreachable")
        self.calls.append((list(recipients), event))

    def of_kind(self, kind: NotificationKind) -> List[tuple]:
        return [(r, e) for r, e in self.calls if e.kind == kind]


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def plumber():
    return StaffProfile(id="staff-plumber", full_name="Mario Rossi", profession=Profession.PLUMBER, city="Wondervale")


@pytest.fixture
def electrician():
    return StaffProfile(
        id="staff-electrician", full_name="Nikola Tesla", profession=Profession.ELECTRICIAN, city="Wondervale"
    )


@pytest.fixture
def remote_plumber():
    return StaffProfile(
        id="staff-remote", full_name="Luigi Verdi", profession=Profession.PLUMBER, city="Springfield"
    )


@pytest.fixture
def store(electrician, plumber, remote_plumber):
    """In-memory store seeded with an electrician listed before the plumber."""
    return InMemoryComplaintStore(staff=[electrician, plumber, remote_plumber])


@pytest.fixture
def config_provider():
    return StaticConfigProvider(LifecycleConfig())


@pytest.fixture
def lifecycle_service(store, dispatcher, config_provider, clock):
    return ComplaintLifecycleService(
        store, dispatcher, config_provider, clock=clock, store_timeout=1, notification_timeout=1
    )


@pytest.fixture
def escalation_service(store, dispatcher, config_provider, clock):
    return EscalationService(
        store, dispatcher, config_provider, clock=clock,
        store_timeout=1, notification_timeout=1, conflict_retries=1,
    )


@pytest.fixture
def make_complaint():
    """Factory for complaints seeded directly into a store."""

    def _make(
        complaint_id: str = "c-1",
        created_at: datetime = T0,
        sla_hours: float = 10,
        status: ComplaintStatus = ComplaintStatus.OPEN,
        assigned_to: Optional[str] = None,
        reporter_id: Optional[str] = "citizen-1",
        complaint_type: ComplaintType = ComplaintType.WATER_LEAKAGE,
        city: str = "Wondervale",
        escalation_level: int = 0,
        resolved_at: Optional[datetime] = None,
    ) -> Complaint:
        return Complaint(
            id=complaint_id,
            title=f"Complaint {complaint_id}",
            description="Something is broken",
            type=complaint_type,
            reporter_id=reporter_id,
            location=Location(city=city),
            created_at=created_at,
            sla_hours=sla_hours,
            due_at=created_at + timedelta(hours=sla_hours),
            status=status,
            assigned_to=assigned_to,
            escalation_level=escalation_level,
            resolved_at=resolved_at,
            status_history=[StatusHistoryEntry(status=ComplaintStatus.OPEN, actor=reporter_id, timestamp=created_at)],
        )

    return _make
