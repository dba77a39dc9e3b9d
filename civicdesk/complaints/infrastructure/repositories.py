"""
Complaint Infrastructure Repositories
=====================================

Concrete implementations of the complaint store interface.

- SQLAlchemyComplaintStore: async SQLAlchemy, one transaction per call
- InMemoryComplaintStore: process-local store for tests and local runs

Both implement the same conditional update: a mutation is applied only when
the stored version equals the version the caller read.
"""

import asyncio
import copy
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civicdesk.config import ACTIVE_STATUSES, ComplaintStatus, ComplaintType, Priority, Profession
from civicdesk.core import RepositoryException
from civicdesk.complaints.application.services import IComplaintStore, UpdateResult, UpdateStatus
from civicdesk.complaints.domain import (
    AssignmentHistoryEntry,
    Complaint,
    ComplaintMutation,
    Location,
    StaffProfile,
    StatusHistoryEntry,
)
from civicdesk.complaints.infrastructure.models import (
    AssignmentHistoryModel,
    ComplaintModel,
    StaffProfileModel,
    StatusHistoryModel,
)
from civicdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (SQLite hands back naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


class SQLAlchemyComplaintStore(IComplaintStore):
    """
    SQLAlchemy implementation of the complaint store.

    Every call runs in its own session and transaction, so an update and its
    audit rows either land together or not at all.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(
                "Complaint store operation failed",
                extra={"operation": operation, "error": str(e)}
            )
            raise RepositoryException(f"{operation} failed: {e}", {"operation": operation}) from e

    # ----- Complaints -----

    async def create_complaint(self, complaint: Complaint) -> Complaint:
        """Insert a complaint together with its initial audit entries."""
        async with self._transaction("create_complaint") as session:
            loc = complaint.location
            session.add(ComplaintModel(
                id=complaint.id,
                title=complaint.title,
                description=complaint.description,
                type=_enum_value(complaint.type),
                priority=_enum_value(complaint.priority),
                status=_enum_value(complaint.status),
                reporter_id=complaint.reporter_id,
                assigned_to=complaint.assigned_to,
                city=loc.city,
                address=loc.address,
                state=loc.state,
                postal_code=loc.postal_code,
                country=loc.country,
                latitude=loc.latitude,
                longitude=loc.longitude,
                sla_hours=complaint.sla_hours,
                due_at=as_utc(complaint.due_at),
                escalation_level=complaint.escalation_level,
                resolved_at=as_utc(complaint.resolved_at),
                created_at=as_utc(complaint.created_at),
                updated_at=as_utc(complaint.updated_at),
                version=complaint.version,
            ))
            # Parent row first so the history foreign keys resolve
            await session.flush()
            self._add_history(session, complaint.id, complaint.status_history, complaint.assignment_history)
            await session.flush()
            return await self._load_one(session, complaint.id)

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        async with self._transaction("get_complaint") as session:
            return await self._load_one(session, complaint_id)

    async def find_active_complaints(self) -> List[Complaint]:
        """Active complaints with a deadline, oldest deadline first."""
        async with self._transaction("find_active_complaints") as session:
            stmt = (
                select(ComplaintModel)
                .where(
                    ComplaintModel.status.in_([s.value for s in ACTIVE_STATUSES]),
                    ComplaintModel.due_at.is_not(None),
                )
                .order_by(ComplaintModel.due_at.asc(), ComplaintModel.id.asc())
            )
            result = await session.execute(stmt)
            return await self._hydrate(session, result.scalars().all())

    async def list_complaints(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Complaint]:
        """List complaints with filters, newest first."""
        async with self._transaction("list_complaints") as session:
            stmt = select(ComplaintModel)

            conditions = []
            if filters.get("status"):
                status_list = filters["status"]
                if not isinstance(status_list, list):
                    status_list = [status_list]
                conditions.append(ComplaintModel.status.in_([_enum_value(s) for s in status_list]))

            if filters.get("city"):
                conditions.append(func.lower(ComplaintModel.city) == filters["city"].strip().lower())

            if filters.get("type"):
                conditions.append(ComplaintModel.type == _enum_value(filters["type"]))

            if filters.get("priority"):
                conditions.append(ComplaintModel.priority == _enum_value(filters["priority"]))

            if filters.get("assigned_to"):
                conditions.append(ComplaintModel.assigned_to == filters["assigned_to"])

            if filters.get("reporter_id"):
                conditions.append(ComplaintModel.reporter_id == filters["reporter_id"])

            if conditions:
                stmt = stmt.where(*conditions)

            stmt = stmt.order_by(ComplaintModel.created_at.desc(), ComplaintModel.id.asc())
            stmt = stmt.limit(limit).offset(offset)

            result = await session.execute(stmt)
            return await self._hydrate(session, result.scalars().all())

    async def count_by_status(self) -> Dict[ComplaintStatus, int]:
        async with self._transaction("count_by_status") as session:
            stmt = select(ComplaintModel.status, func.count(ComplaintModel.id)).group_by(ComplaintModel.status)
            result = await session.execute(stmt)
            return {ComplaintStatus(status): count for status, count in result.all()}

    async def update_complaint(
        self,
        complaint_id: str,
        expected_version: int,
        mutation: ComplaintMutation
    ) -> UpdateResult:
        """
        Conditional update keyed on (id, version).

        The UPDATE statement itself carries the version predicate, so two
        writers holding the same version cannot both succeed.
        """
        async with self._transaction("update_complaint") as session:
            current = await self._load_one(session, complaint_id)
            if current is None:
                return UpdateResult(UpdateStatus.NOT_FOUND)
            if current.version != expected_version:
                return UpdateResult(UpdateStatus.CONFLICT, current)

            mutation.check_against(current)

            values = {"version": ComplaintModel.version + 1}
            if mutation.status is not None:
                values["status"] = mutation.status.value
            if mutation.assigned_to is not None:
                values["assigned_to"] = mutation.assigned_to
            if mutation.escalation_level is not None:
                values["escalation_level"] = mutation.escalation_level
            if mutation.resolved_at is not None and current.resolved_at is None:
                values["resolved_at"] = as_utc(mutation.resolved_at)
            if mutation.priority is not None:
                values["priority"] = mutation.priority.value
            if mutation.updated_at is not None:
                values["updated_at"] = as_utc(mutation.updated_at)

            stmt = (
                update(ComplaintModel)
                .where(ComplaintModel.id == complaint_id, ComplaintModel.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return UpdateResult(UpdateStatus.CONFLICT)

            self._add_history(session, complaint_id, mutation.status_entries, mutation.assignment_entries)
            await session.flush()

            return UpdateResult(UpdateStatus.SUCCESS, await self._load_one(session, complaint_id))

    # ----- Staff directory -----

    async def find_staff_by_city(self, city: str) -> List[StaffProfile]:
        """Staff in ``city`` (case-insensitive), in directory (id) order."""
        async with self._transaction("find_staff_by_city") as session:
            stmt = (
                select(StaffProfileModel)
                .where(func.lower(StaffProfileModel.city) == city.strip().lower())
                .order_by(StaffProfileModel.created_at.asc(), StaffProfileModel.id.asc())
            )
            result = await session.execute(stmt)
            return [self._to_staff(m) for m in result.scalars().all()]

    async def get_staff(self, staff_id: str) -> Optional[StaffProfile]:
        async with self._transaction("get_staff") as session:
            model = await session.get(StaffProfileModel, staff_id)
            return self._to_staff(model) if model else None

    async def add_staff(self, staff: StaffProfile) -> StaffProfile:
        async with self._transaction("add_staff") as session:
            session.add(StaffProfileModel(
                id=staff.id,
                full_name=staff.full_name,
                email=staff.email,
                profession=staff.profession.value,
                city=staff.city,
                is_active=staff.is_active,
            ))
        return staff

    # ----- Mapping helpers -----

    @staticmethod
    def _add_history(
        session: AsyncSession,
        complaint_id: str,
        status_entries: Sequence[StatusHistoryEntry],
        assignment_entries: Sequence[AssignmentHistoryEntry],
    ) -> None:
        for entry in status_entries:
            session.add(StatusHistoryModel(
                complaint_id=complaint_id,
                status=entry.status.value,
                actor=entry.actor,
                notes=entry.notes,
                timestamp=as_utc(entry.timestamp),
            ))
        for entry in assignment_entries:
            session.add(AssignmentHistoryModel(
                complaint_id=complaint_id,
                assignee_id=entry.assignee_id,
                actor=entry.actor,
                notes=entry.notes,
                timestamp=as_utc(entry.timestamp),
            ))

    async def _load_one(self, session: AsyncSession, complaint_id: str) -> Optional[Complaint]:
        result = await session.execute(
            select(ComplaintModel)
            .where(ComplaintModel.id == complaint_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        complaints = await self._hydrate(session, [model])
        return complaints[0]

    async def _hydrate(self, session: AsyncSession, models: Sequence[ComplaintModel]) -> List[Complaint]:
        """Attach audit logs to complaint rows (two queries per batch)."""
        if not models:
            return []
        ids = [m.id for m in models]

        status_rows = await session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.complaint_id.in_(ids))
            .order_by(StatusHistoryModel.id.asc())
        )
        status_history: Dict[str, List[StatusHistoryEntry]] = defaultdict(list)
        for row in status_rows.scalars().all():
            status_history[row.complaint_id].append(StatusHistoryEntry(
                status=ComplaintStatus(row.status),
                actor=row.actor,
                timestamp=as_utc(row.timestamp),
                notes=row.notes,
            ))

        assignment_rows = await session.execute(
            select(AssignmentHistoryModel)
            .where(AssignmentHistoryModel.complaint_id.in_(ids))
            .order_by(AssignmentHistoryModel.id.asc())
        )
        assignment_history: Dict[str, List[AssignmentHistoryEntry]] = defaultdict(list)
        for row in assignment_rows.scalars().all():
            assignment_history[row.complaint_id].append(AssignmentHistoryEntry(
                assignee_id=row.assignee_id,
                actor=row.actor,
                timestamp=as_utc(row.timestamp),
                notes=row.notes,
            ))

        return [
            self._to_entity(m, status_history[m.id], assignment_history[m.id])
            for m in models
        ]

    @staticmethod
    def _to_entity(
        model: ComplaintModel,
        status_history: List[StatusHistoryEntry],
        assignment_history: List[AssignmentHistoryEntry],
    ) -> Complaint:
        return Complaint(
            id=model.id,
            title=model.title,
            description=model.description,
            type=ComplaintType(model.type),
            reporter_id=model.reporter_id,
            location=Location(
                city=model.city,
                address=model.address,
                state=model.state,
                postal_code=model.postal_code,
                country=model.country,
                latitude=model.latitude,
                longitude=model.longitude,
            ),
            created_at=as_utc(model.created_at),
            sla_hours=model.sla_hours,
            due_at=as_utc(model.due_at),
            priority=Priority(model.priority),
            status=ComplaintStatus(model.status),
            assigned_to=model.assigned_to,
            escalation_level=model.escalation_level,
            resolved_at=as_utc(model.resolved_at),
            updated_at=as_utc(model.updated_at),
            version=model.version,
            status_history=status_history,
            assignment_history=assignment_history,
        )

    @staticmethod
    def _to_staff(model: StaffProfileModel) -> StaffProfile:
        return StaffProfile(
            id=model.id,
            full_name=model.full_name,
            profession=Profession(model.profession),
            city=model.city,
            email=model.email,
            is_active=model.is_active,
        )


class InMemoryComplaintStore(IComplaintStore):
    """
    Process-local complaint store.

    Holds private copies of every record; callers only ever see snapshots.
    An ``asyncio.Lock`` serializes writers, which is enough for the
    compare-and-set on ``version``.
    """

    def __init__(self, staff: Optional[Sequence[StaffProfile]] = None):
        self._complaints: Dict[str, Complaint] = {}
        self._staff: Dict[str, StaffProfile] = {s.id: s for s in (staff or [])}
        self._lock = asyncio.Lock()

    async def create_complaint(self, complaint: Complaint) -> Complaint:
        async with self._lock:
            if complaint.id in self._complaints:
                raise RepositoryException(f"Complaint {complaint.id} already exists")
            self._complaints[complaint.id] = copy.deepcopy(complaint)
            return copy.deepcopy(complaint)

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        complaint = self._complaints.get(complaint_id)
        return copy.deepcopy(complaint) if complaint else None

    async def find_active_complaints(self) -> List[Complaint]:
        active = [
            c for c in self._complaints.values()
            if c.status in ACTIVE_STATUSES and c.due_at is not None
        ]
        active.sort(key=lambda c: (c.due_at, c.id))
        return copy.deepcopy(active)

    async def list_complaints(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Complaint]:
        statuses = filters.get("status")
        if statuses and not isinstance(statuses, list):
            statuses = [statuses]
        city = filters.get("city")

        def matches(c: Complaint) -> bool:
            if statuses and c.status not in statuses:
                return False
            if city and c.location.normalized_city != city.strip().casefold():
                return False
            if filters.get("type") and c.type != filters["type"]:
                return False
            if filters.get("priority") and c.priority != filters["priority"]:
                return False
            if filters.get("assigned_to") and c.assigned_to != filters["assigned_to"]:
                return False
            if filters.get("reporter_id") and c.reporter_id != filters["reporter_id"]:
                return False
            return True

        # Newest first, id as tie-breaker
        ordered = sorted(
            sorted((c for c in self._complaints.values() if matches(c)), key=lambda c: c.id),
            key=lambda c: c.created_at,
            reverse=True,
        )
        return copy.deepcopy(ordered[offset:offset + limit])

    async def count_by_status(self) -> Dict[ComplaintStatus, int]:
        counts: Dict[ComplaintStatus, int] = {}
        for complaint in self._complaints.values():
            counts[complaint.status] = counts.get(complaint.status, 0) + 1
        return counts

    async def update_complaint(
        self,
        complaint_id: str,
        expected_version: int,
        mutation: ComplaintMutation
    ) -> UpdateResult:
        async with self._lock:
            current = self._complaints.get(complaint_id)
            if current is None:
                return UpdateResult(UpdateStatus.NOT_FOUND)
            if current.version != expected_version:
                return UpdateResult(UpdateStatus.CONFLICT, copy.deepcopy(current))

            updated = mutation.apply_to(current)
            self._complaints[complaint_id] = updated
            return UpdateResult(UpdateStatus.SUCCESS, copy.deepcopy(updated))

    async def find_staff_by_city(self, city: str) -> List[StaffProfile]:
        return [s for s in self._staff.values() if s.works_in(city)]

    async def get_staff(self, staff_id: str) -> Optional[StaffProfile]:
        return self._staff.get(staff_id)

    async def add_staff(self, staff: StaffProfile) -> StaffProfile:
        self._staff[staff.id] = staff
        return staff
