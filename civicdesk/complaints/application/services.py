"""
Complaint Application Services
==============================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: lifecycle operations and the escalation cycle live
  in separate services
- Dependency Inversion: depend on abstractions (store, dispatcher, config
  provider), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import uuid4

from civicdesk.config import (
    ACTIVE_STATUSES,
    AUTO_ASSIGN_ACTOR,
    SCHEDULER_ACTOR,
    ComplaintStatus,
    NotificationKind,
    SLABand,
    settings,
)
from civicdesk.core import (
    ApplicationException,
    ConcurrentModificationException,
    IneligibleStaff,
    InvalidTransition,
    NotificationException,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from civicdesk.complaints.application.dto import ComplaintDraft, StaffProfileCreate
from civicdesk.complaints.domain import (
    AssignmentHistoryEntry,
    AssignmentMatcher,
    Complaint,
    ComplaintMutation,
    ComplaintStateMachine,
    CycleReport,
    LifecycleConfig,
    Location,
    NotificationEvent,
    SLACalculator,
    SLAStatus,
    StaffProfile,
    StatusHistoryEntry,
)
from civicdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class UpdateStatus(str, Enum):
    """Outcome of a conditional update."""
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class UpdateResult:
    """Discriminated result of ``IComplaintStore.update_complaint``."""
    status: UpdateStatus
    complaint: Optional[Complaint] = None

    @property
    def ok(self) -> bool:
        return self.status == UpdateStatus.SUCCESS


class IComplaintStore(ABC):
    """Interface for complaint and staff directory data access."""

    @abstractmethod
    async def create_complaint(self, complaint: Complaint) -> Complaint:
        """Persist a new complaint with its initial history."""

    @abstractmethod
    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        """Get complaint by id."""

    @abstractmethod
    async def find_active_complaints(self) -> List[Complaint]:
        """Complaints in OPEN, IN_PROGRESS or ESCALATED with a deadline."""

    @abstractmethod
    async def list_complaints(
        self,
        filters: dict,
        limit: int = 100,
        offset: int = 0
    ) -> List[Complaint]:
        """List complaints with filters, newest first."""

    @abstractmethod
    async def count_by_status(self) -> Dict[ComplaintStatus, int]:
        """Number of complaints per status."""

    @abstractmethod
    async def update_complaint(
        self,
        complaint_id: str,
        expected_version: int,
        mutation: ComplaintMutation
    ) -> UpdateResult:
        """
        Apply ``mutation`` only if the stored version equals ``expected_version``.

        Field changes, history appends and the version bump happen atomically.
        """

    @abstractmethod
    async def find_staff_by_city(self, city: str) -> List[StaffProfile]:
        """Staff directory for a city (case-insensitive), in stable order."""

    @abstractmethod
    async def get_staff(self, staff_id: str) -> Optional[StaffProfile]:
        """Get a staff profile by id."""

    @abstractmethod
    async def add_staff(self, staff: StaffProfile) -> StaffProfile:
        """Register a staff profile."""


class INotificationDispatcher(ABC):
    """Interface for the notification dispatcher (fire-and-forget)."""

    @abstractmethod
    async def notify(self, recipients: List[str], event: NotificationEvent) -> None:
        """Deliver ``event`` to ``recipients``."""


class ILifecycleConfigProvider(ABC):
    """Interface for lifecycle policy access."""

    @abstractmethod
    def get_config(self) -> LifecycleConfig:
        """Get current lifecycle configuration."""


class StaticConfigProvider(ILifecycleConfigProvider):
    """Serves a fixed configuration (tests, scripts)."""

    def __init__(self, config: Optional[LifecycleConfig] = None):
        self._config = config or LifecycleConfig()

    def get_config(self) -> LifecycleConfig:
        return self._config


def parse_status(value: Any) -> ComplaintStatus:
    """Coerce ``value`` into a ComplaintStatus or raise a validation fault."""
    if isinstance(value, ComplaintStatus):
        return value
    try:
        return ComplaintStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationException(
            f"Unknown complaint status: {value!r}",
            {"allowed": [s.value for s in ComplaintStatus]},
            code="unknown_status",
        )


# ========== Application Services ==========

class _LifecycleServiceBase:
    """Shared plumbing: bounded store/dispatcher calls and the injected clock."""

    def __init__(
        self,
        store: IComplaintStore,
        dispatcher: INotificationDispatcher,
        config_provider: ILifecycleConfigProvider,
        state_machine: Optional[ComplaintStateMachine] = None,
        clock: Clock = utc_now,
        store_timeout: Optional[float] = None,
        notification_timeout: Optional[float] = None,
        conflict_retries: Optional[int] = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._config_provider = config_provider
        self._state_machine = state_machine or ComplaintStateMachine()
        self._clock = clock
        self._store_timeout = store_timeout or settings.store_timeout_seconds
        self._notification_timeout = notification_timeout or settings.notification_timeout_seconds
        self._conflict_retries = (
            settings.escalation_conflict_retries if conflict_retries is None else conflict_retries
        )

    async def _store_call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Run a store call under the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._store_timeout)
        except asyncio.TimeoutError:
            raise RepositoryException(
                f"{operation} timed out after {self._store_timeout}s",
                {"operation": operation}
            )

    async def _dispatch(self, recipients: List[str], event: Optional[NotificationEvent]) -> bool:
        """
        Hand an event to the dispatcher under the configured timeout.

        Returns False when there was nothing to send.

        Raises:
            NotificationException: On dispatcher failure or timeout
        """
        recipients = [r for r in recipients if r]
        if event is None or not recipients:
            return False
        try:
            await asyncio.wait_for(
                self._dispatcher.notify(recipients, event),
                timeout=self._notification_timeout
            )
        except asyncio.TimeoutError:
            raise NotificationException(
                f"notify timed out after {self._notification_timeout}s",
                {"complaint_id": event.complaint_id, "kind": event.kind.value}
            )
        except NotificationException:
            raise
        except Exception as e:
            raise NotificationException(
                str(e),
                {"complaint_id": event.complaint_id, "kind": event.kind.value}
            ) from e
        return True

    async def _dispatch_quietly(self, recipients: List[str], event: Optional[NotificationEvent]) -> None:
        """Dispatch for synchronous operations: failures are logged, never raised."""
        try:
            await self._dispatch(recipients, event)
        except NotificationException as e:
            logger.warning(
                "Notification dispatch failed",
                extra={"complaint_id": event.complaint_id if event else None, "error": e.message}
            )

    async def _load(self, complaint_id: str) -> Complaint:
        complaint = await self._store_call("get_complaint", self._store.get_complaint(complaint_id))
        if complaint is None:
            raise ResourceNotFoundException("Complaint", complaint_id)
        return complaint


class ComplaintLifecycleService(_LifecycleServiceBase):
    """
    Caller-facing lifecycle operations: intake with auto-assignment, manual
    transitions and manual assignment.

    Every write is a conditional update on the record version. A lost race
    surfaces as ``ConcurrentModificationException`` for the caller to retry.
    """

    def _now(self) -> datetime:
        return self._clock()

    # ----- Intake -----

    async def create_and_maybe_assign(self, draft: ComplaintDraft) -> Complaint:
        """
        Create a complaint and try to auto-assign it.

        The due date is computed here, once. When the matcher finds a
        qualified staff member the complaint moves to IN_PROGRESS in the same
        conditional update that records the assignment; otherwise it stays
        OPEN and unassigned.
        """
        config = self._config_provider.get_config()
        now = self._now()
        sla_hours = draft.sla_hours or config.default_sla_hours

        complaint = Complaint(
            id=str(uuid4()),
            title=draft.title,
            description=draft.description,
            type=draft.type,
            reporter_id=draft.reporter_id,
            location=Location(**draft.location.model_dump()),
            created_at=now,
            sla_hours=sla_hours,
            due_at=SLACalculator.compute_due_at(now, sla_hours),
            priority=draft.priority,
            status=ComplaintStatus.OPEN,
            status_history=[
                StatusHistoryEntry(
                    status=ComplaintStatus.OPEN,
                    actor=draft.reporter_id,
                    timestamp=now,
                    notes="Complaint submitted",
                )
            ],
        )

        created = await self._store_call("create_complaint", self._store.create_complaint(complaint))
        logger.info(
            "Complaint created",
            extra={
                "complaint_id": created.id,
                "type": created.type.value,
                "city": created.city,
                "due_at": created.due_at.isoformat(),
            }
        )

        return await self._auto_assign(created, config)

    async def _auto_assign(self, complaint: Complaint, config: LifecycleConfig) -> Complaint:
        """Best-effort assignment of a freshly created complaint."""
        matcher = AssignmentMatcher(config)

        try:
            directory = await self._store_call(
                "find_staff_by_city", self._store.find_staff_by_city(complaint.city)
            )
        except RepositoryException as e:
            logger.warning(
                "Staff directory unavailable, complaint left unassigned",
                extra={"complaint_id": complaint.id, "error": e.message}
            )
            return complaint

        staff = matcher.match(complaint, directory)
        if staff is None:
            logger.info(
                "No qualified staff for complaint",
                extra={
                    "complaint_id": complaint.id,
                    "city": complaint.city,
                    "type": complaint.type.value,
                    "keyword_table": matcher.table_version,
                }
            )
            return complaint

        note = f"Auto-assigned to {staff.profession.value} {staff.full_name}"
        current = complaint
        for attempt in range(self._conflict_retries + 1):
            if current.status != ComplaintStatus.OPEN or current.assigned_to:
                return current
            try:
                return await self._apply_assignment(current, staff, AUTO_ASSIGN_ACTOR, note)
            except ConcurrentModificationException:
                logger.info(
                    "Auto-assignment lost a race, re-reading",
                    extra={"complaint_id": complaint.id, "attempt": attempt + 1}
                )
            except RepositoryException as e:
                logger.warning(
                    "Auto-assignment failed, complaint left unassigned",
                    extra={"complaint_id": complaint.id, "error": e.message}
                )
                return current

            try:
                fresh = await self._store_call("get_complaint", self._store.get_complaint(complaint.id))
            except RepositoryException as e:
                logger.warning(
                    "Re-read after lost auto-assignment failed, complaint left as stored",
                    extra={"complaint_id": complaint.id, "error": e.message}
                )
                return current
            if fresh is None:
                return current
            current = fresh
        return current

    # ----- Queries -----

    async def get_complaint(self, complaint_id: str) -> Complaint:
        return await self._load(complaint_id)

    async def list_complaints(self, filters: dict, limit: int = 100, offset: int = 0) -> List[Complaint]:
        if "status" in filters:
            statuses = filters["status"] if isinstance(filters["status"], list) else [filters["status"]]
            filters = {**filters, "status": [parse_status(s) for s in statuses]}
        return await self._store_call(
            "list_complaints", self._store.list_complaints(filters, limit=limit, offset=offset)
        )

    async def sla_status(self, complaint_id: str) -> SLAStatus:
        """Where the complaint sits relative to its deadline right now."""
        complaint = await self._load(complaint_id)
        config = self._config_provider.get_config()
        now = self._now()

        evaluated_at = now
        if complaint.resolved_at is not None:
            # Resolved complaints are frozen at their resolution time
            evaluated_at = complaint.resolved_at

        ratio = SLACalculator.sla_ratio(complaint.created_at, complaint.due_at, evaluated_at)
        return SLAStatus(
            complaint_id=complaint.id,
            created_at=complaint.created_at,
            due_at=complaint.due_at,
            evaluated_at=evaluated_at,
            ratio=ratio,
            band=SLACalculator.classify(ratio, config.warning_ratio, config.escalation_ratio),
            remaining_seconds=SLACalculator.remaining_seconds(complaint.due_at, evaluated_at),
        )

    async def public_summary(self, recent: int = 5) -> dict:
        """Aggregate figures for the public transparency portal."""
        now = self._now()
        counts = await self._store_call("count_by_status", self._store.count_by_status())
        total = sum(counts.values())

        active = await self._store_call(
            "find_active_complaints", self._store.find_active_complaints()
        )
        overdue = sum(1 for c in active if c.due_at < now)

        resolved = await self._store_call(
            "list_complaints",
            self._store.list_complaints({"status": [ComplaintStatus.RESOLVED]}, limit=1000)
        )
        durations = [
            (c.resolved_at - c.created_at).total_seconds() / 3600
            for c in resolved if c.resolved_at is not None
        ]

        latest = await self._store_call(
            "list_complaints", self._store.list_complaints({}, limit=recent)
        )

        resolved_count = counts.get(ComplaintStatus.RESOLVED, 0)
        return {
            "totals": total,
            "status_counts": {s.value: counts.get(s, 0) for s in ComplaintStatus},
            "overdue_count": overdue,
            "resolved_rate": (resolved_count / total * 100) if total else 0.0,
            "average_resolution_hours": (sum(durations) / len(durations)) if durations else 0.0,
            "recent_complaints": [
                {
                    "id": c.id,
                    "title": c.title,
                    "type": c.type,
                    "priority": c.priority,
                    "status": c.status,
                    "city": c.city,
                    "created_at": c.created_at,
                }
                for c in latest
            ],
        }

    # ----- Staff directory -----

    async def register_staff(self, payload: StaffProfileCreate) -> StaffProfile:
        """Add a staff member to the directory used by auto-assignment."""
        staff = StaffProfile(
            id=str(uuid4()),
            full_name=payload.full_name.strip(),
            profession=payload.profession,
            city=payload.city.strip(),
            email=payload.email,
            is_active=payload.is_active,
        )
        created = await self._store_call("add_staff", self._store.add_staff(staff))
        logger.info(
            "Staff member registered",
            extra={"staff_id": created.id, "profession": created.profession.value, "city": created.city}
        )
        return created

    async def staff_in_city(self, city: str) -> List[StaffProfile]:
        return await self._store_call("find_staff_by_city", self._store.find_staff_by_city(city))

    # ----- Commands -----

    async def transition(
        self,
        complaint_id: str,
        target_status: Any,
        actor: str,
        notes: Optional[str] = None,
    ) -> Complaint:
        """
        Apply a manual status change.

        Raises:
            ValidationException: Unknown target status
            InvalidTransition: Edge not in the lifecycle table
            ResourceNotFoundException: No such complaint
            ConcurrentModificationException: The record changed since it was read
            RepositoryException: Store unavailable or timed out
        """
        target = parse_status(target_status)
        complaint = await self._load(complaint_id)
        now = self._now()

        if target == ComplaintStatus.ESCALATED:
            outcome = self._state_machine.escalate(complaint, actor, now, notes)
        else:
            outcome = self._state_machine.transition(complaint, target, actor, now, notes)

        if not outcome.changed:
            return complaint

        updated = await self._commit(complaint, outcome.mutation)
        logger.info(
            "Complaint status changed",
            extra={
                "complaint_id": complaint_id,
                "from_status": outcome.previous_status.value,
                "to_status": target.value,
                "actor": actor,
            }
        )
        await self._dispatch_quietly(updated.recipients, outcome.event)
        return updated

    async def assign(
        self,
        complaint_id: str,
        staff_id: str,
        actor: str,
        notes: Optional[str] = None,
    ) -> Complaint:
        """
        Manually assign a complaint.

        An OPEN complaint moves to IN_PROGRESS with the assignment; an
        IN_PROGRESS or ESCALATED complaint is reassigned without a status
        change. Staff must be active and work in the complaint's city.

        Raises:
            IneligibleStaff: Unknown, inactive or out-of-city staff
            InvalidTransition: The complaint is already RESOLVED
            ConcurrentModificationException: The record changed since it was read
        """
        complaint = await self._load(complaint_id)
        staff = await self._store_call("get_staff", self._store.get_staff(staff_id))

        if staff is None:
            raise IneligibleStaff(staff_id, "staff member not found")
        if not staff.is_active:
            raise IneligibleStaff(staff_id, "staff member is inactive")
        if not staff.works_in(complaint.city):
            raise IneligibleStaff(
                staff_id,
                f"staff works in {staff.city}, complaint is in {complaint.city}"
            )

        if complaint.assigned_to == staff.id:
            return complaint

        updated = await self._apply_assignment(complaint, staff, actor, notes)
        logger.info(
            "Complaint assigned",
            extra={"complaint_id": complaint_id, "staff_id": staff_id, "actor": actor}
        )
        return updated

    async def _apply_assignment(
        self,
        complaint: Complaint,
        staff: StaffProfile,
        actor: str,
        notes: Optional[str],
    ) -> Complaint:
        """Persist assignment (and OPEN -> IN_PROGRESS when applicable) as one update."""
        now = self._now()

        if complaint.status == ComplaintStatus.RESOLVED:
            raise InvalidTransition(complaint.status, ComplaintStatus.IN_PROGRESS, {
                "complaint_id": complaint.id,
                "reason": "resolved complaints cannot be assigned",
            })

        status_event = None
        if complaint.status == ComplaintStatus.OPEN:
            outcome = self._state_machine.transition(
                complaint, ComplaintStatus.IN_PROGRESS, actor, now, notes
            )
            mutation = outcome.mutation
            status_event = outcome.event
        else:
            mutation = ComplaintMutation(updated_at=now)

        mutation.assigned_to = staff.id
        mutation.assignment_entries = [
            AssignmentHistoryEntry(assignee_id=staff.id, actor=actor, timestamp=now, notes=notes)
        ]

        updated = await self._commit(complaint, mutation)

        await self._dispatch_quietly([staff.id], NotificationEvent(
            kind=NotificationKind.ASSIGNED,
            complaint_id=complaint.id,
            subject=f"New Assignment: {complaint.title}",
            message=f"You have been assigned a {complaint.type.value} complaint in {complaint.city}.",
            metadata={"assigned_by": actor, "due_at": complaint.due_at.isoformat()},
        ))
        if status_event is not None and complaint.reporter_id:
            await self._dispatch_quietly([complaint.reporter_id], status_event)
        return updated

    async def _commit(self, complaint: Complaint, mutation: ComplaintMutation) -> Complaint:
        result = await self._store_call(
            "update_complaint",
            self._store.update_complaint(complaint.id, complaint.version, mutation)
        )
        if result.status == UpdateStatus.NOT_FOUND:
            raise ResourceNotFoundException("Complaint", complaint.id)
        if result.status == UpdateStatus.CONFLICT:
            raise ConcurrentModificationException(complaint.id, complaint.version)
        return result.complaint


class EscalationService(_LifecycleServiceBase):
    """
    Runs escalation cycles over all active complaints.

    Each complaint is processed independently: a failure is logged and
    counted, and the cycle moves on. Nothing is retried within a cycle except
    the re-read after a lost conditional update; the next cycle picks up
    whatever this one could not finish.
    """

    def __init__(
        self,
        store: IComplaintStore,
        dispatcher: INotificationDispatcher,
        config_provider: ILifecycleConfigProvider,
        **kwargs: Any,
    ):
        super().__init__(store, dispatcher, config_provider, **kwargs)
        self._stop_requested = False

    def request_stop(self) -> None:
        """Finish the in-flight complaint, then end the running cycle."""
        self._stop_requested = True

    def reset_stop(self) -> None:
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def run_escalation_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """
        Scan active complaints once.

        Args:
            now: Evaluation time (defaults to the injected clock)

        Returns:
            CycleReport with scanned/escalated/warned/skipped/failed counts
        """
        now = now or self._clock()
        config = self._config_provider.get_config()
        report = CycleReport(started_at=now)

        try:
            complaints = await self._store_call(
                "find_active_complaints", self._store.find_active_complaints()
            )
        except ApplicationException as e:
            logger.error("Escalation cycle could not load complaints", extra={"error": e.message})
            report.record_failure("*", e.code, e.message)
            report.finished_at = self._clock()
            return report

        for complaint in complaints:
            if self._stop_requested:
                report.stopped_early = True
                break

            report.scanned += 1
            try:
                await self._process(complaint, config, now, report)
            except ApplicationException as e:
                report.record_failure(complaint.id, e.code, e.message)
                logger.warning(
                    "Escalation check failed",
                    extra={"complaint_id": complaint.id, "error_code": e.code, "error": e.message}
                )
            except Exception as e:
                report.record_failure(complaint.id, "unexpected_error", str(e))
                logger.exception(
                    "Unexpected error during escalation check",
                    extra={"complaint_id": complaint.id}
                )

        report.finished_at = self._clock()
        logger.info(
            "Escalation cycle finished",
            extra={
                "scanned": report.scanned,
                "escalated": report.escalated,
                "warned": report.warned,
                "skipped": report.skipped,
                "failed": report.failed,
                "stopped_early": report.stopped_early,
            }
        )
        return report

    async def _process(
        self,
        complaint: Complaint,
        config: LifecycleConfig,
        now: datetime,
        report: CycleReport,
    ) -> None:
        """Evaluate one complaint, re-reading after a lost conditional update."""
        current: Optional[Complaint] = complaint

        for attempt in range(self._conflict_retries + 1):
            if current is None or current.status not in ACTIVE_STATUSES or current.due_at is None:
                report.skipped += 1
                return

            ratio = SLACalculator.sla_ratio(current.created_at, current.due_at, now)
            band = SLACalculator.classify(ratio, config.warning_ratio, config.escalation_ratio)

            if band == SLABand.BREACHED and current.status != ComplaintStatus.ESCALATED:
                outcome = self._state_machine.escalate(
                    current, SCHEDULER_ACTOR, now, notes=f"SLA exceeded (ratio {ratio:.2f})"
                )
                result = await self._store_call(
                    "update_complaint",
                    self._store.update_complaint(current.id, current.version, outcome.mutation)
                )

                if result.status == UpdateStatus.SUCCESS:
                    report.escalated += 1
                    escalated = result.complaint
                    logger.warning(
                        "Complaint escalated",
                        extra={
                            "complaint_id": escalated.id,
                            "escalation_level": escalated.escalation_level,
                            "sla_ratio": round(ratio, 3),
                        }
                    )
                    await self._dispatch(escalated.recipients, outcome.event)
                    return

                if result.status == UpdateStatus.NOT_FOUND:
                    report.skipped += 1
                    return

                if attempt >= self._conflict_retries:
                    raise ConcurrentModificationException(current.id, current.version)

                logger.info(
                    "Escalation lost a race, re-evaluating",
                    extra={"complaint_id": current.id, "attempt": attempt + 1}
                )
                current = await self._store_call(
                    "get_complaint", self._store.get_complaint(current.id)
                )
                continue

            # Also reached by ESCALATED complaints still past due: warned every cycle
            if band in (SLABand.WARNING, SLABand.BREACHED):
                report.warned += 1
                recipients = [current.assigned_to] if current.assigned_to else []
                await self._dispatch(recipients, NotificationEvent(
                    kind=NotificationKind.SLA_WARNING,
                    complaint_id=current.id,
                    subject=f"SLA Warning: {current.title}",
                    message="The complaint is nearing its SLA deadline. Please address promptly.",
                    metadata={"sla_ratio": round(ratio, 3), "due_at": current.due_at.isoformat()},
                ))
                return

            report.skipped += 1
            return
