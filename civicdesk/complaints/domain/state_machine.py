"""Complaint status state machine."""

from datetime import datetime
from typing import Dict, List, Optional

from civicdesk.config import ComplaintStatus, NotificationKind
from civicdesk.core import InvalidTransition
from civicdesk.complaints.domain.entities import (
    Complaint,
    ComplaintMutation,
    NotificationEvent,
    StatusHistoryEntry,
    TransitionOutcome,
)


STATUS_MESSAGES: Dict[ComplaintStatus, str] = {
    ComplaintStatus.OPEN: "The complaint is open.",
    ComplaintStatus.IN_PROGRESS: "Work on the complaint has started.",
    ComplaintStatus.ESCALATED: "The issue has exceeded the SLA and has been escalated.",
    ComplaintStatus.RESOLVED: "The complaint has been resolved.",
}


class ComplaintStateMachine:
    """
    Validates and computes complaint status transitions.

    Pure: it never touches the store or the dispatcher. Callers persist the
    returned mutation with a conditional update and forward the event.
    """

    # Valid state transitions
    TRANSITIONS: Dict[ComplaintStatus, List[ComplaintStatus]] = {
        ComplaintStatus.OPEN: [ComplaintStatus.IN_PROGRESS, ComplaintStatus.ESCALATED],
        ComplaintStatus.IN_PROGRESS: [ComplaintStatus.ESCALATED, ComplaintStatus.RESOLVED],
        ComplaintStatus.ESCALATED: [ComplaintStatus.RESOLVED],
        ComplaintStatus.RESOLVED: [],  # Terminal state
    }

    @classmethod
    def can_transition(cls, current: ComplaintStatus, target: ComplaintStatus) -> bool:
        """True for table edges and for no-op self transitions."""
        return current == target or target in cls.TRANSITIONS.get(current, [])

    def transition(
        self,
        complaint: Complaint,
        target: ComplaintStatus,
        actor: Optional[str],
        now: datetime,
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Compute the effect of moving ``complaint`` to ``target``.

        Args:
            complaint: Current snapshot of the record
            target: Requested status
            actor: Identity recorded in the status history
            now: Transition timestamp
            notes: Optional free text recorded with the history entry

        Returns:
            TransitionOutcome holding the post-transition record, the mutation
            to persist and the event to dispatch. A self transition returns
            the record unchanged with an empty mutation and no event.

        Raises:
            InvalidTransition: If the edge is not in the lifecycle table
        """
        current = complaint.status

        if current == target:
            return TransitionOutcome(
                complaint=complaint,
                mutation=ComplaintMutation(),
                previous_status=current,
            )

        if target not in self.TRANSITIONS.get(current, []):
            raise InvalidTransition(current, target, {
                "complaint_id": complaint.id,
                "current": current.value,
                "requested": target.value,
            })

        mutation = ComplaintMutation(
            status=target,
            updated_at=now,
            status_entries=[StatusHistoryEntry(status=target, actor=actor, timestamp=now, notes=notes)],
        )
        if target == ComplaintStatus.RESOLVED and complaint.resolved_at is None:
            mutation.resolved_at = now

        return TransitionOutcome(
            complaint=mutation.apply_to(complaint),
            mutation=mutation,
            previous_status=current,
            event=self._event_for(complaint, current, target),
        )

    def escalate(
        self,
        complaint: Complaint,
        actor: Optional[str],
        now: datetime,
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        SLA breach: transition to ESCALATED and bump the escalation level once.

        An already-escalated complaint comes back unchanged, so re-scans never
        bump the level twice.
        """
        outcome = self.transition(complaint, ComplaintStatus.ESCALATED, actor, now, notes)
        if not outcome.changed:
            return outcome

        outcome.mutation.escalation_level = complaint.escalation_level + 1
        escalated = outcome.mutation.apply_to(complaint)
        return TransitionOutcome(
            complaint=escalated,
            mutation=outcome.mutation,
            previous_status=outcome.previous_status,
            event=NotificationEvent(
                kind=NotificationKind.SLA_ESCALATION,
                complaint_id=complaint.id,
                subject=f"Complaint Escalated: {complaint.title}",
                message=STATUS_MESSAGES[ComplaintStatus.ESCALATED],
                metadata={"escalation_level": escalated.escalation_level},
            ),
        )

    @staticmethod
    def _event_for(
        complaint: Complaint,
        previous: ComplaintStatus,
        target: ComplaintStatus,
    ) -> NotificationEvent:
        return NotificationEvent(
            kind=NotificationKind.STATUS_CHANGED,
            complaint_id=complaint.id,
            subject=f"Complaint {target.value.replace('_', ' ').title()}: {complaint.title}",
            message=STATUS_MESSAGES[target],
            metadata={"from": previous.value, "to": target.value},
        )
