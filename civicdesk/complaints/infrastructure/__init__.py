"""
Complaint Infrastructure Layer
==============================

Infrastructure implementations for the complaint lifecycle:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory complaint stores
- External: config watcher, notification dispatchers, escalation scheduler
"""

from civicdesk.complaints.infrastructure.models import (
    AssignmentHistoryModel,
    ComplaintModel,
    StaffProfileModel,
    StatusHistoryModel,
)
from civicdesk.complaints.infrastructure.repositories import (
    InMemoryComplaintStore,
    SQLAlchemyComplaintStore,
)
from civicdesk.complaints.infrastructure.external import (
    CircuitBreaker,
    CompositeNotificationDispatcher,
    EscalationScheduler,
    LifecycleConfigManager,
    LoggingNotificationDispatcher,
    WebhookNotificationDispatcher,
    build_dispatcher,
)

__all__ = [
    "AssignmentHistoryModel",
    "ComplaintModel",
    "StaffProfileModel",
    "StatusHistoryModel",
    "InMemoryComplaintStore",
    "SQLAlchemyComplaintStore",
    "CircuitBreaker",
    "CompositeNotificationDispatcher",
    "EscalationScheduler",
    "LifecycleConfigManager",
    "LoggingNotificationDispatcher",
    "WebhookNotificationDispatcher",
    "build_dispatcher",
]
