"""
Complaint Infrastructure Models
===============================

SQLAlchemy ORM models for the complaint module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
Audit logs live in their own append-only tables keyed by complaint id.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from civicdesk.infrastructure.database import Base
from civicdesk.config import ComplaintStatus, ComplaintType, Priority, Profession


class ComplaintModel(Base):
    """
    Database model for the Complaint entity.

    Maps to the 'complaints' table. ``version`` is the optimistic-lock
    counter checked by every conditional update.
    """
    __tablename__ = "complaints"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Complaint content
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[ComplaintType] = mapped_column(String(50), nullable=False, default=ComplaintType.OTHER)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[ComplaintStatus] = mapped_column(String(50), nullable=False, default=ComplaintStatus.OPEN)
    reporter_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Location
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # SLA tracking
    sla_hours: Mapped[float] = mapped_column(Float, nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_complaints_status_due_at", "status", "due_at"),
        Index("ix_complaints_created_at", "created_at"),
    )


class StatusHistoryModel(Base):
    """Append-only status audit log. Maps to 'complaint_status_history'."""
    __tablename__ = "complaint_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    complaint_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[ComplaintStatus] = mapped_column(String(50), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AssignmentHistoryModel(Base):
    """Append-only assignment audit log. Maps to 'complaint_assignment_history'."""
    __tablename__ = "complaint_assignment_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    complaint_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("complaints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assignee_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class StaffProfileModel(Base):
    """
    Database model for the staff directory.

    Maps to the 'staff_profiles' table.
    """
    __tablename__ = "staff_profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profession: Mapped[Profession] = mapped_column(String(50), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
