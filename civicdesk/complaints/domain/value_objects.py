"""
Complaint Value Objects
=======================

Immutable value objects for the complaint lifecycle domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from civicdesk.config import DEFAULT_SLA_HOURS, Profession, SLABand


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA arithmetic in one place. None of these
    functions raise; absence of a meaningful answer is ``None``.
    """

    @staticmethod
    def compute_due_at(created_at: datetime, sla_hours: float) -> datetime:
        """
        Calculate the fixed deadline of a complaint.

        Called exactly once, at creation. Changing the SLA policy later has
        no retroactive effect on stored deadlines.

        Args:
            created_at: When the complaint was created
            sla_hours: Positive SLA duration in hours

        Returns:
            created_at + sla_hours, exactly
        """
        return created_at + timedelta(hours=sla_hours)

    @staticmethod
    def sla_ratio(
        created_at: datetime,
        due_at: Optional[datetime],
        current_time: datetime
    ) -> Optional[float]:
        """
        Fraction of the SLA window already consumed.

        0.0 at creation, 1.0 at the deadline, above 1.0 when overdue.
        Returns None when there is no deadline or the window is empty.
        """
        if due_at is None:
            return None
        window = (due_at - created_at).total_seconds()
        if window <= 0:
            return None
        return (current_time - created_at).total_seconds() / window

    @staticmethod
    def classify(
        ratio: Optional[float],
        warning_ratio: float,
        escalation_ratio: float
    ) -> SLABand:
        """Map a ratio onto the ON_TRACK / WARNING / BREACHED bands."""
        if ratio is None:
            return SLABand.ON_TRACK
        if ratio >= escalation_ratio:
            return SLABand.BREACHED
        if ratio >= warning_ratio:
            return SLABand.WARNING
        return SLABand.ON_TRACK

    @staticmethod
    def remaining_seconds(due_at: datetime, current_time: datetime) -> float:
        """Seconds left until the deadline (0 once overdue)."""
        return max(0.0, (due_at - current_time).total_seconds())


DEFAULT_PROFESSION_KEYWORDS: Dict[str, List[str]] = {
    Profession.ELECTRICIAN.value: ["electric", "power", "light", "wiring", "traffic signal"],
    Profession.PLUMBER.value: ["water", "pipe", "drain", "leak", "sewage", "restroom"],
    Profession.CLEANER.value: [
        "garbage", "waste", "sanitation", "trash", "cleaning", "recycling",
        "restroom", "blockage",
    ],
    Profession.MECHANIC.value: ["vehicle", "traffic signal"],
    Profession.OTHER.value: [],
}


class LifecycleConfig(BaseModel):
    """
    Lifecycle policy loaded from YAML.

    Holds the SLA default, the warning/escalation thresholds and the
    versioned profession keyword table used by the assignment matcher.
    This is a value object - treat instances as read-only snapshots.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(default="2024.1", description="Keyword table version label")
    default_sla_hours: float = Field(
        default=DEFAULT_SLA_HOURS,
        gt=0,
        description="SLA hours used when a complaint does not specify one"
    )
    warning_ratio: float = Field(
        default=0.75,
        gt=0,
        description="SLA ratio at which the assignee is warned"
    )
    escalation_ratio: float = Field(
        default=1.0,
        gt=0,
        description="SLA ratio at which the complaint is escalated"
    )
    profession_keywords: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PROFESSION_KEYWORDS.items()},
        description="Profession -> complaint type keywords"
    )

    @field_validator("profession_keywords")
    @classmethod
    def validate_profession_keywords(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """Reject unknown professions and normalize keywords to lower case."""
        known = {p.value for p in Profession}
        unknown = set(v) - known
        if unknown:
            raise ValueError(f"unknown professions in keyword table: {sorted(unknown)}")

        normalized = {p: [] for p in known}
        for profession, keywords in v.items():
            normalized[profession] = [k.strip().lower() for k in keywords if k and k.strip()]
        return normalized

    @model_validator(mode="after")
    def validate_thresholds(self) -> "LifecycleConfig":
        """Warning must fire before escalation."""
        if self.warning_ratio >= self.escalation_ratio:
            raise ValueError("warning_ratio must be lower than escalation_ratio")
        return self

    def keywords_for(self, profession: Profession) -> List[str]:
        """Keywords a complaint type must contain for ``profession`` to qualify."""
        return self.profession_keywords.get(profession.value, [])


@dataclass(frozen=True)
class SLAStatus:
    """Point-in-time SLA view of a single complaint."""
    complaint_id: str
    created_at: datetime
    due_at: datetime
    evaluated_at: datetime
    ratio: Optional[float]
    band: SLABand
    remaining_seconds: float

    @property
    def is_breached(self) -> bool:
        return self.band == SLABand.BREACHED
