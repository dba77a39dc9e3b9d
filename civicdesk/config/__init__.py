"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Runtime settings (database, scheduler interval, timeouts) come from the
environment. Lifecycle policy (SLA defaults, thresholds, profession keyword
table) lives in ``lifecycle_config.yaml``, see ``LifecycleConfig``.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="civic-desk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/civic_desk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Lifecycle Policy ==========
    lifecycle_config_path: Path = Field(
        default=Path("lifecycle_config.yaml"),
        description="Path to lifecycle policy YAML (SLA defaults, thresholds, keyword table)"
    )

    # ========== Escalation Scheduler ==========
    escalation_interval_seconds: int = Field(
        default=900,
        description="Seconds between escalation cycles (0 disables the scheduler)",
        ge=0
    )
    escalation_conflict_retries: int = Field(
        default=1,
        description="Re-reads allowed per complaint after a concurrent update",
        ge=0,
        le=5
    )
    scheduler_shutdown_timeout_seconds: float = Field(
        default=30.0,
        description="Max seconds to wait for the in-flight cycle on shutdown",
        ge=0
    )

    # ========== Timeouts ==========
    store_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single record store call",
        gt=0,
        le=60
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single notification dispatch",
        gt=0,
        le=30
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving notification events (logging only when unset)"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ComplaintStatus(str, Enum):
    """Complaint lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


class Priority(str, Enum):
    """Complaint priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Profession(str, Enum):
    """Staff professions used by the assignment matcher."""
    ELECTRICIAN = "Electrician"
    PLUMBER = "Plumber"
    CLEANER = "Cleaner"
    MECHANIC = "Mechanic"
    OTHER = "Other"


class ComplaintType(str, Enum):
    """Issue categories a citizen can report."""
    # Civil / roads
    ROAD_DAMAGE = "Road Damage"
    POTHOLES = "Potholes"
    STREET_LIGHT_FAILURE = "Street Light Failure"
    # Plumbing / water
    WATER_LEAKAGE = "Water Leakage"
    CLOGGED_DRAIN = "Clogged Drain"
    BROKEN_PIPE = "Broken Pipe"
    # Electrical
    ELECTRIC_SHORTAGE = "Electric Shortage"
    LIGHTING = "Lighting"
    POWER_OUTAGE = "Power Outage"
    FAULTY_WIRING = "Faulty Wiring"
    # Vehicle / traffic
    ABANDONED_VEHICLE = "Abandoned Vehicle"
    TRAFFIC_SIGNAL_ISSUE = "Traffic Signal Issue"
    ILLEGAL_PARKING = "Illegal Parking"
    ROAD_BLOCKAGE = "Road Blockage"
    # Environment / public spaces
    TREE_DAMAGE = "Tree Damage"
    PARK_MAINTENANCE = "Park Maintenance"
    GRAFFITI = "Graffiti"
    VANDALISM = "Vandalism"
    NOISE_COMPLAINT = "Noise Complaint"
    AIR_QUALITY = "Air Quality"
    # Public services
    STREET_CLEANING = "Street Cleaning"
    PUBLIC_RESTROOM_ISSUE = "Public Restroom Issue"
    WASTE_MANAGEMENT = "Waste Management"
    RECYCLING_ISSUE = "Recycling Issue"
    ANIMAL_CONTROL = "Animal Control"
    PEST_CONTROL = "Pest Control"
    WATER_SUPPLY_ISSUE = "Water Supply Issue"
    SEWAGE_ISSUE = "Sewage Issue"
    FIRE_HAZARD = "Fire Hazard"
    HEALTH_HAZARD = "Health Hazard"
    # Sanitation / general
    GARBAGE = "Garbage"
    SAFETY = "Safety"
    OTHER = "Other"


class NotificationKind(str, Enum):
    """Events forwarded to the notification dispatcher."""
    SLA_ESCALATION = "SLA_ESCALATION"
    SLA_WARNING = "SLA_WARNING"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"


class SLABand(str, Enum):
    """Where a complaint sits relative to its deadline."""
    ON_TRACK = "ON_TRACK"
    WARNING = "WARNING"
    BREACHED = "BREACHED"


# ========== Lists for validation ==========

ACTIVE_STATUSES = [
    ComplaintStatus.OPEN,
    ComplaintStatus.IN_PROGRESS,
    ComplaintStatus.ESCALATED,
]

DEFAULT_SLA_HOURS = 48
AUTO_ASSIGN_ACTOR = "system-auto-assign"
SCHEDULER_ACTOR = "system-sla-monitor"
