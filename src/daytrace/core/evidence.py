"""Raw evidence records consumed by the builders.

These models describe what the data collectors hand to daytrace: screen-time
sessions and usage summaries, hourly location rows and raw samples, user
places, health daily summaries, and per-event verification results. They
are validated once here; builders downstream assume well-typed input.

Timestamps without an offset are interpreted as UTC.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from daytrace.core.intervals import parse_timestamp
from daytrace.core.models import EventCategory


def _aware(v: Any) -> Any:
    if isinstance(v, (str, datetime)):
        return parse_timestamp(v)
    return v


# =============================================================================
# Screen Time
# =============================================================================


class ScreenTimeSession(BaseModel):
    """One foreground app session.

    Attributes:
        app_id: Package or bundle identifier.
        display_name: Human-readable app name, if the collector knows it.
        started_at: Session start.
        ended_at: Session end.
        duration_seconds: Reported duration; may differ from the bounds.
    """

    app_id: str
    display_name: str | None = None
    started_at: datetime
    ended_at: datetime
    duration_seconds: float | None = None

    @field_validator("started_at", "ended_at", mode="before")
    @classmethod
    def parse_times(cls, v: Any) -> Any:
        return _aware(v)

    @property
    def app_name(self) -> str:
        return self.display_name or self.app_id


class TopApp(BaseModel):
    app_id: str
    display_name: str
    total_seconds: float = 0.0


class UsageSummary(BaseModel):
    """Device usage summary for one day.

    Exactly one granularity is used, most precise first: ``sessions``, then
    ``hourly_by_app`` (``{app_id: {hour: seconds}}``), then
    ``hourly_seconds`` (24 aggregate buckets).
    """

    generated_at: datetime | None = None
    sessions: list[ScreenTimeSession] = Field(default_factory=list)
    hourly_by_app: dict[str, dict[int, float]] = Field(default_factory=dict)
    hourly_seconds: list[float] = Field(default_factory=list)
    top_apps: list[TopApp] = Field(default_factory=list)

    @field_validator("generated_at", mode="before")
    @classmethod
    def parse_generated(cls, v: Any) -> Any:
        return _aware(v)

    def app_name(self, app_id: str) -> str:
        """Display name for an app id, falling back to the id."""
        for app in self.top_apps:
            if app.app_id == app_id:
                return app.display_name
        return app_id

    @property
    def top_app_name(self) -> str | None:
        return self.top_apps[0].display_name if self.top_apps else None

    @property
    def is_empty(self) -> bool:
        return not (self.sessions or self.hourly_by_app or any(self.hourly_seconds))


class AppCategoryOverride(BaseModel):
    """User-chosen category for an app."""

    category: EventCategory
    confidence: float = Field(default=0.8, ge=0, le=1)


# =============================================================================
# Location
# =============================================================================


class LocationHourlyRow(BaseModel):
    """Dominant place for one hour of the day."""

    hour_start: datetime
    place_label: str | None = None
    place_category: str | None = None
    place_id: str | None = None
    sample_count: int = 0

    @field_validator("hour_start", mode="before")
    @classmethod
    def parse_hour(cls, v: Any) -> Any:
        return _aware(v)

    @property
    def label(self) -> str:
        return (self.place_label or self.place_category or "").strip()


class LocationSample(BaseModel):
    recorded_at: datetime
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy_m: float | None = None

    @field_validator("recorded_at", mode="before")
    @classmethod
    def parse_recorded(cls, v: Any) -> Any:
        return _aware(v)


class UserPlace(BaseModel):
    """A place the user has named."""

    id: str
    label: str
    category: str | None = None
    latitude: float
    longitude: float
    radius_m: float | None = None


# =============================================================================
# Health
# =============================================================================


class Workout(BaseModel):
    workout_type: str
    started_at: datetime | None = None
    duration_minutes: float = 0.0

    @field_validator("started_at", mode="before")
    @classmethod
    def parse_started(cls, v: Any) -> Any:
        return _aware(v)


class HealthDailyRow(BaseModel):
    """Health summary for one day. Sleep values are in seconds."""

    day: date | None = None
    sleep_asleep_seconds: float | None = None
    sleep_deep_seconds: float | None = None
    sleep_rem_seconds: float | None = None
    sleep_awake_seconds: float | None = None
    sleep_in_bed_seconds: float | None = None
    wake_time: datetime | None = None
    resting_heart_rate_bpm: float | None = None
    heart_rate_avg_bpm: float | None = None
    hrv_ms: float | None = None
    steps: int | None = None
    workouts: list[Workout] = Field(default_factory=list)

    @field_validator("wake_time", mode="before")
    @classmethod
    def parse_wake(cls, v: Any) -> Any:
        return _aware(v)


class EvidenceBundle(BaseModel):
    """All stored evidence rows for one user-day."""

    location_hourly: list[LocationHourlyRow] = Field(default_factory=list)
    screen_time_sessions: list[ScreenTimeSession] = Field(default_factory=list)
    health_daily: HealthDailyRow | None = None


# =============================================================================
# Verification
# =============================================================================


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    MOSTLY_VERIFIED = "mostly_verified"
    PARTIALLY_VERIFIED = "partially_verified"
    PARTIAL = "partial"
    UNVERIFIED = "unverified"
    CONTRADICTED = "contradicted"
    DISTRACTED = "distracted"
    EARLY = "early"
    LATE = "late"
    SHORTENED = "shortened"


class AppMinutes(BaseModel):
    app: str
    minutes: float


class LocationEvidence(BaseModel):
    place_label: str | None = None
    place_category: str | None = None
    sample_count: int = 0
    matches_expected: bool = False


class ScreenTimeEvidence(BaseModel):
    total_minutes: float = 0.0
    distraction_minutes: float = 0.0
    top_apps: list[AppMinutes] = Field(default_factory=list)
    was_distracted: bool = False

    @property
    def top_app(self) -> str | None:
        return self.top_apps[0].app if self.top_apps else None


class HealthEvidence(BaseModel):
    has_workout: bool = False
    workout_type: str | None = None
    workout_duration_minutes: float | None = None


class VerificationEvidence(BaseModel):
    location: LocationEvidence | None = None
    screen_time: ScreenTimeEvidence | None = None
    health: HealthEvidence | None = None


class VerificationResult(BaseModel):
    """Outcome of checking one planned event against evidence."""

    event_id: str
    status: VerificationStatus = VerificationStatus.UNVERIFIED
    confidence: float = Field(default=0.6, ge=0, le=1)
    reason: str | None = None
    evidence: VerificationEvidence = Field(default_factory=VerificationEvidence)


class ActualBlock(BaseModel):
    """Evidence block produced by an upstream verifier."""

    id: str
    title: str
    description: str | None = None
    category: EventCategory
    start_minutes: float
    end_minutes: float
    source: str = Field(pattern="^(location|screen_time|workout|derived)$")
    evidence: VerificationEvidence = Field(default_factory=VerificationEvidence)
    confidence: float | None = Field(default=None, ge=0, le=1)
