"""Timeline data model for daytrace.

The central entity is :class:`TimeBlock` (also exported as
``ScheduledEvent``): a minute-of-day range with a category, a title and a
``meta`` record explaining where the block came from.

``meta`` is a tagged union keyed on ``kind``. Each derivation path builds
only the variant it needs, and untyped mappings coming from storage are
validated once at the boundary through :func:`parse_meta`.

Example:
    >>> block = TimeBlock(
    ...     id="derived_actual:work_1",
    ...     title="Deep work",
    ...     start_minutes=540,
    ...     duration=90,
    ...     category=EventCategory.WORK,
    ... )
    >>> block.end_minutes
    630
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from daytrace.core.ids import rebound_derived_id
from daytrace.core.intervals import DAY_MINUTES, Interval


# =============================================================================
# Enums
# =============================================================================


class EventCategory(str, Enum):
    """Closed set of timeline categories."""

    ROUTINE = "routine"
    WORK = "work"
    MEAL = "meal"
    MEETING = "meeting"
    HEALTH = "health"
    FAMILY = "family"
    SOCIAL = "social"
    TRAVEL = "travel"
    FINANCE = "finance"
    COMM = "comm"
    DIGITAL = "digital"
    SLEEP = "sleep"
    UNKNOWN = "unknown"
    FREE = "free"

    @property
    def display_title(self) -> str:
        """Human-readable label used for block titles."""
        return CATEGORY_TITLES[self]


CATEGORY_TITLES: dict[EventCategory, str] = {
    EventCategory.ROUTINE: "Routine",
    EventCategory.WORK: "Work",
    EventCategory.MEAL: "Meal",
    EventCategory.MEETING: "Meeting",
    EventCategory.HEALTH: "Health",
    EventCategory.FAMILY: "Family",
    EventCategory.SOCIAL: "Social",
    EventCategory.TRAVEL: "Travel",
    EventCategory.FINANCE: "Finance",
    EventCategory.COMM: "Commute",
    EventCategory.DIGITAL: "Screen Time",
    EventCategory.SLEEP: "Sleep",
    EventCategory.UNKNOWN: "Unknown",
    EventCategory.FREE: "Free",
}


class EventSource(str, Enum):
    """Who or what produced a block."""

    USER = "user"
    SYSTEM = "system"
    EVIDENCE = "evidence"
    DERIVED = "derived"
    USER_INPUT = "user_input"
    ACTUAL_ADJUST = "actual_adjust"


USER_EDITED_SOURCES = frozenset({EventSource.USER, EventSource.ACTUAL_ADJUST})


class EventKind(str, Enum):
    """Derivation reason recorded in ``meta.kind``."""

    MANUAL = "manual"
    SLEEP_SCHEDULE = "sleep_schedule"
    SLEEP_INTERRUPTED = "sleep_interrupted"
    SLEEP_LATE = "sleep_late"
    SCREEN_TIME = "screen_time"
    PRODUCTIVE_USAGE = "productive_usage"
    UNKNOWN_GAP = "unknown_gap"
    PATTERN_GAP = "pattern_gap"
    PLANNED_ACTUAL = "planned_actual"
    EVIDENCE_BLOCK = "evidence_block"
    TRANSITION_COMMUTE = "transition_commute"
    TRANSITION_PREP = "transition_prep"
    TRANSITION_WIND_DOWN = "transition_wind_down"
    LOCATION_INFERRED = "location_inferred"
    LOCATION_BLOCK = "location_block"


class ConflictSource(str, Enum):
    """Evidence source that disagrees with the plan."""

    LOCATION = "location"
    SCREEN_TIME = "screen_time"
    HEALTH = "health"
    PATTERN = "pattern"


# =============================================================================
# Evidence Records
# =============================================================================


class SleepQualityMetrics(BaseModel):
    """Sleep sub-metrics taken from the health daily summary.

    Attributes:
        asleep_minutes: Total minutes asleep.
        deep_minutes: Minutes in deep sleep.
        rem_minutes: Minutes in REM sleep.
        awake_minutes: Minutes awake while in bed.
        in_bed_minutes: Minutes in bed.
        wake_time_minutes: Wake-up minute of day, if known.
        hrv_ms: Average heart-rate variability.
        resting_heart_rate_bpm: Resting heart rate.
        heart_rate_avg_bpm: Average heart rate.
        quality_score: Computed 0-100 score.
    """

    asleep_minutes: float | None = None
    deep_minutes: float | None = None
    rem_minutes: float | None = None
    awake_minutes: float | None = None
    in_bed_minutes: float | None = None
    wake_time_minutes: float | None = None
    hrv_ms: float | None = None
    resting_heart_rate_bpm: float | None = None
    heart_rate_avg_bpm: float | None = None
    quality_score: float | None = Field(default=None, ge=0, le=100)


class Conflict(BaseModel):
    """A disagreement between one evidence source and the plan."""

    source: ConflictSource
    detail: str


class EvidenceDetails(BaseModel):
    """Evidence attached to a derived block."""

    location_label: str | None = None
    place_category: str | None = None
    screen_time_minutes: int | None = None
    distraction_minutes: int | None = None
    top_app: str | None = None
    sleep: SleepQualityMetrics | None = None
    interruptions: int | None = None
    interruption_minutes: int | None = None
    conflicts: list[Conflict] = Field(default_factory=list)


class DataQuality(BaseModel):
    """How much evidence backed a day.

    Attributes:
        completeness: Share of the known evidence sources that were present.
        reliability: Multiplier applied to fused confidences.
        freshness_minutes: Age of the newest sample, if known.
        sources: Names of the sources that were present.
    """

    completeness: float = Field(default=0.0, ge=0, le=1)
    reliability: float = Field(default=0.4, ge=0, le=1)
    freshness_minutes: int | None = None
    sources: list[str] = Field(default_factory=list)


class FusionSource(BaseModel):
    type: Literal["location", "screen_time", "health", "pattern", "user_history"]
    weight: float
    detail: str


class FusionConflict(BaseModel):
    source1: ConflictSource
    source2: Literal["plan", "pattern"] = "plan"
    conflict: str
    resolution: Literal["source1_wins", "source2_wins", "compromise", "unresolved"]


class EvidenceFusion(BaseModel):
    """Result of fusing all evidence about one planned event."""

    confidence: float = Field(ge=0, le=1)
    sources: list[FusionSource] = Field(default_factory=list)
    conflicts: list[FusionConflict] = Field(default_factory=list)


class PatternSummary(BaseModel):
    """How the user's history compares with a block's category."""

    confidence: float
    sample_count: int
    typical_category: EventCategory | None = None
    deviation: bool = False


# =============================================================================
# Meta (tagged union on ``kind``)
# =============================================================================


class _MetaBase(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    source: EventSource = EventSource.DERIVED
    confidence: float = Field(default=0.5, ge=0, le=1)
    data_quality: DataQuality | None = None
    source_id: str | None = None
    actual: bool = False
    learned: bool = False


class ManualMeta(_MetaBase):
    """Block entered or confirmed directly by the user."""

    kind: Literal["manual"] = "manual"
    source: EventSource = EventSource.USER
    confidence: float = Field(default=1.0, ge=0, le=1)


class PlannedActualMeta(_MetaBase):
    """Actual realization of a planned event."""

    kind: Literal["planned_actual", "sleep_late"] = "planned_actual"
    planned_event_id: str | None = None
    evidence: EvidenceDetails = Field(default_factory=EvidenceDetails)
    evidence_fusion: EvidenceFusion | None = None
    pattern_summary: PatternSummary | None = None
    verification_status: str | None = None


class SleepMeta(_MetaBase):
    kind: Literal["sleep_schedule", "sleep_interrupted"] = "sleep_interrupted"
    evidence: EvidenceDetails = Field(default_factory=EvidenceDetails)


class ScreenTimeMeta(_MetaBase):
    kind: Literal["screen_time", "productive_usage"] = "screen_time"
    app_id: str | None = None
    evidence: EvidenceDetails = Field(default_factory=EvidenceDetails)


class LocationMeta(_MetaBase):
    kind: Literal[
        "location_inferred",
        "location_block",
        "transition_commute",
        "transition_prep",
        "transition_wind_down",
    ] = "location_inferred"
    place_id: str | None = None
    from_label: str | None = None
    to_label: str | None = None
    evidence: EvidenceDetails = Field(default_factory=EvidenceDetails)


class GapMeta(_MetaBase):
    """Placeholder for uncovered time, optionally filled from patterns."""

    kind: Literal["unknown_gap", "pattern_gap"] = "unknown_gap"
    confidence: float = Field(default=0.2, ge=0, le=1)
    pattern_sample_count: int | None = None


class EvidenceBlockMeta(_MetaBase):
    kind: Literal["evidence_block"] = "evidence_block"
    source: EventSource = EventSource.EVIDENCE
    evidence_source: Literal["location", "screen_time", "workout", "derived"] = "derived"
    evidence: EvidenceDetails = Field(default_factory=EvidenceDetails)


EventMeta = Annotated[
    Union[
        ManualMeta,
        PlannedActualMeta,
        SleepMeta,
        ScreenTimeMeta,
        LocationMeta,
        GapMeta,
        EvidenceBlockMeta,
    ],
    Field(discriminator="kind"),
]

_META_ADAPTER: TypeAdapter[Any] = TypeAdapter(EventMeta)


def parse_meta(raw: Mapping[str, Any] | None) -> EventMeta:
    """Validate an untyped meta mapping into its variant.

    A mapping without ``kind`` is treated as a manual (user) block.

    Args:
        raw: Mapping read from storage or a JSON payload.

    Returns:
        The matching meta variant.

    Raises:
        pydantic.ValidationError: If the mapping does not fit its variant.
    """
    data = dict(raw or {})
    if not data.get("kind"):
        data["kind"] = EventKind.MANUAL.value
    return _META_ADAPTER.validate_python(data)


def meta_evidence(meta: EventMeta) -> EvidenceDetails | None:
    """Evidence record of a meta variant, if the variant carries one."""
    return getattr(meta, "evidence", None)


# =============================================================================
# TimeBlock
# =============================================================================


class TimeBlock(BaseModel):
    """A block of the day timeline.

    Attributes:
        id: Deterministic identifier (see :mod:`daytrace.core.ids`).
        title: Short display title.
        description: Human-readable explanation.
        start_minutes: Minutes since local midnight, 0-1440.
        duration: Length in minutes, always positive. Input blocks may run
            past midnight (overnight sleep); the timeline builder clamps
            every output block to ``[0, 1440]``.
        category: Timeline category.
        location: Optional place label.
        is_big3: Whether the user marked this as a top priority.
        meta: Derivation record.
    """

    model_config = {"frozen": True}

    id: str
    title: str
    description: str = ""
    start_minutes: int = Field(ge=0, le=DAY_MINUTES)
    duration: int = Field(gt=0)
    category: EventCategory
    location: str | None = None
    is_big3: bool = False
    meta: EventMeta = Field(default_factory=ManualMeta)

    @field_validator("start_minutes", "duration", mode="before")
    @classmethod
    def round_minutes(cls, v: Any) -> Any:
        """Accept fractional minutes from evidence math."""
        if isinstance(v, float):
            return int(round(v))
        return v

    @field_validator("meta", mode="before")
    @classmethod
    def default_meta_kind(cls, v: Any) -> Any:
        if isinstance(v, Mapping) and not v.get("kind"):
            return {**v, "kind": EventKind.MANUAL.value}
        return v

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration

    @property
    def interval(self) -> Interval:
        return Interval(self.start_minutes, self.end_minutes)

    @property
    def confidence(self) -> float:
        return self.meta.confidence

    @property
    def source(self) -> EventSource:
        return self.meta.source

    @property
    def kind(self) -> str:
        return self.meta.kind

    @property
    def is_unknown(self) -> bool:
        return self.category == EventCategory.UNKNOWN

    @property
    def is_user_actual(self) -> bool:
        """User-entered or user-confirmed actual."""
        return self.meta.actual or self.meta.source in USER_EDITED_SOURCES

    @property
    def is_derived(self) -> bool:
        return self.meta.source == EventSource.DERIVED

    def with_bounds(self, start: int, end: int) -> TimeBlock:
        """Copy of this block moved to ``[start, end)``.

        The copy is validated again, so an empty range raises
        ``ValidationError``. Display-block ids are re-encoded with the new
        bounds.
        """
        return TimeBlock.model_validate(
            {
                **self.model_dump(exclude={"meta"}),
                "meta": self.meta,
                "id": rebound_derived_id(self.id, start, end),
                "start_minutes": start,
                "duration": end - start,
            }
        )


ScheduledEvent = TimeBlock
