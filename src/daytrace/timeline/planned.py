"""Planned-to-actual deriver.

Turns each planned event into the block that most plausibly happened,
using the evidence in a :class:`~daytrace.timeline.context.DayContext`:

- Sleep that started late because the user stayed on the phone is shifted
  to the end of the last qualifying usage burst, and the burst itself is
  emitted as a screen-time block.
- An event confirmed by location evidence is extended while the user stayed
  at the place, up to the next planned start.
- Usage, health, location and pattern evidence is fused into a confidence
  score and a description joined with ``" • "``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from daytrace.core.evidence import VerificationResult, VerificationStatus
from daytrace.core.ids import DERIVED_ACTUAL_PREFIX, DERIVED_EVIDENCE_PREFIX, derived_id
from daytrace.core.intervals import DAY_MINUTES, clamp_to_day, merge_intervals
from daytrace.core.models import (
    Conflict,
    ConflictSource,
    EventCategory,
    EventKind,
    EvidenceDetails,
    PlannedActualMeta,
    ScreenTimeMeta,
    SleepQualityMetrics,
    TimeBlock,
)
from daytrace.evidence.health import build_sleep_quality
from daytrace.evidence.location import LocationBlock, find_matching_location_block
from daytrace.evidence.screen_time import UsageOverlap, session_spans_within, usage_note, usage_overlap
from daytrace.timeline.context import DayContext
from daytrace.timeline.fusion import build_evidence_fusion
from daytrace.timeline.patterns import build_pattern_summary, pattern_suggestion_for_range

logger = logging.getLogger(__name__)

LOW_SLEEP_QUALITY_SCORE = 50
PATTERN_CONFLICT_CONFIDENCE = 0.6

SLEEP_APP_PHRASES = (
    ("youtube", "YouTube rabbit hole"),
    ("instagram", "Instagram scroll"),
    ("tiktok", "TikTok spiral"),
    ("twitter", "Endless scroll"),
)


# =============================================================================
# Sleep Adjustment
# =============================================================================


def sleep_screen_phrase(app: str) -> str:
    """Short phrase for late-night use of an app."""
    name = app.lower()
    for keyword, phrase in SLEEP_APP_PHRASES:
        if keyword in name:
            return phrase
    if "x" in name.split():
        return "Endless scroll"
    return app


def sleep_late_description(minutes: float, top_app: str | None) -> str:
    rounded = int(round(minutes))
    if top_app:
        return f"Started late (Stayed up scrolling on {top_app}, {rounded} min)"
    return f"Started late (Stayed up scrolling, {rounded} min)"


@dataclass(frozen=True)
class SleepAdjustment:
    """Late start of a planned sleep.

    Attributes:
        start: Effective sleep start (may exceed the day length).
        duration: Remaining sleep minutes.
        screen_minutes: Length of the usage burst.
        top_app: App used most during the burst.
        screen_block: Screen-time block for the burst, ``None`` when the
            burst lies outside the day.
    """

    start: float
    duration: float
    screen_minutes: float
    top_app: str | None
    screen_block: TimeBlock | None

    @property
    def description(self) -> str:
        return sleep_late_description(self.screen_minutes, self.top_app)


def _sleep_screen_block(start: float, end: float, top_app: str | None) -> TimeBlock | None:
    lo, hi = int(round(clamp_to_day(start))), int(round(clamp_to_day(end)))
    if hi <= lo:
        return None
    return TimeBlock(
        id=derived_id(DERIVED_EVIDENCE_PREFIX, "sleep_screen_time", lo, hi, "screen"),
        title="Screen Time",
        description=sleep_screen_phrase(top_app) if top_app else "Phone use",
        start_minutes=lo,
        duration=hi - lo,
        category=EventCategory.DIGITAL,
        meta=ScreenTimeMeta(
            kind=EventKind.SCREEN_TIME.value,
            confidence=0.6,
            evidence=EvidenceDetails(screen_time_minutes=int(round(end - start)), top_app=top_app),
        ),
    )


def build_sleep_adjustment(planned: TimeBlock, ctx: DayContext) -> SleepAdjustment | None:
    """Detect that a planned sleep started late because of phone use.

    Sessions inside the planned sleep are merged with the sleep merge gap.
    The last burst of at least ``distraction_minutes`` that starts within
    ``sleep_max_start_offset`` of the planned start moves the start to the
    burst end. The sleep is evaluated over its full length, even when it
    runs past midnight, so the remaining duration is exact.

    Returns:
        The adjustment, or ``None`` when there is no qualifying burst or the
        remaining sleep would be shorter than ``sleep_min_remaining``.
    """
    settings = ctx.settings
    sessions = ctx.raw_sessions
    if planned.category != EventCategory.SLEEP or not sessions:
        return None

    sleep_start, sleep_end = planned.start_minutes, planned.end_minutes
    bursts = merge_intervals(
        session_spans_within(sessions, ctx.clock, sleep_start, sleep_end),
        settings.sleep_merge_gap,
    )
    candidates = [
        burst
        for burst in bursts
        if burst.duration >= settings.distraction_minutes
        and burst.start - sleep_start <= settings.sleep_max_start_offset
    ]
    if not candidates:
        return None

    burst = candidates[-1]
    remaining = sleep_end - burst.end
    if remaining < settings.sleep_min_remaining:
        logger.debug(f"Sleep shift for {planned.id} rejected: only {remaining:.0f} min left")
        return None

    overlap = usage_overlap(burst.start, burst.end, ctx.clock, sessions=sessions, overrides=ctx.overrides)
    top_app = overlap.top_app if overlap else None
    return SleepAdjustment(
        start=burst.end,
        duration=remaining,
        screen_minutes=burst.duration,
        top_app=top_app,
        screen_block=_sleep_screen_block(burst.start, burst.end, top_app),
    )


def apply_sleep_adjustment(planned: TimeBlock, adjustment: SleepAdjustment) -> TimeBlock:
    """Copy of a planned sleep moved to its effective start."""
    return planned.model_copy(
        update={
            "start_minutes": int(round(adjustment.start)),
            "duration": int(round(adjustment.duration)),
            "description": adjustment.description,
        }
    )


# =============================================================================
# Description & Conflicts
# =============================================================================


def describe_planned_actual(
    planned: TimeBlock,
    verification: VerificationResult | None,
    extended_minutes: float,
    location_label: str | None,
    usage: UsageOverlap | None,
    ctx: DayContext,
    sleep_shifted: bool = False,
) -> str:
    """Description parts joined with ``" • "``."""
    threshold = ctx.settings.distraction_minutes
    parts = []
    if planned.description.strip():
        parts.append(planned.description.strip())

    if planned.category == EventCategory.SLEEP and (
        sleep_shifted or (usage is not None and usage.total_minutes >= threshold)
    ):
        if not sleep_shifted:
            parts.append(sleep_late_description(usage.total_minutes, usage.top_app))
        return " • ".join(parts)

    if extended_minutes >= ctx.settings.extension_min_minutes:
        parts.append(f"Ran {int(round(extended_minutes))} min over")

    if location_label and not planned.location:
        parts.append(f"At {location_label}")

    screen = verification.evidence.screen_time if verification else None
    if screen is not None:
        top_app = screen.top_app
        suffix = f" on {top_app}" if top_app else ""
        distraction = int(round(screen.distraction_minutes))
        total = int(round(screen.total_minutes))
        if distraction >= threshold:
            parts.append(f"Distracted: {distraction} min{suffix}")
        elif total >= threshold and planned.category != EventCategory.DIGITAL:
            parts.append(f"Phone use: {total} min{suffix}")
    else:
        note = usage_note(usage, threshold)
        if note:
            parts.append(note)

    if verification and verification.status == VerificationStatus.CONTRADICTED and verification.reason:
        parts.append(verification.reason)

    return " • ".join(parts)


def detect_conflicts(
    planned: TimeBlock,
    start: float,
    end: float,
    usage: UsageOverlap | None,
    sleep_quality: SleepQualityMetrics | None,
    matching: LocationBlock | None,
    verification: VerificationResult | None,
    ctx: DayContext,
) -> list[Conflict]:
    """Evidence that disagrees with the plan."""
    conflicts = []
    if planned.category == EventCategory.WORK and usage and usage.is_distraction:
        conflicts.append(Conflict(source=ConflictSource.SCREEN_TIME, detail="Distraction apps during work"))
    if (
        planned.category == EventCategory.SLEEP
        and usage
        and usage.total_minutes >= ctx.settings.distraction_minutes
    ):
        conflicts.append(Conflict(source=ConflictSource.SCREEN_TIME, detail="Phone use during sleep window"))
    if (
        planned.category == EventCategory.WORK
        and sleep_quality is not None
        and sleep_quality.quality_score is not None
        and sleep_quality.quality_score < LOW_SLEEP_QUALITY_SCORE
    ):
        conflicts.append(Conflict(source=ConflictSource.HEALTH, detail="Low sleep quality before work"))

    location = verification.evidence.location if verification else None
    if planned.location and matching and planned.location.lower() != matching.label.lower():
        conflicts.append(Conflict(source=ConflictSource.LOCATION, detail="Location differs from plan"))
    elif location is not None and location.place_label and not location.matches_expected:
        conflicts.append(
            Conflict(source=ConflictSource.LOCATION, detail=f"Location was {location.place_label}")
        )

    suggestion = pattern_suggestion_for_range(ctx.pattern_index, ctx.day, start, end)
    if (
        suggestion is not None
        and suggestion.category != planned.category
        and suggestion.confidence >= PATTERN_CONFLICT_CONFIDENCE
    ):
        conflicts.append(
            Conflict(
                source=ConflictSource.PATTERN,
                detail=f"Typical {suggestion.category.value} at this time",
            )
        )
    return conflicts


# =============================================================================
# Deriver
# =============================================================================


def _next_planned_start(planned: TimeBlock, ctx: DayContext) -> float:
    for other in ctx.planned:
        if other.start_minutes > planned.start_minutes:
            return min(other.start_minutes, DAY_MINUTES)
    return DAY_MINUTES


def build_planned_actual(
    planned: TimeBlock,
    ctx: DayContext,
    sleep_shifted: bool = False,
) -> TimeBlock | None:
    """Derive the actual block for one planned event.

    Args:
        planned: The planned event, already moved to its effective start
            when a sleep adjustment applies.
        ctx: Day inputs.
        sleep_shifted: Whether ``planned`` carries a sleep adjustment.

    Returns:
        A ``planned_actual`` (or ``sleep_late``) block with id
        ``derived_actual:{planned.id}``, or ``None`` when the event lies
        outside the day.
    """
    settings = ctx.settings
    start = clamp_to_day(planned.start_minutes)
    planned_end = clamp_to_day(planned.end_minutes)
    if planned_end <= start:
        return None

    verification = ctx.verification.get(planned.id)
    location = verification.evidence.location if verification else None
    matching = None
    if location is not None and location.matches_expected:
        matching = find_matching_location_block(
            ctx.location_blocks, start, planned_end, location.place_label, location.place_category
        )

    end = planned_end
    if matching is not None and matching.end_minutes > planned_end:
        candidate = min(matching.end_minutes, _next_planned_start(planned, ctx))
        if candidate - planned_end >= settings.extension_min_minutes:
            end = candidate

    usage = ctx.usage_in(start, end)
    location_label = matching.label if matching else (location.place_label if location else None)
    description = describe_planned_actual(
        planned, verification, end - planned_end, location_label, usage, ctx, sleep_shifted
    )

    is_sleep = planned.category == EventCategory.SLEEP
    sleep_quality = build_sleep_quality(ctx.health, ctx.clock)
    conflicts = detect_conflicts(planned, start, end, usage, sleep_quality, matching, verification, ctx)
    pattern_summary = build_pattern_summary(ctx.pattern_index, ctx.day, start, end, planned.category)
    fusion = build_evidence_fusion(
        verification,
        ctx.data_quality,
        pattern_summary,
        conflicts,
        planned.category,
        settings.fusion_distraction_minutes,
        settings.pattern_override_confidence,
    )

    late = is_sleep and (
        sleep_shifted or (usage is not None and usage.total_minutes >= settings.distraction_minutes)
    )
    meta = PlannedActualMeta(
        kind=EventKind.SLEEP_LATE.value if late else EventKind.PLANNED_ACTUAL.value,
        confidence=fusion.confidence,
        data_quality=ctx.data_quality,
        planned_event_id=planned.id,
        evidence=EvidenceDetails(
            location_label=location_label,
            screen_time_minutes=int(round(usage.total_minutes)) if usage else None,
            top_app=usage.top_app if usage else None,
            sleep=sleep_quality if is_sleep else None,
            conflicts=conflicts,
        ),
        evidence_fusion=fusion,
        pattern_summary=pattern_summary,
        verification_status=verification.status.value if verification else None,
    )

    return TimeBlock(
        id=f"{DERIVED_ACTUAL_PREFIX}{planned.id}",
        title=planned.title,
        description=description,
        start_minutes=int(round(start)),
        duration=max(1, int(round(end - start))),
        category=planned.category,
        location=planned.location or (matching.label if matching else None),
        is_big3=planned.is_big3,
        meta=meta,
    )
