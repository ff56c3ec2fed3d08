"""Evidence fusion for planned events.

Combines verification evidence, data quality, pattern history and detected
conflicts into one confidence score plus an explanation of which sources
were consulted and how each conflict was resolved.

Conflict priority, highest first: user plan, location, screen time,
pattern, health. A lower-priority source only overrides the plan under the
specific conditions in :func:`resolve_conflict`.
"""

from __future__ import annotations

from typing import Sequence

from daytrace.core.classifier import is_expected_app
from daytrace.core.evidence import VerificationResult
from daytrace.core.models import (
    Conflict,
    ConflictSource,
    DataQuality,
    EventCategory,
    EvidenceFusion,
    FusionConflict,
    FusionSource,
    PatternSummary,
)

SOURCE_WEIGHTS = {
    "location": 0.35,
    "screen_time": 0.25,
    "health": 0.2,
    "pattern": 0.1,
    "user_history": 0.1,
}

DEFAULT_BASE_CONFIDENCE = 0.6
PATTERN_DEVIATION_PENALTY = 0.85
CONFLICT_PENALTY_PER_ITEM = 0.08
LOCATION_CONFIRMATION_BONUS = 1.1


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def resolve_conflict(
    source: ConflictSource,
    verification: VerificationResult | None,
    pattern_summary: PatternSummary | None,
    planned_category: EventCategory,
    distraction_minutes: float = 20,
    pattern_override_confidence: float = 0.8,
) -> str:
    """Decide which side of a conflict wins.

    Returns:
        ``"source1_wins"`` when the evidence source overrides the plan,
        otherwise ``"unresolved"``.
    """
    evidence = verification.evidence if verification else None

    if source == ConflictSource.LOCATION:
        if evidence and evidence.location and not evidence.location.matches_expected:
            return "source1_wins"
    elif source == ConflictSource.SCREEN_TIME:
        screen = evidence.screen_time if evidence else None
        if (
            screen is not None
            and screen.distraction_minutes >= distraction_minutes
            and not is_expected_app(screen.top_app, planned_category)
        ):
            return "source1_wins"
    elif source == ConflictSource.HEALTH:
        return "source1_wins"
    elif source == ConflictSource.PATTERN:
        if pattern_summary and pattern_summary.confidence >= pattern_override_confidence:
            return "source1_wins"
    return "unresolved"


def build_evidence_fusion(
    verification: VerificationResult | None,
    data_quality: DataQuality | None,
    pattern_summary: PatternSummary | None,
    conflicts: Sequence[Conflict],
    planned_category: EventCategory,
    distraction_minutes: float = 20,
    pattern_override_confidence: float = 0.8,
) -> EvidenceFusion:
    """Fuse all evidence about one planned event.

    Confidence is the verification confidence (default 0.6) scaled by data
    reliability, by 0.85 when the pattern deviates, by
    ``clamp(1 - 0.08 * conflicts, 0.6, 1)`` and by 1.1 when location confirms
    the planned place, then clamped to ``[0, 1]``.

    Args:
        verification: Verification result for the planned event, if any.
        data_quality: Day data quality; ``None`` means full reliability.
        pattern_summary: Pattern comparison for the event's range.
        conflicts: Conflicts detected by the deriver.
        planned_category: Category of the planned event.
        distraction_minutes: Distraction needed for screen time to win.
        pattern_override_confidence: Pattern confidence needed to win.

    Returns:
        The fused result.
    """
    evidence = verification.evidence if verification else None
    sources: list[FusionSource] = []

    if evidence and evidence.location:
        sources.append(
            FusionSource(
                type="location",
                weight=SOURCE_WEIGHTS["location"],
                detail=evidence.location.place_label or "Location data",
            )
        )
    if evidence and evidence.screen_time:
        sources.append(
            FusionSource(
                type="screen_time",
                weight=SOURCE_WEIGHTS["screen_time"],
                detail=f"{round(evidence.screen_time.total_minutes)} min phone use",
            )
        )
    if evidence and evidence.health:
        sources.append(
            FusionSource(
                type="health",
                weight=SOURCE_WEIGHTS["health"],
                detail=evidence.health.workout_type or "Health data",
            )
        )
    if pattern_summary:
        typical = pattern_summary.typical_category
        sources.append(
            FusionSource(
                type="pattern",
                weight=SOURCE_WEIGHTS["pattern"],
                detail=f"Typical {typical.value}" if typical else "Pattern history",
            )
        )
    sources.append(
        FusionSource(
            type="user_history",
            weight=SOURCE_WEIGHTS["user_history"],
            detail=f"Planned {planned_category.value}",
        )
    )

    confidence = verification.confidence if verification else DEFAULT_BASE_CONFIDENCE
    confidence *= data_quality.reliability if data_quality else 1.0
    if pattern_summary and pattern_summary.deviation:
        confidence *= PATTERN_DEVIATION_PENALTY
    if conflicts:
        confidence *= _clamp(1 - len(conflicts) * CONFLICT_PENALTY_PER_ITEM, 0.6, 1.0)
    if evidence and evidence.location and evidence.location.matches_expected:
        confidence *= LOCATION_CONFIRMATION_BONUS

    resolved = [
        FusionConflict(
            source1=conflict.source,
            source2="plan",
            conflict=conflict.detail,
            resolution=resolve_conflict(
                conflict.source,
                verification,
                pattern_summary,
                planned_category,
                distraction_minutes,
                pattern_override_confidence,
            ),
        )
        for conflict in conflicts
    ]

    return EvidenceFusion(confidence=_clamp(confidence, 0.0, 1.0), sources=sources, conflicts=resolved)
