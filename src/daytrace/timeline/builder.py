"""Day timeline builder.

``build_actual_display_events`` is the pure entry point that turns one
day's inputs into the final "actual" timeline: sorted, gap-free and
non-overlapping over ``[0, 1440)``.

Blocks are committed in this order, each only if it does not collide with
what is already committed:

1. Saved actual events (sleep excluded, re-derived below).
2. Saved derived actuals (replacing a committed block with the same id).
3. Screen-time evidence blocks from the usage summary.
4. Upstream evidence blocks. Screen time over a non-user sleep replaces
   the sleep; screen time over a known place is skipped.
5. Planned events through the planned-to-actual deriver.

The gap filler then covers and relabels the rest (see
:mod:`daytrace.timeline.gap_fill`).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from daytrace.core.evidence import (
    ActualBlock,
    AppCategoryOverride,
    EvidenceBundle,
    UsageSummary,
    VerificationResult,
)
from daytrace.core.ids import DERIVED_EVIDENCE_PREFIX, DERIVED_PREFIXES
from daytrace.core.intervals import (
    DAY_MINUTES,
    DayClock,
    Interval,
    clamp_to_day,
    has_overlap,
    overlaps,
    parse_timestamp,
)
from daytrace.core.models import (
    DataQuality,
    EventCategory,
    EventKind,
    EventSource,
    EvidenceBlockMeta,
    EvidenceDetails,
    ScreenTimeMeta,
    TimeBlock,
)
from daytrace.evidence.location import build_location_blocks
from daytrace.evidence.quality import build_data_quality
from daytrace.evidence.screen_time import build_screen_time_blocks
from daytrace.timeline.context import DayContext
from daytrace.timeline.gap_fill import (
    attach_data_quality,
    fill_unknown_gaps,
    merge_adjacent_blocks,
    remove_overlapping_blocks,
    replace_unknown_with_location,
    replace_unknown_with_prep,
    replace_unknown_with_productive_usage,
    replace_unknown_with_sleep_schedule,
    replace_unknown_with_transitions,
)
from daytrace.timeline.patterns import PatternIndex, apply_pattern_suggestions
from daytrace.timeline.planned import apply_sleep_adjustment, build_planned_actual, build_sleep_adjustment
from daytrace.timeline.settings import TimelineSettings

logger = logging.getLogger(__name__)

DEFAULT_EVIDENCE_CONFIDENCE = 0.55


# =============================================================================
# Inputs
# =============================================================================


class DayInputs(BaseModel):
    """Everything known about one user-day.

    Attributes:
        day: Calendar day being built.
        timezone: IANA timezone of the user; ``None`` means UTC.
        planned_events: Planned events of the day.
        actual_events: Actual events already saved for the day.
        derived_actual_events: Derived actuals saved by an earlier run.
        actual_blocks: Evidence blocks produced by an upstream verifier.
        verification_results: Per-planned-event verification outcomes.
        evidence: Stored evidence rows.
        usage_summary: Device usage summary.
        pattern_index: Pattern history of the user.
        app_overrides: Per-user app category overrides.
        now: Reference time for data freshness and for skipping future days.
    """

    day: date
    timezone: str | None = None
    planned_events: list[TimeBlock] = Field(default_factory=list)
    actual_events: list[TimeBlock] = Field(default_factory=list)
    derived_actual_events: list[TimeBlock] = Field(default_factory=list)
    actual_blocks: list[ActualBlock] = Field(default_factory=list)
    verification_results: list[VerificationResult] = Field(default_factory=list)
    evidence: EvidenceBundle | None = None
    usage_summary: UsageSummary | None = None
    pattern_index: PatternIndex | None = None
    app_overrides: dict[str, AppCategoryOverride] = Field(default_factory=dict)
    now: datetime | None = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("now", mode="before")
    @classmethod
    def parse_now(cls, v: Any) -> Any:
        if isinstance(v, (str, datetime)):
            return parse_timestamp(v)
        return v

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone) if self.timezone else timezone.utc

    @property
    def has_evidence(self) -> bool:
        evidence = self.evidence
        return bool(
            self.usage_summary is not None
            or (evidence is not None and (evidence.location_hourly or evidence.screen_time_sessions))
            or (evidence is not None and evidence.health_daily is not None)
            or self.actual_blocks
            or self.derived_actual_events
            or self.actual_events
        )


def build_day_context(inputs: DayInputs, settings: TimelineSettings) -> DayContext:
    """Resolve raw inputs into the shared read-only context."""
    clock = DayClock(inputs.day, inputs.tz)
    evidence = inputs.evidence or EvidenceBundle()
    data_quality = build_data_quality(inputs.evidence, inputs.usage_summary, inputs.now or clock.day_end)
    return DayContext(
        clock=clock,
        settings=settings,
        planned=tuple(sorted(inputs.planned_events, key=lambda e: (e.start_minutes, e.end_minutes))),
        location_blocks=tuple(build_location_blocks(evidence.location_hourly, clock)),
        usage=inputs.usage_summary,
        sessions=tuple(evidence.screen_time_sessions),
        health=evidence.health_daily,
        pattern_index=inputs.pattern_index,
        data_quality=data_quality,
        overrides=inputs.app_overrides,
        verification={r.event_id: r for r in inputs.verification_results},
    )


# =============================================================================
# Commit Buffer
# =============================================================================


class _Committed:
    """Blocks committed so far, with the "add only if free" rule."""

    def __init__(self, blocks: Sequence[TimeBlock]):
        self.blocks: list[TimeBlock] = list(blocks)
        self.saved_keys = {
            (b.start_minutes, b.end_minutes, b.kind)
            for b in self.blocks
            if b.meta.source_id and b.meta.source_id.startswith(DERIVED_PREFIXES)
        }

    @property
    def intervals(self) -> list[Interval]:
        return [b.interval for b in self.blocks]

    def add_if_free(self, block: TimeBlock, min_overlap: int = 1) -> bool:
        """Commit ``block`` unless it overlaps by ``min_overlap`` or was already saved."""
        if has_overlap(block.start_minutes, block.end_minutes, self.intervals, min_overlap):
            return False
        if block.id.startswith(DERIVED_PREFIXES):
            if (block.start_minutes, block.end_minutes, block.kind) in self.saved_keys:
                return False
        self.blocks.append(block)
        return True

    def replace_by_id(self, block: TimeBlock) -> bool:
        for i, existing in enumerate(self.blocks):
            if existing.id == block.id:
                self.blocks[i] = block
                return True
        return False

    def remove_sleep_overlaps(self, start: int, end: int) -> None:
        """Drop non-user sleep blocks overlapping ``[start, end)``."""
        self.blocks = [
            b
            for b in self.blocks
            if not (
                b.category == EventCategory.SLEEP
                and b.source not in (EventSource.USER, EventSource.ACTUAL_ADJUST)
                and overlaps(start, end, b.start_minutes, b.end_minutes)
            )
        ]

    def overlaps_sleep(self, start: int, end: int) -> bool:
        return any(
            b.category == EventCategory.SLEEP and overlaps(start, end, b.start_minutes, b.end_minutes)
            for b in self.blocks
        )


def _dedupe_by_id(blocks: Sequence[TimeBlock]) -> list[TimeBlock]:
    seen: set[str] = set()
    unique = []
    for block in blocks:
        if block.id in seen:
            continue
        seen.add(block.id)
        unique.append(block)
    return unique


def evidence_block_to_time_block(block: ActualBlock, data_quality: DataQuality) -> TimeBlock | None:
    """Convert an upstream evidence block; ``None`` when it lies outside the day."""
    start = int(round(clamp_to_day(block.start_minutes)))
    end = int(round(clamp_to_day(block.end_minutes)))
    if end <= start:
        return None
    screen = block.evidence.screen_time
    location = block.evidence.location
    details = EvidenceDetails(
        location_label=location.place_label if location else None,
        screen_time_minutes=int(round(screen.total_minutes)) if screen else None,
        top_app=screen.top_app if screen else None,
    )
    confidence = block.confidence if block.confidence is not None else DEFAULT_EVIDENCE_CONFIDENCE
    if block.source == "screen_time":
        meta: Any = ScreenTimeMeta(
            source=EventSource.EVIDENCE, confidence=confidence, data_quality=data_quality, evidence=details
        )
    else:
        meta = EvidenceBlockMeta(
            confidence=confidence, data_quality=data_quality, evidence_source=block.source, evidence=details
        )
    return TimeBlock(
        id=f"{DERIVED_EVIDENCE_PREFIX}{block.id}",
        title=block.title,
        description=block.description or "",
        start_minutes=start,
        duration=end - start,
        category=block.category,
        meta=meta,
    )


# =============================================================================
# Builder
# =============================================================================


def _commit_evidence_blocks(committed: _Committed, inputs: DayInputs, ctx: DayContext) -> None:
    settings = ctx.settings
    for raw in inputs.actual_blocks:
        block = evidence_block_to_time_block(raw, ctx.data_quality)
        if block is None or block.duration < settings.min_evidence_block_minutes:
            continue
        if block.kind == EventKind.SCREEN_TIME.value:
            start, end = block.start_minutes, block.end_minutes
            if committed.overlaps_sleep(start, end):
                committed.remove_sleep_overlaps(start, end)
                committed.add_if_free(block)
                continue
            if any(overlaps(start, end, p.start_minutes, p.end_minutes) for p in ctx.location_blocks):
                continue
        committed.add_if_free(block)


def _commit_planned(committed: _Committed, ctx: DayContext) -> list[Interval]:
    """Derive planned events; returns the effective sleep intervals."""
    settings = ctx.settings
    sleep_intervals: list[Interval] = []
    for planned in ctx.planned:
        adjustment = build_sleep_adjustment(planned, ctx) if planned.category == EventCategory.SLEEP else None
        effective = planned
        if adjustment is not None:
            if adjustment.screen_block is not None and adjustment.start >= DAY_MINUTES:
                committed.add_if_free(adjustment.screen_block, settings.planned_overlap_minutes)
                continue
            effective = apply_sleep_adjustment(planned, adjustment)

        start = clamp_to_day(effective.start_minutes)
        end = clamp_to_day(effective.end_minutes)
        if end <= start:
            continue
        if effective.category == EventCategory.SLEEP:
            sleep_intervals.append(Interval(start, end))
        if has_overlap(start, end, committed.intervals, settings.committed_overlap_minutes):
            logger.debug(f"Planned event {planned.id} skipped: overlaps committed blocks")
            continue

        if adjustment is not None and adjustment.screen_block is not None:
            committed.add_if_free(adjustment.screen_block, settings.planned_overlap_minutes)

        derived = build_planned_actual(effective, ctx, sleep_shifted=adjustment is not None)
        if derived is not None:
            committed.add_if_free(derived, 1)
    return sleep_intervals


def _post_process(blocks: list[TimeBlock], sleep_intervals: list[Interval], ctx: DayContext) -> list[TimeBlock]:
    settings = ctx.settings
    blocks = fill_unknown_gaps(blocks)
    blocks = replace_unknown_with_sleep_schedule(blocks, sleep_intervals, ctx)
    if not settings.is_manual:
        blocks = replace_unknown_with_location(blocks, ctx)
    if settings.is_aggressive:
        blocks = replace_unknown_with_productive_usage(blocks, ctx)
        blocks = replace_unknown_with_transitions(blocks, ctx)
        blocks = replace_unknown_with_prep(blocks, ctx)
    if not settings.is_manual and settings.allow_auto_suggestions:
        blocks = apply_pattern_suggestions(blocks, ctx.pattern_index, ctx.day, settings.pattern_threshold)
    blocks = attach_data_quality(blocks, ctx.data_quality)
    blocks = remove_overlapping_blocks(blocks, settings.dedup_overlap_minutes)
    blocks = merge_adjacent_blocks(blocks)
    blocks = attach_data_quality(fill_unknown_gaps(blocks), ctx.data_quality)
    return sorted(blocks, key=lambda b: b.start_minutes)


def build_actual_display_events(
    inputs: DayInputs,
    settings: TimelineSettings | None = None,
) -> list[TimeBlock]:
    """Build the gap-free actual timeline of one day.

    Args:
        inputs: The day's plans, saved events and evidence.
        settings: Thresholds and preferences; defaults when omitted.

    Returns:
        Blocks sorted by start that cover ``[0, 1440)`` without gaps or
        overlaps. A day without any input is one unknown block.

    Example:
        >>> inputs = DayInputs(day=date(2025, 3, 4), planned_events=[work_9_to_10])
        >>> [b.kind for b in build_actual_display_events(inputs)]
        ['unknown_gap', 'planned_actual', 'unknown_gap']
    """
    settings = settings or TimelineSettings()
    ctx = build_day_context(inputs, settings)

    saved = _dedupe_by_id(e for e in inputs.actual_events if e.category != EventCategory.SLEEP)
    committed = _Committed(saved)

    for block in inputs.derived_actual_events:
        if not committed.replace_by_id(block):
            committed.add_if_free(block)

    screen_blocks = build_screen_time_blocks(
        inputs.usage_summary,
        ctx.clock,
        protected=[Interval(clamp_to_day(p.start_minutes), clamp_to_day(p.end_minutes)) for p in ctx.planned],
        min_minutes=settings.min_evidence_block_minutes,
        protected_overlap_minutes=settings.planned_overlap_minutes,
        merge_gap=settings.screen_time_merge_gap,
        overrides=inputs.app_overrides,
    )
    for block in screen_blocks:
        committed.add_if_free(block)

    _commit_evidence_blocks(committed, inputs, ctx)

    sleep_intervals: list[Interval] = []
    today = inputs.now.astimezone(ctx.clock.tz).date() if inputs.now is not None else None
    if today is None or inputs.day <= today or inputs.has_evidence:
        sleep_intervals = _commit_planned(committed, ctx)
    else:
        logger.debug(f"Skipping planned derivation for future day {inputs.day}")

    timeline = _post_process(committed.blocks, sleep_intervals, ctx)
    logger.debug(f"Built timeline for {inputs.day}: {len(timeline)} blocks")
    return timeline
