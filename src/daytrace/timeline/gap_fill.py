"""Timeline gap filler and post-processor.

The stages run in a fixed order (see ``build_actual_display_events``):

1. ``fill_unknown_gaps`` covers every uncovered minute with unknown blocks.
2. Unknown time inside planned sleep becomes sleep.
3. Unknown time at a known place becomes a location block, or a commute
   when it sits between two different places.
4. Aggressive mode only: productive phone use, commutes between blocks at
   different places, and prep/wind-down between related blocks.
5. Pattern suggestions relabel what is still unknown.
6. ``remove_overlapping_blocks`` keeps the best block for each stretch of
   time, ``merge_adjacent_blocks`` re-joins split blocks and gaps are
   filled once more.

Every stage takes and returns a list of blocks and never mutates its input.
"""

from __future__ import annotations

import logging
from functools import cmp_to_key
from typing import Iterable, Sequence

from daytrace.core.ids import DERIVED_ACTUAL_PREFIX, derived_id
from daytrace.core.intervals import DAY_MINUTES, Interval, clamp_to_day, merge_intervals, overlap_minutes
from daytrace.core.models import (
    DataQuality,
    EventCategory,
    EventKind,
    EvidenceDetails,
    GapMeta,
    LocationMeta,
    ScreenTimeMeta,
    SleepMeta,
    TimeBlock,
)
from daytrace.evidence.health import build_sleep_quality
from daytrace.evidence.location import (
    build_commute_block,
    build_location_inferred_block,
    is_commute,
    location_at_minute,
)
from daytrace.evidence.screen_time import InterruptionSummary, sleep_interruptions, usage_note
from daytrace.timeline.context import DayContext

logger = logging.getLogger(__name__)

TRANSITION_CATEGORIES = (EventCategory.WORK, EventCategory.HEALTH, EventCategory.MEETING)


# =============================================================================
# Unknown Blocks
# =============================================================================


def build_unknown_block(start: int, end: int, data_quality: DataQuality | None = None) -> TimeBlock:
    """Placeholder for uncovered time. The id depends only on the bounds."""
    return TimeBlock(
        id=derived_id(DERIVED_ACTUAL_PREFIX, "unknown", start, end, "gap"),
        title="Unknown",
        description="Tap to assign",
        start_minutes=start,
        duration=end - start,
        category=EventCategory.UNKNOWN,
        meta=GapMeta(kind=EventKind.UNKNOWN_GAP.value, confidence=0.2, data_quality=data_quality),
    )


def _by_start(blocks: Iterable[TimeBlock]) -> list[TimeBlock]:
    return sorted(blocks, key=lambda b: (b.start_minutes, b.end_minutes))


def merge_adjacent_unknowns(blocks: Sequence[TimeBlock]) -> list[TimeBlock]:
    merged: list[TimeBlock] = []
    for block in blocks:
        last = merged[-1] if merged else None
        if (
            last is not None
            and last.is_unknown
            and block.is_unknown
            and last.end_minutes == block.start_minutes
        ):
            merged[-1] = build_unknown_block(last.start_minutes, block.end_minutes, last.meta.data_quality)
            continue
        merged.append(block)
    return merged


def fill_unknown_gaps(blocks: Sequence[TimeBlock]) -> list[TimeBlock]:
    """Cover every uncovered minute of the day with unknown blocks.

    Example:
        >>> blocks = fill_unknown_gaps([work_9_to_10])
        >>> [(b.start_minutes, b.end_minutes, b.title) for b in blocks]
        [(0, 540, 'Unknown'), (540, 600, 'Deep work'), (600, 1440, 'Unknown')]
    """
    filled: list[TimeBlock] = []
    cursor = 0
    for block in _by_start(blocks):
        start = int(clamp_to_day(block.start_minutes))
        end = int(clamp_to_day(block.end_minutes))
        if end <= start:
            continue
        if (start, end) != (block.start_minutes, block.end_minutes):
            block = block.with_bounds(start, end)
        if start > cursor:
            filled.append(build_unknown_block(cursor, start))
        filled.append(block)
        cursor = max(cursor, end)
    if cursor < DAY_MINUTES:
        filled.append(build_unknown_block(cursor, DAY_MINUTES))
    return merge_adjacent_unknowns(filled)


def _replace_unknowns(blocks: Sequence[TimeBlock], replace) -> list[TimeBlock]:
    """Run ``replace(block)`` on each unknown block; it returns replacement blocks."""
    updated: list[TimeBlock] = []
    for block in _by_start(blocks):
        if not block.is_unknown:
            updated.append(block)
            continue
        updated.extend(replace(block))
    return merge_adjacent_unknowns(_by_start(updated))


# =============================================================================
# Sleep Schedule
# =============================================================================


def describe_sleep(summary: InterruptionSummary | None) -> str:
    if summary is None:
        return "Sleep schedule"
    times = "time" if summary.count == 1 else "times"
    app = f" on {summary.top_app}" if summary.top_app else ""
    return f"Sleep schedule • Interrupted {summary.count} {times} ({int(round(summary.minutes))} min{app})"


def build_sleep_schedule_block(start: int, end: int, ctx: DayContext) -> TimeBlock:
    """Sleep block for unknown time inside a planned sleep.

    Phone use inside the range marks the block ``sleep_interrupted`` with
    the interruption count, minutes and top app.
    """
    summary = sleep_interruptions(
        start,
        end,
        ctx.clock,
        usage=ctx.usage,
        sessions=ctx.sessions or None,
        merge_gap=ctx.settings.sleep_merge_gap,
    )
    kind = EventKind.SLEEP_INTERRUPTED if summary else EventKind.SLEEP_SCHEDULE
    return TimeBlock(
        id=derived_id(DERIVED_ACTUAL_PREFIX, kind.value, start, end, "sleep"),
        title="Sleep",
        description=describe_sleep(summary),
        start_minutes=start,
        duration=end - start,
        category=EventCategory.SLEEP,
        meta=SleepMeta(
            kind=kind.value,
            confidence=0.7 if summary else 0.5,
            data_quality=ctx.data_quality,
            evidence=EvidenceDetails(
                top_app=summary.top_app if summary else None,
                interruptions=summary.count if summary else None,
                interruption_minutes=int(round(summary.minutes)) if summary else None,
                sleep=build_sleep_quality(ctx.health, ctx.clock),
            ),
        ),
    )


def replace_unknown_with_sleep_schedule(
    blocks: Sequence[TimeBlock],
    sleep_intervals: Sequence[Interval],
    ctx: DayContext,
) -> list[TimeBlock]:
    """Split unknown blocks around planned sleep and fill the sleep part."""
    intervals = merge_intervals([i.clamped() for i in sleep_intervals])
    if not intervals:
        return list(blocks)

    def replace(block: TimeBlock) -> list[TimeBlock]:
        start, end = block.start_minutes, block.end_minutes
        pieces = []
        cursor = start
        for interval in intervals:
            if interval.end <= cursor:
                continue
            if interval.start >= end:
                break
            lo, hi = int(max(cursor, interval.start)), int(min(end, interval.end))
            if lo > cursor:
                pieces.append(build_unknown_block(cursor, lo))
            if hi > lo:
                pieces.append(build_sleep_schedule_block(lo, hi, ctx))
            cursor = max(cursor, hi)
        if cursor < end:
            pieces.append(build_unknown_block(cursor, end))
        return pieces

    return _replace_unknowns(blocks, replace)


# =============================================================================
# Location
# =============================================================================


def replace_unknown_with_location(blocks: Sequence[TimeBlock], ctx: DayContext) -> list[TimeBlock]:
    """Label unknown time from hourly location blocks.

    An unknown stretch that starts at one place and ends at another, with a
    commute-sized length, becomes a "Driving" block. Otherwise each overlap
    with a location block of at least the minimum length becomes a
    ``location_inferred`` block; shorter overlaps stay unknown.
    """
    settings = ctx.settings
    places = ctx.location_blocks
    if not places:
        return list(blocks)

    def note(start: int, end: int) -> tuple[str | None, EvidenceDetails]:
        usage = ctx.usage_in(start, end, prefer_sessions=True)
        details = EvidenceDetails(
            screen_time_minutes=int(round(usage.total_minutes)) if usage else None,
            top_app=usage.top_app if usage else None,
        )
        return usage_note(usage, settings.distraction_minutes), details

    def replace(block: TimeBlock) -> list[TimeBlock]:
        start, end = block.start_minutes, block.end_minutes
        first = location_at_minute(places, start)
        last = location_at_minute(places, max(start, end - 1))
        from_label = first.label.strip() if first else None
        to_label = last.label.strip() if last else None
        if is_commute(from_label, to_label, end - start, settings.commute_min_gap, settings.commute_max_gap):
            text, details = note(start, end)
            return [
                build_commute_block(
                    start, end, from_label, to_label, text, data_quality=ctx.data_quality, evidence=details
                )
            ]

        pieces = []
        cursor = start
        for place in sorted(places, key=lambda p: p.start_minutes):
            lo = max(cursor, place.start_minutes)
            hi = min(end, place.end_minutes)
            if hi <= lo:
                continue
            if lo > cursor:
                pieces.append(build_unknown_block(cursor, lo))
            if hi - lo < settings.min_evidence_block_minutes:
                pieces.append(build_unknown_block(lo, hi))
            else:
                text, details = note(lo, hi)
                pieces.append(
                    build_location_inferred_block(
                        lo,
                        hi,
                        place.label,
                        place.place_category,
                        text,
                        place_id=place.place_id,
                        data_quality=ctx.data_quality,
                        evidence=details,
                    )
                )
            cursor = hi
        if cursor < end:
            pieces.append(build_unknown_block(cursor, end))
        return pieces

    return _replace_unknowns(blocks, replace)


# =============================================================================
# Aggressive Inference
# =============================================================================


def _duration_label(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m" if hours else f"{rest}m"


def build_productive_block(start: int, end: int, top_app: str | None) -> TimeBlock:
    app = f" on {top_app}" if top_app else ""
    return TimeBlock(
        id=derived_id(DERIVED_ACTUAL_PREFIX, "productive", start, end, top_app or "unknown"),
        title="Productive",
        description=f"{_duration_label(end - start)}{app}",
        start_minutes=start,
        duration=end - start,
        category=EventCategory.WORK,
        meta=ScreenTimeMeta(
            kind=EventKind.PRODUCTIVE_USAGE.value,
            confidence=0.45,
            evidence=EvidenceDetails(top_app=top_app, screen_time_minutes=end - start),
        ),
    )


def replace_unknown_with_productive_usage(blocks: Sequence[TimeBlock], ctx: DayContext) -> list[TimeBlock]:
    """Turn unknown time with enough productive phone use into work."""
    if ctx.usage is None:
        return list(blocks)

    def replace(block: TimeBlock) -> list[TimeBlock]:
        start, end = block.start_minutes, block.end_minutes
        usage = ctx.usage_in(start, end)
        if usage is None or not usage.is_productive:
            return [block]
        if usage.total_minutes < ctx.settings.min_evidence_block_minutes:
            return [block]
        productive_end = start + max(1, int(round(min(usage.total_minutes, end - start))))
        pieces = [build_productive_block(start, productive_end, usage.top_app)]
        if productive_end < end:
            pieces.append(build_unknown_block(productive_end, end))
        return pieces

    return _replace_unknowns(blocks, replace)


def _neighbor_labels(
    blocks: Sequence[TimeBlock], index: int, ctx: DayContext
) -> tuple[str | None, str | None]:
    block = blocks[index]
    prev, nxt = blocks[index - 1], blocks[index + 1]
    at_start = location_at_minute(ctx.location_blocks, block.start_minutes)
    at_end = location_at_minute(ctx.location_blocks, block.end_minutes)
    from_label = at_start.label if at_start else prev.location
    to_label = at_end.label if at_end else nxt.location
    return from_label, to_label


def _same_place(a: str | None, b: str | None) -> bool:
    return a is None or b is None or a.strip().lower() == b.strip().lower()


def replace_unknown_with_transitions(blocks: Sequence[TimeBlock], ctx: DayContext) -> list[TimeBlock]:
    """Label unknown gaps between blocks at different places as commutes."""
    settings = ctx.settings
    ordered = _by_start(blocks)
    updated = []
    for i, block in enumerate(ordered):
        if not block.is_unknown or i == 0 or i == len(ordered) - 1:
            updated.append(block)
            continue
        if not settings.commute_min_gap <= block.duration <= settings.commute_max_gap:
            updated.append(block)
            continue
        from_label, to_label = _neighbor_labels(ordered, i, ctx)
        if not from_label or not to_label or _same_place(from_label, to_label):
            updated.append(block)
            continue
        updated.append(
            build_commute_block(
                block.start_minutes,
                block.end_minutes,
                from_label,
                to_label,
                title="Commute",
                confidence=0.45,
                data_quality=ctx.data_quality,
            )
        )
    return updated


def build_transition_block(
    block: TimeBlock, title: str, kind: EventKind, category: EventCategory, label: str | None
) -> TimeBlock:
    return TimeBlock(
        id=derived_id(DERIVED_ACTUAL_PREFIX, kind.value, block.start_minutes, block.end_minutes, label or title),
        title=title,
        description=f"{title} at {label}" if label else title,
        start_minutes=block.start_minutes,
        duration=block.duration,
        category=category,
        location=label,
        meta=LocationMeta(
            kind=kind.value,
            confidence=0.35,
            data_quality=block.meta.data_quality,
            evidence=EvidenceDetails(location_label=label),
        ),
    )


def replace_unknown_with_prep(blocks: Sequence[TimeBlock], ctx: DayContext) -> list[TimeBlock]:
    """Label short gaps between related blocks at one place.

    The gap must sit between two blocks of the same work, health or meeting
    category at the same place. A gap inside a repeated activity (both
    neighbors share a title) is a wind-down; otherwise it is prep for the
    next block.
    """
    settings = ctx.settings
    ordered = _by_start(blocks)
    updated = []
    for i, block in enumerate(ordered):
        if not block.is_unknown or i == 0 or i == len(ordered) - 1:
            updated.append(block)
            continue
        prev, nxt = ordered[i - 1], ordered[i + 1]
        if not settings.prep_min_gap <= block.duration <= settings.prep_max_gap:
            updated.append(block)
            continue
        if prev.category != nxt.category or prev.category not in TRANSITION_CATEGORIES:
            updated.append(block)
            continue
        from_label, to_label = _neighbor_labels(ordered, i, ctx)
        if not _same_place(from_label, to_label):
            updated.append(block)
            continue

        wind_down = prev.title.strip().lower() == nxt.title.strip().lower()
        title = "Wind down" if wind_down else "Prep"
        kind = EventKind.TRANSITION_WIND_DOWN if wind_down else EventKind.TRANSITION_PREP
        updated.append(build_transition_block(block, title, kind, prev.category, from_label or to_label))
    return updated


# =============================================================================
# Final Passes
# =============================================================================


def attach_data_quality(blocks: Sequence[TimeBlock], data_quality: DataQuality) -> list[TimeBlock]:
    """Give every block without data quality the day's value."""
    updated = []
    for block in blocks:
        if block.meta.data_quality is not None:
            updated.append(block)
            continue
        meta = block.meta.model_copy(update={"data_quality": data_quality})
        updated.append(block.model_copy(update={"meta": meta}))
    return updated


def _priority(a: TimeBlock, b: TimeBlock) -> int:
    keys_a = (not a.is_user_actual, a.is_derived, a.is_unknown, -a.confidence, a.start_minutes)
    keys_b = (not b.is_user_actual, b.is_derived, b.is_unknown, -b.confidence, b.start_minutes)
    return (keys_a > keys_b) - (keys_a < keys_b)


def _subtract(start: int, end: int, occupied: Sequence[Interval]) -> Interval | None:
    """Longest part of ``[start, end)`` not covered by ``occupied``."""
    pieces = [Interval(start, end)]
    for taken in occupied:
        next_pieces = []
        for piece in pieces:
            if not piece.overlaps(taken):
                next_pieces.append(piece)
                continue
            if taken.start > piece.start:
                next_pieces.append(Interval(piece.start, taken.start))
            if taken.end < piece.end:
                next_pieces.append(Interval(taken.end, piece.end))
        pieces = next_pieces
    pieces = [p for p in pieces if not p.is_empty]
    if not pieces:
        return None
    return max(pieces, key=lambda p: (p.duration, -p.start))


def remove_overlapping_blocks(blocks: Sequence[TimeBlock], max_overlap: int = 10) -> list[TimeBlock]:
    """Keep the best block for each stretch of time.

    Blocks are ranked: user actuals first, then non-derived before derived,
    then known before unknown, then higher confidence, then earlier start.
    A block is kept only if it overlaps every already-kept block by at most
    ``max_overlap`` minutes; the overlapping edge is then trimmed off so the
    result never overlaps.

    Args:
        blocks: Candidate blocks in any order.
        max_overlap: Largest overlap tolerated with a higher-ranked block.

    Returns:
        Non-overlapping blocks sorted by start.
    """
    kept: list[TimeBlock] = []
    occupied: list[Interval] = []
    for block in sorted(blocks, key=cmp_to_key(_priority)):
        start, end = block.start_minutes, block.end_minutes
        if any(overlap_minutes(start, end, i.start, i.end) > max_overlap for i in occupied):
            continue
        remaining = _subtract(start, end, occupied)
        if remaining is None:
            continue
        if (remaining.start, remaining.end) != (start, end):
            block = block.with_bounds(int(remaining.start), int(remaining.end))
        kept.append(block)
        occupied.append(block.interval)

    dropped = len(blocks) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} overlapping blocks")
    return _by_start(kept)


def merge_adjacent_blocks(blocks: Sequence[TimeBlock]) -> list[TimeBlock]:
    """Join touching blocks with identical category and description.

    User actuals are never merged; merged unknowns get a fresh id.
    """
    merged: list[TimeBlock] = []
    for block in _by_start(blocks):
        last = merged[-1] if merged else None
        if (
            last is not None
            and last.end_minutes == block.start_minutes
            and last.category == block.category
            and last.description == block.description
            and not last.is_user_actual
            and not block.is_user_actual
        ):
            if last.is_unknown:
                merged[-1] = build_unknown_block(last.start_minutes, block.end_minutes, last.meta.data_quality)
            else:
                merged[-1] = last.with_bounds(last.start_minutes, block.end_minutes)
            continue
        merged.append(block)
    return merged
