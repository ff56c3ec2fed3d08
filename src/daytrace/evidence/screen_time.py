"""Screen-time evidence: usage spans, overlap queries and blocks.

Usage data arrives at one of three granularities. Each granularity is a
:class:`ScreenTimeStrategy` with a precondition, a span builder and an
overlap query; strategies are tried in order, most precise first:

1. ``sessions``: individual app sessions, merged when the gap between them
   is at most the merge gap (15 minutes by default).
2. ``hourly_by_app``: per-app seconds for each hour.
3. ``hourly_aggregate``: total seconds for each hour.

Missing or empty usage never raises; it simply produces no spans.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from daytrace.core.classifier import classify_app_usage
from daytrace.core.evidence import AppCategoryOverride, ScreenTimeSession, UsageSummary
from daytrace.core.ids import DERIVED_EVIDENCE_PREFIX, derived_id
from daytrace.core.intervals import (
    DAY_MINUTES,
    DayClock,
    Interval,
    clamp_to_day,
    has_overlap,
    merge_intervals,
    overlap_minutes,
)
from daytrace.core.models import (
    EventKind,
    EventSource,
    EvidenceDetails,
    ScreenTimeMeta,
    TimeBlock,
)

logger = logging.getLogger(__name__)

Overrides = Mapping[str, AppCategoryOverride]


# =============================================================================
# Value Types
# =============================================================================


@dataclass(frozen=True)
class UsageSpan:
    """A run of phone use with its dominant app."""

    start: float
    end: float
    app: str
    app_id: str | None = None

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass(frozen=True)
class UsageOverlap:
    """Phone use inside a minute range.

    Attributes:
        total_minutes: Minutes of use inside the range.
        top_app: App with the most minutes.
        is_distraction: Top app is a distraction app.
        is_productive: Top app is a work/productivity app.
        by_app: Minutes per app name.
    """

    total_minutes: float
    top_app: str | None
    is_distraction: bool = False
    is_productive: bool = False
    by_app: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class InterruptionSummary:
    count: int
    minutes: float
    top_app: str | None


# =============================================================================
# Strategies
# =============================================================================


def session_span(session: ScreenTimeSession, clock: DayClock) -> Interval:
    """Session bounds on the day's minute axis (unclamped)."""
    return Interval(clock.minutes(session.started_at), clock.minutes(session.ended_at))


def _top_app(by_app: Mapping[str, float]) -> str | None:
    if not by_app:
        return None
    return max(by_app.items(), key=lambda item: item[1])[0]


def _spans_from_sessions(usage: UsageSummary, clock: DayClock, merge_gap: float) -> list[UsageSpan]:
    spans: list[UsageSpan] = []
    current: Interval | None = None
    current_apps: dict[str, float] = {}
    current_ids: dict[str, str] = {}

    def flush() -> None:
        if current is None:
            return
        start, end = clamp_to_day(current.start), clamp_to_day(current.end)
        if end > start:
            app = _top_app(current_apps) or "Screen Time"
            spans.append(UsageSpan(start, end, app, current_ids.get(app)))

    for session in sorted(usage.sessions, key=lambda s: (s.started_at, s.ended_at)):
        span = session_span(session, clock)
        if span.is_empty:
            continue
        name = usage.app_name(session.app_id) if session.display_name is None else session.display_name
        if current is not None and span.start - current.end <= merge_gap:
            current = Interval(current.start, max(current.end, span.end))
        else:
            flush()
            current = span
            current_apps = {}
            current_ids = {}
        current_apps[name] = current_apps.get(name, 0.0) + span.duration
        current_ids.setdefault(name, session.app_id)

    flush()
    return spans


def _spans_from_hourly_by_app(usage: UsageSummary, clock: DayClock, merge_gap: float) -> list[UsageSpan]:
    totals: dict[int, dict[str, float]] = defaultdict(dict)
    for app_id, hours in usage.hourly_by_app.items():
        for hour, seconds in hours.items():
            if not 0 <= hour <= 23 or seconds <= 0:
                continue
            totals[hour][app_id] = totals[hour].get(app_id, 0.0) + seconds

    spans = []
    for hour in sorted(totals):
        by_app = totals[hour]
        minutes = min(60.0, round(sum(by_app.values()) / 60.0))
        if minutes <= 0:
            continue
        app_id = _top_app(by_app)
        start = hour * 60
        spans.append(UsageSpan(start, start + minutes, usage.app_name(app_id), app_id))
    return spans


def _spans_from_hourly_aggregate(usage: UsageSummary, clock: DayClock, merge_gap: float) -> list[UsageSpan]:
    app = usage.top_app_name or "Phone usage"
    spans = []
    for hour, seconds in enumerate(usage.hourly_seconds[:24]):
        minutes = min(60.0, round(seconds / 60.0))
        if minutes <= 0:
            continue
        start = hour * 60
        spans.append(UsageSpan(start, start + minutes, app))
    return spans


def _overlap_from_sessions(
    usage: UsageSummary, clock: DayClock, start: float, end: float
) -> dict[str, float]:
    by_app: dict[str, float] = {}
    for session in usage.sessions:
        span = session_span(session, clock)
        minutes = overlap_minutes(start, end, span.start, span.end)
        if minutes <= 0:
            continue
        name = session.display_name or usage.app_name(session.app_id)
        by_app[name] = by_app.get(name, 0.0) + minutes
    return by_app


def _hour_fractions(start: float, end: float) -> Iterable[tuple[int, float]]:
    for hour in range(max(0, int(start // 60)), min(24, int((end - 1) // 60) + 1)):
        minutes = overlap_minutes(start, end, hour * 60, hour * 60 + 60)
        if minutes > 0:
            yield hour, minutes / 60.0


def _overlap_from_hourly_by_app(
    usage: UsageSummary, clock: DayClock, start: float, end: float
) -> dict[str, float]:
    by_app: dict[str, float] = {}
    for hour, fraction in _hour_fractions(start, end):
        for app_id, hours in usage.hourly_by_app.items():
            seconds = hours.get(hour, 0.0)
            if seconds <= 0:
                continue
            name = usage.app_name(app_id)
            by_app[name] = by_app.get(name, 0.0) + seconds / 60.0 * fraction
    return by_app


def _overlap_from_hourly_aggregate(
    usage: UsageSummary, clock: DayClock, start: float, end: float
) -> dict[str, float]:
    total = 0.0
    for hour, fraction in _hour_fractions(start, end):
        if hour < len(usage.hourly_seconds):
            total += usage.hourly_seconds[hour] / 60.0 * fraction
    if total <= 0:
        return {}
    return {usage.top_app_name or "Phone usage": total}


@dataclass(frozen=True)
class ScreenTimeStrategy:
    """One tier of the usage fallback chain.

    Attributes:
        name: Strategy name for logs.
        applies: Precondition on the usage summary.
        spans: Builds usage spans for the whole day.
        overlap: Per-app minutes inside a range.
    """

    name: str
    applies: Callable[[UsageSummary], bool]
    spans: Callable[[UsageSummary, DayClock, float], list[UsageSpan]]
    overlap: Callable[[UsageSummary, DayClock, float, float], dict[str, float]]


SCREEN_TIME_STRATEGIES: tuple[ScreenTimeStrategy, ...] = (
    ScreenTimeStrategy(
        "sessions", lambda u: bool(u.sessions), _spans_from_sessions, _overlap_from_sessions
    ),
    ScreenTimeStrategy(
        "hourly_by_app",
        lambda u: bool(u.hourly_by_app),
        _spans_from_hourly_by_app,
        _overlap_from_hourly_by_app,
    ),
    ScreenTimeStrategy(
        "hourly_aggregate",
        lambda u: any(s > 0 for s in u.hourly_seconds),
        _spans_from_hourly_aggregate,
        _overlap_from_hourly_aggregate,
    ),
)


def select_strategy(
    usage: UsageSummary | None,
    strategies: Sequence[ScreenTimeStrategy] = SCREEN_TIME_STRATEGIES,
) -> ScreenTimeStrategy | None:
    """First strategy whose precondition holds, or ``None``."""
    if usage is None:
        return None
    for strategy in strategies:
        if strategy.applies(usage):
            return strategy
    return None


# =============================================================================
# Queries
# =============================================================================


def resolve_usage_spans(
    usage: UsageSummary | None,
    clock: DayClock,
    merge_gap: float = 15,
    strategies: Sequence[ScreenTimeStrategy] = SCREEN_TIME_STRATEGIES,
) -> list[UsageSpan]:
    strategy = select_strategy(usage, strategies)
    if strategy is None:
        return []
    spans = strategy.spans(usage, clock, merge_gap)
    logger.debug(f"Screen time resolved with '{strategy.name}': {len(spans)} spans")
    return spans


def usage_overlap(
    start: float,
    end: float,
    clock: DayClock,
    usage: UsageSummary | None = None,
    sessions: Sequence[ScreenTimeSession] | None = None,
    overrides: Overrides | None = None,
) -> UsageOverlap | None:
    """Phone use inside ``[start, end)``.

    Raw session rows, when given, take precedence over the usage summary.

    Returns:
        The overlap, or ``None`` when there was no use in the range.
    """
    if end <= start:
        return None
    source = UsageSummary(sessions=list(sessions)) if sessions else usage
    strategy = select_strategy(source)
    if strategy is None:
        return None

    by_app = strategy.overlap(source, clock, start, end)
    total = sum(by_app.values())
    if total <= 0:
        return None

    top_app = _top_app(by_app)
    classification = classify_app_usage(top_app, overrides)
    return UsageOverlap(
        total_minutes=total,
        top_app=top_app,
        is_distraction=classification.is_distraction,
        is_productive=classification.is_productive,
        by_app=by_app,
    )


def session_spans_within(
    sessions: Sequence[ScreenTimeSession],
    clock: DayClock,
    start: float,
    end: float,
) -> list[Interval]:
    """Session intervals clipped to ``[start, end)``, sorted by start."""
    clipped = []
    for session in sessions:
        span = session_span(session, clock)
        lo, hi = max(start, span.start), min(end, span.end)
        if hi > lo:
            clipped.append(Interval(lo, hi))
    return sorted(clipped, key=lambda i: i.start)


def sleep_interruptions(
    start: float,
    end: float,
    clock: DayClock,
    usage: UsageSummary | None = None,
    sessions: Sequence[ScreenTimeSession] | None = None,
    merge_gap: float = 5,
) -> InterruptionSummary | None:
    """Count and size phone-use interruptions inside a sleep range."""
    overlap = usage_overlap(start, end, clock, usage=usage, sessions=sessions)
    if overlap is None:
        return None

    raw_sessions = list(sessions) if sessions else (usage.sessions if usage else [])
    count = 1
    minutes = overlap.total_minutes
    if raw_sessions:
        merged = merge_intervals(session_spans_within(raw_sessions, clock, start, end), merge_gap)
        if merged:
            count = len(merged)
            minutes = sum(i.duration for i in merged)
    return InterruptionSummary(count=max(1, count), minutes=minutes, top_app=overlap.top_app)


# =============================================================================
# Blocks
# =============================================================================


def build_screen_time_block(
    start: float,
    end: float,
    app: str,
    overrides: Overrides | None = None,
    app_id: str | None = None,
    source: EventSource = EventSource.DERIVED,
) -> TimeBlock:
    """Screen-time block categorized from its dominant app."""
    start_i, end_i = int(round(start)), int(round(end))
    end_i = max(end_i, start_i + 1)
    classification = classify_app_usage(app, overrides)
    return TimeBlock(
        id=derived_id(DERIVED_EVIDENCE_PREFIX, EventKind.SCREEN_TIME.value, start_i, end_i, app),
        title=classification.title,
        description=classification.description,
        start_minutes=start_i,
        duration=end_i - start_i,
        category=classification.category,
        meta=ScreenTimeMeta(
            kind=EventKind.SCREEN_TIME.value,
            source=source,
            confidence=classification.confidence,
            app_id=app_id,
            evidence=EvidenceDetails(
                top_app=app,
                screen_time_minutes=max(1, end_i - start_i),
                distraction_minutes=(end_i - start_i) if classification.is_distraction else None,
            ),
        ),
    )


def build_screen_time_blocks(
    usage: UsageSummary | None,
    clock: DayClock,
    protected: Sequence[Interval] = (),
    min_minutes: float = 10,
    protected_overlap_minutes: float = 5,
    merge_gap: float = 15,
    overrides: Overrides | None = None,
) -> list[TimeBlock]:
    """Turn a day's usage into disjoint screen-time blocks.

    Args:
        usage: Usage summary, or ``None`` when the collector had nothing.
        clock: Day clock for timestamp conversion.
        protected: Planned or protected intervals; a block overlapping any of
            them by ``protected_overlap_minutes`` or more is dropped.
        min_minutes: Shortest block kept.
        protected_overlap_minutes: Overlap that disqualifies a block.
        merge_gap: Session merge gap.
        overrides: Per-user app category overrides.

    Returns:
        Screen-time blocks sorted by start.
    """
    blocks = []
    for span in resolve_usage_spans(usage, clock, merge_gap):
        if span.end > DAY_MINUTES or span.duration < min_minutes:
            continue
        if has_overlap(span.start, span.end, protected, protected_overlap_minutes):
            continue
        blocks.append(build_screen_time_block(span.start, span.end, span.app, overrides, span.app_id))
    return sorted(blocks, key=lambda b: b.start_minutes)


def usage_note(overlap: UsageOverlap | None, threshold: float = 10) -> str | None:
    """Short phone-use note for block descriptions.

    Example:
        >>> usage_note(UsageOverlap(25, "Instagram", is_distraction=True))
        'Distracted: 25 min on Instagram'
    """
    if overlap is None or overlap.total_minutes < threshold:
        return None
    minutes = int(round(overlap.total_minutes))
    suffix = f" on {overlap.top_app}" if overlap.top_app else ""
    if overlap.is_distraction:
        return f"Distracted: {minutes} min{suffix}"
    if overlap.is_productive:
        return f"Productive: {minutes} min{suffix}"
    return f"Phone use: {minutes} min{suffix}"
