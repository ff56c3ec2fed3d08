"""Incremental ingestion of evidence into persisted actual events.

The day is cut into fixed windows (30 minutes by default) aligned to local
midnight. Each window is processed once:

1. If the window is already locked, return ``skipped`` with reason
   ``already_locked`` without reading any evidence.
2. Fetch screen-time sessions, location samples, user places, stored
   events and previous-window extension candidates concurrently.
3. Derive screen-time and location candidates, clipped to the window.
4. Compute prioritized reconciliation ops and execute them.
5. Lock the events that ended in the window, then lock the window itself.
   Events ending in the last ``extension_gap_seconds`` of the window stay
   open so the next window can extend them; that window locks them.

A window whose ops partly failed is left unlocked with reason ``error``
so a later run retries it. Failures to lock are logged and do not fail
the window. A database that has not been migrated yet
(:class:`SchemaMissingError`) reads as empty and never locked.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Sequence, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from daytrace.config import IngestionConfig
from daytrace.core.evidence import ScreenTimeSession
from daytrace.core.ids import window_source_id
from daytrace.core.models import EventKind, EventSource
from daytrace.evidence.location import LocationSegment, generate_location_segments, merge_adjacent_segments
from daytrace.reconciliation.executor import execute_ops
from daytrace.reconciliation.ops import DerivedEvent, compute_prioritized_ops
from daytrace.reconciliation.store import (
    EvidenceProvider,
    EventStore,
    SchemaMissingError,
    StorageError,
    WindowLockStore,
    WindowStats,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Results
# =============================================================================


class WindowResult(BaseModel):
    """Outcome of processing one window.

    Attributes:
        skipped: True when nothing was written.
        reason: ``already_locked`` when skipped, ``error`` when storage
            failed or some operations were not applied.
        lock_id: Id of the window lock, if one was written.
        stats: Counters for the window.
        location_skipped: Location samples were unavailable.
        error: Message of the failure when ``reason`` is ``error``.
    """

    window_start: datetime
    window_end: datetime
    skipped: bool = False
    reason: str | None = None
    lock_id: str | None = None
    stats: WindowStats = Field(default_factory=WindowStats)
    location_skipped: bool = False
    error: str | None = None


class ReprocessResult(BaseModel):
    """Outcome of a full-day reprocess."""

    day: date
    events_deleted: int = 0
    locks_deleted: int = 0
    windows_processed: int = 0
    windows_failed: int = 0
    windows: list[WindowResult] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.windows_failed == 0


# =============================================================================
# Windows
# =============================================================================


def _tz(config: IngestionConfig) -> tzinfo:
    if config.timezone:
        return ZoneInfo(config.timezone)
    return timezone.utc


def align_window(moment: datetime, window_minutes: int = 30, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Window containing ``moment``, aligned to multiples of ``window_minutes`` from local midnight."""
    local = moment.astimezone(tz)
    midnight = datetime.combine(local.date(), time.min, tzinfo=tz)
    elapsed = int((local - midnight).total_seconds() // 60)
    start = midnight + timedelta(minutes=elapsed - elapsed % window_minutes)
    return start, start + timedelta(minutes=window_minutes)


def day_windows(
    day: date,
    window_minutes: int = 30,
    tz: tzinfo = timezone.utc,
    now: datetime | None = None,
) -> list[tuple[datetime, datetime]]:
    """Windows of ``day`` from local midnight; only completed ones when ``now`` is given."""
    midnight = datetime.combine(day, time.min, tzinfo=tz)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    windows = []
    start = midnight
    while start < day_end:
        end = min(start + timedelta(minutes=window_minutes), day_end)
        if now is not None and end > now:
            break
        windows.append((start, end))
        start = end
    return windows


# =============================================================================
# Candidates
# =============================================================================


def screen_time_to_derived_events(
    sessions: Sequence[ScreenTimeSession],
    window_start: datetime,
    window_end: datetime,
) -> list[DerivedEvent]:
    """One candidate per session, clipped to the window."""
    events = []
    for session in sorted(sessions, key=lambda s: s.started_at):
        start = max(session.started_at, window_start)
        end = min(session.ended_at, window_end)
        if start >= end:
            continue
        source_id = window_source_id("screentime", window_start, session.app_id, start)
        events.append(
            DerivedEvent(
                source_id=source_id,
                title=session.app_name,
                scheduled_start=start,
                scheduled_end=end,
                meta={
                    "kind": EventKind.SCREEN_TIME.value,
                    "source": EventSource.DERIVED.value,
                    "source_id": source_id,
                    "app_id": session.app_id,
                    "display_name": session.app_name,
                    "duration_seconds": int((end - start).total_seconds()),
                },
            )
        )
    return events


def segment_to_derived_event(segment: LocationSegment) -> DerivedEvent:
    return DerivedEvent(
        source_id=segment.source_id,
        title=segment.title,
        scheduled_start=segment.start,
        scheduled_end=segment.end,
        meta={
            "kind": EventKind.LOCATION_BLOCK.value,
            "source": EventSource.DERIVED.value,
            "source_id": segment.source_id,
            "place_id": segment.place_id,
            "place_label": segment.place_label,
            "sample_count": segment.sample_count,
            "confidence": round(segment.confidence, 3),
            "latitude": segment.latitude,
            "longitude": segment.longitude,
        },
    )


# =============================================================================
# Window Processing
# =============================================================================


async def _or_default(call: Awaitable[T], default: T, what: str) -> T:
    try:
        return await call
    except SchemaMissingError as e:
        logger.debug(f"{what} unavailable, treating as empty: {e}")
        return default


async def process_window(
    evidence: EvidenceProvider,
    events: EventStore,
    locks: WindowLockStore,
    user_id: str,
    window_start: datetime,
    window_end: datetime | None = None,
    config: IngestionConfig | None = None,
    now: datetime | None = None,
) -> WindowResult:
    """Reconcile one window and lock it.

    Args:
        evidence: Source of sessions, samples and places.
        events: Persisted events.
        locks: Persisted window locks.
        user_id: Owner of the data.
        window_start: Aligned window start.
        window_end: Window end; defaults to ``window_start`` plus the
            configured window length.
        config: Ingestion settings; defaults to ``IngestionConfig()``.
        now: Timestamp recorded as ``locked_at``.

    Returns:
        The window result. Unexpected storage failures are reported as
        ``skipped`` with reason ``error`` rather than raised.
    """
    config = config or IngestionConfig()
    window_end = window_end or window_start + timedelta(minutes=config.window_minutes)
    result = WindowResult(window_start=window_start, window_end=window_end)

    try:
        locked = await _or_default(locks.is_window_locked(user_id, window_start), False, "window_locks")
        if locked:
            result.skipped = True
            result.reason = "already_locked"
            return result

        location_skipped = False

        async def fetch_samples():
            nonlocal location_skipped
            try:
                return await evidence.fetch_location_samples_for_window(user_id, window_start, window_end)
            except SchemaMissingError as e:
                logger.debug(f"Location samples unavailable: {e}")
                location_skipped = True
                return []

        sessions, samples, places, existing, previous = await asyncio.gather(
            evidence.fetch_screen_time_for_window(user_id, window_start, window_end),
            fetch_samples(),
            evidence.fetch_user_places(user_id),
            _or_default(events.fetch_events_in_window(user_id, window_start, window_end), [], "events"),
            _or_default(
                events.fetch_extension_candidates(user_id, window_start, config.extension_gap_seconds),
                [],
                "events",
            ),
        )
        result.location_skipped = location_skipped

        screen_time = screen_time_to_derived_events(sessions, window_start, window_end)
        segments = merge_adjacent_segments(
            generate_location_segments(
                samples,
                places,
                window_start,
                window_end,
                radius_m=config.place_radius_m,
                match_threshold=config.place_match_ratio,
            )
        )
        location = [segment_to_derived_event(s) for s in segments]

        # Events reaching in from an earlier window belong to that window's
        # evidence: offer them for extension, never diff them as stale.
        carried = [e for e in existing if e.scheduled_start < window_start and not e.is_protected]
        carried_ids = {e.id for e in carried}
        existing = [e for e in existing if e.id not in carried_ids]
        previous = list({e.id: e for e in [*previous, *carried]}.values())

        ops = compute_prioritized_ops(
            existing,
            screen_time,
            location,
            previous_window=previous,
            max_gap_seconds=config.extension_gap_seconds,
        )
        executed = await execute_ops(events, user_id, ops)

        result.stats = WindowStats(
            events_created=executed.created,
            events_extended=executed.extended,
            events_updated=executed.updated,
            events_deleted=executed.deleted,
            lock_conflicts=executed.lock_conflicts,
            screen_time_sessions=len(sessions),
            location_segments=len(segments),
            errors=executed.errors,
        )
        if executed.errors:
            result.reason = "error"
            result.error = "; ".join(executed.errors)
            logger.error(
                f"Window {window_start.isoformat()} had {len(executed.errors)} failed operations; "
                "leaving it unlocked for retry"
            )
            return result
    except StorageError as e:
        logger.error(f"Window {window_start.isoformat()} failed: {e}")
        result.skipped = True
        result.reason = "error"
        result.error = str(e)
        return result

    locked_at = now or datetime.now(timezone.utc)
    try:
        count = await events.lock_events_in_window(
            user_id, window_start, window_end, locked_at, open_seconds=config.extension_gap_seconds
        )
        logger.debug(f"Locked {count} events in window {window_start.isoformat()}")
    except StorageError as e:
        logger.warning(f"Failed to lock events in window {window_start.isoformat()}: {e}")

    try:
        lock = await locks.lock_window(user_id, window_start, window_end, result.stats, locked_at)
        result.lock_id = lock.id
    except StorageError as e:
        logger.warning(f"Failed to lock window {window_start.isoformat()}: {e}")

    logger.info(
        f"Window {window_start.isoformat()} processed: "
        f"{result.stats.events_created} created, {result.stats.events_extended} extended"
    )
    return result


async def process_windows(
    evidence: EvidenceProvider,
    events: EventStore,
    locks: WindowLockStore,
    user_id: str,
    windows: Sequence[tuple[datetime, datetime]],
    config: IngestionConfig | None = None,
    now: datetime | None = None,
) -> list[WindowResult]:
    """Process windows in order, stopping after the first failed one."""
    results = []
    for start, end in windows:
        result = await process_window(evidence, events, locks, user_id, start, end, config, now)
        results.append(result)
        if result.reason == "error":
            break
    return results


async def reprocess_day(
    evidence: EvidenceProvider,
    events: EventStore,
    locks: WindowLockStore,
    user_id: str,
    day: date,
    config: IngestionConfig | None = None,
    now: datetime | None = None,
) -> ReprocessResult:
    """Discard derived events and window locks for ``day`` and replay it.

    Only completed windows (ending at or before ``now``) are replayed.
    User-created events are kept.
    """
    config = config or IngestionConfig()
    tz = _tz(config)
    now = now or datetime.now(timezone.utc)
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)

    result = ReprocessResult(day=day)
    result.events_deleted = await _or_default(
        events.delete_derived_events(user_id, day_start, day_end), 0, "events"
    )
    result.locks_deleted = await _or_default(
        locks.delete_window_locks(user_id, day_start, day_end), 0, "window_locks"
    )
    logger.info(
        f"Reprocessing {day}: removed {result.events_deleted} derived events "
        f"and {result.locks_deleted} window locks"
    )

    for start, end in day_windows(day, config.window_minutes, tz, now):
        window = await process_window(evidence, events, locks, user_id, start, end, config, now)
        result.windows.append(window)
        if window.reason == "error":
            result.windows_failed += 1
        else:
            result.windows_processed += 1
    return result
