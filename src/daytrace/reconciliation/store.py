"""Storage and provider interfaces used by the ingestion wrappers.

The reconciliation core is pure; everything that reads or writes user data
goes through the Protocols below. :class:`InMemoryStore` implements all of
them and backs the tests and the CLI.

Storage errors form one hierarchy so callers can tell an expected race
(:class:`LockConflictError`) and a pre-migration database
(:class:`SchemaMissingError`) apart from a real write failure
(:class:`PersistenceError`).
"""

from __future__ import annotations

import itertools
from datetime import date, datetime, timedelta
from typing import Any, Protocol, Sequence

from pydantic import BaseModel, Field

from daytrace.core.evidence import (
    AppCategoryOverride,
    HealthDailyRow,
    LocationSample,
    ScreenTimeSession,
    UserPlace,
)
from daytrace.core.models import TimeBlock
from daytrace.reconciliation.ops import DerivedEvent, ReconciliationEvent

# =============================================================================
# Exceptions
# =============================================================================


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


class PersistenceError(StorageError):
    """A read or write failed."""

    pass


class LockConflictError(StorageError):
    """The target event was locked or user-edited before the write ran."""

    pass


class SchemaMissingError(StorageError):
    """A table or column does not exist yet (pre-migration database)."""

    pass


# =============================================================================
# Window Locks
# =============================================================================


class WindowStats(BaseModel):
    """Counters recorded with a window lock."""

    events_created: int = 0
    events_extended: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    lock_conflicts: int = 0
    screen_time_sessions: int = 0
    location_segments: int = 0
    errors: list[str] = Field(default_factory=list)


class WindowLock(BaseModel):
    """Marker that a window was fully reconciled for a user."""

    id: str
    user_id: str
    window_start: datetime
    window_end: datetime
    locked_at: datetime
    stats: WindowStats = Field(default_factory=WindowStats)


# =============================================================================
# Protocols
# =============================================================================


class EvidenceProvider(Protocol):
    """Source of raw evidence rows."""

    async def fetch_screen_time_for_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[ScreenTimeSession]:
        """Sessions overlapping ``[start, end)``"""
        ...

    async def fetch_location_samples_for_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[LocationSample]:
        """Samples recorded in ``[start, end)``"""
        ...

    async def fetch_user_places(self, user_id: str) -> list[UserPlace]:
        ...

    async def fetch_app_overrides(self, user_id: str) -> dict[str, AppCategoryOverride]:
        ...

    async def fetch_health_daily(self, user_id: str, day: date) -> HealthDailyRow | None:
        ...


class PlanProvider(Protocol):
    """Source of planned events."""

    async def fetch_planned_events_for_day(self, user_id: str, day: date) -> list[TimeBlock]:
        ...


class EventStore(Protocol):
    """Persisted actual events.

    Mutations of an existing event raise :class:`LockConflictError` when
    the event is locked at the time of the write.
    """

    async def fetch_events_in_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[ReconciliationEvent]:
        """Events overlapping ``[start, end)``"""
        ...

    async def fetch_extension_candidates(
        self, user_id: str, window_start: datetime, lookback_seconds: float
    ) -> list[ReconciliationEvent]:
        """Events ending in ``[window_start - lookback, window_start]``"""
        ...

    async def insert_event(self, user_id: str, event: DerivedEvent) -> str:
        ...

    async def update_event(
        self, event_id: str, start: datetime, end: datetime, meta: dict[str, Any]
    ) -> None:
        ...

    async def extend_event(self, event_id: str, new_end: datetime) -> None:
        ...

    async def delete_event(self, event_id: str) -> None:
        ...

    async def is_event_locked(self, event_id: str) -> bool:
        ...

    async def lock_events_in_window(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        locked_at: datetime,
        open_seconds: float = 0,
    ) -> int:
        """Lock events ending in ``[start - open, end - open)``; returns the count.

        Events ending in the last ``open_seconds`` of the window stay open
        for trailing-edge extension and are locked with the next window.
        """
        ...

    async def delete_derived_events(self, user_id: str, start: datetime, end: datetime) -> int:
        ...


class WindowLockStore(Protocol):
    """Persisted window locks, unique per (user, window start)."""

    async def is_window_locked(self, user_id: str, window_start: datetime) -> bool:
        ...

    async def lock_window(
        self,
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        stats: WindowStats,
        locked_at: datetime,
    ) -> WindowLock:
        """Upsert the lock; a second call for the same window keeps one lock."""
        ...

    async def delete_window_locks(self, user_id: str, start: datetime, end: datetime) -> int:
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================


def _overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


class InMemoryStore:
    """Dictionary-backed store implementing every provider Protocol.

    Args:
        sessions: Screen-time sessions, per user.
        samples: Location samples, per user.
        places: User places, per user.
        planned: Planned events, per user.
        missing_tables: Tables that behave as not yet migrated
            (``"events"``, ``"window_locks"``, ``"location_samples"``).

    Example:
        >>> store = InMemoryStore(sessions={"u1": [session]})
        >>> asyncio.run(process_window(store, store, store, "u1", window_start))
    """

    def __init__(
        self,
        sessions: dict[str, list[ScreenTimeSession]] | None = None,
        samples: dict[str, list[LocationSample]] | None = None,
        places: dict[str, list[UserPlace]] | None = None,
        overrides: dict[str, dict[str, AppCategoryOverride]] | None = None,
        health: dict[tuple[str, date], HealthDailyRow] | None = None,
        planned: dict[str, list[TimeBlock]] | None = None,
        missing_tables: Sequence[str] = (),
    ):
        self.sessions = sessions or {}
        self.samples = samples or {}
        self.places = places or {}
        self.overrides = overrides or {}
        self.health = health or {}
        self.planned = planned or {}
        self.missing_tables = set(missing_tables)
        self.events: dict[str, ReconciliationEvent] = {}
        self.locks: dict[tuple[str, datetime], WindowLock] = {}
        self._ids = itertools.count(1)

    def _require(self, table: str) -> None:
        if table in self.missing_tables:
            raise SchemaMissingError(f"relation '{table}' does not exist")

    def _get(self, event_id: str) -> ReconciliationEvent:
        event = self.events.get(event_id)
        if event is None:
            raise PersistenceError(f"Event not found: {event_id}")
        if event.is_locked:
            raise LockConflictError(f"Event is locked: {event_id}")
        return event

    def add_event(self, event: ReconciliationEvent) -> ReconciliationEvent:
        """Seed a stored event directly."""
        self.events[event.id] = event
        return event

    # Evidence -----------------------------------------------------------

    async def fetch_screen_time_for_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[ScreenTimeSession]:
        return [
            s for s in self.sessions.get(user_id, []) if _overlaps(s.started_at, s.ended_at, start, end)
        ]

    async def fetch_location_samples_for_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[LocationSample]:
        self._require("location_samples")
        return [s for s in self.samples.get(user_id, []) if start <= s.recorded_at < end]

    async def fetch_user_places(self, user_id: str) -> list[UserPlace]:
        return list(self.places.get(user_id, []))

    async def fetch_app_overrides(self, user_id: str) -> dict[str, AppCategoryOverride]:
        return dict(self.overrides.get(user_id, {}))

    async def fetch_health_daily(self, user_id: str, day: date) -> HealthDailyRow | None:
        return self.health.get((user_id, day))

    async def fetch_planned_events_for_day(self, user_id: str, day: date) -> list[TimeBlock]:
        return list(self.planned.get(user_id, []))

    # Events -------------------------------------------------------------

    async def fetch_events_in_window(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[ReconciliationEvent]:
        self._require("events")
        return sorted(
            (
                e
                for e in self.events.values()
                if e.user_id == user_id and _overlaps(e.scheduled_start, e.scheduled_end, start, end)
            ),
            key=lambda e: e.scheduled_start,
        )

    async def fetch_extension_candidates(
        self, user_id: str, window_start: datetime, lookback_seconds: float
    ) -> list[ReconciliationEvent]:
        self._require("events")
        earliest = window_start - timedelta(seconds=lookback_seconds)
        return [
            e
            for e in self.events.values()
            if e.user_id == user_id and earliest <= e.scheduled_end <= window_start
        ]

    async def insert_event(self, user_id: str, event: DerivedEvent) -> str:
        self._require("events")
        event_id = f"evt-{next(self._ids)}"
        self.events[event_id] = ReconciliationEvent(
            id=event_id,
            user_id=user_id,
            title=event.title,
            scheduled_start=event.scheduled_start,
            scheduled_end=event.scheduled_end,
            meta={**event.meta, "source_id": event.source_id},
        )
        return event_id

    async def update_event(
        self, event_id: str, start: datetime, end: datetime, meta: dict[str, Any]
    ) -> None:
        event = self._get(event_id)
        merged = {**event.meta, **meta}
        self.events[event_id] = event.model_copy(
            update={"scheduled_start": start, "scheduled_end": end, "meta": merged}
        )

    async def extend_event(self, event_id: str, new_end: datetime) -> None:
        event = self._get(event_id)
        self.events[event_id] = event.model_copy(update={"scheduled_end": new_end})

    async def delete_event(self, event_id: str) -> None:
        self._get(event_id)
        del self.events[event_id]

    async def is_event_locked(self, event_id: str) -> bool:
        event = self.events.get(event_id)
        return event is not None and event.is_locked

    async def lock_events_in_window(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        locked_at: datetime,
        open_seconds: float = 0,
    ) -> int:
        self._require("events")
        open_for = timedelta(seconds=open_seconds)
        count = 0
        for event in list(self.events.values()):
            if event.user_id != user_id or event.is_locked:
                continue
            if start - open_for <= event.scheduled_end < end - open_for:
                self.events[event.id] = event.model_copy(update={"locked_at": locked_at})
                count += 1
        return count

    async def delete_derived_events(self, user_id: str, start: datetime, end: datetime) -> int:
        self._require("events")
        doomed = [
            e.id
            for e in self.events.values()
            if e.user_id == user_id
            and e.is_derived_origin
            and _overlaps(e.scheduled_start, e.scheduled_end, start, end)
        ]
        for event_id in doomed:
            del self.events[event_id]
        return len(doomed)

    # Window locks -------------------------------------------------------

    async def is_window_locked(self, user_id: str, window_start: datetime) -> bool:
        self._require("window_locks")
        return (user_id, window_start) in self.locks

    async def lock_window(
        self,
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        stats: WindowStats,
        locked_at: datetime,
    ) -> WindowLock:
        self._require("window_locks")
        key = (user_id, window_start)
        existing = self.locks.get(key)
        lock = WindowLock(
            id=existing.id if existing else f"lock-{next(self._ids)}",
            user_id=user_id,
            window_start=window_start,
            window_end=window_end,
            locked_at=locked_at,
            stats=stats,
        )
        self.locks[key] = lock
        return lock

    async def delete_window_locks(self, user_id: str, start: datetime, end: datetime) -> int:
        self._require("window_locks")
        doomed = [k for k in self.locks if k[0] == user_id and start <= k[1] < end]
        for key in doomed:
            del self.locks[key]
        return len(doomed)
