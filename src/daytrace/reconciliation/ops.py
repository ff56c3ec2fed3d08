"""Reconciliation of persisted events against freshly derived candidates.

Every ingestion window derives candidate events from evidence and diffs
them against the events already stored for the window. Candidates and
stored events are matched by ``meta.source_id``. The result is a
:class:`ReconciliationOps` bundle of plain data; nothing here touches
storage.

Rules:

- A stored event that is locked, or was edited by the user, is never
  updated, extended or deleted, and no new candidate may overlap it.
- A matched, unprotected event is updated when its bounds changed.
- A derived-origin event without a matching candidate is stale and is
  deleted.
- A candidate that continues an event of the previous window (same app,
  or same place for location blocks, ending at most 60 seconds before the
  candidate starts) extends that event instead of being inserted. An
  event that already runs past the candidate start (extended by an
  earlier run of the same window) absorbs the candidate.

Example:
    >>> ops = compute_reconciliation_ops([], [candidate])
    >>> [i.event.source_id for i in ops.inserts]
    ['screentime:1741075200000:com.slack:1741075260000']
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from pydantic import BaseModel, Field, field_validator

from daytrace.core.intervals import parse_timestamp
from daytrace.core.models import EventKind, EventSource

logger = logging.getLogger(__name__)

EXTENSION_GAP_SECONDS = 60

DERIVED_ORIGIN_SOURCES = frozenset({EventSource.DERIVED.value, EventSource.SYSTEM.value})
USER_EDITED_SOURCES = frozenset({EventSource.USER.value, EventSource.ACTUAL_ADJUST.value})
LOCATION_KINDS = frozenset({EventKind.LOCATION_BLOCK.value})
COMMUTE_KINDS = frozenset({"commute", EventKind.TRANSITION_COMMUTE.value})


def _aware(v: Any) -> Any:
    if isinstance(v, (str, datetime)):
        return parse_timestamp(v)
    return v


def _meta_str(meta: dict[str, Any], key: str) -> str | None:
    value = meta.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# =============================================================================
# Events
# =============================================================================


class _EventBase(BaseModel):
    """Fields and meta accessors shared by stored and candidate events."""

    title: str = ""
    scheduled_start: datetime
    scheduled_end: datetime
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("scheduled_start", "scheduled_end", mode="before")
    @classmethod
    def parse_times(cls, v: Any) -> Any:
        return _aware(v)

    @property
    def kind(self) -> str | None:
        return _meta_str(self.meta, "kind")

    @property
    def app_id(self) -> str | None:
        return _meta_str(self.meta, "app_id")

    @property
    def place_id(self) -> str | None:
        return _meta_str(self.meta, "place_id")

    @property
    def is_location(self) -> bool:
        return self.kind in LOCATION_KINDS

    @property
    def is_commute(self) -> bool:
        return self.kind in COMMUTE_KINDS or self.meta.get("intent") == "commute"

    @property
    def activity_key(self) -> tuple[str, str | None] | None:
        """What an event is "about" for trailing-edge extension.

        Screen-time events are keyed by app id. Location blocks are keyed by
        place id, where an unknown place (``None``) matches another unknown
        place. Other events cannot be extended.
        """
        if self.app_id is not None:
            return ("app", self.app_id)
        if self.is_location:
            return ("place", self.place_id)
        return None

    def overlaps(self, other: _EventBase) -> bool:
        return self.scheduled_start < other.scheduled_end and self.scheduled_end > other.scheduled_start


class ReconciliationEvent(_EventBase):
    """An event already persisted for the user.

    Attributes:
        id: Storage id.
        user_id: Owning user.
        locked_at: Set once the event's window closed; the event is then
            immutable.
    """

    id: str
    user_id: str = ""
    locked_at: datetime | None = None

    @field_validator("locked_at", mode="before")
    @classmethod
    def parse_locked(cls, v: Any) -> Any:
        return _aware(v)

    @property
    def source_id(self) -> str | None:
        return _meta_str(self.meta, "source_id")

    @property
    def source(self) -> str | None:
        return _meta_str(self.meta, "source")

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def is_user_edited(self) -> bool:
        return self.source in USER_EDITED_SOURCES

    @property
    def is_derived_origin(self) -> bool:
        return self.source in DERIVED_ORIGIN_SOURCES

    @property
    def is_protected(self) -> bool:
        return self.is_locked or self.is_user_edited


class DerivedEvent(_EventBase):
    """A candidate event derived from evidence in the current run.

    Attributes:
        source_id: Stable key used to match the candidate against stored
            events (see :func:`daytrace.core.ids.window_source_id`).
    """

    source_id: str


# =============================================================================
# Operations
# =============================================================================


class Insert(BaseModel):
    event: DerivedEvent


class Update(BaseModel):
    event_id: str
    scheduled_start: datetime
    scheduled_end: datetime
    meta: dict[str, Any] = Field(default_factory=dict)


class Delete(BaseModel):
    event_id: str


class Extension(BaseModel):
    event_id: str
    new_end: datetime


class ReconciliationOps(BaseModel):
    """Operations needed to bring storage in line with the candidates.

    ``protected_ids`` lists stored events that would have been touched but
    are locked.
    """

    inserts: list[Insert] = Field(default_factory=list)
    updates: list[Update] = Field(default_factory=list)
    deletes: list[Delete] = Field(default_factory=list)
    extensions: list[Extension] = Field(default_factory=list)
    protected_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes or self.extensions)

    def protect(self, event_id: str) -> None:
        if event_id not in self.protected_ids:
            self.protected_ids.append(event_id)

    def summary(self) -> dict[str, int]:
        return {
            "inserts": len(self.inserts),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
            "extensions": len(self.extensions),
            "protected": len(self.protected_ids),
        }


# =============================================================================
# Trailing-Edge Extension
# =============================================================================


def find_extendable_event(
    candidates: Sequence[ReconciliationEvent],
    start: datetime,
    key: tuple[str, str | None],
    max_gap_seconds: float = EXTENSION_GAP_SECONDS,
) -> ReconciliationEvent | None:
    """Latest-ending event with ``key`` that continues into ``start``.

    The event must begin before ``start`` and end no more than
    ``max_gap_seconds`` before it. Events that already run past ``start``
    qualify too.
    """
    limit = timedelta(seconds=max_gap_seconds)
    matches = [
        event
        for event in candidates
        if event.activity_key == key
        and event.scheduled_start < start
        and start - event.scheduled_end <= limit
    ]
    if not matches:
        return None
    return max(matches, key=lambda e: e.scheduled_end)


def can_extend_event(
    derived: DerivedEvent,
    existing: ReconciliationEvent,
    max_gap_seconds: float = EXTENSION_GAP_SECONDS,
) -> bool:
    """Whether ``derived`` continues ``existing`` across a window boundary."""
    key = derived.activity_key
    if key is None or key != existing.activity_key:
        return False
    if existing.scheduled_start >= derived.scheduled_start:
        return False
    gap = derived.scheduled_start - existing.scheduled_end
    return gap <= timedelta(seconds=max_gap_seconds)


# =============================================================================
# Reconciliation
# =============================================================================


def compute_reconciliation_ops(
    existing: Sequence[ReconciliationEvent],
    derived: Sequence[DerivedEvent],
    previous_window: Sequence[ReconciliationEvent] = (),
    max_gap_seconds: float = EXTENSION_GAP_SECONDS,
) -> ReconciliationOps:
    """Diff stored events against candidates.

    Args:
        existing: Events stored in the current window.
        derived: Candidates derived from the window's evidence.
        previous_window: Events ending just before the window, or carried
            into it by an earlier extension, considered for trailing-edge
            extension. Empty disables extension.
        max_gap_seconds: Largest gap an extension may bridge.

    Returns:
        The operations bundle. The function is pure and deterministic.
    """
    ops = ReconciliationOps()
    by_source_id: dict[str, ReconciliationEvent] = {}
    for event in existing:
        if event.source_id is not None:
            by_source_id[event.source_id] = event

    extended: set[str] = set()
    matched: set[str] = set()
    for candidate in derived:
        key = candidate.activity_key
        if key is None or not previous_window:
            continue
        target = find_extendable_event(previous_window, candidate.scheduled_start, key, max_gap_seconds)
        if target is None:
            continue
        if target.is_protected:
            ops.protect(target.id)
            continue
        if candidate.scheduled_end > target.scheduled_end:
            ops.extensions.append(Extension(event_id=target.id, new_end=candidate.scheduled_end))
        extended.add(candidate.source_id)
        matched.add(target.id)

    for candidate in derived:
        if candidate.source_id in extended:
            continue
        match = by_source_id.get(candidate.source_id)
        if match is not None:
            matched.add(match.id)
            if match.is_protected:
                ops.protect(match.id)
                continue
            if (match.scheduled_start, match.scheduled_end) != (candidate.scheduled_start, candidate.scheduled_end):
                ops.updates.append(
                    Update(
                        event_id=match.id,
                        scheduled_start=candidate.scheduled_start,
                        scheduled_end=candidate.scheduled_end,
                        meta=candidate.meta,
                    )
                )
            continue

        if any(e.is_protected and candidate.overlaps(e) for e in existing):
            logger.debug(f"Candidate {candidate.source_id} dropped: overlaps a protected event")
            continue
        ops.inserts.append(Insert(event=candidate))

    for event in existing:
        if event.id in matched or not event.is_derived_origin:
            continue
        if event.is_locked:
            ops.protect(event.id)
            continue
        ops.deletes.append(Delete(event_id=event.id))

    logger.debug(f"Reconciliation ops: {ops.summary()}")
    return ops


def trim_to_gaps(event: DerivedEvent, occupied: Sequence[DerivedEvent]) -> list[DerivedEvent]:
    """Pieces of ``event`` not covered by ``occupied``.

    A single remaining piece keeps the source id; split pieces get
    ``{source_id}:{index}``.
    """
    pieces = [(event.scheduled_start, event.scheduled_end)]
    for taken in sorted(occupied, key=lambda e: e.scheduled_start):
        next_pieces = []
        for start, end in pieces:
            if taken.scheduled_end <= start or taken.scheduled_start >= end:
                next_pieces.append((start, end))
                continue
            if taken.scheduled_start > start:
                next_pieces.append((start, taken.scheduled_start))
            if taken.scheduled_end < end:
                next_pieces.append((taken.scheduled_end, end))
        pieces = next_pieces

    if len(pieces) == 1:
        start, end = pieces[0]
        return [event.model_copy(update={"scheduled_start": start, "scheduled_end": end})]
    trimmed = []
    for index, (start, end) in enumerate(pieces):
        source_id = f"{event.source_id}:{index}"
        trimmed.append(
            event.model_copy(
                update={
                    "source_id": source_id,
                    "scheduled_start": start,
                    "scheduled_end": end,
                    "meta": {**event.meta, "source_id": source_id},
                }
            )
        )
    return trimmed


def compute_prioritized_ops(
    existing: Sequence[ReconciliationEvent],
    screen_time: Sequence[DerivedEvent],
    location: Sequence[DerivedEvent],
    previous_window: Sequence[ReconciliationEvent] = (),
    max_gap_seconds: float = EXTENSION_GAP_SECONDS,
) -> ReconciliationOps:
    """Reconcile screen-time and location candidates of one window.

    Screen time outranks location: location blocks are trimmed to the time
    not covered by screen-time candidates. Commutes are kept whole, since
    phone use during travel does not contradict it.
    """
    candidates = list(screen_time)
    for event in location:
        if event.is_commute:
            candidates.append(event)
            continue
        candidates.extend(trim_to_gaps(event, screen_time))
    return compute_reconciliation_ops(existing, candidates, previous_window, max_gap_seconds)
