"""Interval algebra for minute-of-day ranges.

Every matching, extension and de-duplication rule in daytrace is expressed
with the four primitives in this module: ``overlap_minutes``, ``overlaps``,
``clamp_to_day`` and ``merge_intervals``. They are exact and side-effect
free. Ranges are half-open ``[start, end)`` minutes since local midnight.

``DayClock`` converts absolute timestamps into that minute axis for one
calendar day in one timezone.

Example:
    >>> overlap_minutes(540, 600, 570, 660)
    30
    >>> merge_intervals([Interval(0, 10), Interval(20, 30)], gap_tolerance=10)
    [Interval(start=0, end=30)]
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Sequence, Union

Number = Union[int, float]

DAY_MINUTES = 24 * 60


class InvalidIntervalError(ValueError):
    """Raised when an interval ends at or before its start."""

    pass


# =============================================================================
# Interval
# =============================================================================


@dataclass(frozen=True)
class Interval:
    """Half-open minute range ``[start, end)``.

    Attributes:
        start: Start minute.
        end: End minute (exclusive).
    """

    start: Number
    end: Number

    @property
    def duration(self) -> Number:
        """Length in minutes (never negative)."""
        return max(0, self.end - self.start)

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlap_minutes(self, other: Interval) -> Number:
        return overlap_minutes(self.start, self.end, other.start, other.end)

    def overlaps(self, other: Interval) -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def clamped(self) -> Interval:
        """Return a copy clamped to ``[0, DAY_MINUTES]``."""
        return Interval(clamp_to_day(self.start), clamp_to_day(self.end))

    @classmethod
    def checked(cls, start: Number, end: Number) -> Interval:
        """Build an interval, raising if it is empty.

        Raises:
            InvalidIntervalError: If ``end <= start``.
        """
        if end <= start:
            raise InvalidIntervalError(f"Interval end {end} must be after start {start}")
        return cls(start, end)


# =============================================================================
# Primitives
# =============================================================================


def overlap_minutes(a_start: Number, a_end: Number, b_start: Number, b_end: Number) -> Number:
    """Length of the intersection of two ranges, ``0`` when disjoint."""
    return max(0, min(a_end, b_end) - max(a_start, b_start))


def overlaps(a_start: Number, a_end: Number, b_start: Number, b_end: Number) -> bool:
    """True iff the two ranges share at least part of a minute."""
    return overlap_minutes(a_start, a_end, b_start, b_end) > 0


def clamp_to_day(minutes: Number) -> Number:
    """Clamp a minute value into ``[0, DAY_MINUTES]``."""
    if minutes < 0:
        return 0
    if minutes > DAY_MINUTES:
        return DAY_MINUTES
    return minutes


def has_overlap(
    start: Number,
    end: Number,
    intervals: Iterable[Interval],
    min_minutes: Number = 1,
) -> bool:
    """Check whether ``[start, end)`` overlaps any interval by ``min_minutes`` or more."""
    return any(overlap_minutes(start, end, i.start, i.end) >= min_minutes for i in intervals)


def merge_intervals(intervals: Sequence[Interval], gap_tolerance: Number = 0) -> list[Interval]:
    """Merge intervals whose gap is at most ``gap_tolerance`` minutes.

    Touching and overlapping intervals always merge. Empty intervals are
    dropped. The input is not modified.

    Args:
        intervals: Intervals in any order.
        gap_tolerance: Largest gap (minutes) still treated as continuous.

    Returns:
        Merged intervals sorted by start.
    """
    ordered = sorted((i for i in intervals if not i.is_empty), key=lambda i: (i.start, i.end))
    merged: list[Interval] = []

    for interval in ordered:
        if merged and interval.start - merged[-1].end <= gap_tolerance:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
            continue
        merged.append(interval)

    return merged


# =============================================================================
# Day Clock
# =============================================================================


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse a storage timestamp into an aware datetime.

    Timestamps without offset information are interpreted as UTC.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class DayClock:
    """Minute axis for one calendar day in one timezone.

    Minutes are measured from local midnight of ``day``. Timestamps on the
    following morning map past ``DAY_MINUTES``, which lets overnight sleep be
    evaluated over its full length before the result is clamped.

    Attributes:
        day: The calendar day.
        tz: Local timezone of the user.
    """

    day: date
    tz: tzinfo = timezone.utc

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.day, time.min, tzinfo=self.tz)

    @property
    def day_end(self) -> datetime:
        return self.at(DAY_MINUTES)

    def minutes(self, value: datetime | str) -> float:
        """Minutes between local midnight and ``value``."""
        moment = parse_timestamp(value)
        return (moment - self.day_start).total_seconds() / 60.0

    def at(self, minutes: Number) -> datetime:
        """Absolute timestamp for a minute offset."""
        return self.day_start + timedelta(minutes=minutes)

    @property
    def weekday(self) -> int:
        """Day of week with Sunday as 0."""
        return (self.day.weekday() + 1) % 7
