"""Pattern index: what the user usually does at a given time of week.

History blocks are bucketed by (weekday, 30-minute slot of their start).
Each slot keeps the winning ``category:title`` pair and the share of
weighted samples it won; blocks the user taught the app (``meta.learned``)
count 1.5 times.

Example:
    >>> index = build_pattern_index(history)
    >>> slot = pattern_suggestion_for_range(index, date(2025, 3, 3), 540, 600)
    >>> slot.category, round(slot.confidence, 2)
    (<EventCategory.WORK: 'work'>, 0.8)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Sequence

from pydantic import BaseModel, Field, PrivateAttr

from daytrace.core.ids import DERIVED_ACTUAL_PREFIX, derived_id
from daytrace.core.intervals import DAY_MINUTES, overlap_minutes
from daytrace.core.models import EventCategory, EventKind, GapMeta, PatternSummary, TimeBlock

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30
MIN_PATTERN_CONFIDENCE = 0.6
LEARNED_EVENT_WEIGHT = 1.5


# =============================================================================
# Models
# =============================================================================


class PatternHistoryEntry(BaseModel):
    """One past actual block and the day it happened on."""

    day: date
    event: TimeBlock


class PatternSlot(BaseModel):
    """Winning activity for one (weekday, slot) bucket.

    Attributes:
        weekday: Day of week, Sunday = 0.
        slot_start: Slot start minute.
        category: Winning category.
        title: Winning title.
        confidence: Winner's share of the weighted samples.
        sample_count: Rounded weighted sample count.
        avg_duration_minutes: Weighted mean duration of the samples.
    """

    weekday: int = Field(ge=0, le=6)
    slot_start: int = Field(ge=0, lt=DAY_MINUTES)
    category: EventCategory
    title: str
    confidence: float = Field(ge=0, le=1)
    sample_count: int = 0
    avg_duration_minutes: float = 0.0

    @property
    def slot_end(self) -> int:
        return self.slot_start + SLOT_MINUTES


class PatternIndex(BaseModel):
    slots: list[PatternSlot] = Field(default_factory=list)
    _lookup: dict[tuple[int, int], PatternSlot] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: object) -> None:
        self._lookup = {(s.weekday, s.slot_start): s for s in self.slots}

    def get(self, weekday: int, slot_start: int) -> PatternSlot | None:
        return self._lookup.get((weekday, slot_start))


class PatternAnomaly(BaseModel):
    start_minutes: int
    end_minutes: int
    expected_category: EventCategory
    actual_category: EventCategory
    confidence: float


class DailyAnomalyReport(BaseModel):
    day: date
    anomaly_score: float
    anomalies: list[PatternAnomaly] = Field(default_factory=list)
    slot_count: int = 0


class PatternPrediction(BaseModel):
    start_minutes: int
    end_minutes: int
    category: EventCategory
    title: str
    confidence: float


def sunday_weekday(day: date) -> int:
    """Day of week with Sunday as 0."""
    return (day.weekday() + 1) % 7


def _slot_of(minute: float) -> int:
    # Minute 1440 belongs to the last slot of the day.
    return min(int(minute // SLOT_MINUTES) * SLOT_MINUTES, DAY_MINUTES - SLOT_MINUTES)


# =============================================================================
# Index
# =============================================================================


def build_pattern_index(history: Sequence[PatternHistoryEntry]) -> PatternIndex:
    """Build the pattern index from past actual blocks.

    Args:
        history: Past actual blocks with their days.

    Returns:
        Index with one slot per populated (weekday, slot) bucket.
    """
    totals: dict[tuple[int, int], float] = defaultdict(float)
    durations: dict[tuple[int, int], float] = defaultdict(float)
    counts: dict[tuple[int, int], dict[tuple[EventCategory, str], float]] = defaultdict(dict)

    for entry in history:
        event = entry.event
        key = (sunday_weekday(entry.day), _slot_of(event.start_minutes))
        weight = LEARNED_EVENT_WEIGHT if event.meta.learned else 1.0
        winner_key = (event.category, event.title.strip() or "Actual")
        totals[key] += weight
        durations[key] += event.duration * weight
        counts[key][winner_key] = counts[key].get(winner_key, 0.0) + weight

    slots = []
    for key, total in totals.items():
        if total <= 0:
            continue
        (category, title), winner = max(counts[key].items(), key=lambda item: item[1])
        slots.append(
            PatternSlot(
                weekday=key[0],
                slot_start=key[1],
                category=category,
                title=title,
                confidence=winner / total,
                sample_count=int(round(total)),
                avg_duration_minutes=durations[key] / total,
            )
        )

    slots.sort(key=lambda s: (s.weekday, s.slot_start))
    logger.debug(f"Pattern index built: {len(slots)} slots from {len(history)} entries")
    return PatternIndex(slots=slots)


def pattern_suggestion_for_range(
    index: PatternIndex | None,
    day: date,
    start: float,
    end: float,
) -> PatternSlot | None:
    """Most confident slot touched by ``[start, end)`` on ``day``'s weekday."""
    if index is None:
        return None
    weekday = sunday_weekday(day)
    best: PatternSlot | None = None
    minute = start
    while minute < end:
        slot = index.get(weekday, _slot_of(minute))
        if slot is not None and (best is None or slot.confidence > best.confidence):
            best = slot
        minute += SLOT_MINUTES
    return best


def build_pattern_summary(
    index: PatternIndex | None,
    day: date,
    start: float,
    end: float,
    category: EventCategory,
    min_confidence: float = MIN_PATTERN_CONFIDENCE,
) -> PatternSummary | None:
    """Compare a range's category with the user's usual activity.

    Returns:
        A ``PatternSummary``, or ``None`` when no slot covers the range.
    """
    suggestion = pattern_suggestion_for_range(index, day, start, end)
    if suggestion is None:
        return None
    return PatternSummary(
        confidence=suggestion.confidence,
        sample_count=suggestion.sample_count,
        typical_category=suggestion.category,
        deviation=suggestion.category != category and suggestion.confidence >= min_confidence,
    )


def apply_pattern_suggestions(
    blocks: Sequence[TimeBlock],
    index: PatternIndex | None,
    day: date,
    min_confidence: float = MIN_PATTERN_CONFIDENCE,
) -> list[TimeBlock]:
    """Relabel unknown blocks whose time slot has a confident pattern."""
    if index is None:
        return list(blocks)

    updated = []
    for block in blocks:
        if not block.is_unknown:
            updated.append(block)
            continue
        suggestion = pattern_suggestion_for_range(index, day, block.start_minutes, block.end_minutes)
        if suggestion is None or suggestion.confidence < min_confidence:
            updated.append(block)
            continue
        updated.append(
            block.model_copy(
                update={
                    "id": derived_id(
                        DERIVED_ACTUAL_PREFIX, "pattern", block.start_minutes, block.end_minutes, suggestion.title
                    ),
                    "title": suggestion.title,
                    "description": f"Usually {suggestion.title} around this time",
                    "category": suggestion.category,
                    "meta": GapMeta(
                        kind=EventKind.PATTERN_GAP.value,
                        confidence=suggestion.confidence,
                        pattern_sample_count=suggestion.sample_count,
                        data_quality=block.meta.data_quality,
                    ),
                }
            )
        )
    return updated


# =============================================================================
# Anomalies & Predictions
# =============================================================================


def _dominant_category(blocks: Sequence[TimeBlock], start: int, end: int) -> EventCategory:
    best_overlap = 0
    best = EventCategory.UNKNOWN
    for block in blocks:
        overlap = overlap_minutes(start, end, block.start_minutes, block.end_minutes)
        if overlap > best_overlap:
            best_overlap, best = overlap, block.category
    return best


def detect_pattern_anomalies(
    blocks: Sequence[TimeBlock],
    index: PatternIndex | None,
    day: date,
    min_confidence: float = MIN_PATTERN_CONFIDENCE,
) -> DailyAnomalyReport | None:
    """Find confident slots where the day did something else.

    Unknown time is not an anomaly. The score is anomalies per confident slot.
    """
    if index is None:
        return None

    weekday = sunday_weekday(day)
    anomalies = []
    slot_count = 0
    for slot_start in range(0, DAY_MINUTES, SLOT_MINUTES):
        slot = index.get(weekday, slot_start)
        if slot is None or slot.confidence < min_confidence:
            continue
        slot_count += 1
        actual = _dominant_category(blocks, slot_start, slot.slot_end)
        if actual not in (slot.category, EventCategory.UNKNOWN):
            anomalies.append(
                PatternAnomaly(
                    start_minutes=slot_start,
                    end_minutes=slot.slot_end,
                    expected_category=slot.category,
                    actual_category=actual,
                    confidence=slot.confidence,
                )
            )

    return DailyAnomalyReport(
        day=day,
        anomaly_score=len(anomalies) / slot_count if slot_count else 0.0,
        anomalies=anomalies,
        slot_count=slot_count,
    )


def predict_day(
    index: PatternIndex | None,
    day: date,
    min_confidence: float = MIN_PATTERN_CONFIDENCE,
) -> list[PatternPrediction]:
    """Confident slots for ``day``'s weekday, in time order."""
    if index is None:
        return []
    weekday = sunday_weekday(day)
    return [
        PatternPrediction(
            start_minutes=slot.slot_start,
            end_minutes=slot.slot_end,
            category=slot.category,
            title=slot.title,
            confidence=slot.confidence,
        )
        for slot in sorted(index.slots, key=lambda s: s.slot_start)
        if slot.weekday == weekday and slot.confidence >= min_confidence
    ]
