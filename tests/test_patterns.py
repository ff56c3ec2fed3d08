"""Tests for the weekly pattern index."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from daytrace.core.models import EventCategory, EventKind, GapMeta, ManualMeta
from daytrace.timeline.patterns import (
    PatternHistoryEntry,
    apply_pattern_suggestions,
    build_pattern_index,
    build_pattern_summary,
    detect_pattern_anomalies,
    pattern_suggestion_for_range,
    predict_day,
    sunday_weekday,
)

TUESDAY = date(2025, 3, 4)


@pytest.fixture
def history(make_block) -> list[PatternHistoryEntry]:
    """Four Tuesdays of 9:00 deep work and one Tuesday lunch at the same slot."""
    entries = [
        PatternHistoryEntry(
            day=TUESDAY - timedelta(weeks=week),
            event=make_block(f"work-{week}", 540, 600, title="Deep work"),
        )
        for week in range(1, 5)
    ]
    entries.append(
        PatternHistoryEntry(
            day=TUESDAY - timedelta(weeks=5),
            event=make_block("meal", 545, 575, EventCategory.MEAL, title="Brunch"),
        )
    )
    return entries


class TestPatternIndex:
    """Tests for build_pattern_index and lookups."""

    def test_winner_and_confidence(self, history) -> None:
        index = build_pattern_index(history)

        slot = index.get(2, 540)
        assert slot is not None
        assert slot.category == EventCategory.WORK
        assert slot.title == "Deep work"
        assert slot.confidence == pytest.approx(0.8)
        assert slot.sample_count == 5
        assert slot.avg_duration_minutes == pytest.approx((4 * 60 + 30) / 5)

    def test_learned_blocks_weigh_more(self, make_block) -> None:
        history = [
            PatternHistoryEntry(day=TUESDAY, event=make_block("w", 540, 600, title="Work")),
            PatternHistoryEntry(
                day=TUESDAY,
                event=make_block(
                    "g", 540, 600, EventCategory.HEALTH, title="Gym", meta=ManualMeta(learned=True)
                ),
            ),
        ]

        slot = build_pattern_index(history).get(2, 540)

        assert slot.title == "Gym"
        assert slot.confidence == pytest.approx(0.6)

    def test_block_starting_at_midnight_lands_in_last_slot(self, make_block) -> None:
        history = [PatternHistoryEntry(day=TUESDAY, event=make_block("late", 1440, 1470, title="Late shift"))]

        index = build_pattern_index(history)

        assert [s.slot_start for s in index.slots] == [1410]
        assert index.get(2, 1410).title == "Late shift"

    def test_empty_history(self) -> None:
        assert build_pattern_index([]).slots == []

    def test_sunday_is_zero(self) -> None:
        assert sunday_weekday(date(2025, 3, 2)) == 0
        assert sunday_weekday(date(2025, 3, 8)) == 6

    def test_suggestion_for_range(self, history) -> None:
        index = build_pattern_index(history)

        assert pattern_suggestion_for_range(index, TUESDAY, 500, 560).title == "Deep work"
        assert pattern_suggestion_for_range(index, TUESDAY + timedelta(days=1), 500, 560) is None
        assert pattern_suggestion_for_range(None, TUESDAY, 0, 1440) is None


class TestPatternUse:
    """Tests for summaries, suggestions, anomalies and predictions."""

    def test_summary_flags_deviation(self, history) -> None:
        index = build_pattern_index(history)

        summary = build_pattern_summary(index, TUESDAY, 540, 570, EventCategory.MEAL)

        assert summary.typical_category == EventCategory.WORK
        assert summary.deviation is True
        assert build_pattern_summary(index, TUESDAY, 540, 570, EventCategory.WORK).deviation is False

    def test_unknown_block_relabelled(self, history, make_block) -> None:
        unknown = make_block("gap", 480, 600, EventCategory.UNKNOWN, meta=GapMeta())
        kept = make_block("evt-1", 600, 660)

        blocks = apply_pattern_suggestions([unknown, kept], build_pattern_index(history), TUESDAY)

        relabelled = blocks[0]
        assert relabelled.title == "Deep work"
        assert relabelled.category == EventCategory.WORK
        assert relabelled.description == "Usually Deep work around this time"
        assert relabelled.kind == EventKind.PATTERN_GAP.value
        assert relabelled.confidence == pytest.approx(0.8)
        assert (relabelled.start_minutes, relabelled.end_minutes) == (480, 600)
        assert blocks[1] is kept

    def test_weak_pattern_leaves_unknown(self, history, make_block) -> None:
        unknown = make_block("gap", 480, 600, EventCategory.UNKNOWN, meta=GapMeta())

        blocks = apply_pattern_suggestions([unknown], build_pattern_index(history), TUESDAY, min_confidence=0.9)

        assert blocks == [unknown]

    def test_anomalies(self, history, make_block) -> None:
        index = build_pattern_index(history)
        day_blocks = [make_block("social", 540, 570, EventCategory.SOCIAL)]

        report = detect_pattern_anomalies(day_blocks, index, TUESDAY)

        assert report.slot_count == 1
        assert report.anomaly_score == 1.0
        assert report.anomalies[0].expected_category == EventCategory.WORK
        assert report.anomalies[0].actual_category == EventCategory.SOCIAL

    def test_unknown_time_is_not_an_anomaly(self, history) -> None:
        report = detect_pattern_anomalies([], build_pattern_index(history), TUESDAY)

        assert report.anomalies == []
        assert detect_pattern_anomalies([], None, TUESDAY) is None

    def test_predict_day(self, history) -> None:
        predictions = predict_day(build_pattern_index(history), TUESDAY)

        assert [(p.start_minutes, p.end_minutes, p.title) for p in predictions] == [(540, 570, "Deep work")]
        assert predict_day(None, TUESDAY) == []
