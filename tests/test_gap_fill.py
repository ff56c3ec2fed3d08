"""Tests for the gap filler and the final timeline passes."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from daytrace.core.evidence import UsageSummary
from daytrace.core.ids import DERIVED_EVIDENCE_PREFIX, derived_id
from daytrace.core.intervals import Interval
from daytrace.core.models import (
    DataQuality,
    EventCategory,
    EventKind,
    GapMeta,
    LocationMeta,
    ManualMeta,
    ScreenTimeMeta,
)
from daytrace.evidence.location import LocationBlock
from daytrace.timeline.context import DayContext
from daytrace.timeline.gap_fill import (
    attach_data_quality,
    build_unknown_block,
    fill_unknown_gaps,
    merge_adjacent_blocks,
    remove_overlapping_blocks,
    replace_unknown_with_location,
    replace_unknown_with_prep,
    replace_unknown_with_productive_usage,
    replace_unknown_with_sleep_schedule,
    replace_unknown_with_transitions,
)


def spans(blocks):
    return [(b.start_minutes, b.end_minutes, b.title) for b in blocks]


# =============================================================================
# Unknown Gaps
# =============================================================================


class TestFillUnknownGaps:
    """Tests for fill_unknown_gaps."""

    def test_single_block(self, make_block, assert_gap_free) -> None:
        blocks = fill_unknown_gaps([make_block("plan-work", 540, 600, title="Deep work")])

        assert spans(blocks) == [(0, 540, "Unknown"), (540, 600, "Deep work"), (600, 1440, "Unknown")]
        assert blocks[0].id == "derived_actual:unknown:0:540:gap"
        assert blocks[0].description == "Tap to assign"
        assert blocks[0].confidence == 0.2
        assert_gap_free(blocks)

    def test_empty_day_is_one_unknown(self) -> None:
        assert spans(fill_unknown_gaps([])) == [(0, 1440, "Unknown")]

    def test_block_past_midnight_is_clamped(self, make_block, assert_gap_free) -> None:
        blocks = fill_unknown_gaps([make_block("sleep", 1380, 1500, EventCategory.SLEEP)])

        assert blocks[-1].end_minutes == 1440
        assert_gap_free(blocks)

    def test_adjacent_unknowns_merge(self) -> None:
        blocks = fill_unknown_gaps([build_unknown_block(0, 300), build_unknown_block(300, 600)])

        assert spans(blocks) == [(0, 1440, "Unknown")]

    def test_unknown_ids_are_stable(self, make_block) -> None:
        first = fill_unknown_gaps([make_block("a", 540, 600)])
        second = fill_unknown_gaps([make_block("a", 540, 600)])

        assert [b.id for b in first] == [b.id for b in second]


# =============================================================================
# Sleep Schedule
# =============================================================================


class TestSleepSchedule:
    """Tests for replace_unknown_with_sleep_schedule."""

    def test_unknown_inside_sleep_becomes_sleep(self, clock) -> None:
        blocks = [build_unknown_block(0, 1440)]
        sleep = [Interval(-60, 420), Interval(1380, 1860)]

        result = replace_unknown_with_sleep_schedule(blocks, sleep, DayContext(clock=clock))

        assert spans(result) == [(0, 420, "Sleep"), (420, 1380, "Unknown"), (1380, 1440, "Sleep")]
        assert result[0].kind == EventKind.SLEEP_SCHEDULE.value
        assert result[0].description == "Sleep schedule"

    def test_phone_use_marks_interrupted(self, clock, make_session) -> None:
        ctx = DayContext(clock=clock, sessions=(make_session("yt", 120, 140, "YouTube"),))

        result = replace_unknown_with_sleep_schedule([build_unknown_block(0, 420)], [Interval(0, 420)], ctx)

        block = result[0]
        assert block.kind == EventKind.SLEEP_INTERRUPTED.value
        assert block.description == "Sleep schedule • Interrupted 1 time (20 min on YouTube)"
        assert block.meta.evidence.interruptions == 1
        assert block.confidence == 0.7

    def test_no_sleep_intervals(self, clock) -> None:
        blocks = [build_unknown_block(0, 1440)]

        assert replace_unknown_with_sleep_schedule(blocks, [], DayContext(clock=clock)) == blocks


# =============================================================================
# Location
# =============================================================================


class TestLocationReplacement:
    """Tests for replace_unknown_with_location."""

    def test_unknown_between_places_is_driving(self, clock) -> None:
        ctx = DayContext(
            clock=clock,
            location_blocks=(LocationBlock(0, 490, "Home"), LocationBlock(530, 600, "Office")),
        )

        result = replace_unknown_with_location([build_unknown_block(480, 540)], ctx)

        assert spans(result) == [(480, 540, "Driving")]
        assert result[0].description == "Home → Office"
        assert result[0].category == EventCategory.COMM

    def test_unknown_at_place_becomes_location_block(self, clock) -> None:
        ctx = DayContext(clock=clock, location_blocks=(LocationBlock(540, 600, "Office"),))

        result = replace_unknown_with_location([build_unknown_block(0, 1440)], ctx)

        assert spans(result) == [(0, 540, "Unknown"), (540, 600, "Office"), (600, 1440, "Unknown")]
        assert result[1].kind == EventKind.LOCATION_INFERRED.value
        assert result[1].category == EventCategory.WORK

    def test_short_overlap_stays_unknown(self, clock) -> None:
        ctx = DayContext(clock=clock, location_blocks=(LocationBlock(540, 600, "Office"),))

        result = replace_unknown_with_location([build_unknown_block(595, 700)], ctx)

        assert spans(result) == [(595, 700, "Unknown")]

    def test_phone_use_noted(self, clock, make_session) -> None:
        ctx = DayContext(
            clock=clock,
            location_blocks=(LocationBlock(780, 900, "Blue Bottle Coffee"),),
            sessions=(make_session("ig", 800, 825, "Instagram"),),
        )

        result = replace_unknown_with_location([build_unknown_block(780, 900)], ctx)

        assert result[0].description == "Distracted: 25 min on Instagram"
        assert result[0].meta.evidence.top_app == "Instagram"


# =============================================================================
# Aggressive Inference
# =============================================================================


class TestAggressiveInference:
    """Tests for productive usage, commute and prep inference."""

    def test_productive_usage(self, clock, make_session) -> None:
        ctx = DayContext(clock=clock, usage=UsageSummary(sessions=[make_session("slack", 600, 640, "Slack")]))

        result = replace_unknown_with_productive_usage([build_unknown_block(600, 700)], ctx)

        assert spans(result) == [(600, 640, "Productive"), (640, 700, "Unknown")]
        assert result[0].description == "40m on Slack"
        assert result[0].kind == EventKind.PRODUCTIVE_USAGE.value

    def test_distraction_is_not_productive(self, clock, make_session) -> None:
        ctx = DayContext(clock=clock, usage=UsageSummary(sessions=[make_session("ig", 600, 640, "Instagram")]))
        blocks = [build_unknown_block(600, 700)]

        assert spans(replace_unknown_with_productive_usage(blocks, ctx)) == [(600, 700, "Unknown")]

    def test_commute_between_located_blocks(self, clock, make_block) -> None:
        blocks = [
            make_block("home", 420, 480, EventCategory.FAMILY, location="Home"),
            build_unknown_block(480, 540),
            make_block("office", 540, 600, location="Office"),
        ]

        result = replace_unknown_with_transitions(blocks, DayContext(clock=clock))

        assert result[1].title == "Commute"
        assert result[1].description == "Home → Office"
        assert result[1].confidence == 0.45

    def test_commute_needs_different_places(self, clock, make_block) -> None:
        blocks = [
            make_block("a", 420, 480, location="Office"),
            build_unknown_block(480, 540),
            make_block("b", 540, 600, location="office"),
        ]

        assert replace_unknown_with_transitions(blocks, DayContext(clock=clock))[1].is_unknown

    @pytest.mark.parametrize(
        "next_title,expected",
        [("Deep work", "Prep"), ("Standup", "Wind down")],
    )
    def test_prep_between_related_blocks(self, clock, make_block, next_title, expected) -> None:
        blocks = [
            make_block("a", 540, 600, title="Standup"),
            build_unknown_block(600, 620),
            make_block("b", 620, 700, title=next_title),
        ]

        result = replace_unknown_with_prep(blocks, DayContext(clock=clock))

        assert result[1].title == expected
        assert result[1].category == EventCategory.WORK

    def test_prep_needs_matching_categories(self, clock, make_block) -> None:
        blocks = [
            make_block("a", 540, 600),
            build_unknown_block(600, 620),
            make_block("b", 620, 700, EventCategory.MEAL),
        ]

        assert replace_unknown_with_prep(blocks, DayContext(clock=clock))[1].is_unknown


# =============================================================================
# Final Passes
# =============================================================================


class TestRemoveOverlappingBlocks:
    """Tests for remove_overlapping_blocks."""

    def test_user_block_beats_confident_derived(self, make_block) -> None:
        user = make_block("evt-1", 600, 660, meta=ManualMeta(confidence=0.4))
        derived = make_block("d1", 645, 720, EventCategory.DIGITAL, meta=ScreenTimeMeta(confidence=0.9))

        result = remove_overlapping_blocks([derived, user])

        assert [b.id for b in result] == ["evt-1"]

    def test_small_overlap_is_trimmed(self, make_block) -> None:
        user = make_block("evt-1", 600, 660, meta=ManualMeta(confidence=0.4))
        derived = make_block("d1", 655, 720, EventCategory.DIGITAL, meta=ScreenTimeMeta(confidence=0.9))

        result = remove_overlapping_blocks([derived, user])

        assert [(b.id, b.start_minutes, b.end_minutes) for b in result] == [
            ("evt-1", 600, 660),
            ("d1", 660, 720),
        ]

    def test_trimmed_derived_block_id_follows_bounds(self, make_block) -> None:
        user = make_block("evt-1", 600, 660, meta=ManualMeta(confidence=0.4))
        block_id = derived_id(DERIVED_EVIDENCE_PREFIX, "screen_time", 655, 720, "Slack")
        derived = make_block(block_id, 655, 720, EventCategory.DIGITAL, meta=ScreenTimeMeta(confidence=0.9))

        result = remove_overlapping_blocks([derived, user])

        assert result[1].id == "derived_evidence:screen_time:660:720:slack"

    def test_known_beats_unknown(self, make_block) -> None:
        unknown = build_unknown_block(0, 1440)
        derived = make_block("d1", 600, 700, meta=LocationMeta(confidence=0.3))

        result = remove_overlapping_blocks([unknown, derived])

        assert [b.id for b in result] == ["d1"]

    def test_higher_confidence_wins_among_derived(self, make_block) -> None:
        low = make_block("low", 600, 700, meta=LocationMeta(confidence=0.3))
        high = make_block("high", 610, 690, meta=ScreenTimeMeta(confidence=0.7))

        assert [b.id for b in remove_overlapping_blocks([low, high])] == ["high"]


class TestMergeAndQuality:
    """Tests for merge_adjacent_blocks and attach_data_quality."""

    def test_touching_twins_merge(self, make_block) -> None:
        a = make_block("a", 540, 600, description="Office", meta=LocationMeta())
        b = make_block("b", 600, 660, description="Office", meta=LocationMeta())

        merged = merge_adjacent_blocks([b, a])

        assert [(m.id, m.start_minutes, m.end_minutes) for m in merged] == [("a", 540, 660)]

    def test_merged_derived_id_covers_merged_bounds(self, make_block) -> None:
        a = make_block("derived_evidence:location:540:600:office", 540, 600, description="Office", meta=LocationMeta())
        b = make_block("derived_evidence:location:600:660:office", 600, 660, description="Office", meta=LocationMeta())

        (merged,) = merge_adjacent_blocks([a, b])

        assert merged.id == "derived_evidence:location:540:660:office"
        assert merged.meta == a.meta

    def test_with_bounds_rejects_empty_range(self, make_block) -> None:
        block = make_block("a", 540, 600, meta=LocationMeta())

        with pytest.raises(ValidationError):
            block.with_bounds(600, 600)

    def test_user_blocks_never_merge(self, make_block) -> None:
        a = make_block("a", 540, 600)
        b = make_block("b", 600, 660)

        assert len(merge_adjacent_blocks([a, b])) == 2

    def test_attach_data_quality_keeps_existing(self, make_block) -> None:
        own = DataQuality(completeness=1.0, reliability=1.0)
        day = DataQuality(completeness=0.5, reliability=0.7)
        blocks = [make_block("a", 0, 60, meta=GapMeta(data_quality=own)), make_block("b", 60, 120)]

        result = attach_data_quality(blocks, day)

        assert result[0].meta.data_quality == own
        assert result[1].meta.data_quality == day
