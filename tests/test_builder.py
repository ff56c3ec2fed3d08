"""End-to-end tests for build_actual_display_events."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from daytrace.config import GapFillPreference
from daytrace.core.evidence import (
    ActualBlock,
    EvidenceBundle,
    LocationHourlyRow,
    UsageSummary,
)
from daytrace.core.models import EventCategory, EventKind, ManualMeta
from daytrace.timeline import DayInputs, TimelineSettings, build_actual_display_events
from daytrace.timeline.patterns import PatternHistoryEntry, build_pattern_index


def kinds(blocks):
    return [(b.start_minutes, b.end_minutes, b.kind) for b in blocks]


@pytest.fixture
def hourly(clock):
    def _rows(*pairs: tuple[int, str]) -> EvidenceBundle:
        return EvidenceBundle(
            location_hourly=[
                LocationHourlyRow(hour_start=clock.at(hour * 60), place_label=label, sample_count=6)
                for hour, label in pairs
            ]
        )

    return _rows


class TestPlannedEvents:
    """Tests for planned events flowing into the timeline."""

    def test_single_planned_event(self, day, make_block, assert_gap_free) -> None:
        inputs = DayInputs(day=day, planned_events=[make_block("plan-work", 540, 600, title="Deep work")])

        blocks = build_actual_display_events(inputs)

        assert kinds(blocks) == [
            (0, 540, EventKind.UNKNOWN_GAP.value),
            (540, 600, EventKind.PLANNED_ACTUAL.value),
            (600, 1440, EventKind.UNKNOWN_GAP.value),
        ]
        assert blocks[1].id == "derived_actual:plan-work"
        assert blocks[1].title == "Deep work"
        assert_gap_free(blocks)

    def test_rebuild_gives_same_ids(self, day, make_block, make_session) -> None:
        inputs = DayInputs(
            day=day,
            planned_events=[make_block("plan-work", 540, 600)],
            usage_summary=UsageSummary(sessions=[make_session("ig", 700, 740, "Instagram")]),
        )

        first = build_actual_display_events(inputs)
        second = build_actual_display_events(inputs)

        assert [b.id for b in first] == [b.id for b in second]

    def test_late_sleep_shift(self, day, make_block, make_session, assert_gap_free) -> None:
        inputs = DayInputs(
            day=day,
            planned_events=[make_block("plan-sleep", 1380, 1860, EventCategory.SLEEP, title="Sleep")],
            usage_summary=UsageSummary(sessions=[make_session("yt", 1390, 1435, "YouTube")]),
        )

        blocks = build_actual_display_events(inputs)

        screen, sleep = blocks[-2], blocks[-1]
        assert (screen.start_minutes, screen.end_minutes, screen.title) == (1390, 1435, "Screen Time")
        assert screen.description == "YouTube rabbit hole"
        assert (sleep.start_minutes, sleep.end_minutes) == (1435, 1440)
        assert sleep.kind == EventKind.SLEEP_LATE.value
        assert_gap_free(blocks)

    def test_future_day_without_evidence_skips_plans(self, day, make_block) -> None:
        inputs = DayInputs(
            day=day,
            planned_events=[make_block("plan-work", 540, 600)],
            now=datetime(2025, 3, 1, 12, tzinfo=timezone.utc),
        )

        blocks = build_actual_display_events(inputs)

        assert kinds(blocks) == [(0, 1440, EventKind.UNKNOWN_GAP.value)]

    def test_saved_user_actual_beats_plan(self, day, make_block) -> None:
        inputs = DayInputs(
            day=day,
            planned_events=[make_block("plan-work", 600, 660)],
            actual_events=[make_block("evt-1", 600, 660, EventCategory.MEAL, title="Early lunch")],
        )

        blocks = build_actual_display_events(inputs)

        middle = [b for b in blocks if b.start_minutes == 600]
        assert [b.id for b in middle] == ["evt-1"]
        assert "derived_actual:plan-work" not in [b.id for b in blocks]

    def test_saved_sleep_actual_is_rederived(self, day, make_block) -> None:
        inputs = DayInputs(
            day=day,
            actual_events=[make_block("evt-sleep", 0, 420, EventCategory.SLEEP)],
        )

        blocks = build_actual_display_events(inputs)

        assert "evt-sleep" not in [b.id for b in blocks]


class TestEvidence:
    """Tests for evidence-driven blocks."""

    def test_location_inferred_block(self, day, hourly, assert_gap_free) -> None:
        inputs = DayInputs(day=day, evidence=hourly((13, "Blue Bottle Coffee"), (14, "Blue Bottle Coffee")))

        blocks = build_actual_display_events(inputs)

        coffee = [b for b in blocks if b.title == "Blue Bottle Coffee"]
        assert len(coffee) == 1
        assert (coffee[0].start_minutes, coffee[0].end_minutes) == (780, 900)
        assert coffee[0].category == EventCategory.MEAL
        assert coffee[0].kind == EventKind.LOCATION_INFERRED.value
        assert_gap_free(blocks)

    def test_screen_time_block(self, day, make_session) -> None:
        inputs = DayInputs(
            day=day,
            usage_summary=UsageSummary(sessions=[make_session("slack", 600, 650, "Slack")]),
        )

        blocks = build_actual_display_events(inputs)

        screen = [b for b in blocks if b.kind == EventKind.SCREEN_TIME.value]
        assert [(b.start_minutes, b.end_minutes, b.title) for b in screen] == [
            (600, 650, "Productive Screen Time")
        ]

    def test_upstream_evidence_block(self, day) -> None:
        inputs = DayInputs(
            day=day,
            actual_blocks=[
                ActualBlock(
                    id="gym-1",
                    title="Gym",
                    category=EventCategory.HEALTH,
                    start_minutes=1020,
                    end_minutes=1080,
                    source="workout",
                )
            ],
        )

        blocks = build_actual_display_events(inputs)

        gym = [b for b in blocks if b.id == "derived_evidence:gym-1"]
        assert len(gym) == 1
        assert gym[0].kind == EventKind.EVIDENCE_BLOCK.value
        assert gym[0].confidence == 0.55

    def test_pattern_relabels_unknown(self, day, make_block) -> None:
        history = [
            PatternHistoryEntry(
                day=day - timedelta(weeks=week), event=make_block(f"w{week}", 540, 600, title="Deep work")
            )
            for week in range(1, 4)
        ]
        inputs = DayInputs(
            day=day,
            planned_events=[make_block("plan-evening", 600, 1440, EventCategory.FAMILY)],
            pattern_index=build_pattern_index(history),
        )

        blocks = build_actual_display_events(inputs)

        assert blocks[0].kind == EventKind.PATTERN_GAP.value
        assert blocks[0].description == "Usually Deep work around this time"


class TestPreferences:
    """Tests for gap-filling preferences."""

    def test_aggressive_commute(self, day, hourly) -> None:
        inputs = DayInputs(day=day, evidence=hourly((7, "Home"), (9, "Office")))
        aggressive = TimelineSettings(preference=GapFillPreference.AGGRESSIVE)

        balanced_blocks = build_actual_display_events(inputs)
        aggressive_blocks = build_actual_display_events(inputs, aggressive)

        def at_480(blocks):
            return next(b for b in blocks if b.start_minutes == 480)

        assert at_480(balanced_blocks).is_unknown
        commute = at_480(aggressive_blocks)
        assert commute.title == "Commute"
        assert commute.description == "Home → Office"
        assert commute.end_minutes == 540

    def test_manual_mode_skips_location(self, day, hourly) -> None:
        inputs = DayInputs(day=day, evidence=hourly((9, "Office")))
        manual = TimelineSettings(preference=GapFillPreference.MANUAL)

        blocks = build_actual_display_events(inputs, manual)

        assert kinds(blocks) == [(0, 1440, EventKind.UNKNOWN_GAP.value)]


class TestInvariants:
    """Every timeline covers the day exactly once."""

    @pytest.mark.parametrize(
        "scenario",
        ["empty", "plans", "overlapping_actuals", "sleep", "evidence"],
    )
    def test_gap_free_and_non_overlapping(
        self, scenario, day, make_block, make_session, hourly, assert_gap_free
    ) -> None:
        inputs = {
            "empty": DayInputs(day=day),
            "plans": DayInputs(
                day=day,
                planned_events=[
                    make_block("p1", 540, 600),
                    make_block("p2", 590, 700, EventCategory.MEETING),
                    make_block("p3", 1430, 1440, EventCategory.MEAL),
                ],
            ),
            "overlapping_actuals": DayInputs(
                day=day,
                actual_events=[
                    make_block("a1", 600, 700, meta=ManualMeta(confidence=0.5)),
                    make_block("a2", 650, 800, EventCategory.SOCIAL),
                ],
            ),
            "sleep": DayInputs(
                day=day,
                planned_events=[
                    make_block("s0", 0, 420, EventCategory.SLEEP),
                    make_block("s1", 1380, 1860, EventCategory.SLEEP),
                ],
                usage_summary=UsageSummary(
                    sessions=[make_session("yt", 1385, 1500, "YouTube"), make_session("ig", 60, 80, "Instagram")]
                ),
            ),
            "evidence": DayInputs(
                day=day,
                evidence=hourly((8, "Home"), (10, "Office"), (11, "Office"), (18, "Gym")),
                usage_summary=UsageSummary(sessions=[make_session("slack", 610, 690, "Slack")]),
            ),
        }[scenario]

        blocks = build_actual_display_events(inputs)

        assert_gap_free(blocks)
        assert blocks == sorted(blocks, key=lambda b: b.start_minutes)
