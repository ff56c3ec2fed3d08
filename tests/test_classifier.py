"""Tests for app and place classification."""

from __future__ import annotations

import pytest

from daytrace.core.classifier import (
    classify_app_usage,
    classify_place,
    format_place_label,
    is_distraction_app,
    is_expected_app,
)
from daytrace.core.evidence import AppCategoryOverride
from daytrace.core.models import EventCategory


class TestClassifyAppUsage:
    """Tests for classify_app_usage."""

    @pytest.mark.parametrize("app", ["Instagram", "com.google.android.youtube", "TikTok"])
    def test_distraction_apps(self, app: str) -> None:
        result = classify_app_usage(app)

        assert result.title == "Doom Scroll"
        assert result.category == EventCategory.DIGITAL
        assert result.confidence == 0.75
        assert result.is_distraction

    @pytest.mark.parametrize("app", ["Slack", "Google Docs", "Notes"])
    def test_productive_apps(self, app: str) -> None:
        result = classify_app_usage(app)

        assert result.title == "Productive Screen Time"
        assert result.category == EventCategory.WORK
        assert result.confidence == 0.7

    def test_health_app(self) -> None:
        result = classify_app_usage("Strava")

        assert result.title == "Workout Tracking"
        assert result.category == EventCategory.HEALTH
        assert result.confidence == 0.65

    def test_unknown_app_is_neutral(self) -> None:
        result = classify_app_usage("Calm Garden")

        assert result.title == "Screen Time"
        assert result.category == EventCategory.DIGITAL
        assert result.confidence == 0.45
        assert result.description == "Calm Garden"

    @pytest.mark.parametrize("app", [None, "", "   "])
    def test_blank_app_never_raises(self, app) -> None:
        result = classify_app_usage(app)

        assert result.title == "Screen Time"
        assert result.description == "Screen Time"

    def test_override_wins(self) -> None:
        overrides = {"instagram": AppCategoryOverride(category=EventCategory.WORK, confidence=0.9)}

        result = classify_app_usage("Instagram", overrides)

        assert result.category == EventCategory.WORK
        assert result.title == "Productive Screen Time"
        assert result.confidence == 0.9

    def test_single_letter_keyword_needs_whole_word(self) -> None:
        assert is_distraction_app("X")
        assert not is_distraction_app("Xcode")


class TestClassifyPlace:
    """Tests for classify_place."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Blue Bottle Coffee", EventCategory.MEAL),
            ("Downtown Gym", EventCategory.HEALTH),
            ("Office", EventCategory.WORK),
            ("Grace Church", EventCategory.ROUTINE),
            ("Home", EventCategory.FAMILY),
            ("Chase Bank", EventCategory.FINANCE),
            ("SFO Airport", EventCategory.TRAVEL),
            ("Somewhere", EventCategory.FREE),
        ],
    )
    def test_keywords(self, label: str, expected: EventCategory) -> None:
        assert classify_place(label) == expected

    def test_category_value_used_directly(self) -> None:
        assert classify_place("Maple Street", "work") == EventCategory.WORK

    def test_none_is_free(self) -> None:
        assert classify_place(None) == EventCategory.FREE


class TestHelpers:
    """Tests for label formatting and expected-app checks."""

    def test_format_place_label(self) -> None:
        assert format_place_label("blue_bottle-coffee") == "Blue Bottle Coffee"
        assert format_place_label("") == "Location"

    def test_expected_app_for_meeting(self) -> None:
        assert is_expected_app("Zoom", EventCategory.MEETING)
        assert not is_expected_app("Instagram", EventCategory.MEETING)

    def test_digital_accepts_any_app(self) -> None:
        assert is_expected_app("Anything", EventCategory.DIGITAL)
