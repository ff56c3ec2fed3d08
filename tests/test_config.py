"""Tests for configuration loading and TimelineSettings."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from daytrace.config import (
    AppConfig,
    ConfigFileError,
    GapFillPreference,
    ThresholdsConfig,
    find_config_file,
    get_config,
    load_config,
)
from daytrace.timeline.settings import TimelineSettings


def write_config(directory: Path, text: str, name: str = "daytrace.yaml") -> Path:
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, isolated_config) -> None:
        config = load_config()

        assert config.gap_filling.preference == GapFillPreference.BALANCED
        assert config.thresholds.min_evidence_block_minutes == 10
        assert config.ingestion.window_minutes == 30
        assert config.ingestion.extension_gap_seconds == 60
        assert config.paths.config_dir == isolated_config / ".daytrace"
        assert config.paths.log_dir == isolated_config / ".daytrace" / "logs"
        assert not config.debug

    def test_reads_file_from_working_directory(self, isolated_config) -> None:
        write_config(
            isolated_config,
            "gap_filling:\n  preference: Aggressive\nthresholds:\n  commute_max_gap: 120\ndebug: true\n",
        )

        config = load_config()

        assert config.gap_filling.preference == GapFillPreference.AGGRESSIVE
        assert config.thresholds.commute_max_gap == 120
        assert config.thresholds.commute_min_gap == 15
        assert config.debug

    def test_explicit_path(self, isolated_config) -> None:
        path = write_config(isolated_config, "ingestion:\n  window_minutes: 15\n", name="custom.yaml")

        assert load_config(path).ingestion.window_minutes == 15

    def test_missing_explicit_path_raises(self, isolated_config) -> None:
        with pytest.raises(ConfigFileError):
            load_config(isolated_config / "nope.yaml")

    def test_invalid_section_falls_back(self, isolated_config, caplog, monkeypatch) -> None:
        monkeypatch.setattr(logging.getLogger("daytrace"), "propagate", True)
        write_config(
            isolated_config,
            "thresholds:\n  commute_min_gap: 100\n  commute_max_gap: 50\ningestion:\n  window_minutes: 20\n",
        )

        with caplog.at_level(logging.WARNING, logger="daytrace.config"):
            config = load_config()

        assert config.thresholds == ThresholdsConfig()
        assert config.ingestion.window_minutes == 20
        assert "thresholds" in caplog.text

    def test_malformed_yaml_uses_defaults(self, isolated_config) -> None:
        write_config(isolated_config, "thresholds: [unclosed\n")

        assert load_config() == AppConfig()

    def test_environment_overrides_file(self, isolated_config, monkeypatch) -> None:
        write_config(isolated_config, "gap_filling:\n  preference: conservative\n  confidence_threshold: 0.7\n")
        monkeypatch.setenv("DAYTRACE_GAP_FILLING__PREFERENCE", "aggressive")

        config = load_config()

        assert config.gap_filling.preference == GapFillPreference.AGGRESSIVE
        assert config.gap_filling.confidence_threshold == 0.7

    def test_get_config_is_cached(self, isolated_config) -> None:
        assert get_config() is get_config()

    def test_find_config_file_prefers_working_directory(self, isolated_config) -> None:
        home_dir = isolated_config / ".daytrace"
        home_dir.mkdir()
        write_config(home_dir, "debug: true\n", name="config.yaml")
        local = write_config(isolated_config, "debug: false\n")

        assert find_config_file() == Path("./daytrace.yaml")
        assert find_config_file().resolve() == local.resolve()


class TestModels:
    """Tests for config model validation."""

    def test_inverted_commute_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ThresholdsConfig(commute_min_gap=100, commute_max_gap=50)

    def test_inverted_prep_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ThresholdsConfig(prep_min_gap=60, prep_max_gap=45)

    def test_unknown_preference_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AppConfig(gap_filling={"preference": "reckless"})


class TestTimelineSettings:
    """Tests for TimelineSettings."""

    def test_from_config(self) -> None:
        config = AppConfig(
            thresholds={"commute_max_gap": 60},
            gap_filling={"preference": "manual", "confidence_threshold": 0.5},
        )

        settings = TimelineSettings.from_config(config)

        assert settings.commute_max_gap == 60
        assert settings.is_manual
        assert settings.confidence_threshold == 0.5

    def test_defaults_match_config_defaults(self) -> None:
        assert TimelineSettings.from_config(AppConfig()) == TimelineSettings()

    @pytest.mark.parametrize(
        "preference,threshold,pattern_min,expected",
        [
            (GapFillPreference.BALANCED, 0.6, 0.6, 0.6),
            (GapFillPreference.CONSERVATIVE, 0.6, 0.6, 0.7),
            (GapFillPreference.AGGRESSIVE, 0.6, 0.6, 0.6),
            (GapFillPreference.AGGRESSIVE, 0.9, None, 0.8),
            (GapFillPreference.CONSERVATIVE, 0.95, 0.6, 0.95),
        ],
    )
    def test_pattern_threshold(self, preference, threshold, pattern_min, expected) -> None:
        settings = TimelineSettings(
            preference=preference,
            confidence_threshold=threshold,
            pattern_min_confidence=pattern_min,
        )

        assert settings.pattern_threshold == pytest.approx(expected)
