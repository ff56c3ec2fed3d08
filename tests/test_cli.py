"""Tests for CLI commands using Click's testing utilities."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from rich.console import Console

from daytrace import __version__
from daytrace.cli.main import cli

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runner(isolated_config, monkeypatch) -> CliRunner:
    """Click runner inside an isolated config directory."""
    monkeypatch.setattr(sys.modules["daytrace.cli.main"], "console", Console(width=200))
    return CliRunner()


@pytest.fixture
def write_json(isolated_config):
    def _write(name: str, payload: dict[str, Any]) -> Path:
        path = isolated_config / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def day_file(write_json) -> Path:
    return write_json(
        "day.json",
        {
            "day": "2025-03-04",
            "planned_events": [
                {"id": "plan-work", "title": "Deep work", "start_minutes": 540, "duration": 60, "category": "work"}
            ],
        },
    )


# =============================================================================
# Version Tests
# =============================================================================


class TestVersion:
    """Tests for --version and --help."""

    def test_version_option(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "daytrace" in result.output
        assert __version__ in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("timeline", "reconcile", "reprocess", "config"):
            assert command in result.output

    def test_missing_config_file_is_reported(self, runner: CliRunner, isolated_config) -> None:
        result = runner.invoke(cli, ["--config", str(isolated_config / "nope.yaml"), "config", "show"])

        assert result.exit_code != 0
        assert "Config file not found" in result.output


# =============================================================================
# Timeline Command Tests
# =============================================================================


class TestTimelineCommand:
    """Tests for the timeline command."""

    def test_json_output(self, runner: CliRunner, day_file: Path) -> None:
        result = runner.invoke(cli, ["timeline", str(day_file), "--json"])

        assert result.exit_code == 0, result.output
        blocks = json.loads(result.output)
        assert [(b["start_minutes"], b["duration"]) for b in blocks] == [(0, 540), (540, 60), (600, 840)]
        assert blocks[1]["id"] == "derived_actual:plan-work"
        assert blocks[1]["meta"]["kind"] == "planned_actual"

    def test_table_output(self, runner: CliRunner, day_file: Path) -> None:
        result = runner.invoke(cli, ["timeline", str(day_file)])

        assert result.exit_code == 0, result.output
        assert "Deep work" in result.output
        assert "could not be attributed" in result.output

    def test_preference_override(self, runner: CliRunner, day_file: Path) -> None:
        result = runner.invoke(cli, ["timeline", str(day_file), "--json", "--preference", "manual"])

        assert result.exit_code == 0, result.output
        assert len(json.loads(result.output)) == 3

    def test_invalid_day_file(self, runner: CliRunner, write_json) -> None:
        path = write_json("bad.json", {"planned_events": []})

        result = runner.invoke(cli, ["timeline", str(path)])

        assert result.exit_code != 0
        assert "Invalid day file" in result.output

    def test_non_mapping_file(self, runner: CliRunner, isolated_config) -> None:
        path = isolated_config / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")

        result = runner.invoke(cli, ["timeline", str(path)])

        assert result.exit_code != 0
        assert "mapping" in result.output


# =============================================================================
# Reconcile Command Tests
# =============================================================================


class TestReconcileCommand:
    """Tests for the reconcile command."""

    def test_derived_candidates(self, runner: CliRunner, write_json) -> None:
        path = write_json(
            "window.json",
            {
                "existing": [
                    {
                        "id": "evt-old",
                        "scheduled_start": "2025-03-04T10:01:00Z",
                        "scheduled_end": "2025-03-04T10:05:00Z",
                        "meta": {"source": "derived", "source_id": "st:old"},
                    }
                ],
                "derived": [
                    {
                        "source_id": "st:new",
                        "scheduled_start": "2025-03-04T10:10:00Z",
                        "scheduled_end": "2025-03-04T10:20:00Z",
                        "meta": {"source": "derived", "source_id": "st:new"},
                    }
                ],
            },
        )

        result = runner.invoke(cli, ["reconcile", str(path), "--json"])

        assert result.exit_code == 0, result.output
        ops = json.loads(result.output)
        assert [i["event"]["source_id"] for i in ops["inserts"]] == ["st:new"]
        assert [d["event_id"] for d in ops["deletes"]] == ["evt-old"]

    def test_prioritized_candidates(self, runner: CliRunner, write_json) -> None:
        path = write_json(
            "window.json",
            {
                "screen_time": [
                    {
                        "source_id": "st:1",
                        "scheduled_start": "2025-03-04T10:10:00Z",
                        "scheduled_end": "2025-03-04T10:20:00Z",
                        "meta": {"app_id": "com.slack"},
                    }
                ],
                "location": [
                    {
                        "source_id": "loc:1",
                        "scheduled_start": "2025-03-04T10:00:00Z",
                        "scheduled_end": "2025-03-04T10:30:00Z",
                        "meta": {"kind": "location_block"},
                    }
                ],
            },
        )

        result = runner.invoke(cli, ["reconcile", str(path), "--json"])

        assert result.exit_code == 0, result.output
        inserted = sorted(i["event"]["source_id"] for i in json.loads(result.output)["inserts"])
        assert inserted == ["loc:1:0", "loc:1:1", "st:1"]

    def test_nothing_to_do(self, runner: CliRunner, write_json) -> None:
        path = write_json("window.json", {})

        result = runner.invoke(cli, ["reconcile", str(path)])

        assert result.exit_code == 0
        assert "already matches" in result.output


# =============================================================================
# Reprocess Command Tests
# =============================================================================


class TestReprocessCommand:
    """Tests for the reprocess command."""

    def test_replays_day(self, runner: CliRunner, write_json) -> None:
        path = write_json(
            "fixture.json",
            {
                "screen_time": [
                    {
                        "app_id": "com.slack",
                        "started_at": "2025-03-04T10:01:00Z",
                        "ended_at": "2025-03-04T10:05:00Z",
                    }
                ],
                "events": [
                    {
                        "id": "evt-user",
                        "title": "Lunch",
                        "scheduled_start": "2025-03-04T12:00:00Z",
                        "scheduled_end": "2025-03-04T13:00:00Z",
                        "meta": {"source": "user"},
                    }
                ],
            },
        )

        result = runner.invoke(
            cli,
            ["reprocess", str(path), "--day", "2025-03-04", "--user", "u1", "--now", "2025-03-04T10:45:00Z", "--json"],
        )

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["result"]["windows_processed"] == 21
        assert payload["result"]["windows_failed"] == 0
        ids = [e["id"] for e in payload["events"]]
        assert "evt-user" in ids
        assert any((e["meta"].get("source_id") or "").startswith("screentime:") for e in payload["events"])

    def test_day_is_required(self, runner: CliRunner, write_json) -> None:
        path = write_json("fixture.json", {})

        result = runner.invoke(cli, ["reprocess", str(path)])

        assert result.exit_code != 0
        assert "--day" in result.output


# =============================================================================
# Config Command Tests
# =============================================================================


class TestConfigCommand:
    """Tests for the config group."""

    def test_show(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0, result.output
        assert "gap_filling.preference" in result.output
        assert "balanced" in result.output

    def test_show_reflects_file(self, runner: CliRunner, isolated_config) -> None:
        (isolated_config / "daytrace.yaml").write_text("gap_filling:\n  preference: aggressive\n", encoding="utf-8")

        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0, result.output
        assert "aggressive" in result.output

    def test_path_without_file(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["config", "path"])

        assert result.exit_code == 0
        assert "No config file found" in result.output
        assert "daytrace.yaml" in result.output

    def test_path_with_file(self, runner: CliRunner, isolated_config) -> None:
        (isolated_config / "daytrace.yaml").write_text("debug: false\n", encoding="utf-8")

        result = runner.invoke(cli, ["config", "path"])

        assert result.exit_code == 0
        assert "daytrace.yaml" in result.output
        assert "No config file found" not in result.output
