"""Command-line interface for daytrace.

Built with Click for commands and Rich for terminal output. Input files
are YAML or JSON.

Usage:
    daytrace timeline day.json
    daytrace timeline day.json --json --preference aggressive
    daytrace reconcile window.yaml
    daytrace reprocess fixture.yaml --day 2025-03-04 --user u1
    daytrace config show
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from daytrace import __version__
from daytrace.config import AppConfig, ConfigError, GapFillPreference, default_search_paths, find_config_file, load_config
from daytrace.core.evidence import LocationSample, ScreenTimeSession, UserPlace
from daytrace.core.intervals import parse_timestamp
from daytrace.core.models import TimeBlock
from daytrace.reconciliation.ingestion import reprocess_day
from daytrace.reconciliation.ops import (
    DerivedEvent,
    ReconciliationEvent,
    ReconciliationOps,
    compute_prioritized_ops,
    compute_reconciliation_ops,
)
from daytrace.reconciliation.store import InMemoryStore
from daytrace.timeline.builder import DayInputs, build_actual_display_events
from daytrace.timeline.settings import TimelineSettings
from daytrace.utils.logging import log_context, setup_logging

logger = logging.getLogger(__name__)

console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def print_header(text: str) -> None:
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))
    console.print()


def print_success(text: str) -> None:
    console.print(f"[green]✓[/green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[red]✗[/red] {text}")


def load_document(path: Path) -> dict[str, Any]:
    """Read a YAML or JSON mapping.

    Raises:
        click.ClickException: If the file is not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise click.ClickException(f"Cannot parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a mapping at the top level")
    return data


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def _dump(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _config(ctx: click.Context) -> AppConfig:
    return ctx.obj["config"]


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="daytrace")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), help="Path to config file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool, config_path: Path | None) -> None:
    """daytrace - Reconstruct what actually happened in a day.

    Merges screen time, location, health data and the calendar into one
    gap-free timeline, and reconciles derived events against stored ones.
    """
    ctx.ensure_object(dict)
    try:
        app_config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    debug = debug or app_config.debug
    verbose = verbose or app_config.verbose
    level = "DEBUG" if debug else "INFO" if verbose else "WARNING"
    setup_logging(level=level)

    ctx.obj["config"] = app_config
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


# =============================================================================
# Timeline Command
# =============================================================================


def _timeline_table(inputs: DayInputs, blocks: list[TimeBlock]) -> Table:
    table = Table(title=f"Actual timeline for {inputs.day.isoformat()}")
    table.add_column("Start", style="cyan")
    table.add_column("End", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Category")
    table.add_column("Kind", style="dim")
    table.add_column("Confidence", justify="right")

    for block in blocks:
        style = "dim" if block.is_unknown else None
        table.add_row(
            format_minutes(block.start_minutes),
            format_minutes(block.end_minutes),
            block.title,
            block.category.value,
            block.kind,
            f"{block.confidence:.0%}",
            style=style,
        )
    return table


@cli.command()
@click.argument("day_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option(
    "--preference",
    type=click.Choice([p.value for p in GapFillPreference]),
    help="Override the configured gap-filling preference",
)
@click.pass_context
def timeline(ctx: click.Context, day_file: Path, output_json: bool, preference: str | None) -> None:
    """Build the gap-free actual timeline of one day.

    DAY_FILE holds the day's inputs: planned and saved events, evidence,
    usage summary and pattern history.

    Example:
        daytrace timeline day.json --preference aggressive
    """
    try:
        inputs = DayInputs.model_validate(load_document(day_file))
    except ValidationError as e:
        raise click.ClickException(f"Invalid day file {day_file}:\n{e}") from e

    settings = TimelineSettings.from_config(_config(ctx))
    if preference:
        settings = dataclasses.replace(settings, preference=GapFillPreference(preference))

    with log_context("Building timeline", level=logging.DEBUG, day=inputs.day.isoformat()):
        blocks = build_actual_display_events(inputs, settings)

    if output_json:
        _dump([b.model_dump(mode="json") for b in blocks])
        return

    console.print(_timeline_table(inputs, blocks))
    unknown = sum(b.duration for b in blocks if b.is_unknown)
    if unknown:
        print_warning(f"{unknown} minutes could not be attributed")
    else:
        print_success("Every minute of the day is accounted for")


# =============================================================================
# Reconcile Command
# =============================================================================


def _ops_table(ops: ReconciliationOps) -> Table:
    table = Table(title="Reconciliation operations")
    table.add_column("Op", style="cyan")
    table.add_column("Target")
    table.add_column("Start")
    table.add_column("End")

    for ext in ops.extensions:
        table.add_row("extend", ext.event_id, "", ext.new_end.isoformat())
    for ins in ops.inserts:
        table.add_row(
            "insert",
            ins.event.source_id,
            ins.event.scheduled_start.isoformat(),
            ins.event.scheduled_end.isoformat(),
        )
    for upd in ops.updates:
        table.add_row("update", upd.event_id, upd.scheduled_start.isoformat(), upd.scheduled_end.isoformat())
    for dele in ops.deletes:
        table.add_row("delete", dele.event_id, "", "")
    for event_id in ops.protected_ids:
        table.add_row("[yellow]protected[/yellow]", event_id, "", "")
    return table


@cli.command()
@click.argument("ops_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def reconcile(ctx: click.Context, ops_file: Path, output_json: bool) -> None:
    """Compute the operations that reconcile one window.

    OPS_FILE holds ``existing`` (stored events) and either ``derived``
    candidates or separate ``screen_time`` and ``location`` candidates,
    plus optional ``previous_window`` events for trailing-edge extension.
    """
    data = load_document(ops_file)
    gap = _config(ctx).ingestion.extension_gap_seconds
    try:
        existing = [ReconciliationEvent.model_validate(e) for e in data.get("existing", [])]
        previous = [ReconciliationEvent.model_validate(e) for e in data.get("previous_window", [])]
        if "screen_time" in data or "location" in data:
            ops = compute_prioritized_ops(
                existing,
                [DerivedEvent.model_validate(e) for e in data.get("screen_time", [])],
                [DerivedEvent.model_validate(e) for e in data.get("location", [])],
                previous_window=previous,
                max_gap_seconds=gap,
            )
        else:
            ops = compute_reconciliation_ops(
                existing,
                [DerivedEvent.model_validate(e) for e in data.get("derived", [])],
                previous_window=previous,
                max_gap_seconds=gap,
            )
    except ValidationError as e:
        raise click.ClickException(f"Invalid ops file {ops_file}:\n{e}") from e

    if output_json:
        _dump(ops.model_dump(mode="json"))
        return

    if ops.is_empty and not ops.protected_ids:
        print_success("Storage already matches the evidence")
        return
    console.print(_ops_table(ops))
    summary = ops.summary()
    console.print(", ".join(f"{k}: {v}" for k, v in summary.items()))


# =============================================================================
# Reprocess Command
# =============================================================================


def build_store(data: dict[str, Any], user_id: str) -> InMemoryStore:
    """In-memory store seeded from a fixture mapping."""
    store = InMemoryStore(
        sessions={user_id: [ScreenTimeSession.model_validate(s) for s in data.get("screen_time", [])]},
        samples={user_id: [LocationSample.model_validate(s) for s in data.get("location_samples", [])]},
        places={user_id: [UserPlace.model_validate(p) for p in data.get("places", [])]},
    )
    for raw in data.get("events", []):
        store.add_event(ReconciliationEvent.model_validate({"user_id": user_id, **raw}))
    return store


@cli.command()
@click.argument("fixture_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--day", "day_", type=click.DateTime(formats=["%Y-%m-%d"]), required=True, help="Day to replay")
@click.option("--user", "user_id", default="local", show_default=True, help="User id")
@click.option("--now", "now_", help="Replay windows ending before this ISO timestamp (default: now)")
@click.option("--json", "output_json", is_flag=True, help="Output resulting events as JSON")
@click.pass_context
def reprocess(
    ctx: click.Context,
    fixture_file: Path,
    day_: datetime,
    user_id: str,
    now_: str | None,
    output_json: bool,
) -> None:
    """Replay every completed ingestion window of a day.

    FIXTURE_FILE holds ``screen_time`` sessions, ``location_samples``,
    ``places`` and already stored ``events``. Derived events and window
    locks of the day are discarded first; user events are kept.
    """
    data = load_document(fixture_file)
    day: date = day_.date()
    try:
        store = build_store(data, user_id)
        now = parse_timestamp(now_) if now_ else None
    except (ValidationError, ValueError) as e:
        raise click.ClickException(f"Invalid fixture {fixture_file}: {e}") from e

    with log_context("Reprocessing day", day=day.isoformat(), user=user_id):
        result = asyncio.run(
            reprocess_day(store, store, store, user_id, day, _config(ctx).ingestion, now=now)
        )

    if output_json:
        events = sorted(store.events.values(), key=lambda e: e.scheduled_start)
        _dump(
            {
                "result": result.model_dump(mode="json", exclude={"windows"}),
                "events": [e.model_dump(mode="json") for e in events],
            }
        )
        return

    print_header(f"Reprocessed {day.isoformat()}")
    console.print(f"Derived events removed: {result.events_deleted}")
    console.print(f"Window locks removed: {result.locks_deleted}")
    console.print(f"Windows processed: {result.windows_processed}")
    if result.success:
        print_success(f"{len(store.events)} events stored")
    else:
        print_error(f"{result.windows_failed} windows failed")
        for window in result.windows:
            for error in window.stats.errors or ([window.error] if window.error else []):
                console.print(f"  {window.window_start.isoformat()}: {error}")
        sys.exit(1)


# =============================================================================
# Config Group
# =============================================================================


@cli.group()
def config() -> None:
    """Inspect configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the effective configuration."""
    app_config = _config(ctx)
    print_header("Current Configuration")

    table = Table(show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for section in ("thresholds", "gap_filling", "ingestion", "paths"):
        values = getattr(app_config, section).model_dump(mode="json")
        for key, value in values.items():
            table.add_row(f"{section}.{key}", str(value))
    table.add_row("debug", str(app_config.debug))
    table.add_row("verbose", str(app_config.verbose))
    console.print(table)


@config.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Show which config file is used."""
    explicit = ctx.obj.get("config_path")
    found = find_config_file(explicit)
    if found is not None:
        console.print(str(found))
        return
    print_warning("No config file found; using defaults. Searched:")
    for candidate in default_search_paths(explicit):
        console.print(f"  {candidate}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print()
        print_warning("Interrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
