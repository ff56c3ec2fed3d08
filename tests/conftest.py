"""Shared pytest fixtures for daytrace.

Fixtures included:
- Calendar: day, clock, at
- Factories: make_block, make_session, make_event, make_candidate
- Timeline checks: assert_gap_free
- Config isolation: isolated_config
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from daytrace.config import reset_config
from daytrace.core.evidence import ScreenTimeSession
from daytrace.core.intervals import DAY_MINUTES, DayClock
from daytrace.core.models import EventCategory, TimeBlock
from daytrace.reconciliation.ops import DerivedEvent, ReconciliationEvent

# Tuesday
DAY = date(2025, 3, 4)


# =============================================================================
# Calendar
# =============================================================================


@pytest.fixture
def day() -> date:
    return DAY


@pytest.fixture
def clock() -> DayClock:
    """UTC minute axis for the test day."""
    return DayClock(DAY)


@pytest.fixture
def at() -> Callable[..., datetime]:
    """``at(10, 30)`` is 10:30 UTC on the test day; seconds are optional."""

    def _at(hour: int, minute: int = 0, second: int = 0) -> datetime:
        return datetime(DAY.year, DAY.month, DAY.day, tzinfo=timezone.utc) + timedelta(
            hours=hour, minutes=minute, seconds=second
        )

    return _at


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_block() -> Callable[..., TimeBlock]:
    """Build a timeline block from minute bounds."""

    def _make(
        block_id: str,
        start: int,
        end: int,
        category: EventCategory = EventCategory.WORK,
        title: str | None = None,
        meta: Any = None,
        **kwargs: Any,
    ) -> TimeBlock:
        data: dict[str, Any] = {
            "id": block_id,
            "title": title or category.display_title,
            "start_minutes": start,
            "duration": end - start,
            "category": category,
            **kwargs,
        }
        if meta is not None:
            data["meta"] = meta
        return TimeBlock(**data)

    return _make


@pytest.fixture
def make_session(clock: DayClock) -> Callable[..., ScreenTimeSession]:
    """Screen-time session between two minutes of the test day."""

    def _make(app_id: str, start: float, end: float, display_name: str | None = None) -> ScreenTimeSession:
        return ScreenTimeSession(
            app_id=app_id,
            display_name=display_name,
            started_at=clock.at(start),
            ended_at=clock.at(end),
        )

    return _make


@pytest.fixture
def make_event() -> Callable[..., ReconciliationEvent]:
    """Stored event; ``source`` and ``source_id`` go into meta."""

    def _make(
        event_id: str,
        start: datetime,
        end: datetime,
        source: str = "derived",
        source_id: str | None = None,
        locked: bool = False,
        **meta: Any,
    ) -> ReconciliationEvent:
        meta = {"source": source, **meta}
        if source_id is not None:
            meta["source_id"] = source_id
        return ReconciliationEvent(
            id=event_id,
            user_id="u1",
            title=event_id,
            scheduled_start=start,
            scheduled_end=end,
            meta=meta,
            locked_at=start if locked else None,
        )

    return _make


@pytest.fixture
def make_candidate() -> Callable[..., DerivedEvent]:
    """Derived candidate with ``source_id`` mirrored into meta."""

    def _make(source_id: str, start: datetime, end: datetime, **meta: Any) -> DerivedEvent:
        return DerivedEvent(
            source_id=source_id,
            title=source_id,
            scheduled_start=start,
            scheduled_end=end,
            meta={"source": "derived", "source_id": source_id, **meta},
        )

    return _make


# =============================================================================
# Timeline Checks
# =============================================================================


def _check_gap_free(blocks: list[TimeBlock]) -> None:
    assert blocks, "timeline must not be empty"
    ordered = sorted(blocks, key=lambda b: b.start_minutes)
    assert ordered[0].start_minutes == 0
    for current, following in zip(ordered, ordered[1:]):
        assert current.end_minutes == following.start_minutes, (current.id, following.id)
    assert ordered[-1].end_minutes == DAY_MINUTES


@pytest.fixture
def assert_gap_free() -> Callable[[list[TimeBlock]], None]:
    """Assert a timeline covers the whole day with no gaps and no overlaps."""
    return _check_gap_free


# =============================================================================
# Config Isolation
# =============================================================================


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run in an empty directory with no DAYTRACE_ variables and a fresh cache."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in list(__import__("os").environ):
        if name.startswith("DAYTRACE_"):
            monkeypatch.delenv(name)
    reset_config()
    yield tmp_path
    reset_config()
