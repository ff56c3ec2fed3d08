"""Read-only view of one day's inputs shared by the timeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Mapping

from daytrace.core.evidence import (
    AppCategoryOverride,
    HealthDailyRow,
    ScreenTimeSession,
    UsageSummary,
    VerificationResult,
)
from daytrace.core.intervals import DayClock
from daytrace.core.models import DataQuality, TimeBlock
from daytrace.evidence.location import LocationBlock
from daytrace.evidence.screen_time import UsageOverlap, usage_overlap
from daytrace.timeline.patterns import PatternIndex
from daytrace.timeline.settings import TimelineSettings


@dataclass(frozen=True)
class DayContext:
    """Everything the deriver and gap filler may consult.

    Attributes:
        clock: Minute axis of the day.
        settings: Thresholds and preferences.
        planned: Planned events sorted by start.
        location_blocks: Hourly place blocks.
        usage: Device usage summary.
        sessions: Stored screen-time session rows.
        health: Health daily summary.
        pattern_index: Pattern history.
        data_quality: Day data quality.
        overrides: App category overrides.
        verification: Verification results keyed by planned event id.
    """

    clock: DayClock
    settings: TimelineSettings = field(default_factory=TimelineSettings)
    planned: tuple[TimeBlock, ...] = ()
    location_blocks: tuple[LocationBlock, ...] = ()
    usage: UsageSummary | None = None
    sessions: tuple[ScreenTimeSession, ...] = ()
    health: HealthDailyRow | None = None
    pattern_index: PatternIndex | None = None
    data_quality: DataQuality = field(default_factory=DataQuality)
    overrides: Mapping[str, AppCategoryOverride] = field(default_factory=dict)
    verification: Mapping[str, VerificationResult] = field(default_factory=dict)

    @property
    def day(self) -> date:
        return self.clock.day

    @property
    def raw_sessions(self) -> tuple[ScreenTimeSession, ...]:
        """Most precise session rows available: usage sessions, else stored rows."""
        if self.usage is not None and self.usage.sessions:
            return tuple(self.usage.sessions)
        return self.sessions

    def usage_in(self, start: float, end: float, prefer_sessions: bool = False) -> UsageOverlap | None:
        """Phone use inside ``[start, end)``.

        With ``prefer_sessions`` the stored session rows are consulted
        before the usage summary.
        """
        sessions = self.sessions if prefer_sessions and self.sessions else None
        return usage_overlap(
            start, end, self.clock, usage=self.usage, sessions=sessions, overrides=self.overrides
        )
