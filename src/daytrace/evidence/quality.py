"""Data quality of a day's evidence."""

from __future__ import annotations

from datetime import datetime

from daytrace.core.evidence import EvidenceBundle, UsageSummary
from daytrace.core.models import DataQuality

KNOWN_SOURCES = ("location_hourly", "screen_time_sessions", "health_daily_metrics", "usage_summary")


def minutes_since(moment: datetime | None, now: datetime) -> int | None:
    """Whole minutes from ``moment`` to ``now``; ``None`` if in the future."""
    if moment is None:
        return None
    diff = (now - moment).total_seconds()
    return int(round(diff / 60.0)) if diff >= 0 else None


def build_data_quality(
    evidence: EvidenceBundle | None,
    usage: UsageSummary | None,
    now: datetime,
) -> DataQuality:
    """Score how much evidence backed a day.

    Args:
        evidence: Stored evidence rows, if any.
        usage: Device usage summary, if any.
        now: Reference time for freshness.

    Returns:
        Completeness (share of the four known sources present), reliability
        (``0.4 + 0.6 * completeness``, capped at 1) and the age in minutes
        of the newest sample across sources.
    """
    sources: list[str] = []
    ages: list[int] = []

    def track(moment: datetime | None) -> None:
        age = minutes_since(moment, now)
        if age is not None:
            ages.append(age)

    if evidence is not None and evidence.location_hourly:
        sources.append("location_hourly")
        track(max(row.hour_start for row in evidence.location_hourly))

    if evidence is not None and evidence.screen_time_sessions:
        sources.append("screen_time_sessions")
        track(max(s.ended_at for s in evidence.screen_time_sessions))

    if evidence is not None and evidence.health_daily is not None:
        sources.append("health_daily_metrics")

    if usage is not None and (usage.generated_at is not None or not usage.is_empty):
        sources.append("usage_summary")
        track(usage.generated_at)

    completeness = min(1.0, len(sources) / len(KNOWN_SOURCES))
    return DataQuality(
        completeness=completeness,
        reliability=min(1.0, 0.4 + completeness * 0.6),
        freshness_minutes=min(ages) if ages else None,
        sources=sources,
    )
