"""Health evidence: sleep quality and workout summaries."""

from __future__ import annotations

from daytrace.core.evidence import HealthDailyRow, HealthEvidence
from daytrace.core.intervals import DayClock, overlaps
from daytrace.core.models import SleepQualityMetrics

TARGET_SLEEP_MINUTES = 8 * 60
TARGET_RESTORATIVE_SHARE = 0.45
HRV_FULL_BONUS_MS = 60.0


def _minutes(seconds: float | None) -> float | None:
    return None if seconds is None else round(seconds / 60.0, 1)


def sleep_quality_score(
    asleep: float | None,
    deep: float | None = None,
    rem: float | None = None,
    awake: float | None = None,
    in_bed: float | None = None,
    hrv_ms: float | None = None,
) -> float | None:
    """Score a night of sleep from 0 to 100.

    Components, all in minutes:
        - duration: asleep vs. eight hours, up to 50 points
        - restorative share: (deep + REM) / asleep vs. 45%, up to 25 points
        - efficiency: asleep / in bed, up to 15 points
        - HRV bonus: up to 10 points at 60 ms
        - awake penalty: one point per 6 awake minutes, at most 10

    Returns:
        The clamped score, or ``None`` without an asleep total.
    """
    if not asleep or asleep <= 0:
        return None

    score = min(asleep / TARGET_SLEEP_MINUTES, 1.0) * 50
    if deep is not None or rem is not None:
        share = ((deep or 0) + (rem or 0)) / asleep
        score += min(share / TARGET_RESTORATIVE_SHARE, 1.0) * 25
    if in_bed:
        score += min(asleep / in_bed, 1.0) * 15
    if hrv_ms:
        score += min(hrv_ms / HRV_FULL_BONUS_MS, 1.0) * 10
    if awake:
        score -= min(awake / 6.0, 10.0)

    return round(max(0.0, min(100.0, score)), 1)


def build_sleep_quality(row: HealthDailyRow | None, clock: DayClock | None = None) -> SleepQualityMetrics | None:
    """Sleep sub-metrics for sleep-category blocks, or ``None`` without data."""
    if row is None:
        return None
    asleep = _minutes(row.sleep_asleep_seconds)
    deep = _minutes(row.sleep_deep_seconds)
    rem = _minutes(row.sleep_rem_seconds)
    awake = _minutes(row.sleep_awake_seconds)
    in_bed = _minutes(row.sleep_in_bed_seconds)
    if all(value is None for value in (asleep, deep, rem, awake, in_bed)):
        return None

    wake_minutes = None
    if row.wake_time is not None and clock is not None:
        wake_minutes = round(clock.minutes(row.wake_time), 1)

    return SleepQualityMetrics(
        asleep_minutes=asleep,
        deep_minutes=deep,
        rem_minutes=rem,
        awake_minutes=awake,
        in_bed_minutes=in_bed,
        wake_time_minutes=wake_minutes,
        hrv_ms=row.hrv_ms,
        resting_heart_rate_bpm=row.resting_heart_rate_bpm,
        heart_rate_avg_bpm=row.heart_rate_avg_bpm,
        quality_score=sleep_quality_score(asleep, deep, rem, awake, in_bed, row.hrv_ms),
    )


def workout_summary(
    row: HealthDailyRow | None,
    clock: DayClock | None = None,
    start: float | None = None,
    end: float | None = None,
) -> HealthEvidence | None:
    """Summarize the longest workout, optionally restricted to a minute range.

    Workouts without a start time only count when no range is given.
    """
    if row is None or not row.workouts:
        return None

    candidates = []
    for workout in row.workouts:
        if start is not None and end is not None:
            if workout.started_at is None or clock is None:
                continue
            w_start = clock.minutes(workout.started_at)
            if not overlaps(start, end, w_start, w_start + max(workout.duration_minutes, 1)):
                continue
        candidates.append(workout)

    if not candidates:
        return None
    longest = max(candidates, key=lambda w: w.duration_minutes)
    return HealthEvidence(
        has_workout=True,
        workout_type=longest.workout_type,
        workout_duration_minutes=longest.duration_minutes,
    )
