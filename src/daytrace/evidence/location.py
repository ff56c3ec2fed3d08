"""Location evidence: hourly place blocks, commutes and raw-sample segments.

Two inputs are handled here:

- **Hourly rows** (``LocationHourlyRow``): each row covers one hour and names
  the dominant place. Consecutive rows with the same label collapse into a
  :class:`LocationBlock`, which the deriver uses to confirm or extend planned
  events and the gap filler uses to label unknown time.
- **Raw samples** (``LocationSample``): GPS fixes inside one ingestion
  window. Samples are matched to the user's named places by haversine
  distance and grouped into :class:`LocationSegment` runs.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Sequence

from daytrace.core.classifier import classify_place, format_place_label
from daytrace.core.evidence import LocationHourlyRow, LocationSample, UserPlace
from daytrace.core.ids import DERIVED_EVIDENCE_PREFIX, derived_id, window_source_id
from daytrace.core.intervals import DAY_MINUTES, DayClock, overlaps
from daytrace.core.models import (
    DataQuality,
    EventCategory,
    EventKind,
    EvidenceDetails,
    LocationMeta,
    TimeBlock,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_PLACE_RADIUS_M = 150.0
PLACE_MATCH_THRESHOLD = 0.7


# =============================================================================
# Hourly Blocks
# =============================================================================


@dataclass(frozen=True)
class LocationBlock:
    """Contiguous run of hours spent at one place.

    Attributes:
        start_minutes: Start minute of the run.
        end_minutes: End minute (exclusive).
        label: Place label (falls back to the place category).
        place_category: Raw place category from the collector.
        sample_count: Samples behind the run.
        place_id: User place id, if the rows carried one.
    """

    start_minutes: int
    end_minutes: int
    label: str
    place_category: str | None = None
    sample_count: int = 0
    place_id: str | None = None

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    @property
    def category(self) -> EventCategory:
        return classify_place(self.label, self.place_category)


def build_location_blocks(rows: Sequence[LocationHourlyRow], clock: DayClock) -> list[LocationBlock]:
    """Collapse hourly location rows into place blocks.

    Rows outside the day or without any label are ignored. Two rows join
    when their labels match case-insensitively and the second starts
    exactly where the first ends.
    """
    blocks: list[LocationBlock] = []
    for row in sorted(rows, key=lambda r: r.hour_start):
        start = int(math.floor(clock.minutes(row.hour_start)))
        if start < 0 or start >= DAY_MINUTES or not row.label:
            continue
        end = min(start + 60, DAY_MINUTES)

        if blocks:
            last = blocks[-1]
            if last.label.lower() == row.label.lower() and last.end_minutes == start:
                blocks[-1] = replace(
                    last, end_minutes=end, sample_count=last.sample_count + row.sample_count
                )
                continue

        blocks.append(
            LocationBlock(
                start_minutes=start,
                end_minutes=end,
                label=row.label,
                place_category=row.place_category,
                sample_count=row.sample_count,
                place_id=row.place_id,
            )
        )

    logger.debug(f"Built {len(blocks)} location blocks from {len(rows)} hourly rows")
    return blocks


def find_matching_location_block(
    blocks: Sequence[LocationBlock],
    start: float,
    end: float,
    label: str | None,
    place_category: str | None = None,
) -> LocationBlock | None:
    """First block overlapping ``[start, end)`` whose label or category matches."""
    wanted_label = label.lower() if label else None
    wanted_category = place_category.lower() if place_category else None
    for block in blocks:
        if not overlaps(start, end, block.start_minutes, block.end_minutes):
            continue
        if wanted_label and block.label.lower() == wanted_label:
            return block
        if wanted_category and (block.place_category or "").lower() == wanted_category:
            return block
    return None


def location_at_minute(blocks: Sequence[LocationBlock], minute: float) -> LocationBlock | None:
    for block in blocks:
        if block.start_minutes <= minute < block.end_minutes:
            return block
    return None


def is_commute(
    from_label: str | None,
    to_label: str | None,
    gap_minutes: float,
    min_gap: float = 15,
    max_gap: float = 90,
) -> bool:
    """Two different places separated by a plausible travel gap."""
    if not from_label or not to_label:
        return False
    if from_label.strip().lower() == to_label.strip().lower():
        return False
    return min_gap <= gap_minutes <= max_gap


def _with_note(base: str, note: str | None) -> str:
    return " • ".join(part for part in (base.strip(), note) if part)


def build_commute_block(
    start: int,
    end: int,
    from_label: str,
    to_label: str,
    note: str | None = None,
    title: str = "Driving",
    confidence: float = 0.5,
    data_quality: DataQuality | None = None,
    evidence: EvidenceDetails | None = None,
) -> TimeBlock:
    """Travel block between two places (``"Home → Office"``)."""
    route = f"{from_label} → {to_label}"
    details = evidence or EvidenceDetails()
    return TimeBlock(
        id=derived_id(DERIVED_EVIDENCE_PREFIX, "commute", start, end, route),
        title=title,
        description=_with_note(route, note),
        start_minutes=start,
        duration=end - start,
        category=EventCategory.COMM,
        meta=LocationMeta(
            kind=EventKind.TRANSITION_COMMUTE.value,
            confidence=confidence,
            data_quality=data_quality,
            from_label=from_label,
            to_label=to_label,
            evidence=details.model_copy(update={"location_label": route}),
        ),
    )


def build_location_inferred_block(
    start: int,
    end: int,
    label: str,
    place_category: str | None = None,
    note: str | None = None,
    place_id: str | None = None,
    data_quality: DataQuality | None = None,
    evidence: EvidenceDetails | None = None,
) -> TimeBlock:
    """Block for time spent at a known place.

    The title is the formatted place label; the description is the
    formatted place category when it says something the title does not.
    """
    title = format_place_label(label or place_category or "Location")
    category_label = format_place_label(place_category) if place_category else ""
    base = category_label if category_label and category_label != title else ""
    details = evidence or EvidenceDetails()
    return TimeBlock(
        id=derived_id(DERIVED_EVIDENCE_PREFIX, "location", start, end, label),
        title=title,
        description=_with_note(base, note),
        start_minutes=start,
        duration=end - start,
        category=classify_place(label, place_category),
        location=label,
        meta=LocationMeta(
            kind=EventKind.LOCATION_INFERRED.value,
            confidence=0.45,
            data_quality=data_quality,
            place_id=place_id,
            evidence=details.model_copy(
                update={"location_label": label, "place_category": place_category}
            ),
        ),
    )


# =============================================================================
# Raw Samples
# =============================================================================


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def find_matching_place(
    latitude: float,
    longitude: float,
    places: Sequence[UserPlace],
    default_radius_m: float = DEFAULT_PLACE_RADIUS_M,
) -> UserPlace | None:
    """Nearest user place whose radius contains the point."""
    best: UserPlace | None = None
    best_distance = math.inf
    for place in places:
        distance = haversine_m(latitude, longitude, place.latitude, place.longitude)
        radius = place.radius_m if place.radius_m is not None else default_radius_m
        if distance <= radius and distance < best_distance:
            best, best_distance = place, distance
    return best


def segment_confidence(sample_count: int, match_ratio: float, threshold: float = PLACE_MATCH_THRESHOLD) -> float:
    """Confidence from sample density plus a bonus for a strong place match.

    Density contributes 0.3-0.6 (saturating at ten samples); a match ratio at
    the threshold adds 0.1, rising to 0.4 at a full match.
    """
    density = min(0.6, 0.3 + (sample_count / 10) * 0.3)
    bonus = 0.0
    if match_ratio >= threshold:
        span = (1.0 - threshold) or 1.0
        bonus = min(0.4, 0.1 + (match_ratio - threshold) / span * 0.3)
    return min(1.0, density + bonus)


@dataclass(frozen=True)
class LocationSegment:
    """Run of samples at one place inside an ingestion window."""

    source_id: str
    start: datetime
    end: datetime
    place_id: str | None
    place_label: str | None
    latitude: float
    longitude: float
    sample_count: int
    confidence: float

    @property
    def title(self) -> str:
        return f"At {self.place_label}" if self.place_label else "Unknown Location"


def _dominant_place(
    samples: Sequence[LocationSample],
    places: Sequence[UserPlace],
    radius_m: float,
    threshold: float,
) -> tuple[UserPlace | None, float]:
    matches = [find_matching_place(s.latitude, s.longitude, places, radius_m) for s in samples]
    counts = Counter(place.id if place else None for place in matches)
    place_id, count = counts.most_common(1)[0]
    ratio = count / len(samples)
    if ratio < threshold or place_id is None:
        return None, ratio
    return next(p for p in matches if p is not None and p.id == place_id), ratio


def generate_location_segments(
    samples: Sequence[LocationSample],
    places: Sequence[UserPlace],
    window_start: datetime,
    window_end: datetime,
    radius_m: float = DEFAULT_PLACE_RADIUS_M,
    match_threshold: float = PLACE_MATCH_THRESHOLD,
) -> list[LocationSegment]:
    """Group a window's samples into place segments.

    Consecutive samples matching the same place (or no place) form a group.
    A group takes a place label only when at least ``match_threshold`` of its
    samples match that place. Segments are clamped to the window; segments
    that become empty are dropped.

    Args:
        samples: Raw samples, any order.
        places: The user's named places.
        window_start: Window start, used for clamping and source ids.
        window_end: Window end.
        radius_m: Radius for places without their own.
        match_threshold: Minimum share of samples matching the place.

    Returns:
        Segments in chronological order.
    """
    groups: list[tuple[str | None, list[LocationSample]]] = []
    for sample in sorted(samples, key=lambda s: s.recorded_at):
        place = find_matching_place(sample.latitude, sample.longitude, places, radius_m)
        key = place.id if place else None
        if groups and groups[-1][0] == key:
            groups[-1][1].append(sample)
        else:
            groups.append((key, [sample]))

    segments = []
    for _, group in groups:
        place, ratio = _dominant_place(group, places, radius_m, match_threshold)
        start = max(group[0].recorded_at, window_start)
        end = min(group[-1].recorded_at, window_end)
        if start >= end:
            continue

        place_id = place.id if place else None
        segments.append(
            LocationSegment(
                source_id=window_source_id("location", window_start, place_id, start),
                start=start,
                end=end,
                place_id=place_id,
                place_label=place.label if place else None,
                latitude=sum(s.latitude for s in group) / len(group),
                longitude=sum(s.longitude for s in group) / len(group),
                sample_count=len(group),
                confidence=segment_confidence(len(group), ratio, match_threshold),
            )
        )
    return segments


def merge_adjacent_segments(
    segments: Sequence[LocationSegment],
    max_gap: timedelta = timedelta(minutes=5),
) -> list[LocationSegment]:
    """Merge same-place segments split by brief GPS drift."""
    merged: list[LocationSegment] = []
    for segment in segments:
        if merged:
            last = merged[-1]
            if last.place_id == segment.place_id and segment.start - last.end <= max_gap:
                count = last.sample_count + segment.sample_count
                merged[-1] = replace(
                    last,
                    end=max(last.end, segment.end),
                    sample_count=count,
                    confidence=segment_confidence(count, 1.0),
                )
                continue
        merged.append(segment)
    return merged
