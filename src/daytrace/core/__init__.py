"""Core data structures for daytrace.

- **intervals**: minute-range algebra and the day clock
- **models**: TimeBlock and its tagged ``meta`` union
- **evidence**: raw evidence rows handed over by collectors
- **classifier**: app and place categorization
- **ids**: deterministic id encoding
"""

from daytrace.core.classifier import (
    AppClassification,
    classify_app_usage,
    classify_place,
    format_place_label,
    is_expected_app,
)
from daytrace.core.intervals import (
    DAY_MINUTES,
    DayClock,
    Interval,
    InvalidIntervalError,
    clamp_to_day,
    merge_intervals,
    overlap_minutes,
    overlaps,
)
from daytrace.core.models import (
    DataQuality,
    EventCategory,
    EventKind,
    EventSource,
    EvidenceDetails,
    ScheduledEvent,
    TimeBlock,
    parse_meta,
)

__all__ = [
    "AppClassification",
    "DAY_MINUTES",
    "DataQuality",
    "DayClock",
    "EventCategory",
    "EventKind",
    "EventSource",
    "EvidenceDetails",
    "Interval",
    "InvalidIntervalError",
    "ScheduledEvent",
    "TimeBlock",
    "clamp_to_day",
    "classify_app_usage",
    "classify_place",
    "format_place_label",
    "is_expected_app",
    "merge_intervals",
    "overlap_minutes",
    "overlaps",
    "parse_meta",
]
