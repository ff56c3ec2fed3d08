"""Day timeline construction.

- **builder**: ``build_actual_display_events`` and its ``DayInputs``
- **planned**: planned-to-actual deriver
- **gap_fill**: gap filler and post-processor
- **fusion**: evidence fusion and conflict resolution
- **patterns**: pattern history, suggestions and anomalies
- **settings**: explicit thresholds passed into the builder
"""

from daytrace.timeline.builder import DayInputs, build_actual_display_events, build_day_context
from daytrace.timeline.context import DayContext
from daytrace.timeline.gap_fill import fill_unknown_gaps, remove_overlapping_blocks
from daytrace.timeline.patterns import PatternIndex, build_pattern_index
from daytrace.timeline.planned import build_planned_actual, build_sleep_adjustment
from daytrace.timeline.settings import TimelineSettings

__all__ = [
    "DayContext",
    "DayInputs",
    "PatternIndex",
    "TimelineSettings",
    "build_actual_display_events",
    "build_day_context",
    "build_pattern_index",
    "build_planned_actual",
    "build_sleep_adjustment",
    "fill_unknown_gaps",
    "remove_overlapping_blocks",
]
