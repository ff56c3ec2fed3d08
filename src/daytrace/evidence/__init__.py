"""Evidence block builders.

- **screen_time**: usage strategies, overlap queries, screen-time blocks
- **location**: hourly place blocks, commutes, raw-sample segments
- **health**: sleep quality and workout summaries
- **quality**: data quality of a day's evidence
"""

from daytrace.evidence.health import build_sleep_quality, sleep_quality_score, workout_summary
from daytrace.evidence.location import (
    LocationBlock,
    LocationSegment,
    build_location_blocks,
    find_matching_location_block,
    generate_location_segments,
    merge_adjacent_segments,
)
from daytrace.evidence.quality import build_data_quality
from daytrace.evidence.screen_time import (
    SCREEN_TIME_STRATEGIES,
    ScreenTimeStrategy,
    UsageOverlap,
    build_screen_time_blocks,
    usage_overlap,
)

__all__ = [
    "LocationBlock",
    "LocationSegment",
    "SCREEN_TIME_STRATEGIES",
    "ScreenTimeStrategy",
    "UsageOverlap",
    "build_data_quality",
    "build_location_blocks",
    "build_screen_time_blocks",
    "build_sleep_quality",
    "find_matching_location_block",
    "generate_location_segments",
    "merge_adjacent_segments",
    "sleep_quality_score",
    "usage_overlap",
    "workout_summary",
]
