"""daytrace - Actual-Timeline Reconciliation Engine.

Turns a day's noisy evidence (screen-time sessions, location samples,
calendar plans, health summaries) into one gap-free, non-overlapping
"actual" timeline, and reconciles freshly derived events against the
events already persisted for a user.

Example:
    >>> from datetime import date
    >>> from daytrace import DayInputs, build_actual_display_events
    >>> timeline = build_actual_display_events(DayInputs(day=date(2025, 3, 4)))
    >>> len(timeline)
    1
"""

from daytrace.core.models import EventCategory, EventKind, EventSource, TimeBlock
from daytrace.reconciliation.ops import (
    DerivedEvent,
    ReconciliationEvent,
    ReconciliationOps,
    compute_reconciliation_ops,
)
from daytrace.timeline.builder import DayInputs, build_actual_display_events

__version__ = "0.1.0"

__all__ = [
    "DayInputs",
    "DerivedEvent",
    "EventCategory",
    "EventKind",
    "EventSource",
    "ReconciliationEvent",
    "ReconciliationOps",
    "TimeBlock",
    "__version__",
    "build_actual_display_events",
    "compute_reconciliation_ops",
]
