"""Reconciliation of derived events against persisted ones.

- **ops**: pure diff of stored events against candidates
- **store**: storage Protocols, errors and the in-memory store
- **executor**: applies an op bundle to a store
- **ingestion**: async window processing and full-day reprocess
"""

from daytrace.reconciliation.executor import ExecutionResult, execute_ops
from daytrace.reconciliation.ingestion import (
    ReprocessResult,
    WindowResult,
    align_window,
    day_windows,
    process_window,
    process_windows,
    reprocess_day,
    screen_time_to_derived_events,
)
from daytrace.reconciliation.ops import (
    DerivedEvent,
    ReconciliationEvent,
    ReconciliationOps,
    compute_prioritized_ops,
    compute_reconciliation_ops,
)
from daytrace.reconciliation.store import (
    InMemoryStore,
    LockConflictError,
    PersistenceError,
    SchemaMissingError,
    StorageError,
    WindowLock,
    WindowStats,
)

__all__ = [
    "DerivedEvent",
    "ExecutionResult",
    "InMemoryStore",
    "LockConflictError",
    "PersistenceError",
    "ReconciliationEvent",
    "ReconciliationOps",
    "ReprocessResult",
    "SchemaMissingError",
    "StorageError",
    "WindowLock",
    "WindowResult",
    "WindowStats",
    "align_window",
    "compute_prioritized_ops",
    "compute_reconciliation_ops",
    "day_windows",
    "execute_ops",
    "process_window",
    "process_windows",
    "reprocess_day",
    "screen_time_to_derived_events",
]
