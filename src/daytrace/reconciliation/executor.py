"""Apply a reconciliation op bundle to an event store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from daytrace.reconciliation.ops import ReconciliationOps
from daytrace.reconciliation.store import EventStore, LockConflictError, PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Counts of applied operations.

    Attributes:
        created: Inserted events.
        extended: Events whose end was moved forward.
        updated: Events whose bounds changed.
        deleted: Stale events removed.
        lock_conflicts: Operations skipped because the target became locked.
        errors: Messages of failed operations.
        inserted_ids: Storage ids of inserted events, in insert order.
    """

    created: int = 0
    extended: int = 0
    updated: int = 0
    deleted: int = 0
    lock_conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    inserted_ids: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


async def execute_ops(store: EventStore, user_id: str, ops: ReconciliationOps) -> ExecutionResult:
    """Apply ``ops`` in the order extensions, inserts, updates, deletes.

    The lock state of every target is checked again right before it is
    mutated. Locked targets are skipped and counted as conflicts. A failed
    operation is recorded in ``errors`` and the rest of the batch still runs.
    """
    result = ExecutionResult()

    async def locked(event_id: str) -> bool:
        if await store.is_event_locked(event_id):
            logger.debug(f"Skipping locked event {event_id}")
            result.lock_conflicts += 1
            return True
        return False

    for extension in ops.extensions:
        try:
            if await locked(extension.event_id):
                continue
            await store.extend_event(extension.event_id, extension.new_end)
            result.extended += 1
        except LockConflictError as e:
            logger.debug(f"Extension skipped: {e}")
            result.lock_conflicts += 1
        except PersistenceError as e:
            logger.error(f"Failed to extend {extension.event_id}: {e}")
            result.errors.append(f"extend {extension.event_id}: {e}")

    for insert in ops.inserts:
        try:
            event_id = await store.insert_event(user_id, insert.event)
            result.inserted_ids.append(event_id)
            result.created += 1
        except PersistenceError as e:
            logger.error(f"Failed to insert {insert.event.source_id}: {e}")
            result.errors.append(f"insert {insert.event.source_id}: {e}")

    for update in ops.updates:
        try:
            if await locked(update.event_id):
                continue
            await store.update_event(update.event_id, update.scheduled_start, update.scheduled_end, update.meta)
            result.updated += 1
        except LockConflictError as e:
            logger.debug(f"Update skipped: {e}")
            result.lock_conflicts += 1
        except PersistenceError as e:
            logger.error(f"Failed to update {update.event_id}: {e}")
            result.errors.append(f"update {update.event_id}: {e}")

    for delete in ops.deletes:
        try:
            if await locked(delete.event_id):
                continue
            await store.delete_event(delete.event_id)
            result.deleted += 1
        except LockConflictError as e:
            logger.debug(f"Delete skipped: {e}")
            result.lock_conflicts += 1
        except PersistenceError as e:
            logger.error(f"Failed to delete {delete.event_id}: {e}")
            result.errors.append(f"delete {delete.event_id}: {e}")

    logger.debug(
        f"Executed ops: +{result.created} ~{result.updated} >{result.extended} "
        f"-{result.deleted} (conflicts {result.lock_conflicts}, errors {len(result.errors)})"
    )
    return result
