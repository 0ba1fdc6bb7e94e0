"""Mutation queue: durable, coalescing log of writes not yet confirmed by the server.

The whole queue is one JSON list under ``boxfinder:sync_queue``. At most one
operation exists per (entity, entity_id); a new intent for an entity that
already has one is coalesced into it:

    existing  incoming  result
    CREATE    UPDATE    keep CREATE, shallow-merge payload
    CREATE    DELETE    drop the operation (never reached the server)
    UPDATE    UPDATE    shallow-merge payload, refresh timestamp
    UPDATE    DELETE    replace with DELETE
    DELETE    any       DELETE is terminal; incoming intent is ignored
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from boxfinder.events import Observable
from boxfinder.storage.kv import KeyValueStore
from boxfinder.types import (
    EntityKind,
    MutationKind,
    QueuedOperation,
    SyncOutcome,
    generate_operation_id,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

SYNC_QUEUE_KEY = "boxfinder:sync_queue"
DEFAULT_MAX_RETRIES = 3

Executor = Callable[[QueuedOperation], Awaitable[bool]]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _replay_order(op: QueuedOperation) -> datetime:
    parsed = parse_datetime(op.timestamp)
    if parsed is None:
        return _EPOCH
    if parsed.tzinfo is None:
        # Timestamps without an offset are UTC
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


class MutationQueue:
    """Persisted pending operations plus the replay loop.

    Args:
        store: Key-value backend.
        connectivity: Anything with ``async force_refresh() -> bool``; consulted
            at the start of each drain. None means always reachable.
        max_retries: "Not handled" results tolerated before an operation is dropped.
    """

    def __init__(
        self,
        store: KeyValueStore,
        connectivity=None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._store = store
        self._connectivity = connectivity
        self.max_retries = max_retries
        self._draining = False
        self._pending = Observable(0)

    @property
    def is_draining(self) -> bool:
        return self._draining

    # === Persistence ===

    async def _load(self) -> List[QueuedOperation]:
        try:
            raw = await self._store.get(SYNC_QUEUE_KEY)
            data = json.loads(raw) if raw else []
        except Exception as e:
            logger.error(f"Failed to read sync queue: {e}", exc_info=True)
            return []
        if not isinstance(data, list):
            logger.warning("Sync queue blob is not a list; treating as empty")
            return []

        operations = []
        for entry in data:
            try:
                operations.append(QueuedOperation.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed queued operation: {e}")
        return operations

    async def _save(self, operations: List[QueuedOperation]) -> None:
        try:
            await self._store.set(SYNC_QUEUE_KEY, json.dumps([op.to_dict() for op in operations]))
        except Exception as e:
            logger.error(f"Failed to save sync queue: {e}", exc_info=True)

    async def _notify(self) -> None:
        self._pending.publish(len(await self._load()))

    async def _remove(self, operation_id: str) -> None:
        operations = await self._load()
        await self._save([op for op in operations if op.id != operation_id])
        await self._notify()

    async def _set_retries(self, operation_id: str, retries: int) -> None:
        # Only the counter is written back; the payload may have been
        # coalesced since the drain took its snapshot.
        operations = await self._load()
        for op in operations:
            if op.id == operation_id:
                op.retries = retries
                await self._save(operations)
                return

    # === Public API ===

    async def enqueue(
        self,
        kind: MutationKind,
        entity: EntityKind,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Record a write intent, coalescing with any pending one for the same entity.

        Returns:
            Id of the operation now carrying the intent (the existing one when
            coalesced, the cancelled one when CREATE+DELETE cancel out).
        """
        kind = MutationKind(kind)
        entity = EntityKind(entity)
        operations = await self._load()
        existing = next(
            (op for op in operations if op.entity == entity and op.entity_id == entity_id),
            None,
        )

        if existing is None:
            op = QueuedOperation(
                id=generate_operation_id(),
                kind=kind,
                entity=entity,
                entity_id=entity_id,
                payload=payload,
            )
            operations.append(op)
            operation_id = op.id
        else:
            operation_id = existing.id
            if existing.kind == MutationKind.DELETE:
                logger.warning(
                    f"Ignoring {kind.value} for {entity.value}:{entity_id}; DELETE already queued"
                )
            elif kind == MutationKind.DELETE:
                if existing.kind == MutationKind.CREATE:
                    operations.remove(existing)
                    logger.debug(f"{entity.value}:{entity_id} created and deleted offline; dropped")
                else:
                    existing.kind = MutationKind.DELETE
                    existing.payload = payload
                    existing.timestamp = utc_now()
            elif kind == MutationKind.UPDATE:
                existing.payload = {**(existing.payload or {}), **(payload or {})}
                if existing.kind == MutationKind.UPDATE:
                    existing.timestamp = utc_now()
            else:
                logger.warning(f"Ignoring duplicate CREATE for {entity.value}:{entity_id}")

        await self._save(operations)
        await self._notify()
        return operation_id

    async def drain(self, executor: Executor) -> SyncOutcome:
        """Replay pending operations in enqueue order.

        Per operation: executor True removes it; executor raising counts it
        failed and leaves it untouched; executor False bumps its retry counter
        and drops it (counted failed) once ``max_retries`` is reached.
        A call made while a drain is running returns an empty outcome at once.
        """
        outcome = SyncOutcome()
        if self._draining:
            logger.debug("Drain already in progress; skipping")
            return outcome

        self._draining = True
        try:
            if self._connectivity is not None and not await self._connectivity.force_refresh():
                logger.info("Offline - drain skipped, operations stay queued")
                return outcome

            operations = sorted(await self._load(), key=_replay_order)
            logger.debug(f"Draining {len(operations)} queued operations")

            for op in operations:
                try:
                    handled = await executor(op)
                except Exception as e:
                    logger.warning(
                        f"Error replaying {op.kind.value} {op.entity.value}:{op.entity_id}: {e}",
                        exc_info=True,
                    )
                    outcome.failed += 1
                    continue

                if handled:
                    await self._remove(op.id)
                    outcome.success += 1
                    continue

                retries = op.retries + 1
                if retries >= self.max_retries:
                    logger.warning(
                        f"{op.kind.value} {op.entity.value}:{op.entity_id} exceeded "
                        f"max retries ({self.max_retries}); dropping"
                    )
                    await self._remove(op.id)
                    outcome.failed += 1
                else:
                    await self._set_retries(op.id, retries)
        finally:
            self._draining = False
            await self._notify()

        return outcome

    async def get_operations(self) -> List[QueuedOperation]:
        """Pending operations in persisted order."""
        return await self._load()

    async def find(self, entity: EntityKind, entity_id: str) -> Optional[QueuedOperation]:
        entity = EntityKind(entity)
        for op in await self._load():
            if op.entity == entity and op.entity_id == entity_id:
                return op
        return None

    async def get_pending_count(self) -> int:
        return len(await self._load())

    async def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """Call ``listener`` now with the pending count, then after every mutation."""
        self._pending.set(await self.get_pending_count())
        return self._pending.subscribe(listener)

    async def replace_references(self, old_id: str, new_id: str) -> None:
        """Rewrite a promoted temporary id wherever queued operations mention it."""
        operations = await self._load()
        changed = False
        for op in operations:
            if op.entity_id == old_id:
                op.entity_id = new_id
                changed = True
            if op.payload:
                for key, value in op.payload.items():
                    if value == old_id:
                        op.payload[key] = new_id
                        changed = True
        if changed:
            await self._save(operations)

    async def clear(self) -> None:
        """Drop every pending operation without replaying it."""
        try:
            await self._store.remove(SYNC_QUEUE_KEY)
        except Exception as e:
            logger.error(f"Failed to clear sync queue: {e}", exc_info=True)
        await self._notify()
