"""Sync coordinator: replays queued mutations against the remote API.

Provides the executor handed to ``MutationQueue.drain`` and patches the entity
cache after server-side creation (temporary id -> server id). Also drives the
automatic sync when connectivity comes back.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from boxfinder.api import RemoteApi
from boxfinder.connectivity import ConnectivityMonitor
from boxfinder.errors import ServerRejectedError
from boxfinder.logging_config import log_drain
from boxfinder.storage.cache import EntityCache
from boxfinder.storage.queue import MutationQueue
from boxfinder.types import (
    CollectionKind,
    EntityKind,
    MutationKind,
    QueuedOperation,
    SyncOutcome,
)

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Per-(kind, entity) executor plus the reconnect trigger.

    Args:
        api: Remote API client.
        cache: Entity cache patched after creations.
        queue: Mutation queue to drain.
        monitor: Connectivity monitor for automatic sync; optional.
    """

    def __init__(
        self,
        api: RemoteApi,
        cache: EntityCache,
        queue: MutationQueue,
        monitor: Optional[ConnectivityMonitor] = None,
    ):
        self.api = api
        self.cache = cache
        self.queue = queue
        self.monitor = monitor
        # temp id -> server id, for operations read before a promotion
        self._promoted: Dict[str, str] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._last_status: Optional[bool] = None
        self._tasks: Set[asyncio.Task] = set()

    # === Executor ===

    def _resolve(self, op: QueuedOperation) -> QueuedOperation:
        if not self._promoted:
            return op
        op.entity_id = self._promoted.get(op.entity_id, op.entity_id)
        if op.payload:
            op.payload = {
                k: self._promoted.get(v, v) if isinstance(v, str) else v
                for k, v in op.payload.items()
            }
        return op

    async def execute(self, op: QueuedOperation) -> bool:
        """Perform the remote call for one queued operation.

        Returns:
            True when the server confirmed it, False when the operation was not
            handled (unknown combination or rejected by the server).

        Raises:
            ConnectivityError: the server could not be reached; the operation
                stays queued without using up a retry.
        """
        op = self._resolve(op)
        try:
            if op.entity == EntityKind.CONTAINER:
                if op.kind == MutationKind.CREATE:
                    await self._create_container(op)
                    return True
                if op.kind == MutationKind.UPDATE:
                    await self.api.update_container(op.entity_id, op.payload or {})
                    return True
                if op.kind == MutationKind.DELETE:
                    await self.api.delete_container(op.entity_id)
                    return True
            elif op.entity == EntityKind.ITEM:
                if op.kind == MutationKind.UPDATE:
                    await self.api.update_item(op.entity_id, op.payload or {})
                    return True
                if op.kind == MutationKind.DELETE:
                    await self.api.delete_item(op.entity_id)
                    return True
        except ServerRejectedError as e:
            if e.not_found and op.kind == MutationKind.DELETE:
                logger.info(f"{op.entity.value}:{op.entity_id} already gone on server")
                return True
            logger.warning(
                f"Server rejected {op.kind.value} {op.entity.value}:{op.entity_id}: {e}"
            )
            return False

        logger.warning(f"No handler for {op.kind.value} {op.entity.value}")
        return False

    async def _create_container(self, op: QueuedOperation) -> None:
        temp_id = op.entity_id
        created = await self.api.create_container(op.payload or {})
        self._promoted[temp_id] = created.id
        await self.cache.remove_from_collection(CollectionKind.CONTAINERS, temp_id)
        await self.cache.upsert_in_collection(CollectionKind.CONTAINERS, created)
        await self.cache.replace_references(temp_id, created.id)
        await self.queue.replace_references(temp_id, created.id)
        logger.info(f"Container {temp_id} created on server as {created.id}")

    # === Triggering ===

    async def trigger_sync(self) -> SyncOutcome:
        """Drain the queue now."""
        try:
            outcome = await self.queue.drain(self.execute)
        finally:
            # Later drains read operations already rewritten by replace_references
            self._promoted.clear()
        pending = await self.queue.get_pending_count()
        if outcome.success or outcome.failed:
            logger.info(
                f"Sync complete: success={outcome.success}, failed={outcome.failed}, pending={pending}"
            )
            log_drain(outcome.success, outcome.failed, pending)
        return outcome

    def start(self) -> None:
        """Sync automatically whenever the monitor reports a return to reachable.

        Must be called with an event loop running.
        """
        if self.monitor is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.monitor.subscribe(self._on_connectivity)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._last_status = None

    async def join(self) -> None:
        """Wait for any automatic sync that is still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_connectivity(self, is_connected: bool) -> None:
        previous = self._last_status
        self._last_status = is_connected
        # The first call replays the current state; only real transitions count
        if previous is False and is_connected:
            task = asyncio.get_running_loop().create_task(self._auto_sync())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _auto_sync(self) -> None:
        if await self.queue.get_pending_count() == 0:
            return
        logger.info("Back online with pending changes; syncing")
        try:
            await self.trigger_sync()
        except Exception as e:
            logger.error(f"Automatic sync failed: {e}", exc_info=True)
