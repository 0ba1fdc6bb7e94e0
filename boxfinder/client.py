"""Application-facing calls with offline fallback.

Reads go to the server and refresh the cache; when the server cannot be
reached they are answered from the cache. Writes go to the server when the
monitor reports it reachable; otherwise (or when the attempt fails without a
response) they are applied to the cache optimistically and queued for replay.
Server rejections are never swallowed.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from boxfinder.api import RemoteApi
from boxfinder.connectivity import ConnectivityMonitor
from boxfinder.errors import ConnectivityError, NotCachedError
from boxfinder.logging_config import log_enqueue
from boxfinder.storage.cache import EntityCache
from boxfinder.storage.queue import MutationQueue
from boxfinder.sync import SyncCoordinator
from boxfinder.types import (
    CollectionKind,
    Container,
    ContainerDetail,
    EntityKind,
    Item,
    MutationKind,
    SyncOutcome,
    Team,
    generate_temp_id,
    is_temp_id,
    utc_now,
)

logger = logging.getLogger(__name__)

# Payload keys that can be applied to a cached container while offline
CONTAINER_FIELDS = {
    "name": "name",
    "row": "row",
    "column": "column",
    "description": "description",
    "color": "color",
    "parentId": "parent_id",
    "teamId": "team_id",
}


class OfflineClient:
    """Offline-first facade over the remote API, cache and mutation queue."""

    def __init__(
        self,
        api: RemoteApi,
        cache: EntityCache,
        queue: MutationQueue,
        monitor: ConnectivityMonitor,
        coordinator: Optional[SyncCoordinator] = None,
    ):
        self.api = api
        self.cache = cache
        self.queue = queue
        self.monitor = monitor
        self.coordinator = coordinator or SyncCoordinator(api, cache, queue, monitor)

    def is_offline(self) -> bool:
        return not self.monitor.get_current_status()

    async def _enqueue(
        self,
        kind: MutationKind,
        entity: EntityKind,
        entity_id: str,
        payload: Optional[Dict[str, Any]],
    ) -> str:
        operation_id = await self.queue.enqueue(kind, entity, entity_id, payload)
        pending = await self.queue.get_pending_count()
        logger.info(f"Queued {kind.value} {entity.value}:{entity_id} ({pending} pending)")
        log_enqueue(kind.value, entity.value, entity_id, pending)
        return operation_id

    # === Reads ===

    async def get_containers(self) -> List[Container]:
        try:
            containers = await self.api.list_containers()
        except ConnectivityError:
            logger.debug("Offline - serving cached containers")
            return await self.cache.get_collection(CollectionKind.CONTAINERS)
        await self.cache.replace_collection(CollectionKind.CONTAINERS, containers)
        return containers

    async def get_container(self, container_id: str) -> ContainerDetail:
        try:
            detail = await self.api.get_container(container_id)
        except ConnectivityError:
            cached = await self.cache.get_detail(container_id)
            if cached is None:
                raise
            return cached
        await self.cache.set_detail(container_id, detail)
        return detail

    async def get_container_by_qr(self, qr_code: str) -> ContainerDetail:
        try:
            detail = await self.api.get_container_by_qr(qr_code)
        except ConnectivityError:
            container = await self.cache.find_container_by_qr(qr_code)
            cached = await self.cache.get_detail(container.id) if container else None
            if cached is None:
                raise
            return cached
        await self.cache.set_detail(detail.id, detail)
        return detail

    async def get_items_by_container(self, container_id: str) -> List[Item]:
        try:
            return await self.api.list_items_by_container(container_id)
        except ConnectivityError:
            cached = await self.cache.get_detail(container_id)
            if cached is None:
                raise
            return cached.items

    async def get_item(self, item_id: str) -> Item:
        try:
            return await self.api.get_item(item_id)
        except ConnectivityError:
            cached = await self.cache.find_cached_item(item_id)
            if cached is None:
                raise
            return cached

    async def search_items(self, query: str, category: Optional[str] = None) -> List[Item]:
        try:
            return await self.api.search_items(query, category)
        except ConnectivityError:
            results = await self.cache.search_cached(query)
            if category:
                results = [i for i in results if i.category == category]
            return results

    async def get_borrowed_items(self) -> List[Item]:
        try:
            items = await self.api.list_borrowed_items()
        except ConnectivityError:
            return await self.cache.get_collection(CollectionKind.BORROWED_ITEMS)
        await self.cache.replace_collection(CollectionKind.BORROWED_ITEMS, items)
        return items

    async def get_teams(self) -> List[Team]:
        try:
            teams = await self.api.list_teams()
        except ConnectivityError:
            return await self.cache.get_collection(CollectionKind.TEAMS)
        await self.cache.replace_collection(CollectionKind.TEAMS, teams)
        return teams

    async def get_container_children(self, container_id: str) -> List[Container]:
        return await self.api.get_container_children(container_id)

    # === Writes with offline fallback ===

    async def create_container(self, payload: Dict[str, Any]) -> Container:
        """Create a container; offline, a temporary one is cached and queued.

        Args:
            payload: Wire-form fields (``name``, ``row``, ``column`` and
                optionally ``description``, ``color``, ``parentId``, ``teamId``).
        """
        if self.monitor.get_current_status():
            try:
                created = await self.api.create_container(payload)
            except ConnectivityError:
                logger.info("Create container fell back to offline mode")
            else:
                await self.cache.upsert_in_collection(CollectionKind.CONTAINERS, created)
                return created

        temp_id = generate_temp_id()
        now = utc_now()
        container = Container(
            id=temp_id,
            name=payload.get("name") or "",
            location=f"{payload.get('column', '')}{payload.get('row', '')}",
            row=int(payload.get("row") or 0),
            column=payload.get("column") or "",
            description=payload.get("description"),
            qr_code=f"temp-qr-{temp_id}",
            color=payload.get("color"),
            item_count=0,
            parent_id=payload.get("parentId"),
            team_id=payload.get("teamId"),
            created_at=now,
            updated_at=now,
        )
        await self.cache.upsert_in_collection(CollectionKind.CONTAINERS, container)
        await self._enqueue(MutationKind.CREATE, EntityKind.CONTAINER, temp_id, dict(payload))
        return container

    async def update_container(self, container_id: str, payload: Dict[str, Any]) -> Container:
        """Update a container; offline, the cached copy is patched and the change queued.

        A container with a temporary id has not reached the server yet, so its
        update always folds into the queued CREATE.

        Raises:
            NotCachedError: the update was applied locally and the container is
                not in the cache.
        """
        if self.monitor.get_current_status() and not is_temp_id(container_id):
            try:
                updated = await self.api.update_container(container_id, payload)
            except ConnectivityError:
                logger.info("Update container fell back to offline mode")
            else:
                await self.cache.upsert_in_collection(CollectionKind.CONTAINERS, updated)
                return updated

        cached = await self.cache.get_collection(CollectionKind.CONTAINERS)
        existing = next((c for c in cached if c.id == container_id), None)
        if existing is None:
            raise NotCachedError(f"Container not found in cache: {container_id}")

        for key, attr in CONTAINER_FIELDS.items():
            if payload.get(key) is not None:
                setattr(existing, attr, payload[key])
        if payload.get("column") and payload.get("row") is not None:
            existing.location = f"{payload['column']}{payload['row']}"
        existing.updated_at = utc_now()

        await self.cache.upsert_in_collection(CollectionKind.CONTAINERS, existing)
        await self._enqueue(MutationKind.UPDATE, EntityKind.CONTAINER, container_id, dict(payload))
        return existing

    async def delete_container(self, container_id: str) -> None:
        """Delete a container; a temporary one is only dropped locally."""
        if self.monitor.get_current_status() and not is_temp_id(container_id):
            try:
                await self.api.delete_container(container_id)
            except ConnectivityError:
                logger.info("Delete container fell back to offline mode")
            else:
                await self.cache.remove_from_collection(CollectionKind.CONTAINERS, container_id)
                return

        await self.cache.remove_from_collection(CollectionKind.CONTAINERS, container_id)
        if is_temp_id(container_id):
            # Never reached the server: cancel the pending CREATE, if any
            if await self.queue.find(EntityKind.CONTAINER, container_id) is not None:
                await self._enqueue(MutationKind.DELETE, EntityKind.CONTAINER, container_id, None)
            return
        await self._enqueue(MutationKind.DELETE, EntityKind.CONTAINER, container_id, None)

    async def update_item(self, item_id: str, payload: Dict[str, Any]) -> Item:
        """Update an item; offline, returns the patched cached item or a placeholder."""
        if self.monitor.get_current_status():
            try:
                updated = await self.api.update_item(item_id, payload)
            except ConnectivityError:
                logger.info("Update item fell back to offline mode")
            else:
                await self.cache.upsert_item_in_container_detail(updated)
                return updated

        await self._enqueue(MutationKind.UPDATE, EntityKind.ITEM, item_id, dict(payload))

        cached = await self.cache.find_cached_item(item_id)
        if cached is not None:
            patched = Item.from_dict({**cached.to_dict(), **payload, "updatedAt": utc_now()})
            await self.cache.upsert_item_in_container_detail(patched)
            return patched

        return Item(
            id=item_id,
            name=payload.get("name") or "",
            description=payload.get("description"),
            category=payload.get("category"),
            ai_tags=list(payload.get("aiTags") or []),
            updated_at=utc_now(),
        )

    async def delete_item(self, item_id: str) -> None:
        if self.monitor.get_current_status():
            try:
                await self.api.delete_item(item_id)
            except ConnectivityError:
                logger.info("Delete item fell back to offline mode")
            else:
                await self.cache.remove_item_from_container_detail(item_id)
                return

        await self.cache.remove_item_from_container_detail(item_id)
        await self._enqueue(MutationKind.DELETE, EntityKind.ITEM, item_id, None)

    # === Online-only writes ===

    async def add_item(self, payload: Dict[str, Any]) -> Item:
        """Create an item from a photo. Needs the server (image upload and analysis)."""
        item = await self.api.create_item(payload)
        await self.cache.add_item_to_container_detail(item)
        return item

    async def borrow_item(self, item_id: str, borrowed_to: str, note: Optional[str] = None) -> Item:
        payload: Dict[str, Any] = {"isBorrowed": True, "borrowedTo": borrowed_to}
        if note:
            payload["borrowedNote"] = note
        item = await self.api.set_borrow_state(item_id, payload)
        await self.cache.upsert_item_in_container_detail(item)
        return item

    async def return_item(self, item_id: str) -> Item:
        item = await self.api.set_borrow_state(item_id, {"isBorrowed": False})
        await self.cache.upsert_item_in_container_detail(item)
        return item

    async def move_item(self, item_id: str, container_id: str) -> Item:
        previous = await self.cache.find_cached_item(item_id)
        item = await self.api.move_item(item_id, container_id)
        if previous is not None:
            await self.cache.remove_item_from_container_detail(item_id, previous.container_id)
        await self.cache.add_item_to_container_detail(item)
        return item

    # === Sync status ===

    async def get_pending_sync_count(self) -> int:
        return await self.queue.get_pending_count()

    async def on_sync_status_change(self, listener: Callable[[int], None]) -> Callable[[], None]:
        return await self.queue.subscribe(listener)

    def on_connectivity_change(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        return self.monitor.subscribe(listener)

    async def trigger_sync(self) -> SyncOutcome:
        return await self.coordinator.trigger_sync()

    async def get_last_sync(self) -> Optional[str]:
        return await self.cache.get_last_sync()

    async def clear_local_data(self) -> None:
        """Drop cached entities and pending operations (logout)."""
        await self.cache.clear_all()
        await self.queue.clear()
