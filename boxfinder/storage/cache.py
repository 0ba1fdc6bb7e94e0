"""Entity cache: last-known server state for offline reads.

Each collection kind is one JSON list under its own key. Container details
(a container with its items and children) share a single JSON mapping keyed by
container id. Every storage or decoding fault is logged and degrades to
empty/no-op; nothing here raises to the caller.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from boxfinder.storage.kv import KeyValueStore
from boxfinder.types import (
    COLLECTION_ENTITY_TYPES,
    CollectionKind,
    Container,
    ContainerDetail,
    Item,
    utc_now,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = "boxfinder:"
CONTAINER_DETAILS_KEY = f"{KEY_PREFIX}container_details"
LAST_SYNC_KEY = f"{KEY_PREFIX}last_sync"


def collection_key(kind: CollectionKind) -> str:
    return f"{KEY_PREFIX}{CollectionKind(kind).value}"


CACHE_KEYS = [collection_key(kind) for kind in CollectionKind] + [
    CONTAINER_DETAILS_KEY,
    LAST_SYNC_KEY,
]


def _wire(entity: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    return dict(entity) if isinstance(entity, dict) else entity.to_dict()


class EntityCache:
    """Read/write access to cached collections and container details.

    Args:
        store: Key-value backend holding the JSON blobs.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store

    # === Raw blob access ===

    async def _read(self, key: str) -> Any:
        try:
            raw = await self._store.get(key)
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.error(f"Failed to read cache key {key}: {e}", exc_info=True)
            return None

    async def _write(self, key: str, value: Any) -> bool:
        try:
            await self._store.set(key, json.dumps(value))
            return True
        except Exception as e:
            logger.error(f"Failed to write cache key {key}: {e}", exc_info=True)
            return False

    async def _read_collection(self, kind: CollectionKind) -> List[Dict[str, Any]]:
        data = await self._read(collection_key(kind))
        if not isinstance(data, list):
            return []
        return [d for d in data if isinstance(d, dict) and "id" in d]

    async def _read_details(self) -> Dict[str, Dict[str, Any]]:
        data = await self._read(CONTAINER_DETAILS_KEY)
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict)}

    # === Collections ===

    async def replace_collection(self, kind: CollectionKind, entities: List[Any]) -> None:
        """Overwrite a cached collection and stamp the last-sync time."""
        kind = CollectionKind(kind)
        if await self._write(collection_key(kind), [_wire(e) for e in entities]):
            await self._write_last_sync()

    async def get_collection(self, kind: CollectionKind) -> List[Any]:
        """Cached entities of ``kind``; empty when never written or unreadable."""
        kind = CollectionKind(kind)
        entity_type = COLLECTION_ENTITY_TYPES[kind]
        result = []
        for data in await self._read_collection(kind):
            try:
                result.append(entity_type.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed cached {kind.value} entry: {e}")
        return result

    async def upsert_in_collection(self, kind: CollectionKind, entity: Any) -> None:
        """Replace the entity with the same id, or append it."""
        kind = CollectionKind(kind)
        data = _wire(entity)
        entries = await self._read_collection(kind)
        for i, existing in enumerate(entries):
            if existing["id"] == data["id"]:
                entries[i] = data
                break
        else:
            entries.append(data)
        await self.replace_collection(kind, entries)

    async def remove_from_collection(self, kind: CollectionKind, entity_id: str) -> None:
        """Drop an entity. Removing a container also drops its cached detail."""
        kind = CollectionKind(kind)
        entries = await self._read_collection(kind)
        await self.replace_collection(kind, [e for e in entries if e["id"] != entity_id])
        if kind == CollectionKind.CONTAINERS:
            await self.remove_detail(entity_id)

    async def find_container_by_qr(self, qr_code: str) -> Optional[Container]:
        for container in await self.get_collection(CollectionKind.CONTAINERS):
            if container.qr_code == qr_code:
                return container
        return None

    # === Container details ===

    async def get_detail(self, container_id: str) -> Optional[ContainerDetail]:
        data = (await self._read_details()).get(container_id)
        if not data:
            return None
        try:
            return ContainerDetail.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed cached detail {container_id}: {e}")
            return None

    async def set_detail(self, container_id: str, detail: Union[ContainerDetail, Dict[str, Any]]) -> None:
        details = await self._read_details()
        details[container_id] = _wire(detail)
        await self._write(CONTAINER_DETAILS_KEY, details)

    async def remove_detail(self, container_id: str) -> None:
        details = await self._read_details()
        if container_id in details:
            del details[container_id]
            await self._write(CONTAINER_DETAILS_KEY, details)

    async def upsert_item_in_container_detail(self, item: Item) -> None:
        """Replace an item inside its container's cached detail.

        No-op when the detail is not cached or does not contain the item.
        """
        detail = await self.get_detail(item.container_id)
        if detail is None:
            return
        for i, existing in enumerate(detail.items):
            if existing.id == item.id:
                detail.items[i] = item
                await self.set_detail(item.container_id, detail)
                return

    async def add_item_to_container_detail(self, item: Item) -> None:
        detail = await self.get_detail(item.container_id)
        if detail is None:
            return
        detail.items = [i for i in detail.items if i.id != item.id] + [item]
        detail.item_count = len(detail.items)
        await self.set_detail(item.container_id, detail)

    async def remove_item_from_container_detail(
        self, item_id: str, container_id: Optional[str] = None
    ) -> Optional[Item]:
        """Remove an item from its cached detail and refresh ``item_count``.

        When ``container_id`` is not given, every cached detail is scanned.

        Returns:
            The removed item, or None if it was not cached.
        """
        if container_id is not None:
            candidates = [container_id]
        else:
            candidates = list(await self._read_details())

        for cid in candidates:
            detail = await self.get_detail(cid)
            if detail is None:
                continue
            removed = next((i for i in detail.items if i.id == item_id), None)
            if removed is None:
                continue
            detail.items = [i for i in detail.items if i.id != item_id]
            detail.item_count = len(detail.items)
            await self.set_detail(cid, detail)
            return removed
        return None

    async def find_cached_item(self, item_id: str) -> Optional[Item]:
        for data in (await self._read_details()).values():
            for item in data.get("items") or []:
                if item.get("id") == item_id:
                    return Item.from_dict(item)
        return None

    # === Search ===

    async def search_cached(self, query: str) -> List[Item]:
        """Case-insensitive substring match over name, description and AI tags.

        Only items inside cached container details are searched.
        """
        needle = query.lower()
        results = []
        for data in (await self._read_details()).values():
            for raw in data.get("items") or []:
                try:
                    item = Item.from_dict(raw)
                except (KeyError, TypeError, ValueError):
                    continue
                if (
                    needle in item.name.lower()
                    or (item.description and needle in item.description.lower())
                    or any(needle in tag.lower() for tag in item.ai_tags)
                ):
                    results.append(item)
        return results

    # === Temp id promotion ===

    async def replace_references(self, old_id: str, new_id: str) -> None:
        """Point cached containers whose parent is ``old_id`` at ``new_id``."""
        entries = await self._read_collection(CollectionKind.CONTAINERS)
        changed = False
        for entry in entries:
            if entry.get("parentId") == old_id:
                entry["parentId"] = new_id
                changed = True
        if changed:
            await self.replace_collection(CollectionKind.CONTAINERS, entries)

        details = await self._read_details()
        touched = False
        for detail in details.values():
            if detail.get("parentId") == old_id:
                detail["parentId"] = new_id
                touched = True
            for child in detail.get("children") or []:
                if child.get("id") == old_id:
                    child["id"] = new_id
                    touched = True
        if touched:
            await self._write(CONTAINER_DETAILS_KEY, details)

    # === Bookkeeping ===

    async def _write_last_sync(self) -> None:
        try:
            await self._store.set(LAST_SYNC_KEY, utc_now())
        except Exception as e:
            logger.error(f"Failed to stamp last sync: {e}", exc_info=True)

    async def get_last_sync(self) -> Optional[str]:
        try:
            return await self._store.get(LAST_SYNC_KEY)
        except Exception as e:
            logger.error(f"Failed to read last sync: {e}", exc_info=True)
            return None

    async def clear_all(self) -> None:
        """Wipe every cache key. The mutation queue is left alone."""
        try:
            await self._store.remove_many(CACHE_KEYS)
        except Exception as e:
            logger.error(f"Failed to clear cache: {e}", exc_info=True)
