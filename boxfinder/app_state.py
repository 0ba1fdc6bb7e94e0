"""Application state context.

One explicit object holding session, container list, search and offline state,
with every collaborator injected. ``AppContext.create`` wires the default
stack from a ``ClientConfig``.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from boxfinder.api import RemoteApi
from boxfinder.client import OfflineClient
from boxfinder.config import ClientConfig
from boxfinder.connectivity import ConnectivityMonitor, HttpHealthSource
from boxfinder.errors import BoxFinderError
from boxfinder.logging_config import log_connectivity
from boxfinder.storage.cache import EntityCache
from boxfinder.storage.kv import KeyValueStore, SQLiteKeyValueStore
from boxfinder.storage.queue import MutationQueue
from boxfinder.sync import SyncCoordinator
from boxfinder.types import Container, Item, SyncOutcome

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2


class AppContext:
    """Session, UI-facing state and the offline client behind it."""

    def __init__(
        self,
        client: OfflineClient,
        store: Optional[KeyValueStore] = None,
    ):
        self.client = client
        self.store = store

        # Session
        self.user: Optional[Dict[str, Any]] = None
        self.token: Optional[str] = None

        # Containers
        self.containers: List[Container] = []
        self.selected_container: Optional[Container] = None

        # Search
        self.search_query = ""
        self.search_results: List[Item] = []

        # Offline
        self.is_offline = False
        self.pending_sync_count = 0

        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False

    @classmethod
    def create(cls, config: ClientConfig, store: Optional[KeyValueStore] = None) -> "AppContext":
        """Wire the default stack: SQLite store, httpx API and health-probe monitor."""
        backend_url = config.require_backend()
        store = store or SQLiteKeyValueStore(config.db_path)
        api = RemoteApi(backend_url, config.auth_token, timeout=config.request_timeout)
        source = HttpHealthSource(
            backend_url,
            timeout=config.probe_timeout,
            interval=config.probe_interval,
            client=api.http_client,
        )
        monitor = ConnectivityMonitor(source)
        cache = EntityCache(store)
        queue = MutationQueue(store, connectivity=monitor, max_retries=config.max_retries)
        coordinator = SyncCoordinator(api, cache, queue, monitor)
        client = OfflineClient(api, cache, queue, monitor, coordinator)

        context = cls(client, store=store)
        context.token = config.auth_token
        return context

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    # === Lifecycle ===

    async def start(self, auto_sync: bool = True) -> None:
        """Initialize connectivity and subscribe to status feeds."""
        if self._started:
            return
        self._started = True
        await self.client.monitor.initialize()
        self._unsubscribers.append(self.client.on_connectivity_change(self._on_connectivity))
        self._unsubscribers.append(await self.client.on_sync_status_change(self._on_pending_count))
        if auto_sync:
            self.client.coordinator.start()

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.client.coordinator.stop()
        await self.client.coordinator.join()
        self.client.monitor.teardown()
        await self.client.api.aclose()
        self._started = False

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _on_connectivity(self, is_connected: bool) -> None:
        was_offline = self.is_offline
        self.is_offline = not is_connected
        if was_offline != self.is_offline:
            log_connectivity(is_connected)

    def _on_pending_count(self, count: int) -> None:
        self.pending_sync_count = count

    # === Session ===

    def set_session(self, user: Optional[Dict[str, Any]], token: Optional[str]) -> None:
        self.user = user
        self.token = token
        self.client.api.set_token(token)

    async def logout(self) -> None:
        """Forget the session and wipe local data, including unsynced changes."""
        await self.client.clear_local_data()
        self.set_session(None, None)
        self.containers = []
        self.selected_container = None
        self.search_results = []
        self.search_query = ""

    # === Containers ===

    async def load_containers(self) -> None:
        try:
            self.containers = await self.client.get_containers()
        except BoxFinderError as e:
            logger.error(f"Error loading containers: {e}")

    async def add_container(
        self,
        name: str,
        row: int,
        column: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        parent_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> Container:
        payload: Dict[str, Any] = {"name": name, "row": row, "column": column}
        if description is not None:
            payload["description"] = description
        if color is not None:
            payload["color"] = color
        if parent_id is not None:
            payload["parentId"] = parent_id
        if team_id is not None:
            payload["teamId"] = team_id
        container = await self.client.create_container(payload)
        self.containers = self.containers + [container]
        return container

    async def delete_container(self, container_id: str) -> None:
        await self.client.delete_container(container_id)
        self.containers = [c for c in self.containers if c.id != container_id]
        if self.selected_container is not None and self.selected_container.id == container_id:
            self.selected_container = None

    def set_selected_container(self, container: Optional[Container]) -> None:
        self.selected_container = container

    # === Search ===

    async def search_items(self, query: str) -> None:
        self.search_query = query
        if len(query.strip()) < MIN_SEARCH_LENGTH:
            self.search_results = []
            return
        try:
            self.search_results = await self.client.search_items(query)
        except BoxFinderError as e:
            logger.error(f"Error searching items: {e}")

    def clear_search(self) -> None:
        self.search_results = []
        self.search_query = ""

    # === Sync ===

    async def update_pending_sync_count(self) -> int:
        self.pending_sync_count = await self.client.get_pending_sync_count()
        return self.pending_sync_count

    async def sync_pending_operations(self) -> SyncOutcome:
        """Drain the queue; reload containers when anything reached the server."""
        outcome = await self.client.trigger_sync()
        if outcome.success > 0:
            await self.load_containers()
            await self.update_pending_sync_count()
        return outcome
