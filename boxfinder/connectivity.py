"""Connectivity monitor.

Tracks whether the BoxFinder backend is reachable. The monitor itself does no
networking; it is fed by a ``NetworkStateSource``. ``HttpHealthSource`` is the
default source: it probes ``GET {backend_url}/health`` and polls in the
background.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

import httpx

from boxfinder.config import DEFAULT_PROBE_INTERVAL, DEFAULT_PROBE_TIMEOUT
from boxfinder.events import Observable

logger = logging.getLogger(__name__)


class NetworkStateSource(Protocol):
    async def probe(self) -> bool: ...

    def watch(self, callback: Callable[[bool], None]) -> Callable[[], None]: ...


class HttpHealthSource:
    """Reachability from the backend health endpoint.

    Args:
        backend_url: API base URL (``/health`` is appended).
        timeout: Per-probe timeout in seconds.
        interval: Seconds between background probes while watched.
        client: Shared ``httpx.AsyncClient``; one is created (and owned) if omitted.
    """

    def __init__(
        self,
        backend_url: str,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        interval: float = DEFAULT_PROBE_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.health_url = f"{backend_url.rstrip('/')}/health"
        self.timeout = timeout
        self.interval = interval
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def probe(self) -> bool:
        """One health request. Any failure reads as unreachable."""
        try:
            response = await self._client.get(self.health_url, timeout=self.timeout)
        except Exception as e:
            logger.debug(f"Health probe failed: {e}", exc_info=True)
            return False
        return response.status_code == 200

    def watch(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Start polling; each observed state is passed to ``callback``.

        Must be called with an event loop running. Returns a function that
        stops the polling task.
        """
        task = asyncio.get_running_loop().create_task(self._poll(callback))

        def stop() -> None:
            task.cancel()

        return stop

    async def _poll(self, callback: Callable[[bool], None]) -> None:
        while True:
            await asyncio.sleep(self.interval)
            callback(await self.probe())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class ConnectivityMonitor:
    """Last known reachability, with transition-only notifications.

    The status starts as reachable until the first probe says otherwise.
    """

    def __init__(self, source: NetworkStateSource):
        self._source = source
        self._state = Observable(True, distinct=True)
        self._unwatch: Optional[Callable[[], None]] = None

    async def initialize(self) -> None:
        """Subscribe to the source and seed the state. Repeat calls are no-ops."""
        if self._unwatch is not None:
            return
        self._unwatch = self._source.watch(self._on_report)
        await self.force_refresh()

    @property
    def is_initialized(self) -> bool:
        return self._unwatch is not None

    def get_current_status(self) -> bool:
        """Last known value. No I/O."""
        return self._state.value

    async def force_refresh(self) -> bool:
        """Probe now, update the state, and return it. Probe errors mean unreachable."""
        try:
            reachable = bool(await self._source.probe())
        except Exception as e:
            logger.debug(f"Connectivity probe error: {e}", exc_info=True)
            reachable = False
        self._on_report(reachable)
        return reachable

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Call ``listener`` now with the current status, then on every transition."""
        return self._state.subscribe(listener)

    @property
    def listener_count(self) -> int:
        return self._state.listener_count

    def teardown(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self._state.clear()

    def _on_report(self, is_connected: bool) -> None:
        if self._state.publish(bool(is_connected)):
            logger.info(f"Connectivity changed: {'online' if is_connected else 'offline'}")
