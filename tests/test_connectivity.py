"""Tests for boxfinder.connectivity."""

import asyncio

import httpx

from boxfinder.connectivity import ConnectivityMonitor, HttpHealthSource


# ============================================================================
# ConnectivityMonitor
# ============================================================================


class TestConnectivityMonitor:
    def test_initial_status_is_reachable(self, monitor):
        """Optimistic until the first health check says otherwise."""
        assert monitor.get_current_status() is True

    async def test_initialize_seeds_state_from_probe(self, monitor, source):
        source.reachable = False
        await monitor.initialize()
        assert monitor.get_current_status() is False
        assert source.probe_count == 1

    async def test_initialize_is_idempotent(self, monitor, source):
        await monitor.initialize()
        await monitor.initialize()
        assert len(source.callbacks) == 1
        assert source.probe_count == 1

    async def test_subscribe_replays_then_only_transitions(self, monitor, source):
        """Repeated reports of the same state are not delivered twice."""
        await monitor.initialize()
        seen = []
        monitor.subscribe(seen.append)
        source.emit(True)
        source.emit(False)
        source.emit(False)
        source.emit(True)
        assert seen == [True, False, True]

    async def test_force_refresh_updates_and_notifies(self, monitor, source):
        seen = []
        monitor.subscribe(seen.append)
        source.reachable = False
        assert await monitor.force_refresh() is False
        assert monitor.get_current_status() is False
        assert seen == [True, False]

    async def test_probe_error_means_unreachable(self, monitor, source):
        source.fail = True
        assert await monitor.force_refresh() is False
        assert monitor.get_current_status() is False

    async def test_teardown_detaches_and_clears(self, monitor, source):
        await monitor.initialize()
        seen = []
        monitor.subscribe(seen.append)
        monitor.teardown()
        monitor.teardown()
        assert source.callbacks == []
        source.emit(False)
        assert seen == [True]
        assert not monitor.is_initialized

    async def test_can_reinitialize_after_teardown(self, monitor, source):
        await monitor.initialize()
        monitor.teardown()
        await monitor.initialize()
        assert len(source.callbacks) == 1


# ============================================================================
# HttpHealthSource
# ============================================================================


def health_transport(status=200, fail=False, error=None):
    """MockTransport for ``/health``; returns it with the list of requested paths."""
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if error is not None:
            raise error
        if fail:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(status, json={"status": "ok"})

    return httpx.MockTransport(handler), calls


class TestHttpHealthSource:
    async def test_probe_ok(self):
        transport, calls = health_transport(200)
        async with httpx.AsyncClient(transport=transport) as http:
            source = HttpHealthSource("http://test/api/", client=http)
            assert await source.probe() is True
        assert calls == ["/api/health"]

    async def test_probe_error_status(self):
        transport, _ = health_transport(503)
        async with httpx.AsyncClient(transport=transport) as http:
            assert await HttpHealthSource("http://test/api", client=http).probe() is False

    async def test_probe_transport_failure(self):
        transport, _ = health_transport(fail=True)
        async with httpx.AsyncClient(transport=transport) as http:
            assert await HttpHealthSource("http://test/api", client=http).probe() is False

    async def test_unexpected_health_error_is_unreachable(self):
        """A failure outside httpx's own exceptions still reads as offline."""
        transport, _ = health_transport(error=RuntimeError("ssl backend exploded"))
        async with httpx.AsyncClient(transport=transport) as http:
            assert await HttpHealthSource("http://test/api", client=http).probe() is False

    async def test_watch_survives_unexpected_errors(self):
        """The polling task keeps running after a health request blows up."""
        transport, calls = health_transport(error=RuntimeError("boom"))
        async with httpx.AsyncClient(transport=transport) as http:
            source = HttpHealthSource("http://test/api", interval=0.01, client=http)
            reports = []
            stop = source.watch(reports.append)
            for _ in range(50):
                if len(reports) >= 2:
                    break
                await asyncio.sleep(0.01)
            stop()
            await asyncio.sleep(0)
        assert reports[:2] == [False, False]
        assert len(calls) >= 2

    async def test_watch_polls_until_stopped(self):
        transport, calls = health_transport(200)
        async with httpx.AsyncClient(transport=transport) as http:
            source = HttpHealthSource("http://test/api", interval=0.01, client=http)
            reports = []
            stop = source.watch(reports.append)
            for _ in range(50):
                if len(reports) >= 2:
                    break
                await asyncio.sleep(0.01)
            stop()
            await asyncio.sleep(0)
        assert reports[:2] == [True, True]

    async def test_monitor_with_health_source(self):
        transport, _ = health_transport(503)
        async with httpx.AsyncClient(transport=transport) as http:
            monitor = ConnectivityMonitor(HttpHealthSource("http://test/api", interval=60, client=http))
            await monitor.initialize()
            assert monitor.get_current_status() is False
            monitor.teardown()

    async def test_owned_client_is_closed(self):
        source = HttpHealthSource("http://test/api")
        await source.aclose()
        assert source._client.is_closed
