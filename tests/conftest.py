"""
Pytest fixtures and test configuration for boxfinder tests.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from boxfinder.api import RemoteApi
from boxfinder.client import OfflineClient
from boxfinder.connectivity import ConnectivityMonitor
from boxfinder.storage.cache import EntityCache
from boxfinder.storage.kv import MemoryKeyValueStore
from boxfinder.storage.queue import MutationQueue
from boxfinder.sync import SyncCoordinator

BASE_URL = "http://test/api"


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep log files and credentials inside the test's temp directory."""
    monkeypatch.setenv("BOXFINDER_DATA_DIR", str(tmp_path))
    for var in ("BOXFINDER_BACKEND_URL", "BOXFINDER_AUTH_TOKEN", "BOXFINDER_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    logger = logging.getLogger("boxfinder")
    logger.handlers.clear()
    yield tmp_path
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)


class FakeBackend:
    """In-memory BoxFinder API served through httpx.MockTransport.

    While ``online`` is False every request fails with ``httpx.ConnectError``.
    ``reject`` maps (method, path) to a status code to answer with instead.
    """

    def __init__(self):
        self.online = True
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.teams: List[Dict[str, Any]] = []
        self.requests: List[Tuple[str, str, Any]] = []
        self.reject: Dict[Tuple[str, str], int] = {}
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    # --- seeding helpers ---

    def add_container(self, name: str, row: int = 1, column: str = "A", **extra) -> Dict[str, Any]:
        cid = extra.pop("id", None) or self._next_id("c")
        container = {
            "id": cid,
            "name": name,
            "row": row,
            "column": column,
            "location": f"{column}{row}",
            "qrCode": extra.pop("qrCode", f"qr-{cid}"),
            "itemCount": 0,
            "description": None,
            "color": None,
            "parentId": None,
            "createdAt": "2026-01-01T00:00:00+00:00",
            "updatedAt": "2026-01-01T00:00:00+00:00",
        }
        container.update(extra)
        self.containers[cid] = container
        return container

    def add_item(self, container_id: str, name: str, **extra) -> Dict[str, Any]:
        iid = extra.pop("id", None) or self._next_id("i")
        item = {
            "id": iid,
            "name": name,
            "description": None,
            "category": None,
            "imageUrl": f"https://img/{iid}.jpg",
            "aiTags": [],
            "containerId": container_id,
            "containerName": self.containers[container_id]["name"],
            "isBorrowed": False,
        }
        item.update(extra)
        self.items[iid] = item
        self.containers[container_id]["itemCount"] += 1
        return item

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [p for m, p, _ in self.requests if method is None or m == method]

    # --- transport ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("Network is unreachable", request=request)

        method = request.method
        path = request.url.path.removeprefix("/api")
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))

        if (method, path) in self.reject:
            return httpx.Response(self.reject[(method, path)], json={"message": "Rejected"})

        parts = [p for p in path.split("/") if p]
        route = self._route(method, parts, body, request)
        if route is None:
            return httpx.Response(404, json={"statusCode": 404, "message": "Not Found"})
        status, payload = route
        if payload is None:
            return httpx.Response(status)
        return httpx.Response(status, json=payload)

    def _detail(self, cid: str) -> Dict[str, Any]:
        detail = dict(self.containers[cid])
        detail["items"] = [i for i in self.items.values() if i["containerId"] == cid]
        detail["children"] = [
            {"id": c["id"], "name": c["name"]}
            for c in self.containers.values()
            if c.get("parentId") == cid
        ]
        return detail

    def _route(self, method: str, parts: List[str], body: Any, request: httpx.Request):
        if parts == ["health"] and method == "GET":
            return 200, {"status": "ok"}

        if parts[:1] == ["containers"]:
            if len(parts) == 1 and method == "GET":
                return 200, list(self.containers.values())
            if len(parts) == 1 and method == "POST":
                created = self.add_container(body["name"], body["row"], body["column"])
                for key in ("description", "color", "parentId", "teamId"):
                    if key in body:
                        created[key] = body[key]
                return 201, created
            if len(parts) == 3 and parts[1] == "qr" and method == "GET":
                for c in self.containers.values():
                    if c["qrCode"] == parts[2]:
                        return 200, self._detail(c["id"])
                return None
            cid = parts[1]
            if cid not in self.containers:
                return None
            if len(parts) == 3 and parts[2] == "children":
                return 200, [c for c in self.containers.values() if c.get("parentId") == cid]
            if method == "GET":
                return 200, self._detail(cid)
            if method == "PUT":
                self.containers[cid].update(body or {})
                return 200, self.containers[cid]
            if method == "DELETE":
                del self.containers[cid]
                return 204, None

        if parts[:1] == ["items"]:
            if len(parts) == 1 and method == "POST":
                item = self.add_item(body["containerId"], body.get("name") or "Detected item")
                return 201, item
            if parts[1:2] == ["search"]:
                query = request.url.params.get("query", "").lower()
                return 200, [i for i in self.items.values() if query in i["name"].lower()]
            if parts[1:2] == ["borrowed"]:
                return 200, [i for i in self.items.values() if i.get("isBorrowed")]
            if parts[1:2] == ["container"]:
                return 200, [i for i in self.items.values() if i["containerId"] == parts[2]]
            iid = parts[1]
            if iid not in self.items:
                return None
            if len(parts) == 3 and parts[2] == "borrow":
                self.items[iid].update(body or {})
                return 200, self.items[iid]
            if len(parts) == 4 and parts[2] == "move":
                target = parts[3]
                self.items[iid]["containerId"] = target
                self.items[iid]["containerName"] = self.containers[target]["name"]
                return 200, self.items[iid]
            if method == "GET":
                return 200, self.items[iid]
            if method == "PUT":
                self.items[iid].update(body or {})
                return 200, self.items[iid]
            if method == "DELETE":
                del self.items[iid]
                return 204, None

        if parts == ["teams"] and method == "GET":
            return 200, self.teams

        return None


class ScriptedSource:
    """Network-state source whose answers the test controls.

    When bound to a FakeBackend, probes report the backend's ``online`` flag.
    """

    def __init__(self, backend: Optional[FakeBackend] = None, reachable: bool = True):
        self.backend = backend
        self.reachable = reachable
        self.fail = False
        self.probe_count = 0
        self.callbacks: List[Callable[[bool], None]] = []

    async def probe(self) -> bool:
        self.probe_count += 1
        if self.fail:
            raise RuntimeError("probe exploded")
        if self.backend is not None:
            return self.backend.online
        return self.reachable

    def watch(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self.callbacks.append(callback)

        def stop():
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return stop

    def emit(self, value: bool) -> None:
        for callback in list(self.callbacks):
            callback(value)


class Network:
    """Flip the fake backend and the monitor's source together."""

    def __init__(self, backend: FakeBackend, source: ScriptedSource):
        self.backend = backend
        self.source = source

    def go_offline(self):
        self.backend.online = False
        self.source.emit(False)

    def go_online(self):
        self.backend.online = True
        self.source.emit(True)


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def cache(store):
    return EntityCache(store)


@pytest.fixture
def source():
    return ScriptedSource()


@pytest.fixture
def monitor(source):
    return ConnectivityMonitor(source)


@pytest.fixture
def queue(store, monitor):
    return MutationQueue(store, connectivity=monitor)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
async def api(backend):
    remote = RemoteApi(BASE_URL, "test-token", transport=httpx.MockTransport(backend.handler))
    yield remote
    await remote.aclose()


@pytest.fixture
def network(backend, source):
    source.backend = backend
    return Network(backend, source)


@pytest.fixture
def coordinator(api, cache, queue, monitor):
    return SyncCoordinator(api, cache, queue, monitor)


@pytest.fixture
async def client(api, cache, queue, monitor, coordinator, network):
    await monitor.initialize()
    return OfflineClient(api, cache, queue, monitor, coordinator)
