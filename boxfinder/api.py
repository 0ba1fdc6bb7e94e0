"""Thin async client for the BoxFinder REST API.

Issues requests and classifies failures; no caching or queueing happens here.

- No response (timeout, DNS, refused, reset) -> ``ConnectivityError``
- A success status with a body that is not JSON (captive portal) -> ``ConnectivityError``
- Any received non-2xx response -> ``ServerRejectedError``
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from boxfinder.config import DEFAULT_REQUEST_TIMEOUT
from boxfinder.errors import ConnectivityError, ServerRejectedError
from boxfinder.types import Container, ContainerDetail, Item, Team

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail") or body.get("error") or ""
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        return str(message)
    return ""


class RemoteApi:
    """BoxFinder API over ``httpx.AsyncClient``.

    Args:
        backend_url: API base URL, e.g. ``https://boxfinder.example.com/api``.
        auth_token: Bearer token sent on every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        backend_url: str,
        auth_token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.backend_url = backend_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=self.backend_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    def set_token(self, auth_token: Optional[str]) -> None:
        if auth_token:
            self._client.headers["Authorization"] = f"Bearer {auth_token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            logger.debug(f"{method} {path} failed without response: {e}")
            raise ConnectivityError(f"{method} {path}: {e}", cause=e) from e

        if response.is_error:
            message = _error_message(response)
            logger.debug(f"{method} {path} rejected: {response.status_code} {message}")
            raise ServerRejectedError(response.status_code, message)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            # A 2xx page that is not JSON comes from something in front of the API
            logger.debug(f"{method} {path} returned a non-JSON body: {response.text[:200]}")
            raise ConnectivityError(f"{method} {path}: response is not JSON", cause=e) from e

    # === Health ===

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health") or {}

    # === Containers ===

    async def list_containers(self) -> List[Container]:
        return [Container.from_dict(c) for c in await self._request("GET", "/containers")]

    async def get_container(self, container_id: str) -> ContainerDetail:
        return ContainerDetail.from_dict(await self._request("GET", f"/containers/{container_id}"))

    async def get_container_by_qr(self, qr_code: str) -> ContainerDetail:
        return ContainerDetail.from_dict(await self._request("GET", f"/containers/qr/{qr_code}"))

    async def create_container(self, payload: Dict[str, Any]) -> Container:
        return Container.from_dict(await self._request("POST", "/containers", json=payload))

    async def update_container(self, container_id: str, payload: Dict[str, Any]) -> Container:
        return Container.from_dict(
            await self._request("PUT", f"/containers/{container_id}", json=payload)
        )

    async def delete_container(self, container_id: str) -> None:
        await self._request("DELETE", f"/containers/{container_id}")

    async def get_container_children(self, container_id: str) -> List[Container]:
        data = await self._request("GET", f"/containers/{container_id}/children")
        return [Container.from_dict(c) for c in data or []]

    # === Items ===

    async def create_item(self, payload: Dict[str, Any]) -> Item:
        return Item.from_dict(await self._request("POST", "/items", json=payload))

    async def get_item(self, item_id: str) -> Item:
        return Item.from_dict(await self._request("GET", f"/items/{item_id}"))

    async def list_items_by_container(self, container_id: str) -> List[Item]:
        data = await self._request("GET", f"/items/container/{container_id}")
        return [Item.from_dict(i) for i in data or []]

    async def search_items(self, query: str, category: Optional[str] = None) -> List[Item]:
        params = {"query": query}
        if category:
            params["category"] = category
        data = await self._request("GET", "/items/search", params=params)
        return [Item.from_dict(i) for i in data or []]

    async def update_item(self, item_id: str, payload: Dict[str, Any]) -> Item:
        return Item.from_dict(await self._request("PUT", f"/items/{item_id}", json=payload))

    async def delete_item(self, item_id: str) -> None:
        await self._request("DELETE", f"/items/{item_id}")

    async def list_borrowed_items(self) -> List[Item]:
        data = await self._request("GET", "/items/borrowed")
        return [Item.from_dict(i) for i in data or []]

    async def set_borrow_state(self, item_id: str, payload: Dict[str, Any]) -> Item:
        return Item.from_dict(await self._request("PUT", f"/items/{item_id}/borrow", json=payload))

    async def move_item(self, item_id: str, container_id: str) -> Item:
        return Item.from_dict(await self._request("PUT", f"/items/{item_id}/move/{container_id}"))

    # === Teams ===

    async def list_teams(self) -> List[Team]:
        return [Team.from_dict(t) for t in await self._request("GET", "/teams")]

    async def get_team(self, team_id: str) -> Team:
        return Team.from_dict(await self._request("GET", f"/teams/{team_id}"))
