"""
Concierge HTTP Client Base

Shared plumbing for the REST backends (Sonarr, Radarr, Plex, TMDB,
qBittorrent). Each call opens a short-lived httpx.AsyncClient with the
configured timeouts; tests inject an httpx.MockTransport instead of a
network.

Usage:
    from tools.http_client import ApiClient

    class SonarrClient(ApiClient):
        service = "Sonarr"

    client = SonarrClient("http://nas:8989", headers={"X-Api-Key": key})
    data = await client.get_json("/api/v3/series")
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger("concierge.http")


class BackendNotConfigured(RuntimeError):
    """Raised when a backend is called without its URL or credentials."""


class ApiClient:
    """Thin JSON-over-HTTP wrapper around httpx.

    Args:
        base_url: Service root, e.g. "http://nas:8989". Trailing slashes
            are stripped.
        headers: Headers sent with every request (API keys, Accept).
        params: Query parameters sent with every request (Plex token,
            TMDB api_key).
        connect_timeout: Seconds allowed to establish a connection.
        read_timeout: Seconds allowed to wait for a response.
        transport: Optional httpx transport, used by tests.
    """

    service = "backend"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._headers = headers or {}
        self._params = params or {}
        self._timeout = httpx.Timeout(
            connect=connect_timeout, read=read_timeout, write=10.0, pool=10.0
        )
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _client(self) -> httpx.AsyncClient:
        if not self.is_configured:
            raise BackendNotConfigured(f"{self.service} is not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            params=self._params,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and raise for non-2xx responses."""
        async with self._client() as client:
            resp = await client.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self.request("GET", path, params=params)
        return resp.json() if resp.content else None

    async def post_json(self, path: str, body: Any = None) -> Any:
        resp = await self.request("POST", path, json=body)
        return resp.json() if resp.content else None

    async def put_json(self, path: str, body: Any = None) -> Any:
        resp = await self.request("PUT", path, json=body)
        return resp.json() if resp.content else None

    async def delete(self, path: str) -> Any:
        resp = await self.request("DELETE", path)
        return resp.json() if resp.content else None
