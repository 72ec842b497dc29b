"""
Concierge qBittorrent Client

Talks to the qBittorrent WebUI API (v2). Every operation logs in first
and reuses the returned SID cookie for the rest of that operation.

Usage:
    from tools.qbittorrent import QBittorrentClient

    qb = QBittorrentClient(url, "admin", "secret")
    dead = await qb.find_unregistered(category="tv")
    await qb.delete_torrents([t["hash"] for t in dead])
"""

import logging
from typing import Any

import httpx

from tools.http_client import ApiClient, BackendNotConfigured

logger = logging.getLogger("concierge.qbittorrent")


class QBittorrentClient(ApiClient):
    """qBittorrent WebUI client with cookie login.

    Args:
        url: WebUI base URL.
        username: WebUI user.
        password: WebUI password.
    """

    service = "qBittorrent"

    def __init__(self, url: str, username: str, password: str, **kwargs):
        super().__init__(url, **kwargs)
        self._username = username
        self._password = password

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._username and self._password)

    async def _login(self, client: httpx.AsyncClient):
        resp = await client.post(
            "/api/v2/auth/login",
            data={"username": self._username, "password": self._password},
        )
        resp.raise_for_status()
        if "SID" not in client.cookies:
            raise RuntimeError("Failed to authenticate with qBittorrent")

    async def find_unregistered(self, category: str | None = None) -> list[dict[str, Any]]:
        """Torrents whose tracker reports them as unregistered.

        A tracker lookup failure for one torrent skips that torrent only.
        """
        if not self.is_configured:
            raise BackendNotConfigured("QBITTORRENT_URL/USERNAME/PASSWORD missing")
        found = []
        async with self._client() as client:
            await self._login(client)
            resp = await client.get("/api/v2/torrents/info")
            resp.raise_for_status()
            for torrent in resp.json() or []:
                if category and torrent.get("category") != category:
                    continue
                try:
                    trk = await client.get(
                        "/api/v2/torrents/trackers", params={"hash": torrent["hash"]}
                    )
                    trk.raise_for_status()
                    trackers = trk.json() or []
                except httpx.HTTPError as e:
                    logger.debug("Tracker lookup failed for %s: %s", torrent.get("name"), e)
                    continue
                if any("unregistered" in str(t.get("msg") or "").lower() for t in trackers):
                    found.append({
                        "hash": torrent["hash"],
                        "name": torrent.get("name"),
                        "size": torrent.get("size") or 0,
                        "added_on": torrent.get("added_on"),
                    })
        return found

    async def delete_torrents(self, hashes: list[str], delete_files: bool = True) -> int:
        if not hashes:
            return 0
        if not self.is_configured:
            raise BackendNotConfigured("QBITTORRENT_URL/USERNAME/PASSWORD missing")
        async with self._client() as client:
            await self._login(client)
            resp = await client.post(
                "/api/v2/torrents/delete",
                data={"hashes": "|".join(hashes), "deleteFiles": "true" if delete_files else "false"},
            )
            resp.raise_for_status()
        return len(hashes)

    async def version(self) -> str:
        async with self._client() as client:
            await self._login(client)
            resp = await client.get("/api/v2/app/version")
            resp.raise_for_status()
            return resp.text
