"""
Concierge Plex Client

Reads library shows, per-season watch counts and the "Continue
Watching" hub from a Plex Media Server.

Usage:
    from tools.plex import PlexClient

    plex = PlexClient(url, token, tv_section="2")
    shows = await plex.get_shows()
    watching = await plex.currently_watching()
"""

import logging
from typing import Any

from tools.http_client import ApiClient

logger = logging.getLogger("concierge.plex")


def _metadata(container: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not container or not container.get("Metadata"):
        return []
    meta = container["Metadata"]
    return meta if isinstance(meta, list) else [meta]


def _num(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class PlexClient(ApiClient):
    """Plex Media Server client (JSON responses).

    Args:
        url: Plex base URL, e.g. "http://nas:32400".
        token: X-Plex-Token.
        tv_section: Library section id of the TV library.
        movie_section: Library section id of the movie library.
    """

    service = "Plex"

    def __init__(self, url: str, token: str, tv_section: str = "", movie_section: str = "", **kwargs):
        super().__init__(
            url,
            headers={"X-Plex-Token": token or "", "Accept": "application/json"},
            **kwargs,
        )
        self._token = token
        self.tv_section = str(tv_section or "")
        self.movie_section = str(movie_section or "")

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._token)

    async def _container(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        data = await self.get_json(path, params=params) or {}
        return data.get("MediaContainer") or {}

    async def get_shows(self) -> list[dict[str, Any]]:
        """All shows in the TV section as {title, rating_key}."""
        container = await self._container(f"/library/sections/{self.tv_section}/all")
        return [
            {"title": m.get("title"), "rating_key": m.get("ratingKey")}
            for m in _metadata(container)
            if m.get("title") and m.get("ratingKey")
        ]

    async def get_seasons(self, rating_key: str) -> list[dict[str, Any]]:
        """Seasons of a show with leaf (episode) and viewed-leaf counts."""
        container = await self._container(f"/library/metadata/{rating_key}/children")
        return [
            {
                "title": m.get("title"),
                "season_number": _num(m.get("index")),
                "rating_key": m.get("ratingKey"),
                "year": _num(m.get("year")),
                "leaf_count": _num(m.get("leafCount")),
                "viewed_leaf_count": _num(m.get("viewedLeafCount")),
                "last_viewed_at": _num(m.get("lastViewedAt")),
            }
            for m in _metadata(container)
        ]

    async def continue_watching(self) -> list[dict[str, Any]]:
        """Items from the Continue Watching hub, flattened to show/episode fields."""
        container = await self._container("/hubs/continueWatching")
        hubs = container.get("Hub") or []
        hub = next(
            (h for h in hubs if (h.get("title") or "").lower() == "continue watching"),
            None,
        )
        if not hub:
            return []
        items = []
        for m in _metadata(hub):
            duration = _num(m.get("duration"))
            offset = _num(m.get("viewOffset"))
            items.append({
                "title": m.get("grandparentTitle") or m.get("parentTitle") or m.get("title"),
                "rating_key": m.get("ratingKey"),
                "episode_title": m.get("title"),
                "season_number": _num(m.get("parentIndex")),
                "episode_number": _num(m.get("index")),
                "duration": duration,
                "view_offset": offset,
                "percent": round(offset / duration * 100) if duration else 0,
                "last_viewed_at": _num(m.get("lastViewedAt")),
                "type": m.get("type"),
                "year": _num(m.get("year")),
            })
        return items

    async def currently_watching(self) -> list[dict[str, Any]]:
        """Continue Watching items that are part-way through, newest first."""
        items = [
            i for i in await self.continue_watching()
            if i["view_offset"] > 0 and i["duration"] > 0 and i["view_offset"] < i["duration"]
        ]
        items.sort(key=lambda i: i["last_viewed_at"], reverse=True)
        return items

    async def identity(self) -> dict[str, Any]:
        return await self._container("/identity")
