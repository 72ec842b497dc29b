"""
Concierge Sonarr Client

Async wrapper over the Sonarr v3 REST API: series lookup and library
listing, episodes and episode files, commands (EpisodeSearch,
SeriesSearch) and the add/update endpoints.

Usage:
    from tools.sonarr import SonarrClient

    sonarr = SonarrClient(url, api_key)
    episodes = await sonarr.get_episodes(series_id)
    cmd = await sonarr.run_episode_search(episodes[0]["id"])
"""

import logging
from typing import Any

from tools.http_client import ApiClient

logger = logging.getLogger("concierge.sonarr")


class SonarrClient(ApiClient):
    """Sonarr v3 API client.

    Args:
        url: Sonarr base URL.
        api_key: Sonarr API key (sent as X-Api-Key).
    """

    service = "Sonarr"

    def __init__(self, url: str, api_key: str, **kwargs):
        super().__init__(url, headers={"X-Api-Key": api_key or ""}, **kwargs)
        self._api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._api_key)

    # -------------------------------------------------------------------
    # Series
    # -------------------------------------------------------------------

    async def lookup_series(self, term: str) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/series/lookup", params={"term": term}) or []

    async def list_series(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/series") or []

    async def get_series(self, series_id: int) -> dict[str, Any]:
        return await self.get_json(f"/api/v3/series/{series_id}")

    async def update_series(self, series_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.put_json(f"/api/v3/series/{series_id}", payload)

    async def add_series(
        self, series: dict[str, Any], root_folder_path: str, quality_profile_id: int,
    ) -> dict[str, Any]:
        """Add a lookup result to the library and search for missing episodes."""
        payload = {
            "title": series.get("title"),
            "tvdbId": series.get("tvdbId"),
            "qualityProfileId": quality_profile_id,
            "rootFolderPath": root_folder_path,
            "seasons": [
                {"seasonNumber": s.get("seasonNumber"), "monitored": True}
                for s in series.get("seasons") or []
            ],
            "monitored": True,
            "titleSlug": series.get("titleSlug"),
            "addOptions": {"searchForMissingEpisodes": True},
            "seasonFolder": True,
            "seriesType": series.get("seriesType") or "standard",
        }
        return await self.post_json("/api/v3/series", payload)

    # -------------------------------------------------------------------
    # Episodes
    # -------------------------------------------------------------------

    async def get_episodes(self, series_id: int) -> list[dict[str, Any]]:
        """All episodes of a series, with their episode files inlined."""
        return await self.get_json(
            "/api/v3/episode",
            params={"seriesId": series_id, "includeEpisodeFile": "true"},
        ) or []

    async def get_episode(self, episode_id: int) -> dict[str, Any]:
        return await self.get_json(f"/api/v3/episode/{episode_id}")

    async def delete_episode_file(self, episode_file_id: int | None) -> Any:
        if not episode_file_id:
            return {"skipped": True}
        return await self.delete(f"/api/v3/episodefile/{episode_file_id}")

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------

    async def run_episode_search(self, episode_id: int) -> dict[str, Any]:
        """Start an EpisodeSearch. The response carries the command id and status."""
        return await self.post_json(
            "/api/v3/command", {"name": "EpisodeSearch", "episodeIds": [episode_id]}
        )

    async def run_series_search(self, series_ids: list[int]) -> dict[str, Any] | None:
        if not series_ids:
            return None
        return await self.post_json(
            "/api/v3/command", {"name": "SeriesSearch", "seriesIds": list(series_ids)}
        )

    async def get_command(self, command_id: int) -> dict[str, Any]:
        return await self.get_json(f"/api/v3/command/{command_id}")

    # -------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------

    async def root_folders(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/rootfolder") or []

    async def quality_profiles(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/qualityprofile") or []

    async def system_status(self) -> dict[str, Any]:
        return await self.get_json("/api/v3/system/status")


def find_episode(
    episodes: list[dict[str, Any]], season_number: int, episode_number: int,
) -> list[dict[str, Any]]:
    """Filter episodes by season/episode. Episode 0 selects the whole season."""
    if episode_number == 0:
        return [e for e in episodes if e.get("seasonNumber") == season_number]
    return [
        e for e in episodes
        if e.get("seasonNumber") == season_number and e.get("episodeNumber") == episode_number
    ]


def latest_downloaded_episode(episodes: list[dict[str, Any]]) -> dict[str, Any] | None:
    """The highest-numbered regular episode that currently has a file."""
    with_files = [
        e for e in episodes
        if e.get("hasFile") or e.get("episodeFileId")
        if (e.get("seasonNumber") or 0) > 0
    ]
    if not with_files:
        return None
    return max(with_files, key=lambda e: (e.get("seasonNumber") or 0, e.get("episodeNumber") or 0))
