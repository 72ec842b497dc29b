"""
Concierge Radarr Client

Async wrapper over the Radarr v3 REST API.

Usage:
    from tools.radarr import RadarrClient

    radarr = RadarrClient(url, api_key)
    movies = await radarr.list_movies()
"""

import logging
from typing import Any

from tools.http_client import ApiClient

logger = logging.getLogger("concierge.radarr")


class RadarrClient(ApiClient):
    """Radarr v3 API client.

    Args:
        url: Radarr base URL.
        api_key: Radarr API key (sent as X-Api-Key).
    """

    service = "Radarr"

    def __init__(self, url: str, api_key: str, **kwargs):
        super().__init__(url, headers={"X-Api-Key": api_key or ""}, **kwargs)
        self._api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._api_key)

    async def lookup_movie(self, term: str) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/movie/lookup", params={"term": term}) or []

    async def list_movies(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/movie") or []

    async def root_folders(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/rootfolder") or []

    async def quality_profiles(self) -> list[dict[str, Any]]:
        return await self.get_json("/api/v3/qualityprofile") or []

    async def add_movie(
        self, movie: dict[str, Any], root_folder_path: str, quality_profile_id: int,
    ) -> dict[str, Any]:
        payload = {
            "title": movie.get("title"),
            "tmdbId": movie.get("tmdbId"),
            "imdbId": movie.get("imdbId"),
            "qualityProfileId": quality_profile_id,
            "rootFolderPath": root_folder_path,
            "minimumAvailability": movie.get("minimumAvailability") or "announced",
            "monitored": True,
            "titleSlug": movie.get("titleSlug"),
            "addOptions": {"searchForMovie": True},
        }
        return await self.post_json("/api/v3/movie", payload)

    async def edit_quality_profile(self, movie_ids: list[int], quality_profile_id: int) -> Any:
        """Bulk-assign a quality profile through the movie editor endpoint."""
        return await self.put_json(
            "/api/v3/movie/editor",
            {"movieIds": list(movie_ids), "qualityProfileId": quality_profile_id},
        )

    async def search_movies(self, movie_ids: list[int]) -> dict[str, Any]:
        return await self.post_json(
            "/api/v3/command", {"name": "MoviesSearch", "movieIds": list(movie_ids)}
        )

    async def system_status(self) -> dict[str, Any]:
        return await self.get_json("/api/v3/system/status")
