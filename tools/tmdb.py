"""
Concierge TMDB Client

Collection (franchise) search and details from The Movie Database.
"""

import logging
from typing import Any

from tools.http_client import ApiClient, BackendNotConfigured

logger = logging.getLogger("concierge.tmdb")


class TmdbClient(ApiClient):
    """TMDB v3 client authenticated with an api_key query parameter."""

    service = "TMDB"

    def __init__(self, api_key: str, url: str = "https://api.themoviedb.org/3", **kwargs):
        super().__init__(url, params={"api_key": api_key or ""}, **kwargs)
        self._api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self._api_key)

    async def search_collections(self, query: str) -> list[dict[str, Any]]:
        if not self.is_configured:
            raise BackendNotConfigured("TMDB_API_KEY is not configured")
        if not query or not query.strip():
            return []
        data = await self.get_json(
            "/search/collection",
            params={"query": query, "include_adult": "false", "language": "en-US"},
        ) or {}
        return [
            {
                "id": item.get("id"),
                "name": item.get("name"),
                "overview": item.get("overview"),
                "poster_path": item.get("poster_path"),
                "popularity": item.get("popularity") or 0,
            }
            for item in data.get("results") or []
        ]

    async def collection_details(self, collection_id: int) -> dict[str, Any] | None:
        """Collection with its parts ordered by TMDB order, then release date."""
        if not collection_id:
            return None
        data = await self.get_json(f"/collection/{collection_id}", params={"language": "en-US"})
        if not data:
            return None
        parts = sorted(
            data.get("parts") or [],
            key=lambda p: (p.get("order") or 0, p.get("release_date") or ""),
        )
        return {
            "id": data.get("id"),
            "name": data.get("name"),
            "overview": data.get("overview"),
            "parts": [
                {
                    "tmdb_id": p.get("id"),
                    "title": p.get("title") or p.get("name"),
                    "release_date": p.get("release_date"),
                    "imdb_id": p.get("imdb_id"),
                }
                for p in parts
            ],
        }
