"""
Concierge Rankings

Largest and top-rated TV shows or movies, straight from Sonarr/Radarr.
"""

import logging
from typing import Any

from core.classifier import ClassificationResult
from tools.format import format_bytes
from workflows.base import Workflow, parse_limit

logger = logging.getLogger("concierge.workflows.rankings")

TITLES = {
    ("tv", "size"): "📦 Largest TV Shows",
    ("movie", "size"): "📦 Largest Movies",
    ("tv", "rating"): "⭐️ Top-rated TV Shows",
    ("movie", "rating"): "⭐️ Top-rated Movies",
}


def extract_rating(item: dict[str, Any]) -> float:
    """Sonarr ratings.value, Radarr v4 imdb/tmdb values, or an older ratings list."""
    ratings = item.get("ratings")
    if isinstance(ratings, list):
        return next((r["value"] for r in ratings if isinstance(r.get("value"), (int, float))), 0)
    if not isinstance(ratings, dict):
        return 0
    if isinstance(ratings.get("value"), (int, float)):
        return ratings["value"]
    for source in ("imdb", "tmdb"):
        value = (ratings.get(source) or {}).get("value")
        if isinstance(value, (int, float)):
            return value
    return 0


def item_size(kind: str, item: dict[str, Any]) -> int:
    if kind == "tv":
        return (item.get("statistics") or {}).get("sizeOnDisk") or 0
    return item.get("sizeOnDisk") or 0


def top_items(kind: str, metric: str, items: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    key = (lambda i: item_size(kind, i)) if metric == "size" else extract_rating
    kept = [i for i in items if key(i) > 0]
    kept.sort(key=key, reverse=True)
    return kept[:limit]


def format_ranking(kind: str, metric: str, items: list[dict[str, Any]]) -> str:
    lines = [TITLES[(kind, metric)], ""]
    for i, item in enumerate(items, 1):
        year = item.get("year") or (item.get("firstAired") or "")[:4]
        name = item.get("title") or "(unknown)"
        label = f"{i}. {name}{f' ({year})' if year else ''}"
        if metric == "size":
            if kind == "tv":
                detail = f"{(item.get('statistics') or {}).get('episodeFileCount', 0)} files"
            else:
                detail = "downloaded" if item.get("hasFile") else "not downloaded"
            lines.append(f"{label} — {format_bytes(item_size(kind, item))} — {detail}")
        else:
            lines.append(f"{label} — {extract_rating(item):.1f}/10")
    return "\n".join(lines)


class RankingsWorkflow(Workflow):
    name = "rankings"

    def intents(self):
        return {
            "show_largest_tv": self._entry("tv", "size"),
            "show_largest_movies": self._entry("movie", "size"),
            "show_top_rated_tv": self._entry("tv", "rating"),
            "show_top_rated_movies": self._entry("movie", "rating"),
        }

    def _entry(self, kind: str, metric: str):
        async def entry(cid: Any, result: ClassificationResult):
            await self.show(cid, kind, metric, result.reference)
        return entry

    async def show(self, cid: Any, kind: str, metric: str, reference: str = ""):
        cfg = self.ctx.section("rankings")
        limit = parse_limit(reference, cfg.get("default_limit") or 10, cfg.get("max_limit") or 30)
        try:
            if kind == "tv":
                items = await self.ctx.sonarr.list_series()
            else:
                items = await self.ctx.radarr.list_movies()
        except Exception as e:
            logger.error("Rankings failed: %s", e)
            await self.send(cid, "Unable to fetch rankings right now.")
            return

        ranked = top_items(kind, metric, items, limit)
        if not ranked:
            await self.send(cid, f"No {'TV' if kind == 'tv' else 'movie'} results available for that query.")
            return
        await self.send(cid, format_ranking(kind, metric, ranked))
