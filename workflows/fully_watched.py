"""
Concierge Fully-Watched Report

Lists seasons that are safe to tidy: fully watched in Plex, fully aired
in Sonarr, and still taking space on disk.
"""

import logging
from typing import Any

from core.classifier import ClassificationResult
from tools.format import format_gb
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.fully_watched")


class FullyWatchedWorkflow(Workflow):
    name = "fully_watched"

    def intents(self):
        return {"list_fully_watched_tv": self.start}

    async def start(self, cid: Any, result: ClassificationResult):
        await self.send(
            cid,
            "Checking Plex and Sonarr for fully watched, fully aired seasons. "
            "This may take a few seconds…",
        )
        try:
            text = await self.build_report()
        except Exception as e:
            logger.error("Fully-watched report failed: %s", e)
            await self.send(cid, "Error while checking fully watched seasons.")
            return
        await self.send(cid, text)

    async def build_report(self) -> str:
        watched_shows = await self._plex_fully_watched()
        if not watched_shows:
            return "No fully watched seasons found in Plex."

        shows = await self._cross_reference(watched_shows)
        if not shows:
            return "No fully watched, fully aired seasons with files were found."

        lines = ["Fully watched seasons that are safe to tidy:", ""]
        for show in shows:
            lines.append(show["title"])
            for s in show["seasons"]:
                lines.append(f"- S{s['season_number']}: {s['episode_count']} eps ({format_gb(s['size_on_disk'])})")
            total_eps = sum(s["episode_count"] for s in show["seasons"])
            total_size = sum(s["size_on_disk"] for s in show["seasons"])
            lines.append(f"Total: {total_eps} eps, {format_gb(total_size)}")
            lines.append("")
        return "\n".join(lines).rstrip()

    async def _plex_fully_watched(self) -> list[tuple[str, list[dict[str, Any]]]]:
        """(plex title, fully watched seasons) for every show with at least one."""
        found = []
        for show in await self.ctx.plex.get_shows():
            seasons = await self.ctx.plex.get_seasons(show["rating_key"])
            done = [
                s for s in seasons
                if s["season_number"] != 0 and s["leaf_count"] > 0
                and s["viewed_leaf_count"] == s["leaf_count"]
            ]
            if done:
                found.append((show["title"], done))
        logger.info("Plex shows with a fully watched season: %d", len(found))
        return found

    async def _cross_reference(self, watched_shows) -> list[dict[str, Any]]:
        by_series: dict[int, dict[str, Any]] = {}
        for plex_title, plex_seasons in watched_shows:
            matches = self.ctx.cache.find(plex_title)
            if not matches:
                logger.debug("No Sonarr match for Plex show %s", plex_title)
                continue
            entry = matches[0]
            series = await self.ctx.sonarr.get_series(entry.id) or {}
            sonarr_seasons = {s.get("seasonNumber"): s for s in series.get("seasons") or []}

            for plex_season in plex_seasons:
                sonarr_season = sonarr_seasons.get(plex_season["season_number"])
                if sonarr_season is None:
                    continue
                stats = sonarr_season.get("statistics") or {}
                # not fully aired yet
                if stats.get("episodeCount") != stats.get("totalEpisodeCount"):
                    continue
                if not stats.get("sizeOnDisk"):
                    continue

                show = by_series.setdefault(entry.id, {"title": entry.title, "seasons": {}})
                number = sonarr_season["seasonNumber"]
                season = show["seasons"].setdefault(
                    number, {"season_number": number, "episode_count": 0, "size_on_disk": 0}
                )
                season["episode_count"] += stats.get("episodeCount") or 0
                season["size_on_disk"] += stats["sizeOnDisk"]

        shows = [
            {"title": s["title"], "seasons": sorted(s["seasons"].values(), key=lambda x: x["season_number"])}
            for s in by_series.values()
        ]
        return sorted(shows, key=lambda s: s["title"].lower())
