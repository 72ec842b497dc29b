"""
Concierge Tidy Season Workflow

Deletes every downloaded file of a watched season and stops Sonarr from
monitoring it, after showing how much of the season was actually watched
in Plex and how much space it takes.
"""

import logging
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import TidyPending
from tools.format import format_gb
from workflows.base import Workflow, series_picker

logger = logging.getLogger("concierge.workflows.tidy")

MAX_SERIES_CHOICES = 8

CONFIRM_KEYBOARD: Keyboard = [
    [Button("✅ Yes", "tidy_yes")],
    [Button("❌ No", "tidy_no")],
    [Button("🔄 Pick Another Series", "tidy_pick")],
]


class TidyWorkflow(Workflow):
    name = "tidy"

    def intents(self):
        return {"tidy_tv": self.start}

    def callback_handlers(self):
        return {
            "tidy_yes": self.on_yes,
            "tidy_no": self.on_no,
            "tidy_pick": self.on_pick,
            "tidy_select": self.on_select,
            "tidy_cancelpick": self.on_back,
        }

    # -------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------

    async def start(self, cid: Any, result: ClassificationResult):
        phrase = result.entities.title or result.reference
        season = result.entities.season_number
        if not phrase:
            await self.send(cid, "I need a show title to tidy.")
            return
        if not season:
            await self.send(cid, "You didn't specify a season number.")
            return

        resolution = await self.ctx.resolver.resolve(
            list(self.ctx.cache.entries),
            phrase,
            serialize=lambda entry: {"title": entry.title, "season": season},
            purpose="tidy",
        )
        if resolution is None:
            await self.send(cid, f"No results for {phrase}")
            return

        candidates = [resolution.best] + resolution.alternates
        series_list = [{"id": c.id, "title": c.title} for c in candidates[:MAX_SERIES_CHOICES]]
        selected = series_list[0]

        try:
            text, file_ids, size_on_disk = await self.build_confirmation(selected, season)
        except Exception as e:
            logger.error("Tidy preparation failed for %s S%s: %s", selected["title"], season, e)
            await self.send(cid, "Error preparing tidy-up.")
            return

        state = TidyPending(
            series_list=series_list,
            series=selected,
            season=season,
            file_ids=file_ids,
            size_on_disk=size_on_disk,
            confirmation_text=text,
        )
        state.message_id = await self.send(cid, text, keyboard=CONFIRM_KEYBOARD, markdown=True)
        await self.ctx.store.replace(cid, state)

    async def build_confirmation(self, series: dict[str, Any], season: int) -> tuple[str, list[int], int]:
        """Confirmation text, the season's episode file ids and its size on disk."""
        episodes = await self.ctx.sonarr.get_episodes(series["id"])
        season_eps = [e for e in episodes if e.get("seasonNumber") == season]
        file_ids = [e["episodeFileId"] for e in season_eps if e.get("episodeFileId")]

        details = await self.ctx.sonarr.get_series(series["id"]) or {}
        sonarr_season = next(
            (s for s in details.get("seasons") or [] if s.get("seasonNumber") == season), {}
        )
        size_on_disk = (sonarr_season.get("statistics") or {}).get("sizeOnDisk") or 0

        episode_count = len(season_eps)
        watched, unwatched = await self._watch_counts(series["title"], season, episode_count)

        lines = [
            "🧹 *Confirm Tidy-Up*",
            "",
            f"Show: *{series['title']}*",
            f"Season: *{season}*",
            f"Episodes: {episode_count}",
            f"Watched: {watched}",
            f"Unwatched: {unwatched}",
            f"Size on disk: *{format_gb(size_on_disk)}*",
            "",
        ]
        if unwatched > 0:
            lines += ["⚠️ Some episodes are *not watched*.", ""]
        lines.append("Delete *all* downloaded files for this season?")
        return "\n".join(lines), file_ids, size_on_disk

    async def _watch_counts(self, title: str, season: int, episode_count: int) -> tuple[int, int]:
        """Watched/unwatched from Plex; everything counts as unwatched if Plex can't say."""
        plex = self.ctx.plex
        if plex is None or not plex.is_configured:
            return 0, episode_count
        try:
            shows = await plex.get_shows()
            match = next((s for s in shows if s["title"].lower() == title.lower()), None)
            if match is None:
                return 0, episode_count
            seasons = await plex.get_seasons(match["rating_key"])
        except Exception as e:
            logger.warning("Plex watch counts unavailable for %s: %s", title, e)
            return 0, episode_count
        plex_season = next((s for s in seasons if s["season_number"] == season), None)
        if plex_season is None:
            return 0, episode_count
        watched = plex_season["viewed_leaf_count"]
        return watched, plex_season["leaf_count"] - watched

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------

    async def on_yes(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, TidyPending):
            return "No active request."
        self.ctx.store.clear(cid)
        await self.typing(cid)

        deleted, failed = 0, 0
        for file_id in state.file_ids:
            try:
                await self.ctx.sonarr.delete_episode_file(file_id)
                deleted += 1
            except Exception as e:
                failed += 1
                logger.error("Failed to delete episode file %s: %s", file_id, e)

        unmonitored = True
        try:
            series = await self.ctx.sonarr.get_series(state.series["id"])
            for season in series.get("seasons") or []:
                if season.get("seasonNumber") == state.season:
                    season["monitored"] = False
            await self.ctx.sonarr.update_series(state.series["id"], series)
        except Exception as e:
            unmonitored = False
            logger.error("Failed to unmonitor %s S%s: %s", state.series["title"], state.season, e)

        lines = [
            "🧹 *Tidy-up complete!*",
            "",
            f"Show: *{state.series['title']}*",
            f"Season: *{state.season}*",
            f"Files deleted: {deleted}",
            f"Space freed: ~{format_gb(state.size_on_disk)}",
        ]
        if failed:
            lines.append(f"⚠️ {failed} file(s) could not be deleted.")
        if unmonitored:
            lines.append("Season is no longer monitored.")
        else:
            lines.append("⚠️ Could not unmonitor the season in Sonarr.")
        await self.edit(cid, message_id, "\n".join(lines), markdown=True)
        return None

    async def on_no(self, cid: Any, data: CallbackData, message_id: int | None):
        self.ctx.store.clear(cid)
        await self.edit(cid, message_id, "❌ Tidy-up cancelled.")
        return None

    async def on_pick(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, TidyPending):
            return "No active request."
        await self.edit(
            cid, message_id, "Select the correct show:",
            keyboard=series_picker(state.series_list, "tidy_select", "tidy_cancelpick"),
        )
        return None

    async def on_select(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, TidyPending):
            return "No active request."
        selected = next((s for s in state.series_list if s["id"] == data.int_param), None)
        if selected is None:
            return "Invalid series."
        try:
            text, file_ids, size_on_disk = await self.build_confirmation(selected, state.season)
        except Exception as e:
            logger.error("Tidy reselect failed for %s: %s", selected["title"], e)
            await self.edit(cid, message_id, "❌ Could not load that series.")
            self.ctx.store.clear(cid)
            return None

        state.series = selected
        state.file_ids = file_ids
        state.size_on_disk = size_on_disk
        state.confirmation_text = text
        state.message_id = message_id
        await self.edit(cid, message_id, text, keyboard=CONFIRM_KEYBOARD, markdown=True)
        return None

    async def on_back(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, TidyPending):
            return "No active request."
        await self.edit(cid, message_id, state.confirmation_text, keyboard=CONFIRM_KEYBOARD, markdown=True)
        return None
