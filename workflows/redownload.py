"""
Concierge Redownload Workflow

Replaces a broken TV episode: deletes the current file, starts a Sonarr
EpisodeSearch and hands the command to the job monitor so the chat
message keeps updating until the new file lands.

Two entry paths:
  - Explicit ("redownload the block season 3 episode 12"): cache lookup,
    episode match, confirm with Yes / No / Pick different show.
  - Ambiguous ("redo the latest housewives"): resolve the phrase against
    Plex Continue Watching, confirm the resolved episode. When nothing
    resolves, the raw phrase is retried as an explicit title.
"""

import logging
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import RedownloadPending, RedownloadResolvedPending
from tools.sonarr import find_episode, latest_downloaded_episode
from workflows.base import Workflow, series_picker

logger = logging.getLogger("concierge.workflows.redownload")

MAX_SERIES_CHOICES = 8


def _confirm_keyboard(series_list: list[dict[str, Any]]) -> Keyboard:
    rows = [[Button("✅ Yes", "redl_yes")], [Button("❌ No", "redl_no")]]
    if len(series_list) > 1:
        rows.append([Button("🔍 Pick different show", "redl_pick")])
    return rows


def _resolved_text(item: dict[str, Any]) -> str:
    return (
        f"Found *{item['title']}* — S{item['season_number']}E{item['episode_number']}\n"
        f"“{item.get('episode_title') or ''}”\n\n"
        "Redownload this episode?"
    )


def _resolved_keyboard(has_alternates: bool) -> Keyboard:
    rows = [[Button("✅ Yes", "redl_yes_resolved"), Button("❌ No", "redl_no_resolved")]]
    if has_alternates:
        rows.append([Button("🔍 Pick another", "redl_pick_resolved")])
    return rows


def _cw_tuple(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": item["title"],
        "season": item["season_number"],
        "episode": item["episode_number"],
    }


class RedownloadWorkflow(Workflow):
    name = "redownload"

    def intents(self):
        return {"redownload_tv": self.start}

    def callback_handlers(self):
        return {
            "redl_yes": self.on_yes,
            "redl_no": self.on_cancel,
            "redl_cancel": self.on_cancel,
            "redl_pick": self.on_pick,
            "redl_select": self.on_select,
            "redl_yes_resolved": self.on_yes_resolved,
            "redl_no_resolved": self.on_cancel,
            "redl_pick_resolved": self.on_pick_resolved,
            "redl_alt": self.on_alternate,
        }

    # -------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------

    async def start(self, cid: Any, result: ClassificationResult):
        title = result.entities.title
        season = result.entities.season_number
        episode = result.entities.episode_number
        reference = result.reference.strip()

        if title and season > 0 and episode > 0:
            await self.explicit(cid, title, season, episode)
            return

        if reference:
            if await self.ambiguous(cid, reference):
                return
            logger.info("Nothing resolved for %r, trying it as a title", reference)
            await self.explicit(cid, reference, 0, 0)
            return

        await self.send(cid, "I couldn't understand what you want to redownload.")

    async def explicit(self, cid: Any, title: str, season: int, episode: int):
        """Look the title up in the cache and confirm a specific episode.

        Season and episode 0 mean "the latest episode that has a file".
        """
        matches = self.ctx.cache.find(title)
        if not matches:
            await self.send(cid, f"No results for {title}")
            return

        series_list = [{"id": m.id, "title": m.title} for m in matches[:MAX_SERIES_CHOICES]]
        selected = series_list[0]
        try:
            episodes = await self.ctx.sonarr.get_episodes(selected["id"])
        except Exception as e:
            logger.error("Explicit redownload lookup failed for %s: %s", title, e)
            await self.send(cid, "Error during redownload.")
            return

        if not episodes:
            await self.send(cid, f"No episodes found for {selected['title']}")
            return

        ep = self._match(episodes, season, episode)
        if ep is None:
            await self.send(
                cid, f"Warning: Could not find episode S{season}E{episode} for {selected['title']}."
            )
            return

        state = RedownloadPending(
            series_list=series_list,
            series=selected,
            season=ep.get("seasonNumber", season),
            episode=ep.get("episodeNumber", episode),
            episode_id=ep["id"],
            episode_file_id=ep.get("episodeFileId") or 0,
        )
        state.message_id = await self.send(
            cid, self._confirm_text(state), keyboard=_confirm_keyboard(series_list),
        )
        await self.ctx.store.replace(cid, state)

    async def ambiguous(self, cid: Any, reference: str) -> bool:
        """Resolve against Continue Watching. Returns False when nothing matched."""
        if self.ctx.plex is None or not self.ctx.plex.is_configured:
            return False
        try:
            pool = await self.ctx.plex.currently_watching()
        except Exception as e:
            logger.error("Could not read Continue Watching: %s", e)
            return False

        resolution = await self.ctx.resolver.resolve(
            pool, reference, serialize=_cw_tuple, purpose="redownload",
        )
        if resolution is None:
            return False

        state = RedownloadResolvedPending(best=resolution.best, alternates=resolution.alternates)
        state.message_id = await self.send(
            cid, _resolved_text(state.best),
            keyboard=_resolved_keyboard(bool(state.alternates)), markdown=True,
        )
        await self.ctx.store.replace(cid, state)
        return True

    @staticmethod
    def _match(episodes: list[dict[str, Any]], season: int, episode: int) -> dict[str, Any] | None:
        if season == 0 and episode == 0:
            return latest_downloaded_episode(episodes)
        matches = find_episode(episodes, season, episode)
        return matches[0] if matches else None

    @staticmethod
    def _confirm_text(state: RedownloadPending) -> str:
        return (
            f"Found {state.series['title']} — Season {state.season}, Episode {state.episode}.\n"
            "Redownload this episode?"
        )

    # -------------------------------------------------------------------
    # Explicit callbacks
    # -------------------------------------------------------------------

    async def on_yes(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadPending):
            return "No active request."
        await self.typing(cid)
        command = None
        try:
            if state.episode_file_id:
                await self.ctx.sonarr.delete_episode_file(state.episode_file_id)
            command = await self.ctx.sonarr.run_episode_search(state.episode_id) or {}
            if command.get("status") in ("started", "queued"):
                await self.edit(cid, message_id, "🔁 Episode deleted and redownload started!")
            else:
                await self.edit(cid, message_id, "⚠️ Episode deleted but redownload may not have started.")
        except Exception as e:
            logger.error("Redownload failed for episode %s: %s", state.episode_id, e)
            await self.edit(cid, message_id, "❌ Episode could not be deleted. File may not exist.")
            command = None
        finally:
            self.ctx.store.clear(cid)

        if command and command.get("id"):
            self._monitor(
                cid, message_id, state.episode_id, command["id"], state.episode_file_id,
                state.series["title"], f"S{state.season}E{state.episode}",
            )
        return None

    async def on_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        self.ctx.store.clear(cid)
        await self.edit(cid, message_id, "❌ Cancelled.")
        return None

    async def on_pick(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadPending):
            return "No active request."
        await self.edit(
            cid, message_id, "Select the correct show:",
            keyboard=series_picker(state.series_list, "redl_select", "redl_cancel"),
        )
        return None

    async def on_select(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadPending):
            return "No active request."
        selected = next((s for s in state.series_list if s["id"] == data.int_param), None)
        if selected is None:
            return "Invalid series."

        await self.typing(cid)
        try:
            episodes = await self.ctx.sonarr.get_episodes(selected["id"])
        except Exception as e:
            logger.error("Series reselect failed: %s", e)
            await self.edit(cid, message_id, "❌ Could not load episodes for the selected series.")
            self.ctx.store.clear(cid)
            return None

        ep = self._match(episodes, state.season, state.episode)
        if ep is None:
            self.ctx.store.clear(cid)
            await self.edit(
                cid, message_id,
                f"⚠️ Episode S{state.season}E{state.episode} not found for {selected['title']}.",
            )
            return None

        state.series = selected
        state.episode_id = ep["id"]
        state.episode_file_id = ep.get("episodeFileId") or 0
        state.message_id = message_id
        await self.edit(
            cid, message_id, self._confirm_text(state),
            keyboard=_confirm_keyboard(state.series_list),
        )
        return None

    # -------------------------------------------------------------------
    # Resolved callbacks
    # -------------------------------------------------------------------

    async def on_yes_resolved(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadResolvedPending):
            return "No active request."
        self.ctx.store.clear(cid)
        best = state.best
        await self.typing(cid)

        matches = self.ctx.cache.find(best["title"])
        if not matches:
            await self.edit(cid, message_id, f"❌ Could not find {best['title']} in Sonarr.")
            return None
        series = matches[0]

        try:
            episodes = await self.ctx.sonarr.get_episodes(series.id)
            found = find_episode(episodes, best["season_number"], best["episode_number"])
            if not found:
                await self.edit(
                    cid, message_id,
                    f"⚠️ Sonarr has no S{best['season_number']}E{best['episode_number']} for {series.title}.",
                )
                return None
            ep = found[0]
            file_id = ep.get("episodeFileId") or 0
            if file_id:
                await self.ctx.sonarr.delete_episode_file(file_id)
            command = await self.ctx.sonarr.run_episode_search(ep["id"]) or {}
        except Exception as e:
            logger.error("Resolved redownload failed for %s: %s", best["title"], e)
            await self.edit(cid, message_id, "❌ Could not start the redownload.")
            return None

        await self.edit(cid, message_id, "🔁 Redownload started for the latest episode.")
        if command.get("id"):
            self._monitor(
                cid, message_id, ep["id"], command["id"], file_id,
                series.title, f"S{best['season_number']}E{best['episode_number']}",
            )
        return None

    async def on_pick_resolved(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadResolvedPending):
            return "No active request."
        options = [state.best] + state.alternates
        rows = [
            [Button(f"{o['title']} — S{o['season_number']}E{o['episode_number']}", f"redl_alt|{i}")]
            for i, o in enumerate(options)
        ]
        rows.append([Button("❌ Cancel", "redl_no_resolved")])
        await self.edit(cid, message_id, "Select the correct episode:", keyboard=rows)
        return None

    async def on_alternate(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, RedownloadResolvedPending):
            return "No active request."
        options = [state.best] + state.alternates
        idx = data.int_param
        if idx is None or not 0 <= idx < len(options):
            return "Invalid choice."
        state.best = options[idx]
        state.alternates = [o for i, o in enumerate(options) if i != idx]
        state.message_id = message_id
        await self.edit(
            cid, message_id, _resolved_text(state.best),
            keyboard=_resolved_keyboard(bool(state.alternates)), markdown=True,
        )
        return None

    # -------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------

    def _monitor(
        self, cid: Any, message_id: int | None, episode_id: int, command_id: int,
        previous_file_id: int, series_title: str, episode_label: str,
    ):
        if self.ctx.monitors is None:
            return
        self.ctx.monitors.start(
            conversation_id=cid,
            message_id=message_id,
            episode_id=episode_id,
            command_id=command_id,
            previous_file_id=previous_file_id,
            series_title=series_title,
            episode_label=episode_label,
        )
