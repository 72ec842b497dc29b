"""
Concierge Movie Series Workflow

Adds every movie of a TMDB collection ("get all the mission impossible
movies") that Radarr does not have yet.
"""

import logging
import re
from typing import Any

from core.callbacks import Button, CallbackData
from core.classifier import ClassificationResult
from core.pending import MovieSeriesConfirmPending, MovieSeriesPickPending
from core.resolver import normalize
from workflows.add_media import choose_defaults
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.movie_series")

MAX_CHOICES = 5
MAX_LISTED = 10

_COLLECTION_WORDS = re.compile(r"\b(movie|movies|films|film|collection|series|franchise)\b", re.IGNORECASE)


def strip_collection_words(reference: str) -> str:
    return re.sub(r"\s+", " ", _COLLECTION_WORDS.sub("", reference)).strip()


def format_movie_list(movies: list[dict[str, Any]]) -> str:
    """Dated movies in collection order, undated ones after them by title."""
    dated = [m for m in movies if m.get("release_date")]
    undated = sorted((m for m in movies if not m.get("release_date")), key=lambda m: (m.get("title") or "").lower())
    ordered = dated + undated
    lines = [
        f"{i}. {m['title']} ({m['release_date'][:4] if m.get('release_date') else 'TBC'})"
        for i, m in enumerate(ordered[:MAX_LISTED], 1)
    ]
    if len(ordered) > MAX_LISTED:
        lines.append(f"…and {len(ordered) - MAX_LISTED} more.")
    return "\n".join(lines)


class MovieSeriesWorkflow(Workflow):
    name = "movie_series"

    def intents(self):
        return {"download_movie_series": self.start}

    def callback_handlers(self):
        return {
            "ms_pick": self.on_pick,
            "ms_confirm": self.on_confirm,
            "ms_cancel": self.on_cancel,
        }

    async def start(self, cid: Any, result: ClassificationResult):
        tmdb = self.ctx.tmdb
        if tmdb is None or not tmdb.is_configured:
            await self.send(cid, "TMDB_API_KEY is not configured, so I can't search movie collections yet.")
            return
        reference = (result.reference or result.entities.title).strip()
        if not reference:
            await self.send(cid, "Tell me the movie series name.")
            return

        try:
            queries = [reference]
            cleaned = strip_collection_words(reference)
            if cleaned and cleaned.lower() != reference.lower():
                queries.append(cleaned)
            results = []
            for term in queries:
                results = await tmdb.search_collections(term)
                if results:
                    break
        except Exception as e:
            logger.error("Collection search failed for %r: %s", reference, e)
            await self.send(cid, "Error searching TMDb collections.")
            return

        if not results:
            await self.send(cid, f'I couldn\'t find a movie series for "{reference}".')
            return

        wanted = normalize(reference)
        exact = next((r for r in results if normalize(r["name"]) == wanted), None)
        top = results[:MAX_CHOICES]
        if exact is not None or len(top) == 1:
            await self.present(cid, exact or top[0])
            return

        keyboard = [[Button(r["name"], f"ms_pick|{r['id']}")] for r in top]
        keyboard.append([Button("Cancel", "ms_cancel")])
        state = MovieSeriesPickPending(query=reference, choices=top)
        state.message_id = await self.send(cid, "I found multiple collections. Which one do you want?", keyboard=keyboard)
        await self.ctx.store.replace(cid, state)

    async def present(self, cid: Any, collection: dict[str, Any], message_id: int | None = None):
        """Split the collection into owned and missing movies and ask to add the rest."""
        try:
            details = await self.ctx.tmdb.collection_details(collection["id"])
        except Exception as e:
            logger.error("Collection %s details failed: %s", collection.get("id"), e)
            details = None
        if not details or not details.get("parts"):
            await self.ctx.store.evict(cid)
            await self.send(cid, "I couldn't load that collection.")
            return

        try:
            owned_ids = {m.get("tmdbId") for m in await self.ctx.radarr.list_movies()}
        except Exception as e:
            logger.error("Failed to check existing movies: %s", e)
            owned_ids = set()

        existing = [p for p in details["parts"] if p["tmdb_id"] in owned_ids]
        missing = [p for p in details["parts"] if p["tmdb_id"] not in owned_ids]

        sections = [f"🎬 *{details['name']}*"]
        if existing:
            sections.append(f"You already have:\n{format_movie_list(existing)}")
        if missing:
            sections.append(f"This will add:\n{format_movie_list(missing)}")
            sections.append("Add the missing movies in this series?")
        else:
            sections.append("All movies are already in Radarr.")
            sections.append("Want me to re-add them anyway?")

        state = MovieSeriesConfirmPending(
            collection={"id": details["id"], "name": details["name"]},
            existing=existing, missing=missing,
        )
        keyboard = [[Button("✅ Add All", "ms_confirm"), Button("Cancel", "ms_cancel")]]
        text = "\n\n".join(sections)
        if message_id is not None:
            state.message_id = message_id
            await self.edit(cid, message_id, text, keyboard=keyboard, markdown=True)
        else:
            state.message_id = await self.send(cid, text, keyboard=keyboard, markdown=True)
        await self.ctx.store.replace(cid, state)

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------

    async def on_pick(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, MovieSeriesPickPending):
            return "I don't have that list anymore."
        choice = next((c for c in state.choices if c["id"] == data.int_param), None)
        if choice is None:
            return "Couldn't load that collection."
        await self.present(cid, choice, message_id=message_id)
        return None

    async def on_confirm(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, MovieSeriesConfirmPending):
            return "Sorry, I lost track of that series."
        self.ctx.store.clear(cid)
        target = state.message_id or message_id
        await self.edit(cid, target, "Adding movies…", keyboard=[])

        name = state.collection["name"]
        try:
            section = self.ctx.section("radarr")
            root, profile_id = choose_defaults(
                await self.ctx.radarr.root_folders(), await self.ctx.radarr.quality_profiles(),
                section.get("default_root", ""), section.get("default_profile", ""),
            )
            owned_ids = {m.get("tmdbId") for m in await self.ctx.radarr.list_movies()}
        except Exception as e:
            logger.error("Failed to prepare collection add for %s: %s", name, e)
            await self.edit(cid, target, "❌ Could not add that movie series.", markdown=True)
            return None

        added, skipped = 0, 0
        for movie in state.existing + state.missing:
            tmdb_id = movie.get("tmdb_id")
            if not tmdb_id or tmdb_id in owned_ids:
                skipped += 1
                continue
            try:
                await self.ctx.radarr.add_movie(
                    {
                        "title": movie["title"],
                        "tmdbId": tmdb_id,
                        "imdbId": movie.get("imdb_id"),
                        "titleSlug": f"{movie['title']}-{tmdb_id}",
                        "minimumAvailability": "announced",
                    },
                    root, profile_id,
                )
                owned_ids.add(tmdb_id)
                added += 1
            except Exception as e:
                logger.error("Failed to add %s: %s", movie["title"], e)
                skipped += 1

        lines = [f"🎞 *{name}*", f"Added {added} movies."]
        if skipped:
            lines.append(f"{skipped} already existed or failed.")
        await self.edit(cid, target, "\n".join(lines), markdown=True)
        return None

    async def on_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        self.ctx.store.clear(cid)
        await self.edit(cid, message_id, "❌ Cancelled.", keyboard=[])
        return None
