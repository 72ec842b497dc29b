"""
Concierge Add Media Workflow

Looks a title up in Sonarr and Radarr and lets the user browse the
candidates as poster cards, one at a time, before adding one with the
configured default root folder and quality profile.

Usage:
    "add severance"          -> add_media (kind chosen from the results)
    "add the movie dune"     -> add_movie
"""

import logging
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import AddMediaChoosePending, AddMediaPending
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.add_media")

MAX_CANDIDATES = 8
MAX_OVERVIEW = 700
MISSING_POSTER = {
    "tv": "https://artworks.thetvdb.com/banners/images/missing/series.jpg",
    "movie": "https://artworks.thetvdb.com/banners/images/missing/movie.jpg",
}


# ---------------------------------------------------------------------------
# Card rendering
# ---------------------------------------------------------------------------

def build_caption(kind: str, item: dict[str, Any]) -> str:
    """Markdown caption: bold header line, then the trimmed overview."""
    title = item.get("title") or item.get("name") or "Untitled"
    year = item.get("year") or (item.get("firstAired") or item.get("releaseDate") or "")[:4]
    network = item.get("network") or item.get("studio") or ""
    if kind == "tv":
        status = item.get("status") or ""
        seasons = item.get("seasons")
        season_part = f"{len(seasons)} Seasons" if isinstance(seasons, list) else ""
    else:
        status = item.get("status") or ("Released" if item.get("hasFile") or item.get("isAvailable") else "Announced")
        season_part = ""

    parts = [title, f"({year})" if year else "", season_part, network, status]
    header = " — ".join(p for p in parts if p)

    overview = item.get("overview") or ""
    if len(overview) > MAX_OVERVIEW:
        overview = overview[:MAX_OVERVIEW] + "…"
    return f"*{header}*\n\n{overview}"


def build_links(kind: str, item: dict[str, Any]) -> list[Button]:
    links = []
    if kind == "tv" and item.get("tvdbId"):
        links.append(Button("TVDB", url=f"https://www.thetvdb.com/dereferrer/series/{item['tvdbId']}"))
    if kind == "movie" and item.get("tmdbId"):
        links.append(Button("TMDB", url=f"https://www.themoviedb.org/movie/{item['tmdbId']}"))
    if item.get("imdbId"):
        links.append(Button("IMDb", url=f"https://www.imdb.com/title/{item['imdbId']}"))
    return links


def poster_url(kind: str, item: dict[str, Any], base_url: str = "") -> str:
    """remotePoster, else the poster image made absolute, else a placeholder."""
    if item.get("remotePoster"):
        return item["remotePoster"]
    images = item.get("images") or []
    poster = next((i for i in images if i.get("coverType") == "poster"), images[0] if images else None)
    url = (poster or {}).get("remoteUrl") or (poster or {}).get("url") or ""
    if url.startswith(("http://", "https://")):
        return url
    if url and base_url:
        return base_url.rstrip("/") + ("" if url.startswith("/") else "/") + url
    return MISSING_POSTER[kind]


def card_keyboard(state: AddMediaPending) -> Keyboard:
    item = state.current or {}
    main = [Button("✅ Already added", "addmedia_skip") if item.get("id") else Button("➕ Add", "addmedia_add")]
    main.append(Button("✖️ Cancel", "addmedia_cancel"))
    rows = [main]
    if len(state.results) > 1:
        rows.append([Button("◀️ Prev", "addmedia_prev"), Button("Next ▶️", "addmedia_next")])
    if state.kind == "tv" and state.movie_results:
        rows.append([Button("🎬 See movies", "addmedia_kind_movie")])
    elif state.kind == "movie" and state.tv_results:
        rows.append([Button("📺 See shows", "addmedia_kind_tv")])
    links = build_links(state.kind, item)
    if links:
        rows.append(links)
    return rows


def choose_defaults(
    roots: list[dict[str, Any]], profiles: list[dict[str, Any]],
    default_root: str = "", default_profile: Any = "",
) -> tuple[str, int]:
    """Root folder by path and profile by id or name, else the first of each."""
    if not roots or not profiles:
        raise ValueError("No root folders or quality profiles available")
    root = next((r for r in roots if default_root and r.get("path") == default_root), roots[0])

    wanted = str(default_profile or "").strip()
    profile = None
    if wanted:
        profile = next(
            (p for p in profiles if str(p.get("id")) == wanted or (p.get("name") or "").lower() == wanted.lower()),
            None,
        )
    profile = profile or profiles[0]
    return root["path"], profile["id"]


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class AddMediaWorkflow(Workflow):
    name = "add_media"

    def intents(self):
        return {
            "add_media": self.start,
            "add_tv": self.start,
            "add_movie": self.start,
        }

    def callback_handlers(self):
        return {
            "addmedia_kind_tv": self.on_kind,
            "addmedia_kind_movie": self.on_kind,
            "addmedia_next": self.on_navigate,
            "addmedia_prev": self.on_navigate,
            "addmedia_add": self.on_add,
            "addmedia_skip": self.on_skip,
            "addmedia_cancel": self.on_cancel,
        }

    async def start(self, cid: Any, result: ClassificationResult):
        kind_hint = {"add_tv": "tv", "add_movie": "movie"}.get(result.intent, result.entities.media_type)
        await self.add(cid, result.entities.title or result.reference, kind_hint)

    async def add(self, cid: Any, title: str, kind_hint: str = "auto"):
        """Look up both backends (or the hinted one) and show a card or the kind chooser."""
        await self.ctx.store.evict(cid)
        title = (title or "").strip()
        if not title:
            await self.send(cid, "Please tell me what to add.")
            return

        tv_results: list[dict[str, Any]] = []
        movie_results: list[dict[str, Any]] = []
        if kind_hint != "movie":
            try:
                tv_results = (await self.ctx.sonarr.lookup_series(title))[:MAX_CANDIDATES]
            except Exception as e:
                logger.error("Sonarr lookup failed for %r: %s", title, e)
        if kind_hint != "tv":
            try:
                movie_results = (await self.ctx.radarr.lookup_movie(title))[:MAX_CANDIDATES]
            except Exception as e:
                logger.error("Radarr lookup failed for %r: %s", title, e)

        if kind_hint in ("tv", "movie") and (tv_results if kind_hint == "tv" else movie_results):
            kind = kind_hint
        elif tv_results and not movie_results:
            kind = "tv"
        elif movie_results and not tv_results:
            kind = "movie"
        elif tv_results and movie_results:
            await self._send_chooser(cid, title, tv_results, movie_results)
            return
        else:
            await self.send(cid, "I couldn't find a matching show or movie.")
            return

        state = AddMediaPending(kind=kind, query=title, tv_results=tv_results, movie_results=movie_results)
        await self.show_card(cid, state)

    async def _send_chooser(self, cid, title, tv_results, movie_results):
        tv_label = tv_results[0].get("title") or "TV results"
        movie_label = movie_results[0].get("title") or "Movie results"
        keyboard = [
            [Button(f"📺 TV ({tv_label})", "addmedia_kind_tv")],
            [Button(f"🎬 Movie ({movie_label})", "addmedia_kind_movie")],
            [Button("✖️ Cancel", "addmedia_cancel")],
        ]
        state = AddMediaChoosePending(query=title, tv_results=tv_results, movie_results=movie_results)
        state.message_id = await self.send(
            cid,
            f"I found both TV and movie matches for “{title}”. Which do you want to browse first?",
            keyboard=keyboard,
        )
        await self.ctx.store.replace(cid, state)

    async def show_card(self, cid: Any, state: AddMediaPending):
        """Send the current candidate as a new card; the previous card is removed by the store."""
        item = state.current
        if item is None:
            await self.ctx.store.evict(cid)
            await self.send(cid, f"No {'TV' if state.kind == 'tv' else 'movie'} results to show.")
            return

        caption = build_caption(state.kind, item)
        keyboard = card_keyboard(state)
        base_url = self.ctx.section("sonarr" if state.kind == "tv" else "radarr").get("url", "")
        photo = poster_url(state.kind, item, base_url)

        new_state = AddMediaPending(
            kind=state.kind, query=state.query, index=state.index,
            tv_results=state.tv_results, movie_results=state.movie_results,
        )
        try:
            new_state.message_id = await self.ctx.transport.send_photo(
                cid, photo, caption, keyboard=keyboard, markdown=True,
            )
            new_state.has_photo = True
        except Exception as e:
            logger.warning("Poster send failed (%s), falling back to text", e)
            new_state.message_id = await self.send(cid, caption, keyboard=keyboard, markdown=True)
        await self.ctx.store.replace(cid, new_state)

    async def _finish_card(self, cid: Any, message_id: int | None, state: AddMediaPending, text: str):
        """Replace the card's text or caption and drop its buttons."""
        try:
            if state.has_photo and message_id is not None:
                await self.ctx.transport.edit_caption(cid, message_id, text, keyboard=[], markdown=True)
            else:
                await self.edit(cid, message_id, text, keyboard=[], markdown=True)
        except Exception as e:
            logger.debug("Card edit failed (%s), sending instead", e)
            await self.send(cid, text, markdown=True)

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------

    async def on_kind(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, (AddMediaChoosePending, AddMediaPending)):
            return "Search expired, try again."
        kind = "tv" if data.action == "addmedia_kind_tv" else "movie"
        results = state.tv_results if kind == "tv" else state.movie_results
        if not results:
            return f"No {kind} results available."
        card = AddMediaPending(
            kind=kind, query=state.query, index=0,
            tv_results=state.tv_results, movie_results=state.movie_results,
        )
        await self.show_card(cid, card)
        return None

    async def on_navigate(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, AddMediaPending):
            return "No active add-media request."
        step = 1 if data.action == "addmedia_next" else -1
        count = len(state.results)
        if count:
            state.index = (state.index + step) % count
        await self.show_card(cid, state)
        return None

    async def on_skip(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, AddMediaPending):
            return "No active add-media request."
        self.ctx.store.clear(cid)
        await self._finish_card(cid, message_id, state, "Already added.")
        return None

    async def on_add(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, AddMediaPending) or state.current is None:
            return "No active add-media request."
        self.ctx.store.clear(cid)
        item = state.current
        section = self.ctx.section("sonarr" if state.kind == "tv" else "radarr")
        try:
            if state.kind == "tv":
                roots, profiles = await self.ctx.sonarr.root_folders(), await self.ctx.sonarr.quality_profiles()
                root, profile_id = choose_defaults(
                    roots, profiles, section.get("default_root", ""), section.get("default_profile", ""),
                )
                await self.ctx.sonarr.add_series(item, root, profile_id)
            else:
                roots, profiles = await self.ctx.radarr.root_folders(), await self.ctx.radarr.quality_profiles()
                root, profile_id = choose_defaults(
                    roots, profiles, section.get("default_root", ""), section.get("default_profile", ""),
                )
                await self.ctx.radarr.add_movie(item, root, profile_id)
        except Exception as e:
            logger.error("Add failed for %s: %s", item.get("title"), e)
            await self._finish_card(cid, message_id, state, "❌ Could not add. Check profiles/roots and API keys.")
            return None

        logger.info("Added %s %s", state.kind, item.get("title"))
        await self._finish_card(cid, message_id, state, f"✅ Added {item.get('title') or item.get('name')}.")
        return None

    async def on_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        await self.ctx.store.evict(cid)
        if state is None or message_id not in state.message_ids():
            await self.delete(cid, message_id)
        await self.send(cid, "❌ Add cancelled.")
        return None
