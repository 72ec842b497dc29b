"""
Concierge Library Check Workflow

Answers "do we have X?" for shows (Sonarr cache + per-season download
and Plex watch status) and movies (best Radarr title match). When the
title is missing, offers a button that starts the add flow.
"""

import base64
import logging
from datetime import datetime, timezone
from typing import Any

from core.callbacks import MAX_CALLBACK_BYTES, Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.resolver import token_similarity
from tools.format import format_bytes
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.have_media")

ADD_ACTION = "haveadd"
DEFAULT_SHOW_SEASONS = 5
MOVIE_MATCH_THRESHOLD = 0.35


# ---------------------------------------------------------------------------
# Callback payload
# ---------------------------------------------------------------------------

def encode_title(title: str) -> str:
    return base64.urlsafe_b64encode(title.encode("utf-8")).decode("ascii").rstrip("=")


def decode_title(encoded: str) -> str:
    padded = encoded + "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="ignore")


def add_payload(kind: str, title: str) -> str:
    """haveadd|<kind>|<b64 title>, shortening the title until it fits a callback."""
    raw = title.encode("utf-8")
    while raw:
        payload = f"{ADD_ACTION}|{kind}|{encode_title(raw.decode('utf-8', errors='ignore'))}"
        if len(payload.encode("utf-8")) <= MAX_CALLBACK_BYTES:
            return payload
        raw = raw[:-1]
    return f"{ADD_ACTION}|{kind}|"


def parse_add_param(param: str | None) -> tuple[str, str] | None:
    """(kind, title) from the "<kind>|<b64>" part of the payload."""
    kind, sep, encoded = (param or "").partition("|")
    if not sep or kind not in ("tv", "movie") or not encoded:
        return None
    try:
        title = decode_title(encoded)
    except ValueError:
        return None
    return (kind, title) if title else None


def add_keyboard(kind: str, title: str) -> Keyboard:
    service = "Radarr" if kind == "movie" else "Sonarr"
    return [[Button(f"➕ Add to {service}", add_payload(kind, title))]]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

def _normalize(text: str) -> str:
    return " ".join("".join(c if c.isalnum() else " " for c in (text or "").lower()).split())


def movie_match_score(query: str, title: str) -> float:
    candidate = _normalize(title)
    if not candidate:
        return 0.0
    if candidate == query:
        return 1.0
    if candidate.startswith(query):
        return 0.9
    if query in candidate:
        return 0.7
    return token_similarity(query, candidate)


def find_best_movie(movies: list[dict[str, Any]], query: str) -> dict[str, Any] | None:
    wanted = _normalize(query)
    if not wanted:
        return None
    best, best_score = None, 0.0
    for movie in movies:
        score = movie_match_score(wanted, movie.get("title") or "")
        if score > best_score:
            best, best_score = movie, score
    return best if best_score > MOVIE_MATCH_THRESHOLD else None


def looks_cleaned_up(series: dict[str, Any], now: datetime | None = None) -> bool:
    """No files, every real season unmonitored, and the show has finished airing."""
    if (series.get("statistics") or {}).get("episodeFileCount"):
        return False
    seasons = [s for s in series.get("seasons") or [] if s.get("seasonNumber", 0) > 0]
    if not seasons or any(s.get("monitored") is not False for s in seasons):
        return False
    if series.get("ended") is True or str(series.get("status") or "").lower() == "ended":
        return True
    last_air = series.get("previousAiring") or series.get("lastAiring")
    if not last_air:
        return False
    try:
        aired = datetime.fromisoformat(str(last_air).replace("Z", "+00:00"))
    except ValueError:
        return False
    if aired.tzinfo is None:
        aired = aired.replace(tzinfo=timezone.utc)
    return aired < (now or datetime.now(timezone.utc))


def season_line(season: dict[str, Any], plex_stats: dict[int, tuple[int, int]]) -> str:
    stats = season.get("statistics") or {}
    aired = stats.get("episodeCount", stats.get("totalEpisodeCount", 0)) or 0
    downloaded = stats.get("episodeFileCount") or 0

    if aired > 0 and downloaded >= aired:
        status = "✅ Fully downloaded"
    elif downloaded > 0:
        status = f"⚠️ {downloaded}/{aired or '?'} episodes downloaded"
    elif aired == 0:
        status = "🕓 Waiting for episodes to air"
    else:
        status = "❌ No episodes downloaded"

    monitored = "" if season.get("monitored") is not False else " (not monitored)"

    watched_text = ""
    watched, total = plex_stats.get(season["seasonNumber"], (0, 0))
    if total > 0 and watched == total:
        watched_text = " — fully watched"
    elif watched > 0:
        watched_text = f" — watched {watched}/{total}"
    return f"• S{season['seasonNumber']}: {status}{monitored}{watched_text}"


def tv_summary(series: dict[str, Any], plex_stats: dict[int, tuple[int, int]], requested_season: int = 0) -> str:
    lines = [f"📺 *{series.get('title')}* is already in Sonarr."]
    size = (series.get("statistics") or {}).get("sizeOnDisk")
    if size:
        lines.append(f"On disk: ~{format_bytes(size)}.")

    seasons = sorted(
        (s for s in series.get("seasons") or [] if s.get("seasonNumber", 0) > 0),
        key=lambda s: s["seasonNumber"],
    )
    if not seasons:
        lines.append("No aired seasons yet.")
        return "\n".join(lines)

    target = next((s for s in seasons if s["seasonNumber"] == requested_season), None)
    visible = [target] if target else seasons[:DEFAULT_SHOW_SEASONS]

    lines += ["", "Season status:"]
    lines += [season_line(s, plex_stats) for s in visible]
    if requested_season > 0 and target is None:
        lines.append(f"(Could not find data for season {requested_season} yet.)")
    elif not requested_season and len(seasons) > len(visible):
        lines.append(f"…plus {len(seasons) - len(visible)} more seasons ready in Sonarr.")
    return "\n".join(lines)


def movie_summary(movie: dict[str, Any]) -> str:
    year = f" ({movie['year']})" if movie.get("year") else ""
    lines = [f"🎬 *{movie.get('title')}{year}* — yep, that's in Radarr."]
    movie_file = movie.get("movieFile") or {}
    quality = ((movie_file.get("quality") or {}).get("quality") or {}).get("name") or "unknown quality"
    size = movie_file.get("size") or movie.get("sizeOnDisk") or 0

    if movie.get("hasFile") or movie_file:
        lines.append(f"✅ Downloaded ({quality})")
        if size:
            lines.append(f"Size: {format_bytes(size)}")
    elif movie.get("monitored") is not False:
        lines.append("📡 It's monitored and waiting for a download to show up.")
    else:
        lines.append("⚠️ It's in Radarr but not actively monitored.")
    if movie.get("isAvailable") is False:
        lines.append("Release not available yet.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class HaveMediaWorkflow(Workflow):
    """Library check.

    Args:
        ctx: Shared workflow context.
        add_media: The AddMediaWorkflow started by the "Add to ..." button.
    """

    name = "have_media"

    def __init__(self, ctx, add_media=None):
        super().__init__(ctx)
        self.add_media = add_media

    def intents(self):
        return {"have_media": self.start}

    def callback_handlers(self):
        return {ADD_ACTION: self.on_add}

    async def start(self, cid: Any, result: ClassificationResult):
        title = (result.entities.title or result.reference).strip()
        if not title:
            await self.send(cid, "I need a show or movie title to check.")
            return
        if result.entities.media_type == "movie":
            await self.movie_status(cid, title)
        else:
            await self.tv_status(cid, title, result.entities.season_number)

    async def tv_status(self, cid: Any, title: str, requested_season: int = 0):
        matches = self.ctx.cache.find(title)
        if not matches:
            await self.send(
                cid, f"I couldn't find *{title}* in Sonarr yet.",
                keyboard=add_keyboard("tv", title), markdown=True,
            )
            return
        entry = matches[0]
        try:
            series = await self.ctx.sonarr.get_series(entry.id)
        except Exception as e:
            logger.error("Sonarr lookup failed for %s: %s", entry.title, e)
            await self.send(cid, "I had trouble checking Sonarr. Try again in a moment.")
            return

        if looks_cleaned_up(series):
            await self.send(
                cid,
                f"It looks like we finished watching *{series.get('title')}* and cleaned it up. "
                "It's still in Sonarr but everything is unmonitored and there are no files left. "
                "Just ask me to add it again if you want it back.",
                markdown=True,
            )
            return
        plex_stats = await self._plex_stats(entry.title)
        await self.send(cid, tv_summary(series, plex_stats, requested_season), markdown=True)

    async def movie_status(self, cid: Any, title: str):
        try:
            movies = await self.ctx.radarr.list_movies()
        except Exception as e:
            logger.error("Radarr lookup failed: %s", e)
            await self.send(cid, "I couldn't reach Radarr just now. Try again later.")
            return
        match = find_best_movie(movies, title)
        if match is None:
            await self.send(
                cid, f"Doesn't look like *{title}* is in Radarr yet.",
                keyboard=add_keyboard("movie", title), markdown=True,
            )
            return
        await self.send(cid, movie_summary(match), markdown=True)

    async def _plex_stats(self, title: str) -> dict[int, tuple[int, int]]:
        """season number -> (watched, total); empty when Plex has nothing."""
        plex = self.ctx.plex
        if plex is None or not plex.is_configured:
            return {}
        try:
            shows = await plex.get_shows()
            match = next((s for s in shows if (s["title"] or "").lower() == title.lower()), None)
            if match is None:
                return {}
            seasons = await plex.get_seasons(match["rating_key"])
        except Exception as e:
            logger.warning("Plex lookup failed for %s: %s", title, e)
            return {}
        return {s["season_number"]: (s["viewed_leaf_count"], s["leaf_count"]) for s in seasons}

    async def on_add(self, cid: Any, data: CallbackData, message_id: int | None):
        parsed = parse_add_param(data.param)
        if parsed is None:
            return "Invalid request."
        kind, title = parsed
        if message_id is not None:
            try:
                await self.ctx.transport.edit_keyboard(cid, message_id, [])
            except Exception as e:
                logger.debug("Could not remove add button: %s", e)
        if self.add_media is None:
            return "Adding is not available."
        await self.add_media.add(cid, title, kind)
        return None
