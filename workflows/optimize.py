"""
Concierge Optimize Workflow

Finds the largest movies or series and offers to move them to a smaller
quality profile, so Radarr/Sonarr grab leaner releases. The user can
optimize everything listed or tick a subset in a separate picker message.

Also answers the quality-profile listing intents.

Usage:
    "optimize the 10 biggest movies to 1080p"
    "optimize tv profile HD-720p"
"""

import logging
import re
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import OptimizeMoviesPending, OptimizePending, OptimizeTvPending
from tools.format import format_bytes
from workflows.base import Workflow, parse_limit

logger = logging.getLogger("concierge.workflows.optimize")

GIB = 1024 ** 3
SAVINGS_RATIO = 0.65

SUMMARY_KEYBOARD: Keyboard = [
    [Button("✅ Optimize all", "optm_all")],
    [Button("🗂 Pick titles", "optm_pick")],
    [Button("❌ Cancel", "optm_cancel")],
]

_PROFILE_REQUEST = re.compile(r"\b(?:profile|to)\s+([a-z0-9][a-z0-9 \-+]{1,})$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def extract_profile_request(reference: str) -> tuple[str, str]:
    """Split a trailing "profile X" / "to X" off the reference.

    Returns (remaining text, requested profile name or "").
    """
    reference = (reference or "").strip()
    match = _PROFILE_REQUEST.search(reference)
    if not match:
        return reference, ""
    return reference[:match.start()].strip(), match.group(1).strip()


def estimate_savings(size: int) -> int:
    return max(0, round(size * SAVINGS_RATIO))


def match_profile(profiles: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    """By id, exact name, substring, then by a 3-4 digit resolution in the name."""
    name = (name or "").strip()
    if not name:
        return None
    lower = name.lower()
    if name.isdigit():
        by_id = next((p for p in profiles if p.get("id") == int(name)), None)
        if by_id:
            return by_id
    for test in (
        lambda p: (p.get("name") or "").lower() == lower,
        lambda p: lower in (p.get("name") or "").lower(),
    ):
        found = next((p for p in profiles if test(p)), None)
        if found:
            return found
    res = re.search(r"(\d{3,4})", lower)
    if res:
        return next((p for p in profiles if res.group(1) in (p.get("name") or "")), None)
    return None


def pick_target_profile(profiles: list[dict[str, Any]], requested: str, fallback: str) -> dict[str, Any] | None:
    if not profiles:
        return None
    return match_profile(profiles, requested) or match_profile(profiles, fallback) or profiles[0]


def resolution_from_name(name: str) -> int:
    if not name:
        return 0
    match = re.search(r"(\d{3,4})p", name, re.IGNORECASE)
    if match:
        return int(match.group(1))
    for pattern, value in (
        (r"2160|uhd|4k", 2160), (r"1440", 1440), (r"1080", 1080), (r"720", 720), (r"480|sd", 480),
    ):
        if re.search(pattern, name, re.IGNORECASE):
            return value
    return 0


def target_resolution(profile: dict[str, Any] | None) -> int:
    """Resolution of the profile's cutoff, else its best allowed quality, else 1080."""
    if not profile:
        return 1080
    items = profile.get("items") or []
    cutoff = profile.get("cutoff")
    if cutoff:
        item = next((i for i in items if (i.get("quality") or {}).get("id") == cutoff), None)
        if item:
            res = resolution_from_name((item.get("quality") or {}).get("name", ""))
            if res:
                return res
    allowed = [i for i in items if i.get("allowed") is not False]
    if allowed:
        return max(resolution_from_name((i.get("quality") or {}).get("name", "")) for i in allowed)
    return 1080


def _profile_id(item: dict[str, Any]) -> int:
    return int(item.get("qualityProfileId") or (item.get("qualityProfile") or {}).get("id") or 0)


def _series_size(series: dict[str, Any]) -> int:
    return (series.get("statistics") or {}).get("sizeOnDisk") or series.get("sizeOnDisk") or 0


def picker_keyboard(state: OptimizePending) -> Keyboard:
    rows = [
        [Button(f"{'✅' if i in state.selected else '⬜️'} {i + 1}. {c['title']}", f"optm_select|{i}")]
        for i, c in enumerate(state.candidates)
    ]
    rows.append([Button("▶️ Optimize selected", "optm_confirm"), Button("⬅️ Back", "optm_pick_cancel")])
    rows.append([Button("🏁 Optimize all", "optm_all")])
    return rows


def profiles_text(service: str, profiles: list[dict[str, Any]]) -> str:
    lines = [f"📋 *{service} quality profiles*"]
    for p in profiles:
        lines.append(f"• {p.get('name') or 'Profile %s' % p.get('id')} (id {p.get('id')})")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class OptimizeWorkflow(Workflow):
    name = "optimize"

    def intents(self):
        return {
            "optimize_movies": self.start_movies,
            "optimize_tv": self.start_tv,
            "list_tv_profiles": self.list_tv_profiles,
            "list_movie_profiles": self.list_movie_profiles,
        }

    def callback_handlers(self):
        return {
            "optm_all": self.on_apply,
            "optm_confirm": self.on_apply,
            "optm_pick": self.on_pick,
            "optm_select": self.on_select,
            "optm_pick_cancel": self.on_pick_cancel,
            "optm_cancel": self.on_cancel,
        }

    def _limits(self, kind: str) -> tuple[int, int, int, str]:
        """(min bytes, default limit, max limit, configured target profile)."""
        cfg = self.ctx.section("optimize")
        min_gb = cfg.get("min_size_gb") or 40
        target = cfg.get("target_profile") or ""
        if kind == "tv":
            min_gb = cfg.get("tv_min_size_gb") or min_gb
            target = cfg.get("tv_target_profile") or target
        return int(float(min_gb) * GIB), cfg.get("default_limit") or 20, cfg.get("max_limit") or 50, target

    # -------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------

    async def start_movies(self, cid: Any, result: ClassificationResult):
        try:
            cleaned, requested = extract_profile_request(result.reference)
            min_bytes, default_limit, max_limit, configured = self._limits("movie")
            limit = parse_limit(cleaned, default_limit, max_limit)

            movies = await self.ctx.radarr.list_movies()
            profiles = await self.ctx.radarr.quality_profiles()
            target = pick_target_profile(profiles, requested, configured)
            if target is None:
                await self.send(
                    cid, "No Radarr quality profiles found. Set OPTIMIZE_TARGET_PROFILE or ensure Radarr is reachable.",
                )
                return

            movies = [
                m for m in movies
                if (m.get("sizeOnDisk") or 0) >= min_bytes and m.get("hasFile") and _profile_id(m) != target["id"]
            ]
            movies.sort(key=lambda m: m.get("sizeOnDisk") or 0, reverse=True)
            candidates = [
                {
                    "id": m["id"],
                    "title": m.get("title", ""),
                    "year": m.get("year"),
                    "size": m.get("sizeOnDisk") or 0,
                    "quality": (((m.get("movieFile") or {}).get("quality") or {}).get("quality") or {}).get("name") or "unknown",
                }
                for m in movies[:limit]
            ]
        except Exception as e:
            logger.error("Movie optimization failed: %s", e)
            await self.send(cid, "Unable to prepare optimization right now.")
            return

        if not candidates:
            await self.send(cid, "No movie results available for that query.")
            return

        state = OptimizeMoviesPending(candidates=candidates, target_profile=target)
        state.message_id = await self.send(
            cid, self._movie_summary(candidates, target), keyboard=SUMMARY_KEYBOARD, markdown=True,
        )
        await self.ctx.store.replace(cid, state)

    async def start_tv(self, cid: Any, result: ClassificationResult):
        try:
            cleaned, requested = extract_profile_request(result.reference)
            min_bytes, default_limit, max_limit, configured = self._limits("tv")
            limit = parse_limit(cleaned, default_limit, max_limit)

            series_list = await self.ctx.sonarr.list_series()
            profiles = await self.ctx.sonarr.quality_profiles()
            target = pick_target_profile(profiles, requested, configured)
            if target is None:
                await self.send(
                    cid, "No Sonarr quality profiles found. Set OPTIMIZE_TV_TARGET_PROFILE or ensure Sonarr is reachable.",
                )
                return

            series_list = [
                s for s in series_list
                if _series_size(s) >= min_bytes
                and (s.get("statistics") or {}).get("episodeFileCount", 0) > 0
                and _profile_id(s) != target["id"]
            ]
            series_list.sort(key=_series_size, reverse=True)
            profile_names = {p["id"]: p.get("name") or f"profile {p['id']}" for p in profiles}
            candidates = await self._annotate_tv(series_list[:limit], target, profile_names)
        except Exception as e:
            logger.error("TV optimization failed: %s", e)
            await self.send(cid, "Unable to prepare TV optimization right now.")
            return

        if not candidates:
            await self.send(cid, "No TV results available for that query.")
            return

        state = OptimizeTvPending(candidates=candidates, target_profile=target)
        state.message_id = await self.send(
            cid, self._tv_summary(candidates, target), keyboard=SUMMARY_KEYBOARD, markdown=True,
        )
        await self.ctx.store.replace(cid, state)

    async def _annotate_tv(self, series_list, target, profile_names) -> list[dict[str, Any]]:
        """Keep only series whose best episode quality is above the target's resolution."""
        limit_res = target_resolution(target)
        kept = []
        for series in series_list:
            try:
                episodes = await self.ctx.sonarr.get_episodes(series["id"])
            except Exception as e:
                logger.error("Could not inspect series %s: %s", series.get("id"), e)
                continue
            best_name, best_res = "", 0
            for ep in episodes:
                name = (((ep.get("episodeFile") or {}).get("quality") or {}).get("quality") or {}).get("name") or ""
                res = resolution_from_name(name)
                if res > best_res:
                    best_name, best_res = name, res
            if best_res <= limit_res:
                continue
            kept.append({
                "id": series["id"],
                "title": series.get("title", ""),
                "size": _series_size(series),
                "files": (series.get("statistics") or {}).get("episodeFileCount", 0),
                "quality": best_name or profile_names.get(_profile_id(series)) or "unknown quality",
                "series": series,
            })
        return kept

    @staticmethod
    def _movie_summary(candidates, target) -> str:
        total = sum(estimate_savings(c["size"]) for c in candidates)
        lines = [
            f"🧠 *Optimization candidates* — target profile: *{target.get('name') or target.get('id')}*",
            f"Showing {len(candidates)} largest movies (size ≥ filter, sorted by size).",
            f"Potential reclaim: ~{format_bytes(total)}",
            "",
        ]
        for i, c in enumerate(candidates, 1):
            year = f" ({c['year']})" if c.get("year") else ""
            lines.append(
                f"{i}. {c['title']}{year} — {format_bytes(c['size'])} — {c['quality']} — "
                f"est save {format_bytes(estimate_savings(c['size']))}"
            )
        return "\n".join(lines)

    @staticmethod
    def _tv_summary(candidates, target) -> str:
        total = sum(estimate_savings(c["size"]) for c in candidates)
        lines = [
            f"🧠 *TV optimization candidates* — target profile: *{target.get('name') or target.get('id')}*",
            f"Showing {len(candidates)} largest series (size ≥ filter, sorted by size).",
            f"Potential reclaim: ~{format_bytes(total)}",
            "",
        ]
        for i, c in enumerate(candidates, 1):
            lines.append(
                f"{i}. {c['title']} — {format_bytes(c['size'])} — {c['files']} files — "
                f"current quality {c['quality']} — est save {format_bytes(estimate_savings(c['size']))}"
            )
        return "\n".join(lines)

    async def list_tv_profiles(self, cid: Any, result: ClassificationResult):
        try:
            profiles = await self.ctx.sonarr.quality_profiles()
        except Exception as e:
            logger.error("Listing Sonarr profiles failed: %s", e)
            await self.send(cid, "Couldn't list Sonarr profiles right now.")
            return
        if not profiles:
            await self.send(cid, "No Sonarr quality profiles were found.")
            return
        await self.send(cid, profiles_text("Sonarr", profiles), markdown=True)

    async def list_movie_profiles(self, cid: Any, result: ClassificationResult):
        try:
            profiles = await self.ctx.radarr.quality_profiles()
        except Exception as e:
            logger.error("Listing Radarr profiles failed: %s", e)
            await self.send(cid, "Couldn't list Radarr profiles right now.")
            return
        if not profiles:
            await self.send(cid, "No Radarr quality profiles were found.")
            return
        await self.send(cid, profiles_text("Radarr", profiles), markdown=True)

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------

    async def _close_picker(self, cid: Any, state: OptimizePending):
        if state.picker_message_id is not None:
            await self.delete(cid, state.picker_message_id)
            state.picker_message_id = None

    async def on_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, OptimizePending):
            return "No optimization pending."
        self.ctx.store.clear(cid)
        await self._close_picker(cid, state)
        await self.edit(cid, state.message_id, "❌ Optimization cancelled.", keyboard=[])
        return "Cancelled."

    async def on_pick(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, OptimizePending):
            return "No optimization pending."
        await self._close_picker(cid, state)
        label = "series" if isinstance(state, OptimizeTvPending) else "movies"
        state.picker_message_id = await self.send(
            cid, f"Select {label} to optimize:", keyboard=picker_keyboard(state),
        )
        return None

    async def on_pick_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, OptimizePending):
            return "No optimization pending."
        await self._close_picker(cid, state)
        return "Back."

    async def on_select(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, OptimizePending):
            return "No optimization pending."
        idx = data.int_param
        if idx is None or not 0 <= idx < len(state.candidates):
            return "Invalid selection."
        state.selected ^= {idx}
        if state.picker_message_id is not None:
            try:
                await self.ctx.transport.edit_keyboard(cid, state.picker_message_id, picker_keyboard(state))
            except Exception as e:
                logger.debug("Picker refresh failed: %s", e)
        return f"{len(state.selected)} selected"

    async def on_apply(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, OptimizePending):
            return "No optimization pending."
        if data.action == "optm_all" or not state.selected:
            chosen = list(state.candidates)
        else:
            chosen = [c for i, c in enumerate(state.candidates) if i in state.selected]
        if not chosen:
            return "Nothing selected."

        self.ctx.store.clear(cid)
        await self._close_picker(cid, state)
        ids = [c["id"] for c in chosen]
        target_id = state.target_profile["id"]
        is_tv = isinstance(state, OptimizeTvPending)

        try:
            if is_tv:
                updated, failed = await self._apply_tv(chosen, target_id)
                if not updated:
                    raise RuntimeError(f"no series profile could be updated ({failed} failed)")
                await self.ctx.sonarr.run_series_search(updated)
                text = (
                    f"✅ Optimization started for {len(updated)} series. "
                    "Sonarr will grab smaller releases if available."
                )
                if failed:
                    text += f"\n⚠️ {failed} series could not be updated."
            else:
                await self.ctx.radarr.edit_quality_profile(ids, target_id)
                await self.ctx.radarr.search_movies(ids)
                text = f"✅ Optimization started for {len(ids)} movie(s). Radarr will grab smaller releases if available."
        except Exception as e:
            logger.error("Applying optimization failed: %s", e)
            service = "Sonarr" if is_tv else "Radarr"
            text = f"❌ Could not start optimization. Check {service} connectivity and quality profile."

        await self.edit(cid, state.message_id, text, keyboard=[], markdown=True)
        return "Optimizing…"

    async def _apply_tv(self, chosen: list[dict[str, Any]], target_id: int) -> tuple[list[int], int]:
        """Move each series to the target profile. Returns (updated ids, failure count)."""
        updated, failed = [], 0
        for c in chosen:
            try:
                await self.ctx.sonarr.update_series(c["id"], dict(c["series"], qualityProfileId=target_id))
            except Exception as e:
                failed += 1
                logger.error("Failed to update profile of %s: %s", c["title"], e)
                continue
            updated.append(c["id"])
        return updated, failed
