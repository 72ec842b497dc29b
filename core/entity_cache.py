"""
Concierge Entity Cache

In-memory index of every series Sonarr knows about, used for fast fuzzy
title lookup without a Sonarr round-trip per message. The whole snapshot
is swapped on refresh, never edited in place, and is persisted to JSON so
a restart can reuse a fresh copy.

Usage:
    from core.entity_cache import EntityCache

    cache = EntityCache(sonarr, "data/cache/sonarr_series.json", notify=send_admin)
    await cache.ensure_fresh(max_age_hours=24)
    matches = cache.find("the block us")
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from core.resolver import rank

logger = logging.getLogger("concierge.entity_cache")

_CLEAN = re.compile(r"[^a-z0-9]+")


def clean_title(title: str) -> str:
    return _CLEAN.sub(" ", (title or "").lower()).strip()


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    """One series as seen by the cache.

    Attributes:
        id: Sonarr series id.
        title: Display title.
        normalized_title: Sonarr's cleanTitle, or a locally cleaned title.
        file_count: Episodes with files on disk.
        total_count: Episodes Sonarr knows about.
        monitored: Whether Sonarr monitors the series.
        ended: Whether the series has finished airing.
        path: Series folder on disk.
    """
    id: int
    title: str
    normalized_title: str = ""
    file_count: int | None = None
    total_count: int | None = None
    monitored: bool = True
    ended: bool = False
    path: str = ""

    @classmethod
    def from_sonarr(cls, series: dict[str, Any]) -> "CacheEntry":
        stats = series.get("statistics") or {}
        return cls(
            id=series["id"],
            title=series.get("title") or "",
            normalized_title=series.get("cleanTitle") or clean_title(series.get("title") or ""),
            file_count=stats.get("episodeFileCount"),
            total_count=stats.get("totalEpisodeCount"),
            monitored=bool(series.get("monitored")),
            ended=bool(series.get("ended")),
            path=series.get("path") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "normalized_title": self.normalized_title,
            "file_count": self.file_count,
            "total_count": self.total_count,
            "monitored": self.monitored,
            "ended": self.ended,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            normalized_title=data.get("normalized_title", ""),
            file_count=data.get("file_count"),
            total_count=data.get("total_count"),
            monitored=data.get("monitored", True),
            ended=data.get("ended", False),
            path=data.get("path", ""),
        )


@dataclass(frozen=True)
class CacheSnapshot:
    """An immutable, complete view of the library at one point in time."""
    entries: tuple[CacheEntry, ...] = field(default_factory=tuple)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated_at": self.updated_at.isoformat(),
            "series": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheSnapshot":
        return cls(
            entries=tuple(CacheEntry.from_dict(d) for d in data.get("series", [])),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# ---------------------------------------------------------------------------
# EntityCache
# ---------------------------------------------------------------------------

class EntityCache:
    """Replace-all cache of Sonarr series.

    Args:
        sonarr: Client exposing ``list_series()``.
        persist_path: JSON file the snapshot is saved to. None disables
            persistence.
        notify: Optional async callable taking a text message for the
            operator chat. Called when a refresh fails, and after a
            scheduled refresh succeeds.
        now: Clock returning an aware datetime, injectable for tests.
    """

    def __init__(
        self,
        sonarr,
        persist_path: str | Path | None = None,
        notify: Callable[[str], Awaitable[None]] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self._sonarr = sonarr
        self._path = Path(persist_path) if persist_path else None
        self._notify = notify
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._snapshot: CacheSnapshot | None = None

    @property
    def snapshot(self) -> CacheSnapshot | None:
        return self._snapshot

    @property
    def entries(self) -> tuple[CacheEntry, ...]:
        return self._snapshot.entries if self._snapshot else ()

    # -------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------

    async def refresh(self, scheduled: bool = False) -> CacheSnapshot | None:
        """Download every series and swap in a new snapshot.

        On failure the previous snapshot stays in place, the operator is
        told, and None is returned.
        """
        logger.info("Refreshing series cache")
        try:
            series = await self._sonarr.list_series()
            snapshot = CacheSnapshot(
                entries=tuple(CacheEntry.from_sonarr(s) for s in series),
                updated_at=self._now(),
            )
        except Exception as e:
            logger.error("Series cache refresh failed: %s", e)
            await self._tell_operator(
                f"⚠️ Sonarr series cache refresh failed: {e}. "
                "The previous cache is still in use."
            )
            return None

        self._snapshot = snapshot
        logger.info("Series cache refreshed (%d series)", len(snapshot.entries))
        if self._path is not None:
            await asyncio.to_thread(self._save, snapshot)
        if scheduled:
            if snapshot.entries:
                await self._tell_operator("🕛 Sonarr series cache refreshed successfully.")
            else:
                await self._tell_operator(
                    "⚠️ Sonarr cache refresh ran but returned no data. Check logs."
                )
        return snapshot

    async def _tell_operator(self, text: str):
        if self._notify is None:
            return
        try:
            await self._notify(text)
        except Exception as e:
            logger.warning("Operator notification failed: %s", e)

    def is_fresh(self, max_age_hours: float = 24) -> bool:
        if self._snapshot is None:
            return False
        age = self._now() - self._snapshot.updated_at
        return age < timedelta(hours=max_age_hours)

    async def ensure_fresh(self, max_age_hours: float = 24) -> CacheSnapshot | None:
        """Cold-start helper: load from disk, refresh if missing or stale."""
        if self._snapshot is None and self._path is not None:
            await asyncio.to_thread(self.load)
        if not self.is_fresh(max_age_hours):
            await self.refresh()
        return self._snapshot

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def find(self, query: str, snapshot: CacheSnapshot | None = None) -> list[CacheEntry]:
        """Entries matching query, best first."""
        snapshot = snapshot or self._snapshot
        if snapshot is None or not (query or "").strip():
            return []
        return [entry for entry, _ in rank(list(snapshot.entries), query)]

    def get(self, series_id: int) -> CacheEntry | None:
        for entry in self.entries:
            if entry.id == series_id:
                return entry
        return None

    # -------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------

    def load(self) -> CacheSnapshot | None:
        """Load the persisted snapshot, if any. A corrupt file is ignored."""
        if self._path is None or not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            snapshot = CacheSnapshot.from_dict(data)
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as e:
            logger.warning("Failed to load series cache (%s), ignoring it", e)
            return None
        self._snapshot = snapshot
        logger.info("Loaded series cache from disk (%d series)", len(snapshot.entries))
        return snapshot

    def _save(self, snapshot: CacheSnapshot):
        """Persist atomically: write a temp file, then rename over the old one."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("Failed to save series cache: %s", e)
