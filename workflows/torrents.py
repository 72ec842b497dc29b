"""
Concierge Torrent Cleanup Workflow

Finds qBittorrent torrents the tracker reports as unregistered and offers
to delete them together with their files.
"""

import logging
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import TorrentCleanupPending
from tools.format import format_bytes_decimal
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.torrents")

MAX_LINES = 20
SCOPE_LABELS = {"tv": "TV", "movies": "Movies", "all": "All"}

CONFIRM_KEYBOARD: Keyboard = [
    [Button("✅ Delete", "qb_unreg_yes"), Button("❌ Cancel", "qb_unreg_no")],
]


def format_torrent_list(torrents: list[dict[str, Any]]) -> str:
    return "\n".join(
        f"{i}. {t['name']} ({format_bytes_decimal(t.get('size') or 0)})"
        for i, t in enumerate(torrents, 1)
    )


class TorrentCleanupWorkflow(Workflow):
    name = "torrents"

    def intents(self):
        return {
            "qb_delete_unregistered": self.start_all,
            "qb_delete_unregistered_tv": self.start_tv,
            "qb_delete_unregistered_movies": self.start_movies,
        }

    def callback_handlers(self):
        return {
            "qb_unreg_yes": self.on_yes,
            "qb_unreg_no": self.on_no,
        }

    async def start_all(self, cid: Any, result: ClassificationResult):
        await self.start(cid, "all")

    async def start_tv(self, cid: Any, result: ClassificationResult):
        await self.start(cid, "tv")

    async def start_movies(self, cid: Any, result: ClassificationResult):
        await self.start(cid, "movies")

    async def start(self, cid: Any, scope: str):
        cfg = self.ctx.section("qbittorrent")
        category = {"tv": cfg.get("tv_category"), "movies": cfg.get("movie_category")}.get(scope)
        try:
            torrents = await self.ctx.qbittorrent.find_unregistered(category=category)
        except Exception as e:
            logger.error("Failed to find unregistered torrents: %s", e)
            await self.send(cid, "Unable to query qBittorrent. Check configuration and connectivity.")
            return

        if not torrents:
            await self.send(cid, "No unregistered torrents found.")
            return

        total_size = sum(t.get("size") or 0 for t in torrents)
        lines = [
            f"⚠️ *Unregistered torrents detected ({SCOPE_LABELS.get(scope, 'All')})*",
            "",
            format_torrent_list(torrents[:MAX_LINES]),
        ]
        overflow = len(torrents) - MAX_LINES
        if overflow > 0:
            lines += ["", f"…and {overflow} more"]
        lines += ["", "Delete these torrents (and their files)?", f"Total size: {format_bytes_decimal(total_size)}"]

        state = TorrentCleanupPending(scope=scope, torrents=torrents, total_size=total_size)
        state.message_id = await self.send(cid, "\n".join(lines), keyboard=CONFIRM_KEYBOARD, markdown=True)
        await self.ctx.store.replace(cid, state)

    async def on_yes(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, TorrentCleanupPending):
            return "No active request."
        self.ctx.store.clear(cid)
        await self.typing(cid)
        try:
            deleted = await self.ctx.qbittorrent.delete_torrents([t["hash"] for t in state.torrents], delete_files=True)
        except Exception as e:
            logger.error("Failed to delete unregistered torrents: %s", e)
            await self.send(cid, "Could not delete unregistered torrents. Check qBittorrent connectivity.")
            return None
        await self.edit(
            cid, state.message_id or message_id,
            f"✅ Deleted {deleted} unregistered torrent(s).\nApprox freed: {format_bytes_decimal(state.total_size)}",
            keyboard=[], markdown=True,
        )
        return None

    async def on_no(self, cid: Any, data: CallbackData, message_id: int | None):
        self.ctx.store.clear(cid)
        await self.edit(cid, message_id, "❌ Torrent cleanup cancelled.", keyboard=[])
        return None
