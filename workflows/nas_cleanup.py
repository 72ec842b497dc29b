"""
Concierge NAS Workflows

Recycle-bin cleanup (summarize every @Recycle directory under the share
roots, then clear all of them or a picked one) and the storage report.
"""

import logging
from typing import Any

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult
from core.pending import NasEmptyPending
from tools.format import format_bytes, format_bytes_decimal
from workflows.base import Workflow

logger = logging.getLogger("concierge.workflows.nas")

BAR_CELLS = 10

PRIMARY_KEYBOARD: Keyboard = [
    [Button("🧹 Clear all", "nas_clear_all")],
    [Button("🗂 Pick a bin", "nas_clear_pick")],
    [Button("❌ Cancel", "nas_clear_cancel")],
]


def selection_keyboard(bins: list[dict[str, Any]]) -> Keyboard:
    rows = [[Button(b["share"], f"nas_clear_select|{i}")] for i, b in enumerate(bins)]
    rows.append([Button("⬅️ Back", "nas_clear_pick_cancel")])
    return rows


def usage_bar(used_percent: float) -> str:
    filled = round(max(0, min(100, used_percent)) / 100 * BAR_CELLS)
    return "█" * filled + "░" * (BAR_CELLS - filled)


def summary_text(bins: list[dict[str, Any]]) -> str:
    total_bytes = sum(b["summary"].total_bytes for b in bins)
    total_files = sum(b["summary"].total_files for b in bins)
    lines = [
        "🗑 *NAS Recycle Bins*",
        f"Detected bins: {len(bins)}",
        f"Total files: {total_files}",
        f"Approximate size: *{format_bytes(total_bytes)}*",
        "",
    ]
    for i, b in enumerate(bins, 1):
        summary = b["summary"]
        lines.append(f"{i}. *{b['share']}*")
        lines.append(f"   Path: `{b['recycle_path']}`")
        lines.append(f"   Entries: {summary.entry_count} ({summary.total_files} files)")
        lines.append(f"   Size: *{format_bytes(summary.total_bytes)}*")
        examples = [f"{e.name} ({format_bytes(e.size_bytes)})" for e in summary.preview[:3]]
        if examples:
            lines.append(f"   Examples: {', '.join(examples)}")
        lines.append("")
    lines.append("Clear everything, pick a specific bin, or cancel. Deletions cannot be undone.")
    return "\n".join(lines)


class NasWorkflow(Workflow):
    name = "nas"

    def intents(self):
        return {
            "nas_empty_recycle_bin": self.start_cleanup,
            "nas_check_free_space": self.storage_report,
        }

    def callback_handlers(self):
        return {
            "nas_clear_all": self.on_clear_all,
            "nas_clear_pick": self.on_pick,
            "nas_clear_select": self.on_select,
            "nas_clear_pick_cancel": self.on_pick_cancel,
            "nas_clear_cancel": self.on_cancel,
        }

    # -------------------------------------------------------------------
    # Recycle-bin cleanup
    # -------------------------------------------------------------------

    async def start_cleanup(self, cid: Any, result: ClassificationResult):
        nas = self.ctx.nas
        if nas is None or not nas.is_configured:
            await self.send(
                cid,
                "NAS recycle-bin paths are not configured. Set NAS_SHARE_ROOTS (comma-separated) in your environment.",
            )
            return

        progress_id = None
        try:
            found = await nas.discover_bins()
            if not found:
                await self.send(cid, "No recycle-bin directories were found under the configured NAS share roots.")
                return

            progress_id = await self.send(cid, "Inspecting NAS recycle bins…")
            bins = []
            for i, recycle_bin in enumerate(found, 1):
                if progress_id is not None:
                    try:
                        await self.ctx.transport.edit(
                            cid, progress_id,
                            f"Inspecting NAS recycle bins… ({i}/{len(found)})\n{recycle_bin.share}",
                        )
                    except Exception as e:
                        logger.debug("Progress edit failed: %s", e)
                summary = await nas.summarize_bin(recycle_bin.recycle_path)
                logger.info(
                    "Recycle bin %s: %d bytes, %d files",
                    recycle_bin.recycle_path, summary.total_bytes, summary.total_files,
                )
                bins.append(dict(recycle_bin.to_dict(), summary=summary))
        except Exception as e:
            logger.error("Failed to inspect recycle bins: %s", e)
            await self.delete(cid, progress_id)
            await self.send(cid, "Unable to read recycle-bin contents. Check NAS connectivity and permissions.")
            return

        await self.delete(cid, progress_id)
        if all(b["summary"].entry_count == 0 for b in bins):
            await self.send(cid, "All recycle bins are already empty.")
            return

        state = NasEmptyPending(bins=bins)
        state.message_id = await self.send(cid, summary_text(bins), keyboard=PRIMARY_KEYBOARD, markdown=True)
        await self.ctx.store.replace(cid, state)

    async def _close_selection(self, cid: Any, state: NasEmptyPending):
        if state.selection_message_id is not None:
            await self.delete(cid, state.selection_message_id)
            state.selection_message_id = None

    async def on_clear_all(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, NasEmptyPending):
            return "No active request."
        self.ctx.store.clear(cid)
        await self._close_selection(cid, state)
        target = state.message_id or message_id
        await self.edit(cid, target, "🧼 Clearing all NAS recycle bins… please wait.", keyboard=[], markdown=True)
        await self.typing(cid)

        freed, removed, failed_entries, failed_bins = 0, 0, 0, 0
        for b in state.bins:
            try:
                outcome = await self.ctx.nas.empty_bin(b["recycle_path"])
            except Exception as e:
                failed_bins += 1
                logger.error("Failed to empty %s: %s", b["recycle_path"], e)
                continue
            removed += outcome.removed
            failed_entries += outcome.failed
            if not outcome.failed:
                freed += b["summary"].total_bytes

        clean = not (failed_entries or failed_bins)
        lines = [
            "✅ Cleared all NAS recycle bins!" if clean else "⚠️ NAS recycle bins partly cleared.",
            f"Entries removed: {removed}",
            f"Freed approximately *{format_bytes(freed)}*.",
        ]
        if failed_entries:
            lines.append(f"⚠️ {failed_entries} entries could not be deleted.")
        if failed_bins:
            lines.append(f"⚠️ {failed_bins} bin(s) could not be emptied.")
        await self.edit(cid, target, "\n".join(lines), keyboard=[], markdown=True)
        return None

    async def on_pick(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, NasEmptyPending):
            return "No active request."
        await self._close_selection(cid, state)
        state.selection_message_id = await self.send(
            cid, "Select which recycle bin to empty:", keyboard=selection_keyboard(state.bins),
        )
        return None

    async def on_select(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, NasEmptyPending):
            return "No active request."
        idx = data.int_param
        if idx is None or not 0 <= idx < len(state.bins):
            return "Invalid selection."
        chosen = state.bins[idx]
        self.ctx.store.clear(cid)
        await self._close_selection(cid, state)

        target = state.message_id or message_id
        await self.edit(
            cid, target, f"🧼 Clearing recycle bin for *{chosen['share']}*… please wait.",
            keyboard=[], markdown=True,
        )
        await self.typing(cid)
        try:
            outcome = await self.ctx.nas.empty_bin(chosen["recycle_path"])
        except Exception as e:
            logger.error("Failed to empty %s: %s", chosen["recycle_path"], e)
            await self.edit(
                cid, target, f"❌ Could not empty the recycle bin for *{chosen['share']}*.",
                keyboard=[], markdown=True,
            )
            return None

        if outcome.failed:
            text = (
                f"⚠️ *{chosen['share']}* recycle bin partly emptied.\n"
                f"Entries removed: {outcome.removed}\n"
                f"⚠️ {outcome.failed} entries could not be deleted."
            )
        else:
            text = (
                f"✅ *{chosen['share']}* recycle bin emptied.\n"
                f"Entries removed: {outcome.removed}\n"
                f"Freed approximately *{format_bytes(chosen['summary'].total_bytes)}*."
            )
        await self.edit(cid, target, text, keyboard=[], markdown=True)
        return None

    async def on_pick_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        if not isinstance(state, NasEmptyPending):
            return "No active request."
        await self._close_selection(cid, state)
        return "Back."

    async def on_cancel(self, cid: Any, data: CallbackData, message_id: int | None):
        state = self.ctx.store.get(cid)
        self.ctx.store.clear(cid)
        if isinstance(state, NasEmptyPending):
            await self._close_selection(cid, state)
        await self.edit(cid, message_id, "❌ Recycle-bin cleanup cancelled.", keyboard=[])
        return None

    # -------------------------------------------------------------------
    # Storage report
    # -------------------------------------------------------------------

    async def storage_report(self, cid: Any, result: ClassificationResult):
        nas = self.ctx.nas
        if nas is None or not nas.is_configured:
            await self.send(cid, "NAS paths are not configured. Set NAS_SHARE_ROOTS (comma-separated).")
            return
        try:
            statuses = await nas.storage_status()
        except Exception as e:
            logger.error("Failed to fetch free space: %s", e)
            await self.send(cid, "Unable to check NAS free space. Verify SSH configuration and permissions.")
            return
        if not statuses:
            await self.send(cid, "Could not read NAS storage info.")
            return

        lines = ["💽 *NAS Storage*"]
        for s in statuses:
            total, used = s.total_bytes, s.used_bytes
            free = max(0, total - used) if total > 0 else s.available_bytes
            pct = round(used / total * 100) if total > 0 else round(s.used_percent)
            pct = max(0, min(100, pct))
            lines.append(f"• `{s.path or s.mount or '(unknown)'}`")
            lines.append(
                f"  {usage_bar(pct)} {pct}% used — {format_bytes_decimal(used)} / "
                f"{format_bytes_decimal(total)} (free: {format_bytes_decimal(free)})"
            )
        await self.send(cid, "\n".join(lines), markdown=True)
