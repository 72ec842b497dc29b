"""
Concierge Workflow Base

Shared wiring for the intent workflows. A workflow exposes two tables:

  intents()            intent name → async entry(conversation_id, result)
  callback_handlers()  callback action → async handler(conversation_id,
                       CallbackData, message_id) returning an optional
                       toast text for the button press

The WorkflowEngine merges these tables from every workflow.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from core.callbacks import Button, CallbackData, Keyboard
from core.classifier import ClassificationResult

logger = logging.getLogger("concierge.workflows")

IntentEntry = Callable[[Any, ClassificationResult], Awaitable[None]]
CallbackHandler = Callable[[Any, CallbackData, int | None], Awaitable[str | None]]


@dataclass
class WorkflowContext:
    """Collaborators shared by every workflow.

    Attributes:
        transport: Chat transport (send/edit/delete/...).
        store: ConversationStore holding pending states.
        cache: EntityCache of Sonarr series.
        resolver: ReferenceResolver for ambiguous phrases.
        monitors: MonitorRegistry for redownload tracking.
        sonarr, radarr, plex, tmdb, qbittorrent, nas: Backend clients.
        settings: Plain-dict configuration sections (optimize, rankings,
            sonarr, radarr, qbittorrent ...).
    """
    transport: Any
    store: Any
    cache: Any = None
    resolver: Any = None
    monitors: Any = None
    sonarr: Any = None
    radarr: Any = None
    plex: Any = None
    tmdb: Any = None
    qbittorrent: Any = None
    nas: Any = None
    settings: dict[str, dict[str, Any]] = field(default_factory=dict)

    def section(self, name: str) -> dict[str, Any]:
        return self.settings.get(name) or {}


class Workflow:
    """Base class: holds the context and a few chat helpers."""

    name = "workflow"

    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx

    def intents(self) -> dict[str, IntentEntry]:
        return {}

    def callback_handlers(self) -> dict[str, CallbackHandler]:
        return {}

    # -------------------------------------------------------------------
    # Chat helpers
    # -------------------------------------------------------------------

    async def send(self, cid: Any, text: str, keyboard: Keyboard | None = None, markdown: bool = False) -> int | None:
        return await self.ctx.transport.send(cid, text, keyboard=keyboard, markdown=markdown)

    async def edit(
        self, cid: Any, message_id: int | None, text: str,
        keyboard: Keyboard | None = None, markdown: bool = False,
    ):
        """Edit a message in place, or send a new one when there is no id."""
        if message_id is None:
            await self.send(cid, text, keyboard=keyboard, markdown=markdown)
            return
        await self.ctx.transport.edit(cid, message_id, text, keyboard=keyboard, markdown=markdown)

    async def delete(self, cid: Any, message_id: int | None):
        if message_id is None:
            return
        try:
            await self.ctx.transport.delete(cid, message_id)
        except Exception as e:
            logger.debug("Could not delete message %s: %s", message_id, e)

    async def typing(self, cid: Any):
        try:
            await self.ctx.transport.typing(cid)
        except Exception as e:
            logger.debug("Typing indicator failed: %s", e)


def series_picker(series_list: list[dict[str, Any]], action: str, cancel_action: str, cancel_text: str = "❌ Cancel") -> Keyboard:
    """One button per series ("<action>|<id>") plus a cancel row."""
    rows = [[Button(s["title"], f"{action}|{s['id']}")] for s in series_list]
    rows.append([Button(cancel_text, cancel_action)])
    return rows


def parse_limit(reference: str, default: int, maximum: int) -> int:
    """First 1-2 digit number in the text, clamped to [1, maximum]."""
    match = re.search(r"(\d{1,2})", reference or "")
    if not match:
        return default
    return max(1, min(int(match.group(1)), maximum))
