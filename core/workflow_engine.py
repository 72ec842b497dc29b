"""
Concierge Workflow Engine

Routes classified messages to workflow entry points and inline-button
presses to callback handlers. The routing tables are merged from every
workflow's intents() and callback_handlers(); a duplicate key is a
programming error and fails at construction.

Usage:
    from core.workflow_engine import WorkflowEngine, build_workflows

    engine = WorkflowEngine(ctx, build_workflows(ctx))
    await engine.route_intent(chat_id, result)
    toast = await engine.handle_callback(chat_id, "redl_yes", message_id)
"""

import logging
import re
from typing import Any

from core.callbacks import CallbackData
from core.classifier import ClassificationResult
from workflows.add_media import AddMediaWorkflow
from workflows.base import CallbackHandler, IntentEntry, Workflow, WorkflowContext
from workflows.fully_watched import FullyWatchedWorkflow
from workflows.have_media import HaveMediaWorkflow
from workflows.movie_series import MovieSeriesWorkflow
from workflows.nas_cleanup import NasWorkflow
from workflows.optimize import OptimizeWorkflow
from workflows.rankings import RankingsWorkflow
from workflows.redownload import RedownloadWorkflow
from workflows.tidy import TidyWorkflow
from workflows.torrents import TorrentCleanupWorkflow

logger = logging.getLogger("concierge.engine")

UNKNOWN_TEXT = "Sorry, I didn't understand that."
ERROR_TEXT = "Something went wrong while handling that. Please try again."

HELP_TEXT = "\n".join([
    "Here's what I can do:",
    "",
    "📺 TV",
    "• redownload a broken episode (\"redo the latest housewives\")",
    "• tidy a watched season (\"tidy up the block season 3\")",
    "• list fully watched seasons",
    "• check whether we have a show (\"do we have luther?\")",
    "",
    "🎬 Movies",
    "• add a show or movie (\"add severance\")",
    "• add a whole movie series (\"get all the mission impossible movies\")",
    "",
    "📊 Library",
    "• largest or top-rated shows and movies",
    "• optimize big items to a smaller quality profile",
    "• list Sonarr or Radarr quality profiles",
    "",
    "🧹 Housekeeping",
    "• empty the NAS recycle bins",
    "• check NAS free space",
    "• delete unregistered torrents",
])

_COLLECTION_PHRASING = re.compile(r"\b(movies|films|collection|franchise|trilogy|series)\b", re.IGNORECASE)


def is_collection_request(reference: str) -> bool:
    """True when an add-movie phrase asks for a whole franchise."""
    return bool(_COLLECTION_PHRASING.search(reference or ""))


def build_workflows(ctx: WorkflowContext) -> list[Workflow]:
    add_media = AddMediaWorkflow(ctx)
    return [
        RedownloadWorkflow(ctx),
        TidyWorkflow(ctx),
        FullyWatchedWorkflow(ctx),
        add_media,
        MovieSeriesWorkflow(ctx),
        HaveMediaWorkflow(ctx, add_media=add_media),
        OptimizeWorkflow(ctx),
        NasWorkflow(ctx),
        TorrentCleanupWorkflow(ctx),
        RankingsWorkflow(ctx),
    ]


class WorkflowEngine:
    """Dispatches intents and callbacks.

    Args:
        ctx: The shared WorkflowContext (transport is used for the
            static replies and error notices).
        workflows: Workflow instances to merge routing tables from.
    """

    def __init__(self, ctx: WorkflowContext, workflows: list[Workflow]):
        self.ctx = ctx
        self.workflows = list(workflows)
        self._intents: dict[str, IntentEntry] = {}
        self._callbacks: dict[str, CallbackHandler] = {}

        for workflow in self.workflows:
            for intent, entry in workflow.intents().items():
                if intent in self._intents:
                    raise ValueError(f"Intent {intent!r} registered twice ({workflow.name})")
                self._intents[intent] = entry
            for action, handler in workflow.callback_handlers().items():
                if action in self._callbacks:
                    raise ValueError(f"Callback {action!r} registered twice ({workflow.name})")
                self._callbacks[action] = handler

        logger.info(
            "Workflow engine ready: %d workflows, %d intents, %d callbacks",
            len(self.workflows), len(self._intents), len(self._callbacks),
        )

    @property
    def intents(self) -> list[str]:
        return sorted(self._intents)

    @property
    def callback_actions(self) -> list[str]:
        return sorted(self._callbacks)

    # -------------------------------------------------------------------
    # Intents
    # -------------------------------------------------------------------

    async def route_intent(self, cid: Any, result: ClassificationResult):
        """Run the entry for result.intent. Never raises."""
        intent = result.intent
        if intent == "add_movie" and is_collection_request(result.reference):
            logger.info("add_movie %r looks like a collection request", result.reference)
            intent = "download_movie_series"

        try:
            if intent == "help":
                await self.ctx.transport.send(cid, HELP_TEXT)
                return
            entry = self._intents.get(intent)
            if entry is None:
                logger.info("No workflow for intent %r", intent)
                await self.ctx.transport.send(cid, UNKNOWN_TEXT)
                return
            logger.info("Conversation %s: %s (reference=%r)", cid, intent, result.reference)
            await entry(cid, result)
        except Exception as e:
            logger.error("Workflow for %s failed: %s", intent, e, exc_info=True)
            await self._notify_error(cid)

    # -------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------

    async def handle_callback(self, cid: Any, raw: str, message_id: int | None = None) -> str | None:
        """Run the handler for a button payload. Returns the toast text, never raises."""
        data = CallbackData.decode(raw)
        handler = self._callbacks.get(data.action)
        if handler is None:
            logger.warning("Unknown callback action %r", raw)
            return "Unknown action."
        try:
            return await handler(cid, data, message_id)
        except Exception as e:
            logger.error("Callback %s failed: %s", raw, e, exc_info=True)
            if self.ctx.store is not None:
                self.ctx.store.clear(cid)
            await self._notify_error(cid)
            return "Something went wrong."

    async def _notify_error(self, cid: Any):
        try:
            await self.ctx.transport.send(cid, ERROR_TEXT)
        except Exception as e:
            logger.error("Could not send error notice to %s: %s", cid, e)
