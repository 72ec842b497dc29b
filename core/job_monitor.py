"""
Concierge Job Monitor

Follows a Sonarr EpisodeSearch after the chat turn that started it has
ended: waits for the command to finish, then for a new episode file to
appear, retrying the search a bounded number of times and editing the
original chat message with progress and the final outcome.

Each monitor is an asyncio task registered under (conversation id,
episode id). Starting a monitor for a key that already has one cancels
the old monitor first. Cancellation is a flag the monitor checks before
every backend call and chat edit, so a cancelled monitor goes quiet
after at most one in-flight poll.

Usage:
    from core.job_monitor import MonitorRegistry, MonitorSettings

    registry = MonitorRegistry(sonarr, transport, MonitorSettings())
    registry.start(
        conversation_id=chat_id, message_id=msg_id, episode_id=123,
        command_id=cmd["id"], previous_file_id=old_file_id,
        series_title="The Block", episode_label="S19E4",
    )
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from core.conversation_store import InMemoryStore
from tools.format import format_bytes

logger = logging.getLogger("concierge.job_monitor")

TERMINAL_STATES = ("completed", "failed", "aborted")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class MonitorSettings:
    """Polling cadence and limits (seconds)."""
    command_poll_interval: float = 5.0
    command_timeout: float = 600.0
    artifact_poll_interval: float = 10.0
    artifact_timeout: float = 300.0
    max_attempts: int = 3

    @classmethod
    def from_config(cls, section) -> "MonitorSettings":
        return cls(
            command_poll_interval=float(section.command_poll_interval),
            command_timeout=float(section.command_timeout),
            artifact_poll_interval=float(section.artifact_poll_interval),
            artifact_timeout=float(section.artifact_timeout),
            max_attempts=int(section.max_attempts),
        )


@dataclass
class MonitorHandle:
    """Identity and progress of one monitor.

    Attributes:
        conversation_id: Chat the progress messages go to.
        target_id: Sonarr episode id being redownloaded.
        command_id: Current Sonarr command id (changes on retry).
        attempt: 1-based attempt number.
        max_attempts: Attempts allowed before giving up.
        cancelled: Set when superseded or cancelled.
    """
    conversation_id: Any
    target_id: int
    command_id: int | None = None
    attempt: int = 1
    max_attempts: int = 3
    cancelled: bool = False

    @property
    def key(self) -> tuple[Any, int]:
        return (self.conversation_id, self.target_id)


@dataclass
class EpisodeFile:
    """The file found after a successful search."""
    file_id: int
    size: int | None = None
    quality: str = "unknown quality"


# ---------------------------------------------------------------------------
# RedownloadMonitor
# ---------------------------------------------------------------------------

class RedownloadMonitor:
    """Drives one redownload to success or terminal failure.

    Args:
        handle: Identity and attempt counters.
        sonarr: Client with get_command, get_episode and run_episode_search.
        transport: Chat transport used to edit message_id.
        message_id: The message that shows progress.
        previous_file_id: Episode file id before the redownload; a file
            with the same id does not count as success.
        series_title: Used in progress messages.
        episode_label: e.g. "S1E4".
        settings: Polling cadence and limits.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        handle: MonitorHandle,
        sonarr,
        transport,
        message_id: int | None,
        previous_file_id: int | None = None,
        series_title: str = "Episode",
        episode_label: str = "",
        settings: MonitorSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        backend: InMemoryStore | None = None,
    ):
        self.handle = handle
        self._sonarr = sonarr
        self._transport = transport
        self.message_id = message_id
        self.previous_file_id = previous_file_id or 0
        self.series_title = series_title or "Episode"
        self.episode_label = episode_label or ""
        self.settings = settings or MonitorSettings()
        self._sleep = sleep
        self._clock = clock
        self.outcome: str | None = None

    @property
    def label(self) -> str:
        return f"{self.series_title} {self.episode_label}".strip()

    @property
    def cancelled(self) -> bool:
        return self.handle.cancelled

    def cancel(self, reason: str = "cancelled"):
        if not self.handle.cancelled:
            self.handle.cancelled = True
            logger.info("Monitor for %s cancelled (%s)", self.label, reason)

    # -------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------

    async def run(self):
        """Run to completion. Never raises except for task cancellation."""
        if self.cancelled:
            return
        try:
            await self._loop()
        except asyncio.CancelledError:
            self.cancel("task cancelled")
            raise
        except Exception as e:
            logger.error("Monitor for %s crashed: %s", self.label, e, exc_info=True)
            self.outcome = "crashed"
            await self._edit(f"❌ {self.label}: monitoring failed ({e}).")

    async def _loop(self):
        while not self.cancelled:
            state = await self._wait_for_command()
            if self.cancelled:
                return

            if state == "completed":
                found = await self._wait_for_file()
                if self.cancelled:
                    return
                if found is not None:
                    await self._report_success(found)
                    return
                reason = "Sonarr finished but no new file appeared."
            elif state == "timeout":
                reason = "Sonarr command never completed."
            elif state in ("failed", "aborted"):
                reason = f'Sonarr reported "{state}".'
            else:
                reason = f"Unexpected Sonarr command state: {state or 'unknown'}."

            if not await self._retry(reason):
                return

    async def _wait_for_command(self) -> str:
        """Poll the command until it is terminal or the deadline passes."""
        if not self.handle.command_id:
            return "failed"
        deadline = self._clock() + self.settings.command_timeout
        while not self.cancelled and self._clock() < deadline:
            try:
                command = await self._sonarr.get_command(self.handle.command_id) or {}
                state = str(command.get("state") or command.get("status") or "").lower()
                if state in TERMINAL_STATES:
                    return state
            except Exception as e:
                logger.error("Failed to poll command %s: %s", self.handle.command_id, e)
            if self.cancelled:
                break
            await self._sleep(self.settings.command_poll_interval)
        return "timeout"

    async def _wait_for_file(self) -> EpisodeFile | None:
        """Poll the episode until a file other than the previous one shows up."""
        deadline = self._clock() + self.settings.artifact_timeout
        while not self.cancelled and self._clock() < deadline:
            try:
                episode = await self._sonarr.get_episode(self.handle.target_id) or {}
                file_id = episode.get("episodeFileId")
                if file_id and file_id != self.previous_file_id:
                    return EpisodeFile(
                        file_id=file_id,
                        size=(episode.get("episodeFile") or {}).get("size"),
                        quality=_quality_name(episode.get("episodeFile") or {}),
                    )
            except Exception as e:
                logger.error("Failed to load episode %s: %s", self.handle.target_id, e)
            if self.cancelled:
                break
            await self._sleep(self.settings.artifact_poll_interval)
        return None

    async def _retry(self, reason: str) -> bool:
        """Start another search if attempts remain. Returns True to keep going."""
        if self.cancelled:
            return False
        if self.handle.attempt >= self.handle.max_attempts:
            await self._report_failure(reason)
            return False

        next_attempt = self.handle.attempt + 1
        await self._edit(
            f"⚠️ {self.label}: {reason} Retrying ({next_attempt}/{self.handle.max_attempts})…"
        )
        if self.cancelled:
            return False
        try:
            result = await self._sonarr.run_episode_search(self.handle.target_id) or {}
        except Exception as e:
            logger.error("Failed to restart search for %s: %s", self.label, e)
            await self._report_failure("Unable to restart the Sonarr search.")
            return False
        if not result.get("id"):
            await self._report_failure("Sonarr did not provide a command id for the retry.")
            return False

        self.handle.command_id = result["id"]
        self.handle.attempt = next_attempt
        logger.info("Retrying %s (attempt %d/%d)", self.label, next_attempt, self.handle.max_attempts)
        return True

    # -------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------

    async def _report_success(self, found: EpisodeFile):
        if self.cancelled:
            return
        self.previous_file_id = found.file_id
        self.outcome = "success"
        size = format_bytes(found.size) if found.size else "unknown size"
        await self._edit(f"✅ {self.label} redownloaded ({found.quality}, {size}).")

    async def _report_failure(self, reason: str):
        if self.cancelled:
            return
        self.outcome = "failed"
        logger.warning("Redownload of %s failed: %s", self.label, reason)
        await self._edit(f"❌ {self.label} redownload failed. {reason}")

    async def _edit(self, text: str):
        if self.cancelled or self.message_id is None:
            return
        try:
            await self._transport.edit(self.handle.conversation_id, self.message_id, text, keyboard=[])
        except Exception as e:
            logger.error("Failed to update progress message: %s", e)


def _quality_name(episode_file: dict[str, Any]) -> str:
    quality = episode_file.get("quality") or {}
    inner = quality.get("quality") or {}
    return inner.get("name") or quality.get("name") or "unknown quality"


# ---------------------------------------------------------------------------
# MonitorRegistry
# ---------------------------------------------------------------------------

@dataclass
class _Entry:
    monitor: RedownloadMonitor
    task: asyncio.Task = field(repr=False)


class MonitorRegistry:
    """At-most-one running monitor per (conversation id, episode id).

    Args:
        sonarr: Passed to every monitor.
        transport: Passed to every monitor.
        settings: Default MonitorSettings for new monitors.
        sleep: Injectable sleep for all monitors.
        clock: Injectable monotonic clock for all monitors.
        backend: Key → record table for running monitors. Defaults to
            an InMemoryStore.
    """

    def __init__(
        self,
        sonarr,
        transport,
        settings: MonitorSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        backend: InMemoryStore | None = None,
    ):
        self._sonarr = sonarr
        self._transport = transport
        self.settings = settings or MonitorSettings()
        self._sleep = sleep
        self._clock = clock
        self._entries = backend if backend is not None else InMemoryStore()

    def start(
        self,
        conversation_id: Any,
        message_id: int | None,
        episode_id: int,
        command_id: int | None,
        previous_file_id: int | None = None,
        series_title: str = "Episode",
        episode_label: str = "",
        settings: MonitorSettings | None = None,
    ) -> RedownloadMonitor:
        """Register and launch a monitor, superseding any existing one for the key."""
        settings = settings or self.settings
        handle = MonitorHandle(
            conversation_id=conversation_id,
            target_id=episode_id,
            command_id=command_id,
            max_attempts=settings.max_attempts,
        )
        self.cancel(conversation_id, episode_id, reason="superseded")

        monitor = RedownloadMonitor(
            handle, self._sonarr, self._transport, message_id,
            previous_file_id=previous_file_id,
            series_title=series_title,
            episode_label=episode_label,
            settings=settings,
            sleep=self._sleep,
            clock=self._clock,
        )
        task = asyncio.create_task(monitor.run(), name=f"redownload-{conversation_id}-{episode_id}")
        entry = _Entry(monitor=monitor, task=task)
        self._entries.set(handle.key, entry)
        task.add_done_callback(lambda _t, key=handle.key, e=entry: self._finished(key, e))
        logger.info("Monitoring %s (command %s)", monitor.label, command_id)
        return monitor

    def _finished(self, key: tuple[Any, int], entry: _Entry):
        if self._entries.get(key) is entry:
            self._entries.delete(key)

    def cancel(self, conversation_id: Any, episode_id: int, reason: str = "cancelled") -> bool:
        """Cancel and evict the monitor for a key. Returns False if there was none."""
        entry = self._entries.delete((conversation_id, episode_id))
        if entry is None:
            return False
        entry.monitor.cancel(reason)
        return True

    def get(self, conversation_id: Any, episode_id: int) -> RedownloadMonitor | None:
        entry = self._entries.get((conversation_id, episode_id))
        return entry.monitor if entry else None

    def task_for(self, conversation_id: Any, episode_id: int) -> asyncio.Task | None:
        entry = self._entries.get((conversation_id, episode_id))
        return entry.task if entry else None

    async def cancel_all(self):
        """Cancel every monitor and wait for their tasks to wind down."""
        entries = [e for e in (self._entries.delete(k) for k in self._entries.keys()) if e is not None]
        for entry in entries:
            entry.monitor.cancel("shutdown")
            entry.task.cancel()
        if entries:
            await asyncio.gather(*(e.task for e in entries), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._entries)
