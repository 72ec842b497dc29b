"""
Concierge Scheduler

Runs the daily Sonarr series cache refresh at a fixed local time
(default 00:00). The loop wakes every check_interval seconds, fires any
due job and computes the next occurrence.

Usage:
    from core.scheduler import DailyJob, Scheduler

    scheduler = Scheduler(check_interval=30)
    scheduler.add(DailyJob("sonarr-cache", "00:00", lambda: cache.refresh(scheduled=True)))
    await scheduler.run()   # background loop
    scheduler.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

logger = logging.getLogger("concierge.scheduler")


def parse_run_time(value: str) -> tuple[int, int]:
    """"HH:MM" -> (hour, minute); anything unparsable means midnight."""
    try:
        hour, minute = map(int, str(value).split(":"))
    except (ValueError, AttributeError):
        logger.warning("Invalid run time %r, using 00:00", value)
        return 0, 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        logger.warning("Run time %r out of range, using 00:00", value)
        return 0, 0
    return hour, minute


def compute_next_run(run_at_time: str, now: datetime) -> datetime:
    """Next occurrence of run_at_time strictly after now (local time)."""
    hour, minute = parse_run_time(run_at_time)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


@dataclass
class DailyJob:
    """A coroutine fired once per day.

    Attributes:
        name: Label for logs.
        run_at_time: Local "HH:MM".
        action: Zero-argument coroutine function.
        next_run_at: When the job next fires (set by the scheduler).
        last_run_at: When it last fired.
        run_count: How many times it has fired.
    """
    name: str
    run_at_time: str
    action: Callable[[], Awaitable[Any]]
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    run_count: int = field(default=0)


class Scheduler:
    """Fires DailyJobs from a background loop.

    Args:
        check_interval: Seconds between due checks.
        now: Clock returning a naive local datetime (tests).
    """

    def __init__(self, check_interval: float = 30, now: Callable[[], datetime] = datetime.now):
        self._check_interval = check_interval
        self._now = now
        self._jobs: list[DailyJob] = []
        self._running = False

    def add(self, job: DailyJob) -> DailyJob:
        job.next_run_at = compute_next_run(job.run_at_time, self._now())
        self._jobs.append(job)
        logger.info("Scheduled '%s' daily at %s (next %s)", job.name, job.run_at_time, job.next_run_at)
        return job

    @property
    def jobs(self) -> list[DailyJob]:
        return list(self._jobs)

    async def run_due(self) -> list[DailyJob]:
        """Fire every job whose next_run_at has passed. Returns the fired jobs."""
        now = self._now()
        fired = []
        for job in self._jobs:
            if job.next_run_at is None or job.next_run_at > now:
                continue
            job.run_count += 1
            job.last_run_at = now
            job.next_run_at = compute_next_run(job.run_at_time, now)
            logger.info("Job '%s' fired (run #%d, next %s)", job.name, job.run_count, job.next_run_at)
            try:
                await job.action()
            except Exception as e:
                logger.error("Job '%s' failed: %s", job.name, e)
            fired.append(job)
        return fired

    async def run(self):
        """Background loop: check for due jobs every check_interval seconds."""
        self._running = True
        logger.info("Scheduler started (check every %ss, %d job(s))", self._check_interval, len(self._jobs))
        while self._running:
            await asyncio.sleep(self._check_interval)
            try:
                await self.run_due()
            except Exception as e:
                logger.error("Scheduler tick error: %s", e)

    def stop(self):
        """Signal the background loop to exit."""
        self._running = False
        logger.info("Scheduler stopped")
