"""Tests for the daily job scheduler."""

import unittest
from datetime import datetime

from core.scheduler import DailyJob, Scheduler, compute_next_run, parse_run_time


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestRunTime(unittest.TestCase):

    def test_parse_run_time(self):
        self.assertEqual(parse_run_time("03:30"), (3, 30))
        self.assertEqual(parse_run_time("25:00"), (0, 0))
        self.assertEqual(parse_run_time("noon"), (0, 0))
        self.assertEqual(parse_run_time(None), (0, 0))

    def test_next_run_is_strictly_after_now(self):
        now = datetime(2026, 3, 1, 10, 15)
        self.assertEqual(compute_next_run("11:00", now), datetime(2026, 3, 1, 11, 0))
        self.assertEqual(compute_next_run("10:15", now), datetime(2026, 3, 2, 10, 15))
        self.assertEqual(compute_next_run("00:00", now), datetime(2026, 3, 2, 0, 0))


class TestScheduler(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = _Clock(datetime(2026, 3, 1, 23, 59))
        self.scheduler = Scheduler(check_interval=1, now=self.clock)
        self.runs = 0

    async def _action(self):
        self.runs += 1

    async def test_job_fires_once_per_day(self):
        job = self.scheduler.add(DailyJob("sonarr-cache", "00:00", self._action))
        self.assertEqual(job.next_run_at, datetime(2026, 3, 2, 0, 0))

        self.assertEqual(await self.scheduler.run_due(), [])
        self.clock.now = datetime(2026, 3, 2, 0, 0, 30)
        self.assertEqual(await self.scheduler.run_due(), [job])
        self.assertEqual(await self.scheduler.run_due(), [])

        self.assertEqual(self.runs, 1)
        self.assertEqual(job.run_count, 1)
        self.assertEqual(job.last_run_at, datetime(2026, 3, 2, 0, 0, 30))
        self.assertEqual(job.next_run_at, datetime(2026, 3, 3, 0, 0))

    async def test_failing_job_is_rescheduled(self):
        async def broken():
            raise RuntimeError("sonarr down")

        job = self.scheduler.add(DailyJob("broken", "00:00", broken))
        self.clock.now = datetime(2026, 3, 2, 0, 1)
        self.assertEqual(await self.scheduler.run_due(), [job])
        self.assertEqual(job.next_run_at, datetime(2026, 3, 3, 0, 0))

    def test_jobs_is_a_copy(self):
        self.scheduler.add(DailyJob("a", "01:00", self._action))
        self.scheduler.jobs.clear()
        self.assertEqual(len(self.scheduler.jobs), 1)


if __name__ == "__main__":
    unittest.main()
