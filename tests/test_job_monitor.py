"""Tests for the redownload monitor and its registry.

Time is simulated: the injected sleep advances the injected clock, so
timeouts are reached after a deterministic number of polls.
"""

import asyncio
import unittest

from core.conversation_store import InMemoryStore
from core.job_monitor import MonitorHandle, MonitorRegistry, MonitorSettings, RedownloadMonitor
from tests.fakes import _FakeTransport


class _FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps += 1
        self.now += seconds
        await asyncio.sleep(0)


class _FakeMonitorSonarr:
    """Scripted command states and episode snapshots (the last one repeats)."""

    def __init__(self, commands=None, episodes=None, next_command_id=200):
        self.commands = {k: list(v) for k, v in (commands or {}).items()}
        self.episodes = list(episodes or [{"episodeFileId": 5}])
        self.searches: list[int] = []
        self._next_command_id = next_command_id

    async def get_command(self, command_id):
        states = self.commands.get(command_id) or ["queued"]
        state = states.pop(0) if len(states) > 1 else states[0]
        return {"id": command_id, "state": state}

    async def get_episode(self, episode_id):
        return self.episodes.pop(0) if len(self.episodes) > 1 else self.episodes[0]

    async def run_episode_search(self, episode_id):
        self.searches.append(episode_id)
        self._next_command_id += 1
        return {"id": self._next_command_id, "status": "started"}


def _settings(**overrides) -> MonitorSettings:
    values = dict(
        command_poll_interval=1.0,
        command_timeout=10.0,
        artifact_poll_interval=1.0,
        artifact_timeout=5.0,
        max_attempts=3,
    )
    values.update(overrides)
    return MonitorSettings(**values)


class TestRedownloadMonitor(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.time = _FakeTime()
        self.transport = _FakeTransport()

    def _monitor(self, sonarr, settings, command_id=100, previous_file_id=5):
        handle = MonitorHandle(
            conversation_id=1, target_id=42, command_id=command_id, max_attempts=settings.max_attempts,
        )
        return RedownloadMonitor(
            handle, sonarr, self.transport, message_id=900,
            previous_file_id=previous_file_id,
            series_title="The Block", episode_label="S19E4",
            settings=settings, sleep=self.time.sleep, clock=self.time.clock,
        )

    async def test_success_after_new_file(self):
        sonarr = _FakeMonitorSonarr(
            commands={100: ["queued", "started", "completed"]},
            episodes=[
                {"episodeFileId": 5},
                {"episodeFileId": 9, "episodeFile": {"size": 1073741824, "quality": {"quality": {"name": "WEBDL-1080p"}}}},
            ],
        )
        monitor = self._monitor(sonarr, _settings())
        await monitor.run()
        self.assertEqual(monitor.outcome, "success")
        self.assertEqual(sonarr.searches, [])
        self.assertIn("✅ The Block S19E4 redownloaded (WEBDL-1080p", self.transport.last_text)
        self.assertEqual(self.transport.edits[-1]["keyboard"], [])

    async def test_unchanged_file_is_not_success(self):
        sonarr = _FakeMonitorSonarr(commands={100: ["completed"]}, episodes=[{"episodeFileId": 5}])
        monitor = self._monitor(sonarr, _settings(max_attempts=1))
        await monitor.run()
        self.assertEqual(monitor.outcome, "failed")
        self.assertIn("no new file appeared", self.transport.last_text)
        self.assertNotIn("✅", self.transport.all_text())

    async def test_failed_command_is_retried(self):
        sonarr = _FakeMonitorSonarr(
            commands={100: ["failed"], 201: ["completed"]},
            episodes=[{"episodeFileId": 11}],
        )
        monitor = self._monitor(sonarr, _settings())
        await monitor.run()
        self.assertEqual(sonarr.searches, [42])
        self.assertEqual(monitor.handle.attempt, 2)
        self.assertEqual(monitor.handle.command_id, 201)
        self.assertEqual(monitor.outcome, "success")
        self.assertIn("Retrying (2/3)", self.transport.edits[0]["text"])

    async def test_timeout_with_single_attempt_never_retries(self):
        sonarr = _FakeMonitorSonarr(commands={100: ["started"]})
        settings = _settings(command_poll_interval=0.001, command_timeout=0.005, max_attempts=1)
        monitor = self._monitor(sonarr, settings)
        await monitor.run()
        self.assertEqual(monitor.outcome, "failed")
        self.assertEqual(sonarr.searches, [])
        self.assertIn("never completed", self.transport.last_text)
        self.assertGreaterEqual(self.time.now, 0.005 - 1e-9)
        self.assertLess(self.time.now, 0.0075)

    async def test_attempts_are_bounded(self):
        sonarr = _FakeMonitorSonarr(commands={})
        monitor = self._monitor(sonarr, _settings(max_attempts=2))
        await monitor.run()
        self.assertEqual(len(sonarr.searches), 1)
        self.assertEqual(monitor.handle.attempt, 2)
        self.assertEqual(monitor.outcome, "failed")
        self.assertEqual(self.time.now, 20.0)

    async def test_missing_command_id_fails_after_attempts(self):
        sonarr = _FakeMonitorSonarr()
        monitor = self._monitor(sonarr, _settings(max_attempts=1), command_id=None)
        await monitor.run()
        self.assertEqual(monitor.outcome, "failed")

    async def test_cancelled_monitor_stays_quiet(self):
        sonarr = _FakeMonitorSonarr(commands={100: ["completed"]}, episodes=[{"episodeFileId": 9}])
        monitor = self._monitor(sonarr, _settings())
        monitor.cancel()
        monitor.cancel()
        await monitor.run()
        self.assertTrue(monitor.cancelled)
        self.assertIsNone(monitor.outcome)
        self.assertEqual(self.transport.edits, [])


class TestMonitorRegistry(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.time = _FakeTime()
        self.transport = _FakeTransport()
        self.sonarr = _FakeMonitorSonarr(commands={})
        self.registry = MonitorRegistry(
            self.sonarr, self.transport, settings=_settings(),
            sleep=self.time.sleep, clock=self.time.clock,
        )

    async def test_second_monitor_supersedes_first(self):
        first = self.registry.start(1, 900, episode_id=42, command_id=100)
        second = self.registry.start(1, 901, episode_id=42, command_id=101)
        self.assertTrue(first.cancelled)
        self.assertFalse(second.cancelled)
        self.assertEqual(len(self.registry), 1)
        self.assertIs(self.registry.get(1, 42), second)
        await self.registry.cancel_all()
        self.assertEqual(len(self.registry), 0)

    async def test_different_episodes_run_side_by_side(self):
        self.registry.start(1, 900, episode_id=42, command_id=100)
        self.registry.start(1, 901, episode_id=43, command_id=101)
        self.assertEqual(len(self.registry), 2)
        await self.registry.cancel_all()

    async def test_finished_monitor_is_evicted(self):
        sonarr = _FakeMonitorSonarr(commands={100: ["completed"]}, episodes=[{"episodeFileId": 9}])
        registry = MonitorRegistry(sonarr, self.transport, settings=_settings(),
                                   sleep=self.time.sleep, clock=self.time.clock)
        monitor = registry.start(1, 900, episode_id=42, command_id=100, previous_file_id=5)
        await registry.task_for(1, 42)
        await asyncio.sleep(0)
        self.assertEqual(monitor.outcome, "success")
        self.assertEqual(len(registry), 0)

    async def test_monitors_live_in_injected_backend(self):
        backend = InMemoryStore()
        registry = MonitorRegistry(self.sonarr, self.transport, settings=_settings(),
                                   sleep=self.time.sleep, clock=self.time.clock, backend=backend)
        first = registry.start(1, 900, episode_id=42, command_id=100)
        self.assertIs(backend.get((1, 42)).monitor, first)
        second = registry.start(1, 901, episode_id=42, command_id=101)
        self.assertIs(backend.get((1, 42)).monitor, second)
        self.assertEqual(backend.keys(), [(1, 42)])
        await registry.cancel_all()
        self.assertEqual(len(backend), 0)

    async def test_cancel_absent_is_noop(self):
        self.assertFalse(self.registry.cancel(1, 42))
        self.registry.start(1, 900, episode_id=42, command_id=100)
        self.assertTrue(self.registry.cancel(1, 42))
        self.assertFalse(self.registry.cancel(1, 42))
        await self.registry.cancel_all()

    def test_settings_from_config(self):
        class _Section:
            command_poll_interval = "2"
            command_timeout = 60
            artifact_poll_interval = 3
            artifact_timeout = 30
            max_attempts = "4"

        settings = MonitorSettings.from_config(_Section())
        self.assertEqual(settings.command_poll_interval, 2.0)
        self.assertEqual(settings.max_attempts, 4)


if __name__ == "__main__":
    unittest.main()
