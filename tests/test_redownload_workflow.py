"""Tests for the redownload workflow (explicit and Continue Watching paths)."""

import unittest

from core.pending import RedownloadPending, RedownloadResolvedPending
from tests.fakes import _FakeMonitors, _FakePlex, _FakeSonarr, cb, make_cache, make_ctx, result
from workflows.redownload import RedownloadWorkflow

BLOCK = [
    {"id": 1, "title": "The Block (AU)"},
    {"id": 2, "title": "The Block (US)"},
]

EPISODES = {
    1: [
        {"id": 501, "seasonNumber": 3, "episodeNumber": 12, "episodeFileId": 88},
        {"id": 502, "seasonNumber": 3, "episodeNumber": 13, "episodeFileId": 0},
    ],
    2: [{"id": 601, "seasonNumber": 3, "episodeNumber": 12, "episodeFileId": 99}],
}

HOUSEWIVES = [
    {"title": "Real Housewives of Beverly Hills", "season_number": 13, "episode_number": 5, "episode_title": "Reunion"},
    {"title": "Real Housewives of Orange County", "season_number": 17, "episode_number": 2, "episode_title": "Tres Amigas"},
]


class TestRedownloadExplicit(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.sonarr = _FakeSonarr(BLOCK, EPISODES)
        self.monitors = _FakeMonitors()
        self.ctx = make_ctx(sonarr=self.sonarr, cache=make_cache(BLOCK), monitors=self.monitors)
        self.workflow = RedownloadWorkflow(self.ctx)
        self.transport = self.ctx.transport

    async def test_confirm_then_yes_starts_monitor(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block AU", season=3, episode=12))
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, RedownloadPending)
        self.assertEqual((state.episode_id, state.episode_file_id), (501, 88))
        self.assertIn("Found The Block (AU) — Season 3, Episode 12.", self.transport.sent[-1]["text"])

        toast = await self.workflow.on_yes(1, cb("redl_yes"), state.message_id)
        self.assertIsNone(toast)
        self.assertEqual(self.sonarr.deleted_files, [88])
        self.assertEqual(self.sonarr.searches, [501])
        self.assertEqual(self.transport.last_text, "🔁 Episode deleted and redownload started!")
        self.assertIsNone(self.ctx.store.get(1))
        started = self.monitors.started[0]
        self.assertEqual((started["episode_id"], started["command_id"], started["previous_file_id"]), (501, 77, 88))
        self.assertEqual(started["episode_label"], "S3E12")

    async def test_unknown_title(self):
        await self.workflow.start(1, result("redownload_tv", title="Luther", season=1, episode=1))
        self.assertEqual(self.transport.last_text, "No results for Luther")
        self.assertIsNone(self.ctx.store.get(1))

    async def test_missing_episode(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block AU", season=3, episode=99))
        self.assertEqual(
            self.transport.last_text, "Warning: Could not find episode S3E99 for The Block (AU)."
        )

    async def test_pick_different_show(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block", season=3, episode=12))
        state = self.ctx.store.get(1)
        keyboard = self.transport.sent[-1]["keyboard"]
        self.assertEqual(keyboard[-1][0].callback, "redl_pick")

        await self.workflow.on_pick(1, cb("redl_pick"), state.message_id)
        picker = self.transport.edits[-1]["keyboard"]
        self.assertEqual([row[0].callback for row in picker], ["redl_select|1", "redl_select|2", "redl_cancel"])

        await self.workflow.on_select(1, cb("redl_select|2"), state.message_id)
        self.assertEqual(state.series["id"], 2)
        self.assertEqual((state.episode_id, state.episode_file_id), (601, 99))
        self.assertIn("The Block (US)", self.transport.last_text)

    async def test_select_unknown_series(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block", season=3, episode=12))
        toast = await self.workflow.on_select(1, cb("redl_select|42"), 101)
        self.assertEqual(toast, "Invalid series.")

    async def test_select_without_episode_clears_state(self):
        self.sonarr.episodes[2] = []
        await self.workflow.start(1, result("redownload_tv", title="The Block", season=3, episode=12))
        await self.workflow.on_select(1, cb("redl_select|2"), 101)
        self.assertIsNone(self.ctx.store.get(1))
        self.assertIn("not found", self.transport.last_text)

    async def test_select_lookup_failure_clears_state(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block", season=3, episode=12))

        async def broken(series_id):
            raise RuntimeError("sonarr down")

        self.sonarr.get_episodes = broken
        await self.workflow.on_select(1, cb("redl_select|2"), 101)
        self.assertIsNone(self.ctx.store.get(1))
        self.assertEqual(self.transport.last_text, "❌ Could not load episodes for the selected series.")

    async def test_no_cancels(self):
        await self.workflow.start(1, result("redownload_tv", title="The Block AU", season=3, episode=12))
        await self.workflow.on_cancel(1, cb("redl_no"), 101)
        self.assertIsNone(self.ctx.store.get(1))
        self.assertEqual(self.transport.last_text, "❌ Cancelled.")
        self.assertEqual(self.sonarr.searches, [])

    async def test_stale_button(self):
        self.assertEqual(await self.workflow.on_yes(1, cb("redl_yes"), 5), "No active request.")

    async def test_search_not_started(self):
        self.sonarr.command = {"id": 0, "status": "failed"}
        await self.workflow.start(1, result("redownload_tv", title="The Block AU", season=3, episode=12))
        await self.workflow.on_yes(1, cb("redl_yes"), 101)
        self.assertIn("may not have started", self.transport.last_text)
        self.assertEqual(self.monitors.started, [])


class TestRedownloadAmbiguous(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        series = [
            {"id": 7, "title": "The Real Housewives of Orange County"},
            {"id": 8, "title": "The Real Housewives of Beverly Hills"},
        ]
        self.sonarr = _FakeSonarr(series, {
            7: [{"id": 701, "seasonNumber": 17, "episodeNumber": 2, "episodeFileId": 70}],
            8: [{"id": 801, "seasonNumber": 13, "episodeNumber": 5, "episodeFileId": 80}],
        })
        self.monitors = _FakeMonitors()
        self.ctx = make_ctx(
            sonarr=self.sonarr, cache=make_cache(series), monitors=self.monitors,
            plex=_FakePlex(watching=HOUSEWIVES),
        )
        self.workflow = RedownloadWorkflow(self.ctx)
        self.transport = self.ctx.transport

    async def test_resolved_pick_alternate_then_yes(self):
        await self.workflow.start(1, result("redownload_tv", reference="real housewives"))
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, RedownloadResolvedPending)
        self.assertEqual(state.best["title"], "Real Housewives of Beverly Hills")
        self.assertIn("S13E5", self.transport.sent[-1]["text"])

        await self.workflow.on_pick_resolved(1, cb("redl_pick_resolved"), state.message_id)
        picker = self.transport.edits[-1]["keyboard"]
        self.assertEqual([row[0].callback for row in picker], ["redl_alt|0", "redl_alt|1", "redl_no_resolved"])

        await self.workflow.on_alternate(1, cb("redl_alt|1"), state.message_id)
        self.assertEqual(state.best["title"], "Real Housewives of Orange County")

        await self.workflow.on_yes_resolved(1, cb("redl_yes_resolved"), state.message_id)
        self.assertEqual(self.sonarr.deleted_files, [70])
        self.assertEqual(self.sonarr.searches, [701])
        self.assertEqual(self.monitors.started[0]["episode_label"], "S17E2")
        self.assertIsNone(self.ctx.store.get(1))

    async def test_bad_alternate_index(self):
        await self.workflow.start(1, result("redownload_tv", reference="real housewives"))
        self.assertEqual(await self.workflow.on_alternate(1, cb("redl_alt|9"), 101), "Invalid choice.")

    async def test_unresolved_phrase_falls_back_to_title(self):
        await self.workflow.start(1, result("redownload_tv", reference="zzz mystery"))
        self.assertEqual(self.transport.last_text, "No results for zzz mystery")

    async def test_nothing_to_go_on(self):
        await self.workflow.start(1, result("redownload_tv"))
        self.assertIn("couldn't understand", self.transport.last_text)


if __name__ == "__main__":
    unittest.main()
