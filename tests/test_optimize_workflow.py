"""Tests for library optimization and quality-profile listing."""

import unittest

from core.pending import OptimizeMoviesPending, OptimizeTvPending
from tests.fakes import _FakeRadarr, _FakeSonarr, cb, make_ctx, result
from workflows.optimize import (
    OptimizeWorkflow,
    estimate_savings,
    extract_profile_request,
    match_profile,
    resolution_from_name,
    target_resolution,
)

GIB = 1024 ** 3

PROFILES = [
    {"id": 1, "name": "Ultra-HD"},
    {"id": 4, "name": "HD-1080p", "cutoff": 7, "items": [
        {"quality": {"id": 7, "name": "Bluray-1080p"}, "allowed": True},
        {"quality": {"id": 3, "name": "HDTV-720p"}, "allowed": True},
    ]},
]


def _movie(movie_id, title, gib, profile_id=1, quality="Remux-2160p"):
    return {
        "id": movie_id, "title": title, "year": 2020, "sizeOnDisk": gib * GIB, "hasFile": True,
        "qualityProfileId": profile_id, "movieFile": {"quality": {"quality": {"name": quality}}},
    }


def _episode_with(quality):
    return {"id": 1, "seasonNumber": 1, "episodeFile": {"quality": {"quality": {"name": quality}}}}


class TestOptimizeHelpers(unittest.TestCase):

    def test_extract_profile_request(self):
        self.assertEqual(extract_profile_request("top 5 movies profile HD-720p"), ("top 5 movies", "HD-720p"))
        self.assertEqual(extract_profile_request("biggest movies to 1080p"), ("biggest movies", "1080p"))
        self.assertEqual(extract_profile_request("optimize tv"), ("optimize tv", ""))

    def test_match_profile(self):
        self.assertEqual(match_profile(PROFILES, "4")["id"], 4)
        self.assertEqual(match_profile(PROFILES, "ultra-hd")["id"], 1)
        self.assertEqual(match_profile(PROFILES, "1080")["id"], 4)
        self.assertIsNone(match_profile(PROFILES, "480p"))
        self.assertIsNone(match_profile(PROFILES, ""))

    def test_resolutions(self):
        self.assertEqual(resolution_from_name("WEBDL-2160p"), 2160)
        self.assertEqual(resolution_from_name("Bluray-4K"), 2160)
        self.assertEqual(resolution_from_name("SDTV"), 480)
        self.assertEqual(resolution_from_name(""), 0)
        self.assertEqual(target_resolution(PROFILES[1]), 1080)
        self.assertEqual(target_resolution(None), 1080)

    def test_estimate_savings(self):
        self.assertEqual(estimate_savings(100), 65)
        self.assertEqual(estimate_savings(0), 0)


class TestOptimizeMovies(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.radarr = _FakeRadarr([
            _movie(1, "Big", 80),
            _movie(2, "Medium", 50),
            _movie(3, "Small", 10),
            _movie(4, "Already", 60, profile_id=4),
        ])
        self.radarr.profiles = PROFILES
        self.ctx = make_ctx(radarr=self.radarr, settings={"optimize": {"min_size_gb": 40}})
        self.workflow = OptimizeWorkflow(self.ctx)
        self.transport = self.ctx.transport

    async def _start(self):
        await self.workflow.start_movies(1, result("optimize_movies", reference="biggest movies to 1080p"))
        return self.ctx.store.get(1)

    async def test_candidates_and_summary(self):
        state = await self._start()
        self.assertIsInstance(state, OptimizeMoviesPending)
        self.assertEqual([c["title"] for c in state.candidates], ["Big", "Medium"])
        self.assertEqual(state.target_profile["id"], 4)
        text = self.transport.sent[-1]["text"]
        self.assertIn("target profile: *HD-1080p*", text)
        self.assertIn("1. Big (2020) — 80.0 GB — Remux-2160p", text)

    async def test_pick_subset_and_apply(self):
        state = await self._start()
        await self.workflow.on_pick(1, cb("optm_pick"), state.message_id)
        picker_id = state.picker_message_id
        self.assertIsNotNone(picker_id)

        toast = await self.workflow.on_select(1, cb("optm_select|1"), picker_id)
        self.assertEqual(toast, "1 selected")
        self.assertEqual(self.transport.keyboards[-1]["id"], picker_id)
        self.assertTrue(self.transport.keyboards[-1]["keyboard"][1][0].text.startswith("✅"))

        toast = await self.workflow.on_apply(1, cb("optm_confirm"), picker_id)
        self.assertEqual(toast, "Optimizing…")
        self.assertEqual(self.radarr.profile_edits, [([2], 4)])
        self.assertEqual(self.radarr.searched, [[2]])
        self.assertIn((1, picker_id), self.transport.deleted)
        self.assertEqual(self.transport.edits[-1]["id"], state.message_id)
        self.assertIn("1 movie(s)", self.transport.last_text)
        self.assertIsNone(self.ctx.store.get(1))

    async def test_select_toggles(self):
        state = await self._start()
        await self.workflow.on_select(1, cb("optm_select|0"), None)
        self.assertEqual(await self.workflow.on_select(1, cb("optm_select|0"), None), "0 selected")
        self.assertEqual(state.selected, set())
        self.assertEqual(await self.workflow.on_select(1, cb("optm_select|7"), None), "Invalid selection.")

    async def test_optimize_all(self):
        await self._start()
        await self.workflow.on_apply(1, cb("optm_all"), 101)
        self.assertEqual(self.radarr.profile_edits, [([1, 2], 4)])

    async def test_cancel(self):
        state = await self._start()
        await self.workflow.on_pick(1, cb("optm_pick"), state.message_id)
        toast = await self.workflow.on_cancel(1, cb("optm_cancel"), state.message_id)
        self.assertEqual(toast, "Cancelled.")
        self.assertEqual(self.transport.last_text, "❌ Optimization cancelled.")
        self.assertEqual(self.radarr.profile_edits, [])
        self.assertIsNone(self.ctx.store.get(1))

    async def test_nothing_large_enough(self):
        self.ctx.settings["optimize"]["min_size_gb"] = 500
        await self.workflow.start_movies(1, result("optimize_movies", reference="optimize movies"))
        self.assertEqual(self.transport.last_text, "No movie results available for that query.")

    async def test_limit_from_reference(self):
        await self.workflow.start_movies(1, result("optimize_movies", reference="top 1 movies"))
        self.assertEqual(len(self.ctx.store.get(1).candidates), 1)

    async def test_list_profiles(self):
        await self.workflow.list_movie_profiles(1, result("list_movie_profiles"))
        self.assertEqual(
            self.transport.last_text,
            "📋 *Radarr quality profiles*\n• Ultra-HD (id 1)\n• HD-1080p (id 4)",
        )


class TestOptimizeTv(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        series = [
            {"id": 10, "title": "Big Show", "qualityProfileId": 1,
             "statistics": {"sizeOnDisk": 100 * GIB, "episodeFileCount": 20}},
            {"id": 11, "title": "HD Show", "qualityProfileId": 1,
             "statistics": {"sizeOnDisk": 60 * GIB, "episodeFileCount": 10}},
            {"id": 12, "title": "Huge Show", "qualityProfileId": 1,
             "statistics": {"sizeOnDisk": 80 * GIB, "episodeFileCount": 16}},
        ]
        self.sonarr = _FakeSonarr(series, {
            10: [_episode_with("Bluray-2160p")],
            11: [_episode_with("HDTV-720p")],
            12: [_episode_with("WEBDL-2160p")],
        })
        self.sonarr.profiles = PROFILES
        self.ctx = make_ctx(sonarr=self.sonarr, settings={"optimize": {"tv_target_profile": "HD-1080p"}})
        self.workflow = OptimizeWorkflow(self.ctx)

    async def test_only_series_above_target_resolution(self):
        await self.workflow.start_tv(1, result("optimize_tv", reference="optimize tv"))
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, OptimizeTvPending)
        self.assertEqual([c["title"] for c in state.candidates], ["Big Show", "Huge Show"])
        self.assertIn("current quality Bluray-2160p", self.ctx.transport.sent[-1]["text"])

        await self.workflow.on_apply(1, cb("optm_all"), state.message_id)
        self.assertEqual([(sid, p["qualityProfileId"]) for sid, p in self.sonarr.updates], [(10, 4), (12, 4)])
        self.assertEqual(self.sonarr.series_searches, [[10, 12]])
        self.assertIn("2 series", self.ctx.transport.last_text)

    async def test_failed_series_update_is_reported_and_not_searched(self):
        self.sonarr.fail_updates = {12}
        await self.workflow.start_tv(1, result("optimize_tv", reference="optimize tv"))
        await self.workflow.on_apply(1, cb("optm_all"), self.ctx.store.get(1).message_id)
        self.assertEqual(self.sonarr.series_searches, [[10]])
        text = self.ctx.transport.last_text
        self.assertTrue(text.startswith("✅ Optimization started for 1 series."))
        self.assertTrue(text.endswith("⚠️ 1 series could not be updated."))

    async def test_every_update_failing_skips_search(self):
        self.sonarr.fail_updates = {10, 12}
        await self.workflow.start_tv(1, result("optimize_tv", reference="optimize tv"))
        await self.workflow.on_apply(1, cb("optm_all"), self.ctx.store.get(1).message_id)
        self.assertEqual(self.sonarr.series_searches, [])
        self.assertIn("Could not start optimization", self.ctx.transport.last_text)


if __name__ == "__main__":
    unittest.main()
