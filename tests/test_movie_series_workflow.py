"""Tests for adding a whole movie collection."""

import unittest

from core.pending import MovieSeriesConfirmPending, MovieSeriesPickPending
from tests.fakes import _FakeRadarr, cb, make_ctx, result
from workflows.movie_series import MovieSeriesWorkflow, format_movie_list, strip_collection_words

MISSION = {
    "id": 87359,
    "name": "Mission: Impossible Collection",
    "parts": [
        {"tmdb_id": 954, "title": "Mission: Impossible", "release_date": "1996-05-22", "imdb_id": "tt0117060"},
        {"tmdb_id": 955, "title": "Mission: Impossible II", "release_date": "2000-05-24", "imdb_id": "tt0120755"},
        {"tmdb_id": 575265, "title": "The Final Reckoning", "release_date": None, "imdb_id": None},
    ],
}


class _FakeTmdb:
    is_configured = True

    def __init__(self, searches=None, details=None):
        self.searches = dict(searches or {})
        self.details = dict(details or {})
        self.queries: list[str] = []

    async def search_collections(self, query):
        self.queries.append(query)
        return list(self.searches.get(query, []))

    async def collection_details(self, collection_id):
        return self.details.get(collection_id)


class TestMovieListHelpers(unittest.TestCase):

    def test_strip_collection_words(self):
        self.assertEqual(strip_collection_words("all the mission impossible movies"), "all the mission impossible")
        self.assertEqual(strip_collection_words("Alien franchise"), "Alien")

    def test_undated_movies_go_last_and_list_is_capped(self):
        movies = [{"title": f"Part {n}", "release_date": f"20{n:02d}-01-01"} for n in range(1, 11)]
        movies += [{"title": "Zed", "release_date": None}, {"title": "Alpha", "release_date": ""}]
        lines = format_movie_list(movies).splitlines()
        self.assertEqual(lines[0], "1. Part 1 (2001)")
        self.assertEqual(len(lines), 11)
        self.assertEqual(lines[-1], "…and 2 more.")
        self.assertEqual(format_movie_list(movies[-2:]), "1. Alpha (TBC)\n2. Zed (TBC)")


class TestMovieSeriesWorkflow(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmdb = _FakeTmdb(
            searches={"mission impossible": [{"id": 87359, "name": MISSION["name"]}]},
            details={87359: MISSION},
        )
        self.radarr = _FakeRadarr([{"id": 1, "title": "Mission: Impossible", "tmdbId": 954}])
        self.radarr.roots = [{"path": "/movies"}]
        self.radarr.profiles = [{"id": 6, "name": "HD-1080p"}]
        self.ctx = make_ctx(tmdb=self.tmdb, radarr=self.radarr)
        self.workflow = MovieSeriesWorkflow(self.ctx)
        self.transport = self.ctx.transport

    async def test_cleaned_query_retry_and_confirmation(self):
        await self.workflow.start(1, result("download_movie_series", reference="mission impossible movies"))
        self.assertEqual(self.tmdb.queries, ["mission impossible movies", "mission impossible"])
        self.assertEqual(
            self.transport.sent[-1]["text"],
            "🎬 *Mission: Impossible Collection*\n\n"
            "You already have:\n1. Mission: Impossible (1996)\n\n"
            "This will add:\n1. Mission: Impossible II (2000)\n2. The Final Reckoning (TBC)\n\n"
            "Add the missing movies in this series?",
        )
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, MovieSeriesConfirmPending)
        self.assertEqual([m["tmdb_id"] for m in state.missing], [955, 575265])

    async def test_confirm_adds_only_missing(self):
        await self.workflow.start(1, result("download_movie_series", reference="mission impossible"))
        state = self.ctx.store.get(1)
        await self.workflow.on_confirm(1, cb("ms_confirm"), state.message_id)
        added = [(movie["tmdbId"], root, profile) for movie, root, profile in self.radarr.added]
        self.assertEqual(added, [(955, "/movies", 6), (575265, "/movies", 6)])
        self.assertEqual(self.radarr.added[0][0]["minimumAvailability"], "announced")
        self.assertEqual(
            self.transport.last_text,
            "🎞 *Mission: Impossible Collection*\nAdded 2 movies.\n1 already existed or failed.",
        )
        self.assertIsNone(self.ctx.store.get(1))

    async def test_everything_owned(self):
        self.radarr.movies += [{"tmdbId": 955}, {"tmdbId": 575265}]
        await self.workflow.start(1, result("download_movie_series", reference="mission impossible"))
        self.assertIn("All movies are already in Radarr.", self.transport.sent[-1]["text"])

    async def test_several_collections_offer_a_choice(self):
        self.tmdb.searches["batman"] = [
            {"id": 1, "name": "Batman Collection"},
            {"id": 2, "name": "The Dark Knight Collection"},
        ]
        self.tmdb.details[2] = dict(MISSION, id=2, name="The Dark Knight Collection")
        await self.workflow.start(1, result("download_movie_series", reference="batman"))
        picker = self.ctx.store.get(1)
        self.assertIsInstance(picker, MovieSeriesPickPending)
        self.assertEqual([row[0].callback for row in self.transport.sent[-1]["keyboard"]],
                         ["ms_pick|1", "ms_pick|2", "ms_cancel"])

        await self.workflow.on_pick(1, cb("ms_pick|2"), picker.message_id)
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, MovieSeriesConfirmPending)
        self.assertEqual(state.message_id, picker.message_id)
        self.assertEqual(self.transport.edits[-1]["id"], picker.message_id)

    async def test_exact_name_wins_over_picker(self):
        self.tmdb.searches["alien"] = [{"id": 1, "name": "Alien Anthology"}, {"id": 87359, "name": "Alien"}]
        await self.workflow.start(1, result("download_movie_series", reference="alien"))
        self.assertIsInstance(self.ctx.store.get(1), MovieSeriesConfirmPending)

    async def test_pick_unknown_collection(self):
        self.tmdb.searches["batman"] = [{"id": 1, "name": "Batman"}, {"id": 2, "name": "Batman Begins"}]
        await self.workflow.start(1, result("download_movie_series", reference="batman films"))
        self.assertEqual(await self.workflow.on_pick(1, cb("ms_pick|9"), 101), "Couldn't load that collection.")

    async def test_not_found(self):
        await self.workflow.start(1, result("download_movie_series", reference="zzz"))
        self.assertEqual(self.transport.last_text, 'I couldn\'t find a movie series for "zzz".')

    async def test_tmdb_not_configured(self):
        ctx = make_ctx(radarr=self.radarr)
        await MovieSeriesWorkflow(ctx).start(1, result("download_movie_series", reference="alien"))
        self.assertIn("TMDB_API_KEY", ctx.transport.last_text)

    async def test_missing_details(self):
        self.tmdb.details.clear()
        await self.workflow.start(1, result("download_movie_series", reference="mission impossible"))
        self.assertEqual(self.transport.last_text, "I couldn't load that collection.")

    async def test_cancel(self):
        await self.workflow.start(1, result("download_movie_series", reference="mission impossible"))
        await self.workflow.on_cancel(1, cb("ms_cancel"), 101)
        self.assertIsNone(self.ctx.store.get(1))
        self.assertEqual(self.transport.last_text, "❌ Cancelled.")


if __name__ == "__main__":
    unittest.main()
