"""Tests for the REST backend clients against httpx.MockTransport."""

import json
import unittest
from urllib.parse import parse_qs

import httpx

from tools.http_client import BackendNotConfigured
from tools.plex import PlexClient
from tools.qbittorrent import QBittorrentClient
from tools.radarr import RadarrClient
from tools.sonarr import SonarrClient, find_episode, latest_downloaded_episode
from tools.tmdb import TmdbClient


class _Recorder:
    """MockTransport handler that records requests and serves canned routes."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404)
        return route(request) if callable(route) else route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class TestSonarrClient(unittest.IsolatedAsyncioTestCase):

    async def test_episodes_request_shape(self):
        rec = _Recorder({("GET", "/api/v3/episode"): httpx.Response(200, json=[{"id": 1}])})
        sonarr = SonarrClient("http://nas:8989/", "key", transport=rec.transport)
        self.assertEqual(await sonarr.get_episodes(42), [{"id": 1}])
        request = rec.requests[0]
        self.assertEqual(request.headers["X-Api-Key"], "key")
        self.assertEqual(request.url.params["seriesId"], "42")
        self.assertEqual(request.url.params["includeEpisodeFile"], "true")

    async def test_episode_search_command(self):
        rec = _Recorder({("POST", "/api/v3/command"): httpx.Response(201, json={"id": 7, "status": "queued"})})
        sonarr = SonarrClient("http://nas:8989", "key", transport=rec.transport)
        command = await sonarr.run_episode_search(501)
        self.assertEqual(command["id"], 7)
        self.assertEqual(json.loads(rec.requests[0].content), {"name": "EpisodeSearch", "episodeIds": [501]})

    async def test_delete_without_file_is_skipped(self):
        rec = _Recorder({})
        sonarr = SonarrClient("http://nas:8989", "key", transport=rec.transport)
        self.assertEqual(await sonarr.delete_episode_file(0), {"skipped": True})
        self.assertEqual(await sonarr.run_series_search([]), None)
        self.assertEqual(rec.requests, [])

    async def test_errors_raise(self):
        rec = _Recorder({("GET", "/api/v3/series"): httpx.Response(500)})
        sonarr = SonarrClient("http://nas:8989", "key", transport=rec.transport)
        with self.assertRaises(httpx.HTTPStatusError):
            await sonarr.list_series()

    async def test_not_configured(self):
        sonarr = SonarrClient("", "")
        self.assertFalse(sonarr.is_configured)
        with self.assertRaises(BackendNotConfigured):
            await sonarr.list_series()


class TestSonarrHelpers(unittest.TestCase):

    EPISODES = [
        {"seasonNumber": 0, "episodeNumber": 9, "hasFile": True},
        {"seasonNumber": 1, "episodeNumber": 1, "hasFile": True},
        {"seasonNumber": 1, "episodeNumber": 2, "episodeFileId": 12},
        {"seasonNumber": 1, "episodeNumber": 3},
    ]

    def test_find_episode(self):
        self.assertEqual(len(find_episode(self.EPISODES, 1, 0)), 3)
        self.assertEqual(find_episode(self.EPISODES, 1, 2), [self.EPISODES[2]])
        self.assertEqual(find_episode(self.EPISODES, 2, 1), [])

    def test_latest_downloaded_skips_specials(self):
        self.assertIs(latest_downloaded_episode(self.EPISODES), self.EPISODES[2])
        self.assertIsNone(latest_downloaded_episode(self.EPISODES[3:]))


class TestRadarrClient(unittest.IsolatedAsyncioTestCase):

    async def test_bulk_profile_edit_and_search(self):
        rec = _Recorder({
            ("PUT", "/api/v3/movie/editor"): httpx.Response(202, json=[]),
            ("POST", "/api/v3/command"): httpx.Response(201, json={"id": 3}),
        })
        radarr = RadarrClient("http://nas:7878", "key", transport=rec.transport)
        await radarr.edit_quality_profile([1, 2], 4)
        await radarr.search_movies([1, 2])
        self.assertEqual(json.loads(rec.requests[0].content), {"movieIds": [1, 2], "qualityProfileId": 4})
        self.assertEqual(json.loads(rec.requests[1].content), {"name": "MoviesSearch", "movieIds": [1, 2]})

    async def test_add_movie_payload(self):
        rec = _Recorder({("POST", "/api/v3/movie"): lambda r: httpx.Response(201, json=json.loads(r.content))})
        radarr = RadarrClient("http://nas:7878", "key", transport=rec.transport)
        added = await radarr.add_movie({"title": "Dune", "tmdbId": 438631}, "/movies", 6)
        self.assertEqual(added["rootFolderPath"], "/movies")
        self.assertEqual(added["minimumAvailability"], "announced")
        self.assertEqual(added["addOptions"], {"searchForMovie": True})


class TestPlexClient(unittest.IsolatedAsyncioTestCase):

    async def test_seasons_are_flattened(self):
        rec = _Recorder({("GET", "/library/metadata/9/children"): httpx.Response(200, json={
            "MediaContainer": {"Metadata": [
                {"title": "Season 3", "index": 3, "ratingKey": "91", "leafCount": 12, "viewedLeafCount": "12"},
            ]},
        })})
        plex = PlexClient("http://nas:32400", "tok", transport=rec.transport)
        seasons = await plex.get_seasons("9")
        self.assertEqual(seasons[0]["season_number"], 3)
        self.assertEqual((seasons[0]["viewed_leaf_count"], seasons[0]["leaf_count"]), (12, 12))
        self.assertEqual(rec.requests[0].headers["X-Plex-Token"], "tok")

    async def test_currently_watching_filters_and_sorts(self):
        hub = {"title": "Continue Watching", "Metadata": [
            {"grandparentTitle": "Old", "title": "E1", "duration": 100, "viewOffset": 10, "lastViewedAt": 1},
            {"grandparentTitle": "Done", "title": "E2", "duration": 100, "viewOffset": 100, "lastViewedAt": 5},
            {"grandparentTitle": "New", "title": "E3", "parentIndex": 2, "index": 4,
             "duration": 200, "viewOffset": 50, "lastViewedAt": 9},
        ]}
        rec = _Recorder({("GET", "/hubs/continueWatching"): httpx.Response(
            200, json={"MediaContainer": {"Hub": [{"title": "On Deck"}, hub]}},
        )})
        plex = PlexClient("http://nas:32400", "tok", transport=rec.transport)
        watching = await plex.currently_watching()
        self.assertEqual([w["title"] for w in watching], ["New", "Old"])
        self.assertEqual((watching[0]["season_number"], watching[0]["episode_number"]), (2, 4))
        self.assertEqual(watching[0]["percent"], 25)

    async def test_single_metadata_object(self):
        rec = _Recorder({("GET", "/library/sections/2/all"): httpx.Response(
            200, json={"MediaContainer": {"Metadata": {"title": "Bluey", "ratingKey": "5"}}},
        )})
        plex = PlexClient("http://nas:32400", "tok", tv_section=2, transport=rec.transport)
        self.assertEqual(await plex.get_shows(), [{"title": "Bluey", "rating_key": "5"}])


class TestTmdbClient(unittest.IsolatedAsyncioTestCase):

    async def test_search_and_details(self):
        rec = _Recorder({
            ("GET", "/3/search/collection"): httpx.Response(200, json={"results": [
                {"id": 87359, "name": "Mission: Impossible Collection", "popularity": 40.1},
            ]}),
            ("GET", "/3/collection/87359"): httpx.Response(200, json={
                "id": 87359, "name": "Mission: Impossible Collection",
                "parts": [
                    {"id": 955, "title": "Mission: Impossible II", "release_date": "2000-05-24"},
                    {"id": 954, "title": "Mission: Impossible", "release_date": "1996-05-22"},
                ],
            }),
        })
        tmdb = TmdbClient("secret", transport=rec.transport)
        results = await tmdb.search_collections("mission impossible")
        self.assertEqual(results[0]["id"], 87359)
        self.assertEqual(rec.requests[0].url.params["api_key"], "secret")
        self.assertEqual(rec.requests[0].url.params["query"], "mission impossible")

        details = await tmdb.collection_details(87359)
        self.assertEqual([p["tmdb_id"] for p in details["parts"]], [954, 955])

    async def test_blank_query_and_missing_key(self):
        self.assertEqual(await TmdbClient("secret").search_collections("  "), [])
        with self.assertRaises(BackendNotConfigured):
            await TmdbClient("").search_collections("alien")


class TestQBittorrentClient(unittest.IsolatedAsyncioTestCase):

    def _login(self, request):
        return httpx.Response(200, text="Ok.", headers={"Set-Cookie": "SID=abc123; path=/"})

    def _trackers(self, request):
        torrent_hash = request.url.params["hash"]
        if torrent_hash == "bad":
            return httpx.Response(500)
        msg = "Torrent not registered with this tracker (unregistered)" if torrent_hash == "dead" else "Working"
        return httpx.Response(200, json=[{"url": "udp://t", "msg": msg}])

    def _client(self, routes):
        rec = _Recorder(routes)
        return QBittorrentClient("http://qb.example.org:8080", "admin", "pw", transport=rec.transport), rec

    async def test_find_unregistered(self):
        qb, _ = self._client({
            ("POST", "/api/v2/auth/login"): self._login,
            ("GET", "/api/v2/torrents/info"): httpx.Response(200, json=[
                {"hash": "dead", "name": "Show.S01E01", "size": 100, "category": "tv"},
                {"hash": "live", "name": "Show.S01E02", "size": 200, "category": "tv"},
                {"hash": "bad", "name": "Broken", "size": 300, "category": "tv"},
            ]),
            ("GET", "/api/v2/torrents/trackers"): self._trackers,
        })
        found = await qb.find_unregistered(category="tv")
        self.assertEqual([t["hash"] for t in found], ["dead"])
        self.assertEqual(await qb.find_unregistered(category="movies"), [])

    async def test_login_without_cookie_fails(self):
        qb, _ = self._client({("POST", "/api/v2/auth/login"): httpx.Response(200, text="Fails.")})
        with self.assertRaises(RuntimeError):
            await qb.find_unregistered()

    async def test_delete_torrents(self):
        qb, rec = self._client({
            ("POST", "/api/v2/auth/login"): self._login,
            ("POST", "/api/v2/torrents/delete"): httpx.Response(200),
        })
        self.assertEqual(await qb.delete_torrents(["a", "b"]), 2)
        body = parse_qs(rec.requests[-1].content.decode())
        self.assertEqual(body, {"hashes": ["a|b"], "deleteFiles": ["true"]})
        self.assertEqual(await qb.delete_torrents([]), 0)

    async def test_not_configured(self):
        with self.assertRaises(BackendNotConfigured):
            await QBittorrentClient("", "", "").find_unregistered()


if __name__ == "__main__":
    unittest.main()
