"""Tests for the unregistered-torrent cleanup workflow."""

import unittest

from core.pending import TorrentCleanupPending
from tests.fakes import cb, make_ctx, result
from workflows.torrents import MAX_LINES, TorrentCleanupWorkflow


class _FakeQBittorrent:
    def __init__(self, torrents=None):
        self.torrents = list(torrents or [])
        self.categories: list[str | None] = []
        self.deleted: list[tuple[list[str], bool]] = []
        self.fail = False

    async def find_unregistered(self, category=None):
        if self.fail:
            raise RuntimeError("connection refused")
        self.categories.append(category)
        return list(self.torrents)

    async def delete_torrents(self, hashes, delete_files=True):
        self.deleted.append((list(hashes), delete_files))
        return len(hashes)


def _torrent(n, size=1_500_000_000):
    return {"hash": f"h{n}", "name": f"Show.S01E{n:02d}", "size": size}


class TestTorrentCleanup(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.qb = _FakeQBittorrent([_torrent(1), _torrent(2, 500_000_000)])
        self.ctx = make_ctx(
            qbittorrent=self.qb,
            settings={"qbittorrent": {"tv_category": "tv-sonarr", "movie_category": "radarr"}},
        )
        self.workflow = TorrentCleanupWorkflow(self.ctx)
        self.transport = self.ctx.transport

    async def test_confirmation_then_delete(self):
        await self.workflow.start_tv(1, result("qb_delete_unregistered_tv"))
        self.assertEqual(self.qb.categories, ["tv-sonarr"])
        text = self.transport.sent[-1]["text"]
        self.assertIn("*Unregistered torrents detected (TV)*", text)
        self.assertIn("1. Show.S01E01 (1.5 GB)", text)
        self.assertIn("Total size: 2.0 GB", text)
        state = self.ctx.store.get(1)
        self.assertIsInstance(state, TorrentCleanupPending)

        await self.workflow.on_yes(1, cb("qb_unreg_yes"), state.message_id)
        self.assertEqual(self.qb.deleted, [(["h1", "h2"], True)])
        self.assertEqual(self.transport.last_text, "✅ Deleted 2 unregistered torrent(s).\nApprox freed: 2.0 GB")
        self.assertIsNone(self.ctx.store.get(1))

    async def test_all_scope_has_no_category(self):
        await self.workflow.start_all(1, result("qb_delete_unregistered"))
        await self.workflow.start_movies(1, result("qb_delete_unregistered_movies"))
        self.assertEqual(self.qb.categories, [None, "radarr"])

    async def test_long_list_is_truncated(self):
        self.qb.torrents = [_torrent(n) for n in range(1, MAX_LINES + 6)]
        await self.workflow.start_all(1, result("qb_delete_unregistered"))
        text = self.transport.sent[-1]["text"]
        self.assertIn("…and 5 more", text)
        self.assertNotIn(f"{MAX_LINES + 1}. ", text)

    async def test_nothing_found(self):
        self.qb.torrents = []
        await self.workflow.start_all(1, result("qb_delete_unregistered"))
        self.assertEqual(self.transport.last_text, "No unregistered torrents found.")
        self.assertIsNone(self.ctx.store.get(1))

    async def test_query_failure(self):
        self.qb.fail = True
        await self.workflow.start_all(1, result("qb_delete_unregistered"))
        self.assertIn("Unable to query qBittorrent", self.transport.last_text)

    async def test_cancel(self):
        await self.workflow.start_all(1, result("qb_delete_unregistered"))
        await self.workflow.on_no(1, cb("qb_unreg_no"), 101)
        self.assertEqual(self.transport.last_text, "❌ Torrent cleanup cancelled.")
        self.assertEqual(self.qb.deleted, [])

    async def test_stale_yes(self):
        self.assertEqual(await self.workflow.on_yes(1, cb("qb_unreg_yes"), 5), "No active request.")


if __name__ == "__main__":
    unittest.main()
