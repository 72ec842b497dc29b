"""Tests for the health check runner and report formatting."""

import unittest

from core.healthcheck import HealthCheck, format_report
from tests.fakes import _FakePlex, _FakeRadarr, _FakeSonarr, make_cache
from tools.format import format_bytes, format_bytes_decimal, format_gb


class _Section(dict):
    __getattr__ = dict.__getitem__


class _Config:
    def __init__(self, **overrides):
        self.telegram = _Section(bot_token="t")
        self.openai = _Section(api_key="k")
        self.sonarr = _Section(url="http://nas:8989", api_key="s")
        self.cache = _Section(max_age_hours=24)
        for name, value in overrides.items():
            setattr(self, name, value)


class _DownSonarr(_FakeSonarr):
    async def system_status(self):
        raise ConnectionError("refused")


class _UnconfiguredRadarr(_FakeRadarr):
    is_configured = False


class _DownQBittorrent:
    is_configured = True

    async def version(self):
        raise ConnectionError("login refused")


class TestHealthCheck(unittest.IsolatedAsyncioTestCase):

    async def test_all_passing(self):
        checker = HealthCheck(_Config(), sonarr=_FakeSonarr(), radarr=_FakeRadarr(), plex=_FakePlex())
        summary = await checker.run_all()
        self.assertTrue(summary["healthy"])
        names = [r["name"] for r in summary["results"]]
        self.assertEqual(names, ["Config", "Sonarr", "Radarr", "Plex", "qBittorrent", "Series cache"])
        by_name = {r["name"]: r for r in summary["results"]}
        self.assertEqual(by_name["Sonarr"]["message"], "Reachable (v4.0.0)")
        self.assertTrue(by_name["qBittorrent"]["skipped"])

    async def test_sonarr_crash_is_unhealthy(self):
        summary = await HealthCheck(_Config(), sonarr=_DownSonarr()).run_all()
        self.assertFalse(summary["healthy"])
        crashed = summary["results"][1]
        self.assertEqual(crashed["name"], "Sonarr")
        self.assertTrue(crashed["required"])
        self.assertFalse(crashed["passed"])
        self.assertIn("Crashed: ConnectionError: refused", crashed["message"])

    async def test_optional_backend_crash_stays_healthy(self):
        summary = await HealthCheck(_Config(), sonarr=_FakeSonarr(), qbittorrent=_DownQBittorrent()).run_all()
        self.assertTrue(summary["healthy"])
        crashed = summary["results"][4]
        self.assertEqual(crashed["name"], "qBittorrent")
        self.assertFalse(crashed["passed"])
        self.assertFalse(crashed["required"])

    async def test_optional_backend_failure_stays_healthy(self):
        summary = await HealthCheck(_Config(), sonarr=_FakeSonarr(), radarr=_UnconfiguredRadarr()).run_all()
        self.assertTrue(summary["healthy"])
        self.assertEqual(summary["results"][2]["message"], "Not configured, skipped")

    async def test_missing_settings(self):
        config = _Config(openai=_Section(api_key=""), telegram=_Section(bot_token=""))
        result = await HealthCheck(config).check_config()
        self.assertFalse(result.passed)
        self.assertEqual(result.message, "Missing: TG_BOT_TOKEN, OPENAI_API_KEY")

    async def test_cache_checks(self):
        empty = make_cache([])
        empty._snapshot = None
        self.assertFalse((await HealthCheck(_Config(), cache=empty).check_cache()).passed)

        cache = make_cache([{"id": 1, "title": "Bluey"}])
        result = await HealthCheck(_Config(), cache=cache).check_cache()
        self.assertTrue(result.passed)
        self.assertTrue(result.message.startswith("1 series"))

    async def test_format_report(self):
        summary = await HealthCheck(_Config(), sonarr=_DownSonarr()).run_all()
        report = format_report(summary)
        self.assertTrue(report.startswith("🩺 *Concierge status*\n"))
        self.assertIn("✅ Config: Required settings present", report)
        self.assertIn("❌ Sonarr: Crashed", report)
        self.assertIn("➖ Radarr: Not configured, skipped", report)


class TestFormatHelpers(unittest.TestCase):

    def test_format_bytes(self):
        self.assertEqual(format_bytes(0), "0 B")
        self.assertEqual(format_bytes(None), "0 B")
        self.assertEqual(format_bytes(1536), "1.5 KB")
        self.assertEqual(format_bytes(20 * 1024 ** 2), "20 MB")
        self.assertEqual(format_bytes(80 * 1024 ** 3), "80.0 GB")

    def test_format_bytes_decimal(self):
        self.assertEqual(format_bytes_decimal(2e12), "2.0 TB")
        self.assertEqual(format_bytes_decimal(999), "999 B")

    def test_format_gb(self):
        self.assertEqual(format_gb(5_000_000_000), "5Gb")
        self.assertEqual(format_gb(12_300_000_000), "12.3Gb")
        self.assertEqual(format_gb(-1), "0Gb")


if __name__ == "__main__":
    unittest.main()
