"""
Concierge Health Check

Checks configuration and every backend and reports pass/fail per check.
Used three ways:
- Pre-flight at startup (warn only, never blocks launch)
- The Telegram /status command
- Standalone via `python -m core.healthcheck` (exit 1 if Sonarr is down,
  for container health checks)

Each check is read-only.

Usage:
    from core.healthcheck import HealthCheck

    checker = HealthCheck(config, sonarr=sonarr, radarr=radarr, cache=cache)
    summary = await checker.run_all()
    print(format_report(summary))
"""

import asyncio
import logging
import sys
import time
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger("concierge.healthcheck")


# ---------------------------------------------------------------------------
# CheckResult
# ---------------------------------------------------------------------------

@dataclass
class CheckResult:
    """Result of a single check.

    Attributes:
        name:        Human-readable check name (e.g. "Sonarr")
        passed:      Whether the check succeeded
        message:     Detail on pass reason or failure description
        duration_ms: How long the check took in milliseconds
        required:    A failed required check makes the whole run unhealthy
        skipped:     The backend is not configured, so it was not checked
    """
    name: str
    passed: bool
    message: str
    duration_ms: float
    required: bool = False
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# HealthCheck
# ---------------------------------------------------------------------------

class HealthCheck:
    """Health check runner.

    Args:
        config:      ConciergeConfig instance
        sonarr:      SonarrClient
        radarr:      RadarrClient
        plex:        PlexClient
        qbittorrent: QBittorrentClient
        cache:       EntityCache (freshness check)
    """

    def __init__(self, config=None, sonarr=None, radarr=None, plex=None, qbittorrent=None, cache=None):
        self.config = config
        self.sonarr = sonarr
        self.radarr = radarr
        self.plex = plex
        self.qbittorrent = qbittorrent
        self.cache = cache

    async def run_all(self) -> dict[str, Any]:
        """Run every check, returning a summary dict.

        A crashing check is recorded as a failure rather than aborting
        the run.

        Returns:
            {
                "healthy": bool,
                "total": int,
                "passed": int,
                "failed": int,
                "duration_ms": float,
                "results": [CheckResult.to_dict(), ...]
            }
        """
        checks = [
            ("Config", self.check_config, True),
            ("Sonarr", self.check_sonarr, True),
            ("Radarr", self.check_radarr, False),
            ("Plex", self.check_plex, False),
            ("qBittorrent", self.check_qbittorrent, False),
            ("Series cache", self.check_cache, False),
        ]

        results: list[CheckResult] = []
        suite_start = time.perf_counter()
        for name, check, required in checks:
            start = time.perf_counter()
            try:
                result = await check()
            except Exception as e:
                result = CheckResult(
                    name=name,
                    passed=False,
                    message=f"Crashed: {type(e).__name__}: {e}",
                    duration_ms=_elapsed(start),
                    required=required,
                )
            results.append(result)
            log = logger.info if result.passed else logger.warning
            log("%s: %s (%s)", "PASS" if result.passed else "FAIL", result.name, result.message)

        passed = sum(1 for r in results if r.passed)
        return {
            "healthy": all(r.passed for r in results if r.required),
            "total": len(results),
            "passed": passed,
            "failed": len(results) - passed,
            "duration_ms": _elapsed(suite_start),
            "results": [r.to_dict() for r in results],
        }

    # -------------------------------------------------------------------
    # Individual checks
    # -------------------------------------------------------------------

    async def check_config(self) -> CheckResult:
        """Required settings for the bot to work at all."""
        start = time.perf_counter()
        if self.config is None:
            from core.config import get_config
            cfg = get_config()
        else:
            cfg = self.config
        missing = [
            name for name, value in (
                ("TG_BOT_TOKEN", cfg.telegram.bot_token),
                ("OPENAI_API_KEY", cfg.openai.api_key),
                ("SONARR_URL", cfg.sonarr.url),
                ("SONARR_API_KEY", cfg.sonarr.api_key),
            )
            if not value
        ]
        if missing:
            return CheckResult("Config", False, f"Missing: {', '.join(missing)}", _elapsed(start), required=True)
        return CheckResult("Config", True, "Required settings present", _elapsed(start), required=True)

    async def check_sonarr(self) -> CheckResult:
        return await self._check_arr("Sonarr", self.sonarr, required=True)

    async def check_radarr(self) -> CheckResult:
        return await self._check_arr("Radarr", self.radarr)

    async def check_plex(self) -> CheckResult:
        start = time.perf_counter()
        if self.plex is None or not self.plex.is_configured:
            return _skipped("Plex", start)
        identity = await self.plex.identity()
        version = identity.get("version") or "unknown version"
        return CheckResult("Plex", True, f"Reachable ({version})", _elapsed(start))

    async def check_qbittorrent(self) -> CheckResult:
        start = time.perf_counter()
        if self.qbittorrent is None or not self.qbittorrent.is_configured:
            return _skipped("qBittorrent", start)
        version = await self.qbittorrent.version()
        return CheckResult("qBittorrent", True, f"Logged in ({version})", _elapsed(start))

    async def check_cache(self) -> CheckResult:
        start = time.perf_counter()
        if self.cache is None:
            return _skipped("Series cache", start)
        snapshot = self.cache.snapshot
        if snapshot is None:
            return CheckResult("Series cache", False, "No snapshot loaded", _elapsed(start))
        max_age = 24
        if self.config is not None:
            max_age = self.config.cache.max_age_hours
        fresh = self.cache.is_fresh(max_age)
        detail = f"{len(snapshot.entries)} series, updated {snapshot.updated_at.isoformat(timespec='minutes')}"
        if not fresh:
            return CheckResult("Series cache", False, f"Stale: {detail}", _elapsed(start))
        return CheckResult("Series cache", True, detail, _elapsed(start))

    async def _check_arr(self, name: str, client, required: bool = False) -> CheckResult:
        start = time.perf_counter()
        if client is None or not client.is_configured:
            if required:
                return CheckResult(name, False, "Not configured", _elapsed(start), required=True)
            return _skipped(name, start)
        status = await client.system_status()
        version = (status or {}).get("version") or "unknown version"
        return CheckResult(name, True, f"Reachable (v{version})", _elapsed(start), required=required)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _elapsed(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)


def _skipped(name: str, start: float) -> CheckResult:
    return CheckResult(name, True, "Not configured, skipped", _elapsed(start), skipped=True)


def format_report(summary: dict[str, Any]) -> str:
    """Chat-friendly checklist of a run_all() summary."""
    lines = [
        "🩺 *Concierge status*",
        f"{summary['passed']}/{summary['total']} checks passed in {summary['duration_ms']:.0f}ms",
        "",
    ]
    for r in summary["results"]:
        mark = "➖" if r["skipped"] else ("✅" if r["passed"] else "❌")
        lines.append(f"{mark} {r['name']}: {r['message']}")
    return "\n".join(lines)


async def _run_standalone() -> int:
    from core.config import get_config
    from tools.sonarr import SonarrClient

    config = get_config()
    sonarr = SonarrClient(config.sonarr.url, config.sonarr.api_key)
    try:
        result = await HealthCheck(config, sonarr=sonarr).check_sonarr()
    except Exception as e:
        print(f"Healthcheck failed: {e}", file=sys.stderr)
        return 1
    if not result.passed:
        print(f"Healthcheck failed: {result.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(_run_standalone()))
