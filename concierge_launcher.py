#!/usr/bin/env python3
"""Concierge Launcher: unified entry point for the media concierge.

Boot sequence:
- Logging setup (console + rotating file)
- Config load and data directory verification
- Backend clients, classifier, series cache, conversation store,
  monitor registry and workflow engine
- Series cache warm-up (load from disk, refresh if missing or stale)
- Pre-flight health check (warn-only, never blocks startup)
- Telegram bot polling and the daily cache refresh
- Signal handling for graceful shutdown

Run directly:
    python3 concierge_launcher.py
"""

import asyncio
import logging
import signal
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.classifier import IntentClassifier
from core.config import describe_changes, get_config
from core.conversation_store import ConversationStore, InMemoryStore
from core.entity_cache import EntityCache
from core.healthcheck import HealthCheck, format_report
from core.job_monitor import MonitorRegistry, MonitorSettings
from core.resolver import ReferenceResolver
from core.scheduler import DailyJob, Scheduler
from core.workflow_engine import WorkflowEngine, build_workflows
from interfaces.telegram.bot import TelegramBot, TelegramTransport
from tools.nas import NasTool
from tools.plex import PlexClient
from tools.qbittorrent import QBittorrentClient
from tools.radarr import RadarrClient
from tools.sonarr import SonarrClient
from tools.tmdb import TmdbClient
from workflows.base import WorkflowContext

BOOT_START = time.monotonic()

logger = logging.getLogger("concierge.launcher")

# Settings sections handed to the workflows (no secrets needed there)
WORKFLOW_SECTIONS = ("sonarr", "radarr", "qbittorrent", "nas", "optimize", "rankings")


def setup_logging(config):
    """Configure the root logger: console plus a size-rotating file."""
    level = getattr(logging, str(config.logging.level).upper(), logging.INFO)
    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)

    log_file = config.logging.file
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=int(config.logging.max_bytes),
            backupCount=int(config.logging.backup_count),
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(fmt, datefmt))
        logging.getLogger().addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def ensure_data_dirs(config):
    """Create required data directories if they don't exist."""
    dirs = [
        Path("data"),
        Path(config.cache.persist_path).parent,
        Path(config.logging.file).parent,
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
    logger.info("Data directories verified")


def build_clients(config) -> dict:
    """Backend clients keyed by name. Unconfigured ones still exist but report is_configured=False."""
    http = {
        "connect_timeout": float(config.http.connect_timeout),
        "read_timeout": float(config.http.read_timeout),
    }
    return {
        "sonarr": SonarrClient(config.sonarr.url, config.sonarr.api_key, **http),
        "radarr": RadarrClient(config.radarr.url, config.radarr.api_key, **http),
        "plex": PlexClient(
            config.plex.url, config.plex.token,
            tv_section=config.plex.tv_section,
            movie_section=config.plex.movie_section,
            **http,
        ),
        "tmdb": TmdbClient(config.tmdb.api_key, config.tmdb.url, **http),
        "qbittorrent": QBittorrentClient(
            config.qbittorrent.url, config.qbittorrent.username, config.qbittorrent.password, **http,
        ),
        "nas": NasTool(
            share_roots=config.nas.share_roots,
            ssh_host=config.nas.ssh_host,
            ssh_port=config.nas.ssh_port,
            ssh_username=config.nas.ssh_username,
            ssh_key_path=config.nas.ssh_key_path,
            preview_limit=int(config.nas.preview_limit),
            command_timeout=float(config.nas.command_timeout),
        ),
    }


def refresh_workflow_settings(config, ctx: WorkflowContext) -> dict:
    """Reload config and swap the workflow sections in place. Returns the diff."""
    changes = config.reload()
    all_settings = config.to_dict()
    for name in WORKFLOW_SECTIONS:
        ctx.settings[name] = all_settings.get(name, {})
    return changes


async def run_preflight(checker: HealthCheck):
    """Warn on failure, never block startup."""
    try:
        summary = await checker.run_all()
    except Exception as e:
        logger.warning("Pre-flight check crashed: %s", e)
        return
    logger.info("Pre-flight: %d/%d checks passed", summary["passed"], summary["total"])
    for r in summary["results"]:
        if not r["passed"]:
            logger.warning("Pre-flight FAILED: %s (%s)", r["name"], r["message"])


def install_signal_handlers(stop_event: asyncio.Event):
    """Install SIGTERM/SIGINT handlers that trigger a graceful shutdown."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum):
        logger.info("Received %s, initiating graceful shutdown", signal.Signals(signum).name)
        stop_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, handle_signal, signum)
    logger.info("Signal handlers installed (SIGTERM, SIGINT)")


async def run(config):
    clients = build_clients(config)
    admin_chat_id = config.telegram.admin_chat_id

    transport = TelegramTransport()

    async def notify_admin(text: str):
        if admin_chat_id:
            await transport.send(admin_chat_id, text)

    classifier = IntentClassifier(
        config.openai.api_key,
        model=config.openai.model,
        max_tokens=int(config.openai.max_tokens),
    )
    cache = EntityCache(clients["sonarr"], persist_path=config.cache.persist_path, notify=notify_admin)
    store = ConversationStore(transport=transport, backend=InMemoryStore())
    monitors = MonitorRegistry(
        clients["sonarr"], transport,
        settings=MonitorSettings.from_config(config.monitor),
        backend=InMemoryStore(),
    )
    all_settings = config.to_dict()
    ctx = WorkflowContext(
        transport=transport,
        store=store,
        cache=cache,
        resolver=ReferenceResolver(delegate=classifier.resolve_ambiguous),
        monitors=monitors,
        settings={name: all_settings.get(name, {}) for name in WORKFLOW_SECTIONS},
        **clients,
    )
    engine = WorkflowEngine(ctx, build_workflows(ctx))

    logger.info("Initialising Sonarr series cache")
    max_age = float(config.cache.max_age_hours)
    await cache.ensure_fresh(max_age)

    checker = HealthCheck(
        config,
        sonarr=clients["sonarr"],
        radarr=clients["radarr"],
        plex=clients["plex"],
        qbittorrent=clients["qbittorrent"],
        cache=cache,
    )
    await run_preflight(checker)

    async def status_report() -> str:
        return format_report(await checker.run_all())

    async def reload_settings() -> str:
        return describe_changes(refresh_workflow_settings(config, ctx))

    bot = TelegramBot(
        token=config.telegram.bot_token,
        allowed_chat_ids=config.telegram.allowed_chat_ids,
        engine=engine,
        classifier=classifier,
        transport=transport,
        status_report=status_report,
        reload_settings=reload_settings,
    )

    scheduler = Scheduler(check_interval=float(config.cache.check_interval))
    scheduler.add(DailyJob("sonarr-cache", config.cache.refresh_time, lambda: cache.refresh(scheduled=True)))

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    await bot.start()
    scheduler_task = asyncio.create_task(scheduler.run(), name="scheduler")
    logger.info("Concierge ready in %.2fs", time.monotonic() - BOOT_START)

    await stop_event.wait()

    logger.info("Shutting down")
    scheduler.stop()
    scheduler_task.cancel()
    await asyncio.gather(scheduler_task, return_exceptions=True)
    await monitors.cancel_all()
    await bot.stop()
    logger.info("Shutdown complete")


def main():
    """Entry point: runs the full boot sequence, then waits for a signal."""
    config = get_config()
    setup_logging(config)
    logger.info("=" * 60)
    logger.info("Media Concierge starting (model %s)", config.openai.model)
    logger.info("Telegram bot token: %s", "OK" if config.telegram.bot_token else "MISSING")
    logger.info("=" * 60)

    ensure_data_dirs(config)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
