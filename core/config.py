"""
Concierge Centralized Configuration

Loads settings from config/settings.toml, applies environment variable
overrides (including a local .env file), and exposes a thread-safe
singleton via get_config().

Usage:
    from core.config import get_config

    config = get_config()
    url = config.sonarr.url               # dot-access
    every = config.monitor.command_poll_interval
    config.reload()                       # hot-reload from disk
"""

import logging
import os
import threading
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger("concierge.config")


# ---------------------------------------------------------------------------
# Hardcoded fallback defaults, used when settings.toml is missing
# ---------------------------------------------------------------------------

_DEFAULTS: dict[str, Any] = {
    "telegram": {
        "bot_token": "",
        "allowed_chat_ids": [],
        "admin_chat_id": 0,
    },
    "openai": {
        "api_key": "",
        "model": "gpt-4o-mini",
        "max_tokens": 300,
    },
    "sonarr": {
        "url": "",
        "api_key": "",
        "default_root": "",
        "default_profile": "",
    },
    "radarr": {
        "url": "",
        "api_key": "",
        "default_root": "",
        "default_profile": "",
    },
    "plex": {
        "url": "",
        "token": "",
        "tv_section": "",
        "movie_section": "",
    },
    "tmdb": {
        "api_key": "",
        "url": "https://api.themoviedb.org/3",
    },
    "qbittorrent": {
        "url": "",
        "username": "",
        "password": "",
        "tv_category": "tv",
        "movie_category": "movies",
    },
    "nas": {
        "share_roots": [],
        "ssh_host": "",
        "ssh_port": 22,
        "ssh_username": "",
        "ssh_key_path": "",
        "preview_limit": 5,
        "command_timeout": 60,
    },
    "optimize": {
        "min_size_gb": 40,
        "tv_min_size_gb": 40,
        "target_profile": "",
        "tv_target_profile": "",
        "default_limit": 20,
        "max_limit": 50,
    },
    "rankings": {
        "default_limit": 10,
        "max_limit": 30,
    },
    "cache": {
        "persist_path": "data/cache/sonarr_series.json",
        "max_age_hours": 24,
        "refresh_time": "00:00",
        "check_interval": 30,
    },
    "monitor": {
        "command_poll_interval": 5.0,
        "command_timeout": 600.0,
        "artifact_poll_interval": 10.0,
        "artifact_timeout": 300.0,
        "max_attempts": 3,
    },
    "http": {
        "connect_timeout": 10.0,
        "read_timeout": 30.0,
    },
    "logging": {
        "level": "INFO",
        "file": "data/logs/concierge.log",
        "max_bytes": 5242880,
        "backup_count": 3,
    },
}


def _csv_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _int_list(value: str) -> list[int]:
    return [int(part) for part in _csv_list(value)]


# Environment variable overrides: ENV_VAR → section.key
# Only flat (non-nested) keys are supported via env vars.
_ENV_OVERRIDES: list[tuple[str, str, Any]] = [
    ("TG_BOT_TOKEN",                 "telegram.bot_token",           str),
    ("TG_ALLOWED_CHAT_IDS",          "telegram.allowed_chat_ids",    _int_list),
    ("ADMIN_CHAT_ID",                "telegram.admin_chat_id",       int),
    ("OPENAI_API_KEY",               "openai.api_key",               str),
    ("OPENAI_MODEL",                 "openai.model",                 str),
    ("SONARR_URL",                   "sonarr.url",                   str),
    ("SONARR_API_KEY",               "sonarr.api_key",               str),
    ("SONARR_DEFAULT_ROOT",          "sonarr.default_root",          str),
    ("SONARR_DEFAULT_PROFILE",       "sonarr.default_profile",       str),
    ("RADARR_URL",                   "radarr.url",                   str),
    ("RADARR_API_KEY",               "radarr.api_key",               str),
    ("RADARR_DEFAULT_ROOT",          "radarr.default_root",          str),
    ("RADARR_DEFAULT_PROFILE",       "radarr.default_profile",       str),
    ("TMDB_API_KEY",                 "tmdb.api_key",                 str),
    ("PLEX_URL",                     "plex.url",                     str),
    ("PLEX_TOKEN",                   "plex.token",                   str),
    ("PLEX_TV_SECTION",              "plex.tv_section",              str),
    ("PLEX_MOVIE_SECTION",           "plex.movie_section",           str),
    ("QBITTORRENT_URL",              "qbittorrent.url",              str),
    ("QBITTORRENT_USERNAME",         "qbittorrent.username",         str),
    ("QBITTORRENT_PASSWORD",         "qbittorrent.password",         str),
    ("QBITTORRENT_TV_CATEGORY",      "qbittorrent.tv_category",      str),
    ("QBITTORRENT_MOVIE_CATEGORY",   "qbittorrent.movie_category",   str),
    ("NAS_SHARE_ROOTS",              "nas.share_roots",              _csv_list),
    ("NAS_SSH_HOST",                 "nas.ssh_host",                 str),
    ("NAS_SSH_PORT",                 "nas.ssh_port",                 int),
    ("NAS_SSH_USERNAME",             "nas.ssh_username",             str),
    ("NAS_SSH_KEY_PATH",             "nas.ssh_key_path",             str),
    ("OPTIMIZE_MIN_SIZE_GB",         "optimize.min_size_gb",         float),
    ("OPTIMIZE_TV_MIN_SIZE_GB",      "optimize.tv_min_size_gb",      float),
    ("OPTIMIZE_TARGET_PROFILE",      "optimize.target_profile",      str),
    ("OPTIMIZE_TV_TARGET_PROFILE",   "optimize.tv_target_profile",   str),
    ("CONCIERGE_LOG_LEVEL",          "logging.level",                str),
]


# ---------------------------------------------------------------------------
# ConfigSection: dot-access wrapper for nested dicts
# ---------------------------------------------------------------------------

class ConfigSection:
    """Wraps a dict so values are accessible as attributes.

    Nested dicts become nested ConfigSections automatically.

        section = ConfigSection({"url": "http://nas", "nested": {"key": "val"}})
        section.url         # "http://nas"
        section.nested.key  # "val"
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return super().__getattribute__(name)
        try:
            value = self._data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no key '{name}'. Available: {list(self._data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def get(self, name: str, default: Any = None) -> Any:
        return self._data.get(name, default)

    def __repr__(self) -> str:
        return f"ConfigSection({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        """Return the underlying dict (with nested dicts, not ConfigSections)."""
        return self._data


# ---------------------------------------------------------------------------
# ConciergeConfig: main config object
# ---------------------------------------------------------------------------

class ConciergeConfig:
    """Loads and manages Concierge configuration.

    Reads config/settings.toml relative to the project root, merges
    with hardcoded defaults, then applies environment variable overrides.
    A .env file in the working directory is loaded into the environment
    first so deployments can keep secrets out of settings.toml.

    Attributes are accessed via dot-notation through ConfigSection:
        config.sonarr.api_key
        config.monitor.max_attempts
    """

    def __init__(self, config_path: str | Path | None = None, load_env_file: bool = True):
        self._lock = threading.Lock()
        self._config_path = self._resolve_path(config_path)
        self._load_env_file = load_env_file
        self._data: dict[str, Any] = {}
        self.last_loaded: str = ""
        self._load()

    @staticmethod
    def _resolve_path(config_path: str | Path | None) -> Path:
        """Resolve the config file path, defaulting to config/settings.toml."""
        if config_path is not None:
            return Path(config_path)
        project_root = Path(__file__).resolve().parent.parent
        return project_root / "config" / "settings.toml"

    def _load(self):
        """Load config from TOML, merge with defaults, apply env overrides."""
        data = _deep_copy(_DEFAULTS)

        if self._load_env_file:
            load_dotenv()

        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    toml_data = tomllib.load(f)
                _deep_merge(data, toml_data)
                logger.info("Configuration loaded from %s", self._config_path)
            except Exception as e:
                logger.warning(
                    "Failed to read %s: %s, using fallback defaults",
                    self._config_path, e,
                )
        else:
            logger.warning(
                "Config file not found at %s, using fallback defaults",
                self._config_path,
            )

        for env_var, dotpath, cast in _ENV_OVERRIDES:
            env_val = os.environ.get(env_var)
            if env_val is None or env_val == "":
                continue
            try:
                _set_nested(data, dotpath, cast(env_val))
                # Values may be secrets; log the key only
                logger.debug("Env override applied: %s", env_var)
            except (ValueError, TypeError) as e:
                logger.warning("Invalid env override %s: %s", env_var, e)

        self._data = data
        self.last_loaded = datetime.now(timezone.utc).isoformat()

    def reload(self) -> dict[str, Any]:
        """Reload configuration from disk.

        Returns a dict of changed values for logging, e.g.:
            {"monitor.max_attempts": {"old": 3, "new": 5}}

        Backend clients read their URL and key once at construction,
        so changes to those need a restart.
        """
        with self._lock:
            old_data = _deep_copy(self._data)
            self._load()
            changes = _diff_dicts(old_data, self._data)
            if changes:
                logger.info("Configuration reloaded, %d change(s)", len(changes))
            else:
                logger.info("Configuration reloaded, no changes")
            return changes

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("last_loaded", "reload", "to_dict"):
            return super().__getattribute__(name)
        try:
            data = super().__getattribute__("_data")
        except AttributeError:
            raise AttributeError(name)
        try:
            value = data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no section '{name}'. Available: {list(data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return the full config as a plain dict (JSON-serializable)."""
        return _deep_copy(self._data)


# ---------------------------------------------------------------------------
# Thread-safe singleton
# ---------------------------------------------------------------------------

_instance: ConciergeConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> ConciergeConfig:
    """Return the global ConciergeConfig singleton.

    Thread-safe. The first call creates the instance; subsequent calls
    return the same object. Pass config_path only on first call to
    override the default location.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = ConciergeConfig(config_path=config_path)
    return _instance


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Simple deep copy for nested dicts of primitives."""
    out = {}
    for k, v in d.items():
        if isinstance(v, dict):
            out[k] = _deep_copy(v)
        elif isinstance(v, list):
            out[k] = list(v)
        else:
            out[k] = v
    return out


def _deep_merge(base: dict, override: dict):
    """Merge override into base in-place. Nested dicts are merged recursively."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _set_nested(data: dict, dotpath: str, value: Any):
    """Set a value in a nested dict using a dot-separated path.

    _set_nested(d, "sonarr.url", "http://nas:8989")
    → d["sonarr"]["url"] = "http://nas:8989"
    """
    keys = dotpath.split(".")
    target = data
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def _diff_dicts(old: dict, new: dict, prefix: str = "") -> dict[str, dict]:
    """Return a dict of changed values between two nested dicts.

    Returns: {"dotpath": {"old": ..., "new": ...}}
    """
    changes = {}
    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        dotpath = f"{prefix}.{key}" if prefix else key
        old_val = old.get(key)
        new_val = new.get(key)
        if isinstance(old_val, dict) and isinstance(new_val, dict):
            changes.update(_diff_dicts(old_val, new_val, dotpath))
        elif old_val != new_val:
            changes[dotpath] = {"old": old_val, "new": new_val}
    return changes


# ---------------------------------------------------------------------------
# Reload reporting
# ---------------------------------------------------------------------------

_SECRET_MARKERS = ("token", "api_key", "password")


def describe_changes(changes: dict[str, dict]) -> str:
    """Chat-friendly summary of a reload() diff. Secret values are masked."""
    if not changes:
        return "🔄 Settings reloaded, nothing changed."
    lines = [f"🔄 Settings reloaded, {len(changes)} change(s):"]
    for dotpath in sorted(changes):
        change = changes[dotpath]
        if any(marker in dotpath for marker in _SECRET_MARKERS):
            lines.append(f"• {dotpath}: (updated)")
        else:
            lines.append(f"• {dotpath}: {change['old']!r} → {change['new']!r}")
    return "\n".join(lines)
