"""
Shared configuration loader for NowPlaying.

Loads a single JSON config file.  Search order:
  1. $NOWPLAYING_CONFIG              (explicit override)
  2. /etc/nowplaying/config.json     (system install)
  3. config.json                     (CWD — handy for local dev)

The Spotify client id may also come from the SPOTIFY_CLIENT_ID environment
variable so it can stay out of the JSON file.

Usage:
    from nowplaying.lib.config import cfg, Settings

    mode     = cfg("backend", "mode", default="local")
    interval = cfg("polling", "interval", default=1.0)
    settings = Settings.from_config()
"""

import json
import logging
import os
from dataclasses import dataclass

from .state import BackendMode

logger = logging.getLogger(__name__)

_config: dict | None = None

DEFAULT_PORT = 8780
DEFAULT_TOKEN_PATH = os.path.join(
    os.path.expanduser("~"), ".config", "nowplaying", "spotify_tokens.json")


def _search_paths() -> list[str]:
    paths = []
    override = os.getenv("NOWPLAYING_CONFIG")
    if override:
        paths.append(override)
    paths += ["/etc/nowplaying/config.json", "config.json"]
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    backend = config.get("backend") or {}
    mode = backend.get("mode", "local")
    if mode not in ("local", "remote"):
        logger.warning("Config %s: unknown backend.mode '%s' — using local", path, mode)
    spotify = config.get("spotify") or {}
    if mode == "remote" and not (spotify.get("client_id") or os.getenv("SPOTIFY_CLIENT_ID")):
        logger.warning("Config %s: remote backend selected but no spotify.client_id", path)
    interval = (config.get("polling") or {}).get("interval", 1.0)
    if not isinstance(interval, (int, float)) or interval <= 0:
        logger.warning("Config %s: polling.interval must be a positive number", path)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.info("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("backend")                      → config["backend"]
    cfg("backend", "mode")              → config["backend"]["mode"]
    cfg("polling", "interval", default=1.0)  → config["polling"]["interval"] or 1.0
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


@dataclass
class Settings:
    """Explicit runtime settings handed to the token manager, scheduler and service."""

    mode: BackendMode = BackendMode.LOCAL
    client_id: str = ""
    redirect_uri: str = ""
    poll_interval: float = 1.0
    enable_panel: bool = True
    bridge_binary: str = "playerctl"
    bridge_player: str | None = None
    bridge_timeout: float | None = None
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    token_path: str = DEFAULT_TOKEN_PATH

    def __post_init__(self):
        if not self.redirect_uri:
            self.redirect_uri = f"http://{self.host}:{self.port}/callback"

    @classmethod
    def from_config(cls) -> "Settings":
        mode = str(cfg("backend", "mode", default="local")).lower()
        if mode not in ("local", "remote"):
            mode = "local"
        interval = cfg("polling", "interval", default=1.0)
        if not isinstance(interval, (int, float)) or interval <= 0:
            interval = 1.0
        port = int(cfg("server", "port", default=DEFAULT_PORT))
        host = cfg("server", "host", default="127.0.0.1")
        timeout = cfg("bridge", "timeout")
        return cls(
            mode=BackendMode(mode),
            client_id=os.getenv("SPOTIFY_CLIENT_ID") or cfg("spotify", "client_id", default=""),
            redirect_uri=cfg("spotify", "redirect_uri", default=""),
            poll_interval=float(interval),
            enable_panel=bool(cfg("panel", "enabled", default=True)),
            bridge_binary=cfg("bridge", "binary", default="playerctl"),
            bridge_player=cfg("bridge", "player"),
            bridge_timeout=float(timeout) if timeout is not None else None,
            host=host,
            port=port,
            token_path=cfg("spotify", "token_path", default=DEFAULT_TOKEN_PATH),
        )
