"""
Pluggable playback backends for NowPlaying.

Exactly one backend is active at a time.  The factory ``create_backend``
returns the implementation for a BackendMode:

  - ``local``   – MPRIS players via the playerctl command-line tool (default)
  - ``remote``  – Spotify Web API with PKCE credentials
"""

import logging

import aiohttp

from ..lib.state import BackendMode
from .base import Backend, InvalidPayload
from .local import LocalBackend
from .remote import API_BASE, RemoteBackend

logger = logging.getLogger(__name__)

__all__ = [
    "Backend",
    "InvalidPayload",
    "LocalBackend",
    "RemoteBackend",
    "create_backend",
]


def create_backend(mode: BackendMode, *, bridge=None, auth=None,
                   session: aiohttp.ClientSession | None = None,
                   api_base: str = API_BASE) -> Backend:
    """Build the backend for *mode*.

    local   needs ``bridge`` (a PlayerctlBridge)
    remote  needs ``auth`` (a TokenManager) and an open ``session``
    """
    mode = BackendMode(mode)
    if mode is BackendMode.REMOTE:
        if auth is None or session is None:
            raise ValueError("remote backend needs auth and an HTTP session")
        logger.info("Backend: Spotify Web API @ %s", api_base)
        return RemoteBackend(auth, session, api_base)
    if bridge is None:
        raise ValueError("local backend needs a playerctl bridge")
    logger.info("Backend: local players via %s", bridge.binary)
    return LocalBackend(bridge)
