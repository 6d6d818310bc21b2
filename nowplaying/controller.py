"""
NowPlayingController — wires settings, credentials, backend, router and scheduler.

Switching between local and remote never mutates the backend a running
fetch is using: the scheduler is stopped, a fresh backend, router and
scheduler are built, and polling restarts.
"""

import logging

import aiohttp

from .backends import create_backend
from .backends.remote import API_BASE
from .lib.state import BackendMode, PlayerState
from .playerctl import PlayerctlBridge
from .router import CommandRouter
from .scheduler import PollingScheduler
from .spotify.auth import TokenManager

log = logging.getLogger(__name__)


class NowPlayingController:

    def __init__(self, settings, on_state=None, notify=None, *,
                 bridge: PlayerctlBridge | None = None,
                 auth: TokenManager | None = None,
                 api_base: str = API_BASE):
        self.settings = settings
        self.on_state = on_state or (lambda state: None)
        self.notify = notify
        self.bridge = bridge or PlayerctlBridge(
            settings.bridge_binary, settings.bridge_player, settings.bridge_timeout)
        self.auth = auth or TokenManager(settings, notify=notify)
        self.api_base = api_base
        self.session: aiohttp.ClientSession | None = None
        self.backend = None
        self.router: CommandRouter | None = None
        self.scheduler: PollingScheduler | None = None

    @property
    def mode(self) -> BackendMode:
        return self.settings.mode

    async def start(self):
        self.session = aiohttp.ClientSession()
        self.auth.load()
        self._build(self.settings.mode)
        if self.settings.enable_panel:
            self.scheduler.start()

    async def stop(self):
        if self.scheduler:
            self.scheduler.stop()
        if self.backend:
            await self.backend.close()
        if self.session:
            await self.session.close()
            self.session = None

    def _build(self, mode):
        self.backend = create_backend(
            mode, bridge=self.bridge, auth=self.auth,
            session=self.session, api_base=self.api_base)
        self.router = CommandRouter(self.backend, notify=self.notify)
        self.scheduler = PollingScheduler(
            self.backend, self.on_state, interval=self.settings.poll_interval)

    async def switch_mode(self, mode):
        mode = BackendMode(mode)
        if mode is self.settings.mode and self.backend is not None:
            return
        log.info("Switching backend: %s → %s", self.settings.mode.value, mode.value)
        if self.scheduler:
            self.scheduler.stop()
        if self.backend:
            await self.backend.close()
        self.settings.mode = mode
        self._build(mode)
        if self.settings.enable_panel:
            self.scheduler.start()

    def set_enabled(self, enabled: bool):
        """Panel toggled in settings: start or stop polling."""
        self.settings.enable_panel = bool(enabled)
        if not self.scheduler:
            return
        if enabled:
            self.scheduler.start()
        else:
            self.scheduler.stop()

    def on_authorized(self):
        """Fresh credentials: restart remote polling so the UI updates now."""
        if self.settings.mode is BackendMode.REMOTE and self.settings.enable_panel and self.scheduler:
            self.scheduler.start()

    async def current_state(self) -> PlayerState:
        """Latest published state, or one fresh fetch when not polling.

        While polling, never fetches: before the first tick lands the answer
        is the unavailable shape.
        """
        if self.scheduler.running:
            return self.scheduler.last_state or PlayerState.unavailable()
        return await self.scheduler.poll_once()
