"""
Remote backend — Spotify Web API, authenticated through TokenManager.

Spotify Web API (JSON, Bearer token):
  GET  /me/player/currently-playing   — 200 track object, 204 nothing playing
  GET  /me/player                     — full player (shuffle_state, repeat_state)
  PUT  /me/player/play  /pause        — transport
  POST /me/player/next  /previous
  PUT  /me/player/seek?position_ms=N
  PUT  /me/player/volume?volume_percent=N
  PUT  /me/player/shuffle?state=true|false
  PUT  /me/player/repeat?state=off|track|context

Control status codes: 200/202/204 ok, 403 Premium required (or no device
accepts the command), 404 no active device.
"""

import asyncio
import logging

import aiohttp

from ..lib.normalize import normalize_remote
from ..lib.state import CommandResult, CommandStatus, PlayerState, RepeatMode
from .base import Backend, validate_payload

log = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"


class RemoteBackend(Backend):

    def __init__(self, auth, session: aiohttp.ClientSession, api_base: str = API_BASE):
        self.auth = auth
        self.session = session
        self.api_base = api_base.rstrip("/")

    # ── HTTP helpers ──

    def _url(self, command: str) -> str:
        return f"{self.api_base}/me/player/{command}".rstrip("/")

    async def _get_json(self, path: str, token: str):
        """GET *path*; returns (status, body-or-None)."""
        async with self.session.get(
            self._url(path), headers={"Authorization": f"Bearer {token}"},
        ) as resp:
            if resp.status == 200:
                return resp.status, await resp.json(content_type=None)
            return resp.status, None

    async def _player(self) -> dict | None:
        """Full player object, or None when unreachable / idle."""
        token = await self.auth.get_valid_access_token()
        if not token:
            return None
        try:
            status, body = await self._get_json("", token)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log.warning("Spotify player query failed: %s", e)
            return None
        return body if status == 200 and isinstance(body, dict) else None

    # ── Backend ──

    async def fetch_state(self) -> PlayerState:
        token = await self.auth.get_valid_access_token()
        if not token:
            return PlayerState.unavailable("Not connected to Spotify")
        try:
            status, body = await self._get_json("currently-playing", token)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log.warning("Spotify player fetch error: %s", e)
            return PlayerState.unavailable(str(e) or type(e).__name__)

        if status == 204:
            return PlayerState.unavailable()
        if status != 200:
            log.debug("Spotify currently-playing returned %d", status)
            return PlayerState.unavailable(f"HTTP {status}")
        if not isinstance(body, dict):
            return PlayerState.unavailable("Malformed response")
        return normalize_remote(body)

    async def send_command(self, action: str, payload=None) -> CommandResult:
        value = validate_payload(action, payload)

        token = await self.auth.get_valid_access_token()
        if not token:
            return CommandResult(CommandStatus.NOT_CONNECTED, "Not connected to Spotify.")

        if action == "toggle":
            player = await self._player()
            action = "pause" if player and player.get("is_playing") else "play"

        params = None
        if action in ("play", "pause"):
            method, command = "PUT", action
        elif action in ("next", "previous"):
            method, command = "POST", action
        elif action == "seek":
            method, command = "PUT", "seek"
            params = {"position_ms": str(int(value * 1000))}
        elif action == "volume":
            method, command = "PUT", "volume"
            params = {"volume_percent": str(round(value * 100))}
        elif action == "toggle_shuffle":
            player = await self._player()
            current = bool(player and player.get("shuffle_state"))
            method, command = "PUT", "shuffle"
            params = {"state": "false" if current else "true"}
        else:  # repeat
            method, command = "PUT", "repeat"
            params = {"state": value.spotify}

        return await self._control(method, command, token, params)

    async def _control(self, method, command, token, params=None) -> CommandResult:
        try:
            async with self.session.request(
                method, self._url(command), params=params,
                headers={"Authorization": f"Bearer {token}"},
            ) as resp:
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning("Spotify control error (%s): %s", command, e)
            return CommandResult(CommandStatus.FAILED, "Failed to send command.")

        if status in (200, 202, 204):
            log.info("Spotify %s ok", command)
            return CommandResult.success()
        if status == 403:
            return CommandResult(
                CommandStatus.CAPABILITY_UNAVAILABLE,
                "Spotify Premium required for controls (or no active device found).")
        if status == 404:
            return CommandResult(
                CommandStatus.NO_ACTIVE_DEVICE,
                "No active Spotify device found. Start playback on a device first.")
        log.warning("Spotify %s returned HTTP %d", command, status)
        return CommandResult(CommandStatus.FAILED, f"Failed to send command (HTTP {status}).")

    async def query_repeat(self) -> RepeatMode | None:
        player = await self._player()
        if player is None:
            return None
        return RepeatMode.parse(player.get("repeat_state"))

    async def query_shuffle(self) -> bool | None:
        player = await self._player()
        if player is None:
            return None
        return bool(player.get("shuffle_state"))
