# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
CommandRouter — UI actions onto the active backend.

The router keeps no player state.  Shuffle and repeat are re-read from the
backend on every call because the player itself (or another controller)
may have changed them since the last poll.

Repeat cycles None → Track → Playlist → None and is always sent as an
absolute mode: playerctl only accepts mode names.

Non-OK results are turned into notices so the UI can show a toast:

    403  → "Premium required"   (capability unavailable)
    404  → "No active device"
    no token, no player, other failures → their own messages
"""

import logging

from .backends.base import Backend, validate_payload
from .lib.state import CommandResult, CommandStatus, Notice, RepeatMode

log = logging.getLogger(__name__)

NOTICE_LEVELS = {
    CommandStatus.CAPABILITY_UNAVAILABLE: "error",
    CommandStatus.NO_ACTIVE_DEVICE: "warning",
    CommandStatus.NOT_CONNECTED: "warning",
    CommandStatus.UNAVAILABLE: "warning",
    CommandStatus.FAILED: "error",
}


class CommandRouter:

    def __init__(self, backend: Backend, notify=None):
        self.backend = backend
        self._notify = notify

    async def _send(self, action, payload=None) -> CommandResult:
        # Raises InvalidPayload before anything reaches the backend
        payload = validate_payload(action, payload)
        result = await self.backend.send_command(action, payload)
        if not result.ok:
            log.info("%s → %s", action, result.status.value)
            self._emit(NOTICE_LEVELS.get(result.status, "error"),
                       result.message or "Failed to send command.")
        return result

    async def play(self):
        return await self._send("play")

    async def pause(self):
        return await self._send("pause")

    async def toggle(self):
        return await self._send("toggle")

    async def next(self):
        return await self._send("next")

    async def previous(self):
        return await self._send("previous")

    async def seek(self, seconds):
        return await self._send("seek", seconds)

    async def set_volume(self, volume):
        return await self._send("volume", volume)

    async def toggle_shuffle(self):
        result = await self._send("toggle_shuffle")
        if result.ok:
            self._emit("info", "Shuffle toggled")
        return result

    async def cycle_repeat(self):
        """Advance the repeat mode.  Returns (result, mode sent)."""
        current = await self.backend.query_repeat() or RepeatMode.NONE
        mode = current.next()
        result = await self._send("repeat", mode)
        if result.ok:
            self._emit("info", f"Repeat: {mode.value}")
        return result, mode

    def _emit(self, level, message):
        if self._notify:
            self._notify(Notice(level, message))
