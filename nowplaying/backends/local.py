"""
Local backend — any MPRIS player, driven through playerctl.
"""

import logging

from ..lib.normalize import normalize_local
from ..lib.state import CommandResult, CommandStatus, PlayerState, RepeatMode
from ..playerctl import PlayerctlBridge, micros_to_ms
from .base import Backend, validate_payload

log = logging.getLogger(__name__)

# Backend action → playerctl verb (actions with payloads handled below)
VERBS = {
    "play": "play",
    "pause": "pause",
    "toggle": "play-pause",
    "next": "next",
    "previous": "previous",
}


class LocalBackend(Backend):

    def __init__(self, bridge: PlayerctlBridge):
        self.bridge = bridge

    async def fetch_state(self) -> PlayerState:
        metadata = await self.bridge.query_metadata()
        if metadata is None:
            # No player running; skip the remaining spawns
            return PlayerState.unavailable()

        status = await self.bridge.query_status()
        position_ms = await self.bridge.query_position_ms()
        shuffle = await self.bridge.query_shuffle()
        loop = await self.bridge.query_loop()
        return normalize_local(
            metadata, status=status, position_ms=position_ms,
            shuffle=shuffle, loop=loop,
            duration_ms=micros_to_ms(metadata.get("length", "0")))

    async def send_command(self, action: str, payload=None) -> CommandResult:
        value = validate_payload(action, payload)

        if action in VERBS:
            ok = await self.bridge.run_command(VERBS[action])
        elif action == "seek":
            ok = await self.bridge.run_command("position", _fmt(value))
        elif action == "volume":
            ok = await self.bridge.run_command("volume", _fmt(value))
        elif action == "toggle_shuffle":
            ok = await self.bridge.run_command("shuffle", "Toggle")
        else:  # repeat
            ok = await self.bridge.run_command("loop", value.value)

        if not ok:
            log.debug("Local %s: no player", action)
            return CommandResult(CommandStatus.UNAVAILABLE, "Media player not available.")
        return CommandResult.success()

    async def query_repeat(self) -> RepeatMode | None:
        mode = await self.bridge.query_loop()
        return RepeatMode(mode) if mode else None

    async def query_shuffle(self) -> bool | None:
        return await self.bridge.query_shuffle()

    async def list_players(self) -> list[str]:
        return await self.bridge.list_players()


def _fmt(number: float) -> str:
    """30.0 → '30', 0.25 → '0.25'."""
    return str(int(number)) if float(number).is_integer() else str(number)
