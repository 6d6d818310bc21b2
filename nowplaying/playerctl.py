# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Client for the ``playerctl`` command-line tool (MPRIS media players).

Every query is one process spawn.  playerctl exits 1 when no player is
running, so a failed spawn, a non-zero exit and empty output all mean the
same thing here: the value is unavailable, returned as None.  Nothing in
this module raises for process-level failures.

Units as reported by playerctl:
  position       — seconds (float)
  mpris:length   — microseconds (int)
Both are floored to whole milliseconds.
"""

import asyncio
import json
import logging
import math
import shutil

log = logging.getLogger(__name__)

# One spawn for all display fields.  Quotes inside a title break the JSON,
# which is why query_metadata() keeps a per-field fallback.
METADATA_FORMAT = ('{"title":"{{title}}","artist":"{{artist}}","album":"{{album}}",'
                   '"artUrl":"{{mpris:artUrl}}","length":"{{mpris:length}}"}')

FALLBACK_FIELDS = {
    "title": "title",
    "artist": "artist",
    "album": "album",
    "artUrl": "mpris:artUrl",
}

STATUSES = ("Playing", "Paused", "Stopped")
LOOP_MODES = ("None", "Track", "Playlist")


def seconds_to_ms(text) -> int:
    """'30.5' → 30500.  Malformed or negative input gives 0."""
    try:
        value = float(text)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return math.floor(value * 1000)


def micros_to_ms(text) -> int:
    """'200000000' → 200000.  Malformed or negative input gives 0."""
    try:
        value = int(str(text).strip())
    except (TypeError, ValueError):
        return 0
    return max(0, value // 1000)


class PlayerctlBridge:
    """Async wrapper around one playerctl binary (optionally pinned to a player)."""

    def __init__(self, binary: str = "playerctl", player: str | None = None,
                 timeout: float | None = None):
        self.binary = binary
        self.player = player
        self.timeout = timeout

    def check_available(self) -> bool:
        """Log whether the binary is on PATH.  Called once at startup."""
        if shutil.which(self.binary):
            log.info("%s found, local control ready", self.binary)
            return True
        log.warning("%s not found! Install it with: sudo pacman -S playerctl (Arch) "
                    "or sudo apt install playerctl (Debian/Ubuntu)", self.binary)
        return False

    async def _run(self, *args: str) -> str | None:
        """Run playerctl with *args*; stdout stripped, or None when unavailable."""
        text = await self._exec(*args)
        return text or None

    async def _exec(self, *args: str) -> str | None:
        """Spawn once.  Returns stdout (possibly empty) on exit 0, else None."""
        cmd = [self.binary]
        if self.player:
            cmd.append(f"--player={self.player}")
        cmd.extend(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            log.debug("Could not launch %s: %s", self.binary, e)
            return None

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            _kill(proc)
            await proc.wait()
            log.debug("%s %s timed out", self.binary, " ".join(args))
            return None
        except asyncio.CancelledError:
            # Poll stopped or mode switched mid-spawn
            _kill(proc)
            raise

        if proc.returncode != 0:
            log.debug("%s %s exited %d", self.binary, " ".join(args), proc.returncode)
            return None
        return stdout.decode(errors="replace").strip()

    # -- Queries --

    async def query_metadata(self) -> dict | None:
        """Display fields as text, or None when no player is running."""
        raw = await self._run("metadata", "--format", METADATA_FORMAT)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return {k: str(v) for k, v in data.items() if v is not None}

        log.debug("Structured metadata unparseable, querying fields one by one")
        fields = {}
        for key, field in FALLBACK_FIELDS.items():
            value = await self._run("metadata", field)
            if value is not None:
                fields[key] = value
        return fields or None

    async def query_status(self) -> str | None:
        status = await self._run("status")
        return status if status in STATUSES else None

    async def query_position_ms(self) -> int | None:
        raw = await self._run("position")
        if raw is None:
            return None
        return seconds_to_ms(raw)

    async def query_shuffle(self) -> bool | None:
        raw = await self._run("shuffle")
        if raw is None:
            return None
        return raw == "On"

    async def query_loop(self) -> str | None:
        raw = await self._run("loop")
        return raw if raw in LOOP_MODES else None

    async def list_players(self) -> list[str]:
        output = await self._run("--list-all")
        if not output:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    # -- Control --

    async def run_command(self, verb: str, arg=None) -> bool:
        """Run a control verb (play, next, position 30, loop Track …)."""
        args = [verb]
        if arg is not None:
            args.append(str(arg))
        return await self._exec(*args) is not None


def _kill(proc):
    try:
        proc.kill()
    except ProcessLookupError:
        pass  # already exited
