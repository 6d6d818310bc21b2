# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Canonical, backend-agnostic value types.

A ``PlayerState`` is produced fresh on every poll and never mutated.  Both
backends must return exactly this shape, including when nothing is playing:

    PlayerState.unavailable()            # no player / no session
    PlayerState.unavailable("HTTP 500")  # same shape, diagnostic attached
"""

from dataclasses import dataclass, asdict
from enum import Enum


class BackendMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class RepeatMode(str, Enum):
    """Repeat modes, valued with the names the local bridge accepts."""

    NONE = "None"
    TRACK = "Track"
    PLAYLIST = "Playlist"

    def next(self) -> "RepeatMode":
        order = list(RepeatMode)
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value) -> "RepeatMode":
        """Accept bridge names and Spotify names; anything else is NONE."""
        if isinstance(value, RepeatMode):
            return value
        text = str(value or "").strip().lower()
        if text in ("track",):
            return cls.TRACK
        if text in ("playlist", "context"):
            return cls.PLAYLIST
        return cls.NONE

    @property
    def spotify(self) -> str:
        return {"None": "off", "Track": "track", "Playlist": "context"}[self.value]


@dataclass(frozen=True)
class PlayerState:
    available: bool = False
    playing: bool = False
    title: str = ""
    artist: str = ""
    album: str = ""
    artwork_url: str = ""
    position_ms: int = 0
    duration_ms: int = 0          # 0 = unknown / live
    shuffle: bool = False
    repeat_mode: RepeatMode = RepeatMode.NONE
    error: str = ""               # diagnostic only

    @classmethod
    def unavailable(cls, error: str = "") -> "PlayerState":
        return cls(available=False, playing=False, error=error)

    def to_dict(self) -> dict:
        """JSON shape served by GET /status and pushed over the WebSocket."""
        data = {
            "available": self.available,
            "playing": self.playing,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "artUrl": self.artwork_url,
            "progress_ms": self.position_ms,
            "duration_ms": self.duration_ms,
            "shuffle": self.shuffle,
            "loop": self.repeat_mode.value,
        }
        if self.error:
            data["error"] = self.error
        return data


class CommandStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"                    # no player / bridge missing
    NOT_CONNECTED = "not_connected"                # no usable access token
    CAPABILITY_UNAVAILABLE = "capability_unavailable"  # HTTP 403
    NO_ACTIVE_DEVICE = "no_active_device"          # HTTP 404
    FAILED = "failed"


@dataclass(frozen=True)
class CommandResult:
    status: CommandStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is CommandStatus.OK

    @classmethod
    def success(cls) -> "CommandResult":
        return cls(CommandStatus.OK)


@dataclass(frozen=True)
class Notice:
    """A user-visible message (toast) for the UI."""

    level: str      # info | success | warning | error
    message: str

    def to_dict(self) -> dict:
        return asdict(self)
