# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Map each backend's raw shape onto the canonical PlayerState.

The two paths treat a missing title differently.  The local bridge sometimes
reports an empty title for a real, playing track, so the local path fills in
"Unknown".  An empty Spotify response reliably means there is no session, so
the remote path returns the unavailable shape instead of inventing a title.
"""

from .state import PlayerState, RepeatMode


def normalize_local(metadata: dict | None, status: str | None = None,
                    position_ms: int | None = None, shuffle: bool | None = None,
                    loop: str | None = None, duration_ms: int = 0) -> PlayerState:
    """Build a PlayerState from bridge query results (None = not reported)."""
    if not metadata:
        return PlayerState.unavailable()
    return PlayerState(
        available=True,
        playing=status == "Playing",
        title=metadata.get("title") or "Unknown",
        artist=metadata.get("artist") or "Unknown",
        album=metadata.get("album") or "",
        artwork_url=metadata.get("artUrl") or "",
        position_ms=max(0, position_ms or 0),
        duration_ms=max(0, duration_ms or 0),
        shuffle=bool(shuffle),
        repeat_mode=RepeatMode.parse(loop),
    )


def normalize_remote(payload: dict | None) -> PlayerState:
    """Build a PlayerState from a Spotify currently-playing / player object."""
    if not payload:
        return PlayerState.unavailable()
    item = payload.get("item") or {}
    title = item.get("name") or ""
    if not title:
        return PlayerState.unavailable()

    artists = ", ".join(a["name"] for a in item.get("artists") or [] if a.get("name"))
    album = item.get("album") or {}
    images = album.get("images") or []
    artwork = images[0].get("url", "") if images else ""

    return PlayerState(
        available=True,
        playing=bool(payload.get("is_playing")),
        title=title,
        artist=artists,
        album=album.get("name") or "",
        artwork_url=artwork or "",
        position_ms=max(0, int(payload.get("progress_ms") or 0)),
        duration_ms=max(0, int(item.get("duration_ms") or 0)),
        shuffle=bool(payload.get("shuffle_state")),
        repeat_mode=RepeatMode.parse(payload.get("repeat_state")),
    )


def progress_ratio(state: PlayerState) -> float:
    """Fraction of the track played, clamped to [0, 1]; 0 when duration is unknown."""
    if state.duration_ms <= 0:
        return 0.0
    return min(1.0, max(0.0, state.position_ms / state.duration_ms))


def format_time(ms: int) -> str:
    """Milliseconds as m:ss."""
    total = max(0, int(ms)) // 1000
    return f"{total // 60}:{total % 60:02d}"
