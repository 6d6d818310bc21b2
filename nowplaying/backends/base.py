# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Abstract base class for NowPlaying backends.

Every backend must implement fetch_state, send_command, query_repeat and
query_shuffle.  fetch_state never raises for "nothing is playing"; it
returns PlayerState.unavailable() instead.

Actions understood by send_command:

    play  pause  toggle  next  previous
    seek            payload: seconds (number)
    volume          payload: 0.0 – 1.0
    toggle_shuffle
    repeat          payload: RepeatMode (absolute, never relative)
"""

import math
from abc import ABC, abstractmethod

from ..lib.state import CommandResult, PlayerState, RepeatMode

ACTIONS = ("play", "pause", "toggle", "next", "previous",
           "seek", "volume", "toggle_shuffle", "repeat")


class InvalidPayload(ValueError):
    """A command payload failed validation before reaching any backend."""


def require_number(value, name: str) -> float:
    """Return *value* as a float, or raise InvalidPayload."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidPayload(f"{name} must be a number")
    return float(value)


def validate_payload(action: str, payload):
    """Check and coerce the payload for *action*.  Raises InvalidPayload."""
    if action not in ACTIONS:
        raise InvalidPayload(f"Unknown action: {action}")
    if action == "seek":
        seconds = require_number(payload, "position")
        if seconds < 0:
            raise InvalidPayload("position must not be negative")
        return seconds
    if action == "volume":
        volume = require_number(payload, "volume")
        if not 0.0 <= volume <= 1.0:
            raise InvalidPayload("volume must be between 0 and 1")
        return volume
    if action == "repeat":
        if not isinstance(payload, RepeatMode):
            raise InvalidPayload("repeat needs a RepeatMode")
        return payload
    return None


class Backend(ABC):
    """Interface every backend must implement."""

    @abstractmethod
    async def fetch_state(self) -> PlayerState: ...

    @abstractmethod
    async def send_command(self, action: str, payload=None) -> CommandResult: ...

    @abstractmethod
    async def query_repeat(self) -> RepeatMode | None: ...

    @abstractmethod
    async def query_shuffle(self) -> bool | None: ...

    async def close(self) -> None:
        pass  # no-op by default (nothing to release)
