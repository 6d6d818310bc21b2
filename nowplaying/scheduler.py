# NowPlaying
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PollingScheduler — one timed loop feeding PlayerState to the UI.

Ticks never overlap: the next fetch starts only after the previous one
returned, and ticks missed while a slow fetch was running are skipped,
not replayed.  Each tick always publishes a PlayerState; a backend error
becomes ``PlayerState.unavailable(error=...)``.

start() is idempotent (any previous loop is cancelled first).  After
stop() returns no further on_state callbacks fire, even if a fetch that
was already running completes later.
"""

import asyncio
import inspect
import logging

from .lib.state import PlayerState

log = logging.getLogger(__name__)


class PollingScheduler:

    def __init__(self, backend, on_state, interval: float = 1.0):
        self.backend = backend
        self.on_state = on_state
        self.interval = interval
        self.last_state: PlayerState | None = None
        self._task: asyncio.Task | None = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self.stop()
        generation = self._generation
        self._task = asyncio.create_task(self._poll_loop(generation))
        log.info("Polling started (every %.2fs)", self.interval)

    def stop(self):
        self._generation += 1
        if self._task:
            self._task.cancel()
            self._task = None
            log.info("Polling stopped")

    async def poll_once(self) -> PlayerState:
        """One fetch that never raises."""
        try:
            return await self.backend.fetch_state()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Player fetch error: %s", e)
            return PlayerState.unavailable(str(e) or type(e).__name__)

    async def _poll_loop(self, generation):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while True:
                state = await self.poll_once()
                if generation != self._generation:
                    return
                await self._publish(state)

                next_tick += self.interval
                now = loop.time()
                if next_tick < now:
                    missed = int((now - next_tick) // self.interval) + 1
                    log.debug("Fetch overran, skipping %d tick(s)", missed)
                    next_tick += missed * self.interval
                await asyncio.sleep(next_tick - now)
        except asyncio.CancelledError:
            return

    async def _publish(self, state):
        self.last_state = state
        try:
            result = self.on_state(state)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("State callback failed")
