"""Tests for PollingScheduler timing and lifecycle."""

import asyncio

import pytest

from fakes import FakeBackend
from nowplaying.lib.state import PlayerState
from nowplaying.scheduler import PollingScheduler

INTERVAL = 0.05


class SlowBackend(FakeBackend):
    def __init__(self, delay):
        super().__init__(state=PlayerState(available=True, title="T"))
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def fetch_state(self):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            return await super().fetch_state()
        finally:
            self.active -= 1


class FailingBackend(FakeBackend):
    async def fetch_state(self):
        raise RuntimeError("bridge exploded")


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_double_start_runs_one_loop(self):
        backend = FakeBackend()
        states = []
        scheduler = PollingScheduler(backend, states.append, interval=INTERVAL)

        scheduler.start()
        scheduler.start()
        await asyncio.sleep(0.3)
        scheduler.stop()

        # Roughly one callback per interval, not two
        assert 4 <= len(states) <= 8

    @pytest.mark.asyncio
    async def test_no_callback_after_stop(self):
        backend = SlowBackend(delay=0.1)
        states = []
        scheduler = PollingScheduler(backend, states.append, interval=INTERVAL)

        scheduler.start()
        await asyncio.sleep(0.02)  # first fetch in flight
        scheduler.stop()
        await asyncio.sleep(0.2)

        assert states == []
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        states = []
        scheduler = PollingScheduler(FakeBackend(), states.append, interval=INTERVAL)

        scheduler.start()
        scheduler.stop()
        scheduler.start()
        await asyncio.sleep(0.02)
        scheduler.stop()

        assert len(states) == 1


class TestTicks:

    @pytest.mark.asyncio
    async def test_slow_fetch_never_overlaps(self):
        backend = SlowBackend(delay=INTERVAL * 2)
        states = []
        scheduler = PollingScheduler(backend, states.append, interval=INTERVAL)

        scheduler.start()
        await asyncio.sleep(0.45)
        scheduler.stop()

        assert backend.max_active == 1
        # Missed ticks are skipped, not replayed in a burst
        assert 2 <= len(states) <= 5

    @pytest.mark.asyncio
    async def test_backend_error_publishes_unavailable(self):
        states = []
        scheduler = PollingScheduler(FailingBackend(), states.append, interval=INTERVAL)

        scheduler.start()
        await asyncio.sleep(0.02)
        scheduler.stop()

        assert states == [PlayerState.unavailable("bridge exploded")]
        assert scheduler.last_state == states[0]

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_polling(self):
        calls = []

        def on_state(state):
            calls.append(state)
            raise ValueError("ui gone")

        scheduler = PollingScheduler(FakeBackend(), on_state, interval=INTERVAL)
        scheduler.start()
        await asyncio.sleep(0.18)
        scheduler.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        states = []

        async def on_state(state):
            states.append(state)

        scheduler = PollingScheduler(FakeBackend(), on_state, interval=INTERVAL)
        scheduler.start()
        await asyncio.sleep(0.02)
        scheduler.stop()

        assert len(states) == 1
