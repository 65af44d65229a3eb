# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the asyncio session host."""

import asyncio

import pytest

from cuesync.engine import AlignmentEngine
from cuesync.layout import StaticLayout
from cuesync.session import SyncSession

LINES = [
    "Every morning the baker opens her small shop.",
    "Customers arrive early hoping for warm fresh bread.",
    "The smell of cinnamon drifts along the street.",
    "Children press their faces against the glass window.",
]
SCRIPT = "\n\n".join(LINES)


class FakeClock:
    """Millisecond clock under test control."""

    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now


class TestSubmit:
    """Transcript events pass through the session to the engine."""

    @pytest.mark.asyncio
    async def test_interim_throttle(self):
        clock = FakeClock()
        session = SyncSession(AlignmentEngine(SCRIPT), clock=clock)

        assert await session.submit(LINES[0], is_final=False) is not None
        clock.now = 50
        assert await session.submit(LINES[0], is_final=False) is None
        assert session.dropped_interims == 1
        clock.now = 130
        assert await session.submit(LINES[0], is_final=False) is not None

    @pytest.mark.asyncio
    async def test_finals_never_throttled(self):
        clock = FakeClock()
        engine = AlignmentEngine(SCRIPT)
        session = SyncSession(engine, clock=clock)

        await session.submit(LINES[0], is_final=False)
        clock.now = 10
        result = await session.submit(LINES[0], is_final=True)
        assert result is not None
        assert result.outcome == "committed"
        assert engine.committed_index == 7


class TestWaitUntil:
    """Awaiting engine state instead of polling it."""

    @pytest.mark.asyncio
    async def test_wakes_on_commit(self):
        session = SyncSession(AlignmentEngine(SCRIPT), clock=FakeClock())
        waiter = asyncio.create_task(
            session.wait_until(lambda e: e.committed_index > 0, timeout=1.0))
        await asyncio.sleep(0)
        assert not waiter.done()

        await session.submit(LINES[0], is_final=True)
        assert await waiter

    @pytest.mark.asyncio
    async def test_already_true(self):
        session = SyncSession(AlignmentEngine(SCRIPT), clock=FakeClock())
        assert await session.wait_until(lambda e: e.committed_index == 0, timeout=0.1)

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = SyncSession(AlignmentEngine(SCRIPT), clock=FakeClock())
        assert not await session.wait_until(lambda e: e.committed_index > 0, timeout=0.05)


class TestScheduling:
    """Watchdog and frame tasks."""

    @pytest.mark.asyncio
    async def test_start_and_disable(self):
        engine = AlignmentEngine(SCRIPT)
        session = SyncSession(engine, tick_ms=10, frame_hz=200)
        await session.start()
        assert session.running
        await session.start()
        assert session.running

        await session.submit(LINES[0], is_final=True)
        session.disable()
        await asyncio.sleep(0.01)
        assert not session.running
        assert not engine.enabled
        assert engine.committed_index == 0

    @pytest.mark.asyncio
    async def test_watchdog_forces_commit(self):
        engine = AlignmentEngine(SCRIPT)
        engine.state.predicted_index = 5
        session = SyncSession(engine, tick_ms=5, frame_hz=200)
        await session.start()
        try:
            assert await session.wait_until(lambda e: e.committed_index == 5, timeout=2.0)
        finally:
            session.stop()
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_frames_reach_sinks(self):
        engine = AlignmentEngine(SCRIPT)
        layout = StaticLayout(engine.index, line_height=40, viewport_height=100)
        engine.set_layout(layout)
        engine.add_sink(layout)
        session = SyncSession(engine, tick_ms=50, frame_hz=200)
        await session.start()
        try:
            for line in LINES:
                await session.submit(line, is_final=True)
            assert await session.wait_until(lambda e: bool(layout.commands), timeout=2.0)
            assert layout.offset > 0
        finally:
            session.stop()
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_load_script_stops_and_reindexes(self):
        engine = AlignmentEngine(SCRIPT)
        session = SyncSession(engine, tick_ms=10, frame_hz=200)
        await session.start()
        session.load_script("A completely different script for the evening.")
        await asyncio.sleep(0.01)
        assert not session.running
        assert engine.index.words[:3] == ("a", "completely", "different")
