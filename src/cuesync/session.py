# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Asyncio host for the alignment engine.

The engine itself never schedules anything. This module owns the timing:
- interim transcript events are throttled (finals always go through)
- a watchdog task calls engine.tick() at a fixed cadence
- a frame task calls engine.frame() at display rate
- wait_until() lets callers await a condition on engine state instead of
  polling for it
"""

import asyncio
import logging
import time
from collections.abc import Callable

from .engine import AlignmentEngine, BatchResult

logger = logging.getLogger(__name__)

Predicate = Callable[[AlignmentEngine], bool]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SyncSession:
    """
    Drives an AlignmentEngine from an asyncio event loop.

    Usage:
        session = SyncSession(engine)
        await session.start()

        # From the speech recognizer callback
        await session.submit(text, is_final=False)

        # Somewhere else
        await session.wait_until(lambda e: e.committed_index > 0, timeout=5.0)
    """

    def __init__(
        self,
        engine: AlignmentEngine,
        clock: Callable[[], float] = monotonic_ms,
        interim_throttle_ms: float = 120.0,
        tick_ms: float = 250.0,
        frame_hz: float = 60.0,
    ) -> None:
        """
        Initialize the session.

        Args:
            engine: The engine to drive
            clock: Millisecond clock passed to every engine call
            interim_throttle_ms: Minimum time between processed interim events
            tick_ms: Watchdog cadence
            frame_hz: Scroll frame rate
        """
        self.engine: AlignmentEngine = engine
        self.clock: Callable[[], float] = clock
        self.interim_throttle_ms: float = interim_throttle_ms
        self.tick_ms: float = tick_ms
        self.frame_hz: float = frame_hz

        self.last_interim_at: float | None = None
        self.dropped_interims: int = 0
        self._changed: asyncio.Condition = asyncio.Condition()
        self._watchdog_task: asyncio.Task[None] | None = None
        self._frame_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._watchdog_task is not None and not self._watchdog_task.done()

    async def start(self) -> None:
        """Start the watchdog and frame tasks (idempotent)."""
        if self.running:
            return
        self.engine.enable()
        self._watchdog_task = asyncio.create_task(self._watchdog_loop(), name="cuesync-watchdog")
        self._frame_task = asyncio.create_task(self._frame_loop(), name="cuesync-frame")
        logger.info("Session started (tick=%.0fms, frame=%.0fHz)", self.tick_ms, self.frame_hz)

    def stop(self) -> None:
        """Cancel both tasks immediately. Engine state is left as it is."""
        for task in (self._watchdog_task, self._frame_task):
            if task is not None and not task.done():
                task.cancel()
        self._watchdog_task = None
        self._frame_task = None

    def disable(self) -> None:
        """Stop scheduling and clear the engine (bursts, freezes, position)."""
        self.stop()
        self.engine.disable()
        self.last_interim_at = None
        logger.info("Session disabled")

    def load_script(self, script_text: str) -> None:
        """Swap scripts: timers stop and the engine rebuilds its index from scratch."""
        self.stop()
        self.engine.load_script(script_text)
        self.last_interim_at = None

    async def submit(self, text: str, is_final: bool) -> BatchResult | None:
        """
        Feed a transcript event to the engine.

        Returns:
            The engine's result, or None if an interim event was throttled
        """
        now: float = self.clock()
        if not is_final:
            if (self.last_interim_at is not None
                    and now - self.last_interim_at < self.interim_throttle_ms):
                self.dropped_interims += 1
                return None
            self.last_interim_at = now

        result: BatchResult = self.engine.handle_transcript(text, is_final, now)
        await self._notify()
        return result

    async def wait_until(self, predicate: Predicate, timeout: float) -> bool:
        """
        Wait until ``predicate(engine)`` holds after some engine step.

        Args:
            predicate: Condition on the engine
            timeout: Seconds to wait

        Returns:
            True if the condition held, False on timeout
        """
        async with self._changed:
            try:
                await asyncio.wait_for(
                    self._changed.wait_for(lambda: predicate(self.engine)), timeout)
                return True
            except asyncio.TimeoutError:
                return False

    async def _notify(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    async def _watchdog_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.tick_ms / 1000.0)
                self.engine.tick(self.clock())
                await self._notify()
        except asyncio.CancelledError:
            logger.debug("Watchdog task cancelled")
            raise

    async def _frame_loop(self) -> None:
        interval: float = 1.0 / self.frame_hz
        try:
            while True:
                await asyncio.sleep(interval)
                if self.engine.frame(self.clock()) is not None:
                    await self._notify()
        except asyncio.CancelledError:
            logger.debug("Frame task cancelled")
            raise
