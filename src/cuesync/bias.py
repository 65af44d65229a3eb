# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Bias feedback for hybrid autoscroll.

When the prompter scrolls at a constant base speed, the aligned position
tells us whether the speaker is ahead of or behind the marker. A small PD
controller turns that error into a bias percentage that speeds the
autoscroll up or slows it down. With low-confidence input the bias decays
back toward zero so a lost aligner cannot run the scroll away.
"""

import logging
import math
from dataclasses import dataclass
from typing import Literal

from .tuning import PidParams

logger = logging.getLogger(__name__)

BiasMode = Literal["LOCKED", "LOCK_SEEK", "COAST", "LOST"]

ERROR_SMOOTHING: float = 0.8  # Weight kept from the previous filtered error
NEW_ERROR_WEIGHT: float = 0.2
LOCKED_ERROR_PX: float = 12.0
MIN_DT_MS: float = 16.0
END_TAPER_PROGRESS: float = 0.8
END_TAPER: float = 0.6
NEAR_CLAMP_FRACTION: float = 0.8  # Telemetry only
PAUSE_DECAY_MS: float = 400.0
PAUSE_HOLD_MS: float = 2000.0


@dataclass
class BiasTelemetry:
    time_locked: float = 0.0
    time_coast: float = 0.0
    time_lost: float = 0.0
    avg_abs_error: float = 0.0
    samples: int = 0
    near_clamp_count: int = 0


class BiasController:
    """PD loop from marker error to autoscroll speed bias."""

    def __init__(self, params: PidParams | None = None) -> None:
        self.params: PidParams = params or PidParams()
        self.reset()

    def reset(self) -> None:
        self.bias_percent: float = 0.0
        self.filtered_error: float = 0.0
        self.last_error: float = 0.0
        self.mode: BiasMode = "LOST"
        self.telemetry: BiasTelemetry = BiasTelemetry()
        self.last_update: float | None = None
        self.last_confident: float | None = None
        self.pause_until: float | None = None

    def reconfigure(self, params: PidParams) -> None:
        self.params = params

    def decay_ms(self, now: float) -> float:
        if self.pause_until is not None and now < self.pause_until:
            return PAUSE_DECAY_MS
        return self.params.decay_ms

    def on_pause(self, now: float) -> None:
        """Speaker paused: let the bias fall away faster for a while."""
        self.pause_until = now + PAUSE_HOLD_MS

    def update(self, y_match: float, y_marker: float, confidence: float,
               now: float, progress: float = 0.0) -> float:
        """Feed one observation; returns the new bias percentage.

        Args:
            y_match: Pixel position of the matched line
            y_marker: Pixel position of the marker
            confidence: Match confidence, 0..1
            now: Current time (ms)
            progress: Fraction of the script already read, 0..1
        """
        dt: float = MIN_DT_MS if self.last_update is None else now - self.last_update
        self.last_update = now
        error: float = y_match - y_marker
        self.filtered_error = ERROR_SMOOTHING * self.filtered_error + NEW_ERROR_WEIGHT * error
        taper: float = END_TAPER if progress > END_TAPER_PROGRESS else 1.0

        if confidence >= self.params.conf_min:
            self.last_confident = now
            d_error: float = (self.filtered_error - self.last_error) / (max(dt, MIN_DT_MS) / 1000.0)
            step: float = self.params.kp * self.filtered_error + self.params.kd * d_error
            limit: float = self.params.max_bias * taper
            self.bias_percent = max(-limit, min(limit, self.bias_percent + step))
            self.mode = "LOCKED" if abs(self.filtered_error) < LOCKED_ERROR_PX else "LOCK_SEEK"
        else:
            self._decay(dt, now)
        self.last_error = self.filtered_error
        self._record(dt)
        return self.bias_percent

    def coast(self, now: float) -> float:
        """Advance the clock with no observation (silence); the bias decays."""
        dt: float = MIN_DT_MS if self.last_update is None else max(0.0, now - self.last_update)
        self.last_update = now
        self._decay(dt, now)
        self._record(dt)
        return self.bias_percent

    def _decay(self, dt: float, now: float) -> None:
        # Decays toward zero from either side
        self.bias_percent *= math.exp(-dt / self.decay_ms(now))
        since_good: float = math.inf if self.last_confident is None else now - self.last_confident
        self.mode = "LOST" if since_good > self.params.lost_ms else "COAST"

    def _record(self, dt: float) -> None:
        t: BiasTelemetry = self.telemetry
        if self.mode == "LOCKED":
            t.time_locked += dt
        elif self.mode == "COAST":
            t.time_coast += dt
        elif self.mode == "LOST":
            t.time_lost += dt
        t.avg_abs_error = (t.avg_abs_error * t.samples + abs(self.filtered_error)) / (t.samples + 1)
        t.samples += 1
        if abs(self.bias_percent) > self.params.max_bias * NEAR_CLAMP_FRACTION:
            t.near_clamp_count += 1

    def effective_speed(self, base_speed: float) -> float:
        return base_speed * (1 + self.bias_percent)


class AutoscrollDriver:
    """Constant-speed autoscroll adjusted by the bias controller."""

    def __init__(self, controller: BiasController, base_speed_px_s: float = 40.0) -> None:
        self.controller: BiasController = controller
        self.base_speed_px_s: float = base_speed_px_s
        self.running: bool = False
        self._last_frame: float | None = None
        self._carry: float = 0.0

    def start(self, now: float) -> None:
        self.running = True
        self._last_frame = now
        self._carry = 0.0

    def stop(self) -> None:
        self.running = False
        self._last_frame = None
        self._carry = 0.0

    def frame_delta(self, now: float) -> int:
        """Whole pixels to scroll this frame; fractions carry to the next frame."""
        if not self.running or self._last_frame is None:
            return 0
        dt: float = max(0.0, now - self._last_frame)
        self._last_frame = now
        self._carry += self.controller.effective_speed(self.base_speed_px_s) * dt / 1000.0
        whole: int = int(self._carry)
        self._carry -= whole
        return whole
