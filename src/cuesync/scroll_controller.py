# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Scroll position control: turning a committed word index into smooth scrolling.

The committed line should sit at the marker (a fixed fraction of the
viewport height). Corrections are shaped so the text glides rather than
snaps:
- a dead zone ignores small errors
- interim matches are throttled; finals only lightly
- per-correction step caps, relaxed near the end of the script and when
  the line has drifted far from the marker
- near the bottom, scrolling back up is all but forbidden
- a slow secondary catch-up closes residual error during quiet periods

At most one command is pending at a time; the frame step emits it.
"""

import logging
import math

from .layout import LayoutProvider, LineLayout, ScrollCommand
from .tuning import SmoothnessPreset

logger = logging.getLogger(__name__)

INTERIM_CAP_SCALE: float = 0.6
FINAL_THROTTLE_DIVISOR: float = 4.0
BOTTOM_EASE_RATIO: float = 0.85
BOTTOM_EASE_SCALE: float = 1.5
ANTI_BACKSCROLL_RATIO: float = 0.72
ANTI_BACKSCROLL_EPSILON: float = 2.0
MARKER_FAR_VIEWPORTS: float = 1.2
MARKER_FAR_MIN_SCALE: float = 1.5
MARKER_FAR_MAX_SCALE: float = 2.0
CATCHUP_IDLE_MS: float = 1000.0
BURST_CAP_SCALE: float = 2.0


class ScrollController:
    """Shapes corrections toward the committed line and coalesces them."""

    def __init__(self, layout: LayoutProvider | None, marker_percent: float,
                 preset: SmoothnessPreset) -> None:
        self.layout: LayoutProvider | None = layout
        self.marker_percent: float = marker_percent
        self.preset: SmoothnessPreset = preset
        self.sequence: int = 0
        self.pending_offset: float | None = None
        self.last_offset: float = 0.0
        self.last_correction_at: float | None = None
        self.target_word: int | None = None

    def reconfigure(self, marker_percent: float, preset: SmoothnessPreset) -> None:
        self.marker_percent = marker_percent
        self.preset = preset

    def reset(self) -> None:
        """Forget targets and pending motion. Sequence numbers keep increasing."""
        self.pending_offset = None
        self.last_correction_at = None
        self.target_word = None

    # Geometry

    def _lines(self) -> list[LineLayout]:
        return self.layout.get_lines() if self.layout is not None else []

    def current_offset(self) -> float:
        if self.pending_offset is not None:
            return self.pending_offset
        if self.layout is not None:
            return self.layout.get_current_scroll_offset()
        return self.last_offset

    def max_scroll(self) -> float:
        lines: list[LineLayout] = self._lines()
        if not lines or self.layout is None:
            return 0.0
        return max(0.0, lines[-1].pixel_bottom - self.layout.get_viewport_height())

    def scroll_ratio(self, offset: float | None = None) -> float:
        max_scroll: float = self.max_scroll()
        if max_scroll <= 0:
            return 0.0
        if offset is None:
            offset = self.current_offset()
        return min(1.0, max(0.0, offset / max_scroll))

    def line_top_for_word(self, word: int) -> float | None:
        """Pixel top of the line holding ``word``, extrapolated past the known lines."""
        lines: list[LineLayout] = self._lines()
        if not lines:
            return None
        for line in lines:
            if line.token_start <= word <= line.token_end:
                return line.pixel_top
        first: LineLayout = lines[0]
        if word < first.token_start:
            return first.pixel_top
        last: LineLayout = lines[-1]
        # Layout lags the script: continue at the average height per word
        px_per_word: float = last.pixel_bottom / max(1, last.token_end + 1)
        return last.pixel_bottom + (word - last.token_end - 1) * px_per_word

    def word_at_marker(self) -> int | None:
        """Word index of the line under the marker, for viewport-based estimates."""
        lines: list[LineLayout] = self._lines()
        if not lines or self.layout is None:
            return None
        marker_y: float = self.current_offset() + self.layout.get_viewport_height() * self.marker_percent
        for line in lines:
            if line.pixel_top <= marker_y < line.pixel_bottom:
                return line.token_start
        return lines[-1].token_start if marker_y >= lines[-1].pixel_bottom else lines[0].token_start

    def target_offset(self, word: int) -> float | None:
        """Scroll offset that puts the word's line at the marker."""
        top: float | None = self.line_top_for_word(word)
        if top is None or self.layout is None:
            return None
        target: float = top - self.layout.get_viewport_height() * self.marker_percent
        return min(max(0.0, target), self.max_scroll())

    # Corrections

    def _cap_scale(self, current: float, line_top: float, is_final: bool, burst: bool) -> float:
        assert self.layout is not None
        viewport: float = self.layout.get_viewport_height()
        scale: float = 1.0 if is_final else INTERIM_CAP_SCALE
        if self.scroll_ratio(current) >= BOTTOM_EASE_RATIO:
            scale *= BOTTOM_EASE_SCALE
        marker_y: float = current + viewport * self.marker_percent
        far_limit: float = viewport * MARKER_FAR_VIEWPORTS
        distance: float = abs(line_top - marker_y)
        if far_limit > 0 and distance > far_limit:
            overshoot: float = distance / far_limit - 1.0
            scale *= min(MARKER_FAR_MAX_SCALE, MARKER_FAR_MIN_SCALE + overshoot * (MARKER_FAR_MAX_SCALE - MARKER_FAR_MIN_SCALE))
        if burst:
            scale *= BURST_CAP_SCALE
        return scale

    def _limit_backscroll(self, current: float, step: float) -> float:
        if step < 0 and self.scroll_ratio(current) > ANTI_BACKSCROLL_RATIO:
            return max(step, -ANTI_BACKSCROLL_EPSILON)
        return step

    def _queue(self, offset: float, now: float) -> None:
        self.pending_offset = min(max(0.0, offset), self.max_scroll())
        self.last_correction_at = now

    def on_commit(self, word: int, is_final: bool, now: float, burst: bool = False) -> bool:
        """Steer toward a newly committed word. Returns True if a correction was queued."""
        self.target_word = word
        return self.correct(is_final=is_final, now=now, burst=burst)

    def correct(self, is_final: bool, now: float, burst: bool = False) -> bool:
        if self.target_word is None:
            return False
        target: float | None = self.target_offset(self.target_word)
        line_top: float | None = self.line_top_for_word(self.target_word)
        if target is None or line_top is None:
            return False

        current: float = self.current_offset()
        delta: float = target - current
        if abs(delta) < self.preset.dead_zone_px:
            return False

        if not burst and self.last_correction_at is not None:
            throttle: float = self.preset.throttle_ms
            if is_final:
                throttle /= FINAL_THROTTLE_DIVISOR
            if now - self.last_correction_at < throttle:
                return False

        scale: float = self._cap_scale(current, line_top, is_final, burst)
        if delta > 0:
            step: float = min(delta, self.preset.max_fwd_step_px * scale)
        else:
            step = max(delta, -self.preset.max_back_step_px * scale)
        step = self._limit_backscroll(current, step)
        if step == 0:
            return False

        self._queue(current + step, now)
        logger.debug("Scroll correction %+.1fpx toward word %d (target %.1f)",
                     step, self.target_word, target)
        return True

    def catch_up(self, now: float, burst: bool = False) -> bool:
        """Watchdog-driven easing toward the target when corrections have gone quiet."""
        if self.target_word is None:
            return False
        if burst:
            return self.correct(is_final=True, now=now, burst=True)
        if self.last_correction_at is not None and now - self.last_correction_at < CATCHUP_IDLE_MS:
            return False

        target: float | None = self.target_offset(self.target_word)
        if target is None:
            return False
        current: float = self.current_offset()
        delta: float = target - current
        if abs(delta) < self.preset.ease_min_px:
            return False
        size: float = min(abs(delta), min(self.preset.ease_step_px, max(self.preset.ease_min_px, abs(delta) / 2)))
        step: float = self._limit_backscroll(current, math.copysign(size, delta))
        if step == 0:
            return False
        self._queue(current + step, now)
        logger.debug("Scroll catch-up %+.1fpx", step)
        return True

    def drift(self, px: float) -> bool:
        """Autoscroll motion: move by px without counting as a correction."""
        if self.layout is None:
            return False
        current: float = self.current_offset()
        offset: float = min(max(0.0, current + px), self.max_scroll())
        if offset == current:
            return False
        self.pending_offset = offset
        return True

    def nudge(self, offset: float, now: float) -> None:
        """A manual scroll: adopt the offset as the new baseline."""
        self.pending_offset = None
        self.last_offset = offset
        self.last_correction_at = now

    def frame(self, now: float) -> ScrollCommand | None:
        """Emit the pending command, if any."""
        if self.pending_offset is None:
            return None
        offset: float = self.pending_offset
        self.pending_offset = None
        self.last_offset = offset
        self.sequence += 1
        return ScrollCommand(
            offset=offset,
            ratio=self.scroll_ratio(offset),
            sequence=self.sequence,
            timestamp=now,
        )
