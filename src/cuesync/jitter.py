# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Rolling variance of (predicted - committed), used to tighten acceptance."""

import logging
import statistics
from collections import deque

logger = logging.getLogger(__name__)

JITTER_SAMPLES: int = 30
JITTER_MIN_SAMPLES: int = 5
JITTER_STD_LIMIT: float = 6.0
SPIKE_WINDOW_MS: float = 1500.0
SPIKE_ELEVATION: float = 0.08


class JitterMonitor:
    """Tracks how far predictions wander from the committed index."""

    def __init__(self) -> None:
        self.deltas: deque[int] = deque(maxlen=JITTER_SAMPLES)
        self.spike_until: float | None = None

    @property
    def mean(self) -> float:
        return statistics.fmean(self.deltas) if self.deltas else 0.0

    @property
    def std(self) -> float:
        return statistics.pstdev(self.deltas) if len(self.deltas) > 1 else 0.0

    def record(self, predicted: int, committed: int, now: float) -> None:
        self.deltas.append(predicted - committed)
        if len(self.deltas) >= JITTER_MIN_SAMPLES and self.std > JITTER_STD_LIMIT:
            if self.spike_until is None:
                logger.debug("Jitter spike: std=%.1f words", self.std)
            self.spike_until = now + SPIKE_WINDOW_MS

    def expire(self, now: float) -> None:
        """Close the spike window once it has run out."""
        if self.spike_until is not None and now >= self.spike_until:
            self.spike_until = None

    def elevation(self, now: float) -> float:
        """Extra similarity required while a spike window is open."""
        if self.spike_until is not None and now < self.spike_until:
            return SPIKE_ELEVATION
        return 0.0

    def reset(self) -> None:
        self.deltas.clear()
        self.spike_until = None
