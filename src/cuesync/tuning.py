# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tuning profiles for the alignment engine and scroll controller.

A TuningProfile is an immutable value: switching presets builds a new
profile and hands it to the engine in one call, so no component ever sees
a half-updated mix of old and new settings.
"""

from dataclasses import dataclass, field


class TuningError(ValueError):
    """Raised for an invalid tuning profile or an unknown preset name."""


@dataclass(frozen=True)
class AggressivenessPreset:
    """How eagerly matches are accepted and how far the search looks."""
    sim_threshold: float
    window_ahead: int  # Words searched ahead of the predicted index
    window_back: int  # Words searched behind it
    strict_forward_sim: float  # Below this, long forward jumps are clamped
    max_jump_ahead_words: int


@dataclass(frozen=True)
class SmoothnessPreset:
    """Scroll correction shaping."""
    dead_zone_px: float
    throttle_ms: float
    max_fwd_step_px: float
    max_back_step_px: float
    stable_hits: int  # Consecutive interim picks needed before a commit
    max_commit_step: int  # Largest single commit advance, in words
    ease_step_px: float
    ease_min_px: float


AGGRESSIVENESS_PRESETS: dict[str, AggressivenessPreset] = {
    "conservative": AggressivenessPreset(0.60, 140, 20, 0.78, 8),
    "normal": AggressivenessPreset(0.50, 200, 30, 0.72, 12),
    "aggressive": AggressivenessPreset(0.42, 260, 40, 0.66, 18),
    "aggressive-live": AggressivenessPreset(0.38, 450, 60, 0.62, 24),
}

SMOOTHNESS_PRESETS: dict[str, SmoothnessPreset] = {
    "stable": SmoothnessPreset(22, 280, 80, 30, 3, 10, 60, 12),
    "balanced": SmoothnessPreset(20, 260, 96, 80, 2, 16, 80, 10),
    "responsive": SmoothnessPreset(18, 240, 110, 140, 1, 24, 96, 6),
}

# Older config files stored aggressiveness as "1"/"2"/"3"
LEGACY_AGGRESSIVENESS: dict[str, str] = {
    "1": "conservative",
    "2": "normal",
    "3": "aggressive",
}


@dataclass(frozen=True)
class PidParams:
    """Gains and timings for the autoscroll bias controller."""
    kp: float = 0.022
    kd: float = 0.0025
    max_bias: float = 0.12
    conf_min: float = 0.6
    decay_ms: float = 550.0
    lost_ms: float = 1800.0

    def validate(self) -> None:
        if self.kp < 0 or self.kd < 0:
            raise TuningError(f"PID gains must be non-negative (kp={self.kp}, kd={self.kd})")
        if not 0 < self.max_bias < 1:
            raise TuningError(f"max_bias must be in (0, 1), got {self.max_bias}")
        if not 0 <= self.conf_min <= 1:
            raise TuningError(f"conf_min must be in [0, 1], got {self.conf_min}")
        if self.decay_ms <= 0 or self.lost_ms <= 0:
            raise TuningError("decay_ms and lost_ms must be positive")


@dataclass(frozen=True)
class TuningProfile:
    """Everything the engine can be reconfigured with."""
    marker_percent: float = 0.4  # Fraction of viewport height where the active line sits
    aggressiveness: str = "normal"
    smoothness: str = "balanced"
    hybrid_lock: bool = False  # Bias controller drives autoscroll speed
    pid: PidParams = field(default_factory=PidParams)
    nudge_freeze_batches: int = 3

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise TuningError if any field is out of range."""
        if not 0.0 <= self.marker_percent <= 1.0:
            raise TuningError(f"marker_percent must be in [0, 1], got {self.marker_percent}")
        if self.aggressiveness not in AGGRESSIVENESS_PRESETS:
            raise TuningError(f"Unknown aggressiveness preset: {self.aggressiveness!r}")
        if self.smoothness not in SMOOTHNESS_PRESETS:
            raise TuningError(f"Unknown smoothness preset: {self.smoothness!r}")
        if self.nudge_freeze_batches < 0:
            raise TuningError("nudge_freeze_batches must be >= 0")
        self.pid.validate()

    @property
    def alignment(self) -> AggressivenessPreset:
        return AGGRESSIVENESS_PRESETS[self.aggressiveness]

    @property
    def scroll(self) -> SmoothnessPreset:
        return SMOOTHNESS_PRESETS[self.smoothness]


def aggressiveness_preset(name: str) -> AggressivenessPreset:
    """Look up an aggressiveness preset, accepting legacy numeric names."""
    key: str = LEGACY_AGGRESSIVENESS.get(str(name), str(name))
    try:
        return AGGRESSIVENESS_PRESETS[key]
    except KeyError:
        raise TuningError(f"Unknown aggressiveness preset: {name!r}") from None


def smoothness_preset(name: str) -> SmoothnessPreset:
    try:
        return SMOOTHNESS_PRESETS[name]
    except KeyError:
        raise TuningError(f"Unknown smoothness preset: {name!r}") from None
