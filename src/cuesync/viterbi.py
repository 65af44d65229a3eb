# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Temporal smoothing of per-line scores.

A single greedy Viterbi-style step: each candidate's score is shrunk
slightly, penalized for distance from the previous line, and the previous
line itself is boosted so a speaker who is still mid-line stays put.
"""

import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ALPHA: float = 0.15  # Transition penalty weight
BETA: float = 0.08  # Emission shrink
LOOP_PENALTY: float = 0.25  # Multiplier bonus for staying on the same line
DISTANCE_SCALE: float = 20.0
PATH_HISTORY_LIMIT: int = 64


@dataclass(frozen=True)
class AlignmentStep:
    """Winning line of one step."""
    line: int
    score: float  # Raw similarity of the winner
    adjusted: float  # Score after transition shaping


def adjust_score(score: float, line: int, prev: int | None,
                 alpha: float = ALPHA, beta: float = BETA,
                 loop_penalty: float = LOOP_PENALTY) -> float:
    """Shape one emission score by its distance from the previous line."""
    if prev is None:
        return score * (1 - beta)
    adjusted: float = score * (1 - beta) - alpha * min(abs(line - prev) / DISTANCE_SCALE, 1.0)
    if line == prev and adjusted > 0:
        adjusted *= 1 + loop_penalty
    return adjusted


class TemporalAligner:
    """Greedy transition-penalized argmax with a bounded path history."""

    def __init__(self, alpha: float = ALPHA, beta: float = BETA,
                 loop_penalty: float = LOOP_PENALTY) -> None:
        self.alpha: float = alpha
        self.beta: float = beta
        self.loop_penalty: float = loop_penalty
        self.path_history: deque[int] = deque(maxlen=PATH_HISTORY_LIMIT)
        self.consistency: int = 0

    @property
    def previous_line(self) -> int | None:
        return self.path_history[-1] if self.path_history else None

    def step(self, scores: dict[int, float], prev: int | None = None,
             rescue_active: bool = False) -> AlignmentStep | None:
        """Pick the best line among scored candidates.

        Args:
            scores: Line index -> raw similarity
            prev: Previous line (defaults to the last line in the path)
            rescue_active: Halves the emission shrink while rescuing

        Returns:
            The winning step, or None when there are no candidates.
            Ties resolve to the lowest line index.
        """
        if not scores:
            return None
        if prev is None:
            prev = self.previous_line
        beta: float = self.beta / 2 if rescue_active else self.beta

        best: AlignmentStep | None = None
        for line in sorted(scores):
            adjusted = adjust_score(scores[line], line, prev, self.alpha, beta, self.loop_penalty)
            if best is None or adjusted > best.adjusted:
                best = AlignmentStep(line=line, score=scores[line], adjusted=adjusted)
        return best

    def record(self, line: int) -> None:
        """Append a line to the path; repeated landings on one line build consistency."""
        if self.previous_line == line:
            self.consistency += 1
        else:
            self.consistency = 0
        self.path_history.append(line)

    def reset(self) -> None:
        self.path_history.clear()
        self.consistency = 0
