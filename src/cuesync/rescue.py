# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Stall detection, rescue mode, anchor recovery and the forced-commit watchdog.

When matching stops making progress (no commit for a while and poor recent
scores) the engine enters rescue mode: the search window widens and rare
phrases from the spoken batch ("anchors") are looked up directly in the
script to re-locate the speaker. Independently, a watchdog commits the
predicted position if it has sat ahead of the committed one for too long.
"""

import logging
import statistics
from collections import deque
from dataclasses import dataclass

from .script_index import ScriptIndex, ngrams
from .similarity import score_line

logger = logging.getLogger(__name__)

STALL_MS: float = 1400.0
STALL_MEAN_SCORE: float = 0.65
SCORE_WINDOW: int = 10

RESCUE_TIMEOUT_MS: float = 3000.0
RESCUE_EXIT_LINES: int = 2
RESCUE_EXIT_SIM: float = 0.7

ANCHOR_NGRAM: int = 3
ANCHOR_LIMIT: int = 10
ANCHOR_MIN_SCORE: float = 0.75
ANCHOR_STRONG_SCORE: float = 0.9
ANCHOR_NEAR_WORDS: int = 60
ANCHOR_MIN_GAP_MS: float = 1200.0
ANCHOR_RADIUS_LOST: int = 300
ANCHOR_RADIUS_LOCKED: int = 200
ANCHOR_RADIUS_DEFAULT: int = 50
ANCHOR_FREEZE_BATCHES: int = 2

FORCE_COMMIT_TICKS: int = 6
CATCHUP_BURST_MS: float = 1500.0

STOP_WORDS: frozenset[str] = frozenset([
    'a', 'an', 'the', 'and', 'or', 'but', 'if', 'of', 'to', 'in', 'on', 'at',
    'by', 'for', 'with', 'from', 'as', 'is', 'are', 'was', 'were', 'be',
    'been', 'it', 'its', 'this', 'that', 'these', 'those', 'i', 'you', 'he',
    'she', 'we', 'they', 'me', 'him', 'her', 'us', 'them', 'my', 'your',
    'our', 'their', 'not', 'do', 'does', 'did', 'so', 'have', 'has', 'had',
    'will', 'would', 'can', 'could', 'there', 'here', 'what', 'which', 'who',
])


@dataclass(frozen=True)
class AnchorMatch:
    """An exact anchor hit in the script."""
    gram: tuple[str, ...]
    word_index: int  # Last word of the anchor phrase
    line: int
    score: float
    distance: int  # Words from the predicted index


def extract_anchors(batch: list[str], index: ScriptIndex,
                    limit: int = ANCHOR_LIMIT) -> list[tuple[str, ...]]:
    """Rarest stop-word-free 3-grams of a batch, rarest first."""
    seen: set[tuple[str, ...]] = set()
    ranked: list[tuple[float, int, tuple[str, ...]]] = []
    for order, gram in enumerate(ngrams(batch, ANCHOR_NGRAM)):
        tokens: tuple[str, ...] = tuple(gram.split(' '))
        if tokens in seen or any(t in STOP_WORDS for t in tokens):
            continue
        seen.add(tokens)
        rarity: float = sum(index.idf(t) for t in tokens)
        ranked.append((-rarity, order, tokens))
    ranked.sort()
    return [tokens for _, _, tokens in ranked[:limit]]


def accepts_anchor(score: float, distance: int) -> bool:
    """Strong anchors are accepted anywhere in the band, good ones only nearby."""
    return score > ANCHOR_MIN_SCORE and (score > ANCHOR_STRONG_SCORE or distance <= ANCHOR_NEAR_WORDS)


def anchor_radius(lost: bool, locked: bool) -> int:
    if lost:
        return ANCHOR_RADIUS_LOST
    if locked:
        return ANCHOR_RADIUS_LOCKED
    return ANCHOR_RADIUS_DEFAULT


class RescueController:
    """Owns rescue mode, anchor pacing and the soft-advance freeze counter."""

    def __init__(self) -> None:
        self.active: bool = False
        self.entered_at: float | None = None
        self.consecutive_stall_count: int = 0
        self.freeze_batches: int = 0
        self.last_anchor_at: float | None = None
        self.recent_scores: deque[float] = deque(maxlen=SCORE_WINDOW)

    def reset(self) -> None:
        self.active = False
        self.entered_at = None
        self.consecutive_stall_count = 0
        self.freeze_batches = 0
        self.last_anchor_at = None
        self.recent_scores.clear()

    def record_score(self, score: float) -> None:
        self.recent_scores.append(score)

    @property
    def rolling_mean(self) -> float | None:
        if not self.recent_scores:
            return None
        return statistics.fmean(self.recent_scores)

    def is_stalled(self, now: float, last_commit_ts: float) -> bool:
        """No commit for STALL_MS and recent scores poor."""
        mean: float | None = self.rolling_mean
        return (now - last_commit_ts) > STALL_MS and mean is not None and mean < STALL_MEAN_SCORE

    def update(self, now: float, last_commit_ts: float) -> None:
        """Enter rescue on a stall, leave it once it has run its course."""
        if self.active:
            if self.entered_at is not None and now - self.entered_at >= RESCUE_TIMEOUT_MS:
                self.exit("timeout")
            return
        if self.is_stalled(now, last_commit_ts):
            self.consecutive_stall_count += 1
            self.active = True
            self.entered_at = now
            logger.debug("Entering rescue (stall #%d, mean score %.2f)",
                         self.consecutive_stall_count, self.rolling_mean or 0.0)
        else:
            self.consecutive_stall_count = 0

    def exit(self, reason: str) -> None:
        if self.active:
            logger.debug("Leaving rescue: %s", reason)
        self.active = False
        self.entered_at = None

    def on_commit(self, jump_lines: int, score: float) -> None:
        """A confident multi-line jump means the speaker has been found again."""
        if self.active and jump_lines > RESCUE_EXIT_LINES and score > RESCUE_EXIT_SIM:
            self.exit(f"progress jump of {jump_lines} lines at {score:.2f}")

    def anchor_allowed(self, now: float) -> bool:
        return self.last_anchor_at is None or now - self.last_anchor_at >= ANCHOR_MIN_GAP_MS

    def find_anchor(self, index: ScriptIndex, batch: list[str], predicted: int,
                    committed: int, radius: int, now: float,
                    spoken_names: frozenset[str] | set[str] = frozenset()) -> AnchorMatch | None:
        """Best acceptable anchor hit ahead of the committed index, if any."""
        if index.is_empty or not self.anchor_allowed(now):
            return None

        best: AnchorMatch | None = None
        for gram in extract_anchors(batch, index):
            for pos in index.find_ngram_positions(gram, predicted - radius, predicted + radius):
                target: int = pos + len(gram) - 1
                if target <= committed:
                    continue
                line: int = index.line_for_word(pos)
                score: float = score_line(batch, index.lines[line], spoken_names)
                distance: int = abs(pos - predicted)
                if not accepts_anchor(score, distance):
                    continue
                if best is None or (score, -distance) > (best.score, -best.distance):
                    best = AnchorMatch(gram=gram, word_index=target, line=line,
                                       score=score, distance=distance)
        return best

    def note_anchor(self, now: float) -> None:
        self.last_anchor_at = now
        self.freeze_batches = ANCHOR_FREEZE_BATCHES

    def freeze(self, batches: int) -> None:
        self.freeze_batches = max(self.freeze_batches, batches)

    def consume_freeze(self) -> bool:
        """Use up one frozen batch; True if soft-advance is suppressed for this batch."""
        if self.freeze_batches > 0:
            self.freeze_batches -= 1
            return True
        return False


class ForcedCommitWatchdog:
    """Commits the prediction after it has sat unconfirmed for several ticks."""

    def __init__(self) -> None:
        self.stall_streak: int = 0
        self.burst_until: float | None = None
        self._last: tuple[int, int] | None = None

    def reset(self) -> None:
        self.stall_streak = 0
        self.burst_until = None
        self._last = None

    def tick(self, committed: int, predicted: int, now: float) -> bool:
        """Count a watchdog tick; True when a forced commit is due."""
        current: tuple[int, int] = (committed, predicted)
        if predicted > committed and (self._last is None or self._last == current):
            self.stall_streak += 1
        else:
            self.stall_streak = 0
        self._last = current

        if self.stall_streak >= FORCE_COMMIT_TICKS:
            self.stall_streak = 0
            self.burst_until = now + CATCHUP_BURST_MS
            self._last = (predicted, predicted)
            return True
        return False

    def burst_active(self, now: float) -> bool:
        return self.burst_until is not None and now < self.burst_until

    def stop_burst(self) -> None:
        self.burst_until = None
