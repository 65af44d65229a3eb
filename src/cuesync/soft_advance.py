# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Soft-advance: nudging past a line the speaker has clearly finished.

Short lines often never reach the similarity threshold on their own, so the
position can "treadmill" on a line that has in fact been read out. When the
spoken tail covers nearly all of the current virtual line and the words
after it look like the start of one of the next few lines, the position is
moved forward conservatively.
"""

import logging
from dataclasses import dataclass

from rapidfuzz import fuzz

from .script_index import ScriptIndex, VirtualLine
from .similarity import score_prefix

logger = logging.getLogger(__name__)

STAGNANT_MS: float = 1200.0
COVERAGE_MIN: float = 0.88
FUZZY_TOKEN_RATIO: float = 80.0
LOOKAHEAD_LINES: int = 4
MIN_SCORE_NORMAL: float = 0.54
MIN_SCORE_LOST: float = 0.62
STREAK_CAP_NORMAL: int = 2
STREAK_CAP_LOST: int = 1
LOST_ANCHOR_NEAR_WORDS: int = 60


def tokens_match(a: str, b: str) -> bool:
    """Fuzzy token equality, tolerant of small recognition slips."""
    return a == b or fuzz.ratio(a, b) >= FUZZY_TOKEN_RATIO


def coverage(line_tokens: tuple[str, ...] | list[str], tail: list[str]) -> tuple[float, int]:
    """In-order fuzzy coverage of a line by the spoken tail.

    Returns:
        (fraction of line tokens found in order, tail position just past the
        last matched token)
    """
    if not line_tokens:
        return 0.0, 0
    hits: int = 0
    cursor: int = 0
    end: int = 0
    for token in line_tokens:
        for pos in range(cursor, len(tail)):
            if tokens_match(token, tail[pos]):
                hits += 1
                cursor = pos + 1
                end = cursor
                break
    return hits / len(line_tokens), end


@dataclass(frozen=True)
class SoftAdvanceResult:
    virtual_line: int
    word_index: int
    score: float


class SoftAdvance:
    """Stagnation tracking and the forward lookahead."""

    def __init__(self) -> None:
        self.virtual_line: int | None = None
        self.since: float = 0.0
        self.streak: int = 0

    def reset(self) -> None:
        self.virtual_line = None
        self.since = 0.0
        self.streak = 0

    def reset_streak(self) -> None:
        self.streak = 0

    def observe(self, virtual_line: int, now: float) -> None:
        """Note the virtual line the committed index sits on."""
        if virtual_line != self.virtual_line:
            self.virtual_line = virtual_line
            self.since = now

    def stagnant(self, now: float) -> bool:
        return self.virtual_line is not None and now - self.since >= STAGNANT_MS

    def _near_anchor(self, index: ScriptIndex, ahead: VirtualLine,
                     anchors: list[tuple[str, ...]]) -> bool:
        lo: int = ahead.start - LOST_ANCHOR_NEAR_WORDS
        hi: int = ahead.start + LOST_ANCHOR_NEAR_WORDS
        return any(index.find_ngram_positions(gram, lo, hi) for gram in anchors)

    def try_advance(
        self,
        index: ScriptIndex,
        tail: list[str],
        committed: int,
        now: float,
        lost: bool = False,
        consistency: int = 0,
        ngram_lines: set[int] | frozenset[int] = frozenset(),
        anchors: list[tuple[str, ...]] | None = None,
    ) -> SoftAdvanceResult | None:
        """Look ahead over the next virtual lines; return where to move, or None.

        Args:
            index: Indexed script
            tail: Recent spoken tokens, oldest first
            committed: Current committed word index
            now: Current time (ms)
            lost: Whether the engine is lost (stricter minimum and gating)
            consistency: How many steps in a row the aligner stayed on one line
            ngram_lines: LineRecord indices sharing an n-gram with the batch
            anchors: Anchor phrases from the batch (checked only when lost)
        """
        if index.is_empty or self.virtual_line is None or not self.stagnant(now):
            return None
        if consistency < 1:
            return None
        cap: int = STREAK_CAP_LOST if lost else STREAK_CAP_NORMAL
        if self.streak >= cap:
            return None

        current: VirtualLine = index.virtual_lines[self.virtual_line]
        covered, tail_end = coverage(current.tokens, tail)
        if covered < COVERAGE_MIN:
            return None
        spoken: list[str] = tail[tail_end:]
        if not spoken:
            return None

        minimum: float = MIN_SCORE_LOST if lost else MIN_SCORE_NORMAL
        last: int = min(len(index.virtual_lines), self.virtual_line + 1 + LOOKAHEAD_LINES)
        for vline_id in range(self.virtual_line + 1, last):
            ahead: VirtualLine = index.virtual_lines[vline_id]
            score: float = score_prefix(spoken, ahead.tokens)
            if score < minimum:
                continue
            if lost:
                has_seed: bool = any(
                    line_id in ngram_lines for line_id in range(ahead.first_line, ahead.last_line + 1))
                if not has_seed and not self._near_anchor(index, ahead, anchors or []):
                    continue
            target: int = ahead.start + min(len(spoken), len(ahead.tokens)) - 1
            if target <= committed:
                continue
            self.streak += 1
            logger.debug("Soft-advance to virtual line %d (word %d, score %.2f, streak %d)",
                         vline_id, target, score, self.streak)
            return SoftAdvanceResult(virtual_line=vline_id, word_index=target, score=score)
        return None
