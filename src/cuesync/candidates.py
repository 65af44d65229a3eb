# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Candidate line generation for a spoken batch.

Lines sharing a 3- or 4-gram with the batch are preferred; when none of
them sit inside the search band around the predicted position, every line
in the band is scored instead.
"""

import logging
from dataclasses import dataclass

from .script_index import NGRAM_SIZES, ScriptIndex, ngrams

logger = logging.getLogger(__name__)

RESCUE_MIN_AHEAD: int = 900


@dataclass(frozen=True)
class CandidateSet:
    """Line indices to score, and whether they came from n-gram hits."""
    indices: tuple[int, ...]
    seeded: bool
    band: tuple[int, int] = (0, -1)  # Word range searched (inclusive)

    def __bool__(self) -> bool:
        return bool(self.indices)


def search_band(predicted: int, back: int, ahead: int, word_count: int) -> tuple[int, int]:
    """Inclusive word range [predicted - back, predicted + ahead] clipped to the script."""
    if word_count <= 0:
        return (0, -1)
    lo: int = max(0, predicted - back)
    hi: int = min(word_count - 1, predicted + ahead)
    return (lo, hi)


def ngram_hit_lines(index: ScriptIndex, batch: list[str]) -> set[int]:
    """All lines sharing any 3/4-gram with the batch."""
    hits: set[int] = set()
    for n in NGRAM_SIZES:
        for gram in ngrams(batch, n):
            hits.update(index.ngram_index.get(gram, ()))
    return hits


def generate_candidates(
    index: ScriptIndex,
    batch: list[str],
    predicted: int,
    back: int,
    ahead: int,
    rescue_active: bool = False,
) -> CandidateSet:
    """Pick the lines a batch could plausibly belong to.

    Args:
        index: Indexed script
        batch: Normalized spoken tokens
        predicted: Current predicted word index
        back: Words to search behind predicted
        ahead: Words to search ahead of predicted (widened while rescuing)
        rescue_active: Whether rescue mode is active

    Returns:
        CandidateSet with sorted line indices. Empty only for an empty script.
    """
    if index.is_empty:
        return CandidateSet(indices=(), seeded=False)

    if rescue_active:
        ahead = max(ahead, RESCUE_MIN_AHEAD)
    lo, hi = search_band(predicted, back, ahead, len(index.words))
    in_band: range = index.lines_overlapping(lo, hi)

    seeded: list[int] = sorted(
        line_id for line_id in ngram_hit_lines(index, batch) if line_id in in_band)
    if seeded:
        return CandidateSet(indices=tuple(seeded), seeded=True, band=(lo, hi))

    logger.debug("No n-gram seeds in band [%d, %d]; scoring %d lines", lo, hi, len(in_band))
    return CandidateSet(indices=tuple(in_band), seeded=False, band=(lo, hi))
