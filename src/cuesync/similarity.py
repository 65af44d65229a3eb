# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Line similarity scoring.

The score is a weighted blend of cheap, deterministic measures:
    0.5 * cosine of word 2+3-gram count vectors
  + 0.3 * F1 over the *sets* of characters in each joined string
  + 0.2 * Jaccard over crudely stemmed tokens
  + entity bonus (shared numbers / names)
  - short-line penalty

None of these is TF-IDF or edit distance; thresholds elsewhere in the
engine are calibrated against exactly these measures.
"""

import math
import re
from collections import Counter

from .script_index import LineRecord, ngrams
from .tokenizer import is_numeric_token

WEIGHT_COSINE: float = 0.5
WEIGHT_CHAR_F1: float = 0.3
WEIGHT_JACCARD: float = 0.2
NUMBER_BONUS: float = 0.1
NAME_BONUS: float = 0.15
SHORT_LINE_TOKENS: int = 5
SHORT_LINE_PENALTY: float = 0.12
MAX_BASE_SCORE: float = 1.25
META_SCALE: float = 0.5
META_OFFSET: float = 0.2
NON_SPOKEN_PENALTY: float = 0.6

STEM_SUFFIX: re.Pattern[str] = re.compile(r"(ing|ed|er|est|ly|s)$")


def stem(token: str) -> str:
    """Strip one common suffix, keeping at least three characters."""
    match = STEM_SUFFIX.search(token)
    if match and match.start() >= 3:
        return token[:match.start()]
    return token


def ngram_cosine(a: list[str] | tuple[str, ...], b: list[str] | tuple[str, ...]) -> float:
    """Cosine similarity of raw 2-gram + 3-gram count vectors."""
    va: Counter[str] = Counter(ngrams(a, 2) + ngrams(a, 3))
    vb: Counter[str] = Counter(ngrams(b, 2) + ngrams(b, 3))
    if not va or not vb:
        return 0.0
    dot: int = sum(count * vb[gram] for gram, count in va.items())
    norm_a: float = math.sqrt(sum(c * c for c in va.values()))
    norm_b: float = math.sqrt(sum(c * c for c in vb.values()))
    return dot / (norm_a * norm_b)


def char_set_f1(a: str, b: str) -> float:
    """F1 over the distinct characters of two strings."""
    set_a: set[str] = set(a)
    set_b: set[str] = set(b)
    if not set_a or not set_b:
        return 0.0
    common: int = len(set_a & set_b)
    precision: float = common / len(set_a)
    recall: float = common / len(set_b)
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def stemmed_jaccard(a: list[str] | tuple[str, ...], b: list[str] | tuple[str, ...]) -> float:
    set_a: set[str] = {stem(t) for t in a}
    set_b: set[str] = {stem(t) for t in b}
    union: set[str] = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def entity_bonus(
    spoken: list[str] | tuple[str, ...],
    script: list[str] | tuple[str, ...],
    spoken_names: frozenset[str] | set[str] = frozenset(),
    script_names: frozenset[str] | set[str] = frozenset(),
) -> float:
    """+0.1 for a shared number token, +0.15 for a shared name-like word."""
    bonus: float = 0.0
    spoken_numbers: set[str] = {t for t in spoken if is_numeric_token(t)}
    if spoken_numbers and spoken_numbers & {t for t in script if is_numeric_token(t)}:
        bonus += NUMBER_BONUS
    if spoken_names and script_names and set(spoken_names) & set(script_names):
        bonus += NAME_BONUS
    return bonus


def base_similarity(
    spoken: list[str] | tuple[str, ...],
    script: list[str] | tuple[str, ...],
    spoken_names: frozenset[str] | set[str] = frozenset(),
    script_names: frozenset[str] | set[str] = frozenset(),
) -> float:
    """Blended similarity before line priors, clamped to [0, 1.25]."""
    if not spoken or not script:
        return 0.0
    score: float = (
        WEIGHT_COSINE * ngram_cosine(spoken, script)
        + WEIGHT_CHAR_F1 * char_set_f1(' '.join(spoken), ' '.join(script))
        + WEIGHT_JACCARD * stemmed_jaccard(spoken, script)
        + entity_bonus(spoken, script, spoken_names, script_names)
    )
    if len(script) < SHORT_LINE_TOKENS:
        score -= SHORT_LINE_PENALTY
    return max(0.0, min(MAX_BASE_SCORE, score))


def apply_line_priors(score: float, line: LineRecord) -> float:
    """Down-weight meta (short/templated) and non-spoken lines."""
    if line.is_meta:
        score = score * META_SCALE - META_OFFSET
    if line.is_non_spoken:
        score -= NON_SPOKEN_PENALTY
    return score


def score_line(
    spoken: list[str] | tuple[str, ...],
    line: LineRecord,
    spoken_names: frozenset[str] | set[str] = frozenset(),
) -> float:
    """Score a spoken batch against one script line, priors included."""
    base: float = base_similarity(spoken, line.tokens, spoken_names, line.names)
    return apply_line_priors(base, line)


def score_prefix(spoken: list[str] | tuple[str, ...], script: list[str] | tuple[str, ...]) -> float:
    """Score against the first len(spoken) tokens of a script span."""
    return base_similarity(spoken, script[:len(spoken)])
