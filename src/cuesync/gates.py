# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Batch rejection gates applied before any scoring.

Speech recognizers emit a lot that is not the script: hesitations, voice
commands aimed at the app, and hallucinated words. Batches dominated by
those are dropped so they cannot drag the position around.
"""

import logging
from typing import Literal

logger = logging.getLogger(__name__)

BATCH_SIZE: int = 8  # Most recent tokens considered per event
MIN_BATCH_TOKENS: int = 3
MAX_OOV_RATIO: float = 0.5
MAX_FILLER_RATIO: float = 0.4

# Vocalized hesitations
FILLER_WORDS: frozenset[str] = frozenset([
    'um', 'uh', 'erm', 'er', 'ah', 'eh', 'hm', 'hmm', 'mm', 'mmm', 'mhm',
    'umm', 'uhm', 'uhh', 'ahh', 'err', 'ehh', 'huh',
])

# Words addressed to the prompter rather than the audience
COMMAND_WORDS: frozenset[str] = frozenset([
    'scroll', 'pause', 'resume', 'rewind', 'faster', 'slower', 'prompter',
])

GateVerdict = Literal["ACCEPT", "TOO_SHORT", "OUT_OF_VOCABULARY", "FILLER"]


def take_batch(tokens: list[str]) -> list[str]:
    """The most recent BATCH_SIZE tokens of an utterance."""
    return tokens[-BATCH_SIZE:]


def oov_ratio(batch: list[str], vocabulary: frozenset[str] | set[str]) -> float:
    if not batch:
        return 0.0
    return sum(1 for t in batch if t not in vocabulary) / len(batch)


def filler_ratio(batch: list[str]) -> float:
    if not batch:
        return 0.0
    return sum(1 for t in batch if t in FILLER_WORDS or t in COMMAND_WORDS) / len(batch)


def check_batch(batch: list[str], vocabulary: frozenset[str] | set[str]) -> GateVerdict:
    """Decide whether a batch is worth scoring at all."""
    if len(batch) < MIN_BATCH_TOKENS:
        return "TOO_SHORT"
    if filler_ratio(batch) > MAX_FILLER_RATIO:
        logger.debug("Rejecting filler/command batch: %s", batch)
        return "FILLER"
    if oov_ratio(batch, vocabulary) > MAX_OOV_RATIO:
        logger.debug("Rejecting out-of-vocabulary batch: %s", batch)
        return "OUT_OF_VOCABULARY"
    return "ACCEPT"
