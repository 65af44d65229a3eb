# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script indexing: everything the aligner needs to know about a rendered script.

Built once per script render and read-only afterwards:
- word positions (the global token sequence)
- one LineRecord per rendered paragraph, with non-spoken/meta flags
- merged "virtual lines" used by coverage and stall logic
- a 3/4-gram inverted index over lines
- per-token document frequency (for anchor rarity)
- duplicate-line frequencies and the script vocabulary
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass

from .script_parser import ScriptParagraph, parse_script
from .tokenizer import name_like_tokens, tokenize

logger = logging.getLogger(__name__)

NGRAM_SIZES: tuple[int, ...] = (3, 4)
META_MAX_TOKENS: int = 5
SIGNATURE_TOKENS: int = 4
VIRTUAL_MIN_CHARS: int = 35
VIRTUAL_MAX_CHARS: int = 120

BRACKET_ONLY: re.Pattern[str] = re.compile(r"^\s*[\[(][^\])]*[\])]\s*$")
SCENE_DIRECTION: re.Pattern[str] = re.compile(
    r"^\s*(INT\.|EXT\.|CUT TO\b|FADE (IN|OUT)\b|SCENE\b|SFX\b|VO:|NOTE:)")


@dataclass(frozen=True)
class LineRecord:
    """One rendered paragraph of the script."""
    element_ref: int  # Paragraph position in render order
    start: int  # First word index (inclusive)
    end: int  # Last word index (inclusive)
    key: str  # Normalized tokens joined with spaces
    tokens: tuple[str, ...]
    text: str  # Visible paragraph text
    is_non_spoken: bool = False
    is_meta: bool = False
    names: frozenset[str] = frozenset()

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class VirtualLine:
    """A run of consecutive short lines merged into one phrase-length unit."""
    start: int
    end: int
    first_line: int  # LineRecord index range covered (inclusive)
    last_line: int
    key: str
    signature: str  # First four tokens, for spotting templated repeats
    tokens: tuple[str, ...]


def ngrams(tokens: list[str] | tuple[str, ...], n: int) -> list[str]:
    """All contiguous n-grams of a token sequence, joined with spaces."""
    return [' '.join(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


def is_non_spoken_text(text: str, is_heading: bool = False) -> bool:
    """Headers, scene directions, ALL-CAPS lines and bracket-only cues."""
    if is_heading:
        return True
    if BRACKET_ONLY.match(text) or SCENE_DIRECTION.match(text):
        return True
    letters: str = ''.join(c for c in text if c.isalpha())
    return len(letters) >= 3 and letters.isupper()


class ScriptIndex:
    """
    Immutable index over one rendered script.

    All word indices refer to positions in ``words``. Lines that tokenize to
    nothing (rules, stray punctuation) are dropped and own no words.
    """

    def __init__(self, paragraphs: list[ScriptParagraph]) -> None:
        words: list[str] = []
        staged: list[tuple[ScriptParagraph, tuple[str, ...]]] = []
        for para in paragraphs:
            tokens: tuple[str, ...] = tuple(tokenize(para.text))
            if tokens:
                staged.append((para, tokens))

        key_counts: Counter[str] = Counter(' '.join(t) for _, t in staged)
        signature_counts: Counter[str] = Counter(
            ' '.join(t[:SIGNATURE_TOKENS]) for _, t in staged
            if len(t) >= SIGNATURE_TOKENS
        )

        lines: list[LineRecord] = []
        for para, tokens in staged:
            start: int = len(words)
            words.extend(tokens)
            signature: str = ' '.join(tokens[:SIGNATURE_TOKENS])
            is_meta: bool = (
                len(tokens) <= META_MAX_TOKENS
                or (len(tokens) >= SIGNATURE_TOKENS and signature_counts[signature] >= 2)
            )
            lines.append(LineRecord(
                element_ref=para.element_ref,
                start=start,
                end=len(words) - 1,
                key=' '.join(tokens),
                tokens=tokens,
                text=para.text,
                is_non_spoken=is_non_spoken_text(para.text, para.is_heading),
                is_meta=is_meta,
                names=frozenset(name_like_tokens(para.text)),
            ))

        self.words: tuple[str, ...] = tuple(words)
        self.lines: tuple[LineRecord, ...] = tuple(lines)
        self.key_counts: Counter[str] = key_counts
        self.vocabulary: frozenset[str] = frozenset(words)

        self.word_to_line: list[int] = []
        for idx, line in enumerate(self.lines):
            self.word_to_line.extend([idx] * line.length)

        self.virtual_lines: tuple[VirtualLine, ...] = self._build_virtual_lines()
        self.virtual_key_counts: Counter[str] = Counter(v.key for v in self.virtual_lines)
        self.word_to_virtual: list[int] = []
        for idx, vline in enumerate(self.virtual_lines):
            self.word_to_virtual.extend([idx] * (vline.end - vline.start + 1))

        self.ngram_index: dict[str, frozenset[int]] = self._build_ngram_index()
        self.doc_freq: dict[str, int] = self._build_doc_freq()

        logger.debug(
            "Indexed script: %d words, %d lines, %d virtual lines, %d n-grams",
            len(self.words), len(self.lines), len(self.virtual_lines), len(self.ngram_index))

    @classmethod
    def build(cls, paragraphs: list[ScriptParagraph]) -> 'ScriptIndex':
        return cls(paragraphs)

    @classmethod
    def from_text(cls, text: str) -> 'ScriptIndex':
        """Parse and index script markdown."""
        return cls(parse_script(text))

    def _build_virtual_lines(self) -> tuple[VirtualLine, ...]:
        result: list[VirtualLine] = []
        run: list[int] = []
        run_chars: int = 0

        def emit() -> None:
            tokens: tuple[str, ...] = tuple(
                tok for i in run for tok in self.lines[i].tokens)
            result.append(VirtualLine(
                start=self.lines[run[0]].start,
                end=self.lines[run[-1]].end,
                first_line=run[0],
                last_line=run[-1],
                key=' '.join(tokens),
                signature=' '.join(tokens[:SIGNATURE_TOKENS]),
                tokens=tokens,
            ))

        for idx, line in enumerate(self.lines):
            if run and (run_chars >= VIRTUAL_MIN_CHARS
                        or run_chars + 1 + len(line.key) > VIRTUAL_MAX_CHARS):
                emit()
                run, run_chars = [], 0
            run.append(idx)
            run_chars += len(line.key) + (1 if run_chars else 0)
        if run:
            emit()
        return tuple(result)

    def _build_ngram_index(self) -> dict[str, frozenset[int]]:
        index: dict[str, set[int]] = {}
        for idx, line in enumerate(self.lines):
            for n in NGRAM_SIZES:
                for gram in ngrams(line.tokens, n):
                    index.setdefault(gram, set()).add(idx)
        return {gram: frozenset(found) for gram, found in index.items()}

    def _build_doc_freq(self) -> dict[str, int]:
        freq: Counter[str] = Counter()
        for line in self.lines:
            freq.update(set(line.tokens))
        return dict(freq)

    @property
    def is_empty(self) -> bool:
        return not self.words

    def line_for_word(self, word_index: int) -> int:
        """LineRecord index owning a word (clamped to the script bounds)."""
        if not self.word_to_line:
            return 0
        return self.word_to_line[max(0, min(word_index, len(self.word_to_line) - 1))]

    def virtual_line_for_word(self, word_index: int) -> int:
        """VirtualLine index owning a word (clamped to the script bounds)."""
        if not self.word_to_virtual:
            return 0
        return self.word_to_virtual[max(0, min(word_index, len(self.word_to_virtual) - 1))]

    def lines_overlapping(self, lo: int, hi: int) -> range:
        """LineRecord indices whose word range intersects [lo, hi]."""
        if not self.lines:
            return range(0)
        lo = max(0, lo)
        hi = min(len(self.words) - 1, hi)
        if hi < lo:
            return range(0)
        return range(self.line_for_word(lo), self.line_for_word(hi) + 1)

    def is_duplicate_line(self, line_index: int) -> bool:
        """True when the same normalized text appears on more than one line."""
        return self.key_counts[self.lines[line_index].key] > 1

    def idf(self, token: str) -> float:
        """Smoothed inverse document frequency; unseen tokens are rarest."""
        total: int = len(self.lines)
        return math.log((1 + total) / (1 + self.doc_freq.get(token, 0))) + 1.0

    def find_ngram_positions(self, gram: list[str] | tuple[str, ...], lo: int, hi: int) -> list[int]:
        """Word positions where ``gram`` occurs exactly, starting within [lo, hi]."""
        n: int = len(gram)
        if n == 0 or self.is_empty:
            return []
        joined: str = ' '.join(gram)
        if n in NGRAM_SIZES:
            line_ids = sorted(self.ngram_index.get(joined, ()))
        else:
            line_ids = list(self.lines_overlapping(lo, hi))

        positions: list[int] = []
        for line_id in line_ids:
            line: LineRecord = self.lines[line_id]
            if line.end < lo or line.start > hi:
                continue
            for offset in range(len(line.tokens) - n + 1):
                pos: int = line.start + offset
                if lo <= pos <= hi and line.tokens[offset:offset + n] == tuple(gram):
                    positions.append(pos)
        return positions
