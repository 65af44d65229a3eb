# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Token normalization shared by script indexing and spoken transcript batches.

Both sides of every comparison go through the same pipeline so that
"Don't panic, it's 21%" in the script and "do not panic it is twenty one
percent" from the recognizer produce identical token sequences.
"""

import re
from functools import lru_cache

from num2words import num2words

APOSTROPHES: re.Pattern[str] = re.compile(r"[‘’‛′`´]")

# Applied in order; the specific forms must run before the generic n't rule
CONTRACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bwon't\b"), "will not"),
    (re.compile(r"\bcan't\b"), "cannot"),
    (re.compile(r"\bshan't\b"), "shall not"),
    (re.compile(r"n't\b"), " not"),
    (re.compile(r"\bit's\b"), "it is"),
    (re.compile(r"\bthat's\b"), "that is"),
    (re.compile(r"'re\b"), " are"),
    (re.compile(r"'ll\b"), " will"),
    (re.compile(r"'ve\b"), " have"),
    (re.compile(r"'d\b"), " would"),
    (re.compile(r"'m\b"), " am"),
]

DASHES: str = "‐‑‒–—―-"
NUMBER_RANGE: re.Pattern[str] = re.compile(rf"(\d+)\s*[{DASHES}]\s*(\d+)")
HYPHENATED: re.Pattern[str] = re.compile(rf"(\w)[{DASHES}](\w)")
NON_WORD: re.Pattern[str] = re.compile(r"[^\w\s]|_")
SMALL_INTEGER: re.Pattern[str] = re.compile(r"^\d{1,2}$")
NAME_WORD: re.Pattern[str] = re.compile(r"[^\W\d_]+|[.!?]")

NUMBER_WORDS: frozenset[str] = frozenset([
    'zero', 'one', 'two', 'three', 'four', 'five', 'six', 'seven', 'eight',
    'nine', 'ten', 'eleven', 'twelve', 'thirteen', 'fourteen', 'fifteen',
    'sixteen', 'seventeen', 'eighteen', 'nineteen', 'twenty', 'thirty',
    'forty', 'fifty', 'sixty', 'seventy', 'eighty', 'ninety', 'hundred',
    'thousand', 'million', 'billion', 'percent',
])


def _spell_small_integer(token: str) -> list[str]:
    """Spell out 0-99 ("21" -> ["twenty", "one"]); other tokens pass through."""
    if not SMALL_INTEGER.match(token):
        return [token]
    words: str = num2words(int(token))
    return words.replace('-', ' ').split()


@lru_cache(maxsize=4096)
def _tokenize_cached(text: str) -> tuple[str, ...]:
    t: str = APOSTROPHES.sub("'", text.lower())
    for pattern, replacement in CONTRACTIONS:
        t = pattern.sub(replacement, t)
    t = t.replace("'", "")

    # "76-86" is read as "seventy six to eighty six"
    t = NUMBER_RANGE.sub(r"\1 to \2", t)
    t = t.replace('%', ' percent ')
    # matter-of-fact -> matter of fact (twice for overlapping matches like a-b-c)
    t = HYPHENATED.sub(r"\1 \2", t)
    t = HYPHENATED.sub(r"\1 \2", t)
    t = NON_WORD.sub(' ', t)

    out: list[str] = []
    for raw in t.split():
        out.extend(_spell_small_integer(raw))
    return tuple(out)


def tokenize(text: str) -> list[str]:
    """Normalize text into lowercase word tokens.

    Rules, in order: unify apostrophes, expand contractions, turn number
    ranges and percent signs into spoken words, split hyphenated words,
    strip everything that is not a letter/digit/space, collapse whitespace,
    spell out integers 0-99.

    Examples:
        "Won't stop" -> ["will", "not", "stop"]
        "It's 21%" -> ["it", "is", "twenty", "one", "percent"]
        "pages 8-10" -> ["pages", "eight", "to", "ten"]
    """
    if not text:
        return []
    return list(_tokenize_cached(text))


def is_numeric_token(token: str) -> bool:
    """True for digit strings and spelled-out number words."""
    return token.isdigit() or token in NUMBER_WORDS


def name_like_tokens(text: str) -> set[str]:
    """Return lowercased capitalized words that do not start a sentence.

    Recognizers that emit casing capitalize proper nouns, so a shared
    "Lincoln" is strong evidence even when the rest of the batch is noisy.
    """
    names: set[str] = set()
    sentence_start: bool = True
    for match in NAME_WORD.finditer(text or ""):
        word: str = match.group(0)
        if word in '.!?':
            sentence_start = True
            continue
        if (not sentence_start and len(word) >= 3 and word[0].isupper()
                and not word.isupper()):
            names.add(word.lower())
        sentence_start = False
    return names
