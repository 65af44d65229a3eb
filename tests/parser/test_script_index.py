# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the script index."""

import math

import pytest

from cuesync.script_index import ScriptIndex, is_non_spoken_text, ngrams
from cuesync.script_parser import ScriptParagraph


def build(lines):
    return ScriptIndex.from_text("\n\n".join(lines))


class TestWordsAndLines:
    """Lines own contiguous, non-overlapping word ranges."""

    def test_contiguous_ranges(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert len(index.words) == 12
        assert (index.lines[0].start, index.lines[0].end) == (0, 5)
        assert (index.lines[1].start, index.lines[1].end) == (6, 11)
        assert index.lines[1].length == 6

    def test_line_for_word(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert index.line_for_word(0) == 0
        assert index.line_for_word(7) == 1

    def test_line_for_word_clamped(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert index.line_for_word(-5) == 0
        assert index.line_for_word(100) == 1

    def test_lines_without_tokens_dropped(self):
        index = build(["...", "hello world again"])
        assert len(index.lines) == 1
        assert index.lines[0].element_ref == 1
        assert index.lines[0].start == 0

    def test_vocabulary(self):
        index = build(["hello world again"])
        assert index.vocabulary == frozenset({"hello", "world", "again"})

    def test_lines_overlapping(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert list(index.lines_overlapping(4, 8)) == [0, 1]
        assert list(index.lines_overlapping(-10, 2)) == [0]
        assert list(index.lines_overlapping(8, 500)) == [1]
        assert list(index.lines_overlapping(9, 3)) == []


class TestEmptyIndex:
    """An empty script produces a usable, empty index."""

    def test_empty(self):
        index = ScriptIndex.build([])
        assert index.is_empty
        assert index.words == ()
        assert index.lines == ()
        assert list(index.lines_overlapping(0, 100)) == []
        assert index.find_ngram_positions(["a", "b", "c"], 0, 100) == []
        assert index.line_for_word(5) == 0

    def test_from_text_empty(self):
        assert ScriptIndex.from_text("").is_empty


class TestLineFlags:
    """Non-spoken and meta classification."""

    def test_is_non_spoken_text(self):
        assert is_non_spoken_text("Title", is_heading=True)
        assert is_non_spoken_text("[beat]")
        assert is_non_spoken_text("(pause for laughter)")
        assert is_non_spoken_text("INT. KITCHEN - DAY")
        assert is_non_spoken_text("CUT TO: the street outside")
        assert is_non_spoken_text("THIS IS VERY LOUD")
        assert not is_non_spoken_text("A normal line of dialogue here")

    def test_heading_paragraph_flagged(self):
        index = ScriptIndex.build([
            ScriptParagraph("Opening remarks", is_heading=True, element_ref=0),
            ScriptParagraph("Good evening and welcome to the show", element_ref=1),
        ])
        assert index.lines[0].is_non_spoken
        assert not index.lines[1].is_non_spoken

    def test_short_lines_are_meta(self):
        index = build(["thank you", "good evening and welcome to the show"])
        assert index.lines[0].is_meta
        assert not index.lines[1].is_meta

    def test_repeated_signature_is_meta(self):
        index = build([
            "brought to you by acme and friends today",
            "a perfectly ordinary sentence sits in between",
            "brought to you by acme and others tomorrow",
        ])
        assert index.lines[0].is_meta
        assert not index.lines[1].is_meta
        assert index.lines[2].is_meta

    def test_names_collected(self):
        index = build(["and then Lincoln turned to the crowd"])
        assert index.lines[0].names == frozenset({"lincoln"})


class TestDuplicatesAndFrequencies:
    """Duplicate-line counts and document frequencies."""

    def test_duplicate_lines(self):
        index = build([
            "we will rise again together",
            "something else entirely different",
            "we will rise again together",
        ])
        assert index.is_duplicate_line(0)
        assert not index.is_duplicate_line(1)
        assert index.is_duplicate_line(2)
        assert index.key_counts["we will rise again together"] == 2

    def test_doc_freq_counts_lines_not_occurrences(self):
        index = build(["the cat and the hat", "the dog ran far away"])
        assert index.doc_freq["the"] == 2
        assert index.doc_freq["cat"] == 1

    def test_idf(self):
        index = build(["the cat and the hat", "the dog ran far away"])
        assert index.idf("cat") == pytest.approx(math.log(3 / 2) + 1)
        assert index.idf("zebra") > index.idf("cat") > index.idf("the")


class TestNgrams:
    """The 3/4-gram inverted index and exact position lookup."""

    def test_ngrams_helper(self):
        assert ngrams(["a", "b", "c", "d"], 3) == ["a b c", "b c d"]
        assert ngrams(["a", "b"], 3) == []

    def test_index_contains_three_and_four_grams(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert index.ngram_index["one two three"] == frozenset({0})
        assert index.ngram_index["nine ten eleven twelve"] == frozenset({1})
        assert "one two" not in index.ngram_index

    def test_find_positions_within_band(self):
        index = build(["one two three four five six", "seven eight nine ten eleven twelve"])
        assert index.find_ngram_positions(["three", "four", "five"], 0, 11) == [2]
        assert index.find_ngram_positions(["three", "four", "five"], 5, 11) == []

    def test_find_positions_repeated_phrase(self):
        index = build(["to be or not to be", "that is the question to be or not"])
        assert index.find_ngram_positions(["to", "be", "or"], 0, 20) == [0, 10]

    def test_find_positions_other_lengths(self):
        index = build(["to be or not to be"])
        assert index.find_ngram_positions(["to", "be"], 0, 5) == [0, 4]


class TestVirtualLines:
    """Short consecutive lines merge into phrase-length units."""

    def test_short_lines_merge(self):
        index = build([
            "one two",
            "three four",
            "five six",
            "seven eight",
            "this is a considerably longer line of text for testing",
        ])
        assert len(index.virtual_lines) == 2
        first = index.virtual_lines[0]
        assert (first.first_line, first.last_line) == (0, 3)
        assert (first.start, first.end) == (0, 7)
        assert first.signature == "one two three four"
        assert index.virtual_lines[1].first_line == 4
        assert index.virtual_line_for_word(index.lines[4].start) == 1

    def test_long_lines_stand_alone(self):
        index = build([
            "the morning sun rose over the quiet harbor",
            "fishermen prepared their boats for the long day",
        ])
        assert len(index.virtual_lines) == 2
        assert index.virtual_lines[1].tokens == index.lines[1].tokens

    def test_virtual_lines_cover_every_word(self):
        index = build(["a b", "c d e f g h i j k l m n o p q r s t", "u v", "w x y z"])
        assert len(index.word_to_virtual) == len(index.words)
        assert index.virtual_lines[0].start == 0
        assert index.virtual_lines[-1].end == len(index.words) - 1
