"""
Tests for candidate line generation.
"""

from cuesync.candidates import CandidateSet, generate_candidates, ngram_hit_lines, search_band
from cuesync.script_index import ScriptIndex

FILLER_LINE = "lorem ipsum dolor sit amet consectetur adipiscing elit"


def long_script_index() -> ScriptIndex:
    """A phrase at the start, 40 filler lines, then the phrase again (word 329+)."""
    lines = ["the quick brown fox jumps over the lazy dog"]
    lines += [FILLER_LINE] * 40
    lines.append("the quick brown fox was seen again")
    return ScriptIndex.from_text("\n\n".join(lines))


class TestSearchBand:
    """The band is clipped to the script."""

    def test_band(self):
        assert search_band(10, 30, 200, 100) == (0, 99)
        assert search_band(100, 30, 50, 1000) == (70, 150)

    def test_empty_script(self):
        assert search_band(0, 30, 200, 0) == (0, -1)


class TestGenerateCandidates:
    """N-gram seeding with a band fallback."""

    def test_seeded_within_band(self):
        index = long_script_index()
        candidates = generate_candidates(index, ["the", "quick", "brown", "fox"], 0, 30, 200)
        assert candidates.seeded
        assert candidates.indices == (0,)
        assert candidates.band == (0, 200)

    def test_far_hit_outside_band_ignored(self):
        index = long_script_index()
        assert index.lines[41].start == 329
        hits = ngram_hit_lines(index, ["the", "quick", "brown", "fox"])
        assert hits == {0, 41}
        candidates = generate_candidates(index, ["the", "quick", "brown", "fox"], 0, 30, 200)
        assert 41 not in candidates.indices

    def test_rescue_widens_band(self):
        index = long_script_index()
        candidates = generate_candidates(
            index, ["the", "quick", "brown", "fox"], 0, 30, 200, rescue_active=True)
        assert candidates.indices == (0, 41)

    def test_fallback_to_band_lines(self):
        index = long_script_index()
        candidates = generate_candidates(index, ["nothing", "matches", "here"], 0, 30, 200)
        assert not candidates.seeded
        assert candidates.indices == tuple(range(index.line_for_word(200) + 1))

    def test_fallback_behind_prediction(self):
        index = long_script_index()
        candidates = generate_candidates(index, ["nothing", "matches", "here"], 300, 30, 10)
        assert candidates.band == (270, 310)
        assert candidates.indices[0] == index.line_for_word(270)
        assert candidates.indices[-1] == index.line_for_word(310)

    def test_empty_script(self):
        candidates = generate_candidates(ScriptIndex.build([]), ["a", "b", "c"], 0, 30, 200)
        assert candidates == CandidateSet(indices=(), seeded=False)
        assert not candidates
