"""
Tests for stall detection, rescue mode, anchors and the forced-commit watchdog.
"""

from cuesync.rescue import (ForcedCommitWatchdog, RescueController, accepts_anchor,
                            anchor_radius, extract_anchors)
from cuesync.script_index import ScriptIndex
from cuesync.tokenizer import tokenize

ANCHOR_SCRIPT = [
    "welcome everyone to our annual meeting tonight",
    "every morning the baker opens her small shop",
    "customers arrive early hoping for warm fresh bread",
    "the smell of cinnamon drifts along the street",
    "children press their faces against the glass window",
    "the glorious purple elephant marched across town",
]


def anchor_index() -> ScriptIndex:
    return ScriptIndex.from_text("\n\n".join(ANCHOR_SCRIPT))


class TestStallAndRescue:
    """Entering and leaving rescue mode."""

    def test_stall_enters_rescue(self):
        rescue = RescueController()
        for _ in range(3):
            rescue.record_score(0.4)
        rescue.update(now=1500, last_commit_ts=0)
        assert rescue.active
        assert rescue.entered_at == 1500
        assert rescue.consecutive_stall_count == 1

    def test_recent_commit_is_not_a_stall(self):
        rescue = RescueController()
        rescue.record_score(0.4)
        rescue.update(now=1400, last_commit_ts=0)
        assert not rescue.active

    def test_good_scores_are_not_a_stall(self):
        rescue = RescueController()
        for _ in range(3):
            rescue.record_score(0.8)
        rescue.update(now=5000, last_commit_ts=0)
        assert not rescue.active

    def test_no_scores_is_not_a_stall(self):
        rescue = RescueController()
        assert rescue.rolling_mean is None
        rescue.update(now=5000, last_commit_ts=0)
        assert not rescue.active

    def test_score_window_bounded(self):
        rescue = RescueController()
        for _ in range(10):
            rescue.record_score(0.0)
        for _ in range(10):
            rescue.record_score(1.0)
        assert rescue.rolling_mean == 1.0

    def test_timeout_exits(self):
        rescue = RescueController()
        rescue.record_score(0.4)
        rescue.update(now=1500, last_commit_ts=0)
        rescue.update(now=4499, last_commit_ts=0)
        assert rescue.active
        rescue.update(now=4500, last_commit_ts=0)
        assert not rescue.active
        assert rescue.entered_at is None

    def test_confident_jump_exits(self):
        rescue = RescueController()
        rescue.record_score(0.4)
        rescue.update(now=1500, last_commit_ts=0)
        rescue.on_commit(2, 0.9)
        assert rescue.active
        rescue.on_commit(3, 0.7)
        assert rescue.active
        rescue.on_commit(3, 0.8)
        assert not rescue.active

    def test_reset(self):
        rescue = RescueController()
        rescue.record_score(0.4)
        rescue.update(now=1500, last_commit_ts=0)
        rescue.note_anchor(1500)
        rescue.reset()
        assert not rescue.active
        assert rescue.freeze_batches == 0
        assert rescue.last_anchor_at is None
        assert rescue.rolling_mean is None


class TestAnchorRules:
    """Anchor acceptance and search radius."""

    def test_accepts_anchor(self):
        assert accepts_anchor(0.8, 40)
        assert accepts_anchor(0.8, 60)
        assert not accepts_anchor(0.8, 61)
        assert accepts_anchor(0.95, 250)
        assert not accepts_anchor(0.75, 10)

    def test_anchor_radius(self):
        assert anchor_radius(lost=True, locked=False) == 300
        assert anchor_radius(lost=False, locked=True) == 200
        assert anchor_radius(lost=False, locked=False) == 50


class TestExtractAnchors:
    """Rare, stop-word-free trigrams."""

    def test_rarest_first(self):
        index = ScriptIndex.from_text("\n\n".join([
            "golden retriever puppies play outside today",
            "puppies play outside every single day",
            "puppies play outside in the rain",
        ]))
        anchors = extract_anchors(["golden", "retriever", "puppies", "play", "outside"], index)
        assert anchors == [
            ("golden", "retriever", "puppies"),
            ("retriever", "puppies", "play"),
            ("puppies", "play", "outside"),
        ]

    def test_stop_words_excluded(self):
        anchors = extract_anchors(["the", "golden", "retriever", "runs"], anchor_index())
        assert anchors == [("golden", "retriever", "runs")]

    def test_limit(self):
        batch = [f"w{i}" for i in range(20)]
        assert len(extract_anchors(batch, anchor_index(), limit=4)) == 4


class TestFindAnchor:
    """Exact anchor lookup around the predicted index."""

    def test_finds_anchor_ahead(self):
        index = anchor_index()
        batch = tokenize(ANCHOR_SCRIPT[5])
        match = RescueController().find_anchor(index, batch, predicted=0, committed=0,
                                               radius=300, now=0)
        assert match is not None
        line = index.lines[5]
        assert match.line == 5
        assert match.score > 0.9
        assert match.gram == ("glorious", "purple", "elephant")
        assert match.word_index == line.start + 3
        assert line.start <= match.word_index <= line.end

    def test_outside_radius(self):
        index = anchor_index()
        batch = tokenize(ANCHOR_SCRIPT[5])
        assert RescueController().find_anchor(index, batch, 0, 0, radius=20, now=0) is None

    def test_never_behind_committed(self):
        index = anchor_index()
        batch = tokenize(ANCHOR_SCRIPT[5])
        committed = index.lines[5].end
        assert RescueController().find_anchor(index, batch, 0, committed, 300, 0) is None

    def test_minimum_gap_between_anchors(self):
        index = anchor_index()
        batch = tokenize(ANCHOR_SCRIPT[5])
        rescue = RescueController()
        rescue.note_anchor(0)
        assert rescue.find_anchor(index, batch, 0, 0, 300, now=1000) is None
        assert rescue.find_anchor(index, batch, 0, 0, 300, now=1200) is not None

    def test_freeze_after_anchor(self):
        rescue = RescueController()
        rescue.note_anchor(0)
        assert rescue.freeze_batches == 2
        assert rescue.consume_freeze()
        assert rescue.consume_freeze()
        assert not rescue.consume_freeze()

    def test_freeze_keeps_longer_window(self):
        rescue = RescueController()
        rescue.freeze(3)
        rescue.freeze(1)
        assert rescue.freeze_batches == 3


class TestForcedCommitWatchdog:
    """An unconfirmed prediction is committed after six ticks."""

    def test_fires_on_sixth_tick(self):
        watchdog = ForcedCommitWatchdog()
        for i in range(1, 6):
            assert not watchdog.tick(0, 5, i * 250)
        assert watchdog.tick(0, 5, 1500)
        assert watchdog.stall_streak == 0
        assert watchdog.burst_active(1600)
        assert not watchdog.burst_active(3000)

    def test_moving_prediction_resets(self):
        watchdog = ForcedCommitWatchdog()
        for i in range(1, 20):
            assert not watchdog.tick(0, 5 + i, i * 250)

    def test_prediction_not_ahead(self):
        watchdog = ForcedCommitWatchdog()
        for i in range(1, 20):
            assert not watchdog.tick(5, 5, i * 250)
        assert watchdog.stall_streak == 0

    def test_stop_burst(self):
        watchdog = ForcedCommitWatchdog()
        for i in range(1, 7):
            watchdog.tick(0, 5, i * 250)
        watchdog.stop_burst()
        assert not watchdog.burst_active(1600)
