# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Alignment engine: follows a live transcript through a script.

The engine owns every piece of mutable alignment state and exposes three
entry points, each of which runs to completion:
- handle_transcript(): score a speech event and maybe commit a new position
- tick(): watchdog work (rescue timeouts, forced commits, scroll catch-up)
- frame(): emit the pending scroll command to the sinks (with the autoscroll
  step folded in when hybrid lock is on)

Scheduling (throttling, tick cadence, frame rate) belongs to the host; see
session.SyncSession.

Positions are word indices into ScriptIndex.words. The committed index only
moves forward; reset() and load_script() are the only ways back.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Literal

from . import debug_log
from .bias import AutoscrollDriver, BiasController
from .candidates import CandidateSet, generate_candidates, ngram_hit_lines
from .gates import GateVerdict, check_batch, take_batch
from .jitter import JitterMonitor
from .layout import LayoutProvider, ScrollCommand, ScrollSink
from .rescue import (
    STALL_MS,
    AnchorMatch,
    ForcedCommitWatchdog,
    RescueController,
    anchor_radius,
    extract_anchors,
)
from .script_index import ScriptIndex, ngrams
from .scroll_controller import ScrollController
from .similarity import score_line
from .soft_advance import SoftAdvance
from .tokenizer import name_like_tokens, tokenize
from .tuning import TuningError, TuningProfile
from .viterbi import AlignmentStep, TemporalAligner

logger = logging.getLogger(__name__)

LOST_FALLBACK_STREAK: int = 3
LOCKED_MIN_SCORE: float = 0.75
SPOKEN_TAIL_TOKENS: int = 32
SMOOTHING: float = 0.3  # EMA weight of the newest predicted index
SPEECH_PAUSE_MS: float = 1500.0  # Silence that counts as a pause for the bias controller

Outcome = Literal[
    "ignored",  # Engine disabled or script empty
    "dropped",  # Too few tokens
    "rejected",  # Filler / out-of-vocabulary batch
    "withheld",  # Best score below threshold
    "held",  # Gate kept the position (no progress, duplicate line, hysteresis)
    "committed",
    "anchor",
    "soft_advance",
]


@dataclass
class AlignmentState:
    """Position estimates and commit bookkeeping."""
    committed_index: int = 0
    predicted_index: int = 0
    smoothed_index: float = 0.0
    last_commit_ts: float | None = None
    last_score: float = 0.0
    fallback_streak: int = 0
    pending_line: int | None = None  # Hysteresis for interim commits
    pending_hits: int = 0


@dataclass(frozen=True)
class BatchResult:
    """What handle_transcript() did with one speech event."""
    outcome: Outcome
    committed_index: int
    predicted_index: int
    line: int | None = None
    score: float = 0.0
    verdict: GateVerdict | None = None

    @property
    def moved(self) -> bool:
        return self.outcome in ("committed", "anchor", "soft_advance")


class AlignmentEngine:
    """
    Aligns noisy speech events against a script and drives scrolling.

    All timestamps are milliseconds on a caller-supplied monotonic clock.
    """

    def __init__(
        self,
        script_text: str = "",
        profile: TuningProfile | None = None,
        layout: LayoutProvider | None = None,
        sinks: list[ScrollSink] | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            script_text: Script markdown (may be empty and loaded later)
            profile: Tuning profile (defaults to normal/balanced)
            layout: Viewport layout provider, if the script is on screen
            sinks: Receivers of emitted scroll commands
        """
        self.profile: TuningProfile = profile or TuningProfile()
        self.sinks: list[ScrollSink] = list(sinks or [])
        self.enabled: bool = True

        self.index: ScriptIndex = ScriptIndex.from_text(script_text)
        self.state: AlignmentState = AlignmentState()
        self.aligner: TemporalAligner = TemporalAligner()
        self.jitter: JitterMonitor = JitterMonitor()
        self.rescue: RescueController = RescueController()
        self.watchdog: ForcedCommitWatchdog = ForcedCommitWatchdog()
        self.soft_advance: SoftAdvance = SoftAdvance()
        self.scroll: ScrollController = ScrollController(
            layout, self.profile.marker_percent, self.profile.scroll)
        self.bias: BiasController = BiasController(self.profile.pid)
        self.autoscroll: AutoscrollDriver = AutoscrollDriver(self.bias)

        self._spoken_tail: deque[str] = deque(maxlen=SPOKEN_TAIL_TOKENS)
        self._last_now: float | None = None
        self._last_speech_at: float | None = None
        self._bias_fed: bool = False
        self._pause_noted: bool = False

    # Configuration and lifecycle

    @property
    def layout(self) -> LayoutProvider | None:
        return self.scroll.layout

    def set_layout(self, layout: LayoutProvider | None) -> None:
        self.scroll.layout = layout

    def add_sink(self, sink: ScrollSink) -> None:
        self.sinks.append(sink)

    def remove_sink(self, sink: ScrollSink) -> None:
        if sink in self.sinks:
            self.sinks.remove(sink)

    def reconfigure(self, profile: TuningProfile) -> None:
        """Swap in a new tuning profile. The old one stays if validation fails."""
        if not isinstance(profile, TuningProfile):
            raise TuningError(f"Expected a TuningProfile, got {type(profile).__name__}")
        profile.validate()
        self.profile = profile
        self.scroll.reconfigure(profile.marker_percent, profile.scroll)
        self.bias.reconfigure(profile.pid)
        if not profile.hybrid_lock:
            self.autoscroll.stop()
        logger.debug("Reconfigured: %s/%s hybrid=%s",
                     profile.aggressiveness, profile.smoothness, profile.hybrid_lock)

    def reset(self) -> None:
        """Return to the start of the script and forget all alignment history."""
        self.state = AlignmentState()
        self.aligner.reset()
        self.jitter.reset()
        self.rescue.reset()
        self.watchdog.reset()
        self.soft_advance.reset()
        self.scroll.reset()
        self.bias.reset()
        self.autoscroll.stop()
        self._spoken_tail.clear()
        self._last_now = None
        self._last_speech_at = None
        self._bias_fed = False
        self._pause_noted = False

    def load_script(self, script_text: str) -> None:
        """Replace the script; the index is rebuilt and all state reset."""
        self.index = ScriptIndex.from_text(script_text)
        self.reset()
        logger.info("Loaded script: %d words, %d lines",
                    len(self.index.words), len(self.index.lines))

    def disable(self) -> None:
        """Stop following speech. Bursts, freezes and positions are cleared."""
        self.enabled = False
        self.watchdog.stop_burst()
        self.rescue.freeze_batches = 0
        self.reset()

    def enable(self) -> None:
        self.enabled = True

    def nudge(self, offset: float, now: float) -> None:
        """The user scrolled by hand; suppress soft-advance for a few batches."""
        self.scroll.nudge(offset, now)
        self.rescue.freeze(self.profile.nudge_freeze_batches)
        debug_log.log_event("NUDGE", f"offset={offset:.1f}")

    # State queries

    @property
    def committed_index(self) -> int:
        return self.state.committed_index

    @property
    def predicted_index(self) -> int:
        return self.state.predicted_index

    @property
    def path_history(self) -> list[int]:
        return list(self.aligner.path_history)

    @property
    def progress(self) -> float:
        """Fraction of the script committed so far (0.0 to 1.0)."""
        if len(self.index.words) <= 1:
            return 0.0
        return self.state.committed_index / (len(self.index.words) - 1)

    @property
    def is_lost(self) -> bool:
        return self.rescue.active or self.state.fallback_streak >= LOST_FALLBACK_STREAK

    def is_locked(self, now: float) -> bool:
        last: float | None = self.state.last_commit_ts
        return (not self.is_lost
                and self.state.last_score >= LOCKED_MIN_SCORE
                and last is not None and now - last <= STALL_MS)

    # Entry points

    def handle_transcript(self, text: str, is_final: bool, now: float) -> BatchResult:
        """Process one speech event (the recognizer's current text for this utterance).

        Args:
            text: Transcript text, interim or final
            is_final: Whether the recognizer has finalized this utterance
            now: Current time (ms)

        Returns:
            BatchResult describing the decision taken.
        """
        if not self.enabled or self.index.is_empty:
            return self._result("ignored")

        tokens: list[str] = tokenize(text)
        batch: list[str] = take_batch(tokens)
        verdict: GateVerdict = check_batch(batch, self.index.vocabulary)
        debug_log.log_batch(batch, is_final, verdict)
        if verdict == "TOO_SHORT":
            return self._result("dropped", verdict=verdict)
        if verdict != "ACCEPT":
            return self._result("rejected", verdict=verdict)

        self._start_clock(now)
        self._last_speech_at, self._pause_noted = now, False
        tail: list[str] = list(self._spoken_tail) + tokens
        if is_final:
            self._spoken_tail.extend(tokens)

        self._update_rescue(now)
        spoken_names: frozenset[str] = frozenset(name_like_tokens(text)).intersection(batch)
        preset = self.profile.alignment
        candidates: CandidateSet = generate_candidates(
            self.index, batch, self.state.predicted_index,
            preset.window_back, preset.window_ahead, self.rescue.active)
        self.state.fallback_streak = 0 if candidates.seeded else self.state.fallback_streak + 1

        scores: dict[int, float] = {
            line_id: score_line(batch, self.index.lines[line_id], spoken_names)
            for line_id in candidates.indices
        }
        prev: int | None = self.aligner.previous_line
        if prev is None:
            prev = self.index.line_for_word(self.state.committed_index)
        step: AlignmentStep | None = self.aligner.step(scores, prev, self.rescue.active)
        if step is None:
            estimate: int | None = self.scroll.word_at_marker()
            if estimate is not None:
                self.state.predicted_index = estimate
            return self._result("withheld", verdict=verdict)

        self.aligner.record(step.line)
        self.rescue.record_score(step.score)
        self.state.last_score = step.score
        target: int = self._target_word(batch, step.line)
        self._predict(target, now)
        self._feed_bias(step, now)

        threshold: float = preset.sim_threshold + self.jitter.elevation(now)

        if self.rescue.active or step.score < threshold:
            anchor: AnchorMatch | None = self.rescue.find_anchor(
                self.index, batch, self.state.predicted_index, self.state.committed_index,
                anchor_radius(self.is_lost, self.is_locked(now)), now, spoken_names)
            if anchor is not None:
                self._commit_anchor(anchor, is_final, now)
                return self._result("anchor", anchor.line, anchor.score, verdict)

        frozen: bool = self.rescue.consume_freeze()

        if step.score < threshold:
            self.state.pending_line, self.state.pending_hits = None, 0
            if not frozen:
                advanced = self.soft_advance.try_advance(
                    self.index, tail, self.state.committed_index, now,
                    lost=self.is_lost,
                    consistency=self.aligner.consistency,
                    ngram_lines=ngram_hit_lines(self.index, batch),
                    anchors=extract_anchors(batch, self.index) if self.is_lost else None,
                )
                if advanced is not None:
                    target = self._clamp_forward(advanced.word_index, advanced.score)
                    line_id: int = self.index.line_for_word(target)
                    self._commit(target, line_id, advanced.score, "soft_advance", is_final, now)
                    return self._result("soft_advance", line_id, advanced.score, verdict)
            logger.debug("Withheld: line %d scored %.3f < %.3f", step.line, step.score, threshold)
            return self._result("withheld", step.line, step.score, verdict)

        return self._gate_commit(step, target, is_final, now, verdict)

    def tick(self, now: float) -> bool:
        """Watchdog step, nominally every 250 ms. Returns True if a forced commit happened."""
        if not self.enabled or self.index.is_empty:
            return False
        self._start_clock(now)
        self.jitter.expire(now)
        self._update_rescue(now)

        forced: bool = False
        if self.watchdog.tick(self.state.committed_index, self.state.predicted_index, now):
            target: int = self._clamp_forward(self.state.predicted_index, self.state.last_score)
            logger.debug("Forced commit %d -> %d after stalled ticks (predicted %d)",
                         self.state.committed_index, target, self.state.predicted_index)
            self._commit(target, self.index.line_for_word(target), self.state.last_score,
                         "forced", True, now)
            forced = True
        if self.profile.hybrid_lock:
            self._tick_bias(now)
        burst: bool = self.watchdog.burst_active(now)
        if burst or not self.autoscroll.running:
            self.scroll.catch_up(now, burst=burst)
        return forced

    def frame(self, now: float) -> ScrollCommand | None:
        """Emit the pending scroll command (if any) to every sink.

        With hybrid lock on, the autoscroll step for this frame is folded in
        first.
        """
        self._drive_autoscroll(now)
        command: ScrollCommand | None = self.scroll.frame(now)
        if command is None:
            return None
        debug_log.log_scroll(command.sequence, command.offset, command.ratio)
        for sink in list(self.sinks):
            sink(command)
        return command

    # Internals

    def _result(self, outcome: Outcome, line: int | None = None, score: float = 0.0,
                verdict: GateVerdict | None = None) -> BatchResult:
        return BatchResult(
            outcome=outcome,
            committed_index=self.state.committed_index,
            predicted_index=self.state.predicted_index,
            line=line,
            score=score,
            verdict=verdict,
        )

    def _start_clock(self, now: float) -> None:
        if self._last_now is None:
            self.state.last_commit_ts = now
            self.soft_advance.observe(
                self.index.virtual_line_for_word(self.state.committed_index), now)
        self._last_now = now

    def _update_rescue(self, now: float) -> None:
        was_rescuing: bool = self.rescue.active
        self.rescue.update(now, self._last_commit_ts())
        if was_rescuing != self.rescue.active:
            debug_log.log_event("RESCUE", "enter" if self.rescue.active else "exit")

    def _last_commit_ts(self) -> float:
        ts: float | None = self.state.last_commit_ts
        return ts if ts is not None else (self._last_now or 0.0)

    def _predict(self, target: int, now: float) -> None:
        self.state.predicted_index = target
        self.state.smoothed_index = (
            SMOOTHING * target + (1 - SMOOTHING) * self.state.smoothed_index)
        self.jitter.record(target, self.state.committed_index, now)

    def _target_word(self, batch: list[str], line_id: int) -> int:
        """Where in the chosen line the batch ends.

        The last batch trigram found at or after the committed offset wins;
        failing that, the last batch token found there.
        """
        line = self.index.lines[line_id]
        lo: int = max(line.start, self.state.committed_index)
        found: int | None = None
        for gram in ngrams(batch, 3):
            positions: list[int] = self.index.find_ngram_positions(gram.split(' '), lo, line.end)
            if positions:
                found = positions[0] + 2
        if found is None:
            for token in reversed(batch):
                for pos in range(lo, line.end + 1):
                    if self.index.words[pos] == token:
                        found = pos
                        break
                if found is not None:
                    break
        if found is None:
            found = line.start if lo <= line.end else line.end
        return min(found, len(self.index.words) - 1)

    def _gate_commit(self, step: AlignmentStep, target: int, is_final: bool,
                     now: float, verdict: GateVerdict) -> BatchResult:
        preset = self.profile.alignment
        committed: int = self.state.committed_index
        jump: int = target - committed
        if jump <= 0:
            return self._result("held", step.line, step.score, verdict)

        if (self.index.is_duplicate_line(step.line)
                and step.score < preset.strict_forward_sim
                and jump > preset.max_jump_ahead_words):
            logger.debug("Holding: duplicate line %d at %.3f", step.line, step.score)
            return self._result("held", step.line, step.score, verdict)

        target = self._clamp_forward(target, step.score)

        if not is_final:
            if self.state.pending_line == step.line:
                self.state.pending_hits += 1
            else:
                self.state.pending_line, self.state.pending_hits = step.line, 1
            if self.state.pending_hits < self.profile.scroll.stable_hits:
                return self._result("held", step.line, step.score, verdict)

        self._commit(target, step.line, step.score, "commit", is_final, now)
        return self._result("committed", step.line, step.score, verdict)

    def _clamp_forward(self, target: int, score: float) -> int:
        """Limit a forward move: weak evidence gets the jump cap, everything the step cap."""
        preset = self.profile.alignment
        committed: int = self.state.committed_index
        if target - committed > preset.max_jump_ahead_words and score < preset.strict_forward_sim:
            target = committed + preset.max_jump_ahead_words
        return min(target, committed + self.profile.scroll.max_commit_step)

    def _commit_anchor(self, anchor: AnchorMatch, is_final: bool, now: float) -> None:
        logger.debug("Anchor %s accepted at word %d (score %.3f, distance %d)",
                     ' '.join(anchor.gram), anchor.word_index, anchor.score, anchor.distance)
        self.rescue.note_anchor(now)
        self.aligner.record(anchor.line)
        self.state.predicted_index = anchor.word_index
        self._commit(anchor.word_index, anchor.line, anchor.score, "anchor", is_final, now)

    def _commit(self, target: int, line_id: int, score: float, reason: str,
                is_final: bool, now: float) -> bool:
        old: int = self.state.committed_index
        if target <= old:
            return False
        old_line: int = self.index.line_for_word(old)
        self.state.committed_index = target
        self.state.predicted_index = max(self.state.predicted_index, target)
        self.state.last_commit_ts = now
        self.state.pending_line, self.state.pending_hits = None, 0

        if reason != "soft_advance":
            self.soft_advance.reset_streak()
        self.soft_advance.observe(self.index.virtual_line_for_word(target), now)

        was_rescuing: bool = self.rescue.active
        self.rescue.on_commit(line_id - old_line, score)
        if was_rescuing and not self.rescue.active:
            debug_log.log_event("RESCUE", "exit on progress")

        self.scroll.on_commit(target, is_final, now, burst=self.watchdog.burst_active(now))
        debug_log.log_commit(old, target, line_id, score, reason)
        logger.debug("Committed %d -> %d (%s, line %d, score %.3f)", old, target, reason, line_id, score)
        return True

    def _feed_bias(self, step: AlignmentStep, now: float) -> None:
        """Hybrid autoscroll: steer speed by how far the matched line is from the marker."""
        if not self.profile.hybrid_lock or self.layout is None:
            return
        line_top: float | None = self.scroll.line_top_for_word(self.state.predicted_index)
        if line_top is None:
            return
        viewport: float = self.layout.get_viewport_height()
        y_match: float = line_top - self.scroll.current_offset()
        y_marker: float = viewport * self.profile.marker_percent
        self.bias.update(y_match, y_marker, max(0.0, min(1.0, step.score)), now, self.progress)
        self._bias_fed = True

    def _tick_bias(self, now: float) -> None:
        """Silence between ticks counts as a low-confidence observation."""
        if self._bias_fed:
            self._bias_fed = False
        else:
            self.bias.coast(now)
        last: float | None = self._last_speech_at
        if last is not None and not self._pause_noted and now - last >= SPEECH_PAUSE_MS:
            self._pause_noted = True
            self.bias.on_pause(now)
            debug_log.log_event("PAUSE", f"silent {now - last:.0f}ms")

    def _drive_autoscroll(self, now: float) -> None:
        # Runs from the first accepted speech event until hybrid lock is switched off
        if not (self.profile.hybrid_lock and self.enabled) or self._last_speech_at is None:
            if self.autoscroll.running:
                self.autoscroll.stop()
            return
        if not self.autoscroll.running:
            self.autoscroll.start(now)
            return
        delta: int = self.autoscroll.frame_delta(now)
        if delta:
            self.scroll.drift(delta)
