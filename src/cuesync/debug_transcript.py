# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug tool for replaying a transcript through the alignment engine.

This CLI tool takes a script file and a transcript file, replays the
transcript against a simulated clock (watchdog ticks included), and outputs
detailed tracking information to help debug alignment issues.

Transcript format: one utterance per line. A line may start with "[+ms]"
to set the delay since the previous utterance (default 600ms) and/or "~"
to mark it as an interim result. Lines starting with '===' are ignored.

Tuning comes from the config file (see config.py), with -a/-s overriding
the presets. When the config enables the display sink, the replay runs in
real time (scaled by --speed) and mirrors scroll commands over WebSocket.
"""

import argparse
import asyncio
import re
import sys
from collections.abc import Iterator
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Literal, TextIO

from .config import (
    Config,
    DisplaySinkSettings,
    get_display_sink_settings,
    load_config,
    profile_from_config,
)
from .display_sink import WebSocketDisplaySink
from .engine import AlignmentEngine, BatchResult
from .layout import ScrollSink, StaticLayout
from .tuning import TuningProfile

DEFAULT_DELAY_MS: float = 600.0
TICK_MS: float = 250.0
FORWARD_JUMP_WORDS: int = 12

TRANSCRIPT_LINE: re.Pattern[str] = re.compile(r"^(?:\[\+(\d+)\]\s*)?(~)?\s*(.*)$")

EventType = Literal["advance", "FORWARD_JUMP", "ANCHOR", "SOFT_ADVANCE", "FORCED",
                    "no_change", "rejected", "dropped"]


@dataclass
class TranscriptEvent:
    """One utterance from a transcript file."""
    text: str
    is_final: bool = True
    delay_ms: float = DEFAULT_DELAY_MS
    line_number: int = 0


@dataclass
class TrackingEvent:
    """A single tracking event during transcript replay."""
    transcript_line: int
    text: str
    committed_index: int
    script_word: str
    event_type: EventType
    details: str = ""


def parse_transcript_lines(lines: list[str]) -> list[TranscriptEvent]:
    """Parse transcript lines, skipping metadata ('===') and blank lines."""
    events: list[TranscriptEvent] = []
    for line_number, line in enumerate(lines, start=1):
        stripped_line: str = line.strip()
        if stripped_line.startswith('===') or not stripped_line:
            continue
        match = TRANSCRIPT_LINE.match(stripped_line)
        if match is None or not match.group(3):
            continue
        delay, interim, text = match.groups()
        events.append(TranscriptEvent(
            text=text,
            is_final=interim is None,
            delay_ms=float(delay) if delay else DEFAULT_DELAY_MS,
            line_number=line_number,
        ))
    return events


def load_transcript(path: Path) -> list[TranscriptEvent]:
    """Load a transcript file."""
    with open(path, encoding='utf-8') as f:
        return parse_transcript_lines(f.readlines())


def load_script(path: Path) -> str:
    """Load script file content."""
    with open(path, encoding='utf-8') as f:
        return f.read()


def _expand_word_by_word(events: list[TranscriptEvent]) -> list[TranscriptEvent]:
    """Split final utterances into growing interim prefixes plus the final."""
    expanded: list[TranscriptEvent] = []
    for event in events:
        words: list[str] = event.text.split()
        if not event.is_final or len(words) < 2:
            expanded.append(event)
            continue
        step: float = event.delay_ms / len(words)
        for i in range(1, len(words) + 1):
            expanded.append(TranscriptEvent(
                text=" ".join(words[:i]),
                is_final=i == len(words),
                delay_ms=step,
                line_number=event.line_number,
            ))
    return expanded


def _script_word(engine: AlignmentEngine, index: int) -> str:
    words: tuple[str, ...] = engine.index.words
    return words[index] if index < len(words) else "<END>"


def _classify(result: BatchResult, before: int) -> EventType:
    if result.outcome == "anchor":
        return "ANCHOR"
    if result.outcome == "soft_advance":
        return "SOFT_ADVANCE"
    if result.outcome == "dropped":
        return "dropped"
    if result.outcome == "rejected":
        return "rejected"
    if result.committed_index > before + FORWARD_JUMP_WORDS:
        return "FORWARD_JUMP"
    if result.committed_index > before:
        return "advance"
    return "no_change"


def replay_transcript(
    events: list[TranscriptEvent],
    script_text: str,
    output: TextIO,
    verbose: bool = False,
    word_by_word: bool = False,
    profile: TuningProfile | None = None,
    sinks: list[ScrollSink] | None = None,
) -> list[TrackingEvent]:
    """Replay transcript events through the engine and log what happened.

    Args:
        events: Parsed transcript events
        script_text: The script content
        output: File handle to write log output
        verbose: If True, log every event. If False, only jumps, anchors,
            soft-advances and forced commits.
        word_by_word: Split finals into interim prefixes first
        profile: Tuning profile for the engine
        sinks: Extra receivers of the engine's scroll commands

    Returns:
        List of all tracking events
    """
    tracked: list[TrackingEvent] = []
    for _ in _replay(events, script_text, output, verbose, word_by_word, profile, sinks, tracked):
        pass
    return tracked


async def replay_live(
    events: list[TranscriptEvent],
    script_text: str,
    output: TextIO,
    sink: ScrollSink,
    speed: float = 1.0,
    verbose: bool = False,
    word_by_word: bool = False,
    profile: TuningProfile | None = None,
) -> list[TrackingEvent]:
    """Replay in real time (scaled by speed) so connected displays can follow."""
    if speed <= 0:
        raise ValueError(f"speed must be positive, got {speed}")
    tracked: list[TrackingEvent] = []
    for delay_ms in _replay(events, script_text, output, verbose, word_by_word, profile,
                            [sink], tracked):
        await asyncio.sleep(delay_ms / 1000.0 / speed)
    return tracked


def _replay(
    events: list[TranscriptEvent],
    script_text: str,
    output: TextIO,
    verbose: bool,
    word_by_word: bool,
    profile: TuningProfile | None,
    sinks: list[ScrollSink] | None,
    tracked: list[TrackingEvent],
) -> Iterator[float]:
    """Run the replay, yielding the simulated wait (ms) before each tick and event."""
    engine: AlignmentEngine = AlignmentEngine(script_text, profile=profile, sinks=sinks)
    layout: StaticLayout = StaticLayout(engine.index)
    engine.set_layout(layout)
    engine.add_sink(layout)
    if word_by_word:
        events = _expand_word_by_word(events)

    # Write header
    output.write("=" * 80 + "\n")
    output.write("TRANSCRIPT DEBUG LOG" + (" (WORD-BY-WORD MODE)" if word_by_word else "") + "\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script words: {len(engine.index.words)}\n")
    output.write(f"Script lines: {len(engine.index.lines)}\n")
    output.write(f"Transcript events: {len(events)}\n")
    output.write("=" * 80 + "\n\n")

    output.write("SCRIPT LINES:\n")
    output.write("-" * 40 + "\n")
    for i, line in enumerate(engine.index.lines):
        flags: str = ("H" if line.is_non_spoken else " ") + ("M" if line.is_meta else " ")
        output.write(f"  [{i:3d}] {line.start:4d}-{line.end:4d} {flags} {line.key[:60]}\n")
    output.write("\n" + "=" * 80 + "\n\n")

    output.write("TRACKING LOG:\n")
    output.write("-" * 40 + "\n")

    now: float = 0.0
    next_tick: float = TICK_MS

    for event in events:
        target_time: float = now + event.delay_ms
        while next_tick <= target_time:
            yield next_tick - now
            now = next_tick
            before: int = engine.committed_index
            if engine.tick(next_tick):
                output.write(f"  *** FORCED COMMIT at t={next_tick:.0f}ms: "
                             f"{before} -> {engine.committed_index} ***\n")
                tracked.append(TrackingEvent(
                    transcript_line=event.line_number,
                    text="",
                    committed_index=engine.committed_index,
                    script_word=_script_word(engine, engine.committed_index),
                    event_type="FORCED",
                    details=f"pos: {before} -> {engine.committed_index}",
                ))
            engine.frame(next_tick)
            next_tick += TICK_MS
        yield target_time - now
        now = target_time

        position_before: int = engine.committed_index
        was_rescuing: bool = engine.rescue.active
        result: BatchResult = engine.handle_transcript(event.text, event.is_final, now)
        engine.frame(now)
        event_type: EventType = _classify(result, position_before)
        script_word: str = _script_word(engine, result.committed_index)
        details: str = (f"pos: {position_before} -> {result.committed_index} "
                        f"pred={result.predicted_index} score={result.score:.3f} "
                        f"({result.outcome})")

        if engine.rescue.active and not was_rescuing:
            output.write(f"  [RESCUE] entered at t={now:.0f}ms\n")
        elif was_rescuing and not engine.rescue.active:
            output.write(f"  [RESCUE] left at t={now:.0f}ms\n")

        if event_type in ("FORWARD_JUMP", "ANCHOR", "SOFT_ADVANCE") or verbose:
            kind: str = "final" if event.is_final else "interim"
            text_display: str = event.text[:60] + ('...' if len(event.text) > 60 else '')
            output.write(f"--- Line {event.line_number} ({kind}, t={now:.0f}ms): \"{text_display}\" ---\n")
            if event_type in ("FORWARD_JUMP", "ANCHOR", "SOFT_ADVANCE"):
                output.write(f"  *** {event_type.replace('_', ' ')} ***\n")
            output.write(f"  [{result.committed_index:4d}] \"{script_word}\" {details}\n")

        tracked.append(TrackingEvent(
            transcript_line=event.line_number,
            text=event.text,
            committed_index=result.committed_index,
            script_word=script_word,
            event_type=event_type,
            details=details,
        ))

    # Write summary
    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    def count(kind: EventType) -> int:
        return sum(1 for e in tracked if e.event_type == kind)

    output.write(f"Total events processed: {len(events)}\n")
    output.write(f"Final position: {engine.committed_index} / {len(engine.index.words)}\n")
    output.write(f"Advances: {count('advance')}\n")
    output.write(f"Forward jumps: {count('FORWARD_JUMP')}\n")
    output.write(f"Anchors: {count('ANCHOR')}\n")
    output.write(f"Soft-advances: {count('SOFT_ADVANCE')}\n")
    output.write(f"Forced commits: {count('FORCED')}\n")
    output.write(f"Rejected batches: {count('rejected')}\n")
    output.write(f"Scroll commands: {len(layout.commands)}\n")


async def _replay_to_displays(
    events: list[TranscriptEvent],
    script_text: str,
    output: TextIO,
    settings: DisplaySinkSettings,
    speed: float,
    verbose: bool,
    word_by_word: bool,
    profile: TuningProfile,
) -> list[TrackingEvent]:
    sink: WebSocketDisplaySink = WebSocketDisplaySink(settings["host"], int(settings["port"]))
    await sink.start()
    print(f"Mirroring scroll commands on ws://{settings['host']}:{settings['port']}/ws",
          file=sys.stderr)
    try:
        return await replay_live(events, script_text, output, sink, speed,
                                 verbose, word_by_word, profile)
    finally:
        await sink.stop()


def main() -> None:
    """CLI entry point for debug transcript tool."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Debug alignment by replaying a transcript through the engine"
    )

    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file"
    )

    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to transcript file"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every event, not just jumps/anchors/soft-advances"
    )

    parser.add_argument(
        "-w", "--word-by-word",
        action="store_true",
        help="Process transcript word-by-word (simulates interim results)"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Config file (default: .cuesync.yaml in the current directory)"
    )

    parser.add_argument(
        "-a", "--aggressiveness",
        default=None,
        help="Aggressiveness preset, overriding the config "
             "(conservative, normal, aggressive, aggressive-live)"
    )

    parser.add_argument(
        "-s", "--smoothness",
        default=None,
        help="Smoothness preset, overriding the config (stable, balanced, responsive)"
    )

    parser.add_argument(
        "--speed",
        type=float,
        default=1.0,
        help="Playback speed when mirroring to displays (default: 1.0)"
    )

    args: argparse.Namespace = parser.parse_args()

    # Validate inputs
    if not args.transcript.exists():
        print(
            f"Error: Transcript file not found: {args.transcript}", file=sys.stderr)
        sys.exit(1)

    if not args.script.exists():
        print(f"Error: Script file not found: {args.script}", file=sys.stderr)
        sys.exit(1)

    if args.speed <= 0:
        print("Error: --speed must be positive", file=sys.stderr)
        sys.exit(1)

    config: Config = load_config(args.config)
    try:
        profile: TuningProfile = profile_from_config(config)
        if args.aggressiveness is not None:
            profile = replace(profile, aggressiveness=args.aggressiveness)
        if args.smoothness is not None:
            profile = replace(profile, smoothness=args.smoothness)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    display: DisplaySinkSettings = get_display_sink_settings(config)

    # Load files
    try:
        events: list[TranscriptEvent] = load_transcript(args.transcript)
        script_text: str = load_script(args.script)
    except OSError as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not events:
        print("Error: No transcript lines found", file=sys.stderr)
        sys.exit(1)

    def run(output: TextIO) -> None:
        if display["enabled"]:
            asyncio.run(_replay_to_displays(events, script_text, output, display, args.speed,
                                            args.verbose, args.word_by_word, profile))
        else:
            replay_transcript(events, script_text, output, args.verbose, args.word_by_word, profile)

    # Run replay
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            run(f)
        print(f"Debug log written to: {args.output}")
    else:
        run(sys.stdout)


if __name__ == "__main__":
    main()
