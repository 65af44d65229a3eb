# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Viewport layout interface and scroll commands.

The engine never touches a real display. It asks a LayoutProvider where
lines are and emits ScrollCommands to any number of sinks (the viewer, a
mirror window, a test recorder).
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from .script_index import ScriptIndex


@dataclass(frozen=True)
class LineLayout:
    """Where one script line is rendered."""
    token_start: int
    token_end: int  # Inclusive
    pixel_top: float
    pixel_height: float

    @property
    def pixel_bottom(self) -> float:
        return self.pixel_top + self.pixel_height


@dataclass(frozen=True)
class ScrollCommand:
    """A scroll instruction for the viewport and its mirrors."""
    offset: float  # Absolute scroll offset in pixels
    ratio: float  # offset / max_scroll, 0..1
    sequence: int  # Strictly increasing per engine
    timestamp: float  # ms

    def __repr__(self) -> str:
        return f"ScrollCommand(#{self.sequence} offset={self.offset:.1f} ratio={self.ratio:.3f})"


ScrollSink = Callable[[ScrollCommand], None]


class LayoutProvider(ABC):
    """Answers layout queries about the rendered script."""

    @abstractmethod
    def get_lines(self) -> list[LineLayout]:
        """Rendered lines in script order (empty if not laid out yet)."""

    @abstractmethod
    def get_viewport_height(self) -> float:
        """Visible height in pixels."""

    @abstractmethod
    def get_current_scroll_offset(self) -> float:
        """Current scroll offset in pixels."""


class StaticLayout(LayoutProvider):
    """
    In-memory layout: every script line is one fixed-height row.

    Doubles as a ScrollSink that applies commands to its own offset, which
    is all tests and transcript replays need.
    """

    def __init__(self, index: ScriptIndex, line_height: float = 40.0,
                 viewport_height: float = 600.0) -> None:
        self.line_height: float = line_height
        self.viewport_height: float = viewport_height
        self.offset: float = 0.0
        self.commands: list[ScrollCommand] = []
        self.lines: list[LineLayout] = [
            LineLayout(
                token_start=line.start,
                token_end=line.end,
                pixel_top=i * line_height,
                pixel_height=line_height,
            )
            for i, line in enumerate(index.lines)
        ]

    def get_lines(self) -> list[LineLayout]:
        return self.lines

    def get_viewport_height(self) -> float:
        return self.viewport_height

    def get_current_scroll_offset(self) -> float:
        return self.offset

    def __call__(self, command: ScrollCommand) -> None:
        self.offset = command.offset
        self.commands.append(command)
