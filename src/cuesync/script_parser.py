# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script parsing module that turns script markdown into rendered paragraphs.

The viewer renders each paragraph as one addressable element, so the
indexer needs exactly the same paragraph boundaries:
1. Markdown is rendered to HTML (same extensions as the viewer)
2. Block-level elements become paragraphs; <br> splits a block in two
3. Headings are flagged so they can be excluded from matching
"""

import re
from dataclasses import dataclass
from html.parser import HTMLParser

import markdown

BLOCK_TAGS: frozenset[str] = frozenset([
    'p', 'li', 'blockquote', 'pre', 'td', 'th', 'dt', 'dd',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
])
HEADING_TAGS: frozenset[str] = frozenset(['h1', 'h2', 'h3', 'h4', 'h5', 'h6'])

# Speaker/role tags such as [s1] ... [/s1] are styling only
ROLE_TAG: re.Pattern[str] = re.compile(r"\[/?(?:s1|s2|g1|g2)\]", re.IGNORECASE)


@dataclass
class ScriptParagraph:
    """One rendered paragraph of the script."""
    text: str  # Visible text with markup removed
    is_heading: bool = False
    element_ref: int = 0  # Position of the paragraph in render order

    def __repr__(self) -> str:
        flag = " heading" if self.is_heading else ""
        return f"ScriptParagraph({self.element_ref}{flag}: '{self.text[:40]}')"


class ParagraphExtractor(HTMLParser):
    """Collect the text of block-level elements from rendered HTML."""

    def __init__(self) -> None:
        super().__init__()
        self.paragraphs: list[ScriptParagraph] = []
        self._buffer: list[str] = []
        self._block_stack: list[str] = []

    def _flush(self) -> None:
        text: str = ' '.join(''.join(self._buffer).split())
        self._buffer = []
        if not text:
            return
        is_heading: bool = any(tag in HEADING_TAGS for tag in self._block_stack)
        self.paragraphs.append(ScriptParagraph(
            text=text,
            is_heading=is_heading,
            element_ref=len(self.paragraphs)
        ))

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in BLOCK_TAGS:
            # A nested block (e.g. <p> inside <li>) closes the outer text run
            self._flush()
            self._block_stack.append(tag)
        elif tag == 'br':
            self._flush()

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == 'br':
            self._flush()

    def handle_endtag(self, tag: str) -> None:
        if tag in BLOCK_TAGS:
            self._flush()
            if tag in self._block_stack:
                # Pop up to and including the matching tag
                while self._block_stack:
                    if self._block_stack.pop() == tag:
                        break

    def handle_data(self, data: str) -> None:
        self._buffer.append(data)

    def close(self) -> None:
        super().close()
        self._flush()


def render_markdown(text: str) -> str:
    """Render script markdown to HTML the same way the viewer does."""
    return markdown.markdown(text, extensions=['nl2br', 'sane_lists'])


def parse_script(text: str) -> list[ScriptParagraph]:
    """Parse script text into rendered paragraphs.

    Args:
        text: Raw script text (markdown, or plain text with one paragraph per line)

    Returns:
        Paragraphs in render order. Empty for an empty/whitespace script.
    """
    if not text or not text.strip():
        return []

    cleaned: str = ROLE_TAG.sub('', text)
    extractor: ParagraphExtractor = ParagraphExtractor()
    extractor.feed(render_markdown(cleaned))
    extractor.close()
    return extractor.paragraphs
