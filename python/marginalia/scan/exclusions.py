"""
Ranges of a document in which no annotation may be detected:
fenced code blocks, inline code spans and markdown links.
"""

import re
from enum import Enum
from typing import Iterable, List

import structlog

from marginalia.models import Range

logger = structlog.get_logger(__name__)

INLINE_CODE_REGEX = re.compile(r"`[^`\n]+?`")

# Label and target are excluded together.
MARKDOWN_LINK_REGEX = re.compile(r"\[[^\]\n]*\]\([^)\n]*\)")


class FenceState(Enum):
    NONE = "none"
    IN_BACKTICK_FENCE = "backtick"
    IN_TILDE_FENCE = "tilde"


_FENCE_OPENERS = (
    ("```", FenceState.IN_BACKTICK_FENCE),
    ("~~~", FenceState.IN_TILDE_FENCE),
)


def _fence_kind(line: str) -> FenceState:
    for marker, state in _FENCE_OPENERS:
        if line.startswith(marker):
            return state
    return FenceState.NONE


def find_fenced_blocks(text: str) -> List[Range]:
    """
    Line-scanning state machine over NONE / IN_BACKTICK_FENCE / IN_TILDE_FENCE.

    A fence line opens a block when none is open, and closes the open block only
    when it uses the same fence character. An unterminated block runs to the end
    of the document.
    """
    blocks: List[Range] = []
    state = FenceState.NONE
    block_start = 0
    line_start = 0

    for line in text.split("\n"):
        line_end = line_start + len(line.rstrip("\r"))
        kind = _fence_kind(line)

        if kind != FenceState.NONE:
            if state == FenceState.NONE:
                state = kind
                block_start = line_start
            elif state == kind:
                blocks.append(Range(start=block_start, end=line_end))
                state = FenceState.NONE

        line_start += len(line) + 1

    if state != FenceState.NONE:
        logger.debug("Unterminated code fence", start=block_start, fence=state.value)
        blocks.append(Range(start=block_start, end=len(text)))

    return blocks


def compute_excluded_ranges(text: str) -> List[Range]:
    """
    Combines fenced code blocks, inline code and markdown links into one list.
    Ranges may overlap; callers only ever test for intersection.
    """
    ranges = find_fenced_blocks(text)

    for regex in (INLINE_CODE_REGEX, MARKDOWN_LINK_REGEX):
        for match in regex.finditer(text):
            ranges.append(Range(start=match.start(), end=match.end()))

    return ranges


def mask_excluded(text: str, ranges: Iterable[Range]) -> str:
    """
    Blanks every excluded character except newlines, keeping offsets, so
    delimiters inside code or link targets never open or close a match.
    """
    chars = list(text)
    length = len(chars)
    for r in ranges:
        for i in range(max(0, r.start), min(length, r.end)):
            if chars[i] != "\n":
                chars[i] = " "
    return "".join(chars)


def overlaps_any(start: int, end: int, ranges: Iterable[Range]) -> bool:
    """True if [start, end) touches any excluded range, even partially."""
    return any(r.overlaps(start, end) for r in ranges)
