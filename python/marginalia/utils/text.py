"""
Offset helpers shared by the scanner and the reconciler.
"""

from bisect import bisect_right
from typing import List


class LineIndex:
    """Maps character offsets to zero-based line numbers for one document snapshot."""

    __slots__ = ("_line_starts",)

    def __init__(self, text: str):
        starts: List[int] = [0]
        pos = text.find("\n")
        while pos != -1:
            starts.append(pos + 1)
            pos = text.find("\n", pos + 1)
        self._line_starts = starts

    def line_of(self, offset: int) -> int:
        return bisect_right(self._line_starts, offset) - 1


def char_at(text: str, index: int) -> str:
    """Returns the character at index, or "" when out of bounds (no negative wrap-around)."""
    if 0 <= index < len(text):
        return text[index]
    return ""
