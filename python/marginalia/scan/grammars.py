"""
Built-in annotation grammars and the bounded runner used for every
user-supplied pattern.
"""

import re
from typing import Iterator, Optional

from marginalia.utils.text import char_at

# Non-greedy, multi-line, at least one character, never starting with the delimiter char.
HIGHLIGHT_REGEX = re.compile(r"==([^=](?:[^=]|=[^=])*?)==")
NATIVE_COMMENT_REGEX = re.compile(r"%%([^%](?:[^%]|%[^%])*?)%%")
HTML_COMMENT_REGEX = re.compile(r"<!--(.*?)-->", re.DOTALL)


class MatchLimitExceeded(RuntimeError):
    """A pattern produced more matches than allowed for a single document."""

    def __init__(self, pattern_name: str, limit: int):
        super().__init__(f"Pattern '{pattern_name}' exceeded {limit} matches; its results were discarded")
        self.pattern_name = pattern_name
        self.limit = limit


def find_guarded(regex: "re.Pattern[str]", text: str, guard: str) -> Iterator["re.Match[str]"]:
    """
    Yields matches not immediately preceded or followed by an extra guard
    character, so `===text===` or `%%%text%%%` never count as annotations.
    """
    for match in regex.finditer(text):
        if char_at(text, match.start() - 1) == guard or char_at(text, match.end()) == guard:
            continue
        yield match


def bounded_finditer(
    regex: "re.Pattern[str]",
    text: str,
    max_matches: int,
    name: Optional[str] = None,
) -> Iterator["re.Match[str]"]:
    """
    finditer with a hard match cap and explicit zero-length protection.

    Raises MatchLimitExceeded once more than `max_matches` matches are found.
    Callers must drain the iterator before using any of its results.
    """
    pos = 0
    count = 0
    length = len(text)

    while pos <= length:
        match = regex.search(text, pos)
        if match is None:
            break

        count += 1
        if count > max_matches:
            raise MatchLimitExceeded(name or regex.pattern, max_matches)

        yield match

        if match.end() == match.start():
            pos = match.end() + 1
        else:
            pos = match.end()
