"""
Footnote handling for highlights.

A highlight owns the run of footnote markers that directly follows it:
standard references `[^key]` and inline notes `^[...]`, separated only by
whitespace. Contents are returned in the document order of their markers,
interleaved with any comments folded in by the adjacency merger.
"""

import re
from typing import Dict, Iterator, List, NamedTuple, Tuple

from marginalia.models import Candidate

# One definition per line, anchored at line start: [^key]: content
FOOTNOTE_DEFINITION_REGEX = re.compile(r"^\[\^([\w-]+)\]:[ \t]*(.*?)[ \t\r]*$", re.MULTILINE)
STANDARD_REFERENCE_REGEX = re.compile(r"\[\^([\w-]+)\]")
WHITESPACE_REGEX = re.compile(r"\s+")


class FootnoteMarker(NamedTuple):
    kind: str  # 'standard' or 'inline'
    start: int
    end: int
    value: str  # key for standard markers, raw content for inline ones


def extract_footnote_definitions(text: str) -> Dict[str, str]:
    """
    Builds the document-wide `[^key]: content` table. Later definitions of the
    same key win. Contents are trimmed; empty ones are kept here and dropped
    when a highlight resolves them.
    """
    definitions: Dict[str, str] = {}
    for match in FOOTNOTE_DEFINITION_REGEX.finditer(text):
        definitions[match.group(1)] = match.group(2).strip()
    return definitions


def _inline_end(text: str, start: int) -> int:
    """
    Given `start` pointing at '^[', returns the index just past the matching ']'
    (nested brackets allowed), or -1 if the brackets never balance.
    """
    pos = start + 2
    depth = 1
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return pos + 1
        pos += 1
    return -1


def iter_footnote_markers(text: str, start: int) -> Iterator[FootnoteMarker]:
    """
    Yields the well-formed markers in the run beginning at `start`.
    Stops at the first thing that is neither whitespace nor a marker; a
    `[^key]` followed by ':' is a definition and also ends the run.
    """
    pos = start
    length = len(text)

    while pos < length:
        ws = WHITESPACE_REGEX.match(text, pos)
        if ws:
            pos = ws.end()
            if pos >= length:
                return

        standard = STANDARD_REFERENCE_REGEX.match(text, pos)
        if standard:
            if standard.end() < length and text[standard.end()] == ":":
                return
            yield FootnoteMarker("standard", standard.start(), standard.end(), standard.group(1))
            pos = standard.end()
            continue

        if text.startswith("^[", pos):
            end = _inline_end(text, pos)
            if end == -1:
                return
            yield FootnoteMarker("inline", pos, end, text[pos + 2 : end - 1])
            pos = end
            continue

        return


def footnote_run_length(text: str, start: int) -> int:
    """Length of the marker run after `start`, up to the end of its last marker."""
    last_end = start
    for marker in iter_footnote_markers(text, start):
        last_end = marker.end
    return last_end - start


def resolve_footnotes(candidate: Candidate, text: str, definitions: Dict[str, str]) -> List[str]:
    """
    Footnote contents for one candidate, ordered by marker offset.

    A bare comment is its own single footnote. Highlights and HTML spans
    collect the marker run after their closing delimiter plus folded comments.
    """
    if candidate.is_comment:
        return [candidate.text]

    entries: List[Tuple[int, str]] = []

    for marker in iter_footnote_markers(text, candidate.match_end):
        if marker.kind == "inline":
            content = marker.value.strip()
        else:
            content = definitions.get(marker.value, "").strip()
        if content:
            entries.append((marker.start, content))

    entries.extend(candidate.folded_comments)

    # Stable sort keeps folded comments after markers sharing an offset.
    entries.sort(key=lambda entry: entry[0])
    return [content for _, content in entries]
