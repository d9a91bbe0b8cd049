"""
Folding of comments that trail a highlight.

`==text==%%note%%` is one highlight with a footnote, not a highlight and a
separate comment. The rule is the same for native, HTML and custom comments.
"""

import re
from typing import List, Sequence

import structlog

from marginalia.models import AnnotationKind, Candidate
from marginalia.scan.footnotes import footnote_run_length

logger = structlog.get_logger(__name__)

BLANK_LINE_REGEX = re.compile(r"\n\s*\n")

HOST_KINDS = (AnnotationKind.HIGHLIGHT, AnnotationKind.HTML)


def is_adjacent(text: str, host_end: int, comment_start: int) -> bool:
    """
    True when only footnote markers and whitespace, without a blank line,
    separate the end of the host from the start of the comment.
    """
    if comment_start < host_end:
        return False

    gap = text[host_end:comment_start]
    if BLANK_LINE_REGEX.search(gap):
        return False

    rest = gap[footnote_run_length(gap, 0) :]
    return not rest.strip()


def fold_adjacent_comments(candidates: Sequence[Candidate], text: str, enabled: bool = True) -> List[Candidate]:
    """
    Removes comments adjacent to a preceding highlight/html candidate from the
    stream and records them on that candidate, with their offsets, for
    footnote ordering. Consecutive trailing comments chain onto the same host.

    `candidates` must already be sorted by match_start. Input objects are not mutated.
    """
    result: List[Candidate] = []
    if not enabled:
        return [c.model_copy(deep=True) for c in candidates]

    host_index = -1
    host_end = 0

    for candidate in candidates:
        if candidate.is_comment and host_index >= 0 and is_adjacent(text, host_end, candidate.match_start):
            host = result[host_index]
            host.folded_comments.append((candidate.match_start, candidate.text))
            host_end = candidate.match_end
            logger.debug(
                "Folded adjacent comment",
                host_start=host.match_start,
                comment_start=candidate.match_start,
                source=candidate.source,
            )
            continue

        result.append(candidate.model_copy(deep=True))
        if candidate.kind in HOST_KINDS:
            host_index = len(result) - 1
            host_end = candidate.match_end
        else:
            host_index = -1

    return result
