"""
Identity reconciliation between a fresh scan and the stored annotations of
the same file.

Each candidate is matched against an unused prior record, trying in order:
  1. exact: same text, start, end and comment flag
  2. fuzzy position: same text and comment flag, start within FUZZY_WINDOW chars
  3. unique text: same text and comment flag, and no other prior record shares them
A prior record is consumed by its first match. Candidates that match nothing
become new annotations.
"""

import random
import string
from typing import Callable, Iterable, List, Optional, Sequence, Set

import structlog

from marginalia.models import Annotation, AnnotationKind, Candidate
from marginalia.utils.text import LineIndex

logger = structlog.get_logger(__name__)

FUZZY_WINDOW = 50
ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 9


def generate_id() -> str:
    return "".join(random.choices(ID_ALPHABET, k=ID_LENGTH))


class PriorMatcher:
    """Tracks which prior records have already been claimed during one reconciliation."""

    def __init__(self, prior: Sequence[Annotation]):
        self.prior = list(prior)
        self._used: Set[int] = set()

    def _claim(self, index: int) -> Annotation:
        self._used.add(index)
        return self.prior[index]

    def _available(self, text: str, is_comment: bool) -> Iterable[int]:
        for i, record in enumerate(self.prior):
            if i in self._used:
                continue
            if record.text == text and record.is_comment == is_comment:
                yield i

    def _is_unique_text(self, text: str, is_comment: bool) -> bool:
        count = sum(1 for r in self.prior if r.text == text and r.is_comment == is_comment)
        return count == 1

    def find(self, candidate: Candidate) -> Optional[Annotation]:
        text = candidate.text
        is_comment = candidate.is_comment
        start, end = candidate.match_start, candidate.match_end

        # 1. Exact
        for i in self._available(text, is_comment):
            record = self.prior[i]
            if record.start_offset == start and record.end_offset == end:
                return self._claim(i)

        # 2. Fuzzy position
        for i in self._available(text, is_comment):
            if abs(self.prior[i].start_offset - start) <= FUZZY_WINDOW:
                return self._claim(i)

        # 3. Unique text
        if self._is_unique_text(text, is_comment):
            for i in self._available(text, is_comment):
                return self._claim(i)

        return None


def reconcile(
    candidates: Sequence[Candidate],
    prior: Sequence[Annotation],
    text: str,
    file_path: str,
    mtime: int,
    id_factory: Optional[Callable[[], str]] = None,
) -> List[Annotation]:
    """
    Turns footnote-resolved candidates into Annotations, reusing the identity
    (id, created_at, tags and, except for html, color) of matched prior records.

    New annotations get `created_at = mtime + (match_start % 1000)` so that
    annotations born in the same scan do not share a timestamp.
    """
    id_factory = id_factory or generate_id
    matcher = PriorMatcher(prior)
    lines = LineIndex(text)
    taken_ids = {record.id for record in prior}

    annotations: List[Annotation] = []
    matched = 0

    for candidate in candidates:
        existing = matcher.find(candidate)
        fields = dict(
            text=candidate.text,
            kind=candidate.kind,
            file_path=file_path,
            start_offset=candidate.match_start,
            end_offset=candidate.match_end,
            line=lines.line_of(candidate.match_start),
            footnote_contents=list(candidate.footnote_contents),
        )

        if existing is not None:
            matched += 1
            color = candidate.color if candidate.kind == AnnotationKind.HTML else existing.color
            annotations.append(
                Annotation(
                    id=existing.id,
                    color=color,
                    created_at=existing.created_at,
                    tags=list(existing.tags),
                    **fields,
                )
            )
            continue

        new_id = id_factory()
        while new_id in taken_ids:
            new_id = id_factory()
        taken_ids.add(new_id)

        annotations.append(
            Annotation(
                id=new_id,
                color=candidate.color if candidate.kind == AnnotationKind.HTML else None,
                created_at=mtime + (candidate.match_start % 1000),
                **fields,
            )
        )

    logger.debug(
        "Reconciled annotations",
        file_path=file_path,
        matched=matched,
        created=len(annotations) - matched,
        dropped=len(prior) - matched,
    )
    return annotations
