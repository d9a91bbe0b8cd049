"""
Change classification between a file's prior and new annotation lists.

created_at and tags are not part of the comparison key.
"""

from typing import Dict, List, Sequence, Tuple

import structlog
from diff_match_patch import diff_match_patch

from marginalia.models import Annotation, ChangeKind, ChangeReport

logger = structlog.get_logger(__name__)


def comparison_key(annotation: Annotation) -> Tuple:
    return (
        annotation.id,
        annotation.start_offset,
        annotation.end_offset,
        annotation.text,
        annotation.footnote_count,
        tuple(c for c in annotation.footnote_contents if c.strip()),
        annotation.color,
        annotation.is_comment,
    )


def detect_changes(prior: Sequence[Annotation], new: Sequence[Annotation]) -> ChangeReport:
    """
    STRUCTURAL when the id sets differ, CONTENT (with the affected ids, in new
    order) when only some annotations' keys changed, otherwise NONE.
    """
    prior_by_id: Dict[str, Annotation] = {a.id: a for a in prior}
    new_by_id: Dict[str, Annotation] = {a.id: a for a in new}

    if (
        set(prior_by_id) != set(new_by_id)
        or len(prior_by_id) != len(prior)
        or len(new_by_id) != len(new)
    ):
        return ChangeReport(kind=ChangeKind.STRUCTURAL)

    changed: List[str] = []
    for annotation in new:
        if comparison_key(prior_by_id[annotation.id]) != comparison_key(annotation):
            changed.append(annotation.id)

    if changed:
        return ChangeReport(kind=ChangeKind.CONTENT, changed_ids=changed)
    return ChangeReport(kind=ChangeKind.NONE)


def describe_footnote_change(old: Annotation, new: Annotation) -> str:
    """
    Renders the difference between two versions of an annotation's footnotes
    as inline `[-removed-]{+added+}` markup, for CLI and tool output.
    """
    old_text = "\n".join(old.footnote_contents)
    new_text = "\n".join(new.footnote_contents)
    if old_text == new_text:
        return new_text

    dmp = diff_match_patch()
    diffs = dmp.diff_main(old_text, new_text)
    dmp.diff_cleanupSemantic(diffs)

    parts = []
    for op, chunk in diffs:
        if op == 0:
            parts.append(chunk)
        elif op == -1:
            parts.append(f"[-{chunk}-]")
        else:
            parts.append(f"{{+{chunk}+}}")
    return "".join(parts)
