from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


class AnnotationKind(str, Enum):
    HIGHLIGHT = "highlight"
    COMMENT = "comment"
    HTML = "html"


class Range(BaseModel):
    """Half-open ``[start, end)`` character interval that may never hold an annotation."""

    start: int
    end: int

    def overlaps(self, start: int, end: int) -> bool:
        return start < self.end and end > self.start


class Candidate(BaseModel):
    """
    A raw grammar match before it is reconciled into an Annotation.
    Offsets cover the full match including delimiters; `text` is the capture only.
    """

    kind: AnnotationKind
    match_start: int
    match_end: int
    text: str
    color: Optional[str] = None
    source: str = Field("builtin", description="Grammar or custom pattern name that produced the match.")

    # Comments folded in by the adjacency merger, as (offset, text) pairs.
    folded_comments: List[tuple[int, str]] = Field(default_factory=list)
    # Filled in by the footnote resolver, in marker order.
    footnote_contents: List[str] = Field(default_factory=list)

    @property
    def is_comment(self) -> bool:
        return self.kind == AnnotationKind.COMMENT


class Annotation(BaseModel):
    """
    The durable unit that is persisted and displayed.
    Offsets and footnotes always come from the latest scan; `id`, `created_at`,
    `color` and `tags` survive re-scans through reconciliation.
    """

    id: str
    text: str
    kind: AnnotationKind
    file_path: str
    start_offset: int
    end_offset: int
    line: int
    footnote_contents: List[str] = Field(default_factory=list)
    color: Optional[str] = None
    created_at: int
    tags: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def footnote_count(self) -> int:
        return len(self.footnote_contents)

    @property
    def is_comment(self) -> bool:
        return self.kind == AnnotationKind.COMMENT


class ChangeKind(str, Enum):
    NONE = "none"
    CONTENT = "content"
    STRUCTURAL = "structural"


class ChangeReport(BaseModel):
    """
    Outcome of comparing a file's prior and new annotation lists.
    CONTENT carries the ids whose reduced key changed; STRUCTURAL means the id set differs.
    """

    kind: ChangeKind = ChangeKind.NONE
    changed_ids: List[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.kind != ChangeKind.NONE

    def label(self) -> str:
        if self.kind == ChangeKind.CONTENT:
            return f"content:{','.join(self.changed_ids)}"
        return self.kind.value


class Diagnostic(BaseModel):
    """A user-facing problem raised while scanning, e.g. a custom pattern hitting its match cap."""

    pattern: str
    message: str
    file_path: Optional[str] = None
