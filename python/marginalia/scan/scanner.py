import re
from typing import Iterable, List, NamedTuple, Optional, Sequence

import structlog

from marginalia.config import CompiledPattern, ScanConfig
from marginalia.models import AnnotationKind, Candidate, Diagnostic, Range
from marginalia.scan.exclusions import mask_excluded, overlaps_any
from marginalia.scan.grammars import (
    HIGHLIGHT_REGEX,
    HTML_COMMENT_REGEX,
    NATIVE_COMMENT_REGEX,
    MatchLimitExceeded,
    bounded_finditer,
    find_guarded,
)
from marginalia.scan.html_tags import parse_html_highlights

logger = structlog.get_logger(__name__)


class ScanOutcome(NamedTuple):
    candidates: List[Candidate]
    diagnostics: List[Diagnostic]


def _collect(
    matches: Iterable["re.Match[str]"],
    kind: AnnotationKind,
    ranges: Sequence[Range],
    source: str,
    strip: bool = False,
) -> List[Candidate]:
    found = []
    for match in matches:
        captured = match.group(1)
        if captured is None or not captured.strip():
            continue
        if overlaps_any(match.start(), match.end(), ranges):
            continue
        found.append(
            Candidate(
                kind=kind,
                match_start=match.start(),
                match_end=match.end(),
                text=captured.strip() if strip else captured,
                source=source,
            )
        )
    return found


def scan_custom_pattern(
    pattern: CompiledPattern,
    text: str,
    ranges: Sequence[Range],
    max_matches: int,
) -> List[Candidate]:
    """
    Runs one user pattern under the match cap. Raises MatchLimitExceeded
    before returning anything if the cap is hit.
    """
    matches = list(bounded_finditer(pattern.regex, text, max_matches, name=pattern.name))
    return _collect(matches, pattern.kind, ranges, source=pattern.name)


def scan_candidates(
    text: str,
    ranges: Sequence[Range],
    config: Optional[ScanConfig] = None,
    file_path: Optional[str] = None,
) -> ScanOutcome:
    """
    Runs every enabled grammar over `text` and returns candidates sorted by
    match_start, which is the canonical document order for everything downstream.

    A custom pattern that exceeds its match cap contributes nothing and is
    reported as a diagnostic; all other grammars are unaffected.

    Grammars run over a copy of `text` with excluded ranges blanked, so a
    delimiter inside code or a link target cannot pair with one outside it.
    """
    config = config or ScanConfig()
    candidates: List[Candidate] = []
    diagnostics: List[Diagnostic] = []
    masked = mask_excluded(text, ranges)

    # 1. Built-in delimiter grammars
    candidates.extend(
        _collect(find_guarded(HIGHLIGHT_REGEX, masked, "="), AnnotationKind.HIGHLIGHT, ranges, source="highlight")
    )
    candidates.extend(
        _collect(find_guarded(NATIVE_COMMENT_REGEX, masked, "%"), AnnotationKind.COMMENT, ranges, source="native-comment")
    )
    if config.detect_html_comments:
        candidates.extend(
            _collect(
                HTML_COMMENT_REGEX.finditer(masked),
                AnnotationKind.COMMENT,
                ranges,
                source="html-comment",
                strip=True,
            )
        )

    # 2. HTML highlight tags
    candidates.extend(parse_html_highlights(masked, ranges))

    # 3. User patterns, each isolated from the others
    for pattern in config.compiled_patterns:
        try:
            candidates.extend(scan_custom_pattern(pattern, masked, ranges, config.max_matches_per_pattern))
        except MatchLimitExceeded as e:
            logger.warning(
                "Custom pattern exceeded match limit",
                pattern=pattern.name,
                limit=e.limit,
                file_path=file_path,
            )
            diagnostics.append(Diagnostic(pattern=pattern.name, message=str(e), file_path=file_path))

    candidates.sort(key=lambda c: c.match_start)
    return ScanOutcome(candidates, diagnostics)
