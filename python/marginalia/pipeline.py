"""
Scan pipeline.

Per file:  text -> excluded ranges -> candidates -> adjacency folding
           -> footnote resolution -> identity reconciliation -> change report

scan_document() is a pure function of (text, prior annotations, config);
scan_vault() drives it sequentially over many files against an explicit
AnnotationStore and reports a single "changed" flag for the whole pass.
"""

import re
import threading
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence

import structlog

from marginalia.changes import detect_changes
from marginalia.config import ScanConfig
from marginalia.models import Annotation, Candidate, ChangeReport, Diagnostic
from marginalia.reconcile import reconcile
from marginalia.scan.adjacency import fold_adjacent_comments
from marginalia.scan.exclusions import compute_excluded_ranges
from marginalia.scan.footnotes import extract_footnote_definitions, resolve_footnotes
from marginalia.scan.scanner import scan_candidates
from marginalia.store import AnnotationStore

logger = structlog.get_logger(__name__)

FRONTMATTER_REGEX = re.compile(r"^---\n([\s\S]*?)\n---")
EXCALIDRAW_PLUGIN_REGEX = re.compile(r"excalidraw-plugin:\s*parsed", re.IGNORECASE)
EXCALIDRAW_TAG_REGEX = re.compile(r"tags:\s*\[.*excalidraw.*\]", re.IGNORECASE)


class FileScanResult(NamedTuple):
    annotations: List[Annotation]
    report: ChangeReport
    diagnostics: List[Diagnostic]


class VaultScanResult(NamedTuple):
    changed: bool
    diagnostics: List[Diagnostic]
    skipped: List[str]


def detect_candidates(
    text: str,
    config: ScanConfig,
    file_path: Optional[str] = None,
) -> tuple[List[Candidate], List[Diagnostic]]:
    """Everything before reconciliation: returns footnote-resolved candidates in document order."""
    # 1. Exclusions and raw grammar matches
    ranges = compute_excluded_ranges(text)
    outcome = scan_candidates(text, ranges, config, file_path=file_path)

    # 2. Fold trailing comments into their highlight
    folded = fold_adjacent_comments(outcome.candidates, text, enabled=config.detect_adjacent_comments)

    # 3. Footnotes, in marker order
    definitions = extract_footnote_definitions(text)
    resolved = [
        c.model_copy(update={"footnote_contents": resolve_footnotes(c, text, definitions)}) for c in folded
    ]
    return resolved, outcome.diagnostics


def scan_document(
    text: str,
    file_path: str,
    prior: Sequence[Annotation],
    config: Optional[ScanConfig] = None,
    mtime: int = 0,
    id_factory: Optional[Callable[[], str]] = None,
) -> FileScanResult:
    """
    Scans one document snapshot and reconciles it against `prior`.
    `mtime` is the file modification time in milliseconds, used to stamp new annotations.
    """
    config = config or ScanConfig()
    candidates, diagnostics = detect_candidates(text, config, file_path=file_path)
    annotations = reconcile(candidates, prior, text, file_path, mtime, id_factory=id_factory)
    report = detect_changes(prior, annotations)

    logger.debug(
        "Scanned document",
        file_path=file_path,
        annotations=len(annotations),
        change=report.label(),
    )
    return FileScanResult(annotations, report, diagnostics)


def apply_scan(
    store: AnnotationStore,
    file_path: str,
    text: str,
    config: Optional[ScanConfig] = None,
    mtime: int = 0,
) -> FileScanResult:
    """Scans against the store's latest state and writes back only when something changed."""
    result = scan_document(text, file_path, store.get(file_path), config, mtime)
    if result.report.has_changes:
        store.set(file_path, result.annotations)
    return result


def is_excalidraw_text(text: str) -> bool:
    frontmatter = FRONTMATTER_REGEX.match(text)
    if not frontmatter:
        return False
    body = frontmatter.group(1)
    return bool(EXCALIDRAW_PLUGIN_REGEX.search(body) or EXCALIDRAW_TAG_REGEX.search(body))


def should_process_file(file_path: str, config: ScanConfig) -> bool:
    """Path-level filter: markdown only, minus excluded files/folders and Excalidraw drawings."""
    if not file_path.lower().endswith(".md"):
        return False
    if config.exclude_excalidraw and file_path.endswith(".excalidraw.md"):
        return False
    return not config.is_file_excluded(file_path)


def scan_vault(
    paths: Iterable[str],
    read_file: Callable[[str], str],
    store: AnnotationStore,
    config: Optional[ScanConfig] = None,
    mtime_for: Optional[Callable[[str], int]] = None,
) -> VaultScanResult:
    """
    Whole-vault pass. Files are read and scanned one at a time; the store is
    updated in place and `changed` tells the caller to persist and refresh once.

    Entries for files no longer present are pruned. Unreadable files are
    skipped and keep their previous annotations.
    """
    config = config or ScanConfig()
    processable = [p for p in paths if should_process_file(p, config)]
    changed = store.prune(processable)
    diagnostics: List[Diagnostic] = []
    skipped: List[str] = []

    for file_path in processable:
        try:
            text = read_file(file_path)
            mtime = mtime_for(file_path) if mtime_for else 0
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable file", file_path=file_path, error=str(e))
            skipped.append(file_path)
            continue

        if config.exclude_excalidraw and is_excalidraw_text(text):
            if store.delete(file_path):
                changed = True
            continue

        result = apply_scan(store, file_path, text, config, mtime)
        diagnostics.extend(result.diagnostics)
        if result.report.has_changes:
            changed = True

    logger.info(
        "Vault scan complete",
        files=len(processable),
        skipped=len(skipped),
        changed=changed,
        diagnostics=len(diagnostics),
    )
    return VaultScanResult(changed, diagnostics, skipped)


def filter_for_display(annotations: Iterable[Annotation], min_characters: int = 0) -> List[Annotation]:
    """Display-side threshold; detection never drops short annotations."""
    if min_characters <= 0:
        return list(annotations)
    return [a for a in annotations if len(a.text.strip()) >= min_characters]


class ScanDebouncer:
    """
    Trailing debounce for editor-driven re-scans: every trigger() restarts the
    delay and only the last call's arguments reach the callback.
    """

    def __init__(
        self,
        callback: Callable[..., None],
        delay: float = 1.0,
        timer_factory: Optional[Callable[[float, Callable[[], None]], threading.Timer]] = None,
    ):
        self.callback = callback
        self.delay = delay
        self._timer_factory = timer_factory or threading.Timer
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, callback: Callable[..., None], config: ScanConfig, **kwargs) -> "ScanDebouncer":
        return cls(callback, delay=config.debounce_seconds, **kwargs)

    def trigger(self, *args, **kwargs) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            self._timer = self._timer_factory(self.delay, lambda: self._fire(generation, args, kwargs))
            self._timer.start()

    def _fire(self, generation: int, args, kwargs) -> None:
        with self._lock:
            # A newer trigger superseded this one.
            if generation != self._generation:
                return
            self._timer = None
        self.callback(*args, **kwargs)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1

    @property
    def pending(self) -> bool:
        return self._timer is not None
