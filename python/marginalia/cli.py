import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from marginalia import __version__
from marginalia.changes import describe_footnote_change
from marginalia.config import ScanConfig
from marginalia.models import Annotation, ChangeKind
from marginalia.pipeline import apply_scan, filter_for_display, scan_document, scan_vault, should_process_file
from marginalia.store import AnnotationStore

DEFAULT_STORE = Path(".marginalia.json")


def _load_config(path: Optional[Path]) -> ScanConfig:
    if path is None:
        return ScanConfig()
    if not path.exists():
        print(f"Error: Config file not found: {path}", file=sys.stderr)
        sys.exit(1)
    try:
        return ScanConfig.from_file(path)
    except (ValueError, OSError) as e:
        print(f"Error loading config {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _load_store(path: Path) -> AnnotationStore:
    try:
        return AnnotationStore.load(path)
    except (ValueError, OSError) as e:
        print(f"Error loading annotation store {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _read_text(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _mtime_ms(path: Path) -> int:
    return int(path.stat().st_mtime * 1000)


def _print_annotations(annotations: List[Annotation], as_json: bool):
    if as_json:
        print(json.dumps([a.model_dump(mode="json") for a in annotations], indent=2))
        return

    for a in annotations:
        marker = {"highlight": "==", "comment": "%%", "html": "<>"}[a.kind.value]
        line = f"[{a.id}] L{a.line + 1} {marker} {a.text!r}"
        if a.color:
            line += f" ({a.color})"
        print(line)
        # A comment's footnote is its own text.
        if not a.is_comment:
            for note in a.footnote_contents:
                print(f"    ^ {note}")


def handle_scan(args):
    config = _load_config(args.config)
    store = _load_store(args.store)
    text = _read_text(args.input)
    file_path = args.input.as_posix()

    result = apply_scan(store, file_path, text, config, _mtime_ms(args.input))

    for diag in result.diagnostics:
        print(f"⚠️  {diag.message}", file=sys.stderr)

    if result.report.has_changes:
        store.save(args.store)
        print(f"✅ Saved {len(result.annotations)} annotations to {args.store}", file=sys.stderr)
    print(f"Change: {result.report.label()}", file=sys.stderr)

    _print_annotations(filter_for_display(result.annotations, config.min_characters), args.json)


def handle_vault(args):
    config = _load_config(args.config)
    store = _load_store(args.store)
    root: Path = args.directory

    if not root.is_dir():
        print(f"Error: Not a directory: {root}", file=sys.stderr)
        sys.exit(1)

    paths = sorted(p.relative_to(root).as_posix() for p in root.rglob("*.md"))
    print(f"Scanning {len(paths)} markdown files under {root}...", file=sys.stderr)

    def read_file(rel_path: str) -> str:
        with open(root / rel_path, "r", encoding="utf-8") as f:
            return f.read()

    result = scan_vault(paths, read_file, store, config, mtime_for=lambda p: _mtime_ms(root / p))

    for diag in result.diagnostics:
        print(f"⚠️  {diag.file_path}: {diag.message}", file=sys.stderr)
    for skipped in result.skipped:
        print(f"⚠️  Skipped unreadable file: {skipped}", file=sys.stderr)

    if result.changed:
        store.save(args.store)
        print(f"✅ Saved annotations to {args.store}", file=sys.stderr)
    else:
        print("No annotation changes.", file=sys.stderr)

    print(f"Stats: {len(store)} files, {len(store.all())} annotations.", file=sys.stderr)


def handle_diff(args):
    """Scans OLD, then NEW reconciled against OLD, and reports what a re-scan would change."""
    config = _load_config(args.config)
    old_text = _read_text(args.original)
    new_text = _read_text(args.modified)
    file_path = args.original.as_posix()

    before = scan_document(old_text, file_path, [], config, _mtime_ms(args.original))
    after = scan_document(new_text, file_path, before.annotations, config, _mtime_ms(args.modified))
    report = after.report

    if args.json:
        print(report.model_dump_json(indent=2))
        return

    print(f"Change: {report.label()}")
    if report.kind == ChangeKind.STRUCTURAL:
        old_ids = {a.id for a in before.annotations}
        new_ids = {a.id for a in after.annotations}
        for a in before.annotations:
            if a.id not in new_ids:
                print(f"[-] {a.text!r}")
        for a in after.annotations:
            if a.id not in old_ids:
                print(f"[+] {a.text!r}")
    elif report.kind == ChangeKind.CONTENT:
        old_by_id = {a.id: a for a in before.annotations}
        for a in after.annotations:
            if a.id in report.changed_ids:
                print(f"[~] {a.text!r}: {describe_footnote_change(old_by_id[a.id], a)}")


def handle_rename(args):
    store = _load_store(args.store)
    if not store.rename(args.old, args.new):
        print(f"No annotations stored for {args.old}", file=sys.stderr)
        return
    store.save(args.store)
    print(f"✅ Moved annotations from {args.old} to {args.new}", file=sys.stderr)


def handle_check(args):
    """Reports whether a path would be scanned under the given config."""
    config = _load_config(args.config)
    ok = should_process_file(args.path, config)
    print("included" if ok else "excluded")
    if not ok:
        sys.exit(1)


def main():
    # stdout carries annotations and JSON; diagnostics go to stderr.
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    parser = argparse.ArgumentParser(prog="marginalia", description="Marginalia: markdown annotation scanner")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    def add_common(p, store=True):
        p.add_argument("-c", "--config", type=Path, help="JSON scan configuration")
        if store:
            p.add_argument(
                "-s",
                "--store",
                type=Path,
                default=DEFAULT_STORE,
                help=f"Annotation store file (default: {DEFAULT_STORE})",
            )

    p_scan = subparsers.add_parser("scan", help="Scan one markdown file and update the store")
    p_scan.add_argument("input", type=Path, help="Markdown file")
    p_scan.add_argument("--json", action="store_true", help="Print annotations as JSON")
    add_common(p_scan)
    p_scan.set_defaults(func=handle_scan)

    p_vault = subparsers.add_parser("vault", help="Scan every markdown file under a directory")
    p_vault.add_argument("directory", type=Path, help="Vault root")
    add_common(p_vault)
    p_vault.set_defaults(func=handle_vault)

    p_diff = subparsers.add_parser("diff", help="Show how annotations change between two versions of a file")
    p_diff.add_argument("original", type=Path, help="Earlier version")
    p_diff.add_argument("modified", type=Path, help="Later version")
    p_diff.add_argument("--json", action="store_true", help="Print the change report as JSON")
    add_common(p_diff, store=False)
    p_diff.set_defaults(func=handle_diff)

    p_rename = subparsers.add_parser("rename", help="Move stored annotations to a renamed file")
    p_rename.add_argument("old", help="Previous file path as stored")
    p_rename.add_argument("new", help="New file path")
    add_common(p_rename)
    p_rename.set_defaults(func=handle_rename)

    p_check = subparsers.add_parser("check", help="Tell whether a path would be scanned")
    p_check.add_argument("path", help="File path relative to the vault root")
    add_common(p_check, store=False)
    p_check.set_defaults(func=handle_check)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
