import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
from mcp.server.fastmcp import FastMCP

from marginalia.config import ScanConfig
from marginalia.pipeline import apply_scan, filter_for_display, scan_vault
from marginalia.store import AnnotationStore

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio.
# CRITICAL: All logs must go to stderr. Any print to stdout will break the JSON-RPC protocol.
logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

mcp = FastMCP("Marginalia Annotation Service")

DEFAULT_STORE_NAME = ".marginalia.json"


def _config(config_path: Optional[str]) -> ScanConfig:
    return ScanConfig.from_file(config_path) if config_path else ScanConfig()


def _store_path(store_path: Optional[str], anchor: Path) -> Path:
    if store_path:
        return Path(store_path)
    base = anchor if anchor.is_dir() else anchor.parent
    return base / DEFAULT_STORE_NAME


@mcp.tool()
def scan_markdown_file(file_path: str, store_path: Optional[str] = None, config_path: Optional[str] = None) -> str:
    """
    Scans a markdown file for highlights (==text==), comments (%%text%%, <!-- -->),
    HTML highlight tags and custom patterns, and updates the annotation store.

    Args:
        file_path: Absolute path to the markdown file.
        store_path: Optional annotation store (JSON). Defaults to .marginalia.json next to the file.
        config_path: Optional JSON scan configuration.

    Returns:
        The change classification followed by one line per annotation.
    """
    try:
        p = Path(file_path)
        if not p.exists():
            return f"Error: File not found: {file_path}"

        config = _config(config_path)
        store_file = _store_path(store_path, p)
        store = AnnotationStore.load(store_file)

        text = p.read_text(encoding="utf-8")
        result = apply_scan(store, p.as_posix(), text, config, int(p.stat().st_mtime * 1000))
        if result.report.has_changes:
            store.save(store_file)

        lines = [f"Change: {result.report.label()}"]
        lines.extend(f"Warning: {d.message}" for d in result.diagnostics)
        for a in filter_for_display(result.annotations, config.min_characters):
            notes = f" | footnotes: {'; '.join(a.footnote_contents)}" if a.footnote_contents and not a.is_comment else ""
            lines.append(f"[{a.id}] line {a.line + 1} {a.kind.value}: {a.text}{notes}")
        return "\n".join(lines)

    except Exception as e:
        return f"Error scanning file: {str(e)}"


@mcp.tool()
def scan_markdown_vault(
    vault_path: str,
    store_path: Optional[str] = None,
    config_path: Optional[str] = None,
) -> str:
    """
    Scans every markdown file under a directory, one file at a time, and saves
    the annotation store once if anything changed.

    Args:
        vault_path: Absolute path to the vault root directory.
        store_path: Optional annotation store (JSON). Defaults to .marginalia.json in the vault root.
        config_path: Optional JSON scan configuration.
    """
    try:
        root = Path(vault_path)
        if not root.is_dir():
            return f"Error: Not a directory: {vault_path}"

        config = _config(config_path)
        store_file = _store_path(store_path, root)
        store = AnnotationStore.load(store_file)

        paths = sorted(p.relative_to(root).as_posix() for p in root.rglob("*.md"))
        result = scan_vault(
            paths,
            lambda rel: (root / rel).read_text(encoding="utf-8"),
            store,
            config,
            mtime_for=lambda rel: int((root / rel).stat().st_mtime * 1000),
        )
        if result.changed:
            store.save(store_file)

        lines = [f"Scanned {len(paths)} files. Changed: {result.changed}."]
        lines.extend(f"Warning ({d.file_path}): {d.message}" for d in result.diagnostics)
        lines.extend(f"Skipped: {s}" for s in result.skipped)
        lines.append(f"Stored annotations: {len(store.all())} across {len(store)} files.")
        return "\n".join(lines)

    except Exception as e:
        return f"Error scanning vault: {str(e)}"


@mcp.tool()
def list_annotations(store_path: str, file_path: Optional[str] = None, min_characters: int = 0) -> str:
    """
    Lists stored annotations, optionally for one file only.

    Args:
        store_path: Path to the annotation store (JSON).
        file_path: Optional file path exactly as stored.
        min_characters: Hide annotations whose text is shorter than this.
    """
    try:
        store = AnnotationStore.load(store_path)
        paths = [file_path] if file_path else store.paths()

        lines = []
        for path in paths:
            annotations = filter_for_display(store.get(path), min_characters)
            if not annotations:
                continue
            lines.append(f"## {path}")
            for a in annotations:
                lines.append(f"[{a.id}] line {a.line + 1} {a.kind.value}: {a.text}")

        return "\n".join(lines) if lines else "No annotations found."

    except Exception as e:
        return f"Error listing annotations: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
