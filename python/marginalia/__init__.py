from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from marginalia.config import PatternDefinition, PatternError, ScanConfig
from marginalia.models import Annotation, AnnotationKind, ChangeKind, ChangeReport
from marginalia.pipeline import scan_document, scan_vault
from marginalia.store import AnnotationStore

try:
    __version__ = version("marginalia")
except PackageNotFoundError:
    # Running from a source checkout without an installed distribution.
    _version_file = Path(__file__).parent / "VERSION"
    if _version_file.is_file():
        __version__ = _version_file.read_text().strip()
    else:
        __version__ = "0.0.0-dev"

__all__ = [
    "Annotation",
    "AnnotationKind",
    "AnnotationStore",
    "ChangeKind",
    "ChangeReport",
    "PatternDefinition",
    "PatternError",
    "ScanConfig",
    "scan_document",
    "scan_vault",
    "__version__",
]
