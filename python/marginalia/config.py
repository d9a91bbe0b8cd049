"""
Scan configuration.

Custom patterns are compiled and validated here, when the configuration is
built, so the scanner only ever receives a CompiledPattern.
"""

import json
import re
from pathlib import Path
from typing import List, Literal, NamedTuple, Union

import structlog
from pydantic import BaseModel, Field, PrivateAttr, model_validator

from marginalia.models import AnnotationKind

logger = structlog.get_logger(__name__)

DEFAULT_MAX_MATCHES_PER_PATTERN = 1000


class PatternError(ValueError):
    """A user-supplied pattern is not a usable regular expression."""


class PatternDefinition(BaseModel):
    name: str = Field(..., description="Label shown in diagnostics.")
    pattern: str = Field(..., description="Python regular expression with exactly one capturing group.")
    kind: Literal["highlight", "comment"] = "highlight"


class CompiledPattern(NamedTuple):
    name: str
    regex: "re.Pattern[str]"
    kind: AnnotationKind


def compile_pattern(definition: PatternDefinition) -> CompiledPattern:
    """
    Compiles a pattern definition, rejecting syntax errors and patterns
    that do not expose exactly one capturing group.
    """
    if not definition.pattern:
        raise PatternError(f"Pattern '{definition.name}' is empty")

    try:
        regex = re.compile(definition.pattern)
    except re.error as e:
        raise PatternError(f"Pattern '{definition.name}' is not a valid regular expression: {e}") from e

    if regex.groups != 1:
        raise PatternError(
            f"Pattern '{definition.name}' must have exactly one capturing group (found {regex.groups})"
        )

    return CompiledPattern(definition.name, regex, AnnotationKind(definition.kind))


class ScanConfig(BaseModel):
    detect_html_comments: bool = False
    detect_adjacent_comments: bool = Field(
        True,
        description="Fold a comment trailing a highlight into its footnotes (native, HTML and custom alike).",
    )
    custom_patterns: List[PatternDefinition] = Field(default_factory=list)
    max_matches_per_pattern: int = Field(DEFAULT_MAX_MATCHES_PER_PATTERN, gt=0)
    min_characters: int = Field(0, ge=0, description="Display threshold; never applied during detection.")
    excluded_files: List[str] = Field(default_factory=list)
    exclude_excalidraw: bool = True
    debounce_seconds: float = Field(1.0, ge=0)

    _compiled: List[CompiledPattern] = PrivateAttr(default_factory=list)

    @model_validator(mode="after")
    def _compile_custom_patterns(self) -> "ScanConfig":
        self._compiled = [compile_pattern(d) for d in self.custom_patterns]
        return self

    @property
    def compiled_patterns(self) -> List[CompiledPattern]:
        return list(self._compiled)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ScanConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls.model_validate(data)
        logger.debug("Loaded scan config", path=str(path), custom_patterns=len(config.custom_patterns))
        return config

    def is_file_excluded(self, file_path: str) -> bool:
        normalized = file_path.replace("\\", "/")
        for excluded in self.excluded_files:
            excluded = excluded.replace("\\", "/").rstrip("/")
            if not excluded:
                continue
            if normalized == excluded or normalized.startswith(excluded + "/"):
                return True
        return False
