"""
Explicit per-file annotation store.

The pipeline receives a store and returns new per-file lists; nothing in the
engine keeps annotation state of its own.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Union

import structlog
from pydantic import BaseModel, Field

from marginalia.models import Annotation

logger = structlog.get_logger(__name__)


class StoreSnapshot(BaseModel):
    annotations: Dict[str, List[Annotation]] = Field(default_factory=dict)


class AnnotationStore:
    def __init__(self, annotations: Union[Dict[str, List[Annotation]], None] = None):
        self._files: Dict[str, List[Annotation]] = dict(annotations or {})

    def __contains__(self, file_path: str) -> bool:
        return file_path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def paths(self) -> List[str]:
        return list(self._files)

    def get(self, file_path: str) -> List[Annotation]:
        return list(self._files.get(file_path, []))

    def set(self, file_path: str, annotations: Iterable[Annotation]) -> None:
        self._files[file_path] = list(annotations)

    def all(self) -> List[Annotation]:
        return [a for annotations in self._files.values() for a in annotations]

    def delete(self, file_path: str) -> List[str]:
        """Drops a file's annotations and returns their ids."""
        removed = self._files.pop(file_path, [])
        if removed:
            logger.info("Deleted annotations for file", file_path=file_path, count=len(removed))
        return [a.id for a in removed]

    def rename(self, old_path: str, new_path: str) -> bool:
        """Relabels a file's annotations under a new path; ids are kept."""
        annotations = self._files.pop(old_path, None)
        if not annotations:
            return False
        self._files[new_path] = [a.model_copy(update={"file_path": new_path}) for a in annotations]
        logger.info("Renamed annotations", old_path=old_path, new_path=new_path, count=len(annotations))
        return True

    def prune(self, existing_paths: Iterable[str]) -> bool:
        """Removes entries for files that no longer exist. Returns True if anything was removed."""
        keep = set(existing_paths)
        stale = [p for p in self._files if p not in keep]
        for path in stale:
            self.delete(path)
        return bool(stale)

    def fix_duplicate_timestamps(self) -> bool:
        """
        Within each file, annotations sharing a created_at are ordered by offset;
        the first keeps it and each later one moves to the next value not
        already used in that file.
        """
        changed = False
        for path, annotations in self._files.items():
            groups: Dict[int, List[int]] = {}
            for i, annotation in enumerate(annotations):
                groups.setdefault(annotation.created_at, []).append(i)

            used = set(groups)
            fixed = list(annotations)
            for timestamp in sorted(groups):
                indices = groups[timestamp]
                if len(indices) < 2:
                    continue
                indices.sort(key=lambda i: annotations[i].start_offset)
                candidate = timestamp
                for i in indices[1:]:
                    while candidate in used:
                        candidate += 1
                    used.add(candidate)
                    fixed[i] = annotations[i].model_copy(update={"created_at": candidate})
                    changed = True
            self._files[path] = fixed

        if changed:
            logger.info("Fixed duplicate annotation timestamps")
        return changed

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(annotations={p: list(a) for p, a in self._files.items()})

    @classmethod
    def load(cls, path: Union[str, Path]) -> "AnnotationStore":
        p = Path(path)
        if not p.exists():
            logger.debug("No annotation store on disk, starting empty", path=str(p))
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return cls()
        snapshot = StoreSnapshot.model_validate_json(content)
        store = cls(snapshot.annotations)
        store.fix_duplicate_timestamps()
        return store

    def save(self, path: Union[str, Path]) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w", encoding="utf-8") as f:
            f.write(self.snapshot().model_dump_json(indent=2))
        logger.debug("Saved annotation store", path=str(p), files=len(self._files))
