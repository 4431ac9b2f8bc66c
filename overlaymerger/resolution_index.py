"""Persisted record of merges already performed, keyed by virtual path.

The index is one JSON document ``{"version": ..., "resolutions": {path: record}}``.
An index written by another engine version, or one that cannot be read at
all, is discarded as a whole and flags :attr:`ResolutionIndex.version_changed`
so the caller rebuilds every overlay file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from .file_utils import read_json, remove_file, write_json
from .logging_utils import log_debug, log_info, log_warn
from .models import Contributor, ResolutionRecord

INDEX_VERSION = "2.0"
INDEX_FILE_NAME = "resolutions.json"


class ResolutionIndex:
    def __init__(self, index_path: Path, version: str = INDEX_VERSION) -> None:
        self.index_path = index_path
        self.version = version
        self.resolutions: Dict[str, ResolutionRecord] = {}
        self.version_changed = False

    def load(self) -> bool:
        """Read the persisted index; returns False when it had to be discarded."""

        self.resolutions = {}
        self.version_changed = True
        if not self.index_path.exists():
            log_info("No resolution index found, rebuilding all resolutions")
            return False
        try:
            raw = read_json(self.index_path)
            stored_version = str(raw.get("version", ""))
            records = {
                str(path): ResolutionRecord.from_dict(item)
                for path, item in (raw.get("resolutions") or {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            log_warn(f"Ignoring unreadable resolution index {self.index_path}: {exc}")
            return False
        if stored_version != self.version:
            log_info(f"Resolution index version changed ({stored_version or 'none'} -> {self.version})")
            return False

        self.resolutions = records
        self.version_changed = False
        log_debug(f"Loaded {len(records)} resolution records")
        return True

    def save(self) -> None:
        payload = {
            "version": self.version,
            "resolutions": {path: record.to_dict() for path, record in sorted(self.resolutions.items())},
        }
        write_json(self.index_path, payload)

    def get(self, path: str) -> ResolutionRecord | None:
        return self.resolutions.get(path)

    def put(self, record: ResolutionRecord) -> None:
        self.resolutions[record.path] = record

    def remove(self, path: str) -> ResolutionRecord | None:
        return self.resolutions.pop(path, None)

    @property
    def paths(self) -> List[str]:
        return sorted(self.resolutions)

    def is_reusable(self, path: str, contributors: Sequence[Contributor]) -> bool:
        """A record is reused only for the same (package, hash) set and an output still on disk."""

        if self.version_changed:
            return False
        record = self.resolutions.get(path)
        if record is None or not record.matches(contributors):
            return False
        return Path(record.output_path).exists()

    def prune(self, current_paths: Iterable[str]) -> List[ResolutionRecord]:
        """Drop records for paths that are no longer conflicts and return them."""

        keep = set(current_paths)
        stale = [path for path in self.resolutions if path not in keep]
        return [self.resolutions.pop(path) for path in sorted(stale)]

    def clear(self) -> None:
        self.resolutions = {}
        remove_file(self.index_path)


__all__ = [
    "INDEX_VERSION",
    "INDEX_FILE_NAME",
    "ResolutionIndex",
]
