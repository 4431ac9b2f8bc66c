from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Sequence

from .text_utils import has_extension


class StorageKind(str, Enum):
    ARCHIVE = "archive"
    DIRECTORY = "directory"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    FAILED = "failed"


class MergeStatus(str, Enum):
    MERGED = "merged"
    COPIED_IDENTICAL = "copied_identical"
    FAILED = "failed"


FORMAT_RECORDS = "records"
FORMAT_HIERARCHICAL = "hierarchical"
FORMAT_SCRIPTS = "scripts"


@dataclass(slots=True)
class FormatExtensions:
    """Mergeable file extensions per merge format; nothing else is ever considered."""

    records: List[str] = field(default_factory=lambda: [".json", ".jsonl", ".ndjson"])
    hierarchical: List[str] = field(default_factory=lambda: [".toml"])
    scripts: List[str] = field(default_factory=lambda: [".lua"])

    @property
    def all(self) -> List[str]:
        return [*self.records, *self.hierarchical, *self.scripts]

    def format_for(self, path: str) -> str | None:
        if has_extension(path, self.records):
            return FORMAT_RECORDS
        if has_extension(path, self.hierarchical):
            return FORMAT_HIERARCHICAL
        if has_extension(path, self.scripts):
            return FORMAT_SCRIPTS
        return None


@dataclass(slots=True)
class PackageHandle:
    name: str
    storage_kind: StorageKind
    archive_path: Path | None = None
    directory_root: Path | None = None
    is_active: bool = True
    declared_file_hashes: List[tuple[str, str]] | None = None

    @property
    def source_path(self) -> Path | None:
        if self.storage_kind == StorageKind.ARCHIVE:
            return self.archive_path
        return self.directory_root

    @property
    def label(self) -> str:
        return f"{self.storage_kind.value}:{self.name}"


@dataclass(slots=True, frozen=True)
class ManifestEntry:
    path: str
    content_hash: str


@dataclass(slots=True)
class Manifest:
    scanned_at: float
    latest_source_mod_time: float
    entries: List[ManifestEntry] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]

    def hash_lookup(self) -> Dict[str, str]:
        return {entry.path: entry.content_hash for entry in self.entries}

    def to_dict(self) -> dict:
        return {
            "scanned_at": self.scanned_at,
            "latest_source_mod_time": self.latest_source_mod_time,
            "entries": [
                {"path": entry.path, "content_hash": entry.content_hash}
                for entry in self.entries
            ],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Manifest":
        entries = [
            ManifestEntry(path=str(item["path"]), content_hash=str(item["content_hash"]))
            for item in raw["entries"]
        ]
        return cls(
            scanned_at=float(raw["scanned_at"]),
            latest_source_mod_time=float(raw["latest_source_mod_time"]),
            entries=entries,
        )


@dataclass(slots=True, frozen=True)
class Contributor:
    package_name: str
    content_hash: str


# path -> contributors, restricted to real conflicts
ConflictSet = Dict[str, List[Contributor]]


@dataclass(slots=True)
class ResolutionRecord:
    path: str
    output_path: str
    source_mods: List[str]
    source_hashes: List[str]
    output_hash: str
    merged_at: float

    def contributor_pairs(self) -> set[tuple[str, str]]:
        return set(zip(self.source_mods, self.source_hashes))

    def matches(self, contributors: Sequence[Contributor]) -> bool:
        current = {(item.package_name, item.content_hash) for item in contributors}
        return current == self.contributor_pairs()

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "output_path": self.output_path,
            "source_mods": list(self.source_mods),
            "source_hashes": list(self.source_hashes),
            "output_hash": self.output_hash,
            "merged_at": self.merged_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ResolutionRecord":
        return cls(
            path=str(raw["path"]),
            output_path=str(raw["output_path"]),
            source_mods=[str(item) for item in raw["source_mods"]],
            source_hashes=[str(item) for item in raw["source_hashes"]],
            output_hash=str(raw["output_hash"]),
            merged_at=float(raw["merged_at"]),
        )


@dataclass(slots=True)
class MergeOutcome:
    path: str
    status: MergeStatus
    output_path: Path | None = None
    output_hash: str | None = None
    source_mods: List[str] = field(default_factory=list)
    source_hashes: List[str] = field(default_factory=list)
    strategy: str | None = None
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status != MergeStatus.FAILED


@dataclass(slots=True)
class PathResult:
    path: str
    status: ResolutionStatus
    output_path: str | None = None
    source_mods: List[str] = field(default_factory=list)
    detail: str = ""


@dataclass(slots=True)
class ResolveResult:
    success: bool
    message: str
    resolved_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    total_conflicts: int = 0
    pruned_count: int = 0
    per_path: Dict[str, PathResult] = field(default_factory=dict)
    debounced: bool = False

    def paths_with_status(self, status: ResolutionStatus) -> List[str]:
        return sorted(path for path, item in self.per_path.items() if item.status == status)


@dataclass(slots=True)
class ConflictsResolvedEvent:
    resolutions: Dict[str, ResolutionRecord]
    counts: Dict[str, float]
