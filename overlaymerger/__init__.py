"""Core package for the mod conflict overlay merger."""

from .conflict_detector import detect_conflicts, quick_scan
from .content_store import ContentStore
from .hashing import compute_hash
from .host import DirectoryPackageHost, FileChange, PackageHost
from .load_config import EngineConfig, ModListConfig, load_mod_config, load_program_config
from .manifest import ManifestBuilder
from .merge_engine import MergeEngine
from .models import (
    ConflictSet,
    ConflictsResolvedEvent,
    Contributor,
    FormatExtensions,
    Manifest,
    ManifestEntry,
    MergeOutcome,
    MergeStatus,
    PackageHandle,
    PathResult,
    ResolutionRecord,
    ResolutionStatus,
    ResolveResult,
    StorageKind,
)
from .report import export_report, print_conflict_details
from .resolution_index import INDEX_VERSION, ResolutionIndex
from .resolver import ConflictResolver
from .script_merge import ScoringRule, default_scoring_rules, merge_scripts
from .state import CacheLimits, EngineState

__all__ = [
    "CacheLimits",
    "ConflictResolver",
    "ConflictSet",
    "ConflictsResolvedEvent",
    "ContentStore",
    "Contributor",
    "DirectoryPackageHost",
    "EngineConfig",
    "EngineState",
    "FileChange",
    "FormatExtensions",
    "INDEX_VERSION",
    "Manifest",
    "ManifestBuilder",
    "ManifestEntry",
    "MergeEngine",
    "MergeOutcome",
    "MergeStatus",
    "ModListConfig",
    "PackageHandle",
    "PackageHost",
    "PathResult",
    "ResolutionIndex",
    "ResolutionRecord",
    "ResolutionStatus",
    "ResolveResult",
    "ScoringRule",
    "StorageKind",
    "compute_hash",
    "default_scoring_rules",
    "detect_conflicts",
    "export_report",
    "load_mod_config",
    "load_program_config",
    "merge_scripts",
    "print_conflict_details",
    "quick_scan",
]
