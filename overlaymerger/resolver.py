"""Run coordination: detect conflicts, merge what changed, publish the overlay.

One :class:`ConflictResolver` owns every cache of an engine instance
through its :class:`~overlaymerger.state.EngineState`. Runs are serialized by
a run lock and debounced unless forced; a run never raises.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

from .conflict_detector import detect_conflicts
from .content_store import ContentStore
from .file_utils import ensure_directory, is_within, remove_file, remove_tree
from .host import CHANGE_DELETED, CHANGE_MODIFIED, FileChange, PackageHost
from .load_config import EngineConfig
from .logging_utils import log_debug, log_error, log_info, log_warn
from .manifest import ManifestBuilder
from .merge_engine import MergeEngine
from .models import (
    ConflictSet,
    ConflictsResolvedEvent,
    Contributor,
    MergeOutcome,
    MergeStatus,
    PackageHandle,
    PathResult,
    ResolutionRecord,
    ResolutionStatus,
    ResolveResult,
    StorageKind,
)
from .resolution_index import INDEX_FILE_NAME, INDEX_VERSION, ResolutionIndex
from .script_merge import default_scoring_rules
from .state import EngineState

Listener = Callable[[ConflictsResolvedEvent], None]


class ConflictResolver:
    def __init__(
        self,
        host: PackageHost,
        config: EngineConfig,
        clock: Callable[[], float] = time.monotonic,
        index_version: str = INDEX_VERSION,
    ) -> None:
        self.host = host
        self.config = config
        self.clock = clock
        self.state = EngineState(config.cache_limits)
        self.store = ContentStore(self.state)
        self.builder = ManifestBuilder(
            self.store,
            self.state,
            config.cache_dir / "manifests",
            config.extensions.all,
        )
        self.engine = MergeEngine(
            self.store,
            self.state,
            config.overlay_root,
            config.extensions,
            default_scoring_rules() + list(config.scoring_rules),
        )
        self.index = ResolutionIndex(config.cache_dir / INDEX_FILE_NAME, index_version)
        self.conflict_counts: Dict[str, float] = {}
        self.last_conflicts: ConflictSet = {}
        self._known_packages: Dict[str, PackageHandle] = {}
        self._listeners: List[Listener] = []
        self._run_lock = threading.Lock()
        self._last_run: float | None = None

    @property
    def overlay_root(self) -> Path:
        return self.config.overlay_root

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    # running

    def resolve(self, force: bool = False) -> ResolveResult:
        with self._run_lock:
            now = self.clock()
            if not force and self._last_run is not None and now - self._last_run < self.config.debounce_seconds:
                log_debug("Skipped conflict resolution due to debounce")
                return ResolveResult(success=False, message="Skipped due to debounce", debounced=True)
            self._last_run = now
            try:
                return self._run()
            except Exception as exc:
                log_error(f"Conflict resolution aborted: {exc}")
                return ResolveResult(success=False, message=f"Conflict resolution aborted: {exc}")

    def _wipe_outputs(self) -> None:
        remove_tree(self.overlay_root)
        self.state.clear()
        self.builder.clear_all()

    def _run(self) -> ResolveResult:
        packages = self.host.list_active_packages()
        self._known_packages.update(packages)

        self.index.load()
        if self.index.version_changed:
            log_info("Rebuilding every resolution")
            self._wipe_outputs()

        conflicts = detect_conflicts(packages, self.builder, self.config.max_workers)
        self.last_conflicts = conflicts

        pruned = self.index.prune(conflicts)
        for record in pruned:
            output = Path(record.output_path)
            if not is_within(output, self.overlay_root):
                log_warn(f"Not removing {output}: it lies outside the overlay root")
                continue
            remove_file(output, stop_at=self.overlay_root)
            log_info(f"Removed stale resolution {record.path}")

        self._prefetch(conflicts, packages)

        result = ResolveResult(
            success=True,
            message="",
            total_conflicts=len(conflicts),
            pruned_count=len(pruned),
        )
        for path, contributors in conflicts.items():
            path_result = self._resolve_path(path, contributors, packages)
            result.per_path[path] = path_result
            if path_result.status == ResolutionStatus.RESOLVED:
                result.resolved_count += 1
            elif path_result.status == ResolutionStatus.SKIPPED:
                result.skipped_count += 1
            else:
                result.failed_count += 1

        try:
            self.index.save()
        except OSError as exc:
            log_error(f"Failed to save resolution index {self.index.index_path}: {exc}")

        result.success = result.failed_count == 0
        if result.total_conflicts == 0:
            result.message = "No conflicts found"
        else:
            result.message = (
                f"Resolved {result.resolved_count}/{result.total_conflicts} conflicts "
                f"({result.skipped_count} unchanged, {result.failed_count} failed)"
            )
        log_info(result.message)

        self.conflict_counts = {
            "total": result.total_conflicts,
            "resolved": result.resolved_count,
            "skipped": result.skipped_count,
            "failed": result.failed_count,
            "pruned": result.pruned_count,
            "last_run": time.time(),
        }
        self._publish(result, pruned)
        return result

    def _prefetch(self, conflicts: ConflictSet, packages: Dict[str, PackageHandle]) -> None:
        """Warm the content cache for archives that contribute several paths needing a merge."""

        pending: Dict[str, List[str]] = {}
        for path, contributors in conflicts.items():
            if self.index.is_reusable(path, contributors):
                continue
            for item in contributors:
                pending.setdefault(item.package_name, []).append(path)
        for name, paths in pending.items():
            package = packages.get(name)
            if package is None or package.storage_kind != StorageKind.ARCHIVE or len(paths) < 2:
                continue
            self.store.batch_read(package, paths)

    def _resolve_path(
        self,
        path: str,
        contributors: Sequence[Contributor],
        packages: Dict[str, PackageHandle],
    ) -> PathResult:
        source_mods = [item.package_name for item in contributors]
        if self.index.is_reusable(path, contributors):
            record = self.index.get(path)
            log_debug(f"Reusing resolution for {path}")
            return PathResult(
                path=path,
                status=ResolutionStatus.SKIPPED,
                output_path=record.output_path if record else None,
                source_mods=source_mods,
                detail="unchanged",
            )

        try:
            outcome = self.engine.merge_path(path, contributors, packages)
        except Exception as exc:
            log_error(f"Merge failed for {path}: {exc}")
            outcome = MergeOutcome(path=path, status=MergeStatus.FAILED, reason=str(exc))

        if not outcome.succeeded:
            previous = self.index.get(path)
            return PathResult(
                path=path,
                status=ResolutionStatus.FAILED,
                output_path=previous.output_path if previous else None,
                source_mods=source_mods,
                detail=outcome.reason,
            )

        record = ResolutionRecord(
            path=path,
            output_path=str(outcome.output_path),
            source_mods=outcome.source_mods,
            source_hashes=outcome.source_hashes,
            output_hash=outcome.output_hash or "",
            merged_at=time.time(),
        )
        self.index.put(record)
        return PathResult(
            path=path,
            status=ResolutionStatus.RESOLVED,
            output_path=record.output_path,
            source_mods=source_mods,
            detail=outcome.strategy or "",
        )

    def _publish(self, result: ResolveResult, pruned: Sequence[ResolutionRecord]) -> None:
        served = [
            path
            for path, item in result.per_path.items()
            if item.status in (ResolutionStatus.RESOLVED, ResolutionStatus.SKIPPED)
        ]
        if served:
            ensure_directory(self.overlay_root)
            if self.host.mount(self.overlay_root):
                changes = [FileChange(path, CHANGE_MODIFIED) for path in served]
                changes.extend(FileChange(record.path, CHANGE_DELETED) for record in pruned)
                self.host.notify_files_changed(changes)
            else:
                log_error(f"Failed to mount overlay {self.overlay_root}")
            self._emit()
        elif pruned:
            self.host.notify_files_changed([FileChange(record.path, CHANGE_DELETED) for record in pruned])

        if not self.index.resolutions and self.host.is_mounted(self.overlay_root):
            self.host.unmount(self.overlay_root)

    def _emit(self) -> None:
        event = ConflictsResolvedEvent(
            resolutions=dict(self.index.resolutions),
            counts=dict(self.conflict_counts),
        )
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as exc:
                log_warn(f"Conflict listener {callback!r} failed: {exc}")

    # package lifecycle

    def _purge_package(self, name: str) -> None:
        self.builder.remove(name)
        package = self._known_packages.get(name)
        if package is not None:
            self.store.purge_package(package)
        else:
            self.state.purge_package(name)
        log_debug(f"Purged caches for {name}")

    def on_package_activated(self, name: str) -> ResolveResult:
        self._known_packages.update(self.host.list_active_packages())
        self._purge_package(name)
        return self.resolve()

    def on_package_deactivated(self, name: str) -> ResolveResult:
        self._purge_package(name)
        return self.resolve()

    # inspection and reset

    def cache_stats(self) -> Dict[str, int]:
        return self.state.stats()

    def status(self) -> Dict[str, Any]:
        with self._run_lock:
            if self._last_run is None:
                self.index.load()
        return {
            "resolutions": {path: record.to_dict() for path, record in self.index.resolutions.items()},
            "counts": dict(self.conflict_counts),
            "mounted": self.host.is_mounted(self.overlay_root),
            "cache": self.cache_stats(),
        }

    def clear_resolved(self) -> None:
        """Unmount and delete every overlay file, the index and all caches."""

        with self._run_lock:
            self.host.unmount(self.overlay_root)
            remove_tree(self.overlay_root)
            self.index.clear()
            self.state.clear()
            self.builder.clear_all()
            self.conflict_counts = {}
            self.last_conflicts = {}
            log_info("Cleared all resolved conflicts")
