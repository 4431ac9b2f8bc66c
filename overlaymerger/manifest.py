"""Per-package inventories of mergeable files and their content hashes.

A manifest is persisted as one JSON document per package under the manifest
directory. It is stale once any backing file of the package is newer than the
``latest_source_mod_time`` it recorded; a stale, missing or unreadable
manifest is rebuilt from the package itself.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import List, Sequence

from .content_store import ContentStore
from .file_utils import read_json, remove_file, remove_tree, write_json
from .logging_utils import log_debug, log_info, log_warn
from .models import Manifest, ManifestEntry, PackageHandle
from .state import EngineState
from .text_utils import has_extension, is_safe_path, normalize_path, sanitize_name


class ManifestBuilder:
    def __init__(
        self,
        store: ContentStore,
        state: EngineState,
        manifest_dir: Path,
        extensions: Sequence[str],
    ) -> None:
        self.store = store
        self.state = state
        self.manifest_dir = manifest_dir
        self.extensions = tuple(ext.lower() for ext in extensions)

    def manifest_path(self, package_name: str) -> Path:
        return self.manifest_dir / f"{sanitize_name(package_name)}.json"

    def is_supported(self, path: str) -> bool:
        return has_extension(path, self.extensions)

    def _read_persisted(self, manifest_path: Path) -> Manifest | None:
        if not manifest_path.exists():
            return None
        try:
            return Manifest.from_dict(read_json(manifest_path))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log_warn(f"Ignoring unreadable manifest {manifest_path}: {exc}")
            return None

    def is_stale(self, package: PackageHandle, manifest_path: Path | None = None) -> bool:
        manifest_path = manifest_path or self.manifest_path(package.name)
        manifest = self._read_persisted(manifest_path)
        if manifest is None:
            return True
        return self.store.latest_mod_time(package) > manifest.latest_source_mod_time

    def _hash_entries(self, package: PackageHandle) -> List[ManifestEntry]:
        if package.declared_file_hashes:
            declared: dict[str, ManifestEntry] = {}
            for raw_path, content_hash in package.declared_file_hashes:
                path = normalize_path(raw_path)
                if not is_safe_path(path):
                    log_warn(f"Skipping unsafe declared path {raw_path!r} in package {package.name}")
                    continue
                if self.is_supported(path):
                    declared[path] = ManifestEntry(path=path, content_hash=str(content_hash))
            return [declared[path] for path in sorted(declared)]

        entries: List[ManifestEntry] = []
        for path in self.store.list_files(package):
            if not self.is_supported(path):
                continue
            stat_key = self.store.stat_key(path, package)
            memo_key = (package.name, path, stat_key) if stat_key is not None else None
            content_hash = None
            if memo_key is not None:
                with self.state.lock:
                    content_hash = self.state.hash_memo.get(memo_key)
            if content_hash is None:
                content_hash = self.store.hash_file(path, package)
                if content_hash is None:
                    continue
                if memo_key is not None:
                    with self.state.lock:
                        self.state.hash_memo[memo_key] = content_hash
            entries.append(ManifestEntry(path=path, content_hash=content_hash))
        return entries

    def build_manifest(self, package: PackageHandle, latest_mod_time: float | None = None) -> Manifest:
        if latest_mod_time is None:
            latest_mod_time = self.store.latest_mod_time(package)
        manifest = Manifest(
            scanned_at=time.time(),
            latest_source_mod_time=latest_mod_time,
            entries=self._hash_entries(package),
        )
        manifest_path = self.manifest_path(package.name)
        try:
            write_json(manifest_path, manifest.to_dict())
        except OSError as exc:
            log_warn(f"Could not persist manifest for {package.name}: {exc}")
        with self.state.lock:
            self.state.manifests[package.name] = manifest
        log_info(f"Built manifest for {package.name}: {len(manifest.entries)} mergeable files")
        return manifest

    def _current(self, package: PackageHandle, latest_mod_time: float) -> Manifest | None:
        """A manifest still valid for ``latest_mod_time``, from memory or disk."""

        with self.state.lock:
            manifest = self.state.manifests.get(package.name)
        if manifest is not None and latest_mod_time <= manifest.latest_source_mod_time:
            log_debug(f"Manifest cache hit: {package.name}")
            return manifest

        persisted = self._read_persisted(self.manifest_path(package.name))
        if persisted is not None and latest_mod_time <= persisted.latest_source_mod_time:
            with self.state.lock:
                self.state.manifests[package.name] = persisted
            return persisted
        return None

    def load_or_rebuild(self, package: PackageHandle) -> List[ManifestEntry]:
        latest_mod_time = self.store.latest_mod_time(package)
        manifest = self._current(package, latest_mod_time)
        if manifest is None:
            manifest = self.build_manifest(package, latest_mod_time)
        return list(manifest.entries)

    def candidate_paths(self, package: PackageHandle) -> List[str]:
        """Supported paths of a package without hashing anything."""

        manifest = self._current(package, self.store.latest_mod_time(package))
        if manifest is not None:
            return manifest.paths
        return [path for path in self.store.list_files(package) if self.is_supported(path)]

    def remove(self, package_name: str) -> None:
        with self.state.lock:
            self.state.manifests.pop(package_name, None)
        remove_file(self.manifest_path(package_name))

    def clear_all(self) -> None:
        with self.state.lock:
            self.state.manifests.clear()
        remove_tree(self.manifest_dir)
