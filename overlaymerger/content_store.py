from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Dict, Iterable, List

from .hashing import compute_hash
from .logging_utils import log_debug, log_error, log_warn
from .models import PackageHandle, StorageKind
from .state import ArchiveHandle, ArchiveIndex, EngineState
from .text_utils import archive_entry_names, is_safe_path, normalize_path

ARCHIVE_READ_ERRORS = (OSError, ValueError, KeyError, zipfile.BadZipFile)


class ContentStore:
    """Byte and hash level access to package files, whatever the storage backend."""

    def __init__(self, state: EngineState) -> None:
        self.state = state

    # archives

    def _open_handle(self, archive_path: Path) -> ArchiveHandle | None:
        key = str(archive_path)
        with self.state.lock:
            handle = self.state.archive_handles.get(key)
            if handle is not None:
                return handle
            try:
                archive = zipfile.ZipFile(archive_path, "r")
            except (OSError, zipfile.BadZipFile) as exc:
                log_error(f"Failed to open archive {archive_path}: {exc}")
                return None
            handle = ArchiveHandle(archive_path=key, archive=archive)
            for evicted in self.state.archive_handles.put(key, handle):
                evicted.close()
            return handle

    def _drop_handle(self, archive_path: Path) -> None:
        with self.state.lock:
            handle = self.state.archive_handles.pop(str(archive_path))
        if handle is not None:
            handle.close()

    def archive_index(self, archive_path: Path) -> ArchiveIndex:
        """Entry lookup for ``archive_path``; an unreadable archive yields an empty index."""

        key = str(archive_path)
        try:
            modified_at = archive_path.stat().st_mtime
        except OSError as exc:
            log_error(f"Failed to stat archive {archive_path}: {exc}")
            return ArchiveIndex(entries={}, modified_at=0.0)

        with self.state.lock:
            cached = self.state.archive_indexes.get(key)
        if cached is not None and cached.modified_at == modified_at:
            log_debug(f"Archive index cache hit: {archive_path}")
            return cached
        if cached is not None:
            self._drop_handle(archive_path)

        entries: Dict[str, zipfile.ZipInfo] = {}
        handle = self._open_handle(archive_path)
        if handle is not None:
            with handle.lock:
                for info in handle.archive.infolist():
                    if not info.is_dir():
                        entries[info.filename] = info
        index = ArchiveIndex(entries=entries, modified_at=modified_at)
        with self.state.lock:
            self.state.archive_indexes.put(key, index)
        return index

    def _archive_info(self, index: ArchiveIndex, path: str) -> zipfile.ZipInfo | None:
        for name in archive_entry_names(path):
            info = index.entries.get(name)
            if info is not None:
                return info
        return None

    def _read_archive_entries(
        self, archive_path: Path, infos: Dict[str, zipfile.ZipInfo]
    ) -> Dict[str, bytes]:
        results: Dict[str, bytes] = {}
        pending = dict(infos)
        for _attempt in range(2):
            handle = self._open_handle(archive_path)
            if handle is None:
                return results
            try:
                with handle.lock:
                    for path, info in list(pending.items()):
                        results[path] = handle.archive.read(info)
                        del pending[path]
                return results
            except ARCHIVE_READ_ERRORS as exc:
                log_error(f"Failed to read from archive {archive_path}: {exc}")
                self._drop_handle(archive_path)
        return results

    # enumeration and metadata

    def _listed_paths(self, package: PackageHandle) -> List[str]:
        if package.declared_file_hashes:
            return [normalize_path(path) for path, _ in package.declared_file_hashes]
        if package.storage_kind == StorageKind.DIRECTORY:
            root = package.directory_root
            if root is None or not root.is_dir():
                return []
            return sorted(
                normalize_path(item.relative_to(root).as_posix())
                for item in root.rglob("*")
                if item.is_file()
            )
        if package.archive_path is None:
            return []
        index = self.archive_index(package.archive_path)
        return sorted(normalize_path(name) for name in index.entries)

    def list_files(self, package: PackageHandle) -> List[str]:
        """Every file path the package provides, normalized.

        Paths with ``.``, ``..`` or empty segments are dropped: they could
        never be written below the overlay root.
        """

        paths: List[str] = []
        for path in self._listed_paths(package):
            if not is_safe_path(path):
                log_warn(f"Skipping unsafe path {path!r} in package {package.name}")
                continue
            paths.append(path)
        return paths

    def file_exists(self, path: str, package: PackageHandle) -> bool:
        path = normalize_path(path)
        if package.storage_kind == StorageKind.DIRECTORY:
            if package.directory_root is None:
                return False
            return (package.directory_root / path.lstrip("/")).is_file()
        if package.archive_path is None:
            return False
        return self._archive_info(self.archive_index(package.archive_path), path) is not None

    def latest_mod_time(self, package: PackageHandle) -> float:
        """Newest modification time among the package's backing files."""

        source = package.source_path
        if source is None:
            return 0.0
        try:
            if package.storage_kind == StorageKind.ARCHIVE:
                return source.stat().st_mtime
            latest = source.stat().st_mtime
            for item in source.rglob("*"):
                latest = max(latest, item.stat().st_mtime)
            return latest
        except OSError as exc:
            log_debug(f"Could not stat {source}: {exc}")
            return 0.0

    def stat_key(self, path: str, package: PackageHandle) -> tuple | None:
        """Cheap change marker for one file, used to memoize hashes."""

        path = normalize_path(path)
        if package.storage_kind == StorageKind.DIRECTORY:
            if package.directory_root is None:
                return None
            try:
                stat = (package.directory_root / path.lstrip("/")).stat()
            except OSError:
                return None
            return (stat.st_size, stat.st_mtime_ns)
        if package.archive_path is None:
            return None
        info = self._archive_info(self.archive_index(package.archive_path), path)
        if info is None:
            return None
        return (info.file_size, info.CRC, info.date_time)

    # reads

    def _read_raw(self, path: str, package: PackageHandle) -> bytes | None:
        if package.storage_kind == StorageKind.DIRECTORY:
            if package.directory_root is None:
                return None
            try:
                return (package.directory_root / path.lstrip("/")).read_bytes()
            except OSError:
                return None
        if package.archive_path is None:
            return None
        info = self._archive_info(self.archive_index(package.archive_path), path)
        if info is None:
            return None
        return self._read_archive_entries(package.archive_path, {path: info}).get(path)

    def hash_file(self, path: str, package: PackageHandle) -> str | None:
        """Hash one file without keeping its bytes resident."""

        data = self._read_raw(normalize_path(path), package)
        if data is None:
            return None
        return compute_hash(data)

    def read_with_hash(
        self, path: str, package: PackageHandle, expected_hash: str | None = None
    ) -> tuple[bytes, str] | None:
        path = normalize_path(path)
        if expected_hash:
            cached = self.state.cached_bytes(expected_hash)
            if cached is not None:
                log_debug(f"Content cache hit for {package.name}:{path}")
                self.state.remember_content(package.name, path, expected_hash, cached)
                return cached, expected_hash
        else:
            entry = self.state.cached_for_path(package.name, path)
            if entry is not None:
                log_debug(f"Path cache hit for {package.name}:{path}")
                return entry

        data = self._read_raw(path, package)
        if data is None:
            log_debug(f"File {path} not found in package {package.name}")
            return None
        content_hash = compute_hash(data)
        self.state.remember_content(package.name, path, content_hash, data)
        return data, content_hash

    def read_file(
        self, path: str, package: PackageHandle, expected_hash: str | None = None
    ) -> bytes | None:
        found = self.read_with_hash(path, package, expected_hash)
        if found is None:
            return None
        return found[0]

    def batch_read(self, package: PackageHandle, paths: Iterable[str]) -> Dict[str, bytes]:
        """Read many files of one package, opening its archive once."""

        normalized = [normalize_path(path) for path in paths]
        results: Dict[str, bytes] = {}
        if package.storage_kind == StorageKind.ARCHIVE and package.archive_path is not None:
            index = self.archive_index(package.archive_path)
            infos: Dict[str, zipfile.ZipInfo] = {}
            for path in normalized:
                info = self._archive_info(index, path)
                if info is not None:
                    infos[path] = info
            results = self._read_archive_entries(package.archive_path, infos)
        else:
            for path in normalized:
                data = self._read_raw(path, package)
                if data is not None:
                    results[path] = data

        for path, data in results.items():
            self.state.remember_content(package.name, path, compute_hash(data), data)
        return results

    def purge_package(self, package: PackageHandle) -> None:
        archive_path = str(package.archive_path) if package.archive_path else None
        self.state.purge_package(package.name, archive_path)
