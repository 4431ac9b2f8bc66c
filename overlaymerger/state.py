"""Process-local engine caches.

Every cache the engine uses lives on an :class:`EngineState` owned by the
resolver and handed to each component, so independent engines never share
state. Caches keyed by content hash are content-addressed and need no
invalidation; caches keyed by package or path are purged per package.
"""

from __future__ import annotations

import threading
import time
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Hashable, List, TypeVar

from .models import Manifest

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheLimits:
    content_entries: int = 1024
    archive_indexes: int = 32
    parsed_documents: int = 128
    archive_handles: int = 8


class HalvingCache(Generic[K, V]):
    """Bounded mapping that drops its older half once it is full.

    With ``refresh_on_get`` a hit moves the key to the young end, which turns
    the insertion order into a least-recently-used order.
    """

    def __init__(self, max_entries: int, refresh_on_get: bool = False) -> None:
        self.max_entries = max(1, max_entries)
        self.refresh_on_get = refresh_on_get
        self._items: Dict[K, V] = {}

    def get(self, key: K) -> V | None:
        if key not in self._items:
            return None
        value = self._items[key]
        if self.refresh_on_get:
            del self._items[key]
            self._items[key] = value
        return value

    def put(self, key: K, value: V) -> List[V]:
        """Store ``value`` and return whatever had to be evicted to make room."""

        evicted: List[V] = []
        if key in self._items:
            del self._items[key]
        elif len(self._items) >= self.max_entries:
            trim = max(1, self.max_entries // 2)
            for old_key in list(self._items)[:trim]:
                evicted.append(self._items.pop(old_key))
        self._items[key] = value
        return evicted

    def pop(self, key: K) -> V | None:
        return self._items.pop(key, None)

    def values(self) -> List[V]:
        return list(self._items.values())

    def clear(self) -> List[V]:
        values = list(self._items.values())
        self._items.clear()
        return values

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


@dataclass(slots=True)
class PathCacheEntry:
    content_hash: str
    accessed_at: float


@dataclass(slots=True)
class ArchiveHandle:
    archive_path: str
    archive: zipfile.ZipFile
    lock: threading.Lock = field(default_factory=threading.Lock)

    def close(self) -> None:
        with self.lock:
            self.archive.close()


@dataclass(slots=True)
class ArchiveIndex:
    """Entry name lookup for one archive, plus the archive's mtime when indexed."""

    entries: Dict[str, zipfile.ZipInfo]
    modified_at: float


class EngineState:
    def __init__(self, limits: CacheLimits | None = None) -> None:
        self.limits = limits or CacheLimits()
        self.lock = threading.RLock()
        self.content_by_hash: Dict[str, bytes] = {}
        self.content_by_path: Dict[tuple[str, str], PathCacheEntry] = {}
        self.archive_indexes: HalvingCache[str, ArchiveIndex] = HalvingCache(
            self.limits.archive_indexes, refresh_on_get=True
        )
        self.archive_handles: HalvingCache[str, ArchiveHandle] = HalvingCache(
            self.limits.archive_handles
        )
        self.parsed_documents: HalvingCache[tuple[str, str], Any] = HalvingCache(
            self.limits.parsed_documents
        )
        self.manifests: Dict[str, Manifest] = {}
        self.hash_memo: Dict[tuple[str, str, tuple], str] = {}

    # content caches

    def cached_bytes(self, content_hash: str) -> bytes | None:
        with self.lock:
            return self.content_by_hash.get(content_hash)

    def cached_for_path(self, package_name: str, path: str) -> tuple[bytes, str] | None:
        with self.lock:
            entry = self.content_by_path.get((package_name, path))
            if entry is None:
                return None
            data = self.content_by_hash.get(entry.content_hash)
            if data is None:
                return None
            entry.accessed_at = time.monotonic()
            return data, entry.content_hash

    def remember_content(self, package_name: str, path: str, content_hash: str, data: bytes) -> None:
        with self.lock:
            self.content_by_hash[content_hash] = data
            self.content_by_path[(package_name, path)] = PathCacheEntry(
                content_hash=content_hash, accessed_at=time.monotonic()
            )
            if len(self.content_by_path) > self.limits.content_entries:
                self._evict_oldest_paths()

    def _evict_oldest_paths(self) -> None:
        overflow = len(self.content_by_path) - self.limits.content_entries
        trim = max(overflow, self.limits.content_entries // 4, 1)
        ordered = sorted(self.content_by_path.items(), key=lambda item: item[1].accessed_at)
        for key, _ in ordered[:trim]:
            del self.content_by_path[key]

    # parsed documents

    def parsed(self, kind: str, content_hash: str) -> Any:
        with self.lock:
            return self.parsed_documents.get((kind, content_hash))

    def remember_parsed(self, kind: str, content_hash: str, document: Any) -> None:
        with self.lock:
            self.parsed_documents.put((kind, content_hash), document)

    # invalidation

    def purge_package(self, package_name: str, archive_path: str | None = None) -> None:
        with self.lock:
            self.manifests.pop(package_name, None)
            for key in [key for key in self.content_by_path if key[0] == package_name]:
                del self.content_by_path[key]
            for key in [key for key in self.hash_memo if key[0] == package_name]:
                del self.hash_memo[key]
            if archive_path:
                self.archive_indexes.pop(archive_path)
                handle = self.archive_handles.pop(archive_path)
                if handle is not None:
                    handle.close()

    def clear(self) -> None:
        with self.lock:
            self.content_by_hash.clear()
            self.content_by_path.clear()
            self.archive_indexes.clear()
            for handle in self.archive_handles.clear():
                handle.close()
            self.parsed_documents.clear()
            self.manifests.clear()
            self.hash_memo.clear()

    def stats(self) -> Dict[str, int]:
        with self.lock:
            stats = {
                "content_by_hash": len(self.content_by_hash),
                "content_by_path": len(self.content_by_path),
                "archive_indexes": len(self.archive_indexes),
                "archive_handles": len(self.archive_handles),
                "parsed_documents": len(self.parsed_documents),
                "manifests": len(self.manifests),
                "hash_memo": len(self.hash_memo),
            }
        stats["total_cache_entries"] = sum(stats.values())
        return stats
