from __future__ import annotations

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Set

from .logging_utils import log_debug, log_info
from .manifest import ManifestBuilder
from .models import ConflictSet, Contributor, ManifestEntry, PackageHandle


def quick_scan(
    packages: Mapping[str, PackageHandle],
    builder: ManifestBuilder,
) -> tuple[Dict[str, List[str]], Set[str]]:
    """Group candidate paths by the packages that provide them, without hashing.

    Returns the multiply-claimed paths with their packages and the set of
    paths only one package provides.
    """

    grouped: Dict[str, List[str]] = defaultdict(list)
    for package_name, package in packages.items():
        for path in builder.candidate_paths(package):
            grouped[path].append(package_name)

    shared: Dict[str, List[str]] = {}
    unique: Set[str] = set()
    for path, owners in grouped.items():
        if len(set(owners)) > 1:
            shared[path] = owners
        else:
            unique.add(path)
    return shared, unique


def _load_manifests(
    packages: Mapping[str, PackageHandle],
    builder: ManifestBuilder,
    max_workers: int,
) -> Dict[str, List[ManifestEntry]]:
    names = list(packages)
    if max_workers > 1 and len(names) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            loaded = list(pool.map(lambda name: builder.load_or_rebuild(packages[name]), names))
        return dict(zip(names, loaded))
    return {name: builder.load_or_rebuild(packages[name]) for name in names}


def detect_conflicts(
    packages: Mapping[str, PackageHandle],
    builder: ManifestBuilder,
    max_workers: int = 1,
) -> ConflictSet:
    """Paths provided by two or more packages with differing content.

    Contributors keep the order of ``packages``.
    """

    shared, unique = quick_scan(packages, builder)
    claimants = {name for owners in shared.values() for name in owners}
    involved = [name for name in packages if name in claimants]
    log_info(
        f"Quick scan: {len(shared)} shared paths, {len(unique)} unique paths, "
        f"{len(involved)}/{len(packages)} packages need hashing"
    )
    if not shared:
        return {}

    manifests = _load_manifests({name: packages[name] for name in involved}, builder, max_workers)

    grouped: Dict[str, List[Contributor]] = defaultdict(list)
    for package_name in involved:
        for entry in manifests[package_name]:
            if entry.path in unique:
                continue
            grouped[entry.path].append(
                Contributor(package_name=package_name, content_hash=entry.content_hash)
            )

    conflicts: ConflictSet = {}
    for path, contributors in grouped.items():
        owners = {item.package_name for item in contributors}
        hashes = {item.content_hash for item in contributors}
        if len(owners) < 2:
            continue
        if len(hashes) < 2:
            log_debug(f"Identical content for {path} across {', '.join(sorted(owners))}")
            continue
        conflicts[path] = contributors
    return dict(sorted(conflicts.items()))


__all__ = [
    "quick_scan",
    "detect_conflicts",
]
