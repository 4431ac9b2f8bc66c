from __future__ import annotations

from itertools import combinations
from pathlib import Path
from typing import Any, Dict, List, Mapping

from openpyxl import Workbook

from .logging_utils import log_conflict, log_ok
from .models import ConflictSet, ResolutionRecord, ResolveResult


def print_conflict_details(conflicts: ConflictSet) -> None:
    if not conflicts:
        log_ok("No file conflicts found.")
        return
    log_conflict(f"{len(conflicts)} conflicting paths detected:")
    for path, contributors in conflicts.items():
        details = "; ".join(
            f"{item.package_name} ({item.content_hash})" for item in contributors
        )
        log_conflict(f"{path}: {details}", indent=2)


def _build_resolution_rows(
    result: ResolveResult,
    resolutions: Mapping[str, ResolutionRecord],
) -> List[List[Any]]:
    rows: List[List[Any]] = []
    for path, item in sorted(result.per_path.items()):
        record = resolutions.get(path)
        rows.append(
            [
                path,
                item.status.value,
                item.output_path or "",
                ", ".join(item.source_mods),
                record.output_hash if record else "",
                item.detail,
            ]
        )
    return rows


def _build_package_rows(conflicts: ConflictSet) -> List[List[Any]]:
    partners: Dict[str, set[str]] = {}
    conflict_paths: Dict[str, set[str]] = {}
    for path, contributors in conflicts.items():
        names = sorted({item.package_name for item in contributors})
        for mod_a, mod_b in combinations(names, 2):
            partners.setdefault(mod_a, set()).add(mod_b)
            partners.setdefault(mod_b, set()).add(mod_a)
        for name in names:
            conflict_paths.setdefault(name, set()).add(path)

    rows: List[List[Any]] = []
    for name in sorted(conflict_paths):
        rows.append(
            [
                name,  # package
                len(conflict_paths[name]),  # conflicting paths
                ", ".join(sorted(partners.get(name, set()))),  # partners
            ]
        )
    return rows


def export_report(
    output_path: Path,
    result: ResolveResult,
    conflicts: ConflictSet,
    resolutions: Mapping[str, ResolutionRecord] | None = None,
) -> None:
    """Write an Excel report of the last resolution run."""

    output_path.parent.mkdir(parents=True, exist_ok=True)

    workbook = Workbook()

    # Resolutions sheet
    resolutions_sheet = workbook.active
    if not resolutions_sheet:
        resolutions_sheet = workbook.create_sheet("resolutions")
    else:
        resolutions_sheet.title = "resolutions"
    resolutions_sheet.append(["path", "status", "output path", "source mods", "output hash", "detail"])
    for row in _build_resolution_rows(result, resolutions or {}):
        resolutions_sheet.append(row)

    # Conflicts sheet
    conflicts_sheet = workbook.create_sheet("conflicts")
    conflicts_sheet.append(["path", "package", "content hash"])
    for path, contributors in conflicts.items():
        for item in contributors:
            conflicts_sheet.append([path, item.package_name, item.content_hash])

    # Packages sheet
    packages_sheet = workbook.create_sheet("packages")
    packages_sheet.append(["package", "conflicting paths", "conflict partners"])
    for row in _build_package_rows(conflicts):
        packages_sheet.append(row)

    workbook.save(output_path)
    workbook.close()


__all__ = ["print_conflict_details", "export_report"]
