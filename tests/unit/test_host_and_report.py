from __future__ import annotations

import zipfile
from pathlib import Path

from openpyxl import load_workbook

from overlaymerger.host import CHANGE_DELETED, DirectoryPackageHost, FileChange
from overlaymerger.models import (
    Contributor,
    PathResult,
    ResolutionRecord,
    ResolutionStatus,
    ResolveResult,
    StorageKind,
)
from overlaymerger.report import export_report


def _mods_root(tmp_path: Path) -> Path:
    mods = tmp_path / "mods"
    for name in ("mod_a", "mod_b", ".hidden", "ModConflictResolutions"):
        (mods / name).mkdir(parents=True)
    with zipfile.ZipFile(mods / "mod_zip.zip", "w") as archive:
        archive.writestr("a.json", "{}")
    (mods / "readme.txt").write_text("not a package", encoding="utf-8")
    return mods


def test_directory_host_lists_directories_and_archives(tmp_path: Path) -> None:
    mods = _mods_root(tmp_path)
    host = DirectoryPackageHost(mods, excluded=[mods / "ModConflictResolutions"])

    packages = host.list_packages()

    assert list(packages) == ["mod_a", "mod_b", "mod_zip"]
    assert packages["mod_a"].storage_kind == StorageKind.DIRECTORY
    assert packages["mod_zip"].storage_kind == StorageKind.ARCHIVE
    assert packages["mod_zip"].archive_path == mods / "mod_zip.zip"


def test_directory_host_activity_and_priority(tmp_path: Path) -> None:
    mods = _mods_root(tmp_path)
    host = DirectoryPackageHost(
        mods,
        inactive=["mod_a"],
        priority=["mod_zip"],
        excluded=[mods / "ModConflictResolutions"],
    )

    assert list(host.list_active_packages()) == ["mod_zip", "mod_b"]

    host.set_active("mod_a", True)
    assert list(host.list_active_packages()) == ["mod_zip", "mod_a", "mod_b"]


def test_directory_host_mount_state_and_notifications(tmp_path: Path) -> None:
    overlay = tmp_path / "overlay"
    host = DirectoryPackageHost(tmp_path)

    assert not host.mount(overlay)
    overlay.mkdir()
    assert host.mount(overlay)
    assert host.is_mounted(overlay)
    assert host.unmount(overlay)
    assert not host.unmount(overlay)

    host.notify_files_changed([FileChange("/a.json", CHANGE_DELETED)])
    assert host.last_changes == [FileChange("/a.json", CHANGE_DELETED)]


def test_export_report_writes_three_sheets(tmp_path: Path) -> None:
    conflicts = {
        "/a.json": [Contributor("mod_a", "h1"), Contributor("mod_b", "h2")],
        "/b.lua": [Contributor("mod_a", "h3"), Contributor("mod_c", "h4")],
    }
    result = ResolveResult(success=True, message="ok", resolved_count=1, failed_count=1, total_conflicts=2)
    result.per_path["/a.json"] = PathResult(
        "/a.json", ResolutionStatus.RESOLVED, "/out/a.json", ["mod_a", "mod_b"], "deep-merge"
    )
    result.per_path["/b.lua"] = PathResult("/b.lua", ResolutionStatus.FAILED, None, ["mod_a", "mod_c"], "bad")
    resolutions = {
        "/a.json": ResolutionRecord("/a.json", "/out/a.json", ["mod_a", "mod_b"], ["h1", "h2"], "h5", 1.0)
    }
    output = tmp_path / "report" / "conflict_report.xlsx"

    assert result.paths_with_status(ResolutionStatus.FAILED) == ["/b.lua"]

    export_report(output, result, conflicts, resolutions)

    workbook = load_workbook(output)
    assert workbook.sheetnames == ["resolutions", "conflicts", "packages"]
    rows = list(workbook["resolutions"].iter_rows(values_only=True))
    assert rows[1] == ("/a.json", "resolved", "/out/a.json", "mod_a, mod_b", "h5", "deep-merge")
    assert len(list(workbook["conflicts"].iter_rows(values_only=True))) == 5
    packages = list(workbook["packages"].iter_rows(values_only=True))
    assert packages[1] == ("mod_a", 2, "mod_b, mod_c")
