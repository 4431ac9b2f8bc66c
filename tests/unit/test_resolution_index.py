from __future__ import annotations

import json
from pathlib import Path

from overlaymerger.models import Contributor, ResolutionRecord
from overlaymerger.resolution_index import ResolutionIndex


def _record(tmp_path: Path, path: str = "/a.json") -> ResolutionRecord:
    output = tmp_path / "overlay" / path.lstrip("/")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text("{}", encoding="utf-8")
    return ResolutionRecord(
        path=path,
        output_path=str(output),
        source_mods=["mod_a", "mod_b"],
        source_hashes=["h1", "h2"],
        output_hash="h3",
        merged_at=1.0,
    )


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    index_path = tmp_path / "cache" / "resolutions.json"
    index = ResolutionIndex(index_path, version="7")
    index.put(_record(tmp_path))
    index.save()

    raw = json.loads(index_path.read_text(encoding="utf-8"))
    assert raw["version"] == "7"
    assert list(raw["resolutions"]) == ["/a.json"]

    loaded = ResolutionIndex(index_path, version="7")
    assert loaded.load()
    assert not loaded.version_changed
    assert loaded.get("/a.json") == index.get("/a.json")


def test_missing_corrupt_or_foreign_index_forces_rebuild(tmp_path: Path) -> None:
    index_path = tmp_path / "resolutions.json"
    index = ResolutionIndex(index_path, version="7")
    assert not index.load()
    assert index.version_changed

    index_path.write_text("{oops", encoding="utf-8")
    assert not index.load()

    index.put(_record(tmp_path))
    index.save()
    other = ResolutionIndex(index_path, version="8")
    assert not other.load()
    assert other.version_changed
    assert other.resolutions == {}


def test_reuse_requires_same_pairs_and_existing_output(tmp_path: Path) -> None:
    index_path = tmp_path / "resolutions.json"
    index = ResolutionIndex(index_path)
    record = _record(tmp_path)
    index.put(record)
    index.save()
    index.load()

    same_reordered = [Contributor("mod_b", "h2"), Contributor("mod_a", "h1")]
    changed = [Contributor("mod_a", "h1"), Contributor("mod_b", "h9")]
    extra = same_reordered + [Contributor("mod_c", "h4")]

    assert index.is_reusable("/a.json", same_reordered)
    assert not index.is_reusable("/a.json", changed)
    assert not index.is_reusable("/a.json", extra)
    assert not index.is_reusable("/other.json", same_reordered)

    Path(record.output_path).unlink()
    assert not index.is_reusable("/a.json", same_reordered)


def test_prune_returns_stale_records(tmp_path: Path) -> None:
    index = ResolutionIndex(tmp_path / "resolutions.json")
    index.put(_record(tmp_path, "/a.json"))
    index.put(_record(tmp_path, "/b.json"))

    pruned = index.prune(["/b.json"])

    assert [record.path for record in pruned] == ["/a.json"]
    assert index.paths == ["/b.json"]


def test_clear_removes_file(tmp_path: Path) -> None:
    index_path = tmp_path / "resolutions.json"
    index = ResolutionIndex(index_path)
    index.put(_record(tmp_path))
    index.save()

    index.clear()

    assert index.resolutions == {}
    assert not index_path.exists()
