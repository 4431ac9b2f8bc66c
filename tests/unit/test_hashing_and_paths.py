from __future__ import annotations

from overlaymerger.hashing import SAMPLE_THRESHOLD, compute_hash, hash_lines
from overlaymerger.text_utils import (
    archive_entry_names,
    collapse_whitespace,
    extension_of,
    has_extension,
    is_safe_path,
    normalize_path,
    sanitize_name,
)


def test_normalize_path_is_canonical_and_idempotent() -> None:
    assert normalize_path("settings\\input.json") == "/settings/input.json"
    assert normalize_path("//levels///west//items.level.json") == "/levels/west/items.level.json"
    assert normalize_path("/a/b") == "/a/b"
    once = normalize_path("mods\\\\x//y.lua")
    assert normalize_path(once) == once
    assert normalize_path("") == ""
    assert normalize_path(None) == ""


def test_archive_entry_names_cover_both_spellings() -> None:
    assert archive_entry_names("settings/input.json") == ("settings/input.json", "/settings/input.json")


def test_text_helpers() -> None:
    assert collapse_whitespace("  local   x =\n\t1 ") == "local x = 1"
    assert sanitize_name("My Mod (v2)") == "My_Mod_v2"
    assert sanitize_name("...") == "_"
    assert extension_of("/a/b.Level.JSON") == ".json"
    assert extension_of("/a/noext") == ""
    assert has_extension("/A/B.LUA", [".lua"])
    assert not has_extension("/a/b.png", [".lua", ".json"])


def test_compute_hash_known_values() -> None:
    assert compute_hash(b"") == "00001505-0"
    # 5381 * 33 + ord("a") == 0x2b606
    assert compute_hash(b"a") == "0002b606-1"
    assert compute_hash("a") == compute_hash(b"a")


def test_compute_hash_distinguishes_content_and_length() -> None:
    assert compute_hash(b"abc") != compute_hash(b"abd")
    assert compute_hash(b"abc") != compute_hash(b"abc ")


def test_compute_hash_samples_large_inputs() -> None:
    size = SAMPLE_THRESHOLD + 50_000
    data = bytearray(b"x" * size)
    base = compute_hash(bytes(data))

    # 100_000 lies between the prefix window and the middle window
    data[100_000] = ord("y")
    assert compute_hash(bytes(data)) == base

    data[-1] = ord("y")
    assert compute_hash(bytes(data)) != base
    assert compute_hash(bytes(data) + b"x") != base


def test_hash_lines_hashes_each_line() -> None:
    assert hash_lines(["a", ""]) == [compute_hash(b"a"), compute_hash(b"")]


def test_is_safe_path_rejects_traversal_segments() -> None:
    assert is_safe_path("/settings/input.json")
    assert is_safe_path("/levels/west/..hidden.json")
    assert not is_safe_path(normalize_path("../../escaped.json"))
    assert not is_safe_path(normalize_path("lua\\..\\..\\x.lua"))
    assert not is_safe_path("/a/./b.json")
    assert not is_safe_path("/settings/")
    assert not is_safe_path("")
