from __future__ import annotations

import json

import pytest
import toml

from overlaymerger.document_merge import (
    bindings_equal,
    count_top_level_objects,
    deep_merge,
    identity_key,
    is_line_delimited,
    merge_documents,
    merge_records,
    parse_records,
    parse_toml_document,
    serialize_json_document,
    serialize_records,
    serialize_toml_document,
)


def test_line_delimited_detection() -> None:
    assert is_line_delimited('{"a":1}\n{"b":2}\n')
    assert not is_line_delimited('{"a": {"b": 1}}')
    assert not is_line_delimited('[{"a": 1}, {"b": 2}]')
    assert count_top_level_objects('{"a": "}{"}\n') == 1
    assert count_top_level_objects('{"a": "\\"}"}\n{"b": 1}') == 2


def test_parse_records_rejects_bad_lines() -> None:
    assert parse_records('{"a":1}\n\n{"b":2}\r\n') == [{"a": 1}, {"b": 2}]
    with pytest.raises(ValueError):
        parse_records('{"a":1}\n{broken\n')
    with pytest.raises(ValueError):
        parse_records('{"a":1}\n[1, 2]\n')


def test_identity_key_uses_sorted_identity_fields() -> None:
    record = {"name": "tree", "class": "TSStatic", "scale": [1, 1, 1], "extra": 5}
    assert identity_key(record) == "class=TSStatic|name=tree|scale=[1,1,1]"


def test_identity_key_formats_positions_and_rotations() -> None:
    record = {"class": "Prefab", "position": [1, 2.5, -3], "rotationMatrix": [1, 0, 0, 0, 1, 0]}
    assert identity_key(record) == (
        "class=Prefab"
        "|position=1.000000,2.500000,-3.000000"
        "|rotationMatrix=1.000000,0.000000,0.000000,0.000000,1.000000,0.000000"
    )
    assert identity_key({"pos": "1 2 3"}) == "pos=1.000000,2.000000,3.000000"


def test_identity_key_falls_back_to_hash_of_pairs() -> None:
    first = identity_key({"b": 2, "a": 1})
    assert first.startswith("hash=")
    assert first == identity_key({"a": 1, "b": 2})
    assert first != identity_key({"a": 1, "b": 3})


def test_merge_records_first_seen_wins() -> None:
    merged = merge_records(
        [
            [{"name": "rock", "class": "TSStatic", "v": 1}],
            [{"name": "rock", "class": "TSStatic", "v": 2}, {"name": "bush", "class": "TSStatic"}],
        ]
    )
    assert merged == [
        {"name": "rock", "class": "TSStatic", "v": 1},
        {"name": "bush", "class": "TSStatic"},
    ]


def test_serialize_records_keeps_sampled_key_order() -> None:
    records = [{"b": 1, "a": 2}, {"c": 3, "a": 1}]
    assert serialize_records(records) == '{"b":1,"a":2}\n{"a":1,"c":3}\n'


def test_serialize_records_appends_unsampled_keys_sorted() -> None:
    records = [{"name": f"obj{index}"} for index in range(10)]
    records.append({"z": 1, "name": "late", "y": 2})
    last_line = serialize_records(records).splitlines()[-1]
    assert last_line == '{"name":"late","y":2,"z":1}'


def test_serialized_records_reparse_to_same_bytes() -> None:
    merged = merge_records(
        [
            parse_records('{"class":"A","name":"x","é":"ü"}\n{"name":"y"}\n'),
            parse_records('{"name":"z","position":[0,0,1]}\n'),
        ]
    )
    once = serialize_records(merged)
    assert serialize_records(merge_records([parse_records(once)])) == once
    assert "ü" in once


def test_deep_merge_recurses_into_objects() -> None:
    assert deep_merge({"x": 1, "y": {"a": 1}}, {"y": {"b": 2}}) == {"x": 1, "y": {"a": 1, "b": 2}}


def test_deep_merge_overlay_wins_for_scalars_and_type_changes() -> None:
    assert deep_merge({"x": 1, "y": [1]}, {"x": 2, "y": {"k": 1}}) == {"x": 2, "y": {"k": 1}}


def test_deep_merge_concatenates_arrays() -> None:
    assert deep_merge({"list": [1, 2]}, {"list": [2, 3]}) == {"list": [1, 2, 2, 3]}
    assert deep_merge([1], [1, 2]) == [1, 1, 2]


def test_deep_merge_dedupes_bindings_by_control_and_action() -> None:
    base = {"bindings": [{"control": "W", "action": "forward"}]}
    overlay = {
        "bindings": [
            {"control": "W", "action": "forward", "deadzone": 0.1},
            {"control": "S", "action": "back"},
        ]
    }
    assert deep_merge(base, overlay) == {
        "bindings": [{"control": "W", "action": "forward"}, {"control": "S", "action": "back"}]
    }


def test_bindings_without_identity_fields_are_not_equal() -> None:
    assert bindings_equal({"control": "W", "action": "a"}, {"control": "W", "action": "a"})
    assert not bindings_equal({"foo": 1}, {"foo": 1})
    assert not bindings_equal({"control": "W", "action": "a"}, "W")


def test_deep_merge_does_not_mutate_inputs() -> None:
    base = {"y": {"a": [1]}}
    overlay = {"y": {"a": [2]}}
    merge_documents([base, overlay])
    assert base == {"y": {"a": [1]}}
    assert overlay == {"y": {"a": [2]}}


def test_serialize_json_document_is_stable() -> None:
    text = serialize_json_document({"b": 1, "a": "é"})
    assert text == '{\n  "b": 1,\n  "a": "é"\n}\n'
    assert serialize_json_document(json.loads(text)) == text


def test_toml_documents_merge_deeply() -> None:
    merged = merge_documents(
        [
            parse_toml_document('[engine]\nidle = 800\n[sounds]\nlist = ["a"]\n'),
            parse_toml_document('[engine]\nredline = 7000\n[sounds]\nlist = ["b"]\n'),
        ]
    )
    assert toml.loads(serialize_toml_document(merged)) == {
        "engine": {"idle": 800, "redline": 7000},
        "sounds": {"list": ["a", "b"]},
    }
