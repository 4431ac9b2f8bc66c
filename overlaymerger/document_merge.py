"""Structural merges for JSON record files and hierarchical key-value documents.

Two shapes of structured document are handled here:

* tagged-record files - one JSON object per line, as level/scene files store
  their objects - merged as a union deduplicated by a derived identity key;
* single documents (a JSON object or array, or a TOML document) merged
  pairwise, left to right, with a last-writer-wins deep merge.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, Iterable, List, Sequence

import toml

from .hashing import compute_hash

RECORD_SAMPLE_SIZE = 64 * 1024
KEY_ORDER_SAMPLE = 10

NAME_FIELDS = ("name", "internalName", "persistentId", "__name")
TYPE_FIELDS = ("class", "__class", "type")
PARENT_FIELDS = ("__parent", "parent", "parentGroup")
SHAPE_FIELDS = ("shapeName", "shapeFile", "mesh")
ANNOTATION_FIELDS = ("annotation", "description")
POSITION_FIELDS = ("position", "pos")
ROTATION_FIELDS = ("rotationMatrix", "rotation", "rot")
SECONDARY_FIELDS = ("scale", "dataBlock", "material", "color", "radius", "lane")

IDENTITY_FIELD_GROUPS = (
    NAME_FIELDS,
    TYPE_FIELDS,
    PARENT_FIELDS,
    SHAPE_FIELDS,
    ANNOTATION_FIELDS,
    POSITION_FIELDS,
    ROTATION_FIELDS,
    SECONDARY_FIELDS,
)
VECTOR_FIELDS = frozenset(POSITION_FIELDS + ROTATION_FIELDS)

BINDINGS_KEY = "bindings"
BINDING_FIELDS = ("control", "action")


# record detection and parsing

def count_top_level_objects(text: str, limit: int = RECORD_SAMPLE_SIZE) -> int:
    """Number of brace-balanced objects closed at nesting depth zero in the head of ``text``.

    Quoted strings are skipped and square brackets count towards the depth, so
    objects inside a top-level array are not counted.
    """

    count = 0
    depth = 0
    in_string = False
    escaped = False
    for char in text[:limit]:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0 and char == "}":
                count += 1
            elif depth < 0:
                depth = 0
    return count


def is_line_delimited(text: str) -> bool:
    return count_top_level_objects(text) > 1


def split_record_lines(text: str) -> List[str]:
    return [line.rstrip("\r") for line in text.split("\n") if line.strip()]


def parse_records(text: str) -> List[Dict[str, Any]]:
    """Parse one JSON object per non-blank line; raises ``ValueError`` on any bad line."""

    records: List[Dict[str, Any]] = []
    for number, line in enumerate(split_record_lines(text), start=1):
        try:
            value = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(f"line {number}: {exc.msg}") from exc
        if not isinstance(value, dict):
            raise ValueError(f"line {number}: expected an object, got {type(value).__name__}")
        records.append(value)
    return records


# identity keys

def _canonical(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _format_vector(value: Any) -> str:
    components: Sequence[Any]
    if isinstance(value, str):
        components = value.split()
    elif isinstance(value, (list, tuple)):
        components = value
    else:
        return _canonical(value)
    try:
        return ",".join(f"{float(item):.6f}" for item in components)
    except (TypeError, ValueError):
        return _canonical(value)


def identity_key(record: Dict[str, Any]) -> str:
    """Derive the string that identifies "the same object" across contributors.

    Every identity field present contributes a ``field=value`` component;
    positions and rotations are written with six decimals. Components are
    sorted and pipe-joined. A record with none of the fields is identified by
    a hash of all its pairs.
    """

    components: List[str] = []
    for group in IDENTITY_FIELD_GROUPS:
        for field_name in group:
            if field_name not in record:
                continue
            value = record[field_name]
            if field_name in VECTOR_FIELDS:
                rendered = _format_vector(value)
            else:
                rendered = _canonical(value)
            components.append(f"{field_name}={rendered}")
    if components:
        return "|".join(sorted(components))
    pairs = ";".join(f"{key}={_canonical(record[key])}" for key in sorted(record))
    return f"hash={compute_hash(pairs)}"


def merge_records(contributions: Iterable[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """First-seen-wins union of records across contributors, keyed by identity."""

    merged: Dict[str, Dict[str, Any]] = {}
    for records in contributions:
        for record in records:
            key = identity_key(record)
            if key not in merged:
                merged[key] = record
    return list(merged.values())


def record_key_order(records: Sequence[Dict[str, Any]], sample: int = KEY_ORDER_SAMPLE) -> List[str]:
    order: List[str] = []
    seen = set()
    for record in records[:sample]:
        for key in record:
            if key not in seen:
                seen.add(key)
                order.append(key)
    return order


def serialize_records(records: Sequence[Dict[str, Any]]) -> str:
    """One compact JSON object per line, keys in the order sampled from the leading records.

    Keys outside the sampled order follow, sorted.
    """

    order = record_key_order(records)
    rank = {key: index for index, key in enumerate(order)}
    lines = []
    for record in records:
        known = sorted((key for key in record if key in rank), key=rank.__getitem__)
        extra = sorted(key for key in record if key not in rank)
        ordered = {key: record[key] for key in known + extra}
        lines.append(json.dumps(ordered, ensure_ascii=False, separators=(",", ":")))
    return "\n".join(lines) + "\n" if lines else ""


# deep merge

def bindings_equal(first: Any, second: Any) -> bool:
    if not isinstance(first, dict) or not isinstance(second, dict):
        return False
    for field_name in BINDING_FIELDS:
        if field_name not in first or field_name not in second:
            return False
        if first[field_name] != second[field_name]:
            return False
    return True


def merge_arrays(base: List[Any], overlay: List[Any], array_key: str | None) -> List[Any]:
    """Concatenate ``overlay`` onto ``base``; under ``bindings`` duplicate control/action pairs are dropped."""

    result = copy.deepcopy(base)
    if array_key == BINDINGS_KEY:
        for item in overlay:
            if not any(bindings_equal(existing, item) for existing in result):
                result.append(copy.deepcopy(item))
    else:
        result.extend(copy.deepcopy(overlay))
    return result


def deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, list) and isinstance(overlay, list):
        return merge_arrays(base, overlay, None)
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        return copy.deepcopy(overlay)

    result = copy.deepcopy(base)
    for key, value in overlay.items():
        current = result.get(key) if key in result else None
        if isinstance(value, list) and isinstance(current, list):
            result[key] = merge_arrays(current, value, key)
        elif isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def merge_documents(documents: Sequence[Any]) -> Any:
    merged = documents[0]
    for document in documents[1:]:
        merged = deep_merge(merged, document)
    return merged


def serialize_json_document(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def parse_toml_document(text: str) -> Dict[str, Any]:
    return toml.loads(text)


def serialize_toml_document(document: Dict[str, Any]) -> str:
    return toml.dumps(document)


__all__ = [
    "count_top_level_objects",
    "is_line_delimited",
    "parse_records",
    "identity_key",
    "merge_records",
    "serialize_records",
    "bindings_equal",
    "merge_arrays",
    "deep_merge",
    "merge_documents",
    "serialize_json_document",
    "parse_toml_document",
    "serialize_toml_document",
]
