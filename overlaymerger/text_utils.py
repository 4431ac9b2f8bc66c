from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

WHITESPACE_PATTERN = re.compile(r"\s+")
REPEATED_SLASH_PATTERN = re.compile(r"/{2,}")
UNSAFE_NAME_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")
UNSAFE_SEGMENTS = frozenset({"", ".", ".."})


@lru_cache(maxsize=16384)
def normalize_path(raw: str | None) -> str:
    """Return the canonical virtual form of a package path.

    Backslashes become forward slashes, runs of slashes collapse to one and a
    leading slash is forced. Applying it twice yields the same string.
    """

    if not raw:
        return ""
    path = raw.replace("\\", "/")
    path = REPEATED_SLASH_PATTERN.sub("/", path)
    if not path.startswith("/"):
        path = "/" + path
    return path


def is_safe_path(path: str) -> bool:
    """True when a normalized path has no empty, ``.`` or ``..`` segment."""

    if not path:
        return False
    return not any(segment in UNSAFE_SEGMENTS for segment in path[1:].split("/"))


def archive_entry_names(path: str) -> tuple[str, str]:
    """Archive entry spellings for a normalized path: without and with the leading slash."""

    normalized = normalize_path(path)
    return normalized[1:], normalized


def collapse_whitespace(raw: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", raw).strip()


def sanitize_name(raw: str) -> str:
    """File-system safe stand-in for a package name."""

    cleaned = UNSAFE_NAME_PATTERN.sub("_", raw).strip("._")
    return cleaned or "_"


def extension_of(path: str) -> str:
    name = path.rsplit("/", 1)[-1].lower()
    if "." not in name:
        return ""
    return name[name.rindex("."):]


def has_extension(path: str, extensions: Iterable[str]) -> bool:
    lowered = path.lower()
    return any(lowered.endswith(ext) for ext in extensions)
