from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from .logging_utils import log_info, log_warn


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_bytes_atomic(destination: Path, data: bytes) -> None:
    """Write through a temporary sibling so readers never observe a half-written file."""

    ensure_directory(destination.parent)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.", dir=destination.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(temp_name, destination)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, payload: Any) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    write_bytes_atomic(path, (text + "\n").encode("utf-8"))


def is_within(path: Path, root: Path) -> bool:
    """True when ``path`` resolves strictly below ``root``."""

    return root.resolve() in path.resolve().parents


def remove_file(path: Path, stop_at: Path | None = None) -> None:
    """Delete ``path`` and any directories it leaves empty, up to ``stop_at``."""

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log_warn(f"Could not remove {path}: {exc}")
        return
    if stop_at is None:
        return
    parent = path.parent
    stop = stop_at.resolve()
    while parent.resolve() != stop and stop in parent.resolve().parents:
        try:
            parent.rmdir()
        except OSError:
            break
        parent = parent.parent


def remove_tree(path: Path) -> None:
    if not path.exists():
        return
    shutil.rmtree(path, ignore_errors=True)
    log_info(f"Removed {path}")
