"""Fast non-cryptographic content hashing used for change detection and cache keys."""

from __future__ import annotations

from typing import List, Sequence

DJB2_SEED = 5381
HASH_MODULUS = 0x100000000

SAMPLE_WINDOW = 64 * 1024
SAMPLE_THRESHOLD = 3 * SAMPLE_WINDOW


def _djb2(data: bytes, seed: int = DJB2_SEED) -> int:
    h = seed
    for byte in data:
        h = (h * 33 + byte) % HASH_MODULUS
    return h


def _sample(data: bytes) -> bytes:
    if len(data) <= SAMPLE_THRESHOLD:
        return data
    middle = (len(data) - SAMPLE_WINDOW) // 2
    return b"".join(
        (
            data[:SAMPLE_WINDOW],
            data[middle:middle + SAMPLE_WINDOW],
            data[-SAMPLE_WINDOW:],
        )
    )


def compute_hash(data: bytes | str) -> str:
    """DJB2 digest of ``data`` rendered as ``<8 hex digits>-<length in hex>``.

    Inputs larger than three sample windows hash a prefix, a middle and a suffix
    window; the full length is always part of the digest.
    """

    if isinstance(data, str):
        data = data.encode("utf-8")
    return f"{_djb2(_sample(data)):08x}-{len(data):x}"


def hash_lines(lines: Sequence[str]) -> List[str]:
    return [compute_hash(line) for line in lines]
