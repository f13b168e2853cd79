"""Checksum verification and canonical hashing helpers.

Files are hashed in fixed-size chunks so large artifacts never have to fit
in memory. Canonical JSON is used wherever a model needs a stable digest
(lockfile identity, snapshot ids).
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from packsmith.models.lockfile import Checksum

DEFAULT_CHUNK_SIZE = 1024 * 1024

SUPPORTED_ALGORITHMS = ("sha1", "sha256")


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_bytes(data: bytes, algorithm: str = "sha256") -> str:
    """Hex digest of ``data`` under a supported algorithm."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    return hashlib.new(algorithm, data).hexdigest()


def hash_file(
    path: Path, algorithm: str = "sha256", *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> str:
    """Stream ``path`` through ``algorithm`` and return the hex digest."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    digest = hashlib.new(algorithm)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def observe_checksum(
    path: Path, algorithm: str = "sha256", *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Checksum:
    """Hash ``path`` and wrap the result as a Checksum."""
    return Checksum(
        algorithm=algorithm, value=hash_file(path, algorithm, chunk_size=chunk_size)
    )


def verify_file(
    path: Path, expected: Checksum, *, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> tuple[bool, Checksum | None]:
    """Compare the file at ``path`` against ``expected``.

    Returns ``(matches, observed)``. ``observed`` is None when the file
    does not exist.
    """
    if not path.is_file():
        return False, None
    observed = observe_checksum(path, expected.algorithm, chunk_size=chunk_size)
    return observed.value == expected.value, observed


def lockfile_digest(content: dict[str, Any]) -> str:
    """Stable digest of a lockfile's content fields (``generatedAt`` excluded)."""
    return sha256_hex(canonical_json_bytes(content))
