"""Snapshot and quarantine records.

A snapshot lists a verified-good set of live artifacts. Its bytes live in
the snapshot object store; the manifest only references them by checksum.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import Field, field_validator

from packsmith.models.lockfile import Checksum, WireModel, validate_relative_path

SNAPSHOT_MANIFEST_VERSION = 1


class SnapshotArtifact(WireModel):
    name: str
    relative_path: str
    checksum: Checksum
    size: int = Field(ge=0)

    @field_validator("relative_path")
    @classmethod
    def _check_relative_path(cls, value: str) -> str:
        return validate_relative_path(value)


class Snapshot(WireModel):
    """Manifest of a last-known-good install."""

    version: Literal[1] = SNAPSHOT_MANIFEST_VERSION
    id: str = Field(min_length=1)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    pack_id: str | None = None
    pinned_version_id: str
    lockfile_digest: str
    authority: str = "lockfile"
    artifacts: list[SnapshotArtifact]

    @property
    def artifact_count(self) -> int:
        return len(self.artifacts)


class QuarantineRecord(WireModel):
    """Sidecar record written next to quarantined bytes."""

    entry_id: str
    name: str
    relative_path: str
    expected: Checksum
    observed: Checksum | None = None
    reason: str
    quarantined_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    stored_file: str
