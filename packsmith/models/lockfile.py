"""Lockfile models — the pinned, checksum-verified artifact list.

Once written, a Lockfile is the sole authority for what the live tree must
contain. On disk every model uses camelCase keys (``schemaVersion``,
``relativePath``) and artifact kinds are camelCase too (``versionDescriptor``);
in Python field names are snake_case.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

LOCKFILE_SCHEMA_VERSION = "1"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_DIGEST_LENGTHS = {"sha1": 40, "sha256": 64}


class ArtifactKind(str, Enum):
    """Artifact kinds this engine knows how to install."""

    VERSION_DESCRIPTOR = "versionDescriptor"
    PRIMARY_PACKAGE = "primaryPackage"
    INDEX_FILE = "indexFile"
    DATA_OBJECT = "dataObject"
    DEPENDENCY = "dependency"
    PLATFORM_SPECIFIC_COMPONENT = "platformSpecificComponent"


# Reserved for a future engine; recognised by name but never installed.
MANAGED_RUNTIME_KIND = "managedRuntime"

SUPPORTED_KINDS: frozenset[str] = frozenset(k.value for k in ArtifactKind)

# Deterministic ordering used when a lockfile is generated.
KIND_ORDER: dict[str, int] = {k.value: i for i, k in enumerate(ArtifactKind)}


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


# snake_case spellings of the known kinds are accepted on load.
KIND_ALIASES: dict[str, str] = {
    _snake_case(kind): kind for kind in (*SUPPORTED_KINDS, MANAGED_RUNTIME_KIND)
}


def is_supported_kind(kind: str) -> bool:
    """Return True if this engine version can install artifacts of ``kind``."""
    return kind in SUPPORTED_KINDS


def validate_relative_path(value: str) -> str:
    """Reject paths that could resolve outside the install root.

    Accepts only relative POSIX paths without ``..`` segments, drive
    letters or backslashes. Returns the normalized path.
    """
    if not value or not value.strip():
        raise ValueError("relative path must not be empty")
    if "\\" in value or "\x00" in value:
        raise ValueError(f"relative path contains forbidden characters: {value!r}")
    if re.match(r"^[A-Za-z]:", value):
        raise ValueError(f"relative path must not carry a drive: {value!r}")
    path = PurePosixPath(value)
    if path.is_absolute():
        raise ValueError(f"relative path must not be absolute: {value!r}")
    parts = [p for p in path.parts if p != "."]
    if not parts or any(p == ".." for p in parts):
        raise ValueError(f"relative path escapes the install root: {value!r}")
    return "/".join(parts)


class WireModel(BaseModel):
    """Frozen base model serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class Checksum(WireModel):
    """A declared content hash. Values are lowercase hex."""

    algorithm: Literal["sha1", "sha256"] = "sha256"
    value: str

    @model_validator(mode="after")
    def _check_digest(self) -> Checksum:
        if not _HEX_RE.match(self.value):
            raise ValueError(f"checksum value must be lowercase hex: {self.value!r}")
        expected = _DIGEST_LENGTHS[self.algorithm]
        if len(self.value) != expected:
            raise ValueError(
                f"{self.algorithm} digest must be {expected} hex chars, got {len(self.value)}"
            )
        return self

    @property
    def prefix(self) -> str:
        """Short form used in log lines."""
        return self.value[:8]

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.value}"


class Artifact(WireModel):
    """A single pinned artifact.

    ``kind`` is kept as a plain string so that a lockfile written by a newer
    engine still loads; the planner decides whether it can be installed.
    """

    name: str = Field(min_length=1)
    kind: str = Field(min_length=1)
    source_url: str = Field(min_length=1)
    relative_path: str
    checksum: Checksum
    size: int | None = Field(default=None, ge=0)

    @field_validator("kind", mode="before")
    @classmethod
    def _canonical_kind(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, str):
            return KIND_ALIASES.get(value, value)
        return value

    @field_validator("relative_path")
    @classmethod
    def _check_relative_path(cls, value: str) -> str:
        return validate_relative_path(value)

    @property
    def key(self) -> tuple[str, str]:
        """Unique identity of the artifact within a lockfile."""
        return (self.kind, self.name)

    @property
    def is_supported(self) -> bool:
        return is_supported_kind(self.kind)


def sort_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
    """Order artifacts by kind, then name."""
    return sorted(
        artifacts,
        key=lambda a: (KIND_ORDER.get(a.kind, len(KIND_ORDER)), a.kind, a.name),
    )


class DesiredState(WireModel):
    """The immutable pack descriptor handed to the engine.

    Produced by an external loader from ``pack/manifest.json``. Only pinned
    versions are accepted.
    """

    pack_id: str | None = None
    pack_version: str | None = None
    pinned_version_id: str = Field(min_length=1)
    generated_at: datetime | None = None

    @field_validator("pinned_version_id")
    @classmethod
    def _reject_floating(cls, value: str) -> str:
        if value.strip().lower() in {"latest", "latest-release", "latest-snapshot"}:
            raise ValueError(
                f"pinnedVersionId must be an exact version, not {value!r}"
            )
        return value


class Lockfile(WireModel):
    """The pinned artifact list for one pack version."""

    schema_version: Literal["1"] = LOCKFILE_SCHEMA_VERSION
    pack_id: str | None = None
    pack_version: str | None = None
    pinned_version_id: str = Field(min_length=1)
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    artifacts: list[Artifact]

    @model_validator(mode="after")
    def _check_unique(self) -> Lockfile:
        seen_keys: set[tuple[str, str]] = set()
        seen_paths: set[str] = set()
        for artifact in self.artifacts:
            if artifact.key in seen_keys:
                raise ValueError(
                    f"duplicate artifact {artifact.kind}/{artifact.name}"
                )
            if artifact.relative_path in seen_paths:
                raise ValueError(
                    f"two artifacts share relative path {artifact.relative_path!r}"
                )
            seen_keys.add(artifact.key)
            seen_paths.add(artifact.relative_path)
        return self

    def get(self, name: str) -> Artifact | None:
        """Return the first artifact named ``name``, if any."""
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        return None

    def to_json_dict(self) -> dict:
        """Serialize with on-disk (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)

    def content_fields(self) -> dict:
        """Everything except ``generatedAt``; the basis of the lockfile digest."""
        data = self.to_json_dict()
        data.pop("generatedAt", None)
        return data
