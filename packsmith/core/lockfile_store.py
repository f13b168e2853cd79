"""Lockfile store — load, generate once, regenerate only on explicit request.

The lockfile at ``pack/lock.json`` is the sole source of truth for an
install. It is never regenerated implicitly: a missing or broken lockfile
is a ``ConfigError`` until someone calls ``generate()`` or ``regenerate()``.
"""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from packsmith.core.atomic import atomic_write_bytes, dump_json_bytes
from packsmith.core.errors import ConfigError
from packsmith.core.hasher import lockfile_digest
from packsmith.core.layout import InstanceLayout
from packsmith.core.resolver import UpstreamResolver
from packsmith.models.lockfile import DesiredState, Lockfile, sort_artifacts

logger = logging.getLogger(__name__)


def serialize_lockfile(lockfile: Lockfile) -> bytes:
    """On-disk form: key-sorted, indented camelCase JSON."""
    return dump_json_bytes(lockfile.to_json_dict())


def digest_of(lockfile: Lockfile) -> str:
    """Identity of a lockfile's content, independent of ``generatedAt``."""
    return lockfile_digest(lockfile.content_fields())


def check_drift(desired: DesiredState, lockfile: Lockfile) -> list[str]:
    """Compare a descriptor against an existing lockfile.

    A different pinned version is fatal because the lockfile is
    authoritative. Pack id/version differences are returned as warnings.
    """
    if desired.pinned_version_id != lockfile.pinned_version_id:
        raise ConfigError(
            f"pack/manifest.json pins {desired.pinned_version_id!r} but pack/lock.json "
            f"was generated for {lockfile.pinned_version_id!r}",
            remediation=(
                "Restore the matching manifest, or regenerate the lockfile explicitly "
                "with `packsmith lock --regenerate --reason ...`."
            ),
        )
    drifts: list[str] = []
    for field in ("pack_id", "pack_version"):
        recorded = getattr(lockfile, field)
        current = getattr(desired, field)
        if current is not None and recorded != current:
            drifts.append(f"{field}: lockfile={recorded!r}, manifest={current!r}")
    return drifts


def load_desired_state(layout: InstanceLayout) -> DesiredState:
    """Read the immutable pack descriptor from ``pack/manifest.json``."""
    path = layout.manifest_path
    if not path.is_file():
        raise ConfigError(
            f"No pack descriptor at {path}",
            remediation="Provide pack/manifest.json with at least pinnedVersionId.",
        )
    try:
        return DesiredState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        raise ConfigError(f"Pack descriptor {path} is invalid: {exc}") from exc


class LockfileStore:
    """Owns ``pack/lock.json`` for one instance.

    Parameters
    ----------
    layout:
        Instance layout that locates the lockfile.
    clock:
        Returns the ``generatedAt`` timestamp; injectable for tests.
    """

    def __init__(
        self,
        layout: InstanceLayout,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._layout = layout
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._layout.lockfile_path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Lockfile:
        """Read the existing lockfile. Never regenerates."""
        if not self.exists():
            raise ConfigError(
                f"No lockfile at {self.path}",
                remediation="Generate one with `packsmith lock`.",
            )
        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"Lockfile {self.path} is unreadable: {exc}") from exc
        try:
            return Lockfile.model_validate_json(raw)
        except ValidationError as exc:
            raise ConfigError(
                f"Lockfile {self.path} is invalid: {exc.error_count()} problem(s): "
                f"{_first_error(exc)}",
                remediation=(
                    "Restore pack/lock.json from backup, or regenerate it explicitly "
                    "with `packsmith lock --regenerate --reason ...`."
                ),
            ) from exc

    def generate(self, desired: DesiredState, resolver: UpstreamResolver) -> Lockfile:
        """Resolve and persist a lockfile. Refuses to overwrite an existing one."""
        if self.exists():
            raise ConfigError(
                f"Lockfile {self.path} already exists",
                remediation="Use `packsmith lock --regenerate --reason ...` to replace it.",
            )
        return self._write_new(desired, resolver)

    def load_or_generate(
        self, desired: DesiredState, resolver: UpstreamResolver | None
    ) -> Lockfile:
        """Existing lockfile (checked against ``desired``) or a freshly generated one."""
        if self.exists():
            lockfile = self.load()
            for drift in check_drift(desired, lockfile):
                logger.warning("Pack descriptor differs from lockfile: %s", drift)
            return lockfile
        if resolver is None:
            raise ConfigError(
                "No lockfile exists and no upstream resolver was supplied",
                remediation="Generate the lockfile with `packsmith lock` first.",
            )
        return self.generate(desired, resolver)

    def regenerate(
        self, desired: DesiredState, resolver: UpstreamResolver, *, reason: str
    ) -> Lockfile:
        """Explicit, audited replacement of the lockfile.

        The previous lockfile is archived under ``pack/lock-history/`` and an
        audit line is appended to ``pack/lock-audit.jsonl``.
        """
        if not reason.strip():
            raise ConfigError("Lockfile regeneration requires a reason")
        lockfile = self._build(desired, resolver)
        previous_digest: str | None = None
        archived: str | None = None
        if self.exists():
            try:
                previous_digest = digest_of(self.load())
            except ConfigError:
                logger.warning("Existing lockfile is invalid; archiving it as-is")
            stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
            self._layout.lock_history_dir.mkdir(parents=True, exist_ok=True)
            archive = self._layout.lock_history_dir / f"lock-{stamp}.json"
            shutil.copy2(self.path, archive)
            archived = archive.name
        self._persist(lockfile)
        audit = {
            "event": "lockfile_regenerated",
            "at": lockfile.generated_at.isoformat(),
            "reason": reason,
            "pinnedVersionId": lockfile.pinned_version_id,
            "previousDigest": previous_digest,
            "newDigest": digest_of(lockfile),
            "archivedAs": archived,
        }
        with open(self._layout.lock_audit_path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(audit, sort_keys=True) + "\n")
        logger.warning(
            "Lockfile regenerated for %s (reason: %s)", lockfile.pinned_version_id, reason
        )
        return lockfile

    def write(self, lockfile: Lockfile) -> None:
        """Persist an already-built lockfile; refuses to overwrite."""
        if self.exists():
            raise ConfigError(f"Lockfile {self.path} already exists")
        atomic_write_bytes(self.path, serialize_lockfile(lockfile))

    def _write_new(self, desired: DesiredState, resolver: UpstreamResolver) -> Lockfile:
        lockfile = self._build(desired, resolver)
        self._persist(lockfile)
        return lockfile

    def _build(self, desired: DesiredState, resolver: UpstreamResolver) -> Lockfile:
        artifacts = resolver.resolve(desired.pinned_version_id)
        if not artifacts:
            raise ConfigError(
                f"Resolver returned no artifacts for {desired.pinned_version_id!r}"
            )
        try:
            lockfile = Lockfile(
                pack_id=desired.pack_id,
                pack_version=desired.pack_version,
                pinned_version_id=desired.pinned_version_id,
                generated_at=self._clock(),
                artifacts=sort_artifacts(artifacts),
            )
        except ValidationError as exc:
            raise ConfigError(f"Resolved artifact set is invalid: {_first_error(exc)}") from exc
        return lockfile

    def _persist(self, lockfile: Lockfile) -> None:
        atomic_write_bytes(self.path, serialize_lockfile(lockfile))
        logger.info(
            "Generated lockfile for %s with %d artifacts",
            lockfile.pinned_version_id,
            len(lockfile.artifacts),
        )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(p) for p in first.get("loc", ()))
    return f"{location}: {first.get('msg')}"
