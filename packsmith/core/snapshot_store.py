"""Snapshot store — last-known-good installs kept for rollback.

Layout::

    .snapshots/_objects/<algo>/<d[0:2]>/<d[2:4]>/<digest>   content-addressed bytes
    .snapshots/<id>/snapshot.json                           manifest

Object bytes are immutable and shared between snapshots; storing the same
content twice is a no-op. The manifest is written last with an atomic
rename, so a snapshot interrupted mid-write has no manifest and is ignored.
There is no delete method.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from packsmith.core.atomic import atomic_write_json
from packsmith.core.errors import ConfigError
from packsmith.core.hasher import verify_file
from packsmith.core.layout import InstanceLayout
from packsmith.models.lockfile import Checksum, Lockfile
from packsmith.models.snapshot import Snapshot, SnapshotArtifact

logger = logging.getLogger(__name__)

MANIFEST_FILE = "snapshot.json"
LEGACY_MANIFEST_FILE = "snapshot.legacy.json"
OBJECTS_DIR = "_objects"


class SnapshotIntegrityError(RuntimeError):
    """Raised when a stored snapshot object does not match its recorded checksum."""


class SnapshotStore:
    """Immutable, content-addressed snapshot storage.

    Parameters
    ----------
    layout:
        Instance layout; snapshots live under ``layout.snapshot_root``.
    """

    def __init__(self, layout: InstanceLayout, *, chunk_size: int = 1024 * 1024) -> None:
        self._layout = layout
        self._root = layout.snapshot_root
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        return self._root

    def object_path(self, checksum: Checksum) -> Path:
        """Storage path for one content-addressed object."""
        digest = checksum.value
        return self._root / OBJECTS_DIR / checksum.algorithm / digest[:2] / digest[2:4] / digest

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def record(self, lockfile: Lockfile, lockfile_digest: str) -> Snapshot:
        """Copy every live artifact of ``lockfile`` into a new snapshot.

        Callers must only record after the live tree fully satisfies the
        lockfile; each file is re-verified while it is copied.
        """
        created_at = datetime.now(timezone.utc)
        snapshot_id = self._new_id(created_at, lockfile_digest)
        entries: list[SnapshotArtifact] = []

        for artifact in lockfile.artifacts:
            live = self._layout.live_path(artifact.relative_path)
            self._store_object(live, artifact.checksum)
            entries.append(
                SnapshotArtifact(
                    name=artifact.name,
                    relative_path=artifact.relative_path,
                    checksum=artifact.checksum,
                    size=live.stat().st_size,
                )
            )

        snapshot = Snapshot(
            id=snapshot_id,
            created_at=created_at,
            pack_id=lockfile.pack_id,
            pinned_version_id=lockfile.pinned_version_id,
            lockfile_digest=lockfile_digest,
            artifacts=entries,
        )
        snapshot_dir = self._root / snapshot_id
        snapshot_dir.mkdir(parents=True, exist_ok=False)
        atomic_write_json(
            snapshot_dir / MANIFEST_FILE,
            snapshot.model_dump(mode="json", by_alias=True),
        )
        logger.info(
            "Recorded snapshot %s with %d artifacts", snapshot_id, snapshot.artifact_count
        )
        return snapshot

    def _store_object(self, source: Path, checksum: Checksum) -> None:
        target = self.object_path(checksum)
        if target.is_file():
            ok, _ = verify_file(target, checksum, chunk_size=self._chunk_size)
            if ok:
                return
            # A damaged object is replaced from the verified live copy.
            logger.warning("Replacing damaged snapshot object %s", target)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        shutil.copyfile(source, tmp)
        ok, observed = verify_file(tmp, checksum, chunk_size=self._chunk_size)
        if not ok:
            tmp.unlink(missing_ok=True)
            raise SnapshotIntegrityError(
                f"Live file {source} changed while being snapshotted "
                f"(expected {checksum.prefix}, observed {observed.prefix if observed else 'none'})"
            )
        os.replace(tmp, target)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def list_ids(self) -> list[str]:
        """Snapshot ids with a manifest, oldest first."""
        if not self._root.is_dir():
            return []
        return sorted(
            p.name
            for p in self._root.iterdir()
            if p.is_dir() and p.name != OBJECTS_DIR and (p / MANIFEST_FILE).is_file()
        )

    def list_snapshots(self) -> list[Snapshot]:
        """Loadable snapshots, newest first. Unreadable manifests are skipped."""
        snapshots: list[Snapshot] = []
        for sid in self.list_ids():
            try:
                snapshots.append(self.load(sid))
            except ConfigError as exc:
                logger.warning("Ignoring snapshot %s: %s", sid, exc.message)
        return sorted(snapshots, key=lambda s: (s.created_at, s.id), reverse=True)

    def latest(self) -> Snapshot | None:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def find_for_digest(self, lockfile_digest: str) -> Snapshot | None:
        """Newest snapshot recorded for a given lockfile."""
        for snapshot in self.list_snapshots():
            if snapshot.lockfile_digest == lockfile_digest:
                return snapshot
        return None

    def load(self, snapshot_id: str) -> Snapshot:
        """Read and validate one snapshot manifest."""
        snapshot_dir = self._root / snapshot_id
        if snapshot_id == OBJECTS_DIR or not snapshot_dir.is_dir():
            raise ConfigError(f"Snapshot {snapshot_id!r} does not exist")
        path = snapshot_dir / MANIFEST_FILE
        if not path.is_file():
            if (snapshot_dir / LEGACY_MANIFEST_FILE).is_file():
                raise ConfigError(
                    f"Snapshot {snapshot_id!r} uses the legacy metadata-only format "
                    "and cannot be restored",
                    remediation="Legacy snapshots contain metadata only; run a fresh install.",
                )
            raise ConfigError(f"Snapshot {snapshot_id!r} has no manifest")
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Snapshot {snapshot_id!r} manifest is unreadable: {exc}") from exc
        if not isinstance(raw, dict) or "version" not in raw:
            raise ConfigError(
                f"Snapshot {snapshot_id!r} has an unversioned manifest",
                remediation="Legacy snapshots contain metadata only; run a fresh install.",
            )
        try:
            return Snapshot.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"Snapshot {snapshot_id!r} manifest is invalid: {exc}") from exc

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, snapshot: Snapshot) -> list[tuple[SnapshotArtifact, Checksum | None]]:
        """Re-hash every object a snapshot references.

        Returns the failing entries with the observed checksum (None when
        the object is missing). An empty list means the snapshot is intact.
        """
        failures: list[tuple[SnapshotArtifact, Checksum | None]] = []
        for entry in snapshot.artifacts:
            ok, observed = verify_file(
                self.object_path(entry.checksum), entry.checksum, chunk_size=self._chunk_size
            )
            if not ok:
                failures.append((entry, observed))
        return failures

    def _new_id(self, created_at: datetime, lockfile_digest: str) -> str:
        base = f"{created_at.strftime('%Y%m%dT%H%M%S%fZ')}-{lockfile_digest[:8]}"
        candidate = base
        counter = 1
        while (self._root / candidate).exists():
            counter += 1
            candidate = f"{base}-{counter}"
        return candidate

