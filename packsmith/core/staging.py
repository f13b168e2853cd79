"""Staging area — downloaded bytes waiting to be verified and promoted.

Entries mirror the artifact's relative path under ``.staging/``. An entry is
only trusted after its checksum is re-verified, so bytes left behind by a
crashed run can be resumed or discarded safely.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from packsmith.core.downloader import PART_SUFFIX
from packsmith.core.hasher import verify_file
from packsmith.core.layout import InstanceLayout
from packsmith.models.lockfile import Artifact, Checksum

logger = logging.getLogger(__name__)


class StagingArea:
    """Ephemeral per-instance workspace under ``<root>/.staging``."""

    def __init__(self, layout: InstanceLayout, *, chunk_size: int = 1024 * 1024) -> None:
        self._layout = layout
        self._root = layout.staging_root
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, artifact: Artifact) -> Path:
        """Where the staged copy of ``artifact`` lives."""
        return self._layout.staging_path(artifact.relative_path)

    def has_entry(self, artifact: Artifact) -> bool:
        return self.path_for(artifact).is_file()

    def verify(self, artifact: Artifact) -> tuple[bool, Checksum | None]:
        """Hash the staged entry against the lockfile checksum."""
        return verify_file(self.path_for(artifact), artifact.checksum, chunk_size=self._chunk_size)

    def discard(self, artifact: Artifact) -> None:
        """Delete a staged entry and any partial download beside it."""
        path = self.path_for(artifact)
        path.unlink(missing_ok=True)
        path.with_name(path.name + PART_SUFFIX).unlink(missing_ok=True)

    def entries(self) -> list[str]:
        """Relative paths of every complete staged file."""
        if not self._root.is_dir():
            return []
        return sorted(
            p.relative_to(self._root).as_posix()
            for p in self._root.rglob("*")
            if p.is_file() and not p.name.endswith(PART_SUFFIX)
        )

    def partials(self) -> list[Path]:
        """Interrupted downloads."""
        if not self._root.is_dir():
            return []
        return sorted(p for p in self._root.rglob(f"*{PART_SUFFIX}") if p.is_file())

    def discard_relative(self, relative_path: str) -> None:
        self._layout.staging_path(relative_path).unlink(missing_ok=True)

    def clear(self) -> None:
        """Remove the whole staging tree (after a fully successful run)."""
        if self._root.exists():
            shutil.rmtree(self._root)
        self._root.mkdir(parents=True, exist_ok=True)
