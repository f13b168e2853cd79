"""On-disk layout of an instance root.

    <root>/pack/manifest.json     desired-state descriptor (read-only input)
    <root>/pack/lock.json         the lockfile
    <root>/live/...               the installed tree
    <root>/.staging/...           downloaded, not yet promoted
    <root>/.quarantine/...        removed or corrupted live files
    <root>/.snapshots/<id>/...    last-known-good manifests
    <root>/.install.lock          advisory instance lock

All paths handed out by this module are guaranteed to stay inside the root.
"""

from __future__ import annotations

from pathlib import Path

from packsmith.core.errors import ConfigError
from packsmith.models.lockfile import validate_relative_path


class InstanceLayout:
    """Resolves every engine path relative to one instance root.

    Parameters
    ----------
    root:
        The instance directory. Created on demand by ``ensure()``.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def pack_dir(self) -> Path:
        return self._root / "pack"

    @property
    def manifest_path(self) -> Path:
        return self.pack_dir / "manifest.json"

    @property
    def lockfile_path(self) -> Path:
        return self.pack_dir / "lock.json"

    @property
    def lock_history_dir(self) -> Path:
        return self.pack_dir / "lock-history"

    @property
    def lock_audit_path(self) -> Path:
        return self.pack_dir / "lock-audit.jsonl"

    @property
    def live_root(self) -> Path:
        return self._root / "live"

    @property
    def staging_root(self) -> Path:
        return self._root / ".staging"

    @property
    def quarantine_root(self) -> Path:
        return self._root / ".quarantine"

    @property
    def snapshot_root(self) -> Path:
        return self._root / ".snapshots"

    @property
    def lock_path(self) -> Path:
        return self._root / ".install.lock"

    def ensure(self) -> None:
        """Create the directories the engine writes into."""
        for directory in (
            self.pack_dir,
            self.live_root,
            self.staging_root,
            self.quarantine_root,
            self.snapshot_root,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def live_path(self, relative_path: str) -> Path:
        """Absolute live path for an artifact's relative path."""
        return contained_path(self.live_root, relative_path)

    def staging_path(self, relative_path: str) -> Path:
        return contained_path(self.staging_root, relative_path)


def contained_path(base: Path, relative_path: str) -> Path:
    """Join ``relative_path`` onto ``base`` and refuse anything that escapes.

    Symlinks already present under ``base`` are resolved before the
    containment check.
    """
    try:
        normalized = validate_relative_path(relative_path)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    base = base.resolve()
    candidate = (base / normalized).resolve()
    if not candidate.is_relative_to(base):
        raise ConfigError(
            f"Path {relative_path!r} resolves outside {base}",
            remediation="Remove symlinks inside the instance directory and retry.",
        )
    return candidate
