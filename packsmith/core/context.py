"""Install context — every collaborator an install step needs, passed explicitly.

Nothing in the engine reaches for globals: the planner, executor and
recovery coordinator all receive one ``InstallContext``.
"""

from __future__ import annotations

from pathlib import Path

from packsmith.config import EngineConfig
from packsmith.core.downloader import Downloader
from packsmith.core.instance_lock import InstanceLock
from packsmith.core.layout import InstanceLayout
from packsmith.core.quarantine import QuarantineStore
from packsmith.core.snapshot_store import SnapshotStore
from packsmith.core.staging import StagingArea


class InstallContext:
    """Layout, config and stores for one instance root.

    Parameters
    ----------
    instance_root:
        Directory holding ``pack/``, ``live/`` and the engine's hidden stores.
    config:
        Engine configuration. Defaults to ``EngineConfig()`` (environment).
    downloader:
        Optional pre-built downloader; one is created from ``config`` otherwise.
    """

    def __init__(
        self,
        instance_root: Path,
        config: EngineConfig | None = None,
        *,
        downloader: Downloader | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.layout = InstanceLayout(instance_root)
        self.downloader = downloader or Downloader(self.config)
        self.staging = StagingArea(self.layout, chunk_size=self.config.chunk_size)
        self.quarantine = QuarantineStore(self.layout)
        self.snapshots = SnapshotStore(self.layout, chunk_size=self.config.chunk_size)

    def instance_lock(self) -> InstanceLock:
        """A fresh advisory lock for this instance root."""
        return InstanceLock(self.layout.lock_path, stale_after=self.config.lock_stale_seconds)

    def close(self) -> None:
        self.downloader.close()
