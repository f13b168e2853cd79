"""Install engine — the entry point that wires the subsystems together.

The engine owns one ``InstallContext`` and hands it to the lockfile store,
planner, executor and recovery coordinator. Every mutating operation runs
under the instance lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from packsmith.config import EngineConfig
from packsmith.core.context import InstallContext
from packsmith.core.downloader import Downloader
from packsmith.core.errors import DownloadIntegrityFailure
from packsmith.core.executor import InstallExecutor
from packsmith.core.lockfile_store import LockfileStore, check_drift, load_desired_state
from packsmith.core.planner import InstallPlanner
from packsmith.core.recovery import RecoveryCoordinator
from packsmith.core.resolver import MojangResolver, UpstreamResolver
from packsmith.core.snapshot_store import SnapshotIntegrityError
from packsmith.models.lockfile import DesiredState, Lockfile
from packsmith.models.plan import InstallPlan, StatusReport
from packsmith.models.results import (
    ExecutionOutcome,
    InstallResult,
    RecoveryState,
    RollbackResult,
)
from packsmith.models.snapshot import QuarantineRecord, Snapshot

logger = logging.getLogger(__name__)


class InstallEngine:
    """Deterministic install and recovery for one instance root.

    Parameters
    ----------
    instance_root:
        Directory holding ``pack/``, ``live/`` and the engine's stores.
    config:
        Engine configuration. Uses ``EngineConfig()`` if not provided.
    resolver:
        Upstream resolver used only when a lockfile must be generated.
        Defaults to ``MojangResolver`` built on the engine's downloader.
    downloader:
        Optional pre-built downloader (tests inject a mock transport).
    clock:
        Source of ``generatedAt`` timestamps for new lockfiles.
    """

    def __init__(
        self,
        instance_root: Path,
        config: EngineConfig | None = None,
        *,
        resolver: UpstreamResolver | None = None,
        downloader: Downloader | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.context = InstallContext(instance_root, config, downloader=downloader)
        self.lockfiles = LockfileStore(
            self.context.layout,
            clock=clock or (lambda: datetime.now(timezone.utc)),
        )
        self.planner = InstallPlanner(self.context)
        self.executor = InstallExecutor(self.context)
        self.recovery = RecoveryCoordinator(self.context)
        self._resolver = resolver

    @property
    def config(self) -> EngineConfig:
        return self.context.config

    @property
    def resolver(self) -> UpstreamResolver:
        if self._resolver is None:
            self._resolver = MojangResolver(self.context.config, self.context.downloader)
        return self._resolver

    def close(self) -> None:
        self.context.close()

    def __enter__(self) -> InstallEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Lockfile
    # ------------------------------------------------------------------

    def generate_lockfile(
        self,
        desired: DesiredState | None = None,
        *,
        regenerate: bool = False,
        reason: str = "",
    ) -> Lockfile:
        """Create ``pack/lock.json``; replacing one requires ``regenerate`` and a reason."""
        with self.context.instance_lock():
            self.context.layout.ensure()
            desired = desired or load_desired_state(self.context.layout)
            if regenerate:
                return self.lockfiles.regenerate(desired, self.resolver, reason=reason)
            return self.lockfiles.generate(desired, self.resolver)

    def resolve_lockfile(self, source: Lockfile | DesiredState | None = None) -> Lockfile:
        """The lockfile an operation should use.

        A ``Lockfile`` is used as given. A ``DesiredState`` loads the matching
        lockfile or generates one. With no source, the existing lockfile is
        loaded (checked against ``pack/manifest.json`` if present), or one is
        generated from the manifest.
        """
        if isinstance(source, Lockfile):
            return source
        if source is None:
            layout = self.context.layout
            if self.lockfiles.exists():
                lockfile = self.lockfiles.load()
                if layout.manifest_path.is_file():
                    for drift in check_drift(load_desired_state(layout), lockfile):
                        logger.warning("Pack descriptor differs from lockfile: %s", drift)
                return lockfile
            source = load_desired_state(layout)
        return self.lockfiles.load_or_generate(source, self.resolver)

    # ------------------------------------------------------------------
    # Outbound operations
    # ------------------------------------------------------------------

    def install(self, source: Lockfile | DesiredState | None = None) -> InstallResult:
        """Bring the live tree to the lockfile, resuming or rolling back as needed."""
        with self.context.instance_lock():
            self.context.layout.ensure()
            lockfile = self.resolve_lockfile(source)
            plan = self.planner.plan(lockfile)
            assessment = self.recovery.assess(plan)
            return self._apply(lockfile, plan, assessment.state)

    def repair(
        self, names: list[str], lockfile: Lockfile | None = None
    ) -> InstallResult:
        """Re-verify only ``names``; quarantine and re-fetch those that fail."""
        with self.context.instance_lock():
            self.context.layout.ensure()
            lockfile = lockfile or self.lockfiles.load()
            self.planner.check_supported(lockfile)
            plan, quarantined = self.recovery.plan_repair(lockfile, names)
            state = RecoveryState.CORRUPT_LIVE if plan.fetch_actions else RecoveryState.CLEAN
            return self._apply(
                lockfile, plan, state, record_snapshot=False, quarantined_before=quarantined
            )

    def status(self, lockfile: Lockfile | None = None) -> StatusReport:
        """Read-only comparison of the live tree with the lockfile."""
        return self.planner.status(lockfile or self.lockfiles.load())

    def rollback(self, snapshot_id: str | None = None) -> RollbackResult:
        """Restore from ``snapshot_id`` or the newest intact snapshot."""
        with self.context.instance_lock():
            self.context.layout.ensure()
            return self.recovery.rollback(snapshot_id)

    def snapshots(self) -> list[Snapshot]:
        return self.context.snapshots.list_snapshots()

    def quarantine_entries(self) -> list[QuarantineRecord]:
        return self.context.quarantine.list_entries()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        lockfile: Lockfile,
        plan: InstallPlan,
        state: RecoveryState,
        *,
        record_snapshot: bool = True,
        quarantined_before: list[str] | None = None,
    ) -> InstallResult:
        try:
            outcome = self.executor.execute(plan)
        except DownloadIntegrityFailure as exc:
            return self._roll_back_after(exc, lockfile, plan, state)

        snapshot_id = None
        if record_snapshot:
            snapshot_id = self._maybe_snapshot(lockfile, plan, outcome)
        if plan.fetch_actions:
            self.context.staging.clear()

        result = InstallResult(
            pinned_version_id=lockfile.pinned_version_id,
            satisfied_count=len(outcome.satisfied),
            fetched_count=len(outcome.fetched),
            quarantined_count=len(outcome.quarantined) + len(quarantined_before or []),
            resumed_count=len(outcome.resumed),
            snapshot_id=snapshot_id,
            recovery_state=state,
        )
        logger.info(
            "Install of %s complete: %d satisfied, %d fetched, %d resumed, %d quarantined",
            result.pinned_version_id,
            result.satisfied_count,
            result.fetched_count,
            result.resumed_count,
            result.quarantined_count,
        )
        return result

    def _roll_back_after(
        self,
        error: DownloadIntegrityFailure,
        lockfile: Lockfile,
        plan: InstallPlan,
        state: RecoveryState,
    ) -> InstallResult:
        rollback = self.recovery.recover(error, plan.lockfile_digest)
        after = self.planner.plan(lockfile)
        if not after.is_satisfied:
            remaining = [a.artifact.name for a in after.fetch_actions]
            raise DownloadIntegrityFailure(
                f"{error.message}; rolled back to snapshot {rollback.snapshot_id} but "
                f"{len(remaining)} artifact(s) remain unsatisfied",
                artifacts=remaining,
            ) from error
        logger.warning(
            "Install of %s recovered by rollback to %s", lockfile.pinned_version_id, rollback.snapshot_id
        )
        return InstallResult(
            pinned_version_id=lockfile.pinned_version_id,
            satisfied_count=len(after.actions),
            fetched_count=0,
            quarantined_count=len(rollback.quarantined),
            rolled_back_to=rollback.snapshot_id,
            recovery_state=state,
        )

    def _maybe_snapshot(
        self, lockfile: Lockfile, plan: InstallPlan, outcome: ExecutionOutcome
    ) -> str | None:
        if not self.config.snapshot_after_install:
            return None
        existing = self.context.snapshots.find_for_digest(plan.lockfile_digest)
        if existing is not None and not plan.fetch_actions:
            return existing.id
        try:
            return self.context.snapshots.record(lockfile, plan.lockfile_digest).id
        except SnapshotIntegrityError as exc:
            logger.error("Install succeeded but no snapshot was recorded: %s", exc)
            return None
