"""Recovery coordinator — resume, repair, roll back, or fail loudly.

Every attempt starts with ``assess()``, which classifies the instance as
one of the ``RecoveryState`` values and cleans up staging bytes that cannot
be trusted. Rollback restores from a snapshot using only the snapshot
manifest as authority; no resolver or remote metadata is involved.
"""

from __future__ import annotations

import logging
import os
import shutil

from packsmith.core.context import InstallContext
from packsmith.core.errors import (
    ConfigError,
    EngineError,
    NoRecoveryPathAvailable,
    PromotionFailure,
)
from packsmith.core.events import Authority, Decision, DecisionEvent, emit
from packsmith.core.hasher import verify_file
from packsmith.core.layout import contained_path
from packsmith.core.lockfile_store import digest_of
from packsmith.models.lockfile import Lockfile
from packsmith.models.plan import ActionKind, ArtifactState, InstallPlan, PlannedAction
from packsmith.models.results import (
    RECOVERY_STATE_PRECEDENCE,
    RecoveryAssessment,
    RecoveryState,
    RollbackResult,
)
from packsmith.models.snapshot import Snapshot

logger = logging.getLogger(__name__)

ROLLBACK_STAGING_DIR = ".rollback"


class RecoveryCoordinator:
    """Decides between resume, repair and rollback around the executor.

    Parameters
    ----------
    context:
        Supplies the staging area, quarantine store and snapshot store.
    """

    def __init__(self, context: InstallContext) -> None:
        self._ctx = context

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def assess(self, plan: InstallPlan) -> RecoveryAssessment:
        """Classify the instance before an install attempt.

        Staged files needed by ``plan`` that still verify are kept for
        resume; partial downloads, stale entries and corrupted entries are
        discarded.
        """
        staging = self._ctx.staging
        by_path = {a.artifact.relative_path: a for a in plan.fetch_actions}
        resumable: list[str] = []
        discarded: list[str] = []

        for partial in staging.partials():
            partial.unlink(missing_ok=True)
            discarded.append(partial.relative_to(staging.root).as_posix())

        for relative_path in staging.entries():
            action = by_path.get(relative_path)
            if action is None:
                staging.discard_relative(relative_path)
                discarded.append(relative_path)
                continue
            ok, observed = staging.verify(action.artifact)
            emit(logger, DecisionEvent(
                event="recovery_assess",
                decision=Decision.RESUME if ok else Decision.DISCARD_STAGED,
                artifact=action.artifact.name,
                expected=action.artifact.checksum,
                observed=observed,
            ), logging.INFO if ok else logging.WARNING)
            if ok:
                resumable.append(action.artifact.name)
            else:
                staging.discard(action.artifact)
                discarded.append(relative_path)

        corrupt: list[str] = []
        for action in plan.actions:
            if action.state is ArtifactState.CHECKSUM_MISMATCH:
                corrupt.append(action.artifact.name)
                emit(logger, DecisionEvent(
                    event="recovery_assess",
                    decision=Decision.REPAIR,
                    artifact=action.artifact.name,
                    expected=action.artifact.checksum,
                    observed=action.observed,
                ), logging.WARNING)

        latest = self._ctx.snapshots.latest()
        applicable = {
            RecoveryState.CORRUPT_LIVE: bool(corrupt),
            RecoveryState.RESUMABLE_STAGING: bool(resumable),
            RecoveryState.NO_SNAPSHOT: bool(plan.fetch_actions) and latest is None,
            RecoveryState.CLEAN: True,
        }
        state = next(s for s in RECOVERY_STATE_PRECEDENCE if applicable[s])
        if discarded:
            logger.info("Discarded %d untrusted staging entries", len(discarded))
        logger.info("Recovery assessment for %s: %s", plan.pinned_version_id, state.value)
        return RecoveryAssessment(
            state=state,
            resumable=sorted(resumable),
            corrupt=corrupt,
            discarded_staging=sorted(discarded),
            snapshot_id=latest.id if latest else None,
        )

    # ------------------------------------------------------------------
    # Opportunistic repair
    # ------------------------------------------------------------------

    def plan_repair(
        self, lockfile: Lockfile, names: list[str]
    ) -> tuple[InstallPlan, list[str]]:
        """Quarantine the named artifacts if they fail verification and plan their fetch.

        Only the named artifacts are hashed; siblings are left alone. Returns
        the plan and the names whose live files were moved to quarantine.
        """
        unknown = [n for n in names if lockfile.get(n) is None]
        if unknown:
            raise ConfigError(
                f"Artifacts not in the lockfile: {', '.join(unknown)}", artifacts=unknown
            )
        actions: list[PlannedAction] = []
        quarantined: list[str] = []
        for name in dict.fromkeys(names):
            artifact = lockfile.get(name)
            live = self._ctx.layout.live_path(artifact.relative_path)
            ok, observed = verify_file(
                live, artifact.checksum, chunk_size=self._ctx.config.chunk_size
            )
            if ok:
                actions.append(PlannedAction(
                    artifact=artifact,
                    action=ActionKind.NOOP,
                    state=ArtifactState.SATISFIED,
                    observed=observed,
                ))
                continue
            if observed is not None:
                emit(logger, DecisionEvent(
                    event="repair",
                    decision=Decision.QUARANTINE,
                    artifact=artifact.name,
                    expected=artifact.checksum,
                    observed=observed,
                ), logging.WARNING)
                self._ctx.quarantine.quarantine(
                    live,
                    name=artifact.name,
                    relative_path=artifact.relative_path,
                    expected=artifact.checksum,
                    observed=observed,
                )
                quarantined.append(artifact.name)
            emit(logger, DecisionEvent(
                event="repair",
                decision=Decision.FETCH,
                artifact=artifact.name,
                expected=artifact.checksum,
                observed=observed,
            ))
            actions.append(PlannedAction(
                artifact=artifact,
                action=ActionKind.FETCH,
                state=ArtifactState.MISSING if observed is None else ArtifactState.CHECKSUM_MISMATCH,
                observed=observed,
            ))
        plan = InstallPlan(
            pinned_version_id=lockfile.pinned_version_id,
            lockfile_digest=digest_of(lockfile),
            actions=actions,
        )
        return plan, quarantined

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def recover(self, error: EngineError, lockfile_digest: str) -> RollbackResult:
        """Roll back after the executor gave up, or raise ``NoRecoveryPathAvailable``.

        Only snapshots recorded for the lockfile being installed are
        eligible. Without one the live tree is left exactly as the failed
        attempt left it.
        """
        candidates = [
            s for s in self._ctx.snapshots.list_snapshots()
            if s.lockfile_digest == lockfile_digest
        ]
        if not candidates:
            emit(logger, DecisionEvent(
                event="recovery",
                decision=Decision.FAIL,
                detail=f"no snapshot of lockfile {lockfile_digest[:12]} to roll back to",
            ), logging.ERROR)
            raise NoRecoveryPathAvailable(
                f"Install failed and no snapshot of this lockfile exists to roll back to: "
                f"{error.message}",
                artifacts=error.artifacts,
            ) from error
        try:
            return self._rollback_from(candidates, explicit=False)
        except NoRecoveryPathAvailable as exc:
            raise NoRecoveryPathAvailable(
                f"Install failed ({error.message}) and rollback was impossible: {exc.message}",
                artifacts=error.artifacts,
            ) from error

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def rollback(self, snapshot_id: str | None = None) -> RollbackResult:
        """Restore the live tree from a snapshot.

        With no ``snapshot_id`` the newest intact snapshot is used; damaged
        snapshots are skipped. An explicitly requested snapshot that fails
        verification is an error.
        """
        if snapshot_id is not None:
            candidates = [self._ctx.snapshots.load(snapshot_id)]
        else:
            candidates = self._ctx.snapshots.list_snapshots()
        return self._rollback_from(candidates, explicit=snapshot_id is not None)

    def _rollback_from(self, candidates: list[Snapshot], *, explicit: bool) -> RollbackResult:
        emit(logger, DecisionEvent(
            event="rollback_start",
            decision=Decision.ROLLBACK,
            authority=Authority.SNAPSHOT,
            snapshot_id=candidates[0].id if explicit else None,
        ))
        if not candidates:
            raise NoRecoveryPathAvailable("No snapshot is available to roll back to")

        for snapshot in candidates:
            failures = self._ctx.snapshots.verify(snapshot)
            if not failures:
                emit(logger, DecisionEvent(
                    event="rollback_snapshot_selected",
                    decision=Decision.ROLLBACK,
                    authority=Authority.SNAPSHOT,
                    snapshot_id=snapshot.id,
                ))
                return self._restore(snapshot)
            for entry, observed in failures:
                emit(logger, DecisionEvent(
                    event="rollback_verify_failed",
                    decision=Decision.SKIP_SNAPSHOT,
                    authority=Authority.SNAPSHOT,
                    artifact=entry.name,
                    expected=entry.checksum,
                    observed=observed,
                    snapshot_id=snapshot.id,
                ), logging.ERROR)
            if explicit:
                raise NoRecoveryPathAvailable(
                    f"Snapshot {snapshot.id} is damaged: {len(failures)} object(s) fail verification",
                    artifacts=[entry.name for entry, _ in failures],
                )

        raise NoRecoveryPathAvailable("Every available snapshot is damaged")

    def _restore(self, snapshot: Snapshot) -> RollbackResult:
        layout = self._ctx.layout
        chunk = self._ctx.config.chunk_size
        tmp_root = layout.staging_root / ROLLBACK_STAGING_DIR / snapshot.id
        restored: list[str] = []
        unchanged: list[str] = []
        quarantined: list[str] = []

        for entry in snapshot.artifacts:
            live = layout.live_path(entry.relative_path)
            ok, observed = verify_file(live, entry.checksum, chunk_size=chunk)
            if ok:
                emit(logger, DecisionEvent(
                    event="rollback_verify_live",
                    decision=Decision.UNCHANGED,
                    authority=Authority.SNAPSHOT,
                    artifact=entry.name,
                    expected=entry.checksum,
                    observed=observed,
                    snapshot_id=snapshot.id,
                ), logging.DEBUG)
                unchanged.append(entry.name)
                continue

            emit(logger, DecisionEvent(
                event="rollback_verify_start",
                decision=Decision.RESTORE,
                authority=Authority.SNAPSHOT,
                artifact=entry.name,
                expected=entry.checksum,
                observed=observed,
                snapshot_id=snapshot.id,
            ))
            staged = contained_path(tmp_root, entry.relative_path)
            staged.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self._ctx.snapshots.object_path(entry.checksum), staged)
            staged_ok, staged_observed = verify_file(staged, entry.checksum, chunk_size=chunk)
            if not staged_ok:
                staged.unlink(missing_ok=True)
                raise NoRecoveryPathAvailable(
                    f"Snapshot object for {entry.name} changed during rollback "
                    f"(observed {staged_observed.prefix if staged_observed else 'nothing'})",
                    artifacts=[entry.name],
                )

            if observed is not None:
                self._ctx.quarantine.quarantine(
                    live,
                    name=entry.name,
                    relative_path=entry.relative_path,
                    expected=entry.checksum,
                    observed=observed,
                    reason="rollback",
                )
                quarantined.append(entry.name)

            try:
                live.parent.mkdir(parents=True, exist_ok=True)
                os.replace(staged, live)
            except OSError as exc:
                emit(logger, DecisionEvent(
                    event="rollback_promote_failed",
                    decision=Decision.FAIL,
                    authority=Authority.SNAPSHOT,
                    artifact=entry.name,
                    expected=entry.checksum,
                    snapshot_id=snapshot.id,
                ), logging.ERROR)
                raise PromotionFailure(
                    f"{entry.name}: could not restore {entry.relative_path}: {exc}",
                    artifacts=[entry.name],
                ) from exc

            final_ok, final_observed = verify_file(live, entry.checksum, chunk_size=chunk)
            if not final_ok:
                raise PromotionFailure(
                    f"{entry.name}: restored file does not verify "
                    f"(observed {final_observed.prefix if final_observed else 'nothing'})",
                    artifacts=[entry.name],
                )
            emit(logger, DecisionEvent(
                event="rollback_promote_ok",
                decision=Decision.RESTORE,
                authority=Authority.SNAPSHOT,
                artifact=entry.name,
                expected=entry.checksum,
                observed=final_observed,
                snapshot_id=snapshot.id,
            ))
            restored.append(entry.name)

        if tmp_root.exists():
            shutil.rmtree(tmp_root)
        emit(logger, DecisionEvent(
            event="rollback_complete",
            decision=Decision.ROLLBACK,
            authority=Authority.SNAPSHOT,
            snapshot_id=snapshot.id,
            detail=f"restored {len(restored)}, unchanged {len(unchanged)}",
        ))
        return RollbackResult(
            snapshot_id=snapshot.id,
            restored=restored,
            unchanged=unchanged,
            quarantined=quarantined,
        )
