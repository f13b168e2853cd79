"""Install executor — download, stage, verify, promote.

Downloads run on a bounded pool. Each verified staged file is handed to a
separate promotion pool where a per-path lock serializes writers, and the
bytes enter the live tree through exactly one ``os.replace``. A live file
that does not match its checksum is moved into quarantine immediately
before the rename.

The first failure cancels downloads that have not started; downloads and
promotions already in flight finish, so their progress survives for the
next run.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from packsmith.core.context import InstallContext
from packsmith.core.errors import DownloadIntegrityFailure, PromotionFailure
from packsmith.core.events import Decision, DecisionEvent, emit
from packsmith.core.hasher import verify_file
from packsmith.models.plan import InstallPlan, PlannedAction
from packsmith.models.results import ExecutionOutcome

logger = logging.getLogger(__name__)


class InstallExecutor:
    """Applies an ``InstallPlan`` to the live tree.

    Parameters
    ----------
    context:
        Supplies the downloader, staging area, quarantine store and pool sizes.
    """

    def __init__(self, context: InstallContext) -> None:
        self._ctx = context
        self._path_locks: dict[Path, threading.Lock] = {}
        self._path_locks_guard = threading.Lock()

    def execute(self, plan: InstallPlan) -> ExecutionOutcome:
        """Run every fetch action in ``plan``; no-op actions are left untouched."""
        satisfied = [a.artifact.name for a in plan.noop_actions]
        fetch_actions = plan.fetch_actions
        if not fetch_actions:
            return ExecutionOutcome(satisfied=satisfied)

        fetched: list[str] = []
        resumed: list[str] = []
        promoted: list[str] = []
        quarantined: list[str] = []
        failure: Exception | None = None
        cfg = self._ctx.config

        with ThreadPoolExecutor(
            max_workers=cfg.download_workers, thread_name_prefix="packsmith-fetch"
        ) as fetch_pool, ThreadPoolExecutor(
            max_workers=cfg.promote_workers, thread_name_prefix="packsmith-promote"
        ) as promote_pool:
            staging_futures: dict[Future[bool], PlannedAction] = {
                fetch_pool.submit(self._stage, action): action for action in fetch_actions
            }
            promote_futures: dict[Future[bool], PlannedAction] = {}

            for future in as_completed(staging_futures):
                if future.cancelled():
                    continue
                action = staging_futures[future]
                try:
                    was_resumed = future.result()
                except Exception as exc:
                    if failure is None:
                        failure = exc
                        cancelled = sum(1 for f in staging_futures if f.cancel())
                        if cancelled:
                            logger.warning("Cancelled %d queued download(s) after failure", cancelled)
                    continue
                (resumed if was_resumed else fetched).append(action.artifact.name)
                promote_futures[promote_pool.submit(self._promote, action)] = action

            for future in as_completed(promote_futures):
                action = promote_futures[future]
                try:
                    moved_aside = future.result()
                except Exception as exc:
                    if failure is None:
                        failure = exc
                    continue
                promoted.append(action.artifact.name)
                if moved_aside:
                    quarantined.append(action.artifact.name)

        if failure is not None:
            logger.error(
                "Install of %s stopped: %s (%d promoted before failure)",
                plan.pinned_version_id,
                failure,
                len(promoted),
            )
            raise failure

        return ExecutionOutcome(
            satisfied=satisfied + promoted,
            fetched=sorted(fetched),
            resumed=sorted(resumed),
            quarantined=sorted(quarantined),
        )

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _stage(self, action: PlannedAction) -> bool:
        """Ensure a verified staged copy exists. Returns True if it was resumed."""
        artifact = action.artifact
        staging = self._ctx.staging

        if staging.has_entry(artifact):
            ok, observed = staging.verify(artifact)
            if ok:
                emit(logger, DecisionEvent(
                    event="staging_resume",
                    decision=Decision.RESUME,
                    artifact=artifact.name,
                    expected=artifact.checksum,
                    observed=observed,
                ))
                return True
            emit(logger, DecisionEvent(
                event="staging_resume",
                decision=Decision.DISCARD_STAGED,
                artifact=artifact.name,
                expected=artifact.checksum,
                observed=observed,
            ), logging.WARNING)
            staging.discard(artifact)

        dest = staging.path_for(artifact)
        attempts = self._ctx.config.max_integrity_attempts
        observed = None
        for attempt in range(1, attempts + 1):
            try:
                self._ctx.downloader.download(artifact.source_url, dest)
            except DownloadIntegrityFailure as exc:
                raise DownloadIntegrityFailure(
                    f"{artifact.name}: {exc.message}", artifacts=[artifact.name]
                ) from exc
            ok, observed = staging.verify(artifact)
            if ok:
                emit(logger, DecisionEvent(
                    event="download_verify",
                    decision=Decision.FETCH,
                    artifact=artifact.name,
                    expected=artifact.checksum,
                    observed=observed,
                ), logging.DEBUG)
                return False
            staging.discard(artifact)
            emit(logger, DecisionEvent(
                event="download_verify",
                decision=Decision.RETRY_DOWNLOAD if attempt < attempts else Decision.FAIL,
                artifact=artifact.name,
                expected=artifact.checksum,
                observed=observed,
                detail=f"attempt {attempt}/{attempts}",
            ), logging.WARNING)

        raise DownloadIntegrityFailure(
            f"{artifact.name}: downloaded bytes never matched "
            f"{artifact.checksum.algorithm} {artifact.checksum.prefix} "
            f"(last observed {observed.prefix if observed else 'nothing'}) "
            f"after {attempts} attempt(s)",
            artifacts=[artifact.name],
        )

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._path_locks_guard:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = self._path_locks[path] = threading.Lock()
            return lock

    def _promote(self, action: PlannedAction) -> bool:
        """Rename the staged file into place. Returns True if a live file was quarantined."""
        artifact = action.artifact
        live = self._ctx.layout.live_path(artifact.relative_path)
        staged = self._ctx.staging.path_for(artifact)

        with self._lock_for(live):
            moved_aside = False
            if live.is_dir():
                raise PromotionFailure(
                    f"{artifact.name}: live path {artifact.relative_path} is a directory",
                    artifacts=[artifact.name],
                )
            if live.exists():
                ok, observed = verify_file(
                    live, artifact.checksum, chunk_size=self._ctx.config.chunk_size
                )
                if ok:
                    # Someone else already put the right bytes in place.
                    self._ctx.staging.discard(artifact)
                    return False
                emit(logger, DecisionEvent(
                    event="promote",
                    decision=Decision.QUARANTINE,
                    artifact=artifact.name,
                    expected=artifact.checksum,
                    observed=observed,
                ), logging.WARNING)
                try:
                    self._ctx.quarantine.quarantine(
                        live,
                        name=artifact.name,
                        relative_path=artifact.relative_path,
                        expected=artifact.checksum,
                        observed=observed,
                    )
                except OSError as exc:
                    raise PromotionFailure(
                        f"{artifact.name}: could not quarantine {artifact.relative_path}: {exc}",
                        artifacts=[artifact.name],
                    ) from exc
                moved_aside = True

            try:
                live.parent.mkdir(parents=True, exist_ok=True)
                os.replace(staged, live)
            except OSError as exc:
                raise PromotionFailure(
                    f"{artifact.name}: could not promote to {artifact.relative_path}: {exc}",
                    artifacts=[artifact.name],
                ) from exc

        emit(logger, DecisionEvent(
            event="promote",
            decision=Decision.PROMOTE,
            artifact=artifact.name,
            expected=artifact.checksum,
        ), logging.DEBUG)
        return moved_aside
