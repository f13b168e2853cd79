"""Install planner — diffs a lockfile against the live tree.

Planning never touches the network. Unsupported artifact kinds abort the
plan before any file is hashed.
"""

from __future__ import annotations

import logging

from packsmith.core.context import InstallContext
from packsmith.core.errors import UnsupportedArtifactKind
from packsmith.core.hasher import verify_file
from packsmith.core.lockfile_store import digest_of
from packsmith.models.lockfile import MANAGED_RUNTIME_KIND, Artifact, Lockfile
from packsmith.models.plan import (
    ACTION_FOR_STATE,
    ArtifactInspection,
    ArtifactState,
    InstallPlan,
    PlannedAction,
    StatusReport,
)

logger = logging.getLogger(__name__)


class InstallPlanner:
    """Computes per-artifact state and the resulting action list.

    Parameters
    ----------
    context:
        Supplies the live root and hashing chunk size.
    """

    def __init__(self, context: InstallContext) -> None:
        self._ctx = context

    def inspect(self, artifact: Artifact) -> ArtifactInspection:
        """State of one artifact's live path."""
        if not artifact.is_supported:
            return ArtifactInspection(artifact=artifact, state=ArtifactState.UNSUPPORTED_KIND)
        live = self._ctx.layout.live_path(artifact.relative_path)
        if not live.exists():
            return ArtifactInspection(artifact=artifact, state=ArtifactState.MISSING)
        matches, observed = verify_file(
            live, artifact.checksum, chunk_size=self._ctx.config.chunk_size
        )
        state = ArtifactState.SATISFIED if matches else ArtifactState.CHECKSUM_MISMATCH
        return ArtifactInspection(artifact=artifact, state=state, observed=observed)

    def plan(self, lockfile: Lockfile) -> InstallPlan:
        """Ordered actions that bring the live tree to ``lockfile``.

        Raises ``UnsupportedArtifactKind`` naming every artifact this engine
        cannot install.
        """
        self.check_supported(lockfile)
        actions: list[PlannedAction] = []
        for artifact in lockfile.artifacts:
            inspection = self.inspect(artifact)
            actions.append(
                PlannedAction(
                    artifact=artifact,
                    action=ACTION_FOR_STATE[inspection.state],
                    state=inspection.state,
                    observed=inspection.observed,
                )
            )
        plan = InstallPlan(
            pinned_version_id=lockfile.pinned_version_id,
            lockfile_digest=digest_of(lockfile),
            actions=actions,
        )
        logger.info("Planned %s: %s", lockfile.pinned_version_id, plan.counts())
        return plan

    def status(self, lockfile: Lockfile) -> StatusReport:
        """Read-only report; unsupported kinds are listed rather than raised."""
        return StatusReport(
            pinned_version_id=lockfile.pinned_version_id,
            pack_id=lockfile.pack_id,
            pack_version=lockfile.pack_version,
            artifacts=[self.inspect(a) for a in lockfile.artifacts],
        )

    @staticmethod
    def check_supported(lockfile: Lockfile) -> None:
        unsupported = [a for a in lockfile.artifacts if not a.is_supported]
        if not unsupported:
            return
        names = [a.name for a in unsupported]
        kinds = sorted({a.kind for a in unsupported})
        if MANAGED_RUNTIME_KIND in kinds:
            remediation = (
                "This engine does not support managed runtime installation yet. "
                "Delete pack/lock.json and regenerate it, or upgrade the engine."
            )
        else:
            remediation = None
        raise UnsupportedArtifactKind(
            f"Lockfile contains artifact kind(s) {', '.join(kinds)} this engine cannot "
            f"install: {', '.join(names)}",
            remediation=remediation,
            artifacts=names,
        )
