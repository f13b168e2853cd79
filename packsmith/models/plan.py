"""Plan models — derived per-artifact state and the action list built from it."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from packsmith.models.lockfile import Artifact, Checksum


class ArtifactState(str, Enum):
    """Observed state of one artifact in the live tree. Never persisted."""

    SATISFIED = "satisfied"
    MISSING = "missing"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNSUPPORTED_KIND = "unsupported_kind"


class ActionKind(str, Enum):
    NOOP = "noop"
    FETCH = "fetch"
    QUARANTINE_THEN_FETCH = "quarantine_then_fetch"


ACTION_FOR_STATE: dict[ArtifactState, ActionKind] = {
    ArtifactState.SATISFIED: ActionKind.NOOP,
    ArtifactState.MISSING: ActionKind.FETCH,
    ArtifactState.CHECKSUM_MISMATCH: ActionKind.QUARANTINE_THEN_FETCH,
}


class ArtifactInspection(BaseModel):
    """What the planner saw at an artifact's live path."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    state: ArtifactState
    observed: Checksum | None = None


class PlannedAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    action: ActionKind
    state: ArtifactState
    observed: Checksum | None = None

    @property
    def needs_fetch(self) -> bool:
        return self.action is not ActionKind.NOOP


class InstallPlan(BaseModel):
    """Ordered actions for one lockfile, in lockfile order."""

    model_config = ConfigDict(frozen=True)

    pinned_version_id: str
    lockfile_digest: str
    actions: list[PlannedAction]

    @property
    def fetch_actions(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.needs_fetch]

    @property
    def noop_actions(self) -> list[PlannedAction]:
        return [a for a in self.actions if not a.needs_fetch]

    @property
    def is_satisfied(self) -> bool:
        return not self.fetch_actions

    def counts(self) -> dict[str, int]:
        """Number of actions per action kind."""
        result = {kind.value: 0 for kind in ActionKind}
        for action in self.actions:
            result[action.action.value] += 1
        return result


class StatusReport(BaseModel):
    """Read-only diff between a lockfile and the live tree."""

    model_config = ConfigDict(frozen=True)

    pinned_version_id: str
    pack_id: str | None = None
    pack_version: str | None = None
    artifacts: list[ArtifactInspection]

    def count(self, state: ArtifactState) -> int:
        return sum(1 for a in self.artifacts if a.state is state)

    @property
    def is_satisfied(self) -> bool:
        return all(a.state is ArtifactState.SATISFIED for a in self.artifacts)

    def summary(self) -> dict[str, int]:
        return {state.value: self.count(state) for state in ArtifactState}
