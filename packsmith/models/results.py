"""Outcome models returned by the engine's outbound operations."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class RecoveryState(str, Enum):
    """Instance condition evaluated at the start of every install attempt."""

    CLEAN = "clean"
    RESUMABLE_STAGING = "resumable_staging"
    CORRUPT_LIVE = "corrupt_live"
    NO_SNAPSHOT = "no_snapshot"


# Highest priority first; the coordinator reports the first state that applies.
RECOVERY_STATE_PRECEDENCE: tuple[RecoveryState, ...] = (
    RecoveryState.CORRUPT_LIVE,
    RecoveryState.RESUMABLE_STAGING,
    RecoveryState.NO_SNAPSHOT,
    RecoveryState.CLEAN,
)


class RecoveryAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: RecoveryState
    resumable: list[str] = []
    corrupt: list[str] = []
    discarded_staging: list[str] = []
    snapshot_id: str | None = None


class ExecutionOutcome(BaseModel):
    """Counts produced by one executor pass."""

    model_config = ConfigDict(frozen=True)

    satisfied: list[str] = []
    fetched: list[str] = []
    resumed: list[str] = []
    quarantined: list[str] = []


class InstallResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    pinned_version_id: str
    satisfied_count: int
    fetched_count: int
    quarantined_count: int
    resumed_count: int = 0
    snapshot_id: str | None = None
    rolled_back_to: str | None = None
    recovery_state: RecoveryState = RecoveryState.CLEAN


class RollbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    restored: list[str] = []
    unchanged: list[str] = []
    quarantined: list[str] = []

    @property
    def restored_count(self) -> int:
        return len(self.restored)
