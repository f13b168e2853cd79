"""Packsmith data models — all Pydantic v2, all frozen (immutable)."""

from packsmith.models.lockfile import (
    MANAGED_RUNTIME_KIND,
    SUPPORTED_KINDS,
    Artifact,
    ArtifactKind,
    Checksum,
    DesiredState,
    Lockfile,
    sort_artifacts,
)
from packsmith.models.plan import (
    ActionKind,
    ArtifactInspection,
    ArtifactState,
    InstallPlan,
    PlannedAction,
    StatusReport,
)
from packsmith.models.results import (
    ExecutionOutcome,
    InstallResult,
    RecoveryAssessment,
    RecoveryState,
    RollbackResult,
)
from packsmith.models.snapshot import QuarantineRecord, Snapshot, SnapshotArtifact
