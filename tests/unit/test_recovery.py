"""Tests for RecoveryCoordinator — assessment, targeted repair, rollback."""

from __future__ import annotations

import logging

import pytest

from packsmith.core.errors import (
    ConfigError,
    DownloadIntegrityFailure,
    ErrorKind,
    NoRecoveryPathAvailable,
)
from packsmith.core.hasher import verify_file
from packsmith.core.lockfile_store import digest_of
from packsmith.core.planner import InstallPlanner
from packsmith.core.recovery import RecoveryCoordinator
from packsmith.models.plan import ActionKind
from packsmith.models.results import RecoveryState


@pytest.fixture
def planner(context):
    return InstallPlanner(context)


@pytest.fixture
def recovery(context):
    return RecoveryCoordinator(context)


@pytest.fixture
def snapshotted(context, sample_lockfile, sample_artifacts, populate_live):
    """A fully installed instance with one snapshot."""
    populate_live(sample_artifacts)
    return context.snapshots.record(sample_lockfile, digest_of(sample_lockfile))


def _stage(context, artifact, data):
    path = context.staging.path_for(artifact)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class TestAssess:
    def test_clean_when_satisfied(self, planner, recovery, sample_lockfile, snapshotted):
        assessment = recovery.assess(planner.plan(sample_lockfile))
        assert assessment.state is RecoveryState.CLEAN
        assert assessment.snapshot_id == snapshotted.id

    def test_no_snapshot_when_work_pending(self, planner, recovery, sample_lockfile):
        assert recovery.assess(planner.plan(sample_lockfile)).state is RecoveryState.NO_SNAPSHOT

    def test_resumable_staging(
        self, planner, recovery, context, sample_lockfile, sample_artifacts, upstream
    ):
        artifact = sample_artifacts[2]
        _stage(context, artifact, upstream.files[artifact.source_url])
        assessment = recovery.assess(planner.plan(sample_lockfile))
        assert assessment.state is RecoveryState.RESUMABLE_STAGING
        assert assessment.resumable == [artifact.name]

    def test_discards_partials_stale_and_corrupt_entries(
        self, planner, recovery, context, sample_lockfile, sample_artifacts
    ):
        corrupt = _stage(context, sample_artifacts[0], b"not the descriptor")
        partial = context.staging.root / "objects" / "asset-b.part"
        partial.parent.mkdir(parents=True, exist_ok=True)
        partial.write_bytes(b"bravo")
        stale = context.staging.root / "old" / "leftover.bin"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"from another lockfile")

        assessment = recovery.assess(planner.plan(sample_lockfile))

        assert not corrupt.exists()
        assert not partial.exists()
        assert not stale.exists()
        assert sorted(assessment.discarded_staging) == sorted([
            "objects/asset-b.part",
            "old/leftover.bin",
            sample_artifacts[0].relative_path,
        ])
        assert assessment.resumable == []

    def test_corrupt_live_takes_precedence(
        self, planner, recovery, context, sample_lockfile, sample_artifacts, snapshotted,
        live, upstream
    ):
        live(sample_artifacts[1]).write_bytes(b"tampered")
        live(sample_artifacts[3]).unlink()
        _stage(context, sample_artifacts[3], upstream.files[sample_artifacts[3].source_url])

        assessment = recovery.assess(planner.plan(sample_lockfile))

        assert assessment.state is RecoveryState.CORRUPT_LIVE
        assert assessment.corrupt == [sample_artifacts[1].name]
        assert assessment.resumable == [sample_artifacts[3].name]


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


class TestPlanRepair:
    def test_only_named_artifacts_are_touched(
        self, recovery, context, sample_lockfile, sample_artifacts, populate_live, live
    ):
        populate_live(sample_artifacts)
        target, sibling = sample_artifacts[2], sample_artifacts[3]
        live(target).write_bytes(b"corrupt target")
        live(sibling).write_bytes(b"corrupt sibling")

        plan, quarantined = recovery.plan_repair(sample_lockfile, [target.name])

        assert [a.artifact.name for a in plan.actions] == [target.name]
        assert plan.actions[0].action is ActionKind.FETCH
        assert not live(target).exists()
        assert live(sibling).read_bytes() == b"corrupt sibling"
        assert [r.name for r in context.quarantine.list_entries()] == [target.name]
        assert quarantined == [target.name]

    def test_intact_artifact_is_noop(
        self, recovery, sample_lockfile, sample_artifacts, populate_live
    ):
        populate_live(sample_artifacts)
        plan, quarantined = recovery.plan_repair(sample_lockfile, [sample_artifacts[0].name])
        assert plan.is_satisfied
        assert quarantined == []

    def test_unknown_name(self, recovery, sample_lockfile):
        with pytest.raises(ConfigError) as exc_info:
            recovery.plan_repair(sample_lockfile, ["no-such-artifact"])
        assert exc_info.value.artifacts == ["no-such-artifact"]


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


class TestRollback:
    def test_restores_only_mismatches(
        self, recovery, context, sample_artifacts, snapshotted, live
    ):
        live(sample_artifacts[1]).write_bytes(b"tampered")
        live(sample_artifacts[4]).unlink()
        before = live(sample_artifacts[0]).stat().st_mtime_ns

        result = recovery.rollback()

        assert result.snapshot_id == snapshotted.id
        assert sorted(result.restored) == sorted([sample_artifacts[1].name, sample_artifacts[4].name])
        assert len(result.unchanged) == 3
        assert result.quarantined == [sample_artifacts[1].name]
        for artifact in sample_artifacts:
            assert verify_file(live(artifact), artifact.checksum)[0]
        assert live(sample_artifacts[0]).stat().st_mtime_ns == before
        [record] = context.quarantine.list_entries()
        assert record.reason == "rollback"
        assert not (context.staging.root / ".rollback" / snapshotted.id).exists()

    def test_skips_damaged_newest_snapshot(
        self, recovery, context, make_artifact, make_lockfile, sample_artifacts,
        snapshotted, populate_live, live
    ):
        extra = make_artifact("asset-c", b"charlie")
        newer_lockfile = make_lockfile([*sample_artifacts, extra])
        populate_live([extra])
        newer = context.snapshots.record(newer_lockfile, digest_of(newer_lockfile))
        context.snapshots.object_path(extra.checksum).write_bytes(b"bitrot")
        live(sample_artifacts[2]).write_bytes(b"tampered")

        result = recovery.rollback()

        assert newer.id != snapshotted.id
        assert result.snapshot_id == snapshotted.id
        assert result.restored == [sample_artifacts[2].name]

    def test_explicit_damaged_snapshot_raises(
        self, recovery, context, sample_artifacts, snapshotted
    ):
        context.snapshots.object_path(sample_artifacts[0].checksum).write_bytes(b"bitrot")
        with pytest.raises(NoRecoveryPathAvailable, match="damaged") as exc_info:
            recovery.rollback(snapshotted.id)
        assert exc_info.value.artifacts == [sample_artifacts[0].name]

    def test_every_snapshot_damaged(self, recovery, context, sample_artifacts, snapshotted):
        context.snapshots.object_path(sample_artifacts[0].checksum).unlink()
        with pytest.raises(NoRecoveryPathAvailable, match="Every available snapshot"):
            recovery.rollback()

    def test_unknown_snapshot_id(self, recovery, snapshotted):
        with pytest.raises(ConfigError):
            recovery.rollback("20000101T000000000000Z-missing")

    def test_events_record_authority(self, recovery, sample_artifacts, snapshotted, live, caplog):
        live(sample_artifacts[1]).write_bytes(b"tampered")
        with caplog.at_level(logging.INFO, logger="packsmith"):
            recovery.rollback()
        events = [r for r in caplog.records if hasattr(r, "event_kind")]
        kinds = [r.event_kind for r in events]
        assert "rollback_start" in kinds
        assert "rollback_complete" in kinds
        assert all(r.remote_metadata_used is False for r in events)
        restore = next(r for r in events if r.event_kind == "rollback_promote_ok")
        assert restore.authority == "snapshot"
        assert restore.expected_checksum == str(sample_artifacts[1].checksum)

    def test_intact_live_files_are_logged_unchanged(
        self, recovery, sample_artifacts, snapshotted, live, caplog
    ):
        live(sample_artifacts[1]).write_bytes(b"tampered")
        with caplog.at_level(logging.DEBUG, logger="packsmith"):
            result = recovery.rollback()
        kept = sorted(
            r.artifact for r in caplog.records
            if getattr(r, "event_kind", None) == "rollback_verify_live"
        )
        assert all(
            r.decision == "unchanged" for r in caplog.records
            if getattr(r, "event_kind", None) == "rollback_verify_live"
        )
        assert kept == sorted(result.unchanged)
        assert len(kept) == 4


class TestRecover:
    def test_without_snapshot_raises(self, recovery, sample_lockfile):
        error = DownloadIntegrityFailure("asset-a: upstream gone", artifacts=["asset-a"])
        with pytest.raises(NoRecoveryPathAvailable) as exc_info:
            recovery.recover(error, digest_of(sample_lockfile))
        assert exc_info.value.kind is ErrorKind.NO_RECOVERY_PATH_AVAILABLE
        assert exc_info.value.__cause__ is error
        assert exc_info.value.artifacts == ["asset-a"]

    def test_rolls_back_when_snapshot_exists(
        self, recovery, sample_lockfile, sample_artifacts, snapshotted, live
    ):
        live(sample_artifacts[0]).unlink()
        error = DownloadIntegrityFailure("boom")
        result = recovery.recover(error, digest_of(sample_lockfile))
        assert result.restored == [sample_artifacts[0].name]

    def test_snapshot_of_another_lockfile_is_ignored(
        self, recovery, context, make_artifact, make_lockfile, sample_artifacts, snapshotted, live
    ):
        newer = make_lockfile([*sample_artifacts, make_artifact("asset-c")])
        live(sample_artifacts[1]).write_bytes(b"half-installed")
        error = DownloadIntegrityFailure("asset-c: upstream gone", artifacts=["asset-c"])

        with pytest.raises(NoRecoveryPathAvailable, match="no snapshot of this lockfile") as exc_info:
            recovery.recover(error, digest_of(newer))

        assert exc_info.value.artifacts == ["asset-c"]
        assert live(sample_artifacts[1]).read_bytes() == b"half-installed"
        assert context.quarantine.list_entries() == []
