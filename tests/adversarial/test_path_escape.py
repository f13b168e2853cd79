"""Adversarial tests — lockfile paths that try to leave the instance root.

These tests verify that the engine refuses:
1. ``..`` segments and absolute paths in a hand-edited lockfile
2. Symlinks planted inside the live tree that point elsewhere
3. Two artifacts fighting over one relative path
"""

from __future__ import annotations

import json

import pytest

from packsmith.core.errors import ConfigError
from packsmith.core.lockfile_store import serialize_lockfile


@pytest.fixture
def engine(make_engine):
    with make_engine() as engine:
        yield engine


def _write_raw_lockfile(instance_root, data):
    path = instance_root / "pack" / "lock.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


class TestHandEditedPaths:
    """Edit pack/lock.json directly to simulate a malicious pack author."""

    @pytest.mark.parametrize(
        "evil_path",
        ["../../outside.txt", "/etc/cron.d/evil", "live/../../../x", "C:/Windows/evil.dll"],
    )
    def test_escaping_path_rejected_at_load(
        self, engine, instance_root, sample_lockfile, upstream, evil_path
    ):
        """The lockfile fails validation; nothing is fetched or written."""
        data = sample_lockfile.to_json_dict()
        data["artifacts"][2]["relativePath"] = evil_path
        _write_raw_lockfile(instance_root, data)

        with pytest.raises(ConfigError):
            engine.install()

        assert upstream.total_requests == 0
        assert not (instance_root.parent / "outside.txt").exists()
        assert list((instance_root / "live").iterdir()) == []

    def test_duplicate_relative_path_rejected(self, engine, instance_root, sample_lockfile):
        """Two artifacts cannot both own one live file."""
        data = sample_lockfile.to_json_dict()
        data["artifacts"][3]["relativePath"] = data["artifacts"][2]["relativePath"]
        _write_raw_lockfile(instance_root, data)
        with pytest.raises(ConfigError, match="invalid"):
            engine.install()


class TestPlantedSymlinks:
    """A symlink inside live/ must not redirect writes outside the root."""

    def test_symlinked_directory_is_refused(
        self, engine, instance_root, tmp_path, sample_lockfile, upstream
    ):
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        (instance_root / "live").mkdir()
        (instance_root / "live" / "objects").symlink_to(outside, target_is_directory=True)
        (instance_root / "pack").mkdir(exist_ok=True)
        (instance_root / "pack" / "lock.json").write_bytes(serialize_lockfile(sample_lockfile))

        with pytest.raises(ConfigError, match="outside"):
            engine.install()

        assert list(outside.iterdir()) == []
        assert upstream.total_requests == 0

    def test_symlinked_file_is_not_followed_for_status(
        self, engine, instance_root, tmp_path, sample_lockfile
    ):
        """Status reports the escape as a configuration error rather than hashing the target."""
        secret = tmp_path / "secret.txt"
        secret.write_text("do not read", encoding="utf-8")
        target_dir = instance_root / "live" / "versions" / "1.20.4"
        target_dir.mkdir(parents=True)
        (target_dir / "1.20.4.json").symlink_to(secret)

        with pytest.raises(ConfigError):
            engine.status(sample_lockfile)
