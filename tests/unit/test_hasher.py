"""Tests for the checksum verifier and canonical hashing helpers."""

from __future__ import annotations

import hashlib

import pytest

from packsmith.core.hasher import (
    canonical_json_bytes,
    hash_bytes,
    hash_file,
    lockfile_digest,
    sha256_hex,
    verify_file,
)
from packsmith.models.lockfile import Checksum


class TestCanonicalJson:
    def test_sorted_and_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_key_order_does_not_change_digest(self):
        assert lockfile_digest({"x": 1, "y": 2}) == lockfile_digest({"y": 2, "x": 1})

    def test_lockfile_digest_is_stable(self):
        assert lockfile_digest({"a": 1}) == sha256_hex(b'{"a":1}')


class TestFileHashing:
    def test_hash_file_matches_hashlib(self, tmp_dir):
        data = b"0123456789" * 1000
        path = tmp_dir / "blob"
        path.write_bytes(data)
        assert hash_file(path, "sha256", chunk_size=7) == hashlib.sha256(data).hexdigest()
        assert hash_file(path, "sha1") == hashlib.sha1(data).hexdigest()

    def test_unsupported_algorithm(self, tmp_dir):
        path = tmp_dir / "blob"
        path.write_bytes(b"x")
        with pytest.raises(ValueError):
            hash_file(path, "md5")
        with pytest.raises(ValueError):
            hash_bytes(b"x", "md5")


class TestVerifyFile:
    def test_match(self, tmp_dir):
        path = tmp_dir / "f"
        path.write_bytes(b"payload")
        expected = Checksum(algorithm="sha256", value=hashlib.sha256(b"payload").hexdigest())
        ok, observed = verify_file(path, expected)
        assert ok is True
        assert observed == expected

    def test_mismatch_reports_observed(self, tmp_dir):
        path = tmp_dir / "f"
        path.write_bytes(b"tampered")
        expected = Checksum(algorithm="sha256", value=hashlib.sha256(b"payload").hexdigest())
        ok, observed = verify_file(path, expected)
        assert ok is False
        assert observed.value == hashlib.sha256(b"tampered").hexdigest()

    def test_missing_file(self, tmp_dir):
        expected = Checksum(algorithm="sha1", value=hashlib.sha1(b"").hexdigest())
        assert verify_file(tmp_dir / "nope", expected) == (False, None)
