"""Tests for the Downloader — temp-then-rename, retries, short-circuit."""

from __future__ import annotations

import hashlib
import logging

import httpx
import pytest

from packsmith.core.downloader import Downloader, part_path
from packsmith.core.errors import DownloadIntegrityFailure, ErrorKind
from packsmith.models.lockfile import Checksum


class TestDownload:
    def test_writes_destination(self, downloader, upstream, tmp_dir):
        url = upstream.add("a.bin", b"hello world")
        dest = tmp_dir / "out" / "a.bin"
        result = downloader.download(url, dest)
        assert dest.read_bytes() == b"hello world"
        assert result.downloaded is True
        assert result.bytes_written == 11
        assert result.attempts == 1
        assert not part_path(dest).exists()

    def test_short_circuits_when_present(self, downloader, upstream, tmp_dir):
        body = b"already here"
        url = upstream.add("b.bin", body)
        dest = tmp_dir / "b.bin"
        dest.write_bytes(body)
        checksum = Checksum(algorithm="sha256", value=hashlib.sha256(body).hexdigest())

        result = downloader.download(url, dest, expected_size=len(body), checksum=checksum)

        assert result.downloaded is False
        assert upstream.total_requests == 0

    def test_wrong_size_is_refetched(self, downloader, upstream, tmp_dir):
        url = upstream.add("c.bin", b"full body")
        dest = tmp_dir / "c.bin"
        dest.write_bytes(b"full")
        result = downloader.download(url, dest, expected_size=9)
        assert result.downloaded is True
        assert dest.read_bytes() == b"full body"


class TestRetries:
    def test_retries_transient_status(self, downloader, upstream, sleeps, tmp_dir):
        url = upstream.add("d.bin", b"eventually")
        upstream.fail_next(url, 503, 429)
        result = downloader.download(url, tmp_dir / "d.bin")
        assert result.attempts == 3
        assert len(sleeps) == 2
        assert upstream.requests[url] == 3

    def test_retries_transport_error(self, downloader, upstream, tmp_dir):
        url = upstream.add("e.bin", b"after reset")
        upstream.fail_next(url, httpx.ConnectError("connection reset"))
        result = downloader.download(url, tmp_dir / "e.bin")
        assert result.attempts == 2

    def test_exhausted_budget_raises_and_leaves_nothing(self, downloader, upstream, tmp_dir):
        url = upstream.add("f.bin", b"never")
        upstream.fail_next(url, 500, 502, 504)
        dest = tmp_dir / "f.bin"
        with pytest.raises(DownloadIntegrityFailure) as exc_info:
            downloader.download(url, dest)
        assert exc_info.value.kind is ErrorKind.DOWNLOAD_INTEGRITY_FAILURE
        assert not dest.exists()
        assert not part_path(dest).exists()
        assert upstream.requests[url] == 3

    def test_client_error_is_not_retried(self, downloader, upstream, sleeps, tmp_dir):
        url = "https://upstream.test/missing.bin"
        with pytest.raises(DownloadIntegrityFailure, match="HTTP 404"):
            downloader.download(url, tmp_dir / "missing.bin")
        assert upstream.requests[url] == 1
        assert sleeps == []

    def test_delays_grow_exponentially_up_to_the_cap(
        self, config, upstream, sleeps, tmp_dir, caplog
    ):
        slow = config.model_copy(update={
            "backoff_base_seconds": 0.5,
            "backoff_max_seconds": 3.0,
            "max_download_attempts": 5,
        })
        url = upstream.add("g.bin", b"slow origin")
        upstream.fail_next(url, 503, 503, 503, 503)

        with Downloader(slow, upstream.client()) as dl, \
                caplog.at_level(logging.WARNING, logger="packsmith"):
            result = dl.download(url, tmp_dir / "g.bin")

        assert result.attempts == 5
        assert sleeps == [0.5, 1.0, 2.0, 3.0]
        assert "retrying in 0.50s" in caplog.text

    def test_metadata_fetch_gives_up_after_budget(self, downloader, upstream, sleeps):
        url = upstream.add("meta3.json", b"{}")
        upstream.fail_next(url, 502, 502, 502)
        with pytest.raises(DownloadIntegrityFailure, match="after 3 attempts"):
            downloader.fetch_bytes(url)
        assert upstream.requests[url] == 3
        assert len(sleeps) == 2


class TestFetchBytes:
    def test_returns_body(self, downloader, upstream):
        url = upstream.add("meta.json", b'{"ok": true}')
        assert downloader.fetch_bytes(url) == b'{"ok": true}'

    def test_retries_then_succeeds(self, downloader, upstream):
        url = upstream.add("meta2.json", b"{}")
        upstream.fail_next(url, 503)
        assert downloader.fetch_bytes(url) == b"{}"
        assert upstream.requests[url] == 2

    def test_not_found_raises(self, downloader):
        with pytest.raises(DownloadIntegrityFailure):
            downloader.fetch_bytes("https://upstream.test/nope.json")


class TestClientOwnership:
    def test_does_not_close_injected_client(self, config, upstream):
        client = upstream.client()
        with Downloader(config, client):
            pass
        assert client.is_closed is False
        client.close()
