"""HTTP downloader with bounded retries and write-to-temp-then-rename.

Bytes are streamed into ``<dest>.part`` and moved onto ``dest`` with a
single ``os.replace`` once the body is complete, so ``dest`` never holds a
truncated download. Concurrent requests for the same URL and destination
share one transfer.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Future
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

import backoff
import httpx
from pydantic import BaseModel, ConfigDict

from packsmith.config import EngineConfig
from packsmith.core.errors import DownloadIntegrityFailure
from packsmith.core.hasher import verify_file
from packsmith.models.lockfile import Checksum

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})

PART_SUFFIX = ".part"

T = TypeVar("T")


class DownloadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    path: Path
    bytes_written: int
    downloaded: bool
    attempts: int = 0


class _RetryableStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def part_path(dest: Path) -> Path:
    """Temporary path a download streams into before it is renamed."""
    return dest.with_name(dest.name + PART_SUFFIX)


class Downloader:
    """Fetches URLs to local paths.

    Parameters
    ----------
    config:
        Timeouts, attempt budget, backoff and chunk size.
    client:
        Optional pre-built ``httpx.Client`` (tests pass one backed by
        ``httpx.MockTransport``). The downloader closes only clients it
        created itself.
    """

    def __init__(
        self,
        config: EngineConfig,
        client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": config.user_agent},
        )
        self._inflight: dict[tuple[str, Path], Future[DownloadResult]] = {}
        self._inflight_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        return self._client

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> Downloader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def download(
        self,
        url: str,
        dest: Path,
        *,
        expected_size: int | None = None,
        checksum: Checksum | None = None,
    ) -> DownloadResult:
        """Download ``url`` to ``dest``.

        If ``dest`` already exists with the expected size (and checksum,
        when given) no request is made. Transient failures are retried with
        exponential backoff; once the attempt budget is spent a
        ``DownloadIntegrityFailure`` is raised and no partial file remains.
        """
        dest = Path(dest)
        key = (url, dest)
        with self._inflight_lock:
            existing = self._inflight.get(key)
            if existing is None:
                future: Future[DownloadResult] = Future()
                self._inflight[key] = future
        if existing is not None:
            return existing.result()

        try:
            result = self._download(url, dest, expected_size, checksum)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def fetch_bytes(self, url: str) -> bytes:
        """GET a small document (metadata) into memory with the same retry policy."""
        try:
            return self._retrying(url, self._get)(url)
        except (httpx.TransportError, _RetryableStatus) as exc:
            raise DownloadIntegrityFailure(
                f"Could not fetch {url} after {self._config.max_download_attempts} attempts: {exc}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise DownloadIntegrityFailure(
                f"Upstream refused {url}: HTTP {exc.response.status_code}"
            ) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _retrying(self, url: str, func: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``func`` in the configured exponential backoff for transient failures."""
        return backoff.on_exception(
            backoff.expo,
            (httpx.TransportError, _RetryableStatus),
            max_tries=self._config.max_download_attempts,
            jitter=None,
            logger=None,
            on_backoff=partial(self._log_backoff, url),
            factor=self._config.backoff_base_seconds,
            max_value=self._config.backoff_max_seconds,
        )(func)

    def _download(
        self,
        url: str,
        dest: Path,
        expected_size: int | None,
        checksum: Checksum | None,
    ) -> DownloadResult:
        if self._already_present(dest, expected_size, checksum):
            logger.debug("Skipping download of %s; %s already present", url, dest)
            return DownloadResult(
                url=url, path=dest, bytes_written=dest.stat().st_size, downloaded=False
            )

        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = part_path(dest)
        attempts = 0

        def attempt() -> int:
            nonlocal attempts
            attempts += 1
            try:
                return self._stream_to(url, tmp)
            except BaseException:
                _discard(tmp)
                raise

        try:
            written = self._retrying(url, attempt)()
        except (httpx.TransportError, _RetryableStatus) as exc:
            raise DownloadIntegrityFailure(
                f"Could not download {url} after {attempts} attempts: {exc}",
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise DownloadIntegrityFailure(
                f"Upstream refused {url}: HTTP {exc.response.status_code}"
            ) from exc

        os.replace(tmp, dest)
        logger.debug("Downloaded %s (%d bytes) in %d attempt(s)", url, written, attempts)
        return DownloadResult(
            url=url, path=dest, bytes_written=written, downloaded=True, attempts=attempts
        )

    def _get(self, url: str) -> bytes:
        response = self._client.get(url)
        if response.status_code in RETRYABLE_STATUS:
            raise _RetryableStatus(response.status_code)
        response.raise_for_status()
        return response.content

    def _stream_to(self, url: str, tmp: Path) -> int:
        written = 0
        with self._client.stream("GET", url) as response:
            if response.status_code in RETRYABLE_STATUS:
                raise _RetryableStatus(response.status_code)
            response.raise_for_status()
            with open(tmp, "wb") as fh:
                for chunk in response.iter_bytes(chunk_size=self._config.chunk_size):
                    fh.write(chunk)
                    written += len(chunk)
                fh.flush()
                os.fsync(fh.fileno())
        return written

    def _already_present(
        self, dest: Path, expected_size: int | None, checksum: Checksum | None
    ) -> bool:
        if not dest.is_file():
            return False
        if expected_size is None and checksum is None:
            return False
        if expected_size is not None and dest.stat().st_size != expected_size:
            return False
        if checksum is not None:
            matches, _ = verify_file(dest, checksum, chunk_size=self._config.chunk_size)
            return matches
        return True

    def _log_backoff(self, url: str, details: dict[str, Any]) -> None:
        logger.warning(
            "Transient failure fetching %s (attempt %d/%d): %s; retrying in %.2fs",
            url,
            details["tries"],
            self._config.max_download_attempts,
            details.get("exception"),
            details["wait"],
        )


def _discard(path: Path) -> None:
    path.unlink(missing_ok=True)
