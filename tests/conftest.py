"""Shared test fixtures for Packsmith."""

from __future__ import annotations

import hashlib
import time
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from packsmith.config import EngineConfig
from packsmith.core.context import InstallContext
from packsmith.core.downloader import Downloader
from packsmith.core.engine import InstallEngine
from packsmith.core.resolver import StaticResolver
from packsmith.models.lockfile import Artifact, Checksum, DesiredState, Lockfile

UPSTREAM = "https://upstream.test"
PINNED_VERSION = "1.20.4"
FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeUpstream:
    """In-memory HTTP origin backed by ``httpx.MockTransport``.

    ``files`` maps URL to body. ``failures`` maps URL to a list of outcomes
    served before the real body: a status code, an exception to raise, a
    prepared response, or a wrong body served with 200. ``requests`` counts
    every request per URL.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.failures: dict[str, list[Any]] = {}
        self.requests: Counter[str] = Counter()

    def add(self, path: str, content: bytes) -> str:
        url = f"{UPSTREAM}/{path}"
        self.files[url] = content
        return url

    def fail_next(self, url: str, *outcomes: Any) -> None:
        self.failures.setdefault(url, []).extend(outcomes)

    @property
    def total_requests(self) -> int:
        return sum(self.requests.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url] += 1
        pending = self.failures.get(url)
        if pending:
            outcome = pending.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, httpx.Response):
                return outcome
            if isinstance(outcome, bytes):
                return httpx.Response(200, content=outcome)
            return httpx.Response(outcome)
        if url not in self.files:
            return httpx.Response(404)
        return httpx.Response(200, content=self.files[url])

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def instance_root(tmp_path: Path) -> Path:
    """Provide an empty instance root."""
    root = tmp_path / "instance"
    root.mkdir()
    return root


@pytest.fixture
def config() -> EngineConfig:
    """Small pools, no backoff delay, tight retry budgets."""
    return EngineConfig(
        _env_file=None,
        download_workers=4,
        promote_workers=2,
        max_download_attempts=3,
        max_integrity_attempts=2,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        chunk_size=1024,
        log_format="text",
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Records backoff delays instead of sleeping."""
    recorded: list[float] = []
    monkeypatch.setattr(time, "sleep", recorded.append)
    return recorded


@pytest.fixture
def downloader(config: EngineConfig, upstream: FakeUpstream) -> Downloader:
    return Downloader(config, upstream.client())


@pytest.fixture
def context(instance_root: Path, config: EngineConfig, downloader: Downloader) -> InstallContext:
    """Provide an InstallContext wired to the fake upstream, directories created."""
    ctx = InstallContext(instance_root, config, downloader=downloader)
    ctx.layout.ensure()
    return ctx


# ---------------------------------------------------------------------------
# Artifact and lockfile factories: shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_artifact(upstream: FakeUpstream) -> Callable[..., Artifact]:
    """Factory fixture: register content upstream and return its Artifact."""

    def _factory(
        name: str,
        content: bytes | None = None,
        *,
        kind: str = "dataObject",
        relative_path: str | None = None,
        algorithm: str = "sha256",
        publish: bool = True,
    ) -> Artifact:
        body = content if content is not None else f"content of {name}\n".encode()
        path = relative_path or f"objects/{name}"
        url = f"{UPSTREAM}/{path}"
        if publish:
            upstream.add(path, body)
        return Artifact(
            name=name,
            kind=kind,
            source_url=url,
            relative_path=path,
            checksum=Checksum(
                algorithm=algorithm, value=hashlib.new(algorithm, body).hexdigest()
            ),
            size=len(body),
        )

    return _factory


@pytest.fixture
def sample_artifacts(make_artifact: Callable[..., Artifact]) -> list[Artifact]:
    """Five artifacts covering every common kind."""
    return [
        make_artifact(
            "version:1.20.4",
            b'{"id": "1.20.4"}',
            kind="versionDescriptor",
            relative_path="versions/1.20.4/1.20.4.json",
            algorithm="sha1",
        ),
        make_artifact(
            "client:1.20.4",
            b"PK\x03\x04 client jar bytes" * 64,
            kind="primaryPackage",
            relative_path="versions/1.20.4/1.20.4.jar",
        ),
        make_artifact("asset-a", b"alpha asset" * 300),
        make_artifact("asset-b", b"bravo asset" * 10),
        make_artifact(
            "library:org.example:lib:1.0",
            b"library bytes",
            kind="dependency",
            relative_path="libraries/org/example/lib/1.0/lib-1.0.jar",
        ),
    ]


@pytest.fixture
def make_lockfile() -> Callable[..., Lockfile]:
    """Factory fixture: build a Lockfile around a list of artifacts."""

    def _factory(artifacts: list[Artifact], **overrides: Any) -> Lockfile:
        fields: dict[str, Any] = {
            "pack_id": "family-pack",
            "pack_version": "3",
            "pinned_version_id": PINNED_VERSION,
            "generated_at": FIXED_NOW,
            "artifacts": artifacts,
        }
        fields.update(overrides)
        return Lockfile(**fields)

    return _factory


@pytest.fixture
def sample_lockfile(
    make_lockfile: Callable[..., Lockfile], sample_artifacts: list[Artifact]
) -> Lockfile:
    return make_lockfile(sample_artifacts)


@pytest.fixture
def desired_state() -> DesiredState:
    return DesiredState(
        pack_id="family-pack", pack_version="3", pinned_version_id=PINNED_VERSION
    )


@pytest.fixture
def make_engine(
    instance_root: Path,
    config: EngineConfig,
    downloader: Downloader,
    sample_artifacts: list[Artifact],
) -> Callable[..., InstallEngine]:
    """Factory fixture: an InstallEngine on the fake upstream with a static resolver."""

    def _factory(
        root: Path | None = None,
        *,
        resolver: StaticResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> InstallEngine:
        return InstallEngine(
            root or instance_root,
            config,
            resolver=resolver or StaticResolver({PINNED_VERSION: sample_artifacts}),
            downloader=downloader,
            clock=clock or (lambda: FIXED_NOW),
        )

    return _factory


@pytest.fixture
def live(instance_root: Path) -> Callable[[Artifact], Path]:
    """Maps an artifact to its live path under the instance root."""

    def _live(artifact: Artifact) -> Path:
        return instance_root / "live" / artifact.relative_path

    return _live


@pytest.fixture
def populate_live(
    upstream: FakeUpstream, live: Callable[[Artifact], Path]
) -> Callable[[list[Artifact]], None]:
    """Factory fixture: write the upstream bytes of each artifact into the live tree."""

    def _populate(artifacts: list[Artifact]) -> None:
        for artifact in artifacts:
            path = live(artifact)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(upstream.files[artifact.source_url])

    return _populate
