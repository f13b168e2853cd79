"""Upstream metadata resolvers — consulted only while generating a lockfile.

A resolver turns a pinned version id into the complete artifact list for
that version. Once the lockfile is written, nothing here is called again.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from packsmith.config import EngineConfig
from packsmith.core.downloader import Downloader
from packsmith.core.errors import ConfigError, DownloadIntegrityFailure
from packsmith.core.hasher import hash_bytes
from packsmith.models.lockfile import Artifact, ArtifactKind, Checksum

logger = logging.getLogger(__name__)


@runtime_checkable
class UpstreamResolver(Protocol):
    """Resolves the full artifact set of one pinned version."""

    def resolve(self, pinned_version_id: str) -> list[Artifact]:
        ...


class StaticResolver:
    """Resolver backed by pre-resolved artifact lists, keyed by version id."""

    def __init__(self, artifacts_by_version: dict[str, list[Artifact]]) -> None:
        self._artifacts = {k: list(v) for k, v in artifacts_by_version.items()}
        self.calls: list[str] = []

    def resolve(self, pinned_version_id: str) -> list[Artifact]:
        self.calls.append(pinned_version_id)
        if pinned_version_id not in self._artifacts:
            raise ConfigError(f"Version {pinned_version_id!r} is not known to this resolver")
        return list(self._artifacts[pinned_version_id])


def rules_allow(rules: list[dict[str, Any]] | None, os_name: str) -> bool:
    """Evaluate a library's allow/disallow rules for ``os_name``.

    No rules means allowed. Otherwise the last matching rule wins. Rules
    gated on launcher features never match a plain install.
    """
    if not rules:
        return True
    allowed = False
    for rule in rules:
        if rule.get("features"):
            continue
        os_rule = rule.get("os") or {}
        if os_rule.get("name") and os_rule["name"] != os_name:
            continue
        allowed = rule.get("action") == "allow"
    return allowed


class MojangResolver:
    """Resolves vanilla game versions from Mojang's piston-meta service.

    Parameters
    ----------
    config:
        Supplies the manifest URL, asset host, target OS and native arch.
    downloader:
        Used for metadata requests so they share the retry policy.
    """

    def __init__(self, config: EngineConfig, downloader: Downloader) -> None:
        self._config = config
        self._downloader = downloader

    def resolve(self, pinned_version_id: str) -> list[Artifact]:
        entry = self._find_version(pinned_version_id)
        version_url = entry["url"]
        version_sha1 = entry.get("sha1")
        version_bytes = self._fetch_verified(version_url, version_sha1)
        version_json = _parse_json(version_bytes, version_url)

        artifacts: list[Artifact] = [
            _artifact(
                name=f"version:{pinned_version_id}",
                kind=ArtifactKind.VERSION_DESCRIPTOR,
                url=version_url,
                path=f"versions/{pinned_version_id}/{pinned_version_id}.json",
                sha1=version_sha1 or hash_bytes(version_bytes, "sha1"),
                size=len(version_bytes),
            )
        ]

        client = (version_json.get("downloads") or {}).get("client")
        if client and client.get("sha1"):
            artifacts.append(
                _artifact(
                    name=f"client:{pinned_version_id}",
                    kind=ArtifactKind.PRIMARY_PACKAGE,
                    url=client["url"],
                    path=f"versions/{pinned_version_id}/{pinned_version_id}.jar",
                    sha1=client["sha1"],
                    size=client.get("size"),
                )
            )
        else:
            raise ConfigError(f"Version {pinned_version_id!r} does not publish a client package")

        artifacts.extend(self._asset_artifacts(version_json))
        artifacts.extend(self._library_artifacts(version_json))
        return _dedupe(artifacts)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _find_version(self, version_id: str) -> dict[str, Any]:
        url = self._config.version_manifest_url
        manifest = _parse_json(self._downloader.fetch_bytes(url), url)
        for entry in manifest.get("versions", []):
            if entry.get("id") == version_id:
                return entry
        raise ConfigError(
            f"Version {version_id!r} is not listed in the upstream version manifest",
            remediation="Check pinnedVersionId in pack/manifest.json.",
        )

    def _asset_artifacts(self, version_json: dict[str, Any]) -> list[Artifact]:
        index = version_json.get("assetIndex")
        if not index:
            return []
        index_id = index["id"]
        index_bytes = self._fetch_verified(index["url"], index.get("sha1"))
        artifacts = [
            _artifact(
                name=f"asset-index:{index_id}",
                kind=ArtifactKind.INDEX_FILE,
                url=index["url"],
                path=f"assets/indexes/{index_id}.json",
                sha1=index.get("sha1") or hash_bytes(index_bytes, "sha1"),
                size=len(index_bytes),
            )
        ]
        objects = _parse_json(index_bytes, index["url"]).get("objects", {})
        seen: set[str] = set()
        base = self._config.asset_base_url.rstrip("/")
        for key in sorted(objects):
            digest = objects[key]["hash"]
            if digest in seen:
                continue
            seen.add(digest)
            artifacts.append(
                _artifact(
                    name=f"asset:{key}",
                    kind=ArtifactKind.DATA_OBJECT,
                    url=f"{base}/{digest[:2]}/{digest}",
                    path=f"assets/objects/{digest[:2]}/{digest}",
                    sha1=digest,
                    size=objects[key].get("size"),
                )
            )
        return artifacts

    def _library_artifacts(self, version_json: dict[str, Any]) -> list[Artifact]:
        os_name = self._config.target_os
        artifacts: list[Artifact] = []
        for lib in version_json.get("libraries", []):
            if not rules_allow(lib.get("rules"), os_name):
                continue
            name = lib.get("name", "unknown")
            downloads = lib.get("downloads") or {}

            main = downloads.get("artifact")
            if main and main.get("path"):
                if main.get("sha1"):
                    artifacts.append(
                        _artifact(
                            name=f"library:{name}",
                            kind=ArtifactKind.DEPENDENCY,
                            url=main["url"],
                            path=f"libraries/{main['path']}",
                            sha1=main["sha1"],
                            size=main.get("size"),
                        )
                    )
                else:
                    logger.warning("Skipping library %s: no published checksum", name)

            classifier = (lib.get("natives") or {}).get(os_name)
            if classifier:
                classifier = classifier.replace("${arch}", self._config.native_arch)
                native = (downloads.get("classifiers") or {}).get(classifier)
                if native and native.get("sha1") and native.get("path"):
                    artifacts.append(
                        _artifact(
                            name=f"native:{name}:{classifier}",
                            kind=ArtifactKind.PLATFORM_SPECIFIC_COMPONENT,
                            url=native["url"],
                            path=f"libraries/{native['path']}",
                            sha1=native["sha1"],
                            size=native.get("size"),
                        )
                    )
                else:
                    logger.warning("Skipping native %s (%s): not published", name, classifier)
        return artifacts

    def _fetch_verified(self, url: str, sha1: str | None) -> bytes:
        data = self._downloader.fetch_bytes(url)
        if sha1 and hash_bytes(data, "sha1") != sha1:
            raise DownloadIntegrityFailure(
                f"Metadata at {url} does not match its published sha1 {sha1[:8]}"
            )
        return data


def _parse_json(data: bytes, url: str) -> dict[str, Any]:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Upstream metadata at {url} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError(f"Upstream metadata at {url} is not a JSON object")
    return parsed


def _artifact(
    *, name: str, kind: ArtifactKind, url: str, path: str, sha1: str, size: int | None
) -> Artifact:
    return Artifact(
        name=name,
        kind=kind.value,
        source_url=url,
        relative_path=path,
        checksum=Checksum(algorithm="sha1", value=sha1.lower()),
        size=size,
    )


def _dedupe(artifacts: list[Artifact]) -> list[Artifact]:
    seen_keys: set[tuple[str, str]] = set()
    seen_paths: set[str] = set()
    result: list[Artifact] = []
    for artifact in artifacts:
        if artifact.key in seen_keys or artifact.relative_path in seen_paths:
            logger.debug("Dropping duplicate artifact %s", artifact.name)
            continue
        seen_keys.add(artifact.key)
        seen_paths.add(artifact.relative_path)
        result.append(artifact)
    return result
