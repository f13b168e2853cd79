"""Engine error taxonomy.

Every failure the engine reports is an ``EngineError`` tagged with one
member of the closed ``ErrorKind`` enum, so callers can branch on the kind
instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIG_ERROR = "config_error"
    UNSUPPORTED_ARTIFACT_KIND = "unsupported_artifact_kind"
    DOWNLOAD_INTEGRITY_FAILURE = "download_integrity_failure"
    PROMOTION_FAILURE = "promotion_failure"
    NO_RECOVERY_PATH_AVAILABLE = "no_recovery_path_available"
    INSTANCE_LOCKED = "instance_locked"


class EngineError(RuntimeError):
    """Base class for all engine failures.

    Parameters
    ----------
    message:
        What went wrong.
    remediation:
        What the user can do about it.
    artifacts:
        Names of the artifacts involved, if any.
    """

    kind: ErrorKind = ErrorKind.CONFIG_ERROR
    default_remediation: str = ""

    def __init__(
        self,
        message: str,
        *,
        remediation: str | None = None,
        artifacts: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = remediation or self.default_remediation
        self.artifacts = list(artifacts or [])

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form for CLI and log output."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "remediation": self.remediation,
            "artifacts": self.artifacts,
        }


class ConfigError(EngineError):
    """Raised when the lockfile or descriptor is missing, unreadable or invalid."""

    kind = ErrorKind.CONFIG_ERROR
    default_remediation = "Fix or restore pack/lock.json, or regenerate it explicitly."


class UnsupportedArtifactKind(EngineError):
    """Raised when the lockfile names an artifact kind this engine cannot install."""

    kind = ErrorKind.UNSUPPORTED_ARTIFACT_KIND
    default_remediation = (
        "Upgrade the engine, or regenerate the lockfile with "
        "`packsmith lock --regenerate`."
    )


class DownloadIntegrityFailure(EngineError):
    """Raised when an artifact cannot be obtained with the declared checksum."""

    kind = ErrorKind.DOWNLOAD_INTEGRITY_FAILURE
    default_remediation = (
        "Check network connectivity and retry. If the upstream file changed, "
        "the lockfile must be regenerated explicitly."
    )


class PromotionFailure(EngineError):
    """Raised when a verified staged artifact cannot be moved into the live tree."""

    kind = ErrorKind.PROMOTION_FAILURE
    default_remediation = (
        "Check disk space and permissions under the instance root, then retry. "
        "Verified staged files are kept and will be reused."
    )


class NoRecoveryPathAvailable(EngineError):
    """Raised when the install cannot be repaired and no snapshot can restore it."""

    kind = ErrorKind.NO_RECOVERY_PATH_AVAILABLE
    default_remediation = (
        "Retry once the network is reachable, or reinstall the pack into a "
        "fresh instance directory."
    )


class InstanceLockedError(EngineError):
    """Raised when another live process holds the instance lock."""

    kind = ErrorKind.INSTANCE_LOCKED
    default_remediation = (
        "Wait for the other install to finish. If no other process is running, "
        "delete the .install.lock file in the instance root."
    )
