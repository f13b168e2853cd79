"""Structured decision events for recovery and integrity checks.

Every resume, quarantine, repair or rollback decision is emitted as one log
record whose extras carry the expected checksum (from the lockfile or a
snapshot), the observed checksum (from the filesystem) and the authority
that decided. Remote metadata is never consulted for these decisions, and
the event says so.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict

from packsmith.models.lockfile import Checksum


class Authority(str, Enum):
    LOCKFILE = "lockfile"
    SNAPSHOT = "snapshot"


class Decision(str, Enum):
    RESUME = "resume"
    DISCARD_STAGED = "discard_staged"
    FETCH = "fetch"
    RETRY_DOWNLOAD = "retry_download"
    QUARANTINE = "quarantine"
    PROMOTE = "promote"
    REPAIR = "repair"
    ROLLBACK = "rollback"
    RESTORE = "restore"
    UNCHANGED = "unchanged"
    SKIP_SNAPSHOT = "skip_snapshot"
    FAIL = "fail"


class DecisionEvent(BaseModel):
    """One recovery or integrity decision."""

    model_config = ConfigDict(frozen=True)

    event: str
    decision: Decision
    authority: Authority = Authority.LOCKFILE
    artifact: str | None = None
    expected: Checksum | None = None
    observed: Checksum | None = None
    snapshot_id: str | None = None
    detail: str | None = None

    def extras(self) -> dict[str, object]:
        """Flat log-record extras; keys avoid LogRecord's reserved names."""
        return {
            "event_kind": self.event,
            "decision": self.decision.value,
            "authority": self.authority.value,
            "artifact": self.artifact,
            "expected_checksum": str(self.expected) if self.expected else None,
            "observed_checksum": str(self.observed) if self.observed else None,
            "snapshot_id": self.snapshot_id,
            "remote_metadata_used": False,
        }


def emit(logger: logging.Logger, event: DecisionEvent, level: int = logging.INFO) -> None:
    """Log ``event`` with its structured fields attached as extras."""
    message = f"{event.event}: {event.decision.value}"
    if event.artifact:
        message += f" {event.artifact}"
    if event.expected is not None:
        message += f" expected={event.expected.prefix}"
    if event.observed is not None:
        message += f" observed={event.observed.prefix}"
    if event.detail:
        message += f" ({event.detail})"
    logger.log(level, message, extra=event.extras())
