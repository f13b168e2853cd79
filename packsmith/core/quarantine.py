"""Quarantine store for live files that failed verification.

Nothing here is ever deleted by the engine. Each entry is a directory
``<timestamp>-<safe name>/`` holding the moved bytes and a ``record.json``
describing why they were removed.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

from packsmith.core.atomic import atomic_write_json
from packsmith.core.layout import InstanceLayout
from packsmith.models.lockfile import Checksum
from packsmith.models.snapshot import QuarantineRecord

logger = logging.getLogger(__name__)

RECORD_FILE = "record.json"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(name: str) -> str:
    """Filesystem-safe form of an artifact name."""
    return _UNSAFE.sub("_", name).strip("._")[:80] or "artifact"


class QuarantineStore:
    """Moves corrupted live files aside instead of deleting them."""

    def __init__(self, layout: InstanceLayout) -> None:
        self._root = layout.quarantine_root

    @property
    def root(self) -> Path:
        return self._root

    def quarantine(
        self,
        live_path: Path,
        *,
        name: str,
        relative_path: str,
        expected: Checksum,
        observed: Checksum | None,
        reason: str = "checksum_mismatch",
    ) -> QuarantineRecord:
        """Move ``live_path`` into a new quarantine entry.

        The move is a rename within the instance root, so the live path is
        either still present or already gone, never half-copied.
        """
        stamp = datetime.now(timezone.utc)
        entry_id = self._unique_entry_id(stamp, name)
        entry_dir = self._root / entry_id
        entry_dir.mkdir(parents=True, exist_ok=False)
        stored = entry_dir / live_path.name
        os.replace(live_path, stored)

        record = QuarantineRecord(
            entry_id=entry_id,
            name=name,
            relative_path=relative_path,
            expected=expected,
            observed=observed,
            reason=reason,
            quarantined_at=stamp,
            stored_file=stored.name,
        )
        atomic_write_json(entry_dir / RECORD_FILE, record.model_dump(mode="json", by_alias=True))
        logger.warning(
            "Quarantined %s (%s) to %s", name, relative_path, entry_dir
        )
        return record

    def list_entries(self) -> list[QuarantineRecord]:
        """All quarantine records, oldest first."""
        if not self._root.is_dir():
            return []
        records: list[QuarantineRecord] = []
        for entry_dir in sorted(self._root.iterdir()):
            record_path = entry_dir / RECORD_FILE
            if not record_path.is_file():
                continue
            records.append(
                QuarantineRecord.model_validate_json(record_path.read_text(encoding="utf-8"))
            )
        return records

    def _unique_entry_id(self, stamp: datetime, name: str) -> str:
        base = f"{stamp.strftime('%Y%m%dT%H%M%S%fZ')}-{safe_name(name)}"
        candidate = base
        counter = 1
        while (self._root / candidate).exists():
            counter += 1
            candidate = f"{base}-{counter}"
        return candidate
