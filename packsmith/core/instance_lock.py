"""Advisory cross-process lock for one instance root.

The lock file is created with ``O_CREAT | O_EXCL`` and records the owning
pid, host and acquisition time. A lock whose owner is gone (dead pid on the
same host) or which is older than the configured staleness window is broken
with a warning.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from pathlib import Path

from packsmith.core.errors import InstanceLockedError

logger = logging.getLogger(__name__)

STALE_SUFFIX = ".stale"


def _read_owner(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class InstanceLock:
    """Context manager guarding mutating operations on an instance.

    Parameters
    ----------
    path:
        Lock file location, normally ``<root>/.install.lock``.
    stale_after:
        Seconds after which a lock is considered abandoned regardless of pid.
    """

    def __init__(self, path: Path, *, stale_after: float = 6 * 3600) -> None:
        self._path = Path(path)
        self._stale_after = stale_after
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self.read_owner()
                if self._is_stale(owner):
                    logger.warning("Breaking stale instance lock %s held by %s", self._path, owner)
                    self._break(owner)
                    continue
                raise InstanceLockedError(
                    f"Instance is locked by pid {owner.get('pid')} on "
                    f"{owner.get('host')} since {owner.get('acquiredAt')}"
                )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(
                    {
                        "pid": os.getpid(),
                        "host": socket.gethostname(),
                        "acquiredAt": time.time(),
                    },
                    fh,
                )
            self._held = True
            logger.debug("Acquired instance lock %s", self._path)
            return
        raise InstanceLockedError(f"Could not acquire instance lock {self._path}")

    def release(self) -> None:
        if self._held:
            self._path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released instance lock %s", self._path)

    def read_owner(self) -> dict:
        """Contents of the current lock file; empty if unreadable."""
        return _read_owner(self._path)

    def _break(self, owner: dict) -> None:
        """Rename the stale lock aside, then put it back if it is no longer ``owner``.

        Two processes breaking the same stale lock cannot both succeed: the
        rename moves exactly one file, and a fresh lock that replaced the
        stale one in between is relinked into place.
        """
        aside = self._path.with_name(
            f"{self._path.name}.{os.getpid()}.{time.time_ns()}{STALE_SUFFIX}"
        )
        try:
            os.rename(self._path, aside)
        except FileNotFoundError:
            return
        try:
            moved = _read_owner(aside)
            if moved != owner:
                try:
                    os.link(aside, self._path)
                except FileExistsError:
                    logger.error(
                        "Instance lock %s held by %s was displaced by a third process",
                        self._path,
                        moved,
                    )
                else:
                    logger.warning("Instance lock %s was renewed by %s; restored it", self._path, moved)
        finally:
            aside.unlink(missing_ok=True)

    def _is_stale(self, owner: dict) -> bool:
        acquired = owner.get("acquiredAt")
        if not isinstance(acquired, (int, float)):
            # Unreadable or half-written lock file: judge by its mtime.
            try:
                acquired = self._path.stat().st_mtime
            except FileNotFoundError:
                return True
        if time.time() - acquired > self._stale_after:
            return True
        pid = owner.get("pid")
        if isinstance(pid, int) and owner.get("host") == socket.gethostname():
            return not _pid_alive(pid)
        return False

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
