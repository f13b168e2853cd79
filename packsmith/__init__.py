"""Packsmith: deterministic, lockfile-driven install and recovery engine.

Turns a pinned, checksum-verified artifact list into a byte-identical game
installation and recovers it safely after interruption or corruption:
  - Lockfile generated once, regenerated only on explicit, audited request
  - Download -> stage -> verify -> atomic promote, bounded worker pools
  - Corrupted live files quarantined, never deleted
  - Content-addressed snapshots for rollback without remote metadata
"""

__version__ = "0.1.0"
__description__ = "Deterministic, lockfile-driven install and recovery engine"

from packsmith.config import EngineConfig
from packsmith.core.engine import InstallEngine
from packsmith.core.errors import EngineError, ErrorKind

__all__ = ["EngineConfig", "EngineError", "ErrorKind", "InstallEngine", "__version__"]
