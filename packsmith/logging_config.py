"""Structured logging configuration.

JSON lines via python-json-logger by default, plain text on request.
Structured fields passed through ``extra=`` (see ``packsmith.core.events``)
become top-level keys of each JSON line.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Never emitted, even if a caller passes them in ``extra``.
REDACTED_FIELDS = frozenset({"authorization", "access_token", "refresh_token", "password"})


class RedactingFilter(logging.Filter):
    """Blank out credential-looking extras before they reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in REDACTED_FIELDS:
            if hasattr(record, field):
                setattr(record, field, "[redacted]")
        return True


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Configure the ``packsmith`` logger hierarchy.

    Parameters
    ----------
    level:
        DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive).
    log_format:
        ``json`` or ``text``.
    """
    logger = logging.getLogger("packsmith")
    logger.setLevel(_LEVELS.get(level.upper(), logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={
                "asctime": "ts",
                "name": "area",
                "levelname": "level",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
