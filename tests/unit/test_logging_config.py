"""Tests for structured logging setup and decision events."""

from __future__ import annotations

import json
import logging

import pytest

from packsmith.core.events import Authority, Decision, DecisionEvent, emit
from packsmith.logging_config import setup_logging
from packsmith.models.lockfile import Checksum

SHA1 = "a" * 40


@pytest.fixture
def packsmith_logger():
    yield logging.getLogger("packsmith")
    logger = logging.getLogger("packsmith")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


class TestSetupLogging:
    def test_json_lines_with_event_fields(self, packsmith_logger, capsys):
        setup_logging("INFO", "json")
        emit(
            logging.getLogger("packsmith.core.recovery"),
            DecisionEvent(
                event="rollback_promote_ok",
                decision=Decision.RESTORE,
                authority=Authority.SNAPSHOT,
                artifact="client:1.20.4",
                expected=Checksum(algorithm="sha1", value=SHA1),
                snapshot_id="s1",
            ),
        )
        line = capsys.readouterr().err.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["level"] == "INFO"
        assert payload["area"] == "packsmith.core.recovery"
        assert payload["event_kind"] == "rollback_promote_ok"
        assert payload["authority"] == "snapshot"
        assert payload["expected_checksum"] == f"sha1:{SHA1}"
        assert payload["remote_metadata_used"] is False

    def test_text_format(self, packsmith_logger, capsys):
        setup_logging("debug", "text")
        logging.getLogger("packsmith.test").debug("hello %s", "there")
        assert " - DEBUG - hello there" in capsys.readouterr().err

    def test_level_filters(self, packsmith_logger, capsys):
        setup_logging("WARNING", "text")
        logging.getLogger("packsmith.test").info("quiet")
        assert "quiet" not in capsys.readouterr().err

    def test_credentials_are_redacted(self, packsmith_logger, capsys):
        setup_logging("INFO", "json")
        logging.getLogger("packsmith.test").info("auth", extra={"authorization": "Bearer x"})
        payload = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert payload["authorization"] == "[redacted]"

    def test_repeated_setup_does_not_duplicate_handlers(self, packsmith_logger):
        setup_logging("INFO", "text")
        setup_logging("INFO", "text")
        assert len(packsmith_logger.handlers) == 1


class TestDecisionEvent:
    def test_message_names_artifact_and_checksums(self, caplog):
        event = DecisionEvent(
            event="promote",
            decision=Decision.QUARANTINE,
            artifact="asset-a",
            expected=Checksum(algorithm="sha1", value=SHA1),
            observed=Checksum(algorithm="sha1", value="b" * 40),
        )
        with caplog.at_level(logging.INFO, logger="packsmith"):
            emit(logging.getLogger("packsmith.core.executor"), event)
        record = caplog.records[-1]
        assert record.getMessage() == "promote: quarantine asset-a expected=aaaaaaaa observed=bbbbbbbb"
        assert record.decision == "quarantine"
        assert record.authority == "lockfile"
