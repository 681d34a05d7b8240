"""Tests for logging setup."""

import json
import logging
from pathlib import Path

import pytest

from oauth_lifecycle.observability.audit import LoggingEventSink
from oauth_lifecycle.utils.logging_config import AUDIT_LOGGER_NAME, configure_audit_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_audit_logger():
    yield
    configure_audit_logger(None)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_returns_named_logger(self) -> None:
        logger = setup_logging("oauth_lifecycle.cli", level="debug")
        assert logger.name == "oauth_lifecycle.cli"
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_http_client_loggers(self) -> None:
        setup_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_log_file(self, temp_dir: Path) -> None:
        log_file = temp_dir / "logs" / "oauth.log"
        logger = setup_logging("oauth_lifecycle.test", level="INFO", log_file=log_file)

        logger.info("callback server listening")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "oauth_lifecycle.test - INFO - callback server listening" in log_file.read_text()


class TestAuditLogger:
    """Tests for routing audit events."""

    def test_audit_events_to_own_file(self, temp_dir: Path) -> None:
        audit_file = temp_dir / "audit" / "events.jsonl"
        setup_logging(level="WARNING", audit_log_file=audit_file)

        LoggingEventSink().record("oauth_token_refresh", "success", "auth", {"client_id": "abc"})
        for handler in logging.getLogger(AUDIT_LOGGER_NAME).handlers:
            handler.flush()

        event = json.loads(audit_file.read_text().strip())
        assert event["action"] == "oauth_token_refresh"
        assert event["details"] == {"client_id": "abc"}
        assert logging.getLogger(AUDIT_LOGGER_NAME).propagate is False

    def test_reconfigure_replaces_handlers(self, temp_dir: Path) -> None:
        configure_audit_logger(temp_dir / "a.jsonl")
        audit_logger = configure_audit_logger(temp_dir / "b.jsonl")
        assert len(audit_logger.handlers) == 1

        audit_logger = configure_audit_logger(None)
        assert audit_logger.handlers == []
        assert audit_logger.propagate is True
