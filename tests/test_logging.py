"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from faucet.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def make_record(msg: str = "Test message", level: int = logging.INFO, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test basic JSON formatting."""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test JSON formatting with claim context fields."""
        record = make_record("Claim dispatched")
        record.request_id = "req-1"
        record.wallet_hash = "abcd1234abcd1234"
        record.network = "ETH-SEPOLIA"
        record.credential_index = 2

        data = json.loads(JSONFormatter().format(record))

        assert data["request_id"] == "req-1"
        assert data["wallet_hash"] == "abcd1234abcd1234"
        assert data["network"] == "ETH-SEPOLIA"
        assert data["credential_index"] == 2

    def test_json_format_with_extra_fields(self):
        """Test that unknown attributes are grouped under extra."""
        record = make_record("Custom event")
        record.pool_size = 3

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["pool_size"] == 3

    def test_json_format_with_exception(self):
        """Test JSON formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text

    def test_none_context_fields_are_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "request_id" not in data
        assert "extra" not in data


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in JSONFormatter.CONTEXT_FIELDS:
            assert getattr(record, field) is None

    def test_preserves_existing_values(self):
        record = make_record()
        record.request_id = "existing"

        ContextFilter().filter(record)

        assert record.request_id == "existing"


class TestLoggingConfig:
    def test_json_format_selected(self):
        from faucet.app.core.config import settings

        with patch.object(settings, "log_format", "json"):
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert "faucet" in config["loggers"]

    def test_text_format_default(self):
        from faucet.app.core.config import settings

        with patch.object(settings, "log_format", "text"):
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_audit_logger_ignores_application_level(self):
        """Audit lines stay visible when the application logs at WARNING."""
        from faucet.app.core.config import settings

        with patch.object(settings, "log_level", "WARNING"):
            config = get_logging_config()

        assert config["loggers"]["faucet"]["level"] == "WARNING"
        assert config["loggers"]["faucet.audit"]["level"] == "INFO"
        assert config["handlers"]["audit_console"]["level"] == "INFO"


class TestHelpers:
    def test_get_log_context_drops_none(self):
        context = get_log_context(request_id="r1", event=None, network="ETH-SEPOLIA", mode=None)
        assert context == {"request_id": "r1", "network": "ETH-SEPOLIA"}

    def test_get_logger(self):
        assert get_logger("faucet.test").name == "faucet.test"
