"""
Tests for configuration loading and structured logging
"""

import json
import logging
import pytest
import sys

from lending_core.config import LendingConfig, get_config, reload_config
from lending_core.logging_config import JSONFormatter, setup_logging, get_logger, log_action


class ListHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestConfig:
    """Test environment-driven configuration"""

    def test_defaults(self):
        config = LendingConfig()
        assert config.use_sqlite is False
        assert config.month_overflow_policy == "clamp"
        assert config.storage_retry_attempts == 3
        assert config.enable_audit_logging is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LENDING_API_PORT", "9100")
        monkeypatch.setenv("LENDING_MONTH_OVERFLOW_POLICY", "roll")
        monkeypatch.setenv("LENDING_USE_SQLITE", "true")

        config = reload_config()
        try:
            assert config.api_port == 9100
            assert config.month_overflow_policy == "roll"
            assert config.use_sqlite is True
            assert get_config() is config
        finally:
            monkeypatch.undo()
            reload_config()


class TestStructuredLogging:
    """Test JSON logging helpers"""

    def test_json_formatter(self):
        logger = logging.getLogger("lending.test.formatter")
        record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "Payment recorded", (), None)
        record.action = "record_payment"
        record.resource = "LOAN001"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Payment recorded"
        assert entry["action"] == "record_payment"
        assert entry["resource"] == "LOAN001"
        assert "user_id" not in entry

    def test_json_formatter_includes_exception(self):
        logger = logging.getLogger("lending.test.formatter")
        try:
            raise ValueError("bad amount")
        except ValueError:
            record = logger.makeRecord(
                logger.name, logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad amount" in entry["exception"]

    def test_log_action_attaches_fields(self):
        logger = get_logger("lending.test.actions")
        logger.setLevel(logging.INFO)
        handler = ListHandler()
        logger.addHandler(handler)

        try:
            log_action(
                logger, "info", "Chain completed",
                user_id="AGENT7", action="complete_chain", resource="partial_L1_20250101_1",
                extra={"chain_total": "500.00"}
            )
            log_action(logger, "debug", "Suppressed")
        finally:
            logger.removeHandler(handler)

        assert len(handler.records) == 1
        record = handler.records[0]
        assert record.user_id == "AGENT7"
        assert record.action == "complete_chain"
        assert record.extra == {"chain_total": "500.00"}

    def test_setup_logging_text_format(self, tmp_path):
        log_file = tmp_path / "lending.log"
        logger = setup_logging(level="DEBUG", logger_name="lending.test.setup",
                               log_format="text", log_file=str(log_file))
        logger.debug("schedule built")
        for handler in logger.handlers:
            handler.flush()

        assert "schedule built" in log_file.read_text()
        assert logger.propagate is False

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
