"""
Tests for configuration loading and structured logging
"""

import io
import json
import logging

from bank_ledger.config import LedgerConfig, create_storage, reload_config
from bank_ledger.logging_config import (
    JSONFormatter, TextFormatter, get_logger, log_action, setup_logging
)
from bank_ledger.storage import InMemoryStorage, SQLiteStorage


class TestLedgerConfig:
    """Settings from BANK_LEDGER_* environment variables"""

    def test_defaults(self):
        config = LedgerConfig(_env_file=None)

        assert config.database_url == "sqlite:///bank_ledger.db"
        assert config.max_conflict_retries == 3
        assert config.default_page_size == 20
        assert config.auth_enabled is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BANK_LEDGER_DATABASE_URL", "memory://")
        monkeypatch.setenv("BANK_LEDGER_MAX_PAGE_SIZE", "50")
        monkeypatch.setenv("BANK_LEDGER_AUTH_ENABLED", "false")

        config = reload_config()

        assert config.database_url == "memory://"
        assert config.max_page_size == 50
        assert config.auth_enabled is False

        monkeypatch.undo()
        reload_config()

    def test_create_storage_from_config(self):
        storage = create_storage(LedgerConfig(_env_file=None, database_url="memory://"))
        assert isinstance(storage, InMemoryStorage)

        storage = create_storage(LedgerConfig(_env_file=None, database_url="sqlite:///:memory:"))
        assert isinstance(storage, SQLiteStorage)
        storage.close()


class TestStructuredLogging:

    def _capture(self, formatter, name):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(formatter)
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        return logger, stream

    def test_json_lines_carry_structured_fields(self):
        logger, stream = self._capture(JSONFormatter(), "bank_ledger_test.json")

        log_action(logger, "warning", "withdraw rejected", action="withdraw",
                   resource="TR0000000001", extra={"error_code": "INSUFFICIENT_FUNDS"})

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "WARNING"
        assert entry["message"] == "withdraw rejected"
        assert entry["action"] == "withdraw"
        assert entry["resource"] == "TR0000000001"
        assert entry["extra"] == {"error_code": "INSUFFICIENT_FUNDS"}
        assert "user_id" not in entry

    def test_exception_info_included(self):
        logger, stream = self._capture(JSONFormatter(), "bank_ledger_test.exc")

        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            log_action(logger, "error", "storage failure", exc_info=True)

        entry = json.loads(stream.getvalue())
        assert "RuntimeError: disk full" in entry["exception"]

    def test_text_format(self):
        logger, stream = self._capture(TextFormatter(), "bank_ledger_test.text")

        log_action(logger, "info", "deposit completed", action="deposit")

        line = stream.getvalue()
        assert "INFO" in line
        assert "deposit completed" in line
        assert "action=deposit" in line

    def test_disabled_level_is_skipped(self):
        logger, stream = self._capture(JSONFormatter(), "bank_ledger_test.level")
        logger.setLevel(logging.WARNING)

        log_action(logger, "debug", "noise")

        assert stream.getvalue() == ""

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="bank_ledger_test.setup")
        logger = setup_logging("INFO", logger_name="bank_ledger_test.setup", log_format="text")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, TextFormatter)
        assert logger.level == logging.INFO

    def test_get_logger_nests_names(self):
        assert get_logger("ledger").name == "bank_ledger.ledger"
        assert get_logger("bank_ledger.queries").name == "bank_ledger.queries"
        assert get_logger().name == "bank_ledger"
