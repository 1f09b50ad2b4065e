"""
Tests for the exception hierarchy and logging setup.
"""

import json

import pytest
from loguru import logger

from retentio.core import logging_config
from retentio.core.config import RetentioConfig
from retentio.core.exceptions import (
    ConfigurationError,
    ErrorCategory,
    IrrecoverableError,
    PersistenceError,
    RecoverableError,
    RetentioError,
    StateCorruptionError,
    ValidationError,
)


class TestHierarchy:

    @pytest.mark.parametrize(
        "error,base,recoverable",
        [
            (PersistenceError("/tmp/x.json", "save", "disk full"), RecoverableError, True),
            (StateCorruptionError("item-1"), RecoverableError, True),
            (ConfigurationError("retention_targets.easy", "out of range"), IrrecoverableError, False),
            (ValidationError("item_id", "empty"), IrrecoverableError, False),
        ],
    )
    def test_categories(self, error, base, recoverable):
        assert isinstance(error, base)
        assert isinstance(error, RetentioError)
        assert error.recoverable is recoverable

    def test_persistence_error_context(self):
        err = PersistenceError("/tmp/x.json", "load", "bad json")
        assert err.path == "/tmp/x.json"
        assert err.context == {"path": "/tmp/x.json", "operation": "load"}
        assert "Could not load state" in str(err)
        data = err.to_dict()
        assert data["code"] == "PERSISTENCE_ERROR"
        assert data["category"] == ErrorCategory.PERSISTENCE.value

    def test_validation_value_truncated(self):
        err = ValidationError("item_id", "too long", value="x" * 300)
        assert len(err.context["value"]) == 103

    def test_overrides(self):
        err = RetentioError("custom", error_code="X", recoverable=False)
        assert err.error_code == "X"
        assert not err.recoverable
        assert str(err) == "custom"


class TestLogging:

    def test_configure_writes_to_file(self, tmp_path):
        log_file = tmp_path / "retentio.log"
        logging_config.configure_logging(level="INFO", json_format=False, sink=str(log_file))
        logger.info("engine started")
        logger.debug("hidden")
        logger.complete()
        logger.remove()
        text = log_file.read_text()
        assert "engine started" in text
        assert "hidden" not in text
        assert logging_config.is_configured()

    def test_json_lines_survive_quotes(self, tmp_path):
        log_file = tmp_path / "retentio.jsonl"
        logging_config.configure_logging(level="WARNING", json_format=True, sink=str(log_file))
        value = '9 "days"'
        logger.warning(f"Sanitized tau: {value!r} -> 9.0")
        logger.complete()
        logger.remove()
        lines = [line for line in log_file.read_text().splitlines() if line.strip()]
        assert len(lines) == 1
        record = json.loads(lines[0])["record"]
        assert record["level"]["name"] == "WARNING"
        assert record["message"] == """Sanitized tau: '9 "days"' -> 9.0"""

    def test_configure_from_config(self, tmp_path, monkeypatch):
        calls = {}
        monkeypatch.setattr(
            logging_config, "configure_logging", lambda **kwargs: calls.update(kwargs)
        )
        logging_config.configure_from_config(RetentioConfig())
        assert calls == {"level": "INFO", "json_format": False}
