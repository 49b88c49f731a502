"""Tests for logger.py -- CLI and MCP logging setup."""

import json
import logging
from pathlib import Path

import pytest

from kgsync.logger import JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


class TestSetupLogging:
    def test_cli_defaults_to_info_on_stderr(self):
        setup_logging(mode="cli")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0], logging.StreamHandler)

    def test_debug_flag(self):
        setup_logging(mode="cli", debug=True)
        assert logging.getLogger().level == logging.DEBUG

    def test_env_level_overrides_config_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", level="DEBUG")
        assert logging.getLogger().level == logging.ERROR

    def test_config_level_used_without_env(self):
        setup_logging(mode="cli", level="warning")
        assert logging.getLogger().level == logging.WARNING

    def test_mcp_mode_logs_to_file_only(self, tmp_path: Path):
        log_file = tmp_path / "mcp.log"
        setup_logging(mode="mcp", log_file=str(log_file))
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.FileHandler)
        logging.getLogger("kgsync.test").warning("hello")
        root.handlers[0].flush()
        assert "hello" in log_file.read_text()

    def test_cli_with_log_file_adds_handler(self, tmp_path: Path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))
        assert len(logging.getLogger().handlers) == 2

    def test_watchdog_quieted(self):
        setup_logging(mode="cli")
        assert logging.getLogger("watchdog").level == logging.WARNING


class TestJsonFormatter:
    def test_single_line_json(self):
        record = logging.LogRecord(
            "kgsync.sync", logging.INFO, __file__, 1, "synced %d", (3,), None
        )
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "kgsync.sync"
        assert data["msg"] == "synced 3"
        assert "exc" not in data
