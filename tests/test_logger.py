"""Tests for logger.py: setup_logging(), JsonFormatter and LogBuffer.

Covers:
- CLI mode logging (stderr handler)
- MCP mode logging (file handler only)
- Debug level override and LOG_LEVEL handling
- JSON formatter output
- The in-memory buffer behind the debug surface

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import os
import sys
from unittest.mock import patch

from todoist_vault_sync.logger import (
    DEFAULT_LOG_FILE,
    JsonFormatter,
    LogBuffer,
    get_log_buffer,
    setup_logging,
)


def _record(msg="Hello %s", args=("world",), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def _close_file_handlers(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_mcp_mode_logs_to_file_only(self, mock_basic, tmp_path):
        """MCP mode never attaches a stream handler (stdout is JSON-RPC)."""
        log_file = str(tmp_path / "test-mcp.log")
        setup_logging(mode="mcp", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        try:
            file_handlers = [
                h for h in handlers if isinstance(h, logging.FileHandler)
            ]
            assert len(file_handlers) == 1
            assert file_handlers[0].baseFilename == os.path.abspath(log_file)
            assert not any(
                type(h) is logging.StreamHandler for h in handlers
            )
        finally:
            _close_file_handlers(handlers)

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_mcp_mode_default_log_file(self, mock_basic, monkeypatch, tmp_path):
        monkeypatch.delenv("LOG_FILE", raising=False)
        with patch(
            "todoist_vault_sync.logger.logging.FileHandler"
        ) as mock_file_handler:
            setup_logging(mode="mcp")

        mock_file_handler.assert_called_once_with(DEFAULT_LOG_FILE, mode="a")

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic):
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli")

        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_default_levels(self, mock_basic, monkeypatch, tmp_path):
        """MCP defaults to WARNING, CLI to INFO."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="mcp", log_file=str(tmp_path / "x.log"))
        mcp_kwargs = mock_basic.call_args[1]
        _close_file_handlers(mcp_kwargs["handlers"])
        setup_logging(mode="cli")

        assert mcp_kwargs["level"] == logging.WARNING
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        """CLI mode with log_file creates both stderr and file handlers."""
        setup_logging(mode="cli", log_file=str(tmp_path / "test-cli.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        try:
            assert any(type(h) is logging.StreamHandler for h in handlers)
            assert any(isinstance(h, logging.FileHandler) for h in handlers)
        finally:
            _close_file_handlers(handlers)

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(mode="cli", debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert isinstance(handlers[0].formatter, JsonFormatter)

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_log_buffer_attached(self, mock_basic):
        setup_logging(mode="cli")

        assert get_log_buffer() in mock_basic.call_args[1]["handlers"]

    @patch("todoist_vault_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        setup_logging(mode="cli")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")

        data = json.loads(formatter.format(_record()))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["msg"] == "Hello world"

    def test_includes_exception(self):
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        output = formatter.format(
            _record("An error occurred", (), logging.ERROR, exc_info)
        )
        data = json.loads(output)

        assert "ValueError" in data["exc"]
        assert "test error" in data["exc"]
        assert "\n" not in output


# ---------------------------------------------------------------------------
# LogBuffer tests
# ---------------------------------------------------------------------------


class TestLogBuffer:
    def test_keeps_formatted_messages(self):
        buffer = LogBuffer()
        buffer.emit(_record())

        entries = buffer.recent()
        assert len(entries) == 1
        assert entries[0]["msg"] == "Hello world"
        assert entries[0]["level"] == "INFO"
        assert entries[0]["logger"] == "test.logger"

    def test_capacity_drops_oldest(self):
        buffer = LogBuffer(capacity=3)
        for i in range(5):
            buffer.emit(_record("line %d", (i,)))

        assert [e["msg"] for e in buffer.recent()] == [
            "line 2",
            "line 3",
            "line 4",
        ]

    def test_recent_limit(self):
        buffer = LogBuffer()
        for i in range(4):
            buffer.emit(_record("line %d", (i,)))

        assert [e["msg"] for e in buffer.recent(2)] == ["line 2", "line 3"]
        assert buffer.recent(0) == []

    def test_clear(self):
        buffer = LogBuffer()
        buffer.emit(_record())
        buffer.clear()

        assert buffer.recent() == []

    def test_works_as_logging_handler(self):
        buffer = LogBuffer()
        log = logging.getLogger("todoist_vault_sync.test_buffer")
        log.addHandler(buffer)
        log.setLevel(logging.INFO)
        try:
            log.info("Pushed %s", "t1")
        finally:
            log.removeHandler(buffer)

        assert buffer.recent()[-1]["msg"] == "Pushed t1"
