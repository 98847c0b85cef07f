"""Tests for tool registration, routing and the CLI entry points of the MCP server.

Verifies:
- Every sync tool plus ping appears in handle_list_tools
- Tool calls route through the ToolRegistry
- Unknown or filtered-out tools return an error response
- ping reports connectivity
- --once runs a single sync and returns an exit code

Note: Detailed handler behavior is tested in tests/test_mcp/tools/test_sync.py.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import mcp.types as types
import pytest

from todoist_vault_sync.mcp import server as server_module
from todoist_vault_sync.mcp.server import (
    PING_SPEC,
    build_registry,
    get_engine,
    get_registry,
    handle_call_tool,
    handle_list_tools,
    run,
    set_engine,
    set_registry,
    sync_once,
)
from todoist_vault_sync.mcp.tools import ALL_SPECS
from todoist_vault_sync.sync.models import SyncOutcome, SyncReport


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.client = MagicMock()
    engine.test_connection = AsyncMock(return_value=True)
    set_engine(engine)
    yield engine
    set_engine(None)


@pytest.fixture
def registry():
    set_registry(build_registry())
    yield get_registry()
    set_registry(None)


class TestGlobals:
    def test_engine_not_initialized(self):
        set_engine(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()

    def test_registry_not_initialized(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()


class TestRouting:
    def test_list_tools(self, registry):
        names = [t.name for t in asyncio.run(handle_list_tools())]
        assert names[0] == "ping"
        assert names[1:] == [spec.tool.name for spec in ALL_SPECS]

    def test_call_routes_to_handler(self, registry, engine):
        engine.scan_local = AsyncMock(
            return_value=SyncOutcome(success=True, message="Scanned 0 tasks")
        )

        result = asyncio.run(handle_call_tool("todoist_scan", {}))

        engine.scan_local.assert_awaited_once()
        assert not result.isError
        assert _text(result) == "Scanned 0 tasks"

    def test_unknown_tool(self, registry, engine):
        result = asyncio.run(handle_call_tool("todoist_delete_everything", {}))
        assert result.isError
        assert "unknown_tool" in _text(result)

    def test_filtered_tool(self, tmp_path, engine):
        tools_file = tmp_path / "read-only.tools"
        tools_file.write_text("todoist_sync_status\n")
        set_registry(build_registry(str(tools_file)))
        try:
            names = [t.name for t in asyncio.run(handle_list_tools())]
            result = asyncio.run(handle_call_tool("todoist_sync", {}))
        finally:
            set_registry(None)

        assert names == ["ping", "todoist_sync_status"]
        assert result.isError


class TestPing:
    def test_connected(self, engine):
        result = asyncio.run(PING_SPEC.handler(engine, {}))
        assert not result.isError
        assert "connected to Todoist" in _text(result)

    def test_connection_failed(self, engine):
        engine.test_connection.return_value = False
        result = asyncio.run(PING_SPEC.handler(engine, {}))
        assert result.isError

    def test_no_token(self, engine):
        engine.client = None
        result = asyncio.run(PING_SPEC.handler(engine, {}))
        assert result.isError
        assert "TODOIST_API_TOKEN" in _text(result)

    def test_always_available(self):
        assert PING_SPEC.always_available


class TestSyncOnce:
    def _engine(self, outcome):
        engine = MagicMock()
        engine.perform_sync = AsyncMock(return_value=outcome)
        return engine

    def test_success(self, capsys):
        report = SyncReport(operation="sync", started_at="2026-02-07T10:00:00Z")
        engine = self._engine(
            SyncOutcome(success=True, message="Sync completed", report=report)
        )
        with (
            patch.object(server_module, "setup_logging"),
            patch.object(server_module, "build_engine", return_value=engine),
        ):
            code = asyncio.run(sync_once({}))

        assert code == 0
        engine.load_state.assert_called_once()
        out = capsys.readouterr().out
        assert "Sync completed" in out
        assert "Sync report for 'sync'" in out

    def test_dry_run_prints_preview(self, capsys):
        report = SyncReport(
            operation="sync", dry_run=True, started_at="2026-02-07T10:00:00Z"
        )
        engine = self._engine(SyncOutcome(success=True, message="ok", report=report))
        with (
            patch.object(server_module, "setup_logging"),
            patch.object(server_module, "build_engine", return_value=engine),
        ):
            asyncio.run(sync_once({"dry_run": True}))

        assert "DRY RUN" in capsys.readouterr().out

    def test_failure_exit_code(self):
        engine = self._engine(SyncOutcome(success=False, message="no token"))
        with (
            patch.object(server_module, "setup_logging"),
            patch.object(server_module, "build_engine", return_value=engine),
        ):
            assert asyncio.run(sync_once({})) == 1

    def test_config_error(self, capsys):
        with (
            patch.object(server_module, "setup_logging"),
            patch.object(
                server_module, "build_engine", side_effect=ValueError("bad")
            ),
        ):
            assert asyncio.run(sync_once({})) == 1
        assert "Configuration error: bad" in capsys.readouterr().err


class TestRunArguments:
    def test_once_passes_overrides(self, monkeypatch):
        monkeypatch.setattr(
            "sys.argv",
            [
                "todoist-vault-sync",
                "--once",
                "--vault",
                "/notes",
                "--sync-folder",
                "Tasks",
                "--dry-run",
            ],
        )
        seen = {}

        async def fake_sync_once(overrides):
            seen.update(overrides)
            return 0

        with patch.object(server_module, "sync_once", fake_sync_once):
            with pytest.raises(SystemExit) as exc_info:
                run()

        assert exc_info.value.code == 0
        assert seen["vault_root"] == "/notes"
        assert seen["sync_folder"] == "Tasks"
        assert seen["dry_run"] is True
        assert seen["debug_format"] == "text"

    def test_runtime_error_exits_1(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["todoist-vault-sync"])

        async def failing_main(config_overrides=None):
            raise RuntimeError("Configuration error")

        with patch.object(server_module, "main", failing_main):
            with pytest.raises(SystemExit) as exc_info:
                run()

        assert exc_info.value.code == 1
