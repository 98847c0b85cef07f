"""Tests for MCP sync tool definitions and handlers.

Covers:
- Tool definitions have valid schemas
- Each handler drives the engine and returns text plus structured content
- dry_run parameter routes to the dry-run entry point
- todoist_sync_status with and without debug
- todoist_document_changed path validation and events
"""

from __future__ import annotations

import asyncio

import mcp.types as types
import pytest
from conftest import FakeTodoistClient

from todoist_vault_sync.mcp.tools.sync import SYNC_SPECS, SYNC_TOOLS
from todoist_vault_sync.sync.engine import SyncEngine
from todoist_vault_sync.sync.state import StateStore

_HANDLERS = {spec.tool.name: spec.handler for spec in SYNC_SPECS}


def _call(engine: SyncEngine, name: str, args: dict | None = None):
    return asyncio.run(_HANDLERS[name](engine, args or {}))


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


@pytest.fixture
def engine(vault, settings_factory, fake_client) -> SyncEngine:
    settings = settings_factory()
    return SyncEngine(
        settings, fake_client, vault, state_store=StateStore(settings.state_dir)
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


class TestToolDefinitions:
    def test_names(self):
        assert [t.name for t in SYNC_TOOLS] == [
            "todoist_sync",
            "todoist_pull",
            "todoist_fetch",
            "todoist_scan",
            "todoist_push_all",
            "todoist_sync_status",
            "todoist_document_changed",
        ]

    def test_schemas_are_objects(self):
        for tool in SYNC_TOOLS:
            assert tool.inputSchema["type"] == "object"
            assert tool.description

    def test_document_changed_requires_path(self):
        (tool,) = [t for t in SYNC_TOOLS if t.name == "todoist_document_changed"]
        assert tool.inputSchema["required"] == ["path"]

    def test_every_tool_has_a_handler(self):
        assert set(_HANDLERS) == {t.name for t in SYNC_TOOLS}


# ---------------------------------------------------------------------------
# Run tools
# ---------------------------------------------------------------------------


class TestRunTools:
    def test_sync(self, engine, vault):
        result = _call(engine, "todoist_sync")

        assert not result.isError
        assert "Sync report for 'sync'" in _text(result)
        assert result.structuredContent["success"] is True
        assert result.structuredContent["report"]["counts"]["created"] == 4
        assert vault.document_exists("TodoistSync/Work/Write report.md")

    def test_sync_dry_run(self, engine, vault):
        result = _call(engine, "todoist_sync", {"dry_run": True})

        assert not result.isError
        assert "DRY RUN -- No changes will be made" in _text(result)
        assert result.structuredContent["report"]["dry_run"] is True
        assert not vault.folder_exists("TodoistSync")
        assert engine.settings.dry_run is False

    def test_pull(self, engine, vault, fake_client):
        result = _call(engine, "todoist_pull")

        assert not result.isError
        assert vault.document_exists("TodoistSync/Work/_project.md")
        assert fake_client.mutations == []

    def test_fetch_and_scan(self, engine):
        fetch = _call(engine, "todoist_fetch")
        scan = _call(engine, "todoist_scan")

        assert not fetch.isError
        assert not scan.isError
        assert engine.remote_state.get_stats()["tasks"] == 2
        assert engine.local_state.get_stats()["tasks"] == 0

    def test_push_all(self, engine):
        _call(engine, "todoist_sync")
        result = _call(engine, "todoist_push_all")
        assert not result.isError

    def test_failure_is_error(self, vault, settings_factory):
        engine = SyncEngine(settings_factory(), None, vault)

        result = _call(engine, "todoist_sync")

        assert result.isError
        assert result.structuredContent["success"] is False

    def test_unreachable_remote(self, vault, settings_factory):
        client = FakeTodoistClient()
        client.connected = False
        engine = SyncEngine(settings_factory(), client, vault)

        assert _call(engine, "todoist_sync").isError


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestSyncStatus:
    def test_counts(self, engine):
        _call(engine, "todoist_sync")

        result = _call(engine, "todoist_sync_status")
        text = _text(result)

        assert "Phase:        idle" in text
        assert "1 projects, 1 sections, 2 tasks" in text
        assert result.structuredContent["remote"]["tasks"] == 2
        assert result.structuredContent["local"]["projects"] == 1
        assert "debug" not in result.structuredContent

    def test_never_synced(self, engine):
        assert "Last sync:    never" in _text(_call(engine, "todoist_sync_status"))

    def test_debug(self, engine):
        _call(engine, "todoist_sync")

        result = _call(engine, "todoist_sync_status", {"debug": True})

        debug = result.structuredContent["debug"]
        assert debug["local"]["total_files"] == 4
        assert "Duplicates:   0" in _text(result)


# ---------------------------------------------------------------------------
# Document notifications
# ---------------------------------------------------------------------------


class TestDocumentChanged:
    def test_invalid_path(self, engine):
        result = _call(engine, "todoist_document_changed", {"path": "../x.md"})

        assert result.isError
        assert "validation_error" in _text(result)

    def test_modified_ignored_when_not_watching(self, engine):
        result = _call(
            engine,
            "todoist_document_changed",
            {"path": "TodoistSync/Work/Write report.md"},
        )
        assert result.structuredContent["queued"] is False
        assert "Ignored" in _text(result)

    def test_modified_queued_when_watching(self, engine):
        engine.start_file_watching()

        result = _call(
            engine,
            "todoist_document_changed",
            {"path": "TodoistSync/Work/Write report.md", "event": "modified"},
        )

        assert result.structuredContent["queued"] is True
        assert engine.pending_changes == 1

    def test_deleted(self, engine):
        _call(engine, "todoist_sync")

        result = _call(
            engine,
            "todoist_document_changed",
            {"path": "TodoistSync/Work/Write report.md", "event": "deleted"},
        )

        assert result.structuredContent["entity_id"] == "t1"
        assert engine.local_state.get_task_note("t1") is None

    def test_deleted_unknown(self, engine):
        result = _call(
            engine,
            "todoist_document_changed",
            {"path": "TodoistSync/nothing.md", "event": "deleted"},
        )
        assert result.structuredContent["entity_id"] is None

    def test_unknown_event(self, engine):
        with pytest.raises(ValueError, match="Unknown event"):
            _call(
                engine,
                "todoist_document_changed",
                {"path": "TodoistSync/a.md", "event": "renamed"},
            )
