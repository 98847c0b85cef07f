"""MCP tool handlers for Todoist vault sync.

Defines the sync tools:

- ``todoist_sync`` -- run the full pipeline (with optional dry-run).
- ``todoist_pull`` -- fetch, scan and reconcile without pushing.
- ``todoist_fetch`` -- refresh the remote state only.
- ``todoist_scan`` -- rebuild the local index only.
- ``todoist_push_all`` -- push every synced document to Todoist.
- ``todoist_sync_status`` -- counts, run status and optional debug info.
- ``todoist_document_changed`` -- file-watch notifications from the host.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...sync.engine import SyncEngine
from ...sync.models import SyncOutcome
from ...sync.reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from ...validators import validate_document_path
from .errors import build_error_response, format_timestamp
from .registry import ToolSpec

logger = logging.getLogger(__name__)

_NO_ARGS = {"type": "object", "properties": {}, "required": []}


def _annotations(read_only: bool) -> types.ToolAnnotations:
    return types.ToolAnnotations(
        readOnlyHint=read_only,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="todoist_sync",
        description=(
            "Synchronize the Todoist workspace with the Markdown vault: push "
            "local edits (completion, title, priority), then create or update "
            "documents for remote projects, sections and tasks."
        ),
        annotations=_annotations(read_only=False),
        inputSchema={
            "type": "object",
            "properties": {
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview decisions without writing files or calling Todoist",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="todoist_pull",
        description=(
            "Fetch from Todoist and update the vault without pushing local edits."
        ),
        annotations=_annotations(read_only=False),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="todoist_fetch",
        description="Refresh the in-memory Todoist state without touching the vault.",
        annotations=_annotations(read_only=True),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="todoist_scan",
        description="Rebuild the index of synced documents from the vault.",
        annotations=_annotations(read_only=True),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="todoist_push_all",
        description=(
            "Push every synced document to Todoist, whether or not it changed "
            "since the last sync."
        ),
        annotations=_annotations(read_only=False),
        inputSchema=_NO_ARGS,
    ),
    types.Tool(
        name="todoist_sync_status",
        description=(
            "Show sync status -- entity counts on both sides, last sync time, "
            "pending local changes, and optionally the debug listing."
        ),
        annotations=_annotations(read_only=True),
        inputSchema={
            "type": "object",
            "properties": {
                "debug": {
                    "type": "boolean",
                    "default": False,
                    "description": "Include document listing, duplicates and recent log lines",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="todoist_document_changed",
        description=(
            "Notify the server that a vault document was modified or deleted. "
            "Modified documents are pushed by the background drain when live "
            "sync is enabled."
        ),
        annotations=_annotations(read_only=False),
        inputSchema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Vault-relative path of the document",
                },
                "event": {
                    "type": "string",
                    "enum": ["modified", "deleted"],
                    "default": "modified",
                },
            },
            "required": ["path"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _outcome_result(
    outcome: SyncOutcome, preview: bool = False
) -> types.CallToolResult:
    """Render a SyncOutcome as text plus structured content."""
    lines = [outcome.message]
    structured: dict[str, Any] = {
        "success": outcome.success,
        "message": outcome.message,
    }
    if outcome.report is not None:
        if preview:
            lines.append(format_dry_run_preview(outcome.report))
        else:
            lines.append(format_sync_report(outcome.report))
        structured["report"] = report_to_json(outcome.report)

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n\n".join(lines))],
        structuredContent=structured,
        isError=not outcome.success,
    )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_sync(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    dry_run = bool(args.get("dry_run", False))
    if dry_run:
        outcome = await engine.perform_dry_run()
    else:
        outcome = await engine.perform_sync()
    return _outcome_result(outcome, preview=dry_run)


async def _handle_pull(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    return _outcome_result(await engine.pull())


async def _handle_fetch(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    return _outcome_result(await engine.fetch_from_remote())


async def _handle_scan(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    return _outcome_result(await engine.scan_local())


async def _handle_push_all(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    return _outcome_result(await engine.scan_and_sync_to_remote())


async def _handle_sync_status(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``todoist_sync_status`` tool."""
    stats = engine.get_stats()
    remote, local = stats.remote, stats.local
    lines = [
        "Todoist sync status",
        f"  Phase:        {stats.phase.value}"
        + (" (running)" if stats.is_running else ""),
        f"  Last sync:    {format_timestamp(stats.last_sync)}",
        f"  Sync folder:  {engine.settings.sync_folder}",
        f"  Dry run:      {engine.settings.dry_run}",
        f"  Pending:      {stats.pending_changes}",
        f"  Remote:       {remote.get('projects', 0)} projects, "
        f"{remote.get('sections', 0)} sections, {remote.get('tasks', 0)} tasks, "
        f"{remote.get('labels', 0)} labels",
        f"  Local:        {local.get('projects', 0)} projects, "
        f"{local.get('sections', 0)} sections, {local.get('tasks', 0)} tasks",
    ]
    structured: dict[str, Any] = stats.model_dump(mode="json")
    if args.get("debug"):
        debug = engine.get_debug_info()
        structured["debug"] = debug
        duplicates = debug["local"]["duplicates"]
        lines.append(f"  Duplicates:   {len(duplicates)}")
        for entry in duplicates:
            lines.append(
                f"    {entry['id']}: kept {entry['kept']}, dropped {entry['dropped']}"
            )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


async def _handle_document_changed(
    engine: SyncEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``todoist_document_changed`` tool."""
    valid, path = validate_document_path(args.get("path"))
    if not valid:
        return build_error_response(
            "validation_error",
            f"Invalid document path: {args.get('path')!r}",
            "Pass the vault-relative path of a Markdown document.",
        )

    event = args.get("event", "modified")
    match event:
        case "modified":
            queued = engine.on_document_modified(path)
            text = (
                f"Queued {path} for push"
                if queued
                else f"Ignored {path} (live sync off or outside the sync folder)"
            )
            structured = {"path": path, "event": event, "queued": queued}
        case "deleted":
            entity_id = engine.on_document_deleted(path)
            text = (
                f"Forgot document for {entity_id}"
                if entity_id
                else f"{path} was not a synced document"
            )
            structured = {"path": path, "event": event, "entity_id": entity_id}
        case _:
            raise ValueError(
                f"Unknown event '{event}': expected 'modified' or 'deleted'"
            )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


_HANDLERS = {
    "todoist_sync": _handle_sync,
    "todoist_pull": _handle_pull,
    "todoist_fetch": _handle_fetch,
    "todoist_scan": _handle_scan,
    "todoist_push_all": _handle_push_all,
    "todoist_sync_status": _handle_sync_status,
    "todoist_document_changed": _handle_document_changed,
}

SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=tool, handler=_HANDLERS[tool.name]) for tool in SYNC_TOOLS
]
