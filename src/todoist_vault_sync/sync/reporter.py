"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-run summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport

from .models import EntityKind, SyncAction

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Skipped entities are summarised by count only to avoid excessive
    output.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report for '{report.operation}'"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    if report.fetch_mode:
        lines.append(f"Fetch: {report.fetch_mode}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} entities: "
        f"{len(report.created)} created, {len(report.updated)} updated, "
        f"{len(report.pushed)} pushed, {len(report.errors)} errors"
    )
    lines.append("")

    sections = (
        ("Created:", report.created),
        ("Updated:", report.updated),
        ("Pushed to Todoist:", report.pushed),
    )
    for title, results in sections:
        ok = [r for r in results if r.success]
        if not ok:
            continue
        lines.append(title)
        for r in ok:
            lines.append(f"  {r.kind.value} {r.entity_id} -> {r.path}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.kind.value} {r.entity_id}: {r.error}")
        lines.append("")

    dropped = sum(report.dropped.values())
    if dropped:
        detail = ", ".join(
            f"{n} {kind}" for kind, n in sorted(report.dropped.items())
        )
        lines.append(f"Dropped invalid records: {detail}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} entities")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed action is shown as ``kind id -> path``.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Operation: {report.operation}")
    lines.append("")

    groups: dict[SyncAction, list[str]] = defaultdict(list)
    for r in report.results:
        groups[r.action].append(
            f"{r.kind.value} {r.entity_id} -> {r.path or '-'}"
        )

    for action in (SyncAction.PUSH, SyncAction.CREATE, SyncAction.UPDATE):
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper()}]")
        for entry in groups[action]:
            lines.append(f"  {entry}")
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, []))
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} entities (unchanged)")
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "id": r.entity_id,
            "kind": r.kind.value,
            "action": r.action.value,
            "path": r.path,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "operation": report.operation,
        "dry_run": report.dry_run,
        "fetch_mode": report.fetch_mode,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "updated": len(report.updated),
            "pushed": len(report.pushed),
            "skipped": len(report.skipped),
            "errors": len(report.errors),
            "dropped": sum(report.dropped.values()),
        },
        "by_kind": {
            kind.value: {
                action.value: report.count(action, kind)
                for action in SyncAction
            }
            for kind in EntityKind
        },
        "dropped": dict(report.dropped),
        "results": results_list,
    }
