"""Dual-state reconciliation between Todoist and a Markdown vault.

Architecture
------------
Two in-memory sources are compared on every run:

- ``RemoteState`` (source A) mirrors the Todoist workspace and changes
  only by replaying validated payloads.
- ``LocalState`` (source B) indexes the synced documents in the vault
  and is rebuilt by scanning.

``SyncEngine`` pushes local edits first, then reconciles remote -> local
in project, section, task order.

Modules:

- ``engine``        -- ``SyncEngine``: single-flight run pipeline.
- ``scheduler``     -- ``SyncScheduler``: auto-sync and drain timers.
- ``remote_state``  -- ``RemoteState``: source A.
- ``local_state``   -- ``LocalState``: source B.
- ``materializer``  -- ``DocumentMaterializer``: writes documents.
- ``frontmatter``   -- property-block codec and change extraction.
- ``mapper``        -- ``sanitize_name`` and ``PathMapper``.
- ``state``         -- ``StateStore``: persisted remote state.
- ``models``        -- pydantic data contracts.
- ``reporter``      -- human-readable and JSON report formatting.

The engine, the states and the materializer are imported from their
modules directly; this package only re-exports the leaf modules.

Usage example
-------------
::

    from todoist_vault_sync.file_handler import VaultStorage
    from todoist_vault_sync.sync.engine import SyncEngine
    from todoist_vault_sync.sync import format_sync_report

    engine = SyncEngine(settings, client, VaultStorage(settings.vault_root))
    outcome = await engine.perform_sync()
    print(format_sync_report(outcome.report))
"""

from .mapper import PathMapper, sanitize_name
from .models import (
    EntityKind,
    RunPhase,
    SyncAction,
    SyncOutcome,
    SyncReport,
    SyncResult,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .state import StateStore

__all__ = [
    "EntityKind",
    "PathMapper",
    "RunPhase",
    "StateStore",
    "SyncAction",
    "SyncOutcome",
    "SyncReport",
    "SyncResult",
    "format_dry_run_preview",
    "format_sync_report",
    "report_to_json",
    "sanitize_name",
]
