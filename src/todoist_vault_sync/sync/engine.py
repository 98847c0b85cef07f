"""Reconciliation engine that keeps the vault and Todoist in step.

The ``SyncEngine`` owns one run at a time (single-flight) and walks it
through ``FETCHING -> SCANNING -> PUSHING_LOCAL_CHANGES -> RECONCILING``:

1. Checks the remote is reachable.
2. Fetches an incremental payload (or a full snapshot) into ``RemoteState``.
3. Rebuilds ``LocalState`` from the documents under the sync folder.
4. Pushes local edits: the pending queue first, then every document
   modified after the previous run.
5. Reconciles remote -> local in project, section, task order.
6. Records the completion time as the next run's watermark.

Push happens before reconcile in the same pass, so a local edit whose
push fails can still be overwritten by the remote copy fetched in step 2.

Everything that fails below the engine is turned into a ``SyncOutcome``
here; nothing escapes to the host.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..config_schema import SyncSettings
from ..core.async_utils import run_sync
from ..core.client import FULL_TOKEN_PREFIX
from ..errors import StorageError, SyncError, TransportError
from ..logger import get_log_buffer
from ..validators import validate_payload
from .frontmatter import task_changes
from .local_state import LocalState, document_from_stored
from .materializer import DocumentMaterializer
from .models import (
    INITIAL_SYNC_TOKEN,
    Document,
    EntityKind,
    Project,
    RunPhase,
    Section,
    SyncAction,
    SyncOutcome,
    SyncReport,
    SyncResult,
    SyncStats,
    Task,
)
from .remote_state import RemoteState
from .state import StateStore

if TYPE_CHECKING:
    from ..core.client import TodoistClient
    from ..file_handler import VaultStorage

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "Sync already in progress"
NO_TOKEN = "Todoist API token not configured"
CONNECTION_FAILED = "Failed to connect to Todoist API"

ClientFactory = Callable[[SyncSettings], "TodoistClient | None"]


def parse_timestamp(value: str | None) -> float:
    """Epoch seconds for an ISO 8601 string; missing or unparseable -> 0.0.

    ``Z`` suffixes are accepted and naive values are read as UTC.
    """
    if not value:
        return 0.0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _Run:
    """Mutable bookkeeping for one guarded run."""

    operation: str
    dry_run: bool
    started_at: str = field(default_factory=_now_iso)
    fetch_mode: str | None = None
    dropped: dict[str, int] = field(default_factory=dict)
    results: list[SyncResult] = field(default_factory=list)
    storage_failed: bool = False

    def add(self, result: SyncResult) -> None:
        self.results.append(result)

    def report(self) -> SyncReport:
        return SyncReport(
            operation=self.operation,
            dry_run=self.dry_run,
            fetch_mode=self.fetch_mode,
            dropped=dict(self.dropped),
            results=list(self.results),
            started_at=self.started_at,
            completed_at=_now_iso(),
        )


class SyncEngine:
    """Run reconciliation passes between ``RemoteState`` and ``LocalState``.

    Args:
        settings: Current sync settings.
        client: Todoist client, or ``None`` when no token is configured.
        storage: Vault storage used for reads and writes.
        remote_state: Source A; built fresh when omitted.
        local_state: Source B; built over *storage* when omitted.
        materializer: Document writer; built from *settings* when omitted.
        state_store: Persists ``RemoteState`` between runs when given.
        client_factory: Builds a client from new settings in
            ``update_settings()``.
        logger: Logger shared with the components the engine builds.
    """

    def __init__(
        self,
        settings: SyncSettings,
        client: TodoistClient | None,
        storage: VaultStorage,
        remote_state: RemoteState | None = None,
        local_state: LocalState | None = None,
        materializer: DocumentMaterializer | None = None,
        state_store: StateStore | None = None,
        client_factory: ClientFactory | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self.settings = settings
        self.client = client
        self.storage = storage
        self._logger = logger
        self.remote_state = remote_state or RemoteState(logger=logger)
        self.local_state = local_state or LocalState(
            storage,
            settings.sync_folder,
            scope_tag=settings.scope_tag,
            logger=logger,
        )
        self.materializer = materializer or self._build_materializer(settings)
        self.state_store = state_store
        self.client_factory = client_factory

        self.phase = RunPhase.IDLE
        self.last_sync_time = 0.0
        self._running = False
        self._watching = False
        self._pending: dict[str, float] = {}
        self._in_flight: set[str] = set()

    def _build_materializer(
        self, settings: SyncSettings
    ) -> DocumentMaterializer:
        return DocumentMaterializer(
            self.storage,
            settings.sync_folder,
            scope_tag=settings.scope_tag,
            enabled_properties=settings.enabled_properties,
            dry_run=settings.dry_run,
            path_owner=self.local_state.get_id_for_path,
            logger=self._logger,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Run guard
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        operation: str,
        steps: Callable[[_Run], Awaitable[tuple[bool, str]]],
        requires_client: bool = True,
    ) -> SyncOutcome:
        if self._running:
            self._logger.warning("%s rejected: %s", operation, ALREADY_RUNNING)
            return SyncOutcome(success=False, message=ALREADY_RUNNING)
        if requires_client and self.client is None:
            self._logger.error("%s: %s", operation, NO_TOKEN)
            return SyncOutcome(success=False, message=NO_TOKEN)

        self._running = True
        run = _Run(operation=operation, dry_run=self.settings.dry_run)
        self._logger.info(
            "Starting %s%s", operation, " (dry run)" if run.dry_run else ""
        )
        try:
            success, message = await steps(run)
        except Exception as exc:
            self._logger.error("%s failed: %s", operation, exc, exc_info=True)
            return SyncOutcome(
                success=False,
                message=f"{operation.capitalize()} failed: {exc}",
                report=run.report(),
            )
        finally:
            self._running = False
            self.phase = RunPhase.IDLE

        report = run.report()
        log = self._logger.info if success else self._logger.warning
        log("%s: %s", operation, message)
        self._logger.debug("%s", report.summary())
        return SyncOutcome(success=success, message=message, report=report)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def perform_sync(self) -> SyncOutcome:
        """Full pipeline: connect, fetch, scan, push, reconcile."""
        return await self._guarded("sync", self._sync_steps)

    async def _sync_steps(self, run: _Run) -> tuple[bool, str]:
        if not await self._check_connection():
            return False, CONNECTION_FAILED

        await self._fetch(run)
        await self._scan()
        await self._push_local_changes(run)
        await self._reconcile(run)

        if run.storage_failed:
            return False, "Sync completed with storage errors"
        if not run.dry_run:
            self.last_sync_time = time.time()
            await self.save_state()
        return True, "Sync completed successfully"

    async def fetch_from_remote(self) -> SyncOutcome:
        """Fetch and replay a payload without touching the vault."""

        async def steps(run: _Run) -> tuple[bool, str]:
            await self._fetch(run)
            stats = self.remote_state.get_stats()
            return True, (
                f"Fetched {stats['tasks']} tasks, {stats['projects']} "
                f"projects, {stats['sections']} sections"
            )

        return await self._guarded("fetch", steps)

    async def scan_local(self) -> SyncOutcome:
        """Rebuild ``LocalState`` from the vault."""

        async def steps(run: _Run) -> tuple[bool, str]:
            await self._scan()
            stats = self.local_state.get_stats()
            return True, (
                f"Scanned {stats['tasks']} tasks, {stats['projects']} "
                f"projects, {stats['sections']} sections"
            )

        return await self._guarded("scan", steps, requires_client=False)

    async def pull(self) -> SyncOutcome:
        """Fetch, scan and reconcile; local edits are not pushed."""

        async def steps(run: _Run) -> tuple[bool, str]:
            if not await self._check_connection():
                return False, CONNECTION_FAILED
            await self._fetch(run)
            await self._scan()
            await self._reconcile(run)
            if run.storage_failed:
                return False, "Pull completed with storage errors"
            if not run.dry_run:
                await self.save_state()
            return True, "Pull completed successfully"

        return await self._guarded("pull", steps)

    async def scan_and_sync_to_remote(self) -> SyncOutcome:
        """Push every synced document, modified or not."""

        async def steps(run: _Run) -> tuple[bool, str]:
            if not await self._check_connection():
                return False, CONNECTION_FAILED
            if self.remote_state.needs_full_sync():
                await self._fetch(run)
            await self._scan()
            self.phase = RunPhase.PUSHING_LOCAL_CHANGES
            for document in (
                self.local_state.get_all_task_notes()
                + self.local_state.get_all_project_notes()
            ):
                await self._push_document(document, run)
            if run.storage_failed:
                return False, "Push completed with storage errors"
            return True, f"Pushed {len(run.results)} documents"

        return await self._guarded("push", steps)

    async def perform_dry_run(self) -> SyncOutcome:
        """One sync with dry-run forced on; settings are restored after."""
        if self._running:
            return SyncOutcome(success=False, message=ALREADY_RUNNING)

        original = self.settings.dry_run
        self.settings = self.settings.model_copy(update={"dry_run": True})
        self.materializer.set_dry_run(True)
        try:
            return await self.perform_sync()
        finally:
            self.settings = self.settings.model_copy(
                update={"dry_run": original}
            )
            self.materializer.set_dry_run(original)

    async def test_connection(self) -> bool:
        if self.client is None:
            return False
        return await run_sync(self.client.test_connection)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _check_connection(self) -> bool:
        if await self.test_connection():
            return True
        self._logger.error(CONNECTION_FAILED)
        return False

    async def _fetch(self, run: _Run) -> None:
        self.phase = RunPhase.FETCHING
        raw: dict[str, Any] | None = None

        token = self.remote_state.token
        if (
            not self.remote_state.needs_full_sync()
            and token != INITIAL_SYNC_TOKEN
        ):
            try:
                raw = await run_sync(self.client.fetch_incremental, token)
                run.fetch_mode = "incremental"
            except TransportError as exc:
                # full_<ms> tokens are not accepted upstream and land here
                self._logger.warning(
                    "Incremental sync failed, falling back to full sync: %s",
                    exc,
                )

        if raw is None:
            raw = await run_sync(self.client.fetch_full_snapshot)
            raw = {
                **raw,
                "is_full": True,
                "token": raw.get("token")
                or f"{FULL_TOKEN_PREFIX}{int(time.time() * 1000)}",
            }
            run.fetch_mode = "full"

        payload, dropped = validate_payload(raw, logger=self._logger)
        run.dropped = {kind: n for kind, n in dropped.items() if n}
        self.remote_state.replay(payload)

    async def _scan(self) -> None:
        self.phase = RunPhase.SCANNING
        await run_sync(self.local_state.scan)

    # ------------------------------------------------------------------
    # Push local -> remote
    # ------------------------------------------------------------------

    async def _push_local_changes(self, run: _Run) -> None:
        self.phase = RunPhase.PUSHING_LOCAL_CHANGES
        handled = await self._drain_pending(run)

        modified = self.local_state.get_modified_since(self.last_sync_time)
        for kind in (EntityKind.TASK, EntityKind.PROJECT):
            for document in modified[kind]:
                if document.path in handled:
                    continue
                await self._push_document(document, run)

    async def _push_document(
        self, document: Document, run: _Run | None = None
    ) -> SyncResult | None:
        """Push one document's edits; returns the result when it mutated."""
        try:
            if document.kind is EntityKind.TASK:
                result = await self._push_task(document)
            elif document.kind is EntityKind.PROJECT:
                result = await self._push_project(document)
            else:
                result = None
        except StorageError as exc:
            self._logger.error("Failed to stamp %s: %s", document.path, exc)
            result = SyncResult(
                entity_id=document.entity_id,
                kind=document.kind,
                action=SyncAction.PUSH,
                path=document.path,
                success=False,
                error=str(exc),
            )
            if run is not None:
                run.storage_failed = True

        if result is not None and run is not None:
            run.add(result)
        return result

    async def _push_task(self, document: Document) -> SyncResult | None:
        remote = self.remote_state.get_task(document.entity_id)
        if remote is None:
            self._logger.debug(
                "No remote task for %s, not pushing", document.path
            )
            return None

        changes = task_changes(document.frontmatter, document.body)
        fields: dict[str, Any] = {}
        if changes.title and changes.title != remote.content:
            fields["content"] = changes.title
        if changes.priority is not None and changes.priority != remote.priority:
            fields["priority"] = changes.priority
        completion_changed = changes.completed != remote.checked

        if not fields and not completion_changed:
            return None

        async def mutate() -> None:
            if completion_changed:
                await run_sync(
                    self.client.set_task_completion,
                    remote.id,
                    changes.completed,
                )
            if fields:
                await run_sync(self.client.update_task_fields, remote.id, fields)

        return await self._apply_push(document, mutate, completion_changed, fields)

    async def _push_project(self, document: Document) -> SyncResult | None:
        remote = self.remote_state.get_project(document.entity_id)
        if remote is None:
            return None
        title = document.frontmatter.title
        if not title or title == remote.name:
            return None

        fields = {"name": title}

        async def mutate() -> None:
            await run_sync(self.client.update_project_fields, remote.id, fields)

        return await self._apply_push(document, mutate, False, fields)

    async def _apply_push(
        self,
        document: Document,
        mutate: Callable[[], Awaitable[None]],
        completion_changed: bool,
        fields: dict[str, Any],
    ) -> SyncResult:
        changed = sorted(fields) + (["completed"] if completion_changed else [])
        if self.settings.dry_run:
            self._logger.info(
                "Dry-run: would push %s %s (%s)",
                document.kind.value,
                document.entity_id,
                ", ".join(changed),
            )
        else:
            try:
                await mutate()
            except TransportError as exc:
                self._logger.warning(
                    "Failed to push %s %s: %s",
                    document.kind.value,
                    document.entity_id,
                    exc,
                )
                return SyncResult(
                    entity_id=document.entity_id,
                    kind=document.kind,
                    action=SyncAction.PUSH,
                    path=document.path,
                    success=False,
                    error=str(exc),
                )
            self._logger.info(
                "Pushed %s %s (%s)",
                document.kind.value,
                document.entity_id,
                ", ".join(changed),
            )

        # In dry-run the stamp stays in memory so reconcile decides alike
        stamped = await run_sync(self.materializer.stamp_synced, document)
        self.local_state.set_note(stamped)

        return SyncResult(
            entity_id=document.entity_id,
            kind=document.kind,
            action=SyncAction.PUSH,
            path=document.path,
        )

    # ------------------------------------------------------------------
    # Reconcile remote -> local
    # ------------------------------------------------------------------

    async def _reconcile(self, run: _Run) -> None:
        self.phase = RunPhase.RECONCILING
        await run_sync(self.materializer.ensure_sync_folder)

        project_names: dict[str, str] = {}
        for project in self.remote_state.get_all_projects():
            project_names[project.id] = project.name
            existing = self.local_state.get_project_note(project.id)
            await self._reconcile_one(
                run,
                EntityKind.PROJECT,
                project.id,
                existing,
                self._project_needs_update(project, existing),
                lambda path, p=project: self.materializer.materialize_project(
                    p, existing_path=path
                ),
            )

        section_names: dict[str, str] = {}
        for section in self.remote_state.get_all_sections():
            project_name = project_names.get(section.project_id)
            if project_name is None:
                run.add(self._unresolved(EntityKind.SECTION, section.id))
                continue
            section_names[section.id] = section.name
            existing = self.local_state.get_section_note(section.id)
            await self._reconcile_one(
                run,
                EntityKind.SECTION,
                section.id,
                existing,
                self._section_needs_update(section, existing),
                lambda path, s=section, n=project_name: (
                    self.materializer.materialize_section(
                        s, n, existing_path=path
                    )
                ),
            )

        for task in self.remote_state.get_all_tasks():
            project_name = project_names.get(task.project_id)
            if task.project_id and project_name is None:
                run.add(self._unresolved(EntityKind.TASK, task.id))
                continue
            section_name = section_names.get(task.section_id or "")
            existing = self.local_state.get_task_note(task.id)
            await self._reconcile_one(
                run,
                EntityKind.TASK,
                task.id,
                existing,
                self._task_needs_update(task, existing),
                lambda path, t=task, pn=project_name, sn=section_name: (
                    self.materializer.materialize_task(
                        t, pn, sn, existing_path=path
                    )
                ),
            )

    async def _reconcile_one(
        self,
        run: _Run,
        kind: EntityKind,
        entity_id: str,
        existing: Document | None,
        needs_update: bool,
        write: Callable[[str | None], Document],
    ) -> None:
        if existing is None:
            action = SyncAction.CREATE
        elif needs_update:
            action = SyncAction.UPDATE
        else:
            run.add(
                SyncResult(
                    entity_id=entity_id,
                    kind=kind,
                    action=SyncAction.SKIP,
                    path=existing.path,
                )
            )
            return

        existing_path = existing.path if existing is not None else None
        try:
            document = await run_sync(write, existing_path)
        except StorageError as exc:
            self._logger.error(
                "Failed to %s %s %s: %s", action.value, kind.value, entity_id, exc
            )
            run.storage_failed = True
            run.add(
                SyncResult(
                    entity_id=entity_id,
                    kind=kind,
                    action=action,
                    path=exc.path,
                    success=False,
                    error=str(exc),
                )
            )
            return

        self.local_state.set_note(document)
        run.add(
            SyncResult(
                entity_id=entity_id,
                kind=kind,
                action=action,
                path=document.path,
            )
        )

    def _unresolved(self, kind: EntityKind, entity_id: str) -> SyncResult:
        self._logger.debug(
            "Skipping %s %s: project not found", kind.value, entity_id
        )
        return SyncResult(
            entity_id=entity_id,
            kind=kind,
            action=SyncAction.SKIP,
            error="Project not found",
        )

    @staticmethod
    def _newer_than_document(updated_at: str | None, document: Document) -> bool:
        last_synced = parse_timestamp(document.frontmatter.last_sync)
        if last_synced == 0.0:
            return True
        return parse_timestamp(updated_at) > last_synced

    def _task_needs_update(self, task: Task, document: Document | None) -> bool:
        if document is None:
            return False
        return self._newer_than_document(task.updated_at, document)

    def _project_needs_update(
        self, project: Project, document: Document | None
    ) -> bool:
        if document is None:
            return False
        frontmatter = document.frontmatter
        if (
            frontmatter.title != project.name
            or (frontmatter.color or "") != (project.color or "")
            or bool(frontmatter.is_favorite) != project.is_favorite
        ):
            return True
        return self._newer_than_document(project.updated_at, document)

    def _section_needs_update(
        self, section: Section, document: Document | None
    ) -> bool:
        if document is None:
            return False
        if document.frontmatter.title != section.name:
            return True
        return self._newer_than_document(None, document)

    # ------------------------------------------------------------------
    # Live edits
    # ------------------------------------------------------------------

    def start_file_watching(self) -> None:
        self._watching = True
        self._logger.info("File watching started")

    def stop_file_watching(self) -> None:
        self._watching = False
        self._pending.clear()
        self._logger.info("File watching stopped")

    @property
    def pending_changes(self) -> int:
        return len(self._pending)

    def on_document_modified(self, path: str) -> bool:
        """Queue *path* for the next drain; returns whether it was queued."""
        if not self._watching:
            return False
        if not self.materializer.mapper.contains(path):
            return False
        self._pending[path] = time.time()
        self._logger.debug("Queued local change: %s", path)
        return True

    def on_document_deleted(self, path: str) -> str | None:
        """Forget the document at *path*; returns the id it mirrored."""
        self._pending.pop(path, None)
        entity_id = self.local_state.remove_path(path)
        if entity_id is not None:
            self._logger.info("Document for %s deleted: %s", entity_id, path)
        return entity_id

    async def process_pending_changes(self) -> int:
        """Push every queued document once; returns how many were attempted.

        Runs without the run guard.  An entry leaves the queue after its
        own attempt, whatever the outcome, unless it was queued again
        while the attempt was in flight.
        """
        handled = await self._drain_pending(None)
        return len(handled)

    async def _drain_pending(self, run: _Run | None) -> set[str]:
        handled: set[str] = set()
        if self.client is None:
            return handled

        for path, detected_at in list(self._pending.items()):
            if path in self._in_flight:
                continue
            self._in_flight.add(path)
            try:
                await self._push_path(path, run)
            except (SyncError, ValueError) as exc:
                self._logger.error("Failed to process change %s: %s", path, exc)
            finally:
                self._in_flight.discard(path)
                if self._pending.get(path) == detected_at:
                    del self._pending[path]
                handled.add(path)
        return handled

    async def _push_path(self, path: str, run: _Run | None) -> None:
        stored = await run_sync(self.storage.load_document, path)
        if stored is None:
            self.on_document_deleted(path)
            return
        document = document_from_stored(stored, logger=self._logger)
        if document is None:
            return
        self.local_state.set_note(document)
        await self._push_document(document, run)

    # ------------------------------------------------------------------
    # Settings and persistence
    # ------------------------------------------------------------------

    def update_settings(self, settings: SyncSettings) -> None:
        """Re-wire client, local state and materializer for *settings*."""
        if self.client_factory is not None:
            self.client = self.client_factory(settings)
        self.settings = settings
        self.local_state.update_sync_folder(settings.sync_folder)
        self.local_state.update_scope_tag(settings.scope_tag)
        self.materializer = self._build_materializer(settings)
        if settings.live_sync_enabled and not self._watching:
            self.start_file_watching()
        elif not settings.live_sync_enabled and self._watching:
            self.stop_file_watching()
        self._logger.info("Sync settings updated")

    def load_state(self) -> bool:
        """Restore ``RemoteState`` and the watermark from the state store."""
        if self.state_store is None:
            return False
        record = self.state_store.load()
        if record is None:
            return False
        if not self.remote_state.deserialize(record):
            return False
        try:
            self.last_sync_time = float(record.get("last_sync_time") or 0)
        except (TypeError, ValueError):
            self.last_sync_time = 0.0
        self._logger.info(
            "Restored remote state (token %s)", self.remote_state.token
        )
        return True

    async def save_state(self) -> None:
        if self.state_store is None:
            return
        record = {
            **self.remote_state.serialize(),
            "last_sync_time": self.last_sync_time,
        }
        await run_sync(self.state_store.save, record)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_stats(self) -> SyncStats:
        return SyncStats(
            remote=self.remote_state.get_stats(),
            local=self.local_state.get_stats(),
            last_sync=self.last_sync_time,
            is_running=self._running,
            phase=self.phase,
            pending_changes=len(self._pending),
        )

    def get_debug_info(self) -> dict[str, Any]:
        return {
            "stats": self.get_stats().model_dump(mode="json"),
            "sync_state": self.remote_state.get_sync_state(),
            "local": self.local_state.get_debug_info(),
            "pending": sorted(self._pending),
            "recent_logs": get_log_buffer().recent(100),
        }
