"""Write remote entities out as Markdown documents.

Each ``materialize_*`` call renders the entity's frontmatter, picks the
document path and writes it.  When the caller passes the path of the
document already mirroring the entity, that path is reused verbatim so a
renamed entity never produces a second document.  Updating keeps the
existing body; a new document holds only its frontmatter.

In dry-run mode nothing is read or written and the returned
``Document`` carries the call time as its ``mtime``.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Callable

from ..config_schema import EnabledProperties
from .frontmatter import frontmatter_to_bag, parse_document, serialize_document
from .mapper import PathMapper
from .models import (
    Document,
    EntityKind,
    Project,
    ProjectFrontmatter,
    Section,
    SectionFrontmatter,
    Task,
    TaskFrontmatter,
)

if TYPE_CHECKING:
    from ..file_handler import VaultStorage

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentMaterializer:
    """Create and update the documents that mirror remote entities.

    Args:
        storage: Vault storage to write through.
        sync_folder: Vault-relative root of the synced tree.
        scope_tag: Tag written to every document's ``tags`` list.
        enabled_properties: Per-field toggles for task frontmatter.
        dry_run: Skip every storage call when set.
        path_owner: Lookup of the entity id already indexed at a path.
            New documents never take a path owned by another id.
        logger: Logger for write diagnostics.
    """

    def __init__(
        self,
        storage: VaultStorage,
        sync_folder: str,
        scope_tag: str = "todoist",
        enabled_properties: EnabledProperties | None = None,
        dry_run: bool = False,
        path_owner: Callable[[str], str | None] | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._storage = storage
        self.mapper = PathMapper(sync_folder)
        self.scope_tag = scope_tag
        self.enabled = enabled_properties or EnabledProperties()
        self.dry_run = dry_run
        self.path_owner = path_owner
        self._logger = logger

    def set_dry_run(self, dry_run: bool) -> None:
        self.dry_run = bool(dry_run)

    def ensure_sync_folder(self) -> None:
        if self.dry_run:
            return
        if not self._storage.folder_exists(self.mapper.sync_folder):
            self._storage.create_folder(self.mapper.sync_folder)

    # ------------------------------------------------------------------
    # Frontmatter builders
    # ------------------------------------------------------------------

    def _tags(self) -> list[str] | None:
        return [self.scope_tag] if self.scope_tag else None

    def build_task_frontmatter(
        self,
        task: Task,
        project_name: str | None = None,
        section_name: str | None = None,
    ) -> TaskFrontmatter:
        enabled = self.enabled
        fields: dict = {
            "todoist_id": task.id,
            "sync_status": "synced",
            "last_sync": utc_now_iso(),
        }
        if enabled.content:
            fields["title"] = task.content
        if enabled.due_date and task.due is not None:
            fields["due_date"] = task.due.date
            fields["due_datetime"] = task.due.datetime
        if enabled.priority:
            fields["priority"] = task.priority
        if enabled.labels and task.labels:
            fields["labels"] = list(task.labels)
        if enabled.project and project_name:
            fields["todoist_project"] = project_name
        if enabled.section and section_name:
            fields["todoist_section"] = section_name
        fields["completed"] = task.checked
        if task.description:
            fields["description"] = task.description
        if task.parent_id:
            fields["parent_task"] = task.parent_id
        fields["tags"] = self._tags()
        return TaskFrontmatter(**fields)

    def build_project_frontmatter(self, project: Project) -> ProjectFrontmatter:
        return ProjectFrontmatter(
            todoist_id=project.id,
            sync_status="synced",
            last_sync=utc_now_iso(),
            title=project.name,
            color=project.color or None,
            parent_project=project.parent_id or None,
            is_favorite=project.is_favorite,
            tags=self._tags(),
        )

    def build_section_frontmatter(self, section: Section) -> SectionFrontmatter:
        return SectionFrontmatter(
            todoist_id=section.id,
            sync_status="synced",
            last_sync=utc_now_iso(),
            title=section.name,
            todoist_project=section.project_id,
            tags=self._tags(),
        )

    # ------------------------------------------------------------------
    # Materialize
    # ------------------------------------------------------------------

    def materialize_task(
        self,
        task: Task,
        project_name: str | None = None,
        section_name: str | None = None,
        existing_path: str | None = None,
    ) -> Document:
        path = existing_path or self.mapper.task_path(
            task.id, task.content, project_name, section_name
        )
        frontmatter = self.build_task_frontmatter(
            task, project_name, section_name
        )
        return self._write(
            path,
            EntityKind.TASK,
            task.id,
            task.content or f"Task {task.id}",
            frontmatter,
            existing=existing_path is not None,
        )

    def materialize_project(
        self, project: Project, existing_path: str | None = None
    ) -> Document:
        path = existing_path or self.mapper.project_path(project.name)
        return self._write(
            path,
            EntityKind.PROJECT,
            project.id,
            project.name,
            self.build_project_frontmatter(project),
            existing=existing_path is not None,
        )

    def materialize_section(
        self,
        section: Section,
        project_name: str,
        existing_path: str | None = None,
    ) -> Document:
        path = existing_path or self.mapper.section_path(
            project_name, section.name
        )
        return self._write(
            path,
            EntityKind.SECTION,
            section.id,
            section.name,
            self.build_section_frontmatter(section),
            existing=existing_path is not None,
        )

    def stamp_synced(self, document: Document) -> Document:
        """Rewrite *document* with ``sync_status=synced`` and a fresh ``last_sync``.

        The body is kept as is.
        """
        frontmatter = document.frontmatter.model_copy(
            update={"sync_status": "synced", "last_sync": utc_now_iso()}
        )
        if self.dry_run:
            return document.model_copy(
                update={"frontmatter": frontmatter, "mtime": time.time()}
            )
        content = serialize_document(
            frontmatter_to_bag(frontmatter), document.body
        )
        mtime = self._storage.write_document(document.path, content)
        return document.model_copy(
            update={"frontmatter": frontmatter, "mtime": mtime}
        )

    def delete_document(self, path: str) -> None:
        if self.dry_run:
            self._logger.debug("Dry-run: would delete %s", path)
            return
        self._storage.delete_document(path)

    def _claimed_by_other(self, path: str, entity_id: str) -> bool:
        if self.path_owner is not None:
            owner = self.path_owner(path)
            if owner is not None:
                return owner != entity_id
        if self.dry_run:
            return False
        stored = self._storage.load_document(path)
        if stored is None:
            return False
        return str(stored.frontmatter.get("todoist_id") or "") != entity_id

    def _free_path(self, path: str, entity_id: str) -> str:
        """Return *path*, or a variant suffixed with the id when it is taken."""
        if not self._claimed_by_other(path, entity_id):
            return path
        candidate = PurePosixPath(path)
        free = str(
            candidate.with_name(f"{candidate.stem} ({entity_id}){candidate.suffix}")
        )
        self._logger.warning(
            "%s is taken by another document, using %s", path, free
        )
        return free

    def _write(
        self,
        path: str,
        kind: EntityKind,
        entity_id: str,
        name: str,
        frontmatter: TaskFrontmatter | ProjectFrontmatter | SectionFrontmatter,
        existing: bool,
    ) -> Document:
        if not existing:
            path = self._free_path(path, entity_id)

        if self.dry_run:
            self._logger.debug(
                "Dry-run: would %s %s at %s",
                "update" if existing else "create",
                kind.value,
                path,
            )
            return Document(
                path=path,
                entity_id=entity_id,
                kind=kind,
                name=name,
                frontmatter=frontmatter,
                body="",
                mtime=time.time(),
            )

        body = ""
        if existing and self._storage.document_exists(path):
            parsed = parse_document(self._storage.read_document(path))
            if parsed is not None:
                body = parsed[1]

        folder = str(PurePosixPath(path).parent)
        if folder != "." and not self._storage.folder_exists(folder):
            self._storage.create_folder(folder)

        content = serialize_document(frontmatter_to_bag(frontmatter), body)
        mtime = self._storage.write_document(path, content)
        self._logger.debug(
            "%s %s %s at %s",
            "Updated" if existing else "Created",
            kind.value,
            entity_id,
            path,
        )
        return Document(
            path=path,
            entity_id=entity_id,
            kind=kind,
            name=name,
            frontmatter=frontmatter,
            body=body,
            mtime=mtime,
        )
