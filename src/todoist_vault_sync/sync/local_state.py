"""Source B: index of the synced documents currently in the vault.

Rebuilt from scratch by ``scan()``.  Documents are classified by their
``todoist_type`` property (task when absent) and keyed by
``todoist_id``; documents without an id are out of scope.  When two
documents claim the same id, the later one in path order wins and the
clash is recorded as a ``ConflictAnomaly``.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from ..errors import ConflictAnomaly
from .frontmatter import build_frontmatter
from .mapper import PathMapper
from .models import Document, EntityKind

if TYPE_CHECKING:
    from ..file_handler import StoredDocument, VaultStorage

logger = logging.getLogger(__name__)


def document_from_stored(
    stored: StoredDocument,
    logger: logging.Logger = logger,
) -> Document | None:
    """Build a ``Document`` from a stored file, or ``None`` if out of scope."""
    if not stored.frontmatter.get("todoist_id"):
        return None
    frontmatter = build_frontmatter(stored.frontmatter, logger=logger)
    if frontmatter is None:
        return None
    return Document(
        path=stored.path,
        entity_id=frontmatter.todoist_id,
        kind=EntityKind(frontmatter.todoist_type),
        name=frontmatter.title or PurePosixPath(stored.path).stem,
        frontmatter=frontmatter,
        body=stored.body,
        mtime=stored.mtime,
    )


class LocalState:
    """Per-kind maps of synced documents plus a path -> id index.

    Args:
        storage: Vault storage the scan reads through.
        sync_folder: Vault-relative folder holding synced documents.
        scope_tag: Tag written into every materialized document.
        logger: Logger for scan diagnostics.
    """

    def __init__(
        self,
        storage: VaultStorage,
        sync_folder: str,
        scope_tag: str = "todoist",
        logger: logging.Logger = logger,
    ) -> None:
        self._storage = storage
        self._mapper = PathMapper(sync_folder)
        self.scope_tag = scope_tag
        self._logger = logger
        self._notes: dict[EntityKind, dict[str, Document]] = {
            kind: {} for kind in EntityKind
        }
        self._path_to_id: dict[str, str] = {}
        self.duplicates: list[ConflictAnomaly] = []

    @property
    def sync_folder(self) -> str:
        return self._mapper.sync_folder

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def clear(self) -> None:
        for notes in self._notes.values():
            notes.clear()
        self._path_to_id.clear()
        self.duplicates = []

    def scan(self) -> None:
        """Rebuild every map from the documents under the sync folder."""
        self.clear()

        if not self._storage.folder_exists(self.sync_folder):
            self._logger.info(
                "Sync folder %s does not exist", self.sync_folder
            )
            return

        for stored in self._storage.list_documents_under(self.sync_folder):
            document = document_from_stored(stored, logger=self._logger)
            if document is None:
                continue
            self._add(document)

        self._logger.debug(
            "Scan complete - tasks: %d, projects: %d, sections: %d",
            len(self._notes[EntityKind.TASK]),
            len(self._notes[EntityKind.PROJECT]),
            len(self._notes[EntityKind.SECTION]),
        )

    def _add(self, document: Document) -> None:
        notes = self._notes[document.kind]
        existing = notes.get(document.entity_id)
        if existing is not None and existing.path != document.path:
            anomaly = ConflictAnomaly(
                document.entity_id, document.path, existing.path
            )
            self.duplicates.append(anomaly)
            self._logger.warning(
                "Duplicate %s found: %s", document.kind.value, anomaly
            )
        self.set_note(document)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_task_note(self, entity_id: str) -> Document | None:
        return self._notes[EntityKind.TASK].get(entity_id)

    def get_project_note(self, entity_id: str) -> Document | None:
        return self._notes[EntityKind.PROJECT].get(entity_id)

    def get_section_note(self, entity_id: str) -> Document | None:
        return self._notes[EntityKind.SECTION].get(entity_id)

    def get_note(self, kind: EntityKind, entity_id: str) -> Document | None:
        return self._notes[kind].get(entity_id)

    def get_all_task_notes(self) -> list[Document]:
        return list(self._notes[EntityKind.TASK].values())

    def get_all_project_notes(self) -> list[Document]:
        return list(self._notes[EntityKind.PROJECT].values())

    def get_all_section_notes(self) -> list[Document]:
        return list(self._notes[EntityKind.SECTION].values())

    def get_all_notes(self) -> list[Document]:
        """Every indexed document, projects first, then sections, then tasks."""
        return (
            self.get_all_project_notes()
            + self.get_all_section_notes()
            + self.get_all_task_notes()
        )

    def get_section_notes_for_project(self, project_id: str) -> list[Document]:
        return [
            doc
            for doc in self.get_all_section_notes()
            if doc.frontmatter.todoist_project == project_id
        ]

    def get_id_for_path(self, path: str) -> str | None:
        return self._path_to_id.get(path)

    def is_in_sync_scope(self, path: str) -> bool:
        return path in self._path_to_id

    def get_modified_since(
        self, timestamp: float
    ) -> dict[EntityKind, list[Document]]:
        """Documents whose mtime is strictly after *timestamp*, per kind."""
        return {
            kind: [doc for doc in notes.values() if doc.mtime > timestamp]
            for kind, notes in self._notes.items()
        }

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set_note(self, document: Document) -> None:
        previous = self._notes[document.kind].get(document.entity_id)
        if previous is not None and previous.path != document.path:
            self._path_to_id.pop(previous.path, None)
        self._notes[document.kind][document.entity_id] = document
        self._path_to_id[document.path] = document.entity_id

    def set_task_note(self, document: Document) -> None:
        self.set_note(document)

    def set_project_note(self, document: Document) -> None:
        self.set_note(document)

    def set_section_note(self, document: Document) -> None:
        self.set_note(document)

    def remove_note(self, entity_id: str) -> None:
        """Drop *entity_id* from every map and its path from the index."""
        for notes in self._notes.values():
            document = notes.pop(entity_id, None)
            if document is not None:
                self._path_to_id.pop(document.path, None)

    def remove_path(self, path: str) -> str | None:
        """Forget the document at *path*; returns the id it mapped to."""
        entity_id = self._path_to_id.pop(path, None)
        if entity_id is None:
            return None
        for notes in self._notes.values():
            document = notes.get(entity_id)
            if document is not None and document.path == path:
                del notes[entity_id]
        return entity_id

    def update_sync_folder(self, sync_folder: str) -> None:
        self._mapper = PathMapper(sync_folder)

    def update_scope_tag(self, scope_tag: str) -> None:
        self.scope_tag = scope_tag

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, int]:
        return {
            "tasks": len(self._notes[EntityKind.TASK]),
            "projects": len(self._notes[EntityKind.PROJECT]),
            "sections": len(self._notes[EntityKind.SECTION]),
        }

    def get_debug_info(self) -> dict[str, Any]:
        def listing(kind: EntityKind) -> list[dict[str, str]]:
            return [
                {"id": entity_id, "path": doc.path}
                for entity_id, doc in self._notes[kind].items()
            ]

        return {
            "total_files": len(self._path_to_id),
            "tasks": listing(EntityKind.TASK),
            "projects": listing(EntityKind.PROJECT),
            "sections": listing(EntityKind.SECTION),
            "mappings": dict(self._path_to_id),
            "duplicates": [
                {
                    "id": anomaly.entity_id,
                    "kept": anomaly.kept_path,
                    "dropped": anomaly.dropped_path,
                }
                for anomaly in self.duplicates
            ],
        }
