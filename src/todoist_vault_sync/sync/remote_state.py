"""Source A: in-memory mirror of the remote workspace.

``RemoteState`` changes only by replaying validated payloads.  A full
payload clears every map before its entities are applied; an
incremental payload is applied on top of what is there.  Within a
payload, a record flagged ``is_deleted`` removes its id and any other
record upserts it, so the last record for an id wins.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from .models import INITIAL_SYNC_TOKEN, Label, Project, Section, SyncPayload, Task

logger = logging.getLogger(__name__)

FULL_SYNC_MAX_AGE = 24 * 60 * 60  # seconds
STATE_VERSION = 1


class RemoteState:
    """Authoritative snapshot of the remote tasks, projects, sections and labels.

    Attributes:
        token: Sync token of the last replayed payload (``"*"`` initially).
        last_full_sync: Epoch seconds of the last full replay (0 = never).
        last_incremental_sync: Epoch seconds of the last replay of any kind.
    """

    def __init__(self, logger: logging.Logger = logger) -> None:
        self._logger = logger
        self._reset()

    def _reset(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.projects: dict[str, Project] = {}
        self.sections: dict[str, Section] = {}
        self.labels: dict[str, Label] = {}
        self.token = INITIAL_SYNC_TOKEN
        self.last_full_sync = 0.0
        self.last_incremental_sync = 0.0

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def replay(self, payload: SyncPayload, now: float | None = None) -> None:
        """Apply *payload* to the four maps and record its token."""
        now = time.time() if now is None else now
        self.token = payload.token
        self.last_incremental_sync = now

        if payload.is_full:
            self.last_full_sync = now
            self.tasks.clear()
            self.projects.clear()
            self.sections.clear()
            self.labels.clear()

        for target, entities in (
            (self.tasks, payload.tasks),
            (self.projects, payload.projects),
            (self.sections, payload.sections),
            (self.labels, payload.labels),
        ):
            for entity in entities:
                if entity.is_deleted:
                    target.pop(entity.id, None)
                else:
                    target[entity.id] = entity

        self._logger.debug(
            "Replayed %s payload: %d tasks, %d projects, %d sections, %d labels",
            "full" if payload.is_full else "incremental",
            len(payload.tasks),
            len(payload.projects),
            len(payload.sections),
            len(payload.labels),
        )

    def needs_full_sync(self, now: float | None = None) -> bool:
        """A full fetch is due when there is no token, no full sync yet,
        or the last one is older than 24 hours."""
        now = time.time() if now is None else now
        return (
            self.token == INITIAL_SYNC_TOKEN
            or not self.last_full_sync
            or now - self.last_full_sync > FULL_SYNC_MAX_AGE
        )

    def set_sync_token(self, token: str) -> None:
        self.token = token

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_all_tasks(self) -> list[Task]:
        return [t for t in self.tasks.values() if not t.is_deleted]

    def get_all_projects(self) -> list[Project]:
        return [
            p
            for p in self.projects.values()
            if not p.is_deleted and not p.is_archived
        ]

    def get_all_sections(self) -> list[Section]:
        return [s for s in self.sections.values() if not s.is_deleted]

    def get_all_labels(self) -> list[Label]:
        return [lb for lb in self.labels.values() if not lb.is_deleted]

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    def get_section(self, section_id: str) -> Section | None:
        return self.sections.get(section_id)

    def get_label(self, label_id: str) -> Label | None:
        return self.labels.get(label_id)

    def get_tasks_for_project(self, project_id: str) -> list[Task]:
        return [t for t in self.get_all_tasks() if t.project_id == project_id]

    def get_tasks_for_section(self, section_id: str) -> list[Task]:
        return [t for t in self.get_all_tasks() if t.section_id == section_id]

    def get_sections_for_project(self, project_id: str) -> list[Section]:
        return [
            s for s in self.get_all_sections() if s.project_id == project_id
        ]

    def get_sync_state(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "last_full_sync": self.last_full_sync,
            "last_incremental_sync": self.last_incremental_sync,
        }

    def get_stats(self) -> dict[str, int]:
        return {
            "tasks": len(self.get_all_tasks()),
            "projects": len(self.get_all_projects()),
            "sections": len(self.get_all_sections()),
            "labels": len(self.get_all_labels()),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        """JSON-ready record of all four maps plus the sync bookkeeping."""
        return {
            "version": STATE_VERSION,
            "tasks": {k: v.model_dump() for k, v in self.tasks.items()},
            "projects": {k: v.model_dump() for k, v in self.projects.items()},
            "sections": {k: v.model_dump() for k, v in self.sections.items()},
            "labels": {k: v.model_dump() for k, v in self.labels.items()},
            "sync_state": self.get_sync_state(),
        }

    def deserialize(self, data: dict[str, Any] | str) -> bool:
        """Restore from a record produced by ``serialize()``.

        A corrupt record resets the state to its initial values.

        Returns:
            ``True`` if the record was restored.
        """
        try:
            if isinstance(data, str):
                data = json.loads(data)
            tasks = {
                k: Task.model_validate(v)
                for k, v in (data.get("tasks") or {}).items()
            }
            projects = {
                k: Project.model_validate(v)
                for k, v in (data.get("projects") or {}).items()
            }
            sections = {
                k: Section.model_validate(v)
                for k, v in (data.get("sections") or {}).items()
            }
            labels = {
                k: Label.model_validate(v)
                for k, v in (data.get("labels") or {}).items()
            }
            sync_state = data.get("sync_state") or {}
            token = str(sync_state.get("token") or INITIAL_SYNC_TOKEN)
            last_full = float(sync_state.get("last_full_sync") or 0)
            last_incr = float(sync_state.get("last_incremental_sync") or 0)
        except (ValueError, TypeError, AttributeError) as exc:
            self._logger.error("Failed to deserialize remote state: %s", exc)
            self._reset()
            return False

        self.tasks = tasks
        self.projects = projects
        self.sections = sections
        self.labels = labels
        self.token = token
        self.last_full_sync = last_full
        self.last_incremental_sync = last_incr
        return True
