"""Pydantic models for the sync engine.

Defines the data contracts shared across all sync modules:

- Remote entities: ``Task``, ``Project``, ``Section``, ``Label`` (plus
  ``Due``) and the ``SyncPayload`` that carries them.
- Local mirror: ``Document`` with a tagged-union frontmatter
  (``TaskFrontmatter`` / ``ProjectFrontmatter`` / ``SectionFrontmatter``).
- Run bookkeeping: ``SyncAction``, ``RunPhase``, ``SyncResult``,
  ``SyncReport``, ``SyncOutcome``, ``SyncStats``.

Remote entity models accept both the REST and the Sync API field names
(``is_completed`` / ``checked``, ``created_at`` / ``added_at`` /
``updated_at``) and validate the rules a record must satisfy to enter
the pipeline.  Tombstones (``is_deleted=True``) only need an id.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)

INITIAL_SYNC_TOKEN = "*"


class EntityKind(str, Enum):
    """Discriminator for synced entity kinds."""

    TASK = "task"
    PROJECT = "project"
    SECTION = "section"


class SyncAction(str, Enum):
    """Per-entity decision taken during a run."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    PUSH = "push"


class RunPhase(str, Enum):
    """States of a sync run."""

    IDLE = "idle"
    FETCHING = "fetching"
    SCANNING = "scanning"
    PUSHING_LOCAL_CHANGES = "pushing_local_changes"
    RECONCILING = "reconciling"


# ---------------------------------------------------------------------------
# Remote entities
# ---------------------------------------------------------------------------


class Due(BaseModel):
    """Due date of a task."""

    date: str | None = None
    datetime: str | None = None
    string: str | None = None
    is_recurring: bool = False
    timezone: str | None = None

    model_config = {"frozen": True, "extra": "ignore"}


class Task(BaseModel):
    """A Todoist task (``item`` in the Sync API).

    Attributes:
        id: Remote-assigned stable identifier.
        content: Task title.
        checked: Completion flag.
        priority: 1 (normal) to 4 (urgent).
        updated_at: Remote last-modified marker (ISO 8601).
    """

    id: str = Field(min_length=1)
    content: str = ""
    description: str = ""
    checked: bool = Field(
        default=False,
        validation_alias=AliasChoices("checked", "is_completed"),
    )
    priority: int = Field(default=1, ge=1, le=4)
    due: Due | None = None
    labels: list[str] = Field(default_factory=list)
    parent_id: str | None = None
    project_id: str = ""
    section_id: str | None = None
    updated_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "updated_at", "added_at", "created_at", "date_added"
        ),
    )
    is_deleted: bool = False

    model_config = {"frozen": True, "extra": "ignore"}

    @model_validator(mode="after")
    def _require_content(self) -> Task:
        if not self.is_deleted and not self.content.strip():
            raise ValueError("Invalid or missing task content")
        return self


class Project(BaseModel):
    """A Todoist project."""

    id: str = Field(min_length=1)
    name: str = ""
    color: str = ""
    parent_id: str | None = None
    is_favorite: bool = False
    is_archived: bool = False
    is_deleted: bool = False
    updated_at: str | None = None

    model_config = {"frozen": True, "extra": "ignore"}

    @model_validator(mode="after")
    def _require_name(self) -> Project:
        if not self.is_deleted and not self.name.strip():
            raise ValueError("Invalid or missing project name")
        return self


class Section(BaseModel):
    """A Todoist section inside a project."""

    id: str = Field(min_length=1)
    name: str = ""
    project_id: str = ""
    is_deleted: bool = False

    model_config = {"frozen": True, "extra": "ignore"}

    @model_validator(mode="after")
    def _require_name_and_project(self) -> Section:
        if self.is_deleted:
            return self
        if not self.name.strip():
            raise ValueError("Invalid or missing section name")
        if not self.project_id:
            raise ValueError("Invalid or missing project ID for section")
        return self


class Label(BaseModel):
    """A Todoist label.  Read-only; never materialized."""

    id: str = Field(min_length=1)
    name: str = ""
    color: str = ""
    is_favorite: bool = False
    is_deleted: bool = False

    model_config = {"frozen": True, "extra": "ignore"}


class SyncPayload(BaseModel):
    """Validated batch of remote entities to replay into ``RemoteState``.

    Attributes:
        token: Sync token to store after replay.
        is_full: ``True`` when the payload is a complete snapshot.
    """

    token: str
    is_full: bool = False
    projects: list[Project] = []
    tasks: list[Task] = []
    sections: list[Section] = []
    labels: list[Label] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Local documents
# ---------------------------------------------------------------------------


class DocumentFrontmatter(BaseModel):
    """Properties shared by every synced document.

    Unknown keys written by the user are kept as extras so they survive
    a rewrite of the document.
    """

    todoist_id: str
    todoist_type: str = EntityKind.TASK.value
    sync_status: Literal["synced", "pending", "conflict"] | None = None
    last_sync: str | None = None
    title: str | None = None
    tags: list[str] | None = None

    model_config = {"extra": "allow"}

    @field_validator("todoist_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class TaskFrontmatter(DocumentFrontmatter):
    todoist_type: Literal["task"] = "task"
    todoist_project: str | None = None
    todoist_section: str | None = None
    due_date: str | None = None
    due_datetime: str | None = None
    priority: int | None = None
    labels: list[str] | None = None
    completed: bool | None = None
    description: str | None = None
    parent_task: str | None = None


class ProjectFrontmatter(DocumentFrontmatter):
    todoist_type: Literal["project"] = "project"
    color: str | None = None
    parent_project: str | None = None
    is_favorite: bool | None = None


class SectionFrontmatter(DocumentFrontmatter):
    todoist_type: Literal["section"] = "section"
    todoist_project: str | None = None


Frontmatter = Annotated[
    Union[TaskFrontmatter, ProjectFrontmatter, SectionFrontmatter],
    Field(discriminator="todoist_type"),
]


class Document(BaseModel):
    """Local mirror of one remote entity.

    Attributes:
        path: Vault-relative POSIX path of the Markdown file.
        entity_id: Remote id the document mirrors.
        kind: Entity kind discriminator.
        name: Title from frontmatter, or the file stem.
        frontmatter: Typed property bag.
        body: Text after the frontmatter block.
        mtime: Modification time (epoch seconds).
    """

    path: str
    entity_id: str
    kind: EntityKind
    name: str
    frontmatter: Frontmatter
    body: str = ""
    mtime: float = 0.0

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Run bookkeeping
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of one entity decision within a run.

    Attributes:
        entity_id: Remote id of the entity.
        kind: Entity kind.
        action: Decision taken.
        path: Document path involved, if any.
        success: Whether the step completed.
        error: Error message if the step failed.
    """

    entity_id: str
    kind: EntityKind
    action: SyncAction
    path: str | None = None
    success: bool = True
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one run.

    Attributes:
        operation: Entry point that produced the report (``sync``,
            ``pull``, ``fetch``, ``scan``).
        dry_run: Whether storage writes and remote mutations were skipped.
        fetch_mode: ``incremental`` or ``full`` when a fetch ran.
        dropped: Malformed remote records dropped, by kind.
        results: Individual entity results.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run finished.
    """

    operation: str
    dry_run: bool = False
    fetch_mode: str | None = None
    dropped: dict[str, int] = {}
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _by_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def created(self) -> list[SyncResult]:
        """Results where action is CREATE."""
        return self._by_action(SyncAction.CREATE)

    @property
    def updated(self) -> list[SyncResult]:
        """Results where action is UPDATE."""
        return self._by_action(SyncAction.UPDATE)

    @property
    def skipped(self) -> list[SyncResult]:
        """Results where action is SKIP."""
        return self._by_action(SyncAction.SKIP)

    @property
    def pushed(self) -> list[SyncResult]:
        """Results where action is PUSH."""
        return self._by_action(SyncAction.PUSH)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def count(
        self, action: SyncAction, kind: EntityKind | None = None
    ) -> int:
        """Count results by action, optionally restricted to one kind."""
        return sum(
            1
            for r in self.results
            if r.action == action and (kind is None or r.kind == kind)
        )

    def decision_counts(self) -> dict[str, dict[str, int]]:
        """Return ``{action: {kind: n}}`` for create/update/skip."""
        return {
            action.value: {
                kind.value: self.count(action, kind)
                for kind in EntityKind
            }
            for action in (
                SyncAction.CREATE,
                SyncAction.UPDATE,
                SyncAction.SKIP,
            )
        }

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync report for '{self.operation}'"
            + (" (dry run)" if self.dry_run else ""),
            f"  Created:  {len(self.created)}",
            f"  Updated:  {len(self.updated)}",
            f"  Pushed:   {len(self.pushed)}",
            f"  Skipped:  {len(self.skipped)}",
            f"  Dropped:  {sum(self.dropped.values())}",
            f"  Errors:   {len(self.errors)}",
            f"  Total:    {len(self.results)}",
        ]
        return "\n".join(lines)


class SyncOutcome(BaseModel):
    """Structured result handed back to the host for every entry point."""

    success: bool
    message: str
    report: SyncReport | None = None

    model_config = {"frozen": True}


class SyncStats(BaseModel):
    """Counts per entity kind per source plus run status."""

    remote: dict[str, int]
    local: dict[str, int]
    last_sync: float
    is_running: bool
    phase: RunPhase
    pending_changes: int

    model_config = {"frozen": True}
