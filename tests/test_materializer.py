"""Tests for DocumentMaterializer."""

from todoist_vault_sync.config_schema import EnabledProperties
from todoist_vault_sync.sync.frontmatter import parse_document
from todoist_vault_sync.sync.materializer import DocumentMaterializer
from todoist_vault_sync.sync.models import (
    Due,
    EntityKind,
    Project,
    Section,
    Task,
)

WORK = Project(id="p1", name="Work", color="blue")
BACKLOG = Section(id="s1", name="Backlog", project_id="p1")


def _task(**overrides) -> Task:
    values = {"id": "t1", "content": "Write report", "project_id": "p1"}
    values.update(overrides)
    return Task(**values)


def _bag(vault, path):
    return parse_document(vault.read_document(path))


class TestPaths:
    def test_project(self, vault):
        document = DocumentMaterializer(vault, "TodoistSync").materialize_project(WORK)

        assert document.path == "TodoistSync/Work/_project.md"
        assert document.kind == EntityKind.PROJECT
        bag, body = _bag(vault, document.path)
        assert bag["todoist_type"] == "project"
        assert bag["title"] == "Work"
        assert bag["color"] == "blue"
        assert body == ""

    def test_section(self, vault):
        document = DocumentMaterializer(vault, "TodoistSync").materialize_section(
            BACKLOG, "Work"
        )
        assert document.path == "TodoistSync/Work/Backlog/_section.md"
        bag, _ = _bag(vault, document.path)
        assert bag["todoist_project"] == "p1"

    def test_tasks(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")

        loose = materializer.materialize_task(_task(), "Work")
        sectioned = materializer.materialize_task(
            _task(id="t2", content="Review PR", section_id="s1"), "Work", "Backlog"
        )

        assert loose.path == "TodoistSync/Work/Write report.md"
        assert sectioned.path == "TodoistSync/Work/Backlog/Review PR.md"
        assert vault.document_exists(sectioned.path)
        assert sectioned.mtime == vault.get_mtime(sectioned.path)


class TestTaskFrontmatter:
    def test_fields(self, vault):
        task = _task(
            priority=3,
            labels=["work"],
            due=Due(date="2024-05-01"),
            description="details",
            parent_id="t0",
        )
        document = DocumentMaterializer(vault, "TodoistSync").materialize_task(
            task, "Work", "Backlog"
        )

        bag, _ = _bag(vault, document.path)
        assert bag["todoist_id"] == "t1"
        assert bag["title"] == "Write report"
        assert bag["priority"] == 3
        assert bag["labels"] == ["work"]
        assert bag["due_date"] == "2024-05-01"
        assert bag["todoist_project"] == "Work"
        assert bag["todoist_section"] == "Backlog"
        assert bag["completed"] is False
        assert bag["description"] == "details"
        assert bag["parent_task"] == "t0"
        assert bag["sync_status"] == "synced"
        assert bag["tags"] == ["todoist"]

    def test_disabled_properties_omitted(self, vault):
        materializer = DocumentMaterializer(
            vault,
            "TodoistSync",
            enabled_properties=EnabledProperties(priority=False, labels=False),
        )
        document = materializer.materialize_task(_task(labels=["x"]), "Work")

        bag, _ = _bag(vault, document.path)
        assert "priority" not in bag
        assert "labels" not in bag
        assert bag["title"] == "Write report"

    def test_custom_scope_tag(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync", scope_tag="tasks")
        document = materializer.materialize_task(_task(), "Work")
        assert _bag(vault, document.path)[0]["tags"] == ["tasks"]


class TestUpdate:
    def test_existing_path_reused_and_body_kept(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")
        first = materializer.materialize_task(_task(), "Work")
        vault.write_document(
            first.path, vault.read_document(first.path) + "My notes\n"
        )

        second = materializer.materialize_task(
            _task(content="Write final report"), "Work", existing_path=first.path
        )

        assert second.path == first.path
        assert not vault.document_exists("TodoistSync/Work/Write final report.md")
        bag, body = _bag(vault, second.path)
        assert bag["title"] == "Write final report"
        assert body == "My notes\n"
        assert second.body == "My notes\n"

    def test_new_document_has_no_body(self, vault):
        document = DocumentMaterializer(vault, "TodoistSync").materialize_task(
            _task(), "Work"
        )
        assert document.body == ""


class TestTakenPaths:
    def test_same_title_gets_id_suffix(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")

        first = materializer.materialize_task(_task(content="Buy milk"), "Work")
        vault.write_document(
            first.path, vault.read_document(first.path) + "Whole milk\n"
        )
        second = materializer.materialize_task(
            _task(id="t2", content="Buy milk"), "Work"
        )

        assert first.path == "TodoistSync/Work/Buy milk.md"
        assert second.path == "TodoistSync/Work/Buy milk (t2).md"
        assert _bag(vault, first.path)[0]["todoist_id"] == "t1"
        assert _bag(vault, first.path)[1] == "Whole milk\n"
        assert _bag(vault, second.path)[0]["todoist_id"] == "t2"

    def test_user_note_is_not_overwritten(self, vault):
        vault.create_folder("TodoistSync/Work")
        vault.write_document("TodoistSync/Work/Write report.md", "draft\n")

        document = DocumentMaterializer(vault, "TodoistSync").materialize_task(
            _task(), "Work"
        )

        assert document.path == "TodoistSync/Work/Write report (t1).md"
        assert vault.read_document("TodoistSync/Work/Write report.md") == "draft\n"

    def test_own_document_path_is_kept(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")
        first = materializer.materialize_task(_task(), "Work")

        again = materializer.materialize_task(_task(), "Work")

        assert again.path == first.path

    def test_indexed_owner_checked_in_dry_run(self, vault):
        owners = {"TodoistSync/Work/Write report.md": "t1"}
        materializer = DocumentMaterializer(
            vault, "TodoistSync", dry_run=True, path_owner=owners.get
        )

        document = materializer.materialize_task(_task(id="t2"), "Work")

        assert document.path == "TodoistSync/Work/Write report (t2).md"
        assert not vault.folder_exists("TodoistSync")


class TestDryRun:
    def test_nothing_written(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync", dry_run=True)

        materializer.ensure_sync_folder()
        document = materializer.materialize_task(_task(), "Work")
        materializer.delete_document(document.path)

        assert document.path == "TodoistSync/Work/Write report.md"
        assert document.mtime > 0
        assert not vault.folder_exists("TodoistSync")

    def test_set_dry_run(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")
        materializer.set_dry_run(True)
        assert materializer.dry_run is True


class TestStampSynced:
    def test_rewrites_status_and_keeps_body(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")
        document = materializer.materialize_task(_task(), "Work")
        pending = document.model_copy(
            update={
                "frontmatter": document.frontmatter.model_copy(
                    update={"sync_status": "pending"}
                ),
                "body": "Body\n",
            }
        )

        stamped = materializer.stamp_synced(pending)

        assert stamped.frontmatter.sync_status == "synced"
        bag, body = _bag(vault, document.path)
        assert bag["sync_status"] == "synced"
        assert body == "Body\n"
        assert stamped.mtime == vault.get_mtime(document.path)

    def test_dry_run_stays_in_memory(self, vault):
        materializer = DocumentMaterializer(vault, "TodoistSync")
        document = materializer.materialize_task(_task(), "Work")
        before = vault.read_document(document.path)

        materializer.set_dry_run(True)
        stamped = materializer.stamp_synced(document)

        assert stamped.frontmatter.sync_status == "synced"
        assert vault.read_document(document.path) == before


def test_ensure_sync_folder(vault):
    DocumentMaterializer(vault, "TodoistSync").ensure_sync_folder()
    assert vault.folder_exists("TodoistSync")


def test_delete_document(vault):
    materializer = DocumentMaterializer(vault, "TodoistSync")
    document = materializer.materialize_project(WORK)
    materializer.delete_document(document.path)
    assert not vault.document_exists(document.path)
