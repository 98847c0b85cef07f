"""Tests for remote-record and host-value validation."""

import pytest

from conftest import make_project, make_section, make_task
from todoist_vault_sync.errors import ValidationError
from todoist_vault_sync.sync.models import Label, Project, Section, Task
from todoist_vault_sync.validators import (
    filter_valid,
    format_validation_error,
    validate_api_response,
    validate_document_path,
    validate_entity,
    validate_file_path,
    validate_payload,
    validate_sync_token,
)


def test_format_validation_error():
    assert format_validation_error("priority", "too big") == "priority: too big"


class TestValidateEntity:
    def test_valid_task(self):
        task = validate_entity("task", make_task(priority=4, labels=["work"]))
        assert isinstance(task, Task)
        assert task.priority == 4
        assert task.labels == ["work"]
        assert task.checked is False
        assert task.updated_at == "2024-01-01T00:00:00Z"

    def test_sync_api_field_names(self):
        task = validate_entity(
            "task",
            {
                "id": "t1",
                "content": "x",
                "checked": True,
                "added_at": "2024-02-02T00:00:00Z",
            },
        )
        assert task.checked is True
        assert task.updated_at == "2024-02-02T00:00:00Z"

    def test_updated_at_preferred(self):
        task = validate_entity(
            "task",
            make_task(updated_at="2024-03-03T00:00:00Z"),
        )
        assert task.updated_at == "2024-03-03T00:00:00Z"

    def test_project_and_section_and_label(self):
        assert isinstance(validate_entity("project", make_project()), Project)
        assert isinstance(validate_entity("section", make_section()), Section)
        assert isinstance(
            validate_entity("label", {"id": "l1", "name": "urgent"}), Label
        )

    @pytest.mark.parametrize(
        "kind,record",
        [
            ("task", make_task(id="")),
            ("task", {"content": "no id"}),
            ("task", make_task(content="   ")),
            ("task", make_task(priority=5)),
            ("task", make_task(priority=0)),
            ("task", make_task(labels="work")),
            ("project", make_project(name="")),
            ("section", make_section(project_id="")),
            ("section", make_section(name="")),
        ],
    )
    def test_invalid_records(self, kind, record):
        with pytest.raises(ValidationError):
            validate_entity(kind, record)

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="not an object"):
            validate_entity("task", ["t1"])

    def test_tombstone_needs_only_id(self):
        task = validate_entity("task", {"id": "t1", "is_deleted": True})
        assert task.is_deleted

    def test_error_carries_id_and_messages(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_entity("task", make_task(id="t7", priority=9))
        assert exc_info.value.entity_id == "t7"
        assert exc_info.value.kind == "task"
        assert any("priority" in m for m in exc_info.value.errors)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            validate_entity("comment", {"id": "c1"})


class TestFilterValid:
    def test_drops_and_counts(self):
        valid, dropped = filter_valid(
            "task", [make_task(), make_task(id=""), "junk"]
        )
        assert [t.id for t in valid] == ["t1"]
        assert dropped == 2

    def test_not_a_list(self):
        assert filter_valid("task", {"id": "t1"}) == ([], 0)
        assert filter_valid("task", None) == ([], 0)


class TestValidatePayload:
    def test_payload(self):
        payload, dropped = validate_payload(
            {
                "token": "abcdefghijkl",
                "is_full": True,
                "projects": [make_project(), {"id": "p2"}],
                "tasks": [make_task()],
                "sections": [make_section()],
            }
        )
        assert payload.token == "abcdefghijkl"
        assert payload.is_full
        assert [p.id for p in payload.projects] == ["p1"]
        assert payload.labels == []
        assert dropped == {"project": 1, "task": 0, "section": 0, "label": 0}

    def test_defaults(self):
        payload, _ = validate_payload({})
        assert payload.token == ""
        assert payload.is_full is False


class TestScalars:
    @pytest.mark.parametrize(
        "response,expected_type,ok",
        [
            ([], "array", True),
            ({}, "object", True),
            ({}, "array", False),
            ([], "object", False),
            (None, "array", False),
        ],
    )
    def test_validate_api_response(self, response, expected_type, ok):
        assert validate_api_response(response, expected_type) is ok

    @pytest.mark.parametrize(
        "token,ok",
        [
            ("*", True),
            ("abcdefghij", True),
            ("short", False),
            ("", False),
            (None, False),
            (123456789012, False),
        ],
    )
    def test_validate_sync_token(self, token, ok):
        assert validate_sync_token(token) is ok

    def test_validate_file_path(self):
        assert validate_file_path('a:b  "c"') == (True, "a_b _c_")
        assert validate_file_path("") == (False, "")
        assert validate_file_path(None) == (False, "")
        ok, sanitized = validate_file_path("x" * 300)
        assert ok and len(sanitized) == 255


class TestValidateDocumentPath:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("TodoistSync/Work/a.md", "TodoistSync/Work/a.md"),
            ("./TodoistSync/a.md", "TodoistSync/a.md"),
            ("TodoistSync\\Work\\a.md", "TodoistSync/Work/a.md"),
        ],
    )
    def test_valid(self, raw, expected):
        assert validate_document_path(raw) == (True, expected)

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            None,
            "/etc/passwd.md",
            "../outside.md",
            "TodoistSync//a.md",
            "TodoistSync/notes.txt",
            "a/" * 130 + "b.md",
        ],
    )
    def test_invalid(self, raw):
        assert validate_document_path(raw) == (False, "")
