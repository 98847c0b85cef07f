"""Shared pytest fixtures for todoist-vault-sync tests."""

from __future__ import annotations

import copy
import time
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from todoist_vault_sync.config import Config
from todoist_vault_sync.config_schema import SyncSettings
from todoist_vault_sync.errors import TransportError
from todoist_vault_sync.file_handler import VaultStorage

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Todoist account",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Todoist account"
    )
    config.addinivalue_line(
        "markers", "known_race: documents accepted racy behaviour"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Remote fixtures
# ---------------------------------------------------------------------------


def make_project(id: str = "p1", name: str = "Work", **extra: Any) -> dict:
    return {"id": id, "name": name, "color": "blue", **extra}


def make_section(
    id: str = "s1", name: str = "Backlog", project_id: str = "p1", **extra: Any
) -> dict:
    return {"id": id, "name": name, "project_id": project_id, **extra}


def make_task(
    id: str = "t1",
    content: str = "Write report",
    project_id: str = "p1",
    **extra: Any,
) -> dict:
    record = {
        "id": id,
        "content": content,
        "project_id": project_id,
        "priority": 1,
        "is_completed": False,
        "labels": [],
        "created_at": "2024-01-01T00:00:00Z",
    }
    record.update(extra)
    return record


class FakeTodoistClient:
    """In-memory stand-in for TodoistClient.

    Holds REST-shaped records, records every mutation, and applies
    mutations to its own records so later fetches see them.
    """

    def __init__(
        self,
        projects: list[dict] | None = None,
        tasks: list[dict] | None = None,
        sections: list[dict] | None = None,
        labels: list[dict] | None = None,
    ) -> None:
        self.projects = projects if projects is not None else []
        self.tasks = tasks if tasks is not None else []
        self.sections = sections if sections is not None else []
        self.labels = labels if labels is not None else []
        self.connected = True
        self.fail_incremental = False
        self.fail_full = False
        self.fail_mutations = False
        self.incremental_payload: dict | None = None
        self.calls: list[tuple] = []

    # Reads

    def test_connection(self) -> bool:
        self.calls.append(("test_connection",))
        return self.connected

    def fetch_full_snapshot(self) -> dict:
        self.calls.append(("fetch_full_snapshot",))
        if self.fail_full:
            raise TransportError("Todoist API error: 503 - down", 503)
        return {
            "token": f"full_{int(time.time() * 1000)}",
            "is_full": True,
            "projects": copy.deepcopy(self.projects),
            "tasks": copy.deepcopy(self.tasks),
            "sections": copy.deepcopy(self.sections),
            "labels": copy.deepcopy(self.labels),
        }

    def fetch_incremental(self, token: str) -> dict:
        self.calls.append(("fetch_incremental", token))
        if self.fail_incremental or self.incremental_payload is None:
            raise TransportError("Todoist API error: 400 - bad token", 400)
        return copy.deepcopy(self.incremental_payload)

    # Mutations

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] not in _READ_CALLS]

    def _find(self, records: list[dict], entity_id: str) -> dict:
        for record in records:
            if record["id"] == entity_id:
                return record
        raise TransportError(f"Todoist API error: 404 - {entity_id}", 404)

    def update_task_fields(self, task_id: str, fields: dict) -> dict:
        self.calls.append(("update_task_fields", task_id, dict(fields)))
        if self.fail_mutations:
            raise TransportError("Todoist request failed: timeout")
        task = self._find(self.tasks, task_id)
        task.update(fields)
        return task

    def set_task_completion(self, task_id: str, completed: bool) -> None:
        self.calls.append(("set_task_completion", task_id, completed))
        if self.fail_mutations:
            raise TransportError("Todoist request failed: timeout")
        self._find(self.tasks, task_id)["is_completed"] = completed

    def update_project_fields(self, project_id: str, fields: dict) -> dict:
        self.calls.append(("update_project_fields", project_id, dict(fields)))
        if self.fail_mutations:
            raise TransportError("Todoist request failed: timeout")
        project = self._find(self.projects, project_id)
        project.update(fields)
        return project


_READ_CALLS = {"test_connection", "fetch_full_snapshot", "fetch_incremental"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(api_token="test-token-0123456789")


@pytest.fixture
def mock_todoist_client(mock_config):
    """Create a mock TodoistClient instance for testing."""
    from todoist_vault_sync.core.client import TodoistClient

    client = MagicMock(spec=TodoistClient)
    client.config = mock_config
    return client


@pytest.fixture
def vault(tmp_path: Path) -> VaultStorage:
    """Vault storage rooted in a fresh temp directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return VaultStorage(root)


@pytest.fixture
def settings_factory(tmp_path: Path):
    """Factory for SyncSettings pointing at the temp vault."""

    def _make(**overrides: Any) -> SyncSettings:
        values = {
            "api_token": "test-token-0123456789",
            "vault_root": str(tmp_path / "vault"),
            "state_dir": str(tmp_path / "state"),
        }
        values.update(overrides)
        return SyncSettings(**values)

    return _make


@pytest.fixture
def fake_client() -> FakeTodoistClient:
    """One project with one section and two tasks."""
    return FakeTodoistClient(
        projects=[make_project()],
        sections=[make_section()],
        tasks=[
            make_task(),
            make_task(id="t2", content="Review PR", section_id="s1"),
        ],
    )
