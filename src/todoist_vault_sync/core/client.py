import json
import logging
import threading
import time
from typing import Any

import requests

from ..config import Config
from ..errors import TransportError

logger = logging.getLogger(__name__)

FULL_TOKEN_PREFIX = "full_"


class TodoistClient:
    """Blocking client for the Todoist REST and Sync APIs.

    Every failure (network error, non-2xx status, undecodable body) is
    raised as ``TransportError``.  The engine calls these methods through
    ``run_sync`` so each worker thread gets its own ``requests.Session``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = f"Bearer {self.config.api_token}"
        return session

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        session = self._get_session()
        try:
            response = session.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Todoist request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(
                f"Todoist API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"Invalid JSON from {url}", status_code=response.status_code
            ) from exc

    def _rest(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        return self._request(
            method, f"{self.config.rest_url.rstrip('/')}{endpoint}", **kwargs
        )

    def _sync(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        return self._request(
            method, f"{self.config.sync_url.rstrip('/')}{endpoint}", **kwargs
        )

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def test_connection(self) -> bool:
        """
        Check the token by listing projects.
        Returns False instead of raising when the API is unreachable.
        """
        try:
            response = self._rest("GET", "/projects")
        except TransportError as exc:
            logger.error("Connection test failed: %s", exc)
            return False
        valid = isinstance(response, list)
        if valid:
            logger.debug("Connection test ok (%d projects)", len(response))
        else:
            logger.error("Connection test failed: invalid response format")
        return valid

    # ------------------------------------------------------------------
    # Collections (REST)
    # ------------------------------------------------------------------

    def get_projects(self) -> list[dict]:
        return self._rest("GET", "/projects") or []

    def get_tasks(self, project_id: str | None = None) -> list[dict]:
        params = {"project_id": project_id} if project_id else None
        return self._rest("GET", "/tasks", params=params) or []

    def get_sections(self, project_id: str | None = None) -> list[dict]:
        params = {"project_id": project_id} if project_id else None
        return self._rest("GET", "/sections", params=params) or []

    def get_labels(self) -> list[dict]:
        return self._rest("GET", "/labels") or []

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def fetch_full_snapshot(self) -> dict[str, Any]:
        """
        Fetch every project, task, section and label.

        Returns:
            Normalized payload with a synthetic ``full_<ms>`` token and
            ``is_full=True``.
        """
        projects = self.get_projects()
        tasks = self.get_tasks()
        sections = self.get_sections()
        labels = self.get_labels()
        logger.info(
            "Fetched %d tasks, %d projects, %d sections, %d labels via REST",
            len(tasks),
            len(projects),
            len(sections),
            len(labels),
        )
        return {
            "token": f"{FULL_TOKEN_PREFIX}{int(time.time() * 1000)}",
            "is_full": True,
            "projects": projects,
            "tasks": tasks,
            "sections": sections,
            "labels": labels,
        }

    def fetch_incremental(self, token: str) -> dict[str, Any]:
        """
        Fetch changes since *token* through the Sync API.

        Returns:
            Normalized payload ``{token, is_full, projects, tasks,
            sections, labels}``.
        """
        response = self._sync(
            "POST",
            "/sync",
            data={
                "sync_token": token,
                "resource_types": json.dumps(["all"]),
            },
        )
        if not isinstance(response, dict):
            raise TransportError("Invalid sync response: expected an object")
        return {
            "token": response.get("sync_token") or token,
            "is_full": bool(response.get("full_sync", False)),
            "projects": response.get("projects") or [],
            "tasks": response.get("items") or [],
            "sections": response.get("sections") or [],
            "labels": response.get("labels") or [],
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_task_fields(self, task_id: str, fields: dict[str, Any]) -> Any:
        """
        Update task fields (``content``, ``priority``, ...).
        """
        return self._rest("POST", f"/tasks/{task_id}", json_body=fields)

    def set_task_completion(self, task_id: str, completed: bool) -> None:
        """
        Close or reopen a task.
        """
        action = "close" if completed else "reopen"
        self._rest("POST", f"/tasks/{task_id}/{action}")

    def update_project_fields(
        self, project_id: str, fields: dict[str, Any]
    ) -> Any:
        """
        Update project fields (``name``, ``color``, ...).
        """
        return self._rest("POST", f"/projects/{project_id}", json_body=fields)
