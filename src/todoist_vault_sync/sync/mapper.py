"""Entity-to-path mapping for materialized documents.

Layout under the sync folder::

    <root>/<project>/_project.md
    <root>/<project>/<section>/_section.md
    <root>/<project>[/<section>]/<task>.md

Every path segment derived from a remote title goes through
``sanitize_name`` so it is safe on every filesystem the vault may live
on.  Paths are POSIX strings relative to the vault root.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

PROJECT_FILENAME = "_project.md"
SECTION_FILENAME = "_section.md"
MAX_NAME_LENGTH = 100
FALLBACK_NAME = "untitled"

_LINK_RE = re.compile(r"\[([^\]]+)\]\((.*?)\)")
_UNSAFE_RE = re.compile(r'[<>:"/\\|?*]')
_UNDERSCORES_RE = re.compile(r"_+")


def sanitize_name(title: str) -> str:
    """Turn an entity title into a filesystem-safe name.

    Markdown links keep their text, reserved characters and dots become
    underscores, the result is trimmed and cut to 100 characters, runs
    of underscores collapse to one.  An empty result becomes
    ``"untitled"``.

    >>> sanitize_name("Read [Guide](https://x.io) today.")
    'Read Guide today_'
    """
    name = _LINK_RE.sub(r"\1", title)
    name = _UNSAFE_RE.sub("_", name)
    name = name.replace(".", "_")
    name = name.strip()[:MAX_NAME_LENGTH]
    name = _UNDERSCORES_RE.sub("_", name)
    return name or FALLBACK_NAME


class PathMapper:
    """Build document paths for remote entities.

    Args:
        sync_folder: Vault-relative folder that holds all synced
            documents (e.g. ``"TodoistSync"``).
    """

    def __init__(self, sync_folder: str) -> None:
        self.sync_folder = self._clean(sync_folder)

    def project_folder(self, project_name: str) -> str:
        return self._join(self.sync_folder, sanitize_name(project_name))

    def project_path(self, project_name: str) -> str:
        return self._join(self.project_folder(project_name), PROJECT_FILENAME)

    def section_folder(self, project_name: str, section_name: str) -> str:
        return self._join(
            self.project_folder(project_name), sanitize_name(section_name)
        )

    def section_path(self, project_name: str, section_name: str) -> str:
        return self._join(
            self.section_folder(project_name, section_name), SECTION_FILENAME
        )

    def task_folder(
        self,
        project_name: str | None = None,
        section_name: str | None = None,
    ) -> str:
        """Folder for a task document.

        The section level is only used when the project is known.
        """
        if not project_name:
            return self.sync_folder
        if section_name:
            return self.section_folder(project_name, section_name)
        return self.project_folder(project_name)

    def task_path(
        self,
        task_id: str,
        title: str,
        project_name: str | None = None,
        section_name: str | None = None,
    ) -> str:
        """Path for a task document; an empty title becomes ``Task <id>``."""
        filename = sanitize_name(title or f"Task {task_id}") + ".md"
        return self._join(
            self.task_folder(project_name, section_name), filename
        )

    def contains(self, path: str) -> bool:
        """``True`` when *path* lies under the sync folder."""
        if not self.sync_folder:
            return True
        return path == self.sync_folder or path.startswith(
            self.sync_folder + "/"
        )

    @staticmethod
    def parent(path: str) -> str:
        parent = str(PurePosixPath(path).parent)
        return "" if parent == "." else parent

    @staticmethod
    def _join(*parts: str) -> str:
        return "/".join(part for part in parts if part)

    @staticmethod
    def _clean(raw: str) -> str:
        """Normalise separators and drop leading, trailing and double slashes."""
        raw = raw.replace("\\", "/")
        while "//" in raw:
            raw = raw.replace("//", "/")
        return raw.strip("/")
