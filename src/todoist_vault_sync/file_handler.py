"""Vault storage: path validation, encoding-aware read/write, document listing.

Provides the file I/O behind the local state and the materializer.
Every path handed to ``VaultStorage`` is a POSIX string relative to the
vault root; absolute paths and paths escaping the root are rejected.
All methods are synchronous; the engine calls them through run_sync().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from charset_normalizer import from_bytes

from todoist_vault_sync.errors import StorageError
from todoist_vault_sync.sync.frontmatter import parse_document

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".md"


@dataclass(frozen=True)
class StoredDocument:
    """A Markdown document as read from the vault."""

    path: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    body: str = ""
    mtime: float = 0.0


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    return (str(result), result.encoding)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Write content to a file, creating parent directories as needed.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


# =============================================================================
# Vault
# =============================================================================


class VaultStorage:
    """Document store rooted at a vault directory.

    Args:
        root: Vault root directory.  Created on first write if missing.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def resolve(self, rel_path: str) -> Path:
        """Map a vault-relative path to an absolute one.

        Raises:
            ValueError: If the path is absolute or resolves outside the vault.
        """
        if Path(rel_path).is_absolute():
            raise ValueError(f"Path must be vault-relative: {rel_path}")
        resolved = (self.root / rel_path).resolve()
        if not resolved.is_relative_to(self.root):
            raise ValueError(
                f"Path is outside the vault: {rel_path} not under {self.root}"
            )
        return resolved

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def list_documents_under(self, folder: str) -> list[StoredDocument]:
        """Read every Markdown document below *folder*, sorted by path.

        Documents that cannot be read are logged and skipped.
        """
        base = self.resolve(folder)
        if not base.is_dir():
            return []

        documents: list[StoredDocument] = []
        for path in sorted(base.rglob(f"*{DOCUMENT_SUFFIX}")):
            if not path.is_file():
                continue
            try:
                documents.append(self._load(path))
            except OSError as exc:
                logger.error(
                    "Error reading document %s: %s", self.relative(path), exc
                )
        return documents

    def load_document(self, rel_path: str) -> StoredDocument | None:
        """Read and split one document, or ``None`` if it does not exist."""
        path = self.resolve(rel_path)
        if not path.is_file():
            return None
        try:
            return self._load(path)
        except OSError as exc:
            raise StorageError(rel_path, str(exc)) from exc

    def _load(self, path: Path) -> StoredDocument:
        text, _encoding = read_file_with_encoding(path)
        mtime = path.stat().st_mtime
        rel = self.relative(path)
        parsed = parse_document(text)
        if parsed is None:
            return StoredDocument(rel, {}, text, mtime)
        bag, body = parsed
        return StoredDocument(rel, bag, body, mtime)

    def read_document(self, rel_path: str) -> str:
        path = self.resolve(rel_path)
        try:
            text, _encoding = read_file_with_encoding(path)
        except OSError as exc:
            raise StorageError(rel_path, str(exc)) from exc
        return text

    def write_document(self, rel_path: str, content: str) -> float:
        """Create or overwrite a document.

        Returns:
            The new modification time.

        Raises:
            StorageError: If the write fails.
        """
        path = self.resolve(rel_path)
        try:
            write_file(path, content)
            return path.stat().st_mtime
        except OSError as exc:
            raise StorageError(rel_path, str(exc)) from exc

    def delete_document(self, rel_path: str) -> None:
        path = self.resolve(rel_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(rel_path, str(exc)) from exc

    def document_exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).is_file()

    def folder_exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).is_dir()

    def create_folder(self, rel_path: str) -> None:
        path = self.resolve(rel_path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(rel_path, str(exc)) from exc

    def get_mtime(self, rel_path: str) -> float | None:
        path = self.resolve(rel_path)
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            return None
