"""Exception taxonomy for the sync engine.

- ``TransportError`` -- the remote service is unreachable or answered
  with a non-2xx status.  Fetch falls back once (incremental -> full),
  then the run aborts.
- ``ValidationError`` -- a remote record is malformed.  The record is
  dropped from its batch and counted; the run continues.
- ``ConflictAnomaly`` -- two local documents claim the same entity id.
  Logged; the last scanned document wins.
- ``StorageError`` -- a document write or delete failed.  Aborts the
  current entity only; the run is reported as failed.

The engine converts all of these into a ``SyncOutcome`` so nothing
escapes to the host uncaught.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync stack."""


class TransportError(SyncError):
    """Remote request failed at the network or HTTP layer."""

    def __init__(
        self, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(SyncError):
    """A remote entity record failed validation."""

    def __init__(
        self,
        kind: str,
        entity_id: str | None,
        errors: list[str],
    ) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.errors = errors
        super().__init__(
            f"Invalid {kind} {entity_id or '<no id>'}: "
            + "; ".join(errors)
        )


class ConflictAnomaly(SyncError):
    """Two local documents share one entity id."""

    def __init__(
        self, entity_id: str, kept_path: str, dropped_path: str
    ) -> None:
        self.entity_id = entity_id
        self.kept_path = kept_path
        self.dropped_path = dropped_path
        super().__init__(
            f"Duplicate document for id {entity_id}: "
            f"{dropped_path} replaced by {kept_path}"
        )


class StorageError(SyncError):
    """Writing or deleting a local document failed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")
