"""
Input validation for remote records and host-supplied values.

Remote batches are filtered record by record: a malformed record is
logged, counted and dropped, and the rest of the batch carries on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

import pydantic

from .errors import ValidationError
from .sync.models import (
    EntityKind,
    Label,
    Project,
    Section,
    SyncPayload,
    Task,
)

logger = logging.getLogger(__name__)

MIN_SYNC_TOKEN_LENGTH = 10
MAX_PATH_LENGTH = 255

# Labels are carried in payloads but are not an EntityKind.
LABEL = "label"

_MODELS: dict[str, type[pydantic.BaseModel]] = {
    EntityKind.TASK.value: Task,
    EntityKind.PROJECT.value: Project,
    EntityKind.SECTION.value: Section,
    LABEL: Label,
}

_PAYLOAD_KEYS = {
    "projects": EntityKind.PROJECT.value,
    "tasks": EntityKind.TASK.value,
    "sections": EntityKind.SECTION.value,
    "labels": LABEL,
}

_UNSAFE_PATH_RE = re.compile(r'[<>:"/\\|?*]')
_SPACES_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Field name or location (e.g., "priority")
        reason: Description of validation failure

    Returns:
        Formatted error message string
    """
    return f"{field_name}: {reason}"


def _describe(exc: pydantic.ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "record"
        messages.append(format_validation_error(location, err["msg"]))
    return messages


# ---------------------------------------------------------------------------
# Entity records
# ---------------------------------------------------------------------------


def validate_entity(kind: str, record: Any) -> pydantic.BaseModel:
    """
    Validate one raw remote record.

    Args:
        kind: ``task``, ``project``, ``section`` or ``label``
        record: Decoded JSON object from the remote service

    Returns:
        The typed entity model

    Raises:
        ValidationError: If the record is not a mapping or breaks a rule
            (non-empty string id, required title fields unless deleted,
            priority 1-4, labels a list)
    """
    kind = EntityKind(kind).value if kind != LABEL else LABEL
    if not isinstance(record, Mapping):
        raise ValidationError(kind, None, [f"{kind} is not an object"])
    entity_id = record.get("id")
    try:
        return _MODELS[kind].model_validate(record)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            kind,
            entity_id if isinstance(entity_id, str) else None,
            _describe(exc),
        ) from exc


def filter_valid(
    kind: str,
    records: Any,
    logger: logging.Logger = logger,
) -> tuple[list[Any], int]:
    """
    Keep the valid records of a batch.

    Returns:
        Tuple of (valid models, number of records dropped).  A batch that
        is not a list yields ``([], 0)``.
    """
    if not validate_api_response(records, "array", logger=logger):
        return [], 0

    valid = []
    for record in records:
        try:
            valid.append(validate_entity(kind, record))
        except ValidationError as exc:
            logger.warning("%s validation failed: %s", kind.capitalize(), exc)

    dropped = len(records) - len(valid)
    if dropped:
        logger.warning(
            "Filtered out %d invalid %ss out of %d", dropped, kind, len(records)
        )
    return valid, dropped


def validate_payload(
    raw: Mapping[str, Any],
    logger: logging.Logger = logger,
) -> tuple[SyncPayload, dict[str, int]]:
    """
    Validate a normalized remote payload.

    Args:
        raw: ``{token, is_full, projects, tasks, sections, labels}``

    Returns:
        Tuple of (payload of valid entities, dropped count per kind).
    """
    batches: dict[str, list[Any]] = {}
    dropped: dict[str, int] = {}
    for key, kind in _PAYLOAD_KEYS.items():
        batches[key], dropped[kind] = filter_valid(
            kind, raw.get(key) or [], logger=logger
        )

    payload = SyncPayload(
        token=str(raw.get("token") or ""),
        is_full=bool(raw.get("is_full", False)),
        **batches,
    )
    return payload, dropped


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def validate_api_response(
    response: Any,
    expected_type: str,
    logger: logging.Logger = logger,
) -> bool:
    """
    Check the top-level shape of a decoded response.

    Args:
        response: Decoded JSON value
        expected_type: ``"array"`` or ``"object"``
    """
    if response is None:
        logger.warning("API response is empty")
        return False
    if expected_type == "array" and not isinstance(response, list):
        logger.warning(
            "Expected array response but got %s", type(response).__name__
        )
        return False
    if expected_type == "object" and not isinstance(response, Mapping):
        logger.warning(
            "Expected object response but got %s", type(response).__name__
        )
        return False
    return True


def validate_sync_token(token: Any) -> bool:
    """
    A sync token is ``"*"`` (full sync) or a string of 10+ characters.
    """
    if not token or not isinstance(token, str):
        return False
    if token == "*":
        return True
    if len(token) < MIN_SYNC_TOKEN_LENGTH:
        logger.warning("Sync token appears too short (%d chars)", len(token))
        return False
    return True


def validate_file_path(file_path: Any) -> tuple[bool, str]:
    """
    Sanitize a single path component supplied by the host.

    Returns:
        Tuple of (is_valid, sanitized).  Reserved characters become
        ``_``, whitespace runs collapse, and the result is cut to 255
        characters.  Returns (False, "") for empty or non-string input.
    """
    if not file_path or not isinstance(file_path, str):
        logger.warning("Invalid file path: %r", file_path)
        return (False, "")

    sanitized = _UNSAFE_PATH_RE.sub("_", file_path)
    sanitized = _SPACES_RE.sub(" ", sanitized).strip()
    if len(sanitized) > MAX_PATH_LENGTH:
        logger.warning(
            "File path too long (%d chars), truncating", len(sanitized)
        )
        sanitized = sanitized[:MAX_PATH_LENGTH]
    return (True, sanitized)


def validate_document_path(path: Any) -> tuple[bool, str]:
    """
    Check a vault-relative document path reported by the host.

    Backslashes are read as separators and a leading ``./`` is dropped.

    Returns:
        Tuple of (is_valid, normalized).  Absolute paths, ``..``
        segments and non-Markdown files are rejected.
    """
    if not path or not isinstance(path, str):
        return (False, "")

    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    parts = normalized.split("/")
    if (
        normalized.startswith("/")
        or any(part in ("", "..") for part in parts)
        or not normalized.endswith(".md")
        or len(normalized) > MAX_PATH_LENGTH
    ):
        logger.warning("Invalid document path: %r", path)
        return (False, "")
    return (True, normalized)
