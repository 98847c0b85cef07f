"""Frontmatter codec for synced Markdown documents.

A document starts with a ``---`` line; the next ``---`` line closes the
property block and everything after it is the body.  The block uses a
small YAML subset:

* ``key: value`` scalars (strings, integers, floats, ``true``/``false``)
* double-quoted strings with ``\\"`` and ``\\\\`` escapes, single-quoted
  strings with ``''`` escapes; quoted scalars always stay strings
* inline arrays ``key: [a, b]``
* block lists: ``key:`` followed by ``  - item`` lines
* block literals: ``key: |`` followed by two-space-indented lines
* ``#`` comment lines

Lines that match none of these are skipped.  The serializer writes the
same subset, so ``parse_document(serialize_document(bag, body))``
returns ``(bag, body)`` for any bag whose strings are not the literals
``"true"``/``"false"`` and carry no trailing newlines.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pydantic

from .models import (
    EntityKind,
    ProjectFrontmatter,
    SectionFrontmatter,
    TaskFrontmatter,
)

logger = logging.getLogger(__name__)

FENCE = "---"
INDENT = "  "

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$")
_ITEM_RE = re.compile(r"^\s*-(?:\s+(.*))?$")
_ESCAPE_RE = re.compile(r'\\(["\\])')
_CHECKED_RE = re.compile(r"\[x\]")
_HEADING_RE = re.compile(r"^#+\s*")

CHANGE_FIELDS = ("title", "completed", "priority", "due_date", "labels")

_FRONTMATTER_MODELS: dict[str, type[pydantic.BaseModel]] = {
    EntityKind.TASK.value: TaskFrontmatter,
    EntityKind.PROJECT.value: ProjectFrontmatter,
    EntityKind.SECTION.value: SectionFrontmatter,
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_document(text: str) -> tuple[dict[str, Any], str] | None:
    """Split *text* into its property bag and body.

    Returns:
        ``(bag, body)``, or ``None`` when the text does not start with a
        closed ``---`` block.
    """
    lines = text.split("\n")
    if lines[0].rstrip("\r") != FENCE:
        return None

    for end in range(1, len(lines)):
        if lines[end].rstrip("\r") == FENCE:
            break
    else:
        return None

    bag = _parse_block([line.rstrip("\r") for line in lines[1:end]])
    body = "\n".join(lines[end + 1 :])
    return bag, body


def _parse_block(lines: list[str]) -> dict[str, Any]:
    bag: dict[str, Any] = {}
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        i += 1
        if not stripped or stripped.startswith(("#", "-")):
            continue
        key, sep, value = stripped.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()

        if value == "|":
            block: list[str] = []
            while i < len(lines) and lines[i].startswith(INDENT):
                block.append(lines[i][len(INDENT) :])
                i += 1
            bag[key] = "\n".join(block)
        elif value == "":
            items: list[Any] = []
            while i < len(lines):
                match = _ITEM_RE.match(lines[i])
                if match is None:
                    break
                items.append(_unquote((match.group(1) or "").strip()))
                i += 1
            bag[key] = items
        else:
            bag[key] = _parse_scalar(value)
    return bag


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return _ESCAPE_RE.sub(r"\1", value[1:-1])
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")
    return value


def _parse_scalar(value: str) -> Any:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return _unquote(value)
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1].strip()
        if not inner:
            return []
        return [_unquote(item.strip()) for item in inner.split(",")]
    if value == "true":
        return True
    if value == "false":
        return False
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    return value


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _format_item(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_frontmatter(bag: Mapping[str, Any]) -> str:
    """Render *bag* as a ``---`` delimited property block.

    ``None`` values are omitted.  The result has no trailing newline.
    """
    out = [FENCE]
    for key, value in bag.items():
        if value is None:
            continue

        if isinstance(value, (list, tuple)):
            out.append(f"{key}:")
            out.extend(f"{INDENT}- {_format_item(item)}" for item in value)
            continue

        if isinstance(value, str):
            if "\n" in value or "\r" in value:
                normalized = (
                    value.replace("\r\n", "\n").replace("\r", "\n").rstrip("\n")
                )
                out.append(f"{key}: |")
                out.extend(f"{INDENT}{line}" for line in normalized.split("\n"))
                continue
            if value in ("true", "false"):
                out.append(f"{key}: {value}")
                continue
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            out.append(f'{key}: "{escaped}"')
            continue

        out.append(f"{key}: {_format_item(value)}")

    out.append(FENCE)
    return "\n".join(out)


def serialize_document(bag: Mapping[str, Any], body: str = "") -> str:
    """Full document text: property block, newline, body."""
    return serialize_frontmatter(bag) + "\n" + body


def frontmatter_to_bag(frontmatter: pydantic.BaseModel) -> dict[str, Any]:
    """Flatten a typed frontmatter model (extras included) to a bag."""
    return frontmatter.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Body helpers
# ---------------------------------------------------------------------------


def extract_checkbox_status(body: str) -> bool:
    """``True`` when the body contains a checked ``[x]`` box."""
    return _CHECKED_RE.search(body) is not None


def extract_title_from_body(body: str) -> str | None:
    """Text of the first ``#`` heading, or ``None``."""
    for line in body.split("\n"):
        stripped = line.strip()
        if stripped.startswith("#"):
            return _HEADING_RE.sub("", stripped).strip() or None
    return None


# ---------------------------------------------------------------------------
# Typed views
# ---------------------------------------------------------------------------


def build_frontmatter(
    bag: Mapping[str, Any],
    logger: logging.Logger = logger,
) -> TaskFrontmatter | ProjectFrontmatter | SectionFrontmatter | None:
    """Build the typed frontmatter for a property bag.

    ``todoist_type`` selects the variant; anything other than
    ``project`` or ``section`` is treated as a task.  Fields that fail
    validation are dropped with a warning.

    Returns:
        The typed model, or ``None`` when the bag has no usable
        ``todoist_id``.
    """
    kind = bag.get("todoist_type")
    if kind not in (EntityKind.PROJECT.value, EntityKind.SECTION.value):
        kind = EntityKind.TASK.value
    model = _FRONTMATTER_MODELS[kind]
    data = {**bag, "todoist_type": kind}

    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        invalid = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}

    if "todoist_id" in invalid or "todoist_id" not in data:
        return None

    logger.warning(
        "Dropping invalid frontmatter fields for %s: %s",
        data.get("todoist_id"),
        ", ".join(sorted(invalid)),
    )
    cleaned = {k: v for k, v in data.items() if k not in invalid}
    return model.model_validate(cleaned)


# ---------------------------------------------------------------------------
# Change extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskChanges:
    """Editable task fields read back from a document.

    ``completed`` is the frontmatter ``completed`` flag when present,
    otherwise whether the body has a checked box.  ``title`` is the
    frontmatter title, otherwise the first body heading.
    """

    frontmatter: TaskFrontmatter
    completed: bool
    title: str | None
    priority: int | None


@dataclass(frozen=True)
class ProjectChanges:
    frontmatter: ProjectFrontmatter
    title: str | None


@dataclass(frozen=True)
class SectionChanges:
    frontmatter: SectionFrontmatter
    title: str | None


def task_changes(frontmatter: TaskFrontmatter, body: str) -> TaskChanges:
    """Editable task fields of an already parsed task document."""
    if frontmatter.completed is not None:
        completed = frontmatter.completed
    else:
        completed = extract_checkbox_status(body)
    return TaskChanges(
        frontmatter=frontmatter,
        completed=completed,
        title=frontmatter.title or extract_title_from_body(body),
        priority=frontmatter.priority,
    )


def _typed(text: str, kind: EntityKind):
    parsed = parse_document(text)
    if parsed is None:
        return None
    bag, body = parsed
    if not bag.get("todoist_id"):
        return None
    frontmatter = build_frontmatter(bag)
    if frontmatter is None or frontmatter.todoist_type != kind.value:
        return None
    return frontmatter, body


def extract_task_changes(text: str) -> TaskChanges | None:
    """Read the editable task fields, or ``None`` if *text* is not a task."""
    typed = _typed(text, EntityKind.TASK)
    if typed is None:
        return None
    return task_changes(*typed)


def extract_project_changes(text: str) -> ProjectChanges | None:
    typed = _typed(text, EntityKind.PROJECT)
    if typed is None:
        return None
    frontmatter, body = typed
    return ProjectChanges(
        frontmatter=frontmatter,
        title=frontmatter.title or extract_title_from_body(body),
    )


def extract_section_changes(text: str) -> SectionChanges | None:
    typed = _typed(text, EntityKind.SECTION)
    if typed is None:
        return None
    frontmatter, body = typed
    return SectionChanges(
        frontmatter=frontmatter,
        title=frontmatter.title or extract_title_from_body(body),
    )


def is_in_sync_scope(text: str) -> bool:
    """A document is in scope when its frontmatter carries ``todoist_id``."""
    parsed = parse_document(text)
    return parsed is not None and "todoist_id" in parsed[0]


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return json.dumps(sorted(str(item) for item in value))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def has_changes(old: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
    """Compare two bags over title, completion, priority, due date, labels."""
    return any(
        _normalize(old.get(field)) != _normalize(new.get(field))
        for field in CHANGE_FIELDS
    )
