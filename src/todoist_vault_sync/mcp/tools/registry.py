"""ToolSpec and ToolRegistry for MCP tool dispatch.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition and an async
  handler with standardized signature (engine, args) -> CallToolResult.
- ToolRegistry: Optionally filters specs by an allow-list of tool names
  at construction time, then provides list_tools() and call_tool()
  dispatch with error translation.
- load_tools_file: Reads a simple text file of tool names.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...errors import TransportError
from ...sync.engine import SyncEngine

logger = logging.getLogger(__name__)

_TOOL_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        handler: Async handler with signature (engine, args) -> CallToolResult.
        always_available: Kept even when an allow-list omits it.
    """

    tool: types.Tool
    handler: Callable[[SyncEngine, dict], Awaitable[types.CallToolResult]]
    always_available: bool = False


class ToolRegistry:
    """Registry of ToolSpecs with optional allow-list filtering.

    If allowed_tools is None, all specs are included.  Otherwise a spec
    is included only if it is always available or its name is listed.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_tools: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_tools is None
                or spec.always_available
                or spec.tool.name in allowed_tools
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        engine: SyncEngine,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Provides centralized error handling for Todoist transport errors,
        validation errors, and unexpected exceptions, translating them
        into structured CallToolResult responses with corrective actions.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response, translate_transport_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(engine, args)
        except TransportError as e:
            logger.warning("Todoist error in %s: %s", name, e)
            return translate_transport_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log file or retry later.",
            )


def load_tools_file(path: str | Path) -> frozenset[str]:
    """Load an allow-list of tool names from a text file.

    Format: one tool name per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only tools
        todoist_sync_status
        todoist_fetch

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains invalid names or is empty.
    """
    path = Path(path)
    names: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if not _TOOL_NAME_RE.match(stripped):
            raise ValueError(
                f"Invalid tool name '{stripped}' at line {line_num} in {path}. "
                "Expected snake_case (e.g., todoist_sync)."
            )
        names.add(stripped)
    if not names:
        raise ValueError(
            f"No tool names found in {path}. File must list at least one tool."
        )
    return frozenset(names)
