"""MCP tool handlers for Todoist vault sync.

This package contains MCP tool implementations that wrap the SyncEngine
with async handlers and structured error responses.
"""

from .errors import build_error_response, translate_transport_error
from .registry import ToolRegistry, ToolSpec, load_tools_file
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "build_error_response",
    "translate_transport_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_tools_file",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
]
