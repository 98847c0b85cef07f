"""Todoist client functionality shared between the CLI and the MCP server."""

from .async_utils import run_sync
from .client import TodoistClient

__all__ = ["TodoistClient", "run_sync"]
