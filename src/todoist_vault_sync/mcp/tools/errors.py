"""Error response builders and shared utilities for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
shared formatting utilities used across tool modules.
"""

from datetime import datetime, timezone
from typing import Any

import mcp.types as types

from ...errors import TransportError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (auth_error, not_found, rate_limited,
            validation_error, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Task 123 not found", "Run todoist_fetch first.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_timestamp(timestamp: Any) -> str:
    """Format timestamp for display.

    Handles datetime objects and Unix timestamps (int/float); 0 means the
    event never happened.

    Returns:
        Formatted date string (YYYY-MM-DD HH:MM), or ``never``.
    """
    match timestamp:
        case datetime() as dt:
            return dt.strftime("%Y-%m-%d %H:%M")
        case int() | float() as ts if not ts:
            return "never"
        case int() | float() as ts:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
            return dt.strftime("%Y-%m-%d %H:%M")
        case _:
            return str(timestamp)


# ---------------------------------------------------------------------------
# Transport error translation
# ---------------------------------------------------------------------------

_CORRECTIVE_ACTIONS: dict[str, str] = {
    "auth_error": "Check TODOIST_API_TOKEN (Todoist settings > Integrations > Developer).",
    "not_found": "Run todoist_fetch to refresh the remote state, then retry.",
    "rate_limited": "Wait a minute before retrying; Todoist limits requests per token.",
    "connection_error": "Check network connectivity and TODOIST_REST_URL / TODOIST_SYNC_URL.",
    "server_error": "Todoist may be unavailable; retry later.",
}


def translate_transport_error(error: TransportError) -> types.CallToolResult:
    """Translate a TransportError to a structured error response.

    The HTTP status code picks the category; errors without a status
    (timeouts, DNS, refused connections) are connection errors.
    """
    match error.status_code:
        case 401 | 403:
            error_type = "auth_error"
        case 404:
            error_type = "not_found"
        case 429:
            error_type = "rate_limited"
        case None:
            error_type = "connection_error"
        case _:
            error_type = "server_error"
    return build_error_response(
        error_type, str(error), _CORRECTIVE_ACTIONS[error_type]
    )
