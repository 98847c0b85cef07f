"""MCP Server for Todoist vault sync using stdio transport.

This module implements the Model Context Protocol server that lets an
agent (or an editor plugin) drive the sync engine through tools.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from ..sync.engine import SyncEngine
from ..sync.reporter import format_dry_run_preview, format_sync_report
from .lifespan import build_engine, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_tools_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

SERVER_NAME = "todoist-vault-sync"

# Initialize server instance
server = Server(SERVER_NAME)

# Global engine instance (initialized in lifespan)
_engine: SyncEngine | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available)
# ---------------------------------------------------------------------------


async def _handle_ping(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test Todoist connectivity."""
    if engine.client is None:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text="Todoist API token not configured. Set TODOIST_API_TOKEN.",
                )
            ],
            isError=True,
        )
    if await engine.test_connection():
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"{SERVER_NAME} {__version__} connected to Todoist.",
                )
            ]
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text="Todoist connection failed. Check TODOIST_API_TOKEN and network access.",
            )
        ],
        isError=True,
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Todoist connectivity and return the server version",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    handler=_handle_ping,
    always_available=True,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> SyncEngine:
    """Get the global SyncEngine instance.

    Raises:
        RuntimeError: If the engine is not initialized
    """
    if _engine is None:
        raise RuntimeError(
            "SyncEngine not initialized. Server lifespan not started."
        )
    return _engine


def set_engine(engine: SyncEngine | None) -> None:
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools from the ToolRegistry."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


def build_registry(tools_file: str | None = None) -> ToolRegistry:
    allowed_tools = None
    if tools_file:
        allowed_tools = load_tools_file(tools_file)
        logger.info(
            "Loaded %d tool names from %s", len(allowed_tools), tools_file
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_tools)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if tools_file:
        print(
            f"Tools file: {tools_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only; stdout belongs to the JSON-RPC stream.
    """
    overrides = config_overrides or {}

    # Must run BEFORE stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
        debug_format=overrides.get("debug_format", "text"),
    )

    set_registry(build_registry(overrides.get("tools_file")))

    # set_engine() is called here rather than in the lifespan so that
    # running this file as __main__ updates the right module globals.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_engine(None)
            set_registry(None)


async def sync_once(config_overrides: dict | None = None) -> int:
    """Run a single sync from the command line and print the report.

    Returns:
        Process exit code (0 on success).
    """
    overrides = config_overrides or {}
    setup_logging(
        mode="cli",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
        debug_format=overrides.get("debug_format", "text"),
    )
    try:
        engine = build_engine(overrides)
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 1

    engine.load_state()
    outcome = await engine.perform_sync()
    print(outcome.message)
    if outcome.report is not None:
        if outcome.report.dry_run:
            print(format_dry_run_preview(outcome.report))
        else:
            print(format_sync_report(outcome.report))
    return 0 if outcome.success else 1


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Todoist Vault Sync - keep a Markdown vault in sync with Todoist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the MCP server with default config (from .env or config.yml)
  todoist-vault-sync

  # One sync pass from the shell, then exit
  todoist-vault-sync --once --vault ~/Notes

  # Preview what a sync would do
  todoist-vault-sync --once --dry-run

  # Restrict the exposed tools
  todoist-vault-sync --tools-file ~/.config/todoist_sync/read-only.tools

Note: Without --once this server uses stdio transport for JSON-RPC
communication with MCP clients. All user-facing messages are written to
stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one sync, print the report and exit instead of serving MCP",
    )
    parser.add_argument(
        "--api-token",
        help="Override Todoist API token (takes precedence over TODOIST_API_TOKEN and config files)"
        " (visible in process list -- prefer the env var)",
    )
    parser.add_argument(
        "--vault",
        dest="vault_root",
        help="Vault root directory (overrides sync.vault_root)",
    )
    parser.add_argument(
        "--sync-folder",
        help="Vault-relative folder for synced documents (overrides sync.sync_folder)",
    )
    parser.add_argument(
        "--state-dir",
        help="Directory for persisted remote state (overrides sync.state_dir)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report decisions without writing files or calling Todoist",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable DEBUG logging",
    )
    parser.add_argument(
        "--debug-format",
        choices=["text", "json"],
        default="text",
        help="Log format (default: text)",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: /tmp/todoist-vault-sync.log in server mode)",
    )
    parser.add_argument(
        "--tools-file",
        help="Path to a file listing the tools to expose, one per line, # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{SERVER_NAME} version {__version__}",
    )

    args = parser.parse_args()

    config_overrides: dict = {"debug_format": args.debug_format}
    for key in (
        "api_token",
        "vault_root",
        "sync_folder",
        "state_dir",
        "log_file",
        "tools_file",
    ):
        value = getattr(args, key)
        if value:
            config_overrides[key] = value
    if args.dry_run:
        config_overrides["dry_run"] = True
    if args.debug:
        config_overrides["debug"] = True

    override_keys = [
        k
        for k in config_overrides
        if k not in ("api_token", "debug_format")
    ]
    if override_keys:
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        if args.once:
            sys.exit(asyncio.run(sync_once(config_overrides)))
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
