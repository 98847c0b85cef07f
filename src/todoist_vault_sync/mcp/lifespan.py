"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import SyncSettings, UnifiedConfig, build_config
from ..core.async_utils import run_sync
from ..core.client import TodoistClient
from ..file_handler import VaultStorage
from ..sync.engine import SyncEngine
from ..sync.scheduler import SyncScheduler
from ..sync.state import StateStore

logger = logging.getLogger(__name__)

# CLI override keys that land in SyncSettings rather than the client config
_SETTINGS_OVERRIDES = ("vault_root", "sync_folder", "dry_run", "state_dir")


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def load_unified_config() -> tuple[UnifiedConfig, str | None]:
    """Load the YAML config if one is discovered.

    Returns:
        Tuple of (config, path of the winning config file or None).
    """
    config_files = discover_config_files()
    if not config_files:
        return UnifiedConfig(), None
    return build_config(load_hierarchical_config()), str(config_files[0])


def build_engine(
    config_overrides: dict[str, Any] | None = None,
) -> SyncEngine:
    """
    Wire settings, client, storage and state store into a SyncEngine.

    Precedence for client settings: CLI args > env vars (.env loaded
    first) > YAML config > defaults.  A missing API token is not fatal:
    the engine is built without a client and every remote operation
    reports that the token is not configured.

    Raises:
        ValueError: If the YAML config or a configured URL/timeout is invalid.
    """
    load_dotenv()
    overrides = config_overrides or {}

    unified, config_path = load_unified_config()
    if config_path:
        logger.info("Configuration loaded from: %s", config_path)

    settings_update = {
        key: overrides[key]
        for key in _SETTINGS_OVERRIDES
        if overrides.get(key) is not None
    }
    settings = unified.sync.model_copy(update=settings_update)

    yaml_fallbacks = {
        k: v for k, v in unified.todoist.model_dump().items() if v is not None
    }
    if not yaml_fallbacks.get("api_token") and settings.api_token:
        yaml_fallbacks["api_token"] = settings.api_token

    def client_factory(new_settings: SyncSettings) -> TodoistClient | None:
        try:
            config = load_config(
                api_token=overrides.get("api_token") or new_settings.api_token,
                debug=overrides.get("debug", False),
                yaml_fallbacks=yaml_fallbacks,
            )
        except ValueError as e:
            logger.warning("Todoist client not configured: %s", e)
            return None
        return TodoistClient(config)

    client = client_factory(settings)
    storage = VaultStorage(settings.vault_root)
    logger.info(
        "Vault root: %s, sync folder: %s", storage.root, settings.sync_folder
    )
    return SyncEngine(
        settings,
        client,
        storage,
        state_store=StateStore(settings.state_dir),
        client_factory=client_factory,
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Build the engine (see ``build_engine``)
    - Restore persisted remote state
    - Check the Todoist connection (warning only)
    - Start file watching when live sync is enabled
    - Start the auto-sync and drain timers

    On shutdown:
    - Stop timers and file watching
    - Save remote state

    Yields:
        Dict with 'engine' and 'scheduler' keys

    Raises:
        RuntimeError: If configuration is invalid.
    """
    logger.info("MCP server starting...")
    _stderr_print("Todoist Vault Sync server starting...")

    try:
        engine = build_engine(config_overrides)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    settings = engine.settings
    _stderr_print(f"  Vault: {engine.storage.root}")
    _stderr_print(f"  Sync folder: {settings.sync_folder}")

    if await run_sync(engine.load_state):
        _stderr_print("  Restored remote state from previous session")

    if engine.client is None:
        _stderr_print(
            "  WARNING: TODOIST_API_TOKEN not set; sync tools will fail."
        )
    elif not await engine.test_connection():
        logger.warning("Todoist connection check failed at startup")
        _stderr_print("  WARNING: Todoist connection check failed.")
    else:
        _stderr_print("  Connected to Todoist")

    if settings.live_sync_enabled:
        engine.start_file_watching()

    scheduler = SyncScheduler(engine, settings.effective_auto_sync_interval)
    scheduler.start()
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"engine": engine, "scheduler": scheduler}
    finally:
        logger.info("MCP server shutting down")
        await scheduler.stop()
        engine.stop_file_watching()
        await engine.save_state()
        _stderr_print("Todoist Vault Sync server shutting down.")
