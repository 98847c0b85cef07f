"""Unified configuration schema for todoist_vault_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the Todoist connection, the vault sync behaviour and
logging.  Includes an adapter to the ``Config`` dataclass used by the
HTTP client.

Usage:
    from todoist_vault_sync.config_schema import (
        UnifiedConfig, build_config, to_client_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    client_config = to_client_config(unified, cli_overrides={"api_token": "..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_REST_URL = "https://api.todoist.com/rest/v2"
DEFAULT_SYNC_URL = "https://api.todoist.com/sync/v9"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TodoistConfig(BaseModel):
    """Todoist connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_token: str | None = Field(
        default=None, description="Todoist API token"
    )
    rest_url: str = Field(
        default=DEFAULT_REST_URL, description="REST API base URL"
    )
    sync_url: str = Field(
        default=DEFAULT_SYNC_URL, description="Sync API base URL"
    )
    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="HTTP timeout in seconds (1-300)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class EnabledProperties(BaseModel):
    """Which optional task fields are written to frontmatter."""

    content: bool = True
    due_date: bool = True
    priority: bool = True
    labels: bool = True
    project: bool = True
    section: bool = True

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Vault sync behaviour.

    Attributes:
        api_token: Token handed to the client on ``update_settings``.
        sync_folder: Vault-relative folder holding synced documents.
        scope_tag: Tag written into every synced document.
        dry_run: Report decisions without writing or calling the remote.
        live_sync_enabled: Push edited documents as the host reports them.
        auto_sync_enabled: Run a full sync every ``auto_sync_interval``.
        auto_sync_interval: Seconds between automatic syncs.
        vault_root: Directory of the Markdown vault.
        state_dir: Directory for the persisted remote state.
    """

    api_token: str | None = None
    sync_folder: str = "TodoistSync"
    scope_tag: str = "todoist"
    enabled_properties: EnabledProperties = Field(
        default_factory=EnabledProperties
    )
    dry_run: bool = False
    live_sync_enabled: bool = False
    auto_sync_enabled: bool = False
    auto_sync_interval: int = Field(default=300, ge=0)
    vault_root: str = "."
    state_dir: str = ".todoist_sync"

    model_config = {"frozen": True}

    @property
    def effective_auto_sync_interval(self) -> int | None:
        """Interval in seconds, or ``None`` when automatic sync is off."""
        if not self.auto_sync_enabled or not self.auto_sync_interval:
            return None
        return self.auto_sync_interval


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    todoist: TodoistConfig = Field(default_factory=TodoistConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> client Config dataclass
# ---------------------------------------------------------------------------


def to_client_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the client ``Config`` dataclass,
    applying CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value > default

    CLI overrides dict keys: api_token, debug.

    Returns:
        ``Config`` instance (NOT validated; caller should run
        ``validate_config()`` separately if needed).
    """
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        api_token=overrides.get("api_token")
        or unified.todoist.api_token
        or unified.sync.api_token
        or "",
        rest_url=unified.todoist.rest_url,
        sync_url=unified.todoist.sync_url,
        timeout=unified.todoist.timeout,
        debug=overrides.get("debug", False) or unified.todoist.debug,
    )
