"""Client configuration for the Todoist connection.

Reads Todoist connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TODOIST_API_TOKEN: Todoist API token (required)
    TODOIST_REST_URL: REST API base URL (optional)
    TODOIST_SYNC_URL: Sync API base URL (optional)
    TODOIST_TIMEOUT: HTTP timeout in seconds (optional, default: 30)
    TODOIST_DEBUG: Enable debug mode (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .config_schema import DEFAULT_REST_URL, DEFAULT_SYNC_URL

logger = logging.getLogger(__name__)


@dataclass
class Config:
    api_token: str
    rest_url: str = DEFAULT_REST_URL
    sync_url: str = DEFAULT_SYNC_URL
    timeout: int = 30
    debug: bool = False


def _validate_url(name: str, url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {name} '{url}': must start with http:// or https://"
        )
    if not urlparse(url).hostname:
        raise ValueError(
            f"Invalid {name} '{url}': URL must include a hostname"
        )
    return url.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a URL is malformed, the token is empty, or the
            timeout is out of range.
    """
    config.rest_url = _validate_url("REST URL", config.rest_url)
    config.sync_url = _validate_url("Sync URL", config.sync_url)

    if not config.api_token.strip():
        raise ValueError(
            "Todoist API token cannot be empty. Set TODOIST_API_TOKEN environment variable."
        )
    config.api_token = config.api_token.strip()

    if not (1 <= config.timeout <= 300):
        raise ValueError(
            f"Invalid timeout {config.timeout}: must be between 1 and 300 seconds"
        )


def load_config(
    api_token: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_token: Override API token (takes precedence over env var and YAML).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML config ``todoist``
            section. Used as fallback when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the API token is missing after checking all sources.
    """
    fb = yaml_fallbacks or {}

    token = api_token or os.getenv("TODOIST_API_TOKEN") or fb.get("api_token")
    if not token:
        raise ValueError(
            "Todoist API token not found. Set TODOIST_API_TOKEN environment variable, "
            "pass --api-token CLI argument, or add 'api_token' to config.yml."
        )

    rest_url = (
        os.getenv("TODOIST_REST_URL") or fb.get("rest_url") or DEFAULT_REST_URL
    )
    sync_url = (
        os.getenv("TODOIST_SYNC_URL") or fb.get("sync_url") or DEFAULT_SYNC_URL
    )

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("TODOIST_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    timeout_raw = os.getenv("TODOIST_TIMEOUT")
    if timeout_raw is not None:
        try:
            timeout = int(timeout_raw)
        except ValueError:
            raise ValueError(
                f"Invalid TODOIST_TIMEOUT '{timeout_raw}': must be a number between 1 and 300"
            ) from None
    elif "timeout" in fb:
        timeout = int(fb["timeout"])
    else:
        timeout = 30

    config = Config(
        api_token=token,
        rest_url=rest_url,
        sync_url=sync_url,
        timeout=timeout,
        debug=final_debug,
    )

    validate_config(config)

    return config
