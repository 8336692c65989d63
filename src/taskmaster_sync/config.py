"""monday.com connection settings for taskmaster-sync.

Reads connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    MONDAY_API_KEY: monday.com API token (required)
    MONDAY_BOARD_ID: Board to sync with (required)
    MONDAY_GROUP_IDS: Comma-separated group ids, or "all" (optional, default: all)
    MONDAY_API_URL: GraphQL endpoint (optional)
    MONDAY_API_VERSION: API-Version header (optional, default: 2024-10)
    TASKMASTER_SYNC_DEBUG: Enable debug logging (optional, default: false)
    TASKMASTER_SYNC_MAX_RETRIES: Attempts per remote call (optional, default: 3)
    TASKMASTER_SYNC_RETRY_DELAY: Initial retry delay in seconds (optional, default: 1.0)
    TASKMASTER_SYNC_MAX_BATCH_SIZE: Mutations per batched request (optional, default: 10)
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.monday.com/v2"
DEFAULT_API_VERSION = "2024-10"


@dataclass
class Config:
    api_key: str
    board_id: str
    group_ids: list[str] = field(default_factory=lambda: ["all"])
    api_url: str = DEFAULT_API_URL
    api_version: str = DEFAULT_API_VERSION
    debug: bool = False
    max_retries: int = 3
    retry_delay: float = 1.0
    max_batch_size: int = 10
    timeout: float = 60.0


def _split_group_ids(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(v) for v in value]
    return [p.strip() for p in parts if p.strip()]


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the endpoint URL is malformed, the board id is not
            numeric, or numeric limits are out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid monday.com API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid monday.com API URL '{config.api_url}': URL must include a hostname"
        )

    if not config.api_key.strip():
        raise ValueError(
            "monday.com API key cannot be empty. Set MONDAY_API_KEY environment variable."
        )

    config.board_id = config.board_id.strip()
    if not config.board_id.isdigit():
        raise ValueError(
            f"Invalid board id '{config.board_id}': must be numeric"
        )

    if not config.group_ids:
        raise ValueError(
            "At least one group id is required (use 'all' for every group)."
        )

    if not (1 <= config.max_retries <= 10):
        raise ValueError(
            f"Invalid max_retries {config.max_retries}: must be between 1 and 10"
        )

    if config.retry_delay < 0:
        raise ValueError(
            f"Invalid retry_delay {config.retry_delay}: must not be negative"
        )

    if not (1 <= config.max_batch_size <= 50):
        raise ValueError(
            f"Invalid max_batch_size {config.max_batch_size}: must be between 1 and 50"
        )


def load_config(
    api_key: str | None = None,
    board_id: str | None = None,
    group_ids: list[str] | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_key: Override API key (takes precedence over env var and YAML).
        board_id: Override board id (takes precedence over env var and YAML).
        group_ids: Override target groups.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML config ``monday``
            section.  Used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the API key or board id is missing after checking
            all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    final_api_key = api_key or os.getenv("MONDAY_API_KEY") or fb.get("api_key")
    if not final_api_key:
        raise ValueError(
            "monday.com API key not found. Set MONDAY_API_KEY environment variable, "
            "pass --api-key CLI argument, or add 'api_key' to the monday section of config.yml."
        )

    final_board_id = board_id or os.getenv("MONDAY_BOARD_ID") or fb.get("board_id")
    if not final_board_id:
        raise ValueError(
            "monday.com board id not found. Set MONDAY_BOARD_ID environment variable, "
            "pass --board-id CLI argument, or add 'board_id' to the monday section of config.yml."
        )

    final_group_ids = (
        _split_group_ids(group_ids)
        or _split_group_ids(os.getenv("MONDAY_GROUP_IDS"))
        or _split_group_ids(fb.get("group_ids"))
        or ["all"]
    )

    final_api_url = os.getenv("MONDAY_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    final_api_version = (
        os.getenv("MONDAY_API_VERSION") or fb.get("api_version") or DEFAULT_API_VERSION
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("TASKMASTER_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    def get_number(key: str, fb_key: str, default, cast):
        raw = os.getenv(key)
        if raw is not None:
            try:
                return cast(raw)
            except ValueError:
                raise ValueError(f"Invalid {key} '{raw}': must be a number") from None
        if fb_key in fb and fb[fb_key] is not None:
            return cast(fb[fb_key])
        return default

    config = Config(
        api_key=str(final_api_key).strip(),
        board_id=str(final_board_id),
        group_ids=final_group_ids,
        api_url=final_api_url,
        api_version=final_api_version,
        debug=final_debug,
        max_retries=get_number("TASKMASTER_SYNC_MAX_RETRIES", "max_retries", 3, int),
        retry_delay=get_number("TASKMASTER_SYNC_RETRY_DELAY", "retry_delay", 1.0, float),
        max_batch_size=get_number(
            "TASKMASTER_SYNC_MAX_BATCH_SIZE", "max_batch_size", 10, int
        ),
        timeout=float(fb.get("timeout", 60.0)),
    )

    validate_config(config)

    return config
