"""Unified configuration schema for taskmaster_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the monday.com connection, column mapping, sync behaviour
and logging.

Usage:
    from taskmaster_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    board = unified.monday.board_id
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_MAPPINGS: dict[str, str] = {
    "taskId": "text_mkraj7jy",
    "status": "color_mkrat92y",
    "priority": "color_mkrav3bj",
    "dependencies": "text_mkra1chv",
    "complexity": "color_mkrar5f7",
    "description": "long_text_mkrby17a",
    "details": "long_text_mkrbszdp",
    "testStrategy": "long_text_mkrbazct",
}

DEFAULT_STATUS_MAPPINGS: dict[str, str] = {
    "pending": "pending",
    "in-progress": "in-progress",
    "done": "done",
}

DEFAULT_PRIORITY_MAPPINGS: dict[str, str] = {
    "high": "high",
    "medium": "medium",
    "low": "low",
}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class MondayConfig(BaseModel):
    """monday.com connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_key: str | None = Field(default=None, description="API token")
    board_id: str | None = Field(default=None, description="Board id")
    group_ids: list[str] = Field(
        default_factory=lambda: ["all"],
        description="Target group ids, or ['all']",
    )
    api_url: str = Field(
        default="https://api.monday.com/v2",
        description="GraphQL endpoint",
    )
    api_version: str = Field(
        default="2024-10", description="API-Version header value"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_retries: int = Field(
        default=3, ge=1, le=10, description="Attempts per remote call"
    )
    retry_delay: float = Field(
        default=1.0, ge=0, description="Initial retry delay in seconds"
    )
    max_batch_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Mutations combined into one request (1-50)",
    )
    timeout: float = Field(
        default=60.0, gt=0, description="HTTP read timeout in seconds"
    )

    model_config = {"frozen": True}

    @field_validator("board_id", mode="before")
    @classmethod
    def _board_id_to_str(cls, value):
        return None if value is None else str(value)

    @field_validator("group_ids", mode="before")
    @classmethod
    def _split_groups(cls, value):
        if isinstance(value, str):
            return [g.strip() for g in value.split(",") if g.strip()]
        return value


class ColumnsConfig(BaseModel):
    """Mapping between TaskMaster fields and board columns.

    Attributes:
        column_mappings: Task field name -> monday column id.
        status_mappings: Local status -> board status label.
        priority_mappings: Local priority -> board priority label.
    """

    column_mappings: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_COLUMN_MAPPINGS)
    )
    status_mappings: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_STATUS_MAPPINGS)
    )
    priority_mappings: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MAPPINGS)
    )

    model_config = {"frozen": True}

    @field_validator("column_mappings")
    @classmethod
    def _require_task_id_column(cls, value: dict[str, str]):
        if not value.get("taskId"):
            raise ValueError(
                "column_mappings must include 'taskId'; "
                "pull cannot match board items to tasks without it"
            )
        return value


class SyncConfig(BaseModel):
    """Sync behaviour: file locations, locking and default policies."""

    tasks_file: str = Field(
        default="tasks/tasks.json", description="TaskMaster tasks file"
    )
    state_file: str = Field(
        default=".taskmaster_sync_state.json",
        description="Mapping store file",
    )
    lock_timeout: float = Field(
        default=5.0, gt=0, description="File lock timeout in seconds"
    )
    cache_ttl: float = Field(
        default=5.0, ge=0, description="Mapping store read cache TTL"
    )
    delete_orphaned: bool = Field(
        default=True,
        description="Push deletes board items whose task disappeared",
    )
    remove_orphaned: bool = Field(
        default=True,
        description="Pull deletes tasks whose board item disappeared",
    )
    recreate_missing_tasks: bool = Field(
        default=True,
        description="Pull recreates tasks that exist only on the board",
    )
    prune_max_age_days: int = Field(
        default=30, ge=1, description="Default age for 'prune'"
    )
    regenerate_task_files: bool = Field(
        default=True,
        description="Run the regenerate command after a pull that changed tasks",
    )
    regenerate_command: str = Field(
        default="npx task-master generate",
        description="Command that rebuilds the per-task files",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    monday: MondayConfig = Field(default_factory=MondayConfig)
    columns: ColumnsConfig = Field(default_factory=ColumnsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------

SECTION_NAMES: tuple[str, ...] = tuple(UnifiedConfig.model_fields)

# Flat keys used by sync-config.json -> (section, field)
_FLAT_KEYS: dict[str, tuple[str, str]] = {
    "monday_api_key": ("monday", "api_key"),
    "monday_board_id": ("monday", "board_id"),
    "monday_group_ids": ("monday", "group_ids"),
    "column_mappings": ("columns", "column_mappings"),
    "status_mappings": ("columns", "status_mappings"),
    "priority_mappings": ("columns", "priority_mappings"),
    "tasks_file": ("sync", "tasks_file"),
    "state_file": ("sync", "state_file"),
}


def normalize_flat_layout(raw_data: dict) -> dict:
    """Move flat ``sync-config.json`` keys into their sections.

    Sectioned keys already present win over flat ones.
    """
    flat = {k: v for k, v in raw_data.items() if k in _FLAT_KEYS}
    if not flat:
        return raw_data

    data = {k: v for k, v in raw_data.items() if k not in _FLAT_KEYS}
    for key, value in flat.items():
        section, field_name = _FLAT_KEYS[key]
        target = dict(data.get(section) or {})
        target.setdefault(field_name, value)
        data[section] = target
    logger.debug("Normalised flat config keys: %s", sorted(flat))
    return data


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully, and accepts the flat layout of
    ``sync-config.json`` files.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**normalize_flat_layout(raw_data))

