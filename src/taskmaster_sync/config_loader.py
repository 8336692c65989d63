"""
Config file discovery and merging for taskmaster_sync.

Two file formats are accepted:

* the sectioned YAML layout (``monday:``, ``columns:``, ``sync:``,
  ``logging:``) in ``.taskmaster_sync/config.yml`` or the global file;
* the original tool's flat ``sync-config.json`` (``monday_board_id``,
  ``column_mappings`` ...), whose keys are folded into their sections as
  the file is read.

Every file is normalised to the sectioned layout before merging, so a
project ``sync-config.json`` overrides a global ``monday:`` section the
same way a project YAML file would.

Usage:
    from taskmaster_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .config_schema import SECTION_NAMES, normalize_flat_layout
from .file_handler import read_file_with_encoding

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TASKMASTER_SYNC_CONFIG"
FLAT_CONFIG_NAME = "sync-config.json"

# Top-level keys of sync-config.json that carry no setting here.
_IGNORED_KEYS = frozenset({"developer_id"})

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Env var references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  An unterminated ``${`` is kept as written.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_REF.sub(_expand, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(val) for val in obj]
    return obj


# ---------------------------------------------------------------------------
# Reading one file
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> dict[str, Any]:
    """Read one config file and return it in the sectioned layout.

    ``.json`` files are parsed as JSON and anything else as YAML.  Flat
    ``sync-config.json`` keys are moved into their sections and unknown
    top-level keys are dropped with a warning.

    Raises:
        ValueError: If the file is not valid JSON or YAML, or its root
            is not a mapping.
    """
    content, _encoding = read_file_with_encoding(path)

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(content) if content.strip() else None
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"Invalid JSON in configuration file {path}: {exc}"
            ) from exc
    else:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Invalid YAML in configuration file {path}: {exc}"
            ) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration file {path} must contain a mapping, "
            f"not {type(data).__name__}"
        )

    data = normalize_flat_layout(data)
    unknown = sorted(
        str(key)
        for key in data
        if key not in SECTION_NAMES and key not in _IGNORED_KEYS
    )
    if unknown:
        logger.warning(
            "Ignoring unknown keys in %s: %s", path, ", ".join(unknown)
        )
    return {key: data[key] for key in SECTION_NAMES if key in data}


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``TASKMASTER_SYNC_CONFIG`` env var (explicit single path)
        2. ``.taskmaster_sync/config.yml`` in CWD
        3. ``.taskmaster_sync/config.yaml`` in CWD
        4. ``sync-config.json`` in CWD (flat layout)
        5. ``~/.config/taskmaster_sync/config.yml`` (global)
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project = Path.cwd()
    candidates.extend(
        [
            project / ".taskmaster_sync" / "config.yml",
            project / ".taskmaster_sync" / "config.yaml",
            project / FLAT_CONFIG_NAME,
            Path.home() / ".config" / "taskmaster_sync" / "config.yml",
        ]
    )
    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# Bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# taskmaster-sync configuration
#
# Connection settings can also be set via environment variables:
#   MONDAY_API_KEY, MONDAY_BOARD_ID, MONDAY_GROUP_IDS
#
# monday:
#   api_key: ${MONDAY_API_KEY}
#   board_id: "1234567890"
#   group_ids: [all]
#   max_retries: 3
#   retry_delay: 1.0
#   max_batch_size: 10
#
# columns:
#   column_mappings:
#     taskId: text_mkraj7jy
#     status: color_mkrat92y
#     priority: color_mkrav3bj
#     dependencies: text_mkra1chv
#     description: long_text_mkrby17a
#     details: long_text_mkrbszdp
#     testStrategy: long_text_mkrbazct
#   status_mappings:
#     pending: pending
#     in-progress: in-progress
#     done: done
#
# sync:
#   tasks_file: tasks/tasks.json
#   state_file: .taskmaster_sync_state.json
#   lock_timeout: 5.0
#   delete_orphaned: true
#   remove_orphaned: true
#   recreate_missing_tasks: true
#   regenerate_task_files: true
#   regenerate_command: npx task-master generate
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Return the highest-precedence existing config file, or the default
    project path (``.taskmaster_sync/config.yml``) when there is none.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / ".taskmaster_sync" / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a starter one if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load every discovered file and merge them.

    Files are applied from lowest precedence to highest; a section present
    in a higher file replaces that whole section.  ``${VAR}`` references
    are expanded after the merge.  No files gives ``{}``.

    Raises:
        ValueError: If a file cannot be parsed.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        merged.update(load_config_file(path))

    return _interpolate_recursive(merged)
