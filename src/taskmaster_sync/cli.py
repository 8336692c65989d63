"""Command-line interface for taskmaster-sync.

Configuration is resolved the same way for every command:

1. ``.env`` is loaded (so ``${VAR}`` interpolation can use it).
2. Config files are discovered and merged (``config_loader``).
3. Connection settings are merged via ``load_config()``:
   CLI > env vars > .env > config file > defaults.

``status``, ``prune`` and ``init`` only touch local files and work without
credentials.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import discover_config_files, ensure_config, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import SyncError
from .logger import setup_logging
from .sync.engine import SyncEngine, build_engine
from .sync.mapping_store import MappingStore
from .sync.models import PullPolicy, PushPolicy
from .sync.reporter import (
    format_mapping_status,
    format_pull_report,
    format_push_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

REGENERATE_TIMEOUT = 300.0  # seconds


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _mask(secret: str | None) -> str:
    if not secret:
        return "(not set)"
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskmaster-sync",
        description="Two-way sync between TaskMaster tasks.json and a monday.com board",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a starter config in .taskmaster_sync/config.yml
  taskmaster-sync init

  # Preview what a push would do
  taskmaster-sync push --dry-run

  # Pull board changes, remote wins on conflicts
  taskmaster-sync pull --force

  # Pull a single task
  taskmaster-sync pull --task 42
        """,
    )
    parser.add_argument(
        "--config",
        help="Config file path (sets TASKMASTER_SYNC_CONFIG)",
    )
    parser.add_argument(
        "--api-key",
        help="Override monday.com API key (takes precedence over MONDAY_API_KEY)"
        " (visible in process list -- prefer the env var)",
    )
    parser.add_argument(
        "--board-id",
        help="Override board id (takes precedence over MONDAY_BOARD_ID)",
    )
    parser.add_argument(
        "--group",
        action="append",
        dest="groups",
        help="Target group id; repeat for several, or 'all' (default: all)",
    )
    parser.add_argument("--tasks-file", help="Path to TaskMaster tasks.json")
    parser.add_argument("--state-file", help="Path to the mapping state file")
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log output format (default: from config, else text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"taskmaster-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    push = sub.add_parser("push", help="Push local tasks to the board")
    push.add_argument("--dry-run", action="store_true", help="Preview only")
    push.add_argument(
        "--no-delete-orphaned",
        action="store_true",
        help="Keep board items whose task was deleted locally",
    )
    push.add_argument("--json", action="store_true", help="Print the report as JSON")

    pull = sub.add_parser("pull", help="Pull board items into tasks.json")
    pull.add_argument("--dry-run", action="store_true", help="Preview only")
    pull.add_argument(
        "--force", action="store_true", help="Board wins even when both sides changed"
    )
    pull.add_argument(
        "--skip-conflicts",
        action="store_true",
        help="Leave conflicting tasks untouched",
    )
    pull.add_argument("--task", help="Only pull the item for this task id")
    pull.add_argument(
        "--no-remove-orphaned",
        action="store_true",
        help="Keep tasks whose board item was deleted",
    )
    pull.add_argument(
        "--no-recreate-missing",
        action="store_true",
        help="Do not add tasks that exist only on the board",
    )
    pull.add_argument(
        "--no-regenerate",
        action="store_true",
        help="Do not run the task file regenerate command after the pull",
    )
    pull.add_argument("--json", action="store_true", help="Print the report as JSON")

    sub.add_parser("status", help="Show the task/item mappings")

    prune = sub.add_parser("prune", help="Drop mappings not synced recently")
    prune.add_argument(
        "--max-age-days",
        type=float,
        help="Age threshold in days (default: sync.prune_max_age_days)",
    )

    sub.add_parser("config", help="Show the resolved configuration")
    sub.add_parser("init", help="Write a starter config file")
    return parser


def _load_unified(args: argparse.Namespace) -> UnifiedConfig:
    if args.config:
        os.environ["TASKMASTER_SYNC_CONFIG"] = args.config
    return build_config(load_hierarchical_config())


def _load_connection(args: argparse.Namespace, unified: UnifiedConfig) -> Config:
    yaml_fallbacks = {
        k: v for k, v in unified.monday.model_dump().items() if v is not None
    }
    return load_config(
        api_key=args.api_key,
        board_id=args.board_id,
        group_ids=args.groups,
        debug=args.debug,
        yaml_fallbacks=yaml_fallbacks,
    )


def _mapping_store(args: argparse.Namespace, unified: UnifiedConfig) -> MappingStore:
    return MappingStore(
        Path(args.state_file or unified.sync.state_file),
        lock_timeout=unified.sync.lock_timeout,
        cache_ttl=unified.sync.cache_ttl,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def regenerate_task_files(command: str) -> bool:
    """Run *command* (``task-master generate`` by default).

    Returns:
        ``True`` if the command ran and exited 0.  Failures are logged,
        never raised.
    """
    logger.info("Regenerating TaskMaster task files: %s", command)
    try:
        result = subprocess.run(
            shlex.split(command),
            capture_output=True,
            text=True,
            timeout=REGENERATE_TIMEOUT,
            check=False,
        )
    except (OSError, ValueError, subprocess.TimeoutExpired) as exc:
        logger.error("Error regenerating task files: %s", exc)
        return False

    if result.returncode != 0:
        logger.error(
            "Error regenerating task files (exit %d): %s",
            result.returncode,
            result.stderr.strip(),
        )
        return False
    if result.stderr.strip():
        logger.warning(
            "Warnings during task file regeneration: %s", result.stderr.strip()
        )
    logger.info("Regenerated TaskMaster task files")
    logger.debug("Regenerate output: %s", result.stdout.strip())
    return True


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


def cmd_push(engine: SyncEngine, args: argparse.Namespace, unified: UnifiedConfig) -> int:
    policy = PushPolicy(
        delete_orphaned=unified.sync.delete_orphaned and not args.no_delete_orphaned,
        dry_run=args.dry_run,
    )
    report = engine.push(policy)
    if args.json:
        _print_json(report_to_json(report))
    else:
        print(format_push_report(report))
    return 0 if report.success else 1


def cmd_pull(engine: SyncEngine, args: argparse.Namespace, unified: UnifiedConfig) -> int:
    policy = PullPolicy(
        force_overwrite=args.force,
        skip_conflicts=args.skip_conflicts,
        recreate_missing_tasks=(
            unified.sync.recreate_missing_tasks and not args.no_recreate_missing
        ),
        specific_local_id=args.task,
        remove_orphaned=unified.sync.remove_orphaned and not args.no_remove_orphaned,
        dry_run=args.dry_run,
    )
    report = engine.pull(policy)
    if args.json:
        _print_json(report_to_json(report))
    else:
        print(format_pull_report(report))

    changed = bool(
        report.new
        or report.updated
        or (policy.remove_orphaned and report.orphaned_ids)
    )
    if (
        changed
        and not policy.dry_run
        and unified.sync.regenerate_task_files
        and not args.no_regenerate
    ):
        if not regenerate_task_files(unified.sync.regenerate_command):
            _stderr_print(
                "WARNING: tasks.json was updated but regenerating task files failed"
            )
    return 0 if report.success else 1


def cmd_status(args: argparse.Namespace, unified: UnifiedConfig) -> int:
    state = _mapping_store(args, unified).load(bypass_cache=True)
    print(format_mapping_status(state.list_all(), state.last_sync_at))
    return 0


def cmd_prune(args: argparse.Namespace, unified: UnifiedConfig) -> int:
    days = args.max_age_days or unified.sync.prune_max_age_days
    removed = _mapping_store(args, unified).prune_older_than(days * 24 * 3600)
    print(f"Pruned {removed} mapping(s) older than {days:g} day(s)")
    return 0


def cmd_config(args: argparse.Namespace, unified: UnifiedConfig) -> int:
    config = _load_connection(args, unified)
    files = discover_config_files()
    lines = [
        f"Config files: {', '.join(str(p) for p in files) if files else '(none)'}",
        f"API URL: {config.api_url}",
        f"API version: {config.api_version}",
        f"API key: {_mask(config.api_key)}",
        f"Board id: {config.board_id}",
        f"Groups: {', '.join(config.group_ids)}",
        f"Tasks file: {args.tasks_file or unified.sync.tasks_file}",
        f"State file: {args.state_file or unified.sync.state_file}",
        f"Retries: {config.max_retries} (initial delay {config.retry_delay:g}s)",
        f"Batch size: {config.max_batch_size}",
    ]
    print("\n".join(lines))
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    target = Path(args.config) if args.config else None
    path = ensure_config(target)
    print(f"Config file: {path}")
    return 0


# ------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command and return the exit status."""
    args = build_parser().parse_args(argv)

    load_dotenv()

    if args.command == "init":
        setup_logging(debug=args.debug, log_file=args.log_file)
        return cmd_init(args)

    try:
        unified = _load_unified(args)
    except (ValueError, OSError, yaml.YAMLError) as exc:
        _stderr_print(f"ERROR: Configuration error: {exc}")
        return 1

    setup_logging(
        debug=args.debug or unified.monday.debug,
        log_file=args.log_file or unified.logging.file,
        log_format=args.log_format or unified.logging.format,
        level=unified.logging.level,
    )

    try:
        if args.command == "status":
            return cmd_status(args, unified)
        if args.command == "prune":
            return cmd_prune(args, unified)
        if args.command == "config":
            return cmd_config(args, unified)

        config = _load_connection(args, unified)
        engine = build_engine(
            config,
            unified,
            tasks_file=args.tasks_file,
            state_file=args.state_file,
        )
        if args.command == "push":
            return cmd_push(engine, args, unified)
        return cmd_pull(engine, args, unified)
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        _stderr_print(f"ERROR: Configuration error: {exc}")
        return 1
    except SyncError as exc:
        logger.error("%s failed: %s", args.command, exc)
        _stderr_print(f"ERROR: {args.command} failed: {exc}")
        return 1


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    run()
