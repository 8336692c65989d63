"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_push_report`` -- post-push summary with per-task lines.
- ``format_pull_report`` -- post-pull summary, conflicts listed with reasons.
- ``format_mapping_status`` -- mapping store overview for ``status``.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import MappingEntry, PullReport, PushReport

# ------------------------------------------------------------------
# Human-readable reports
# ------------------------------------------------------------------


def format_push_report(report: PushReport) -> str:
    """Format a push report as human-readable text.

    Sections are only included when they contain at least one entry.
    Unchanged tasks are summarised by count only.

    Args:
        report: The completed push report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = "Push report"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"{len(report.created)} created, {len(report.updated)} updated, "
        f"{len(report.recreated)} recreated, {len(report.deleted)} deleted, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    pending = "(pending)"
    if report.created:
        lines.append("Created:")
        for link in report.created:
            lines.append(f"  task {link.local_id} -> item {link.remote_id or pending}")
        lines.append("")

    if report.updated:
        lines.append("Updated:")
        for link in report.updated:
            lines.append(f"  task {link.local_id} -> item {link.remote_id}")
        lines.append("")

    if report.recreated:
        lines.append("Recreated:")
        for rec in report.recreated:
            lines.append(
                f"  task {rec.local_id}: item {rec.old_remote_id} -> "
                f"{rec.new_remote_id or pending}"
            )
        lines.append("")

    if report.deleted:
        lines.append("Deleted (task removed locally):")
        for link in report.deleted:
            lines.append(f"  item {link.remote_id} (task {link.local_id})")
        lines.append("")

    if report.orphaned:
        lines.append("Orphaned (kept on board):")
        for link in report.orphaned:
            lines.append(f"  item {link.remote_id} (task {link.local_id})")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for failure in report.errors:
            lines.append(f"  task {failure.record_id}: {failure.error}")
        lines.append("")

    if report.unchanged:
        lines.append(f"Unchanged: {len(report.unchanged)} tasks")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_pull_report(report: PullReport) -> str:
    """Format a pull report as human-readable text.

    Args:
        report: The completed pull report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = "Pull report"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"{len(report.new)} new, {len(report.updated)} updated, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.orphaned_ids)} orphaned, {len(report.errors)} errors"
    )
    lines.append("")

    recreated = {str(t.get("id")) for t in report.recreated}
    if report.new:
        lines.append("New:")
        for task in report.new:
            suffix = " (recreated)" if str(task.get("id")) in recreated else ""
            lines.append(f"  task {task.get('id')}: {task.get('title', '')}{suffix}")
        lines.append("")

    if report.updated:
        lines.append("Updated:")
        for task in report.updated:
            lines.append(f"  task {task.get('id')}: {task.get('title', '')}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for conflict in report.conflicts:
            lines.append(
                f"  task {conflict.local_id} <-> item {conflict.remote_id}: "
                f"{conflict.reason}"
            )
        lines.append("")

    if report.orphaned_ids:
        lines.append("Orphaned (board item gone):")
        for task_id in report.orphaned_ids:
            lines.append(f"  task {task_id}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for failure in report.errors:
            lines.append(f"  item {failure.record_id}: {failure.error}")
        lines.append("")

    if report.unchanged:
        lines.append(f"Unchanged: {len(report.unchanged)} tasks")
    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} items without a task id")

    return "\n".join(lines).rstrip()


def _format_timestamp(value: float | None) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat(
        timespec="seconds"
    )


def format_mapping_status(
    entries: list[MappingEntry], last_sync_at: float | None
) -> str:
    """Format the mapping store contents for the ``status`` command."""
    lines = [
        f"Mappings: {len(entries)}",
        f"Last sync: {_format_timestamp(last_sync_at)}",
    ]
    if entries:
        lines.append("")
        for entry in sorted(entries, key=lambda e: e.last_synced_at, reverse=True):
            lines.append(
                f"  task {entry.local_id} <-> item {entry.remote_id} "
                f"(synced {_format_timestamp(entry.last_synced_at)})"
            )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: PushReport | PullReport) -> dict:
    """Convert a push or pull report to a structured dict.

    Args:
        report: The sync report.

    Returns:
        Dict with ``direction``, ``success``, per-category counts and the
        full report body.
    """
    body = report.model_dump(mode="json")
    counts = {
        key: len(value) for key, value in body.items() if isinstance(value, list)
    }
    direction = "push" if hasattr(report, "created") else "pull"
    return {
        "direction": direction,
        "success": report.success,
        "counts": counts,
        **body,
    }
