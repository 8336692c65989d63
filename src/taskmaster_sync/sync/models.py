"""Pydantic models for the push/pull sync engine.

Defines the data contracts used across all sync modules:

- ``MappingEntry``: one agreed local/remote pair in the mapping store.
- ``PushPolicy`` / ``PullPolicy``: per-run options.
- ``ItemLink``, ``Recreation``, ``RecordFailure``, ``PullConflict``:
  per-record outcomes.
- ``PushReport`` / ``PullReport``: aggregate results for a run.

Local task records are deliberately *not* modelled: they stay plain
dicts so fields this tool does not know about survive a round trip.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class PullAction(str, Enum):
    """Classification of one board item during pull."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Mapping store
# ---------------------------------------------------------------------------


class MappingEntry(BaseModel):
    """One agreed-upon local/remote pair.

    Field names are camelCase on disk and snake_case in Python.

    Attributes:
        local_id: TaskMaster task id.
        remote_id: Board item id.
        last_synced_at: Epoch seconds of the last agreement.
        remote_note_id: Id of an update posted on the item, if any.
        local_hash: Fingerprint of the local record at the last
            agreement; makes local-change detection exact.
    """

    local_id: str = Field(alias="localId")
    remote_id: str = Field(alias="remoteId")
    last_synced_at: float = Field(alias="lastSyncedAt")
    remote_note_id: str | None = Field(default=None, alias="remoteNoteId")
    local_hash: str | None = Field(default=None, alias="localHash")

    model_config = {"frozen": True, "populate_by_name": True}


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class PushPolicy(BaseModel):
    """Options for a push run."""

    delete_orphaned: bool = True
    dry_run: bool = False

    model_config = {"frozen": True}


class PullPolicy(BaseModel):
    """Options for a pull run.

    Attributes:
        force_overwrite: Remote wins even when both sides changed.
        skip_conflicts: Leave conflicting tasks untouched, quietly.
        recreate_missing_tasks: Create tasks that exist only on the board.
        specific_local_id: Only consider the item for this task id.
        remove_orphaned: Delete tasks whose board item disappeared.
        dry_run: Compute the plan without applying it.
    """

    force_overwrite: bool = False
    skip_conflicts: bool = False
    recreate_missing_tasks: bool = True
    specific_local_id: str | None = None
    remove_orphaned: bool = True
    dry_run: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Per-record outcomes
# ---------------------------------------------------------------------------


class ItemLink(BaseModel):
    """A task and the board item it is paired with.

    ``remote_id`` is ``None`` for items a dry run would create.
    """

    local_id: str
    remote_id: str | None = None

    model_config = {"frozen": True}


class Recreation(BaseModel):
    """A board item that disappeared and was created again."""

    local_id: str
    old_remote_id: str
    new_remote_id: str | None = None

    model_config = {"frozen": True}


class RecordFailure(BaseModel):
    """A record that could not be synced; the rest of the run continues."""

    record_id: str
    error: str

    model_config = {"frozen": True}


class PullConflict(BaseModel):
    """A board item pull refused to apply.

    Attributes:
        local_id: Task id declared by the board item.
        remote_id: Board item id.
        reason: Why the pair is in conflict.
        remote_task: The board item decoded into task shape.
    """

    local_id: str
    remote_id: str
    reason: str
    remote_task: dict

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class PushReport(BaseModel):
    """Aggregate report for a push run.

    Attributes:
        dry_run: Whether mutations were suppressed.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run finished.
        created: Tasks that got a new board item.
        updated: Tasks whose board item was rewritten.
        recreated: Tasks whose board item vanished and was recreated.
        deleted: Board items removed because their task is gone.
        orphaned: Board items whose task is gone, left in place.
        unchanged: Task ids that needed no write.
        errors: Per-record failures.
    """

    dry_run: bool = False
    started_at: str
    completed_at: str | None = None
    created: list[ItemLink] = []
    updated: list[ItemLink] = []
    recreated: list[Recreation] = []
    deleted: list[ItemLink] = []
    orphaned: list[ItemLink] = []
    unchanged: list[str] = []
    errors: list[RecordFailure] = []

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        """Format a one-paragraph count summary."""
        lines = [
            "Push report" + (" (dry run)" if self.dry_run else ""),
            f"  Created:   {len(self.created)}",
            f"  Updated:   {len(self.updated)}",
            f"  Recreated: {len(self.recreated)}",
            f"  Deleted:   {len(self.deleted)}",
            f"  Orphaned:  {len(self.orphaned)}",
            f"  Unchanged: {len(self.unchanged)}",
            f"  Errors:    {len(self.errors)}",
        ]
        return "\n".join(lines)


class PullReport(BaseModel):
    """Aggregate report for a pull run.

    Task-shaped entries (``new``, ``updated``, ``recreated``) are the board
    items decoded into TaskMaster task dicts.
    """

    dry_run: bool = False
    started_at: str
    completed_at: str | None = None
    new: list[dict] = []
    updated: list[dict] = []
    conflicts: list[PullConflict] = []
    recreated: list[dict] = []
    orphaned_ids: list[str] = []
    unchanged: list[str] = []
    skipped: list[str] = []
    errors: list[RecordFailure] = []

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        """Format a one-paragraph count summary."""
        lines = [
            "Pull report" + (" (dry run)" if self.dry_run else ""),
            f"  New:       {len(self.new)}",
            f"  Updated:   {len(self.updated)}",
            f"  Recreated: {len(self.recreated)}",
            f"  Conflicts: {len(self.conflicts)}",
            f"  Orphaned:  {len(self.orphaned_ids)}",
            f"  Unchanged: {len(self.unchanged)}",
            f"  Skipped:   {len(self.skipped)}",
            f"  Errors:    {len(self.errors)}",
        ]
        return "\n".join(lines)
