"""Push reconciliation: TaskMaster tasks -> board items.

A push run:

1. Loads the mapping state (bypassing the cache).
2. Classifies each task: unchanged, update, create, or recreate (mapped
   item vanished).  Creates and updates are queued on the
   ``MutationBatcher``; nothing is written yet.
   An update also queues deletion of the monday update recorded as the
   entry's ``remoteNoteId``, if any; the id is cleared once it succeeds.
3. Flushes the batcher and reads every outcome from its future.
4. Scans for orphans (mapped items whose task is gone) and deletes them
   when the policy says so.
5. Applies every mapping change in one locked transaction and writes new
   item ids back into ``tasks.json``.

Error handling is per-record: a single task failure never aborts the
run.  ``dry_run`` performs the same classification (including remote
reads) but issues no mutation and touches neither store.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone

from ..core.client import MondayClient, parse_item
from ..errors import ValidationError
from .batcher import MutationBatcher
from .columns import ColumnMapper
from .local_store import LocalStore
from .mapping_store import MappingState, MappingStore
from .models import (
    ItemLink,
    PushPolicy,
    PushReport,
    RecordFailure,
    Recreation,
)
from .records import REMOTE_ID_FIELD, fingerprint, local_id, remote_id_of

logger = logging.getLogger(__name__)


@dataclass
class _PendingWrite:
    """A queued create/update awaiting its batch."""

    record: dict
    local_id: str
    future: Future
    remote_id: str | None = None  # set for updates
    old_remote_id: str | None = None  # set for recreations
    note_id: str | None = None  # posted update being deleted
    note_future: Future | None = None


class PushReconciler:
    """Push local tasks to the board.

    Args:
        client: Remote API client.
        mapping_store: Durable task/item index.
        local_store: TaskMaster tasks file.
        mapper: Column mapper.
        board_id: Target board.
        group_ids: Requested groups (``["all"]`` for every group); new
            items go to the first valid one.
        batcher: Mutation batcher; one over ``client.execute_query`` is
            created when omitted.
    """

    def __init__(
        self,
        client: MondayClient,
        mapping_store: MappingStore,
        local_store: LocalStore,
        mapper: ColumnMapper,
        board_id: str,
        group_ids: list[str],
        batcher: MutationBatcher | None = None,
    ) -> None:
        self.client = client
        self.mapping_store = mapping_store
        self.local_store = local_store
        self.mapper = mapper
        self.board_id = board_id
        self.group_ids = group_ids
        self.batcher = batcher or MutationBatcher(client.execute_query)
        self._target_group: str | None = None

    # ------------------------------------------------------------------
    # Main entry points
    # ------------------------------------------------------------------

    def run(self, policy: PushPolicy | None = None) -> PushReport:
        """Read ``tasks.json`` and push it.

        Raises:
            LocalStoreError: If the tasks file cannot be read.
            LockTimeoutError: If a store lock cannot be acquired.
        """
        records = self.local_store.read_all()
        return self.reconcile(records, policy or PushPolicy())

    def reconcile(self, records: list[dict], policy: PushPolicy) -> PushReport:
        """Push *records* (in order) and return the report."""
        started_at = datetime.now(timezone.utc).isoformat()
        dry_run = policy.dry_run
        self._target_group = None

        state = self.mapping_store.load(bypass_cache=True)

        created: list[ItemLink] = []
        updated: list[ItemLink] = []
        recreated: list[Recreation] = []
        deleted: list[ItemLink] = []
        orphaned: list[ItemLink] = []
        unchanged: list[str] = []
        errors: list[RecordFailure] = []
        pending: list[_PendingWrite] = []
        seen: set[str] = set()

        # Step 1: classify every record and queue its write
        for index, record in enumerate(records):
            task_id = local_id(record)
            if task_id is None:
                errors.append(
                    RecordFailure(
                        record_id=f"#{index}", error="task has no id"
                    )
                )
                continue
            seen.add(task_id)
            try:
                outcome = self._plan_record(record, task_id, state, dry_run)
            except Exception as exc:
                logger.error("Push failed for task %s: %s", task_id, exc)
                errors.append(RecordFailure(record_id=task_id, error=str(exc)))
                continue

            if isinstance(outcome, _PendingWrite):
                pending.append(outcome)
            elif isinstance(outcome, Recreation):
                recreated.append(outcome)
            elif isinstance(outcome, ItemLink):
                (updated if outcome.remote_id else created).append(outcome)
            else:
                unchanged.append(task_id)

        # Step 2: send queued writes and collect outcomes
        if not dry_run:
            self.batcher.flush()

        now = time.time()
        upserts: list[tuple[str, str, float, str]] = []
        removals: list[str] = []
        cleared_notes: list[str] = []
        records_changed = False
        for write in pending:
            try:
                item = parse_item(write.future.result())
            except Exception as exc:
                logger.error("Push failed for task %s: %s", write.local_id, exc)
                errors.append(
                    RecordFailure(record_id=write.local_id, error=str(exc))
                )
                continue

            if write.old_remote_id is not None:
                recreated.append(
                    Recreation(
                        local_id=write.local_id,
                        old_remote_id=write.old_remote_id,
                        new_remote_id=item.id,
                    )
                )
                removals.append(write.old_remote_id)
            elif write.remote_id is not None:
                updated.append(ItemLink(local_id=write.local_id, remote_id=item.id))
            else:
                created.append(ItemLink(local_id=write.local_id, remote_id=item.id))

            synced_at = now
            if item.updated_at is not None:
                synced_at = max(now, item.updated_at.timestamp())
            upserts.append(
                (item.id, write.local_id, synced_at, fingerprint(write.record))
            )
            if write.note_future is not None:
                try:
                    write.note_future.result()
                except Exception as exc:
                    logger.warning(
                        "Could not delete update %s for task %s: %s",
                        write.note_id,
                        write.local_id,
                        exc,
                    )
                else:
                    logger.info(
                        "Deleted update %s for task %s", write.note_id, write.local_id
                    )
                    cleared_notes.append(item.id)
            if remote_id_of(write.record) != item.id:
                write.record[REMOTE_ID_FIELD] = item.id
                records_changed = True

        # Step 3: orphans (mapped items whose task disappeared)
        for entry in state.list_all():
            if entry.local_id in seen:
                continue
            link = ItemLink(local_id=entry.local_id, remote_id=entry.remote_id)
            if not policy.delete_orphaned:
                orphaned.append(link)
                continue
            if dry_run:
                deleted.append(link)
                continue
            try:
                if self.client.delete_item(entry.remote_id):
                    deleted.append(link)
                    removals.append(entry.remote_id)
                    logger.info(
                        "Deleted orphaned item %s (task %s)",
                        entry.remote_id,
                        entry.local_id,
                    )
                else:
                    errors.append(
                        RecordFailure(
                            record_id=entry.local_id,
                            error=f"Failed to delete orphaned item {entry.remote_id}",
                        )
                    )
            except Exception as exc:
                logger.error(
                    "Failed to delete orphaned item %s: %s", entry.remote_id, exc
                )
                errors.append(
                    RecordFailure(record_id=entry.local_id, error=str(exc))
                )

        # Step 4: commit
        if not dry_run:
            if upserts or removals:
                with self.mapping_store.transaction() as tx:
                    for remote_id in removals:
                        tx.remove(remote_id)
                    for remote_id, task_id, synced_at, local_hash in upserts:
                        tx.upsert(remote_id, task_id, synced_at, local_hash)
                    for remote_id in cleared_notes:
                        tx.clear_note(remote_id)
            if records_changed:
                self.local_store.write_all(records)

        return PushReport(
            dry_run=dry_run,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            created=created,
            updated=updated,
            recreated=recreated,
            deleted=deleted,
            orphaned=orphaned,
            unchanged=unchanged,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Per-record classification
    # ------------------------------------------------------------------

    def _plan_record(
        self,
        record: dict,
        task_id: str,
        state: MappingState,
        dry_run: bool,
    ) -> _PendingWrite | ItemLink | Recreation | None:
        """Classify one task and queue its write.

        Returns a ``_PendingWrite`` for queued work, an ``ItemLink`` /
        ``Recreation`` for dry-run outcomes, or ``None`` when unchanged.
        """
        title = (record.get("title") or "").strip()
        if not title:
            raise ValidationError(f"Task {task_id} has no title")

        entries = state.get_by_local(task_id)
        entry = entries[0] if entries else None
        mapped_id = entry.remote_id if entry else remote_id_of(record)
        column_values = self.mapper.to_column_values(record)

        if mapped_id:
            remote = self.client.get_item(mapped_id)
            if remote is not None:
                if (
                    entry is not None
                    and entry.local_hash == fingerprint(record)
                    and remote.name == title
                ):
                    logger.debug("Task %s unchanged", task_id)
                    return None
                if dry_run:
                    return ItemLink(local_id=task_id, remote_id=mapped_id)
                name = title if remote.name != title else None
                future = self.batcher.enqueue(
                    self.client.update_item_mutation(
                        self.board_id, mapped_id, column_values, name=name
                    )
                )
                write = _PendingWrite(
                    record=record,
                    local_id=task_id,
                    future=future,
                    remote_id=mapped_id,
                )
                if entry is not None and entry.remote_note_id:
                    write.note_id = entry.remote_note_id
                    write.note_future = self.batcher.enqueue(
                        self.client.delete_update_mutation(entry.remote_note_id)
                    )
                return write
            logger.info(
                "Item %s for task %s no longer exists; recreating",
                mapped_id,
                task_id,
            )

        group_id = self._resolve_target_group()
        if dry_run:
            if mapped_id:
                return Recreation(local_id=task_id, old_remote_id=mapped_id)
            return ItemLink(local_id=task_id)
        future = self.batcher.enqueue(
            self.client.create_item_mutation(
                self.board_id, group_id, title, column_values
            )
        )
        return _PendingWrite(
            record=record,
            local_id=task_id,
            future=future,
            old_remote_id=mapped_id,
        )

    def _resolve_target_group(self) -> str:
        if self._target_group is None:
            self._target_group = self.client.resolve_group_ids(
                self.board_id, self.group_ids
            )[0]
        return self._target_group
