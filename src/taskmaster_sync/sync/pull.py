"""Pull reconciliation: board items -> TaskMaster tasks.

``run()`` is three phases:

1. **Fetch** every item of the target groups.  A failure here aborts the
   run.
2. **Compare** each decoded item against ``tasks.json`` and the mapping
   state, producing a ``PullPlan``.  Nothing is written.
3. **Apply** the plan (skipped in dry run): one ``tasks.json`` write and
   one mapping transaction.

Change detection per pair uses two signals:

* remote changed -- the item's ``updated_at`` is after the pair's
  ``lastSyncedAt`` (or either is unknown);
* local changed -- the task's fingerprint differs from the ``localHash``
  stored at the last agreement.  Entries written before hashes existed
  fall back to the remote signal.

Identity is checked before either signal.  An item is an ambiguous
identity conflict, and nothing is written for it, when it is linked to a
different existing task, or when the task it declares already belongs to
another fetched item (through a back-reference, a mapping entry, or an
earlier item in the same run).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..core.client import MondayClient
from ..core.items import RemoteItem
from .columns import ColumnMapper
from .local_store import LocalStore
from .mapping_store import MappingState, MappingStore
from .models import (
    MappingEntry,
    PullAction,
    PullConflict,
    PullPolicy,
    PullReport,
    RecordFailure,
)
from .records import REMOTE_ID_FIELD, fingerprint, local_id, records_differ, remote_id_of

logger = logging.getLogger(__name__)

AMBIGUOUS_IDENTITY = "ambiguous identity"
BOTH_CHANGED = "both sides changed since last sync"


@dataclass
class PullPlan:
    """Outcome of comparing fetched items with local tasks.

    ``new``, ``updated`` and ``recreated`` hold decoded tasks.
    ``refresh`` holds ``(remote_id, local_id)`` pairs that already agree
    but whose mapping entry is missing or stale.
    """

    new: list[dict] = field(default_factory=list)
    updated: list[dict] = field(default_factory=list)
    recreated: list[dict] = field(default_factory=list)
    conflicts: list[PullConflict] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    orphaned_ids: list[str] = field(default_factory=list)
    refresh: list[tuple[str, str]] = field(default_factory=list)
    errors: list[RecordFailure] = field(default_factory=list)
    remove_orphaned: bool = True
    synced_at: dict[str, float] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new
            or self.updated
            or self.refresh
            or (self.remove_orphaned and self.orphaned_ids)
        )


def _timestamp(item: RemoteItem) -> float | None:
    if item.updated_at is None:
        return None
    return item.updated_at.timestamp()


def _ambiguous(task_id: str, item: RemoteItem, decoded: dict) -> PullConflict:
    return PullConflict(
        local_id=task_id,
        remote_id=item.id,
        reason=AMBIGUOUS_IDENTITY,
        remote_task=decoded,
    )


def _other_live_link(
    local: dict,
    task_id: str,
    item_id: str,
    state: MappingState,
    live: set[str],
) -> str | None:
    """Return another fetched item that *local* is already linked to."""
    linked = [remote_id_of(local)]
    linked.extend(entry.remote_id for entry in state.get_by_local(task_id))
    for remote_id in linked:
        if remote_id and remote_id != item_id and remote_id in live:
            return remote_id
    return None


class PullReconciler:
    """Pull board items into ``tasks.json``.

    Args:
        client: Remote API client.
        mapping_store: Durable task/item index.
        local_store: TaskMaster tasks file.
        mapper: Column mapper.
        board_id: Source board.
        group_ids: Requested groups (``["all"]`` for every group).
    """

    def __init__(
        self,
        client: MondayClient,
        mapping_store: MappingStore,
        local_store: LocalStore,
        mapper: ColumnMapper,
        board_id: str,
        group_ids: list[str],
    ) -> None:
        self.client = client
        self.mapping_store = mapping_store
        self.local_store = local_store
        self.mapper = mapper
        self.board_id = board_id
        self.group_ids = group_ids

    def run(self, policy: PullPolicy | None = None) -> PullReport:
        """Fetch, compare and (unless dry run) apply.

        Raises:
            RemoteError: If the board or its items cannot be fetched.
            LocalStoreError: If ``tasks.json`` cannot be read.
            LockTimeoutError: If a store lock cannot be acquired.
        """
        policy = policy or PullPolicy()
        started_at = datetime.now(timezone.utc).isoformat()

        items = self.fetch_remote_items()
        records = self.local_store.read_all()
        plan = self.compare(items, records, policy)

        if policy.dry_run:
            logger.info("Dry run: no changes written")
        else:
            self.apply(plan, records)

        return PullReport(
            dry_run=policy.dry_run,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            new=plan.new,
            updated=plan.updated,
            conflicts=plan.conflicts,
            recreated=plan.recreated,
            orphaned_ids=plan.orphaned_ids,
            unchanged=plan.unchanged,
            skipped=plan.skipped,
            errors=plan.errors,
        )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch_remote_items(self) -> list[RemoteItem]:
        """Return the live items of every target group, in group order."""
        items: list[RemoteItem] = []
        for group_id in self.client.resolve_group_ids(self.board_id, self.group_ids):
            items.extend(
                item
                for item in self.client.fetch_items(self.board_id, group_id)
                if item.is_live
            )
        logger.info("Fetched %d item(s) from board %s", len(items), self.board_id)
        return items

    # ------------------------------------------------------------------
    # Compare
    # ------------------------------------------------------------------

    def compare(
        self,
        items: list[RemoteItem],
        records: list[dict],
        policy: PullPolicy,
        state: MappingState | None = None,
    ) -> PullPlan:
        """Classify every item against *records* without writing anything."""
        if state is None:
            state = self.mapping_store.load(bypass_cache=True)
        plan = PullPlan(remove_orphaned=policy.remove_orphaned)
        wanted = str(policy.specific_local_id) if policy.specific_local_id else None

        by_id: dict[str, dict] = {}
        by_remote: dict[str, str] = {}
        for record in records:
            task_id = local_id(record)
            if task_id is None:
                continue
            by_id.setdefault(task_id, record)
            remote_id = remote_id_of(record)
            if remote_id:
                by_remote.setdefault(remote_id, task_id)

        live = {item.id for item in items}
        # task id -> the item this run already assigned it to
        assigned: dict[str, str] = {}
        claimed: set[str] = set()
        for item in items:
            try:
                decoded = self.mapper.to_record(item)
                task_id = local_id(decoded)
                if task_id is None:
                    logger.debug("Item %s has no task id; skipping", item.id)
                    plan.skipped.append(item.id)
                    continue
                claimed.add(task_id)
                if wanted is not None and task_id != wanted:
                    continue

                first = assigned.get(task_id)
                if first is not None:
                    logger.warning(
                        "Items %s and %s both declare task %s",
                        first,
                        item.id,
                        task_id,
                    )
                    plan.conflicts.append(_ambiguous(task_id, item, decoded))
                    continue

                action = self._classify(
                    item, decoded, task_id, by_id, by_remote, live, state, policy, plan
                )
                if action is not PullAction.CONFLICT:
                    assigned[task_id] = item.id
                logger.debug("Item %s (task %s): %s", item.id, task_id, action.value)
            except Exception as exc:
                logger.error("Failed to compare item %s: %s", item.id, exc)
                plan.errors.append(RecordFailure(record_id=item.id, error=str(exc)))

        self._find_orphans(items, records, by_id, claimed, state, wanted, plan)
        return plan

    def _classify(
        self,
        item: RemoteItem,
        decoded: dict,
        task_id: str,
        by_id: dict[str, dict],
        by_remote: dict[str, str],
        live: set[str],
        state: MappingState,
        policy: PullPolicy,
        plan: PullPlan,
    ) -> PullAction:
        local = by_id.get(task_id)
        if local is None:
            if not policy.recreate_missing_tasks:
                plan.skipped.append(item.id)
                return PullAction.SKIPPED
            logger.info(
                "Task %s exists on the board (item %s) but not locally; recreating",
                task_id,
                item.id,
            )
            plan.new.append(decoded)
            plan.recreated.append(decoded)
            self._note_synced_at(plan, item)
            return PullAction.NEW

        entry = state.get_by_remote(item.id)
        linked = by_remote.get(item.id) or (entry.local_id if entry else None)
        if linked is not None and linked != task_id and linked in by_id:
            logger.warning(
                "Item %s declares task %s but is linked to task %s",
                item.id,
                task_id,
                linked,
            )
            plan.conflicts.append(_ambiguous(task_id, item, decoded))
            return PullAction.CONFLICT

        rival = _other_live_link(local, task_id, item.id, state, live)
        if rival is not None:
            logger.warning(
                "Item %s declares task %s, which is linked to item %s",
                item.id,
                task_id,
                rival,
            )
            plan.conflicts.append(_ambiguous(task_id, item, decoded))
            return PullAction.CONFLICT

        if entry is not None and entry.local_id != task_id:
            entry = None

        if not records_differ(local, decoded):
            plan.unchanged.append(task_id)
            if self._mapping_is_stale(entry, item, local):
                plan.refresh.append((item.id, task_id))
                self._note_synced_at(plan, item)
            return PullAction.UNCHANGED

        remote_changed = self._remote_changed(entry, item)
        local_changed = self._local_changed(entry, local, remote_changed)

        if policy.force_overwrite:
            return self._mark_updated(plan, item, decoded)
        if remote_changed and local_changed:
            if policy.skip_conflicts:
                plan.unchanged.append(task_id)
                return PullAction.UNCHANGED
            plan.conflicts.append(
                PullConflict(
                    local_id=task_id,
                    remote_id=item.id,
                    reason=BOTH_CHANGED,
                    remote_task=decoded,
                )
            )
            return PullAction.CONFLICT
        if not policy.skip_conflicts and policy.specific_local_id is None:
            return self._mark_updated(plan, item, decoded)
        if remote_changed:
            return self._mark_updated(plan, item, decoded)
        # Only the local side moved; the next push carries it.
        plan.unchanged.append(task_id)
        return PullAction.UNCHANGED

    def _mark_updated(
        self, plan: PullPlan, item: RemoteItem, decoded: dict
    ) -> PullAction:
        plan.updated.append(decoded)
        self._note_synced_at(plan, item)
        return PullAction.UPDATED

    @staticmethod
    def _note_synced_at(plan: PullPlan, item: RemoteItem) -> None:
        stamp = _timestamp(item)
        if stamp is not None:
            plan.synced_at[item.id] = stamp

    @staticmethod
    def _remote_changed(entry: MappingEntry | None, item: RemoteItem) -> bool:
        stamp = _timestamp(item)
        if entry is None or stamp is None:
            return True
        return stamp > entry.last_synced_at

    @staticmethod
    def _local_changed(
        entry: MappingEntry | None, local: dict, remote_changed: bool
    ) -> bool:
        if entry is None:
            return False
        if entry.local_hash is None:
            return remote_changed
        return entry.local_hash != fingerprint(local)

    @staticmethod
    def _mapping_is_stale(
        entry: MappingEntry | None, item: RemoteItem, local: dict
    ) -> bool:
        if entry is None or entry.local_hash != fingerprint(local):
            return True
        if remote_id_of(local) != item.id:
            return True
        stamp = _timestamp(item)
        return stamp is not None and stamp > entry.last_synced_at

    def _find_orphans(
        self,
        items: list[RemoteItem],
        records: list[dict],
        by_id: dict[str, dict],
        claimed: set[str],
        state: MappingState,
        wanted: str | None,
        plan: PullPlan,
    ) -> None:
        fetched = {item.id for item in items}
        orphans: list[str] = []

        for record in records:
            task_id = local_id(record)
            remote_id = remote_id_of(record)
            if task_id is None or remote_id is None or task_id in claimed:
                continue
            if wanted is not None and task_id != wanted:
                continue
            if remote_id not in fetched and task_id not in orphans:
                logger.info(
                    "Task %s is orphaned: item %s no longer exists",
                    task_id,
                    remote_id,
                )
                orphans.append(task_id)

        for entry in state.list_all():
            task_id = entry.local_id
            if entry.remote_id in fetched or task_id in claimed or task_id in orphans:
                continue
            if wanted is not None and task_id != wanted:
                continue
            if task_id in by_id:
                logger.info(
                    "Task %s is orphaned: mapped item %s no longer exists",
                    task_id,
                    entry.remote_id,
                )
                orphans.append(task_id)

        plan.orphaned_ids.extend(orphans)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, plan: PullPlan, records: list[dict]) -> None:
        """Write *plan* to ``tasks.json`` and the mapping store.

        *records* is the collection ``compare`` saw; it is modified in
        place.
        """
        if not plan.has_changes:
            logger.info("Pull found nothing to apply")
            return

        now = time.time()
        by_id: dict[str, dict] = {}
        for record in records:
            task_id = local_id(record)
            if task_id is not None:
                by_id.setdefault(task_id, record)

        upserts: list[tuple[str, str, str]] = []

        for decoded in plan.updated:
            task_id = local_id(decoded)
            record = by_id.get(task_id)
            if record is None:
                logger.warning("Task %s no longer exists locally; adding it", task_id)
                record = self._new_record(decoded)
                records.append(record)
                by_id[task_id] = record
            else:
                self._merge(record, decoded)
            logger.info("Updated task %s from item %s", task_id, decoded[REMOTE_ID_FIELD])
            upserts.append((decoded[REMOTE_ID_FIELD], task_id, fingerprint(record)))

        for decoded in plan.new:
            task_id = local_id(decoded)
            record = self._new_record(decoded)
            records.append(record)
            by_id[task_id] = record
            logger.info("Added task %s from item %s", task_id, decoded[REMOTE_ID_FIELD])
            upserts.append((decoded[REMOTE_ID_FIELD], task_id, fingerprint(record)))

        for remote_id, task_id in plan.refresh:
            record = by_id[task_id]
            record[REMOTE_ID_FIELD] = remote_id
            upserts.append((remote_id, task_id, fingerprint(record)))

        removed: list[str] = []
        if plan.remove_orphaned and plan.orphaned_ids:
            doomed = set(plan.orphaned_ids)
            records[:] = [r for r in records if local_id(r) not in doomed]
            removed = list(plan.orphaned_ids)
            logger.info("Removed %d orphaned task(s)", len(removed))

        self.local_store.write_all(records)

        with self.mapping_store.transaction() as state:
            for task_id in removed:
                state.remove_local(task_id)
            for remote_id, task_id, local_hash in upserts:
                synced_at = max(now, plan.synced_at.get(remote_id, now))
                state.upsert(remote_id, task_id, synced_at, local_hash)

    @staticmethod
    def _new_record(decoded: dict) -> dict:
        record = {k: v for k, v in decoded.items() if v is not None}
        record.setdefault("subtasks", [])
        return record

    @staticmethod
    def _merge(record: dict, decoded: dict) -> None:
        """Overwrite the synced keys of *record*; local-only keys stay."""
        for key, value in decoded.items():
            if key == "id":
                continue
            if value is None:
                record.pop(key, None)
            else:
                record[key] = value