"""Sync engine that wires the stores, client and reconcilers together.

``SyncEngine`` owns nothing it does not receive: tests hand it fakes,
``build_engine`` hands it the real collaborators built from config.
"""

from __future__ import annotations

import logging
from pathlib import Path

from taskmaster_sync.config import Config
from taskmaster_sync.config_schema import UnifiedConfig
from taskmaster_sync.core.client import MondayClient
from taskmaster_sync.sync.batcher import MutationBatcher
from taskmaster_sync.sync.columns import ColumnMapper
from taskmaster_sync.sync.local_store import LocalStore
from taskmaster_sync.sync.mapping_store import MappingStore
from taskmaster_sync.sync.models import (
    MappingEntry,
    PullPolicy,
    PullReport,
    PushPolicy,
    PushReport,
)
from taskmaster_sync.sync.pull import PullReconciler
from taskmaster_sync.sync.push import PushReconciler

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 3600


class SyncEngine:
    """Run push and pull against one board.

    Args:
        client: monday.com client (or a compatible fake).
        mapping_store: Durable task/item index.
        local_store: TaskMaster tasks file.
        mapper: Column mapper.
        board_id: Board to sync with.
        group_ids: Requested groups.
        batcher: Mutation batcher for push; built from the client if omitted.
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
        self.group_ids = list(group_ids)
        self.batcher = batcher or MutationBatcher(client.execute_query)

    # ------------------------------------------------------------------
    # Sync directions
    # ------------------------------------------------------------------

    def push(self, policy: PushPolicy | None = None) -> PushReport:
        """Push local tasks to the board."""
        policy = policy or PushPolicy()
        logger.info(
            "Pushing %s to board %s%s",
            self.local_store.path,
            self.board_id,
            " (dry run)" if policy.dry_run else "",
        )
        reconciler = PushReconciler(
            self.client,
            self.mapping_store,
            self.local_store,
            self.mapper,
            self.board_id,
            self.group_ids,
            batcher=self.batcher,
        )
        report = reconciler.run(policy)
        logger.info(
            "Push complete: %d created, %d updated, %d recreated, %d deleted, %d error(s)",
            len(report.created),
            len(report.updated),
            len(report.recreated),
            len(report.deleted),
            len(report.errors),
        )
        return report

    def pull(self, policy: PullPolicy | None = None) -> PullReport:
        """Pull board items into the local tasks file."""
        policy = policy or PullPolicy()
        logger.info(
            "Pulling board %s into %s%s",
            self.board_id,
            self.local_store.path,
            " (dry run)" if policy.dry_run else "",
        )
        reconciler = PullReconciler(
            self.client,
            self.mapping_store,
            self.local_store,
            self.mapper,
            self.board_id,
            self.group_ids,
        )
        report = reconciler.run(policy)
        logger.info(
            "Pull complete: %d new, %d updated, %d conflict(s), %d orphaned, %d error(s)",
            len(report.new),
            len(report.updated),
            len(report.conflicts),
            len(report.orphaned_ids),
            len(report.errors),
        )
        return report

    # ------------------------------------------------------------------
    # Mapping maintenance
    # ------------------------------------------------------------------

    def mappings(self) -> list[MappingEntry]:
        return self.mapping_store.load(bypass_cache=True).list_all()

    def last_sync_at(self) -> float | None:
        return self.mapping_store.load(bypass_cache=True).last_sync_at

    def prune(self, max_age_days: float) -> int:
        """Drop mappings not synced within *max_age_days*; return the count."""
        return self.mapping_store.prune_older_than(max_age_days * SECONDS_PER_DAY)


def build_engine(
    config: Config,
    unified: UnifiedConfig,
    tasks_file: str | Path | None = None,
    state_file: str | Path | None = None,
) -> SyncEngine:
    """Build a ``SyncEngine`` with real collaborators.

    Args:
        config: Validated connection settings.
        unified: Full file configuration (columns, sync options).
        tasks_file: Overrides ``sync.tasks_file``.
        state_file: Overrides ``sync.state_file``.
    """
    sync = unified.sync
    client = MondayClient(config)
    mapping_store = MappingStore(
        Path(state_file or sync.state_file),
        lock_timeout=sync.lock_timeout,
        cache_ttl=sync.cache_ttl,
    )
    local_store = LocalStore(
        Path(tasks_file or sync.tasks_file), lock_timeout=sync.lock_timeout
    )
    return SyncEngine(
        client=client,
        mapping_store=mapping_store,
        local_store=local_store,
        mapper=ColumnMapper(unified.columns),
        board_id=config.board_id,
        group_ids=config.group_ids,
        batcher=MutationBatcher(client.execute_query, config.max_batch_size),
    )
