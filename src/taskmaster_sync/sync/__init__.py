"""Push/pull sync engine between TaskMaster tasks and a monday.com board.

Architecture
------------
Each direction is a reconciler that classifies every record first and
writes afterwards.  Agreement between a task and an item is recorded in
the mapping store together with a fingerprint of the task's synced
fields, so later runs can tell which side moved.

Modules:

- ``engine``        -- ``SyncEngine`` and ``build_engine``.
- ``push``          -- ``PushReconciler``: tasks -> items.
- ``pull``          -- ``PullReconciler``: items -> tasks.
- ``mapping_store`` -- ``MappingStore``: lock-guarded JSON index.
- ``local_store``   -- ``LocalStore``: ``tasks.json`` access.
- ``columns``       -- ``ColumnMapper``: task fields <-> column values.
- ``batcher``       -- ``MutationBatcher``: aliased mutation batching.
- ``lock``          -- ``FileLock``: cross-process advisory lock.
- ``records``       -- Task record helpers and fingerprints.
- ``models``        -- Policies, outcomes and reports.
- ``reporter``      -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from taskmaster_sync.config_loader import load_hierarchical_config
    from taskmaster_sync.config_schema import build_config
    from taskmaster_sync.config import load_config
    from taskmaster_sync.sync import PushPolicy, build_engine, format_push_report

    unified = build_config(load_hierarchical_config())
    config = load_config(yaml_fallbacks=unified.monday.model_dump())
    engine = build_engine(config, unified)

    preview = engine.push(PushPolicy(dry_run=True))
    print(format_push_report(preview))
"""

from .batcher import MutationBatcher
from .columns import ColumnMapper
from .engine import SyncEngine, build_engine
from .local_store import LocalStore
from .mapping_store import MappingState, MappingStore
from .models import (
    ItemLink,
    MappingEntry,
    PullConflict,
    PullPolicy,
    PullReport,
    PushPolicy,
    PushReport,
    RecordFailure,
    Recreation,
)
from .pull import PullPlan, PullReconciler
from .push import PushReconciler
from .reporter import (
    format_mapping_status,
    format_pull_report,
    format_push_report,
    report_to_json,
)

__all__ = [
    "ColumnMapper",
    "ItemLink",
    "LocalStore",
    "MappingEntry",
    "MappingState",
    "MappingStore",
    "MutationBatcher",
    "PullConflict",
    "PullPlan",
    "PullPolicy",
    "PullReconciler",
    "PullReport",
    "PushPolicy",
    "PushReconciler",
    "PushReport",
    "RecordFailure",
    "Recreation",
    "SyncEngine",
    "build_engine",
    "format_mapping_status",
    "format_pull_report",
    "format_push_report",
    "report_to_json",
]
