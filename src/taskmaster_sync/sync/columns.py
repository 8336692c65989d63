"""Translation between TaskMaster task fields and board column values.

``to_column_values`` builds the JSON object monday.com expects in
``column_values`` for create/update mutations.  ``to_record`` decodes a
``RemoteItem`` back into task shape so pull can diff it against the
local task.  The two are inverses on the synced fields: pushing a task
and decoding the resulting item yields no ``records_differ`` difference.
"""

from __future__ import annotations

import logging

from ..config_schema import ColumnsConfig
from ..core.items import RemoteItem
from .records import REMOTE_ID_FIELD, coerce_id, local_id

logger = logging.getLogger(__name__)

# Fields written as plain text / long text (empty string clears the cell)
_TEXT_COLUMNS = ("description", "details", "testStrategy")


class ColumnMapper:
    """Config-driven mapper between tasks and board columns.

    Args:
        columns: Column ids plus status/priority label mappings.
    """

    def __init__(self, columns: ColumnsConfig) -> None:
        self.columns = dict(columns.column_mappings)
        self.status_mappings = dict(columns.status_mappings)
        self.priority_mappings = dict(columns.priority_mappings)
        self._status_reverse = {
            label.lower(): key for key, label in self.status_mappings.items()
        }
        self._priority_reverse = {
            label.lower(): key for key, label in self.priority_mappings.items()
        }

    # ------------------------------------------------------------------
    # Task -> board
    # ------------------------------------------------------------------

    def to_column_values(self, record: dict) -> dict:
        """Return the ``column_values`` object for *record*.

        Status and priority use the ``{"label": ...}`` shape of status
        columns.  Unmapped fields are skipped.
        """
        cols = self.columns
        values: dict = {}

        task_id = local_id(record)
        if cols.get("taskId") and task_id:
            values[cols["taskId"]] = task_id

        status = record.get("status")
        if cols.get("status") and status:
            values[cols["status"]] = {
                "label": self.status_mappings.get(status, status)
            }

        priority = record.get("priority")
        if cols.get("priority") and priority:
            values[cols["priority"]] = {
                "label": self.priority_mappings.get(priority, priority)
            }

        if cols.get("dependencies"):
            deps = record.get("dependencies") or []
            values[cols["dependencies"]] = ", ".join(str(d) for d in deps)

        complexity = record.get("complexity")
        if cols.get("complexity") and complexity not in (None, ""):
            values[cols["complexity"]] = {"label": str(complexity)}

        for name in _TEXT_COLUMNS:
            if cols.get(name):
                values[cols[name]] = record.get(name) or ""

        return values

    # ------------------------------------------------------------------
    # Board -> task
    # ------------------------------------------------------------------

    def to_record(self, item: RemoteItem) -> dict:
        """Decode *item* into a task dict.

        The result always carries ``title``, ``status``, ``priority``,
        ``dependencies``, the text fields and ``monday_item_id``.
        ``id`` is present only when the task-id column has a value.
        ``status``/``priority`` are ``None`` when their cell is empty.
        """
        cols = self.columns
        record: dict = {}

        raw_id = item.column_text(cols["taskId"])
        if raw_id and raw_id.strip():
            record["id"] = coerce_id(raw_id.strip())

        record["title"] = item.name
        record["status"] = self._reverse_label(
            item, "status", self._status_reverse
        )
        record["priority"] = self._reverse_label(
            item, "priority", self._priority_reverse
        )

        deps_text = (
            item.column_text(cols["dependencies"])
            if cols.get("dependencies")
            else None
        )
        record["dependencies"] = [
            coerce_id(d.strip())
            for d in (deps_text or "").split(",")
            if d.strip()
        ]

        for name in _TEXT_COLUMNS:
            text = item.column_text(cols[name]) if cols.get(name) else None
            record[name] = text or ""

        record[REMOTE_ID_FIELD] = item.id
        return record

    def _reverse_label(
        self, item: RemoteItem, field: str, reverse: dict[str, str]
    ) -> str | None:
        column_id = self.columns.get(field)
        if not column_id:
            return None
        text = item.column_text(column_id)
        if not text:
            return None
        label = text.strip().lower()
        return reverse.get(label, label)
