"""Helpers for TaskMaster task records.

Records are plain dicts exactly as stored in ``tasks.json``.  These
helpers give the sync engine a normalised view of the fields it owns:

* ``local_id`` -- the task id as a string (TaskMaster writes ints).
* ``sync_fields`` -- the synced fields, normalised so a task and the same
  task decoded back from the board compare equal.
* ``fingerprint`` -- SHA-256 of ``sync_fields``; stored in the mapping
  entry as the local revision marker.
"""

from __future__ import annotations

import hashlib
import json

REMOTE_ID_FIELD = "monday_item_id"

TEXT_FIELDS = ("title", "status", "priority", "description", "details", "testStrategy")

SYNCED_FIELDS = TEXT_FIELDS + ("dependencies",)


def local_id(record: dict) -> str | None:
    """Return the record's id as a string, or ``None`` if it has none."""
    value = record.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_id(value: str) -> int | str:
    """Return *value* as an int when it is all digits (TaskMaster style)."""
    return int(value) if value.isdigit() else value


def remote_id_of(record: dict) -> str | None:
    """Return the record's board item back-reference, if any."""
    value = record.get(REMOTE_ID_FIELD)
    if value in (None, ""):
        return None
    return str(value)


def sync_fields(record: dict) -> dict:
    """Return the normalised projection of the fields sync owns.

    ``None`` and missing values become ``""``, text is stripped, and
    dependencies become a sorted tuple of strings (order is ignored).
    """
    projected: dict = {}
    for name in TEXT_FIELDS:
        value = record.get(name)
        projected[name] = "" if value is None else str(value).strip()
    deps = record.get("dependencies") or []
    projected["dependencies"] = tuple(sorted({str(d).strip() for d in deps}))
    return projected


def records_differ(left: dict, right: dict) -> bool:
    """Return ``True`` if the synced fields of two records differ."""
    return sync_fields(left) != sync_fields(right)


def fingerprint(record: dict) -> str:
    """Return a stable SHA-256 hex digest of the record's synced fields."""
    payload = json.dumps(sync_fields(record), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
