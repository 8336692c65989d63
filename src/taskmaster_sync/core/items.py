"""Pydantic models for board items as returned by the monday.com API.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ColumnValue(BaseModel):
    """A single column cell of a board item.

    Attributes:
        id: Column id (e.g. ``text_mkraj7jy``).
        text: Human-readable rendering, ``None`` when empty.
        value: Raw JSON-encoded value as sent by the API.
        type: Column type (``text``, ``status``, ``long_text``...).
    """

    id: str
    text: str | None = None
    value: str | None = None
    type: str | None = None

    model_config = {"frozen": True}


class RemoteItem(BaseModel):
    """A board item.

    Attributes:
        id: Item id.
        name: Item name (the task title).
        updated_at: Last modification time reported by the board.
        state: ``active``, ``archived`` or ``deleted``.
        group_id: Id of the group holding the item, when fetched.
        column_values: Column cells.
    """

    id: str
    name: str = ""
    updated_at: datetime | None = None
    state: str | None = None
    group_id: str | None = None
    column_values: list[ColumnValue] = []

    model_config = {"frozen": True}

    @property
    def is_live(self) -> bool:
        return self.state not in ("deleted", "archived")

    def column_text(self, column_id: str) -> str | None:
        """Return the text of *column_id*, or ``None`` if absent or empty."""
        for column in self.column_values:
            if column.id == column_id:
                return column.text or None
        return None
