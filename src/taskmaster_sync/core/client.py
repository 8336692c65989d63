"""monday.com GraphQL client.

Every request goes through ``execute_query``, which wraps one HTTP round
trip in ``retry_with_backoff``.  Failures are classified so the retry
wrapper only repeats what can succeed on a second try:

* connection errors, timeouts, 5xx -> ``TransientRemoteError``
* HTTP 429, complexity / rate-limit GraphQL errors -> ``RateLimitedError``
* any other 4xx, or GraphQL ``errors`` without ``data`` -> ``RemoteError``
"""

from __future__ import annotations

import json
import logging
import threading
import time

import requests

from ..config import Config
from ..errors import (
    RateLimitedError,
    RemoteError,
    TransientRemoteError,
    ValidationError,
)
from .graphql import Mutation, build_document
from .items import RemoteItem
from .retry import retry_with_backoff

logger = logging.getLogger(__name__)

ITEM_FIELDS = (
    "id name state updated_at group { id } "
    "column_values { id text value type }"
)
PAGE_SIZE = 100
GROUP_CACHE_TTL = 300.0  # seconds

_RATE_LIMIT_CODES = {
    "ComplexityException",
    "COMPLEXITY_BUDGET_EXHAUSTED",
    "RATE_LIMIT_EXCEEDED",
    "maxConcurrencyExceeded",
}

_ITEMS_PAGE_QUERY = f"""
query GetItems($boardId: ID!, $groupId: String!, $limit: Int!) {{
  boards(ids: [$boardId]) {{
    groups(ids: [$groupId]) {{
      items_page(limit: $limit) {{ cursor items {{ {ITEM_FIELDS} }} }}
    }}
  }}
}}"""

_NEXT_PAGE_QUERY = f"""
query NextItems($cursor: String!, $limit: Int!) {{
  next_items_page(cursor: $cursor, limit: $limit) {{
    cursor items {{ {ITEM_FIELDS} }}
  }}
}}"""

_GROUPS_QUERY = """
query GetGroups($boardId: ID!) {
  boards(ids: [$boardId]) { groups { id title } }
}"""

_ITEM_QUERY = f"""
query GetItem($itemId: ID!) {{
  items(ids: [$itemId]) {{ {ITEM_FIELDS} }}
}}"""


def _error_code(error: dict) -> str | None:
    extensions = error.get("extensions") or {}
    return extensions.get("code") or error.get("error_code")


def _is_rate_limit_error(errors: list[dict]) -> bool:
    for error in errors:
        if _error_code(error) in _RATE_LIMIT_CODES:
            return True
        if "complexity budget" in str(error.get("message", "")).lower():
            return True
    return False


def _retry_after(errors: list[dict]) -> float | None:
    for error in errors:
        seconds = (error.get("extensions") or {}).get("retry_in_seconds")
        if seconds is not None:
            return float(seconds)
    return None


def _parse_retry_after_header(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_item(raw: dict) -> RemoteItem:
    """Build a ``RemoteItem`` from an API item payload."""
    group = raw.get("group") or {}
    return RemoteItem(
        id=str(raw["id"]),
        name=raw.get("name") or "",
        updated_at=raw.get("updated_at"),
        state=raw.get("state"),
        group_id=group.get("id"),
        column_values=raw.get("column_values") or [],
    )


class MondayClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self._group_cache: dict[str, tuple[float, list[dict]]] = {}

    @property
    def session(self) -> requests.Session:
        """Return the current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": self.config.api_key,
                "API-Version": self.config.api_version,
                "Content-Type": "application/json",
            }
        )
        return session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _graphql_request(self, query: str, variables: dict) -> dict:
        """Make one GraphQL request and return its ``data`` payload."""
        session = self._get_session()
        try:
            response = session.post(
                self.config.api_url,
                json={"query": query, "variables": variables},
                timeout=(10, self.config.timeout),
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientRemoteError(
                f"monday.com request failed: {exc}"
            ) from exc

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                "monday.com rate limit reached (HTTP 429)",
                retry_after=_parse_retry_after_header(
                    response.headers.get("Retry-After")
                ),
            )
        if status >= 500:
            raise TransientRemoteError(
                f"monday.com server error (HTTP {status})",
                status_code=status,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if status >= 400:
            detail = ""
            if isinstance(payload, dict):
                detail = payload.get("error_message") or json.dumps(
                    payload.get("errors", "")
                )
            raise RemoteError(
                f"monday.com request rejected (HTTP {status}) {detail}".rstrip(),
                status_code=status,
            )
        if not isinstance(payload, dict):
            raise TransientRemoteError("monday.com returned a non-JSON response")

        errors = payload.get("errors") or []
        data = payload.get("data")
        if errors:
            messages = ", ".join(
                str(e.get("message", e)) for e in errors if isinstance(e, dict)
            )
            if _is_rate_limit_error(errors):
                raise RateLimitedError(
                    f"monday.com rate limit: {messages}",
                    retry_after=_retry_after(errors),
                    status_code=status,
                )
            if data is None:
                raise RemoteError(f"monday.com API errors: {messages}")
            # Partial success: keep the data, the caller checks per field.
            logger.warning("monday.com API returned errors: %s", messages)
        if data is None and payload.get("error_message"):
            raise RemoteError(f"monday.com API error: {payload['error_message']}")
        return data or {}

    def execute_query(self, query: str, variables: dict | None = None) -> dict:
        """Run a GraphQL document with retry and return its ``data``."""
        return retry_with_backoff(
            lambda: self._graphql_request(query, variables or {}),
            max_attempts=self.config.max_retries,
            base_delay=self.config.retry_delay,
            operation_name="monday.com request",
        )

    def _run_mutation(self, mutation: Mutation, name: str) -> dict:
        query, variables = build_document([mutation], name=name)
        result = self.execute_query(query, variables).get(mutation.alias(0))
        if result is None:
            raise RemoteError(f"{mutation.operation} returned no result")
        return result

    # ------------------------------------------------------------------
    # Boards and groups
    # ------------------------------------------------------------------

    def get_board_groups(self, board_id: str) -> list[dict]:
        """Return ``[{"id", "title"}]`` for the board's groups (cached 5 min)."""
        cached = self._group_cache.get(board_id)
        if cached and time.monotonic() - cached[0] < GROUP_CACHE_TTL:
            return cached[1]

        data = self.execute_query(_GROUPS_QUERY, {"boardId": board_id})
        boards = data.get("boards") or []
        if not boards:
            raise RemoteError(f"Board {board_id} not found or not accessible")
        groups = boards[0].get("groups") or []
        self._group_cache[board_id] = (time.monotonic(), groups)
        return groups

    def resolve_group_ids(self, board_id: str, requested: list[str]) -> list[str]:
        """Return the requested groups that exist on the board, in order.

        ``"all"`` anywhere in *requested* selects every group.

        Raises:
            ValidationError: If none of the requested groups exist.
        """
        groups = [g["id"] for g in self.get_board_groups(board_id)]
        if "all" in requested:
            valid = groups
        else:
            valid = [g for g in requested if g in groups]
            missing = [g for g in requested if g not in groups]
            if missing:
                logger.warning(
                    "Ignoring unknown group id(s) on board %s: %s",
                    board_id,
                    ", ".join(missing),
                )
        if not valid:
            raise ValidationError(
                f"No valid group ids for board {board_id} (requested: {', '.join(requested)})"
            )
        return valid

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def fetch_items(self, board_id: str, group_id: str) -> list[RemoteItem]:
        """Return every item of one group, following page cursors."""
        data = self.execute_query(
            _ITEMS_PAGE_QUERY,
            {"boardId": board_id, "groupId": group_id, "limit": PAGE_SIZE},
        )
        boards = data.get("boards") or []
        if not boards:
            raise RemoteError(f"Board {board_id} not found or not accessible")
        groups = boards[0].get("groups") or []
        if not groups:
            return []
        page = groups[0].get("items_page") or {}

        items = [parse_item(raw) for raw in page.get("items") or []]
        cursor = page.get("cursor")
        while cursor:
            data = self.execute_query(
                _NEXT_PAGE_QUERY, {"cursor": cursor, "limit": PAGE_SIZE}
            )
            page = data.get("next_items_page") or {}
            items.extend(parse_item(raw) for raw in page.get("items") or [])
            cursor = page.get("cursor")

        logger.debug(
            "Fetched %d item(s) from board %s group %s",
            len(items),
            board_id,
            group_id,
        )
        return items

    def get_item(self, item_id: str) -> RemoteItem | None:
        """Return the item, or ``None`` if it is missing, archived or deleted."""
        data = self.execute_query(_ITEM_QUERY, {"itemId": item_id})
        raw_items = data.get("items") or []
        if not raw_items:
            return None
        item = parse_item(raw_items[0])
        return item if item.is_live else None

    def item_exists(self, item_id: str) -> bool:
        return self.get_item(item_id) is not None

    def create_item_mutation(
        self,
        board_id: str,
        group_id: str,
        name: str,
        column_values: dict,
    ) -> Mutation:
        return Mutation(
            operation="create_item",
            arguments={
                "board_id": ("ID!", board_id),
                "group_id": ("String!", group_id),
                "item_name": ("String!", name),
                "column_values": ("JSON", json.dumps(column_values)),
            },
            selection=ITEM_FIELDS,
        )

    def update_item_mutation(
        self,
        board_id: str,
        item_id: str,
        column_values: dict,
        name: str | None = None,
    ) -> Mutation:
        """Build a ``change_multiple_column_values`` mutation.

        The item name is only included when *name* is given.
        """
        values = dict(column_values)
        if name is not None:
            values["name"] = name
        return Mutation(
            operation="change_multiple_column_values",
            arguments={
                "board_id": ("ID!", board_id),
                "item_id": ("ID!", item_id),
                "column_values": ("JSON!", json.dumps(values)),
            },
            selection=ITEM_FIELDS,
        )

    def create_item(
        self,
        board_id: str,
        group_id: str,
        name: str,
        column_values: dict,
    ) -> RemoteItem:
        result = self._run_mutation(
            self.create_item_mutation(board_id, group_id, name, column_values),
            name="CreateItem",
        )
        item = parse_item(result)
        logger.info("Created item %s on board %s", item.id, board_id)
        return item

    def update_item(
        self,
        board_id: str,
        item_id: str,
        column_values: dict,
        name: str | None = None,
    ) -> RemoteItem:
        result = self._run_mutation(
            self.update_item_mutation(board_id, item_id, column_values, name),
            name="UpdateItem",
        )
        return parse_item(result)

    def delete_item(self, item_id: str) -> bool:
        """Delete the item; return ``True`` if the API confirmed it."""
        result = self._run_mutation(
            Mutation(
                operation="delete_item",
                arguments={"item_id": ("ID!", item_id)},
            ),
            name="DeleteItem",
        )
        return str(result.get("id")) == str(item_id)

    def delete_update_mutation(self, update_id: str) -> Mutation:
        return Mutation(
            operation="delete_update",
            arguments={"id": ("ID!", update_id)},
        )

    def delete_update(self, update_id: str) -> bool:
        """Delete a posted update; return ``True`` if the API confirmed it."""
        result = self._run_mutation(
            self.delete_update_mutation(update_id), name="DeleteUpdate"
        )
        return str(result.get("id")) == str(update_id)
