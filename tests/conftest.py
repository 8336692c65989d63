"""Shared pytest fixtures for taskmaster-sync tests."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

from taskmaster_sync.config import Config
from taskmaster_sync.config_schema import ColumnsConfig
from taskmaster_sync.core.client import MondayClient
from taskmaster_sync.core.items import ColumnValue, RemoteItem
from taskmaster_sync.errors import ValidationError
from taskmaster_sync.sync.batcher import MutationBatcher
from taskmaster_sync.sync.columns import ColumnMapper
from taskmaster_sync.sync.engine import SyncEngine
from taskmaster_sync.sync.local_store import LocalStore
from taskmaster_sync.sync.mapping_store import MappingStore

load_dotenv()

BOARD_ID = "1001"

_ALIAS_RE = re.compile(r"op_(\d+): (\w+)\(")


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live monday.com board",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live monday.com board"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory board
# ---------------------------------------------------------------------------


def _cell_text(value) -> str | None:
    if isinstance(value, dict):
        value = value.get("label")
    if value in (None, ""):
        return None
    return str(value)


class FakeMondayClient:
    """In-memory stand-in for ``MondayClient``.

    ``execute_query`` interprets the aliased mutation documents built by
    ``MutationBatcher`` so batching is exercised for real.  Every remote
    write is appended to ``mutations``; every call to ``calls``.
    """

    def __init__(self, board_id: str = BOARD_ID, groups=("topics", "backlog")):
        self.board_id = board_id
        self.groups = list(groups)
        self.items: dict[str, RemoteItem] = {}
        self.calls: list[tuple] = []
        self.mutations: list[tuple] = []
        self.round_trips = 0
        self.fail_next_batch: Exception | None = None
        self.updates: dict[str, str] = {}  # update id -> item id
        self._next_id = 9000
        self._builder = MondayClient(Config(api_key="test-key", board_id=board_id))

    # -- test helpers -------------------------------------------------------

    def add_item(
        self,
        name: str,
        column_values: dict,
        item_id: str | None = None,
        group_id: str | None = None,
        updated_at: datetime | None = None,
    ) -> RemoteItem:
        """Place an item on the board without logging a mutation."""
        if item_id is None:
            self._next_id += 1
            item_id = str(self._next_id)
        item = RemoteItem(
            id=item_id,
            name=name,
            state="active",
            group_id=group_id or self.groups[0],
            updated_at=updated_at or datetime.now(timezone.utc),
            column_values=[
                ColumnValue(id=col, text=_cell_text(val), value=json.dumps(val))
                for col, val in column_values.items()
            ],
        )
        self.items[item_id] = item
        return item

    def add_task(self, mapper: ColumnMapper, task: dict, **kwargs) -> RemoteItem:
        """Place an item built from *task* through *mapper*."""
        return self.add_item(task["title"], mapper.to_column_values(task), **kwargs)

    def edit_item(
        self,
        item_id: str,
        name: str | None = None,
        column_values: dict | None = None,
        seconds_later: float = 60.0,
    ) -> RemoteItem:
        """Simulate an edit made on the board after the last sync."""
        item = self.items[item_id]
        cells = {c.id: c for c in item.column_values}
        for col, val in (column_values or {}).items():
            cells[col] = ColumnValue(id=col, text=_cell_text(val), value=json.dumps(val))
        updated = item.model_copy(
            update={
                "name": item.name if name is None else name,
                "column_values": list(cells.values()),
                "updated_at": datetime.now(timezone.utc)
                + timedelta(seconds=seconds_later),
            }
        )
        self.items[item_id] = updated
        return updated

    def post_update(self, item_id: str, update_id: str) -> None:
        """Simulate an update (comment) posted on an item."""
        self.updates[update_id] = item_id

    def remove_item(self, item_id: str) -> None:
        """Simulate an item deleted on the board."""
        del self.items[item_id]

    # -- MondayClient surface ----------------------------------------------

    def resolve_group_ids(self, board_id: str, requested: list[str]) -> list[str]:
        self.calls.append(("resolve_group_ids", board_id, tuple(requested)))
        if "all" in requested:
            return list(self.groups)
        valid = [g for g in requested if g in self.groups]
        if not valid:
            raise ValidationError(f"No valid group ids for board {board_id}")
        return valid

    def fetch_items(self, board_id: str, group_id: str) -> list[RemoteItem]:
        self.calls.append(("fetch_items", board_id, group_id))
        return [i for i in self.items.values() if i.group_id == group_id]

    def get_item(self, item_id: str) -> RemoteItem | None:
        self.calls.append(("get_item", item_id))
        item = self.items.get(str(item_id))
        return item if item is not None and item.is_live else None

    def item_exists(self, item_id: str) -> bool:
        return self.get_item(item_id) is not None

    def create_item_mutation(self, *args, **kwargs):
        return self._builder.create_item_mutation(*args, **kwargs)

    def update_item_mutation(self, *args, **kwargs):
        return self._builder.update_item_mutation(*args, **kwargs)

    def delete_update_mutation(self, *args, **kwargs):
        return self._builder.delete_update_mutation(*args, **kwargs)

    def create_item(self, board_id, group_id, name, column_values) -> RemoteItem:
        self.calls.append(("create_item", board_id, group_id, name))
        return self._create(group_id, name, column_values)

    def update_item(self, board_id, item_id, column_values, name=None):
        self.calls.append(("update_item", board_id, item_id))
        return self._update(item_id, column_values, name)

    def delete_item(self, item_id: str) -> bool:
        self.calls.append(("delete_item", item_id))
        self.mutations.append(("delete_item", item_id))
        return self.items.pop(str(item_id), None) is not None

    def execute_query(self, query: str, variables: dict | None = None) -> dict:
        """Run a batched mutation document against the in-memory board."""
        self.round_trips += 1
        self.calls.append(("execute_query", query))
        if self.fail_next_batch is not None:
            exc, self.fail_next_batch = self.fail_next_batch, None
            raise exc

        variables = variables or {}
        data: dict = {}
        for index, operation in _ALIAS_RE.findall(query):
            suffix = f"_{index}"
            args = {
                name[: -len(suffix)]: value
                for name, value in variables.items()
                if name.endswith(suffix)
            }
            data[f"op_{index}"] = self._dispatch(operation, args)
        return data

    # -- internals ------------------------------------------------------------

    def _dispatch(self, operation: str, args: dict) -> dict | None:
        if operation == "create_item":
            item = self._create(
                args["group_id"], args["item_name"], json.loads(args["column_values"])
            )
            return self._payload(item)
        if operation == "change_multiple_column_values":
            values = json.loads(args["column_values"])
            name = values.pop("name", None)
            item = self._update(args["item_id"], values, name)
            return None if item is None else self._payload(item)
        if operation == "delete_item":
            return {"id": args["item_id"]} if self.delete_item(args["item_id"]) else None
        if operation == "delete_update":
            self.mutations.append(("delete_update", args["id"]))
            return {"id": args["id"]} if self.updates.pop(args["id"], None) else None
        raise AssertionError(f"unexpected operation {operation}")

    def _create(self, group_id, name, column_values) -> RemoteItem:
        self.mutations.append(("create_item", name))
        return self.add_item(name, column_values, group_id=group_id)

    def _update(self, item_id, column_values, name) -> RemoteItem | None:
        self.mutations.append(("change_multiple_column_values", item_id))
        if item_id not in self.items:
            return None
        item = self.items[item_id]
        cells = {c.id: c for c in item.column_values}
        for col, val in column_values.items():
            cells[col] = ColumnValue(id=col, text=_cell_text(val), value=json.dumps(val))
        updated = item.model_copy(
            update={
                "name": item.name if name is None else name,
                "column_values": list(cells.values()),
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self.items[item_id] = updated
        return updated

    @staticmethod
    def _payload(item: RemoteItem) -> dict:
        return {
            "id": item.id,
            "name": item.name,
            "state": item.state,
            "updated_at": item.updated_at.isoformat() if item.updated_at else None,
            "group": {"id": item.group_id},
            "column_values": [c.model_dump() for c in item.column_values],
        }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(api_key="test-key", board_id=BOARD_ID)


@pytest.fixture
def columns() -> ColumnsConfig:
    return ColumnsConfig()


@pytest.fixture
def mapper(columns) -> ColumnMapper:
    return ColumnMapper(columns)


@pytest.fixture
def fake_client() -> FakeMondayClient:
    return FakeMondayClient()


@pytest.fixture
def tasks_path(tmp_path: Path) -> Path:
    return tmp_path / "tasks" / "tasks.json"


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / ".taskmaster_sync_state.json"


@pytest.fixture
def write_tasks(tasks_path: Path):
    """Factory fixture writing a TaskMaster envelope to ``tasks_path``."""

    def _write(tasks: list[dict], **envelope) -> Path:
        tasks_path.parent.mkdir(parents=True, exist_ok=True)
        data = {"tasks": tasks, **envelope}
        tasks_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        return tasks_path

    return _write


@pytest.fixture
def local_store(tasks_path: Path) -> LocalStore:
    return LocalStore(tasks_path, lock_timeout=1.0)


@pytest.fixture
def mapping_store(state_path: Path) -> MappingStore:
    return MappingStore(state_path, lock_timeout=1.0, cache_ttl=0.0)


@pytest.fixture
def engine(fake_client, mapping_store, local_store, mapper) -> SyncEngine:
    return SyncEngine(
        client=fake_client,
        mapping_store=mapping_store,
        local_store=local_store,
        mapper=mapper,
        board_id=BOARD_ID,
        group_ids=["all"],
        batcher=MutationBatcher(fake_client.execute_query, max_batch_size=10),
    )
