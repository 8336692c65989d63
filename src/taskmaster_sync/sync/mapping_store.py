"""Mapping store: the durable index between tasks and board items.

The persisted file (``.taskmaster_sync_state.json`` by default) holds::

    {"version": "1.0", "lastSyncAt": ..., "mappings": [
        {"localId": "42", "remoteId": "9001", "lastSyncedAt": ...,
         "remoteNoteId": null, "localHash": "..."}]}

Key design choices:

* **One struct** -- ``MappingState`` owns the entry list and both derived
  indexes (``remoteId -> entry``, ``localId -> [remoteId]``).  Every
  mutator rebuilds the indexes from the list, so they cannot drift.
  The indexes are never persisted.
* **Strict 1:1** -- ``upsert`` drops any entry sharing either id before
  appending, so a task maps to at most one item and vice versa.
* **Lock-guarded read-modify-write** -- mutating calls on
  ``MappingStore`` take the file lock, reload bypassing the cache,
  mutate, and write atomically via ``os.replace()``.
* **Never fatal on read** -- a missing or unreadable file is an empty
  state (the latter with a warning).
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..errors import CorruptStateError
from ..file_handler import write_json_atomic
from .lock import DEFAULT_LOCK_TIMEOUT, FileLock
from .models import MappingEntry

logger = logging.getLogger(__name__)

STATE_VERSION = "1.0"
DEFAULT_STATE_FILE = ".taskmaster_sync_state.json"
DEFAULT_CACHE_TTL = 5.0  # seconds
DEFAULT_PRUNE_AGE = 30 * 24 * 3600  # seconds


class MappingState:
    """In-memory mapping aggregate with derived lookup indexes.

    Args:
        entries: Initial entries, in order.
        version: Format version tag.
        last_sync_at: Epoch seconds of the last mutation, if any.
    """

    def __init__(
        self,
        entries: list[MappingEntry] | None = None,
        version: str = STATE_VERSION,
        last_sync_at: float | None = None,
    ) -> None:
        self.version = version
        self.last_sync_at = last_sync_at
        self._entries: list[MappingEntry] = list(entries or [])
        self._by_remote: dict[str, MappingEntry] = {}
        self._by_local: dict[str, list[str]] = {}
        self._reindex()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_remote(self, remote_id: str) -> MappingEntry | None:
        return self._by_remote.get(str(remote_id))

    def get_by_local(self, local_id: str) -> list[MappingEntry]:
        return [
            self._by_remote[rid]
            for rid in self._by_local.get(str(local_id), [])
        ]

    def list_all(self) -> list[MappingEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Mutators (each re-derives the indexes)
    # ------------------------------------------------------------------

    def upsert(
        self,
        remote_id: str,
        local_id: str,
        synced_at: float | None = None,
        local_hash: str | None = None,
    ) -> MappingEntry:
        """Record that *local_id* and *remote_id* agree as of *synced_at*.

        Any other entry for either id is dropped.  ``remoteNoteId`` is
        carried over from a previous entry for the same pair.
        """
        remote_id, local_id = str(remote_id), str(local_id)
        previous = self._by_remote.get(remote_id)
        note_id = (
            previous.remote_note_id
            if previous is not None and previous.local_id == local_id
            else None
        )
        entry = MappingEntry(
            local_id=local_id,
            remote_id=remote_id,
            last_synced_at=time.time() if synced_at is None else synced_at,
            remote_note_id=note_id,
            local_hash=local_hash,
        )
        self._entries = [
            e
            for e in self._entries
            if e.remote_id != remote_id and e.local_id != local_id
        ]
        self._entries.append(entry)
        self._touch()
        return entry

    def remove(self, remote_id: str) -> bool:
        """Remove the entry for *remote_id*; return whether one existed."""
        before = len(self._entries)
        self._entries = [
            e for e in self._entries if e.remote_id != str(remote_id)
        ]
        removed = len(self._entries) != before
        if removed:
            self._touch()
        return removed

    def remove_local(self, local_id: str) -> int:
        """Remove every entry for *local_id*; return how many went."""
        before = len(self._entries)
        self._entries = [
            e for e in self._entries if e.local_id != str(local_id)
        ]
        removed = before - len(self._entries)
        if removed:
            self._touch()
        return removed

    def clear_note(self, remote_id: str) -> bool:
        """Forget the posted update recorded for *remote_id*."""
        entry = self._by_remote.get(str(remote_id))
        if entry is None or entry.remote_note_id is None:
            return False
        self._entries = [
            e.model_copy(update={"remote_note_id": None}) if e is entry else e
            for e in self._entries
        ]
        self._touch()
        return True

    def prune_older_than(
        self, max_age: float, now: float | None = None
    ) -> int:
        """Drop entries last synced more than *max_age* seconds ago."""
        cutoff = (time.time() if now is None else now) - max_age
        before = len(self._entries)
        self._entries = [
            e for e in self._entries if e.last_synced_at >= cutoff
        ]
        removed = before - len(self._entries)
        if removed:
            self._touch()
        return removed

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "lastSyncAt": self.last_sync_at,
            "mappings": [
                e.model_dump(by_alias=True, exclude_none=True)
                for e in self._entries
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> MappingState:
        """Build a state from its persisted form.

        Raises:
            CorruptStateError: If the shape or any entry is invalid.
        """
        if not isinstance(data, dict):
            raise CorruptStateError(
                f"expected a JSON object, got {type(data).__name__}"
            )
        raw_entries = data.get("mappings", [])
        if not isinstance(raw_entries, list):
            raise CorruptStateError("'mappings' must be a list")
        try:
            entries = [MappingEntry.model_validate(e) for e in raw_entries]
        except PydanticValidationError as exc:
            raise CorruptStateError(f"invalid mapping entry: {exc}") from exc
        return cls(
            entries=entries,
            version=str(data.get("version", STATE_VERSION)),
            last_sync_at=data.get("lastSyncAt"),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _touch(self) -> None:
        self.last_sync_at = time.time()
        self._reindex()

    def _reindex(self) -> None:
        by_remote: dict[str, MappingEntry] = {}
        by_local: dict[str, list[str]] = {}
        for entry in self._entries:
            by_remote[entry.remote_id] = entry
            by_local.setdefault(entry.local_id, []).append(entry.remote_id)
        self._by_remote = by_remote
        self._by_local = by_local


class MappingStore:
    """Load, persist and query the mapping file.

    Args:
        path: Location of the mapping file.
        lock_timeout: Seconds to wait for the file lock.
        cache_ttl: Seconds a loaded state is reused by read operations.
    """

    def __init__(
        self,
        path: Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
    ) -> None:
        self.path = Path(path)
        self.cache_ttl = cache_ttl
        self._lock = FileLock(self.path, timeout=lock_timeout)
        self._cache: MappingState | None = None
        self._cached_at = 0.0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, bypass_cache: bool = False) -> MappingState:
        """Return the current state.

        Args:
            bypass_cache: Force a fresh read even if the cache is warm.

        Returns:
            The state.  Missing or unreadable files yield an empty state;
            nothing is written.
        """
        if (
            not bypass_cache
            and self._cache is not None
            and time.monotonic() - self._cached_at < self.cache_ttl
        ):
            return self._cache

        try:
            state = self._read()
        except CorruptStateError as exc:
            logger.warning(
                "Mapping file %s is unreadable (%s); starting from an empty state",
                self.path,
                exc,
            )
            state = MappingState()
        self._remember(state)
        return state

    def persist(self, state: MappingState) -> None:
        """Write *state* atomically under the file lock.

        Raises:
            LockTimeoutError: If the lock cannot be acquired.
        """
        with self._lock:
            write_json_atomic(self.path, state.to_dict())
        self._remember(state)
        logger.debug(
            "Persisted %d mapping(s) to %s", len(state), self.path
        )

    @contextmanager
    def transaction(self) -> Iterator[MappingState]:
        """Lock, load fresh, yield the state for mutation, then persist.

        Nothing is written if the body raises.

        Raises:
            LockTimeoutError: If the lock cannot be acquired.
        """
        with self._lock:
            state = self.load(bypass_cache=True)
            try:
                yield state
            except BaseException:
                self.clear_cache()
                raise
            self.persist(state)

    def clear_cache(self) -> None:
        self._cache = None

    # ------------------------------------------------------------------
    # Queries (served from cache when fresh)
    # ------------------------------------------------------------------

    def get_by_remote(self, remote_id: str) -> MappingEntry | None:
        return self.load().get_by_remote(remote_id)

    def get_by_local(self, local_id: str) -> list[MappingEntry]:
        return self.load().get_by_local(local_id)

    def list_all(self) -> list[MappingEntry]:
        return self.load().list_all()

    @property
    def last_sync_at(self) -> float | None:
        return self.load().last_sync_at

    # ------------------------------------------------------------------
    # Single-shot mutations (each one lock-guarded read-modify-write)
    # ------------------------------------------------------------------

    def upsert(
        self,
        remote_id: str,
        local_id: str,
        synced_at: float | None = None,
        local_hash: str | None = None,
    ) -> MappingEntry:
        with self.transaction() as state:
            return state.upsert(remote_id, local_id, synced_at, local_hash)

    def remove(self, remote_id: str) -> bool:
        with self.transaction() as state:
            return state.remove(remote_id)

    def remove_local(self, local_id: str) -> int:
        with self.transaction() as state:
            return state.remove_local(local_id)

    def prune_older_than(self, max_age: float = DEFAULT_PRUNE_AGE) -> int:
        """Drop entries older than *max_age* seconds; return the count."""
        with self.transaction() as state:
            removed = state.prune_older_than(max_age)
        if removed:
            logger.info("Pruned %d stale mapping(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read(self) -> MappingState:
        if not self.path.exists():
            return MappingState()
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise CorruptStateError(str(exc)) from exc
        return MappingState.from_dict(data)

    def _remember(self, state: MappingState) -> None:
        self._cache = state
        self._cached_at = time.monotonic()
