"""TaskMaster ``tasks.json`` access.

TaskMaster writes either ``{"tasks": [...], ...}`` (the usual layout, often
with a ``metadata`` key) or a bare list.  ``write_all`` keeps whichever
layout is on disk and every envelope key besides ``tasks``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ..errors import LocalStoreError
from ..file_handler import read_file_with_encoding, write_json_atomic
from .lock import DEFAULT_LOCK_TIMEOUT, FileLock

logger = logging.getLogger(__name__)

DEFAULT_TASKS_FILE = "tasks/tasks.json"


class LocalStore:
    """Read and atomically rewrite the local task collection.

    Args:
        path: Location of ``tasks.json``.
        lock_timeout: Seconds to wait for the file lock on write.
    """

    def __init__(
        self, path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    ) -> None:
        self.path = Path(path)
        self._lock = FileLock(self.path, timeout=lock_timeout)

    def read_all(self) -> list[dict]:
        """Return the tasks in file order.

        Returns:
            The task dicts; an empty list if the file does not exist.

        Raises:
            LocalStoreError: If the file is not valid JSON or has neither
                a ``tasks`` list nor a list root.
        """
        root = self._read_root()
        if root is None:
            return []
        return list(self._tasks_of(root))

    def write_all(self, records: list[dict]) -> None:
        """Replace the task collection with *records*.

        Takes the file lock, re-reads the current root to keep its
        envelope, then writes via temp file and ``os.replace()``.

        Raises:
            LockTimeoutError: If the lock cannot be acquired.
            LocalStoreError: If the existing file cannot be parsed.
        """
        with self._lock:
            root = self._read_root()
            if isinstance(root, dict):
                data = dict(root)
                data["tasks"] = list(records)
            else:
                data = list(records)
            write_json_atomic(self.path, data)
        logger.debug("Wrote %d task(s) to %s", len(records), self.path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_root(self) -> dict | list | None:
        if not self.path.exists():
            logger.debug("Tasks file %s not found; treating as empty", self.path)
            return None
        try:
            content, _encoding = read_file_with_encoding(self.path)
        except OSError as exc:
            raise LocalStoreError(f"Cannot read {self.path}: {exc}") from exc
        if not content.strip():
            return None
        try:
            root = json.loads(content)
        except ValueError as exc:
            raise LocalStoreError(
                f"Tasks file {self.path} is not valid JSON: {exc}"
            ) from exc
        self._tasks_of(root)
        return root

    def _tasks_of(self, root) -> list[dict]:
        if isinstance(root, list):
            tasks = root
        elif isinstance(root, dict) and isinstance(root.get("tasks"), list):
            tasks = root["tasks"]
        else:
            raise LocalStoreError(
                f"Tasks file {self.path} must hold a list or an object with a 'tasks' list"
            )
        if not all(isinstance(t, dict) for t in tasks):
            raise LocalStoreError(
                f"Tasks file {self.path} contains non-object tasks"
            )
        return tasks
