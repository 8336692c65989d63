"""Cross-process file lock guarding the persisted stores.

The lock is a sibling file (``<target>.lock``) created with
``O_CREAT | O_EXCL``.  Its body records a per-instance lock id so a
holder never deletes a lock it does not own.  A lock file older than the
timeout is treated as abandoned and reclaimed; it is moved aside under a
unique name first, so two waiters cannot both remove it.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path

from ..errors import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0  # seconds
POLL_INTERVAL = 0.1  # seconds


class FileLock:
    """Named, timeout-bound, re-entrant lock backed by a lock file.

    Args:
        target: The file being protected.  The lock lives next to it.
        timeout: Seconds to wait before giving up.  Also the age after
            which an existing lock file counts as stale.
        poll_interval: Seconds between acquisition attempts.
    """

    def __init__(
        self,
        target: Path,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.lock_path = target.with_name(target.name + ".lock")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.lock_id = uuid.uuid4().hex
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(self) -> None:
        """Take the lock, waiting up to ``timeout`` seconds.

        Raises:
            LockTimeoutError: Another holder kept the lock past the timeout.
        """
        if self._depth:
            self._depth += 1
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(
                    self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY
                )
            except FileExistsError:
                if self._reclaim_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Could not acquire lock {self.lock_path} "
                        f"within {self.timeout:.1f}s"
                    ) from None
                time.sleep(self.poll_interval)
                continue

            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(
                    {
                        "lock_id": self.lock_id,
                        "pid": os.getpid(),
                        "acquired_at": time.time(),
                    },
                    fh,
                )
            self._depth = 1
            logger.debug("Acquired lock %s", self.lock_path)
            return

    def release(self) -> None:
        """Release one level of the lock; the file goes at depth zero."""
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return

        if self._read_owner() == self.lock_id:
            self._unlink_quietly()
            logger.debug("Released lock %s", self.lock_path)
        else:
            logger.warning(
                "Lock %s was reclaimed by another process before release",
                self.lock_path,
            )

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reclaim_stale(self) -> bool:
        """Remove the lock file if it is stale; return whether it went.

        The file is first renamed to a name only this instance uses, then
        compared with the stale file that was inspected.  If another
        waiter replaced it in between, the fresh lock is linked back.
        """
        try:
            seen = self.lock_path.stat()
        except FileNotFoundError:
            return False
        if time.time() - seen.st_mtime <= self.timeout:
            return False

        aside = self.lock_path.with_name(f"{self.lock_path.name}.{self.lock_id}")
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            return False
        try:
            moved = aside.stat()
            if (moved.st_ino, moved.st_mtime_ns) == (seen.st_ino, seen.st_mtime_ns):
                logger.warning(
                    "Reclaimed stale lock %s (older than %.1fs)",
                    self.lock_path,
                    self.timeout,
                )
                return True
            try:
                os.link(aside, self.lock_path)
            except FileExistsError:
                logger.warning(
                    "Lock %s was replaced while reclaiming it", self.lock_path
                )
            return False
        finally:
            aside.unlink(missing_ok=True)

    def _read_owner(self) -> str | None:
        try:
            with open(self.lock_path, encoding="utf-8") as fh:
                return json.load(fh).get("lock_id")
        except (OSError, ValueError, AttributeError):
            return None

    def _unlink_quietly(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
