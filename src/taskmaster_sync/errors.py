"""Error taxonomy shared by the sync core, the remote client and the CLI.

Per-record errors (``ValidationError``, ``RemoteError`` and its transient
subclasses) are collected into reports and never abort a run.  Run-level
errors (``LockTimeoutError``, ``LocalStoreError``) propagate to the caller.
``CorruptStateError`` is raised internally by the mapping store and
downgraded to an empty state with a warning.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all taskmaster-sync errors."""


class ValidationError(SyncError):
    """A record or setting lacks a field required to sync it."""


class RemoteError(SyncError):
    """The remote API rejected a request and retrying will not help.

    Args:
        message: Human-readable description.
        status_code: HTTP status code when the failure came from HTTP.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteError):
    """Network failure or server-side error worth retrying."""


class RateLimitedError(TransientRemoteError):
    """The remote API asked us to slow down.

    Args:
        message: Human-readable description.
        retry_after: Seconds the server asked us to wait, if it said.
        status_code: HTTP status code (usually 429).
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        status_code: int | None = 429,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class LockTimeoutError(SyncError):
    """A file lock could not be acquired before its timeout."""


class CorruptStateError(SyncError):
    """The persisted mapping file could not be parsed."""


class LocalStoreError(SyncError):
    """The local task file could not be read or has an unexpected shape."""
