"""Micro-batching of GraphQL mutations.

Independent mutations are queued with ``enqueue()``, which returns a
``concurrent.futures.Future``.  ``flush()`` (explicit, or automatic once
``max_batch_size`` mutations are queued) renders them into one aliased
document::

    mutation Batch($board_id_0: ID!, ..., $board_id_1: ID!, ...) {
      op_0: create_item(board_id: $board_id_0, ...) { id name }
      op_1: change_multiple_column_values(...) { id name }
    }

Each operation's variables carry an ``_{index}`` suffix so they cannot
collide, and ``op_{index}`` in the response resolves the matching future.
If the request itself fails, every future in that batch receives the
same exception.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future

from ..core.graphql import Mutation, build_document
from ..errors import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 10


class MutationBatcher:
    """Queue of (mutation, future) pairs flushed as one request.

    Args:
        execute: ``execute(query, variables) -> data`` performing one
            GraphQL round trip (normally ``MondayClient.execute_query``).
        max_batch_size: Queue length that triggers an automatic flush.
    """

    def __init__(
        self,
        execute: Callable[[str, dict], dict],
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self._execute = execute
        self.max_batch_size = max_batch_size
        self._queue: list[tuple[Mutation, Future]] = []

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, mutation: Mutation) -> Future:
        """Queue *mutation*; the future resolves to its result dict."""
        future: Future = Future()
        self._queue.append((mutation, future))
        if len(self._queue) >= self.max_batch_size:
            self.flush()
        return future

    def flush(self) -> int:
        """Send everything queued as one request.

        Returns:
            Number of mutations sent.
        """
        batch, self._queue = self._queue, []
        if not batch:
            return 0

        query, variables = build_document([m for m, _ in batch])
        logger.debug("Flushing %d batched mutation(s)", len(batch))
        try:
            data = self._execute(query, variables)
        except Exception as exc:
            logger.error(
                "Batched request of %d mutation(s) failed: %s",
                len(batch),
                exc,
            )
            for _, future in batch:
                future.set_exception(exc)
            return len(batch)

        data = data or {}
        for index, (mutation, future) in enumerate(batch):
            result = data.get(mutation.alias(index))
            if result is None:
                future.set_exception(
                    RemoteError(
                        f"No result for batched {mutation.operation} "
                        f"(operation {index})"
                    )
                )
            else:
                future.set_result(result)
        return len(batch)

    def __enter__(self) -> MutationBatcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.flush()
