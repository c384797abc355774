"""Batch cursor protocol.

Two traversal styles over a paginated set:

* forward: the window start advances by the number of items returned and
  the walk ends on the first empty batch;
* destructive: the window start stays pinned because the handler removes
  the items it is given, so the remaining items shift back into the same
  window. The caller may pass ``done_if`` for end conditions an empty batch
  cannot express, such as one irremovable item left in the set.

Windows are inclusive: ``fetch(start, stop)`` returns the items at positions
``start`` through ``stop``.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

FetchFn = Callable[[int, int], Awaitable[list[Any]]]
DoneIfFn = Callable[[int, int, list[Any]], bool]


class BatchCursor:
    """Forward, non-destructive cursor.

    Usage:
        cursor = BatchCursor(fetch, batch_size=500)
        while not cursor.exhausted:
            items = await cursor.next_batch()

        # or
        async for items in BatchCursor(fetch, 500):
            ...
    """

    def __init__(self, fetch: FetchFn, batch_size: int, start: int = 0):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._fetch = fetch
        self.batch_size = batch_size
        self.position = start
        self.exhausted = False

    async def next_batch(self) -> list[Any]:
        """Fetch the next window and advance by the number of items returned."""
        if self.exhausted:
            return []

        items = await self._fetch(self.position, self.position + self.batch_size - 1)
        if not items:
            self.exhausted = True
            return []

        self.position += len(items)
        return items

    def __aiter__(self) -> "BatchCursor":
        return self

    async def __anext__(self) -> list[Any]:
        items = await self.next_batch()
        if not items:
            raise StopAsyncIteration
        return items


async def iterate_batches(fetch: FetchFn, batch_size: int) -> AsyncIterator[list[Any]]:
    """Yield successive non-empty batches from a forward cursor."""
    async for items in BatchCursor(fetch, batch_size):
        yield items


async def process_destructive(
    fetch: FetchFn,
    handler: Callable[[Any], Awaitable[None]],
    batch_size: int,
    always_start_at: int = 0,
    done_if: DoneIfFn | None = None,
) -> int:
    """Walk a set that shrinks as its items are handled.

    Items of each batch are handed to ``handler`` one at a time, in order.
    The walk stops when a batch is empty, when ``done_if(start, stop, items)``
    holds for a fetched batch, or when a batch comes back identical to the
    previous one (the handler removed nothing, so another pass would not
    make progress).

    Args:
        fetch: Async callable returning the items in the inclusive window
        handler: Async callable processing (usually removing) one item
        batch_size: Window size
        always_start_at: Pinned window start
        done_if: Optional termination predicate

    Returns:
        Number of batches processed
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    start = always_start_at
    stop = start + batch_size - 1
    previous: list[Any] | None = None
    batches = 0

    while True:
        items = await fetch(start, stop)
        if not items:
            break
        if done_if is not None and done_if(start, stop, items):
            break
        if previous is not None and items == previous:
            logger.warning(
                "destructive_cursor_stalled",
                start=start,
                stop=stop,
                items=len(items),
            )
            break

        for item in items:
            await handler(item)

        batches += 1
        previous = items

    return batches
