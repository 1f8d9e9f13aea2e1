"""
Async concurrency helpers

- SingleFlight: at most one in-flight coroutine per key, shared by all callers
- chunked: fixed-size slices for paced batch processing
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


class SingleFlight:
    """
    Coalesce concurrent calls for the same key

    The first caller starts the work as a task; later callers for the same
    key await that task. Work is shielded, so a caller that gives up
    (cancel/timeout) does not cancel it for everyone else and its
    bookkeeping still completes.

    Example:
        >>> flight = SingleFlight()
        >>> a, b = await asyncio.gather(
        ...     flight.run("WALCL", lambda: fetch("WALCL")),
        ...     flight.run("WALCL", lambda: fetch("WALCL")),
        ... )  # fetch() executed once
    """

    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def claim(self, key: str) -> asyncio.Future | None:
        """
        Reserve a key for a result produced elsewhere (e.g. a batch call)

        Returns a future the owner must resolve, or None if the key is
        already in flight. run() callers for the key await that future.
        """
        if key in self._inflight:
            return None
        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        future.add_done_callback(lambda f, k=key: self._forget(k, f))
        return future

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark exception retrieved when every waiter has already gone away
        if not task.cancelled():
            task.exception()


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Split a sequence into lists of at most `size` items

    Example:
        >>> list(chunked([1, 2, 3, 4, 5], 2))
        [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])
