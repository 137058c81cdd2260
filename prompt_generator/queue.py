"""In-memory rate-limited queue that serializes outbound requests."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from .errors import QueueClearedError

logger = logging.getLogger(__name__)


class QueueEntry:
    """A deferred unit of work and the future its caller is waiting on."""

    def __init__(
        self,
        action: Callable[[], Awaitable[Any]],
        future: asyncio.Future,
    ):
        self.action = action
        self.future = future

    def settle(self, result: Any = None, error: Optional[BaseException] = None):
        """Resolve the caller's future once. Later calls are ignored."""
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)


class RateLimitedQueue:
    """FIFO queue that runs one entry at a time with a minimum spacing.

    A single drain task pops entries and runs them. Before each release it
    waits until at least min_spacing_ms have passed since the previous release
    started.
    """

    def __init__(
        self,
        min_spacing_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_spacing_ms = min_spacing_ms
        self._clock = clock
        self._sleep = sleep
        self._entries: deque[QueueEntry] = deque()
        self._last_dispatch: Optional[float] = None
        self._drain_task: Optional[asyncio.Task] = None

    def enqueue(self, action: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        """Add work to the queue without waiting for it to run.

        Args:
            action: Zero-argument coroutine function

        Returns:
            Future resolved with the action's result or error
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._entries.append(QueueEntry(action, future))

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())

        return future

    def size(self) -> int:
        """Number of entries waiting to be dispatched."""
        return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def cancel_all(self) -> int:
        """Drop every pending entry and fail its future with QueueClearedError.

        Entries already running are left alone.

        Returns:
            Number of entries cleared
        """
        cleared = 0
        while self._entries:
            entry = self._entries.popleft()
            if not entry.future.done():
                entry.settle(error=QueueClearedError())
                cleared += 1

        if cleared:
            logger.info(f"Cleared {cleared} pending requests from queue")
        return cleared

    async def _wait_for_slot(self):
        if self._last_dispatch is None:
            return
        elapsed_ms = (self._clock() - self._last_dispatch) * 1000
        remaining_ms = self.min_spacing_ms - elapsed_ms
        if remaining_ms > 0:
            await self._sleep(remaining_ms / 1000)

    async def _drain(self):
        while self._entries:
            await self._wait_for_slot()

            # cancel_all() may have emptied the queue while we waited
            if not self._entries:
                break

            entry = self._entries.popleft()
            if entry.future.done():
                continue

            self._last_dispatch = self._clock()
            logger.debug(f"Dispatching request ({len(self._entries)} still queued)")

            try:
                result = await entry.action()
            except Exception as e:
                entry.settle(error=e)
            else:
                entry.settle(result=result)
