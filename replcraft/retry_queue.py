# =============================================================================
# ReplCraft Python Client -- Retry Queue
# =============================================================================
#
# Holds requests that failed with "out of fuel" while retry mode is on and
# resubmits them, oldest first, from a single background task.
#
# In-memory only; nothing survives a process restart.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ._logging import logger
from .constants import RETRY_DELAY
from .errors import CraftConnectionError


@dataclass
class RetryEntry:
    """A failed request waiting to be resubmitted.

    ``future`` is the caller's original future; it is settled by whichever
    resubmission finally succeeds or fails for a non-retryable reason.
    """

    payload: dict[str, Any]
    future: asyncio.Future[dict[str, Any]]
    enqueued_at: float = field(default=0.0)
    attempts: int = 0


class RetryQueue:
    """FIFO worker for out-of-fuel retries.

    Entries are re-queued ``delay`` seconds after their failure and drained
    one at a time in queue order.  The worker only waits for each
    resubmission to be *sent*; its response is matched by the dispatcher
    like any other, so a retry that runs out of fuel again lands back at the
    tail of this queue.

    Args:
        submit: Coroutine that resends an entry through the current
            connection, settling ``entry.future`` itself on failure.
        delay: Seconds between a failure and its enqueue.
        enabled: Whether out-of-fuel failures should be retried.
    """

    def __init__(
        self,
        submit: Callable[[RetryEntry], Awaitable[None]],
        *,
        delay: float = RETRY_DELAY,
        enabled: bool = False,
    ) -> None:
        self._submit = submit
        self.delay = delay
        self.enabled = enabled
        self._queue: asyncio.Queue[RetryEntry] = asyncio.Queue()
        # (due time, entry) in failure order; one timer releases the head
        self._delayed: deque[tuple[float, RetryEntry]] = deque()
        self._timer: asyncio.TimerHandle | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def size(self) -> int:
        """Entries waiting, including those still in their delay."""
        return self._queue.qsize() + len(self._delayed)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def defer(self, entry: RetryEntry) -> None:
        """Enqueue *entry* after ``delay`` seconds."""
        loop = asyncio.get_running_loop()
        self._delayed.append((loop.time() + self.delay, entry))
        if self._timer is None:
            self._timer = loop.call_at(self._delayed[0][0], self._release)
        logger.debug(
            "Out of fuel: retrying %s in %.1fs",
            entry.payload.get("action", "request"),
            self.delay,
        )

    def _release(self) -> None:
        self._timer = None
        loop = asyncio.get_running_loop()
        now = loop.time()
        while self._delayed and self._delayed[0][0] <= now:
            _, entry = self._delayed.popleft()
            self.put(entry)
        if self._delayed:
            self._timer = loop.call_at(self._delayed[0][0], self._release)

    def put(self, entry: RetryEntry) -> None:
        """Enqueue *entry* now."""
        entry.enqueued_at = asyncio.get_running_loop().time()
        self._queue.put_nowait(entry)
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        """Drain the queue forever, one resubmission at a time."""
        while True:
            entry = await self._queue.get()
            try:
                if entry.future.done():
                    # Caller gave up (cancelled) while it waited
                    continue
                entry.attempts += 1
                try:
                    await self._submit(entry)
                except Exception as exc:
                    logger.warning("Retry resubmission failed: %s", exc)
                    if not entry.future.done():
                        entry.future.set_exception(exc)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Stop the worker and fail everything still waiting."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        waiting: list[RetryEntry] = [entry for _, entry in self._delayed]
        self._delayed.clear()

        worker = self._worker
        self._worker = None
        if worker is not None:
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)

        while not self._queue.empty():
            waiting.append(self._queue.get_nowait())
            self._queue.task_done()

        for entry in waiting:
            if not entry.future.done():
                entry.future.set_exception(
                    CraftConnectionError("client closed before retry")
                )
        if waiting:
            logger.debug("Dropped %d pending retries", len(waiting))

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "delay_seconds": self.delay,
            "queued": self._queue.qsize(),
            "delayed": len(self._delayed),
            "running": self.running,
        }
