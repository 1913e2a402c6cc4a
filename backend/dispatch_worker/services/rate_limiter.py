# dispatch_worker/services/rate_limiter.py

import asyncio
import logging
from collections import deque
from typing import Deque, Optional, Tuple

log = logging.getLogger(__name__)


class RateLimiter:
    """
    Spaces out requests to one external endpoint.

    Callers ``await acquire(min_interval_ms)`` and are released one at a
    time, in arrival order, so that consecutive releases are at least
    ``min_interval_ms`` apart. A single drain task runs while the queue is
    non-empty. There is no timeout: a waiter stays queued until released.
    """

    def __init__(self, name: str = "limiter"):
        self.name = name
        self._queue: Deque[Tuple[asyncio.Future, int]] = deque()
        self._last_release: Optional[float] = None
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def acquire(self, min_interval_ms: int) -> None:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._queue.append((waiter, min_interval_ms))

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())

        await waiter

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()

        while self._queue:
            waiter, min_interval_ms = self._queue.popleft()

            if self._last_release is not None:
                elapsed = loop.time() - self._last_release
                wait_s = min_interval_ms / 1000.0 - elapsed
                if wait_s > 0:
                    await asyncio.sleep(wait_s)

            self._last_release = loop.time()
            if not waiter.done():
                waiter.set_result(None)

        log.debug("[%s] queue drained", self.name)
