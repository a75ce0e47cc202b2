"""Per-endpoint request throttling.

A ``ThrottledDispatcher`` spaces out the *start* of outbound requests on one
logical endpoint without waiting for earlier responses, so many requests can
be in flight while sends still respect the configured rate.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ThrottledDispatcher:
    """Enforces a minimum interval between request initiations.

    Each instance owns its own clock, so independent migrations (or the
    registration and login endpoints of one migration) never share a
    throttle.
    """

    def __init__(
        self,
        requests_per_second: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize dispatcher.

        Args:
            requests_per_second: Maximum send rate; 0 or less disables throttling
            name: Endpoint label used in logs
            clock: Monotonic clock in seconds
            sleep: Awaitable sleep used to space sends
        """
        self.name = name
        self.requests_per_second = requests_per_second
        self._min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        # asyncio.Lock wakes waiters in FIFO order
        self._lock = asyncio.Lock()
        self._last_send: float | None = None
        self.dispatched = 0

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two sends."""
        return self._min_interval

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            if self._min_interval > 0 and self._last_send is not None:
                elapsed = self._clock() - self._last_send
                if elapsed < self._min_interval:
                    await self._sleep(self._min_interval - elapsed)
            self._last_send = self._clock()
            self.dispatched += 1

    async def dispatch(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Send ``fn()`` once its slot comes up and return its outcome.

        Only the slot reservation is serialized; the awaited response is not,
        and an error raised by ``fn`` only reaches this caller.
        """
        await self._wait_for_slot()
        return await fn()
