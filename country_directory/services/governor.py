"""
Request pacing for the remote directory API.

One governor is shared by every request a refresh makes, so the delay
between requests and the pause between batches hold globally no matter
how many tiers are in flight.
"""

import asyncio
from typing import Awaitable, Callable

from country_directory.utils.logging import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class RequestGovernor:
    """Spaces out remote requests: a short delay between requests and a
    longer pause after every ``batch_size`` requests."""

    def __init__(
        self,
        delay: float = 0.5,
        batch_size: int = 50,
        batch_pause: float = 30.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.delay = delay
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._count = 0

    @property
    def requests_made(self) -> int:
        return self._count

    def reset(self) -> None:
        """Start a new run. The first request after a reset is not delayed."""
        self._count = 0

    async def acquire(self) -> None:
        """Wait until the next request may be sent."""
        async with self._lock:
            if self._count:
                if self._count % self.batch_size == 0:
                    logger.info(
                        "Request batch complete, pausing",
                        requests=self._count,
                        pause_seconds=self.batch_pause,
                    )
                    await self._sleep(self.batch_pause)
                elif self.delay > 0:
                    await self._sleep(self.delay)
            self._count += 1

    def estimate_seconds(self, requests: int) -> float:
        """Lower bound on the wall time ``requests`` paced requests take."""
        if requests <= 1:
            return 0.0
        pauses = (requests - 1) // self.batch_size
        delays = requests - 1 - pauses
        return delays * self.delay + pauses * self.batch_pause
