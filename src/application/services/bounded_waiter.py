"""Bounded polling waiter shared by the create and terminate paths."""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

from integration.exceptions import EC2WaitTimeoutException

log = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedWaiter(Generic[T]):
    """Polls an async probe until it reports a result or the ceiling elapses.

    The probe returns None while the target condition is not met yet and any
    other value once it is. Probe exceptions propagate unchanged, and
    cancelling the awaiting task stops the wait immediately.
    """

    def __init__(self, description: str, max_duration: float, poll_interval: float):
        self.description = description
        self.max_duration = max_duration
        self.poll_interval = poll_interval

    def effective_ceiling(self, deadline: float | None = None) -> float:
        """Return the wait ceiling in seconds, shortened by a caller deadline (event loop time)."""
        ceiling = self.max_duration
        if deadline is not None:
            ceiling = min(ceiling, deadline - asyncio.get_running_loop().time())
        return max(ceiling, 0.0)

    async def wait(self, probe: Callable[[], Awaitable[T | None]], deadline: float | None = None) -> T:
        """Run the probe until it returns a value.

        At least one probe is always made, even when the deadline already passed.

        Raises:
            EC2WaitTimeoutException: If the ceiling elapsed before the probe succeeded.
        """
        loop = asyncio.get_running_loop()
        ceiling = self.effective_ceiling(deadline)
        expires_at = loop.time() + ceiling
        attempts = 0

        while True:
            attempts += 1
            result = await probe()
            if result is not None:
                log.debug(f"{self.description}: condition met after {attempts} attempt(s)")
                return result

            remaining = expires_at - loop.time()
            if remaining <= 0:
                raise EC2WaitTimeoutException(
                    f"{self.description}: condition not met within {ceiling:.0f}s ({attempts} attempt(s))"
                )
            await asyncio.sleep(min(self.poll_interval, remaining))
