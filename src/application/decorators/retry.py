"""Conflict retry for read-modify-write cycles against the resource store."""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable

from integration.exceptions import ResourceConflictException
from observability import metrics

log = logging.getLogger(__name__)

StoreWrite = Callable[..., Awaitable[Any]]


def retry_on_concurrency_conflict(
    max_attempts: int = 5,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
) -> Callable[[StoreWrite], StoreWrite]:
    """Re-run a store write that lost an optimistic concurrency race.

    The wrapped coroutine must read the resource, apply its change and write it
    back within one call, so each attempt starts from the latest resourceVersion.
    Once `max_attempts` is reached the last conflict is raised to the caller.
    """

    def decorator(write: StoreWrite) -> StoreWrite:
        @wraps(write)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await write(*args, **kwargs)
                except ResourceConflictException as e:
                    metrics.store_conflicts.add(1, {"operation": write.__name__})
                    if attempt >= max_attempts:
                        log.warning(f"{write.__name__} still conflicting after {attempt} attempts: {e}")
                        raise
                    delay = initial_delay * backoff_factor ** (attempt - 1)
                    log.info(
                        f"{write.__name__} wrote a stale resourceVersion (attempt {attempt}/{max_attempts}), "
                        f"re-reading in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
