"""Deduplicating work queue for reconcile requests."""

import asyncio
import logging

from domain.entities.ec2_instance import ReconcileReference

log = logging.getLogger(__name__)


class ReconcileQueue:
    """Work queue guaranteeing one in-flight reconcile per resource.

    A reference is queued at most once. A reference added while it is being
    processed is parked and queued again when `done` is called, so the same
    resource is never handed to two workers at the same time and no request
    is lost.

    Failed references are requeued with exponential backoff through
    `add_rate_limited` until `forget` resets them.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._ready: asyncio.Queue[ReconcileReference | None] = asyncio.Queue()
        self._dirty: set[ReconcileReference] = set()
        self._processing: set[ReconcileReference] = set()
        self._failures: dict[ReconcileReference, int] = {}
        self._timers: dict[ReconcileReference, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, reference: ReconcileReference) -> None:
        """Queue a reference unless it is already waiting."""
        if self._shutting_down or reference in self._dirty:
            return
        self._dirty.add(reference)
        if reference in self._processing:
            return
        self._ready.put_nowait(reference)

    def add_after(self, reference: ReconcileReference, delay: float) -> None:
        """Queue a reference once `delay` seconds have elapsed.

        When a delayed add is already scheduled for the reference, the earlier
        of the two wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(reference)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(reference)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[reference] = loop.call_at(when, self._fire, reference)

    def add_rate_limited(self, reference: ReconcileReference) -> float:
        """Requeue a failed reference with exponential backoff.

        Returns:
            The delay in seconds before the reference is queued again.
        """
        failures = self._failures.get(reference, 0)
        self._failures[reference] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(reference, delay)
        return delay

    def forget(self, reference: ReconcileReference) -> None:
        """Reset the backoff of a reference after a successful reconcile."""
        self._failures.pop(reference, None)

    def num_requeues(self, reference: ReconcileReference) -> int:
        return self._failures.get(reference, 0)

    async def get(self) -> ReconcileReference | None:
        """Wait for the next reference to process.

        Returns:
            The reference, now marked as processing, or None once the queue is shut down.
        """
        if self._shutting_down:
            return None
        reference = await self._ready.get()
        if reference is None or self._shutting_down:
            # Pass the wakeup on to the next waiting worker
            self._ready.put_nowait(None)
            return None
        self._processing.add(reference)
        self._dirty.discard(reference)
        return reference

    def done(self, reference: ReconcileReference) -> None:
        """Mark a reference as processed, queueing it again if it was re-added meanwhile."""
        self._processing.discard(reference)
        if reference in self._dirty and not self._shutting_down:
            self._ready.put_nowait(reference)

    def shutdown(self) -> None:
        """Stop handing out work and drop pending delayed adds."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._ready.put_nowait(None)
        log.debug("Reconcile queue shut down")

    def _fire(self, reference: ReconcileReference) -> None:
        self._timers.pop(reference, None)
        self.add(reference)
