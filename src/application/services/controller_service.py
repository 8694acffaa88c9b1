"""Ec2Instance Controller Service - watch, queue and reconcile workers."""

import asyncio
import logging

from application.services.ec2_instance_reconciler import Ec2InstanceReconciler
from application.services.reconcile_queue import ReconcileQueue
from application.settings import Settings
from domain.entities.ec2_instance import ReconcileReference
from domain.repositories.ec2_instance_repository import Ec2InstanceRepository

logger = logging.getLogger(__name__)

WATCH_RESTART_DELAY_SECONDS = 5


class ControllerService:
    """
    Ec2Instance controller service.

    Handles:
    - Watching Ec2Instance resources and queueing every change
    - Periodic resync of all resources to catch drift in AWS
    - A bounded pool of workers running the reconciler, one resource at a time
    - Requeue with exponential backoff on errors, or after the requested delay
    """

    def __init__(
        self,
        repository: Ec2InstanceRepository,
        reconciler: Ec2InstanceReconciler,
        settings: Settings,
    ):
        self.repository = repository
        self.reconciler = reconciler
        self.settings = settings
        self.queue = ReconcileQueue(
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        )
        self._running = False
        self._synced = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_ready(self) -> bool:
        """True once the controller is running and has listed all resources at least once."""
        return self._running and self._synced

    async def start_async(self):
        """Start the controller service."""
        self._running = True
        workers = max(1, self.settings.max_concurrent_reconciles)

        logger.info(f"Starting Ec2Instance controller with {workers} worker(s)")
        self._tasks.append(asyncio.create_task(self._run_resync_loop()))
        self._tasks.append(asyncio.create_task(self._run_watch_loop()))
        for index in range(workers):
            self._tasks.append(asyncio.create_task(self._run_worker(index)))

    async def stop_async(self):
        """Stop the controller service."""
        self._running = False
        self.queue.shutdown()

        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        logger.info("Controller service stopped")

    async def resync_async(self) -> int:
        """Queue every watched resource for reconciliation.

        Returns:
            The number of resources queued.
        """
        resources = await self.repository.list_async()
        for resource in resources:
            self.queue.add(resource.reference())
        self._synced = True
        logger.debug(f"Resync queued {len(resources)} Ec2Instance resource(s)")
        return len(resources)

    async def process_async(self, reference: ReconcileReference):
        """Reconcile one resource and decide whether and when to requeue it."""
        timeout = self.settings.reconcile_timeout_seconds
        deadline = asyncio.get_running_loop().time() + timeout
        try:
            result = await asyncio.wait_for(self.reconciler.reconcile_async(reference, deadline), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            delay = self.queue.add_rate_limited(reference)
            logger.error(
                f"Error reconciling Ec2Instance {reference} "
                f"(attempt {self.queue.num_requeues(reference)}), retrying in {delay:.1f}s: {e}"
            )
            return

        self.queue.forget(reference)
        if result.requeue_after is not None:
            logger.debug(f"Requeueing Ec2Instance {reference} in {result.requeue_after}s")
            self.queue.add_after(reference, result.requeue_after)

    async def _run_worker(self, index: int):
        logger.debug(f"Reconcile worker {index} started")
        while self._running:
            reference = await self.queue.get()
            if reference is None:
                break
            try:
                await self.process_async(reference)
            finally:
                self.queue.done(reference)
        logger.debug(f"Reconcile worker {index} stopped")

    async def _run_watch_loop(self):
        """Queue a reconcile for every change notification, restarting the watch on errors."""
        logger.info("Starting Ec2Instance watch")

        while self._running:
            try:
                async for event in self.repository.watch_async():
                    logger.debug(f"Ec2Instance {event.reference} {event.type}")
                    self.queue.add(event.reference)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error watching Ec2Instance resources: {e}")
                await asyncio.sleep(WATCH_RESTART_DELAY_SECONDS)

        logger.info("Ec2Instance watch stopped")

    async def _run_resync_loop(self):
        """List every resource on start and then periodically."""
        while self._running:
            try:
                await self.resync_async()
                await asyncio.sleep(self.settings.resync_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error listing Ec2Instance resources: {e}")
                await asyncio.sleep(WATCH_RESTART_DELAY_SECONDS)
