"""Ec2Instance reconciler - converges one declared resource with its EC2 instance.

Each pass evaluates, in priority order:

1. Deletion requested: terminate the instance, then release the finalizer.
2. Instance tracked in status: refresh the observed state, writing only on change.
3. Nothing tracked yet: add the finalizer (isolated write), then adopt or create
   the instance and record it in status (one write).

The finalizer is always persisted before a create is issued and removed only
after termination is confirmed, so a resource can never be deleted while it
still owns a live instance.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from opentelemetry import trace

from application.decorators import retry_on_concurrency_conflict
from application.services.instance_lifecycle_service import InstanceLifecycleService, build_instance_tags
from domain.entities.ec2_instance import Ec2Instance, Ec2InstanceStatus, ReconcileReference
from domain.enums import (
    ConditionReason,
    ConditionStatus,
    ConditionType,
    InstanceLifecycleState,
    ReconcilePhase,
)
from domain.repositories.ec2_instance_repository import Ec2InstanceRepository
from domain.services.spec_validation_service import SpecValidationService
from domain.value_object.condition import find_condition, set_condition
from integration.exceptions import EC2InstanceCreationException, EC2InvalidParameterException
from integration.models import Ec2InstanceSnapshotDto
from observability import metrics

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

StatusMutation = Callable[[Ec2InstanceStatus], bool]


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass.

    `requeue_after` asks for another pass after the given delay in seconds;
    None means the resource is stable until the next change notification.
    """

    requeue_after: float | None = None


def client_token_for(resource: Ec2Instance) -> str | None:
    """RunInstances idempotency token, renewed after every launch that died."""
    uid = resource.metadata.uid
    if not uid:
        return None
    attempts = resource.status.create_attempts
    return f"{uid}-{attempts}" if attempts else uid


def phase_of(resource: Ec2Instance) -> ReconcilePhase:
    if resource.is_being_deleted():
        return ReconcilePhase.DELETING if resource.has_finalizer() else ReconcilePhase.TERMINATED
    if resource.status.instance_id:
        return ReconcilePhase.ACTIVE
    if resource.has_finalizer():
        return ReconcilePhase.CREATING
    return ReconcilePhase.ABSENT


class Ec2InstanceReconciler:
    """Reconciles Ec2Instance resources against AWS EC2.

    Safe to call any number of times for the same resource, provided at most one
    call per resource runs at a time. Errors other than the normalized outcomes
    (instance not found, invalid spec, empty provisioning response) propagate so
    the caller can requeue with backoff.
    """

    def __init__(
        self,
        repository: Ec2InstanceRepository,
        lifecycle_service: InstanceLifecycleService,
        spec_validation_service: SpecValidationService | None = None,
        empty_create_requeue_seconds: float = 30.0,
    ):
        self._repository = repository
        self._lifecycle = lifecycle_service
        self._validator = spec_validation_service or SpecValidationService()
        self.empty_create_requeue_seconds = empty_create_requeue_seconds

    async def reconcile_async(self, reference: ReconcileReference, deadline: float | None = None) -> ReconcileResult:
        """Run one reconcile pass for a resource.

        Args:
            reference: Namespaced name of the resource.
            deadline: Optional event loop time by which the pass should finish;
                internal waits are shortened to honor it.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        with tracer.start_as_current_span("reconcile_ec2_instance") as span:
            span.set_attribute("k8s.resource", str(reference))
            outcome = "success"
            try:
                resource = await self._repository.get_async(reference)
                if resource is None:
                    log.debug(f"Ec2Instance {reference} no longer exists, nothing to reconcile")
                    return ReconcileResult()

                phase = phase_of(resource)
                span.set_attribute("reconcile.phase", phase.value)
                span.set_attribute("ec2.instance_id", resource.status.instance_id or "none")
                log.info(f"Reconciling Ec2Instance {reference} (phase={phase.value})")

                if resource.is_being_deleted():
                    return await self._reconcile_deletion(resource, deadline)
                if resource.status.instance_id:
                    return await self._reconcile_existing(resource)
                return await self._reconcile_creation(resource, deadline)
            except Exception:
                outcome = "error"
                metrics.reconcile_errors_total.add(1)
                raise
            finally:
                metrics.reconciles_total.add(1, {"outcome": outcome})
                metrics.reconcile_duration.record((loop.time() - started) * 1000)

    async def _reconcile_deletion(self, resource: Ec2Instance, deadline: float | None) -> ReconcileResult:
        reference = resource.reference()
        if not resource.has_finalizer():
            log.debug(f"Ec2Instance {reference} is being deleted without our finalizer, nothing to clean up")
            return ReconcileResult()

        region = resource.spec.region
        instance_ids = []
        if resource.status.instance_id:
            instance_ids.append(resource.status.instance_id)
        elif not self._validator.validate_region(region):
            # The create may have succeeded without its id ever reaching the status
            owned = await self._lifecycle.find_owned(region, resource.metadata.uid)
            if owned:
                log.warning(f"Ec2Instance {reference} owns untracked EC2 instance {owned.instance_id}, terminating it")
                instance_ids.append(owned.instance_id)

        for instance_id in instance_ids:
            # Raises on failure or timeout, leaving the finalizer in place
            await self._lifecycle.terminate(region, instance_id, deadline)

        await self._remove_finalizer(reference)
        log.info(f"Ec2Instance {reference} cleaned up, finalizer removed")
        return ReconcileResult()

    async def _reconcile_existing(self, resource: Ec2Instance) -> ReconcileResult:
        reference = resource.reference()
        instance_id = resource.status.instance_id
        exists, snapshot = await self._lifecycle.check_exists(resource.spec.region, instance_id)

        if exists and snapshot is not None:
            mutation = self._observed(snapshot)
        else:
            log.warning(f"EC2 instance {instance_id} tracked by Ec2Instance {reference} no longer exists")
            mutation = self._missing(instance_id)

        # Decide on a private copy first so that a steady state costs no write
        if not mutation(resource.clone().status):
            log.debug(f"Ec2Instance {reference} is up to date")
            return ReconcileResult()

        await self._update_status(reference, mutation)
        return ReconcileResult()

    async def _reconcile_creation(self, resource: Ec2Instance, deadline: float | None) -> ReconcileResult:
        reference = resource.reference()
        errors = self._validator.validate(resource.spec)
        if errors:
            message = "; ".join(errors)
            log.warning(f"Ec2Instance {reference} has an invalid spec: {message}")
            await self._update_status(reference, self._invalid_spec(message))
            return ReconcileResult()

        if not resource.has_finalizer():
            resource = await self._add_finalizer(reference)
            if resource is None:
                return ReconcileResult()
            if resource.is_being_deleted() or resource.status.instance_id:
                # Changed underneath us; start over from the fresh copy
                return ReconcileResult(requeue_after=0.0)

        spec = resource.spec
        try:
            owned = await self._lifecycle.find_owned(spec.region, resource.metadata.uid)
            if owned is not None:
                log.info(f"Adopting EC2 instance {owned.instance_id} (state={owned.state}) for Ec2Instance {reference}")
                if owned.state == InstanceLifecycleState.PENDING.value:
                    snapshot: Ec2InstanceSnapshotDto | None = await self._lifecycle.await_running(
                        spec.region, owned.instance_id, deadline
                    )
                else:
                    snapshot = owned
            else:
                snapshot = await self._lifecycle.create(
                    spec,
                    build_instance_tags(resource),
                    client_token=client_token_for(resource),
                    deadline=deadline,
                )
        except EC2InvalidParameterException as e:
            log.warning(f"AWS rejected the spec of Ec2Instance {reference}: {e}")
            await self._update_status(reference, self._invalid_spec(str(e)))
            return ReconcileResult()
        except EC2InstanceCreationException as e:
            # The dead instance keeps its client token, so the next launch must use a new one
            log.warning(f"Launch for Ec2Instance {reference} failed: {e}")
            await self._update_status(reference, self._launch_failed(resource.status.create_attempts, str(e)))
            raise

        if snapshot is None:
            log.warning(
                f"No instance reported for Ec2Instance {reference}, retrying in {self.empty_create_requeue_seconds}s"
            )
            return ReconcileResult(requeue_after=self.empty_create_requeue_seconds)

        await self._update_status(reference, self._created(snapshot))
        log.info(f"Ec2Instance {reference} is backed by EC2 instance {snapshot.instance_id} ({snapshot.state})")
        return ReconcileResult()

    @retry_on_concurrency_conflict()
    async def _add_finalizer(self, reference: ReconcileReference) -> Ec2Instance | None:
        resource = await self._repository.get_async(reference)
        if resource is None:
            return None
        if not resource.add_finalizer():
            return resource
        log.debug(f"Adding finalizer to Ec2Instance {reference}")
        return await self._repository.update_async(resource)

    @retry_on_concurrency_conflict()
    async def _remove_finalizer(self, reference: ReconcileReference) -> Ec2Instance | None:
        resource = await self._repository.get_async(reference)
        if resource is None:
            return None
        if not resource.remove_finalizer():
            return resource
        log.debug(f"Removing finalizer from Ec2Instance {reference}")
        return await self._repository.update_async(resource)

    @retry_on_concurrency_conflict()
    async def _update_status(self, reference: ReconcileReference, mutation: StatusMutation) -> Ec2Instance | None:
        resource = await self._repository.get_async(reference)
        if resource is None:
            return None
        if not mutation(resource.status):
            return resource
        log.debug(f"Updating status of Ec2Instance {reference}")
        return await self._repository.update_status_async(resource)

    @staticmethod
    def _observed(snapshot: Ec2InstanceSnapshotDto) -> StatusMutation:
        def mutate(status: Ec2InstanceStatus) -> bool:
            changed = _apply_snapshot(status, snapshot)
            changed |= _apply_ready(status, snapshot)
            missing = find_condition(status.conditions, ConditionType.INSTANCE_MISSING)
            if missing is not None and missing.status == ConditionStatus.TRUE.value:
                status.conditions, _ = set_condition(
                    status.conditions,
                    ConditionType.INSTANCE_MISSING,
                    ConditionStatus.FALSE,
                    ConditionReason.INSTANCE_FOUND.value,
                    f"Instance {snapshot.instance_id} is reachable again",
                )
                changed = True
            return changed

        return mutate

    @staticmethod
    def _missing(instance_id: str) -> StatusMutation:
        def mutate(status: Ec2InstanceStatus) -> bool:
            # Identifiers are kept on purpose: the resource is not recreated automatically
            message = f"Instance {instance_id} no longer exists in AWS"
            status.conditions, ready_changed = set_condition(
                status.conditions,
                ConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.INSTANCE_MISSING.value,
                message,
            )
            status.conditions, missing_changed = set_condition(
                status.conditions,
                ConditionType.INSTANCE_MISSING,
                ConditionStatus.TRUE,
                ConditionReason.INSTANCE_MISSING.value,
                message,
            )
            return ready_changed or missing_changed

        return mutate

    @staticmethod
    def _created(snapshot: Ec2InstanceSnapshotDto) -> StatusMutation:
        def mutate(status: Ec2InstanceStatus) -> bool:
            if status.instance_id and status.instance_id != snapshot.instance_id:
                # Another pass already recorded a different instance; keep the persisted one
                log.warning(
                    f"Status already tracks instance {status.instance_id}, not overwriting with {snapshot.instance_id}"
                )
                return False
            changed = _apply_snapshot(status, snapshot)
            changed |= _apply_ready(status, snapshot)
            status.conditions, spec_changed = set_condition(
                status.conditions,
                ConditionType.SPEC_VALID,
                ConditionStatus.TRUE,
                ConditionReason.SPEC_ACCEPTED.value,
                "",
            )
            return changed or spec_changed

        return mutate

    @staticmethod
    def _launch_failed(attempt: int, message: str) -> StatusMutation:
        def mutate(status: Ec2InstanceStatus) -> bool:
            if status.instance_id or status.create_attempts != attempt:
                return False
            status.create_attempts += 1
            status.conditions, _ = set_condition(
                status.conditions,
                ConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.INSTANCE_FAILED.value,
                message,
            )
            return True

        return mutate

    @staticmethod
    def _invalid_spec(message: str) -> StatusMutation:
        def mutate(status: Ec2InstanceStatus) -> bool:
            status.conditions, spec_changed = set_condition(
                status.conditions,
                ConditionType.SPEC_VALID,
                ConditionStatus.FALSE,
                ConditionReason.INVALID_SPEC.value,
                message,
            )
            status.conditions, ready_changed = set_condition(
                status.conditions,
                ConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.INVALID_SPEC.value,
                message,
            )
            return spec_changed or ready_changed

        return mutate


def _apply_snapshot(status: Ec2InstanceStatus, snapshot: Ec2InstanceSnapshotDto) -> bool:
    observed = (
        snapshot.instance_id,
        snapshot.state,
        snapshot.public_ip,
        snapshot.private_ip,
        snapshot.public_dns,
        snapshot.private_dns,
        snapshot.launch_time,
        list(snapshot.volume_ids),
    )
    persisted = (
        status.instance_id,
        status.state,
        status.public_ip,
        status.private_ip,
        status.public_dns,
        status.private_dns,
        status.launch_time,
        list(status.volume_ids),
    )
    if observed == persisted:
        return False
    (
        status.instance_id,
        status.state,
        status.public_ip,
        status.private_ip,
        status.public_dns,
        status.private_dns,
        status.launch_time,
        status.volume_ids,
    ) = observed
    return True


def _apply_ready(status: Ec2InstanceStatus, snapshot: Ec2InstanceSnapshotDto) -> bool:
    if snapshot.state == InstanceLifecycleState.RUNNING.value:
        status.conditions, changed = set_condition(
            status.conditions,
            ConditionType.READY,
            ConditionStatus.TRUE,
            ConditionReason.INSTANCE_RUNNING.value,
            f"Instance {snapshot.instance_id} is running",
        )
    else:
        status.conditions, changed = set_condition(
            status.conditions,
            ConditionType.READY,
            ConditionStatus.FALSE,
            ConditionReason.INSTANCE_NOT_RUNNING.value,
            f"Instance {snapshot.instance_id} is {snapshot.state}",
        )
    return changed
