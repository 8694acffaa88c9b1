"""EC2 instance lifecycle operations.

Each operation pairs one provider call with a bounded wait on the outcome:

- check_exists: is the tracked instance still alive?
- create: launch one instance and wait until it is running
- terminate: terminate an instance and wait until it is terminated

Blocking boto3 calls run in worker threads so that a wait on one resource
never stalls reconciliations of other resources.
"""

import asyncio
import logging

from opentelemetry import trace

from application.services.bounded_waiter import BoundedWaiter
from domain.entities.ec2_instance import Ec2Instance, Ec2InstanceSpec
from domain.enums import InstanceLifecycleState
from integration.exceptions import EC2InstanceCreationException, EC2InstanceNotFoundException
from integration.models import Ec2InstanceSnapshotDto
from integration.services.aws_ec2_api_client import AwsEc2Client
from observability import metrics

log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TAG_PREFIX = "ec2-operator/"
MANAGED_TAG = f"{TAG_PREFIX}managed"
RESOURCE_UID_TAG = f"{TAG_PREFIX}resource-uid"
NAMESPACE_TAG = f"{TAG_PREFIX}namespace"
NAME_TAG = f"{TAG_PREFIX}name"

LIVE_STATES = [
    InstanceLifecycleState.PENDING.value,
    InstanceLifecycleState.RUNNING.value,
    InstanceLifecycleState.STOPPING.value,
    InstanceLifecycleState.STOPPED.value,
]


def build_instance_tags(resource: Ec2Instance) -> dict[str, str]:
    """Tags applied to a provisioned instance.

    The resource UID tag lets a later reconcile find and adopt an instance whose
    id never made it into the resource status. User tags cannot override the
    ownership tags.
    """
    tags = {"Name": resource.metadata.name}
    tags.update({k: v for k, v in resource.spec.tags.items() if not k.startswith(TAG_PREFIX)})
    tags.update(
        {
            MANAGED_TAG: "true",
            RESOURCE_UID_TAG: resource.metadata.uid,
            NAMESPACE_TAG: resource.metadata.namespace,
            NAME_TAG: resource.metadata.name,
        }
    )
    return tags


class InstanceLifecycleService:
    """Existence check, create-and-await-running and terminate-and-await-terminated."""

    def __init__(
        self,
        aws_ec2_client: AwsEc2Client,
        create_wait_timeout: float = 180.0,
        create_poll_interval: float = 15.0,
        terminate_wait_timeout: float = 300.0,
        terminate_poll_interval: float = 10.0,
    ):
        self._aws_client = aws_ec2_client
        self._running_waiter: BoundedWaiter[Ec2InstanceSnapshotDto] = BoundedWaiter(
            "Wait for instance running", create_wait_timeout, create_poll_interval
        )
        self._terminated_waiter: BoundedWaiter[bool] = BoundedWaiter(
            "Wait for instance terminated", terminate_wait_timeout, terminate_poll_interval
        )

    async def check_exists(self, region: str, instance_id: str) -> tuple[bool, Ec2InstanceSnapshotDto | None]:
        """Report whether an instance exists and is alive.

        An unknown instance id is a normal "absent" outcome, not an error, and
        instances already terminated or shutting down count as absent.

        Returns:
            (True, snapshot) for a live instance, (False, None) otherwise.
        """
        if not instance_id:
            return False, None

        with tracer.start_as_current_span("check_ec2_instance_exists") as span:
            span.set_attribute("ec2.instance_id", instance_id)
            try:
                snapshots = await asyncio.to_thread(self._aws_client.describe_instances, region, [instance_id])
            except EC2InstanceNotFoundException:
                log.info(f"EC2 instance {instance_id} not found in region {region}")
                span.set_attribute("ec2.exists", False)
                return False, None

            for snapshot in snapshots:
                if InstanceLifecycleState.is_alive(snapshot.state):
                    span.set_attribute("ec2.exists", True)
                    span.set_attribute("ec2.state", snapshot.state)
                    return True, snapshot

            span.set_attribute("ec2.exists", False)
            return False, None

    async def find_owned(self, region: str, resource_uid: str) -> Ec2InstanceSnapshotDto | None:
        """Find a live instance tagged as belonging to the given resource."""
        if not resource_uid:
            return None
        snapshots = await asyncio.to_thread(
            self._aws_client.find_instances_by_tags,
            region,
            {RESOURCE_UID_TAG: resource_uid},
            LIVE_STATES,
        )
        if len(snapshots) > 1:
            log.warning(
                f"Found {len(snapshots)} live instances owned by resource {resource_uid}: "
                f"{[s.instance_id for s in snapshots]}"
            )
        return snapshots[0] if snapshots else None

    async def create(
        self,
        spec: Ec2InstanceSpec,
        tags: dict[str, str],
        client_token: str | None = None,
        deadline: float | None = None,
    ) -> Ec2InstanceSnapshotDto | None:
        """Launch one instance and wait for it to be running.

        Returns:
            Snapshot of the running instance with its addressing fields, or None
            when AWS accepted the request without returning an instance.

        Raises:
            EC2WaitTimeoutException: If the instance did not reach running in time.
        """
        with tracer.start_as_current_span("create_ec2_instance") as span:
            span.set_attribute("ec2.region", spec.region)
            span.set_attribute("ec2.instance_type", spec.instance_type)
            log.info(f"Creating EC2 instance: ami={spec.ami_id}, instance_type={spec.instance_type}, region={spec.region}")

            accepted = await asyncio.to_thread(self._aws_client.run_instance, spec, tags, client_token)
            if accepted is None:
                log.warning("No instances returned by RunInstances, nothing to report")
                return None

            span.set_attribute("ec2.instance_id", accepted.instance_id)
            metrics.instances_created.add(1, {"region": spec.region})
            return await self.await_running(spec.region, accepted.instance_id, deadline)

    async def await_running(
        self,
        region: str,
        instance_id: str,
        deadline: float | None = None,
    ) -> Ec2InstanceSnapshotDto:
        """Wait for an instance to be running, then read its addressing fields.

        Raises:
            EC2WaitTimeoutException: If the instance did not reach running in time.
            EC2InstanceCreationException: If the instance terminated while starting.
        """

        async def probe() -> Ec2InstanceSnapshotDto | None:
            try:
                snapshots = await asyncio.to_thread(self._aws_client.describe_instances, region, [instance_id])
            except EC2InstanceNotFoundException:
                # DescribeInstances is eventually consistent right after RunInstances
                return None
            for snapshot in snapshots:
                if snapshot.state == InstanceLifecycleState.RUNNING.value:
                    return snapshot
                if not InstanceLifecycleState.is_alive(snapshot.state):
                    raise EC2InstanceCreationException(
                        f"EC2 instance {instance_id} entered state '{snapshot.state}' before running"
                    )
            return None

        log.info(f"Waiting for EC2 instance {instance_id} to be running")
        await self._running_waiter.wait(probe, deadline)

        # Public/private addressing is filled in asynchronously; read it once more
        snapshots = await asyncio.to_thread(self._aws_client.describe_instances, region, [instance_id])
        if not snapshots:
            raise EC2InstanceNotFoundException(f"EC2 instance {instance_id} vanished after reaching running")
        snapshot = snapshots[0]
        log.info(
            f"EC2 instance {snapshot.instance_id} is {snapshot.state}: "
            f"public_ip={snapshot.public_ip or 'none'}, private_ip={snapshot.private_ip or 'none'}"
        )
        return snapshot

    async def terminate(self, region: str, instance_id: str, deadline: float | None = None) -> bool:
        """Terminate an instance and wait until AWS reports it terminated.

        An instance AWS no longer knows is treated as already terminated.

        Returns:
            True once termination is confirmed.

        Raises:
            EC2WaitTimeoutException: If the instance was still not terminated at the
                ceiling; the caller must keep tracking it and retry.
        """
        with tracer.start_as_current_span("terminate_ec2_instance") as span:
            span.set_attribute("ec2.instance_id", instance_id)
            log.info(f"Terminating EC2 instance {instance_id} in region {region}")
            try:
                await asyncio.to_thread(self._aws_client.terminate_instances, region, [instance_id])
            except EC2InstanceNotFoundException:
                log.info(f"EC2 instance {instance_id} not found, treating as terminated")
                span.set_attribute("ec2.already_terminated", True)
                return True

            async def probe() -> bool | None:
                try:
                    snapshots = await asyncio.to_thread(self._aws_client.describe_instances, region, [instance_id])
                except EC2InstanceNotFoundException:
                    return True
                if all(s.state == InstanceLifecycleState.TERMINATED.value for s in snapshots):
                    return True
                return None

            await self._terminated_waiter.wait(probe, deadline)
            log.info(f"EC2 instance {instance_id} terminated")
            metrics.instances_terminated.add(1, {"region": region})
            return True
