"""Shared fixtures: an in-memory resource store and an in-memory EC2 backend."""

import asyncio
import copy
import itertools
from typing import Any, AsyncIterator

import pytest

from domain.entities.ec2_instance import API_GROUP_VERSION, FINALIZER, KIND, Ec2Instance, ReconcileReference
from domain.repositories.ec2_instance_repository import Ec2InstanceRepository, ResourceEvent
from integration.exceptions import EC2InstanceNotFoundException, ResourceConflictException
from integration.models import Ec2InstanceSnapshotDto


class InMemoryEc2InstanceRepository(Ec2InstanceRepository):
    """Versioned store behaving like the API server for the calls the controller makes.

    - Writes must carry the current resourceVersion, otherwise they conflict.
    - Main-resource writes ignore status; status writes ignore everything else.
    - An object marked for deletion disappears once its last finalizer is gone.
    """

    def __init__(self):
        self.objects: dict[ReconcileReference, dict[str, Any]] = {}
        self.events: asyncio.Queue = asyncio.Queue()
        self.update_calls = 0
        self.status_update_calls = 0
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    def put(
        self,
        name: str,
        spec: dict[str, Any],
        namespace: str = "default",
        status: dict[str, Any] | None = None,
        finalizers: list[str] | None = None,
        uid: str | None = None,
    ) -> ReconcileReference:
        reference = ReconcileReference(namespace=namespace, name=name)
        obj = {
            "apiVersion": API_GROUP_VERSION,
            "kind": KIND,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": uid or f"uid-{next(self._uids)}",
                "resourceVersion": str(next(self._versions)),
                "generation": 1,
                "finalizers": list(finalizers or []),
            },
            "spec": copy.deepcopy(spec),
        }
        if status is not None:
            obj["status"] = copy.deepcopy(status)
        self.objects[reference] = obj
        self.events.put_nowait(ResourceEvent("ADDED", reference))
        return reference

    def request_deletion(self, reference: ReconcileReference) -> None:
        obj = self.objects[reference]
        if not obj["metadata"].get("finalizers"):
            del self.objects[reference]
        else:
            obj["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
            self._bump(obj)
        self.events.put_nowait(ResourceEvent("MODIFIED", reference))

    def touch(self, reference: ReconcileReference) -> None:
        """Simulate a concurrent writer by bumping the stored resourceVersion."""
        self._bump(self.objects[reference])

    def raw(self, reference: ReconcileReference) -> dict[str, Any] | None:
        return self.objects.get(reference)

    async def get_async(self, reference: ReconcileReference) -> Ec2Instance | None:
        obj = self.objects.get(reference)
        return Ec2Instance.from_dict(copy.deepcopy(obj)) if obj is not None else None

    async def list_async(self) -> list[Ec2Instance]:
        return [Ec2Instance.from_dict(copy.deepcopy(obj)) for obj in self.objects.values()]

    async def update_async(self, entity: Ec2Instance) -> Ec2Instance:
        self.update_calls += 1
        reference = entity.reference()
        stored = self._check_version(entity)
        body = entity.to_dict()
        stored["metadata"]["finalizers"] = list(body["metadata"].get("finalizers", []))
        stored["metadata"]["labels"] = body["metadata"].get("labels", {})
        self._bump(stored)
        if stored["metadata"].get("deletionTimestamp") and not stored["metadata"]["finalizers"]:
            del self.objects[reference]
            self.events.put_nowait(ResourceEvent("DELETED", reference))
            return Ec2Instance.from_dict(copy.deepcopy(stored))
        self.events.put_nowait(ResourceEvent("MODIFIED", reference))
        return Ec2Instance.from_dict(copy.deepcopy(stored))

    async def update_status_async(self, entity: Ec2Instance) -> Ec2Instance:
        self.status_update_calls += 1
        stored = self._check_version(entity)
        stored["status"] = entity.to_dict()["status"]
        self._bump(stored)
        self.events.put_nowait(ResourceEvent("MODIFIED", entity.reference()))
        return Ec2Instance.from_dict(copy.deepcopy(stored))

    async def watch_async(self) -> AsyncIterator[ResourceEvent]:
        while True:
            yield await self.events.get()

    def _check_version(self, entity: Ec2Instance) -> dict[str, Any]:
        reference = entity.reference()
        stored = self.objects.get(reference)
        if stored is None:
            raise ResourceConflictException(f"{reference} no longer exists")
        if stored["metadata"]["resourceVersion"] != entity.metadata.resource_version:
            raise ResourceConflictException(
                f"{reference} resourceVersion {entity.metadata.resource_version} is stale "
                f"(current {stored['metadata']['resourceVersion']})"
            )
        return stored

    def _bump(self, obj: dict[str, Any]) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))


class FakeEc2Backend:
    """In-memory stand-in for AwsEc2Client with the same synchronous interface.

    Launched instances start `pending` and report `running` after
    `describes_until_running` describe calls, except the next `failing_launches`
    launches, which go straight to `terminated`. Termination is immediate unless
    `terminations_stuck` is set. Client tokens are honoured even for dead instances.
    """

    def __init__(self, describes_until_running: int = 1):
        self.instances: dict[str, dict[str, Any]] = {}
        self.run_calls: list[dict[str, Any]] = []
        self.terminate_calls: list[str] = []
        self.describes_until_running = describes_until_running
        self.terminations_stuck = False
        self.return_no_instance = False
        self.failing_launches = 0
        self._ids = itertools.count(1)
        self._tokens: dict[str, str] = {}

    def add_instance(self, state: str = "running", tags: dict[str, str] | None = None) -> str:
        instance_id = f"i-{next(self._ids):017x}"
        self.instances[instance_id] = {"state": state, "tags": dict(tags or {}), "describes": 0}
        return instance_id

    def live_instances(self) -> list[str]:
        return [i for i, data in self.instances.items() if data["state"] not in ("terminated", "shutting-down")]

    def describe_instances(self, region: str, instance_ids: list[str], states: list[str] | None = None):
        snapshots = []
        for instance_id in instance_ids:
            data = self.instances.get(instance_id)
            if data is None:
                raise EC2InstanceNotFoundException(f"Instance not found: {instance_id}")
            data["describes"] += 1
            if data["state"] == "pending" and data.get("doomed"):
                data["state"] = "terminated"
            if data["state"] == "pending" and data["describes"] >= self.describes_until_running:
                data["state"] = "running"
            snapshots.append(self._snapshot(instance_id))
        return snapshots

    def find_instances_by_tags(self, region: str, tags: dict[str, str], states: list[str] | None = None):
        return [
            self._snapshot(instance_id)
            for instance_id, data in self.instances.items()
            if all(data["tags"].get(k) == v for k, v in tags.items()) and (not states or data["state"] in states)
        ]

    def run_instance(self, spec, tags: dict[str, str], client_token: str | None = None):
        self.run_calls.append({"spec": spec, "tags": dict(tags), "client_token": client_token})
        if self.return_no_instance:
            return None
        if client_token and client_token in self._tokens:
            return self._snapshot(self._tokens[client_token])
        instance_id = self.add_instance(state="pending", tags=tags)
        if self.failing_launches:
            self.failing_launches -= 1
            self.instances[instance_id]["doomed"] = True
        if client_token:
            self._tokens[client_token] = instance_id
        return self._snapshot(instance_id)

    def terminate_instances(self, region: str, instance_ids: list[str]) -> dict[str, str]:
        result = {}
        for instance_id in instance_ids:
            data = self.instances.get(instance_id)
            if data is None:
                raise EC2InstanceNotFoundException(f"Instance not found: {instance_id}")
            self.terminate_calls.append(instance_id)
            data["state"] = "shutting-down" if self.terminations_stuck else "terminated"
            result[instance_id] = data["state"]
        return result

    def _snapshot(self, instance_id: str) -> Ec2InstanceSnapshotDto:
        data = self.instances[instance_id]
        running = data["state"] == "running"
        return Ec2InstanceSnapshotDto(
            instance_id=instance_id,
            state=data["state"],
            public_ip="203.0.113.10" if running else "",
            private_ip="10.0.0.10",
            public_dns="ec2-203-0-113-10.compute-1.amazonaws.com" if running else "",
            private_dns="ip-10-0-0-10.ec2.internal",
            launch_time="2024-01-01T00:00:00Z",
            volume_ids=["vol-0123456789abcdef0"],
            tags=dict(data["tags"]),
        )


def valid_spec(**overrides: Any) -> dict[str, Any]:
    spec = {
        "instanceType": "t3.micro",
        "amiId": "ami-0123456789abcdef0",
        "region": "us-east-1",
        "subnet": "subnet-0123456789abcdef0",
        "securityGroups": ["sg-0123456789abcdef0"],
        "keyPair": "dev-key",
        "tags": {"team": "platform"},
        "storage": {"rootVolume": {"size": 20, "type": "gp3"}},
    }
    spec.update(overrides)
    return spec


@pytest.fixture
def repository():
    return InMemoryEc2InstanceRepository()


@pytest.fixture
def ec2_backend():
    return FakeEc2Backend()


@pytest.fixture
def finalizer():
    return FINALIZER
