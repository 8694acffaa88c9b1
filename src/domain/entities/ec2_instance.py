"""Ec2Instance custom resource model.

Plain data structures mirroring the `compute.cloud.com/v1` `Ec2Instance` kind.
The spec is authored by users and never mutated by the controller; the status
is owned exclusively by the reconciler.
"""

import copy
from dataclasses import dataclass, field
from typing import Any

from domain.value_object.condition import Condition

API_GROUP = "compute.cloud.com"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
KIND = "Ec2Instance"
PLURAL = "ec2instances"

FINALIZER = "ec2instance.compute.cloud.com/finalizer"


@dataclass(frozen=True)
class ReconcileReference:
    """Namespaced identity of one Ec2Instance resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class VolumeConfig:
    size: int = 0
    type: str = ""
    device_name: str = ""
    encrypted: bool = False

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "VolumeConfig":
        data = data or {}
        return VolumeConfig(
            size=int(data.get("size") or 0),
            type=data.get("type", ""),
            device_name=data.get("deviceName", ""),
            encrypted=bool(data.get("encrypted", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "type": self.type,
            "deviceName": self.device_name,
            "encrypted": self.encrypted,
        }


@dataclass
class StorageConfig:
    root_volume: VolumeConfig = field(default_factory=VolumeConfig)
    additional_volumes: list[VolumeConfig] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "StorageConfig":
        data = data or {}
        return StorageConfig(
            root_volume=VolumeConfig.from_dict(data.get("rootVolume")),
            additional_volumes=[VolumeConfig.from_dict(v) for v in data.get("additionalVolumes") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rootVolume": self.root_volume.to_dict(),
            "additionalVolumes": [v.to_dict() for v in self.additional_volumes],
        }


@dataclass
class Ec2InstanceSpec:
    """Declared (desired) state of an EC2 instance."""

    instance_type: str = ""
    ami_id: str = ""
    region: str = ""
    availability_zone: str = ""
    key_pair: str = ""
    security_groups: list[str] = field(default_factory=list)
    subnet: str = ""
    user_data: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    storage: StorageConfig = field(default_factory=StorageConfig)
    associate_public_ip: bool = False

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Ec2InstanceSpec":
        data = data or {}
        return Ec2InstanceSpec(
            instance_type=data.get("instanceType", ""),
            ami_id=data.get("amiId", ""),
            region=data.get("region", ""),
            availability_zone=data.get("availabilityZone", ""),
            key_pair=data.get("keyPair", ""),
            security_groups=list(data.get("securityGroups") or []),
            subnet=data.get("subnet", ""),
            user_data=data.get("userData", ""),
            tags=dict(data.get("tags") or {}),
            storage=StorageConfig.from_dict(data.get("storage")),
            associate_public_ip=bool(data.get("associatePublicIP", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "instanceType": self.instance_type,
            "amiId": self.ami_id,
            "region": self.region,
            "availabilityZone": self.availability_zone,
            "keyPair": self.key_pair,
            "securityGroups": list(self.security_groups),
            "subnet": self.subnet,
            "userData": self.user_data,
            "tags": dict(self.tags),
            "storage": self.storage.to_dict(),
            "associatePublicIP": self.associate_public_ip,
        }


@dataclass
class Ec2InstanceStatus:
    """Observed state of the external instance, written only by the reconciler."""

    instance_id: str = ""
    state: str = ""
    public_ip: str = ""
    private_ip: str = ""
    public_dns: str = ""
    private_dns: str = ""
    launch_time: str = ""
    conditions: list[Condition] = field(default_factory=list)
    volume_ids: list[str] = field(default_factory=list)
    # Launches that died before reaching running; part of the RunInstances idempotency token
    create_attempts: int = 0

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Ec2InstanceStatus":
        data = data or {}
        return Ec2InstanceStatus(
            instance_id=data.get("instanceId", ""),
            state=data.get("state", ""),
            public_ip=data.get("publicIP", ""),
            private_ip=data.get("privateIP", ""),
            public_dns=data.get("publicDNS", ""),
            private_dns=data.get("privateDNS", ""),
            launch_time=data.get("launchTime") or "",
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            volume_ids=list(data.get("volumeIds") or []),
            create_attempts=int(data.get("createAttempts") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "instanceId": self.instance_id,
            "state": self.state,
            "publicIP": self.public_ip,
            "privateIP": self.private_ip,
            "publicDNS": self.public_dns,
            "privateDNS": self.private_dns,
            "conditions": [c.to_dict() for c in self.conditions],
            "volumeIds": list(self.volume_ids),
        }
        # launchTime is a nullable timestamp on the wire
        if self.launch_time:
            status["launchTime"] = self.launch_time
        if self.create_attempts:
            status["createAttempts"] = self.create_attempts
        return status


@dataclass
class ObjectMeta:
    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    deletion_timestamp: str | None = None
    finalizers: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ObjectMeta":
        return ObjectMeta(
            name=data.get("name", ""),
            namespace=data.get("namespace") or "default",
            uid=data.get("uid", ""),
            resource_version=data.get("resourceVersion", ""),
            generation=int(data.get("generation") or 0),
            deletion_timestamp=data.get("deletionTimestamp"),
            finalizers=list(data.get("finalizers") or []),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "finalizers": list(self.finalizers),
        }
        if self.uid:
            meta["uid"] = self.uid
        if self.resource_version:
            meta["resourceVersion"] = self.resource_version
        if self.generation:
            meta["generation"] = self.generation
        if self.deletion_timestamp:
            meta["deletionTimestamp"] = self.deletion_timestamp
        if self.labels:
            meta["labels"] = dict(self.labels)
        if self.annotations:
            meta["annotations"] = dict(self.annotations)
        return meta


@dataclass
class Ec2Instance:
    """The Ec2Instance custom resource."""

    metadata: ObjectMeta
    spec: Ec2InstanceSpec = field(default_factory=Ec2InstanceSpec)
    status: Ec2InstanceStatus = field(default_factory=Ec2InstanceStatus)
    # Object as read from the store; keeps fields this model does not know about
    source: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Ec2Instance":
        return Ec2Instance(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=Ec2InstanceSpec.from_dict(data.get("spec")),
            status=Ec2InstanceStatus.from_dict(data.get("status")),
            source=copy.deepcopy(data),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a full replace, overlaying the model onto the source object.

        The spec is written back exactly as it was read since the controller never
        changes it.
        """
        body = copy.deepcopy(self.source)
        body["apiVersion"] = API_GROUP_VERSION
        body["kind"] = KIND
        metadata = body.get("metadata") or {}
        metadata.update(self.metadata.to_dict())
        if not self.metadata.deletion_timestamp:
            metadata.pop("deletionTimestamp", None)
        body["metadata"] = metadata
        if "spec" not in body:
            body["spec"] = self.spec.to_dict()
        body["status"] = self.status.to_dict()
        return body

    def reference(self) -> ReconcileReference:
        return ReconcileReference(namespace=self.metadata.namespace, name=self.metadata.name)

    def is_being_deleted(self) -> bool:
        return bool(self.metadata.deletion_timestamp)

    def has_finalizer(self, finalizer: str = FINALIZER) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str = FINALIZER) -> bool:
        """Add the finalizer marker. Returns False when it was already present."""
        if self.has_finalizer(finalizer):
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str = FINALIZER) -> bool:
        """Remove the finalizer marker. Returns False when it was not present."""
        if not self.has_finalizer(finalizer):
            return False
        self.metadata.finalizers = [f for f in self.metadata.finalizers if f != finalizer]
        return True

    def clone(self) -> "Ec2Instance":
        return copy.deepcopy(self)
