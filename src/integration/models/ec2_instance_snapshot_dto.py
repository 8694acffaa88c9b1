"""Data Transfer Object for an observed EC2 instance."""

import datetime
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Ec2InstanceSnapshotDto:
    """Point-in-time view of an EC2 instance as reported by DescribeInstances.

    Addressing fields are populated asynchronously by AWS and are absent for
    instances in private subnets; they are represented as empty strings.

    Attributes:
        instance_id: AWS EC2 instance ID (e.g., 'i-1234567890abcdef0')
        state: Lifecycle state (pending, running, stopping, stopped, shutting-down, terminated)
        public_ip: Public IPv4 address, if any
        private_ip: Private IPv4 address within the VPC
        public_dns: Public DNS name, if any
        private_dns: Private DNS name
        launch_time: Launch timestamp in RFC 3339 (UTC), if known
        volume_ids: EBS volume IDs attached to the instance
        tags: Dictionary of tags attached to the instance
    """

    instance_id: str
    state: str
    public_ip: str = ""
    private_ip: str = ""
    public_dns: str = ""
    private_dns: str = ""
    launch_time: str = ""
    volume_ids: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_describe(instance: dict[str, Any]) -> "Ec2InstanceSnapshotDto":
        """Build a snapshot from one `Reservations[].Instances[]` entry."""
        launch_time = instance.get("LaunchTime")
        if isinstance(launch_time, datetime.datetime):
            if launch_time.tzinfo is not None:
                launch_time = launch_time.astimezone(datetime.timezone.utc)
            launch_time = launch_time.replace(microsecond=0, tzinfo=None).isoformat() + "Z"

        volume_ids = [
            mapping["Ebs"]["VolumeId"]
            for mapping in instance.get("BlockDeviceMappings", [])
            if mapping.get("Ebs", {}).get("VolumeId")
        ]

        return Ec2InstanceSnapshotDto(
            instance_id=instance["InstanceId"],
            state=instance.get("State", {}).get("Name", ""),
            public_ip=instance.get("PublicIpAddress") or "",
            private_ip=instance.get("PrivateIpAddress") or "",
            public_dns=instance.get("PublicDnsName") or "",
            private_dns=instance.get("PrivateDnsName") or "",
            launch_time=launch_time or "",
            volume_ids=volume_ids,
            tags={tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])},
        )
