from .ec2_instance_snapshot_dto import Ec2InstanceSnapshotDto

__all__ = ["Ec2InstanceSnapshotDto"]
