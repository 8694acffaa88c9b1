"""Domain entities package."""

from .ec2_instance import Ec2Instance, Ec2InstanceSpec, Ec2InstanceStatus, ObjectMeta, ReconcileReference

__all__ = ["Ec2Instance", "Ec2InstanceSpec", "Ec2InstanceStatus", "ObjectMeta", "ReconcileReference"]
