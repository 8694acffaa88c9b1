from enum import Enum


class InstanceLifecycleState(str, Enum):
    """AWS EC2 instance lifecycle states."""
    PENDING = "pending"  # Instance is being launched
    RUNNING = "running"  # Instance is running
    STOPPING = "stopping"  # Instance is being stopped
    STOPPED = "stopped"  # Instance is stopped
    SHUTTING_DOWN = "shutting-down"  # Instance is being terminated
    TERMINATED = "terminated"  # Instance is terminated

    @classmethod
    def is_alive(cls, state: str | None) -> bool:
        """Terminated and shutting-down instances are never considered alive."""
        return state not in (cls.TERMINATED.value, cls.SHUTTING_DOWN.value)


class ReconcilePhase(str, Enum):
    """Convergence phases of an Ec2Instance resource."""
    ABSENT = "Absent"  # No instance id, no deletion requested
    CREATING = "Creating"  # Finalizer present, create in flight
    ACTIVE = "Active"  # Instance id recorded, last known state non-terminal
    DELETING = "Deleting"  # Deletion timestamp set
    TERMINATED = "Terminated"  # Finalizer removed


class ConditionType(str, Enum):
    READY = "Ready"
    SPEC_VALID = "SpecValid"
    INSTANCE_MISSING = "InstanceMissing"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionReason(str, Enum):
    INSTANCE_RUNNING = "InstanceRunning"
    INSTANCE_NOT_RUNNING = "InstanceNotRunning"
    INSTANCE_MISSING = "InstanceMissing"
    INSTANCE_FOUND = "InstanceFound"
    INSTANCE_FAILED = "InstanceFailed"
    INVALID_SPEC = "InvalidSpec"
    SPEC_ACCEPTED = "SpecAccepted"


class EbsVolumeType(str, Enum):
    GP2 = "gp2"
    GP3 = "gp3"
    IO1 = "io1"
    IO2 = "io2"
    ST1 = "st1"
    SC1 = "sc1"
    STANDARD = "standard"
