"""Abstract repository for Ec2Instance resources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

from domain.entities.ec2_instance import Ec2Instance, ReconcileReference


@dataclass(frozen=True)
class ResourceEvent:
    """Represents a change notification for one Ec2Instance resource."""

    type: str  # "ADDED", "MODIFIED" or "DELETED"
    reference: ReconcileReference


class Ec2InstanceRepository(ABC):
    """Abstract versioned store of Ec2Instance resources.

    Writes use optimistic concurrency: the entity's `metadata.resource_version`
    must match the stored one, otherwise `ResourceConflictException` is raised.
    """

    @abstractmethod
    async def get_async(self, reference: ReconcileReference) -> Ec2Instance | None:
        """Retrieve a resource, or None if it no longer exists."""
        pass

    @abstractmethod
    async def list_async(self) -> list[Ec2Instance]:
        """Retrieve all watched resources."""
        pass

    @abstractmethod
    async def update_async(self, entity: Ec2Instance) -> Ec2Instance:
        """Persist metadata changes (finalizers) and return the stored resource."""
        pass

    @abstractmethod
    async def update_status_async(self, entity: Ec2Instance) -> Ec2Instance:
        """Persist the status subresource and return the stored resource."""
        pass

    @abstractmethod
    def watch_async(self) -> AsyncIterator[ResourceEvent]:
        """Stream change notifications until cancelled."""
        pass
