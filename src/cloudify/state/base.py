# cloudify/state/base.py

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from ..models import Environment, Resource, ResourceGroup


class StateStore(ABC):
    """
    Persistence contract for resource groups, environments, resources and
    host port allocations.

    The store exposes primitives only. Handlers own the transaction shape
    (e.g. add a resource, then commit its port).
    """

    # Resource groups

    @abstractmethod
    def add_resource_group(self, resource_group: ResourceGroup) -> None:
        """Persist a new resource group. Fails if the id already exists."""
        raise NotImplementedError

    @abstractmethod
    def list_resource_groups(self) -> List[ResourceGroup]:
        """All resource groups ordered by creation time."""
        raise NotImplementedError

    @abstractmethod
    def get_resource_group(self, resource_group_id: UUID) -> Optional[ResourceGroup]:
        """Fetch a resource group. Returns None if not found."""
        raise NotImplementedError

    # Environments

    @abstractmethod
    def add_environment(self, environment: Environment) -> None:
        """
        Persist a new environment.
        Must fail with NotFoundError if the owning group does not exist.
        """
        raise NotImplementedError

    @abstractmethod
    def get_environment(self, environment_id: UUID) -> Optional[Environment]:
        raise NotImplementedError

    @abstractmethod
    def list_environments(self, resource_group_id: UUID) -> List[Environment]:
        raise NotImplementedError

    # Resources

    @abstractmethod
    def add_resource(self, resource: Resource) -> None:
        """
        Persist a new resource.
        Must fail with NotFoundError if the environment does not exist and
        with ConflictError if the name is taken (case-insensitive).
        """
        raise NotImplementedError

    @abstractmethod
    def get_resource(self, resource_id: UUID) -> Optional[Resource]:
        raise NotImplementedError

    @abstractmethod
    def list_resources(self, environment_id: UUID) -> List[Resource]:
        """Resources of an environment ordered by creation time."""
        raise NotImplementedError

    @abstractmethod
    def update_resource(self, resource: Resource) -> None:
        """Replace a stored resource. Fails with NotFoundError if absent."""
        raise NotImplementedError

    @abstractmethod
    def remove_resource(self, resource_id: UUID) -> None:
        """
        Remove a resource together with its port allocations.
        Removing an absent resource is a no-op.
        """
        raise NotImplementedError

    # Ports

    @abstractmethod
    def assign_port(self, environment_id: UUID, resource_id: UUID, port: int) -> bool:
        """
        Atomically record a port for a resource.

        Returns True if the assignment was newly recorded and False if the
        port is already held in that environment. Never overwrites.
        """
        raise NotImplementedError

    @abstractmethod
    def list_allocated_ports(self, environment_id: UUID) -> List[int]:
        """All ports allocated in an environment, ascending."""
        raise NotImplementedError

    @abstractmethod
    def list_resource_ports(self, environment_id: UUID, resource_id: UUID) -> List[int]:
        """Ports allocated to one resource, ascending."""
        raise NotImplementedError

    @abstractmethod
    def remove_ports(self, environment_id: UUID, resource_id: UUID) -> None:
        """Drop every port allocation held by a resource."""
        raise NotImplementedError
