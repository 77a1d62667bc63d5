# cloudify/state/memory.py

import copy
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, Iterator, List, Optional
from uuid import UUID

from ..errors import ConflictError, NotFoundError
from ..models import Environment, Resource, ResourceGroup
from .base import StateStore


@dataclass
class StateDocument:
    """Everything a store holds. Dicts keep insertion order."""

    resource_groups: Dict[UUID, ResourceGroup] = field(default_factory=dict)
    environments: Dict[UUID, Environment] = field(default_factory=dict)
    resources: Dict[UUID, Resource] = field(default_factory=dict)
    # environment id -> port -> resource id
    ports: Dict[UUID, Dict[int, UUID]] = field(default_factory=dict)


class InMemoryStateStore(StateStore):
    """
    Process-local store. A single lock guards every operation so
    ``assign_port`` is an atomic assign-if-absent.

    Objects are copied on the way in and out; callers never share
    references with the store.
    """

    def __init__(self):
        self._document = StateDocument()
        self._lock = RLock()

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[StateDocument]:
        with self._lock:
            yield self._document

    # Resource groups

    def add_resource_group(self, resource_group: ResourceGroup) -> None:
        with self._transaction(write=True) as doc:
            if resource_group.id in doc.resource_groups:
                raise ConflictError(f"Resource group '{resource_group.id}' already exists.")
            doc.resource_groups[resource_group.id] = copy.deepcopy(resource_group)

    def list_resource_groups(self) -> List[ResourceGroup]:
        with self._transaction() as doc:
            groups = sorted(doc.resource_groups.values(), key=lambda g: g.created_at)
            return copy.deepcopy(groups)

    def get_resource_group(self, resource_group_id: UUID) -> Optional[ResourceGroup]:
        with self._transaction() as doc:
            return copy.deepcopy(doc.resource_groups.get(resource_group_id))

    # Environments

    def add_environment(self, environment: Environment) -> None:
        with self._transaction(write=True) as doc:
            if environment.resource_group_id not in doc.resource_groups:
                raise NotFoundError(f"Resource group '{environment.resource_group_id}' not found.")
            if environment.id in doc.environments:
                raise ConflictError(f"Environment '{environment.id}' already exists.")
            doc.environments[environment.id] = copy.deepcopy(environment)

    def get_environment(self, environment_id: UUID) -> Optional[Environment]:
        with self._transaction() as doc:
            return copy.deepcopy(doc.environments.get(environment_id))

    def list_environments(self, resource_group_id: UUID) -> List[Environment]:
        with self._transaction() as doc:
            environments = [
                env for env in doc.environments.values()
                if env.resource_group_id == resource_group_id
            ]
            environments.sort(key=lambda env: env.created_at)
            return copy.deepcopy(environments)

    # Resources

    def add_resource(self, resource: Resource) -> None:
        with self._transaction(write=True) as doc:
            if resource.environment_id not in doc.environments:
                raise NotFoundError(f"Environment '{resource.environment_id}' not found.")
            if resource.id in doc.resources:
                raise ConflictError(f"Resource '{resource.id}' already exists.")
            folded = resource.name.casefold()
            for existing in doc.resources.values():
                if existing.environment_id == resource.environment_id and existing.name.casefold() == folded:
                    raise ConflictError(
                        f"Resource name '{resource.name}' is already used in this environment."
                    )
            doc.resources[resource.id] = copy.deepcopy(resource)

    def get_resource(self, resource_id: UUID) -> Optional[Resource]:
        with self._transaction() as doc:
            return copy.deepcopy(doc.resources.get(resource_id))

    def list_resources(self, environment_id: UUID) -> List[Resource]:
        with self._transaction() as doc:
            resources = [r for r in doc.resources.values() if r.environment_id == environment_id]
            resources.sort(key=lambda r: r.created_at)
            return copy.deepcopy(resources)

    def update_resource(self, resource: Resource) -> None:
        with self._transaction(write=True) as doc:
            if resource.id not in doc.resources:
                raise NotFoundError(f"Resource '{resource.id}' not found.")
            doc.resources[resource.id] = copy.deepcopy(resource)

    def remove_resource(self, resource_id: UUID) -> None:
        with self._transaction(write=True) as doc:
            resource = doc.resources.pop(resource_id, None)
            if resource is None:
                return
            env_ports = doc.ports.get(resource.environment_id, {})
            for port in [p for p, owner in env_ports.items() if owner == resource_id]:
                del env_ports[port]

    # Ports

    def assign_port(self, environment_id: UUID, resource_id: UUID, port: int) -> bool:
        with self._transaction(write=True) as doc:
            resource = doc.resources.get(resource_id)
            if resource is None or resource.environment_id != environment_id:
                raise NotFoundError(
                    f"Resource '{resource_id}' not found in environment '{environment_id}'."
                )
            env_ports = doc.ports.setdefault(environment_id, {})
            if port in env_ports:
                return False
            env_ports[port] = resource_id
            return True

    def list_allocated_ports(self, environment_id: UUID) -> List[int]:
        with self._transaction() as doc:
            return sorted(doc.ports.get(environment_id, {}))

    def list_resource_ports(self, environment_id: UUID, resource_id: UUID) -> List[int]:
        with self._transaction() as doc:
            env_ports = doc.ports.get(environment_id, {})
            return sorted(port for port, owner in env_ports.items() if owner == resource_id)

    def remove_ports(self, environment_id: UUID, resource_id: UUID) -> None:
        with self._transaction(write=True) as doc:
            env_ports = doc.ports.get(environment_id, {})
            for port in [p for p, owner in env_ports.items() if owner == resource_id]:
                del env_ports[port]
