"""
Resource use cases.

Adding a resource is the one multi-step write in the system: the resource
row is persisted first, then a proposed host port is committed through the
store's atomic ``assign_port``. A rejected commit is the only authoritative
conflict signal. Requested ports never retry; automatically chosen ports
are re-proposed up to ``max_port_attempts`` times. Every failure after the
resource row exists deletes that row before the error surfaces.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence
from uuid import UUID

from ..environment.orchestrator import ComposeOrchestrator
from ..environment.port_allocator import PortAllocator
from ..environment.renderer import DEFAULT_CONTAINER_PORTS
from ..errors import (
    AllocationExhaustedError,
    ConflictError,
    NotFoundError,
    PortConflictError,
    ValidationError,
)
from ..models import (
    CREDENTIAL_TYPES,
    MAX_PORT,
    MIN_PORT,
    RESOURCE_CLASSES,
    STORAGE_TYPES,
    CapacityProfile,
    ConnectionInfo,
    CredentialProfile,
    HealthStatus,
    PortAllocation,
    PortPolicy,
    Resource,
    ResourceHealth,
    ResourceState,
    ResourceType,
    StorageProfile,
    new_id,
    utc_now,
)
from ..state.base import StateStore
from .requests import (
    AddResourceRequest,
    GetResourceLogsRequest,
    ResourceSummary,
    ScaleResourceRequest,
)

logger = logging.getLogger(__name__)

CONNECTION_HOST = "localhost"
DEFAULT_MAX_PORT_ATTEMPTS = 20


def build_connection_info(resource: Resource, ports: Sequence[int]) -> Optional[ConnectionInfo]:
    """Lowest allocated port plus credentials, or None without a port."""
    if not ports:
        return None
    credentials = resource.get_credential_profile()
    return ConnectionInfo(
        host=CONNECTION_HOST,
        port=min(ports),
        username=credentials.username if credentials else None,
        password=credentials.password if credentials else None,
    )


def get_resource_or_raise(state_store: StateStore, resource_id: UUID) -> Resource:
    resource = state_store.get_resource(resource_id)
    if resource is None:
        raise NotFoundError(f"Resource '{resource_id}' not found.")
    return resource


@dataclass
class _ValidatedResource:
    capacity_profile: Optional[CapacityProfile]
    storage_profile: Optional[StorageProfile]
    credential_profile: Optional[CredentialProfile]
    image: Optional[str]
    health_endpoint_path: Optional[str]


class AddResourceHandler:
    """Validates, persists, commits a host port and deploys a new resource."""

    def __init__(
        self,
        state_store: StateStore,
        port_allocator: PortAllocator,
        orchestrator: ComposeOrchestrator,
        max_port_attempts: int = DEFAULT_MAX_PORT_ATTEMPTS,
    ):
        self.state_store = state_store
        self.port_allocator = port_allocator
        self.orchestrator = orchestrator
        self.max_port_attempts = max_port_attempts

    def handle(
        self,
        request: AddResourceRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResourceSummary:
        """
        Add a resource to an environment.

        Raises:
            ValidationError: malformed request (nothing written)
            NotFoundError: environment does not exist (nothing written)
            ConflictError: name taken, or requested port unavailable
            AllocationExhaustedError: no automatic port could be committed
        """
        validated = self._validate(request)
        environment_id = request.environment_id

        if self.state_store.get_environment(environment_id) is None:
            raise NotFoundError(f"Environment '{environment_id}' not found.")

        name = request.name.strip()
        folded = name.casefold()
        for existing in self.state_store.list_resources(environment_id):
            if existing.name.casefold() == folded:
                raise ConflictError(f"Resource name '{name}' is already used in this environment.")

        declared_ports = list(dict.fromkeys(request.exposed_ports))
        track_in_policy = request.requested_port is not None or bool(declared_ports)
        needs_port = track_in_policy or bool(DEFAULT_CONTAINER_PORTS[request.resource_type])

        allocation = None
        if needs_port:
            allocation = self.port_allocator.allocate(
                environment_id, request.resource_type, request.requested_port
            )

        policy_ports = list(declared_ports)
        if track_in_policy and allocation.port not in policy_ports:
            policy_ports.append(allocation.port)

        resource_cls = RESOURCE_CLASSES[request.resource_type]
        fields = {
            "id": new_id(),
            "environment_id": environment_id,
            "name": name,
            "state": ResourceState.PROVISIONING,
            "created_at": utc_now(),
            "capacity_profile": validated.capacity_profile,
            "port_policy": PortPolicy.of(policy_ports) if policy_ports else None,
        }
        if request.resource_type in STORAGE_TYPES:
            fields["storage_profile"] = validated.storage_profile
        if request.resource_type in CREDENTIAL_TYPES:
            fields["credential_profile"] = validated.credential_profile
        if request.resource_type is ResourceType.APP_SERVICE:
            fields["image"] = validated.image
            fields["health_endpoint_path"] = validated.health_endpoint_path
        resource = resource_cls(**fields)

        self.state_store.add_resource(resource)
        logger.info(
            f"Added {resource.resource_type.value} resource {resource.name} ({resource.id}) "
            f"to environment {environment_id}"
        )

        port = None
        if allocation is not None:
            try:
                resource, port = self._commit_port(resource, allocation, declared_ports, track_in_policy)
            except Exception:
                logger.warning(f"Port commit failed for {resource.name}; removing {resource.id}")
                self.state_store.remove_resource(resource.id)
                raise

        try:
            self.orchestrator.deploy_environment(environment_id, cancel_event)
        except Exception:
            logger.error(f"Deploy failed after adding {resource.name}; marking it Failed")
            resource.set_state(ResourceState.FAILED)
            self.state_store.update_resource(resource)
            raise

        ports = [port] if port is not None else []
        return ResourceSummary(resource, build_connection_info(resource, ports))

    def _commit_port(
        self,
        resource: Resource,
        allocation: PortAllocation,
        declared_ports: List[int],
        track_in_policy: bool,
    ):
        """
        Commit a proposed port, re-proposing automatic ports on rejection.

        Returns:
            (resource as persisted, committed port)
        """
        environment_id = resource.environment_id
        current = allocation
        attempt = 1

        while True:
            if self.state_store.assign_port(environment_id, resource.id, current.port):
                logger.debug(
                    f"Committed port {current.port} for {resource.name} on attempt {attempt}"
                )
                return resource, current.port

            if current.was_requested:
                raise PortConflictError(
                    f"Port {current.port} was taken in environment {environment_id} "
                    f"before it could be assigned."
                )

            if attempt >= self.max_port_attempts:
                raise AllocationExhaustedError(
                    f"Could not commit a port for {resource.name} after {attempt} attempts."
                )

            logger.debug(f"Port {current.port} lost to a concurrent allocation, retrying")
            attempt += 1
            proposed = self.port_allocator.allocate(environment_id, resource.resource_type)

            if track_in_policy:
                # Swap the rejected port for the new proposal; declared ports stay.
                ports = [
                    p for p in resource.port_policy.exposed_ports
                    if p != current.port or p in declared_ports
                ]
                if proposed.port not in ports:
                    ports.append(proposed.port)
                resource = resource.with_changes(port_policy=PortPolicy.of(ports))
                self.state_store.update_resource(resource)

            current = proposed

    def _validate(self, request: AddResourceRequest) -> _ValidatedResource:
        if not request.name or not request.name.strip():
            raise ValidationError("Resource name is required.")

        if request.requested_port is not None and not (MIN_PORT <= request.requested_port <= MAX_PORT):
            raise ValidationError(f"Requested port must be between {MIN_PORT} and {MAX_PORT}.")

        if any(port < MIN_PORT or port > MAX_PORT for port in request.exposed_ports):
            raise ValidationError(f"Exposed ports must be between {MIN_PORT} and {MAX_PORT}.")

        capacity = None
        if request.capacity_profile is not None:
            capacity = CapacityProfile(**request.capacity_profile.model_dump())

        storage = None
        if request.resource_type in STORAGE_TYPES:
            if request.storage_profile is None:
                raise ValidationError("Storage profile is required for the selected resource type.")
            storage = StorageProfile(**request.storage_profile.model_dump())

        credentials = None
        if request.resource_type in CREDENTIAL_TYPES:
            if request.credential_profile is None:
                raise ValidationError("Credential profile is required for the selected resource type.")
            credentials = CredentialProfile(**request.credential_profile.model_dump())

        image = None
        health_endpoint_path = None
        if request.resource_type is ResourceType.APP_SERVICE:
            if not request.image or not request.image.strip():
                raise ValidationError("Application service image is required.")
            image = request.image.strip()
            health_endpoint_path = request.health_endpoint_path
            if health_endpoint_path is not None and not health_endpoint_path.strip():
                raise ValidationError("Health endpoint path cannot be empty.")

        return _ValidatedResource(capacity, storage, credentials, image, health_endpoint_path)


class DeleteResourceHandler:
    """Removes a resource and its port allocations."""

    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def handle(self, resource_id: UUID) -> UUID:
        resource = get_resource_or_raise(self.state_store, resource_id)
        self.state_store.remove_ports(resource.environment_id, resource.id)
        self.state_store.remove_resource(resource.id)
        logger.info(f"Deleted resource {resource.name} ({resource.id})")
        return resource.id


class _LifecycleHandler:
    """Runs one orchestrator action, then records the resulting state."""

    target_state: ResourceState

    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def _invoke(self, resource_id: UUID, cancel_event: Optional[threading.Event]) -> None:
        raise NotImplementedError

    def handle(self, resource_id: UUID, cancel_event: Optional[threading.Event] = None) -> Resource:
        resource = get_resource_or_raise(self.state_store, resource_id)
        self._invoke(resource.id, cancel_event)
        resource.set_state(self.target_state)
        self.state_store.update_resource(resource)
        return resource


class StartResourceHandler(_LifecycleHandler):
    target_state = ResourceState.RUNNING

    def _invoke(self, resource_id, cancel_event):
        self.orchestrator.start_resource(resource_id, cancel_event)


class StopResourceHandler(_LifecycleHandler):
    target_state = ResourceState.STOPPED

    def _invoke(self, resource_id, cancel_event):
        self.orchestrator.stop_resource(resource_id, cancel_event)


class RestartResourceHandler(_LifecycleHandler):
    target_state = ResourceState.RUNNING

    def _invoke(self, resource_id, cancel_event):
        self.orchestrator.restart_resource(resource_id, cancel_event)


class ScaleResourceHandler:
    """Scales a resource and replaces its capacity profile."""

    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def handle(
        self,
        request: ScaleResourceRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Resource:
        if request.replicas < 1:
            raise ValidationError("Replicas must be at least 1.")

        resource = get_resource_or_raise(self.state_store, request.resource_id)
        if resource.capacity_profile is None:
            capacity = CapacityProfile(replicas=request.replicas)
        else:
            capacity = resource.capacity_profile.with_replicas(request.replicas)

        self.orchestrator.scale_resource(resource.id, request.replicas, cancel_event)
        updated = resource.with_changes(capacity_profile=capacity)
        self.state_store.update_resource(updated)
        return updated


class GetResourceLogsHandler:
    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def handle(
        self,
        request: GetResourceLogsRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        if request.tail < 1:
            raise ValidationError("Tail must be at least 1.")

        resource = get_resource_or_raise(self.state_store, request.resource_id)
        service_name = request.service_name.strip() if request.service_name else None
        return self.orchestrator.get_resource_logs(
            resource.id, request.tail, service_name or None, cancel_event
        )


class GetResourceHealthHandler:
    """Best-effort health: runtime failures fall back to the persisted state."""

    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def handle(self, resource_id: UUID, cancel_event: Optional[threading.Event] = None) -> ResourceHealth:
        resource = get_resource_or_raise(self.state_store, resource_id)
        try:
            return self.orchestrator.get_resource_health(resource.id, cancel_event)
        except Exception as e:
            logger.warning(f"Health check for {resource.name} failed: {e}")
            return ResourceHealth(resource.state, HealthStatus.UNKNOWN)
