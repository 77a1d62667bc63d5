"""
Compose manifest rendering.

Builds a compose (schema 3.9) document for an environment from the state
store: one service per resource, host ports from the port allocations,
one named volume per storage-bearing resource and type-specific
healthchecks. Output is deterministic: services, volumes and environment
maps are emitted in sorted order.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import yaml

from ..errors import ConflictError
from ..models import Resource, ResourceType
from ..state.base import StateStore
from . import naming

logger = logging.getLogger(__name__)

COMPOSE_VERSION = "3.9"
HOST_ADDRESS = "localhost"

HEALTHCHECK_INTERVAL = "10s"
HEALTHCHECK_TIMEOUT = "5s"
HEALTHCHECK_RETRIES = 5

DEFAULT_IMAGES: Dict[ResourceType, str] = {
    ResourceType.REDIS: "redis:7.2.4",
    ResourceType.POSTGRES: "postgres:16.4",
    ResourceType.MONGO: "mongo:7.0.12",
    ResourceType.RABBIT: "rabbitmq:3.12.14-management",
}

DEFAULT_CONTAINER_PORTS: Dict[ResourceType, Tuple[int, ...]] = {
    ResourceType.REDIS: (6379,),
    ResourceType.POSTGRES: (5432,),
    ResourceType.MONGO: (27017,),
    ResourceType.RABBIT: (5672, 15672),
    ResourceType.APP_SERVICE: (),
}


CREDENTIAL_VARIABLES: Dict[ResourceType, Optional[Tuple[str, str]]] = {
    ResourceType.REDIS: None,
    ResourceType.POSTGRES: ("POSTGRES_USER", "POSTGRES_PASSWORD"),
    ResourceType.MONGO: ("MONGO_INITDB_ROOT_USERNAME", "MONGO_INITDB_ROOT_PASSWORD"),
    ResourceType.RABBIT: ("RABBITMQ_DEFAULT_USER", "RABBITMQ_DEFAULT_PASS"),
    ResourceType.APP_SERVICE: None,
}


class QuotedString(str):
    """String always emitted single-quoted, internal quotes doubled."""


class ComposeDumper(yaml.SafeDumper):
    """Safe dumper that keeps mapping order and never emits aliases."""

    def ignore_aliases(self, data):
        return True


def _represent_quoted(dumper: yaml.SafeDumper, value: QuotedString):
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(value), style="'")


ComposeDumper.add_representer(QuotedString, _represent_quoted)


def resolve_image(resource: Resource) -> str:
    if resource.resource_type is ResourceType.APP_SERVICE:
        return resource.image
    return DEFAULT_IMAGES[resource.resource_type]


def resolve_container_ports(resource: Resource) -> Tuple[int, ...]:
    """Declared ports ascending, or the type's default container ports."""
    if resource.port_policy is not None:
        return resource.port_policy.sorted_ports()
    return DEFAULT_CONTAINER_PORTS[resource.resource_type]


def build_port_mappings(host_ports: Sequence[int], container_ports: Sequence[int]) -> List[str]:
    """Zip ascending host ports onto container ports, truncated to the shorter list."""
    return [
        f"{HOST_ADDRESS}:{host}:{container}"
        for host, container in zip(sorted(host_ports), container_ports)
    ]


def build_environment_variables(resource: Resource) -> Dict[str, str]:
    keys = CREDENTIAL_VARIABLES[resource.resource_type]
    credentials = resource.get_credential_profile()
    if keys is None or credentials is None:
        return {}
    user_key, password_key = keys
    variables = {user_key: credentials.username, password_key: credentials.password}
    return dict(sorted(variables.items()))


def _postgres_healthcheck(resource: Resource) -> List[str]:
    return ["CMD-SHELL", f"pg_isready -U {resource.credential_profile.username}"]


def _mongo_healthcheck(resource: Resource) -> List[str]:
    credentials = resource.credential_profile
    return [
        "CMD-SHELL",
        f'mongosh --username "{credentials.username}" --password "{credentials.password}" '
        f"--eval \"db.adminCommand('ping')\"",
    ]


HEALTHCHECKS: Dict[ResourceType, Optional[Callable[[Resource], List[str]]]] = {
    ResourceType.REDIS: lambda resource: ["CMD", "redis-cli", "ping"],
    ResourceType.POSTGRES: _postgres_healthcheck,
    ResourceType.MONGO: _mongo_healthcheck,
    ResourceType.RABBIT: lambda resource: ["CMD", "rabbitmq-diagnostics", "ping"],
    ResourceType.APP_SERVICE: None,
}


def build_healthcheck_test(resource: Resource) -> Optional[List[str]]:
    builder = HEALTHCHECKS[resource.resource_type]
    if builder is None:
        return None
    return builder(resource)


class ComposeRenderer:
    """Renders an environment's compose manifest from persisted state."""

    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def build_document(self, environment_id: UUID) -> Dict[str, Any]:
        """Compose document as ordered plain data."""
        services: Dict[str, Dict[str, Any]] = {}
        volumes: Dict[str, Dict[str, str]] = {}

        for resource in self.state_store.list_resources(environment_id):
            host_ports = self.state_store.list_resource_ports(environment_id, resource.id)
            name = naming.service_name(resource)
            if name in services:
                raise ConflictError(
                    f"Service name {name} for resource {resource.id} collides with another "
                    f"resource in environment {environment_id}."
                )
            services[name] = self._build_service(environment_id, resource, host_ports, volumes)

        document: Dict[str, Any] = {
            "version": COMPOSE_VERSION,
            "services": {name: services[name] for name in sorted(services)},
        }
        if volumes:
            document["volumes"] = {name: volumes[name] for name in sorted(volumes)}
        return document

    def render(self, environment_id: UUID) -> str:
        """Compose manifest text for an environment."""
        document = self.build_document(environment_id)
        logger.debug(
            f"Rendered {len(document['services'])} services for environment {environment_id}"
        )
        return yaml.dump(
            document,
            Dumper=ComposeDumper,
            default_flow_style=False,
            sort_keys=False,
            width=4096,
        )

    @staticmethod
    def _build_service(
        environment_id: UUID,
        resource: Resource,
        host_ports: Sequence[int],
        volumes: Dict[str, Dict[str, str]],
    ) -> Dict[str, Any]:
        service: Dict[str, Any] = {"image": resolve_image(resource)}

        ports = build_port_mappings(host_ports, resolve_container_ports(resource))
        if ports:
            service["ports"] = ports

        variables = build_environment_variables(resource)
        if variables:
            service["environment"] = {key: QuotedString(value) for key, value in variables.items()}

        storage = resource.get_storage_profile()
        if storage is not None:
            volume = naming.volume_name(environment_id, resource)
            volumes.setdefault(volume, {"name": volume})
            service["volumes"] = [f"{volume}:{storage.mount_path}"]

        test = build_healthcheck_test(resource)
        if test is not None:
            service["healthcheck"] = {
                "test": [QuotedString(segment) for segment in test],
                "interval": HEALTHCHECK_INTERVAL,
                "timeout": HEALTHCHECK_TIMEOUT,
                "retries": HEALTHCHECK_RETRIES,
            }

        return service
