"""
Compose naming conventions.

Service, volume, project and file names derived from ids. All names are
pure functions of ids so repeated renders stay byte-identical.
"""

from pathlib import Path
from typing import Dict
from uuid import UUID

from ..models import Resource, ResourceType

SERVICE_PREFIXES: Dict[ResourceType, str] = {
    ResourceType.REDIS: "redis",
    ResourceType.POSTGRES: "postgres",
    ResourceType.MONGO: "mongo",
    ResourceType.RABBIT: "rabbitmq",
    ResourceType.APP_SERVICE: "appservice",
}

COMPOSE_FILE_NAME = "docker-compose.yml"


def service_name(resource: Resource) -> str:
    """``{type-prefix}-{first 6 hex chars of the resource id}``"""
    return f"{SERVICE_PREFIXES[resource.resource_type]}-{resource.short_id}"


def volume_name(environment_id: UUID, resource: Resource) -> str:
    return f"cloudify-{environment_id}-{resource.short_id}-data"


def project_name(environment_id: UUID) -> str:
    return f"cloudify-{environment_id}"


def environment_directory(working_directory_base: Path, environment_id: UUID) -> Path:
    return Path(working_directory_base) / str(environment_id)


def compose_file_path(working_directory_base: Path, environment_id: UUID) -> Path:
    return environment_directory(working_directory_base, environment_id) / COMPOSE_FILE_NAME
