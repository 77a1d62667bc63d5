"""
Plain-dict serialization of domain models.

Used by the YAML and PostgreSQL state stores and by the CLI's ``--json``
output. Enum values and ISO timestamps keep documents human readable.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from .models import (
    RESOURCE_CLASSES,
    AppServiceResource,
    CapacityProfile,
    ConnectionInfo,
    CredentialProfile,
    Environment,
    EnvironmentName,
    NetworkMode,
    PortPolicy,
    Resource,
    ResourceGroup,
    ResourceState,
    ResourceType,
    StorageProfile,
)


def _dt(value: datetime) -> str:
    return value.isoformat()


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def resource_group_to_dict(group: ResourceGroup) -> Dict[str, Any]:
    return {
        "id": str(group.id),
        "name": group.name,
        "created_at": _dt(group.created_at),
        "tags": dict(group.tags),
    }


def resource_group_from_dict(data: Dict[str, Any]) -> ResourceGroup:
    return ResourceGroup(
        id=_uuid(data["id"]),
        name=data["name"],
        created_at=_parse_dt(data["created_at"]),
        tags=dict(data.get("tags") or {}),
    )


def environment_to_dict(environment: Environment) -> Dict[str, Any]:
    return {
        "id": str(environment.id),
        "resource_group_id": str(environment.resource_group_id),
        "name": environment.name.value,
        "network_mode": environment.network_mode.value,
        "base_domain": environment.base_domain,
        "created_at": _dt(environment.created_at),
    }


def environment_from_dict(data: Dict[str, Any]) -> Environment:
    return Environment(
        id=_uuid(data["id"]),
        resource_group_id=_uuid(data["resource_group_id"]),
        name=EnvironmentName(data["name"]),
        network_mode=NetworkMode(data["network_mode"]),
        base_domain=data.get("base_domain"),
        created_at=_parse_dt(data["created_at"]),
    )


def capacity_to_dict(profile: Optional[CapacityProfile]) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {
        "cpu_limit": profile.cpu_limit,
        "memory_limit_gb": profile.memory_limit_gb,
        "replicas": profile.replicas,
        "notes": profile.notes,
    }


def storage_to_dict(profile: Optional[StorageProfile]) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {
        "volume_name": profile.volume_name,
        "size_gb": profile.size_gb,
        "mount_path": profile.mount_path,
        "is_persistent": profile.is_persistent,
    }


def resource_payload(resource: Resource) -> Dict[str, Any]:
    """Type-specific payload of a resource (everything but the core columns)."""
    payload: Dict[str, Any] = {
        "capacity_profile": capacity_to_dict(resource.capacity_profile),
        "port_policy": list(resource.port_policy.exposed_ports) if resource.port_policy else None,
    }
    storage = resource.get_storage_profile()
    if storage is not None:
        payload["storage_profile"] = storage_to_dict(storage)
    credentials = resource.get_credential_profile()
    if credentials is not None:
        payload["credential_profile"] = {
            "username": credentials.username,
            "password": credentials.password,
        }
    if isinstance(resource, AppServiceResource):
        payload["image"] = resource.image
        payload["health_endpoint_path"] = resource.health_endpoint_path
    return payload


def resource_to_dict(resource: Resource) -> Dict[str, Any]:
    data = {
        "id": str(resource.id),
        "environment_id": str(resource.environment_id),
        "name": resource.name,
        "resource_type": resource.resource_type.value,
        "state": resource.state.value,
        "created_at": _dt(resource.created_at),
    }
    data.update(resource_payload(resource))
    return data


def resource_from_dict(data: Dict[str, Any]) -> Resource:
    resource_type = ResourceType(data["resource_type"])
    resource_cls = RESOURCE_CLASSES[resource_type]

    kwargs: Dict[str, Any] = {
        "id": _uuid(data["id"]),
        "environment_id": _uuid(data["environment_id"]),
        "name": data["name"],
        "state": ResourceState(data["state"]),
        "created_at": _parse_dt(data["created_at"]),
    }

    capacity = data.get("capacity_profile")
    if capacity:
        kwargs["capacity_profile"] = CapacityProfile(**capacity)

    ports = data.get("port_policy")
    if ports:
        kwargs["port_policy"] = PortPolicy.of(ports)

    storage = data.get("storage_profile")
    if storage:
        kwargs["storage_profile"] = StorageProfile(**storage)

    credentials = data.get("credential_profile")
    if credentials:
        kwargs["credential_profile"] = CredentialProfile(**credentials)

    if resource_type is ResourceType.APP_SERVICE:
        kwargs["image"] = data["image"]
        kwargs["health_endpoint_path"] = data.get("health_endpoint_path")

    return resource_cls(**kwargs)


def connection_info_to_dict(info: Optional[ConnectionInfo], show_secrets: bool = True) -> Optional[Dict[str, Any]]:
    if info is None:
        return None
    return {
        "host": info.host,
        "port": info.port,
        "username": info.username,
        "password": info.password if show_secrets or info.password is None else "***",
    }
