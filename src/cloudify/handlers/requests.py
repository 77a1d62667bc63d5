"""
Request and result shapes for the use-case handlers.

Requests are pydantic models so CLI options and JSON payloads coerce into
them the same way. Field values are only type-checked here; the handlers
apply the domain rules and raise ValidationError.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import (
    ConnectionInfo,
    Environment,
    EnvironmentName,
    HostProfile,
    NetworkMode,
    Resource,
    ResourceType,
)


class CapacityProfileRequest(BaseModel):
    """CPU / memory limits and replicas."""

    cpu_limit: Optional[float] = Field(None, description="CPU limit in cores")
    memory_limit_gb: Optional[float] = Field(None, description="Memory limit in GB")
    replicas: int = Field(1, description="Replica count")
    notes: Optional[str] = Field(None, description="Free-form notes")


class StorageProfileRequest(BaseModel):
    """Persistent volume settings."""

    volume_name: str = Field(..., description="Volume name")
    size_gb: int = Field(..., description="Volume size in GB")
    mount_path: str = Field(..., description="Mount path inside the container")
    is_persistent: bool = Field(True, description="Keep the volume across redeploys")


class CredentialProfileRequest(BaseModel):
    """Root credentials."""

    username: str
    password: str = Field(..., repr=False)


class CreateResourceGroupRequest(BaseModel):
    name: str
    tags: Dict[str, str] = Field(default_factory=dict)


class CreateEnvironmentRequest(BaseModel):
    resource_group_id: UUID
    name: EnvironmentName
    network_mode: NetworkMode = NetworkMode.BRIDGE
    base_domain: Optional[str] = None


class AddResourceRequest(BaseModel):
    """Everything needed to add one resource to an environment."""

    environment_id: UUID
    name: str
    resource_type: ResourceType
    capacity_profile: Optional[CapacityProfileRequest] = None
    storage_profile: Optional[StorageProfileRequest] = None
    credential_profile: Optional[CredentialProfileRequest] = None
    image: Optional[str] = None
    health_endpoint_path: Optional[str] = None
    exposed_ports: List[int] = Field(default_factory=list, description="Declared container ports")
    requested_port: Optional[int] = Field(None, description="Explicit host port")


class ScaleResourceRequest(BaseModel):
    resource_id: UUID
    replicas: int


class GetResourceLogsRequest(BaseModel):
    resource_id: UUID
    tail: int = 200
    service_name: Optional[str] = None


@dataclass
class ResourceSummary:
    """A resource together with how to reach it."""

    resource: Resource
    connection_info: Optional[ConnectionInfo] = None


@dataclass
class EnvironmentOverview:
    """Environment, its resources, rendered manifest and host capacity."""

    environment: Environment
    resources: List[ResourceSummary] = field(default_factory=list)
    compose_yaml: str = ""
    host_profile: Optional[HostProfile] = None
