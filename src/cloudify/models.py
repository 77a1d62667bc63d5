"""
Domain models for Cloudify

Defines resource groups, environments, the resource variants
(Redis, Postgres, Mongo, Rabbit, AppService) and the profile value objects
they carry. Profiles are immutable and replaced wholesale on update; only a
resource's lifecycle state is mutated in place.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Dict, Iterable, Optional, Tuple, Type
from uuid import UUID, uuid4

from .errors import ValidationError

MIN_PORT = 1
MAX_PORT = 65535


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EnvironmentName(Enum):
    """Logical environment names."""

    PROD = "Prod"
    TEST = "Test"
    DEV = "Dev"


class NetworkMode(Enum):
    """Container network modes."""

    BRIDGE = "Bridge"
    HOST = "Host"
    NONE = "None"


class ResourceType(Enum):
    """Discriminant for the resource variants."""

    REDIS = "Redis"
    POSTGRES = "Postgres"
    MONGO = "Mongo"
    RABBIT = "Rabbit"
    APP_SERVICE = "AppService"


class ResourceState(Enum):
    """Lifecycle state of a resource."""

    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"
    DELETED = "Deleted"


class HealthStatus(Enum):
    """Health reported by the container runtime."""

    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def validate_port(port: int, label: str = "Port") -> int:
    """Ensure a port lies within [1, 65535]."""
    if isinstance(port, bool) or not isinstance(port, int) or port < MIN_PORT or port > MAX_PORT:
        raise ValidationError(f"{label} must be between {MIN_PORT} and {MAX_PORT}.")
    return port


# -----------------------------
# Profiles
# -----------------------------

@dataclass(frozen=True)
class CapacityProfile:
    """CPU / memory limits and replica count for a resource."""

    cpu_limit: Optional[float] = None
    memory_limit_gb: Optional[float] = None
    replicas: int = 1
    notes: Optional[str] = None

    def __post_init__(self):
        if self.cpu_limit is not None and self.cpu_limit <= 0:
            raise ValidationError("CPU limit must be greater than zero.")
        if self.memory_limit_gb is not None and self.memory_limit_gb <= 0:
            raise ValidationError("Memory limit must be greater than zero.")
        if self.replicas < 1:
            raise ValidationError("Replicas must be at least 1.")
        if self.notes is not None and _is_blank(self.notes):
            raise ValidationError("Notes cannot be empty.")

    def with_replicas(self, replicas: int) -> "CapacityProfile":
        return dataclasses.replace(self, replicas=replicas)


@dataclass(frozen=True)
class StorageProfile:
    """Persistent volume settings for storage-bearing resources."""

    volume_name: str
    size_gb: int
    mount_path: str
    is_persistent: bool = True

    def __post_init__(self):
        if _is_blank(self.volume_name):
            raise ValidationError("Storage volume name is required.")
        if self.size_gb < 1:
            raise ValidationError("Storage size must be at least 1 GB.")
        if _is_blank(self.mount_path):
            raise ValidationError("Storage mount path is required.")


@dataclass(frozen=True)
class CredentialProfile:
    """Root credentials for databases and queues."""

    username: str
    password: str = field(repr=False)

    def __post_init__(self):
        if _is_blank(self.username):
            raise ValidationError("Credential username is required.")
        if _is_blank(self.password):
            raise ValidationError("Credential password is required.")


@dataclass(frozen=True)
class PortPolicy:
    """Ordered set of container ports a resource declares it wants exposed."""

    exposed_ports: Tuple[int, ...] = ()

    def __post_init__(self):
        unique = []
        for port in self.exposed_ports:
            validate_port(port, "Exposed ports")
            if port not in unique:
                unique.append(port)
        object.__setattr__(self, "exposed_ports", tuple(unique))

    @classmethod
    def of(cls, ports: Iterable[int]) -> "PortPolicy":
        return cls(tuple(ports))

    def sorted_ports(self) -> Tuple[int, ...]:
        return tuple(sorted(self.exposed_ports))


# -----------------------------
# Resource Groups / Environments
# -----------------------------

@dataclass
class ResourceGroup:
    """Top-level namespace owning environments and shared tags."""

    id: UUID
    name: str
    created_at: datetime = field(default_factory=utc_now)
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if _is_blank(self.name):
            raise ValidationError("Resource group name is required.")
        seen = set()
        for key in self.tags:
            if _is_blank(key):
                raise ValidationError("Tag keys cannot be empty.")
            folded = key.casefold()
            if folded in seen:
                raise ValidationError(f"Duplicate tag key '{key}' (tag keys are case-insensitive).")
            seen.add(folded)

    def get_tag(self, key: str) -> Optional[str]:
        """Look up a tag ignoring key case."""
        folded = key.casefold()
        for tag_key, value in self.tags.items():
            if tag_key.casefold() == folded:
                return value
        return None


@dataclass
class Environment:
    """A network-scoped collection of resources deployed via one manifest."""

    id: UUID
    resource_group_id: UUID
    name: EnvironmentName
    network_mode: NetworkMode = NetworkMode.BRIDGE
    base_domain: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.base_domain is not None and _is_blank(self.base_domain):
            raise ValidationError("Base domain cannot be empty.")


# -----------------------------
# Resources
# -----------------------------

@dataclass(kw_only=True)
class Resource:
    """Common shape of every resource variant."""

    resource_type: ClassVar[ResourceType]

    id: UUID
    environment_id: UUID
    name: str
    state: ResourceState = ResourceState.PROVISIONING
    created_at: datetime = field(default_factory=utc_now)
    capacity_profile: Optional[CapacityProfile] = None
    port_policy: Optional[PortPolicy] = None

    def __post_init__(self):
        if _is_blank(self.name):
            raise ValidationError("Resource name is required.")

    def get_storage_profile(self) -> Optional[StorageProfile]:
        return None

    def get_credential_profile(self) -> Optional[CredentialProfile]:
        return None

    @property
    def short_id(self) -> str:
        return self.id.hex[:6]

    def set_state(self, state: ResourceState) -> None:
        self.state = state

    def with_changes(self, **changes) -> "Resource":
        """Copy of this resource with sub-objects replaced wholesale."""
        return dataclasses.replace(self, **changes)


@dataclass(kw_only=True)
class StorageResource(Resource):
    """Resource that owns a persistent volume."""

    storage_profile: StorageProfile

    def get_storage_profile(self) -> Optional[StorageProfile]:
        return self.storage_profile


@dataclass(kw_only=True)
class CredentialedResource(StorageResource):
    """Storage-bearing resource that also carries root credentials."""

    credential_profile: CredentialProfile

    def get_credential_profile(self) -> Optional[CredentialProfile]:
        return self.credential_profile


@dataclass(kw_only=True)
class RedisResource(StorageResource):
    resource_type: ClassVar[ResourceType] = ResourceType.REDIS


@dataclass(kw_only=True)
class PostgresResource(CredentialedResource):
    resource_type: ClassVar[ResourceType] = ResourceType.POSTGRES


@dataclass(kw_only=True)
class MongoResource(CredentialedResource):
    resource_type: ClassVar[ResourceType] = ResourceType.MONGO


@dataclass(kw_only=True)
class RabbitResource(CredentialedResource):
    resource_type: ClassVar[ResourceType] = ResourceType.RABBIT


@dataclass(kw_only=True)
class AppServiceResource(Resource):
    """Application container running a caller-supplied image."""

    resource_type: ClassVar[ResourceType] = ResourceType.APP_SERVICE

    image: str
    health_endpoint_path: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        if _is_blank(self.image):
            raise ValidationError("Application service image is required.")
        if self.health_endpoint_path is not None and _is_blank(self.health_endpoint_path):
            raise ValidationError("Health endpoint path cannot be empty.")


RESOURCE_CLASSES: Dict[ResourceType, Type[Resource]] = {
    ResourceType.REDIS: RedisResource,
    ResourceType.POSTGRES: PostgresResource,
    ResourceType.MONGO: MongoResource,
    ResourceType.RABBIT: RabbitResource,
    ResourceType.APP_SERVICE: AppServiceResource,
}

STORAGE_TYPES = frozenset(
    t for t, cls in RESOURCE_CLASSES.items() if issubclass(cls, StorageResource)
)
CREDENTIAL_TYPES = frozenset(
    t for t, cls in RESOURCE_CLASSES.items() if issubclass(cls, CredentialedResource)
)


def new_id() -> UUID:
    return uuid4()


# -----------------------------
# Results
# -----------------------------

@dataclass(frozen=True)
class PortAllocation:
    """A proposed host port. Recording it is the caller's job."""

    port: int
    was_requested: bool


@dataclass(frozen=True)
class ResourceHealth:
    """Runtime state and health of a single resource."""

    state: ResourceState
    health: HealthStatus


@dataclass(frozen=True)
class ConnectionInfo:
    """Best-effort connection details for a resource."""

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class HostProfile:
    """Host capacity snapshot."""

    cpu_count: int = 0
    total_memory_gb: int = 0
    available_disk_gb: int = 0
    storage_hint: str = ""
