"""
Tests for compose manifest rendering.
"""

from uuid import UUID, uuid4

import pytest
import yaml

from cloudify.environment import naming
from cloudify.environment.renderer import (
    CREDENTIAL_VARIABLES,
    DEFAULT_CONTAINER_PORTS,
    DEFAULT_IMAGES,
    HEALTHCHECKS,
    ComposeRenderer,
    build_environment_variables,
    build_healthcheck_test,
    build_port_mappings,
    resolve_container_ports,
)
from cloudify.errors import ConflictError
from cloudify.models import (
    AppServiceResource,
    CredentialProfile,
    Environment,
    EnvironmentName,
    MongoResource,
    PortPolicy,
    PostgresResource,
    RabbitResource,
    RedisResource,
    ResourceGroup,
    ResourceType,
    StorageProfile,
)
from cloudify.state import InMemoryStateStore


@pytest.fixture
def env_store():
    store = InMemoryStateStore()
    group = ResourceGroup(id=uuid4(), name="rg-core")
    store.add_resource_group(group)
    environment = Environment(id=uuid4(), resource_group_id=group.id, name=EnvironmentName.DEV)
    store.add_environment(environment)
    return store, environment.id


def add_postgres(store, env_id, password="secret", port=15432):
    resource = PostgresResource(
        id=uuid4(),
        environment_id=env_id,
        name="orders-db",
        storage_profile=StorageProfile("pg-data", 20, "/var/lib/postgresql/data"),
        credential_profile=CredentialProfile("admin", password),
    )
    store.add_resource(resource)
    if port is not None:
        store.assign_port(env_id, resource.id, port)
    return resource


def add_redis(store, env_id, port=6379):
    resource = RedisResource(
        id=uuid4(),
        environment_id=env_id,
        name="cache",
        storage_profile=StorageProfile("redis-data", 1, "/data"),
    )
    store.add_resource(resource)
    store.assign_port(env_id, resource.id, port)
    return resource


class TestComposeRenderer:
    def test_postgres_service(self, env_store):
        store, env_id = env_store
        resource = add_postgres(store, env_id)

        document = yaml.safe_load(ComposeRenderer(store).render(env_id))

        service = document["services"][f"postgres-{resource.id.hex[:6]}"]
        volume = f"cloudify-{env_id}-{resource.id.hex[:6]}-data"
        assert document["version"] == "3.9"
        assert service["image"] == "postgres:16.4"
        assert service["ports"] == ["localhost:15432:5432"]
        assert service["environment"] == {"POSTGRES_PASSWORD": "secret", "POSTGRES_USER": "admin"}
        assert service["volumes"] == [f"{volume}:/var/lib/postgresql/data"]
        assert service["healthcheck"] == {
            "test": ["CMD-SHELL", "pg_isready -U admin"],
            "interval": "10s",
            "timeout": "5s",
            "retries": 5,
        }
        assert document["volumes"] == {volume: {"name": volume}}

    def test_render_is_deterministic(self, env_store):
        store, env_id = env_store
        add_redis(store, env_id)
        add_postgres(store, env_id)
        renderer = ComposeRenderer(store)

        first = renderer.render(env_id)

        assert renderer.render(env_id) == first
        services = list(yaml.safe_load(first)["services"])
        assert services == sorted(services)

    def test_environment_values_single_quoted(self, env_store):
        store, env_id = env_store
        add_postgres(store, env_id, password="it's")

        text = ComposeRenderer(store).render(env_id)

        assert "POSTGRES_PASSWORD: 'it''s'" in text
        assert "POSTGRES_USER: 'admin'" in text
        assert "- 'pg_isready -U admin'" in text
        assert "&" not in text and "*" not in text

    def test_mongo_healthcheck_embeds_credentials(self, env_store):
        store, env_id = env_store
        resource = MongoResource(
            id=uuid4(),
            environment_id=env_id,
            name="docs",
            storage_profile=StorageProfile("mongo-data", 5, "/data/db"),
            credential_profile=CredentialProfile("root", "pw"),
        )
        store.add_resource(resource)

        service = ComposeRenderer(store).build_document(env_id)["services"][
            naming.service_name(resource)
        ]

        assert service["image"] == "mongo:7.0.12"
        assert "ports" not in service
        assert service["healthcheck"]["test"][1].startswith('mongosh --username "root" --password "pw"')

    def test_app_service_without_declared_ports_has_no_ports(self, env_store):
        store, env_id = env_store
        app = AppServiceResource(
            id=uuid4(), environment_id=env_id, name="web", image="ghcr.io/acme/web:1.0"
        )
        store.add_resource(app)
        store.assign_port(env_id, app.id, 8080)

        service = ComposeRenderer(store).build_document(env_id)["services"][f"appservice-{app.short_id}"]

        assert service == {"image": "ghcr.io/acme/web:1.0"}

    def test_app_service_ports_truncate_to_shorter_list(self, env_store):
        store, env_id = env_store
        app = AppServiceResource(
            id=uuid4(),
            environment_id=env_id,
            name="web",
            image="ghcr.io/acme/web:1.0",
            port_policy=PortPolicy.of([443, 80]),
        )
        store.add_resource(app)
        store.assign_port(env_id, app.id, 9001)

        service = ComposeRenderer(store).build_document(env_id)["services"][f"appservice-{app.short_id}"]

        assert service["ports"] == ["localhost:9001:80"]

    def test_colliding_service_names_rejected(self, env_store):
        store, env_id = env_store
        for suffix, name in (("1", "cache-a"), ("2", "cache-b")):
            store.add_resource(
                RedisResource(
                    id=UUID(f"abcdef00-0000-4000-8000-00000000000{suffix}"),
                    environment_id=env_id,
                    name=name,
                    storage_profile=StorageProfile("redis-data", 1, "/data"),
                )
            )

        with pytest.raises(ConflictError, match="redis-abcdef"):
            ComposeRenderer(store).build_document(env_id)

    def test_every_type_has_image_and_healthcheck_entries(self):
        for resource_type in ResourceType:
            assert resource_type in CREDENTIAL_VARIABLES
            assert resource_type in HEALTHCHECKS
            assert resource_type in DEFAULT_CONTAINER_PORTS
            if resource_type is not ResourceType.APP_SERVICE:
                assert resource_type in DEFAULT_IMAGES

    def test_rabbit_environment_and_healthcheck(self):
        resource = RabbitResource(
            id=uuid4(),
            environment_id=uuid4(),
            name="bus",
            storage_profile=StorageProfile("rabbit-data", 2, "/var/lib/rabbitmq"),
            credential_profile=CredentialProfile("guest", "pw"),
        )

        assert build_environment_variables(resource) == {
            "RABBITMQ_DEFAULT_PASS": "pw",
            "RABBITMQ_DEFAULT_USER": "guest",
        }
        assert build_healthcheck_test(resource) == ["CMD", "rabbitmq-diagnostics", "ping"]

    def test_empty_environment(self, env_store):
        store, env_id = env_store

        document = ComposeRenderer(store).build_document(env_id)

        assert document == {"version": "3.9", "services": {}}


class TestRenderHelpers:
    def test_port_mappings_sort_host_ports(self):
        assert build_port_mappings([5673, 5672], (5672, 15672)) == [
            "localhost:5672:5672",
            "localhost:5673:15672",
        ]

    def test_declared_ports_override_defaults(self):
        resource = RedisResource(
            id=uuid4(),
            environment_id=uuid4(),
            name="cache",
            storage_profile=StorageProfile("redis-data", 1, "/data"),
            port_policy=PortPolicy.of([6380, 6379]),
        )

        assert resolve_container_ports(resource) == (6379, 6380)
