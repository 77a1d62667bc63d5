"""
Tests for the in-memory and YAML state stores.
"""

import threading
from uuid import uuid4

import pytest

from cloudify.errors import ConflictError, NotFoundError, StateStoreError
from cloudify.models import (
    Environment,
    EnvironmentName,
    RedisResource,
    ResourceGroup,
    ResourceState,
    StorageProfile,
)
from cloudify.state import InMemoryStateStore, YamlStateStore


@pytest.fixture(params=["memory", "yaml"])
def any_store(request, temp_workspace):
    if request.param == "memory":
        return InMemoryStateStore()
    return YamlStateStore(temp_workspace / "state" / "state.yaml")


def seed(store):
    group = ResourceGroup(id=uuid4(), name="rg-core", tags={"owner": "platform"})
    store.add_resource_group(group)
    environment = Environment(id=uuid4(), resource_group_id=group.id, name=EnvironmentName.DEV)
    store.add_environment(environment)
    return group, environment


def make_redis(environment_id, name="cache"):
    return RedisResource(
        id=uuid4(),
        environment_id=environment_id,
        name=name,
        storage_profile=StorageProfile("redis-data", 1, "/data"),
    )


class TestStateStoreContract:
    def test_groups_and_environments(self, any_store):
        group, environment = seed(any_store)

        assert any_store.get_resource_group(group.id) == group
        assert [e.id for e in any_store.list_environments(group.id)] == [environment.id]
        assert any_store.get_environment(uuid4()) is None

    def test_environment_requires_group(self, any_store):
        orphan = Environment(id=uuid4(), resource_group_id=uuid4(), name=EnvironmentName.TEST)

        with pytest.raises(NotFoundError):
            any_store.add_environment(orphan)

    def test_resource_names_unique_ignoring_case(self, any_store):
        _, environment = seed(any_store)
        any_store.add_resource(make_redis(environment.id, "Cache"))

        with pytest.raises(ConflictError):
            any_store.add_resource(make_redis(environment.id, "cache"))

    def test_resource_requires_environment(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.add_resource(make_redis(uuid4()))

    def test_update_resource(self, any_store):
        _, environment = seed(any_store)
        resource = make_redis(environment.id)
        any_store.add_resource(resource)

        resource.set_state(ResourceState.RUNNING)
        any_store.update_resource(resource)

        assert any_store.get_resource(resource.id).state is ResourceState.RUNNING
        with pytest.raises(NotFoundError):
            any_store.update_resource(make_redis(environment.id, "ghost"))

    def test_assign_port_is_assign_if_absent(self, any_store):
        _, environment = seed(any_store)
        first = make_redis(environment.id, "first")
        second = make_redis(environment.id, "second")
        any_store.add_resource(first)
        any_store.add_resource(second)

        assert any_store.assign_port(environment.id, first.id, 6379) is True
        assert any_store.assign_port(environment.id, second.id, 6379) is False
        assert any_store.list_resource_ports(environment.id, first.id) == [6379]
        assert any_store.list_resource_ports(environment.id, second.id) == []

    def test_ports_scoped_per_environment(self, any_store):
        group, environment = seed(any_store)
        other = Environment(id=uuid4(), resource_group_id=group.id, name=EnvironmentName.TEST)
        any_store.add_environment(other)
        first = make_redis(environment.id)
        second = make_redis(other.id)
        any_store.add_resource(first)
        any_store.add_resource(second)

        assert any_store.assign_port(environment.id, first.id, 6379)
        assert any_store.assign_port(other.id, second.id, 6379)

    def test_remove_resource_drops_ports(self, any_store):
        _, environment = seed(any_store)
        resource = make_redis(environment.id)
        any_store.add_resource(resource)
        any_store.assign_port(environment.id, resource.id, 6380)
        any_store.assign_port(environment.id, resource.id, 6379)

        assert any_store.list_allocated_ports(environment.id) == [6379, 6380]

        any_store.remove_resource(resource.id)

        assert any_store.get_resource(resource.id) is None
        assert any_store.list_allocated_ports(environment.id) == []
        any_store.remove_resource(resource.id)

    def test_remove_ports_keeps_resource(self, any_store):
        _, environment = seed(any_store)
        resource = make_redis(environment.id)
        any_store.add_resource(resource)
        any_store.assign_port(environment.id, resource.id, 6379)

        any_store.remove_ports(environment.id, resource.id)

        assert any_store.list_resource_ports(environment.id, resource.id) == []
        assert any_store.get_resource(resource.id) is not None

    def test_returned_objects_are_copies(self, any_store):
        _, environment = seed(any_store)
        resource = make_redis(environment.id)
        any_store.add_resource(resource)

        fetched = any_store.get_resource(resource.id)
        fetched.set_state(ResourceState.FAILED)

        assert any_store.get_resource(resource.id).state is ResourceState.PROVISIONING

    def test_concurrent_assign_single_winner(self, any_store):
        _, environment = seed(any_store)
        resources = [make_redis(environment.id, f"cache-{i}") for i in range(8)]
        for resource in resources:
            any_store.add_resource(resource)
        results = []

        def claim(resource):
            results.append(any_store.assign_port(environment.id, resource.id, 7000))

        threads = [threading.Thread(target=claim, args=(r,)) for r in resources]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert any_store.list_allocated_ports(environment.id) == [7000]


class TestYamlStateStore:
    def test_state_survives_new_instance(self, temp_workspace):
        path = temp_workspace / "state.yaml"
        store = YamlStateStore(path)
        group, environment = seed(store)
        resource = make_redis(environment.id)
        store.add_resource(resource)
        store.assign_port(environment.id, resource.id, 6379)

        reopened = YamlStateStore(path)

        assert reopened.get_resource_group(group.id).get_tag("OWNER") == "platform"
        assert reopened.get_resource(resource.id) == resource
        assert reopened.assign_port(environment.id, resource.id, 6379) is False

    def test_missing_file_is_empty_state(self, temp_workspace):
        store = YamlStateStore(temp_workspace / "nested" / "state.yaml")

        assert store.list_resource_groups() == []

    def test_corrupt_file_raises(self, temp_workspace):
        path = temp_workspace / "state.yaml"
        path.write_text("resource_groups: [\n")

        with pytest.raises(StateStoreError):
            YamlStateStore(path).list_resource_groups()

    def test_unsupported_version_raises(self, temp_workspace):
        path = temp_workspace / "state.yaml"
        path.write_text("version: 99\n")

        with pytest.raises(StateStoreError, match="version"):
            YamlStateStore(path).list_resource_groups()

    def test_malformed_entry_raises(self, temp_workspace):
        path = temp_workspace / "state.yaml"
        path.write_text("version: 1\nresource_groups:\n  - name: missing-id\n")

        with pytest.raises(StateStoreError, match="Corrupt"):
            YamlStateStore(path).list_resource_groups()
