"""
Tests for the add-resource handler: validation, port commit retries and
compensating deletes.
"""

from uuid import uuid4

import pytest
import yaml

from cloudify.environment import PortAllocator
from cloudify.errors import (
    AllocationExhaustedError,
    ConflictError,
    NotFoundError,
    PortConflictError,
    ProcessExecutionError,
    StateStoreError,
    ValidationError,
)
from cloudify.handlers import AddResourceHandler
from cloudify.handlers.requests import (
    CapacityProfileRequest,
    CreateEnvironmentRequest,
    CreateResourceGroupRequest,
)
from cloudify.models import (
    ConnectionInfo,
    RedisResource,
    ResourceState,
    StorageProfile,
)
from cloudify.process_runner import ProcessOutcome
from cloudify.services import CloudifyServices
from cloudify.state import InMemoryStateStore

from .fixtures import FakeProcessRunner, app_request, postgres_request, redis_request


class RacingStateStore(InMemoryStateStore):
    """Loses the first ``losses`` port commits to a rival resource."""

    def __init__(self, losses: int):
        super().__init__()
        self.losses = losses
        self.rival_id = None
        self.attempts = 0

    def assign_port(self, environment_id, resource_id, port):
        if resource_id != self.rival_id:
            self.attempts += 1
        if self.losses > 0 and resource_id != self.rival_id:
            self.losses -= 1
            super().assign_port(environment_id, self.rival_id, port)
            return False
        return super().assign_port(environment_id, resource_id, port)


class RejectingStateStore(InMemoryStateStore):
    """Every port commit fails."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    def assign_port(self, environment_id, resource_id, port):
        self.attempts += 1
        return False


class UnavailableStateStore(InMemoryStateStore):
    """Port commits fail with a backend error."""

    def assign_port(self, environment_id, resource_id, port):
        raise StateStoreError("state database went away")


class ReadOnlyRacingStateStore(RacingStateStore):
    """Loses a race, then cannot persist the updated port policy."""

    def update_resource(self, resource):
        raise StateStoreError("state database is read-only")


def wire(test_config, store):
    services = CloudifyServices(test_config, state_store=store, runner=FakeProcessRunner())
    services.port_allocator._is_port_available = lambda port: True
    group = services.create_resource_group.handle(CreateResourceGroupRequest(name="rg-core"))
    environment = services.create_environment.handle(
        CreateEnvironmentRequest(resource_group_id=group.id, name="Dev")
    )
    return services, environment


def add_rival(store, environment_id):
    rival = RedisResource(
        id=uuid4(),
        environment_id=environment_id,
        name="rival",
        storage_profile=StorageProfile("rival-data", 1, "/data"),
    )
    store.add_resource(rival)
    return rival


class TestAddResource:
    def test_end_to_end_postgres(self, services, store, resource_group, environment):
        assert resource_group.get_tag("owner") == "platform"

        summary = services.add_resource.handle(postgres_request(environment.id))

        resource = summary.resource
        assert resource.state is ResourceState.PROVISIONING
        ports = store.list_resource_ports(environment.id, resource.id)
        assert len(ports) == 1 and 5432 <= ports[0] <= 5432 + 19
        assert summary.connection_info == ConnectionInfo("localhost", ports[0], "admin", "secret")

        manifest = services.renderer.render(environment.id)
        service = yaml.safe_load(manifest)["services"][f"postgres-{resource.short_id}"]
        assert service["healthcheck"]["test"] == ["CMD-SHELL", "pg_isready -U admin"]
        assert service["ports"] == [f"localhost:{ports[0]}:5432"]
        assert services.runner.commands[-1] == ["up", "-d"]

    def test_auto_port_does_not_touch_port_policy(self, services, environment):
        summary = services.add_resource.handle(redis_request(environment.id))

        assert summary.resource.port_policy is None
        assert summary.connection_info == ConnectionInfo("localhost", 6379)

    def test_requested_port_tracked_in_policy(self, services, store, environment):
        summary = services.add_resource.handle(postgres_request(environment.id, requested_port=15432))

        stored = store.get_resource(summary.resource.id)
        assert stored.port_policy.exposed_ports == (15432,)
        assert store.list_resource_ports(environment.id, stored.id) == [15432]

    def test_app_service_without_ports_gets_no_allocation(self, services, store, environment):
        summary = services.add_resource.handle(
            app_request(environment.id, capacity_profile=CapacityProfileRequest(replicas=2))
        )

        assert summary.connection_info is None
        assert store.list_allocated_ports(environment.id) == []
        assert services.runner.commands[-1] == [
            "up", "-d", "--scale", f"appservice-{summary.resource.short_id}=2"
        ]

    def test_requested_port_already_allocated(self, services, store, environment):
        services.add_resource.handle(postgres_request(environment.id, requested_port=15432))

        with pytest.raises(PortConflictError):
            services.add_resource.handle(
                postgres_request(environment.id, name="billing-db", requested_port=15432)
            )

        assert [r.name for r in store.list_resources(environment.id)] == ["orders-db"]

    @pytest.mark.parametrize("port", [0, 65536])
    def test_out_of_range_port_fails_before_mutation(self, services, store, environment, port):
        runs_before = len(services.runner.requests)

        with pytest.raises(ValidationError):
            services.add_resource.handle(postgres_request(environment.id, requested_port=port))

        assert store.list_resources(environment.id) == []
        assert len(services.runner.requests) == runs_before

    def test_exhaustion_removes_resource(self, services, store, environment):
        blocker = add_rival(store, environment.id)
        for port in range(5432, 5432 + 20):
            store.assign_port(environment.id, blocker.id, port)
        allocator = PortAllocator(store, max_port=5432 + 19)
        allocator._is_port_available = lambda port: True
        handler = AddResourceHandler(store, allocator, services.orchestrator)

        with pytest.raises(AllocationExhaustedError):
            handler.handle(postgres_request(environment.id))

        assert [r.name for r in store.list_resources(environment.id)] == ["rival"]

    def test_rejected_commits_exhaust_attempts(self, test_config):
        store = RejectingStateStore()
        services, environment = wire(test_config, store)

        with pytest.raises(AllocationExhaustedError):
            services.add_resource.handle(redis_request(environment.id))

        assert store.attempts == 20
        assert store.list_resources(environment.id) == []

    def test_lost_race_retries_with_new_port(self, test_config):
        store = RacingStateStore(losses=0)
        services, environment = wire(test_config, store)
        store.rival_id = add_rival(store, environment.id).id
        store.losses = 1

        summary = services.add_resource.handle(app_request(environment.id, exposed_ports=[80]))

        stored = store.get_resource(summary.resource.id)
        assert store.attempts == 2
        assert store.list_resource_ports(environment.id, stored.id) == [5000]
        assert stored.port_policy.exposed_ports == (80, 5000)
        assert summary.connection_info.port == 5000

    def test_lost_race_on_requested_port_never_retries(self, test_config):
        store = RacingStateStore(losses=0)
        services, environment = wire(test_config, store)
        store.rival_id = add_rival(store, environment.id).id
        store.losses = 1

        with pytest.raises(PortConflictError):
            services.add_resource.handle(postgres_request(environment.id, requested_port=15432))

        assert store.attempts == 1
        assert [r.name for r in store.list_resources(environment.id)] == ["rival"]

    def test_store_error_during_commit_removes_resource(self, test_config):
        store = UnavailableStateStore()
        services, environment = wire(test_config, store)

        with pytest.raises(StateStoreError):
            services.add_resource.handle(redis_request(environment.id))

        assert store.list_resources(environment.id) == []
        assert services.runner.commands == [["up", "-d"]]

    def test_policy_update_failure_removes_resource(self, test_config):
        store = ReadOnlyRacingStateStore(losses=0)
        services, environment = wire(test_config, store)
        store.rival_id = add_rival(store, environment.id).id
        store.losses = 1

        with pytest.raises(StateStoreError):
            services.add_resource.handle(app_request(environment.id, exposed_ports=[80]))

        assert [r.name for r in store.list_resources(environment.id)] == ["rival"]

    def test_deploy_failure_marks_resource_failed(self, services, store, environment):
        services.runner.queue(ProcessOutcome.NON_ZERO_EXIT, stderr="pull access denied")

        with pytest.raises(ProcessExecutionError):
            services.add_resource.handle(redis_request(environment.id))

        [resource] = store.list_resources(environment.id)
        assert resource.state is ResourceState.FAILED
        assert store.list_resource_ports(environment.id, resource.id) == [6379]


class TestAddResourceValidation:
    def test_unknown_environment(self, services):
        with pytest.raises(NotFoundError):
            services.add_resource.handle(redis_request(uuid4()))

    def test_duplicate_name_ignores_case(self, services, environment):
        services.add_resource.handle(redis_request(environment.id, name="Cache"))

        with pytest.raises(ConflictError):
            services.add_resource.handle(redis_request(environment.id, name="cache"))

    @pytest.mark.parametrize(
        "build,overrides,message",
        [
            (postgres_request, {"credential_profile": None}, "Credential profile"),
            (postgres_request, {"storage_profile": None}, "Storage profile"),
            (redis_request, {"name": "   "}, "name"),
            (app_request, {"image": " "}, "image"),
            (app_request, {"health_endpoint_path": ""}, "Health endpoint"),
            (app_request, {"exposed_ports": [70000]}, "Exposed ports"),
        ],
    )
    def test_invalid_requests(self, services, store, environment, build, overrides, message):
        with pytest.raises(ValidationError, match=message):
            services.add_resource.handle(build(environment.id, **overrides))

        assert store.list_resources(environment.id) == []

    def test_invalid_capacity(self, services, environment):
        with pytest.raises(ValidationError, match="Replicas"):
            services.add_resource.handle(
                app_request(environment.id, capacity_profile=CapacityProfileRequest(replicas=0))
            )
