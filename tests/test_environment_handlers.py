"""
Tests for resource group and environment handlers.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError as RequestValidationError

from cloudify.errors import ConflictError, NotFoundError, ValidationError
from cloudify.handlers.requests import CreateEnvironmentRequest, CreateResourceGroupRequest
from cloudify.models import EnvironmentName, HostProfile, NetworkMode

from .fixtures import postgres_request


class TestResourceGroups:
    def test_create_and_list(self, services, resource_group):
        second = services.create_resource_group.handle(CreateResourceGroupRequest(name=" rg-edge "))

        groups = services.list_resource_groups.handle()

        assert [g.name for g in groups] == ["rg-core", "rg-edge"]
        assert second.name == "rg-edge"
        assert groups[0].get_tag("OWNER") == "platform"

    def test_duplicate_tag_keys_rejected(self, services):
        with pytest.raises(ValidationError):
            services.create_resource_group.handle(
                CreateResourceGroupRequest(name="rg", tags={"Owner": "a", "owner": "b"})
            )
        assert services.list_resource_groups.handle() == []


class TestCreateEnvironment:
    def test_creates_and_deploys(self, services, resource_group, temp_workspace):
        environment = services.create_environment.handle(
            CreateEnvironmentRequest(
                resource_group_id=resource_group.id,
                name="Test",
                network_mode="Host",
                base_domain=" test.local ",
            )
        )

        assert environment.name is EnvironmentName.TEST
        assert environment.network_mode is NetworkMode.HOST
        assert environment.base_domain == "test.local"
        assert services.runner.commands == [["up", "-d"]]
        compose_file = temp_workspace / "environments" / str(environment.id) / "docker-compose.yml"
        assert compose_file.read_text().startswith("version: '3.9'")

    def test_unknown_group(self, services):
        with pytest.raises(NotFoundError):
            services.create_environment.handle(
                CreateEnvironmentRequest(resource_group_id=uuid4(), name="Dev")
            )
        assert services.runner.requests == []

    def test_duplicate_name_in_group(self, services, resource_group, environment):
        with pytest.raises(ConflictError):
            services.create_environment.handle(
                CreateEnvironmentRequest(resource_group_id=resource_group.id, name="Dev")
            )

    def test_blank_base_domain(self, services, resource_group):
        with pytest.raises(ValidationError):
            services.create_environment.handle(
                CreateEnvironmentRequest(
                    resource_group_id=resource_group.id, name="Prod", base_domain="  "
                )
            )

    def test_unknown_environment_name(self, resource_group):
        with pytest.raises(RequestValidationError):
            CreateEnvironmentRequest(resource_group_id=resource_group.id, name="Staging")


class TestEnvironmentQueries:
    def test_list_environments(self, services, resource_group, environment):
        assert [e.id for e in services.list_environments.handle(resource_group.id)] == [environment.id]
        with pytest.raises(NotFoundError):
            services.list_environments.handle(uuid4())

    def test_overview(self, services, environment):
        summary = services.add_resource.handle(postgres_request(environment.id))

        overview = services.environment_overview.handle(environment.id)

        assert overview.environment.id == environment.id
        [item] = overview.resources
        assert item.resource.id == summary.resource.id
        assert item.connection_info.port == 5432
        assert f"postgres-{summary.resource.short_id}:" in overview.compose_yaml
        assert isinstance(overview.host_profile, HostProfile)

    def test_overview_unknown_environment(self, services):
        with pytest.raises(NotFoundError):
            services.environment_overview.handle(uuid4())

    def test_deploy_environment(self, services, environment, temp_workspace):
        path = services.deploy_environment.handle(environment.id)

        assert path == str(temp_workspace / "environments" / str(environment.id) / "docker-compose.yml")
        assert services.runner.commands[-1] == ["up", "-d"]
