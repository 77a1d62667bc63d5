"""
Environment use cases.

Create, list, inspect and deploy environments. Creating an environment
immediately deploys its (empty) manifest so the compose project exists.
"""

import logging
import threading
from typing import List, Optional
from uuid import UUID

from ..environment.orchestrator import ComposeOrchestrator
from ..environment.renderer import ComposeRenderer
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Environment, new_id, utc_now
from ..state.base import StateStore
from ..system_profile import HostProfileProvider
from .requests import CreateEnvironmentRequest, EnvironmentOverview, ResourceSummary
from .resources import build_connection_info

logger = logging.getLogger(__name__)


def get_environment_or_raise(state_store: StateStore, environment_id: UUID) -> Environment:
    environment = state_store.get_environment(environment_id)
    if environment is None:
        raise NotFoundError(f"Environment '{environment_id}' not found.")
    return environment


class CreateEnvironmentHandler:
    """Adds an environment to a resource group and deploys it."""

    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def handle(
        self,
        request: CreateEnvironmentRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> Environment:
        if request.base_domain is not None and not request.base_domain.strip():
            raise ValidationError("Base domain cannot be empty.")

        if self.state_store.get_resource_group(request.resource_group_id) is None:
            raise NotFoundError(f"Resource group '{request.resource_group_id}' not found.")

        for existing in self.state_store.list_environments(request.resource_group_id):
            if existing.name is request.name:
                raise ConflictError(
                    f"Environment {request.name.value} already exists in resource group "
                    f"{request.resource_group_id}."
                )

        environment = Environment(
            id=new_id(),
            resource_group_id=request.resource_group_id,
            name=request.name,
            network_mode=request.network_mode,
            base_domain=request.base_domain.strip() if request.base_domain else None,
            created_at=utc_now(),
        )
        self.state_store.add_environment(environment)
        logger.info(f"Created environment {environment.name.value} ({environment.id})")

        self.orchestrator.deploy_environment(environment.id, cancel_event)
        return environment


class ListEnvironmentsHandler:
    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def handle(self, resource_group_id: UUID) -> List[Environment]:
        if self.state_store.get_resource_group(resource_group_id) is None:
            raise NotFoundError(f"Resource group '{resource_group_id}' not found.")
        return self.state_store.list_environments(resource_group_id)


class GetEnvironmentOverviewHandler:
    """Environment summary, resources with connection info, manifest and host profile."""

    def __init__(
        self,
        state_store: StateStore,
        renderer: ComposeRenderer,
        host_profile_provider: HostProfileProvider,
    ):
        self.state_store = state_store
        self.renderer = renderer
        self.host_profile_provider = host_profile_provider

    def handle(self, environment_id: UUID) -> EnvironmentOverview:
        environment = get_environment_or_raise(self.state_store, environment_id)

        summaries = []
        for resource in self.state_store.list_resources(environment.id):
            ports = self.state_store.list_resource_ports(environment.id, resource.id)
            summaries.append(ResourceSummary(resource, build_connection_info(resource, ports)))

        return EnvironmentOverview(
            environment=environment,
            resources=summaries,
            compose_yaml=self.renderer.render(environment.id),
            host_profile=self.host_profile_provider.get_host_profile(),
        )


class DeployEnvironmentHandler:
    """Re-renders and brings up an existing environment."""

    def __init__(self, state_store: StateStore, orchestrator: ComposeOrchestrator):
        self.state_store = state_store
        self.orchestrator = orchestrator

    def handle(self, environment_id: UUID, cancel_event: Optional[threading.Event] = None) -> str:
        environment = get_environment_or_raise(self.state_store, environment_id)
        compose_file = self.orchestrator.deploy_environment(environment.id, cancel_event)
        return str(compose_file)
