"""
Service wiring for Cloudify

Builds the state store, renderer, allocator, process runner, orchestrator
and handlers from a CloudifyConfig.
"""

import logging
from typing import Optional

from .config import CloudifyConfig
from .environment.orchestrator import ComposeOptions, ComposeOrchestrator
from .environment.port_allocator import PortAllocator
from .environment.renderer import ComposeRenderer
from .handlers import (
    AddResourceHandler,
    CreateEnvironmentHandler,
    CreateResourceGroupHandler,
    DeleteResourceHandler,
    DeployEnvironmentHandler,
    GetEnvironmentOverviewHandler,
    GetResourceHealthHandler,
    GetResourceLogsHandler,
    ListEnvironmentsHandler,
    ListResourceGroupsHandler,
    RestartResourceHandler,
    ScaleResourceHandler,
    StartResourceHandler,
    StopResourceHandler,
)
from .process_runner import ProcessRunner
from .state import StateStore, create_state_store
from .system_profile import HostProfileProvider

logger = logging.getLogger(__name__)


class CloudifyServices:
    """Collaborators and handlers sharing one state store."""

    def __init__(
        self,
        config: CloudifyConfig,
        state_store: Optional[StateStore] = None,
        runner: Optional[ProcessRunner] = None,
        host_profile_provider: Optional[HostProfileProvider] = None,
    ):
        self.config = config
        self.state_store = state_store or create_state_store(config)
        self.renderer = ComposeRenderer(self.state_store)
        self.port_allocator = PortAllocator(
            self.state_store,
            min_port=config.port_range_start,
            max_port=config.port_range_end,
        )
        self.runner = runner or ProcessRunner(log_dir=config.log_dir)
        self.orchestrator = ComposeOrchestrator(
            self.state_store,
            self.renderer,
            self.runner,
            ComposeOptions.from_config(config),
        )
        self.host_profile_provider = host_profile_provider or HostProfileProvider()

        store, orchestrator = self.state_store, self.orchestrator
        self.create_resource_group = CreateResourceGroupHandler(store)
        self.list_resource_groups = ListResourceGroupsHandler(store)
        self.create_environment = CreateEnvironmentHandler(store, orchestrator)
        self.list_environments = ListEnvironmentsHandler(store)
        self.environment_overview = GetEnvironmentOverviewHandler(
            store, self.renderer, self.host_profile_provider
        )
        self.deploy_environment = DeployEnvironmentHandler(store, orchestrator)
        self.add_resource = AddResourceHandler(
            store,
            self.port_allocator,
            orchestrator,
            max_port_attempts=config.max_port_attempts,
        )
        self.delete_resource = DeleteResourceHandler(store)
        self.start_resource = StartResourceHandler(store, orchestrator)
        self.stop_resource = StopResourceHandler(store, orchestrator)
        self.restart_resource = RestartResourceHandler(store, orchestrator)
        self.scale_resource = ScaleResourceHandler(store, orchestrator)
        self.resource_logs = GetResourceLogsHandler(store, orchestrator)
        self.resource_health = GetResourceHealthHandler(store, orchestrator)

        logger.debug(f"Services wired with {config.state_backend} state backend")


def build_services(config: CloudifyConfig) -> CloudifyServices:
    return CloudifyServices(config)
