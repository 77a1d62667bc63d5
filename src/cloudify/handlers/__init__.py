"""
Use-case handlers for Cloudify.

Each handler validates its input, enforces domain invariants and drives
the state store and orchestrator. Errors are raised as CloudifyError
subclasses.
"""

from .environments import (
    CreateEnvironmentHandler,
    DeployEnvironmentHandler,
    GetEnvironmentOverviewHandler,
    ListEnvironmentsHandler,
)
from .resource_groups import CreateResourceGroupHandler, ListResourceGroupsHandler
from .resources import (
    AddResourceHandler,
    DeleteResourceHandler,
    GetResourceHealthHandler,
    GetResourceLogsHandler,
    RestartResourceHandler,
    ScaleResourceHandler,
    StartResourceHandler,
    StopResourceHandler,
)

__all__ = [
    "AddResourceHandler",
    "CreateEnvironmentHandler",
    "CreateResourceGroupHandler",
    "DeleteResourceHandler",
    "DeployEnvironmentHandler",
    "GetEnvironmentOverviewHandler",
    "GetResourceHealthHandler",
    "GetResourceLogsHandler",
    "ListEnvironmentsHandler",
    "ListResourceGroupsHandler",
    "RestartResourceHandler",
    "ScaleResourceHandler",
    "StartResourceHandler",
    "StopResourceHandler",
]
