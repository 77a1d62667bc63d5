"""
Compose orchestration for Cloudify environments.

Translates lifecycle intents (deploy, start, stop, restart, scale, logs,
health) into compose CLI invocations. Every invocation goes through the
process runner and raises on any non-success outcome. Runtime state is
never cached here; it is read back from ``ps --format json``.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from ..errors import NotFoundError, ValidationError
from ..models import (
    HealthStatus,
    Resource,
    ResourceHealth,
    ResourceState,
    ResourceType,
)
from ..process_runner import ProcessExecutionRequest, ProcessExecutionResult, ProcessRunner
from ..state.base import StateStore
from . import naming
from .renderer import ComposeRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComposeOptions:
    """How to invoke the compose CLI."""

    compose_command: str = "docker"
    compose_subcommand: str = "compose"
    working_directory_base: Path = Path("./data/environments")
    timeout: Optional[float] = 300.0
    dry_run: bool = False

    @classmethod
    def from_config(cls, config) -> "ComposeOptions":
        return cls(
            compose_command=config.compose_command,
            compose_subcommand=config.compose_subcommand,
            working_directory_base=config.get_working_directory_base(),
            timeout=config.command_timeout,
            dry_run=config.enable_dry_run,
        )


def parse_ps_output(output: str) -> List[Dict[str, Any]]:
    """
    Parse ``ps --format json`` output.

    Accepts a JSON array, a single JSON object, or one JSON object per line
    (newer compose releases print the latter).

    Raises:
        ValueError: output is not one of those shapes
    """
    text = output.strip()
    if not text:
        return []

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = [json.loads(line) for line in text.splitlines() if line.strip()]

    if isinstance(parsed, dict):
        parsed = [parsed]
    if not isinstance(parsed, list) or not all(isinstance(entry, dict) for entry in parsed):
        raise ValueError("ps output is not a list of JSON objects")
    return parsed


def map_container_status(state: Optional[str], health: Optional[str]) -> ResourceHealth:
    """Map compose State/Health strings onto ResourceState/HealthStatus."""
    state = (state or "").strip().lower()
    health = (health or "").strip().lower()

    if "running" in state:
        if "unhealthy" in health:
            return ResourceHealth(ResourceState.FAILED, HealthStatus.UNHEALTHY)
        return ResourceHealth(ResourceState.RUNNING, HealthStatus.HEALTHY)
    if "exited" in state or "stopped" in state:
        return ResourceHealth(ResourceState.STOPPED, HealthStatus.UNHEALTHY)
    if "created" in state or "restarting" in state:
        return ResourceHealth(ResourceState.PROVISIONING, HealthStatus.UNKNOWN)
    return ResourceHealth(ResourceState.FAILED, HealthStatus.UNKNOWN)


def health_from_ps_output(output: str, service: str) -> ResourceHealth:
    """Locate ``service`` in ps output and map its status."""
    if not output.strip():
        return ResourceHealth(ResourceState.STOPPED, HealthStatus.UNKNOWN)

    try:
        entries = parse_ps_output(output)
    except ValueError as e:
        logger.warning(f"Unparseable ps output for {service}: {e}")
        return ResourceHealth(ResourceState.FAILED, HealthStatus.UNKNOWN)

    wanted = service.casefold()
    for entry in entries:
        if str(entry.get("Service", "")).casefold() == wanted:
            return map_container_status(entry.get("State"), entry.get("Health"))

    return ResourceHealth(ResourceState.DELETED, HealthStatus.UNKNOWN)


class ComposeOrchestrator:
    """Drives the compose CLI for environments and their resources."""

    def __init__(
        self,
        state_store: StateStore,
        renderer: ComposeRenderer,
        runner: ProcessRunner,
        options: Optional[ComposeOptions] = None,
    ):
        self.state_store = state_store
        self.renderer = renderer
        self.runner = runner
        self.options = options or ComposeOptions()

    # Environment operations

    def deploy_environment(
        self, environment_id: UUID, cancel_event: Optional[threading.Event] = None
    ) -> Path:
        """
        Render the manifest, write it and bring the environment up.

        Returns:
            Path of the written compose file
        """
        if self.state_store.get_environment(environment_id) is None:
            raise NotFoundError(f"Environment '{environment_id}' not found.")

        compose_file = self.write_manifest(environment_id)

        arguments = ["up", "-d"]
        for resource in self._scaled_app_services(environment_id):
            replicas = resource.capacity_profile.replicas
            arguments.extend(["--scale", f"{naming.service_name(resource)}={replicas}"])

        logger.info(f"Deploying environment {environment_id}")
        self._compose(environment_id, arguments, cancel_event)
        return compose_file

    def write_manifest(self, environment_id: UUID) -> Path:
        """Write the rendered manifest to the environment's working directory."""
        compose_file = naming.compose_file_path(self.options.working_directory_base, environment_id)
        compose_file.parent.mkdir(parents=True, exist_ok=True)
        compose_file.write_text(self.renderer.render(environment_id))
        logger.debug(f"Wrote compose file {compose_file}")
        return compose_file

    # Resource operations

    def start_resource(self, resource_id: UUID, cancel_event: Optional[threading.Event] = None) -> None:
        self._service_command(resource_id, "start", cancel_event)

    def stop_resource(self, resource_id: UUID, cancel_event: Optional[threading.Event] = None) -> None:
        self._service_command(resource_id, "stop", cancel_event)

    def restart_resource(self, resource_id: UUID, cancel_event: Optional[threading.Event] = None) -> None:
        self._service_command(resource_id, "restart", cancel_event)

    def scale_resource(
        self,
        resource_id: UUID,
        replicas: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if replicas < 1:
            raise ValidationError("Replicas must be at least 1.")
        resource = self._get_resource(resource_id)
        service = naming.service_name(resource)
        logger.info(f"Scaling {service} to {replicas} replicas")
        self._compose(
            resource.environment_id,
            ["up", "-d", "--scale", f"{service}={replicas}", service],
            cancel_event,
        )

    def get_resource_logs(
        self,
        resource_id: UUID,
        tail: int = 200,
        service_name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Last ``tail`` log lines of the resource's service (or ``service_name``)."""
        if tail < 1:
            raise ValidationError("Tail must be at least 1.")
        resource = self._get_resource(resource_id)
        service = service_name or naming.service_name(resource)
        result = self._compose(
            resource.environment_id, ["logs", "--tail", str(tail), service], cancel_event
        )
        return result.stdout.rstrip()

    def get_resource_health(
        self, resource_id: UUID, cancel_event: Optional[threading.Event] = None
    ) -> ResourceHealth:
        resource = self._get_resource(resource_id)
        result = self._compose(resource.environment_id, ["ps", "--format", "json"], cancel_event)
        return health_from_ps_output(result.stdout, naming.service_name(resource))

    def get_resource_status(
        self, resource_id: UUID, cancel_event: Optional[threading.Event] = None
    ) -> ResourceState:
        return self.get_resource_health(resource_id, cancel_event).state

    # Internals

    def build_arguments(self, environment_id: UUID, command: Sequence[str]) -> List[str]:
        """Full argument list for one compose invocation."""
        compose_file = naming.compose_file_path(self.options.working_directory_base, environment_id)
        arguments = [
            self.options.compose_subcommand,
            "--project-name",
            naming.project_name(environment_id),
            "--file",
            str(compose_file),
        ]
        if self.options.dry_run:
            arguments.append("--dry-run")
        arguments.extend(command)
        return arguments

    def _compose(
        self,
        environment_id: UUID,
        command: Sequence[str],
        cancel_event: Optional[threading.Event],
    ) -> ProcessExecutionResult:
        compose_file = naming.compose_file_path(self.options.working_directory_base, environment_id)
        if not compose_file.exists():
            self.write_manifest(environment_id)

        arguments = self.build_arguments(environment_id, command)
        request = ProcessExecutionRequest(
            file_name=self.options.compose_command,
            arguments=tuple(arguments),
            working_directory=str(compose_file.parent),
            timeout=self.options.timeout,
        )
        result = self.runner.run(request, cancel_event=cancel_event, operation=f"compose_{command[0]}")
        return result.ensure_success(self.options.compose_command, arguments)

    def _service_command(
        self, resource_id: UUID, subcommand: str, cancel_event: Optional[threading.Event]
    ) -> None:
        resource = self._get_resource(resource_id)
        service = naming.service_name(resource)
        logger.info(f"Running '{subcommand}' for {service}")
        self._compose(resource.environment_id, [subcommand, service], cancel_event)

    def _get_resource(self, resource_id: UUID) -> Resource:
        resource = self.state_store.get_resource(resource_id)
        if resource is None:
            raise NotFoundError(f"Resource '{resource_id}' not found.")
        return resource

    def _scaled_app_services(self, environment_id: UUID) -> List[Resource]:
        scaled = [
            resource
            for resource in self.state_store.list_resources(environment_id)
            if resource.resource_type is ResourceType.APP_SERVICE
            and resource.capacity_profile is not None
            and resource.capacity_profile.replicas > 1
        ]
        return sorted(scaled, key=naming.service_name)
