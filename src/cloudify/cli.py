"""
Command-line interface for Cloudify

Manage resource groups, environments and their resources from the shell.
"""

import dataclasses
import functools
import json
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

import click
import pydantic

from . import __version__
from .config import CloudifyConfig, load_config
from .errors import CloudifyError
from .handlers.requests import (
    AddResourceRequest,
    CapacityProfileRequest,
    CreateEnvironmentRequest,
    CreateResourceGroupRequest,
    CredentialProfileRequest,
    GetResourceLogsRequest,
    ScaleResourceRequest,
    StorageProfileRequest,
)
from .logging_config import setup_logging
from .models import EnvironmentName, NetworkMode, ResourceType
from .serialization import (
    connection_info_to_dict,
    environment_to_dict,
    resource_group_to_dict,
    resource_to_dict,
)
from .services import CloudifyServices, build_services


def _services(ctx: click.Context) -> CloudifyServices:
    """Services for this invocation, built on first use."""
    if ctx.obj.get("services") is None:
        ctx.obj["services"] = build_services(ctx.obj["config"])
    return ctx.obj["services"]


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def cloudify_command(func):
    """Report CloudifyError and request validation failures as one-line errors."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CloudifyError as e:
            click.echo(f"❌ {e.message}", err=True)
            sys.exit(1)
        except pydantic.ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            click.echo(f"❌ Invalid request: {errors}", err=True)
            sys.exit(1)

    return wrapper


def _parse_tags(tags: Tuple[str, ...]) -> dict:
    parsed = {}
    for tag in tags:
        key, sep, value = tag.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got '{tag}'", param_hint="--tag")
        parsed[key.strip()] = value.strip()
    return parsed


@click.group()
@click.option(
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    help="Path to a .env style configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for log files",
)
@click.option(
    "--state-file",
    type=click.Path(path_type=Path),
    default=None,
    help="State file for the yaml backend",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    log_level: Optional[str],
    verbose: bool,
    log_dir: Optional[Path],
    state_file: Optional[Path],
) -> None:
    """
    Cloudify: local multi-service environments

    Provision databases, caches, queues and application containers as
    compose projects on this host.
    """
    ctx.ensure_object(dict)

    if ctx.obj.get("config") is None:
        try:
            ctx.obj["config"] = load_config(
                config_file=str(config_file) if config_file else None,
                cli_overrides={
                    "log_level": log_level.upper() if log_level else None,
                    "verbose": verbose or None,
                    "log_dir": str(log_dir) if log_dir else None,
                    "state_file": str(state_file) if state_file else None,
                },
            )
        except pydantic.ValidationError as e:
            click.echo(f"❌ Invalid configuration: {e}", err=True)
            sys.exit(1)

    config: CloudifyConfig = ctx.obj["config"]
    setup_logging(
        log_dir=config.log_dir,
        verbose=config.verbose,
        log_level=config.log_level,
    )


# Resource groups

@cli.group("group")
def group_cmd() -> None:
    """Manage resource groups."""


@group_cmd.command("create")
@click.argument("name")
@click.option("--tag", "tags", multiple=True, help="Tag as KEY=VALUE (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def group_create(ctx: click.Context, name: str, tags: Tuple[str, ...], as_json: bool) -> None:
    """Create a resource group."""
    request = CreateResourceGroupRequest(name=name, tags=_parse_tags(tags))
    group = _services(ctx).create_resource_group.handle(request)

    if as_json:
        _echo_json(resource_group_to_dict(group))
        return
    click.echo(f"✅ Created resource group {group.name}")
    click.echo(f"   ID: {group.id}")


@group_cmd.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def group_list(ctx: click.Context, as_json: bool) -> None:
    """List resource groups."""
    groups = _services(ctx).list_resource_groups.handle()

    if as_json:
        _echo_json([resource_group_to_dict(g) for g in groups])
        return
    if not groups:
        click.echo("No resource groups.")
        return
    for group in groups:
        tags = ", ".join(f"{k}={v}" for k, v in sorted(group.tags.items()))
        click.echo(f"{group.id}  {group.name}" + (f"  [{tags}]" if tags else ""))


# Environments

@cli.group("env")
def env_cmd() -> None:
    """Manage environments."""


@env_cmd.command("create")
@click.argument("resource_group_id", type=click.UUID)
@click.option(
    "--name",
    type=click.Choice([n.value for n in EnvironmentName]),
    required=True,
    help="Environment name",
)
@click.option(
    "--network-mode",
    type=click.Choice([m.value for m in NetworkMode]),
    default=NetworkMode.BRIDGE.value,
    show_default=True,
    help="Container network mode",
)
@click.option("--base-domain", default=None, help="Base domain for the environment")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def env_create(ctx, resource_group_id, name, network_mode, base_domain, as_json) -> None:
    """Create an environment in a resource group and deploy it."""
    request = CreateEnvironmentRequest(
        resource_group_id=resource_group_id,
        name=name,
        network_mode=network_mode,
        base_domain=base_domain,
    )
    environment = _services(ctx).create_environment.handle(request)

    if as_json:
        _echo_json(environment_to_dict(environment))
        return
    click.echo(f"✅ Created environment {environment.name.value}")
    click.echo(f"   ID: {environment.id}")


@env_cmd.command("list")
@click.argument("resource_group_id", type=click.UUID)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def env_list(ctx, resource_group_id, as_json) -> None:
    """List environments of a resource group."""
    environments = _services(ctx).list_environments.handle(resource_group_id)

    if as_json:
        _echo_json([environment_to_dict(e) for e in environments])
        return
    if not environments:
        click.echo("No environments.")
        return
    for environment in environments:
        click.echo(
            f"{environment.id}  {environment.name.value:<5} {environment.network_mode.value}"
            + (f"  {environment.base_domain}" if environment.base_domain else "")
        )


@env_cmd.command("show")
@click.argument("environment_id", type=click.UUID)
@click.option("--show-secrets", is_flag=True, help="Include passwords in the output")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def env_show(ctx, environment_id, show_secrets, as_json) -> None:
    """Show an environment with its resources and connection details."""
    overview = _services(ctx).environment_overview.handle(environment_id)

    if as_json:
        _echo_json(
            {
                "environment": environment_to_dict(overview.environment),
                "resources": [
                    {
                        "resource": _resource_view(summary.resource, show_secrets),
                        "connection_info": connection_info_to_dict(
                            summary.connection_info, show_secrets
                        ),
                    }
                    for summary in overview.resources
                ],
                "compose_yaml": overview.compose_yaml,
                "host_profile": dataclasses.asdict(overview.host_profile) if overview.host_profile else None,
            }
        )
        return

    environment = overview.environment
    click.echo(f"📦 Environment {environment.name.value} ({environment.id})")
    click.echo(f"   Network mode : {environment.network_mode.value}")
    if environment.base_domain:
        click.echo(f"   Base domain  : {environment.base_domain}")

    if not overview.resources:
        click.echo("   No resources.")
    for summary in overview.resources:
        resource = summary.resource
        line = f"   - {resource.name} [{resource.resource_type.value}] {resource.state.value}"
        info = connection_info_to_dict(summary.connection_info, show_secrets)
        if info:
            line += f"  {info['host']}:{info['port']}"
            if info["username"]:
                line += f"  user={info['username']} password={info['password']}"
        click.echo(line)

    host = overview.host_profile
    if host:
        click.echo(
            f"   Host: {host.cpu_count} CPUs, {host.total_memory_gb} GB RAM, {host.storage_hint}"
        )


@env_cmd.command("manifest")
@click.argument("environment_id", type=click.UUID)
@click.pass_context
@cloudify_command
def env_manifest(ctx, environment_id) -> None:
    """Print the rendered compose manifest."""
    overview = _services(ctx).environment_overview.handle(environment_id)
    click.echo(overview.compose_yaml, nl=False)


@env_cmd.command("deploy")
@click.argument("environment_id", type=click.UUID)
@click.pass_context
@cloudify_command
def env_deploy(ctx, environment_id) -> None:
    """Render and bring up an environment."""
    compose_file = _services(ctx).deploy_environment.handle(environment_id)
    click.echo(f"✅ Deployed environment {environment_id}")
    click.echo(f"   Compose file: {compose_file}")


def _resource_view(resource, show_secrets: bool) -> dict:
    data = resource_to_dict(resource)
    if not show_secrets and data.get("credential_profile"):
        data["credential_profile"]["password"] = "***"
    return data


# Resources

@cli.group("resource")
def resource_cmd() -> None:
    """Manage resources."""


@resource_cmd.command("add")
@click.argument("environment_id", type=click.UUID)
@click.option("--name", required=True, help="Resource name (unique in the environment)")
@click.option(
    "--type",
    "resource_type",
    type=click.Choice([t.value for t in ResourceType]),
    required=True,
    help="Resource type",
)
@click.option("--port", "requested_port", type=int, default=None, help="Explicit host port")
@click.option("--expose", "exposed_ports", type=int, multiple=True, help="Container port to expose (repeatable)")
@click.option("--image", default=None, help="Container image (AppService)")
@click.option("--health-path", default=None, help="HTTP health endpoint path (AppService)")
@click.option("--volume", "volume_name", default=None, help="Volume name")
@click.option("--size-gb", type=int, default=None, help="Volume size in GB")
@click.option("--mount-path", default=None, help="Volume mount path")
@click.option("--persistent/--ephemeral", default=True, help="Volume persistence")
@click.option("--username", default=None, help="Root username")
@click.option("--password", default=None, help="Root password")
@click.option("--cpu", "cpu_limit", type=float, default=None, help="CPU limit")
@click.option("--memory-gb", "memory_limit_gb", type=float, default=None, help="Memory limit in GB")
@click.option("--replicas", type=int, default=None, help="Replica count")
@click.option("--notes", default=None, help="Capacity notes")
@click.option("--show-secrets", is_flag=True, help="Include passwords in the output")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def resource_add(
    ctx,
    environment_id,
    name,
    resource_type,
    requested_port,
    exposed_ports,
    image,
    health_path,
    volume_name,
    size_gb,
    mount_path,
    persistent,
    username,
    password,
    cpu_limit,
    memory_limit_gb,
    replicas,
    notes,
    show_secrets,
    as_json,
) -> None:
    """Add a resource to an environment and deploy it."""
    storage = None
    if volume_name is not None or size_gb is not None or mount_path is not None:
        storage = StorageProfileRequest(
            volume_name=volume_name or "",
            size_gb=size_gb or 0,
            mount_path=mount_path or "",
            is_persistent=persistent,
        )

    credentials = None
    if username is not None or password is not None:
        credentials = CredentialProfileRequest(username=username or "", password=password or "")

    capacity = None
    if any(v is not None for v in (cpu_limit, memory_limit_gb, replicas, notes)):
        capacity = CapacityProfileRequest(
            cpu_limit=cpu_limit,
            memory_limit_gb=memory_limit_gb,
            replicas=replicas if replicas is not None else 1,
            notes=notes,
        )

    request = AddResourceRequest(
        environment_id=environment_id,
        name=name,
        resource_type=resource_type,
        capacity_profile=capacity,
        storage_profile=storage,
        credential_profile=credentials,
        image=image,
        health_endpoint_path=health_path,
        exposed_ports=list(exposed_ports),
        requested_port=requested_port,
    )
    summary = _services(ctx).add_resource.handle(request)
    resource = summary.resource

    if as_json:
        _echo_json(
            {
                "resource": _resource_view(resource, show_secrets),
                "connection_info": connection_info_to_dict(summary.connection_info, show_secrets),
            }
        )
        return

    click.echo(f"✅ Added {resource.resource_type.value} resource {resource.name}")
    click.echo(f"   ID   : {resource.id}")
    click.echo(f"   State: {resource.state.value}")
    info = connection_info_to_dict(summary.connection_info, show_secrets)
    if info:
        click.echo(f"   Host : {info['host']}:{info['port']}")


@resource_cmd.command("delete")
@click.argument("resource_id", type=click.UUID)
@click.pass_context
@cloudify_command
def resource_delete(ctx, resource_id) -> None:
    """Delete a resource and release its ports."""
    _services(ctx).delete_resource.handle(resource_id)
    click.echo(f"✅ Deleted resource {resource_id}")


def _lifecycle_command(name: str, verb: str, attribute: str, help_text: str):
    @resource_cmd.command(name, help=help_text)
    @click.argument("resource_id", type=click.UUID)
    @click.pass_context
    @cloudify_command
    def command(ctx, resource_id) -> None:
        resource = getattr(_services(ctx), attribute).handle(resource_id)
        click.echo(f"✅ {verb} {resource.name} ({resource.state.value})")

    return command


resource_start = _lifecycle_command(
    "start", "Started", "start_resource", "Start a resource's service."
)
resource_stop = _lifecycle_command(
    "stop", "Stopped", "stop_resource", "Stop a resource's service."
)
resource_restart = _lifecycle_command(
    "restart", "Restarted", "restart_resource", "Restart a resource's service."
)


@resource_cmd.command("scale")
@click.argument("resource_id", type=click.UUID)
@click.argument("replicas", type=int)
@click.pass_context
@cloudify_command
def resource_scale(ctx, resource_id, replicas) -> None:
    """Scale a resource to REPLICAS instances."""
    resource = _services(ctx).scale_resource.handle(
        ScaleResourceRequest(resource_id=resource_id, replicas=replicas)
    )
    click.echo(f"✅ Scaled {resource.name} to {resource.capacity_profile.replicas} replicas")


@resource_cmd.command("logs")
@click.argument("resource_id", type=click.UUID)
@click.option("--tail", type=int, default=200, show_default=True, help="Number of lines")
@click.option("--service", "service_name", default=None, help="Override the compose service name")
@click.pass_context
@cloudify_command
def resource_logs(ctx, resource_id, tail, service_name) -> None:
    """Show recent logs of a resource."""
    logs = _services(ctx).resource_logs.handle(
        GetResourceLogsRequest(resource_id=resource_id, tail=tail, service_name=service_name)
    )
    click.echo(logs)


@resource_cmd.command("health")
@click.argument("resource_id", type=click.UUID)
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@cloudify_command
def resource_health(ctx, resource_id, as_json) -> None:
    """Show runtime state and health of a resource."""
    health = _services(ctx).resource_health.handle(resource_id)

    if as_json:
        _echo_json(
            {
                "resource_id": str(resource_id),
                "state": health.state.value,
                "health": health.health.value,
            }
        )
        return
    click.echo(f"State : {health.state.value}")
    click.echo(f"Health: {health.health.value}")


# Configuration and version

@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: CloudifyConfig = ctx.obj["config"]
    values = config.mask_sensitive_values()

    click.echo("📋 Cloudify Configuration")
    click.echo("=" * 40)
    for key in sorted(values):
        click.echo(f"{key:<24}: {values[key]}")


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"Cloudify version: {__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
