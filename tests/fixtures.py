"""
Test helpers for Cloudify

Provides a fake process runner that records compose invocations and the
request builders shared by handler and CLI tests.
"""

from typing import List, Optional

from cloudify.handlers.requests import (
    AddResourceRequest,
    CredentialProfileRequest,
    StorageProfileRequest,
)
from cloudify.process_runner import (
    ProcessExecutionRequest,
    ProcessExecutionResult,
    ProcessOutcome,
)


class FakeProcessRunner:
    """Records compose invocations and replays queued results."""

    def __init__(self):
        self.requests: List[ProcessExecutionRequest] = []
        self.results: List[ProcessExecutionResult] = []

    def queue(self, outcome=ProcessOutcome.SUCCESS, stdout="", stderr="", exit_code=None):
        if exit_code is None:
            exit_code = 0 if outcome is ProcessOutcome.SUCCESS else 1
        self.results.append(
            ProcessExecutionResult(outcome=outcome, exit_code=exit_code, stdout=stdout, stderr=stderr)
        )

    def run(self, request, cancel_event=None, operation: Optional[str] = None):
        self.requests.append(request)
        if self.results:
            return self.results.pop(0)
        return ProcessExecutionResult(outcome=ProcessOutcome.SUCCESS, exit_code=0)

    @property
    def commands(self) -> List[List[str]]:
        """Compose arguments following the ``--file`` (and ``--dry-run``) prefix."""
        commands = []
        for request in self.requests:
            args = list(request.arguments)
            start = args.index("--file") + 2
            if len(args) > start and args[start] == "--dry-run":
                start += 1
            commands.append(args[start:])
        return commands


def postgres_request(environment_id, name="orders-db", **overrides) -> AddResourceRequest:
    """Postgres with volume pg-data (20GB) and admin/secret credentials."""
    fields = {
        "environment_id": environment_id,
        "name": name,
        "resource_type": "Postgres",
        "storage_profile": StorageProfileRequest(
            volume_name="pg-data", size_gb=20, mount_path="/var/lib/postgresql/data"
        ),
        "credential_profile": CredentialProfileRequest(username="admin", password="secret"),
    }
    fields.update(overrides)
    return AddResourceRequest(**fields)


def redis_request(environment_id, name="cache", **overrides) -> AddResourceRequest:
    fields = {
        "environment_id": environment_id,
        "name": name,
        "resource_type": "Redis",
        "storage_profile": StorageProfileRequest(
            volume_name="redis-data", size_gb=1, mount_path="/data"
        ),
    }
    fields.update(overrides)
    return AddResourceRequest(**fields)


def app_request(environment_id, name="web", **overrides) -> AddResourceRequest:
    fields = {
        "environment_id": environment_id,
        "name": name,
        "resource_type": "AppService",
        "image": "ghcr.io/acme/web:1.0",
    }
    fields.update(overrides)
    return AddResourceRequest(**fields)
