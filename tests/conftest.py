"""
Pytest configuration and fixtures for Cloudify tests.

Provides common fixtures and test utilities across all test modules.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from cloudify.config import CloudifyConfig
from cloudify.handlers.requests import CreateEnvironmentRequest, CreateResourceGroupRequest
from cloudify.services import CloudifyServices
from cloudify.state import InMemoryStateStore

from .fixtures import FakeProcessRunner


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """
    Create temporary workspace directory for test files.

    Yields:
        Path to temporary workspace
    """
    temp_dir = tempfile.mkdtemp(prefix="cloudify_workspace_")
    workspace = Path(temp_dir)

    yield workspace

    shutil.rmtree(temp_dir)


@pytest.fixture
def isolated_test_env(temp_workspace: Path) -> Generator[dict[str, str], None, None]:
    """
    Create isolated test environment with clean environment variables.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("CLOUDIFY_") or key == "DATABASE_URL":
            del os.environ[key]

    os.environ.update(
        {
            "CLOUDIFY_TEST_MODE": "true",
            "CLOUDIFY_LOG_DIR": str(temp_workspace / "logs"),
            "CLOUDIFY_LOG_LEVEL": "DEBUG",
        }
    )

    yield original_env

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_config(isolated_test_env, temp_workspace: Path) -> CloudifyConfig:
    """Configuration with every path inside the temp workspace."""
    return CloudifyConfig(
        log_level="DEBUG",
        log_dir=str(temp_workspace / "logs"),
        test_mode=True,
        state_backend="memory",
        state_file=str(temp_workspace / "state.yaml"),
        working_directory_base=str(temp_workspace / "environments"),
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def services(test_config, store, fake_runner) -> CloudifyServices:
    """Fully wired services over an in-memory store and a fake runner."""
    services = CloudifyServices(test_config, state_store=store, runner=fake_runner)
    # Host bind checks depend on the machine; treat every port as free.
    services.port_allocator._is_port_available = lambda port: True
    return services


@pytest.fixture
def resource_group(services):
    return services.create_resource_group.handle(
        CreateResourceGroupRequest(name="rg-core", tags={"owner": "platform"})
    )


@pytest.fixture
def environment(services, resource_group):
    return services.create_environment.handle(
        CreateEnvironmentRequest(
            resource_group_id=resource_group.id, name="Dev", network_mode="Bridge"
        )
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
