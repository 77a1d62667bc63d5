"""
File-backed state store.

Keeps the whole state in a single YAML document (by default
``.cloudify/state.yaml``). Every operation runs under an exclusive ``fcntl``
lock on a sidecar lock file, so several CLI processes can race for ports
safely: the assign-if-absent check and the write happen inside one lock.
"""

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator
from uuid import UUID

import yaml

from ..errors import StateStoreError
from ..serialization import (
    environment_from_dict,
    environment_to_dict,
    resource_from_dict,
    resource_group_from_dict,
    resource_group_to_dict,
    resource_to_dict,
)
from .memory import InMemoryStateStore, StateDocument

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1


class YamlStateStore(InMemoryStateStore):
    """State store persisted to a YAML file."""

    def __init__(self, state_file: Path):
        super().__init__()
        self.state_file = Path(state_file)
        self.lock_file = self.state_file.with_name(self.state_file.name + ".lock")
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[StateDocument]:
        with self._lock:
            with open(self.lock_file, "a+") as lock_handle:
                fcntl.flock(lock_handle, fcntl.LOCK_EX if write else fcntl.LOCK_SH)
                try:
                    document = self._load()
                    yield document
                    if write:
                        self._save(document)
                finally:
                    fcntl.flock(lock_handle, fcntl.LOCK_UN)

    def _load(self) -> StateDocument:
        """Load the state document from disk."""
        if not self.state_file.exists():
            return StateDocument()

        try:
            with open(self.state_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise StateStoreError(f"Invalid state file {self.state_file}: {e}") from e

        version = data.get("version", DOCUMENT_VERSION)
        if version != DOCUMENT_VERSION:
            raise StateStoreError(
                f"Unsupported state file version {version} in {self.state_file}"
            )

        document = StateDocument()
        try:
            for item in data.get("resource_groups") or []:
                group = resource_group_from_dict(item)
                document.resource_groups[group.id] = group
            for item in data.get("environments") or []:
                environment = environment_from_dict(item)
                document.environments[environment.id] = environment
            for item in data.get("resources") or []:
                resource = resource_from_dict(item)
                document.resources[resource.id] = resource
            for item in data.get("ports") or []:
                env_ports: Dict[int, UUID] = document.ports.setdefault(
                    UUID(item["environment_id"]), {}
                )
                env_ports[int(item["port"])] = UUID(item["resource_id"])
        except (KeyError, ValueError, TypeError) as e:
            raise StateStoreError(f"Corrupt state file {self.state_file}: {e}") from e

        return document

    def _save(self, document: StateDocument) -> None:
        """Write the state document atomically (temp file + rename)."""
        data = {
            "version": DOCUMENT_VERSION,
            "resource_groups": [resource_group_to_dict(g) for g in document.resource_groups.values()],
            "environments": [environment_to_dict(e) for e in document.environments.values()],
            "resources": [resource_to_dict(r) for r in document.resources.values()],
            "ports": [
                {"environment_id": str(env_id), "resource_id": str(resource_id), "port": port}
                for env_id, env_ports in document.ports.items()
                for port, resource_id in sorted(env_ports.items())
            ],
        }

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.state_file.name}.", dir=str(self.state_file.parent)
        )
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, self.state_file)
        except Exception as e:
            logger.error(f"Failed to save state file {self.state_file}: {e}")
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
