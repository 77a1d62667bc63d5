"""
State store backends for Cloudify

Provides the store contract and its in-memory, YAML file and PostgreSQL
implementations.
"""

from .base import StateStore
from .memory import InMemoryStateStore
from .postgres import PostgresStateStore
from .yaml_store import YamlStateStore

__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "YamlStateStore",
    "PostgresStateStore",
    "create_state_store",
]


def create_state_store(config) -> StateStore:
    """Build the state store selected by ``config.state_backend``."""
    if config.state_backend == "memory":
        return InMemoryStateStore()
    if config.state_backend == "postgres":
        return PostgresStateStore(config.effective_database_url())
    return YamlStateStore(config.get_state_file_path())
