"""
Environment orchestration for Cloudify.

This package renders compose manifests for environments, allocates host
ports for their resources and drives the compose CLI.
"""

from .orchestrator import ComposeOptions, ComposeOrchestrator
from .port_allocator import PortAllocator
from .renderer import ComposeRenderer

__all__ = [
    "ComposeOptions",
    "ComposeOrchestrator",
    "ComposeRenderer",
    "PortAllocator",
]
