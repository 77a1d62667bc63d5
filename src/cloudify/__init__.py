"""
Cloudify: local multi-service environments on a single host

Provisions databases, caches, queues and application containers as compose
projects, with host port allocation and a persistent state store.
"""

__version__ = "0.1.0"
__author__ = "Cloudify Team"
__description__ = "Local multi-service environment orchestration over compose"

from .config import CloudifyConfig
from .errors import CloudifyError

__all__ = ["CloudifyConfig", "CloudifyError", "__version__"]
