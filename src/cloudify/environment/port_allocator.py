"""
Host port allocation for environment resources.

Proposes a host TCP port for a resource: either validates an explicitly
requested port or walks type-specific base ports with an increasing offset.
Nothing is recorded here; the caller commits the proposal through the
state store's atomic ``assign_port``.
"""

import logging
import socket
from typing import Dict, Optional, Set, Tuple
from uuid import UUID

from ..errors import AllocationExhaustedError, PortConflictError, ValidationError
from ..models import MAX_PORT, MIN_PORT, PortAllocation, ResourceType, validate_port
from ..state.base import StateStore

logger = logging.getLogger(__name__)

BASE_PORTS: Dict[ResourceType, Tuple[int, ...]] = {
    ResourceType.REDIS: (6379,),
    ResourceType.POSTGRES: (5432,),
    ResourceType.MONGO: (27017,),
    ResourceType.RABBIT: (5672, 15672),
    ResourceType.APP_SERVICE: (8080, 5000),
}


class PortAllocator:
    """Picks free host ports per environment."""

    def __init__(
        self,
        state_store: StateStore,
        min_port: int = MIN_PORT,
        max_port: int = MAX_PORT,
    ):
        if not (MIN_PORT <= min_port <= max_port <= MAX_PORT):
            raise ValidationError(
                f"Port range must lie within {MIN_PORT}-{MAX_PORT} and not be empty."
            )
        self.state_store = state_store
        self.min_port = min_port
        self.max_port = max_port

    def allocate(
        self,
        environment_id: UUID,
        resource_type: ResourceType,
        requested_port: Optional[int] = None,
    ) -> PortAllocation:
        """
        Propose a host port for a resource.

        Args:
            environment_id: Environment whose allocations are checked
            resource_type: Selects the base ports for automatic allocation
            requested_port: Explicit port; validated instead of searched

        Returns:
            PortAllocation with the proposed port

        Raises:
            ValidationError: requested port outside [1, 65535]
            PortConflictError: requested port allocated or bound on the host
            AllocationExhaustedError: no automatic candidate left
        """
        allocated = set(self.state_store.list_allocated_ports(environment_id))

        if requested_port is not None:
            return self._allocate_requested(environment_id, requested_port, allocated)

        return self._allocate_automatic(environment_id, resource_type, allocated)

    def _allocate_requested(self, environment_id: UUID, port: int, allocated: Set[int]) -> PortAllocation:
        validate_port(port, "Requested port")

        if port in allocated:
            raise PortConflictError(
                f"Port {port} is already allocated in environment {environment_id}."
            )
        if not self._is_port_available(port):
            raise PortConflictError(f"Port {port} is in use on this host.")

        logger.debug(f"Requested port {port} is free in environment {environment_id}")
        return PortAllocation(port=port, was_requested=True)

    def _allocate_automatic(
        self, environment_id: UUID, resource_type: ResourceType, allocated: Set[int]
    ) -> PortAllocation:
        bases = BASE_PORTS[resource_type]

        # Offsets advance every base in lockstep until all pass the range end.
        offset = 0
        while any(base + offset <= self.max_port for base in bases):
            for base in bases:
                candidate = base + offset
                if candidate < self.min_port or candidate > self.max_port:
                    continue
                if candidate in allocated:
                    continue
                if not self._is_port_available(candidate):
                    logger.debug(f"Port {candidate} is bound on the host, skipping")
                    continue
                logger.debug(
                    f"Allocated port {candidate} for {resource_type.value} in environment {environment_id}"
                )
                return PortAllocation(port=candidate, was_requested=False)
            offset += 1

        raise AllocationExhaustedError(
            f"No free port available for {resource_type.value} in environment {environment_id} "
            f"(range {self.min_port}-{self.max_port})."
        )

    def _is_port_available(self, port: int) -> bool:
        """Check whether a loopback listener can bind the port."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind(("127.0.0.1", port))
                sock.listen(1)
            return True
        except OSError:
            return False
