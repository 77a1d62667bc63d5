# cloudify/handlers/resource_groups.py

import logging
from typing import List

from ..models import ResourceGroup, new_id, utc_now
from ..state.base import StateStore
from .requests import CreateResourceGroupRequest

logger = logging.getLogger(__name__)


class CreateResourceGroupHandler:
    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def handle(self, request: CreateResourceGroupRequest) -> ResourceGroup:
        # ResourceGroup validates the name and tag keys on construction.
        resource_group = ResourceGroup(
            id=new_id(),
            name=request.name.strip(),
            created_at=utc_now(),
            tags=dict(request.tags),
        )
        self.state_store.add_resource_group(resource_group)
        logger.info(f"Created resource group {resource_group.name} ({resource_group.id})")
        return resource_group


class ListResourceGroupsHandler:
    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    def handle(self) -> List[ResourceGroup]:
        return self.state_store.list_resource_groups()
