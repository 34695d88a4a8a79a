"""
Pipeline Registry

The single source of truth for which containers are being tailed. All
access happens on the event loop and no method awaits, so each mutation
runs to completion without interleaving and needs no lock.
"""

from typing import TYPE_CHECKING, Dict, List, Optional, Set

from docker_log_shipper.core.logging import logger

if TYPE_CHECKING:
    from docker_log_shipper.services.pipeline import Pipeline


class PipelineRegistry:
    def __init__(self):
        self._pipelines: Dict[str, "Pipeline"] = {}

    def __contains__(self, container_id: str) -> bool:
        return container_id in self._pipelines

    def __len__(self) -> int:
        return len(self._pipelines)

    def get(self, container_id: str) -> Optional["Pipeline"]:
        return self._pipelines.get(container_id)

    def ids(self) -> Set[str]:
        return set(self._pipelines)

    def pipelines(self) -> List["Pipeline"]:
        return list(self._pipelines.values())

    def pipelines_for_host(self, host: str) -> List["Pipeline"]:
        return [p for p in self._pipelines.values() if p.container.host == host]

    def insert(self, pipeline: "Pipeline") -> bool:
        """
        Register a pipeline unless its container already has one

        Returns:
            True if inserted, False if the container is already tailed
        """
        container_id = pipeline.container_id
        if container_id in self._pipelines:
            return False
        self._pipelines[container_id] = pipeline
        logger.debug(f"Registered pipeline for {pipeline.label} ({len(self._pipelines)} active)")
        return True

    def remove(self, pipeline: "Pipeline") -> bool:
        """
        Deregister a pipeline, only if it is the one currently registered

        A finished pipeline must never evict a newer pipeline for the same
        container.

        Returns:
            True if removed
        """
        container_id = pipeline.container_id
        if self.get(container_id) is not pipeline:
            return False
        del self._pipelines[container_id]
        logger.debug(f"Removed pipeline for {pipeline.label} ({len(self._pipelines)} active)")
        return True
