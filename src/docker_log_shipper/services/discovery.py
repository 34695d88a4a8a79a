"""
Container Discovery Loop

Polls every Docker host on a fixed interval and starts a pipeline for each
container that is not tailed yet. Pipelines normally leave the registry on
their own, when their log stream ends or fails; the loop only stops a
pipeline whose container has been missing from several consecutive
successful listings of its host.
"""

import asyncio
from typing import Callable, Dict, List, Sequence, Set

from docker_log_shipper.core.logging import logger
from docker_log_shipper.schemas.container import ContainerDescriptor
from docker_log_shipper.services.host_client import DockerHostClient, list_containers_on_hosts
from docker_log_shipper.services.pipeline import Pipeline
from docker_log_shipper.services.registry import PipelineRegistry


class DiscoveryLoop:
    def __init__(
        self,
        hosts: Sequence[DockerHostClient],
        registry: PipelineRegistry,
        pipeline_factory: Callable[[ContainerDescriptor], Pipeline],
        interval: float = 2.0,
        stale_after_ticks: int = 0
    ):
        """
        Args:
            hosts: One client per Docker host
            registry: Registry shared with the pipelines
            pipeline_factory: Builds an unstarted pipeline for a container
            interval: Seconds between ticks
            stale_after_ticks: Consecutive listings a tailed container may be
                missing from before its pipeline is stopped; 0 disables
        """
        self.hosts = list(hosts)
        self.registry = registry
        self.pipeline_factory = pipeline_factory
        self.interval = interval
        self.stale_after_ticks = stale_after_ticks
        self.ticks = 0
        self._missing: Dict[str, int] = {}

    async def run(self) -> None:
        """Tick forever; cancel the task to stop"""
        logger.info(
            f"Discovering containers on {len(self.hosts)} host(s) every {self.interval}s"
        )
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> List[Pipeline]:
        """
        Run one discovery pass

        Returns:
            The pipelines started during this pass
        """
        self.ticks += 1
        listings = await list_containers_on_hosts(self.hosts)

        # Forget absence counts of pipelines that already went away
        for container_id in set(self._missing) - self.registry.ids():
            del self._missing[container_id]

        started = []
        for host, containers in listings.items():
            for container in containers:
                if container.id in self.registry:
                    continue
                pipeline = self.pipeline_factory(container)
                if self.registry.insert(pipeline):
                    pipeline.start()
                    started.append(pipeline)
            self._reap_missing(host, {container.id for container in containers})

        if started:
            logger.info(
                f"Discovered {len(started)} new container(s): "
                + ", ".join(p.label for p in started)
            )
        return started

    def _reap_missing(self, host: str, listed_ids: Set[str]) -> None:
        if not self.stale_after_ticks:
            return

        for pipeline in self.registry.pipelines_for_host(host):
            container_id = pipeline.container_id
            if container_id in listed_ids:
                self._missing.pop(container_id, None)
                continue

            count = self._missing.get(container_id, 0) + 1
            if count < self.stale_after_ticks:
                self._missing[container_id] = count
                continue

            self._missing.pop(container_id, None)
            logger.warning(
                f"Container {pipeline.label} missing from {count} listings, stopping its pipeline"
            )
            pipeline.stop()
