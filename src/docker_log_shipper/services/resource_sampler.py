"""
Resource Sampler

Every ``interval`` seconds, fetches ``ps aux`` for each running container
and ships one "top" record per process. Each container's batch uses its
own short-lived relay connection.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from docker_log_shipper.core.exceptions import HostError, RelayError
from docker_log_shipper.core.logging import logger
from docker_log_shipper.schemas.container import ContainerDescriptor, ProcessTable
from docker_log_shipper.services.error_policy import RelayErrorPolicy
from docker_log_shipper.services.host_client import DockerHostClient, list_containers_on_hosts
from docker_log_shipper.services.relay import Relay
from docker_log_shipper.utils import format_size


def _human_size(value: Optional[str]) -> str:
    try:
        return format_size(float(value))
    except (TypeError, ValueError):
        return "n/a"


def summarize_process(row: Dict[str, str]) -> str:
    """One-line summary of a ``ps aux`` row, e.g. ``%cpu: 0.5, %mem: 1.2, rss: 10KB, vsz: 20KB``"""
    return ", ".join([
        f"%cpu: {row.get('%CPU', 'n/a')}",
        f"%mem: {row.get('%MEM', 'n/a')}",
        f"rss: {_human_size(row.get('RSS'))}",
        f"vsz: {_human_size(row.get('VSZ'))}",
    ])


def build_top_records(
    container: ContainerDescriptor,
    table: ProcessTable,
    sampled_at: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Turn a process table into one record per process row"""
    base = {
        "type": "top",
        "host": container.host,
        "container_id": container.id,
        "name": container.name,
        "app": container.app,
        "tag": container.tag,
        "status": container.status,
        "time": int(time.time()) if sampled_at is None else sampled_at,
    }

    records = []
    for row in table.rows():
        record: Dict[str, Any] = dict(row)
        record.update(base)
        record["message"] = summarize_process(row)
        records.append(record)
    return records


class ResourceSampler:
    def __init__(
        self,
        hosts: Sequence[DockerHostClient],
        relay_factory: Callable[[], Relay],
        error_policy: RelayErrorPolicy,
        interval: float = 30.0
    ):
        self.hosts = list(hosts)
        self.relay_factory = relay_factory
        self.error_policy = error_policy
        self.interval = interval

    async def run(self) -> None:
        """Sample forever; cancel the task to stop"""
        logger.info(f"Sampling container processes every {self.interval}s")
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def tick(self) -> int:
        """
        Sample every container on every reachable host once

        Returns:
            Number of top records shipped
        """
        listings = await list_containers_on_hosts(self.hosts)
        clients = {client.host: client for client in self.hosts}

        counts = await asyncio.gather(*(
            self.sample_container(clients[host], container)
            for host, containers in listings.items()
            for container in containers
        ))
        total = sum(counts)
        logger.debug(f"Shipped {total} top records for {len(counts)} container(s)")
        return total

    async def sample_container(self, client: DockerHostClient, container: ContainerDescriptor) -> int:
        """Sample one container; failures are logged and reported as 0 records"""
        label = f"{container.host}/{container.short_id}"
        try:
            table = await client.top_processes(container.id)
        except HostError as e:
            logger.warning(f"Sampling processes of {label} failed: {e.message}")
            return 0

        records = build_top_records(container, table)
        if not records:
            return 0

        try:
            async with self.relay_factory() as relay:
                await relay.send_many(records)
        except RelayError as e:
            self.error_policy.handle(e, f"sampler {label}")
            return 0
        return len(records)
