"""
Shipper Supervisor

Wires hosts, registry, discovery, sampler and relay error policy together,
runs them on one event loop and shuts everything down on a signal or when
the error policy aborts.
"""

import asyncio
import signal
from typing import List, Optional, Sequence, Tuple

import aiohttp

from docker_log_shipper.config import Settings
from docker_log_shipper.core.exceptions import RelayError
from docker_log_shipper.core.logging import logger
from docker_log_shipper.schemas.container import ContainerDescriptor
from docker_log_shipper.services.discovery import DiscoveryLoop
from docker_log_shipper.services.error_policy import RelayErrorPolicy
from docker_log_shipper.services.host_client import DockerHostClient
from docker_log_shipper.services.pipeline import Pipeline
from docker_log_shipper.services.registry import PipelineRegistry
from docker_log_shipper.services.relay import Relay
from docker_log_shipper.services.resource_sampler import ResourceSampler

EXIT_OK = 0
EXIT_FAILURE = 1
SHUTDOWN_GRACE_PERIOD = 5.0


class Supervisor:
    def __init__(
        self,
        settings: Settings,
        hosts: Sequence[str],
        logstash: Tuple[str, int],
        discover: bool = True,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Args:
            settings: Loaded settings
            hosts: Docker host addresses
            logstash: Collector (host, port)
            discover: Keep polling for new containers; False enumerates once
            session: HTTP session to use; one is created and owned otherwise
        """
        self.settings = settings
        self.host_addresses = list(hosts)
        self.logstash_host, self.logstash_port = logstash
        self.discover = discover
        self.registry = PipelineRegistry()
        self.error_policy = RelayErrorPolicy(settings.relay_error_policy, on_abort=self._abort)
        self.exit_code = EXIT_OK
        self.clients: List[DockerHostClient] = []
        self.discovery: Optional[DiscoveryLoop] = None
        self.sampler: Optional[ResourceSampler] = None
        self._session = session
        self._owns_session = session is None
        self._loop_tasks: List[asyncio.Task] = []
        self._stopping: Optional[asyncio.Event] = None
        self._shut_down = False

    def relay_factory(self) -> Relay:
        return Relay(self.logstash_host, self.logstash_port, self.settings.relay_connect_timeout)

    def pipeline_factory(self, container: ContainerDescriptor) -> Pipeline:
        client = next(c for c in self.clients if c.host == container.host)
        return Pipeline(container, client, self.relay_factory, self.registry, self.error_policy)

    async def start(self) -> None:
        """Build the components and start the background loops"""
        self._stopping = asyncio.Event()
        if self._session is None:
            # Every tailed container holds one connection for as long as it runs
            self._session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=0))

        self.clients = [
            DockerHostClient(
                self._session,
                host,
                default_port=self.settings.docker_port,
                timeout=self.settings.request_timeout
            )
            for host in self.host_addresses
        ]

        self.discovery = DiscoveryLoop(
            self.clients,
            self.registry,
            self.pipeline_factory,
            interval=self.settings.discovery_interval,
            stale_after_ticks=self.settings.stale_after_ticks if self.discover else 0
        )
        logger.info(
            f"Shipping logs from {len(self.clients)} host(s) to "
            f"{self.logstash_host}:{self.logstash_port}"
        )
        if self.discover:
            self._spawn(self.discovery.run(), "discovery")
        else:
            await self.discovery.tick()

        if self.settings.top_enabled:
            self.sampler = ResourceSampler(
                self.clients,
                self.relay_factory,
                self.error_policy,
                interval=self.settings.sample_interval
            )
            self._spawn(self.sampler.run(), "resource-sampler")

    async def run(self) -> int:
        """
        Run until a shutdown is requested

        Returns:
            Process exit code
        """
        try:
            await self.start()
            self._install_signal_handlers()
            await self._stopping.wait()
        finally:
            await self.shutdown()
        return self.exit_code

    def request_shutdown(self, exit_code: int = EXIT_OK) -> None:
        # The first failure decides the exit code
        if self.exit_code == EXIT_OK:
            self.exit_code = exit_code
        if self._stopping is not None:
            self._stopping.set()

    async def shutdown(self) -> None:
        """Stop the loops, end every pipeline and close the HTTP session"""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down")
        self._remove_signal_handlers()

        for task in self._loop_tasks:
            task.cancel()
        await asyncio.gather(*self._loop_tasks, return_exceptions=True)

        pipelines = self.registry.pipelines()
        for pipeline in pipelines:
            pipeline.stop()
        tasks = [p.task for p in pipelines if p.task is not None]
        if tasks:
            # Give relays a moment to flush, then stop waiting on them
            _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_PERIOD)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if self._owns_session and self._session is not None:
            await self._session.close()
        logger.info(f"Shutdown complete, {len(pipelines)} pipeline(s) closed")

    def _abort(self, error: RelayError) -> None:
        self.request_shutdown(EXIT_FAILURE)

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_loop_done)
        self._loop_tasks.append(task)

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Loop {task.get_name()} crashed", exc_info=error)
            self.request_shutdown(EXIT_FAILURE)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                pass

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
