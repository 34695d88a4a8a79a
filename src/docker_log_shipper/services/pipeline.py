"""
Container Log Pipeline

One pipeline per tailed container: it owns the Docker log stream, the frame
decoder and the relay connection, and walks through its lifecycle::

    starting -> relaying -> ended
         \\          \\
          +-> failed  +-> failed

``ended`` and ``failed`` are terminal. The pipeline deregisters itself on
reaching either; nothing reconnects it, the next discovery tick will.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

from docker_log_shipper.core.exceptions import (
    PipelineStateError,
    RelayError,
    ShipperException,
)
from docker_log_shipper.core.logging import logger
from docker_log_shipper.schemas.container import ContainerDescriptor
from docker_log_shipper.services.error_policy import RelayErrorPolicy
from docker_log_shipper.services.host_client import DockerHostClient, LogStream
from docker_log_shipper.services.log_frame_decoder import LogFrameDecoder
from docker_log_shipper.services.registry import PipelineRegistry
from docker_log_shipper.services.relay import Relay


class PipelinePhase(str, Enum):
    """Pipeline lifecycle phases"""
    STARTING = "starting"  # Log stream and relay being opened
    RELAYING = "relaying"  # Steady state
    ENDED = "ended"        # Log stream finished cleanly, or pipeline stopped
    FAILED = "failed"      # Transport error on either side


TERMINAL_PHASES = frozenset({PipelinePhase.ENDED, PipelinePhase.FAILED})

_TRANSITIONS = {
    PipelinePhase.STARTING: {PipelinePhase.RELAYING, PipelinePhase.ENDED, PipelinePhase.FAILED},
    PipelinePhase.RELAYING: {PipelinePhase.ENDED, PipelinePhase.FAILED},
}


class Pipeline:
    def __init__(
        self,
        container: ContainerDescriptor,
        host_client: DockerHostClient,
        relay_factory: Callable[[], Relay],
        registry: PipelineRegistry,
        error_policy: RelayErrorPolicy
    ):
        self.container = container
        self.host_client = host_client
        self.registry = registry
        self.error_policy = error_policy
        self.phase = PipelinePhase.STARTING
        self.decoder = LogFrameDecoder(container.tags())
        self.log_stream: Optional[LogStream] = None
        self.relay: Optional[Relay] = None
        self.task: Optional[asyncio.Task] = None
        self.error: Optional[BaseException] = None
        self.records_sent = 0
        self._relay_factory = relay_factory

    @property
    def container_id(self) -> str:
        return self.container.id

    @property
    def label(self) -> str:
        """``host/short-id`` for log lines"""
        return f"{self.container.host}/{self.container.short_id}"

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def start(self) -> asyncio.Task:
        """Run the pipeline as an independent task; the caller does not wait for it"""
        if self.task is not None:
            raise PipelineStateError(self.phase.value, "start")
        self.task = asyncio.create_task(self.run(), name=f"pipeline-{self.container.short_id}")
        self.task.add_done_callback(self._on_task_done)
        return self.task

    def stop(self) -> None:
        """Cancel the pipeline; it closes its relay and deregisters itself"""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def run(self) -> None:
        try:
            await self._open()
            self._transition(PipelinePhase.RELAYING)
            logger.info(f"Relaying logs of {self.container.name} ({self.label}) to {self.relay.address}")

            async for chunk in self.log_stream:
                records = self.decoder.feed(chunk)
                if records:
                    await self.relay.send_many(records)
                    self.records_sent += len(records)
        except asyncio.CancelledError:
            logger.info(f"Stopping pipeline for {self.label}")
            await self._end()
            raise
        except RelayError as e:
            self._fail(e)
            self.error_policy.handle(e, f"pipeline {self.label}")
        except ShipperException as e:
            self._fail(e)
        else:
            await self._end()

    async def _open(self) -> None:
        """Open the log stream and the relay concurrently"""
        self.relay = self._relay_factory()

        async def open_log_stream():
            self.log_stream = await self.host_client.open_log_stream(self.container_id)

        results = await asyncio.gather(
            open_log_stream(),
            self.relay.connect(),
            return_exceptions=True
        )
        # Relay failures take precedence, they are the ones the error policy cares about
        for result in sorted(results, key=lambda r: not isinstance(r, RelayError)):
            if isinstance(result, BaseException):
                raise result

    async def _end(self) -> None:
        """Clean end: flush and close the relay, then deregister"""
        self._transition(PipelinePhase.ENDED)
        discarded = self.decoder.close()
        if discarded:
            logger.debug(f"Discarded {discarded} bytes of an incomplete frame from {self.label}")
        self._close_log_stream()

        try:
            if self.relay is not None:
                await self.relay.close()
        except RelayError as e:
            self.error = e
            self.error_policy.handle(e, f"pipeline {self.label}")
        finally:
            self.registry.remove(self)

        logger.info(f"Log stream of {self.label} ended after {self.records_sent} records")

    def _fail(self, error: BaseException) -> None:
        """Error teardown: release both sides without waiting, then deregister"""
        self.error = error
        self._transition(PipelinePhase.FAILED)
        logger.error(f"Pipeline for {self.label} failed: {error}")
        self._close_log_stream()
        if self.relay is not None:
            self.relay.abort()
        self.registry.remove(self)

    def _close_log_stream(self) -> None:
        if self.log_stream is not None:
            self.log_stream.close()

    def _transition(self, phase: PipelinePhase) -> None:
        if phase not in _TRANSITIONS.get(self.phase, ()):
            raise PipelineStateError(self.phase.value, phase.value)
        logger.debug(f"Pipeline {self.label}: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Covers a task cancelled before it ran and any unexpected exception
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Pipeline for {self.label} crashed", exc_info=task.exception())
            self.error = task.exception()
        if not self.is_terminal:
            self.phase = PipelinePhase.FAILED if self.error else PipelinePhase.ENDED
            self._close_log_stream()
            if self.relay is not None:
                self.relay.abort()
        self.registry.remove(self)
