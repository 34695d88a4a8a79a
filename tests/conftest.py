"""
Pytest configuration and fixtures
"""

import asyncio
import json
import socket
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from docker_log_shipper.core.exceptions import MalformedResponseError
from docker_log_shipper.schemas.container import ContainerDescriptor, ProcessTable
from docker_log_shipper.services.error_policy import RelayErrorMode, RelayErrorPolicy
from docker_log_shipper.services.log_frame_decoder import encode_frame
from docker_log_shipper.services.registry import PipelineRegistry
from fake_docker import FakeDockerApi


def make_container(container_id: str = "c1" * 32, host: str = "host-a", **overrides) -> ContainerDescriptor:
    data = {
        "id": container_id,
        "host": host,
        "name": f"app-{container_id[:4]}",
        "image": "registry.local/team/api:1.4",
        "app": "api",
        "tag": "1.4",
        "status": "Up 5 minutes",
        "created": 1700000000,
    }
    data.update(overrides)
    return ContainerDescriptor(**data)


def log_frame(message: str, stream: str = "stdout", timestamp: str = "2024-01-01T00:00:00Z") -> bytes:
    return encode_frame(stream, f"{timestamp} {message}\n".encode("utf-8"))


class FakeLogStream:
    """Stands in for host_client.LogStream: yields queued chunks, then ends or fails"""

    def __init__(self, chunks: Optional[List[bytes]] = None, error: Optional[Exception] = None, hold: bool = False):
        self.chunks = list(chunks or [])
        self.error = error
        self.hold = hold
        self.closed = False
        self._release = asyncio.Event()

    def finish(self) -> None:
        self._release.set()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.hold:
            await self._release.wait()
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


class FakeHostClient:
    """Stands in for DockerHostClient with canned listings, tables and streams"""

    def __init__(self, host: str):
        self.host = host
        self.containers: List[ContainerDescriptor] = []
        self.list_error: Optional[Exception] = None
        self.tables: Dict[str, ProcessTable] = {}
        self.top_errors: Dict[str, Exception] = {}
        self.streams: Dict[str, List[FakeLogStream]] = {}
        self.open_error: Optional[Exception] = None
        self.opened: List[str] = []

    def set_containers(self, *container_ids: str) -> None:
        self.containers = [make_container(cid, host=self.host) for cid in container_ids]

    def queue_stream(self, container_id: str, stream: FakeLogStream) -> FakeLogStream:
        self.streams.setdefault(container_id, []).append(stream)
        return stream

    async def list_containers(self) -> List[ContainerDescriptor]:
        await asyncio.sleep(0)
        if self.list_error is not None:
            raise self.list_error
        return list(self.containers)

    async def top_processes(self, container_id: str) -> ProcessTable:
        await asyncio.sleep(0)
        if container_id in self.top_errors:
            raise self.top_errors[container_id]
        if container_id not in self.tables:
            raise MalformedResponseError(self.host, "no such container")
        return self.tables[container_id]

    async def open_log_stream(self, container_id: str) -> FakeLogStream:
        await asyncio.sleep(0)
        self.opened.append(container_id)
        if self.open_error is not None:
            raise self.open_error
        queued = self.streams.get(container_id)
        if queued:
            return queued.pop(0)
        # Unknown containers keep quiet until stopped
        return FakeLogStream(hold=True)


class FakeRelay:
    """Stands in for relay.Relay and keeps everything it was given"""

    def __init__(self, connect_error: Optional[Exception] = None, send_error: Optional[Exception] = None):
        self.connect_error = connect_error
        self.send_error = send_error
        self.records: List[Dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self.aborted = False

    @property
    def address(self) -> str:
        return "logstash.test:5000"

    async def connect(self) -> "FakeRelay":
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        return self

    async def send_many(self, records) -> None:
        await asyncio.sleep(0)
        if self.send_error is not None:
            raise self.send_error
        # Round trip through JSON like the real relay
        self.records.extend(json.loads(json.dumps(r, default=str)) for r in records)

    async def close(self) -> None:
        await asyncio.sleep(0)
        self.closed = True

    def abort(self) -> None:
        self.aborted = True

    async def __aenter__(self) -> "FakeRelay":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.close()
        else:
            self.abort()


class RelayFactory:
    """Callable handing out FakeRelays, optionally failing"""

    def __init__(self):
        self.relays: List[FakeRelay] = []
        self.connect_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None

    def __call__(self) -> FakeRelay:
        relay = FakeRelay(self.connect_error, self.send_error)
        self.relays.append(relay)
        return relay

    @property
    def records(self) -> List[Dict[str, Any]]:
        return [record for relay in self.relays for record in relay.records]


def unused_port() -> int:
    """A local TCP port nothing listens on"""
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


class FakeCollector:
    """A Logstash stand-in: a TCP server collecting JSON lines"""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []
        self.connections = 0
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    async def start(self) -> "FakeCollector":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        while True:
            line = await reader.readline()
            if not line:
                break
            self.records.append(json.loads(line))
        writer.close()

    async def stop(self) -> None:
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()


@pytest.fixture
def registry() -> PipelineRegistry:
    return PipelineRegistry()


@pytest.fixture
def continue_policy() -> RelayErrorPolicy:
    return RelayErrorPolicy(RelayErrorMode.CONTINUE)


@pytest.fixture
def relay_factory() -> RelayFactory:
    return RelayFactory()


@pytest.fixture
def host_a() -> FakeHostClient:
    return FakeHostClient("host-a")


@pytest.fixture
def host_b() -> FakeHostClient:
    return FakeHostClient("host-b")


@pytest_asyncio.fixture
async def collector():
    server = await FakeCollector().start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def docker_api():
    api = await FakeDockerApi().start()
    yield api
    await api.stop()
