"""
Docker Host Client

Thin async accessor for the parts of the Docker Engine HTTP API the shipper
needs: container listing, process tables and follow-mode log streams.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp

from docker_log_shipper.core.exceptions import (
    HostError,
    HostUnreachableError,
    LogStreamError,
    MalformedResponseError,
)
from docker_log_shipper.core.logging import logger
from docker_log_shipper.schemas.container import ContainerDescriptor, ProcessTable
from docker_log_shipper.utils import parse_address, truncate_id

DEFAULT_DOCKER_PORT = 2375

# Live tail only: no backfill, both streams, timestamps for the decoder
LOG_STREAM_PARAMS = {
    "follow": "1",
    "tail": "0",
    "stdout": "1",
    "stderr": "1",
    "timestamps": "1",
}

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class LogStream:
    """
    An open follow-mode log connection for one container

    Iterating yields raw byte chunks as they arrive and finishes when
    Docker closes the response (the container stopped).
    """

    def __init__(self, host: str, container_id: str, response: aiohttp.ClientResponse):
        self.host = host
        self.container_id = container_id
        self._response = response

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.content.iter_any():
                yield chunk
        except _TRANSPORT_ERRORS as e:
            raise LogStreamError(self.host, self.container_id, _describe(e)) from e

    @property
    def closed(self) -> bool:
        return self._response.closed

    def close(self) -> None:
        """Drop the underlying connection; safe to call more than once"""
        self._response.close()


class DockerHostClient:
    """Client for one Docker host, reached over plain HTTP"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        host: str,
        default_port: int = DEFAULT_DOCKER_PORT,
        timeout: float = 10.0
    ):
        self.session = session
        self.host = host
        hostname, port = parse_address(host, default_port)
        if ':' in hostname:
            hostname = f"[{hostname}]"
        self.base_url = f"http://{hostname}:{port}"
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"DockerHostClient({self.host!r})"

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET a JSON document, translating every failure into a HostError"""
        url = self.base_url + path
        try:
            async with self.session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status // 100 != 2:
                    body = await response.text(errors='replace')
                    raise MalformedResponseError(
                        self.host, f"GET {path} returned HTTP {response.status}: {body[:200].strip()}"
                    )
                raw = await response.read()
        except _TRANSPORT_ERRORS as e:
            raise HostUnreachableError(self.host, f"GET {path} failed: {_describe(e)}") from e

        try:
            return json.loads(raw)
        except ValueError as e:
            raise MalformedResponseError(self.host, f"GET {path} returned invalid JSON: {e}") from e

    async def list_containers(self) -> List[ContainerDescriptor]:
        """
        List running containers on this host

        Raises:
            HostUnreachableError: Connection refused, timed out or dropped
            MalformedResponseError: Non-2xx status or unexpected body
        """
        data = await self._get_json("/containers/json")
        if not isinstance(data, list):
            raise MalformedResponseError(
                self.host, f"container list is {type(data).__name__}, expected array"
            )

        containers = []
        for item in data:
            try:
                containers.append(ContainerDescriptor.from_api(self.host, item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise MalformedResponseError(self.host, f"unexpected container entry: {e!r}") from e
        return containers

    async def top_processes(self, container_id: str) -> ProcessTable:
        """
        Fetch the ``ps aux`` process table of a container

        Raises:
            HostUnreachableError: Connection refused, timed out or dropped
            MalformedResponseError: Unexpected body, or a row whose length
                does not match the column titles
        """
        data = await self._get_json(f"/containers/{container_id}/top", params={"ps_args": "aux"})
        try:
            return ProcessTable.from_api(data)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(
                self.host, f"unexpected process table for {truncate_id(container_id)}: {e}"
            ) from e

    async def open_log_stream(self, container_id: str) -> LogStream:
        """
        Open a live, unbounded log stream for a container

        Only the connect phase is time limited; reads may block for as long
        as the container is quiet.

        Raises:
            HostUnreachableError: The request could not be sent
            MalformedResponseError: Docker answered with a non-2xx status
        """
        path = f"/containers/{container_id}/logs"
        try:
            response = await self.session.get(
                self.base_url + path,
                params=LOG_STREAM_PARAMS,
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout)
            )
        except _TRANSPORT_ERRORS as e:
            raise HostUnreachableError(self.host, f"GET {path} failed: {_describe(e)}") from e

        if response.status // 100 != 2:
            status = response.status
            response.close()
            raise MalformedResponseError(self.host, f"GET {path} returned HTTP {status}")

        logger.debug(f"Opened log stream for {self.host}/{truncate_id(container_id)}")
        return LogStream(self.host, container_id, response)


async def list_containers_on_hosts(
    clients: Sequence[DockerHostClient]
) -> Dict[str, List[ContainerDescriptor]]:
    """
    List containers on every host concurrently

    A failing host is logged and left out of the result; it never prevents
    the other hosts from being listed.

    Returns:
        Mapping of host address to its containers, successful hosts only
    """
    results = await asyncio.gather(
        *(client.list_containers() for client in clients),
        return_exceptions=True
    )

    listings: Dict[str, List[ContainerDescriptor]] = {}
    for client, result in zip(clients, results):
        if isinstance(result, HostError):
            logger.warning(f"Listing containers failed: {result.message}")
        elif isinstance(result, Exception):
            logger.error(f"Unexpected error listing containers on {client.host}", exc_info=result)
        elif isinstance(result, BaseException):
            raise result
        else:
            listings[client.host] = result
    return listings
