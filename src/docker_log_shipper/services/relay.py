"""
Logstash Relay

Write-only TCP connection to a Logstash ``tcp`` input using the
``json_lines`` codec: one JSON document per line, UTF-8, nothing read back.
"""

import asyncio
import json
from typing import Any, Dict, Iterable, Optional

from docker_log_shipper.core.exceptions import RelayError
from docker_log_shipper.core.logging import logger


def encode_record(record: Dict[str, Any]) -> bytes:
    """Serialize one record as a newline terminated JSON line"""
    return (json.dumps(record, ensure_ascii=False, default=str) + "\n").encode("utf-8")


class Relay:
    """
    One outbound connection to the collector

    Use ``connect()``/``close()`` for long lived pipelines, or as an async
    context manager for a short batch.
    """

    def __init__(self, host: str, port: int, connect_timeout: float = 5.0):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.records_sent = 0
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> "Relay":
        """
        Open the TCP connection

        Raises:
            RelayError: If the collector cannot be reached in time
        """
        try:
            _, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise RelayError(self.address, f"connect failed: {str(e) or type(e).__name__}") from e
        logger.debug(f"Relay connected to {self.address}")
        return self

    async def send_many(self, records: Iterable[Dict[str, Any]]) -> None:
        """
        Write records in order and wait until the socket buffer drains

        Raises:
            RelayError: If the connection is not open or the write fails
        """
        if self._writer is None or self._writer.is_closing():
            raise RelayError(self.address, "connection is not open")

        lines = [encode_record(record) for record in records]
        if not lines:
            return

        try:
            self._writer.write(b"".join(lines))
            await self._writer.drain()
        except OSError as e:
            raise RelayError(self.address, f"write failed: {str(e) or type(e).__name__}") from e
        self.records_sent += len(lines)

    async def close(self) -> None:
        """
        Flush anything still buffered, then close the connection

        Raises:
            RelayError: If the flush or close fails
        """
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            if not writer.is_closing():
                await writer.drain()
            writer.close()
            await writer.wait_closed()
        except OSError as e:
            writer.transport.abort()
            raise RelayError(self.address, f"close failed: {str(e) or type(e).__name__}") from e
        except BaseException:
            # Cancelled while the peer stalls the drain
            writer.transport.abort()
            raise
        logger.debug(f"Relay to {self.address} closed after {self.records_sent} records")

    def abort(self) -> None:
        """Drop the connection immediately, discarding unsent data"""
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.transport.abort()

    async def __aenter__(self) -> "Relay":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.close()
        else:
            self.abort()
