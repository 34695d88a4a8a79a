"""
Docker Log Frame Decoder

Decodes the multiplexed stdout/stderr stream returned by
``GET /containers/{id}/logs?timestamps=1`` into structured log records.

Each frame is an 8-byte header followed by the payload::

    byte 0      stream (0 stdin, 1 stdout, 2 stderr)
    bytes 1-3   zero padding
    bytes 4-7   payload length, big-endian uint32

and the payload is ``<RFC3339 timestamp> <log line>``. The transport hands
us chunks of any size, so frames are only decoded once fully buffered.
"""

import struct
from typing import Any, Dict, List, Mapping, Optional

HEADER_SIZE = 8
_HEADER = struct.Struct('>BxxxL')

STREAM_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}
STREAM_IDS = {name: number for number, name in STREAM_NAMES.items()}


def encode_frame(stream: str, payload: bytes) -> bytes:
    """Build one frame of the multiplexed format (used by fakes and tests)"""
    return _HEADER.pack(STREAM_IDS[stream], len(payload)) + payload


class LogFrameDecoder:
    """
    Incremental decoder for one container's log stream

    Feed it raw chunks in arrival order; every call returns the records for
    the frames completed by that chunk. One instance per pipeline.
    """

    def __init__(self, tags: Optional[Mapping[str, Any]] = None):
        self._tags = dict(tags or {})
        self._buffer = bytearray()
        self._cursor = 0
        self.frames_decoded = 0

    @property
    def tags(self) -> Dict[str, Any]:
        return dict(self._tags)

    @property
    def pending(self) -> int:
        """Bytes buffered that do not yet form a complete frame"""
        return len(self._buffer) - self._cursor

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        """
        Add a chunk and return the records for every frame it completes

        Args:
            data: Raw bytes from the log stream, any length (may be empty)

        Returns:
            Zero or more records, in frame order
        """
        if data:
            self._buffer.extend(data)

        records = []
        while self.pending >= HEADER_SIZE:
            stream, length = _HEADER.unpack_from(self._buffer, self._cursor)
            start = self._cursor + HEADER_SIZE
            end = start + length
            if end > len(self._buffer):
                break
            records.append(self._build_record(stream, bytes(self._buffer[start:end])))
            self._cursor = end

        # Drop consumed frames so the buffer never holds more than one partial frame
        if self._cursor:
            del self._buffer[:self._cursor]
            self._cursor = 0

        self.frames_decoded += len(records)
        return records

    def close(self) -> int:
        """
        Discard whatever incomplete frame is left at end of stream

        Returns:
            Number of bytes thrown away
        """
        discarded = self.pending
        self._buffer.clear()
        self._cursor = 0
        return discarded

    def _build_record(self, stream: int, payload: bytes) -> Dict[str, Any]:
        text = payload.decode('utf-8', errors='replace')
        # Docker terminates every line with a newline of its own
        if text.endswith('\n'):
            text = text[:-1]

        timestamp, separator, message = text.partition(' ')
        if not separator:
            timestamp, message = '', timestamp

        record = dict(self._tags)
        record.update({
            "type": "log",
            "stream": STREAM_NAMES.get(stream, "unknown"),
            "timestamp": timestamp,
            "message": message,
        })
        return record
