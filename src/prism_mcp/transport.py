"""
Byte-stream transports for the MCP session.

Messages are newline-delimited JSON (the MCP stdio convention).  Frames
prefixed with ``Content-Length`` headers are accepted as well; replies use
whichever framing the peer last sent.  stdout carries protocol data only,
diagnostics go to stderr through logging.
"""

from __future__ import annotations

import asyncio
import json
import sys
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Literal

from prism_mcp.errors import ProtocolError, TransportFault
from prism_mcp.json_rpc import ErrorCodes

Framing = Literal["line", "header"]

# Rule bodies can be long; allow large single-line frames
STREAM_LIMIT = 16 * 1024 * 1024


def encode_message(message: dict[str, Any], framing: Framing = "line") -> bytes:
    """Serialize one message with the given framing."""
    body = json.dumps(message).encode("utf-8")
    if framing == "header":
        return b"Content-Length: %d\r\n\r\n" % len(body) + body
    return body + b"\n"


async def read_frame(reader: asyncio.StreamReader) -> tuple[bytes, Framing] | None:
    """
    Read the next frame body from *reader*.

    Returns None at end of stream. Blank lines between frames are skipped.
    Raises ProtocolError for oversized lines or bad headers; the stream
    stays usable afterwards.
    """
    while True:
        try:
            line = await reader.readline()
        except ValueError as e:
            raise ProtocolError(ErrorCodes.INVALID_REQUEST, "Frame exceeds size limit") from e
        if not line:
            return None

        stripped = line.strip()
        if not stripped:
            continue

        if not stripped.lower().startswith(b"content-length:"):
            return stripped, "line"

        try:
            length = int(stripped.split(b":", 1)[1].strip())
        except ValueError as e:
            raise ProtocolError(ErrorCodes.PARSE_ERROR, "Invalid Content-Length header") from e
        if length < 0 or length > STREAM_LIMIT:
            raise ProtocolError(ErrorCodes.INVALID_REQUEST, "Content-Length out of range")

        # Skip any remaining headers up to the blank separator line
        while True:
            header = await reader.readline()
            if not header:
                return None
            if not header.strip():
                break

        try:
            body = await reader.readexactly(length)
        except asyncio.IncompleteReadError:
            return None
        return body, "header"


# ─── Transports ──────────────────────────────────────────────────────────────


class Transport(ABC):
    """A bidirectional message channel for one session."""

    framing: Framing = "line"

    @abstractmethod
    async def _read(self) -> tuple[bytes, Framing] | None: ...

    @abstractmethod
    async def _write(self, data: bytes) -> None: ...

    async def read_message(self) -> bytes | None:
        """Next raw frame, or None when the peer closed the stream."""
        frame = await self._read()
        if frame is None:
            return None
        body, self.framing = frame
        return body

    async def write_message(self, message: dict[str, Any]) -> None:
        try:
            await self._write(encode_message(message, self.framing))
        except OSError as e:
            raise TransportFault(f"Cannot write to transport: {e}") from e

    async def close(self) -> None:
        """Release the underlying stream."""


class StreamTransport(Transport):
    """Transport over an asyncio reader/writer pair (TCP sockets, tests)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    async def _read(self) -> tuple[bytes, Framing] | None:
        try:
            return await read_frame(self.reader)
        except ConnectionError as e:
            raise TransportFault(f"Connection lost: {e}") from e

    async def _write(self, data: bytes) -> None:
        if self.writer.is_closing():
            raise TransportFault("Transport is closed")
        self.writer.write(data)
        await self.writer.drain()

    async def close(self) -> None:
        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


class StdioTransport(Transport):
    """Transport over the process's stdin/stdout."""

    def __init__(self, reader: asyncio.StreamReader, output: BinaryIO) -> None:
        self.reader = reader
        self.output = output

    @classmethod
    async def open(cls) -> StdioTransport:
        reader = asyncio.StreamReader(limit=STREAM_LIMIT)
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)
        return cls(reader, sys.stdout.buffer)

    async def _read(self) -> tuple[bytes, Framing] | None:
        return await read_frame(self.reader)

    async def _write(self, data: bytes) -> None:
        self.output.write(data)
        self.output.flush()
