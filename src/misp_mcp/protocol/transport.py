"""STDIO transport layer for MCP communication.

Handles reading/writing framed JSON-RPC messages over stdin/stdout. Reads
happen on a dedicated daemon thread so a blocked stdin never stalls the event
loop or prevents the process from exiting. Logging goes to stderr via the
logging module and never touches the protocol stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, BinaryIO

from misp_mcp.protocol.errors import ErrorCategory, McpError
from misp_mcp.protocol.jsonrpc import MAX_MESSAGE_SIZE

logger = logging.getLogger(__name__)

FRAMINGS = ("line", "content-length")

_DISCARD_CHUNK = 65_536


class TransportError(McpError):
    """Raised when the byte stream cannot be framed."""

    category = ErrorCategory.TRANSPORT_ERROR
    # False when the stream cannot be resynchronised after this error
    resumable = True


class TransportWriteError(TransportError):
    """Raised when a frame cannot be written. Fatal to the session."""


class StreamDesyncError(TransportError):
    """Raised when the next frame boundary can no longer be found."""

    resumable = False


class Framing(ABC):
    """Splits a byte stream into frames and wraps outbound payloads."""

    name: str = ""

    @abstractmethod
    def read_frame(self, stream: BinaryIO) -> bytes | None:
        """Block until one complete frame has been read.

        Args:
            stream: Binary input stream.

        Returns:
            Frame payload, or None at end-of-stream.

        Raises:
            TransportError: If the stream contents cannot be framed.
        """

    @abstractmethod
    def frame(self, payload: bytes) -> bytes:
        """Wrap a payload for writing."""


class LineFraming(Framing):
    """Newline-delimited JSON, the MCP stdio framing."""

    name = "line"

    def read_frame(self, stream: BinaryIO) -> bytes | None:
        while True:
            line = stream.readline(MAX_MESSAGE_SIZE + 1)
            if not line:  # EOF
                return None
            if len(line) > MAX_MESSAGE_SIZE and not line.endswith(b"\n"):
                _discard_line(stream)
                raise TransportError(f"Line exceeds the {MAX_MESSAGE_SIZE} byte message limit")

            # A final line without a newline is still a complete frame
            line = line.strip()
            if line:  # Skip empty lines
                return line

    def frame(self, payload: bytes) -> bytes:
        return payload + b"\n"


class ContentLengthFraming(Framing):
    """Header-delimited frames (``Content-Length: N``, blank line, body)."""

    name = "content-length"

    def read_frame(self, stream: BinaryIO) -> bytes | None:
        headers: dict[str, str] = {}
        while True:
            line = stream.readline(_DISCARD_CHUNK)
            if len(line) == _DISCARD_CHUNK and not line.endswith(b"\n"):
                raise StreamDesyncError("Frame header line is too long")
            if not line:
                if headers:
                    logger.warning("End of stream inside frame headers, discarding")
                return None

            line = line.rstrip(b"\r\n")
            if not line:
                if headers:
                    break
                continue  # Tolerate blank lines between frames

            name, sep, value = line.partition(b":")
            if not sep:
                raise TransportError(f"Malformed header line: {line[:80]!r}")
            headers[name.decode("ascii", "replace").strip().lower()] = value.decode(
                "ascii", "replace"
            ).strip()

        raw_length = headers.get("content-length")
        if raw_length is None:
            raise TransportError("Frame is missing a Content-Length header")
        try:
            length = int(raw_length)
        except ValueError:
            raise TransportError(f"Invalid Content-Length: {raw_length!r}") from None
        if length < 0:
            raise TransportError(f"Invalid Content-Length: {raw_length!r}")
        if length > MAX_MESSAGE_SIZE:
            raise StreamDesyncError(
                f"Content-Length {length} exceeds the {MAX_MESSAGE_SIZE} byte message limit"
            )

        body = stream.read(length)
        if len(body) < length:
            logger.warning(
                "End of stream after %d of %d body bytes, discarding frame", len(body), length
            )
            return None
        return body

    def frame(self, payload: bytes) -> bytes:
        return f"Content-Length: {len(payload)}\r\n\r\n".encode("ascii") + payload


def _discard_line(stream: BinaryIO) -> None:
    """Skip the rest of the current line without holding it in memory."""
    while True:
        chunk = stream.readline(_DISCARD_CHUNK)
        if not chunk or chunk.endswith(b"\n"):
            return


def get_framing(name: str) -> Framing:
    """Look up a framing by its configuration name.

    Raises:
        ValueError: If the name is unknown.
    """
    if name == LineFraming.name:
        return LineFraming()
    if name == ContentLengthFraming.name:
        return ContentLengthFraming()
    raise ValueError(f"Unknown framing '{name}', expected one of: {', '.join(FRAMINGS)}")


class StdioTransport:
    """STDIO transport for MCP communication.

    Reads frames from stdin and writes frames to stdout. Writers are
    serialised with a lock so concurrent responses never interleave.
    """

    def __init__(
        self,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        framing: Framing | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            stdin: Binary input stream (defaults to sys.stdin.buffer).
            stdout: Binary output stream (defaults to sys.stdout.buffer).
            framing: Frame format (defaults to newline-delimited).
        """
        self._stdin = stdin or sys.stdin.buffer
        self._stdout = stdout or sys.stdout.buffer
        self._framing = framing or LineFraming()
        self._queue: asyncio.Queue[bytes | TransportError | None] | None = None
        self._write_lock = asyncio.Lock()
        self._broken = False

    @property
    def is_broken(self) -> bool:
        """Whether a write has failed; no further writes are attempted."""
        return self._broken

    def _start_reader(self) -> asyncio.Queue[bytes | TransportError | None]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes | TransportError | None] = asyncio.Queue()

        def deliver(item: bytes | TransportError | None) -> bool:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed; nobody is listening any more
                return False
            return True

        def run() -> None:
            while True:
                try:
                    frame = self._framing.read_frame(self._stdin)
                except TransportError as e:
                    if not deliver(e):
                        return
                    if e.resumable:
                        continue
                    logger.warning("Cannot resynchronise input, treating as end of stream")
                    frame = None
                except (OSError, ValueError) as e:
                    logger.warning("Reading stdin failed, treating as end of stream: %s", e)
                    frame = None
                except Exception:
                    logger.exception("Stdin reader failed, treating as end of stream")
                    frame = None

                if not deliver(frame) or frame is None:
                    return

        thread = threading.Thread(target=run, name="mcp-stdin-reader", daemon=True)
        thread.start()
        return queue

    async def read_frame(self) -> bytes | None:
        """Read the next frame.

        Returns:
            Frame payload, or None at end-of-stream.

        Raises:
            TransportError: If the input could not be framed. Reading may
                continue afterwards.
        """
        if self._queue is None:
            self._queue = self._start_reader()
        item = await self._queue.get()
        if isinstance(item, TransportError):
            raise item
        if item is None:
            # Keep reporting EOF to any later reader
            self._queue.put_nowait(None)
        return item

    async def write_frame(self, payload: bytes) -> None:
        """Write one frame.

        Args:
            payload: Encoded message, without framing.

        Raises:
            TransportWriteError: If the stream is broken.
        """
        async with self._write_lock:
            if self._broken:
                raise TransportWriteError("Output stream is broken, refusing to write")
            try:
                self._stdout.write(self._framing.frame(payload))
                self._stdout.flush()
            except (OSError, ValueError) as e:
                self._broken = True
                raise TransportWriteError(f"Failed to write frame: {e}") from e


class MemoryTransport:
    """In-process transport backed by queues.

    Used by tests and by hosts embedding the server in-process. Frames fed
    with feed() are returned by read_frame(); written frames are collected
    in ``sent``.
    """

    def __init__(self) -> None:
        """Initialize the transport."""
        self._inbound: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._written = asyncio.Event()
        self.sent: list[bytes] = []
        self.fail_writes = False

    def feed(self, message: bytes | str | dict[str, Any]) -> None:
        """Queue an inbound frame.

        Args:
            message: Raw frame bytes, text, or a dict to be JSON-encoded.
        """
        if isinstance(message, dict):
            message = json.dumps(message)
        if isinstance(message, str):
            message = message.encode("utf-8")
        self._inbound.put_nowait(message)

    def close_input(self) -> None:
        """Signal end-of-stream to the reader."""
        self._inbound.put_nowait(None)

    async def read_frame(self) -> bytes | None:
        """Read the next fed frame, or None once input is closed."""
        item = await self._inbound.get()
        if item is None:
            self._inbound.put_nowait(None)
        return item

    async def write_frame(self, payload: bytes) -> None:
        """Record a written frame.

        Raises:
            TransportWriteError: If ``fail_writes`` is set.
        """
        if self.fail_writes:
            raise TransportWriteError("Simulated broken pipe")
        self.sent.append(payload)
        self._written.set()

    def responses(self) -> list[dict[str, Any]]:
        """Decode every written frame."""
        return [json.loads(frame) for frame in self.sent]

    async def wait_for_responses(self, count: int, timeout: float = 2.0) -> list[dict[str, Any]]:
        """Wait until at least ``count`` frames have been written.

        Raises:
            TimeoutError: If they do not arrive in time.
        """

        async def _wait() -> None:
            while len(self.sent) < count:
                self._written.clear()
                await self._written.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.responses()
