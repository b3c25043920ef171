"""Tests for STDIO transport layer."""

import asyncio
import io
import json

import pytest

from misp_mcp.protocol.jsonrpc import MAX_MESSAGE_SIZE
from misp_mcp.protocol.transport import (
    ContentLengthFraming,
    Framing,
    LineFraming,
    MemoryTransport,
    StdioTransport,
    StreamDesyncError,
    TransportError,
    TransportWriteError,
    get_framing,
)


class TestLineFraming:
    """Tests for newline-delimited framing."""

    def test_reads_lines(self):
        """Should return one frame per line."""
        stream = io.BytesIO(b'{"a":1}\n{"b":2}\n')
        framing = LineFraming()

        assert framing.read_frame(stream) == b'{"a":1}'
        assert framing.read_frame(stream) == b'{"b":2}'
        assert framing.read_frame(stream) is None

    def test_skips_blank_lines(self):
        """Should ignore empty lines between frames."""
        stream = io.BytesIO(b'\n\r\n  \n{"a":1}\n')
        assert LineFraming().read_frame(stream) == b'{"a":1}'

    def test_handles_crlf(self):
        """Should strip carriage returns."""
        stream = io.BytesIO(b'{"a":1}\r\n')
        assert LineFraming().read_frame(stream) == b'{"a":1}'

    def test_final_line_without_newline(self):
        """Should deliver a trailing line that lacks a newline."""
        stream = io.BytesIO(b'{"a":1}')
        framing = LineFraming()

        assert framing.read_frame(stream) == b'{"a":1}'
        assert framing.read_frame(stream) is None

    def test_oversized_line_is_skipped(self):
        """Should reject a line over the size limit and resume at the next one."""
        stream = io.BytesIO(b"x" * (MAX_MESSAGE_SIZE + 10) + b'\n{"a":1}\n')
        framing = LineFraming()

        with pytest.raises(TransportError):
            framing.read_frame(stream)
        assert framing.read_frame(stream) == b'{"a":1}'

    def test_line_at_size_limit(self):
        """Should accept a payload of exactly the size limit."""
        payload = b"x" * MAX_MESSAGE_SIZE
        stream = io.BytesIO(payload + b'\n{"a":1}\n')
        framing = LineFraming()

        assert framing.read_frame(stream) == payload
        assert framing.read_frame(stream) == b'{"a":1}'

    def test_frames_payload(self):
        """Should terminate outbound payloads with a newline."""
        assert LineFraming().frame(b"{}") == b"{}\n"


class TestContentLengthFraming:
    """Tests for header-delimited framing."""

    def test_reads_frames(self):
        """Should read bodies of the declared length."""
        body1 = b'{"jsonrpc":"2.0","id":1,"method":"ping"}'
        body2 = b'{"x":"\xc3\xa9"}'
        stream = io.BytesIO(
            b"Content-Length: %d\r\n\r\n%s" % (len(body1), body1)
            + b"Content-Length: %d\r\n\r\n%s" % (len(body2), body2)
        )
        framing = ContentLengthFraming()

        assert framing.read_frame(stream) == body1
        assert framing.read_frame(stream) == body2
        assert framing.read_frame(stream) is None

    def test_header_names_are_case_insensitive(self):
        """Should accept other header spellings and extra headers."""
        stream = io.BytesIO(
            b"content-length: 2\r\nContent-Type: application/json\r\n\r\n{}"
        )
        assert ContentLengthFraming().read_frame(stream) == b"{}"

    def test_missing_length(self):
        """Should reject frames without Content-Length."""
        stream = io.BytesIO(b"Content-Type: application/json\r\n\r\n{}")
        with pytest.raises(TransportError):
            ContentLengthFraming().read_frame(stream)

    def test_invalid_length(self):
        """Should reject a non-numeric length."""
        stream = io.BytesIO(b"Content-Length: abc\r\n\r\n{}")
        with pytest.raises(TransportError):
            ContentLengthFraming().read_frame(stream)

    def test_malformed_header(self):
        """Should reject header lines without a colon."""
        stream = io.BytesIO(b"garbage\r\n\r\n")
        with pytest.raises(TransportError):
            ContentLengthFraming().read_frame(stream)

    def test_truncated_body_is_end_of_stream(self):
        """Should discard a frame cut short by end-of-stream."""
        stream = io.BytesIO(b"Content-Length: 10\r\n\r\n{}")
        assert ContentLengthFraming().read_frame(stream) is None

    def test_oversized_length_is_rejected_before_reading(self):
        """Should refuse a declared length over the size limit."""
        stream = io.BytesIO(b"Content-Length: 99999999999999999\r\n\r\n{}")
        with pytest.raises(StreamDesyncError) as exc_info:
            ContentLengthFraming().read_frame(stream)
        assert not exc_info.value.resumable
        assert stream.read() == b"{}"

    def test_frames_payload(self):
        """Should prefix outbound payloads with their byte length."""
        payload = '{"x":"é"}'.encode()
        assert ContentLengthFraming().frame(payload) == b"Content-Length: 10\r\n\r\n" + payload


class TestGetFraming:
    """Tests for framing lookup."""

    def test_known_names(self):
        """Should build the named framing."""
        assert isinstance(get_framing("line"), LineFraming)
        assert isinstance(get_framing("content-length"), ContentLengthFraming)

    def test_unknown_name(self):
        """Should reject unknown names."""
        with pytest.raises(ValueError):
            get_framing("xml")


class BrokenStream(io.BytesIO):
    """Output stream that fails every write."""

    def write(self, data):
        raise BrokenPipeError("pipe closed")


class TestStdioTransport:
    """Tests for StdioTransport class."""

    async def test_reads_frames_until_eof(self):
        """Should deliver frames in order, then None repeatedly."""
        stdin = io.BytesIO(b'{"a":1}\n{"b":2}\n')
        transport = StdioTransport(stdin=stdin, stdout=io.BytesIO())

        assert await transport.read_frame() == b'{"a":1}'
        assert await transport.read_frame() == b'{"b":2}'
        assert await transport.read_frame() is None
        assert await transport.read_frame() is None

    async def test_reports_framing_errors_and_continues(self):
        """Should raise TransportError for a bad frame and keep reading."""
        stdin = io.BytesIO(b"garbage\r\n\r\nContent-Length: 2\r\n\r\n{}")
        transport = StdioTransport(
            stdin=stdin, stdout=io.BytesIO(), framing=ContentLengthFraming()
        )

        with pytest.raises(TransportError):
            await transport.read_frame()
        assert await transport.read_frame() == b"{}"

    async def test_oversized_frame_ends_input(self):
        """Should report an unframeable length, then end of stream."""
        stdin = io.BytesIO(b'Content-Length: 99999999999999999\r\n\r\n{}')
        transport = StdioTransport(
            stdin=stdin, stdout=io.BytesIO(), framing=ContentLengthFraming()
        )

        with pytest.raises(TransportError):
            await asyncio.wait_for(transport.read_frame(), timeout=2)
        assert await asyncio.wait_for(transport.read_frame(), timeout=2) is None

    async def test_reader_crash_ends_input(self):
        """Should turn an unexpected reader failure into end of stream."""

        class CrashingFraming(Framing):
            def read_frame(self, stream):
                raise MemoryError("cannot allocate frame")

            def frame(self, payload):
                return payload

        transport = StdioTransport(
            stdin=io.BytesIO(), stdout=io.BytesIO(), framing=CrashingFraming()
        )

        assert await asyncio.wait_for(transport.read_frame(), timeout=2) is None

    async def test_writes_framed_payload(self):
        """Should write one framed payload per call."""
        stdout = io.BytesIO()
        transport = StdioTransport(stdin=io.BytesIO(), stdout=stdout)

        await transport.write_frame(b'{"id":1}')
        await transport.write_frame(b'{"id":2}')

        assert stdout.getvalue() == b'{"id":1}\n{"id":2}\n'

    async def test_concurrent_writes_do_not_interleave(self):
        """Should keep each frame contiguous under concurrent writers."""
        stdout = io.BytesIO()
        transport = StdioTransport(stdin=io.BytesIO(), stdout=stdout)
        payloads = [json.dumps({"id": i, "pad": "x" * 1000}).encode() for i in range(20)]

        await asyncio.gather(*(transport.write_frame(p) for p in payloads))

        lines = stdout.getvalue().splitlines()
        assert sorted(lines) == sorted(payloads)

    async def test_write_failure_breaks_transport(self):
        """Should raise TransportWriteError and refuse later writes."""
        transport = StdioTransport(stdin=io.BytesIO(), stdout=BrokenStream())

        with pytest.raises(TransportWriteError):
            await transport.write_frame(b"{}")
        assert transport.is_broken
        with pytest.raises(TransportWriteError):
            await transport.write_frame(b"{}")


class TestMemoryTransport:
    """Tests for the in-process transport."""

    async def test_feed_and_read(self):
        """Should return fed frames as bytes."""
        transport = MemoryTransport()
        transport.feed({"jsonrpc": "2.0", "method": "x"})
        transport.feed("raw")
        transport.close_input()

        assert json.loads(await transport.read_frame()) == {"jsonrpc": "2.0", "method": "x"}
        assert await transport.read_frame() == b"raw"
        assert await transport.read_frame() is None
        assert await transport.read_frame() is None

    async def test_wait_for_responses(self):
        """Should wake once enough frames were written."""
        transport = MemoryTransport()

        async def writer():
            await asyncio.sleep(0.01)
            await transport.write_frame(b'{"id":1}')

        task = asyncio.create_task(writer())
        responses = await transport.wait_for_responses(1)
        await task

        assert responses == [{"id": 1}]

    async def test_simulated_write_failure(self):
        """Should raise when writes are set to fail."""
        transport = MemoryTransport()
        transport.fail_writes = True

        with pytest.raises(TransportWriteError):
            await transport.write_frame(b"{}")
