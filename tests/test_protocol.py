"""Framing protocol tests.

Test coverage:
- Request encoding (one line, UTF-8, no raw newlines)
- Line classification (frame vs log, prefix rules, trimming)
- Payload decoding and malformed payloads
- FramedReader over an in-memory StreamReader (ordering, EOF, limits)
"""

from __future__ import annotations

import asyncio
import json

import pytest

from stdio_rpc.errors import (
    ErrorKind,
    MalformedFrameError,
    ProcessExitedError,
    ReadFailureError,
)
from stdio_rpc.protocol import (
    RPC_PREFIX,
    CommandRequest,
    FramedReader,
    LogLine,
    ResponseFrame,
    StreamName,
    classify_line,
    decode_log_line,
)


def _reader(data: bytes, limit: int = 2**16) -> asyncio.StreamReader:
    reader = asyncio.StreamReader(limit=limit)
    reader.feed_data(data)
    reader.feed_eof()
    return reader


# =============================================================================
# CommandRequest
# =============================================================================


class TestCommandRequest:
    """Test request encoding."""

    def test_encode_single_line(self):
        data = CommandRequest("detect", {"frame": 3}).encode()
        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1
        assert json.loads(data) == {"command": "detect", "params": {"frame": 3}}

    def test_encode_escapes_newlines(self):
        data = CommandRequest("say", {"text": "line1\nline2"}).encode()
        assert data.count(b"\n") == 1
        assert json.loads(data)["params"]["text"] == "line1\nline2"

    def test_encode_keeps_unicode(self):
        data = CommandRequest("say", "héllo 日本").encode()
        assert "héllo 日本".encode("utf-8") in data

    def test_params_default_null(self):
        assert json.loads(CommandRequest("ping").encode()) == {
            "command": "ping",
            "params": None,
        }


# =============================================================================
# classify_line
# =============================================================================


class TestClassifyLine:
    """Test frame/log classification."""

    def test_prefixed_line_is_frame(self):
        line = classify_line(b'__JSON_RPC__{"ok":true}\n')
        assert isinstance(line, ResponseFrame)
        assert line.payload == '{"ok":true}'

    def test_trailing_whitespace_trimmed(self):
        line = classify_line(b'__JSON_RPC__{"ok":true}  \r\n')
        assert isinstance(line, ResponseFrame)
        assert line.payload == '{"ok":true}'

    def test_plain_line_is_log(self):
        line = classify_line(b"loading model...\n")
        assert line == LogLine(StreamName.STDOUT, "loading model...")

    def test_leading_space_is_not_frame(self):
        line = classify_line(b' __JSON_RPC__{"ok":true}\n')
        assert isinstance(line, LogLine)

    def test_prefix_in_middle_is_log(self):
        line = classify_line(b'result: __JSON_RPC__{"ok":true}\n')
        assert isinstance(line, LogLine)

    def test_partial_prefix_is_log(self):
        line = classify_line(b"__JSON_RPC{}\n")
        assert isinstance(line, LogLine)

    def test_stderr_never_frame(self):
        line = classify_line(b'__JSON_RPC__{"ok":true}\n', StreamName.STDERR)
        assert isinstance(line, LogLine)
        assert line.stream is StreamName.STDERR

    def test_str_input(self):
        line = classify_line(RPC_PREFIX + "[1, 2]\n")
        assert line == ResponseFrame("[1, 2]")

    def test_log_keeps_inner_whitespace(self):
        line = classify_line(b"  indented  \n")
        assert line == LogLine(StreamName.STDOUT, "  indented  ")

    def test_undecodable_log_bytes_replaced(self):
        line = classify_line(b"bad \xff byte\n")
        assert isinstance(line, LogLine)
        assert "�" in line.text

    def test_undecodable_frame_is_malformed(self):
        with pytest.raises(MalformedFrameError):
            classify_line(b"__JSON_RPC__\xff\xfe\n")

    def test_decode_log_line_keeps_prefix_as_text(self):
        line = decode_log_line(b"__JSON_RPC__\xff\r\n", StreamName.STDERR)
        assert line.stream is StreamName.STDERR
        assert line.text == "__JSON_RPC__�"

    def test_log_format_tags(self):
        assert LogLine(StreamName.STDOUT, "hi").format() == "[stdout] hi"
        assert LogLine(StreamName.STDERR, "oops").format() == "[stderr] oops"


# =============================================================================
# ResponseFrame.decode
# =============================================================================


class TestResponseFrameDecode:
    """Test payload decoding."""

    def test_decode_nested(self):
        frame = ResponseFrame('{"a": [1, {"b": "ü"}], "c": null}')
        assert frame.decode() == {"a": [1, {"b": "ü"}], "c": None}

    def test_decode_scalar(self):
        assert ResponseFrame('"done"').decode() == "done"
        assert ResponseFrame("42").decode() == 42

    def test_malformed(self):
        with pytest.raises(MalformedFrameError) as exc_info:
            ResponseFrame("{not json").decode()
        assert exc_info.value.payload == "{not json"
        assert exc_info.value.kind is ErrorKind.MALFORMED

    def test_empty_payload_malformed(self):
        with pytest.raises(MalformedFrameError):
            ResponseFrame("").decode()


# =============================================================================
# FramedReader
# =============================================================================


class TestFramedReader:
    """Test the read loop over a StreamReader."""

    @pytest.mark.asyncio
    async def test_logs_before_frame_in_order(self):
        reader = FramedReader(_reader(b"one\ntwo\n__JSON_RPC__{\"ok\":true}\nafter\n"))
        seen: list[LogLine] = []

        frame = await reader.next_frame(seen.append)

        assert frame.decode() == {"ok": True}
        assert [line.text for line in seen] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_one_frame_per_call(self):
        reader = FramedReader(_reader(b"__JSON_RPC__1\n__JSON_RPC__2\n"))
        first = await reader.next_frame(lambda line: None)
        second = await reader.next_frame(lambda line: None)
        assert (first.payload, second.payload) == ("1", "2")

    @pytest.mark.asyncio
    async def test_eof_before_frame(self):
        reader = FramedReader(_reader(b"log only\n"))
        seen: list[LogLine] = []
        with pytest.raises(ProcessExitedError):
            await reader.next_frame(seen.append)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_frame_without_trailing_newline_at_eof(self):
        reader = FramedReader(_reader(b'__JSON_RPC__{"last":1}'))
        frame = await reader.next_frame(lambda line: None)
        assert frame.decode() == {"last": 1}

    @pytest.mark.asyncio
    async def test_read_line_returns_none_at_eof(self):
        reader = FramedReader(_reader(b""))
        assert await reader.read_line() is None

    @pytest.mark.asyncio
    async def test_line_over_limit_is_read_failure(self):
        reader = FramedReader(_reader(b"x" * 200 + b"\n", limit=64))
        with pytest.raises(ReadFailureError):
            await reader.read_line()
