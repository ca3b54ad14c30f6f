"""Line framing between the supervisor and the worker.

Wire format (UTF-8, one message per line):

- Request, supervisor -> worker stdin::

      {"command": <string>, "params": <value>}\\n

- Response, worker stdout -> supervisor::

      __JSON_RPC__<json-value>\\n

Any stdout line without the prefix, and every stderr line, is a log line.
The prefix at column 0 is the only discriminator: there is no length field
and no request id, so responses are matched to calls purely by order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from .errors import MalformedFrameError, ProcessExitedError, ReadFailureError

__all__ = [
    "RPC_PREFIX",
    "StreamName",
    "CommandRequest",
    "ResponseFrame",
    "LogLine",
    "Line",
    "classify_line",
    "decode_log_line",
    "FramedReader",
]

logger = logging.getLogger(__name__)

RPC_PREFIX = "__JSON_RPC__"
_RPC_PREFIX_BYTES = RPC_PREFIX.encode("utf-8")


class StreamName(Enum):
    """Origin stream of a line."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class CommandRequest:
    """A single outbound call.

    Attributes:
        command: Command name understood by the worker
        params: Any JSON-serialisable value
    """

    command: str
    params: Any = None

    def encode(self) -> bytes:
        """Serialise to one newline-terminated line.

        json.dumps escapes control characters, so the body never contains a
        raw newline and the worker can read it with a plain readline().
        """
        body = json.dumps(
            {"command": self.command, "params": self.params},
            ensure_ascii=False,
        )
        return (body + "\n").encode("utf-8")


@dataclass(frozen=True)
class ResponseFrame:
    """A response line with the prefix removed.

    Attributes:
        payload: Text after the prefix, trailing whitespace trimmed
    """

    payload: str

    def decode(self) -> Any:
        """Parse the payload as JSON.

        Raises:
            MalformedFrameError: If the payload is not valid JSON
        """
        try:
            return json.loads(self.payload)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(self.payload, str(e)) from e


@dataclass(frozen=True)
class LogLine:
    """A diagnostic line from either stream.

    Attributes:
        stream: Which stream produced the line
        text: Line content without the line terminator
    """

    stream: StreamName
    text: str

    def format(self) -> str:
        """Render as the tagged event text, e.g. ``[stderr] boom``."""
        return f"[{self.stream.value}] {self.text}"


Line = Union[ResponseFrame, LogLine]


def _strip_terminator(text: str) -> str:
    return text.rstrip("\r\n")


def decode_log_line(raw: bytes, stream: StreamName) -> LogLine:
    """Decode a raw line as a log line; undecodable bytes are replaced."""
    return LogLine(stream, _strip_terminator(raw.decode("utf-8", errors="replace")))


def classify_line(
    raw: bytes | str,
    stream: StreamName = StreamName.STDOUT,
) -> Line:
    """Classify one physical line as a response frame or a log line.

    Only stdout lines can be frames. A stdout line is a frame iff it starts
    with RPC_PREFIX exactly, with no leading whitespace allowed.

    Args:
        raw: The line as read, with or without its terminator
        stream: Stream the line came from

    Returns:
        ResponseFrame or LogLine

    Raises:
        MalformedFrameError: If a prefixed payload is not valid UTF-8
    """
    if isinstance(raw, str):
        if stream is StreamName.STDOUT and raw.startswith(RPC_PREFIX):
            return ResponseFrame(raw[len(RPC_PREFIX):].rstrip())
        return LogLine(stream, _strip_terminator(raw))

    if stream is StreamName.STDOUT and raw.startswith(_RPC_PREFIX_BYTES):
        body = raw[len(_RPC_PREFIX_BYTES):]
        try:
            return ResponseFrame(body.decode("utf-8").rstrip())
        except UnicodeDecodeError as e:
            raise MalformedFrameError(
                body.decode("utf-8", errors="replace").rstrip(), str(e)
            ) from e

    # Log lines never fail: a worker printing binary noise is not a protocol error
    return decode_log_line(raw, stream)


class FramedReader:
    """Reads classified lines from a worker's stdout.

    One instance per worker process. It holds no buffer of its own beyond the
    StreamReader's, and returns at most one frame per next_frame() call.
    """

    def __init__(self, stream: asyncio.StreamReader) -> None:
        self._stream = stream

    async def read_line(self) -> bytes | None:
        """Read one line including its terminator.

        Returns:
            The line bytes, or None when the stream is closed

        Raises:
            ReadFailureError: On I/O errors or a line over the reader limit
        """
        try:
            line = await self._stream.readline()
        except ValueError as e:
            # StreamReader raises ValueError when a line exceeds its limit
            raise ReadFailureError(f"Worker output line too long: {e}") from e
        except OSError as e:
            raise ReadFailureError(f"Failed to read worker output: {e}") from e
        if not line:
            return None
        return line

    async def next_frame(self, on_log: Callable[[LogLine], None]) -> ResponseFrame:
        """Read until a response frame arrives.

        Every log line seen on the way is passed to ``on_log`` in the order
        it was read, before this method returns.

        Raises:
            ProcessExitedError: On end of stream before a frame
            ReadFailureError: On read errors
            MalformedFrameError: On a prefixed line that is not UTF-8
        """
        while True:
            raw = await self.read_line()
            if raw is None:
                raise ProcessExitedError()
            line = classify_line(raw, StreamName.STDOUT)
            if isinstance(line, ResponseFrame):
                return line
            on_log(line)
