"""Forwarding of worker log output to the host.

Two paths feed the same sink:
- stderr: a background task per worker drains it for the worker's lifetime
- stdout: non-frame lines seen by the RPC read loop are emitted inline

The sink is a plain ``Callable[[str], None]`` receiving tagged text such as
``[stderr] Traceback ...``. A failing sink is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from pydantic import BaseModel, Field

from .protocol import LogLine, StreamName, decode_log_line

__all__ = [
    "EventSink",
    "LogEvent",
    "LogBuffer",
    "LogRelay",
]

# Type alias: host-side log event consumer
EventSink = Callable[[str], None]

logger = logging.getLogger(__name__)

# Worker output is mirrored here at DEBUG
worker_logger = logging.getLogger("stdio_rpc.worker")


class LogEvent(BaseModel):
    """A buffered log event.

    Attributes:
        stream: stdout or stderr
        text: Line content without the tag
        timestamp: Unix time when the line was relayed
        pid: Worker process ID, if known
    """

    stream: StreamName
    text: str
    timestamp: float = Field(default_factory=time.time)
    pid: int | None = None

    @property
    def message(self) -> str:
        return f"[{self.stream.value}] {self.text}"


class LogBuffer:
    """Bounded in-memory store of recent log events.

    Keeps the newest ``maxlen`` events; older ones fall off. Used by the tool
    server, which has no push channel for log lines and lets clients poll.
    """

    def __init__(self, maxlen: int = 1000) -> None:
        self._events: deque[LogEvent] = deque(maxlen=maxlen)
        self.dropped = 0

    def append(self, event: LogEvent) -> None:
        if self._events.maxlen is not None and len(self._events) == self._events.maxlen:
            self.dropped += 1
        self._events.append(event)

    def snapshot(self, limit: int | None = None) -> list[LogEvent]:
        """Return buffered events, newest ``limit`` only when given."""
        events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def drain(self, limit: int | None = None) -> list[LogEvent]:
        """Remove and return the oldest ``limit`` events (all if None)."""
        count = len(self._events) if limit is None else min(limit, len(self._events))
        return [self._events.popleft() for _ in range(count)]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class LogRelay:
    """Delivers worker log lines to the event sink.

    Attributes:
        sink: Host callback (None = only mirror to logging)
        on_event: Optional structured listener, e.g. LogBuffer.append
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        on_event: Callable[[LogEvent], None] | None = None,
    ) -> None:
        self.sink = sink
        self.on_event = on_event

    def emit(self, line: LogLine, pid: int | None = None) -> None:
        """Forward one line. Never raises."""
        text = line.format()
        worker_logger.debug(f"pid={pid} {text}")

        if self.sink is not None:
            try:
                self.sink(text)
            except Exception as e:
                logger.warning(f"Log sink rejected event: {e}")

        if self.on_event is not None:
            try:
                self.on_event(LogEvent(stream=line.stream, text=line.text, pid=pid))
            except Exception as e:
                logger.warning(f"Log event listener failed: {e}")

    def start(self, stream: asyncio.StreamReader, pid: int | None = None) -> asyncio.Task[int]:
        """Start draining ``stream`` as stderr in a background task.

        The task ends by itself at end of stream and returns the number of
        lines relayed. It must not be restarted for another worker.
        """
        return asyncio.create_task(
            self._drain_stderr(stream, pid),
            name=f"log-relay-{pid}",
        )

    async def _drain_stderr(self, stream: asyncio.StreamReader, pid: int | None) -> int:
        """Read stderr line by line until the worker closes it."""
        count = 0
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Over-long line: the reader is unusable after a limit overrun
                logger.warning(f"Stopped relaying stderr pid={pid}: {e}")
                break
            except OSError as e:
                logger.warning(f"Error reading stderr pid={pid}: {e}")
                break
            if not raw:
                break
            self.emit(decode_log_line(raw, StreamName.STDERR), pid)
            count += 1

        logger.debug(f"stderr closed pid={pid}, relayed {count} line(s)")
        return count
