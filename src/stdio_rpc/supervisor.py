"""RPC supervisor for a single long-lived worker process.

The supervisor owns at most one WorkerProcess. It exposes three operations:

- call(): write one request line, then read stdout until a response frame
- restart(): kill and reap the current worker, spawn a new one
- teardown(): kill and reap the current worker, keep none

Locking:
- _io_lock serialises call() against the handle swap in restart()/teardown(),
  so requests and responses never interleave and handles never change
  mid-call. A second concurrent call() waits for the first.
- _lifecycle_lock serialises restart()/teardown() with each other. The kill
  happens outside _io_lock so a call blocked on a silent worker is released
  by the resulting end of stream instead of holding up the restart.

Timeouts: a timed-out call leaves its answer unread. With
TimeoutPolicy.DISCARD the worker keeps running and the supervisor drops the
next frame it reads for each abandoned call (frames are answered in order).
If a call drops such a frame and then sees nothing else before its deadline,
the abandoned call was never answered: the dropped frame is taken as this
call's answer and the count resets.
With TimeoutPolicy.KILL the worker is killed and later calls fail with
NotRunningError until restart().
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Mapping

import anyio

from .config import TimeoutPolicy, get_config
from .errors import (
    CallTimeoutError,
    KillFailureError,
    MalformedFrameError,
    NotRunningError,
    ProcessExitedError,
)
from .log_relay import EventSink, LogEvent, LogRelay
from .protocol import CommandRequest, FramedReader, LogLine, ResponseFrame
from .runtime.process_handle import WorkerConfig, WorkerProcess

__all__ = ["RpcSupervisor", "SupervisorState"]

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    """Lifecycle state of the supervised worker."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"
    TORN_DOWN = "torn_down"


class RpcSupervisor:
    """Supervises one worker and correlates calls with response frames.

    Example:
        async with RpcSupervisor(event_sink=print) as supervisor:
            await supervisor.restart(
                WorkerConfig(interpreter=sys.executable, script="worker.py")
            )
            result = await supervisor.call("detect", {"frame": 12})

    Attributes:
        call_timeout: Default timeout for call() in seconds
        kill_timeout: Wait after killing the worker in seconds
        timeout_policy: Behaviour after a call times out
        line_limit: Maximum bytes per worker output line
    """

    def __init__(
        self,
        event_sink: EventSink | None = None,
        *,
        call_timeout: float | None = None,
        kill_timeout: float | None = None,
        timeout_policy: TimeoutPolicy | None = None,
        line_limit: int | None = None,
        on_log_event: Callable[[LogEvent], None] | None = None,
    ) -> None:
        """Create a supervisor with no worker.

        Args:
            event_sink: Receives tagged log text, e.g. ``[stderr] ...``
            call_timeout: Default call timeout (default from config)
            kill_timeout: Wait after kill (default from config)
            timeout_policy: Timeout handling (default from config)
            line_limit: Output line limit (default from config)
            on_log_event: Structured log listener, e.g. LogBuffer.append
        """
        config = get_config()
        self.call_timeout = call_timeout if call_timeout is not None else config.call_timeout
        self.kill_timeout = kill_timeout if kill_timeout is not None else config.kill_timeout
        self.timeout_policy = (
            timeout_policy if timeout_policy is not None else config.timeout_policy
        )
        self.line_limit = line_limit if line_limit is not None else config.line_limit

        self._relay = LogRelay(event_sink, on_log_event)
        self._io_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()

        # Current worker and everything bound to it
        self._worker: WorkerProcess | None = None
        self._reader: FramedReader | None = None
        self._relay_task: asyncio.Task[int] | None = None
        # Set when stdout hit EOF (EXITED) or a timeout killed the worker (KILLED)
        self._closed_as: SupervisorState | None = None
        # Frames owed to calls that timed out
        self._stale_frames = 0

        self._state = SupervisorState.NOT_STARTED

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SupervisorState:
        if self._state is SupervisorState.RUNNING and self._worker is not None:
            if self._closed_as is not None:
                return self._closed_as
            if not self._worker.is_alive:
                return SupervisorState.EXITED
        return self._state

    @property
    def is_running(self) -> bool:
        return self.state is SupervisorState.RUNNING

    @property
    def pid(self) -> int | None:
        return self._worker.pid if self._worker is not None else None

    @property
    def stale_frames(self) -> int:
        """Late answers still expected from timed-out calls."""
        return self._stale_frames

    # =========================================================================
    # call
    # =========================================================================

    async def call(
        self,
        command: str,
        params: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the decoded response payload.

        Args:
            command: Command name
            params: JSON-serialisable parameters
            timeout: Seconds to wait for the response (default call_timeout)

        Returns:
            The JSON value the worker wrote after the prefix

        Raises:
            NotRunningError: No running worker
            WriteFailureError: Request could not be written
            ReadFailureError: stdout could not be read
            MalformedFrameError: Response payload is not valid JSON
            CallTimeoutError: No response within the timeout
            ProcessExitedError: Worker closed stdout before answering
        """
        frame = await self._exchange(command, params, timeout)
        return frame.decode()

    async def call_raw(
        self,
        command: str,
        params: Any = None,
        timeout: float | None = None,
    ) -> str:
        """Like call(), but return the payload text without decoding it."""
        frame = await self._exchange(command, params, timeout)
        return frame.payload

    async def _exchange(
        self,
        command: str,
        params: Any,
        timeout: float | None,
    ) -> ResponseFrame:
        budget = self.call_timeout if timeout is None else timeout
        request = CommandRequest(command, params)

        async with self._io_lock:
            if not self.is_running or self._worker is None or self._reader is None:
                raise NotRunningError()
            worker = self._worker
            reader = self._reader

            await worker.write_line(request.encode())
            logger.debug(f"Sent command={command!r} pid={worker.pid} timeout={budget}")

            # Frames this call dropped as late answers to earlier calls
            discarded: list[ResponseFrame | MalformedFrameError] = []
            try:
                with anyio.fail_after(budget):
                    frame = await self._read_frame(worker, reader, discarded)
            except TimeoutError:
                if not discarded:
                    await self._handle_timeout(worker, command, budget)
                    raise CallTimeoutError(budget) from None
                # Nothing followed the dropped frames: an earlier call never got
                # an answer, and the last frame dropped belongs to this call
                self._stale_frames = 0
                logger.warning(
                    f"No frame after discarding {len(discarded)} late frame(s) "
                    f"pid={worker.pid}; taking the last one as the answer to "
                    f"command={command!r}"
                )
                last = discarded[-1]
                if isinstance(last, MalformedFrameError):
                    raise last from None
                frame = last
            except ProcessExitedError:
                self._closed_as = SupervisorState.EXITED
                logger.warning(
                    f"Worker closed stdout during command={command!r} pid={worker.pid}"
                )
                raise ProcessExitedError(worker.returncode) from None
            except asyncio.CancelledError:
                # The answer will still arrive; make the next call skip it
                self._stale_frames += 1
                raise

        logger.debug(f"Received response command={command!r} ({len(frame.payload)} chars)")
        return frame

    async def _read_frame(
        self,
        worker: WorkerProcess,
        reader: FramedReader,
        discarded: list[ResponseFrame | MalformedFrameError],
    ) -> ResponseFrame:
        """Read the next frame that belongs to the current call.

        While late answers are owed, each frame read (a malformed one too)
        pays off one of them and is appended to ``discarded``.
        """

        def on_log(line: LogLine) -> None:
            self._relay.emit(line, worker.pid)

        while True:
            try:
                frame = await reader.next_frame(on_log)
            except MalformedFrameError as e:
                if self._stale_frames == 0:
                    raise
                self._discard(e, worker, discarded)
                continue
            if self._stale_frames == 0:
                return frame
            self._discard(frame, worker, discarded)

    def _discard(
        self,
        frame: ResponseFrame | MalformedFrameError,
        worker: WorkerProcess,
        discarded: list[ResponseFrame | MalformedFrameError],
    ) -> None:
        self._stale_frames -= 1
        discarded.append(frame)
        logger.warning(
            f"Discarded late response frame pid={worker.pid} "
            f"({self._stale_frames} still pending)"
        )

    async def _handle_timeout(self, worker: WorkerProcess, command: str, budget: float) -> None:
        logger.warning(
            f"Command {command!r} timed out after {budget:g}s pid={worker.pid} "
            f"(policy={self.timeout_policy.value})"
        )
        if self.timeout_policy is TimeoutPolicy.KILL:
            self._closed_as = SupervisorState.KILLED
            try:
                await worker.kill_and_wait(self.kill_timeout)
            except KillFailureError as e:
                # Handle stays installed; restart()/teardown() retries the kill
                logger.warning(f"Kill after timeout failed: {e}")
        else:
            self._stale_frames += 1

    # =========================================================================
    # restart / teardown
    # =========================================================================

    async def restart(self, config: WorkerConfig | Mapping[str, Any]) -> None:
        """Replace the current worker with a new one.

        The previous worker, if any, is killed and reaped first. If that
        fails no new worker is started.

        Args:
            config: WorkerConfig or its dict form ``{interpreter, script, ...}``

        Raises:
            KillFailureError: Previous worker could not be killed
            InvalidConfigError: Interpreter or script unset, or a field has the wrong type
            ScriptNotFoundError: Script missing
            SpawnFailureError: Interpreter could not be started
        """
        if not isinstance(config, WorkerConfig):
            config = WorkerConfig.from_mapping(config)

        async with self._lifecycle_lock:
            await self._stop_current(SupervisorState.KILLED)

            async with self._io_lock:
                worker = await WorkerProcess.spawn(config, line_limit=self.line_limit)
                self._install(worker)

        logger.info(f"Worker started pid={worker.pid} script={config.script}")

    async def teardown(self) -> None:
        """Kill and reap the current worker. Safe to call repeatedly.

        Raises:
            KillFailureError: The worker could not be killed
        """
        async with self._lifecycle_lock:
            had_worker = self._worker is not None
            await self._stop_current(SupervisorState.TORN_DOWN)
            self._state = SupervisorState.TORN_DOWN

        if had_worker:
            logger.info("Worker torn down")

    async def _stop_current(self, final_state: SupervisorState) -> None:
        """Kill the current worker, then clear its handles under the io lock.

        Must be called with _lifecycle_lock held.
        """
        worker = self._worker
        if worker is None:
            return

        # Outside _io_lock: a call blocked in read sees EOF and returns
        await worker.kill_and_wait(self.kill_timeout)

        async with self._io_lock:
            relay_task = self._relay_task
            self._worker = None
            self._reader = None
            self._relay_task = None
            self._closed_as = None
            self._stale_frames = 0
            self._state = final_state

        if relay_task is not None:
            await self._finish_relay(relay_task)

    def _install(self, worker: WorkerProcess) -> None:
        """Bind a freshly spawned worker. Must be called with _io_lock held."""
        self._worker = worker
        self._reader = FramedReader(worker.stdout)
        self._relay_task = self._relay.start(worker.stderr, worker.pid)
        self._closed_as = None
        self._stale_frames = 0
        self._state = SupervisorState.RUNNING

    async def _finish_relay(self, task: asyncio.Task[int]) -> None:
        """Let the stderr relay drain to EOF; cancel it if it lingers."""
        done, _ = await asyncio.wait({task}, timeout=self.kill_timeout)
        if not done:
            logger.debug("stderr relay still running after kill, cancelling")
            task.cancel()
            await asyncio.wait({task})

    # =========================================================================
    # Context manager
    # =========================================================================

    async def __aenter__(self) -> "RpcSupervisor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.teardown()

    def __repr__(self) -> str:
        return (
            f"RpcSupervisor(state={self.state.value}, pid={self.pid}, "
            f"call_timeout={self.call_timeout}, "
            f"timeout_policy={self.timeout_policy.value})"
        )
