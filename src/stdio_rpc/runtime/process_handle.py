"""Worker process handle with piped stdio and reliable teardown.

stdio_rpc runtime module

This module provides:
- WorkerConfig: what to launch (interpreter + script), validated before spawn
- WorkerProcess: one spawned worker with stdin/stdout/stderr piped
- Cross-platform isolation (new session/process group)
- kill_and_wait(): SIGKILL to the process group, then reap with a timeout

Key design points:
- POSIX: start_new_session=True so the worker and its children form one group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- stdin/stdout/stderr are always pipes, never inherited from the host
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    InvalidConfigError,
    KillFailureError,
    ScriptNotFoundError,
    SpawnFailureError,
    WriteFailureError,
)

__all__ = [
    "IS_WINDOWS",
    "WorkerConfig",
    "WorkerProcess",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

DEFAULT_KILL_TIMEOUT = 3.0  # seconds to wait after SIGKILL
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024  # bytes per stdout/stderr line


class WorkerConfig(BaseModel):
    """What to launch.

    Matches the host's persisted ``{interpreter, script}`` document; unknown
    keys are ignored so the host can store extra fields alongside.

    Attributes:
        interpreter: Interpreter executable (e.g. a python binary)
        script: Worker script path
        interpreter_args: Flags placed before the script (``-u`` keeps the
            worker's stdio unbuffered)
        args: Extra arguments after the script
        cwd: Working directory (None = inherit)
        env: Environment (None = inherit)
    """

    model_config = ConfigDict(extra="ignore")

    interpreter: str | None = None
    script: str | None = None
    interpreter_args: list[str] = Field(default_factory=lambda: ["-u"])
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WorkerConfig":
        """Build a config from its dict form.

        Raises:
            InvalidConfigError: A field has the wrong type
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise InvalidConfigError(f"Invalid worker config: {e}") from e

    def script_path(self) -> Path:
        """Script path, relative paths resolved against cwd when set."""
        path = Path(self.script or "")
        if self.cwd and not path.is_absolute():
            return Path(self.cwd) / path
        return path

    def validate_for_spawn(self) -> None:
        """Check the config can be launched.

        Raises:
            InvalidConfigError: Interpreter or script is unset
            ScriptNotFoundError: Script does not exist
        """
        if not self.interpreter or not self.interpreter.strip():
            raise InvalidConfigError("Worker interpreter path not set")
        if not self.script or not self.script.strip():
            raise InvalidConfigError("Worker script path not set")
        if not self.script_path().exists():
            raise ScriptNotFoundError(self.script)

    def argv(self) -> list[str]:
        """Full command line."""
        return [
            self.interpreter or "",
            *self.interpreter_args,
            self.script or "",
            *self.args,
        ]


def _build_subprocess_kwargs(config: WorkerConfig) -> dict[str, Any]:
    """Build platform-specific subprocess kwargs."""
    kwargs: dict[str, Any] = {}

    if config.env is not None:
        kwargs["env"] = dict(config.env)
    if config.cwd is not None:
        kwargs["cwd"] = config.cwd

    if IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        # POSIX: start_new_session (equivalent to setsid)
        kwargs["start_new_session"] = True

    return kwargs


class WorkerProcess:
    """A spawned worker and its three pipes.

    Created by spawn(); destroyed by kill_and_wait(). The owner decides who
    reads which stream: stdout goes to the RPC reader, stderr to the log relay.

    Example:
        worker = await WorkerProcess.spawn(
            WorkerConfig(interpreter=sys.executable, script="worker.py")
        )
        await worker.write_line(b'{"command": "ping", "params": null}\\n')
        line = await worker.stdout.readline()
        await worker.kill_and_wait()
    """

    def __init__(self, process: asyncio.subprocess.Process, config: WorkerConfig) -> None:
        self._process = process
        self.config = config

    @classmethod
    async def spawn(
        cls,
        config: WorkerConfig,
        *,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ) -> "WorkerProcess":
        """Validate the config and start the worker.

        Args:
            config: What to launch
            line_limit: StreamReader limit for stdout/stderr lines

        Raises:
            InvalidConfigError: Interpreter or script unset
            ScriptNotFoundError: Script missing
            SpawnFailureError: The OS could not start the interpreter
        """
        config.validate_for_spawn()
        argv = config.argv()
        kwargs = _build_subprocess_kwargs(config)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=line_limit,
                **kwargs,
            )
        except OSError as e:
            raise SpawnFailureError(config.interpreter or "", str(e)) from e

        logger.debug(
            f"Started worker pid={process.pid} "
            f"argv={argv} cwd={config.cwd}"
        )
        return cls(process, config)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        assert self._process.stderr is not None
        return self._process.stderr

    async def write_line(self, data: bytes) -> None:
        """Write one encoded line to stdin and flush it.

        Raises:
            WriteFailureError: If stdin is closed or the pipe is broken
        """
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise WriteFailureError("Worker stdin is closed.")
        try:
            stdin.write(data)
            await stdin.drain()
        except OSError as e:
            # BrokenPipeError / ConnectionResetError when the worker is gone
            raise WriteFailureError(f"Failed to write to worker stdin: {e}") from e

    async def wait(self) -> int:
        return await self._process.wait()

    async def kill_and_wait(self, timeout: float = DEFAULT_KILL_TIMEOUT) -> int | None:
        """Kill the worker's process group and reap it.

        A worker that already exited is only reaped.

        Args:
            timeout: Seconds to wait for exit after the kill

        Returns:
            The worker's return code

        Raises:
            KillFailureError: If the kill fails or the worker outlives timeout
        """
        pid = self._process.pid
        self._close_stdin()

        if self._process.returncode is None:
            logger.debug(f"Killing worker pid={pid}")
            try:
                if IS_WINDOWS:
                    self._process.kill()
                else:
                    self._posix_kill()
            except ProcessLookupError:
                logger.debug(f"Worker already exited pid={pid}")
            except OSError as e:
                raise KillFailureError(pid, str(e)) from e

        try:
            returncode = await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Worker did not exit after kill pid={pid}")
            raise KillFailureError(pid, f"still running {timeout:g}s after kill") from e

        logger.debug(f"Worker reaped pid={pid} returncode={returncode}")
        return returncode

    def _close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.close()
            except OSError as e:
                logger.debug(f"Error closing worker stdin pid={self._process.pid}: {e}")

    def _posix_kill(self) -> None:
        """Send SIGKILL to the worker's process group."""
        try:
            # Same as pid because of start_new_session
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            self._process.kill()

    def __repr__(self) -> str:
        return (
            f"WorkerProcess(pid={self._process.pid}, "
            f"returncode={self._process.returncode}, "
            f"script={self.config.script})"
        )
