"""Supervisor exception types.

Every failure of the supervisor surfaces as a subclass of SupervisorError
carrying a stable ErrorKind, so callers can branch on ``exc.kind`` without
matching message text. Nothing here is retried internally.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "ErrorKind",
    "SupervisorError",
    "NotRunningError",
    "InvalidConfigError",
    "ScriptNotFoundError",
    "SpawnFailureError",
    "WriteFailureError",
    "ReadFailureError",
    "MalformedFrameError",
    "CallTimeoutError",
    "ProcessExitedError",
    "KillFailureError",
]


class ErrorKind(Enum):
    """Stable error identifiers."""

    NOT_RUNNING = "not_running"
    INVALID_CONFIG = "invalid_config"
    SCRIPT_NOT_FOUND = "script_not_found"
    SPAWN_FAILURE = "spawn_failure"
    WRITE_FAILURE = "write_failure"
    READ_FAILURE = "read_failure"
    MALFORMED = "malformed"
    TIMEOUT = "timeout"
    PROCESS_EXITED = "process_exited"
    KILL_FAILURE = "kill_failure"


class SupervisorError(Exception):
    """Base class for supervisor failures."""

    kind: ErrorKind

    def to_dict(self) -> dict[str, Any]:
        """Render as ``{"kind", "message"}`` for inline display."""
        return {"kind": self.kind.value, "message": str(self)}


class NotRunningError(SupervisorError):
    """No worker process is running."""

    kind = ErrorKind.NOT_RUNNING

    def __init__(self, message: str = "Worker process is not running.") -> None:
        super().__init__(message)


class InvalidConfigError(SupervisorError):
    """Interpreter or script path is unset."""

    kind = ErrorKind.INVALID_CONFIG


class ScriptNotFoundError(SupervisorError):
    """Script path does not exist on disk.

    Attributes:
        path: The script path that was checked
    """

    kind = ErrorKind.SCRIPT_NOT_FOUND

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Script not found at {path}")


class SpawnFailureError(SupervisorError):
    """The OS refused to start the worker.

    Attributes:
        interpreter: Interpreter path that was attempted
        reason: Underlying OS error text
    """

    kind = ErrorKind.SPAWN_FAILURE

    def __init__(self, interpreter: str, reason: str) -> None:
        self.interpreter = interpreter
        self.reason = reason
        super().__init__(
            f"Failed to spawn worker process with '{interpreter}': {reason}"
        )


class WriteFailureError(SupervisorError):
    """Writing a request to the worker's stdin failed."""

    kind = ErrorKind.WRITE_FAILURE


class ReadFailureError(SupervisorError):
    """Reading from the worker's stdout failed."""

    kind = ErrorKind.READ_FAILURE


class MalformedFrameError(SupervisorError):
    """A prefixed line whose payload is not valid JSON.

    Attributes:
        payload: The raw payload text after the prefix
    """

    kind = ErrorKind.MALFORMED

    def __init__(self, payload: str, reason: str = "") -> None:
        self.payload = payload
        preview = payload if len(payload) <= 200 else payload[:200] + "..."
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed response frame{detail} (payload={preview!r})")


class CallTimeoutError(SupervisorError):
    """No response frame arrived within the call budget.

    Attributes:
        timeout: The budget in seconds
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Timeout: did not receive a response from the worker within {timeout:g}s."
        )


class ProcessExitedError(SupervisorError):
    """The worker closed its stdout before answering.

    Attributes:
        returncode: Exit status if already known
    """

    kind = ErrorKind.PROCESS_EXITED

    def __init__(self, returncode: int | None = None) -> None:
        self.returncode = returncode
        suffix = f" (returncode={returncode})" if returncode is not None else ""
        super().__init__(f"Worker process exited unexpectedly{suffix}.")


class KillFailureError(SupervisorError):
    """The previous worker could not be killed and reaped.

    Attributes:
        pid: Process ID of the worker
    """

    kind = ErrorKind.KILL_FAILURE

    def __init__(self, pid: int | None, reason: str) -> None:
        self.pid = pid
        super().__init__(f"Failed to kill worker pid={pid}: {reason}")
