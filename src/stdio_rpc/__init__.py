"""stdio-rpc-supervisor - JSON RPC over a worker process's stdio.

Supervises one long-lived worker process, sends it one-line JSON requests on
stdin and reads ``__JSON_RPC__``-prefixed answers from stdout; every other
output line is relayed as a log event.

Usage:
    from stdio_rpc import RpcSupervisor, WorkerConfig

    async with RpcSupervisor(event_sink=print) as supervisor:
        await supervisor.restart(WorkerConfig(interpreter="python3", script="worker.py"))
        result = await supervisor.call("ping", {})
"""

__version__ = "0.1.0"

from .errors import (
    CallTimeoutError,
    ErrorKind,
    InvalidConfigError,
    KillFailureError,
    MalformedFrameError,
    NotRunningError,
    ProcessExitedError,
    ReadFailureError,
    ScriptNotFoundError,
    SpawnFailureError,
    SupervisorError,
    WriteFailureError,
)
from .protocol import RPC_PREFIX
from .runtime import WorkerConfig, WorkerProcess
from .supervisor import RpcSupervisor, SupervisorState

__all__ = [
    "__version__",
    "RPC_PREFIX",
    "RpcSupervisor",
    "SupervisorState",
    "WorkerConfig",
    "WorkerProcess",
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
