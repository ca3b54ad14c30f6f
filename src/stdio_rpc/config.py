"""Environment variable configuration.

Environment variables:
    SRPC_CALL_TIMEOUT: Default timeout per call in seconds
        - default 5.0, clamped to 0.1-3600

    SRPC_KILL_TIMEOUT: Seconds to wait for the worker to exit after SIGKILL
        - default 3.0, clamped to 0.1-60

    SRPC_TIMEOUT_POLICY: What a timed-out call does to the worker
        - discard = keep the worker, drop its late answer (default)
        - kill = kill the worker; calls fail with not_running until restart

    SRPC_LINE_LIMIT: Maximum bytes per worker output line
        - default 16 MiB

    SRPC_LOG_BUFFER: Log events kept for the worker_logs tool
        - default 1000

    SRPC_INTERPRETER / SRPC_SCRIPT: Default worker interpreter and script
        - used by worker_restart when the call omits them

    SRPC_AUTOSTART: Start the worker when the server starts
        - true/1/yes = start (requires SRPC_INTERPRETER and SRPC_SCRIPT)
        - false/0/no = wait for worker_restart (default)

    SRPC_LOG_DEBUG: Debug log mode
        - true/1/yes = DEBUG logs to a temp file
        - false/0/no = INFO logs to stderr (default)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "TimeoutPolicy", "load_config", "get_config", "reload_config"]

DEFAULT_CALL_TIMEOUT = 5.0
DEFAULT_KILL_TIMEOUT = 3.0
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024
DEFAULT_LOG_BUFFER = 1000


class TimeoutPolicy(Enum):
    """Handling of a call that timed out.

    - DISCARD: keep the worker; the next call skips the late frame
    - KILL: kill the worker before reporting the timeout
    """

    DISCARD = "discard"
    KILL = "kill"

    @classmethod
    def from_string(cls, value: str) -> "TimeoutPolicy":
        """Parse a policy name; unknown values give DISCARD."""
        value = value.lower().strip()
        for policy in cls:
            if policy.value == value:
                return policy
        return cls.DISCARD


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_int(value: str | None, default: int, low: int) -> int:
    if not value:
        return default
    try:
        return max(low, int(value))
    except ValueError:
        return default


def _parse_optional_str(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass
class Config:
    """Supervisor configuration.

    Attributes:
        call_timeout: Default per-call timeout (seconds)
        kill_timeout: Wait after SIGKILL (seconds)
        timeout_policy: Behaviour after a call times out
        line_limit: Maximum bytes per output line
        log_buffer: Log events retained by the tool server
        interpreter: Default worker interpreter
        script: Default worker script
        autostart: Start the worker with the server
        log_debug: Debug logging to a file
        log_file: Log file path (set when log_debug is on)
    """

    call_timeout: float = DEFAULT_CALL_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    timeout_policy: TimeoutPolicy = TimeoutPolicy.DISCARD
    line_limit: int = DEFAULT_LINE_LIMIT
    log_buffer: int = DEFAULT_LOG_BUFFER
    interpreter: str | None = None
    script: str | None = None
    autostart: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(call_timeout={self.call_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"timeout_policy={self.timeout_policy.value}, "
            f"line_limit={self.line_limit}, "
            f"log_buffer={self.log_buffer}, "
            f"interpreter={self.interpreter}, "
            f"script={self.script}, "
            f"autostart={self.autostart}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp dir."""
    log_dir = Path(tempfile.gettempdir()) / "stdio-rpc-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str((log_dir / f"srpc_debug_{timestamp}.log").resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("SRPC_LOG_DEBUG"), default=False)

    return Config(
        call_timeout=_parse_float(
            os.environ.get("SRPC_CALL_TIMEOUT"), DEFAULT_CALL_TIMEOUT, 0.1, 3600.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("SRPC_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 60.0
        ),
        timeout_policy=TimeoutPolicy.from_string(
            os.environ.get("SRPC_TIMEOUT_POLICY") or TimeoutPolicy.DISCARD.value
        ),
        line_limit=_parse_int(os.environ.get("SRPC_LINE_LIMIT"), DEFAULT_LINE_LIMIT, 1024),
        log_buffer=_parse_int(os.environ.get("SRPC_LOG_BUFFER"), DEFAULT_LOG_BUFFER, 1),
        interpreter=_parse_optional_str(os.environ.get("SRPC_INTERPRETER")),
        script=_parse_optional_str(os.environ.get("SRPC_SCRIPT")),
        autostart=_parse_bool(os.environ.get("SRPC_AUTOSTART"), default=False),
        log_debug=log_debug,
        log_file=_generate_log_file_path() if log_debug else None,
    )


# Lazily created process-wide instance
_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (for tests)."""
    global _config
    _config = load_config()
    return _config
