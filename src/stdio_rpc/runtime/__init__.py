"""Runtime module for worker process management.

This module provides the worker process handle with piped stdio,
process group isolation and reliable kill-and-reap teardown.
"""

from __future__ import annotations

from .process_handle import WorkerConfig, WorkerProcess

__all__ = [
    "WorkerConfig",
    "WorkerProcess",
]
