"""Tool schema definitions.

Tool names, descriptions and input schemas for the worker tools.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

SUPPORTED_TOOLS = (
    "worker_call",
    "worker_restart",
    "worker_teardown",
    "worker_logs",
    "worker_status",
)

TOOL_DESCRIPTIONS = {
    "worker_call": """Send one command to the worker process and wait for its answer.

The request is written to the worker's stdin as {"command": ..., "params": ...}.
The answer is the first stdout line starting with __JSON_RPC__; other output
lines are collected as logs (see worker_logs).

Fails with kind=not_running if no worker is running, kind=timeout if no answer
arrives in time, kind=process_exited if the worker dies first.""",

    "worker_restart": """Start (or restart) the worker process.

Kills and reaps the current worker, then launches `interpreter -u script`.
Omitted interpreter/script fall back to SRPC_INTERPRETER / SRPC_SCRIPT.""",

    "worker_teardown": "Stop the worker process. Does nothing if none is running.",

    "worker_logs": """Return buffered worker log lines (stdout noise and stderr) and remove them from the buffer.

Each entry has stream, text, timestamp and pid.""",

    "worker_status": "Report the worker state (not_started/running/exited/killed/torn_down) and pid.",
}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """Build the JSON schema for a tool's arguments."""
    if tool == "worker_call":
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Command name understood by the worker.",
                },
                "params": {
                    "description": "Any JSON value passed through as params.",
                },
                "timeout": {
                    "type": "number",
                    "description": "Seconds to wait for the answer (default SRPC_CALL_TIMEOUT).",
                    "exclusiveMinimum": 0,
                },
            },
            "required": ["command"],
        }

    if tool == "worker_restart":
        return {
            "type": "object",
            "properties": {
                "interpreter": {
                    "type": "string",
                    "description": "Interpreter executable path.",
                },
                "script": {
                    "type": "string",
                    "description": "Worker script path.",
                },
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Extra arguments after the script.",
                },
                "cwd": {
                    "type": "string",
                    "description": "Working directory for the worker.",
                },
            },
            "required": [],
        }

    if tool == "worker_logs":
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of entries to return (oldest first).",
                    "minimum": 1,
                },
            },
            "required": [],
        }

    return {"type": "object", "properties": {}, "required": []}
