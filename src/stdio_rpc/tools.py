"""Worker tool handlers.

Routes tool calls to the supervisor and renders results as TextContent.
Kept separate from server.py so the routing can be tested without a
transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.types import TextContent, Tool

from .config import Config
from .errors import SupervisorError
from .log_relay import LogBuffer
from .protocol import ResponseFrame
from .runtime.process_handle import WorkerConfig
from .supervisor import RpcSupervisor
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["WorkerTools", "format_error_response"]

logger = logging.getLogger(__name__)


def _text(payload: Any) -> list[TextContent]:
    if isinstance(payload, str):
        return [TextContent(type="text", text=payload)]
    return [TextContent(type="text", text=json.dumps(payload, ensure_ascii=False))]


def format_error_response(kind: str, message: str) -> list[TextContent]:
    """Uniform error payload: ``{"error": {"kind", "message"}}``."""
    return _text({"error": {"kind": kind, "message": message}})


class WorkerTools:
    """Tool surface over one supervisor.

    Attributes:
        supervisor: The supervised worker
        log_buffer: Buffer the supervisor's log events are appended to
        config: Server configuration (default worker paths)
    """

    def __init__(
        self,
        supervisor: RpcSupervisor,
        log_buffer: LogBuffer,
        config: Config,
    ) -> None:
        self.supervisor = supervisor
        self.log_buffer = log_buffer
        self.config = config

    def list_tools(self) -> list[Tool]:
        return [
            Tool(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                inputSchema=create_tool_schema(name),
            )
            for name in SUPPORTED_TOOLS
        ]

    def default_worker_config(self, arguments: dict[str, Any] | None = None) -> WorkerConfig:
        """Merge tool arguments over the SRPC_INTERPRETER/SRPC_SCRIPT defaults."""
        arguments = arguments or {}
        data: dict[str, Any] = {
            "interpreter": arguments.get("interpreter") or self.config.interpreter,
            "script": arguments.get("script") or self.config.script,
        }
        if arguments.get("args") is not None:
            data["args"] = arguments["args"]
        if arguments.get("cwd"):
            data["cwd"] = arguments["cwd"]
        return WorkerConfig.from_mapping(data)

    async def handle(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Dispatch one tool call. Supervisor errors become error payloads."""
        arguments = arguments or {}

        if name not in SUPPORTED_TOOLS:
            return format_error_response("unknown_tool", f"Unknown tool '{name}'")

        try:
            if name == "worker_call":
                return await self._call(arguments)
            if name == "worker_restart":
                await self.supervisor.restart(self.default_worker_config(arguments))
                return _text("restarted")
            if name == "worker_teardown":
                await self.supervisor.teardown()
                return _text("stopped")
            if name == "worker_logs":
                return self._logs(arguments)
            return _text({"state": self.supervisor.state.value, "pid": self.supervisor.pid})
        except SupervisorError as e:
            logger.info(f"Tool '{name}' failed: kind={e.kind.value} msg={e}")
            return format_error_response(e.kind.value, str(e))

    async def _call(self, arguments: dict[str, Any]) -> list[TextContent]:
        command = arguments.get("command")
        if not isinstance(command, str) or not command:
            return format_error_response("invalid_arguments", "command is required")

        timeout = arguments.get("timeout")
        if timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError):
                return format_error_response("invalid_arguments", "timeout must be a number")

        raw = await self.supervisor.call_raw(command, arguments.get("params"), timeout)
        # Validate as JSON but return the worker's own text untouched
        ResponseFrame(raw).decode()
        return _text(raw)

    def _logs(self, arguments: dict[str, Any]) -> list[TextContent]:
        limit = arguments.get("limit")
        if limit is not None:
            try:
                limit = int(limit)
            except (TypeError, ValueError):
                return format_error_response("invalid_arguments", "limit must be an integer")
            if limit < 1:
                return format_error_response("invalid_arguments", "limit must be at least 1")
        events = self.log_buffer.drain(limit)
        return _text([event.model_dump(mode="json") for event in events])
