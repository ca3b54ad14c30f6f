"""stdio-rpc-supervisor MCP server.

Exposes the worker supervisor as MCP tools over stdio.

Environment variables:
    SRPC_INTERPRETER / SRPC_SCRIPT: default worker for worker_restart
    SRPC_CALL_TIMEOUT: default call timeout (default 5.0s)
    SRPC_TIMEOUT_POLICY: discard | kill
    SRPC_LOG_BUFFER: buffered log events (default 1000)

Usage:
    stdio-rpc-supervisor
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .tools import WorkerTools

__all__ = ["create_server"]

logger = logging.getLogger(__name__)


def create_server(tools: WorkerTools) -> Server:
    """Create the MCP Server instance.

    Args:
        tools: Tool handlers bound to a supervisor
    """
    server = Server("stdio-rpc-supervisor")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        result = tools.list_tools()
        logger.debug(f"[MCP] list_tools called, returning {len(result)} tools")
        return result

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Call a tool."""
        logger.debug(
            f"[MCP] call_tool request: {name} "
            f"{json.dumps(arguments, ensure_ascii=False, default=str)[:500]}"
        )
        return await tools.handle(name, arguments)

    return server
