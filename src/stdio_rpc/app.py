"""stdio-rpc-supervisor application entry.

Server lifecycle management and the main entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from mcp.server.stdio import stdio_server

from .config import Config, get_config
from .errors import SupervisorError
from .log_relay import LogBuffer
from .server import create_server
from .supervisor import RpcSupervisor
from .tools import WorkerTools

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)


async def run_server() -> None:
    """Run the MCP server until stdin closes or SIGINT/SIGTERM arrives.

    The worker is always torn down on the way out so no orphan is left
    behind when the host exits.
    """
    config = get_config()
    logger.info(f"Starting stdio-rpc-supervisor: {config}")

    log_buffer = LogBuffer(maxlen=config.log_buffer)
    supervisor = RpcSupervisor(on_log_event=log_buffer.append)
    tools = WorkerTools(supervisor, log_buffer, config)
    server = create_server(tools)

    loop = asyncio.get_running_loop()
    server_task: asyncio.Task | None = None
    installed_signals: list[signal.Signals] = []

    def _request_shutdown(signame: str) -> None:
        logger.info(f"{signame} received, shutting down")
        if server_task and not server_task.done():
            server_task.cancel()

    async def _run_server_impl() -> None:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )

    try:
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _request_shutdown, sig.name)
                installed_signals.append(sig)

        if config.autostart:
            await _autostart(supervisor, tools, config)

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        for sig in installed_signals:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)

        try:
            await supervisor.teardown()
        except SupervisorError as e:
            logger.error(f"Worker teardown failed: {e}")

        logger.info("run_server: cleanup completed")


async def _autostart(supervisor: RpcSupervisor, tools: WorkerTools, config: Config) -> None:
    """Start the default worker; a failure is logged and the server still runs."""
    try:
        await supervisor.restart(tools.default_worker_config())
    except SupervisorError as e:
        logger.error(
            f"Autostart failed ({e.kind.value}): {e} "
            f"[interpreter={config.interpreter} script={config.script}]"
        )


def configure_logging(config: Config) -> None:
    """Send logs to stderr, or to a debug file with SRPC_LOG_DEBUG.

    stdout is the MCP channel and never receives log output.
    """
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("stdio_rpc").setLevel(log_level)


def main() -> None:
    """Main entry point."""
    configure_logging(get_config())
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
