from __future__ import annotations

import asyncio
import sys

from mcp.server.lowlevel import Server

from mcpkit.core import logging as core_logging
from mcpkit.core.config import ConfigError, ServiceSettings, load_settings
from mcpkit.framework.mcp_server import create_tools_server, serve_stdio
from mcpkit.framework.tool_runtime import ToolRuntime
from mcpkit.tools.example_tools import EXAMPLE_VERSION, example_resources, register_example_tools

SERVER_NAME = "mcp-example-server"

LOGGER = core_logging.get_logger(SERVER_NAME)


def build_server(settings: ServiceSettings) -> Server:
    runtime = ToolRuntime()
    register_example_tools(runtime, timeout_policy=settings.timeout_policy())
    return create_tools_server(SERVER_NAME, EXAMPLE_VERSION, runtime, example_resources())


def main() -> None:
    try:
        settings = load_settings(ServiceSettings)
    except ConfigError as exc:
        core_logging.configure_logging(SERVER_NAME)
        LOGGER.error("invalid_configuration", details=exc.details)
        sys.exit(1)
    core_logging.configure_logging(SERVER_NAME, settings.log_level)
    asyncio.run(serve_stdio(build_server(settings)))


if __name__ == "__main__":
    main()
