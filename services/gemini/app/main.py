from __future__ import annotations

import asyncio
import sys

from mcp.server.lowlevel import Server

from mcpkit.core import logging as core_logging
from mcpkit.core.config import ConfigError, GeminiSettings, load_settings
from mcpkit.core.llm_provider import GeminiSearchProvider
from mcpkit.framework.mcp_server import create_tools_server, serve_stdio
from mcpkit.framework.tool_runtime import ToolRuntime
from mcpkit.tools.search_tools import gemini_resources, register_gemini_tools

SERVER_NAME = "gemini"
SERVER_VERSION = "0.1.0"

LOGGER = core_logging.get_logger(SERVER_NAME)


def build_server(settings: GeminiSettings) -> Server:
    runtime = ToolRuntime()
    register_gemini_tools(
        runtime,
        GeminiSearchProvider.from_settings(settings),
        cli_command=settings.gemini_cli_command,
        timeout_policy=settings.timeout_policy(),
    )
    return create_tools_server(SERVER_NAME, SERVER_VERSION, runtime, gemini_resources(settings))


def main() -> None:
    try:
        settings = load_settings(GeminiSettings)
    except ConfigError as exc:
        core_logging.configure_logging(SERVER_NAME)
        LOGGER.error("invalid_configuration", details=exc.details)
        sys.exit(1)
    core_logging.configure_logging(SERVER_NAME, settings.log_level)
    asyncio.run(serve_stdio(build_server(settings)))


if __name__ == "__main__":
    main()
