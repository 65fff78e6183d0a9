from __future__ import annotations

import asyncio
import sys

from mcp.server.lowlevel import Server

from mcpkit.core import logging as core_logging
from mcpkit.core.config import ConfigError, OpenAISettings, load_settings
from mcpkit.core.llm_provider import OpenAISearchProvider
from mcpkit.framework.mcp_server import create_tools_server, serve_stdio
from mcpkit.framework.tool_runtime import ToolRuntime
from mcpkit.tools.search_tools import openai_resources, register_openai_tools

SERVER_NAME = "openai"
SERVER_VERSION = "1.0.0"

LOGGER = core_logging.get_logger(SERVER_NAME)


def build_server(settings: OpenAISettings) -> Server:
    runtime = ToolRuntime()
    register_openai_tools(
        runtime,
        OpenAISearchProvider.from_settings(settings),
        timeout_policy=settings.timeout_policy(),
    )
    return create_tools_server(SERVER_NAME, SERVER_VERSION, runtime, openai_resources(settings))


def main() -> None:
    try:
        settings = load_settings(OpenAISettings)
    except ConfigError as exc:
        core_logging.configure_logging(SERVER_NAME)
        LOGGER.error("invalid_configuration", details=exc.details)
        sys.exit(1)
    core_logging.configure_logging(SERVER_NAME, settings.log_level)
    asyncio.run(serve_stdio(build_server(settings)))


if __name__ == "__main__":
    main()
