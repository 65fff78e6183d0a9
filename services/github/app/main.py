from __future__ import annotations

import asyncio
import sys

from mcp.server.lowlevel import Server

from mcpkit.core import logging as core_logging
from mcpkit.core.config import ConfigError, GitHubSettings, load_settings
from mcpkit.framework.mcp_server import create_tools_server, serve_stdio
from mcpkit.framework.tool_runtime import ToolRuntime
from mcpkit.tools.github_tools import GitHubClient, github_resources, register_github_tools

SERVER_NAME = "mcp-github-proxy"
SERVER_VERSION = "v1.0.0"

LOGGER = core_logging.get_logger(SERVER_NAME)


def build_server(settings: GitHubSettings) -> Server:
    runtime = ToolRuntime()
    register_github_tools(
        runtime,
        GitHubClient.from_settings(settings),
        timeout_policy=settings.timeout_policy(),
    )
    return create_tools_server(SERVER_NAME, SERVER_VERSION, runtime, github_resources(settings))


def main() -> None:
    try:
        settings = load_settings(GitHubSettings)
    except ConfigError as exc:
        core_logging.configure_logging(SERVER_NAME)
        LOGGER.error("invalid_configuration", details=exc.details)
        sys.exit(1)
    core_logging.configure_logging(SERVER_NAME, settings.log_level)
    LOGGER.info(
        "github_proxy_starting",
        api_base=settings.github_api_base,
        default_token=bool(settings.github_token),
    )
    asyncio.run(serve_stdio(build_server(settings)))


if __name__ == "__main__":
    main()
