import asyncio

import mcp.types as types

from mcpkit.core.config import ServiceSettings
from services.example.app import main as example_main


def test_build_server_lists_example_tools():
    server = example_main.build_server(ServiceSettings.from_env({}))
    handler = server.request_handlers[types.ListToolsRequest]
    result = asyncio.run(handler(types.ListToolsRequest(method="tools/list")))
    names = [tool.name for tool in result.root.tools]
    assert names == ["greet", "calculate", "get_time"]


def test_main_configures_logging_from_settings(monkeypatch):
    levels = []
    served = []

    async def _fake_serve(server):
        served.append(server.name)

    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setattr(
        example_main.core_logging,
        "configure_logging",
        lambda service, level="INFO": levels.append((service, level)),
    )
    monkeypatch.setattr(example_main, "serve_stdio", _fake_serve)

    example_main.main()

    assert levels == [("mcp-example-server", "debug")]
    assert served == ["mcp-example-server"]
