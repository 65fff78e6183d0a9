from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server

from mcpkit.core import logging as core_logging
from mcpkit.core.models import ResourceDocument

from .tool_runtime import ToolRuntime

LOGGER = core_logging.get_logger("mcp_server")


def tool_descriptors(runtime: ToolRuntime) -> List[types.Tool]:
    # Output schemas stay unadvertised: results travel as text content only.
    return [
        types.Tool(
            name=tool.name,
            title=tool.definition.title or tool.name,
            description=tool.definition.description,
            inputSchema=tool.input_schema.json_schema(),
        )
        for tool in runtime.list_tools()
    ]


async def call_tool(
    runtime: ToolRuntime, name: str, arguments: Optional[Dict[str, Any]]
) -> List[types.TextContent]:
    envelope = await runtime.invoke(name, arguments or {})
    return [types.TextContent(type="text", text=item.text) for item in envelope.content]


def resource_descriptors(resources: Sequence[ResourceDocument]) -> List[types.Resource]:
    return [
        types.Resource(
            uri=document.uri,
            name=document.name,
            description=document.description,
            mimeType=document.mime_type,
        )
        for document in resources
    ]


def read_resource_contents(
    resources: Sequence[ResourceDocument], uri: Any
) -> List[ReadResourceContents]:
    wanted = str(uri).rstrip("/")
    for document in resources:
        if document.uri.rstrip("/") == wanted:
            return [ReadResourceContents(content=document.text, mime_type=document.mime_type)]
    raise ValueError(f"Unknown resource: {uri}")


def create_tools_server(
    name: str,
    version: str,
    runtime: ToolRuntime,
    resources: Iterable[ResourceDocument] = (),
) -> Server:
    """Expose ``runtime`` (and static resource documents) as an MCP server.

    Runtime failures propagate out of the call handler, which the SDK turns
    into an error result carrying the exception message.
    """
    server: Server = Server(name, version=version)
    documents = list(resources)

    @server.list_tools()
    async def _list_tools() -> List[types.Tool]:
        return tool_descriptors(runtime)

    @server.call_tool(validate_input=False)
    async def _call_tool(tool_name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        return await call_tool(runtime, tool_name, arguments)

    if documents:

        @server.list_resources()
        async def _list_resources() -> List[types.Resource]:
            return resource_descriptors(documents)

        @server.read_resource()
        async def _read_resource(uri: Any) -> List[ReadResourceContents]:
            return read_resource_contents(documents, uri)

    LOGGER.info(
        "mcp_server_created",
        server=name,
        version=version,
        tools=[tool.name for tool in runtime.list_tools()],
        resources=[document.uri for document in documents],
    )
    return server


async def serve_stdio(server: Server) -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
