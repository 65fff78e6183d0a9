from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Callable, Dict, List, Optional

from pydantic import Field

from mcpkit.core.models import ResourceDocument, TimeoutPolicy, ToolDefinition
from mcpkit.framework.tool_runtime import ToolHandler, ToolRuntime

EXAMPLE_VERSION = "v1.0.0"

_OPERATIONS: Dict[str, tuple[str, Callable[[float, float], float]]] = {
    "add": ("+", lambda a, b: a + b),
    "subtract": ("-", lambda a, b: a - b),
    "multiply": ("*", lambda a, b: a * b),
    "divide": ("/", lambda a, b: a / b),
}

EXAMPLE_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="greet",
        description="Say hello to someone",
        input_schema={
            "name": Annotated[str, Field(description="The name of the person to greet")],
        },
        output_schema=str,
    ),
    ToolDefinition(
        name="calculate",
        description="Perform basic math operations",
        input_schema={
            "a": Annotated[float, Field(description="First number")],
            "b": Annotated[float, Field(description="Second number")],
            "operation": Annotated[
                str,
                Field(description="Operation to perform: add, subtract, multiply, or divide"),
            ],
        },
        output_schema=str,
    ),
    ToolDefinition(
        name="get_time",
        description="Get the current time",
        input_schema={},
        output_schema=str,
    ),
]


def greet(params: Any) -> str:
    return f"Hello, {params.name}! Welcome to the MCP Example Server!"


def calculate(params: Any) -> str:
    if params.operation not in _OPERATIONS:
        raise ValueError(f"Unknown operation '{params.operation}'")
    if params.operation == "divide" and params.b == 0:
        raise ValueError("Division by zero")
    symbol, apply = _OPERATIONS[params.operation]
    result = apply(params.a, params.b)
    return f"{params.a:.2f} {symbol} {params.b:.2f} = {result:.2f}"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def build_example_handlers(clock: Callable[[], datetime] = _local_now) -> Dict[str, ToolHandler]:
    def get_time(params: Any) -> str:
        return f"Current time: {clock().isoformat(timespec='seconds')}"

    return {"greet": greet, "calculate": calculate, "get_time": get_time}


def register_example_tools(
    runtime: ToolRuntime,
    timeout_policy: Optional[TimeoutPolicy] = None,
) -> None:
    runtime.register(EXAMPLE_TOOLS, build_example_handlers(), timeout_policy)


def example_resources() -> List[ResourceDocument]:
    text = f"""MCP Example Server
==================
Version: {EXAMPLE_VERSION}
Description: A simple example MCP server demonstrating basic tool functionality

Available Tools:
- greet: Say hello to someone
- calculate: Perform basic math operations (add, subtract, multiply, divide)
- get_time: Get the current time

This server demonstrates the basic capabilities of the tool runtime."""
    return [
        ResourceDocument(
            uri="example://info",
            name="Server Information",
            description="Basic information about this MCP example server",
            text=text,
        )
    ]
