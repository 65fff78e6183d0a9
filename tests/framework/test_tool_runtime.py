from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List

import pytest
from pydantic import ValidationError

from mcpkit.core.models import TimeoutPolicy, ToolDefinition
from mcpkit.core.schemas import JsonSchema
from mcpkit.framework.errors import (
    DuplicateToolError,
    InputValidationError,
    MissingHandlerError,
    OutputValidationError,
    ToolCancelledError,
    ToolExecutionError,
    ToolRegistrationError,
    ToolTimeoutError,
    UnknownToolError,
)
from mcpkit.framework.tool_runtime import InvocationContext, ToolRuntime, create_tool_runtime

ECHO = ToolDefinition(
    name="echo", description="Echo a message", input_schema={"msg": str}, output_schema=str
)


def _definition(name: str, output_schema: Any = str) -> ToolDefinition:
    return ToolDefinition(name=name, description=name, input_schema={}, output_schema=output_schema)


def test_echo_invocation_returns_text_envelope() -> None:
    runtime = create_tool_runtime([ECHO], {"echo": lambda params: params.msg})
    envelope = asyncio.run(runtime.invoke("echo", {"msg": "hi"}))
    assert envelope.model_dump() == {"content": [{"type": "text", "text": '"hi"'}]}


def test_structured_output_is_serialized_as_json() -> None:
    definition = ToolDefinition(
        name="stats",
        description="stats",
        input_schema=JsonSchema({"type": "object"}),
        output_schema=Dict[str, int],
    )
    runtime = create_tool_runtime([definition], {"stats": lambda payload: {"count": 3}})
    envelope = asyncio.run(runtime.invoke("stats"))
    assert envelope.content[0].text == '{"count":3}'


def test_registration_rejects_duplicates() -> None:
    handlers = {"echo": lambda params: params.msg}
    with pytest.raises(DuplicateToolError) as excinfo:
        create_tool_runtime([ECHO, ECHO], handlers)
    assert excinfo.value.error_code == "registry.duplicate_tool"

    runtime = create_tool_runtime([ECHO], handlers)
    with pytest.raises(DuplicateToolError):
        runtime.register([ECHO], handlers)


def test_registration_requires_a_handler_per_tool() -> None:
    with pytest.raises(MissingHandlerError) as excinfo:
        create_tool_runtime([ECHO, _definition("ping")], {"echo": lambda params: params.msg})
    assert excinfo.value.tool_names == ["ping"]


def test_registration_rejects_orphan_configuration() -> None:
    with pytest.raises(ToolRegistrationError):
        create_tool_runtime([ECHO], {"echo": lambda params: params.msg, "extra": lambda p: p})
    with pytest.raises(ToolRegistrationError):
        create_tool_runtime(
            [ECHO],
            {"echo": lambda params: params.msg},
            TimeoutPolicy(per_tool_timeout_ms={"missing": 100}),
        )


def test_registration_rejects_unusable_schemas() -> None:
    definition = ToolDefinition(name="bad", description="bad", input_schema=42, output_schema=str)
    with pytest.raises(ToolRegistrationError):
        create_tool_runtime([definition], {"bad": lambda params: ""})


def test_failed_registration_leaves_runtime_untouched() -> None:
    runtime = ToolRuntime()
    with pytest.raises(MissingHandlerError):
        runtime.register([ECHO], {})
    assert runtime.list_tools() == []


def test_timeout_policy_rejects_non_positive_values() -> None:
    with pytest.raises(ValidationError):
        TimeoutPolicy(default_timeout_ms=0)
    with pytest.raises(ValidationError):
        TimeoutPolicy(per_tool_timeout_ms={"echo": -1})


def test_unknown_tool() -> None:
    runtime = ToolRuntime()
    with pytest.raises(UnknownToolError) as excinfo:
        asyncio.run(runtime.invoke("nope", {}))
    assert str(excinfo.value) == "Unknown tool: nope"
    assert excinfo.value.error_code == "contract.tool_not_found"


def test_invalid_input_never_reaches_the_handler() -> None:
    calls: List[Any] = []

    def echo(params: Any) -> str:
        calls.append(params)
        return params.msg

    runtime = create_tool_runtime([ECHO], {"echo": echo})
    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(runtime.invoke("echo", {"msg": 1}))
    assert [violation.path for violation in excinfo.value.violations] == ["msg"]
    assert excinfo.value.error_code == "contract.input_invalid"

    with pytest.raises(InputValidationError):
        asyncio.run(runtime.invoke("echo", None))
    assert calls == []


def test_wrongly_typed_arguments_are_not_coerced() -> None:
    calls: List[Any] = []

    def add(params: Any) -> float:
        calls.append(params)
        return params.a

    definition = ToolDefinition(
        name="add", description="add", input_schema={"a": float}, output_schema=float
    )
    runtime = create_tool_runtime([definition], {"add": add})
    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(runtime.invoke("add", {"a": "5"}))
    assert excinfo.value.violations[0].path == "a"
    assert calls == []

    assert asyncio.run(runtime.invoke("add", {"a": 5})).content[0].text == "5.0"


def test_missing_arguments_are_treated_as_empty() -> None:
    runtime = create_tool_runtime([_definition("ping")], {"ping": lambda params: "pong"})
    envelope = asyncio.run(runtime.invoke("ping"))
    assert envelope.content[0].text == '"pong"'


def test_invalid_output_is_rejected() -> None:
    runtime = create_tool_runtime([_definition("count", int)], {"count": lambda params: "many"})
    with pytest.raises(OutputValidationError) as excinfo:
        asyncio.run(runtime.invoke("count", {}))
    assert excinfo.value.error_code == "contract.output_invalid"
    assert excinfo.value.violations


def test_wrongly_typed_output_is_not_coerced() -> None:
    runtime = create_tool_runtime(
        [_definition("count", int), _definition("name", str)],
        {"count": lambda params: "5", "name": lambda params: b"hi"},
    )
    with pytest.raises(OutputValidationError):
        asyncio.run(runtime.invoke("count", {}))
    with pytest.raises(OutputValidationError):
        asyncio.run(runtime.invoke("name", {}))


def test_output_size_cap() -> None:
    runtime = ToolRuntime(max_output_bytes=8)
    runtime.register([_definition("big")], {"big": lambda params: "x" * 32})
    with pytest.raises(OutputValidationError) as excinfo:
        asyncio.run(runtime.invoke("big", {}))
    assert "max size of 8 bytes" in str(excinfo.value)


def test_handler_failures_are_wrapped() -> None:
    def explode(params: Any) -> str:
        raise RuntimeError("disk on fire")

    runtime = create_tool_runtime([_definition("explode")], {"explode": explode})
    with pytest.raises(ToolExecutionError) as excinfo:
        asyncio.run(runtime.invoke("explode", {}))
    assert str(excinfo.value) == "disk on fire"
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert excinfo.value.error_code == "runtime.tool_error"


def test_async_handler_failures_are_wrapped() -> None:
    async def explode(params: Any) -> str:
        raise KeyError("missing")

    runtime = create_tool_runtime([_definition("explode")], {"explode": explode})
    with pytest.raises(ToolExecutionError) as excinfo:
        asyncio.run(runtime.invoke("explode", {}))
    assert isinstance(excinfo.value.cause, KeyError)


def test_timeout_rejects_within_budget() -> None:
    contexts: List[InvocationContext] = []

    async def hang(params: Any, context: InvocationContext) -> str:
        contexts.append(context)
        await asyncio.Event().wait()
        return "never"

    runtime = create_tool_runtime(
        [_definition("hang")], {"hang": hang}, TimeoutPolicy(default_timeout_ms=50)
    )

    async def scenario() -> int:
        with pytest.raises(ToolTimeoutError) as excinfo:
            await runtime.invoke("hang", {})
        assert str(excinfo.value) == "Tool 'hang' execution timed out after 50ms"
        assert excinfo.value.error_code == "runtime.timeout"
        return runtime.abandoned_count

    started = time.monotonic()
    abandoned = asyncio.run(scenario())
    assert time.monotonic() - started < 2.0
    assert abandoned == 1
    assert contexts[0].cancelled
    assert contexts[0].cancel_reason == "timeout"


def test_blocking_handler_observes_cancellation() -> None:
    observed: List[bool] = []

    def slow(params: Any, context: InvocationContext) -> str:
        observed.append(context.wait(5))
        return "late"

    runtime = create_tool_runtime(
        [_definition("slow")], {"slow": slow}, TimeoutPolicy(default_timeout_ms=50)
    )

    async def scenario() -> int:
        with pytest.raises(ToolTimeoutError):
            await runtime.invoke("slow", {})
        for _ in range(200):
            if runtime.abandoned_count == 0:
                break
            await asyncio.sleep(0.01)
        return runtime.abandoned_count

    assert asyncio.run(scenario()) == 0
    assert observed == [True]


def test_slow_handler_without_timeout_completes() -> None:
    async def slow(params: Any) -> str:
        await asyncio.sleep(0.1)
        return "done"

    runtime = create_tool_runtime([_definition("slow")], {"slow": slow})
    assert runtime.get("slow").timeout_ms is None
    envelope = asyncio.run(runtime.invoke("slow", {}))
    assert envelope.content[0].text == '"done"'


def test_per_tool_timeout_overrides_default() -> None:
    async def nap(params: Any) -> str:
        await asyncio.sleep(0.3)
        return "rested"

    policy = TimeoutPolicy(default_timeout_ms=10_000, per_tool_timeout_ms={"quick": 20})
    runtime = create_tool_runtime(
        [_definition("quick"), _definition("patient")],
        {"quick": nap, "patient": nap},
        policy,
    )
    assert runtime.get("quick").timeout_ms == 20
    assert runtime.get("patient").timeout_ms == 10_000

    with pytest.raises(ToolTimeoutError):
        asyncio.run(runtime.invoke("quick", {}))
    assert asyncio.run(runtime.invoke("patient", {})).content[0].text == '"rested"'


def test_caller_cancellation_signals_the_handler() -> None:
    contexts: List[InvocationContext] = []

    async def hang(params: Any, context: InvocationContext) -> str:
        contexts.append(context)
        await asyncio.Event().wait()
        return "never"

    runtime = create_tool_runtime(
        [_definition("hang")], {"hang": hang}, TimeoutPolicy(default_timeout_ms=10_000)
    )

    async def scenario() -> None:
        task = asyncio.ensure_future(runtime.invoke("hang", {}))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert contexts[0].cancel_reason == "caller_cancelled"


def test_concurrent_invocations_run_independently() -> None:
    async def echo(params: Any) -> str:
        await asyncio.sleep(0.1)
        return params.msg

    runtime = create_tool_runtime([ECHO], {"echo": echo}, TimeoutPolicy(default_timeout_ms=5_000))

    async def scenario() -> List[str]:
        envelopes = await asyncio.gather(
            *(runtime.invoke("echo", {"msg": str(index)}) for index in range(5))
        )
        return [envelope.content[0].text for envelope in envelopes]

    started = time.monotonic()
    assert asyncio.run(scenario()) == ['"0"', '"1"', '"2"', '"3"', '"4"']
    assert time.monotonic() - started < 0.45


def test_single_argument_handlers_get_no_context() -> None:
    seen: List[int] = []

    def one(params: Any) -> str:
        seen.append(1)
        return "one"

    def two(params: Any, context: InvocationContext) -> str:
        seen.append(2)
        assert context.tool_name == "two"
        return "two"

    runtime = create_tool_runtime(
        [_definition("one"), _definition("two")], {"one": one, "two": two}
    )
    assert runtime.get("one").passes_context is False
    assert runtime.get("two").passes_context is True
    asyncio.run(runtime.invoke("one", {}))
    asyncio.run(runtime.invoke("two", {}))
    assert seen == [1, 2]


def test_invocation_context_callbacks() -> None:
    context = InvocationContext("tool", timeout_ms=100)
    fired: List[str] = []
    context.on_cancel(lambda: fired.append("first"))
    context.raise_if_cancelled()

    context.cancel("timeout")
    context.cancel("again")
    context.on_cancel(lambda: fired.append("late"))

    assert fired == ["first", "late"]
    assert context.cancel_reason == "timeout"
    assert context.wait(0) is True
    with pytest.raises(ToolCancelledError):
        context.raise_if_cancelled()
